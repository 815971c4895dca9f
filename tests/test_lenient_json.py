"""Tests for lenient JSON extraction from LLM output."""

from __future__ import annotations

import json

from appointment_assistant.lenient_json import extract_json, loads_lenient


class TestExtractJson:
    def test_fenced_block(self):
        text = 'Sure!\n```json\n{"response": "Hi", "missingFields": []}\n```\nThanks'
        assert json.loads(extract_json(text)) == {"response": "Hi", "missingFields": []}

    def test_object_embedded_in_prose(self):
        text = 'Here you go: {"response": "Booked", "appointmentDetails": {"Location__c": "Brooklyn"}} done.'
        data = json.loads(extract_json(text))
        assert data["appointmentDetails"]["Location__c"] == "Brooklyn"

    def test_three_levels_of_nesting(self):
        text = 'x {"a": {"b": {"c": 1}}} y'
        assert json.loads(extract_json(text)) == {"a": {"b": {"c": 1}}}

    def test_skips_unparseable_candidates(self):
        text = "{not json} then {\"ok\": true}"
        assert json.loads(extract_json(text)) == {"ok": True}

    def test_no_json_returns_empty_object(self):
        assert extract_json("no braces here") == "{}"
        assert extract_json("") == "{}"
        assert extract_json(None) == "{}"


class TestLoadsLenient:
    def test_strict_json(self):
        assert loads_lenient('{"isConfirmed": true}') == {"isConfirmed": True}

    def test_falls_back_to_extraction(self):
        assert loads_lenient('The answer is {"isConfirmed": false}.') == {"isConfirmed": False}

    def test_non_object_becomes_empty(self):
        assert loads_lenient("[1, 2, 3]") == {}
        assert loads_lenient(None) == {}
