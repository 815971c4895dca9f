"""Tests for the guided-flow state machine."""

from __future__ import annotations

import pytest

from appointment_assistant.catalog import DEFAULT_SUGGESTIONS
from appointment_assistant.flow import (
    CONFIRMATION_REQUEST,
    FlowStep,
    apply_quick_reply,
    current_step,
    follow_up_prompt,
    is_generic_response,
    merge_details,
    missing_fields,
    pad_suggestions,
    suggestion_candidates,
)
from appointment_assistant.models import GuidedFlow


def _full_details(**overrides):
    details = {
        "Reason_for_Visit__c": "Open a new account",
        "Appointment_Date__c": "2025-03-06",
        "Appointment_Time__c": "3:00 PM",
        "Location__c": "Brooklyn",
    }
    details.update(overrides)
    return details


class TestCurrentStep:
    def test_progression(self):
        flow = GuidedFlow()
        assert current_step(flow) is FlowStep.REASON
        flow.reason = "Open a new account"
        assert current_step(flow) is FlowStep.TIME
        flow.date = "2025-03-06"
        assert current_step(flow) is FlowStep.TIME
        flow.time = "3:00 PM"
        assert current_step(flow) is FlowStep.LOCATION
        flow.location = "Brooklyn"
        assert current_step(flow) is FlowStep.CONFIRMATION

    def test_reset_clears_every_slot(self):
        flow = GuidedFlow(reason="r", date="d", time="t", location="l", appointment_id="a01")
        flow.reset()
        assert flow.is_empty()
        assert flow.appointment_id is None


class TestMissingFields:
    def test_complete_details(self):
        assert missing_fields(_full_details()) == []

    def test_blank_location_counts_as_missing(self):
        assert missing_fields(_full_details(Location__c="   ")) == ["Location__c"]
        assert missing_fields(_full_details(Location__c="")) == ["Location__c"]

    def test_fixed_order(self):
        assert missing_fields({}) == [
            "Reason_for_Visit__c",
            "Appointment_Date__c",
            "Appointment_Time__c",
            "Location__c",
        ]
        assert missing_fields(None) == missing_fields({})


class TestMergeDetails:
    def test_draft_fills_blanks(self):
        flow = GuidedFlow(reason="Open a new account", location="Manhattan")
        merged = merge_details(flow, {"Appointment_Date__c": "2025-03-06", "Appointment_Time__c": "3:00 PM"})
        assert merged["Reason_for_Visit__c"] == "Open a new account"
        assert merged["Location__c"] == "Manhattan"
        assert missing_fields(merged) == []

    def test_extracted_values_override_draft(self):
        flow = GuidedFlow(location="Manhattan")
        merged = merge_details(flow, {"Location__c": "Brooklyn"})
        assert merged["Location__c"] == "Brooklyn"
        assert flow.location == "Brooklyn"

    def test_blank_extracted_value_does_not_erase_draft(self):
        flow = GuidedFlow(location="Manhattan")
        merged = merge_details(flow, {"Location__c": ""})
        assert merged["Location__c"] == "Manhattan"

    def test_date_derived_from_instant_time(self):
        flow = GuidedFlow()
        merged = merge_details(flow, {"Appointment_Time__c": "2025-03-06T15:00:00.000Z"})
        assert merged["Appointment_Date__c"] == "2025-03-06"
        assert flow.date == "2025-03-06"


class TestApplyQuickReply:
    def test_reason_matched_case_insensitively(self, tenant):
        flow = GuidedFlow()
        assert apply_quick_reply(flow, "open a NEW account", tenant) == "reason"
        assert flow.reason == "Open a new account"

    def test_display_datetime_fills_time_step(self, tenant):
        flow = GuidedFlow(reason="Open a new account")
        assert apply_quick_reply(flow, "March 6th, 2025, 3:00 PM", tenant) == "time"
        assert (flow.date, flow.time) == ("2025-03-06", "3:00 PM")

    def test_location_with_confirm_prefix(self, tenant):
        flow = GuidedFlow(reason="Open a new account", date="2025-03-06", time="3:00 PM")
        assert apply_quick_reply(flow, "Confirm: Manhattan", tenant) == "location"
        assert flow.location == "Manhattan"

    def test_only_current_step_is_matched(self, tenant):
        flow = GuidedFlow()
        assert apply_quick_reply(flow, "Brooklyn", tenant) is None
        assert flow.location is None

    def test_free_text_is_ignored(self, tenant):
        flow = GuidedFlow()
        assert apply_quick_reply(flow, "I want to see someone next week", tenant) is None
        assert flow.is_empty()


class TestPrompts:
    @pytest.mark.parametrize(
        "text",
        ["", "   ", None, "...", "Sorry, I didn't catch that", "How can I help you today?", "ok"],
    )
    def test_generic_responses(self, text):
        assert is_generic_response(text)

    def test_substantive_response_is_not_generic(self):
        assert not is_generic_response("Which branch would you like to visit?")

    def test_follow_up_prompt_concatenates_questions(self):
        prompt = follow_up_prompt(["Reason_for_Visit__c", "Location__c"], ("Brooklyn", "Manhattan", "New York"))
        assert prompt == (
            "What is the reason for your visit? "
            "Which branch would you prefer: Brooklyn, Manhattan, or New York?"
        )

    def test_confirmation_request_text(self):
        assert CONFIRMATION_REQUEST == "Please confirm these details to book your appointment."


class TestSuggestions:
    def test_empty_draft_uses_defaults(self, tenant):
        assert suggestion_candidates(GuidedFlow(), tenant) == list(DEFAULT_SUGGESTIONS)

    def test_location_step_offers_branches(self, tenant):
        flow = GuidedFlow(reason="r", date="2025-03-06", time="3:00 PM")
        assert suggestion_candidates(flow, tenant) == list(tenant.locations)

    def test_pad_suggestions_tops_up_and_dedupes(self):
        result = pad_suggestions(["Brooklyn", "Brooklyn"], ["Brooklyn", "Manhattan"])
        assert result == ["Brooklyn", "Manhattan", "I need help"]

    def test_pad_suggestions_truncates(self):
        assert pad_suggestions(["a", "b", "c", "d"], []) == ["a", "b", "c"]
