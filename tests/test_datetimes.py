"""Tests for the date/time normaliser."""

from __future__ import annotations

import pytest

from appointment_assistant.datetimes import (
    combine,
    format_for_display,
    most_frequent,
    parse_display_string,
    to_24_hour,
)


class TestTo24Hour:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("3:00 PM", "15:00:00"),
            ("3pm", "15:00:00"),
            ("12:00 AM", "00:00:00"),
            ("12:30 PM", "12:30:00"),
            ("9:15 am", "09:15:00"),
            ("23:00", "23:00:00"),
            ("0930", "09:30:00"),
        ],
    )
    def test_loose_formats(self, text, expected):
        assert to_24_hour(text) == expected

    def test_iso_instant_passthrough(self):
        assert to_24_hour("2025-03-06T15:00:00.000Z") == "15:00:00"

    @pytest.mark.parametrize("text", ["24:00", "10:75", "13:00 PM", "0:30 AM", "noon", "", None])
    def test_rejects_invalid(self, text):
        assert to_24_hour(text) is None


class TestCombine:
    def test_combines_date_and_time(self):
        assert combine("2025-03-06", "3:00 PM") == "2025-03-06T15:00:00.000Z"

    def test_full_instant_passes_through(self):
        instant = "2025-03-06T15:00:00.000Z"
        assert combine("2025-03-06", instant) == instant

    @pytest.mark.parametrize(
        "date, time",
        [
            ("03/06/2025", "3:00 PM"),
            ("2025-02-30", "3:00 PM"),
            ("2025-03-06", "25:00"),
            (None, "3:00 PM"),
            ("2025-03-06", None),
        ],
    )
    def test_invalid_inputs_return_none(self, date, time):
        assert combine(date, time) is None


class TestFormatForDisplay:
    def test_formats_instant(self):
        assert format_for_display("2025-03-06T15:00:00.000Z") == "March 6th, 2025, 3:00 PM"

    @pytest.mark.parametrize(
        "iso, expected_day",
        [
            ("2025-03-01T09:00:00.000Z", "1st"),
            ("2025-03-02T09:00:00.000Z", "2nd"),
            ("2025-03-03T09:00:00.000Z", "3rd"),
            ("2025-03-11T09:00:00.000Z", "11th"),
            ("2025-03-12T09:00:00.000Z", "12th"),
            ("2025-03-13T09:00:00.000Z", "13th"),
            ("2025-03-21T09:00:00.000Z", "21st"),
            ("2025-03-22T09:00:00.000Z", "22nd"),
        ],
    )
    def test_ordinal_suffixes(self, iso, expected_day):
        assert f"March {expected_day}," in format_for_display(iso)

    def test_midnight_is_twelve_am(self):
        assert format_for_display("2025-03-06T00:05:00.000Z").endswith("12:05 AM")

    def test_empty_and_invalid(self):
        assert format_for_display(None) == "Not specified"
        assert format_for_display("") == "Not specified"
        assert format_for_display("not a date") == "Invalid date"


class TestParseDisplayString:
    def test_parses_display_format(self):
        parts = parse_display_string("March 6th, 2025, 3:00 PM")
        assert parts.date == "2025-03-06"
        assert parts.time == "3:00 PM"

    def test_accepts_at_and_missing_suffix(self):
        parts = parse_display_string("Mar 6, 2025 at 3:00 pm")
        assert parts == ("2025-03-06", "3:00 PM")

    def test_round_trips_format_for_display(self):
        parts = parse_display_string(format_for_display("2025-11-22T10:30:00.000Z"))
        assert combine(parts.date, parts.time) == "2025-11-22T10:30:00.000Z"

    @pytest.mark.parametrize("text", ["tomorrow", "Smarch 6th, 2025, 3:00 PM", "", None])
    def test_unparseable(self, text):
        assert parse_display_string(text) == (None, None)


class TestMostFrequent:
    def test_picks_most_common(self):
        assert most_frequent(["Brooklyn", "Manhattan", "Brooklyn"]) == "Brooklyn"

    def test_ignores_empty_values(self):
        assert most_frequent([None, "", "Manhattan"]) == "Manhattan"
        assert most_frequent([None, ""]) is None
