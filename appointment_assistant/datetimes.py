"""Date/time normalisation between the chat, the LLM and Salesforce.

Three representations are in play:

* loose human/LLM time text: ``"2:30 PM"``, ``"9am"``, ``"14:00"``
* the Salesforce ``Appointment_Time__c`` value: a UTC instant such as
  ``"2025-03-06T15:00:00.000Z"``
* the display string shown in chat: ``"March 6th, 2025, 3:00 PM"``

Every helper here is pure and returns ``None`` (or a placeholder string)
on malformed input instead of raising.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import NamedTuple

logger = logging.getLogger(__name__)

_ISO_INSTANT_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T(\d{2}:\d{2}:\d{2})\.\d{3}Z$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LOOSE_TIME_RE = re.compile(r"^(\d{1,2}):?(\d{2})?\s*(AM|PM)?$", re.IGNORECASE)
_DISPLAY_RE = re.compile(
    r"([A-Za-z]+) (\d{1,2})(?:st|nd|rd|th)?, (\d{4}),? (?:at )?(\d{1,2}:\d{2} [AP]M)",
    re.IGNORECASE,
)


class DisplayParts(NamedTuple):
    """Result of :func:`parse_display_string`."""

    date: str | None
    time: str | None


def to_24_hour(text: str | None) -> str | None:
    """Convert loose time text to ``HH:MM:SS``.

    A full ISO instant is accepted and its time-of-day portion returned.
    Hours above 23 or minutes above 59 are rejected before any AM/PM
    modifier is applied; with a modifier the hour must be 1–12.
    """
    if not text:
        return None

    iso_match = _ISO_INSTANT_RE.match(text)
    if iso_match:
        return iso_match.group(1)

    match = _LOOSE_TIME_RE.match(text.strip())
    if not match:
        logger.debug("Unrecognised time format: %r", text)
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2)) if match.group(2) else 0
    modifier = match.group(3)

    if hours > 23 or minutes > 59:
        return None

    if modifier:
        if not 1 <= hours <= 12:
            return None
        modifier = modifier.upper()
        if modifier == "PM" and hours != 12:
            hours += 12
        elif modifier == "AM" and hours == 12:
            hours = 0

    return f"{hours:02d}:{minutes:02d}:00"


def combine(date_iso: str | None, time_text: str | None) -> str | None:
    """Combine ``YYYY-MM-DD`` and loose time text into a UTC instant.

    >>> combine("2025-03-06", "3:00 PM")
    '2025-03-06T15:00:00.000Z'
    """
    if not date_iso or not time_text:
        return None

    if _ISO_INSTANT_RE.match(time_text):
        return time_text

    if not _ISO_DATE_RE.match(date_iso):
        logger.debug("Invalid date format, expected YYYY-MM-DD: %r", date_iso)
        return None
    try:
        datetime.strptime(date_iso, "%Y-%m-%d")
    except ValueError:
        return None

    time_24 = to_24_hour(time_text)
    if not time_24:
        return None

    return f"{date_iso}T{time_24}.000Z"


def _ordinal_suffix(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


def _parse_instant(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_for_display(iso_value: str | None) -> str:
    """Render an ISO instant (or date) as ``"March 6th, 2025, 3:00 PM"`` in UTC."""
    if not iso_value:
        return "Not specified"

    dt = _parse_instant(iso_value)
    if dt is None:
        return "Invalid date"

    hour_12 = dt.hour % 12 or 12
    meridiem = "AM" if dt.hour < 12 else "PM"
    return (
        f"{dt:%B} {dt.day}{_ordinal_suffix(dt.day)}, {dt.year}, "
        f"{hour_12}:{dt.minute:02d} {meridiem}"
    )


def parse_display_string(text: str | None) -> DisplayParts:
    """Parse a display string back into an ISO date and the raw time text."""
    if not text:
        return DisplayParts(None, None)

    match = _DISPLAY_RE.search(text)
    if not match:
        return DisplayParts(None, None)

    month, day, year, time_part = match.groups()
    for fmt in ("%B %d %Y", "%b %d %Y"):
        try:
            parsed = datetime.strptime(f"{month} {day} {year}", fmt)
            break
        except ValueError:
            continue
    else:
        logger.debug("Invalid date part in display string: %r", text)
        return DisplayParts(None, None)

    return DisplayParts(parsed.strftime("%Y-%m-%d"), time_part.upper())


def most_frequent(values: Iterable[str | None]) -> str | None:
    """Return the most common non-empty value; ties go to the first seen."""
    counts = Counter(v for v in values if v)
    if not counts:
        return None
    return counts.most_common(1)[0][0]
