"""Lenient JSON recovery for free-form LLM output.

This is the degradation path: the LLM gateway asks for structured output
first and only falls back to scraping when that parse fails.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
# Balanced braces up to three levels deep
_OBJECT_RE = re.compile(r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}")


def _parses(candidate: str) -> bool:
    try:
        json.loads(candidate)
    except ValueError:
        return False
    return True


def extract_json(text: str | None) -> str:
    """Return the first parseable JSON object embedded in *text*, else ``"{}"``."""
    if not text:
        return "{}"

    block = _CODE_BLOCK_RE.search(text)
    if block and _parses(block.group(1)):
        return block.group(1)
    if block:
        logger.debug("Fenced JSON block did not parse, scanning the whole text")

    for candidate in _OBJECT_RE.findall(text):
        if _parses(candidate):
            return candidate

    logger.debug("No valid JSON found in LLM output")
    return "{}"


def loads_lenient(text: str | None) -> dict[str, Any]:
    """Parse *text* as a JSON object, scraping it out of prose if needed."""
    if not text:
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        value = json.loads(extract_json(text))
    return value if isinstance(value, dict) else {}
