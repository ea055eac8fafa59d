"""Best-effort JSON extraction from LLM responses.

Providers are asked for raw JSON but may wrap it in prose or a Markdown code
fence. Each strategy is a pure ``text -> value | None`` function; they are
tried in order by parse_ai_json.
"""

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from nfe_crawler.shared.errors import AIParseError

logger = logging.getLogger(__name__)

RESPONSE_PREVIEW_CHARS = 200

KNOWN_PREFIXES = (
    "Here is the JSON:",
    "Here's the JSON:",
    "JSON:",
    "Result:",
    "Output:",
    "Response:",
)

FENCE_PATTERN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
OBJECT_SPAN_PATTERN = re.compile(r"\{[\s\S]*\}")
ARRAY_SPAN_PATTERN = re.compile(r"\[[\s\S]*\]")


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def parse_direct(text: str) -> Any | None:
    """Parse the whole response as JSON."""
    return _loads(text.strip())


def parse_without_fences(text: str) -> Any | None:
    """Remove Markdown code fences, then parse."""
    if "```" not in text:
        return None
    return _loads(FENCE_PATTERN.sub("", text).strip())


def parse_braced_span(text: str) -> Any | None:
    """Parse the widest ``{...}`` span, then the widest ``[...]`` span."""
    for pattern in (OBJECT_SPAN_PATTERN, ARRAY_SPAN_PATTERN):
        match = pattern.search(text)
        if match:
            parsed = _loads(match.group(0))
            if parsed is not None:
                return parsed
    return None


def parse_after_prefix(text: str) -> Any | None:
    """Parse what follows a "Here is the JSON:"-style lead-in."""
    for prefix in KNOWN_PREFIXES:
        index = text.find(prefix)
        if index == -1:
            continue
        remainder = text[index + len(prefix) :].strip()
        parsed = _loads(remainder)
        if parsed is None:
            parsed = parse_braced_span(remainder)
        if parsed is not None:
            return parsed
    return None


PARSING_STRATEGIES: tuple[Callable[[str], Any | None], ...] = (
    parse_direct,
    parse_without_fences,
    parse_braced_span,
    parse_after_prefix,
)


def parse_ai_json(text: str) -> Any:
    """Parse an LLM response with each strategy in turn.

    Args:
        text: Raw response text

    Returns:
        Parsed JSON value (object or array)

    Raises:
        AIParseError: No strategy produced JSON. Details carry only the length
            and the first/last 200 characters of the response.
    """
    for strategy in PARSING_STRATEGIES:
        parsed = strategy(text)
        if parsed is not None:
            if strategy is not parse_direct:
                logger.info(f"Parsed AI response with fallback strategy: {strategy.__name__}")
            return parsed

    logger.error(f"Failed to parse AI response as JSON ({len(text)} chars)")
    raise AIParseError(
        "Could not extract valid JSON from response",
        response_length=len(text),
        first_200=text[:RESPONSE_PREVIEW_CHARS],
        last_200=text[-RESPONSE_PREVIEW_CHARS:],
    )
