"""
Robust JSON extraction from model output.

Vision models are asked for a bare JSON object but regularly wrap it in a
code fence or surround it with prose.
"""

import json
import re
from typing import Any

_LEADING_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_TRAILING_FENCE = re.compile(r"\s*```\s*$")


class JSONExtractionError(ValueError):
    """Raised when no JSON value can be recovered from the content."""


def _strip_fences(raw: str) -> str:
    return _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", raw)).strip()


def _between(raw: str, opening: str, closing: str) -> str:
    start = raw.find(opening)
    end = raw.rfind(closing)
    if start == -1 or end == -1 or end <= start:
        raise JSONExtractionError(f"no {opening}...{closing} span")
    return raw[start:end + 1]


def parse_json_from_content(content: Any) -> Any:
    """
    Parse JSON from model content using a cascade of strategies.

    1. Direct parse of the trimmed content
    2. Strip a leading/trailing ``` fence (optional language tag)
    3. Substring between the first '{' and the last '}'
    4. Substring between the first '[' and the last ']'

    Non-string input is returned unchanged.

    Raises:
        JSONExtractionError: when every strategy fails
    """
    if not isinstance(content, str):
        return content
    raw = content.strip()

    strategies = (
        lambda: raw,
        lambda: _strip_fences(raw),
        lambda: _between(raw, "{", "}"),
        lambda: _between(raw, "[", "]"),
    )
    for candidate in strategies:
        try:
            return json.loads(candidate())
        except (ValueError, JSONExtractionError):
            continue

    raise JSONExtractionError("Unable to parse JSON from model content")
