"""Utility helpers for the Shelfmind service."""

from __future__ import annotations

import json
from typing import Any


_OPENING_BRACKETS = "{["
_CLOSING_BRACKETS = "}]"


def extract_json(content: str) -> str:
    """Return the JSON-looking slice of a model response.

    The slice runs from the first ``{`` or ``[`` to the last ``}`` or ``]``
    inclusive. Bracket balance is not checked; decoding the result is left to
    the caller. When no opening bracket exists the trimmed text is returned.
    """

    text = content.strip()
    start = next(
        (index for index, char in enumerate(text) if char in _OPENING_BRACKETS),
        None,
    )
    if start is not None:
        text = text[start:]
    end = next(
        (
            index
            for index in range(len(text) - 1, -1, -1)
            if text[index] in _CLOSING_BRACKETS
        ),
        None,
    )
    if end is not None:
        text = text[: end + 1]
    return text


def json_string(value: Any) -> str:
    """Encode ``value`` as compact JSON text suitable for a single SSE line."""

    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
