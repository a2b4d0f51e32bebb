"""
Utilities for turning model output into JSON.
"""

import json
import re
from typing import Any

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"```\s*$")


def clean_json_string(raw: str) -> str:
    """Strip a BOM and a surrounding markdown code fence."""
    text = str(raw).lstrip("\ufeff").strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)
    return text.strip()


def sanitize_jsonish(raw: str) -> str:
    """Best-effort cleanup of almost-JSON.

    Handles common issues:
      - BOM and markdown code fences
      - leading/trailing prose around the outermost ``{...}`` block
      - smart quotes
      - trailing commas before ``}`` or ``]``
      - ``NaN`` / ``Infinity`` literals (replaced with ``null``)
    """
    text = clean_json_string(raw)
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]
    text = text.replace("\u201c", '"').replace("\u201d", '"')
    text = text.replace("\u2018", "'").replace("\u2019", "'")
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    text = re.sub(r"-?\bInfinity\b", "null", text)
    text = re.sub(r"\bNaN\b", "null", text)
    return text


def parse_plan_text(raw: str) -> Any:
    """Parse buffered plan output. Raises ``json.JSONDecodeError``."""
    return json.loads(clean_json_string(raw))


def parse_lenient(raw: str) -> Any:
    """Parse after :func:`sanitize_jsonish`. Raises ``json.JSONDecodeError``."""
    return json.loads(sanitize_jsonish(raw))
