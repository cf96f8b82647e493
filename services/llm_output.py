# services/llm_output.py
"""
Tolerant parsing of LLM output that is supposed to be a JSON object but
often arrives wrapped in prose, code fences or almost-JSON.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_SMART_QUOTES = re.compile("[‘’“”]")
_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED = re.compile(r"'([^']*)'")
_UNQUOTED_KEY = re.compile(r"([,{]\s*)([A-Za-z0-9_\-]+)\s*:")


def extract_text(raw: Any) -> str:
    """Pull the candidate text out of the common response shapes."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        if isinstance(raw.get("output"), str):
            return raw["output"]
        choices = raw.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0] or {}
            message = first.get("message") or {}
            if message.get("content"):
                return str(message["content"])
            if first.get("text"):
                return str(first["text"])
        if raw.get("content"):
            return str(raw["content"])
        if isinstance(raw.get("result"), str):
            return raw["result"]
    return json.dumps(raw, default=str)


def tolerant_fixes(candidate: str) -> str:
    s = _SMART_QUOTES.sub('"', candidate)
    s = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", s)).strip()
    s = _TRAILING_COMMA.sub(r"\1", s)
    s = _SINGLE_QUOTED.sub(lambda m: '"' + m.group(1).replace('"', '\\"') + '"', s)
    s = _UNQUOTED_KEY.sub(lambda m: f'{m.group(1)}"{m.group(2)}":', s)
    return s


def find_largest_json_object(text: str) -> str | None:
    """Return the longest balanced {...} block, ignoring braces in strings."""
    chunks: list[str] = []
    n = len(text)
    i = 0
    while i < n:
        if text[i] != "{":
            i += 1
            continue

        depth = 0
        in_string = False
        escaped = False
        end = None
        for j in range(i, n):
            ch = text[j]
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = not in_string
            elif not in_string:
                if ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        end = j
                        break

        if end is None:
            i += 1
            continue
        chunks.append(text[i:end + 1])
        i = end + 1

    if not chunks:
        return None
    return max(chunks, key=len)


def _loads_object(text: str) -> dict | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def parse_tolerant(raw: Any) -> dict | None:
    text = extract_text(raw)

    parsed = _loads_object(text.strip())
    if parsed is not None:
        return parsed

    candidate = find_largest_json_object(text)
    if candidate:
        parsed = _loads_object(tolerant_fixes(candidate))
        if parsed is None:
            parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed

    if isinstance(raw, dict):
        return raw

    logger.warning("Could not parse LLM output as JSON (%d chars)", len(text))
    return None
