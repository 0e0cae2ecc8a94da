from __future__ import annotations

import json
import re
from typing import Any, Callable, List, Optional, Tuple

from .errors import MalformedJsonError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*")
_CLOSE_FENCE_RE = re.compile(r"\s*```\s*$")
_REASONING_TAG_RE = re.compile(
    r"<(?P<tag>think|thinking|thought|reasoning|reflection|scratchpad)>(.*?)</\s*(?P=tag)\s*>",
    re.IGNORECASE | re.DOTALL,
)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_CONTROL_WS_RE = re.compile(r"[\r\n\t]+")
WRAPPER_KEYS = ("response", "answer", "result", "output", "data", "payload", "content")


def strip_reasoning_sections(text: str) -> str:
    """Drop <think>-style reasoning wrappers some models emit before the JSON."""
    cleaned = text
    while True:
        updated = _REASONING_TAG_RE.sub("", cleaned)
        if updated == cleaned:
            return cleaned
        cleaned = updated


_CLOSERS = {"{": "}", "[": "]"}


def _top_level_spans(text: str) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` of every balanced top-level ``{...}``/``[...]`` block, in order.

    Single pass: an opener that never closes ends the scan, a mismatched closer
    drops the current candidate.
    """
    spans: List[Tuple[int, int]] = []
    stack: List[str] = []
    start = -1
    in_string = False
    escape = False
    for idx, ch in enumerate(text):
        if not stack:
            if ch in _CLOSERS:
                stack.append(_CLOSERS[ch])
                start = idx
            continue
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if ch != stack[-1]:
                stack.clear()
                continue
            stack.pop()
            if not stack:
                spans.append((start, idx))
    return spans


def _sibling_runs(text: str, spans: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    # Blocks separated only by a comma belong together ("{...},{...}")
    runs: List[Tuple[int, int]] = []
    for start, end in spans:
        if runs and text[runs[-1][1] + 1 : start].strip() == ",":
            runs[-1] = (runs[-1][0], end)
        else:
            runs.append((start, end))
    return runs


def _holds_record(span: str) -> bool:
    for candidate in (span, f"[{span}]"):
        try:
            data = json.loads(_TRAILING_COMMA_RE.sub(r"\1", _CONTROL_WS_RE.sub(" ", candidate)))
        except (json.JSONDecodeError, RecursionError):
            continue
        if isinstance(data, dict):
            return True
        if isinstance(data, list) and any(isinstance(item, dict) for item in data):
            return True
    return False


def strip_markdown_json(text: str) -> str:
    """Remove Markdown fences and discard text outside the JSON block.

    The first block that parses to an object (or a list of objects) wins, so
    bracketed prose such as ``question [1]:`` ahead of the payload is skipped.
    Without such a block, the span from the first opener to its last closer is
    returned for the caller to repair.
    """

    if text is None:
        raise ValueError("Input text must not be None")
    trimmed = text.strip()
    if not trimmed:
        raise ValueError("Input text must not be empty")

    trimmed = strip_reasoning_sections(trimmed)

    match = _FENCE_RE.search(trimmed)
    if match:
        trimmed = match.group(1).strip()
    else:
        # Unterminated fence: the model stopped before closing it
        trimmed = _CLOSE_FENCE_RE.sub("", _OPEN_FENCE_RE.sub("", trimmed))

    for start, end in _sibling_runs(trimmed, _top_level_spans(trimmed)):
        if _holds_record(trimmed[start : end + 1]):
            return trimmed[start : end + 1]

    obj_idx = trimmed.find("{")
    arr_idx = trimmed.find("[")
    if obj_idx == -1 and arr_idx == -1:
        raise ValueError("No JSON object/array found in text")
    if arr_idx != -1 and (obj_idx == -1 or arr_idx < obj_idx):
        start_idx, end_char = arr_idx, "]"
    else:
        start_idx, end_char = obj_idx, "}"
    end_idx = trimmed.rfind(end_char)
    if end_idx < start_idx:
        # Truncated output: keep everything from the opening bracket
        return trimmed[start_idx:]
    return trimmed[start_idx : end_idx + 1]


def clean_json_response(text: str) -> str:
    """Strip common LLM formatting noise so the payload has a chance to parse.

    Handles reasoning tags, code fences, prose around the JSON block, stray
    trailing commas and irregular whitespace. Never raises; returns the best
    candidate text.
    """
    if not text:
        return ""
    try:
        candidate = strip_markdown_json(text)
    except ValueError:
        candidate = strip_reasoning_sections(text.strip())
        candidate = _CLOSE_FENCE_RE.sub("", _OPEN_FENCE_RE.sub("", candidate))
    candidate = _CONTROL_WS_RE.sub(" ", candidate)
    candidate = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    return candidate.strip()


def parse_json(text: str) -> Any:
    """``json.loads`` that reports failures as :class:`MalformedJsonError`."""
    if text is None:
        raise MalformedJsonError("JSON parsing failed: input is None")
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, RecursionError) as exc:
        raise MalformedJsonError(f"JSON parsing failed: {exc}") from exc


def _maybe_parse_json_string(value: Any) -> Any:
    if isinstance(value, str):
        candidate = value.strip()
        if candidate.startswith("{") or candidate.startswith("["):
            try:
                return json.loads(candidate)
            except (json.JSONDecodeError, RecursionError):
                return value
    return value


def unwrap_payload(data: Any, looks_like_record: Optional[Callable[[Any], bool]] = None) -> Any:
    """Peel ``{"result": {...}}``-style envelopes and JSON-in-a-string wrappers."""
    current = data
    for _ in range(8):
        if isinstance(current, str):
            parsed = _maybe_parse_json_string(current)
            if parsed is current:
                break
            current = parsed
            continue
        if not isinstance(current, dict):
            break
        if looks_like_record is not None and looks_like_record(current):
            break
        next_data: Any = None
        for key in WRAPPER_KEYS:
            if key not in current:
                continue
            candidate = _maybe_parse_json_string(current[key])
            if isinstance(candidate, (dict, list)):
                next_data = candidate
                break
        if next_data is None:
            break
        current = next_data
    return current


__all__ = [
    "WRAPPER_KEYS",
    "strip_reasoning_sections",
    "strip_markdown_json",
    "clean_json_response",
    "parse_json",
    "unwrap_payload",
]
