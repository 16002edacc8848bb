"""Best-effort repair and parsing of JSON produced by language models.

Models routinely wrap JSON in markdown fences, use single quotes, leave
trailing commas, forget to quote keys or embed raw control characters.
``extract_and_parse`` undoes the common cases and, when nothing parses, returns
a skeletal object shaped after the field names it can still recognize, so
callers always get something navigable instead of an exception.

Everything here is pure text transformation.
"""
from __future__ import annotations

import json
import re
import string
from typing import Any

from loguru import logger

PARSE_ERROR_NOTE = "解析错误，无法获取完整数据"

_IDENT_CHARS = frozenset(string.ascii_letters + string.digits + "_$")
_VALID_ESCAPES = frozenset('"\\/bfnrt')
_HEX_DIGITS = frozenset(string.hexdigits)
_STRING_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
_OPENING_CONTEXT = ("", "{", "[", ",", ":")
_WHITESPACE = " \t\r\n"

_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_FENCE_CLOSE = re.compile(r"\r?\n?```\s*$")


def strip_code_fence(text: str) -> str:
    text = _FENCE_OPEN.sub("", text, count=1)
    text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def _replace_control_chars(text: str) -> str:
    return "".join(ch if ord(ch) >= 32 or ch in "\t\n\r" else " " for ch in text)


def _is_unicode_escape(text: str, index: int) -> bool:
    digits = text[index + 2 : index + 6]
    return text[index + 1 : index + 2] == "u" and len(digits) == 4 and set(digits) <= _HEX_DIGITS


def _next_significant(text: str, index: int) -> str:
    while index < len(text) and text[index] in _WHITESPACE:
        index += 1
    return text[index] if index < len(text) else ""


def _closes_single_quote(text: str, index: int) -> bool:
    # An apostrophe only ends a single-quoted literal when structure follows.
    return _next_significant(text, index + 1) in (",", "}", "]", ":", "")


def _repair_tokens(text: str) -> str:
    """Single string-aware pass over already control-char-free text.

    Outside strings: drops commas that precede a closing bracket, quotes bare
    keys, turns single-quoted literals into double-quoted ones and removes
    ``//`` line comments. Inside strings: escapes raw newlines/tabs and strips
    backslashes that do not start a valid JSON escape.
    """
    out: list[str] = []
    quote = ""
    prev = ""
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if quote:
            if ch == "\\":
                nxt = text[i + 1] if i + 1 < n else ""
                if quote == "'" and nxt == "'":
                    out.append("'")
                    i += 2
                    continue
                if nxt and (nxt in _VALID_ESCAPES or _is_unicode_escape(text, i)):
                    out.append(ch + nxt)
                    i += 2
                    continue
                i += 1
                continue
            if ch == quote and (quote == '"' or _closes_single_quote(text, i)):
                out.append('"')
                quote = ""
                prev = '"'
                i += 1
                continue
            if ch == '"':
                out.append('\\"')
            else:
                out.append(_STRING_CONTROL_ESCAPES.get(ch, ch))
            i += 1
            continue

        if ch == '"':
            quote = '"'
            out.append(ch)
            i += 1
            continue

        if ch == "'" and prev in _OPENING_CONTEXT:
            quote = "'"
            out.append('"')
            i += 1
            continue

        if ch == "," and _next_significant(text, i + 1) in ("]", "}"):
            i += 1
            continue

        if ch == "/" and text.startswith("//", i) and (i == 0 or text[i - 1] != ":"):
            end = text.find("\n", i)
            i = n if end < 0 else end
            continue

        if ch in _IDENT_CHARS and prev in ("{", ","):
            j = i
            while j < n and text[j] in _IDENT_CHARS:
                j += 1
            word = text[i:j]
            if _next_significant(text, j) == ":":
                out.append(f'"{word}"')
                prev = '"'
            else:
                out.append(word)
                prev = word[-1]
            i = j
            continue

        out.append(ch)
        if ch not in _WHITESPACE:
            prev = ch
        i += 1

    return "".join(out)


def _neutralize_dangling_commas(text: str) -> str:
    """Blank out any comma directly followed by a closing bracket.

    Tracks string state (respecting escapes) and bracket depth so only
    structural commas are touched.
    """
    chars = list(text)
    in_string = False
    escape = False
    depth = 0

    for i, ch in enumerate(chars):
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
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
        elif ch == "," and i + 1 < len(chars) and chars[i + 1] in "]}":
            chars[i] = " "

    if depth != 0:
        logger.debug(f"JSON repair: unbalanced brackets (depth {depth})")
    return "".join(chars)


def sanitize_json(text: str) -> str:
    """Repair common formatting mistakes in model-produced JSON text."""
    if not text:
        return "{}"
    result = _replace_control_chars(text)
    result = _repair_tokens(result)
    return _neutralize_dangling_commas(result)


def fallback_for(raw_text: str) -> dict[str, Any]:
    """Skeletal object inferred from the field names present in ``raw_text``."""
    if '"findings"' in raw_text:
        return {"findings": []}
    if '"isComplete"' in raw_text:
        return {"isComplete": False, "gaps": [PARSE_ERROR_NOTE], "additionalQueries": []}
    if '"title"' in raw_text:
        return {
            "title": "研究报告",
            "introduction": PARSE_ERROR_NOTE,
            "methodology": "",
            "findings": [],
            "conclusion": "",
            "references": [],
        }
    return {}


def extract_and_parse(content: Any) -> Any:
    """Parse model output as JSON, repairing it where possible. Never raises."""
    if not content or not isinstance(content, str):
        return {}

    sanitized = sanitize_json(strip_code_fence(content))
    try:
        return json.loads(sanitized)
    except json.JSONDecodeError as exc:
        logger.debug(f"Sanitized JSON did not parse ({exc}); retrying on the outermost object")

    start = sanitized.find("{")
    end = sanitized.rfind("}")
    if start >= 0 and end > start:
        try:
            return json.loads(sanitized[start : end + 1])
        except json.JSONDecodeError as exc:
            logger.debug(f"Outermost object did not parse either: {exc}")

    logger.warning(f"Falling back to skeletal JSON for model output: {content[:200]!r}")
    return fallback_for(content)
