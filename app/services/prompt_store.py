"""Prompt templates for every model-backed stage, kept in ``prompts/prompts.json``.

Nested objects group prompts per stage (``planning.system``); top-level
strings are shared fragments that any template can reference by name.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

_cache: tuple[int, dict[str, Any]] | None = None


def _catalog() -> dict[str, Any]:
    """Parsed catalog, re-read whenever the file's mtime changes."""
    global _cache
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _cache is not None and _cache[0] == mtime_ns:
        return _cache[1]

    catalog = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(catalog, dict):
        raise ValueError(f"Prompt catalog must be a JSON object: {PROMPTS_PATH}")
    _cache = (mtime_ns, catalog)
    return catalog


def _lookup(catalog: dict[str, Any], key: str) -> str:
    node: Any = catalog
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    catalog = _catalog()
    template = Template(_lookup(catalog, key))
    fragments = {name: text for name, text in catalog.items() if isinstance(text, str)}
    try:
        return template.substitute(fragments, **values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    global _cache
    _cache = None
