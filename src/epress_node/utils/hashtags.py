# src/epress_node/utils/hashtags.py
"""Hashtag extraction for publication text."""

from __future__ import annotations

import re

# \w is Unicode-aware for str patterns: letters and digits in any script.
_HASHTAG_RE = re.compile(r"#([\w-]+)")


def normalize_hashtag(value: str) -> str:
    """Lowercase a tag and drop a leading ``#``."""
    return value.strip().lstrip("#").lower()


def extract_hashtags(text: str | None) -> list[str]:
    """Return the distinct lowercase tags in ``text`` in order of appearance."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in _HASHTAG_RE.finditer(text):
        seen.setdefault(match.group(1).lower(), None)
    return list(seen)
