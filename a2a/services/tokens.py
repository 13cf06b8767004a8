"""Approximate token counting used for agent metrics."""
from __future__ import annotations

import json
import math

# Characters-per-token ratios by content type.
_RATIOS = {
    "text": 0.25,
    "code": 0.33,
    "json": 0.28,
}

_CODE_MARKERS = ("def ", "class ", "function ", "import ", "=>", "{", "};", "```")


def _content_type(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        try:
            json.loads(stripped)
        except ValueError:
            pass
        else:
            return "json"
    if sum(marker in text for marker in _CODE_MARKERS) >= 2:
        return "code"
    return "text"


def count_tokens(text: str) -> int:
    """Estimate the number of model tokens in ``text``."""
    if not text:
        return 0
    return math.ceil(len(text) * _RATIOS[_content_type(text)])
