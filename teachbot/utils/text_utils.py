"""
Text helpers shared by keyword scoring and confidence estimation.
"""

import re
from typing import Iterable, List

_WORD_RE = re.compile(r"[a-z0-9']+")


def tokenize(text: str, min_length: int = 3) -> List[str]:
    """Lower-cased words of at least ``min_length`` characters, in order."""
    return [word for word in _WORD_RE.findall((text or '').lower()) if len(word) >= min_length]


def matches_keyword(word: str, keywords: Iterable[str]) -> bool:
    """True if ``word`` and any keyword contain one another."""
    for keyword in keywords:
        keyword = keyword.lower().strip()
        if keyword and (word in keyword or keyword in word):
            return True
    return False


def contains_text(word: str, text: str) -> bool:
    return bool(text) and word in text.lower()
