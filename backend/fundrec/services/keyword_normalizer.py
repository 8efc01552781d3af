"""Keyword normalization for preference keys and program keyword matching."""

import re
from typing import Final

# Generic domain suffixes ("technology", "industry", "field") that
# otherwise split one interest into several keys. Korean and English forms.
KEYWORD_SUFFIXES: Final[list[str]] = [
    "기술",
    "산업",
    "분야",
    "technology",
    "technologies",
    "industry",
    "industries",
    "sector",
    "field",
]

_WHITESPACE = re.compile(r"\s+")
_SUFFIX_PATTERN = re.compile("(?:" + "|".join(re.escape(s) for s in KEYWORD_SUFFIXES) + ")$")


def normalize_keyword(keyword: str | None) -> str:
    """
    Normalize a keyword to its matching key.

    Trims, case-folds, removes whitespace, then strips one trailing domain
    suffix. A keyword that is nothing but a suffix is kept as is.
    """
    if not keyword:
        return ""

    text = _WHITESPACE.sub("", keyword.strip().casefold())
    stripped = _SUFFIX_PATTERN.sub("", text)
    return stripped or text
