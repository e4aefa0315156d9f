"""
URL slugs for public seller pages.
"""

import re
from collections.abc import Iterable

FALLBACK_SLUG = "seller"

_NON_WORD = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s_-]+")


def generate_slug(name: str) -> str:
    """
    "Alpine Adventures & Co." -> "alpine-adventures-co"

    Falls back to "seller" when nothing usable is left.
    """
    slug = _NON_WORD.sub("", (name or "").lower().strip())
    slug = _SEPARATORS.sub("-", slug).strip("-")
    return slug or FALLBACK_SLUG


def generate_unique_slug(name: str, existing: Iterable[str]) -> str:
    """Base slug, or the first free "<base>-2", "<base>-3", ... among ``existing``."""
    taken = set(existing)
    base = generate_slug(name)
    if base not in taken:
        return base

    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"
