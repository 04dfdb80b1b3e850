"""Slug helpers used for deal and category lookups."""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_RE = re.compile(r"[^a-z0-9-]")
_HYPHENS_RE = re.compile(r"-{2,}")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def derive_slug(name: str) -> str:
    """Return the URL slug for a display name.

    Lowercase, trim, whitespace runs become one hyphen, anything outside
    ``[a-z0-9-]`` is dropped, repeated hyphens collapse and edge hyphens go.
    """
    slug = _WHITESPACE_RE.sub("-", name.lower().strip())
    slug = _INVALID_RE.sub("", slug)
    slug = _HYPHENS_RE.sub("-", slug)
    return slug.strip("-")


def compact_slug(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value.lower())


def fuzzy_term(name: str) -> str:
    return compact_slug(name)
