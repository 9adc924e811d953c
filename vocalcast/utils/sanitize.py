"""Helpers to sanitize user-provided text before storage."""

from __future__ import annotations

import bleach

_TITLE_MAX_LENGTH: int = 255
_DESCRIPTION_MAX_LENGTH: int = 5000


def sanitize_plain_text(value: str) -> str:
    """Remove HTML tags from simple text fields such as titles and usernames."""
    return bleach.clean(value, tags=[], attributes={}, strip=True)


def clean_field(value, max_length: int | None = None) -> str | None:
    """Strip tags and whitespace from an optional form field. Empty becomes None."""
    if value is None:
        return None
    cleaned = sanitize_plain_text(str(value)).strip()
    if not cleaned:
        return None
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def clean_title(value) -> str | None:
    return clean_field(value, _TITLE_MAX_LENGTH)


def clean_description(value) -> str | None:
    return clean_field(value, _DESCRIPTION_MAX_LENGTH)


__all__ = ["sanitize_plain_text", "clean_field", "clean_title", "clean_description"]
