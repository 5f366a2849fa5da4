"""Utility helpers for consistent archive entry naming."""

from __future__ import annotations

import re
from pathlib import PurePath

__all__ = [
    "ALLOWED_UPLOAD_EXTENSIONS",
    "is_allowed_upload",
    "logo_target_name",
    "sanitize_entry_name",
]


ALLOWED_UPLOAD_EXTENSIONS = frozenset(
    {
        ".html",
        ".png",
        ".svg",
        ".txt",
        ".css",
        ".js",
        ".json",
        ".jpg",
        ".jpeg",
        ".gif",
        ".webp",
        ".ttf",
    }
)

_DISALLOWED_CHARACTERS = re.compile(r"[^a-zA-Zа-яА-ЯёЁ0-9\s._\-()]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_entry_name(value: str) -> str:
    """Return *value* with unsupported characters and whitespace replaced by ``_``.

    Used for uploaded files and newly created folders, so names stay
    addressable through the archive's URL scheme.
    """

    cleaned = _DISALLOWED_CHARACTERS.sub("_", value.strip())
    cleaned = _WHITESPACE.sub("_", cleaned)
    return cleaned


def is_allowed_upload(filename: str) -> bool:
    """Return ``True`` when *filename* carries a whitelisted extension."""

    return PurePath(filename).suffix.lower() in ALLOWED_UPLOAD_EXTENSIONS


def logo_target_name(filename: str) -> str:
    """SVG uploads keep their format; everything else is stored as ``logo.png``."""

    return "logo.svg" if filename.lower().endswith(".svg") else "logo.png"
