"""Validation and resolution of user-supplied archive paths."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, List


class InvalidPathError(ValueError):
    """Raised when a requested archive path fails validation."""


# Latin and Cyrillic letters, digits, whitespace and a fixed punctuation set.
_ALLOWED_PATH = re.compile(r"^[A-Za-zА-Яа-яЁё0-9\s,.\-_/&()'$\[\]{}@#~%^*+=<>;!]+$")
_FORBIDDEN_FRAGMENTS = ("..", ":", "\\", "\0")


def validate_archive_path(raw: str) -> bool:
    """Return ``True`` if *raw* is an acceptable relative archive path.

    The empty string is valid and denotes the archive root.
    """

    if not raw:
        return True
    if raw.startswith("/"):
        return False
    if any(fragment in raw for fragment in _FORBIDDEN_FRAGMENTS):
        return False
    return bool(_ALLOWED_PATH.match(raw))


@dataclass(frozen=True)
class ArchivePath:
    """A validated folder location inside the archive root."""

    root: Path
    relative: str
    absolute: Path

    @property
    def parts(self) -> List[str]:
        return [part for part in self.relative.split("/") if part]

    @property
    def name(self) -> str:
        return self.absolute.name if self.relative else ""

    @property
    def is_root(self) -> bool:
        return not self.relative

    def breadcrumb(self) -> List[Dict[str, str]]:
        parts = self.parts
        return [
            {"name": part, "path": "/".join(parts[: index + 1])}
            for index, part in enumerate(parts)
        ]

    def join(self, name: str) -> str:
        """Return the relative path of the child entry *name*."""

        return f"{self.relative}/{name}" if self.relative else name


def resolve_archive_path(root: Path, raw: str | None, *, required: bool = False) -> ArchivePath:
    """Validate *raw* and resolve it against *root*.

    Raises :class:`InvalidPathError` for traversal attempts, illegal characters,
    or an empty value when ``required`` is set. The joined result is checked
    against the resolved root even after character filtering.
    """

    value = raw or ""
    if not value.startswith("/"):
        value = value.rstrip("/")
    if not value:
        if required:
            raise InvalidPathError("A folder path is required")
    elif not validate_archive_path(value):
        raise InvalidPathError(f"Invalid archive path: {raw!r}")

    root_path = root.resolve()
    candidate = (root_path / value).resolve() if value else root_path
    try:
        candidate.relative_to(root_path)
    except ValueError as error:
        raise InvalidPathError(f"Archive path escapes the archive root: {raw!r}") from error

    relative = PurePosixPath(value).as_posix() if value else ""
    if relative == ".":
        relative = ""
    return ArchivePath(root=root_path, relative=relative, absolute=candidate)


def entry_basename(name: str) -> str:
    """Reduce a client-supplied entry name to its final path component."""

    cleaned = PurePosixPath(name.replace("\\", "/")).name
    if not cleaned or cleaned in {".", ".."} or "\0" in cleaned:
        raise InvalidPathError(f"Invalid entry name: {name!r}")
    return cleaned


__all__ = [
    "ArchivePath",
    "InvalidPathError",
    "entry_basename",
    "resolve_archive_path",
    "validate_archive_path",
]
