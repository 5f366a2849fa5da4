"""Folder card metadata stored as sidecar files inside each folder."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from .events import emit_file_event
from .naming import logo_target_name
from .paths import ArchivePath, InvalidPathError, validate_archive_path
from .retry import rename_with_retry

LOGGER = logging.getLogger(__name__)

TITLE_FILE = "title.txt"
DESCRIPTION_FILE = "description.txt"
LOGO_FILES = ("logo.svg", "logo.png")
STATIC_PREFIX = "/teletext"


class CardError(ValueError):
    """Raised when submitted card data is unusable."""


def static_url(relative: str, name: Optional[str] = None) -> str:
    """Return the public URL of an archive file."""

    parts = [part for part in relative.split("/") if part]
    if name:
        parts.append(name)
    return "/".join([STATIC_PREFIX, *(quote(part) for part in parts)])


@dataclass(frozen=True)
class FolderCard:
    name: str
    display_name: str
    description: str
    logo_name: Optional[str]

    @property
    def has_logo(self) -> bool:
        return self.logo_name is not None

    def logo_url(self, relative: str) -> Optional[str]:
        if self.logo_name is None:
            return None
        return static_url(relative, self.logo_name)

    def to_dict(self, relative: str) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "logo_url": self.logo_url(relative),
        }


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return ""


def find_logo(folder: Path) -> Optional[str]:
    """Return the logo filename in *folder*; SVG wins over PNG."""

    for name in LOGO_FILES:
        if (folder / name).is_file():
            return name
    return None


def read_card(folder: Path) -> FolderCard:
    title = _read_text(folder / TITLE_FILE)
    return FolderCard(
        name=folder.name,
        display_name=title or folder.name,
        description=_read_text(folder / DESCRIPTION_FILE),
        logo_name=find_logo(folder),
    )


def save_card(
    target: ArchivePath,
    *,
    title: str,
    description: str = "",
    logo: Optional[Tuple[str, bytes]] = None,
) -> ArchivePath:
    """Persist card metadata for *target* and return its final location.

    A title that differs from the folder name renames the folder, retrying
    briefly while another process holds it open. An empty description
    removes ``description.txt``. *logo* is ``(original_filename, data)``.
    """

    if target.is_root:
        raise CardError("The archive root has no card")
    new_title = title.strip()
    new_description = description.strip()
    if not new_title:
        raise CardError("Title is required")

    folder = target.absolute
    if not folder.is_dir():
        raise FileNotFoundError(f"Folder not found: {target.relative}")

    final = target
    if new_title != folder.name:
        if "/" in new_title or not validate_archive_path(new_title):
            raise InvalidPathError(f"Title cannot be used as a folder name: {new_title!r}")
        renamed = folder.parent / new_title
        if renamed.exists():
            raise FileExistsError(f"Folder '{new_title}' already exists")
        rename_with_retry(folder, renamed)
        parent = "/".join(target.parts[:-1])
        relative = f"{parent}/{new_title}" if parent else new_title
        final = ArchivePath(root=target.root, relative=relative, absolute=renamed)
        emit_file_event(
            "FOLDER_RENAMED",
            payload={"source": target.relative, "target": final.relative},
        )

    (final.absolute / TITLE_FILE).write_text(new_title, encoding="utf-8")

    description_path = final.absolute / DESCRIPTION_FILE
    if new_description:
        description_path.write_text(new_description, encoding="utf-8")
    elif description_path.exists():
        description_path.unlink()

    if logo is not None:
        filename, data = logo
        logo_name = logo_target_name(filename)
        for stale in LOGO_FILES:
            if stale != logo_name and (final.absolute / stale).exists():
                os.remove(final.absolute / stale)
        (final.absolute / logo_name).write_bytes(data)
        emit_file_event("LOGO_UPLOADED", payload={"folder": final.relative, "logo": logo_name})

    emit_file_event(
        "CARD_SAVED",
        payload={"folder": final.relative, "title": new_title, "description": new_description},
    )
    return final


def delete_logo(folder: Path) -> List[str]:
    """Remove every logo file from *folder* and return the deleted names."""

    deleted: List[str] = []
    for name in LOGO_FILES:
        path = folder / name
        if path.is_file():
            path.unlink()
            deleted.append(name)
    if deleted:
        emit_file_event("LOGO_DELETED", payload={"folder": folder, "files": deleted})
    return deleted


__all__ = [
    "CardError",
    "DESCRIPTION_FILE",
    "FolderCard",
    "LOGO_FILES",
    "TITLE_FILE",
    "delete_logo",
    "find_logo",
    "read_card",
    "save_card",
    "static_url",
]
