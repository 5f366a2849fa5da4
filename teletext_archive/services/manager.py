"""File manager operations inside the archive root."""

from __future__ import annotations

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .cards import static_url
from .events import emit_file_event
from .naming import ALLOWED_UPLOAD_EXTENSIONS, is_allowed_upload, sanitize_entry_name
from .paths import ArchivePath, InvalidPathError, entry_basename
from .retry import rename_with_retry
from .thumbnails import ThumbnailStore

LOGGER = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ENTRY_TYPES = ("file", "folder")


class ManagerError(ValueError):
    """Raised for malformed file manager requests."""


@dataclass
class UploadResult:
    saved: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def _require_type(entry_type: str) -> None:
    if entry_type not in ENTRY_TYPES:
        raise ManagerError(f"Unknown entry type: {entry_type!r}")


def _require_directory(location: ArchivePath) -> Path:
    folder = location.absolute
    if not folder.exists():
        raise FileNotFoundError(f"Folder not found: {location.relative or '/'}")
    if not folder.is_dir():
        raise NotADirectoryError(f"Not a folder: {location.relative}")
    return folder


class FileManager:
    """Mutating operations on the archive tree.

    Each change drops the affected paths from the thumbnail cache so the
    static route never serves bytes for an entry that has moved or vanished.
    """

    def __init__(self, store: ThumbnailStore, *, max_upload_bytes: int = MAX_UPLOAD_BYTES) -> None:
        self._store = store
        self.max_upload_bytes = max_upload_bytes

    def list_entries(self, location: ArchivePath) -> Dict[str, Any]:
        folder = _require_directory(location)
        folders: List[Dict[str, Any]] = []
        files: List[Dict[str, Any]] = []
        with os.scandir(folder) as entries:
            for entry in entries:
                if entry.is_dir():
                    with os.scandir(entry.path) as children:
                        is_empty = next(iter(children), None) is None
                    folders.append(
                        {"name": entry.name, "path": location.join(entry.name), "is_empty": is_empty}
                    )
                elif entry.is_file():
                    files.append(
                        {
                            "name": entry.name,
                            "size": entry.stat().st_size,
                            "url": static_url(location.relative, entry.name),
                            "ext": PurePath(entry.name).suffix.lower(),
                        }
                    )
        folders.sort(key=lambda item: item["name"])
        files.sort(key=lambda item: item["name"])
        return {
            "current_path": location.relative,
            "breadcrumb": location.breadcrumb(),
            "folders": folders,
            "files": files,
        }

    def create_folder(self, location: ArchivePath, name: str) -> str:
        if not name or not name.strip():
            raise ManagerError("Folder name is required")
        parent = _require_directory(location)
        clean_name = sanitize_entry_name(name)
        if clean_name in {".", ".."} or set(clean_name) <= {"."}:
            raise InvalidPathError(f"Invalid folder name: {name!r}")
        target = parent / clean_name
        if target.exists():
            raise FileExistsError(f"Folder '{clean_name}' already exists")
        target.mkdir(parents=True)
        emit_file_event("FOLDER_CREATED", payload={"path": location.join(clean_name)})
        return clean_name

    def delete_entry(self, location: ArchivePath, name: str, entry_type: str) -> None:
        _require_type(entry_type)
        clean_name = entry_basename(name)
        target = location.absolute / clean_name
        if not target.exists():
            raise FileNotFoundError(f"Entry not found: {clean_name}")

        if entry_type == "file":
            if target.is_dir():
                raise IsADirectoryError(f"'{clean_name}' is a folder")
            target.unlink()
            self._store.invalidate(target)
            emit_file_event("FILE_DELETED", payload={"path": location.join(clean_name)})
        else:
            if not target.is_dir():
                raise NotADirectoryError(f"'{clean_name}' is not a folder")
            shutil.rmtree(target)
            self._store.invalidate_tree(target)
            emit_file_event("FOLDER_DELETED", payload={"path": location.join(clean_name)})

    def rename_entry(self, location: ArchivePath, old_name: str, new_name: str, entry_type: str) -> str:
        _require_type(entry_type)
        clean_old = entry_basename(old_name)
        clean_new = entry_basename(new_name)
        source = location.absolute / clean_old
        target = location.absolute / clean_new
        if not source.exists():
            raise FileNotFoundError(f"Entry not found: {clean_old}")
        if target.exists():
            raise FileExistsError(f"An entry named '{clean_new}' already exists")

        started = time.perf_counter()
        rename_with_retry(source, target)
        self._store.invalidate_tree(source)
        emit_file_event(
            "ITEM_RENAMED",
            payload={"type": entry_type, "source": location.join(clean_old), "target": location.join(clean_new)},
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return clean_new

    def move_entry(
        self,
        location: ArchivePath,
        name: str,
        destination: ArchivePath,
        entry_type: str,
    ) -> str:
        _require_type(entry_type)
        clean_name = entry_basename(name)
        source = location.absolute / clean_name
        if not source.exists():
            raise FileNotFoundError(f"Entry not found: {clean_name}")
        if not destination.absolute.is_dir():
            raise FileNotFoundError(f"Destination folder not found: {destination.relative or '/'}")
        target = destination.absolute / clean_name
        if target.exists():
            raise FileExistsError(f"'{clean_name}' already exists in the destination folder")
        if source.is_dir() and (destination.absolute == source or source in destination.absolute.parents):
            raise ManagerError("A folder cannot be moved into itself")

        os.rename(source, target)
        self._store.invalidate_tree(source)
        emit_file_event(
            "ITEM_MOVED",
            payload={"type": entry_type, "source": location.join(clean_name), "target": destination.join(clean_name)},
        )
        return destination.join(clean_name)

    def upload_files(self, location: ArchivePath, files: Iterable[Tuple[str, bytes]]) -> UploadResult:
        """Store uploaded ``(filename, data)`` pairs; each file fails on its own."""

        folder = _require_directory(location)
        result = UploadResult()
        received = False
        for original_name, data in files:
            received = True
            error = self._upload_error(original_name, data)
            if error is not None:
                result.errors.append(f"{original_name}: {error}")
                continue
            target_name = sanitize_entry_name(PurePath(original_name.replace("\\", "/")).name)
            target = folder / target_name
            try:
                target.write_bytes(data)
            except OSError as write_error:
                LOGGER.warning("Upload of %s failed: %s", target_name, write_error)
                result.errors.append(f"{original_name}: {write_error.strerror or write_error}")
                continue
            self._store.invalidate(target)
            result.saved.append(target_name)
            emit_file_event("FILE_UPLOADED", payload={"path": location.join(target_name), "bytes": len(data)})
        if not received:
            raise ManagerError("No files to upload")
        return result

    def _upload_error(self, original_name: str, data: bytes) -> Optional[str]:
        base = PurePath(original_name.replace("\\", "/")).name
        if not base or ".." in original_name or original_name.startswith("/"):
            return "Invalid file name"
        if not is_allowed_upload(base):
            allowed = ", ".join(sorted(ALLOWED_UPLOAD_EXTENSIONS))
            return f"File type {PurePath(base).suffix.lower() or '(none)'} is not allowed. Allowed: {allowed}"
        if len(data) > self.max_upload_bytes:
            return f"File exceeds the {self.max_upload_bytes // (1024 * 1024)} MB limit"
        return None


__all__ = ["ENTRY_TYPES", "FileManager", "MAX_UPLOAD_BYTES", "ManagerError", "UploadResult"]
