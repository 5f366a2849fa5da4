"""Filesystem-backed thumbnail persistence with an optional byte cache."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .inventory import PageRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_CACHE_ENTRIES = 512


class PersistError(OSError):
    """Raised when a thumbnail cannot be written to disk."""


@dataclass
class _CachedThumbnail:
    mtime_ns: int
    size: int
    data: bytes


class ThumbnailStore:
    """Decide what needs rendering and write finished thumbnails.

    Presence of the PNG is the only freshness signal. The in-memory cache only
    shadows reads for the serving layer; an entry is replaced on every
    :meth:`persist` and re-validated against the file's ``mtime_ns`` and size
    on read, so an explicit regeneration is never served stale.
    """

    def __init__(self, *, cache_entries: int = DEFAULT_CACHE_ENTRIES) -> None:
        self._cache_entries = max(0, cache_entries)
        self._cache: "OrderedDict[Path, _CachedThumbnail]" = OrderedDict()
        self._lock = threading.Lock()

    def needs_generation(self, record: PageRecord) -> bool:
        return not record.thumbnail_path.is_file()

    def persist(self, target: Path, data: bytes) -> None:
        """Atomically replace *target* with *data*."""

        descriptor: Optional[int] = None
        temp_name: Optional[str] = None
        try:
            descriptor, temp_name = tempfile.mkstemp(
                prefix=f".{target.stem}-", suffix=".tmp", dir=target.parent
            )
            with os.fdopen(descriptor, "wb") as handle:
                descriptor = None
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            # mkstemp creates 0600 files; thumbnails are public static assets.
            os.chmod(temp_name, 0o644)
            os.replace(temp_name, target)
            temp_name = None
            stat = target.stat()
        except OSError as error:
            raise PersistError(
                error.errno, f"Could not write {target.name}: {error.strerror or error}"
            ) from error
        finally:
            if descriptor is not None:
                os.close(descriptor)
            if temp_name is not None:
                try:
                    os.unlink(temp_name)
                except OSError as cleanup_error:
                    LOGGER.warning("Could not remove temporary file %s: %s", temp_name, cleanup_error)

        self._remember(target, _CachedThumbnail(stat.st_mtime_ns, stat.st_size, data))

    def read_bytes(self, path: Path) -> bytes:
        """Return the thumbnail bytes, served from memory while the file is unchanged."""

        stat = path.stat()
        with self._lock:
            cached = self._cache.get(path)
            if (
                cached is not None
                and cached.mtime_ns == stat.st_mtime_ns
                and cached.size == stat.st_size
            ):
                self._cache.move_to_end(path)
                return cached.data
        data = path.read_bytes()
        self._remember(path, _CachedThumbnail(stat.st_mtime_ns, stat.st_size, data))
        return data

    def invalidate(self, path: Path) -> None:
        with self._lock:
            self._cache.pop(path, None)

    def invalidate_tree(self, folder: Path) -> None:
        """Drop every cached entry at or below *folder*."""

        with self._lock:
            stale = [
                path
                for path in self._cache
                if path == folder or folder in path.parents
            ]
            for path in stale:
                del self._cache[path]

    def cached_paths(self) -> list[Path]:
        with self._lock:
            return list(self._cache)

    def _remember(self, path: Path, entry: _CachedThumbnail) -> None:
        if self._cache_entries == 0:
            return
        with self._lock:
            self._cache[path] = entry
            self._cache.move_to_end(path)
            while len(self._cache) > self._cache_entries:
                self._cache.popitem(last=False)


__all__ = ["PersistError", "ThumbnailStore"]
