"""Configuration loading utilities for the Teletext Archive application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".teletext_archive_write_check"
ARCHIVE_ROOT_ENV = "TELETEXT_ARCHIVE_ROOT"

DEFAULT_BROWSER_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
)


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the flag reports whether a fallback
    was used. When nothing can be prepared the original ``preferred`` path is
    returned so callers fail loudly later on.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class ThumbnailSettings:
    """Tunables for the thumbnail pipeline."""

    size: int = 250
    viewport_width: int = 800
    viewport_height: int = 600
    navigation_timeout: float = 15.0
    max_concurrent_renders: int = 3
    progress_every: int = 5
    palette_colors: int = 256
    dither: bool = True
    browser_args: Tuple[str, ...] = DEFAULT_BROWSER_ARGS

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "ThumbnailSettings":
        if not mapping:
            return cls()
        defaults = cls()
        browser_args = mapping.get("browser_args")
        settings = cls(
            size=int(mapping.get("size", defaults.size)),
            viewport_width=int(mapping.get("viewport_width", defaults.viewport_width)),
            viewport_height=int(mapping.get("viewport_height", defaults.viewport_height)),
            navigation_timeout=float(
                mapping.get("navigation_timeout", defaults.navigation_timeout)
            ),
            max_concurrent_renders=int(
                mapping.get("max_concurrent_renders", defaults.max_concurrent_renders)
            ),
            progress_every=int(mapping.get("progress_every", defaults.progress_every)),
            palette_colors=int(mapping.get("palette_colors", defaults.palette_colors)),
            dither=bool(mapping.get("dither", defaults.dither)),
            browser_args=(
                tuple(str(arg) for arg in browser_args)
                if browser_args is not None
                else defaults.browser_args
            ),
        )
        if settings.size <= 0:
            raise ValueError("Thumbnail size must be positive")
        if settings.max_concurrent_renders < 1:
            raise ValueError("max_concurrent_renders must be at least 1")
        if settings.navigation_timeout <= 0:
            raise ValueError("navigation_timeout must be positive")
        if not 2 <= settings.palette_colors <= 256:
            raise ValueError("palette_colors must be between 2 and 256")
        return settings


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and pipeline settings for the application."""

    archive_root: Path
    log_root: Path
    thumbnails: ThumbnailSettings = field(default_factory=ThumbnailSettings)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        raw_archive = os.environ.get(ARCHIVE_ROOT_ENV, "").strip() or mapping["archive_root"]
        archive_root = (base_path / raw_archive).resolve()

        preferred_logs = (base_path / mapping.get("log_root", "logs")).resolve()
        log_root, _ = _select_writable_directory(
            preferred_logs,
            label="log",
            fallbacks=(Path.home() / ".teletext_archive" / "logs",),
        )

        thumbnails = ThumbnailSettings.from_mapping(mapping.get("thumbnails"))
        return cls(archive_root=archive_root, log_root=log_root, thumbnails=thumbnails)


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "ThumbnailSettings", "load_config"]
