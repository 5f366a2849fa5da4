"""Bootstrap logic that prepares the archive and log directories."""

from __future__ import annotations

import logging
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        archive_root = self._config.archive_root
        if not config_module._ensure_writable_directory(archive_root):
            raise BootstrapError(f"Archive directory '{archive_root}' is not writable")
        LOGGER.debug("Ensured archive directory exists: %s", archive_root)

        log_root = self._config.log_root
        if not config_module._ensure_writable_directory(log_root):
            raise BootstrapError(f"Log directory '{log_root}' is not writable")
        LOGGER.debug("Ensured log directory exists: %s", log_root)


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
