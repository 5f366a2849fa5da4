from pathlib import Path

import pytest

import teletext_archive.config as config_module
from teletext_archive.bootstrap import BootstrapError, Bootstrapper
from teletext_archive.config import AppConfig


def test_bootstrapper_raises_when_archive_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    archive_root = tmp_path / "teletext"
    config = AppConfig(archive_root=archive_root, log_root=tmp_path / "logs")

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == archive_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "archive" in str(excinfo.value).lower()


def test_bootstrapper_creates_archive_and_log_directories(tmp_path: Path) -> None:
    config = AppConfig(archive_root=tmp_path / "teletext", log_root=tmp_path / "logs")

    Bootstrapper(config).initialize()

    assert config.archive_root.is_dir()
    assert config.log_root.is_dir()
    assert not any(config.archive_root.iterdir())
