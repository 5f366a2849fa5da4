from pathlib import Path

import pytest

from teletext_archive.services.paths import (
    InvalidPathError,
    entry_basename,
    resolve_archive_path,
    validate_archive_path,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", True),
        ("Archive", True),
        ("Archive/Sub Folder", True),
        ("2x2 23.07.93", True),
        ("Телетекст/ОРТ", True),
        ("News (old) & misc", True),
        ("../../etc", False),
        ("Archive/../secret", False),
        ("/etc/passwd", False),
        ("C:/Windows", False),
        ("Archive\\Sub", False),
        ("bad\0name", False),
        ("quote\"name", False),
        ("pipe|name", False),
    ],
)
def test_validate_archive_path(raw: str, expected: bool) -> None:
    assert validate_archive_path(raw) is expected


def test_resolve_archive_path_returns_location_inside_root(tmp_path: Path) -> None:
    location = resolve_archive_path(tmp_path, "Archive/Sub Folder/")

    assert location.relative == "Archive/Sub Folder"
    assert location.absolute == (tmp_path / "Archive" / "Sub Folder").resolve()
    assert location.name == "Sub Folder"
    assert location.parts == ["Archive", "Sub Folder"]
    assert not location.is_root
    assert location.breadcrumb() == [
        {"name": "Archive", "path": "Archive"},
        {"name": "Sub Folder", "path": "Archive/Sub Folder"},
    ]
    assert location.join("101.html") == "Archive/Sub Folder/101.html"


def test_resolve_archive_path_root(tmp_path: Path) -> None:
    location = resolve_archive_path(tmp_path, "")

    assert location.is_root
    assert location.relative == ""
    assert location.name == ""
    assert location.absolute == tmp_path.resolve()
    assert location.breadcrumb() == []
    assert location.join("child") == "child"


@pytest.mark.parametrize("raw", ["../../etc", "/etc", "a/../../b", "x:y"])
def test_resolve_archive_path_rejects_traversal(tmp_path: Path, raw: str) -> None:
    with pytest.raises(InvalidPathError):
        resolve_archive_path(tmp_path, raw)


def test_resolve_archive_path_rejects_symlink_escape(tmp_path: Path) -> None:
    root = tmp_path / "archive"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(InvalidPathError):
        resolve_archive_path(root, "link")


def test_resolve_archive_path_requires_value_when_asked(tmp_path: Path) -> None:
    with pytest.raises(InvalidPathError):
        resolve_archive_path(tmp_path, "", required=True)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("101.html", "101.html"),
        ("nested/101.html", "101.html"),
        ("..\\..\\boot.ini", "boot.ini"),
    ],
)
def test_entry_basename_strips_directories(name: str, expected: str) -> None:
    assert entry_basename(name) == expected


@pytest.mark.parametrize("name", ["", "..", "folder/..", "."])
def test_entry_basename_rejects_empty_names(name: str) -> None:
    with pytest.raises(InvalidPathError):
        entry_basename(name)
