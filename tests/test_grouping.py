from pathlib import Path

import pytest

from teletext_archive.services.grouping import (
    UNKNOWN_YEAR,
    expand_year,
    folder_year,
    group_folders_by_year,
    group_pages_by_year,
)
from teletext_archive.services.inventory import list_pages


@pytest.mark.parametrize(
    "digits, expected",
    [
        ("93", 1993),
        ("26", 1926),
        ("25", 2025),
        ("05", 2005),
        ("2003", 2003),
        ("", UNKNOWN_YEAR),
        (None, UNKNOWN_YEAR),
        ("123", UNKNOWN_YEAR),
    ],
)
def test_expand_year(digits, expected: int) -> None:
    assert expand_year(digits) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("2x2 23.07.93", 1993),
        ("ORT 01.01.2001", 2001),
        ("MTV 12.12.05", 2005),
        ("Misc", UNKNOWN_YEAR),
    ],
)
def test_folder_year(name: str, expected: int) -> None:
    assert folder_year(name) == expected


def test_group_folders_by_year_newest_first() -> None:
    grouped = group_folders_by_year(
        ["Misc", "2x2 23.07.93", "ORT 01.01.2001", "2x2 01.01.93", "MTV 12.12.05"]
    )

    assert list(grouped) == [2005, 2001, 1993, UNKNOWN_YEAR]
    assert grouped[1993] == ["2x2 01.01.93", "2x2 23.07.93"]
    assert grouped[UNKNOWN_YEAR] == ["Misc"]


def test_group_pages_by_year(tmp_path: Path, make_pages) -> None:
    make_pages(tmp_path, ["150", "101_93", "100", "120_05", "100_93"])

    grouped = group_pages_by_year(list_pages(tmp_path))

    assert list(grouped) == [2005, 1993, UNKNOWN_YEAR]
    assert [record.stem for record in grouped[1993]] == ["100_93", "101_93"]
    assert [record.stem for record in grouped[UNKNOWN_YEAR]] == ["100", "150"]


def test_grouping_empty_input() -> None:
    assert group_folders_by_year([]) == {}
    assert group_pages_by_year([]) == {}
