"""Page inventory for a single archive folder.

The filesystem is the only store: every call rescans the directory and
re-stats thumbnails, since editors add and remove files while the server runs.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .grouping import UNKNOWN_YEAR, expand_year

PAGE_SUFFIX = ".html"
THUMBNAIL_SUFFIX = ".png"
MIN_PAGE_NUMBER = 100
MAX_PAGE_NUMBER = 999

_PAGE_STEM = re.compile(r"^(?P<page>\d{3})(?:_(?P<year>\d{4}|\d{2}))?$")


@dataclass(frozen=True)
class PageRecord:
    page_number: int
    stem: str
    html_path: Path
    thumbnail_path: Path
    has_thumbnail: bool
    year: int = UNKNOWN_YEAR

    @property
    def html_name(self) -> str:
        return self.html_path.name

    @property
    def thumbnail_name(self) -> str:
        return self.thumbnail_path.name


def parse_page_stem(stem: str) -> Optional[Tuple[int, int]]:
    """Return ``(page_number, year)`` for a valid page stem, else ``None``.

    ``101`` and ``101_93`` are pages; ``abc``, ``12`` or ``099`` are not.
    """

    match = _PAGE_STEM.match(stem)
    if match is None:
        return None
    page_number = int(match.group("page"))
    if not MIN_PAGE_NUMBER <= page_number <= MAX_PAGE_NUMBER:
        return None
    return page_number, expand_year(match.group("year"))


def is_valid_page_number(value: int) -> bool:
    return MIN_PAGE_NUMBER <= value <= MAX_PAGE_NUMBER


def thumbnail_path_for(html_path: Path) -> Path:
    """The thumbnail sits next to the page with ``.png`` in place of ``.html``."""

    return html_path.with_suffix(THUMBNAIL_SUFFIX)


def list_pages(folder: Path) -> List[PageRecord]:
    """Snapshot the pages of *folder* in ascending page order."""

    if not folder.exists():
        raise FileNotFoundError(f"Folder not found: {folder}")
    if not folder.is_dir():
        raise NotADirectoryError(f"Not a folder: {folder}")

    records: List[PageRecord] = []
    with os.scandir(folder) as entries:
        for entry in entries:
            if not entry.name.endswith(PAGE_SUFFIX):
                continue
            if not entry.is_file():
                continue
            stem = entry.name[: -len(PAGE_SUFFIX)]
            parsed = parse_page_stem(stem)
            if parsed is None:
                continue
            page_number, year = parsed
            html_path = folder / entry.name
            thumbnail_path = thumbnail_path_for(html_path)
            records.append(
                PageRecord(
                    page_number=page_number,
                    stem=stem,
                    html_path=html_path,
                    thumbnail_path=thumbnail_path,
                    has_thumbnail=thumbnail_path.is_file(),
                    year=year,
                )
            )
    records.sort(key=lambda record: (record.page_number, record.stem))
    return records


def list_subfolders(folder: Path) -> List[str]:
    with os.scandir(folder) as entries:
        return sorted(entry.name for entry in entries if entry.is_dir())


def find_page(records: Sequence[PageRecord], stem: str) -> Optional[PageRecord]:
    for record in records:
        if record.stem == stem:
            return record
    return None


def find_neighbours(
    records: Sequence[PageRecord], stem: str
) -> Tuple[Optional[PageRecord], Optional[PageRecord]]:
    """Return the previous and next pages around *stem* in inventory order."""

    for index, record in enumerate(records):
        if record.stem != stem:
            continue
        previous = records[index - 1] if index > 0 else None
        following = records[index + 1] if index < len(records) - 1 else None
        return previous, following
    return None, None


__all__ = [
    "MAX_PAGE_NUMBER",
    "MIN_PAGE_NUMBER",
    "PAGE_SUFFIX",
    "PageRecord",
    "THUMBNAIL_SUFFIX",
    "find_neighbours",
    "find_page",
    "is_valid_page_number",
    "list_pages",
    "list_subfolders",
    "parse_page_stem",
    "thumbnail_path_for",
]
