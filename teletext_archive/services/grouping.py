"""Year buckets derived from page and folder names.

Archive folders are usually named after a capture date (``2x2 23.07.93``) and
some pages carry a year suffix (``100_93.html``). Two-digit years above the
pivot belong to the 1900s, the rest to the 2000s. Names without a year land
in bucket ``0``.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

if TYPE_CHECKING:
    from .inventory import PageRecord

CENTURY_PIVOT = 25
UNKNOWN_YEAR = 0

_FOLDER_YEAR = re.compile(r"(\d{2}|\d{4})$")


def expand_year(digits: Optional[str], *, pivot: int = CENTURY_PIVOT) -> int:
    """Turn a two- or four-digit year fragment into a full year."""

    if not digits:
        return UNKNOWN_YEAR
    value = int(digits)
    if len(digits) == 4:
        return value
    if len(digits) == 2:
        return 1900 + value if value > pivot else 2000 + value
    return UNKNOWN_YEAR


def folder_year(name: str, *, pivot: int = CENTURY_PIVOT) -> int:
    match = _FOLDER_YEAR.search(name)
    return expand_year(match.group(1) if match else None, pivot=pivot)


def group_folders_by_year(names: Iterable[str], *, pivot: int = CENTURY_PIVOT) -> "OrderedDict[int, List[str]]":
    """Bucket folder names by year, newest year first, names sorted within."""

    buckets: Dict[int, List[str]] = {}
    for name in names:
        buckets.setdefault(folder_year(name, pivot=pivot), []).append(name)
    return OrderedDict(
        (year, sorted(buckets[year])) for year in sorted(buckets, reverse=True)
    )


def group_pages_by_year(records: Iterable[PageRecord]) -> "OrderedDict[int, List[PageRecord]]":
    """Bucket pages by their year suffix, newest year first, pages ascending."""

    buckets: Dict[int, List[PageRecord]] = {}
    for record in records:
        buckets.setdefault(record.year, []).append(record)
    return OrderedDict(
        (year, sorted(buckets[year], key=lambda item: (item.page_number, item.stem)))
        for year in sorted(buckets, reverse=True)
    )


__all__ = [
    "CENTURY_PIVOT",
    "UNKNOWN_YEAR",
    "expand_year",
    "folder_year",
    "group_folders_by_year",
    "group_pages_by_year",
]
