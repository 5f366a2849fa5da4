"""Shared helpers for building overview snapshots of the archive tree."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..services.cards import read_card
from ..services.inventory import list_pages, list_subfolders
from ..services.progress import compute_progress_percent


@dataclass
class FolderOverview:
    name: str
    relative: str
    display_name: str
    page_count: int
    thumbnail_count: int
    children: List["FolderOverview"] = field(default_factory=list)

    @property
    def missing_thumbnails(self) -> int:
        return self.page_count - self.thumbnail_count


@dataclass
class ArchiveSnapshot:
    root: Path
    folders: List[FolderOverview]
    folder_count: int
    page_count: int
    thumbnail_count: int

    @property
    def coverage_percent(self) -> int:
        return compute_progress_percent(self.thumbnail_count, self.page_count)


def collect_overview(archive_root: Path, *, max_depth: Optional[int] = None) -> ArchiveSnapshot:
    """Walk the archive and count pages and thumbnails per folder."""

    totals = {"folders": 0, "pages": 0, "thumbnails": 0}

    def _walk(folder: Path, relative: str, depth: int) -> List[FolderOverview]:
        if max_depth is not None and depth > max_depth:
            return []
        overviews: List[FolderOverview] = []
        for name in list_subfolders(folder):
            child = folder / name
            child_relative = f"{relative}/{name}" if relative else name
            records = list_pages(child)
            thumbnails = sum(1 for record in records if record.has_thumbnail)
            totals["folders"] += 1
            totals["pages"] += len(records)
            totals["thumbnails"] += thumbnails
            overviews.append(
                FolderOverview(
                    name=name,
                    relative=child_relative,
                    display_name=read_card(child).display_name,
                    page_count=len(records),
                    thumbnail_count=thumbnails,
                    children=_walk(child, child_relative, depth + 1),
                )
            )
        return overviews

    folders = _walk(archive_root, "", 1) if archive_root.is_dir() else []
    return ArchiveSnapshot(
        root=archive_root,
        folders=folders,
        folder_count=totals["folders"],
        page_count=totals["pages"],
        thumbnail_count=totals["thumbnails"],
    )


__all__ = ["ArchiveSnapshot", "FolderOverview", "collect_overview"]
