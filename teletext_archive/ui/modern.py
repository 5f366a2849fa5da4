"""A Rich-powered console overview of the archive."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .overview import ArchiveSnapshot, FolderOverview, collect_overview


class ModernUI:
    """Render the archive tree with thumbnail coverage using Rich widgets."""

    def __init__(
        self,
        archive_root: Path,
        *,
        console: Optional[Console] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self._archive_root = archive_root
        self._console = console or Console()
        self._max_depth = max_depth

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> None:
        snapshot = collect_overview(self._archive_root, max_depth=self._max_depth)
        console = self._console

        console.rule("[bold magenta]Teletext Archive Overview")

        if snapshot.folder_count == 0:
            console.print(
                Panel(
                    f"No folders found in [bold]{snapshot.root}[/bold].\n"
                    "Copy archived pages into the archive directory or create a folder "
                    "from the web file manager.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        tree_panel = Panel(
            self._build_tree(snapshot.folders),
            title="Archive",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([tree_panel, self._build_stats_panel(snapshot)], expand=True, equal=True))
        if snapshot.thumbnail_count < snapshot.page_count:
            console.print()
            console.print(
                Text.from_markup(
                    "Tip: run [bold]python run.py thumbnails FOLDER[/bold] to fill in missing previews.",
                    style="dim",
                ),
                justify="center",
            )

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _build_tree(self, folders: Iterable[FolderOverview]) -> Tree:
        tree = Tree("[bold cyan]teletext", guide_style="cyan")
        for overview in folders:
            self._add_folder(tree, overview)
        return tree

    def _add_folder(self, parent: Tree, overview: FolderOverview) -> None:
        node = parent.add(self._build_folder_label(overview))
        for child in overview.children:
            self._add_folder(node, child)

    @staticmethod
    def _build_folder_label(overview: FolderOverview) -> Text:
        label = Text(overview.display_name, style="bold")
        if overview.display_name != overview.name:
            label.append(f"  ({overview.name})", style="dim")
        if overview.page_count == 0:
            return label
        label.append("  ")
        style = "green" if overview.missing_thumbnails == 0 else "yellow"
        label.append(f"{overview.thumbnail_count}/{overview.page_count} thumbnails", style=style)
        return label

    @staticmethod
    def _build_stats_panel(snapshot: ArchiveSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Folders", str(snapshot.folder_count))
        metrics.add_row("Pages", str(snapshot.page_count))

        coverage = Table.grid(expand=True, padding=(0, 1))
        coverage.add_column(style="dim")
        coverage.add_column(justify="right", style="bold")
        coverage.add_row("Thumbnails", str(snapshot.thumbnail_count))
        coverage.add_row("Missing", str(snapshot.page_count - snapshot.thumbnail_count))
        coverage.add_row("Coverage", f"{snapshot.coverage_percent}%")

        body = Group(metrics, Rule(style="magenta"), coverage)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = ["ModernUI"]
