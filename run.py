"""Entry-point for the Teletext Archive application."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from teletext_archive.bootstrap import initialize_app
from teletext_archive.config import AppConfig
from teletext_archive.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from teletext_archive.processing import PlaywrightRenderBackend, RenderBackend, ThumbnailCodec
from teletext_archive.services.paths import InvalidPathError, resolve_archive_path
from teletext_archive.services.progress import format_progress_message
from teletext_archive.services.scheduler import (
    BatchAbortedError,
    BatchMode,
    BatchScheduler,
    GenerationBatch,
    ProgressCallback,
)
from teletext_archive.services.thumbnails import ThumbnailStore
from teletext_archive.ui.modern import ModernUI
from teletext_archive.web import create_app


LOGGER = logging.getLogger("teletext_archive.cli")


cli = typer.Typer(add_completion=False, help="Teletext Archive management commands")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000


def _prepare_logging(log_root: Path) -> None:
    log_file = get_log_file_path(log_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server", envvar="HTTP_PORT"),
) -> None:
    """Run the archive web server."""

    app_config = initialize_app()
    _prepare_logging(app_config.log_root)

    app = create_app(app_config)
    server_config = uvicorn.Config(app, host=host, port=port, log_config=None)
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving %s on http://%s:%s", app_config.archive_root, host, port)
    server.run()


async def _generate_thumbnails(
    config: AppConfig,
    folder: Path,
    *,
    mode: BatchMode,
    on_progress: ProgressCallback,
    backend: Optional[RenderBackend] = None,
) -> GenerationBatch:
    settings = config.thumbnails
    render_backend = backend or PlaywrightRenderBackend(settings)
    codec = ThumbnailCodec(settings.size, colors=settings.palette_colors, dither=settings.dither)
    scheduler = BatchScheduler(
        render_backend,
        codec,
        ThumbnailStore(cache_entries=0),
        max_concurrent=settings.max_concurrent_renders,
    )
    try:
        return await scheduler.run(folder, mode=mode, on_progress=on_progress)
    finally:
        await render_backend.close()


@cli.command()
def thumbnails(
    folder: str = typer.Argument("", help="Archive folder, relative to the archive root"),
    regenerate: bool = typer.Option(
        False,
        "--regenerate",
        "-r",
        help="Re-render every page, replacing existing thumbnails.",
    ),
) -> None:
    """Generate missing thumbnails for FOLDER, or all of them with --regenerate."""

    config = initialize_app()
    _prepare_logging(config.log_root)
    console = Console()

    try:
        location = resolve_archive_path(config.archive_root, folder)
    except InvalidPathError as error:
        raise typer.BadParameter(str(error), param_hint="FOLDER") from error
    if not location.absolute.is_dir():
        raise typer.BadParameter(f"Folder not found: {folder}", param_hint="FOLDER")

    mode = BatchMode.FOREGROUND if regenerate else BatchMode.BACKGROUND
    label = location.relative or "archive root"
    with Progress(
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task(label, total=None)

        def _on_progress(event) -> None:
            progress.update(task_id, total=event.total, completed=event.current)

        try:
            batch = asyncio.run(
                _generate_thumbnails(config, location.absolute, mode=mode, on_progress=_on_progress)
            )
        except BatchAbortedError as error:
            console.print(f"[bold red]{error}[/bold red]")
            raise typer.Exit(code=1) from error

    if batch.total == 0:
        console.print(f"[green]No thumbnails to generate in {label}[/green] ({batch.skipped} up to date)")
        return

    summary = format_progress_message(
        f"Generated {len(batch.generated)} of {batch.total} thumbnails in {label}",
        len(batch.generated),
        batch.total,
    )
    console.print(f"[bold green]{summary}[/bold green]")
    for message in batch.errors:
        console.print(f"[yellow]  {message}[/yellow]")


@cli.command()
def overview(
    depth: Optional[int] = typer.Option(
        None,
        "--depth",
        "-d",
        min=1,
        help="Limit how many folder levels are shown.",
    ),
) -> None:
    """Render the archive tree with thumbnail coverage."""

    config = initialize_app()
    _prepare_logging(config.log_root)
    ModernUI(config.archive_root, max_depth=depth).run()


if __name__ == "__main__":
    cli()
