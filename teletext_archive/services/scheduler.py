"""Bounded-concurrency thumbnail generation for archive folders."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from ..processing.codec import CodecError, ThumbnailCodec
from ..processing.render import RenderBackend, RenderBackendUnavailableError, RenderError
from .events import emit_task_event, emit_thumbnail_event
from .inventory import list_pages
from .thumbnails import PersistError, ThumbnailStore

LOGGER = logging.getLogger(__name__)


class BatchMode(str, Enum):
    BACKGROUND = "background"
    FOREGROUND = "foreground"


class BatchState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationTask:
    page_number: int
    html_path: Path
    target_png_path: Path

    @property
    def name(self) -> str:
        return self.target_png_path.name


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after a task finishes, in completion order."""

    current: int
    total: int
    generated: List[str] = field(default_factory=list)


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class GenerationBatch:
    folder: Path
    mode: BatchMode
    state: BatchState = BatchState.PENDING
    total: int = 0
    completed: int = 0
    skipped: int = 0
    generated: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    failure: Optional[str] = None

    def mark_running(self) -> None:
        self.state = BatchState.RUNNING
        self.started_at = time.time()

    def mark_completed(self) -> None:
        self.state = BatchState.COMPLETED
        self.finished_at = time.time()

    def mark_failed(self, message: str) -> None:
        self.state = BatchState.FAILED
        self.finished_at = time.time()
        self.failure = message

    def record_success(self, task: GenerationTask) -> None:
        self.completed += 1
        self.generated.append(task.name)

    def record_failure(self, task: GenerationTask, message: str) -> None:
        self.completed += 1
        self.errors.append(f"{task.html_path.name}: {message}")

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return (self.finished_at or time.time()) - self.started_at


class BatchAbortedError(RuntimeError):
    """The render backend could not be acquired, so the batch stopped early."""

    def __init__(self, message: str, batch: GenerationBatch) -> None:
        super().__init__(message)
        self.batch = batch


class BatchScheduler:
    """Drive render → normalise → persist over a folder with a fixed worker pool.

    ``max_concurrent`` bounds the workers of a single batch; the render
    backend enforces the process-wide ceiling across overlapping batches.
    """

    def __init__(
        self,
        backend: RenderBackend,
        codec: ThumbnailCodec,
        store: ThumbnailStore,
        *,
        max_concurrent: int = 3,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._backend = backend
        self._codec = codec
        self._store = store
        self._max_concurrent = max_concurrent
        self._in_flight: Dict[Path, asyncio.Task] = {}
        self._detached: Set[asyncio.Task] = set()

    @property
    def store(self) -> ThumbnailStore:
        return self._store

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def in_flight_folders(self) -> List[Path]:
        return [folder for folder, task in self._in_flight.items() if not task.done()]

    async def run(
        self,
        folder: Path,
        *,
        mode: BatchMode = BatchMode.BACKGROUND,
        on_progress: Optional[ProgressCallback] = None,
        progress_every: int = 1,
    ) -> GenerationBatch:
        """Generate thumbnails for *folder* and return the aggregated outcome.

        Item failures are collected in ``batch.errors``. Only an unavailable
        render backend raises, as :class:`BatchAbortedError`.
        """

        every = max(1, progress_every)
        batch = GenerationBatch(folder=folder, mode=mode)
        loop = asyncio.get_running_loop()
        tasks, skipped = await loop.run_in_executor(None, self._collect_tasks, folder, mode)
        batch.total = len(tasks)
        batch.skipped = skipped
        batch.mark_running()
        emit_task_event(
            "running",
            "Thumbnail batch started",
            payload={
                "folder": folder,
                "mode": mode.value,
                "pending": batch.total,
                "skipped": skipped,
            },
        )

        if not tasks:
            batch.mark_completed()
            return batch

        queue: asyncio.Queue[GenerationTask] = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        aborted: List[RenderBackendUnavailableError] = []
        worker_count = min(self._max_concurrent, len(tasks))
        workers = [
            loop.create_task(
                self._worker(queue, batch, aborted, on_progress, every),
                name=f"thumbnail-worker-{index}",
            )
            for index in range(worker_count)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()

        if aborted:
            message = f"Thumbnail generation aborted: {aborted[0]}"
            batch.mark_failed(message)
            emit_task_event(
                "failed",
                "Thumbnail batch aborted",
                payload={"folder": folder, "completed": batch.completed, "total": batch.total},
                duration_ms=batch.duration_seconds * 1000,
                level=logging.ERROR,
            )
            raise BatchAbortedError(message, batch) from aborted[0]

        batch.mark_completed()
        emit_task_event(
            "completed",
            "Thumbnail batch finished",
            payload={
                "folder": folder,
                "generated": len(batch.generated),
                "errors": len(batch.errors),
                "total": batch.total,
            },
            duration_ms=batch.duration_seconds * 1000,
            level=logging.WARNING if batch.errors else logging.INFO,
        )
        return batch

    def _collect_tasks(self, folder: Path, mode: BatchMode) -> tuple[List[GenerationTask], int]:
        records = list_pages(folder)
        if mode is BatchMode.BACKGROUND:
            pending = [record for record in records if self._store.needs_generation(record)]
        else:
            pending = list(records)
        tasks = [
            GenerationTask(
                page_number=record.page_number,
                html_path=record.html_path,
                target_png_path=record.thumbnail_path,
            )
            for record in pending
        ]
        return tasks, len(records) - len(pending)

    async def _worker(
        self,
        queue: "asyncio.Queue[GenerationTask]",
        batch: GenerationBatch,
        aborted: List[RenderBackendUnavailableError],
        on_progress: Optional[ProgressCallback],
        every: int,
    ) -> None:
        while not aborted:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            succeeded = False
            try:
                await self._generate(task)
            except RenderBackendUnavailableError as error:
                aborted.append(error)
                return
            except (RenderError, CodecError, PersistError) as error:
                batch.record_failure(task, str(error))
                emit_thumbnail_event(
                    "THUMBNAIL_ERROR",
                    payload={"path": task.target_png_path, "error": str(error), "kind": type(error).__name__},
                    level=logging.WARNING,
                )
            except Exception as error:  # noqa: BLE001 - one page must not sink the batch
                LOGGER.exception("Unexpected failure generating %s", task.target_png_path)
                batch.record_failure(task, str(error) or type(error).__name__)
            else:
                batch.record_success(task)
                succeeded = True
            finally:
                queue.task_done()

            self._notify(batch, task, succeeded, on_progress, every)

    async def _generate(self, task: GenerationTask) -> None:
        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        raw = await self._backend.render(task.html_path)
        data = await loop.run_in_executor(None, self._codec.normalize, raw)
        await loop.run_in_executor(None, self._store.persist, task.target_png_path, data)
        emit_thumbnail_event(
            "THUMBNAIL_GENERATED",
            payload={"path": task.target_png_path, "bytes": len(data)},
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    @staticmethod
    def _notify(
        batch: GenerationBatch,
        task: GenerationTask,
        succeeded: bool,
        on_progress: Optional[ProgressCallback],
        every: int,
    ) -> None:
        if on_progress is None:
            return
        if batch.completed % every != 0 and batch.completed != batch.total:
            return
        event = ProgressEvent(
            current=batch.completed,
            total=batch.total,
            generated=[task.name] if succeeded else [],
        )
        try:
            on_progress(event)
        except Exception:  # noqa: BLE001 - a broken listener must not stop generation
            LOGGER.exception("Progress listener failed for %s", batch.folder)

    def start_detached(
        self,
        folder: Path,
        *,
        mode: BatchMode = BatchMode.BACKGROUND,
        on_progress: Optional[ProgressCallback] = None,
        progress_every: int = 1,
    ) -> "asyncio.Task[GenerationBatch]":
        """Start :meth:`run` without awaiting it; failures are logged, never raised."""

        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self.run(folder, mode=mode, on_progress=on_progress, progress_every=progress_every),
            name=f"thumbnails:{folder.name or folder}",
        )
        self._detached.add(task)
        task.add_done_callback(self._on_detached_done)
        return task

    def ensure_folder_thumbnails(self, folder: Path) -> "asyncio.Task[GenerationBatch]":
        """Fill in missing thumbnails in the background.

        While a background run for *folder* is in flight, further requests
        join it instead of rendering the same pages twice.
        """

        key = folder.resolve()
        existing = self._in_flight.get(key)
        if existing is not None and not existing.done():
            LOGGER.debug("Background thumbnails for %s already in flight", folder)
            return existing

        task = self.start_detached(folder, mode=BatchMode.BACKGROUND)
        self._in_flight[key] = task
        task.add_done_callback(lambda finished, key=key: self._release_folder(key, finished))
        return task

    def _release_folder(self, key: Path, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def _on_detached_done(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if task.cancelled():
            LOGGER.debug("Thumbnail task %s was cancelled", task.get_name())
            return
        error = task.exception()
        if error is not None:
            LOGGER.error(
                "Thumbnail task %s failed: %s",
                task.get_name(),
                error,
                exc_info=(type(error), error, error.__traceback__),
            )

    async def aclose(self) -> None:
        """Cancel outstanding detached runs."""

        pending = [task for task in self._detached if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._in_flight.clear()


__all__ = [
    "BatchAbortedError",
    "BatchMode",
    "BatchScheduler",
    "BatchState",
    "GenerationBatch",
    "GenerationTask",
    "ProgressCallback",
    "ProgressEvent",
]
