"""Utilities for reporting thumbnail progress to clients."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from .scheduler import (
    BatchAbortedError,
    BatchMode,
    BatchScheduler,
    GenerationBatch,
    ProgressEvent,
)

LOGGER = logging.getLogger(__name__)


def compute_progress_percent(current: Optional[float], total: Optional[float]) -> int:
    """Return ``current / total`` as a whole percentage clamped to ``[0, 100]``.

    An empty batch counts as finished.
    """

    if current is None or total in {None, 0}:
        return 100 if total == 0 else 0
    try:
        ratio = float(current) / float(total)
    except (TypeError, ValueError):
        return 0
    clamped = max(0.0, min(ratio, 1.0))
    return int(round(clamped * 100))


def format_progress_message(
    message: str,
    completed_steps: Optional[float],
    total_steps: Optional[float],
) -> str:
    """Append a percentage indicator to ``message`` when the totals are known."""

    if completed_steps is None or total_steps in {None, 0}:
        return message
    return f"{message} ({compute_progress_percent(completed_steps, total_steps)}%)"


def format_sse_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def build_progress_payload(event: ProgressEvent) -> Dict[str, Any]:
    return {
        "progress": compute_progress_percent(event.current, event.total),
        "current": event.current,
        "total": event.total,
        "generated": list(event.generated),
    }


def build_final_payload(batch: GenerationBatch, *, failure: Optional[str] = None) -> Dict[str, Any]:
    """Describe a finished (or aborted) batch as the terminal stream frame."""

    payload: Dict[str, Any] = {
        "success": failure is None,
        "progress": compute_progress_percent(batch.completed, batch.total),
        "current": batch.completed,
        "total": batch.total,
        "generated": list(batch.generated),
    }
    errors = list(batch.errors)
    if failure is not None:
        errors.append(failure)
    if errors:
        payload["errors"] = errors

    if failure is not None:
        payload["message"] = failure
    elif batch.errors:
        payload["message"] = format_progress_message(
            f"Generated {len(batch.generated)} of {batch.total} thumbnails",
            len(batch.generated),
            batch.total,
        )
    else:
        payload["message"] = "All thumbnails updated successfully"
    return payload


class ProgressReporter:
    """Buffer progress frames for one streaming response.

    The scheduler publishes from the event loop; :meth:`frames` drains the
    buffer for the HTTP response. Once the client goes away the reporter
    drops further frames, while the batch itself keeps running.
    """

    def __init__(self, *, label: str = "") -> None:
        self._label = label
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._finished = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._finished

    def publish(self, event: ProgressEvent) -> None:
        if self._closed or self._finished:
            return
        self._queue.put_nowait(format_sse_frame(build_progress_payload(event)))

    def finish(self, task: "asyncio.Task[GenerationBatch]") -> None:
        """Enqueue the terminal frame for *task*; used as a done callback."""

        if self._finished:
            return
        self._finished = True

        if task.cancelled():
            payload: Dict[str, Any] = {
                "success": False,
                "errors": ["Thumbnail generation was cancelled"],
                "generated": [],
                "message": "Thumbnail generation was cancelled",
            }
        else:
            error = task.exception()
            if error is None:
                payload = build_final_payload(task.result())
            elif isinstance(error, BatchAbortedError):
                payload = build_final_payload(error.batch, failure=str(error))
            else:
                message = f"Thumbnail generation failed: {error}"
                payload = {
                    "success": False,
                    "errors": [message],
                    "generated": [],
                    "message": message,
                }

        if self._closed:
            return
        self._queue.put_nowait(format_sse_frame(payload))
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    return
                yield frame
        finally:
            if not self._finished:
                LOGGER.info(
                    "Progress stream for %s closed early; generation continues",
                    self._label or "folder",
                )
            self._closed = True


def stream_folder_regeneration(
    scheduler: BatchScheduler,
    folder: Path,
    *,
    progress_every: int = 1,
) -> AsyncIterator[str]:
    """Start a foreground regeneration of *folder* and return its frame stream."""

    reporter = ProgressReporter(label=folder.name)
    task = scheduler.start_detached(
        folder,
        mode=BatchMode.FOREGROUND,
        on_progress=reporter.publish,
        progress_every=progress_every,
    )
    task.add_done_callback(reporter.finish)
    return reporter.frames()


__all__ = [
    "ProgressReporter",
    "build_final_payload",
    "build_progress_payload",
    "compute_progress_percent",
    "format_progress_message",
    "format_sse_frame",
    "stream_folder_regeneration",
]
