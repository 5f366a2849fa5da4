import asyncio
import json
from pathlib import Path
from typing import List

import pytest

from teletext_archive.processing import RenderBackendUnavailableError, ThumbnailCodec
from teletext_archive.services.progress import (
    ProgressReporter,
    build_final_payload,
    build_progress_payload,
    compute_progress_percent,
    format_progress_message,
    format_sse_frame,
    stream_folder_regeneration,
)
from teletext_archive.services.scheduler import (
    BatchAbortedError,
    BatchMode,
    BatchScheduler,
    GenerationBatch,
    ProgressEvent,
)
from teletext_archive.services.thumbnails import ThumbnailStore


def _parse(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


@pytest.mark.parametrize(
    "current, total, expected",
    [
        (0, 5, 0),
        (1, 3, 33),
        (2, 3, 67),
        (5, 5, 100),
        (7, 5, 100),
        (-1, 5, 0),
        (0, 0, 100),
        (None, 5, 0),
    ],
)
def test_compute_progress_percent(current, total, expected: int) -> None:
    assert compute_progress_percent(current, total) == expected


def test_format_progress_message() -> None:
    assert format_progress_message("Generated 1 of 4", 1, 4) == "Generated 1 of 4 (25%)"
    assert format_progress_message("Starting", None, 4) == "Starting"
    assert format_progress_message("Starting", 0, 0) == "Starting"


def test_format_sse_frame_keeps_unicode() -> None:
    frame = format_sse_frame({"message": "Телетекст"})

    assert frame == 'data: {"message": "Телетекст"}\n\n'


def test_build_progress_payload() -> None:
    payload = build_progress_payload(ProgressEvent(current=2, total=4, generated=["101.png"]))

    assert payload == {"progress": 50, "current": 2, "total": 4, "generated": ["101.png"]}


def test_build_final_payload_reports_item_errors(tmp_path: Path) -> None:
    batch = GenerationBatch(folder=tmp_path, mode=BatchMode.FOREGROUND, total=3, completed=3)
    batch.generated.extend(["101.png", "102.png"])
    batch.errors.append("103.html: Renderer failed")

    payload = build_final_payload(batch)

    assert payload["success"] is True
    assert payload["progress"] == 100
    assert payload["errors"] == ["103.html: Renderer failed"]
    assert payload["message"] == "Generated 2 of 3 thumbnails (67%)"


def test_build_final_payload_clean_run(tmp_path: Path) -> None:
    batch = GenerationBatch(folder=tmp_path, mode=BatchMode.FOREGROUND, total=1, completed=1)
    batch.generated.append("101.png")

    payload = build_final_payload(batch)

    assert payload["success"] is True
    assert "errors" not in payload
    assert payload["message"] == "All thumbnails updated successfully"


def test_build_final_payload_for_abort(tmp_path: Path) -> None:
    batch = GenerationBatch(folder=tmp_path, mode=BatchMode.FOREGROUND, total=4, completed=1)

    payload = build_final_payload(batch, failure="Thumbnail generation aborted: no browser")

    assert payload["success"] is False
    assert payload["errors"] == ["Thumbnail generation aborted: no browser"]
    assert payload["message"] == "Thumbnail generation aborted: no browser"


def test_reporter_streams_events_then_final_frame(tmp_path: Path) -> None:
    async def scenario() -> List[str]:
        reporter = ProgressReporter(label="folder")
        batch = GenerationBatch(folder=tmp_path, mode=BatchMode.FOREGROUND, total=2, completed=2)
        batch.generated.extend(["100.png", "101.png"])

        async def produce() -> GenerationBatch:
            reporter.publish(ProgressEvent(current=1, total=2, generated=["100.png"]))
            reporter.publish(ProgressEvent(current=2, total=2, generated=["101.png"]))
            return batch

        task = asyncio.get_running_loop().create_task(produce())
        task.add_done_callback(reporter.finish)
        frames = [frame async for frame in reporter.frames()]
        assert reporter.finished
        assert reporter.closed
        return frames

    frames = [_parse(frame) for frame in asyncio.run(scenario())]

    assert [frame["current"] for frame in frames[:2]] == [1, 2]
    assert frames[-1]["success"] is True
    assert frames[-1]["generated"] == ["100.png", "101.png"]
    assert len(frames) == 3


def test_reporter_reports_abort(tmp_path: Path) -> None:
    async def scenario() -> List[str]:
        reporter = ProgressReporter()
        batch = GenerationBatch(folder=tmp_path, mode=BatchMode.FOREGROUND, total=3)

        async def produce() -> GenerationBatch:
            raise BatchAbortedError("Thumbnail generation aborted: no browser", batch)

        task = asyncio.get_running_loop().create_task(produce())
        task.add_done_callback(reporter.finish)
        return [frame async for frame in reporter.frames()]

    frames = asyncio.run(scenario())

    assert len(frames) == 1
    final = _parse(frames[0])
    assert final["success"] is False
    assert final["errors"] == ["Thumbnail generation aborted: no browser"]


def test_reporter_drops_frames_after_client_disconnect(tmp_path: Path) -> None:
    async def scenario() -> ProgressReporter:
        reporter = ProgressReporter(label="folder")
        reporter.publish(ProgressEvent(current=1, total=3))
        stream = reporter.frames()
        first = await stream.__anext__()
        assert _parse(first)["current"] == 1
        await stream.aclose()
        reporter.publish(ProgressEvent(current=2, total=3))
        return reporter

    reporter = asyncio.run(scenario())

    assert reporter.closed
    assert not reporter.finished


def test_stream_folder_regeneration_end_to_end(
    tmp_path: Path, make_backend, make_pages
) -> None:
    make_pages(tmp_path, ["100", "101", "102"])
    (tmp_path / "100.png").write_bytes(b"stale")

    async def scenario() -> List[str]:
        scheduler = BatchScheduler(
            make_backend(), ThumbnailCodec(250), ThumbnailStore(), max_concurrent=2
        )
        return [frame async for frame in stream_folder_regeneration(scheduler, tmp_path)]

    frames = [_parse(frame) for frame in asyncio.run(scenario())]

    progress_frames, final = frames[:-1], frames[-1]
    assert [frame["current"] for frame in progress_frames] == [1, 2, 3]
    assert progress_frames[-1]["progress"] == 100
    assert final["success"] is True
    assert sorted(final["generated"]) == ["100.png", "101.png", "102.png"]
    assert (tmp_path / "100.png").read_bytes() != b"stale"


def test_stream_folder_regeneration_reports_unavailable_backend(
    tmp_path: Path, make_backend, make_pages
) -> None:
    make_pages(tmp_path, ["100"])
    backend = make_backend(
        failures={"100.html": RenderBackendUnavailableError("Unable to launch headless Chromium")}
    )

    async def scenario() -> List[str]:
        scheduler = BatchScheduler(backend, ThumbnailCodec(250), ThumbnailStore())
        return [frame async for frame in stream_folder_regeneration(scheduler, tmp_path)]

    final = _parse(asyncio.run(scenario())[-1])

    assert final["success"] is False
    assert "Unable to launch headless Chromium" in final["message"]
