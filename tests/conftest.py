from __future__ import annotations

import asyncio
import io
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from teletext_archive.bootstrap import Bootstrapper
from teletext_archive.config import ARCHIVE_ROOT_ENV, AppConfig


def make_png(width: int = 800, height: int = 600, color=(0, 0, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeRenderBackend:
    """In-memory stand-in for the Chromium renderer.

    Tracks how many renders overlap so tests can assert the concurrency
    ceiling, and raises configured errors for specific page files.
    """

    def __init__(
        self,
        *,
        delay: float = 0.01,
        failures: Optional[Dict[str, BaseException]] = None,
        payloads: Optional[Dict[str, bytes]] = None,
    ) -> None:
        self.delay = delay
        self.failures = dict(failures or {})
        self.payloads = dict(payloads or {})
        self.active = 0
        self.peak = 0
        self.calls: List[str] = []
        self.closed = False

    async def render(self, html_path: Path) -> bytes:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            self.calls.append(html_path.name)
            await asyncio.sleep(self.delay)
            error = self.failures.get(html_path.name)
            if error is not None:
                raise error
            if html_path.name in self.payloads:
                return self.payloads[html_path.name]
            shade = int(html_path.stem[:3]) % 256
            return make_png(color=(shade, 255 - shade, 64))
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.delenv(ARCHIVE_ROOT_ENV, raising=False)
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "archive_root": "teletext",
            "log_root": "logs",
            "thumbnails": {"max_concurrent_renders": 2, "progress_every": 2},
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def make_backend() -> Callable[..., FakeRenderBackend]:
    return FakeRenderBackend


@pytest.fixture()
def png_bytes() -> Callable[..., bytes]:
    return make_png


@pytest.fixture()
def make_pages() -> Callable[[Path, Iterable[str]], List[Path]]:
    """Create page files named by stem (``"101"`` becomes ``101.html``)."""

    def _make(folder: Path, stems: Iterable[str]) -> List[Path]:
        folder.mkdir(parents=True, exist_ok=True)
        created: List[Path] = []
        for stem in stems:
            path = folder / f"{stem}.html"
            path.write_text(
                f"<html><body style='background:#000;color:#fff'>P{stem}</body></html>",
                encoding="utf-8",
            )
            created.append(path)
        return created

    return _make
