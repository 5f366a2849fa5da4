"""Rendering and image processing backends for the thumbnail pipeline."""

from .codec import CodecError, ThumbnailCodec
from .render import (
    PlaywrightRenderBackend,
    RenderBackend,
    RenderBackendUnavailableError,
    RenderCrashError,
    RenderError,
    RenderTimeoutError,
)

__all__ = [
    "CodecError",
    "PlaywrightRenderBackend",
    "RenderBackend",
    "RenderBackendUnavailableError",
    "RenderCrashError",
    "RenderError",
    "RenderTimeoutError",
    "ThumbnailCodec",
]
