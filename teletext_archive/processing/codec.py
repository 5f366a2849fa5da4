"""Normalisation of raw screenshots into square thumbnail PNGs."""

from __future__ import annotations

import io
import logging
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError


LOGGER = logging.getLogger(__name__)


class CodecError(ValueError):
    """Raised when a screenshot buffer cannot be turned into a thumbnail."""


class ThumbnailCodec:
    """Cover-fit a screenshot into a fixed square and re-encode it as PNG.

    The image is scaled to fill the square and the overflow is cropped around
    the centre, so teletext pages never look stretched. A palette reduction
    keeps the files small; teletext uses few colours, so 256 entries are
    visually lossless.
    """

    def __init__(self, size: int = 250, *, colors: int = 256, dither: bool = True) -> None:
        if size <= 0:
            raise ValueError("Thumbnail size must be positive")
        self.size = size
        self.colors = colors
        self.dither = dither

    @property
    def dimensions(self) -> Tuple[int, int]:
        return self.size, self.size

    def normalize(self, raw: bytes) -> bytes:
        if not raw:
            raise CodecError("Screenshot buffer is empty")

        try:
            with Image.open(io.BytesIO(raw)) as source:
                source.load()
                image = self._convert_color_mode(source)
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            SyntaxError,
            ValueError,
        ) as error:
            raise CodecError(f"Screenshot is not a readable image: {error}") from error

        fitted = ImageOps.fit(
            image,
            self.dimensions,
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )
        # Pillow only applies dithering when remapping onto an existing palette.
        dither = Image.Dither.FLOYDSTEINBERG if self.dither else Image.Dither.NONE
        palette = fitted.quantize(colors=self.colors)
        quantized = fitted.quantize(palette=palette, dither=dither)

        output = io.BytesIO()
        quantized.save(output, format="PNG", optimize=True)
        data = output.getvalue()
        LOGGER.debug(
            "Normalised %s byte screenshot (%sx%s) into %s byte thumbnail",
            len(raw),
            image.width,
            image.height,
            len(data),
        )
        return data

    @staticmethod
    def _convert_color_mode(image: Image.Image) -> Image.Image:
        if image.mode == "RGB":
            return image.copy()
        if image.mode in ("RGBA", "LA", "P"):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (0, 0, 0))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        return image.convert("RGB")


__all__ = ["CodecError", "ThumbnailCodec"]
