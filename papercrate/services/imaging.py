"""Raster previews and thumbnails for images and PDFs."""

import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import fitz
from PIL import Image, UnidentifiedImageError

from papercrate.errors import ContentError

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = (512, 512)
PREVIEW_SIZE = (THUMBNAIL_SIZE[0] * 4, THUMBNAIL_SIZE[1] * 4)

PNG_MIME_TYPE = "image/png"

# Modes PNG can store without conversion
_PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}


@dataclass
class GeneratedImage:
    """An encoded PNG plus its pixel dimensions."""

    data: bytes
    width: int
    height: int


@dataclass
class GeneratedAssets:
    """Preview and thumbnail rendered from one document."""

    preview: GeneratedImage
    thumbnail: GeneratedImage
    page_count: Optional[int] = None


def _fit(image: Image.Image, bounds: Tuple[int, int]) -> Image.Image:
    """Copy of ``image`` shrunk to fit ``bounds``, never enlarged."""
    fitted = image.copy()
    if fitted.width > bounds[0] or fitted.height > bounds[1]:
        fitted.thumbnail(bounds, Image.Resampling.LANCZOS)
    return fitted


def _encode_png(image: Image.Image) -> GeneratedImage:
    if image.mode not in _PNG_MODES:
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return GeneratedImage(data=buffer.getvalue(), width=image.width, height=image.height)


def _derive(source: Image.Image, page_count: Optional[int] = None) -> GeneratedAssets:
    preview = _fit(source, PREVIEW_SIZE)
    thumbnail = _fit(preview, THUMBNAIL_SIZE)
    return GeneratedAssets(
        preview=_encode_png(preview),
        thumbnail=_encode_png(thumbnail),
        page_count=page_count,
    )


def render_image_assets(data: bytes) -> GeneratedAssets:
    """
    Decode a raster image and produce preview and thumbnail PNGs.

    Raises:
        ContentError: If the bytes are not a decodable image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            return _derive(image)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ContentError(f"failed to decode image: {e}") from e


def render_pdf_assets(data: bytes) -> GeneratedAssets:
    """
    Render the first page of a PDF and produce preview and thumbnail PNGs.

    The total page count is reported alongside the images.

    Raises:
        ContentError: If the PDF cannot be opened or has no pages
    """
    try:
        document = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ContentError(f"load pdf: {e}") from e

    try:
        page_count = document.page_count
        if page_count < 1:
            raise ContentError("pdf has no pages")

        page = document.load_page(0)
        rect = page.rect
        zoom = min(PREVIEW_SIZE[0] / rect.width, PREVIEW_SIZE[1] / rect.height)
        pixmap = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        rendered = Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)
    except (RuntimeError, ValueError, ZeroDivisionError) as e:
        raise ContentError(f"render pdf page: {e}") from e
    finally:
        document.close()

    logger.debug(f"Rendered first of {page_count} pdf pages at {rendered.width}x{rendered.height}")
    return _derive(rendered, page_count=page_count)
