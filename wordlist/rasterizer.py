"""
Page Rasterizer
===============
Renders PDF pages with PyMuPDF (fitz) at a fixed DPI and hands out
cropped per-column pixel buffers for break detection.

Rendered pages are kept as PNGs under output/pages/ and reused on
later runs. Every PNG is written under a temp name and renamed into
place, so a worker killed mid-save never leaves a partial image behind.
Per-page annotations shade the detected ranges of both columns.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

import fitz  # PyMuPDF

from .break_detector import PixelBuffer
from .config import ExtractorConfig
from .errors import MissingInputError
from .models import BreakRange, Column
from .storage import StorageLayout, save_pixmap_atomic

logger = logging.getLogger(__name__)

# Red at 20% opacity over each detected range
ANNOTATION_FILL = (1, 0, 0)
ANNOTATION_OPACITY = 0.2


class DocumentHandle:
    """
    One open PDF document. Created once per process and passed to the
    rasterizer and the region extractor; PyMuPDF documents must not be
    shared across processes or threads.
    """

    def __init__(self, pdf_path: Union[str, Path]):
        self.pdf_path = os.path.abspath(str(pdf_path))
        if not os.path.exists(self.pdf_path):
            raise MissingInputError(f"PDF not found: {self.pdf_path}")
        try:
            self._doc: Optional[fitz.Document] = fitz.open(self.pdf_path)
        except Exception as e:
            raise MissingInputError(
                f"Cannot open PDF {self.pdf_path}: {e}"
            ) from e
        logger.debug(f"Opened {self.pdf_path} ({self._doc.page_count} pages)")

    @property
    def stem(self) -> str:
        return Path(self.pdf_path).stem

    @property
    def page_count(self) -> int:
        return self.document.page_count

    @property
    def document(self) -> fitz.Document:
        if self._doc is None:
            raise MissingInputError(f"Document already closed: {self.pdf_path}")
        return self._doc

    def page(self, number: int) -> fitz.Page:
        """Load a 1-indexed page."""
        if number < 1 or number > self.page_count:
            raise MissingInputError(
                f"Page {number} outside document (1-{self.page_count})",
                page=number,
            )
        return self.document[number - 1]

    def close(self):
        if self._doc is not None:
            self._doc.close()
            self._doc = None

    def __enter__(self) -> "DocumentHandle":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PageRasterizer:
    """
    Pixel source for break detection.

    Pages are rendered in RGB without alpha, so every pixel is exactly
    three bytes.
    """

    def __init__(
        self,
        handle: DocumentHandle,
        config: ExtractorConfig,
        layout: StorageLayout,
    ):
        self.handle = handle
        self.config = config
        self.layout = layout
        self._matrix = fitz.Matrix(config.scale, config.scale)

    def render_page(self, page: int) -> fitz.Pixmap:
        """Return the full-page render, rendering and caching it if needed."""
        path = self.layout.page_image_path(page)
        if path.exists():
            try:
                pix = fitz.Pixmap(str(path))
            except Exception as e:
                logger.warning(
                    f"{page:03d}: Cached page image {path} is unreadable ({e}); "
                    f"rendering again"
                )
            else:
                if pix.alpha:
                    pix = fitz.Pixmap(pix, 0)
                return pix

        pdf_page = self.handle.page(page)
        logger.info(f"{page:03d}: Rendering page at {self.config.dpi} DPI...")
        pix = pdf_page.get_pixmap(
            matrix=self._matrix, colorspace=fitz.csRGB, alpha=False
        )
        save_pixmap_atomic(pix, path)
        return pix

    def column_pixels(self, page: int, column: Union[Column, str]) -> PixelBuffer:
        """
        Crop a column band out of the rendered page:
        x in [crop_x, crop_x + crop_width), y in [y_offset,
        y_offset + image_height), clamped to the page bounds.
        """
        column = Column(column)
        geo = self.config.geometry(column)
        pix = self.render_page(page)

        left = min(geo.crop_x, pix.width)
        right = min(geo.crop_x + geo.crop_width, pix.width)
        top = min(self.config.y_offset, pix.height)
        bottom = min(self.config.y_offset + self.config.image_height, pix.height)
        if right - left < geo.crop_width or bottom - top < self.config.image_height:
            logger.warning(
                f"{page:03d}: Column {column.value} crop clamped to "
                f"{right - left}x{bottom - top} (page is {pix.width}x{pix.height})"
            )

        n = pix.n
        stride = pix.stride
        samples = pix.samples
        rows = []
        for y in range(top, bottom):
            offset = y * stride
            rows.append(samples[offset + left * n:offset + right * n])

        return PixelBuffer(
            samples=b"".join(rows),
            width=right - left,
            height=bottom - top,
            channels=n,
        )

    def render_snippet(
        self,
        page: int,
        column: Union[Column, str],
        index: int,
        break_range: BreakRange,
    ) -> str:
        """
        Save the crop band of one range as a PNG and return its path.
        Existing snippets are left untouched. An empty range has no
        image, so its path is "".
        """
        column = Column(column)
        if break_range.height == 0:
            return ""
        path = self.layout.snippet_path(page, column, index)
        if path.exists():
            return str(path)

        geo = self.config.geometry(column)
        scale = self.config.scale
        clip = fitz.Rect(
            geo.crop_x / scale,
            (self.config.y_offset + break_range.start) / scale,
            (geo.crop_x + geo.crop_width) / scale,
            (self.config.y_offset + break_range.end) / scale,
        )
        pix = self.handle.page(page).get_pixmap(
            matrix=self._matrix, clip=clip, colorspace=fitz.csRGB, alpha=False
        )
        save_pixmap_atomic(pix, path)
        return str(path)

    def render_annotation(
        self,
        page: int,
        left_ranges: list[BreakRange],
        right_ranges: list[BreakRange],
    ) -> str:
        """
        Save the page render with every detected range of both columns
        shaded, and return its path. Rectangles span crop_x to full_width
        of their column. An existing annotation is left untouched.
        """
        path = self.layout.annotation_path(page)
        if path.exists():
            return str(path)

        source = self.handle.page(page)
        logger.info(f"{page:03d}: Creating annotation...")
        scale = self.config.scale

        with fitz.open() as scratch:
            # Draw on a copy so the shared document is never modified.
            scratch.insert_pdf(
                self.handle.document, from_page=source.number, to_page=source.number
            )
            target = scratch[0]
            for column, ranges in (
                (Column.LEFT, left_ranges),
                (Column.RIGHT, right_ranges),
            ):
                geo = self.config.geometry(column)
                for break_range in ranges:
                    if break_range.height == 0:
                        continue
                    target.draw_rect(
                        fitz.Rect(
                            geo.crop_x / scale,
                            (self.config.y_offset + break_range.start) / scale,
                            geo.full_width / scale,
                            (self.config.y_offset + break_range.end) / scale,
                        ),
                        color=None,
                        fill=ANNOTATION_FILL,
                        fill_opacity=ANNOTATION_OPACITY,
                        width=0,
                    )
            pix = target.get_pixmap(
                matrix=self._matrix, colorspace=fitz.csRGB, alpha=False
            )

        save_pixmap_atomic(pix, path)
        return str(path)
