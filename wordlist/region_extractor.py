"""
Region Text Extractor
=====================
Reads the text layer of a PDF page inside a pixel-space bounding box
using PyMuPDF (fitz).

Pixel coordinates are mapped to PDF points through the render DPI, so
boxes line up with the images the break detector scanned. Text comes
back in reading order: lines top-to-bottom, then left-to-right.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

import fitz  # PyMuPDF

from .config import ExtractorConfig
from .models import BreakRange, Column, RawRecord
from .rasterizer import DocumentHandle

logger = logging.getLogger(__name__)

# Snippet writer: (page, column, index, range) -> image path
SnippetFn = Callable[[int, Column, int, BreakRange], str]


class RegionTextExtractor:
    """
    Extracts text from rectangular regions of a page.
    """

    def __init__(self, handle: DocumentHandle, config: ExtractorConfig):
        self.handle = handle
        self.config = config

    def extract_text(
        self,
        page: int,
        box: tuple[int, int, int, int],
    ) -> str:
        """
        Return the text inside a pixel box.

        Args:
            page: 1-indexed page number.
            box: (x, y, width, height) in pixels at the configured DPI.
        """
        x, y, width, height = box
        if width <= 0 or height <= 0:
            return ""

        scale = self.config.scale
        clip = fitz.Rect(x / scale, y / scale, (x + width) / scale, (y + height) / scale)
        words = self.handle.page(page).get_text("words", clip=clip)
        return self._join_words(words)

    def extract_records(
        self,
        page: int,
        column: Union[Column, str],
        ranges: list[BreakRange],
        snippet: Optional[SnippetFn] = None,
    ) -> list[RawRecord]:
        """One record per range: definition box + example box."""
        column = Column(column)
        geo = self.config.geometry(column)
        records: list[RawRecord] = []

        for index, break_range in enumerate(ranges):
            top = self.config.y_offset + break_range.start
            definition = self.extract_text(
                page, (geo.text_x, top, geo.text_width, break_range.height)
            )
            example = self.extract_text(
                page, (geo.example_x, top, geo.example_width, break_range.height)
            )
            image_path = snippet(page, column, index, break_range) if snippet else ""
            records.append(RawRecord(
                index=index,
                definition=definition,
                example=example,
                source_image_path=image_path,
            ))

        logger.debug(
            f"{page:03d}: Extracted {len(records)} records from column {column.value}"
        )
        return records

    def _join_words(self, words: list) -> str:
        """
        Group words into lines and order them.

        Each word is (x0, y0, x1, y1, text, block_no, line_no, word_no).
        """
        lines: dict[tuple[int, int], list] = {}
        for w in words:
            lines.setdefault((w[5], w[6]), []).append(w)

        ordered = []
        for line_words in lines.values():
            line_words.sort(key=lambda w: w[0])
            y0 = min(w[1] for w in line_words)
            x0 = line_words[0][0]
            text = " ".join(w[4] for w in line_words)
            ordered.append((round(y0, 1), x0, text))

        ordered.sort(key=lambda item: (item[0], item[1]))
        return "\n".join(text for _, _, text in ordered).strip()
