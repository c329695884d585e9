"""
Shared fixtures: storage layouts, configs and a synthetic two-column
word list PDF.
"""

from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF
import pytest

from wordlist.cache import PageCache
from wordlist.config import ExtractorConfig, OverrideTable
from wordlist.storage import StorageLayout

# Text placed on each synthetic page, in PDF points (A4, 595 x 842).
# Definitions sit in the definition box of their column, examples in the
# example box. A block without a definition continues the entry above.
PAGE_CONTENT = {
    1: {
        "left": [
            (120, "der Test", "Das ist ein Test."),
            (220, "das Haus", "Das Haus ist gross."),
            (320, None, "Es hat einen Garten."),
        ],
        "right": [
            (150, "die Probe", "Wir machen eine Probe."),
        ],
    },
    2: {
        "left": [
            (120, None, "Er wohnt dort."),
            (220, "der Baum", "Der Baum ist alt."),
        ],
        "right": [
            (150, "lesen", "Ich lese gern."),
        ],
    },
}

LEFT_DEFINITION_X = 40
LEFT_EXAMPLE_X = 140
RIGHT_DEFINITION_X = 320
RIGHT_EXAMPLE_X = 420


def build_wordlist_pdf(path: Path, content: dict = PAGE_CONTENT) -> Path:
    """Write a PDF with one page per key of `content`."""
    doc = fitz.open()
    for number in sorted(content):
        page = doc.new_page(width=595, height=842)
        columns = content[number]
        for side, definition_x, example_x in (
            ("left", LEFT_DEFINITION_X, LEFT_EXAMPLE_X),
            ("right", RIGHT_DEFINITION_X, RIGHT_EXAMPLE_X),
        ):
            for baseline, definition, example in columns.get(side, []):
                if definition:
                    page.insert_text((definition_x, baseline), definition, fontsize=10)
                if example:
                    page.insert_text((example_x, baseline), example, fontsize=10)
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def wordlist_pdf(tmp_path) -> Path:
    return build_wordlist_pdf(tmp_path / "wortliste.pdf")


@pytest.fixture
def pdf_config(tmp_path, wordlist_pdf) -> ExtractorConfig:
    return ExtractorConfig(
        pdf_path=str(wordlist_pdf),
        page_start=1,
        page_end=2,
        overrides=OverrideTable(),
        output_dir=str(tmp_path / "output"),
        workers=2,
        job_timeout=120.0,
    )


@pytest.fixture
def layout(tmp_path) -> StorageLayout:
    layout = StorageLayout(tmp_path / "output", "wortliste")
    layout.init_storage()
    return layout


@pytest.fixture
def cache(layout) -> PageCache:
    return PageCache(layout)
