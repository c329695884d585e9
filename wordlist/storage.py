"""
Filesystem Storage Layout
=========================
Manages where rendered pages, region snippets, cached artifacts and run
outputs live. Everything is rooted at the configured output directory.

Directory Layout:
    output/
    ├── pages/       # Full-page renders, one PNG per page
    ├── snippets/    # One PNG per detected range: NNN-c-i.png
    ├── annotations/ # Detected ranges drawn over the page: NNN-annot.png
    ├── cache/       # Per (page, column) artifacts: NNN-c.txt / NNN-c.json
    ├── entries.json
    └── run_report.json
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Union

from .config import column_key
from .models import Column

logger = logging.getLogger(__name__)


class StorageLayout:
    """Path scheme for one output directory."""

    def __init__(self, output_dir: Union[str, Path], document_stem: str = "page"):
        self.root = Path(output_dir)
        self.pages_dir = self.root / "pages"
        self.snippets_dir = self.root / "snippets"
        self.annotations_dir = self.root / "annotations"
        self.cache_dir = self.root / "cache"
        self.document_stem = _sanitize_name(document_stem) or "page"

    def init_storage(self):
        """Ensure all required directories exist."""
        for directory in (
            self.pages_dir, self.snippets_dir, self.annotations_dir, self.cache_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Storage initialized: {self.root}")

    # ─── Page / Snippet Images ────────────────────────────────────────────

    def page_image_path(self, page: int) -> Path:
        return self.pages_dir / f"{self.document_stem}-{page:03d}.png"

    def snippet_path(self, page: int, column: Union[Column, str], index: int) -> Path:
        return self.snippets_dir / f"{column_key(page, column)}-{index}.png"

    def annotation_path(self, page: int) -> Path:
        return self.annotations_dir / f"{page:03d}-annot.png"

    # ─── Cached Artifacts ─────────────────────────────────────────────────

    def ranges_path(self, page: int, column: Union[Column, str]) -> Path:
        return self.cache_dir / f"{column_key(page, column)}.txt"

    def records_path(self, page: int, column: Union[Column, str]) -> Path:
        return self.cache_dir / f"{column_key(page, column)}.json"

    # ─── Run Outputs ──────────────────────────────────────────────────────

    @property
    def entries_path(self) -> Path:
        return self.root / "entries.json"

    @property
    def report_path(self) -> Path:
        return self.root / "run_report.json"


# ─── Writers ──────────────────────────────────────────────────────────────────


@contextmanager
def atomic_target(path: Path) -> Iterator[Path]:
    """
    Yield a process-unique temp path beside `path` and rename it into
    place once the block completes, so readers only ever see a complete
    file even when two jobs race on the same key or a worker is killed
    mid-write. The temp name keeps the target's suffix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.stem}.{os.getpid()}.tmp{path.suffix}")
    try:
        yield tmp
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


def write_text_atomic(path: Path, content: str):
    with atomic_target(path) as tmp:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)


def write_json_atomic(path: Path, data: Any):
    write_text_atomic(
        path, json.dumps(data, indent=2, ensure_ascii=False, default=str)
    )


def save_pixmap_atomic(pix: Any, path: Path):
    """Save a PyMuPDF Pixmap as PNG without ever exposing a partial file."""
    with atomic_target(path) as tmp:
        pix.save(str(tmp), output="png")


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _sanitize_name(name: str) -> str:
    """Sanitize a name for filesystem use."""
    return "".join(
        c if c.isalnum() or c in "-_ " else "_"
        for c in name
    ).strip().replace(" ", "_")[:100]
