"""Scratch directory handling and deterministic page file naming."""

import re
import shutil
from pathlib import Path
from typing import Optional

_PAGE_INDEX_RE = re.compile(r"^(\d+)")


def get_page_stem(page_index: int) -> str:
    """Return deterministic filename stem for a page."""
    return f"{page_index:03d}"


def page_index_of(path: Path) -> Optional[int]:
    """Return the numeric page index a staged filename starts with."""
    match = _PAGE_INDEX_RE.match(path.name)
    return int(match.group(1)) if match else None


def list_staged_pages(directory: Path) -> list[Path]:
    """List staged page files ordered by their numeric index, not directory order."""
    pages = [p for p in directory.iterdir() if p.is_file() and page_index_of(p) is not None]
    return sorted(pages, key=page_index_of)


class ScratchDirectory:
    """Exclusive staging directory for one chapter.

    The directory is emptied on entry and removed on exit, whether the
    chapter succeeded or not.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def clear(self) -> None:
        if self.path.exists():
            shutil.rmtree(self.path)

    def __enter__(self) -> Path:
        self.clear()
        self.path.mkdir(parents=True)
        return self.path

    def __exit__(self, exc_type, exc, tb):
        shutil.rmtree(self.path, ignore_errors=True)
        return False
