"""In-memory collaborators for ingestion tests."""

from pathlib import Path
from typing import Optional

from src.ingestion.adapter import (
    ChapterRef,
    ChapterUploadReceipt,
    ComicMetadata,
    ComicPage,
    ComicRecord,
    SiteConfig,
    TitleRef,
)
from src.ingestion.chapters import format_number, normalize_number


def make_config(site_id: str, alternative: Optional[str] = None, search: Optional[str] = "https://example.test/?s=",
                lazy: bool = False) -> SiteConfig:
    return SiteConfig(
        site_id=site_id,
        default=f"https://{site_id}/list",
        elements={},
        search=search,
        is_lazy_load=lazy,
        alternative=alternative,
    )


def chapter(number, site: str = "primary.test") -> ChapterRef:
    return ChapterRef(number=normalize_number(number), link=f"https://{site}/ch-{number}")


class FakeAdapter:
    """Site adapter serving canned titles, comic pages and chapter image lists."""

    def __init__(self, config: SiteConfig, titles=None, pages=None, images=None, search_results=None):
        self._config = config
        self.titles = titles or []
        self.pages = pages or {}
        self.images = images or {}
        self.search_results = search_results or {}
        self.searched = []

    @property
    def site_id(self):
        return self._config.site_id

    @property
    def config(self):
        return self._config

    def list_titles(self, keyword=None):
        if keyword is not None:
            self.searched.append(keyword)
            return list(self.search_results.get(keyword, []))
        return list(self.titles)

    def read_comic(self, link):
        return self.pages[link]

    def chapter_images(self, chapter_link, is_lazy_load):
        images = self.images.get(chapter_link)
        if isinstance(images, Exception):
            raise images
        if images is None:
            return [f"{chapter_link}/{i}.jpg" for i in range(3)]
        return list(images)


def comic_page(title: str, numbers, site: str = "primary.test") -> ComicPage:
    return ComicPage(
        title=title,
        link=f"https://{site}/comic/{title.lower().replace(' ', '-')}",
        chapters=[chapter(n, site) for n in numbers],
        metadata=ComicMetadata(),
    )


class FakeFetcher:
    """Writes a tiny placeholder file per image; configured URLs raise instead."""

    def __init__(self, failures=None, skip=None):
        self.failures = failures or {}
        self.skip = set(skip or ())
        self.fetched = []

    def fetch(self, url: str, target_dir: Path, stem: str) -> Path:
        self.fetched.append(url)
        if url in self.failures:
            raise self.failures[url]
        path = Path(target_dir) / f"{stem}.webp"
        if url not in self.skip:
            path.write_bytes(b"RIFF0000WEBP")
        return path


class FakeCatalog:
    """Catalog keeping comics and created chapters in memory.

    ``chapter_errors`` maps a chapter link's number to a list of exceptions
    raised on successive uploads of that number.
    """

    def __init__(self, comics=None, chapter_errors=None):
        self.comics = {c.title: c for c in (comics or [])}
        self.chapter_errors = {format_number(k): list(v) for k, v in (chapter_errors or {}).items()}
        self.created_chapters = []
        self.created_comics = []

    def find_comic(self, name):
        return self.comics.get(name)

    def create_comic(self, payload, cover=None):
        record = ComicRecord(id=f"new-{len(self.created_comics) + 1}", title=payload["name"])
        self.created_comics.append((payload, cover))
        self.comics[record.title] = record
        return record

    def create_chapter(self, comic_id, number, images):
        errors = self.chapter_errors.get(format_number(number))
        if errors:
            raise errors.pop(0)
        self.created_chapters.append((comic_id, format_number(number), [p.name for p in images]))
        return ChapterUploadReceipt(chapter_id=f"{comic_id}-{format_number(number)}", slug=None)


def title_ref(title: str, site: str = "primary.test") -> TitleRef:
    return TitleRef(text=title, link=f"https://{site}/comic/{title.lower().replace(' ', '-')}")
