"""Data structures and collaborator protocols for comic ingestion."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional, Protocol


@dataclass(frozen=True)
class TitleRef:
    """A title as listed on a source site."""
    text: str
    link: str


@dataclass(frozen=True)
class ChapterRef:
    """A chapter as listed on a comic page. Identity is ``number`` within a comic."""
    number: Decimal
    link: str


@dataclass
class ComicMetadata:
    """Fields scraped from a comic page, used when the catalog has no record yet."""
    description: Optional[str] = None
    author: Optional[str] = None
    type_label: Optional[str] = None
    status_label: Optional[str] = None
    genre_labels: list[str] = field(default_factory=list)
    cover_url: Optional[str] = None


@dataclass
class ComicPage:
    """Result of reading one comic page on a source."""
    title: str
    link: str
    chapters: list[ChapterRef]
    metadata: ComicMetadata


@dataclass(frozen=True)
class ComicRecord:
    """Read-only copy of a catalog comic for one processing pass."""
    id: str
    title: str
    ingested_chapter_numbers: frozenset = frozenset()


@dataclass(frozen=True)
class ChapterUploadReceipt:
    chapter_id: Optional[str]
    slug: Optional[str]


@dataclass
class FailedJob:
    """Persisted record of a chapter ingestion that has to be retried."""
    source_site: str
    chapter_link: str
    chapter_number: Decimal
    comic_id: Optional[str] = None
    comic_title: Optional[str] = None
    on_retry: bool = False
    is_critical: bool = False
    aborted: bool = False
    id: Optional[int] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None


@dataclass
class SiteConfig:
    """Per-site scraping configuration."""
    site_id: str
    default: str
    elements: dict
    search: Optional[str] = None
    search_elements: Optional[dict] = None
    is_lazy_load: bool = False
    comic_delay: int = 0
    chapter_delay: int = 0
    alternative: Optional[str] = None
    use_browser: bool = False
    image_proxy: bool = False

    @classmethod
    def from_dict(cls, site_id: str, data: dict) -> "SiteConfig":
        return cls(
            site_id=site_id,
            default=data["default"],
            elements=data.get("elements", {}),
            search=data.get("search"),
            search_elements=data.get("searchElements"),
            is_lazy_load=bool(data.get("isLazyLoad", False)),
            comic_delay=int(data.get("comicDelay", 0) or 0),
            chapter_delay=int(data.get("chapterDelay", 0) or 0),
            alternative=data.get("alternative"),
            use_browser=bool(data.get("browser", False)),
            image_proxy=bool(data.get("imageProxy", False)),
        )

    def to_dict(self) -> dict:
        data = {
            "default": self.default,
            "elements": self.elements,
            "isLazyLoad": self.is_lazy_load,
            "comicDelay": self.comic_delay,
            "chapterDelay": self.chapter_delay,
            "browser": self.use_browser,
            "imageProxy": self.image_proxy,
        }
        if self.search:
            data["search"] = self.search
        if self.search_elements:
            data["searchElements"] = self.search_elements
        if self.alternative:
            data["alternative"] = self.alternative
        return data


class FetchSession(Protocol):
    """Fetches rendered page markup for a site adapter."""

    def get_html(self, url: str, wait_for: Optional[str] = None) -> str:
        ...

    def close(self) -> None:
        ...


class SiteAdapter(Protocol):
    """Protocol implemented by source site readers."""

    @property
    def site_id(self) -> str:
        ...

    @property
    def config(self) -> SiteConfig:
        ...

    def list_titles(self, keyword: Optional[str] = None) -> list[TitleRef]:
        """List titles from the site front page, or search results for a keyword."""
        ...

    def read_comic(self, link: str) -> ComicPage:
        """Read title, metadata and chapter list from a comic page."""
        ...

    def chapter_images(self, chapter_link: str, is_lazy_load: bool) -> list[str]:
        """Return image URLs of a chapter in reading order."""
        ...


class ImageFetcher(Protocol):
    """Downloads one image and stores it normalized under ``target_dir``."""

    def fetch(self, url: str, target_dir: Path, stem: str) -> Path:
        ...


class CatalogClient(Protocol):
    def find_comic(self, name: str) -> Optional[ComicRecord]:
        ...

    def create_comic(self, payload: dict, cover: Optional[Path] = None) -> ComicRecord:
        ...

    def create_chapter(self, comic_id: str, number: Decimal, images: list[Path]) -> ChapterUploadReceipt:
        ...
