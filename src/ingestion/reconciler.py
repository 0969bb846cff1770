"""Resolve scraped titles to catalog comics, creating them when missing."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .adapter import CatalogClient, ComicPage, ComicRecord, ImageFetcher, SiteAdapter, TitleRef
from .db import JobStore
from .errors import CatalogError, IngestionError
from .logger import logger as LOGGER
from .storage import ScratchDirectory


class RatingLookup(Protocol):
    def lookup(self, title: str) -> Optional[str]:
        ...


@dataclass
class ComicPass:
    """Everything needed to process one comic during a pass."""
    record: ComicRecord
    page: ComicPage


class CatalogReconciler:
    """Find-or-create catalog comics for scraped titles."""

    def __init__(
        self,
        catalog: CatalogClient,
        aliases: JobStore,
        fetcher: ImageFetcher,
        scratch_dir: Path,
        taxonomy: Optional[dict] = None,
        ratings: Optional[RatingLookup] = None,
    ):
        self.catalog = catalog
        self.aliases = aliases
        self.fetcher = fetcher
        self.scratch = ScratchDirectory(scratch_dir)
        self.taxonomy = taxonomy or {"types": {}, "statuses": {}, "genres": {}}
        self.ratings = ratings

    def canonical_title(self, scraped_title: str) -> str:
        """Map a scraped title to the catalog's name for it via the similar-title store."""
        alias = self.aliases.resolve_alias(scraped_title)
        if alias and alias != scraped_title:
            LOGGER.info(f"Using similar title {alias!r} for {scraped_title!r}")
        return alias or scraped_title

    def build_payload(self, name: str, page: ComicPage) -> dict:
        """Build the catalog create payload, translating labels through the taxonomy."""
        metadata = page.metadata
        statuses = self.taxonomy.get("statuses", {})
        genres = self.taxonomy.get("genres", {})

        status_id = statuses.get(metadata.status_label or "")
        if status_id is None:
            status_id = statuses.get("ongoing")

        return {
            "name": name,
            "description": metadata.description,
            "type_id": self.taxonomy.get("types", {}).get(metadata.type_label or ""),
            "author": metadata.author,
            "status_id": status_id,
            "genres": [genres[label] for label in metadata.genre_labels if label in genres],
            "rating": self.ratings.lookup(name) if self.ratings is not None else None,
        }

    def _create(self, name: str, page: ComicPage) -> Optional[ComicRecord]:
        payload = self.build_payload(name, page)

        with self.scratch as staging:
            cover = None
            if page.metadata.cover_url:
                try:
                    cover = self.fetcher.fetch(page.metadata.cover_url, staging, "cover")
                except IngestionError as e:
                    LOGGER.error(f"comic-image: Failed for {name}: {e}")

            try:
                return self.catalog.create_comic(payload, cover=cover)
            except CatalogError as e:
                LOGGER.error(f"Failed to create comic {name}: {e}")
                return None

    def resolve(self, adapter: SiteAdapter, title: TitleRef) -> Optional[ComicPass]:
        """Read a title's comic page and find or create its catalog record.

        Returns:
            The comic pass, or None when the comic could not be created

        Raises:
            CatalogError: When the catalog lookup fails for any reason but "not found"
        """
        LOGGER.info(f"Opening comic page: {title.link}")
        page = adapter.read_comic(title.link)
        name = self.canonical_title(page.title or title.text)

        LOGGER.info(f"Checking if comic {name} exists in the API...")
        record = self.catalog.find_comic(name)

        if record is not None:
            LOGGER.info(f"Comic {name} found. ID: {record.id}")
        else:
            LOGGER.info(f"Comic {name} not found. Creating it from {adapter.site_id}")
            record = self._create(name, page)
            if record is None:
                return None

        return ComicPass(record=record, page=page)
