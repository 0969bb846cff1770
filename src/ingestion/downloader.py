"""Chapter ingestion: concurrent page download, staging checks and upload."""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal
from pathlib import Path

from .adapter import CatalogClient, ChapterUploadReceipt, ImageFetcher, SiteAdapter
from .chapters import format_number
from .errors import CountMismatchError, DataIntegrityError, IngestionError
from .logger import logger as LOGGER
from .storage import ScratchDirectory, get_page_stem, list_staged_pages


DEFAULT_IMAGE_WORKERS = 5


class ChapterIngestionWorker:
    """Downloads every page of a chapter and uploads the chapter in one piece.

    A chapter is uploaded only when every page downloaded; there are no
    partial uploads.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        fetcher: ImageFetcher,
        scratch_dir: Path,
        max_workers: int = DEFAULT_IMAGE_WORKERS,
    ):
        self.catalog = catalog
        self.fetcher = fetcher
        self.scratch = ScratchDirectory(scratch_dir)
        self.max_workers = max_workers

    def _download_pages(self, image_urls: list[str], target_dir: Path) -> None:
        """Fetch all pages with a fixed-width pool. The first failure is raised."""
        errors: list[tuple[int, IngestionError]] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.fetcher.fetch, url, target_dir, get_page_stem(index)): index
                for index, url in enumerate(image_urls)
            }

            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                except IngestionError as e:
                    errors.append((index, e))

        if errors:
            index, first = min(errors, key=lambda item: item[0])
            LOGGER.debug(f"{len(errors)} of {len(image_urls)} pages failed, first at page {index}")
            raise first

    def ingest(
        self,
        adapter: SiteAdapter,
        chapter_link: str,
        is_lazy_load: bool,
        comic_id: str,
        chapter_number: Decimal,
    ) -> ChapterUploadReceipt:
        """Ingest one chapter.

        Args:
            adapter: Site adapter that knows how to read the chapter page
            chapter_link: Chapter page URL
            is_lazy_load: Whether image tags live in <noscript> blocks
            comic_id: Catalog comic id
            chapter_number: Chapter number to create

        Returns:
            Receipt of the created chapter

        Raises:
            IngestionError: Any classified failure; nothing is uploaded in that case
        """
        context = {
            "site": adapter.site_id,
            "comic": comic_id,
            "chapter_number": format_number(chapter_number),
            "link": chapter_link,
        }
        start_time = time.monotonic()

        try:
            LOGGER.info(f"Opening chapter page: {chapter_link}")
            image_urls = adapter.chapter_images(chapter_link, is_lazy_load)
            if not image_urls:
                raise DataIntegrityError("No images found on chapter page")

            with self.scratch as staging:
                LOGGER.info(f"Downloading {len(image_urls)} images for chapter {context['chapter_number']}")
                self._download_pages(image_urls, staging)

                pages = list_staged_pages(staging)
                if len(pages) != len(image_urls):
                    raise CountMismatchError(len(image_urls), len(pages))

                LOGGER.info(f"Uploading chapter {context['chapter_number']} data...")
                receipt = self.catalog.create_chapter(comic_id, chapter_number, pages)
        except IngestionError as e:
            raise e.with_context(**context)

        LOGGER.info(
            f"Chapter {context['chapter_number']} processed in {time.monotonic() - start_time:.1f} seconds"
        )
        return receipt
