"""One ingestion pass over the registered sites."""

import time
from datetime import timedelta
from typing import Callable, Dict, Optional

from . import registry
from .adapter import CatalogClient, ImageFetcher, SiteAdapter, SiteConfig
from .catalog import HttpCatalogClient
from .chapters import diff_chapters
from .db import JobStore
from .downloader import ChapterIngestionWorker
from .errors import IngestionError, SourceUnreachableError
from .fetch import open_session
from .images import HttpImageFetcher
from .logger import logger as LOGGER
from .rating import MangaDexRatings
from .reconciler import CatalogReconciler, RatingLookup
from .retry import RetryPolicy, jittered_delay
from .settings import Settings
from .site_reader import SelectorSiteAdapter
from .work_queue import QueueReport, WorkQueue


class SiteAdapters:
    """Builds one adapter, with its own fetch session, per site on first use."""

    def __init__(
        self,
        sites: Dict[str, SiteConfig],
        timeout: float = 30.0,
        session_factory: Callable = open_session,
        adapter_factory: Callable = SelectorSiteAdapter,
    ):
        self.sites = sites
        self.timeout = timeout
        self.session_factory = session_factory
        self.adapter_factory = adapter_factory
        self._adapters: Dict[str, SiteAdapter] = {}
        self._sessions = []

    def __call__(self, site_id: str) -> SiteAdapter:
        if site_id not in self._adapters:
            config = self.sites.get(site_id)
            if config is None:
                raise SourceUnreachableError(f"Site {site_id} is not registered", site=site_id)
            session = self.session_factory(config, self.timeout)
            self._sessions.append(session)
            self._adapters[site_id] = self.adapter_factory(config, session)
        return self._adapters[site_id]

    def close(self) -> None:
        for session in self._sessions:
            session.close()
        self._sessions.clear()
        self._adapters.clear()


class IngestionPipeline:
    """Discover titles, reconcile them, diff chapters and drain the work queue."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        catalog: CatalogClient,
        fetcher: ImageFetcher,
        sites: Optional[Dict[str, SiteConfig]] = None,
        taxonomy: Optional[dict] = None,
        blacklist: Optional[Dict[str, frozenset]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        adapters: Optional[Callable[[str], SiteAdapter]] = None,
        ratings: Optional[RatingLookup] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.store = store
        self.catalog = catalog
        self.sites = sites if sites is not None else registry.list_sites(settings.data_dir)
        self.blacklist = blacklist
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            backoff=settings.retry_backoff,
            base=settings.retry_base,
            delay=settings.retry_delay,
            sleep=sleep,
        )
        self.adapters = adapters
        self.sleep = sleep
        self.worker = ChapterIngestionWorker(
            catalog, fetcher, settings.scratch_dir, max_workers=settings.image_workers
        )
        self.reconciler = CatalogReconciler(
            catalog,
            store,
            fetcher,
            settings.scratch_dir,
            taxonomy if taxonomy is not None else registry.load_taxonomy(settings.data_dir),
            ratings=ratings,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestionPipeline":
        store = JobStore(settings.db_path)
        catalog = HttpCatalogClient(settings.api_endpoint, settings.access_token, timeout=settings.http_timeout)
        fetcher = HttpImageFetcher(timeout=settings.http_timeout)
        ratings = MangaDexRatings(timeout=settings.http_timeout) if settings.rating_lookup else None
        return cls(settings, store, catalog, fetcher, ratings=ratings)

    def _select_sites(self, site_ids: Optional[list[str]]) -> list[str]:
        if not site_ids:
            return list(self.sites)
        unknown = [site_id for site_id in site_ids if site_id not in self.sites]
        if unknown:
            raise ValueError(f"Unknown site(s): {', '.join(unknown)}")
        return list(site_ids)

    def run_pass(self, site_ids: Optional[list[str]] = None, keyword: Optional[str] = None) -> QueueReport:
        """Run one full pass.

        Args:
            site_ids: Sites to scrape, all registered sites when empty
            keyword: Search keyword instead of the site's default listing

        Returns:
            Totals of what happened to every unit of work

        Raises:
            CatalogError: A catalog lookup failed unexpectedly; the pass stops
        """
        selected = self._select_sites(site_ids)
        blacklist = self.blacklist if self.blacklist is not None else registry.load_blacklist(self.settings.data_dir)

        self.store.reclaim_stale(timedelta(hours=self.settings.reclaim_after_hours))
        self.store.refresh()

        adapters = self.adapters or SiteAdapters(self.sites, timeout=self.settings.http_timeout)
        queue = WorkQueue(self.store, self.worker, adapters, self.catalog, self.retry_policy, sleep=self.sleep)
        report = QueueReport()

        try:
            for site_id in selected:
                adapter = adapters(site_id)

                try:
                    titles = adapter.list_titles(keyword)
                except IngestionError as e:
                    LOGGER.error(f"Failed to list titles on {site_id}: {e}")
                    continue

                for title in titles:
                    jittered_delay(adapter.config.comic_delay, self.sleep)

                    try:
                        comic = self.reconciler.resolve(adapter, title)
                    except IngestionError as e:
                        LOGGER.error(f"Failed to read comic {title.text} on {site_id}: {e}")
                        continue
                    if comic is None:
                        continue

                    fresh = diff_chapters(
                        comic.page.chapters,
                        comic.record.ingested_chapter_numbers,
                        blacklist.get(comic.record.id, frozenset()),
                    )
                    LOGGER.info(f"Chapters to scrape for {comic.record.title}: {len(fresh)}")
                    report.merge(queue.drain(comic.record, adapter, fresh))

            # jobs of comics that were not listed in this pass
            report.merge(queue.drain())
        finally:
            queue.close()
            if self.adapters is None:
                adapters.close()

        LOGGER.info(
            f"All done: {report.uploaded} uploaded, {report.recorded} recorded, {report.released} released, "
            f"{report.aborted} aborted, {report.skipped} skipped"
        )
        return report
