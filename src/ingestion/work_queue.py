"""Failure-aware work queue.

Drives one comic's chapters to completion, one chapter at a time. Recovered
jobs (persisted failures) always go before fresh chapters from the diff.

Outcome rules:
    fresh success        -> nothing to persist
    fresh failure        -> structural reject is skipped, anything else is
                            recorded as a job (critical for source/data faults)
    recovered success    -> job deleted
    recovered failure    -> structural reject deletes the job, a critical job
                            is aborted, anything else releases the claim
A critical job gets exactly one attempt on the alternate site before it is
aborted. A chapter with an aborted job is never dispatched again.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional

from .adapter import CatalogClient, ChapterRef, ComicRecord, FailedJob, SiteAdapter
from .chapters import format_number, normalize_number
from .db import JobStore
from .downloader import ChapterIngestionWorker
from .errors import CatalogError, ErrorKind, IngestionError, SourceUnreachableError
from .logger import logger as LOGGER
from .retry import RetryPolicy, jittered_delay
from .site_reader import clean_title


AdapterLookup = Callable[[str], SiteAdapter]


class QueueState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    DISPATCHING = "dispatching"
    SUCCESS = "success"
    FAILED = "failed"
    DRAINED = "drained"


class RecoveredJobView:
    """In-memory projection of claimable jobs, replaced wholesale by the change feed.

    Readers get an immutable tuple; the feed never mutates a tuple in place.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: tuple = ()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def attach(cls, store: JobStore) -> "RecoveredJobView":
        view = cls()
        view._unsubscribe = store.subscribe(view.update, on_retry=False, aborted=False)
        return view

    def update(self, jobs: Iterable[FailedJob]) -> None:
        snapshot = tuple(jobs)
        with self._lock:
            self._jobs = snapshot

    def snapshot(self) -> tuple:
        with self._lock:
            return self._jobs

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


@dataclass
class QueueReport:
    uploaded: int = 0
    recorded: int = 0
    skipped: int = 0
    released: int = 0
    aborted: int = 0
    deleted: int = 0

    def merge(self, other: "QueueReport") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))


def same_title(a: str, b: str) -> bool:
    def norm(text):
        return " ".join(clean_title(text).casefold().split())
    return norm(a) == norm(b)


class WorkQueue:
    """Selects and dispatches chapter work for one pass.

    One instance is used for a whole pass so that a job released in the pass
    is not picked up again until the next one. Jobs recorded during the pass
    are left for the next pass as well.
    """

    def __init__(
        self,
        store: JobStore,
        worker: ChapterIngestionWorker,
        adapters: AdapterLookup,
        catalog: CatalogClient,
        retry_policy: Optional[RetryPolicy] = None,
        view: Optional[RecoveredJobView] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.worker = worker
        self.adapters = adapters
        self.catalog = catalog
        self.retry_policy = retry_policy or RetryPolicy()
        self.view = view or RecoveredJobView.attach(store)
        self.sleep = sleep
        self.state = QueueState.IDLE
        self._attempted_jobs: set[int] = set()
        self._recovered_chapters: set[tuple[str, Decimal]] = set()

    def _transition(self, state: QueueState) -> None:
        LOGGER.debug(f"Queue state {self.state.value} -> {state.value}")
        self.state = state

    def _pause(self, delay_ms: int) -> None:
        jittered_delay(delay_ms, self.sleep)

    def _next_recovered(self) -> Optional[FailedJob]:
        for job in self.view.snapshot():
            if job.id not in self._attempted_jobs and not job.aborted and not job.on_retry:
                return job
        return None

    def drain(
        self,
        comic: Optional[ComicRecord] = None,
        adapter: Optional[SiteAdapter] = None,
        fresh: Iterable[ChapterRef] = (),
    ) -> QueueReport:
        """Process recovered jobs, then the comic's fresh chapters, until both are empty."""
        report = QueueReport()
        pending = deque(fresh)
        if pending and (comic is None or adapter is None):
            raise ValueError("Fresh chapters need a comic and an adapter")

        self._transition(QueueState.SELECTING)
        while True:
            job = self._next_recovered()
            if job is not None:
                self._transition(QueueState.DISPATCHING)
                self._dispatch_recovered(job, report)
                self._transition(QueueState.SELECTING)
                continue

            if pending:
                chapter = pending.popleft()
                if (comic.id, normalize_number(chapter.number)) in self._recovered_chapters:
                    LOGGER.info(f"Chapter {format_number(chapter.number)} of {comic.title} already retried this pass")
                    continue
                if self.store.has_aborted(comic.id, comic.title, chapter.number):
                    LOGGER.info(f"Chapter {format_number(chapter.number)} of {comic.title} was aborted before, skipping")
                    continue
                self._transition(QueueState.DISPATCHING)
                self._dispatch_fresh(comic, adapter, chapter, report)
                self._transition(QueueState.SELECTING)
                continue

            break

        self._transition(QueueState.DRAINED)
        return report

    # -- fresh jobs ----------------------------------------------------------

    def _dispatch_fresh(self, comic: ComicRecord, adapter: SiteAdapter, chapter: ChapterRef,
                        report: QueueReport) -> None:
        number = format_number(chapter.number)
        self._pause(adapter.config.chapter_delay)

        try:
            self.retry_policy.run(
                self.worker.ingest, adapter, chapter.link, adapter.config.is_lazy_load, comic.id, chapter.number
            )
        except IngestionError as e:
            self._transition(QueueState.FAILED)
            e.with_context(site=adapter.site_id, comic=comic.title, chapter_number=number, link=chapter.link)

            if e.kind is ErrorKind.STRUCTURAL_REJECT:
                LOGGER.warning(f"Skipping chapter {number} of {comic.title}, rejected by the catalog: {e}")
                report.skipped += 1
                return

            LOGGER.error(f"Failed to process chapter {number} of {comic.title}: {e}")
            created = self.store.record_failure(FailedJob(
                source_site=adapter.site_id,
                comic_id=comic.id,
                comic_title=comic.title,
                chapter_link=chapter.link,
                chapter_number=chapter.number,
                is_critical=e.critical,
                error=e.describe(),
            ))
            if created is not None:
                self._attempted_jobs.add(created.id)
                LOGGER.info(f"Recorded failed job {created.id} (critical={created.is_critical})")
                report.recorded += 1
            else:
                LOGGER.info(f"A failed job for chapter {number} of {comic.title} already exists")
            return

        self._transition(QueueState.SUCCESS)
        report.uploaded += 1

    # -- recovered jobs ------------------------------------------------------

    def _resolve_comic_id(self, job: FailedJob) -> Optional[str]:
        if job.comic_id is not None:
            return job.comic_id
        if not job.comic_title:
            return None
        record = self.catalog.find_comic(job.comic_title)
        return record.id if record else None

    def _failover(self, job: FailedJob) -> tuple[SiteAdapter, str]:
        """Locate the job's chapter on the alternate site.

        Raises:
            SourceUnreachableError: No alternative, or comic/chapter missing there
        """
        number = format_number(job.chapter_number)
        context = {"site": job.source_site, "comic": job.comic_title, "chapter_number": number}

        alternative = self.adapters(job.source_site).config.alternative
        if not alternative:
            raise SourceUnreachableError("No alternative site configured", **context)
        if not job.comic_title:
            raise SourceUnreachableError("Job has no comic title to search for", **context)

        alt = self.adapters(alternative)
        if not alt.config.search:
            raise SourceUnreachableError(f"Alternative site {alternative} has no search", **context)

        LOGGER.info(f"Failing over chapter {number} of {job.comic_title} to {alternative}")
        match = next((t for t in alt.list_titles(keyword=job.comic_title) if same_title(t.text, job.comic_title)), None)
        if match is None:
            raise SourceUnreachableError(f"Comic not found on {alternative}", **context)

        page = alt.read_comic(match.link)
        target = normalize_number(job.chapter_number)
        chapter = next((c for c in page.chapters if normalize_number(c.number) == target), None)
        if chapter is None:
            raise SourceUnreachableError(f"Chapter not found on {alternative}", link=match.link, **context)

        LOGGER.info(f"Redirecting chapter {number} of {job.comic_title} to {chapter.link}")
        return alt, chapter.link

    def _dispatch_recovered(self, job: FailedJob, report: QueueReport) -> None:
        self._attempted_jobs.add(job.id)
        number = format_number(job.chapter_number)
        label = f"job {job.id} ({job.comic_title or job.comic_id} chapter {number})"

        if not self.store.claim(job.id):
            LOGGER.debug(f"Could not claim {label}, skipping")
            return

        LOGGER.info(f"Retrying {label} from {job.source_site} (critical={job.is_critical})")

        try:
            if job.is_critical:
                adapter, link = self._failover(job)
            else:
                adapter, link = self.adapters(job.source_site), job.chapter_link
        except IngestionError as e:
            self._transition(QueueState.FAILED)
            if e.retryable:
                LOGGER.warning(f"Could not reach source for {label}, releasing: {e}")
                self.store.release(job.id, error=e.describe())
                report.released += 1
            else:
                LOGGER.error(f"Aborting {label}: {e}")
                self._abort(job, job.comic_id, e, report)
            return

        try:
            comic_id = self._resolve_comic_id(job)
        except CatalogError:
            self.store.release(job.id)
            raise
        if comic_id is None:
            self._transition(QueueState.FAILED)
            LOGGER.warning(f"Comic for {label} is not in the catalog yet, releasing")
            self.store.release(job.id)
            report.released += 1
            return

        self._recovered_chapters.add((comic_id, normalize_number(job.chapter_number)))
        self._pause(adapter.config.chapter_delay)

        try:
            self.retry_policy.run(
                self.worker.ingest, adapter, link, adapter.config.is_lazy_load, comic_id, job.chapter_number
            )
        except IngestionError as e:
            self._transition(QueueState.FAILED)
            e.with_context(site=adapter.site_id, comic=job.comic_title, chapter_number=number, link=link)
            self._recovered_failed(job, comic_id, label, e, report)
            return

        self._transition(QueueState.SUCCESS)
        self.store.delete(job.id)
        LOGGER.info(f"Recovered {label}")
        report.uploaded += 1
        report.deleted += 1

    def _abort(self, job: FailedJob, comic_id: Optional[str], error: IngestionError, report: QueueReport) -> None:
        self.store.abort(job.id, error=error.describe())
        if comic_id is not None:
            self._recovered_chapters.add((comic_id, normalize_number(job.chapter_number)))
        report.aborted += 1

    def _recovered_failed(self, job: FailedJob, comic_id: str, label: str, error: IngestionError,
                          report: QueueReport) -> None:
        if error.kind is ErrorKind.STRUCTURAL_REJECT:
            LOGGER.warning(f"Dropping {label}, rejected by the catalog: {error}")
            self.store.delete(job.id)
            report.deleted += 1
        elif job.is_critical:
            LOGGER.error(f"Aborting {label}, alternate source failed too: {error}")
            self._abort(job, comic_id, error, report)
        else:
            LOGGER.warning(f"Retry of {label} failed, releasing for a later pass: {error}")
            self.store.release(job.id, error=error.describe())
            report.released += 1

    def close(self) -> None:
        self.view.close()
