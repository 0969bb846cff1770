"""SQLite store for failed chapter jobs and similar-title aliases."""

import sqlite3
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

from .adapter import FailedJob
from .chapters import format_number
from .logger import logger as LOGGER


JobCallback = Callable[[list[FailedJob]], None]

_FILTER_COLUMNS = {
    "source_site": "source_site",
    "comic_id": "comic_id",
    "on_retry": "on_retry",
    "is_critical": "is_critical",
    "aborted": "aborted",
}


class JobStore:
    """Durable store of failed jobs with a filtered change feed.

    Subscribers receive the full filtered job list, in insertion order, once on
    subscription and again after every mutation.
    """

    def __init__(self, db_path: Path):
        """Open the database and create the schema if needed."""
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._subscribers: dict[int, tuple[JobCallback, dict]] = {}
        self._next_token = 0
        self._create_schema()

    def _create_schema(self):
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS failed_jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_site TEXT NOT NULL,
                comic_id TEXT,
                comic_title TEXT,
                comic_key TEXT NOT NULL,
                chapter_link TEXT NOT NULL,
                chapter_number TEXT NOT NULL,
                on_retry INTEGER NOT NULL DEFAULT 0,
                is_critical INTEGER NOT NULL DEFAULT 0,
                aborted INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                created_at TEXT NOT NULL,
                claimed_at TEXT
            )
        """)

        # One live job per chapter; aborted rows do not count
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS failed_jobs_live_chapter
            ON failed_jobs (comic_key, chapter_number)
            WHERE aborted = 0
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS title_aliases (
                alias TEXT PRIMARY KEY,
                title TEXT NOT NULL
            )
        """)

        self.conn.commit()

    @staticmethod
    def _comic_key(comic_id: Optional[str], comic_title: Optional[str]) -> str:
        if comic_id is not None:
            return f"id:{comic_id}"
        return f"title:{(comic_title or '').strip().lower()}"

    @classmethod
    def _comic_keys(cls, comic_id: Optional[str], comic_title: Optional[str]) -> tuple[str, str]:
        """Both keys a comic may have been recorded under."""
        key = cls._comic_key(comic_id, comic_title)
        if not (comic_title or "").strip():
            return key, key
        return key, cls._comic_key(None, comic_title)

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> FailedJob:
        return FailedJob(
            id=row["id"],
            source_site=row["source_site"],
            comic_id=row["comic_id"],
            comic_title=row["comic_title"],
            chapter_link=row["chapter_link"],
            chapter_number=Decimal(row["chapter_number"]),
            on_retry=bool(row["on_retry"]),
            is_critical=bool(row["is_critical"]),
            aborted=bool(row["aborted"]),
            error=row["error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            claimed_at=datetime.fromisoformat(row["claimed_at"]) if row["claimed_at"] else None,
        )

    # -- reads ---------------------------------------------------------------

    def get(self, job_id: int) -> Optional[FailedJob]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM failed_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def query(self, **filters) -> list[FailedJob]:
        """Return jobs matching all exact-match filters, oldest first."""
        clauses = []
        params = []
        for key, value in filters.items():
            if key not in _FILTER_COLUMNS:
                raise ValueError(f"Unknown job filter: {key}")
            if value is None:
                clauses.append(f"{_FILTER_COLUMNS[key]} IS NULL")
                continue
            clauses.append(f"{_FILTER_COLUMNS[key]} = ?")
            params.append(int(value) if isinstance(value, bool) else value)

        sql = "SELECT * FROM failed_jobs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"

        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def find_live(self, comic_id: Optional[str], comic_title: Optional[str], chapter_number) -> Optional[FailedJob]:
        """Return the non-aborted job for a chapter, if any."""
        with self._lock:
            row = self.conn.execute(
                """
                SELECT * FROM failed_jobs
                WHERE comic_key = ? AND chapter_number = ? AND aborted = 0
            """,
                (self._comic_key(comic_id, comic_title), format_number(chapter_number)),
            ).fetchone()
        return self._row_to_job(row) if row else None

    def has_aborted(self, comic_id: Optional[str], comic_title: Optional[str], chapter_number) -> bool:
        """True when the chapter was given up on; it is never worked on again."""
        keys = self._comic_keys(comic_id, comic_title)
        with self._lock:
            row = self.conn.execute(
                """
                SELECT 1 FROM failed_jobs
                WHERE comic_key IN (?, ?) AND chapter_number = ? AND aborted = 1
                LIMIT 1
            """,
                (*keys, format_number(chapter_number)),
            ).fetchone()
        return row is not None

    # -- writes --------------------------------------------------------------

    def record_failure(self, job: FailedJob) -> Optional[FailedJob]:
        """Insert a job unless the chapter already has a live or an aborted job.

        Returns:
            The created job, or None when an equivalent job was already stored
            or the chapter was aborted before
        """
        created_at = datetime.utcnow()
        number = format_number(job.chapter_number)

        with self._lock:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO failed_jobs
                (source_site, comic_id, comic_title, comic_key, chapter_link, chapter_number,
                 on_retry, is_critical, aborted, error, created_at)
                SELECT ?, ?, ?, ?, ?, ?, 0, ?, 0, ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM failed_jobs
                    WHERE comic_key IN (?, ?) AND chapter_number = ? AND aborted = 1
                )
            """,
                (
                    job.source_site,
                    job.comic_id,
                    job.comic_title,
                    self._comic_key(job.comic_id, job.comic_title),
                    job.chapter_link,
                    number,
                    int(job.is_critical),
                    job.error,
                    created_at.isoformat(),
                    *self._comic_keys(job.comic_id, job.comic_title),
                    number,
                ),
            )
            self.conn.commit()
            created = cursor.rowcount == 1
            job_id = cursor.lastrowid

        if not created:
            return None

        self._notify()
        return self.get(job_id)

    def _update_live(self, job_id: int, assignments: str, params: tuple) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                f"UPDATE failed_jobs SET {assignments} WHERE id = ? AND aborted = 0",
                (*params, job_id),
            )
            self.conn.commit()
            changed = cursor.rowcount == 1

        if changed:
            self._notify()
        return changed

    def claim(self, job_id: int) -> bool:
        """Mark a job as owned by this worker. False if it is gone, claimed or aborted."""
        with self._lock:
            cursor = self.conn.execute(
                """
                UPDATE failed_jobs SET on_retry = 1, claimed_at = ?
                WHERE id = ? AND aborted = 0 AND on_retry = 0
            """,
                (datetime.utcnow().isoformat(), job_id),
            )
            self.conn.commit()
            claimed = cursor.rowcount == 1

        if claimed:
            self._notify()
        return claimed

    def release(self, job_id: int, escalate: bool = False, error: Optional[str] = None) -> bool:
        """Give a claimed job back to the queue, optionally raising it to critical."""
        # MAX keeps is_critical from ever going back to 0
        return self._update_live(
            job_id,
            "on_retry = 0, claimed_at = NULL, is_critical = MAX(is_critical, ?), error = COALESCE(?, error)",
            (int(escalate), error),
        )

    def abort(self, job_id: int, error: Optional[str] = None) -> bool:
        """Mark a job as permanently unrecoverable."""
        return self._update_live(
            job_id,
            "aborted = 1, on_retry = 0, error = COALESCE(?, error)",
            (error,),
        )

    def delete(self, job_id: int) -> bool:
        """Delete a resolved job. Aborted jobs are kept."""
        with self._lock:
            cursor = self.conn.execute("DELETE FROM failed_jobs WHERE id = ? AND aborted = 0", (job_id,))
            self.conn.commit()
            deleted = cursor.rowcount == 1

        if deleted:
            self._notify()
        return deleted

    def reclaim_stale(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Release claims left behind by a crashed worker.

        Returns:
            Number of jobs released
        """
        cutoff = (now or datetime.utcnow()) - older_than

        with self._lock:
            cursor = self.conn.execute(
                """
                UPDATE failed_jobs SET on_retry = 0, claimed_at = NULL
                WHERE on_retry = 1 AND aborted = 0
                AND (claimed_at IS NULL OR claimed_at < ?)
            """,
                (cutoff.isoformat(),),
            )
            self.conn.commit()
            released = cursor.rowcount

        if released:
            LOGGER.info(f"Reclaimed {released} stale job(s) claimed before {cutoff.isoformat()}")
            self._notify()
        return released

    # -- change feed ---------------------------------------------------------

    def subscribe(self, callback: JobCallback, **filters) -> Callable[[], None]:
        """Deliver the filtered job list now and after every change.

        Returns:
            A function that cancels the subscription
        """
        self.query(**filters)  # validates filter names before registering

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = (callback, filters)

        callback(self.query(**filters))

        def unsubscribe():
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def refresh(self) -> None:
        """Re-deliver snapshots, picking up writes made by other processes."""
        self._notify()

    def _notify(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())

        for callback, filters in subscribers:
            callback(self.query(**filters))

    # -- title aliases -------------------------------------------------------

    def set_alias(self, alias: str, title: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO title_aliases (alias, title) VALUES (?, ?)",
                (alias.strip().lower(), title),
            )
            self.conn.commit()

    def resolve_alias(self, alias: str) -> Optional[str]:
        """Return the catalog title registered for a scraped title, if any."""
        with self._lock:
            row = self.conn.execute(
                "SELECT title FROM title_aliases WHERE alias = ?", (alias.strip().lower(),)
            ).fetchone()
        return row["title"] if row else None

    def close(self):
        """Close database connection."""
        self.conn.close()
