"""Error taxonomy for chapter ingestion.

Every failure that can happen while ingesting a chapter is raised as one of
the ``IngestionError`` subclasses below. The work queue only looks at
``error.kind`` to decide what happens to the job.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    STRUCTURAL_REJECT = "structural_reject"
    DATA_INTEGRITY = "data_integrity"
    SOURCE_UNREACHABLE = "source_unreachable"
    UNCLASSIFIED = "unclassified"


CRITICAL_KINDS = frozenset({ErrorKind.DATA_INTEGRITY, ErrorKind.SOURCE_UNREACHABLE})


class IngestionError(Exception):
    """Base class for classified ingestion failures."""

    kind = ErrorKind.UNCLASSIFIED

    def __init__(
        self,
        message: str,
        *,
        site: Optional[str] = None,
        comic: Optional[str] = None,
        chapter_number=None,
        link: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.site = site
        self.comic = comic
        self.chapter_number = chapter_number
        self.link = link
        self.status = status

    @property
    def critical(self) -> bool:
        """True when the source itself is at fault and another source is needed."""
        return self.kind in CRITICAL_KINDS

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def with_context(self, **context) -> "IngestionError":
        """Fill in context fields that are still empty and return self."""
        for key, value in context.items():
            if getattr(self, key, None) is None:
                setattr(self, key, value)
        return self

    def describe(self) -> str:
        parts = [f"[{self.kind.value}] {self.message}"]
        for label, value in (
            ("site", self.site),
            ("comic", self.comic),
            ("chapter", self.chapter_number),
            ("link", self.link),
        ):
            if value is not None:
                parts.append(f"{label}={value}")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.describe()


class TransientError(IngestionError):
    """Timeouts, 5xx responses and connection resets."""

    kind = ErrorKind.TRANSIENT


class StructuralRejectError(IngestionError):
    """The catalog rejected the chapter number itself. Never retried."""

    kind = ErrorKind.STRUCTURAL_REJECT


class DataIntegrityError(IngestionError):
    """Broken or missing image data on the source."""

    kind = ErrorKind.DATA_INTEGRITY


class CountMismatchError(DataIntegrityError):
    """Staged page count differs from the number of source image URLs."""

    def __init__(self, expected: int, staged: int, **context):
        super().__init__(f"Expected {expected} staged pages, found {staged}", **context)
        self.expected = expected
        self.staged = staged


class SourceUnreachableError(IngestionError):
    """Host, comic or chapter could not be reached on a source."""

    kind = ErrorKind.SOURCE_UNREACHABLE


class UnclassifiedError(IngestionError):
    kind = ErrorKind.UNCLASSIFIED


class CatalogError(Exception):
    """Unexpected catalog API failure during comic discovery. Halts the run."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
