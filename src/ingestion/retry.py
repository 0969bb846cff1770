"""Retry policy applied around chapter ingestion attempts."""

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .errors import IngestionError
from .logger import logger as LOGGER


class Backoff(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass
class RetryPolicy:
    """Retries transient failures, re-raising everything else immediately."""

    max_attempts: int = 3
    backoff: Backoff = Backoff.EXPONENTIAL
    base: float = 2.0
    delay: float = 1.0
    jitter: bool = True
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        self.backoff = Backoff(self.backoff)
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given 0-based failed attempt."""
        if self.backoff is Backoff.NONE:
            return 0.0
        if self.backoff is Backoff.FIXED:
            return self.delay

        backoff = self.delay * (self.base ** attempt)
        if self.jitter:
            backoff += random.uniform(0, 1)
        return backoff

    def run(self, func: Callable, *args, **kwargs):
        for attempt in range(self.max_attempts):
            try:
                return func(*args, **kwargs)
            except IngestionError as e:
                if not e.retryable or attempt == self.max_attempts - 1:
                    raise

                wait = self.delay_for(attempt)
                LOGGER.warning(
                    f"Attempt {attempt + 1}/{self.max_attempts} failed, retrying in {wait:.1f}s: {e}"
                )
                if wait > 0:
                    self.sleep(wait)


def jittered_delay(delay_ms: int, sleep: Callable[[float], None] = time.sleep) -> None:
    """Sleep for a configured politeness delay plus up to one second of jitter."""
    if delay_ms:
        sleep(delay_ms / 1000 + random.uniform(0, 1))
