"""Tests for the retry policy."""

import pytest

from src.ingestion.errors import DataIntegrityError, TransientError
from src.ingestion.retry import Backoff, RetryPolicy, jittered_delay


class Flaky:
    """Callable failing with the given errors before succeeding."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return value


def test_retries_transient_errors_until_success():
    """Test transient failures are retried with exponential waits."""
    waits = []
    policy = RetryPolicy(max_attempts=3, delay=1.0, base=2.0, jitter=False, sleep=waits.append)
    func = Flaky(TransientError("HTTP 502"), TransientError("HTTP 502"))

    assert policy.run(func, "ok") == "ok"
    assert func.calls == 3
    assert waits == [1.0, 2.0]


def test_gives_up_after_max_attempts():
    """Test the last transient error is re-raised."""
    policy = RetryPolicy(max_attempts=2, backoff="fixed", delay=0.5, sleep=lambda s: None)
    func = Flaky(TransientError("first"), TransientError("second"), TransientError("third"))

    with pytest.raises(TransientError, match="second"):
        policy.run(func, "ok")
    assert func.calls == 2


def test_non_transient_errors_are_not_retried():
    """Test broken data fails immediately."""
    policy = RetryPolicy(max_attempts=5, sleep=lambda s: None)
    func = Flaky(DataIntegrityError("Broken file detected"))

    with pytest.raises(DataIntegrityError):
        policy.run(func, "ok")
    assert func.calls == 1


def test_backoff_modes():
    """Test delays for each backoff mode."""
    assert RetryPolicy(backoff="none").delay_for(3) == 0.0
    assert RetryPolicy(backoff=Backoff.FIXED, delay=2.0).delay_for(3) == 2.0

    jittered = RetryPolicy(delay=1.0, base=2.0).delay_for(2)
    assert 4.0 <= jittered <= 5.0


def test_invalid_policy():
    """Test nonsensical settings are rejected."""
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(backoff="linear")


def test_jittered_delay():
    """Test politeness delays are skipped when zero and jittered otherwise."""
    waits = []
    jittered_delay(0, waits.append)
    jittered_delay(1500, waits.append)

    assert len(waits) == 1
    assert 1.5 <= waits[0] <= 2.5
