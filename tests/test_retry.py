from __future__ import annotations

import pytest

from officeradar.lib.clients import DocumentStoreError
from officeradar.lib.utils.retry import with_retry


def test_retries_until_success_with_growing_delays():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise DocumentStoreError("busy", retryable=True)
        return "ok"

    result = with_retry(flaky, attempts=3, base_delay=1.0, jitter=0, sleep=sleeps.append)

    assert result == "ok"
    assert sleeps == [1.0, 2.0]


def test_non_retryable_error_is_raised_immediately():
    sleeps = []

    def broken():
        raise DocumentStoreError("bad request", retryable=False)

    with pytest.raises(DocumentStoreError):
        with_retry(broken, attempts=5, sleep=sleeps.append)

    assert sleeps == []


def test_last_failure_is_raised_when_attempts_run_out():
    calls = []

    def always_busy():
        calls.append(1)
        raise DocumentStoreError(f"busy {len(calls)}", retryable=True)

    with pytest.raises(DocumentStoreError, match="busy 2"):
        with_retry(always_busy, attempts=2, jitter=0, sleep=lambda _: None)
