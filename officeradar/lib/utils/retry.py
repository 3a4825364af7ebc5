from __future__ import annotations

import logging
import random
import time
from typing import Callable, Iterator, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


def backoff_delays(base_delay: float, max_delay: float, jitter: float) -> Iterator[float]:
    """Doubling delays capped at ``max_delay``, each scaled by +/- ``jitter``."""
    delay = base_delay
    while True:
        factor = random.uniform(1 - jitter, 1 + jitter) if jitter > 0 else 1.0
        yield delay * factor
        delay = min(max_delay, delay * 2)


def with_retry(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    logger: Optional[logging.Logger] = None,
    description: Optional[str] = None,
    jitter: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``operation`` until it succeeds or ``attempts`` run out.

    An exception whose ``retryable`` attribute is false is raised at once;
    otherwise the last failure is raised when no attempts remain.
    """
    desc = description or getattr(operation, "__name__", "operation")
    total = max(1, attempts)
    delays = backoff_delays(base_delay, max_delay, jitter)

    attempt = 1
    while True:
        try:
            return operation()
        except exceptions as exc:  # type: ignore[misc]
            if not getattr(exc, "retryable", True) or attempt >= total:
                raise
            wait = next(delays)
            if logger is not None:
                logger.warning(
                    "Retrying %s in %.2fs after %s (attempt %s/%s)",
                    desc,
                    wait,
                    exc,
                    attempt,
                    total,
                )
            sleep(wait)
            attempt += 1
