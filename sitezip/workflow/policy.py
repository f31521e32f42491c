"""Per-step retry and timeout policy."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from sitezip.errors import StepTimeout, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_CONSTANT = "constant"
BACKOFF_LINEAR = "linear"
BACKOFF_EXPONENTIAL = "exponential"

# Errors that a retry can never fix.
NON_RETRYABLE: tuple[type[Exception], ...] = (ValidationError,)


@dataclass(frozen=True)
class StepConfig:
    """How a durable step is retried and bounded.

    Attributes:
        retries: Extra attempts after the first one fails.
        delay: Seconds before the first retry.
        backoff: ``constant``, ``linear`` or ``exponential`` growth of *delay*.
        timeout: Seconds one attempt may run; ``None`` for no bound.
    """

    retries: int = 5
    delay: float = 10.0
    backoff: str = BACKOFF_EXPONENTIAL
    timeout: Optional[float] = 600.0

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.backoff not in (BACKOFF_CONSTANT, BACKOFF_LINEAR, BACKOFF_EXPONENTIAL):
            raise ValueError(f"Unknown backoff {self.backoff!r}")

    def delay_after(self, attempt: int) -> float:
        """Pause before the attempt following failed attempt number *attempt* (1-based)."""
        if self.backoff == BACKOFF_LINEAR:
            return self.delay * attempt
        if self.backoff == BACKOFF_EXPONENTIAL:
            return self.delay * 2 ** (attempt - 1)
        return self.delay


DEFAULT_STEP_CONFIG = StepConfig()


def _call_with_timeout(func: Callable[[threading.Event], T], timeout: Optional[float]) -> T:
    cancel = threading.Event()
    if timeout is None:
        return func(cancel)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="step")
    try:
        future = pool.submit(func, cancel)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            # The attempt must stop before a retry may start.
            cancel.set()
            wait([future])
            raise StepTimeout(f"timed out after {timeout:g}s") from None
    finally:
        pool.shutdown(wait=False)


def run_with_policy(
    func: Callable[[threading.Event], T],
    config: StepConfig,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "step",
) -> tuple[T, int]:
    """Call *func* until it succeeds or *config* runs out of retries.

    *func* receives a :class:`threading.Event` that is set once its attempt
    has timed out.  Long-running work should check it and stop; the next
    attempt only starts after the timed-out one has returned.

    Returns:
        ``(result, attempts)``.

    Raises:
        The exception of the last failed attempt.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return _call_with_timeout(func, config.timeout), attempt
        except NON_RETRYABLE:
            raise
        except Exception as exc:
            if attempt > config.retries:
                raise
            pause = config.delay_after(attempt)
            logger.warning(
                "%s attempt %d/%d failed: %s; retrying in %.1fs",
                name, attempt, config.retries + 1, exc, pause,
            )
            sleep(pause)
