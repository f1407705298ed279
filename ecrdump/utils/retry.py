"""Retry with exponential backoff for transient registry errors."""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..errors import FetchError, RunCancelled, TransientError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a single call is retried."""
    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 20.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based), with jitter."""
        ceiling = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return random.uniform(ceiling / 2, ceiling)


def call_with_retry(func: Callable[[], T], policy: RetryPolicy, description: str,
                    cancel_event: Optional[threading.Event] = None) -> T:
    """Call ``func`` until it succeeds, retrying only TransientError.

    Raises FetchError once ``policy.max_attempts`` attempts have failed and
    RunCancelled if ``cancel_event`` is set while backing off.
    """
    attempt = 1
    while True:
        try:
            return func()
        except TransientError as e:
            if attempt >= policy.max_attempts:
                raise FetchError(f"{description} failed after {attempt} attempts: {e}") from e

            delay = policy.delay(attempt)
            logger.debug(f"{description} attempt {attempt} failed ({e}), retrying in {delay:.2f}s")
            if cancel_event is not None and cancel_event.wait(delay):
                raise RunCancelled(f"Cancelled while retrying {description}")
            if cancel_event is None:
                time.sleep(delay)
            attempt += 1
