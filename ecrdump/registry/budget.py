"""Shared concurrency budget for every registry call."""

import logging
import threading
from typing import List, Optional, Tuple

from ..errors import RunCancelled
from ..models.image import ImageDescriptor, RawManifest
from ..utils.retry import RetryPolicy, call_with_retry


logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class BudgetedRegistry:
    """Wraps a registry client so that calls are bounded, retried and cancellable.

    A single semaphore bounds how many calls are outstanding at once, across
    repository listings, image pages and manifest fetches alike. The semaphore
    is held only for the duration of one attempt.
    """

    def __init__(self, registry, concurrency: int = 10,
                 retry_policy: Optional[RetryPolicy] = None,
                 cancel_event: Optional[threading.Event] = None):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.registry = registry
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self._semaphore = threading.BoundedSemaphore(concurrency)

    def check_cancelled(self):
        if self.cancel_event.is_set():
            raise RunCancelled("Run cancelled")

    def _acquire(self):
        while not self._semaphore.acquire(timeout=_POLL_INTERVAL):
            self.check_cancelled()
        if self.cancel_event.is_set():
            self._semaphore.release()
            raise RunCancelled("Run cancelled")

    def _call(self, description: str, method, *args):
        def attempt():
            self._acquire()
            try:
                return method(*args)
            finally:
                self._semaphore.release()

        self.check_cancelled()
        return call_with_retry(attempt, self.retry_policy, description, self.cancel_event)

    def list_repositories(self, token: Optional[str] = None) -> Tuple[List[str], Optional[str]]:
        return self._call("Listing repositories", self.registry.list_repositories, token)

    def list_images(self, repository: str,
                    token: Optional[str] = None) -> Tuple[List[ImageDescriptor], Optional[str]]:
        return self._call(f"Listing images in {repository}", self.registry.list_images,
                          repository, token)

    def get_manifest(self, repository: str, digest: str) -> RawManifest:
        return self._call(f"Fetching manifest {repository}@{digest}", self.registry.get_manifest,
                          repository, digest)
