"""Progress reporting utilities."""

import sys
import threading
from typing import Dict
from tqdm import tqdm


class ProgressReporter:
    """Progress reporting for a registry crawl.

    Counters only ever increase and never influence the crawl itself.
    """

    def __init__(self, disabled: bool = False, file=None):
        self.disabled = disabled
        self.file = file or sys.stderr
        self.repositories_discovered = 0
        self.repositories_completed = 0
        self.images_processed = 0
        self._lock = threading.Lock()
        self.repo_bar = None
        self.image_bar = None

    def start(self):
        """Start progress reporting."""
        self.repo_bar = tqdm(
            total=0,
            desc="Repositories",
            unit="repo",
            file=self.file,
            position=0,
            disable=self.disabled
        )
        self.image_bar = tqdm(
            desc="Images",
            unit="image",
            file=self.file,
            position=1,
            disable=self.disabled
        )

    def repository_discovered(self):
        with self._lock:
            self.repositories_discovered += 1
            if self.repo_bar:
                self.repo_bar.total = self.repositories_discovered
                self.repo_bar.refresh()

    def repository_completed(self):
        with self._lock:
            self.repositories_completed += 1
            if self.repo_bar:
                self.repo_bar.update(1)

    def image_processed(self):
        with self._lock:
            self.images_processed += 1
            if self.image_bar:
                self.image_bar.update(1)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                'repositories_discovered': self.repositories_discovered,
                'repositories_completed': self.repositories_completed,
                'images_processed': self.images_processed
            }

    def finish(self):
        """Finish progress reporting."""
        for bar in (self.image_bar, self.repo_bar):
            if bar:
                bar.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()
