"""Dump operation: crawl every matching repository and stream its records."""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, TextIO, Union

from ..config.settings import Config
from ..errors import FatalError, ListingError, RecordError, RunCancelled
from ..models.filter import FilterSpec, matches
from ..models.image import ErrorInfo, ImageRecord, RepositoryFailure, RepositoryRef
from ..registry.budget import BudgetedRegistry
from ..registry.ecr_client import EcrRegistry
from ..storage.jsonl_writer import JsonLinesWriter
from ..utils.progress import ProgressReporter
from .crawl import RepositoryCrawler
from .resolve import ManifestResolver


logger = logging.getLogger(__name__)

_POLL_TIMEOUT = 0.1

Record = Union[ImageRecord, RepositoryFailure]


class _Finished:
    def __init__(self, repository: RepositoryRef):
        self.repository = repository


class _Fatal:
    def __init__(self, error: FatalError):
        self.error = error


class FleetOrchestrator:
    """Discovers repositories and crawls the matching ones concurrently."""

    def __init__(self, registry: BudgetedRegistry, crawler: RepositoryCrawler,
                 concurrency: int = 10, progress: Optional[ProgressReporter] = None,
                 queue_size: int = 1000):
        self.registry = registry
        self.crawler = crawler
        self.concurrency = concurrency
        self.progress = progress
        self.queue_size = queue_size

    @property
    def cancel_event(self) -> threading.Event:
        return self.registry.cancel_event

    def discover(self, spec: FilterSpec) -> Iterator[RepositoryRef]:
        """Yield every repository whose name passes the filter.

        Raises ListingError if a page of the listing cannot be fetched.
        """
        token = None
        page = 0
        while True:
            try:
                names, token = self.registry.list_repositories(token)
            except RecordError as e:
                raise ListingError(f"Listing repositories failed on page {page + 1}: {e}") from e
            page += 1

            for name in names:
                if not matches(name, spec):
                    logger.debug(f"Skipping repository {name}")
                    continue
                yield RepositoryRef(
                    name=name,
                    registry_id=getattr(self.registry.registry, 'registry_id', None)
                )

            if not token:
                return

    def run(self, spec: FilterSpec) -> Iterator[Record]:
        """Yield records from all matching repositories as they are produced.

        Records of different repositories interleave. A fatal error in any
        crawl is raised here and stops the remaining crawls. Closing the
        generator before it is exhausted cancels the run.
        """
        results = queue.Queue(maxsize=self.queue_size)
        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix='crawl')
        pending = 0
        completed = False

        try:
            for repository in self.discover(spec):
                logger.debug(f"Scheduling crawl of {repository}")
                if self.progress:
                    self.progress.repository_discovered()
                executor.submit(self._crawl_worker, repository, results)
                pending += 1

                while True:
                    try:
                        item = results.get_nowait()
                    except queue.Empty:
                        break
                    pending -= self._finished(item)
                    if isinstance(item, (ImageRecord, RepositoryFailure)):
                        yield item

            logger.info(f"Repository discovery finished, {pending} crawls outstanding")

            while pending:
                try:
                    item = results.get(timeout=_POLL_TIMEOUT)
                except queue.Empty:
                    if self.cancel_event.is_set():
                        raise RunCancelled("Run cancelled")
                    continue
                pending -= self._finished(item)
                if isinstance(item, (ImageRecord, RepositoryFailure)):
                    yield item
            completed = True
        finally:
            if not completed:
                self.cancel_event.set()
            executor.shutdown(wait=True, cancel_futures=True)

    def _finished(self, item) -> int:
        if isinstance(item, _Fatal):
            raise item.error
        if isinstance(item, _Finished):
            if self.progress:
                self.progress.repository_completed()
            logger.debug(f"Finished crawling {item.repository}")
            return 1
        return 0

    def _put(self, results: queue.Queue, item) -> bool:
        while not self.cancel_event.is_set():
            try:
                results.put(item, timeout=_POLL_TIMEOUT)
                return True
            except queue.Full:
                continue
        return False

    def _crawl_worker(self, repository: RepositoryRef, results: queue.Queue):
        count = 0
        try:
            with closing(self.crawler.crawl(repository)) as records:
                for record in records:
                    if not self._put(results, record):
                        return
                    count += 1
        except RunCancelled:
            return
        except FatalError as e:
            logger.error(f"Fatal error while crawling {repository}: {e}")
            self._put(results, _Fatal(e))
            return
        except Exception as e:
            logger.exception(f"Unexpected error while crawling {repository}")
            if not self._put(results, RepositoryFailure(repository.name, ErrorInfo.from_exception(e))):
                return

        logger.info(f"Crawled {count} records from {repository}")
        self._put(results, _Finished(repository))


@dataclass
class DumpSummary:
    """Summary information for a dump run."""
    records_written: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    cancelled: bool = False
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "RecordsWritten": self.records_written,
            "RecordsWithErrors": self.records_failed,
            "RecordsSkipped": self.records_skipped,
            "RepositoriesDiscovered": self.counts.get('repositories_discovered', 0),
            "RepositoriesCompleted": self.counts.get('repositories_completed', 0),
            "ImagesProcessed": self.counts.get('images_processed', 0),
            "Status": "Cancelled" if self.cancelled else "Completed"
        }


class DumpOperation:
    """Handles dumping a whole registry to a JSON lines sink."""

    def __init__(self, config: Config, registry=None, progress: Optional[ProgressReporter] = None):
        self.config = config
        self.cancel_event = threading.Event()
        self.registry = BudgetedRegistry(
            registry if registry is not None else EcrRegistry(config),
            concurrency=config.concurrency,
            retry_policy=config.retry_policy,
            cancel_event=self.cancel_event
        )
        self.progress = progress or ProgressReporter(disabled=True)
        # Image and index-child resolution for every crawl share this pool.
        self.executor = ThreadPoolExecutor(
            max_workers=config.concurrency, thread_name_prefix='resolve'
        )
        self.resolver = ManifestResolver(self.registry, self.executor)
        self.crawler = RepositoryCrawler(self.registry, self.resolver, self.progress, self.executor)
        self.orchestrator = FleetOrchestrator(
            self.registry, self.crawler, config.concurrency, self.progress
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Stop the resolution pool's threads."""
        self.executor.shutdown(wait=True, cancel_futures=True)

    def cancel(self):
        """Stop the run; the writer finishes the line it is writing."""
        self.cancel_event.set()

    def dump(self, spec: FilterSpec, sink: TextIO) -> DumpSummary:
        """Write a record for every image of every matching repository."""
        logger.info(f"Starting dump with include={list(spec.include)} exclude={list(spec.exclude)}")

        writer = JsonLinesWriter(sink)
        cancelled = False

        with closing(self.orchestrator.run(spec)) as records:
            try:
                writer.write(records)
            except (KeyboardInterrupt, RunCancelled):
                logger.warning("Dump interrupted, stopping in-flight crawls")
                self.cancel()
                cancelled = True

        summary = DumpSummary(
            records_written=writer.result.written,
            records_failed=writer.result.failed_records,
            records_skipped=writer.result.skipped,
            cancelled=cancelled,
            counts=self.progress.counts()
        )
        logger.info(f"Wrote {summary.records_written} records "
                    f"({summary.records_failed} with errors, {summary.records_skipped} skipped)")
        return summary
