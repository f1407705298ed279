"""Crawling of a single repository."""

import logging
from concurrent.futures import Executor
from contextlib import closing
from typing import Iterator, Optional, Union

from ..errors import FatalError, RecordError, RunCancelled
from ..models.image import ErrorInfo, ImageDescriptor, ImageRecord, RepositoryFailure, RepositoryRef
from ..registry.budget import BudgetedRegistry
from ..utils.pool import map_ordered
from ..utils.progress import ProgressReporter
from .resolve import ManifestResolver


logger = logging.getLogger(__name__)


class RepositoryCrawler:
    """Pages through the images of one repository and resolves their manifests."""

    def __init__(self, registry: BudgetedRegistry, resolver: ManifestResolver,
                 progress: Optional[ProgressReporter] = None,
                 executor: Optional[Executor] = None):
        self.registry = registry
        self.resolver = resolver
        self.progress = progress
        self.executor = executor

    def crawl(self, repository: RepositoryRef) -> Iterator[Union[ImageRecord, RepositoryFailure]]:
        """Yield one record per image in the repository.

        Pages are fetched in order. If a page cannot be fetched, a single
        RepositoryFailure is yielded and the crawl ends.
        """
        name = repository.name
        token = None
        page = 0

        while True:
            try:
                descriptors, token = self.registry.list_images(name, token)
            except RecordError as e:
                logger.error(f"Listing images in {name} failed on page {page + 1}: {e}")
                yield RepositoryFailure(repository_name=name, error=ErrorInfo.from_exception(e))
                return

            page += 1
            logger.debug(f"Page {page} of {name}: {len(descriptors)} images")

            with closing(map_ordered(self.executor, self._resolve_image, descriptors)) as records:
                for record in records:
                    if self.progress:
                        self.progress.image_processed()
                    yield record

            if not token:
                break

    def _resolve_image(self, image: ImageDescriptor) -> ImageRecord:
        try:
            manifest = self.resolver.resolve(image.repository_name, image.manifest_digest)
        except (FatalError, RunCancelled):
            raise
        except RecordError as e:
            logger.warning(f"Failed to resolve manifest for {image}: {e}")
            return ImageRecord(image=image, error=ErrorInfo.from_exception(e))
        except Exception as e:
            logger.exception(f"Unexpected error resolving manifest for {image}")
            return ImageRecord(image=image, error=ErrorInfo.from_exception(e))
        return ImageRecord(image=image, manifest=manifest)
