"""Manifest resolution, including the children of manifest indexes."""

import json
import logging
from concurrent.futures import Executor
from typing import Any, Dict, Optional, Tuple, Union

from ..errors import ParseError, RecordError
from ..models.image import ErrorInfo, ManifestFailure, ManifestNode, ManifestType
from ..registry.budget import BudgetedRegistry
from ..utils.pool import map_ordered


logger = logging.getLogger(__name__)


class ManifestResolver:
    """Fetches manifests and builds manifest trees.

    Children of an index are fanned out over ``executor``, the pool shared
    with the rest of the run. Without one they are resolved one by one.
    """

    def __init__(self, registry: BudgetedRegistry, executor: Optional[Executor] = None,
                 max_depth: int = 4):
        self.registry = registry
        self.executor = executor
        self.max_depth = max_depth

    def resolve(self, repository: str, digest: str,
                descriptor: Optional[Dict[str, Any]] = None) -> ManifestNode:
        """Fetch ``digest`` and, for an index, every manifest it lists.

        Raises FetchError or ParseError if the manifest itself cannot be
        resolved. Failures of child manifests are recorded in the tree.
        """
        return self._resolve(repository, digest, descriptor, ancestors=())

    def _resolve(self, repository: str, digest: str, descriptor: Optional[Dict[str, Any]],
                 ancestors: Tuple[str, ...]) -> ManifestNode:
        raw = self.registry.get_manifest(repository, digest)

        try:
            content = json.loads(raw.body)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Manifest {repository}@{digest} is not valid JSON: {e}") from e
        if not isinstance(content, dict):
            raise ParseError(f"Manifest {repository}@{digest} is not a JSON object")

        media_type = raw.media_type or content.get('mediaType')
        manifest_type = ManifestType.from_media_type(media_type)

        children = ()
        if manifest_type is ManifestType.IMAGE_INDEX:
            children = self._resolve_children(repository, digest, content, ancestors + (digest,))
        elif manifest_type is ManifestType.UNKNOWN and 'manifests' in content:
            logger.debug(f"Treating {repository}@{digest} with unknown media type {media_type} as a leaf")

        return ManifestNode(
            digest=digest,
            media_type=media_type,
            manifest_type=manifest_type,
            content=content,
            descriptor=descriptor,
            children=children
        )

    def _resolve_children(self, repository: str, digest: str, content: Dict[str, Any],
                          ancestors: Tuple[str, ...]) -> Tuple[Union[ManifestNode, ManifestFailure], ...]:
        entries = content.get('manifests') or []
        if not isinstance(entries, list):
            raise ParseError(f"Manifest index {repository}@{digest} has a malformed manifests list")
        if not entries:
            return ()

        logger.debug(f"Resolving {len(entries)} child manifests of {repository}@{digest}")

        def resolve_child(entry) -> Union[ManifestNode, ManifestFailure]:
            if not isinstance(entry, dict) or not entry.get('digest'):
                return ManifestFailure(
                    digest=None,
                    descriptor=entry if isinstance(entry, dict) else None,
                    error=ErrorInfo.from_exception(
                        ParseError(f"Index entry in {repository}@{digest} has no digest"))
                )

            child_digest = entry['digest']
            if child_digest in ancestors:
                error = ParseError(f"Manifest {child_digest} references itself through {digest}")
            elif len(ancestors) >= self.max_depth:
                error = ParseError(f"Manifest {child_digest} is nested deeper than {self.max_depth} levels")
            else:
                try:
                    return self._resolve(repository, child_digest, entry, ancestors)
                except RecordError as e:
                    logger.warning(f"Failed to resolve child manifest {repository}@{child_digest}: {e}")
                    error = e
            return ManifestFailure(digest=child_digest, descriptor=entry,
                                   error=ErrorInfo.from_exception(error))

        return tuple(map_ordered(self.executor, resolve_child, entries))
