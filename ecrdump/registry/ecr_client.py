"""Amazon ECR client for listing repositories, images and manifests."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ..config.settings import Config
from ..errors import AuthError, FetchError, TransientError
from ..models.image import ACCEPTED_MEDIA_TYPES, ImageDescriptor, RawManifest


logger = logging.getLogger(__name__)


AUTH_ERROR_CODES = {
    'AccessDeniedException',
    'UnrecognizedClientException',
    'ExpiredTokenException',
    'InvalidSignatureException',
    'InvalidClientTokenId',
}

TRANSIENT_ERROR_CODES = {
    'ThrottlingException',
    'Throttling',
    'TooManyRequestsException',
    'LimitExceededException',
    'ServiceUnavailableException',
    'RequestTimeoutException',
    'ServerException',
    'InternalFailure',
}

TRANSIENT_BOTOCORE_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


def translate_error(error: Exception, action: str) -> Exception:
    """Map a botocore exception onto the ecrdump error taxonomy."""
    if isinstance(error, NoCredentialsError):
        return AuthError(f"{action}: {error}")
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        if code in AUTH_ERROR_CODES:
            return AuthError(f"{action}: {error}")
        if code in TRANSIENT_ERROR_CODES:
            return TransientError(f"{action}: {error}")
        return FetchError(f"{action}: {error}")
    if isinstance(error, TRANSIENT_BOTOCORE_ERRORS):
        return TransientError(f"{action}: {error}")
    return FetchError(f"{action}: {error}")


class EcrRegistry:
    """Read-only access to one ECR registry."""

    def __init__(self, config: Config, client=None):
        self.config = config
        self.registry_id = config.registry_id
        self.page_size = config.page_size
        self._client = client

    @property
    def client(self):
        """Lazy initialization of the ECR client."""
        if self._client is None:
            session_kwargs = {}
            if self.config.profile_name:
                session_kwargs['profile_name'] = self.config.profile_name
            session = boto3.Session(**session_kwargs)
            # Retries are handled by BudgetedRegistry.
            self._client = session.client(
                'ecr',
                region_name=self.config.region,
                config=BotoConfig(retries={'total_max_attempts': 1, 'mode': 'standard'})
            )
        return self._client

    def _registry_kwargs(self) -> Dict[str, Any]:
        if self.registry_id:
            return {'registryId': self.registry_id}
        return {}

    def list_repositories(self, token: Optional[str] = None) -> Tuple[List[str], Optional[str]]:
        """Fetch one page of repository names."""
        kwargs = self._registry_kwargs()
        kwargs['maxResults'] = self.page_size
        if token:
            kwargs['nextToken'] = token

        try:
            response = self.client.describe_repositories(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, "describe_repositories") from e

        names = [repo['repositoryName'] for repo in response.get('repositories', [])]
        return names, response.get('nextToken')

    def list_images(self, repository: str,
                    token: Optional[str] = None) -> Tuple[List[ImageDescriptor], Optional[str]]:
        """Fetch one page of image descriptions for a repository."""
        kwargs = self._registry_kwargs()
        kwargs.update({
            'repositoryName': repository,
            'maxResults': self.page_size,
            'filter': {'tagStatus': 'ANY'},
        })
        if token:
            kwargs['nextToken'] = token

        try:
            response = self.client.describe_images(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"describe_images {repository}") from e

        descriptors = []
        for detail in response.get('imageDetails', []):
            descriptor = ImageDescriptor.from_image_detail(detail)
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors, response.get('nextToken')

    def get_manifest(self, repository: str, digest: str) -> RawManifest:
        """Fetch the manifest body for a digest."""
        kwargs = self._registry_kwargs()
        kwargs.update({
            'repositoryName': repository,
            'imageIds': [{'imageDigest': digest}],
            'acceptedMediaTypes': ACCEPTED_MEDIA_TYPES,
        })

        try:
            response = self.client.batch_get_image(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"batch_get_image {repository}@{digest}") from e

        for image in response.get('images', []):
            if image.get('imageId', {}).get('imageDigest') == digest:
                return RawManifest(
                    digest=digest,
                    media_type=image.get('imageManifestMediaType'),
                    body=image.get('imageManifest', '')
                )

        failures = response.get('failures', [])
        if failures:
            failure = failures[0]
            raise FetchError(
                f"batch_get_image {repository}@{digest}: "
                f"{failure.get('failureCode')}: {failure.get('failureReason')}"
            )
        raise FetchError(f"batch_get_image {repository}@{digest}: manifest not returned")
