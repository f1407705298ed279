"""Image and manifest data models."""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union


logger = logging.getLogger(__name__)


OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

ACCEPTED_MEDIA_TYPES = [OCI_MANIFEST, OCI_INDEX, DOCKER_MANIFEST, DOCKER_MANIFEST_LIST]


class ManifestType(str, enum.Enum):
    """Kind of manifest, derived from its media type."""
    IMAGE = "Image"
    IMAGE_INDEX = "ImageIndex"
    UNKNOWN = "Unknown"

    @classmethod
    def from_media_type(cls, media_type: Optional[str]) -> "ManifestType":
        if media_type in (OCI_MANIFEST, DOCKER_MANIFEST):
            return cls.IMAGE
        if media_type in (OCI_INDEX, DOCKER_MANIFEST_LIST):
            return cls.IMAGE_INDEX
        return cls.UNKNOWN


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as ISO-8601 UTC with a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class RepositoryRef:
    """A repository in the registry."""
    name: str
    registry_id: Optional[str] = None
    region: Optional[str] = None

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ImageDescriptor:
    """One image within a repository, as reported by the image listing."""
    repository_name: str
    manifest_digest: str
    manifest_type: ManifestType
    image_pushed_at: datetime
    image_tags: Tuple[str, ...] = ()
    media_type: Optional[str] = None
    last_recorded_pull_time: Optional[datetime] = None

    @classmethod
    def from_image_detail(cls, detail: Dict[str, Any]) -> Optional["ImageDescriptor"]:
        """Build a descriptor from a describe_images item."""
        digest = detail.get("imageDigest")
        if not digest:
            logger.warning(f"Skipping image without digest in {detail.get('repositoryName')}")
            return None

        media_type = detail.get("imageManifestMediaType")
        return cls(
            repository_name=detail["repositoryName"],
            manifest_digest=digest,
            manifest_type=ManifestType.from_media_type(media_type),
            image_pushed_at=detail.get("imagePushedAt"),
            image_tags=tuple(detail.get("imageTags") or ()),
            media_type=media_type,
            last_recorded_pull_time=detail.get("lastRecordedPullTime"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "repository_name": self.repository_name,
            "manifest_digest": self.manifest_digest,
            "manifest_type": self.manifest_type.value,
            "image_tags": list(self.image_tags),
            "image_pushed_at": format_timestamp(self.image_pushed_at),
        }
        if self.last_recorded_pull_time is not None:
            data["last_recorded_pull_time"] = format_timestamp(self.last_recorded_pull_time)
        return data

    def __str__(self) -> str:
        return (f"{self.repository_name} digest={self.manifest_digest} "
                f"type={self.manifest_type.value} tags={list(self.image_tags)}")


@dataclass(frozen=True)
class RawManifest:
    """Manifest body exactly as returned by the registry."""
    digest: str
    media_type: Optional[str]
    body: str


@dataclass(frozen=True)
class ErrorInfo:
    """Structured error payload embedded in the output."""
    type: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        return cls(type=type(exc).__name__, message=str(exc))

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "message": self.message}


@dataclass(frozen=True)
class ManifestFailure:
    """A child manifest that could not be resolved."""
    digest: Optional[str]
    descriptor: Optional[Dict[str, Any]]
    error: ErrorInfo

    def to_dict(self) -> Dict[str, Any]:
        return {
            "digest": self.digest,
            "descriptor": self.descriptor,
            "error": self.error.to_dict(),
        }


@dataclass(frozen=True)
class ManifestNode:
    """A fetched manifest and, for an index, its resolved children."""
    digest: str
    media_type: Optional[str]
    manifest_type: ManifestType
    content: Dict[str, Any]
    descriptor: Optional[Dict[str, Any]] = None
    children: Tuple[Union["ManifestNode", ManifestFailure], ...] = field(default=())

    @property
    def failures(self) -> int:
        """Number of failed entries anywhere below this node."""
        total = 0
        for child in self.children:
            if isinstance(child, ManifestFailure):
                total += 1
            else:
                total += child.failures
        return total

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "digest": self.digest,
            "media_type": self.media_type,
        }
        if self.descriptor is not None:
            data["descriptor"] = self.descriptor
        data["content"] = self.content
        data["manifests"] = [child.to_dict() for child in self.children]
        return data


@dataclass(frozen=True)
class ImageRecord:
    """One output line: an image and its manifest tree, or why it has none."""
    image: ImageDescriptor
    manifest: Optional[ManifestNode] = None
    error: Optional[ErrorInfo] = None

    @property
    def failed(self) -> bool:
        return self.error is not None or (self.manifest is not None and self.manifest.failures > 0)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "image": self.image.to_dict(),
            "manifests": [self.manifest.to_dict()] if self.manifest is not None else [],
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass(frozen=True)
class RepositoryFailure:
    """A repository whose image listing could not be completed."""
    repository_name: str
    error: ErrorInfo

    failed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": {"repository_name": self.repository_name},
            "error": self.error.to_dict(),
        }
