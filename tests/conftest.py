import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from ecrdump.config.settings import Config
from ecrdump.errors import FetchError
from ecrdump.models.image import (
    OCI_INDEX,
    OCI_MANIFEST,
    ImageDescriptor,
    ManifestType,
    RawManifest,
)
from ecrdump.registry.budget import BudgetedRegistry
from ecrdump.utils.retry import RetryPolicy


PUSHED_AT = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def digest(n) -> str:
    return "sha256:" + format(n, "064x")


def image_manifest(layer=1) -> dict:
    return {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": {"mediaType": "application/vnd.oci.image.config.v1+json",
                   "digest": digest(1000 + layer), "size": 10},
        "layers": [{"mediaType": "application/vnd.oci.image.layer.v1.tar+gzip",
                    "digest": digest(2000 + layer), "size": 100}],
    }


def index_manifest(*child_digests, media_type=OCI_INDEX) -> dict:
    return {
        "schemaVersion": 2,
        "mediaType": media_type,
        "manifests": [
            {"mediaType": OCI_MANIFEST, "digest": d, "size": 500,
             "platform": {"architecture": arch, "os": "linux"}}
            for d, arch in zip(child_digests, ["amd64", "arm64", "s390x", "ppc64le"])
        ],
    }


def make_image(repository, manifest_digest, media_type=OCI_MANIFEST, tags=("latest",)):
    return ImageDescriptor(
        repository_name=repository,
        manifest_digest=manifest_digest,
        manifest_type=ManifestType.from_media_type(media_type),
        image_pushed_at=PUSHED_AT,
        image_tags=tuple(tags),
        media_type=media_type,
    )


class FakeRegistry:
    """In-memory registry that records how many calls run at once."""

    def __init__(self, repositories=(), repository_pages=None, delay=0.0):
        self.repository_pages = repository_pages or [list(repositories)]
        self.image_pages = {}
        self.manifests = {}
        self.errors = {}
        self.delay = delay
        self.delays = {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def add_images(self, repository, *pages):
        self.image_pages[repository] = [list(page) for page in pages]

    def add_manifest(self, repository, manifest_digest, content, media_type=None):
        if media_type is None and isinstance(content, dict):
            media_type = content.get("mediaType")
        body = content if isinstance(content, str) else json.dumps(content)
        self.manifests[(repository, manifest_digest)] = RawManifest(manifest_digest, media_type, body)

    def fail(self, key, error):
        """Make the call identified by ``key`` raise ``error``.

        ``error`` may be a list, consumed one exception per call.
        """
        self.errors[key] = error

    def _enter(self, key):
        with self._lock:
            self.calls.append(key)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            pause = self.delays.get(key, self.delay)
            if pause:
                time.sleep(pause)
            error = self.errors.get(key)
            if isinstance(error, list):
                error = error.pop(0) if error else None
            if error is not None:
                raise error
        finally:
            with self._lock:
                self.in_flight -= 1

    def list_repositories(self, token=None):
        page = int(token or 0)
        self._enter(("repos", page))
        next_token = str(page + 1) if page + 1 < len(self.repository_pages) else None
        return list(self.repository_pages[page]), next_token

    def list_images(self, repository, token=None):
        page = int(token or 0)
        self._enter(("images", repository, page))
        pages = self.image_pages.get(repository, [[]])
        next_token = str(page + 1) if page + 1 < len(pages) else None
        return list(pages[page]), next_token

    def get_manifest(self, repository, manifest_digest):
        self._enter(("manifest", repository, manifest_digest))
        try:
            return self.manifests[(repository, manifest_digest)]
        except KeyError:
            raise FetchError(f"ImageNotFound: {repository}@{manifest_digest}")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("ECRDUMP_CONFIG", "AWS_REGION", "AWS_DEFAULT_REGION", "AWS_PROFILE", "ECR_REGISTRY_ID"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config():
    return Config({'concurrency': 4, 'retry_base_delay': 0, 'max_attempts': 3})


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def budget(fake_registry):
    return BudgetedRegistry(fake_registry, concurrency=4,
                            retry_policy=RetryPolicy(max_attempts=3, base_delay=0))


@pytest.fixture
def pool():
    executor = ThreadPoolExecutor(max_workers=2)
    yield executor
    executor.shutdown(wait=True)
