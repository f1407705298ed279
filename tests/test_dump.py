import io
import json
import threading

import pytest

from ecrdump.config.settings import Config
from ecrdump.errors import AuthError, FetchError, ListingError
from ecrdump.models.filter import FilterSpec
from ecrdump.models.image import OCI_INDEX
from ecrdump.operations.dump import DumpOperation
from ecrdump.utils.progress import ProgressReporter

from conftest import FakeRegistry, digest, image_manifest, index_manifest, make_image


def read_lines(sink):
    return [json.loads(line) for line in sink.getvalue().splitlines()]


def build_fleet(repositories, images_per_repo=2, **kwargs):
    registry = FakeRegistry(repositories, **kwargs)
    n = 1
    for name in repositories:
        images = []
        for _ in range(images_per_repo):
            images.append(make_image(name, digest(n)))
            registry.add_manifest(name, digest(n), image_manifest(n))
            n += 1
        registry.add_images(name, images)
    return registry


def run_dump(registry, config, spec=None, progress=None):
    sink = io.StringIO()
    with DumpOperation(config, registry=registry, progress=progress) as dump_op:
        summary = dump_op.dump(spec or FilterSpec(), sink)
    return summary, sink


def test_excluded_repository_is_never_crawled(config):
    registry = build_fleet(["app/api", "app/web"], images_per_repo=1)

    summary, sink = run_dump(registry, config, FilterSpec.from_lists(exclude=["app/web"]))

    lines = read_lines(sink)
    assert len(lines) == 1
    assert lines[0]["image"]["repository_name"] == "app/api"
    assert lines[0]["image"]["manifest_type"] == "Image"
    assert lines[0]["manifests"][0]["manifests"] == []
    assert not any(call[1] == "app/web" for call in registry.calls if call[0] != "repos")
    assert summary.records_written == 1
    assert not summary.cancelled


def test_listing_auth_failure_is_fatal(config):
    registry = build_fleet(["app/api"])
    registry.fail(("repos", 0), AuthError("AccessDeniedException"))
    sink = io.StringIO()

    with pytest.raises(AuthError), DumpOperation(config, registry=registry) as dump_op:
        dump_op.dump(FilterSpec(), sink)

    assert sink.getvalue() == ""


def test_listing_failure_on_later_page_is_fatal(config):
    registry = build_fleet(["a", "b"], repository_pages=[["a"], ["b"]])
    registry.fail(("repos", 1), FetchError("InvalidParameterException"))

    with pytest.raises(ListingError):
        run_dump(registry, config)


def test_repository_listing_is_paginated(config):
    registry = build_fleet(["a", "b", "c"], repository_pages=[["a", "b"], ["c"]])

    summary, sink = run_dump(registry, config)

    assert {line["image"]["repository_name"] for line in read_lines(sink)} == {"a", "b", "c"}
    assert summary.records_written == 6


def test_index_with_failing_child_still_succeeds(config):
    registry = FakeRegistry(["app/api"])
    registry.add_images("app/api", [make_image("app/api", digest(1), OCI_INDEX)])
    registry.add_manifest("app/api", digest(1), index_manifest(digest(2), digest(3)))
    registry.add_manifest("app/api", digest(2), image_manifest())

    summary, sink = run_dump(registry, config)

    (line,) = read_lines(sink)
    assert line["image"]["manifest_type"] == "ImageIndex"
    children = line["manifests"][0]["manifests"]
    assert len(children) == 2
    assert children[0]["content"] == image_manifest()
    assert "content" not in children[1]
    assert children[1]["error"]["type"] == "FetchError"
    assert summary.records_failed == 1
    assert not summary.cancelled


def test_crawl_failure_is_contained_to_its_repository(config):
    registry = build_fleet(["good", "bad"])
    registry.fail(("images", "bad", 0), FetchError("RepositoryNotFoundException"))

    summary, sink = run_dump(registry, config)

    lines = read_lines(sink)
    assert sum(1 for line in lines if "image" in line) == 2
    failures = [line for line in lines if "repository" in line]
    assert failures == [{
        "repository": {"repository_name": "bad"},
        "error": {"type": "FetchError", "message": "RepositoryNotFoundException"},
    }]


def test_auth_failure_inside_a_crawl_aborts_the_run(config):
    registry = build_fleet(["a", "b"])
    registry.fail(("images", "b", 0), AuthError("ExpiredTokenException"))

    with pytest.raises(AuthError):
        run_dump(registry, config)


def test_unexpected_error_is_contained(config):
    registry = build_fleet(["a", "b"])
    registry.fail(("images", "b", 0), RuntimeError("boom"))

    summary, sink = run_dump(registry, config)

    failures = [line for line in read_lines(sink) if "repository" in line]
    assert failures[0]["error"] == {"type": "RuntimeError", "message": "boom"}


def test_outstanding_calls_never_exceed_concurrency():
    config = Config({'concurrency': 3, 'retry_base_delay': 0})
    names = [f"repo-{i}" for i in range(8)]
    registry = build_fleet(names, images_per_repo=4, delay=0.005)
    for position, name in enumerate(names):
        image = make_image(name, digest(50000 + position), OCI_INDEX)
        registry.image_pages[name][0].append(image)
        children = [digest(90000 + i) for i in range(3)]
        registry.add_manifest(name, image.manifest_digest, index_manifest(*children))
        for child in children:
            registry.add_manifest(name, child, image_manifest())

    summary, sink = run_dump(registry, config)

    assert summary.records_written == 8 * 5
    assert 1 <= registry.max_in_flight <= 3


def test_runs_are_set_equal(config):
    registry = build_fleet(["a", "b", "c"], images_per_repo=3)

    _, first = run_dump(registry, config)
    _, second = run_dump(registry, config)

    def canonical(sink):
        return sorted(json.dumps(line, sort_keys=True) for line in read_lines(sink))

    assert canonical(first) == canonical(second)
    assert len(canonical(first)) == 9


def test_progress_counters(config):
    registry = build_fleet(["a", "b", "skip"], images_per_repo=2)
    progress = ProgressReporter(disabled=True)

    summary, _ = run_dump(registry, config, FilterSpec.from_lists(exclude=["skip"]), progress)

    assert progress.counts() == {
        'repositories_discovered': 2,
        'repositories_completed': 2,
        'images_processed': 4,
    }
    assert summary.to_dict()["ImagesProcessed"] == 4


def test_cancel_stops_the_run_with_complete_lines(config):
    registry = build_fleet([f"repo-{i}" for i in range(20)], images_per_repo=5)
    dump_op = DumpOperation(config, registry=registry)
    sink = io.StringIO()

    real_list_images = registry.list_images

    def list_images(repository, token=None):
        if repository == "repo-3":
            dump_op.cancel()
        return real_list_images(repository, token)

    registry.list_images = list_images

    with dump_op:
        summary = dump_op.dump(FilterSpec(), sink)

    assert summary.cancelled
    lines = sink.getvalue().splitlines()
    assert summary.records_written == len(lines) < 100
    for line in lines:
        json.loads(line)


def test_operation_can_run_twice(config):
    registry = build_fleet(["a"], images_per_repo=1)

    with DumpOperation(config, registry=registry) as dump_op:
        first, second = io.StringIO(), io.StringIO()
        first_summary = dump_op.dump(FilterSpec(), first)
        second_summary = dump_op.dump(FilterSpec(), second)

    assert (first_summary.records_written, first_summary.cancelled) == (1, False)
    assert (second_summary.records_written, second_summary.cancelled) == (1, False)
    assert first.getvalue() == second.getvalue()


class ThreadCountingRegistry(FakeRegistry):
    peak_threads = 0

    def _enter(self, key):
        with self._lock:
            self.peak_threads = max(self.peak_threads, threading.active_count())
        super()._enter(key)


def test_thread_count_does_not_grow_with_fan_out():
    concurrency = 3
    config = Config({'concurrency': concurrency, 'retry_base_delay': 0})
    names = [f"repo-{i}" for i in range(6)]
    registry = ThreadCountingRegistry(names, delay=0.002)
    for position, name in enumerate(names):
        images = []
        for i in range(3):
            root = digest(10000 + position * 100 + i)
            nested = digest(20000 + position * 100 + i)
            children = [nested] + [digest(30000 + j) for j in range(2 * concurrency)]
            images.append(make_image(name, root, OCI_INDEX))
            registry.add_manifest(name, root, index_manifest(*children[:4]))
            registry.add_manifest(name, nested, index_manifest(*children[4:]))
            for child in children[1:]:
                registry.add_manifest(name, child, image_manifest())
        registry.add_images(name, images)
    baseline = threading.active_count()

    summary, sink = run_dump(registry, config)

    assert summary.records_written == 18
    assert summary.records_failed == 0
    assert registry.max_in_flight <= concurrency
    # One crawl pool and one shared resolution pool.
    assert registry.peak_threads - baseline <= 2 * concurrency
