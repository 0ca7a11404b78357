"""Shared test fixtures for timeline_genai tests."""

import pytest

from timeline_genai.cleanup import BlobCleanupQueue
from timeline_genai.persistence import MemoryPersistence
from timeline_genai.storage import LocalBlobStorage
from timeline_genai.store import TimelineStore

# 1x1 transparent PNG.
PNG_B64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


@pytest.fixture()
def persistence():
    return MemoryPersistence()


@pytest.fixture()
def storage(tmp_path):
    return LocalBlobStorage(root_dir=tmp_path / "blobs", base_url="/blobs", signing_key="test-key", ttl_minutes=5)


@pytest.fixture()
def cleanup(storage):
    queue = BlobCleanupQueue(storage, workers=1)
    yield queue
    queue.shutdown()


@pytest.fixture()
def store(persistence, cleanup):
    return TimelineStore(persistence=persistence, cleanup=cleanup)


@pytest.fixture()
def project(store):
    """A project with its default timeline and card, as created by the UI."""
    return store.add_project("Campaign A")
