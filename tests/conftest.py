"""
Pytest configuration and fixtures for Cannacore Backend tests.
"""

import os
from typing import Dict, List, Set
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["S3_BUCKET_NAME"] = "test-bucket"
os.environ["S3_REGION"] = "us-east-1"
os.environ["S3_PUBLIC_BASE_URL"] = "https://test-bucket.s3.us-east-1.amazonaws.com"
os.environ["LAMATIC_API_URL"] = "https://workflow.test/graphql"
os.environ["LAMATIC_API_KEY"] = "test-api-key"
os.environ["LAMATIC_WORKFLOW_ID"] = "workflow-123"
os.environ["LAMATIC_PROJECT_ID"] = "project-456"
os.environ["COMPRESSION_ENABLED"] = "false"

from cannacore_backend import main
from cannacore_backend.chunk_store import ChunkStore
from cannacore_backend.errors import UpstreamFailure
from cannacore_backend.finalizer import UploadFinalizer
from cannacore_backend.middleware import RateLimiter
from cannacore_backend.relay import ComplianceRelay
from cannacore_backend.storage import ObjectStorage, StoredObject
from cannacore_backend.tracking import ResultTrackingRegistry
from cannacore_backend.workflow_client import WorkflowClient

PUBLIC_BASE = "https://test-bucket.s3.us-east-1.amazonaws.com"


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStorage(ObjectStorage):
    """ObjectStorage that keeps objects in a dict instead of calling S3."""

    def __init__(self):
        super().__init__(bucket="test-bucket", region="us-east-1", public_base_url=PUBLIC_BASE)
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_puts = False
        self.fail_deletes: Set[str] = set()

    def put_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        if self.fail_puts:
            raise UpstreamFailure(f"Failed to store {key}: simulated outage")
        self.objects[key] = data
        return StoredObject(key=key, url=self.url_for_key(key), size=len(data), content_type=content_type)

    def delete_url(self, url: str) -> None:
        self.deleted.append(url)
        if url in self.fail_deletes:
            raise UpstreamFailure(f"Failed to delete {url}: simulated outage")
        self.objects.pop(self.key_from_url(url), None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def chunk_store(clock):
    return ChunkStore(session_ttl_seconds=30 * 60, clock=clock)


@pytest.fixture
def finalizer(chunk_store, storage):
    return UploadFinalizer(chunk_store, storage)


@pytest.fixture
def registry(storage, clock):
    return ResultTrackingRegistry(storage, retention_seconds=24 * 60 * 60, clock=clock)


@pytest.fixture
def workflow():
    """Workflow client double; tests set submit/check_status return values."""
    return AsyncMock(spec=WorkflowClient)


@pytest.fixture
def relay(workflow, registry, storage):
    return ComplianceRelay(workflow, registry, storage)


@pytest.fixture
def rate_limiter():
    return RateLimiter(max_requests=10, window_seconds=15 * 60)


@pytest.fixture
def client(chunk_store, finalizer, relay, registry, rate_limiter):
    """Test client wired to isolated service instances."""
    app = main.app
    app.dependency_overrides[main.get_chunk_store] = lambda: chunk_store
    app.dependency_overrides[main.get_finalizer] = lambda: finalizer
    app.dependency_overrides[main.get_relay] = lambda: relay
    app.dependency_overrides[main.get_registry] = lambda: registry
    app.dependency_overrides[main.get_rate_limiter] = lambda: rate_limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sample_pdf():
    """A minimal valid PDF document."""
    return b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""


@pytest.fixture
def split_chunks():
    """Split a buffer into fixed-size chunks like the browser client does."""

    def _split(data: bytes, chunk_size: int) -> List[bytes]:
        return [data[offset : offset + chunk_size] for offset in range(0, len(data), chunk_size)]

    return _split
