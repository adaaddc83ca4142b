import asyncio
import os
from typing import Optional

# the module-level app in server.py must not talk to the real provider
os.environ["SORA_USE_MOCK"] = "true"

import pytest

from models.provider import GenerationRequest, RemoteGeneration, RemoteJob
from services.batch_service import BatchService
from services.job_store import InMemoryJobStore
from services.sora_client import VideoGenerationClient
from services.video_service import VideoService
from utils.env import Settings
from utils.errors import ExternalServiceError


class FakeClient(VideoGenerationClient):
    """Scriptable provider: statuses[external_id] decides what get_status reports."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.statuses: dict[str, str] = {}
        self.failures: dict[str, str] = {}
        self.submitted: list[tuple[GenerationRequest, Optional[str]]] = []
        self.cancelled: list[str] = []
        self.fail_submit = False
        self.fail_status = False
        self.in_flight = 0
        self.max_in_flight = 0

    async def submit(self, request, idempotency_key=None, timeout=None) -> RemoteJob:
        if self.fail_submit:
            raise ExternalServiceError("Sora API", "submit failed after 4 attempts: HTTP 500", status=500)
        external_id = f"video_{len(self.submitted) + 1}"
        self.submitted.append((request, idempotency_key))
        self.statuses[external_id] = "queued"
        return RemoteJob(id=external_id, status="queued", width=1920, height=1080, seconds=request.duration)

    async def get_status(self, external_id, timeout=None) -> RemoteJob:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.fail_status:
                raise ExternalServiceError("Sora API", "get_status failed: HTTP 503", status=503)
            status = self.statuses[external_id]
            job = RemoteJob(id=external_id, status=status, width=1920, height=1080, seconds=5)
            if status == "completed":
                job.generations = [RemoteGeneration(id=f"gen_{external_id}", video_url=f"https://cdn.test/{external_id}.mp4")]
            if status == "failed":
                job.failure_reason = self.failures.get(external_id, "content policy violation")
            return job
        finally:
            self.in_flight -= 1

    async def cancel(self, external_id, timeout=None) -> None:
        self.cancelled.append(external_id)
        self.statuses[external_id] = "cancelled"

    async def download_content(self, external_id, timeout=None) -> bytes:
        return b"mp4-bytes:" + external_id.encode()

    async def health_check(self) -> bool:
        return True


def make_settings(**overrides) -> Settings:
    values = {
        "OPENAI_API_KEY": "test-key",
        "SORA_BASE_URL": "http://provider.test/v1",
        "SORA_RETRY_BASE_DELAY": 0.01,
        "SORA_MAX_RETRIES": 3,
        "BATCH_DEFAULT_CONCURRENCY": 3,
        "BATCH_MAX_CONCURRENCY": 5,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def video_service(store, client):
    return VideoService(store, client)


@pytest.fixture
def batch_service(video_service, store, settings):
    return BatchService(video_service, store, settings)
