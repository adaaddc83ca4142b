import logging
import time
import uuid
from typing import Optional

from models.provider import GenerationRequest, RemoteGeneration, RemoteJob
from services.sora_client import VideoGenerationClient, build_submit_body, validate_generation_request
from utils.errors import ExternalServiceError

logger = logging.getLogger("mock_sora_client")

# each poll moves a job one step along this path
_PROGRESSION = {"queued": "in_progress", "in_progress": "completed"}


class MockSoraClient(VideoGenerationClient):
    """In-memory provider for local development (SORA_USE_MOCK=true)."""

    def __init__(self):
        self.jobs: dict[str, RemoteJob] = {}
        self._by_idempotency_key: dict[str, str] = {}

    async def submit(
        self,
        request: GenerationRequest,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RemoteJob:
        validate_generation_request(request)
        if idempotency_key and idempotency_key in self._by_idempotency_key:
            return self.jobs[self._by_idempotency_key[idempotency_key]]

        body = build_submit_body(request)
        job = RemoteJob(
            id=f"video_{uuid.uuid4().hex[:24]}",
            status="queued",
            created_at=int(time.time()),
            width=body["width"],
            height=body["height"],
            seconds=body.get("n_seconds", 5),
        )
        self.jobs[job.id] = job
        if idempotency_key:
            self._by_idempotency_key[idempotency_key] = job.id
        logger.info(f"Mock video job {job.id} queued")
        return job

    def _get(self, external_id: str) -> RemoteJob:
        job = self.jobs.get(external_id)
        if job is None:
            raise ExternalServiceError("Mock Sora API", f"Video job '{external_id}' not found", status=404)
        return job

    async def get_status(self, external_id: str, timeout: Optional[float] = None) -> RemoteJob:
        job = self._get(external_id)
        next_status = _PROGRESSION.get(job.status)
        if next_status:
            job.status = next_status
            if next_status == "completed":
                job.finished_at = int(time.time())
                job.generations = [
                    RemoteGeneration(
                        id=f"gen_{uuid.uuid4().hex[:12]}",
                        video_url=f"https://mock-storage.example.com/videos/{job.id}.mp4",
                    )
                ]
            logger.debug(f"Mock video job {external_id} -> {job.status}")
        return job

    async def cancel(self, external_id: str, timeout: Optional[float] = None) -> None:
        job = self._get(external_id)
        if job.status in ("queued", "in_progress"):
            job.status = "cancelled"
            job.finished_at = int(time.time())
        logger.info(f"Mock video job {external_id} cancelled")

    async def download_content(self, external_id: str, timeout: Optional[float] = None) -> bytes:
        job = self._get(external_id)
        if job.status != "completed":
            raise ExternalServiceError("Mock Sora API", f"Video job '{external_id}' has no content yet", status=409)
        return b"\x00\x00\x00\x18ftypmp42" + job.id.encode()

    async def health_check(self) -> bool:
        return True
