import asyncio
import logging
from typing import Optional

from models.job import (
    Job,
    JobFilter,
    JobPriority,
    JobStatus,
    Page,
    PageRequest,
    SortSpec,
    VideoRequest,
    VideoResult,
)
from models.provider import GenerationRequest, RemoteJob
from services.job_store import JobStore
from services.sora_client import (
    ASPECT_RATIO_DIMENSIONS,
    MAX_PROMPT_LENGTH,
    MAX_SECONDS,
    MIN_SECONDS,
    RESOLUTION_DIMENSIONS,
    VideoGenerationClient,
)
from utils.errors import AppError, ConflictError, ExternalServiceError, NotFoundError, ValidationError, service_boundary

logger = logging.getLogger("video_service")

SUPPORTED_RESOLUTIONS = tuple(RESOLUTION_DIMENSIONS)
SUPPORTED_ASPECT_RATIOS = tuple(ASPECT_RATIO_DIMENSIONS)


def validate_video_request(request: VideoRequest) -> None:
    if request.prompt is not None and not isinstance(request.prompt, str):
        raise ValidationError("Prompt must be a string", {"field": "prompt"})
    if not request.prompt or not request.prompt.strip():
        raise ValidationError("Prompt is required", {"field": "prompt"})
    if len(request.prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt must be at most {MAX_PROMPT_LENGTH} characters",
            {"field": "prompt", "length": len(request.prompt)},
        )
    if request.duration is not None:
        if isinstance(request.duration, bool) or not isinstance(request.duration, int):
            raise ValidationError("Duration must be an integer", {"field": "duration", "value": request.duration})
        if not MIN_SECONDS <= request.duration <= MAX_SECONDS:
            raise ValidationError(
                f"Duration must be between {MIN_SECONDS} and {MAX_SECONDS} seconds",
                {"field": "duration", "value": request.duration},
            )
    if request.resolution is not None and request.resolution not in SUPPORTED_RESOLUTIONS:
        raise ValidationError(
            f"Resolution must be one of {', '.join(SUPPORTED_RESOLUTIONS)}",
            {"field": "resolution", "value": request.resolution},
        )
    if request.aspect_ratio is not None and request.aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
        raise ValidationError(
            f"Aspect ratio must be one of {', '.join(SUPPORTED_ASPECT_RATIOS)}",
            {"field": "aspect_ratio", "value": request.aspect_ratio},
        )
    parse_priority(request.priority)


def parse_priority(priority: Optional[str]) -> JobPriority:
    if priority is None:
        return JobPriority.NORMAL
    try:
        return JobPriority(str(priority).lower())
    except ValueError:
        raise ValidationError(
            "Priority must be one of low, normal, high",
            {"field": "priority", "value": priority},
        ) from None


def to_generation_request(request: VideoRequest) -> GenerationRequest:
    return GenerationRequest(
        prompt=request.prompt,
        duration=request.duration,
        resolution=request.resolution,
        aspect_ratio=request.aspect_ratio,
    )


def to_video_result(remote: RemoteJob, job: Job) -> VideoResult:
    primary = remote.generations[0]
    return VideoResult(
        video_url=primary.video_url,
        duration=remote.seconds or job.metadata.get("duration") or 0,
        width=remote.width or 0,
        height=remote.height or 0,
        generation_id=primary.id or None,
    )


class VideoService:
    def __init__(self, job_store: JobStore, client: VideoGenerationClient):
        logger.info("Initializing VideoService...")
        self.job_store = job_store
        self.client = client
        self._submissions: set[asyncio.Task] = set()

    @service_boundary
    async def create_video(self, request: VideoRequest) -> Job:
        validate_video_request(request)
        job = Job.new(
            prompt=request.prompt,
            priority=parse_priority(request.priority),
            metadata={
                "duration": request.duration,
                "resolution": request.resolution,
                "aspect_ratio": request.aspect_ratio,
                "style": request.style,
            },
        )
        job = await self.job_store.create(job)
        logger.info(f"[{job.id}] Video job created")

        task = asyncio.create_task(self._submit(job.id, request))
        self._submissions.add(task)
        task.add_done_callback(self._submissions.discard)
        return job

    async def drain(self) -> None:
        """Wait for every detached submission still in flight."""
        while self._submissions:
            await asyncio.gather(*list(self._submissions), return_exceptions=True)

    async def _submit(self, job_id: str, request: VideoRequest) -> None:
        try:
            remote = await self.client.submit(
                to_generation_request(request),
                idempotency_key=request.idempotency_key,
            )
        except Exception as exc:
            logger.error(f"[{job_id}] Failed to submit to video provider: {exc}")
            await self._fail_quietly(job_id, f"Failed to submit to video provider: {_describe(exc)}")
            return

        try:
            await self.job_store.update(job_id, external_job_id=remote.id, status=JobStatus.PROCESSING)
            logger.info(f"[{job_id}] Submitted to provider as {remote.id}")
        except ConflictError:
            # cancelled while the submission was in flight
            logger.warning(f"[{job_id}] Job changed during submission, cancelling provider job {remote.id}")
            await self._cancel_remote(job_id, remote.id)
        except Exception as exc:
            logger.error(f"[{job_id}] Failed to record submission {remote.id}: {exc}", exc_info=True)
            await self._fail_quietly(job_id, f"Failed to record provider job: {_describe(exc)}")

    async def _fail_quietly(self, job_id: str, message: str) -> None:
        try:
            job = await self.job_store.find_by_id(job_id)
            if job is not None and job.status == JobStatus.PENDING:
                # pending jobs only fail by way of processing
                await self.job_store.update(job_id, status=JobStatus.PROCESSING)
            await self.job_store.update(job_id, status=JobStatus.FAILED, error=message)
        except ConflictError as exc:
            logger.warning(f"[{job_id}] Could not mark job failed: {exc}")

    async def _cancel_remote(self, job_id: str, external_id: str) -> None:
        try:
            await self.client.cancel(external_id)
        except Exception as exc:
            logger.warning(f"[{job_id}] Failed to cancel provider job {external_id}: {exc}")

    async def _get_job(self, job_id: str) -> Job:
        job = await self.job_store.find_by_id(job_id)
        if job is None:
            raise NotFoundError("Video job", job_id)
        return job

    @service_boundary
    async def get_video_status(self, job_id: str) -> Job:
        return await self._get_job(job_id)

    @service_boundary
    async def get_video_result(self, job_id: str) -> Job:
        job = await self._get_job(job_id)
        if job.status != JobStatus.COMPLETED:
            raise ConflictError(
                f"Video job is not completed yet. Current status: {job.status.value}",
                {"job_id": job_id, "status": job.status.value},
            )
        if job.result is None:
            raise ConflictError("Video job completed but no result available", {"job_id": job_id})
        return job

    @service_boundary
    async def get_video_content(self, job_id: str) -> bytes:
        job = await self.get_video_result(job_id)
        return await self.client.download_content(job.external_job_id)

    @service_boundary
    async def cancel_video(self, job_id: str) -> Job:
        job = await self._get_job(job_id)
        if job.status.is_terminal:
            raise ConflictError(
                f"Cannot cancel job with status: {job.status.value}",
                {"job_id": job_id, "status": job.status.value},
            )

        if job.external_job_id:
            await self._cancel_remote(job_id, job.external_job_id)

        cancelled = await self.job_store.update(job_id, status=JobStatus.CANCELLED)
        if cancelled is None:
            raise NotFoundError("Video job", job_id)
        logger.info(f"[{job_id}] Video job cancelled")
        return cancelled

    @service_boundary
    async def sync_job_status(self, job_id: str) -> Job:
        job = await self._get_job(job_id)
        if job.status.is_terminal:
            return job
        if not job.external_job_id:
            logger.debug(f"[{job_id}] Not submitted yet, nothing to sync")
            return job

        try:
            remote = await self.client.get_status(job.external_job_id)
        except ExternalServiceError as exc:
            logger.error(f"[{job_id}] Status sync failed: {exc}")
            changes = {"status": JobStatus.FAILED, "error": f"Status sync failed: {exc.message}"}
        else:
            changes = self._changes_for(job, remote)

        if not changes:
            return job

        try:
            if job.status == JobStatus.PENDING and changes["status"] != JobStatus.CANCELLED:
                await self.job_store.update(job_id, status=JobStatus.PROCESSING)
            updated = await self.job_store.update(job_id, **changes)
        except ConflictError as exc:
            logger.warning(f"[{job_id}] Sync result discarded: {exc}")
            return await self._get_job(job_id)

        if updated is None:
            raise NotFoundError("Video job", job_id)
        if updated.status != job.status:
            logger.info(f"[{job_id}] Status synced {job.status.value} -> {updated.status.value}")
        return updated

    def _changes_for(self, job: Job, remote: RemoteJob) -> dict:
        if remote.status in ("queued", "in_progress"):
            if job.status == JobStatus.PROCESSING:
                return {}
            return {"status": JobStatus.PROCESSING}
        if remote.status == "completed":
            if not remote.generations:
                return {"status": JobStatus.FAILED, "error": "Video provider completed without any generations"}
            return {"status": JobStatus.COMPLETED, "result": to_video_result(remote, job)}
        if remote.status == "failed":
            return {"status": JobStatus.FAILED, "error": remote.failure_reason or "Video generation failed"}
        return {"status": JobStatus.CANCELLED}

    @service_boundary
    async def list_jobs(
        self,
        job_filter: Optional[JobFilter] = None,
        page: Optional[PageRequest] = None,
        sort: Optional[SortSpec] = None,
    ) -> Page:
        return await self.job_store.find_all(job_filter, page, sort)


def _describe(exc: Exception) -> str:
    if isinstance(exc, AppError):
        return exc.message
    return str(exc) or exc.__class__.__name__
