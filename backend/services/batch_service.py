import asyncio
import copy
import logging
from dataclasses import replace
from typing import Optional

from models.batch import Batch, BatchProgress, BatchRequest, BatchStatus
from models.job import JobStatus, utcnow
from services.job_store import JobStore
from services.video_service import VideoService, validate_video_request
from utils.env import Settings
from utils.errors import AppError, ConflictError, NotFoundError, ValidationError, service_boundary

logger = logging.getLogger("batch_service")

MAX_BATCH_SIZE = 10


class BatchService:
    def __init__(self, video_service: VideoService, job_store: JobStore, settings: Settings):
        logger.info("Initializing BatchService...")
        self.video_service = video_service
        self.job_store = job_store
        self.default_concurrency = settings.BATCH_DEFAULT_CONCURRENCY
        self.max_concurrency = settings.BATCH_MAX_CONCURRENCY
        self._batches: dict[str, Batch] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._processing_locks: dict[str, asyncio.Lock] = {}

    def _validate(self, request: BatchRequest) -> None:
        if not request.videos:
            raise ValidationError("At least one video is required in the batch", {"field": "videos"})
        if len(request.videos) > MAX_BATCH_SIZE:
            raise ValidationError(
                f"Maximum {MAX_BATCH_SIZE} videos allowed per batch",
                {"field": "videos", "count": len(request.videos)},
            )
        for index, video in enumerate(request.videos):
            try:
                validate_video_request(video)
            except ValidationError as exc:
                raise ValidationError(
                    f"Video at index {index} is invalid: {exc.message}",
                    {"index": index, **(exc.details or {})},
                ) from exc

    @service_boundary
    async def create_batch(self, request: BatchRequest) -> Batch:
        if request.priority is not None:
            request = replace(
                request, videos=[replace(video, priority=request.priority) for video in request.videos]
            )
        self._validate(request)

        logger.info(f"Creating batch '{request.name}' with {len(request.videos)} videos")
        job_ids = []
        for index, video in enumerate(request.videos):
            try:
                job = await self.video_service.create_video(video)
            except AppError as exc:
                logger.error(f"Failed to create job {index} in batch: {exc}")
                continue
            job_ids.append(job.id)

        if not job_ids:
            raise ValidationError("Failed to create any jobs in the batch")

        batch = Batch.new(job_ids, request.name)
        self._batches[batch.id] = batch
        self._locks[batch.id] = asyncio.Lock()
        self._processing_locks[batch.id] = asyncio.Lock()
        logger.info(f"[{batch.id}] Batch created with {len(job_ids)} jobs")
        return copy.deepcopy(batch)

    def _get(self, batch_id: str) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return batch

    async def _refresh(self, batch_id: str) -> Batch:
        """Recount job statuses from the store and derive the batch status."""
        batch = self._get(batch_id)
        counts = {status: 0 for status in JobStatus}
        for job_id in batch.job_ids:
            job = await self.job_store.find_by_id(job_id)
            if job is None:
                logger.warning(f"[{batch_id}] Job {job_id} is missing from the store")
                counts[JobStatus.FAILED] += 1
                continue
            counts[job.status] += 1

        progress = BatchProgress.calculate(
            total=len(batch.job_ids),
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            pending=counts[JobStatus.PENDING],
            processing=counts[JobStatus.PROCESSING],
            cancelled=counts[JobStatus.CANCELLED],
        )

        async with self._locks[batch_id]:
            batch.progress = progress
            status = progress.derive_status(batch.status)
            if status != batch.status:
                logger.info(f"[{batch_id}] Batch {batch.status.value} -> {status.value}")
                batch.status = status
                if status.is_terminal:
                    batch.completed_at = utcnow()
            batch.updated_at = utcnow()
            return copy.deepcopy(batch)

    def _resolve_concurrency(self, concurrency: Optional[int]) -> int:
        if concurrency is None:
            return self.default_concurrency
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ValidationError(
                "Concurrency must be a positive integer",
                {"field": "concurrency", "value": concurrency},
            )
        return min(concurrency, self.max_concurrency)

    async def _sync(self, batch_id: str, job_id: str) -> None:
        try:
            await self.video_service.sync_job_status(job_id)
        except AppError as exc:
            logger.error(f"[{batch_id}] Error syncing job {job_id}: {exc}")

    @service_boundary
    async def process_batch(self, batch_id: str, concurrency: Optional[int] = None) -> Batch:
        batch = self._get(batch_id)
        window_size = self._resolve_concurrency(concurrency)

        # at most one processing pass per batch
        async with self._processing_locks[batch_id]:
            if batch.status.is_terminal:
                return await self._refresh(batch_id)

            job_ids = list(batch.job_ids)
            logger.info(f"[{batch_id}] Processing {len(job_ids)} jobs, concurrency={window_size}")
            for start in range(0, len(job_ids), window_size):
                if batch.status == BatchStatus.CANCELLED:
                    logger.info(f"[{batch_id}] Batch cancelled, stopping")
                    break
                window = job_ids[start:start + window_size]
                await asyncio.gather(*(self._sync(batch_id, job_id) for job_id in window))
                await self._refresh(batch_id)

            return await self._refresh(batch_id)

    @service_boundary
    async def get_batch_status(self, batch_id: str) -> Batch:
        return await self._refresh(batch_id)

    @service_boundary
    async def cancel_batch(self, batch_id: str) -> Batch:
        batch = await self._refresh(batch_id)
        if batch.status.is_terminal:
            raise ConflictError(
                f"Cannot cancel batch with status: {batch.status.value}",
                {"batch_id": batch_id, "status": batch.status.value},
            )

        logger.info(f"[{batch_id}] Cancelling batch with {len(batch.job_ids)} jobs")
        async with self._locks[batch_id]:
            stored = self._get(batch_id)
            stored.status = BatchStatus.CANCELLED
            stored.completed_at = stored.updated_at = utcnow()

        for job_id in batch.job_ids:
            job = await self.job_store.find_by_id(job_id)
            if job is None or job.status.is_terminal:
                continue
            try:
                await self.video_service.cancel_video(job_id)
            except AppError as exc:
                logger.warning(f"[{batch_id}] Failed to cancel job {job_id}: {exc}")

        return await self._refresh(batch_id)

    @service_boundary
    async def list_batches(self) -> list[Batch]:
        return [await self._refresh(batch_id) for batch_id in list(self._batches)]
