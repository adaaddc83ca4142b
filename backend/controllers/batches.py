import logging
from typing import Optional

from blacksheep import Response, json
from blacksheep.server.controllers import APIController, delete, get, post

from controllers.videos import coerce_video_payload, read_json
from models.batch import BatchRequest
from services.batch_service import BatchService
from utils.errors import ValidationError

logger = logging.getLogger("batches_controller")


class Batches(APIController):
    def __init__(self, batch_service: BatchService):
        self.batch_service = batch_service

    @classmethod
    def route(cls):
        return "/api/v1/batches"

    @post()
    async def create_batch(self, request) -> Response:
        body = await read_json(request)
        videos = body.get("videos")
        if not isinstance(videos, list):
            raise ValidationError("videos must be a list", {"field": "videos"})

        batch = await self.batch_service.create_batch(
            BatchRequest(
                videos=[coerce_video_payload(video) for video in videos],
                name=body.get("name"),
                priority=body.get("priority"),
            )
        )
        logger.info(f"POST /api/v1/batches -> {batch.id}")
        return json(
            {
                "batch_id": batch.id,
                "job_ids": list(batch.job_ids),
                "total": batch.progress.total,
                "message": "Batch created",
            },
            status=201,
        )

    @get()
    async def list_batches(self) -> Response:
        batches = await self.batch_service.list_batches()
        return json({"items": [batch.to_dict() for batch in batches], "total": len(batches)})

    @get("/{batch_id}")
    async def get_batch(self, batch_id: str) -> Response:
        batch = await self.batch_service.get_batch_status(batch_id)
        return json(batch.to_dict())

    @post("/{batch_id}/process")
    async def process_batch(self, batch_id: str, concurrency: Optional[int] = None) -> Response:
        batch = await self.batch_service.process_batch(batch_id, concurrency)
        return json(batch.to_dict())

    @delete("/{batch_id}")
    async def cancel_batch(self, batch_id: str) -> Response:
        batch = await self.batch_service.cancel_batch(batch_id)
        return json(batch.to_dict())
