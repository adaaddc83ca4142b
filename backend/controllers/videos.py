import logging
from datetime import datetime, timezone

from blacksheep import Content, Response, json
from blacksheep.server.controllers import APIController, delete, get, post

from models.job import JobFilter, JobPriority, JobStatus, PageRequest, SortSpec, VideoRequest
from services.video_service import VideoService
from utils.errors import ValidationError

logger = logging.getLogger("videos_controller")


async def read_json(request) -> dict:
    try:
        body = await request.json()
    except Exception as exc:
        raise ValidationError(f"Request body must be valid JSON: {exc}") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def coerce_video_payload(payload: dict) -> VideoRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Each video must be a JSON object")
    return VideoRequest(
        prompt=payload.get("prompt") or "",
        duration=payload.get("duration"),
        resolution=payload.get("resolution"),
        aspect_ratio=payload.get("aspect_ratio") or payload.get("aspectRatio"),
        style=payload.get("style"),
        priority=payload.get("priority"),
        idempotency_key=payload.get("idempotency_key") or payload.get("idempotencyKey"),
    )


def _parse_enum(enum_type, value: str, name: str):
    try:
        return enum_type(value.lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"{name} must be one of {allowed}", {"field": name, "value": value}) from None


def _parse_datetime(value: str, name: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp", {"field": name, "value": value}) from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class Videos(APIController):
    def __init__(self, video_service: VideoService):
        self.video_service = video_service

    @classmethod
    def route(cls):
        return "/api/v1/videos"

    @post()
    async def create_video(self, request) -> Response:
        video_request = coerce_video_payload(await read_json(request))
        job = await self.video_service.create_video(video_request)
        logger.info(f"POST /api/v1/videos -> {job.id}")
        return json(
            {"job_id": job.id, "status": job.status.value, "message": "Video generation job created"},
            status=201,
        )

    @get()
    async def list_videos(
        self,
        status: str = "",
        priority: str = "",
        created_after: str = "",
        created_before: str = "",
        page: int = 1,
        size: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Response:
        job_filter = JobFilter(
            status=_parse_enum(JobStatus, status, "status") if status else None,
            priority=_parse_enum(JobPriority, priority, "priority") if priority else None,
            created_after=_parse_datetime(created_after, "created_after") if created_after else None,
            created_before=_parse_datetime(created_before, "created_before") if created_before else None,
        )
        result = await self.video_service.list_jobs(
            job_filter, PageRequest(page=page, size=size), SortSpec(sort_by=sort_by, order=sort_order)
        )
        return json(result.to_dict())

    @get("/{job_id}")
    async def get_video(self, job_id: str) -> Response:
        job = await self.video_service.get_video_status(job_id)
        return json(job.to_dict())

    @get("/{job_id}/result")
    async def get_result(self, job_id: str) -> Response:
        job = await self.video_service.get_video_result(job_id)
        return json(job.to_dict())

    @get("/{job_id}/content")
    async def get_content(self, job_id: str) -> Response:
        data = await self.video_service.get_video_content(job_id)
        return Response(
            200,
            [(b"Content-Disposition", f'attachment; filename="{job_id}.mp4"'.encode())],
            Content(b"video/mp4", data),
        )

    @post("/{job_id}/sync")
    async def sync_video(self, job_id: str) -> Response:
        job = await self.video_service.sync_job_status(job_id)
        return json(job.to_dict())

    @delete("/{job_id}")
    async def cancel_video(self, job_id: str) -> Response:
        job = await self.video_service.cancel_video(job_id)
        return json(job.to_dict())
