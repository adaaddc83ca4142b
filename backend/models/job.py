import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


class JobPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

VALID_STATUS_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

PRIORITY_RANK = {JobPriority.LOW: 0, JobPriority.NORMAL: 1, JobPriority.HIGH: 2}


def is_valid_status_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in VALID_STATUS_TRANSITIONS[current]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class VideoRequest:
    """Request to create a video job"""
    prompt: str
    duration: Optional[int] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    style: Optional[str] = None
    priority: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class VideoResult:
    video_url: str
    duration: int
    width: int
    height: int
    format: str = "mp4"
    generation_id: Optional[str] = None

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    def to_dict(self) -> dict:
        return {
            "video_url": self.video_url,
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "resolution": self.resolution,
            "format": self.format,
            "generation_id": self.generation_id,
        }


@dataclass
class Job:
    id: str
    prompt: str
    status: JobStatus = JobStatus.PENDING
    priority: JobPriority = JobPriority.NORMAL
    external_job_id: Optional[str] = None
    result: Optional[VideoResult] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def new(cls, prompt: str, priority: JobPriority = JobPriority.NORMAL, metadata: Optional[dict] = None) -> "Job":
        now = utcnow()
        return cls(
            id=f"job_{uuid.uuid4()}",
            prompt=prompt,
            priority=priority,
            created_at=now,
            updated_at=now,
            metadata=metadata or {},
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "status": self.status.value,
            "priority": self.priority.value,
            "external_job_id": self.external_job_id,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "metadata": self.metadata,
        }


@dataclass
class JobFilter:
    status: Optional[JobStatus] = None
    priority: Optional[JobPriority] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def matches(self, job: Job) -> bool:
        if self.status is not None and job.status != self.status:
            return False
        if self.priority is not None and job.priority != self.priority:
            return False
        if self.created_after is not None and job.created_at <= self.created_after:
            return False
        if self.created_before is not None and job.created_at >= self.created_before:
            return False
        return True


@dataclass
class PageRequest:
    page: int = 1
    size: int = 20


@dataclass
class SortSpec:
    sort_by: Literal["created_at", "updated_at", "priority"] = "created_at"
    order: Literal["asc", "desc"] = "desc"


@dataclass
class Page:
    items: list[Job]
    total: int
    page: int
    size: int
    total_pages: int
    has_next: bool
    has_prev: bool

    def to_dict(self) -> dict:
        return {
            "items": [job.to_dict() for job in self.items],
            "total": self.total,
            "page": self.page,
            "size": self.size,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }
