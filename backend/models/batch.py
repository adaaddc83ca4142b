import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from models.job import VideoRequest, to_iso, utcnow


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"  # at least one job succeeded, at least one did not
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_BATCH_STATUSES


TERMINAL_BATCH_STATUSES = frozenset(
    {BatchStatus.COMPLETED, BatchStatus.PARTIAL, BatchStatus.FAILED, BatchStatus.CANCELLED}
)


@dataclass
class BatchRequest:
    videos: list[VideoRequest]
    name: Optional[str] = None
    priority: Optional[str] = None


@dataclass
class BatchProgress:
    total: int
    completed: int = 0
    failed: int = 0
    pending: int = 0
    processing: int = 0
    cancelled: int = 0
    percentage: int = 0

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.cancelled

    @classmethod
    def calculate(
        cls,
        total: int,
        completed: int = 0,
        failed: int = 0,
        pending: int = 0,
        processing: int = 0,
        cancelled: int = 0,
    ) -> "BatchProgress":
        finished = completed + failed + cancelled
        # round half up, 12.5 -> 13
        percentage = math.floor(100 * finished / total + 0.5) if total > 0 else 0
        return cls(
            total=total,
            completed=completed,
            failed=failed,
            pending=pending,
            processing=processing,
            cancelled=cancelled,
            percentage=percentage,
        )

    def derive_status(self, current: BatchStatus) -> BatchStatus:
        if current.is_terminal:
            return current
        if self.total > 0 and self.finished == self.total:
            if self.completed == self.total:
                return BatchStatus.COMPLETED
            if self.completed > 0:
                return BatchStatus.PARTIAL
            return BatchStatus.FAILED
        if self.processing > 0 or self.finished > 0:
            return BatchStatus.PROCESSING
        return current

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "pending": self.pending,
            "processing": self.processing,
            "cancelled": self.cancelled,
            "percentage": self.percentage,
        }


@dataclass
class Batch:
    id: str
    job_ids: tuple[str, ...]
    progress: BatchProgress
    name: Optional[str] = None
    status: BatchStatus = BatchStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @classmethod
    def new(cls, job_ids: list[str], name: Optional[str] = None) -> "Batch":
        now = utcnow()
        return cls(
            id=f"batch_{uuid.uuid4()}",
            job_ids=tuple(job_ids),
            progress=BatchProgress.calculate(len(job_ids), pending=len(job_ids)),
            name=name,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "job_ids": list(self.job_ids),
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "completed_at": to_iso(self.completed_at),
        }
