from dataclasses import dataclass, field
from typing import Literal, Optional, get_args

RemoteStatus = Literal["queued", "in_progress", "completed", "failed", "cancelled"]
REMOTE_STATUSES: frozenset[str] = frozenset(get_args(RemoteStatus))


@dataclass
class GenerationRequest:
    """Payload for the provider, before dimensions are derived"""
    prompt: str
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = None
    variant_count: Optional[int] = None
    model: Optional[str] = None


@dataclass
class RemoteGeneration:
    id: str
    video_url: str


@dataclass
class RemoteJob:
    id: str
    status: RemoteStatus
    created_at: Optional[int] = None
    finished_at: Optional[int] = None
    generations: list[RemoteGeneration] = field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None
    seconds: Optional[int] = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteJob":
        seconds = data.get("n_seconds", data.get("seconds"))
        return cls(
            id=data["id"],
            status=data["status"],
            created_at=data.get("created_at"),
            finished_at=data.get("finished_at"),
            generations=[
                RemoteGeneration(id=gen.get("id", ""), video_url=gen.get("video_url") or "")
                for gen in data.get("generations") or []
            ],
            width=data.get("width"),
            height=data.get("height"),
            seconds=int(seconds) if seconds is not None else None,
            failure_reason=data.get("failure_reason"),
        )
