import asyncio
import copy
import logging
import math
from abc import ABC, abstractmethod
from typing import Optional

from models.job import (
    PRIORITY_RANK,
    Job,
    JobFilter,
    JobPriority,
    JobStatus,
    Page,
    PageRequest,
    SortSpec,
    is_valid_status_transition,
    utcnow,
)
from utils.errors import ConflictError, ValidationError

logger = logging.getLogger("job_store")

MAX_PAGE_SIZE = 100
SORT_FIELDS = ("created_at", "updated_at", "priority")
IMMUTABLE_FIELDS = ("id", "created_at")


class JobStore(ABC):
    """Storage contract for Job records.

    Implementations own the records they hold: every Job handed out is a copy,
    and every status change goes through update(), which validates the
    transition. A durable backend only has to implement this interface.
    """

    @abstractmethod
    async def create(self, job: Job) -> Job: ...

    @abstractmethod
    async def find_by_id(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> Optional[Job]: ...

    @abstractmethod
    async def find_all(
        self,
        job_filter: Optional[JobFilter] = None,
        page: Optional[PageRequest] = None,
        sort: Optional[SortSpec] = None,
    ) -> Page: ...

    @abstractmethod
    async def find_by_status(self, status: JobStatus) -> list[Job]: ...

    @abstractmethod
    async def update(self, job_id: str, **changes) -> Optional[Job]: ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool: ...

    @abstractmethod
    async def count_by_status(self, status: JobStatus) -> int: ...

    @abstractmethod
    async def count_all_statuses(self) -> dict[JobStatus, int]: ...

    @abstractmethod
    async def count(self) -> int: ...

    @abstractmethod
    async def exists(self, job_id: str) -> bool: ...

    @abstractmethod
    async def clear(self) -> None: ...


class InMemoryJobStore(JobStore):
    """Volatile dict-backed store with a secondary index on external job id."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._by_external_id: dict[str, str] = {}
        self._index_lock = asyncio.Lock()
        self._job_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._job_locks.get(job_id)
        if lock is None:
            lock = self._job_locks[job_id] = asyncio.Lock()
        return lock

    async def create(self, job: Job) -> Job:
        async with self._index_lock:
            if job.id in self._jobs:
                raise ConflictError(f"Job with id '{job.id}' already exists")
            if job.external_job_id and job.external_job_id in self._by_external_id:
                raise ConflictError(f"External job id '{job.external_job_id}' is already assigned")

            stored = copy.deepcopy(job)
            self._jobs[job.id] = stored
            if stored.external_job_id:
                self._by_external_id[stored.external_job_id] = stored.id

        logger.debug(f"Job {job.id} created in store")
        return copy.deepcopy(stored)

    async def find_by_id(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def find_by_external_id(self, external_id: str) -> Optional[Job]:
        job_id = self._by_external_id.get(external_id)
        if job_id is None:
            return None
        return await self.find_by_id(job_id)

    async def find_all(
        self,
        job_filter: Optional[JobFilter] = None,
        page: Optional[PageRequest] = None,
        sort: Optional[SortSpec] = None,
    ) -> Page:
        job_filter = job_filter or JobFilter()
        page = page or PageRequest()
        sort = sort or SortSpec()

        if page.page < 1:
            raise ValidationError("page must be 1 or greater", {"field": "page", "value": page.page})
        if not 1 <= page.size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"size must be between 1 and {MAX_PAGE_SIZE}",
                {"field": "size", "value": page.size},
            )
        if sort.sort_by not in SORT_FIELDS:
            raise ValidationError(
                f"sort_by must be one of {', '.join(SORT_FIELDS)}",
                {"field": "sort_by", "value": sort.sort_by},
            )
        if sort.order not in ("asc", "desc"):
            raise ValidationError("order must be 'asc' or 'desc'", {"field": "order", "value": sort.order})

        matched = [job for job in self._jobs.values() if job_filter.matches(job)]

        if sort.sort_by == "priority":
            sort_key = lambda job: PRIORITY_RANK[job.priority]  # noqa: E731
        else:
            sort_key = lambda job: getattr(job, sort.sort_by)  # noqa: E731
        # sorted() is stable for reverse=True as well
        matched = sorted(matched, key=sort_key, reverse=sort.order == "desc")

        total = len(matched)
        total_pages = math.ceil(total / page.size) if total else 0
        start = (page.page - 1) * page.size
        window = matched[start:start + page.size]

        return Page(
            items=[copy.deepcopy(job) for job in window],
            total=total,
            page=page.page,
            size=page.size,
            total_pages=total_pages,
            has_next=page.page < total_pages,
            has_prev=page.page > 1,
        )

    async def find_by_status(self, status: JobStatus) -> list[Job]:
        return [copy.deepcopy(job) for job in self._jobs.values() if job.status == status]

    async def update(self, job_id: str, **changes) -> Optional[Job]:
        for name in IMMUTABLE_FIELDS:
            changes.pop(name, None)
        unknown = [name for name in changes if name not in Job.__dataclass_fields__]
        if unknown:
            raise ValidationError(f"Unknown job fields: {', '.join(unknown)}")
        if "status" in changes:
            changes["status"] = JobStatus(changes["status"])
        if "priority" in changes:
            changes["priority"] = JobPriority(changes["priority"])

        async with self._lock_for(job_id):
            existing = self._jobs.get(job_id)
            if existing is None:
                return None

            updated = copy.deepcopy(existing)
            for name, value in changes.items():
                setattr(updated, name, copy.deepcopy(value))

            if updated.status != existing.status:
                if not is_valid_status_transition(existing.status, updated.status):
                    raise ConflictError(
                        f"Invalid status transition from '{existing.status.value}' "
                        f"to '{updated.status.value}'",
                        {"job_id": job_id, "from": existing.status.value, "to": updated.status.value},
                    )

            now = utcnow()
            updated.updated_at = now
            updated.started_at = existing.started_at
            updated.completed_at = existing.completed_at
            if updated.status == JobStatus.PROCESSING and updated.started_at is None:
                updated.started_at = now
            if updated.status.is_terminal and updated.completed_at is None:
                updated.completed_at = now

            if updated.result is not None and updated.status != JobStatus.COMPLETED:
                raise ConflictError(f"Job {job_id} cannot carry a result while '{updated.status.value}'")
            if updated.status == JobStatus.COMPLETED and updated.result is None:
                raise ConflictError(f"Job {job_id} cannot complete without a result")
            if updated.error is not None and updated.status != JobStatus.FAILED:
                raise ConflictError(f"Job {job_id} cannot carry an error while '{updated.status.value}'")
            if updated.status == JobStatus.FAILED and updated.error is None:
                raise ConflictError(f"Job {job_id} cannot fail without an error")

            await self._reindex(existing, updated)
            self._jobs[job_id] = updated

        if updated.status != existing.status:
            logger.debug(f"Job {job_id} moved {existing.status.value} -> {updated.status.value}")
        return copy.deepcopy(updated)

    async def _reindex(self, existing: Job, updated: Job) -> None:
        if existing.external_job_id == updated.external_job_id:
            return
        async with self._index_lock:
            owner = self._by_external_id.get(updated.external_job_id) if updated.external_job_id else None
            if owner is not None and owner != updated.id:
                raise ConflictError(f"External job id '{updated.external_job_id}' is already assigned")
            if existing.external_job_id:
                self._by_external_id.pop(existing.external_job_id, None)
            if updated.external_job_id:
                self._by_external_id[updated.external_job_id] = updated.id

    async def delete(self, job_id: str) -> bool:
        async with self._lock_for(job_id):
            async with self._index_lock:
                job = self._jobs.pop(job_id, None)
                if job is None:
                    return False
                if job.external_job_id:
                    self._by_external_id.pop(job.external_job_id, None)
        self._job_locks.pop(job_id, None)
        logger.debug(f"Job {job_id} deleted from store")
        return True

    async def count_by_status(self, status: JobStatus) -> int:
        return sum(1 for job in self._jobs.values() if job.status == status)

    async def count_all_statuses(self) -> dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return counts

    async def count(self) -> int:
        return len(self._jobs)

    async def exists(self, job_id: str) -> bool:
        return job_id in self._jobs

    async def clear(self) -> None:
        async with self._index_lock:
            self._jobs.clear()
            self._by_external_id.clear()
            self._job_locks.clear()
        logger.debug("All jobs cleared from store")
