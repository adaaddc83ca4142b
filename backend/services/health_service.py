import logging
import platform
import time

from models.job import to_iso, utcnow
from services.job_store import JobStore
from services.sora_client import VideoGenerationClient

logger = logging.getLogger("health_service")

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class HealthService:
    def __init__(self, job_store: JobStore, client: VideoGenerationClient):
        self.job_store = job_store
        self.client = client
        self.started_at = time.monotonic()

    async def get_health(self) -> dict:
        return {
            "status": HEALTHY,
            "checks": {"api": HEALTHY},
            "timestamp": to_iso(utcnow()),
        }

    async def get_readiness(self) -> dict:
        checks = {
            "job_store": await self._check_store(),
            "sora_client": await self._check_client(),
        }
        return {
            "ready": all(state == HEALTHY for state in checks.values()),
            "checks": checks,
            "timestamp": to_iso(utcnow()),
        }

    async def get_metrics(self) -> dict:
        counts = await self.job_store.count_all_statuses()
        jobs = {status.value: count for status, count in counts.items()}
        jobs["total"] = await self.job_store.count()
        return {
            "jobs": jobs,
            "system": {
                "uptime_seconds": round(time.monotonic() - self.started_at, 3),
                "python_version": platform.python_version(),
            },
            "timestamp": to_iso(utcnow()),
        }

    async def _check_store(self) -> str:
        try:
            await self.job_store.count()
            return HEALTHY
        except Exception as exc:
            logger.error(f"Job store health check failed: {exc}")
            return UNHEALTHY

    async def _check_client(self) -> str:
        try:
            return HEALTHY if await self.client.health_check() else UNHEALTHY
        except Exception as exc:
            logger.error(f"Video provider health check failed: {exc}")
            return UNHEALTHY
