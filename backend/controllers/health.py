from blacksheep import Response, json
from blacksheep.server.controllers import APIController, get

from services.health_service import HealthService


class Health(APIController):
    def __init__(self, health_service: HealthService):
        self.health_service = health_service

    @classmethod
    def route(cls):
        return "/health"

    @get()
    async def health(self) -> Response:
        return json(await self.health_service.get_health())

    @get("/ready")
    async def ready(self) -> Response:
        readiness = await self.health_service.get_readiness()
        return json(readiness, status=200 if readiness["ready"] else 503)

    @get("/metrics")
    async def metrics(self) -> Response:
        return json(await self.health_service.get_metrics())
