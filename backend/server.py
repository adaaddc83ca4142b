import logging

from blacksheep import Application, json
from rodi import Container

import controllers.batches  # noqa: F401
import controllers.health  # noqa: F401
import controllers.videos  # noqa: F401

from services.batch_service import BatchService
from services.health_service import HealthService
from services.job_store import InMemoryJobStore
from services.mock_sora_client import MockSoraClient
from services.sora_client import SoraClient, VideoGenerationClient
from services.video_service import VideoService
from utils.env import Settings, settings
from utils.errors import AppError, ConflictError, ExternalServiceError, NotFoundError, ValidationError

logger = logging.getLogger("server")


async def handle_app_error(app, request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path.decode()} -> {exc.status_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path.decode()} -> {exc.status_code}: {exc.message}")
    return json({"error": exc.to_dict()}, status=exc.status_code)


def build_client(app_settings: Settings) -> VideoGenerationClient:
    if app_settings.SORA_USE_MOCK:
        logger.warning("SORA_USE_MOCK is set, using the in-memory video provider")
        return MockSoraClient()
    return SoraClient(app_settings)


def create_app(app_settings: Settings = settings) -> Application:
    logging.basicConfig(
        level=app_settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    job_store = InMemoryJobStore()
    client = build_client(app_settings)
    video_service = VideoService(job_store, client)
    batch_service = BatchService(video_service, job_store, app_settings)
    health_service = HealthService(job_store, client)

    services = Container()
    services.add_instance(app_settings, Settings)
    services.add_instance(job_store)
    services.add_instance(client, VideoGenerationClient)
    services.add_instance(video_service)
    services.add_instance(batch_service)
    services.add_instance(health_service)

    app = Application(services=services)

    app.use_cors(
        allow_methods="*",
        allow_origins="*",
        allow_headers="*",
    )

    for error_type in (AppError, ValidationError, NotFoundError, ConflictError, ExternalServiceError):
        app.exceptions_handlers[error_type] = handle_app_error

    async def on_stop(application: Application) -> None:
        await video_service.drain()
        await client.close()
        logger.info("Video provider client closed")

    app.on_stop += on_stop
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
