import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

from models.provider import REMOTE_STATUSES, GenerationRequest, RemoteJob
from utils.env import Settings
from utils.errors import ExternalServiceError, ValidationError

logger = logging.getLogger("sora_client")

T = TypeVar("T")

SERVICE_NAME = "Sora API"
SUPPORTED_MODEL = "sora-1-turbo"
MAX_PROMPT_LENGTH = 1000
MIN_SECONDS, MAX_SECONDS = 1, 20
MIN_VARIANTS, MAX_VARIANTS = 1, 4
MAX_PIXELS = 1920 * 1080
DEFAULT_DIMENSIONS = (1080, 1080)

RESOLUTION_DIMENSIONS = {
    "1080p": (1920, 1080),
    "720p": (1280, 720),
    "480p": (854, 480),
}

ASPECT_RATIO_DIMENSIONS = {
    "16:9": (1920, 1080),
    "9:16": (1080, 1920),
    "1:1": (1080, 1080),
    "4:3": (1440, 1080),
}


class ProviderHTTPError(Exception):
    """Non-2xx answer from the provider, before retry classification."""

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_generation_request(request: GenerationRequest) -> None:
    if request.prompt is not None and not isinstance(request.prompt, str):
        raise ValidationError("Prompt must be a string", {"field": "prompt"})
    if not request.prompt or not request.prompt.strip():
        raise ValidationError("Prompt is required", {"field": "prompt"})
    if len(request.prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt must be at most {MAX_PROMPT_LENGTH} characters",
            {"field": "prompt", "length": len(request.prompt)},
        )

    if request.model is not None and request.model != SUPPORTED_MODEL:
        raise ValidationError(
            f'Only "{SUPPORTED_MODEL}" model is supported',
            {"field": "model", "value": request.model, "allowed": [SUPPORTED_MODEL]},
        )

    if request.duration is not None:
        if not _is_int(request.duration):
            raise ValidationError("Duration must be an integer", {"field": "duration", "value": request.duration})
        if not MIN_SECONDS <= request.duration <= MAX_SECONDS:
            raise ValidationError(
                f"Duration must be between {MIN_SECONDS} and {MAX_SECONDS} seconds",
                {"field": "duration", "value": request.duration},
            )

    if request.variant_count is not None:
        if not _is_int(request.variant_count):
            raise ValidationError(
                "Variant count must be an integer",
                {"field": "variant_count", "value": request.variant_count},
            )
        if not MIN_VARIANTS <= request.variant_count <= MAX_VARIANTS:
            raise ValidationError(
                f"Variant count must be between {MIN_VARIANTS} and {MAX_VARIANTS}",
                {"field": "variant_count", "value": request.variant_count},
            )

    if (request.width is None) != (request.height is None):
        raise ValidationError(
            "Width and height must be given together",
            {"width": request.width, "height": request.height},
        )
    width, height = resolve_dimensions(request)
    if not (_is_int(width) and _is_int(height)) or width < 1 or height < 1:
        raise ValidationError(
            "Width and height must be positive integers",
            {"width": width, "height": height},
        )
    if width * height > MAX_PIXELS:
        raise ValidationError(
            f"Total pixels ({width * height}) exceed the maximum of {MAX_PIXELS} (1920x1080)",
            {"width": width, "height": height, "max_pixels": MAX_PIXELS},
        )


def resolve_dimensions(request: GenerationRequest) -> tuple[int, int]:
    """Explicit width/height win, then resolution label, then aspect ratio, then a 1080 square."""
    if request.width is not None and request.height is not None:
        return request.width, request.height
    if request.resolution in RESOLUTION_DIMENSIONS:
        return RESOLUTION_DIMENSIONS[request.resolution]
    if request.aspect_ratio in ASPECT_RATIO_DIMENSIONS:
        return ASPECT_RATIO_DIMENSIONS[request.aspect_ratio]
    return DEFAULT_DIMENSIONS


def build_submit_body(request: GenerationRequest) -> dict:
    width, height = resolve_dimensions(request)
    body: dict = {
        "model": request.model or SUPPORTED_MODEL,
        "prompt": request.prompt,
        "width": width,
        "height": height,
        "n_variants": request.variant_count or 1,
    }
    if request.duration is not None:
        body["n_seconds"] = request.duration
    return body


class VideoGenerationClient(ABC):
    """What the orchestrator needs from a video provider."""

    @abstractmethod
    async def submit(
        self,
        request: GenerationRequest,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RemoteJob: ...

    @abstractmethod
    async def get_status(self, external_id: str, timeout: Optional[float] = None) -> RemoteJob: ...

    @abstractmethod
    async def cancel(self, external_id: str, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    async def download_content(self, external_id: str, timeout: Optional[float] = None) -> bytes: ...

    @abstractmethod
    async def health_check(self) -> bool: ...

    async def close(self) -> None:
        return None


class SoraClient(VideoGenerationClient):
    def __init__(self, settings: Settings):
        self.base_url = settings.SORA_BASE_URL
        self.api_key = settings.OPENAI_API_KEY
        self.request_timeout = settings.SORA_TIMEOUT_SECONDS
        self.deadline_seconds = settings.SORA_DEADLINE_SECONDS
        self.max_retries = settings.SORA_MAX_RETRIES
        self.base_delay = settings.SORA_RETRY_BASE_DELAY
        self._session: aiohttp.ClientSession | None = None
        logger.info(f"SoraClient initialized, base_url={self.base_url}, max_retries={self.max_retries}")

    async def ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        json_body: Optional[dict] = None,
        headers: Optional[dict] = None,
        raw: bool = False,
    ):
        session = await self.ensure_session()
        async with session.request(
            method,
            f"{self.base_url}{path}",
            json=json_body,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if response.status >= 400:
                raise ProviderHTTPError(response.status, await self._error_message(response))
            if raw:
                return await response.read()
            if response.status == 204:
                return None
            try:
                return await response.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError):
                raise ExternalServiceError(
                    SERVICE_NAME,
                    f"Malformed JSON response for {method} {path}",
                    status=response.status,
                ) from None

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return response.reason or "Unknown error"
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            return data["error"].get("message") or response.reason or "Unknown error"
        return response.reason or "Unknown error"

    async def _with_retry(
        self,
        operation: str,
        call: Callable[[float], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """Run call(request_timeout) with exponential backoff until it succeeds,
        fails with a non-retryable error, runs out of attempts or hits the deadline."""
        deadline = time.monotonic() + (timeout if timeout is not None else self.deadline_seconds)
        attempt = 0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExternalServiceError(
                    SERVICE_NAME,
                    f"{operation} timed out after {attempt} attempt(s)",
                    timed_out=True,
                    details={"operation": operation},
                )

            try:
                return await call(min(self.request_timeout, remaining))
            except ProviderHTTPError as exc:
                status, message = exc.status, exc.message
                retryable = status == 429 or status >= 500
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                status, message = None, str(exc) or exc.__class__.__name__
                retryable = True

            if not retryable:
                raise ExternalServiceError(
                    SERVICE_NAME, message, status=status, details={"operation": operation, "status": status}
                )
            if attempt >= self.max_retries:
                logger.error(f"{operation}: giving up after {attempt + 1} attempts, last error: {message}")
                raise ExternalServiceError(
                    SERVICE_NAME,
                    f"{operation} failed after {attempt + 1} attempts: {message}",
                    status=status,
                    details={"operation": operation, "status": status, "attempts": attempt + 1},
                )

            delay = self.base_delay * (2 ** attempt)
            if time.monotonic() + delay >= deadline:
                raise ExternalServiceError(
                    SERVICE_NAME,
                    f"{operation} timed out after {attempt + 1} attempt(s): {message}",
                    status=status,
                    timed_out=True,
                    details={"operation": operation, "status": status, "attempts": attempt + 1},
                )

            logger.warning(f"{operation}: attempt {attempt + 1} failed ({message}), retrying in {delay}s")
            await asyncio.sleep(delay)
            attempt += 1

    def _parse_job(self, data) -> RemoteJob:
        if not isinstance(data, dict) or "id" not in data:
            raise ExternalServiceError(SERVICE_NAME, "Malformed job payload", details={"payload": data})
        if data.get("status") not in REMOTE_STATUSES:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"Unexpected job status '{data.get('status')}'",
                details={"job_id": data.get("id")},
            )
        job = RemoteJob.from_dict(data)
        for generation in job.generations:
            if not generation.video_url:
                generation.video_url = f"{self.base_url}/videos/{job.id}/content"
        return job

    async def submit(
        self,
        request: GenerationRequest,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RemoteJob:
        validate_generation_request(request)
        key = idempotency_key or str(uuid.uuid4())
        body = build_submit_body(request)
        logger.info(f"Submitting video ({body['width']}x{body['height']}), idempotency_key={key}")

        async def call(request_timeout: float):
            return await self._request(
                "POST", "/videos", request_timeout, json_body=body, headers={"Idempotency-Key": key}
            )

        job = self._parse_job(await self._with_retry("submit", call, timeout))
        logger.info(f"Provider accepted job {job.id} with status {job.status}")
        return job

    async def get_status(self, external_id: str, timeout: Optional[float] = None) -> RemoteJob:
        async def call(request_timeout: float):
            return await self._request("GET", f"/videos/{external_id}", request_timeout)

        job = self._parse_job(await self._with_retry("get_status", call, timeout))
        logger.debug(f"Provider job {external_id} is {job.status}")
        return job

    async def cancel(self, external_id: str, timeout: Optional[float] = None) -> None:
        async def call(request_timeout: float):
            return await self._request("DELETE", f"/videos/{external_id}", request_timeout)

        await self._with_retry("cancel", call, timeout)
        logger.info(f"Provider job {external_id} cancellation requested")

    async def download_content(self, external_id: str, timeout: Optional[float] = None) -> bytes:
        async def call(request_timeout: float):
            return await self._request("GET", f"/videos/{external_id}/content", request_timeout, raw=True)

        payload = await self._with_retry("download_content", call, timeout)
        logger.info(f"Downloaded {len(payload)} bytes for provider job {external_id}")
        return payload

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/models", min(self.request_timeout, 5.0))
            return True
        except (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(f"Provider health check failed: {exc}")
            return False
