"""Freepik API client for image (Mystic) and video (Kling) generation."""

import base64
from typing import Any, Optional
from uuid import uuid4

import httpx
import structlog

from artifex.models.generation_job import GenerationKind
from artifex.services.exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
    ProviderUnexpectedError,
    ProviderValidationError,
)
from artifex.services.providers.base import (
    GenerationRequest,
    ImageInput,
    NormalizedStatus,
    SubmitResult,
)
from artifex.services.providers.normalization import extract_error, normalize_status, unwrap

logger = structlog.get_logger()

SUBMIT_TIMEOUT_SECONDS = 30.0
POLL_TIMEOUT_SECONDS = 15.0

# Parameters forwarded verbatim to the Mystic endpoint when present
MYSTIC_PASSTHROUGH = ("aspect_ratio", "resolution", "model", "seed", "styling", "engine")

# Mystic accepts one structure reference and one style reference
MAX_REFERENCE_IMAGES = 2


def classify_response(response: httpx.Response) -> Optional[ProviderError]:
    """Map a non-2xx response onto the provider failure taxonomy.

    Returns:
        None for successful responses, otherwise the classified error

    Classification rules:
        - 401/403 → ProviderAuthenticationError
        - 429 → ProviderRateLimitError
        - 400/404/422 → ProviderValidationError
        - 408 and 5xx → ProviderTransientError
        - anything else → ProviderUnexpectedError
    """
    if response.is_success:
        return None

    try:
        payload: Any = response.json()
    except ValueError:
        payload = {"message": response.text}
    message = extract_error(unwrap(payload)) or response.reason_phrase
    code = response.status_code

    if code in (401, 403):
        return ProviderAuthenticationError(
            f"Freepik authentication failed ({code}): {message}. Check FREEPIK_API_KEY.",
            status_code=code,
            payload=payload,
        )
    if code == 429:
        return ProviderRateLimitError(
            f"Freepik rate limit exceeded: {message}", status_code=code, payload=payload
        )
    if code in (400, 404, 422):
        return ProviderValidationError(
            f"Freepik rejected the request ({code}): {message}", status_code=code, payload=payload
        )
    if code == 408 or code >= 500:
        return ProviderTransientError(
            f"Freepik service unavailable ({code}): {message}", status_code=code, payload=payload
        )
    return ProviderUnexpectedError(
        f"Unexpected Freepik response ({code}): {message}", status_code=code, payload=payload
    )


class FreepikClient:
    """Generation client for the Freepik AI endpoints.

    Mystic answers either synchronously (``image_url`` in the body) or with a task id
    to poll; Kling video generation is always asynchronous.
    """

    name = "freepik"

    def __init__(
        self,
        api_key: str,
        image_api_url: str = "https://api.freepik.com/v1/ai/mystic",
        video_api_url: str = "https://api.freepik.com/v1/ai/image-to-video/kling-v2-5-pro",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Freepik client.

        Args:
            api_key: Freepik API key (from FREEPIK_API_KEY env var)
            image_api_url: Mystic endpoint used for every image kind
            video_api_url: Kling endpoint used for image-to-video
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.image_api_url = image_api_url.rstrip("/")
        self.video_api_url = video_api_url.rstrip("/")
        self.transport = transport
        self.headers = {"x-freepik-api-key": api_key, "Content-Type": "application/json"}

    def _endpoint(self, kind: GenerationKind) -> str:
        return self.video_api_url if kind.is_video else self.image_api_url

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def _encode_image(self, image: ImageInput) -> str:
        """Bare base64 for Mystic references; remote images are downloaded first."""
        if image.is_inline:
            return base64.b64encode(image.content).decode("ascii")
        try:
            async with self._client(SUBMIT_TIMEOUT_SECONDS) as client:
                response = await client.get(image.url)  # type: ignore[arg-type]
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"Could not download input image: {e}") from e
        if not response.is_success:
            raise ProviderValidationError(
                f"Could not download input image ({response.status_code}): {image.url}",
                status_code=response.status_code,
            )
        return base64.b64encode(response.content).decode("ascii")

    async def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        """Build the vendor JSON body for one request."""
        params = request.parameters

        if request.kind.is_video:
            image = request.images[0]
            return {
                "image": image.url if image.url else base64.b64encode(image.content).decode(),
                "prompt": request.prompt,
                "negative_prompt": params.get("negative_prompt") or "",
                "duration": str(params.get("duration") or "5"),
                "cfg_scale": params.get("cfg_scale") or 0.5,
            }

        payload: dict[str, Any] = {"prompt": request.prompt, "filter_nsfw": True}
        payload.update({key: params[key] for key in MYSTIC_PASSTHROUGH if params.get(key)})

        if request.images:
            if len(request.images) > MAX_REFERENCE_IMAGES:
                raise ProviderValidationError(
                    f"Freepik accepts at most {MAX_REFERENCE_IMAGES} reference images, "
                    f"got {len(request.images)}"
                )
            payload["structure_reference"] = await self._encode_image(request.images[0])
            if request.kind is GenerationKind.MULTI_IMAGE and len(request.images) > 1:
                payload["style_reference"] = await self._encode_image(request.images[1])
        return payload

    async def _send(self, method: str, url: str, timeout: float, **kwargs: Any) -> Any:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, url, headers=self.headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"Freepik request timeout after {timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"Freepik network error: {e}") from e

        error = classify_response(response)
        if error is not None:
            raise error

        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "provider.unexpected_response",
                provider=self.name,
                status_code=response.status_code,
                raw_payload=response.text,
            )
            raise ProviderUnexpectedError(
                "Freepik returned a non-JSON body", status_code=response.status_code
            ) from e

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        """Start a generation job.

        Returns:
            SubmitResult with the task id, plus the final result when Mystic
            answered synchronously

        Raises:
            ProviderError: Classified failure (see classify_response)
        """
        payload = await self.build_payload(request)
        raw = await self._send(
            "POST", self._endpoint(request.kind), SUBMIT_TIMEOUT_SECONDS, json=payload
        )
        normalized = normalize_status(raw)

        if normalized.task_id is None and not normalized.is_terminal:
            logger.error(
                "provider.unexpected_response",
                provider=self.name,
                operation="submit",
                raw_payload=raw,
            )
            raise ProviderUnexpectedError(
                "Invalid response from Freepik API - no image URL or task ID provided",
                payload=raw,
            )

        task_id = normalized.task_id or f"sync-{uuid4().hex}"
        immediate = normalized if normalized.is_terminal else None
        return SubmitResult(task_id=task_id, immediate=immediate)

    async def poll(self, task_id: str, kind: GenerationKind) -> NormalizedStatus:
        """Fetch the current status of a task.

        Raises:
            ProviderError: Classified failure (see classify_response)
        """
        raw = await self._send("GET", f"{self._endpoint(kind)}/{task_id}", POLL_TIMEOUT_SECONDS)
        return normalize_status(raw)
