"""Replicate API client for image and video generation with error classification."""

import asyncio
import base64
from typing import Any, Optional

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

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
from artifex.services.providers.normalization import normalize_status

logger = structlog.get_logger()

# Parameters forwarded verbatim to the model input when present
INPUT_PASSTHROUGH = ("aspect_ratio", "seed", "negative_prompt", "duration", "cfg_scale")


def classify_error(exception: Exception) -> ProviderError:
    """Classify exception into the provider failure taxonomy.

    Args:
        exception: Original exception from the Replicate SDK or network layer

    Returns:
        Classified ProviderError subclass instance

    Classification rules:
        - HTTP status from the SDK error wins when present
        - Timeout / connection errors → ProviderTransientError
        - 429 or "rate limit" → ProviderRateLimitError
        - 5xx or "service unavailable" → ProviderTransientError
        - 401/403, "unauthorized", "invalid api token" → ProviderAuthenticationError
        - 400/404/422, content policy or "invalid" input → ProviderValidationError
        - Anything else → ProviderUnexpectedError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status: Optional[int] = getattr(exception, "status", None)

    if isinstance(exception, (httpx.TimeoutException, TimeoutError)) or "timeout" in (
        error_message_lower
    ):
        return ProviderTransientError(f"Network timeout: {error_message}", status_code=status)

    if status == 429 or "429" in error_message or "rate limit" in error_message_lower:
        return ProviderRateLimitError(f"Rate limit exceeded: {error_message}", status_code=status)

    if (status is not None and status >= 500) or "service unavailable" in error_message_lower:
        return ProviderTransientError(f"Service unavailable: {error_message}", status_code=status)

    if (
        status in (401, 403)
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "invalid api token" in error_message_lower
        or "authentication" in error_message_lower
    ):
        return ProviderAuthenticationError(
            f"Authentication failed: {error_message}", status_code=status
        )

    if (
        status in (400, 404, 422)
        or "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "invalid" in error_message_lower
    ):
        return ProviderValidationError(f"Request rejected: {error_message}", status_code=status)

    if isinstance(exception, (httpx.TransportError, ConnectionError, OSError)):
        return ProviderTransientError(f"Connection error: {error_message}", status_code=status)

    return ProviderUnexpectedError(f"Unexpected error: {error_message}", status_code=status)


def prediction_payload(prediction: Any) -> dict[str, Any]:
    """Flatten an SDK Prediction object into the dict shape the normalizer reads."""
    return {
        "id": getattr(prediction, "id", None),
        "status": getattr(prediction, "status", None),
        "output": getattr(prediction, "output", None),
        "error": getattr(prediction, "error", None),
    }


def as_model_input(image: ImageInput) -> str:
    """Replicate accepts remote URLs or data URIs for file inputs."""
    if image.url:
        return image.url
    encoded = base64.b64encode(image.content).decode("ascii")
    return f"data:{image.mime_type};base64,{encoded}"


class ReplicateClient:
    """Generation client backed by Replicate predictions.

    The SDK is synchronous, so every call runs in a worker thread.
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        image_model: str = "black-forest-labs/flux-schnell",
        video_model: str = "kwaivgi/kling-v2.1",
        client: Optional[replicate.Client] = None,
    ):
        self.image_model = image_model
        self.video_model = video_model
        self.client = client or replicate.Client(api_token=api_token)
        self._has_token = bool(api_token) or client is not None

    def build_input(self, request: GenerationRequest) -> dict[str, Any]:
        params = request.parameters
        model_input: dict[str, Any] = {"prompt": request.prompt}
        model_input.update({key: params[key] for key in INPUT_PASSTHROUGH if params.get(key)})

        batch_size = int(params.get("batch_size") or 1)
        if batch_size > 1 and not request.kind.is_video:
            model_input["num_outputs"] = batch_size

        if request.images:
            image_key = "start_image" if request.kind.is_video else "image"
            model_input[image_key] = as_model_input(request.images[0])
            if request.kind is GenerationKind.MULTI_IMAGE:
                for index, image in enumerate(request.images[1:], start=2):
                    model_input[f"image_{index}"] = as_model_input(image)
        return model_input

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        if not self._has_token:
            raise ProviderAuthenticationError("REPLICATE_API_TOKEN not configured")
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        except Exception as e:
            # Unknown failure modes are not retried
            logger.error(
                "provider.unexpected_response",
                provider=self.name,
                operation=operation,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise ProviderUnexpectedError(f"Unexpected error: {e}") from e

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        """Create a prediction.

        Raises:
            ProviderError: Classified failure (see classify_error)
        """
        model = self.video_model if request.kind.is_video else self.image_model
        prediction = await self._call(
            "submit",
            self.client.predictions.create,
            model=model,
            input=self.build_input(request),
        )
        normalized = normalize_status(prediction_payload(prediction))
        if not normalized.task_id:
            raise ProviderUnexpectedError(
                "Replicate prediction has no id", payload=prediction_payload(prediction)
            )
        return SubmitResult(
            task_id=normalized.task_id,
            immediate=normalized if normalized.is_terminal else None,
        )

    async def poll(self, task_id: str, kind: GenerationKind) -> NormalizedStatus:
        """Fetch a prediction and normalize it.

        Raises:
            ProviderError: Classified failure (see classify_error)
        """
        prediction = await self._call("poll", self.client.predictions.get, task_id)
        return normalize_status(prediction_payload(prediction))
