"""Generation provider clients."""

from artifex.core.config import Settings
from artifex.services.providers.base import (
    GenerationRequest,
    ImageInput,
    NormalizedStatus,
    ProviderClient,
    ProviderStatus,
    SubmitResult,
)
from artifex.services.providers.freepik_client import FreepikClient
from artifex.services.providers.normalization import normalize_status
from artifex.services.providers.replicate_client import ReplicateClient


def build_provider_client(settings: Settings) -> ProviderClient:
    """Instantiate the client selected by GENERATION_PROVIDER."""
    if settings.generation_provider == "replicate":
        return ReplicateClient(
            api_token=settings.replicate_api_token,
            image_model=settings.replicate_image_model,
            video_model=settings.replicate_video_model,
        )
    if settings.generation_provider == "freepik":
        return FreepikClient(
            api_key=settings.freepik_api_key,
            image_api_url=settings.freepik_api_url,
            video_api_url=settings.freepik_video_api_url,
        )
    raise ValueError(f"Unsupported GENERATION_PROVIDER: {settings.generation_provider}")


__all__ = [
    "FreepikClient",
    "GenerationRequest",
    "ImageInput",
    "NormalizedStatus",
    "ProviderClient",
    "ProviderStatus",
    "ReplicateClient",
    "SubmitResult",
    "build_provider_client",
    "normalize_status",
]
