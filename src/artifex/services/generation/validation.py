"""Request validation for generation jobs.

Validates prompts and parameters before any quota is reserved.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from artifex.core.config import TierCapability
from artifex.models.generation_job import GenerationKind
from artifex.services.exceptions import RequestValidationError
from artifex.services.providers.base import GenerationRequest

VIDEO_DURATIONS = (5, 10)


def validate_prompt(prompt: str, max_length: int = 2000) -> str:
    """Validate prompt text for generation.

    Args:
        prompt: Text prompt from the caller
        max_length: Maximum prompt length in characters

    Returns:
        Validated prompt (unchanged if valid)

    Raises:
        RequestValidationError: If prompt is empty, blank, or exceeds max_length
    """
    if not isinstance(prompt, str):
        raise RequestValidationError(
            f"Prompt must be a string, got {type(prompt).__name__}", field="prompt"
        )

    if not prompt.strip():
        raise RequestValidationError("Prompt cannot be empty", field="prompt")

    if len(prompt) > max_length:
        raise RequestValidationError(
            f"Prompt exceeds maximum length of {max_length} characters (got {len(prompt)})",
            field="prompt",
        )

    return prompt


class GenerationParameters(BaseModel):
    """Known generation parameters. Unknown keys are passed through untouched."""

    model_config = ConfigDict(extra="allow")

    quality: str = "standard"
    batch_size: int = Field(default=1, ge=1)
    aspect_ratio: Optional[str] = None
    style: Optional[str] = None
    seed: Optional[int] = None
    negative_prompt: Optional[str] = None
    duration: Optional[int] = None
    cfg_scale: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in VIDEO_DURATIONS:
            raise ValueError(f"duration must be one of {VIDEO_DURATIONS}")
        return value


def validate_parameters(raw: dict[str, Any]) -> dict[str, Any]:
    """Coerce and check the parameter bag.

    Raises:
        RequestValidationError: First invalid parameter
    """
    try:
        parameters = GenerationParameters.model_validate(raw or {})
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or None
        raise RequestValidationError(
            f"Invalid parameter {field}: {error['msg']}", field=field
        ) from e
    return parameters.model_dump(exclude_none=True)


def validate_images(kind: GenerationKind, image_count: int, capability: TierCapability) -> None:
    """Check the number of input images against the kind and tier."""
    if not kind.requires_images:
        if image_count:
            raise RequestValidationError(
                f"{kind.value} does not accept input images", field="images"
            )
        return

    if kind is GenerationKind.MULTI_IMAGE:
        if image_count < 2:
            raise RequestValidationError(
                "multi-image needs at least 2 input images", field="images"
            )
        if image_count > capability.max_input_images:
            raise RequestValidationError(
                f"Too many input images: {image_count} "
                f"(maximum {capability.max_input_images} for your tier)",
                field="images",
            )
    elif image_count != 1:
        raise RequestValidationError(
            f"{kind.value} needs exactly 1 input image (got {image_count})", field="images"
        )


def validate_request(
    request: GenerationRequest,
    tier: str,
    capabilities: dict[str, TierCapability],
    max_prompt_length: int = 2000,
) -> GenerationRequest:
    """Validate a request against prompt rules and the caller's tier capabilities.

    Args:
        request: Raw generation request
        tier: Caller's subscription tier
        capabilities: Tier capability table (TIER_CAPABILITIES)
        max_prompt_length: Maximum prompt length

    Returns:
        Request with normalized parameters

    Raises:
        RequestValidationError: Request is malformed or exceeds the tier's capabilities
    """
    capability = capabilities.get(tier)
    if capability is None:
        raise RequestValidationError(f"Unknown subscription tier: {tier}", field="tier")

    validate_prompt(request.prompt, max_prompt_length)

    if request.kind.value not in capability.kinds:
        raise RequestValidationError(
            f"{request.kind.value} is not available on the {tier} tier", field="kind"
        )

    parameters = validate_parameters(request.parameters)

    if parameters["quality"] not in capability.available_qualities:
        raise RequestValidationError(
            f"Quality {parameters['quality']} is not available on the {tier} tier. "
            f"Available: {', '.join(capability.available_qualities)}",
            field="quality",
        )

    if parameters["batch_size"] > capability.max_batch_size:
        raise RequestValidationError(
            f"Batch size {parameters['batch_size']} exceeds the {tier} tier maximum "
            f"of {capability.max_batch_size}",
            field="batch_size",
        )

    validate_images(request.kind, len(request.images), capability)

    return GenerationRequest(
        kind=request.kind,
        prompt=request.prompt,
        images=list(request.images),
        parameters=parameters,
    )
