"""Deterministic job cost in quota units."""

import math
from typing import Any

from artifex.models.generation_job import GenerationKind

QUALITY_MULTIPLIERS: dict[str, float] = {"standard": 1.0, "hd": 1.5, "ultra": 2.0}

# Batches of more than one output get a 10% discount
BATCH_DISCOUNT = 0.9

IMAGE_BASE_COST = 1
VIDEO_BASE_COST = 5
VIDEO_BASE_DURATION_SECONDS = 5


def compute_cost(kind: GenerationKind, parameters: dict[str, Any], image_count: int = 0) -> int:
    """Compute the cost of one job from its kind and parameters.

    Images: base 1 x quality multiplier x (batch size x 0.9 when batch > 1), rounded up.
    Multi-image composition is billed per input image. Video: base 5 per five seconds
    of requested duration.

    Args:
        kind: Generation kind
        parameters: Validated request parameters
        image_count: Number of input images

    Returns:
        Cost in quota units (always >= 1)
    """
    if kind.is_video:
        duration = int(parameters.get("duration") or VIDEO_BASE_DURATION_SECONDS)
        units = VIDEO_BASE_COST * duration / VIDEO_BASE_DURATION_SECONDS
        return max(math.ceil(units), 1)

    units = float(IMAGE_BASE_COST)
    units *= QUALITY_MULTIPLIERS.get(parameters.get("quality") or "standard", 1.0)

    if kind is GenerationKind.MULTI_IMAGE:
        batch_size = max(image_count, 1)
    else:
        batch_size = int(parameters.get("batch_size") or 1)
    if batch_size > 1:
        units *= batch_size * BATCH_DISCOUNT

    return max(math.ceil(units), 1)
