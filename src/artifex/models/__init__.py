"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from artifex.models.generation_job import (
    FailureReason,
    GenerationJob,
    GenerationKind,
    InvalidStateTransition,
    JobState,
)
from artifex.models.media_asset import MediaAsset
from artifex.models.quota_reservation import QuotaReservation, ReservationStatus
from artifex.models.usage_account import UsageAccount

__all__ = [
    "GenerationJob",
    "GenerationKind",
    "JobState",
    "FailureReason",
    "InvalidStateTransition",
    "MediaAsset",
    "UsageAccount",
    "QuotaReservation",
    "ReservationStatus",
]
