"""Repository layer for data access."""

from artifex.repositories.generation_job import GenerationJobRepository
from artifex.repositories.quota_reservation import QuotaReservationRepository
from artifex.repositories.usage_account import UsageAccountRepository

__all__ = [
    "GenerationJobRepository",
    "QuotaReservationRepository",
    "UsageAccountRepository",
]
