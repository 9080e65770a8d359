"""Quota API endpoint.

- GET /api/quota - Usage of the caller's account for the current tier
"""

import structlog
from fastapi import APIRouter, Depends, status

from artifex.api.dependencies import Caller, get_current_caller, get_quota_ledger
from artifex.api.responses import ApiError, QuotaDTO, QuotaEnvelope
from artifex.services.exceptions import QuotaLedgerError
from artifex.services.quota.ledger import QuotaLedger

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["quota"])


@router.get("/quota", response_model=QuotaEnvelope)
async def get_quota(
    caller: Caller = Depends(get_current_caller),
    ledger: QuotaLedger = Depends(get_quota_ledger),
) -> QuotaEnvelope:
    """Tier, limit, used, reserved and remaining units of the caller."""
    try:
        snapshot = await ledger.snapshot(caller.user_id, caller.tier)
    except QuotaLedgerError as e:
        logger.error("quota.snapshot_failed", owner_id=caller.user_id, error=str(e))
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "QUOTA_UNAVAILABLE",
            "Quota service unavailable. Please try again later.",
        ) from e

    return QuotaEnvelope(
        data=QuotaDTO(
            tier=snapshot.tier,
            monthly_limit=snapshot.monthly_limit,
            used=snapshot.used_units,
            reserved=snapshot.reserved_units,
            remaining=snapshot.remaining,
        )
    )
