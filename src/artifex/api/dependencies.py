"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Caller identity verification
- Access to services created in the application lifespan
"""

from dataclasses import dataclass
from typing import Annotated, Callable

from fastapi import Depends, Header, Request, status

from artifex.api.responses import ApiError
from artifex.core.config import Settings
from artifex.services.generation.runner import JobRunner
from artifex.services.identity import verify_identity_signature
from artifex.services.quota.ledger import QuotaLedger
from artifex.uow import UnitOfWork


@dataclass(frozen=True)
class Caller:
    """Verified identity of the user behind a request."""

    user_id: str
    tier: str


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


async def get_current_caller(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_tier: Annotated[str | None, Header()] = None,
    x_auth_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> Caller:
    """Verify the identity headers forwarded by the web frontend.

    The frontend verifies the user session and signs ``"{user_id}:{tier}"`` with
    AUTH_SIGNING_SECRET. Anything missing, unsigned or on an unknown tier is
    rejected before the endpoint runs.

    Raises:
        ApiError: 401 UNAUTHORIZED
    """
    if not x_user_id or not x_user_tier or not x_auth_signature:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Missing authentication headers"
        )

    if not verify_identity_signature(
        user_id=x_user_id,
        tier=x_user_tier,
        signature=x_auth_signature,
        signing_key=settings.auth_signing_secret,
    ):
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Invalid identity signature")

    if x_user_tier not in settings.tier_capabilities:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", f"Unknown subscription tier: {x_user_tier}"
        )

    return Caller(user_id=x_user_id, tier=x_user_tier)


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.runner


def get_quota_ledger(request: Request) -> QuotaLedger:
    return request.app.state.ledger
