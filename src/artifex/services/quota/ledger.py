"""Quota ledger: reserve / commit / rollback against per-owner usage counters."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from artifex.models.quota_reservation import QuotaReservation, ReservationStatus
from artifex.services.exceptions import InsufficientQuotaError, QuotaLedgerError
from artifex.uow import UnitOfWork

logger = structlog.get_logger()


@dataclass(frozen=True)
class QuotaSnapshot:
    """Point-in-time view of one owner's usage."""

    owner_id: str
    tier: str
    monthly_limit: int
    used_units: int
    reserved_units: int

    @property
    def remaining(self) -> int:
        return max(self.monthly_limit - self.used_units - self.reserved_units, 0)


class QuotaLedger(Protocol):
    """Reservation protocol used by the orchestrator.

    ``reserve`` raises InsufficientQuotaError when the owner cannot afford the units and
    QuotaLedgerError when the ledger is unreachable. ``commit`` and ``rollback`` are
    idempotent: a second call on a resolved reservation is a no-op.
    """

    async def reserve(self, owner_id: str, tier: str, units: int, job_id: UUID) -> UUID: ...

    async def commit(self, reservation_id: UUID) -> None: ...

    async def rollback(self, reservation_id: UUID) -> None: ...

    async def snapshot(self, owner_id: str, tier: str) -> QuotaSnapshot: ...


class PostgresQuotaLedger:
    """Quota ledger backed by the usage_accounts and quota_reservations tables.

    Every operation runs in its own transaction. Reservation is one conditional
    UPDATE, so two concurrent jobs of one owner can never both reserve units only
    one of them could afford.
    """

    def __init__(self, uow_factory: Callable, monthly_limits: dict[str, int]):
        """Initialize ledger.

        Args:
            uow_factory: Factory returned by create_uow_factory
            monthly_limits: Units per tier (TIER_MONTHLY_LIMITS)
        """
        self.uow_factory = uow_factory
        self.monthly_limits = monthly_limits

    def limit_for(self, tier: str) -> int:
        return self.monthly_limits.get(tier, 0)

    async def reserve(self, owner_id: str, tier: str, units: int, job_id: UUID) -> UUID:
        """Reserve units for one job.

        Returns:
            Reservation id

        Raises:
            InsufficientQuotaError: Balance too low (nothing was reserved)
            QuotaLedgerError: Database failure
        """
        try:
            async with await self.uow_factory() as uow:
                await uow.usage_accounts.upsert_account(owner_id, tier, self.limit_for(tier))
                if not await uow.usage_accounts.try_reserve(owner_id, units):
                    account = await uow.usage_accounts.get_by_owner(owner_id)
                    remaining = account.remaining if account else 0
                    raise InsufficientQuotaError(owner_id, needed=units, remaining=remaining)
                reservation = await uow.reservations.add(
                    QuotaReservation(owner_id=owner_id, job_id=job_id, units=units)
                )
                reservation_id = reservation.id
        except SQLAlchemyError as e:
            raise QuotaLedgerError(f"Quota ledger unavailable: {e}") from e

        logger.info(
            "quota.reserved",
            owner_id=owner_id,
            job_id=str(job_id),
            reservation_id=str(reservation_id),
            units=units,
        )
        return reservation_id

    async def _resolve(self, reservation_id: UUID, status: ReservationStatus) -> bool:
        try:
            async with await self.uow_factory() as uow:
                return await self._resolve_in(uow, reservation_id, status)
        except SQLAlchemyError as e:
            raise QuotaLedgerError(f"Quota ledger unavailable: {e}") from e

    async def _resolve_in(
        self, uow: UnitOfWork, reservation_id: UUID, status: ReservationStatus
    ) -> bool:
        resolved = await uow.reservations.resolve(reservation_id, status)
        if resolved is None:
            logger.debug(
                "quota.already_resolved", reservation_id=str(reservation_id), status=status.value
            )
            return False
        owner_id, units = resolved
        await uow.usage_accounts.release_reserved(
            owner_id, units, consume=status is ReservationStatus.COMMITTED
        )
        return True

    async def commit(self, reservation_id: UUID) -> None:
        """Convert reserved units into used units. No-op if already resolved.

        Raises:
            QuotaLedgerError: Database failure
        """
        if await self._resolve(reservation_id, ReservationStatus.COMMITTED):
            logger.info("quota.committed", reservation_id=str(reservation_id))

    async def rollback(self, reservation_id: UUID) -> None:
        """Return reserved units to the owner. No-op if already resolved.

        Raises:
            QuotaLedgerError: Database failure
        """
        if await self._resolve(reservation_id, ReservationStatus.ROLLED_BACK):
            logger.info("quota.rolled_back", reservation_id=str(reservation_id))

    async def snapshot(self, owner_id: str, tier: str) -> QuotaSnapshot:
        """Current usage of an owner; accounts without activity report zero usage.

        Raises:
            QuotaLedgerError: Database failure
        """
        try:
            async with await self.uow_factory() as uow:
                account = await uow.usage_accounts.get_by_owner(owner_id)
        except SQLAlchemyError as e:
            raise QuotaLedgerError(f"Quota ledger unavailable: {e}") from e

        return QuotaSnapshot(
            owner_id=owner_id,
            tier=tier,
            monthly_limit=self.limit_for(tier),
            used_units=account.used_units if account else 0,
            reserved_units=account.reserved_units if account else 0,
        )

    async def release_stale_reservations(self, older_than: timedelta) -> int:
        """Roll back reservations left active by a crashed process.

        Each reservation is resolved in its own transaction.

        Args:
            older_than: Minimum reservation age

        Returns:
            Number of reservations rolled back
        """
        cutoff = datetime.utcnow() - older_than
        async with await self.uow_factory() as uow:
            stale = await uow.reservations.list_active_before(cutoff)

        released = 0
        for reservation in stale:
            if await self._resolve(reservation.id, ReservationStatus.ROLLED_BACK):
                released += 1

        if released:
            logger.info("quota.stale_reservations_released", count=released)
        return released
