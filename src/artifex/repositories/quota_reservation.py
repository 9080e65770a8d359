"""QuotaReservation repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from artifex.models.quota_reservation import QuotaReservation, ReservationStatus


class QuotaReservationRepository:
    """Repository for QuotaReservation entities.

    A reservation leaves ACTIVE exactly once; ``resolve`` returns None for every call
    after the first.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, reservation: QuotaReservation) -> QuotaReservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_by_id(self, reservation_id: UUID) -> QuotaReservation | None:
        result = await self.session.execute(
            select(QuotaReservation).where(QuotaReservation.id == reservation_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_job_id(self, job_id: UUID) -> QuotaReservation | None:
        result = await self.session.execute(
            select(QuotaReservation).where(QuotaReservation.job_id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def resolve(
        self, reservation_id: UUID, status: ReservationStatus
    ) -> tuple[str, int] | None:
        """Flip an active reservation to its final status.

        Query:
            UPDATE quota_reservations
            SET status = :status, resolved_at = now()
            WHERE id = :id AND status = 'active'
            RETURNING owner_id, units

        Returns:
            (owner_id, units) when this call resolved the reservation, None when it
            was already resolved or does not exist
        """
        result = await self.session.execute(
            update(QuotaReservation)
            .where(
                QuotaReservation.id == reservation_id,  # type: ignore[arg-type]
                QuotaReservation.status == ReservationStatus.ACTIVE,  # type: ignore[arg-type]
            )
            .values(status=status, resolved_at=datetime.utcnow())
            .returning(QuotaReservation.owner_id, QuotaReservation.units)  # type: ignore[arg-type]
        )
        row = result.one_or_none()
        return (row[0], row[1]) if row else None

    async def list_active_before(self, cutoff: datetime, limit: int = 500) -> list[QuotaReservation]:
        """Active reservations created before the cutoff (oldest first)."""
        result = await self.session.execute(
            select(QuotaReservation)
            .where(
                QuotaReservation.status == ReservationStatus.ACTIVE,  # type: ignore[arg-type]
                QuotaReservation.created_at < cutoff,  # type: ignore[arg-type]
            )
            .order_by(QuotaReservation.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
