"""UsageAccount repository.

All counter changes are single conditional UPDATE statements so concurrent jobs of
one owner never lose an update.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from artifex.models.usage_account import UsageAccount


class UsageAccountRepository:
    """Repository for UsageAccount counters."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_owner(self, owner_id: str) -> UsageAccount | None:
        result = await self.session.execute(
            select(UsageAccount).where(UsageAccount.owner_id == owner_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def upsert_account(self, owner_id: str, tier: str, monthly_limit: int) -> None:
        """Create the account or refresh its tier and limit (UPSERT).

        Counters are never touched here.

        Args:
            owner_id: Owner identifier
            tier: Current subscription tier
            monthly_limit: Units allowed for the tier
        """
        now = datetime.utcnow()
        stmt = insert(UsageAccount).values(
            owner_id=owner_id,
            tier=tier,
            monthly_limit=monthly_limit,
            used_units=0,
            reserved_units=0,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["owner_id"],
            set_={"tier": tier, "monthly_limit": monthly_limit, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def try_reserve(self, owner_id: str, units: int) -> bool:
        """Atomically add reserved units if the owner can afford them.

        Query:
            UPDATE usage_accounts
            SET reserved_units = reserved_units + :units
            WHERE owner_id = :owner_id
              AND used_units + reserved_units + :units <= monthly_limit

        Returns:
            True if the units were reserved, False if the balance is insufficient
        """
        result = await self.session.execute(
            update(UsageAccount)
            .where(
                UsageAccount.owner_id == owner_id,  # type: ignore[arg-type]
                UsageAccount.used_units + UsageAccount.reserved_units + units  # type: ignore[operator]
                <= UsageAccount.monthly_limit,
            )
            .values(
                reserved_units=UsageAccount.reserved_units + units,
                updated_at=datetime.utcnow(),
            )
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def release_reserved(self, owner_id: str, units: int, consume: bool) -> None:
        """Move reserved units out of the reservation pool.

        Args:
            owner_id: Owner identifier
            units: Units held by the reservation
            consume: True to convert them into used units (commit), False to drop them
        """
        values = {
            "reserved_units": UsageAccount.reserved_units - units,
            "updated_at": datetime.utcnow(),
        }
        if consume:
            values["used_units"] = UsageAccount.used_units + units
        await self.session.execute(
            update(UsageAccount)
            .where(UsageAccount.owner_id == owner_id)  # type: ignore[arg-type]
            .values(**values)
        )
