"""QuotaReservation entity - provisional hold against a usage account."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class ReservationStatus(str, Enum):
    """Reservation lifecycle status. Leaves ACTIVE exactly once."""

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class QuotaReservation(SQLModel, table=True):
    """Claim against an owner's usage for the duration of one job."""

    __tablename__ = "quota_reservations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(foreign_key="usage_accounts.owner_id", max_length=255, index=True)
    job_id: UUID = Field(unique=True)
    units: int = Field(ge=0)
    status: ReservationStatus = Field(default=ReservationStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = Field(default=None)
