"""UsageAccount entity - per-owner consumable usage counter with a tier cap."""

from datetime import datetime

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel


class UsageAccount(SQLModel, table=True):
    """Usage counter for one owner.

    ``reserved_units`` holds in-flight reservations; ``used_units`` only grows when a
    reservation is committed. Both change exclusively through the quota ledger.
    """

    __tablename__ = "usage_accounts"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("used_units >= 0 AND reserved_units >= 0", name="usage_non_negative"),
    )

    owner_id: str = Field(primary_key=True, max_length=255)
    tier: str = Field(max_length=50)
    monthly_limit: int = Field(ge=0)
    used_units: int = Field(default=0, ge=0)
    reserved_units: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def remaining(self) -> int:
        return max(self.monthly_limit - self.used_units - self.reserved_units, 0)
