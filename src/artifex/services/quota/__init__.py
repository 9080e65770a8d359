"""Quota accounting."""

from artifex.services.quota.cost import compute_cost
from artifex.services.quota.ledger import PostgresQuotaLedger, QuotaLedger, QuotaSnapshot

__all__ = ["PostgresQuotaLedger", "QuotaLedger", "QuotaSnapshot", "compute_cost"]
