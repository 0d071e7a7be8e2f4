"""
Stats Service - read-only payment rollups for reporting.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from pitrace.fsm.states import PaymentStatus
from pitrace.schemas.views import to_recent_summary
from pitrace.services.payment_store import PaymentStore

logger = logging.getLogger(__name__)


class StatsService:
    """Aggregates payment counts and totals by status."""

    def __init__(self, store: PaymentStore):
        self.store = store

    async def stats(self, owner_uid: Optional[str] = None) -> Dict[str, Any]:
        """
        Per-status {count, total_amount} plus grand totals.

        Grand totals are summed from the same grouped rows, so a payment
        written mid-call is either in every number or in none.
        """
        rows = await self.store.aggregate_by_status(owner_uid)

        by_status: Dict[str, Dict[str, Any]] = {}
        total = 0
        total_amount = Decimal("0")
        for status, count, amount in rows:
            by_status[PaymentStatus(status).value] = {
                "count": count,
                "total_amount": amount,
            }
            total += count
            total_amount += amount

        return {
            "total": total,
            "total_amount": total_amount,
            "by_status": by_status,
        }

    async def public_overview(self, recent_limit: int = 5) -> Dict[str, Any]:
        """Global stats plus the most recently completed payments."""
        stats = await self.stats()
        recent = await self.store.list_recent_completed(recent_limit)
        return {
            "stats": stats,
            "recent_payments": [to_recent_summary(p) for p in recent],
        }
