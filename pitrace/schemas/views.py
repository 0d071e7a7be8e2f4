"""Client-facing projections of payment snapshots."""

import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from pitrace.fsm.machine import effective_status, is_past_expiry
from pitrace.schemas.payment import Payment


def format_amount(amount: Decimal, currency: str) -> str:
    # normalize() drops storage padding (10.0000000 -> 10); "f" avoids 1E+1
    return f"{format(amount.normalize(), 'f')} {currency}"


def age_in_minutes(payment: Payment, now: datetime) -> int:
    if payment.created_at is None:
        return 0
    return math.floor((now - payment.created_at).total_seconds() / 60)


def to_public_view(payment: Payment, now: datetime) -> Dict[str, Any]:
    """
    Sanitized copy of a payment plus derived display fields.

    Never stored; lazy expiry is reflected in `status`.
    """
    data = payment.model_dump(exclude={"version"})
    if data.get("network_data"):
        data["network_data"].pop("raw_transaction", None)

    status = effective_status(payment, now)
    data["status"] = status.value
    data["formatted_amount"] = format_amount(payment.amount, payment.currency.value)
    data["age_in_minutes"] = age_in_minutes(payment, now)
    data["is_expired"] = is_past_expiry(payment, now)
    data["status_description"] = status.description
    return data


def to_recent_summary(payment: Payment) -> Dict[str, Any]:
    """Minimal shape used in the public recent-payments feed."""
    return {
        "payment_id": payment.payment_id,
        "amount": payment.amount,
        "username": payment.owner.display_name,
        "created_at": payment.created_at,
    }
