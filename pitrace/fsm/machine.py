"""
FSM Machine - payment transition rules.

Pure functions only. Callers read a snapshot, compute the next snapshot
here, and persist it with a conditional write; nothing in this module
touches storage or the wall clock.
"""

import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from pitrace.errors import (
    ExpiredError,
    InvalidTransitionError,
    RetryExhaustedError,
    ValidationError,
)
from pitrace.fsm.states import TRANSITIONS, PaymentStatus, WebhookStatus
from pitrace.schemas.payment import LastError, NetworkTransaction, Payment, RefundRecord

_BASE36 = string.digits + string.ascii_lowercase

# Keys under which a completion payload carries the network transaction id
_TRANSACTION_ID_KEYS = ("transaction_id", "transactionId", "txid")


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_payment_id(now: datetime) -> str:
    """PAY_<base36 ms timestamp>_<9 random chars>, upper-cased."""
    timestamp = _to_base36(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"PAY_{timestamp}_{suffix}".upper()


def is_past_expiry(payment: Payment, now: datetime) -> bool:
    return payment.expires_at is not None and now > payment.expires_at


def effective_status(payment: Payment, now: datetime) -> PaymentStatus:
    """Status as observed at `now`: a pending payment past its deadline is expired."""
    if payment.status == PaymentStatus.PENDING and is_past_expiry(payment, now):
        return PaymentStatus.EXPIRED
    return payment.status


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(payment: Payment, target: PaymentStatus, now: datetime) -> None:
    """Raise unless `target` is a legal successor of the payment's status at `now`."""
    if not can_transition(payment.status, target):
        raise InvalidTransitionError(
            f"Cannot move payment {payment.payment_id} from "
            f"{payment.status.value} to {target.value}"
        )
    if target != PaymentStatus.EXPIRED and effective_status(payment, now) == PaymentStatus.EXPIRED:
        raise ExpiredError(f"Payment {payment.payment_id} expired at {payment.expires_at.isoformat()}")


def check_retry(payment: Payment, now: datetime) -> None:
    if payment.status != PaymentStatus.FAILED:
        raise InvalidTransitionError(
            f"Only failed payments can be retried; {payment.payment_id} is {payment.status.value}"
        )
    if payment.retry_count >= payment.max_retries:
        raise RetryExhaustedError(
            f"Payment {payment.payment_id} used {payment.retry_count} of {payment.max_retries} retries"
        )
    if is_past_expiry(payment, now):
        raise ExpiredError(f"Payment {payment.payment_id} expired at {payment.expires_at.isoformat()}")


def failure_from(data: Optional[Dict[str, Any]], now: datetime) -> LastError:
    """Build the last_error record from a wallet failure callback."""
    data = data or {}
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        code = error.get("code")
    else:
        message = error
        code = None
    return LastError(
        message=str(message or data.get("message") or "Payment failed"),
        code=str(code or data.get("code") or "UNKNOWN_ERROR"),
        timestamp=now,
    )


def next_state(
    payment: Payment,
    target: PaymentStatus,
    now: datetime,
    ttl: timedelta,
    transaction_data: Optional[Dict[str, Any]] = None,
) -> Payment:
    """
    Snapshot after moving `payment` to `target`.

    Status timestamps are only written when unset, so replays and
    fail/retry cycles keep the first time each phase was reached.
    """
    changes: Dict[str, Any] = {"status": target}

    if target == PaymentStatus.APPROVED:
        if payment.approved_at is None:
            changes["approved_at"] = now

    elif target == PaymentStatus.COMPLETED:
        # Only a payload naming a transaction describes one
        if transaction_data and any(transaction_data.get(key) for key in _TRANSACTION_ID_KEYS):
            base = payment.network_data or NetworkTransaction()
            try:
                changes["network_data"] = base.merged(transaction_data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid transaction data: {e.errors()[0]['msg']}")
        if payment.completed_at is None:
            changes["completed_at"] = now

    elif target == PaymentStatus.CANCELLED:
        if payment.cancelled_at is None:
            changes["cancelled_at"] = now

    elif target == PaymentStatus.FAILED:
        if payment.failed_at is None:
            changes["failed_at"] = now
        changes["last_error"] = failure_from(transaction_data, now)
        changes["retry_count"] = payment.retry_count + 1

    elif target == PaymentStatus.PENDING:
        # Retry: fresh approval window
        changes["expires_at"] = now + ttl

    return payment.model_copy(update=changes)


def refund_state(
    payment: Payment,
    now: datetime,
    amount: Optional[Decimal] = None,
    reason: str = "",
) -> Payment:
    if payment.status != PaymentStatus.COMPLETED:
        raise InvalidTransitionError(
            f"Only completed payments can be refunded; {payment.payment_id} is {payment.status.value}"
        )
    refund_amount = payment.amount if amount is None else Decimal(amount)
    if refund_amount <= 0:
        raise ValidationError("Refund amount must be positive")
    if refund_amount > payment.amount:
        raise ValidationError("Refund amount cannot exceed the payment amount")

    return payment.model_copy(update={
        "status": PaymentStatus.REFUNDED,
        "refund": RefundRecord(amount=refund_amount, reason=reason or "", processed_at=now),
    })


def webhook_state(payment: Payment, delivered: bool, max_attempts: int) -> Payment:
    attempts = payment.webhook_attempts + 1
    if delivered:
        status = WebhookStatus.SENT
    elif attempts < max_attempts:
        status = WebhookStatus.RETRYING
    else:
        status = WebhookStatus.FAILED
    return payment.model_copy(update={"webhook_attempts": attempts, "webhook_status": status})
