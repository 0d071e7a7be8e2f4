"""Payment model - persisted payment records, never deleted."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pitrace.database import Base, UTCDateTime
from pitrace.fsm.states import Currency, PaymentStatus, WebhookStatus

# Numeric column shape for amounts; wider input is rejected, never rounded
AMOUNT_PRECISION = 18
AMOUNT_SCALE = 7


class PaymentRecord(Base):
    """
    Payment row.
    payment_id is the primary key; identifier is unique when present
    (NULLs don't collide, which gives sparse uniqueness).
    Nested sub-records are stored as JSON documents.
    """

    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Wallet network identifier, alternate lookup key for callbacks
    identifier: Mapped[Optional[str]] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )

    # Owner snapshot; uid duplicated as a column for filtering
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    owner: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(AMOUNT_PRECISION, AMOUNT_SCALE), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(8),
        default=Currency.PI.value,
        nullable=False,
    )
    memo: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # "metadata" is reserved on declarative classes
    extra_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    # Product or service reference, tagged by "kind"
    subject: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    network_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Status timestamps
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Request context
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    device_info: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    callback_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    webhook_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Retry and error information
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    webhook_status: Mapped[str] = mapped_column(
        String(20),
        default=WebhookStatus.PENDING.value,
        nullable=False,
    )
    webhook_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    refund: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Compare-and-swap token
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_payments_owner_status", "owner_uid", "status"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.payment_id} {self.status}>"
