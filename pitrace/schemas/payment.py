"""
Payment snapshots.

A Payment is an immutable value: every lifecycle step produces a new
snapshot via model_copy(update=...) which the store writes conditionally.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from pitrace.fsm.states import (
    Currency,
    PaymentStatus,
    PiNetwork,
    ServiceType,
    WebhookStatus,
)


class Owner(BaseModel):
    """Snapshot of the paying user at creation time. Never re-synced."""

    model_config = ConfigDict(frozen=True)

    uid: str
    display_name: str
    wallet_address: Optional[str] = None


class ProductRef(BaseModel):
    """Payment is for a tracked product."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["product"] = "product"
    product_id: str
    name: str
    hash: str
    quantity: int = Field(default=1, ge=1)


class ServiceRef(BaseModel):
    """Payment is for a platform service."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["service"] = "service"
    service_type: ServiceType
    description: str
    duration: str
    features: List[str] = Field(default_factory=list)

    @classmethod
    def for_type(cls, service_type: ServiceType) -> "ServiceRef":
        return cls(
            service_type=service_type,
            description=service_type.description,
            duration=service_type.duration,
            features=service_type.features,
        )


# No subject at all means a generic payment
Subject = Annotated[Union[ProductRef, ServiceRef], Field(discriminator="kind")]


_NETWORK_ALIASES = {
    "transactionId": "transaction_id",
    "txid": "transaction_id",
    "blockHash": "block_hash",
    "fromAddress": "from_address",
    "toAddress": "to_address",
    "txUrl": "tx_url",
    "rawTransaction": "raw_transaction",
}


class NetworkTransaction(BaseModel):
    """Settlement details reported by the wallet network."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    transaction_id: Optional[str] = None
    block_hash: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    network: Optional[PiNetwork] = None
    tx_url: Optional[str] = None
    # Internal only, stripped from the public view
    raw_transaction: Optional[Dict[str, Any]] = None

    def merged(self, data: Dict[str, Any]) -> "NetworkTransaction":
        """Overlay wallet callback data (camelCase or snake_case keys)."""
        values = self.model_dump()
        for key, value in data.items():
            field = _NETWORK_ALIASES.get(key, key)
            if field in values and value is not None:
                values[field] = value
        return NetworkTransaction.model_validate(values)


class LastError(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    code: str = "UNKNOWN_ERROR"
    timestamp: datetime


class RefundRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    reason: str = ""
    processed_at: datetime
    refund_transaction_id: Optional[str] = None


class Payment(BaseModel):
    """A payment as persisted. Frozen; see module docstring."""

    model_config = ConfigDict(frozen=True)

    payment_id: str
    identifier: Optional[str] = None
    owner: Owner

    amount: Decimal
    currency: Currency = Currency.PI
    memo: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    subject: Optional[Subject] = None

    status: PaymentStatus = PaymentStatus.PENDING
    network_data: Optional[NetworkTransaction] = None

    expires_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    # Request context
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Dict[str, Any] = Field(default_factory=dict)
    callback_url: Optional[str] = None
    webhook_url: Optional[str] = None

    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[LastError] = None

    webhook_status: WebhookStatus = WebhookStatus.PENDING
    webhook_attempts: int = 0

    refund: Optional[RefundRecord] = None

    # Optimistic concurrency token, bumped by every conditional write
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def product(self) -> Optional[ProductRef]:
        return self.subject if isinstance(self.subject, ProductRef) else None

    @property
    def service(self) -> Optional[ServiceRef]:
        return self.subject if isinstance(self.subject, ServiceRef) else None


def bag_size(bag: Dict[str, Any]) -> int:
    """Serialized size in bytes of an opaque key-value bag."""
    return len(json.dumps(bag, default=str, separators=(",", ":")).encode("utf-8"))
