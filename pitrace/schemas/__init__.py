"""Schemas package: payment snapshots, request bodies and views."""

from pitrace.schemas.payment import (
    Owner,
    ProductRef,
    ServiceRef,
    NetworkTransaction,
    LastError,
    RefundRecord,
    Payment,
)
from pitrace.schemas.auth import Identity

__all__ = [
    "Owner",
    "ProductRef",
    "ServiceRef",
    "NetworkTransaction",
    "LastError",
    "RefundRecord",
    "Payment",
    "Identity",
]
