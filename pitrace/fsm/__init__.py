"""FSM package for payment state management."""

from pitrace.fsm.states import (
    PaymentStatus,
    WebhookStatus,
    Currency,
    ServiceType,
    TRANSITIONS,
)

__all__ = ["PaymentStatus", "WebhookStatus", "Currency", "ServiceType", "TRANSITIONS"]
