"""
Payment state definitions.
Statuses, supporting enums and the legal transition graph.
"""

from enum import Enum
from typing import Dict, FrozenSet


class PaymentStatus(str, Enum):
    """
    Lifecycle status of a payment.
    Moves forward only along TRANSITIONS.
    """

    PENDING = "pending"        # Created, waiting for wallet approval
    APPROVED = "approved"      # User approved in the wallet
    COMPLETED = "completed"    # Settled on the network
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def description(self) -> str:
        """Human readable status shown to clients."""
        descriptions = {
            self.PENDING: "Waiting for user approval",
            self.APPROVED: "Payment approved, processing...",
            self.COMPLETED: "Payment completed successfully",
            self.CANCELLED: "Payment was cancelled",
            self.EXPIRED: "Payment expired",
            self.FAILED: "Payment failed",
            self.REFUNDED: "Payment was refunded",
        }
        return descriptions.get(self, "Unknown status")

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.APPROVED,
        PaymentStatus.CANCELLED,
        PaymentStatus.EXPIRED,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.APPROVED: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.CANCELLED,
        PaymentStatus.FAILED,
    }),
    # Only through an explicit retry
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    # Only through an explicit refund
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.EXPIRED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class WebhookStatus(str, Enum):
    """Delivery state of the merchant callback for a payment."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RETRYING = "retrying"


class Currency(str, Enum):
    """Accepted currencies."""

    PI = "PI"      # Pi coins
    USD = "USD"
    IDR = "IDR"    # Indonesian Rupiah


class PiNetwork(str, Enum):
    """Pi network a transaction settled on."""

    MAINNET = "Pi Mainnet"
    TESTNET = "Pi Testnet"
    SANDBOX = "Pi Sandbox"


class LoginType(str, Enum):
    PI = "pi"
    GUEST = "guest"


class ServiceType(str, Enum):
    """
    Paid services that are not tied to a product.
    """

    PREMIUM_TRACKING = "premium_tracking"
    API_ACCESS = "api_access"
    CUSTOM_FEATURE = "custom_feature"
    OTHER = "other"

    @property
    def description(self) -> str:
        descriptions = {
            self.PREMIUM_TRACKING: "Premium supply chain tracking features",
            self.API_ACCESS: "API access for developers",
            self.CUSTOM_FEATURE: "Custom feature implementation",
            self.OTHER: "Other services",
        }
        return descriptions.get(self, "Service payment")

    @property
    def features(self) -> list:
        features = {
            self.PREMIUM_TRACKING: [
                "Advanced analytics",
                "Real-time tracking",
                "Priority support",
                "Custom reports",
            ],
            self.API_ACCESS: [
                "API key generation",
                "High rate limits",
                "Webhook support",
                "Documentation access",
            ],
            self.CUSTOM_FEATURE: [
                "Custom development",
                "Dedicated support",
                "Feature customization",
            ],
        }
        return list(features.get(self, ["Basic features"]))

    @property
    def duration(self) -> str:
        return "30 days"
