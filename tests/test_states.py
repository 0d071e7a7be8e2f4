"""
Tests for payment state definitions.
"""

import pytest
from pitrace.fsm.states import (
    TRANSITIONS,
    Currency,
    LoginType,
    PaymentStatus,
    ServiceType,
    WebhookStatus,
)


class TestPaymentStatus:
    """Tests for PaymentStatus enum."""

    def test_all_statuses_defined(self):
        expected = {"pending", "approved", "completed", "cancelled", "expired", "failed", "refunded"}
        assert {s.value for s in PaymentStatus} == expected

    def test_every_status_has_transitions_entry(self):
        assert set(TRANSITIONS) == set(PaymentStatus)

    def test_descriptions(self):
        assert PaymentStatus.PENDING.description == "Waiting for user approval"
        assert PaymentStatus.APPROVED.description == "Payment approved, processing..."
        assert PaymentStatus.COMPLETED.description == "Payment completed successfully"

    @pytest.mark.parametrize("status", [
        PaymentStatus.CANCELLED,
        PaymentStatus.EXPIRED,
        PaymentStatus.REFUNDED,
    ])
    def test_terminal_statuses(self, status):
        assert status.is_terminal
        assert TRANSITIONS[status] == frozenset()

    def test_non_terminal_statuses(self):
        for status in (PaymentStatus.PENDING, PaymentStatus.APPROVED, PaymentStatus.FAILED, PaymentStatus.COMPLETED):
            assert not status.is_terminal


class TestTransitionGraph:
    """The legal moves between statuses."""

    def test_pending_successors(self):
        assert TRANSITIONS[PaymentStatus.PENDING] == {
            PaymentStatus.APPROVED,
            PaymentStatus.CANCELLED,
            PaymentStatus.EXPIRED,
            PaymentStatus.FAILED,
        }

    def test_approved_successors(self):
        assert TRANSITIONS[PaymentStatus.APPROVED] == {
            PaymentStatus.COMPLETED,
            PaymentStatus.CANCELLED,
            PaymentStatus.FAILED,
        }

    def test_pending_cannot_jump_to_completed(self):
        assert PaymentStatus.COMPLETED not in TRANSITIONS[PaymentStatus.PENDING]

    def test_failed_only_goes_back_to_pending(self):
        assert TRANSITIONS[PaymentStatus.FAILED] == {PaymentStatus.PENDING}

    def test_completed_only_refunds(self):
        assert TRANSITIONS[PaymentStatus.COMPLETED] == {PaymentStatus.REFUNDED}


class TestSupportingEnums:

    def test_currencies(self):
        assert {c.value for c in Currency} == {"PI", "USD", "IDR"}

    def test_webhook_statuses(self):
        assert {s.value for s in WebhookStatus} == {"pending", "sent", "failed", "retrying"}

    def test_login_types(self):
        assert LoginType("pi") == LoginType.PI
        assert LoginType("guest") == LoginType.GUEST

    def test_service_features(self):
        assert "Real-time tracking" in ServiceType.PREMIUM_TRACKING.features
        assert ServiceType.OTHER.features == ["Basic features"]
        assert ServiceType.API_ACCESS.duration == "30 days"

    def test_service_features_are_copies(self):
        ServiceType.API_ACCESS.features.append("mutated")
        assert "mutated" not in ServiceType.API_ACCESS.features
