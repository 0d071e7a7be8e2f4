"""
Tests for the payment lifecycle manager.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from pitrace.errors import (
    ConcurrentModificationError,
    ConflictError,
    ExpiredError,
    InvalidTransitionError,
    NotFoundError,
    OperationTimeoutError,
    RetryExhaustedError,
    ValidationError,
)
from pitrace.fsm.states import PaymentStatus, ServiceType, WebhookStatus


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_pending(self, payment_service, owner, clock):
        payment = await payment_service.create(owner, Decimal("3.14"), memo="Lot 7 beans")

        assert payment.payment_id.startswith("PAY_")
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("3.14")
        assert payment.memo == "Lot 7 beans"
        assert payment.owner.uid == owner.uid
        assert payment.expires_at == clock.now() + payment_service.ttl
        assert payment.version == 0

        stored = await payment_service.get(payment.payment_id)
        assert stored.amount == Decimal("3.14")
        assert stored.owner == owner

    @pytest.mark.asyncio
    async def test_default_memo(self, payment_service, owner):
        payment = await payment_service.create(owner, 1)
        assert payment.memo == "PI TRACE Payment"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, "abc", "NaN"])
    async def test_invalid_amount_stores_nothing(self, payment_service, store, owner, amount):
        with pytest.raises(ValidationError):
            await payment_service.create(owner, amount)
        assert await store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.12345678", "1.000000001", "100000000000"])
    async def test_amount_outside_column_stores_nothing(self, payment_service, store, owner, amount):
        with pytest.raises(ValidationError):
            await payment_service.create(owner, amount)
        assert await store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.1234567", "1.50000000", "12345.1234567"])
    async def test_amount_stored_exactly(self, payment_service, owner, amount):
        payment = await payment_service.create(owner, amount)

        stored = await payment_service.get(payment.payment_id)
        assert stored.amount == Decimal(amount)
        assert stored.amount == payment.amount

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, payment_service, owner):
        with pytest.raises(ValidationError):
            await payment_service.create(owner, 1, currency="EUR")

    @pytest.mark.asyncio
    async def test_product_subject(self, payment_service, owner, product):
        payment = await payment_service.create(owner, 2, product_id=product.id)

        stored = await payment_service.get(payment.payment_id)
        assert stored.product.product_id == product.id
        assert stored.product.name == product.name
        assert stored.product.hash == product.hash
        assert stored.service is None

    @pytest.mark.asyncio
    async def test_unknown_product(self, payment_service, store, owner):
        with pytest.raises(ValidationError):
            await payment_service.create(owner, 2, product_id="PROD_MISSING")
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_service_subject(self, payment_service, owner):
        payment = await payment_service.create(owner, 2, service_type="api_access")

        stored = await payment_service.get(payment.payment_id)
        assert stored.service.service_type == ServiceType.API_ACCESS
        assert "Webhook support" in stored.service.features
        assert stored.product is None

    @pytest.mark.asyncio
    async def test_product_and_service_together(self, payment_service, owner, product):
        with pytest.raises(ValidationError):
            await payment_service.create(owner, 2, product_id=product.id, service_type="other")

    @pytest.mark.asyncio
    async def test_oversized_metadata(self, payment_service, owner):
        with pytest.raises(ValidationError):
            await payment_service.create(owner, 1, metadata={"blob": "x" * 5000})

    @pytest.mark.asyncio
    async def test_duplicate_identifier(self, payment_service, owner):
        await payment_service.create(owner, 1, identifier="wallet-abc")
        with pytest.raises(ConflictError):
            await payment_service.create(owner, 1, identifier="wallet-abc")

    @pytest.mark.asyncio
    async def test_concurrent_same_identifier(self, payment_service, store, owner):
        results = await asyncio.gather(
            payment_service.create(owner, 1, identifier="wallet-race"),
            payment_service.create(owner, 1, identifier="wallet-race"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert await store.count() == 1


class TestTransitions:

    @pytest.mark.asyncio
    async def test_happy_path(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)

        approved = await payment_service.transition(payment.payment_id, "approved")
        assert approved.status == PaymentStatus.APPROVED
        assert approved.approved_at is not None

        completed = await payment_service.transition(
            payment.payment_id,
            "completed",
            transaction_data={"txid": "tx_123", "rawTransaction": {"fee": 0.01}},
        )
        assert completed.status == PaymentStatus.COMPLETED
        assert completed.network_data.transaction_id == "tx_123"

        stored = await payment_service.get(payment.payment_id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_pending_to_completed_is_rejected(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        with pytest.raises(InvalidTransitionError):
            await payment_service.transition(payment.payment_id, "completed")

        stored = await payment_service.get(payment.payment_id)
        assert stored.status == PaymentStatus.PENDING
        assert stored.version == 0

    @pytest.mark.asyncio
    async def test_unknown_status(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        with pytest.raises(ValidationError):
            await payment_service.transition(payment.payment_id, "shipped")

    @pytest.mark.asyncio
    async def test_unknown_payment(self, payment_service):
        with pytest.raises(NotFoundError):
            await payment_service.transition("PAY_NOPE", "approved")

    @pytest.mark.asyncio
    async def test_lookup_by_identifier(self, payment_service, owner):
        payment = await payment_service.create(owner, 5, identifier="wallet-xyz")
        approved = await payment_service.transition(None, "approved", identifier="wallet-xyz")
        assert approved.payment_id == payment.payment_id

    @pytest.mark.asyncio
    async def test_identifier_in_payment_id_field(self, payment_service, owner):
        payment = await payment_service.create(owner, 5, identifier="wallet-xyz")
        approved = await payment_service.transition("wallet-xyz", "approved")
        assert approved.payment_id == payment.payment_id

    @pytest.mark.asyncio
    async def test_replay_is_a_no_op(self, payment_service, owner, clock):
        payment = await payment_service.create(owner, 5)
        first = await payment_service.transition(payment.payment_id, "approved")

        clock.advance(minutes=1)
        again = await payment_service.transition(payment.payment_id, "approved")

        assert again.version == first.version
        assert again.approved_at == first.approved_at

    @pytest.mark.asyncio
    async def test_concurrent_identical_updates(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)

        results = await asyncio.gather(*[
            payment_service.transition(payment.payment_id, "approved") for _ in range(5)
        ])

        assert all(r.status == PaymentStatus.APPROVED for r in results)
        stored = await payment_service.get(payment.payment_id)
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_racing_complete_and_cancel(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "approved")

        results = await asyncio.gather(
            payment_service.transition(payment.payment_id, "completed"),
            payment_service.transition(payment.payment_id, "cancelled"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(winners) == 1
        assert len(losers) == 1

        stored = await payment_service.get(payment.payment_id)
        assert stored.status == winners[0].status

    @pytest.mark.asyncio
    async def test_cas_exhaustion(self, payment_service, store, owner, monkeypatch):
        payment = await payment_service.create(owner, 5)
        always_lose = AsyncMock(return_value=None)
        monkeypatch.setattr(store, "compare_and_swap", always_lose)

        with pytest.raises(ConcurrentModificationError):
            await payment_service.transition(payment.payment_id, "approved")
        assert always_lose.await_count == payment_service.cas_max_attempts

    @pytest.mark.asyncio
    async def test_store_timeout(self, payment_service, store, owner, monkeypatch):
        payment = await payment_service.create(owner, 5)

        async def slow_get(payment_id):
            await asyncio.sleep(1)

        monkeypatch.setattr(store, "get", slow_get)
        with pytest.raises(OperationTimeoutError):
            await payment_service.get(payment.payment_id, timeout=0.05)


class TestFailAndRetry:

    @pytest.mark.asyncio
    async def test_fail_then_retry(self, payment_service, owner, clock):
        payment = await payment_service.create(owner, 5)

        failed = await payment_service.transition(
            payment.payment_id, "failed", transaction_data={"error": "User rejected"}
        )
        assert failed.status == PaymentStatus.FAILED
        assert failed.retry_count == 1
        assert failed.last_error.message == "User rejected"

        clock.advance(minutes=5)
        retried = await payment_service.retry(payment.payment_id)
        assert retried.status == PaymentStatus.PENDING
        assert retried.expires_at == clock.now() + payment_service.ttl
        assert retried.failed_at == failed.failed_at

    @pytest.mark.asyncio
    async def test_pending_status_update_retries(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "failed")

        retried = await payment_service.transition(payment.payment_id, "pending")
        assert retried.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_retries_run_out(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)

        for _ in range(payment_service.max_retries - 1):
            await payment_service.transition(payment.payment_id, "failed")
            await payment_service.retry(payment.payment_id)
        await payment_service.transition(payment.payment_id, "failed")

        with pytest.raises(RetryExhaustedError):
            await payment_service.retry(payment.payment_id)

    @pytest.mark.asyncio
    async def test_retry_after_deadline(self, payment_service, owner, clock):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "failed")

        clock.advance(minutes=16)
        with pytest.raises(ExpiredError):
            await payment_service.retry(payment.payment_id)

    @pytest.mark.asyncio
    async def test_retry_needs_failed(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        with pytest.raises(InvalidTransitionError):
            await payment_service.retry(payment.payment_id)


class TestRefund:

    @pytest.mark.asyncio
    async def test_refund_completed(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "approved")
        await payment_service.transition(payment.payment_id, "completed")

        refunded = await payment_service.refund(payment.payment_id, amount="2", reason="short shipment")
        assert refunded.status == PaymentStatus.REFUNDED
        assert refunded.refund.amount == Decimal("2")

        stored = await payment_service.get(payment.payment_id)
        assert stored.refund.reason == "short shipment"

    @pytest.mark.asyncio
    async def test_refund_requires_completed(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "approved")

        with pytest.raises(InvalidTransitionError):
            await payment_service.refund(payment.payment_id)

    @pytest.mark.asyncio
    async def test_refund_over_amount(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "approved")
        await payment_service.transition(payment.payment_id, "completed")

        with pytest.raises(ValidationError):
            await payment_service.refund(payment.payment_id, amount=6)

    @pytest.mark.asyncio
    async def test_refund_amount_precision(self, payment_service, owner):
        payment = await payment_service.create(owner, 5)
        await payment_service.transition(payment.payment_id, "approved")
        await payment_service.transition(payment.payment_id, "completed")

        with pytest.raises(ValidationError):
            await payment_service.refund(payment.payment_id, amount="0.12345678")
        assert (await payment_service.get(payment.payment_id)).status == PaymentStatus.COMPLETED


class TestExpiry:

    @pytest.mark.asyncio
    async def test_lazy_expiry_on_read(self, payment_service, owner, clock):
        payment = await payment_service.create(owner, 5)
        clock.advance(minutes=16)

        view = payment_service.to_public_view(await payment_service.get(payment.payment_id))
        assert view["status"] == "expired"
        assert view["is_expired"] is True

        with pytest.raises(ExpiredError):
            await payment_service.transition(payment.payment_id, "approved")

    @pytest.mark.asyncio
    async def test_reaper_persists_expiry(self, payment_service, store, owner, clock):
        stale = await payment_service.create(owner, 5)
        clock.advance(minutes=10)
        fresh = await payment_service.create(owner, 5)
        clock.advance(minutes=6)

        assert await payment_service.reap() == 1

        assert (await store.get(stale.payment_id)).status == PaymentStatus.EXPIRED
        assert (await store.get(fresh.payment_id)).status == PaymentStatus.PENDING

        with pytest.raises(InvalidTransitionError):
            await payment_service.transition(stale.payment_id, "completed")

    @pytest.mark.asyncio
    async def test_reaper_is_idempotent(self, payment_service, owner, clock):
        await payment_service.create(owner, 5)
        clock.advance(minutes=16)

        assert await payment_service.reap() == 1
        assert await payment_service.reap() == 0

    @pytest.mark.asyncio
    async def test_reaper_loses_to_approval(self, payment_service, store, owner, clock):
        payment = await payment_service.create(owner, 5)
        # Reaper read the payment while it was pending...
        stale_snapshot = await store.get(payment.payment_id)
        # ...and the approval lands before its write
        await payment_service.transition(payment.payment_id, "approved")
        clock.advance(minutes=16)

        assert await payment_service._expire_one(stale_snapshot) is False
        assert (await store.get(payment.payment_id)).status == PaymentStatus.APPROVED


class TestViewsAndListing:

    @pytest.mark.asyncio
    async def test_public_view(self, payment_service, owner, clock):
        payment = await payment_service.create(owner, Decimal("10.50"))
        payment = await payment_service.transition(payment.payment_id, "approved")
        payment = await payment_service.transition(
            payment.payment_id,
            "completed",
            transaction_data={"txid": "tx_9", "rawTransaction": {"secret": True}},
        )
        clock.advance(minutes=3)

        view = payment_service.to_public_view(await payment_service.get(payment.payment_id))
        assert view["status"] == "completed"
        assert view["formatted_amount"] == "10.5 PI"
        assert view["age_in_minutes"] == 3
        assert view["status_description"] == "Payment completed successfully"
        assert view["network_data"]["transaction_id"] == "tx_9"
        assert "raw_transaction" not in view["network_data"]
        assert "version" not in view

    @pytest.mark.asyncio
    async def test_list_for_owner(self, payment_service, owner, other_owner, clock):
        created = []
        for _ in range(3):
            created.append(await payment_service.create(owner, 1))
            clock.advance(seconds=1)
        await payment_service.create(other_owner, 1)

        payments, pagination = await payment_service.list_for_owner(owner.uid, page=1, limit=2)
        assert [p.payment_id for p in payments] == [created[2].payment_id, created[1].payment_id]
        assert pagination == {"page": 1, "page_size": 2, "total": 3, "total_pages": 2}

        payments, _ = await payment_service.list_for_owner(owner.uid, page=2, limit=2)
        assert [p.payment_id for p in payments] == [created[0].payment_id]

    @pytest.mark.asyncio
    async def test_list_by_status(self, payment_service, owner):
        first = await payment_service.create(owner, 1)
        await payment_service.create(owner, 1)
        await payment_service.transition(first.payment_id, "cancelled")

        payments, pagination = await payment_service.list_for_owner(owner.uid, status="cancelled")
        assert [p.payment_id for p in payments] == [first.payment_id]
        assert pagination["total"] == 1

    @pytest.mark.asyncio
    async def test_webhook_attempts(self, payment_service, owner):
        payment = await payment_service.create(owner, 1)

        updated = await payment_service.record_webhook_attempt(payment.payment_id, delivered=False)
        assert updated.webhook_status == WebhookStatus.RETRYING
        updated = await payment_service.record_webhook_attempt(payment.payment_id, delivered=True)
        assert updated.webhook_status == WebhookStatus.SENT
        assert updated.webhook_attempts == 2
