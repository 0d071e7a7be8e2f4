"""
Payment Service - the payment lifecycle manager.

Owns creation and every status change of a payment. All mutations follow
the same discipline: read a snapshot, compute the next snapshot with the
pure rules in pitrace.fsm.machine, then write it with a compare-and-swap
on the snapshot's version. A lost race re-reads and recomputes, up to
cas_max_attempts times.
"""

import asyncio
import logging
import math
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from pitrace.clock import Clock, SystemClock
from pitrace.config import Settings, settings as default_settings
from pitrace.errors import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from pitrace.fsm.machine import (
    check_retry,
    check_transition,
    is_past_expiry,
    new_payment_id,
    next_state,
    refund_state,
    webhook_state,
)
from pitrace.fsm.states import Currency, PaymentStatus, ServiceType
from pitrace.models.payment import AMOUNT_PRECISION, AMOUNT_SCALE
from pitrace.schemas.payment import Owner, Payment, ProductRef, ServiceRef, bag_size
from pitrace.schemas.views import to_public_view
from pitrace.services.catalog_service import CatalogService
from pitrace.services.payment_store import PaymentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# compute(snapshot, now) -> next snapshot, or None for "already there"
Compute = Callable[[Payment, Any], Optional[Payment]]


class PaymentService:
    """Creates payments and drives them through their state machine."""

    def __init__(
        self,
        store: PaymentStore,
        catalog: Optional[CatalogService] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or default_settings
        self.store = store
        self.catalog = catalog
        self.clock = clock or SystemClock()
        self.ttl = timedelta(minutes=settings.payment_ttl_minutes)
        self.max_retries = settings.payment_max_retries
        self.cas_max_attempts = settings.cas_max_attempts
        self.timeout = settings.store_timeout_seconds
        self.metadata_max_bytes = settings.metadata_max_bytes
        self.webhook_max_attempts = settings.webhook_max_attempts
        self.default_memo = settings.default_memo
        self.reap_batch_size = settings.reaper_batch_size

    # ------------------------------------------------------------------
    # Store access with deadlines
    # ------------------------------------------------------------------

    def _deadline(self, timeout: Optional[float]) -> float:
        return asyncio.get_running_loop().time() + (self.timeout if timeout is None else timeout)

    async def _io(self, awaitable: Awaitable[T], deadline: float) -> T:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationTimeoutError("Deadline passed before the store was called")
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError:
            raise OperationTimeoutError("Payment store did not answer in time")

    async def _mutate(self, payment: Payment, compute: Compute, deadline: float) -> Payment:
        """Apply `compute` with compare-and-swap, re-reading on conflicts."""
        payment_id = payment.payment_id

        for attempt in range(1, self.cas_max_attempts + 1):
            updated = compute(payment, self.clock.now())
            if updated is None:
                return payment

            stored = await self._io(
                self.store.compare_and_swap(updated, payment.version), deadline
            )
            if stored is not None:
                if stored.status != payment.status:
                    logger.info(
                        f"Payment {payment_id} status: {payment.status.value} -> {stored.status.value}",
                        extra={"payment_id": payment_id, "status": stored.status.value},
                    )
                return stored

            logger.debug(f"Lost update race on payment {payment_id} (attempt {attempt})")
            payment = await self._io(self.store.get(payment_id), deadline)
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found")

        logger.warning(f"Giving up on payment {payment_id} after {self.cas_max_attempts} conflicting writes")
        raise ConcurrentModificationError(
            f"Payment {payment_id} was modified concurrently, please retry"
        )

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_amount(amount: Any, message: str = "Valid amount is required") -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(message)
        if not value.is_finite() or value <= 0:
            raise ValidationError(message)
        # Must fit the stored column exactly
        if value.normalize().as_tuple().exponent < -AMOUNT_SCALE:
            raise ValidationError(f"Amount supports at most {AMOUNT_SCALE} decimal places")
        if value >= Decimal(10) ** (AMOUNT_PRECISION - AMOUNT_SCALE):
            raise ValidationError("Amount is too large")
        return value

    def _check_bag(self, name: str, bag: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        bag = bag or {}
        if not isinstance(bag, dict):
            raise ValidationError(f"{name} must be an object")
        if bag_size(bag) > self.metadata_max_bytes:
            raise ValidationError(f"{name} exceeds {self.metadata_max_bytes} bytes")
        return bag

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(
        self,
        owner: Owner,
        amount: Any,
        currency: Any = Currency.PI,
        memo: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        product_id: Optional[str] = None,
        service_type: Optional[Any] = None,
        identifier: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        callback_url: Optional[str] = None,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Payment:
        """
        Create a pending payment.

        Raises ValidationError for a non-positive amount, an unknown product
        or an oversized metadata bag, and ConflictError when the wallet
        identifier is already used by another payment.
        """
        deadline = self._deadline(timeout)

        value = self._parse_amount(amount)
        try:
            currency = Currency(currency)
        except ValueError:
            raise ValidationError(f"Unsupported currency: {currency}")
        metadata = self._check_bag("metadata", metadata)
        device_info = self._check_bag("device_info", device_info)

        if product_id and service_type:
            raise ValidationError("A payment is for a product or a service, not both")

        subject = None
        if product_id:
            if self.catalog is None:
                raise ValidationError("Product payments are not available")
            product = await self._io(self.catalog.get_product(product_id), deadline)
            if product is None:
                raise ValidationError(f"Product not found: {product_id}")
            subject = ProductRef(
                product_id=product.id,
                name=product.name,
                hash=product.hash,
                quantity=1,
            )
        elif service_type:
            try:
                subject = ServiceRef.for_type(ServiceType(service_type))
            except ValueError:
                raise ValidationError(f"Unknown service type: {service_type}")

        if identifier:
            existing = await self._io(self.store.get_by_identifier(identifier), deadline)
            if existing:
                raise ConflictError(f"Payment identifier already in use: {identifier}")

        now = self.clock.now()
        payment = Payment(
            payment_id=new_payment_id(now),
            identifier=identifier or None,
            owner=owner,
            amount=value,
            currency=currency,
            memo=memo or self.default_memo,
            metadata=metadata,
            subject=subject,
            status=PaymentStatus.PENDING,
            expires_at=now + self.ttl,
            ip_address=ip_address,
            user_agent=user_agent,
            device_info=device_info,
            callback_url=callback_url,
            webhook_url=webhook_url,
            max_retries=self.max_retries,
        )

        stored = await self._io(self.store.insert_if_absent(payment), deadline)
        if stored is None:
            # Lost an insert race on the identifier (or, rarely, the id)
            raise ConflictError(
                f"Payment identifier already in use: {identifier}"
                if identifier else "Payment could not be stored, please retry"
            )

        logger.info(
            f"Created payment {stored.payment_id} for {owner.uid}: {value} {currency.value}",
            extra={"payment_id": stored.payment_id, "status": stored.status.value},
        )
        return stored

    async def get(self, payment_id: str, timeout: Optional[float] = None) -> Payment:
        deadline = self._deadline(timeout)
        payment = await self._io(self.store.get(payment_id), deadline)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    async def transition(
        self,
        lookup_key: Optional[str],
        target: Any,
        transaction_data: Optional[Dict[str, Any]] = None,
        identifier: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Payment:
        """
        Move a payment to `target`.

        The payment is found by payment_id, falling back to the wallet
        identifier. Re-sending the current status is a no-op so redelivered
        callbacks are harmless.
        """
        try:
            target = PaymentStatus(target)
        except ValueError:
            raise ValidationError(f"Invalid status update: {target}")

        deadline = self._deadline(timeout)
        payment = await self._io(
            self.store.find(payment_id=lookup_key, identifier=identifier or lookup_key),
            deadline,
        )
        if payment is None:
            raise NotFoundError("Payment not found")

        if target == PaymentStatus.PENDING and payment.status != PaymentStatus.PENDING:
            return await self.retry(payment.payment_id, timeout=timeout)
        if target == PaymentStatus.REFUNDED and payment.status != PaymentStatus.REFUNDED:
            return await self.refund(payment.payment_id, timeout=timeout)

        def compute(current: Payment, now) -> Optional[Payment]:
            if current.status == target:
                return None
            check_transition(current, target, now)
            return next_state(current, target, now, self.ttl, transaction_data)

        return await self._mutate(payment, compute, deadline)

    async def retry(self, payment_id: str, timeout: Optional[float] = None) -> Payment:
        """Put a failed payment back to pending with a fresh deadline."""
        deadline = self._deadline(timeout)
        payment = await self._io(self.store.get(payment_id), deadline)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        def compute(current: Payment, now) -> Payment:
            check_retry(current, now)
            return next_state(current, PaymentStatus.PENDING, now, self.ttl)

        return await self._mutate(payment, compute, deadline)

    async def refund(
        self,
        payment_id: str,
        amount: Optional[Any] = None,
        reason: str = "",
        timeout: Optional[float] = None,
    ) -> Payment:
        """Refund a completed payment, in full unless `amount` is given."""
        if amount is not None:
            try:
                amount = Decimal(str(amount))
            except (InvalidOperation, ValueError):
                raise ValidationError("Refund amount must be a number")
            if amount.is_finite() and amount.normalize().as_tuple().exponent < -AMOUNT_SCALE:
                raise ValidationError(f"Refund amount supports at most {AMOUNT_SCALE} decimal places")

        deadline = self._deadline(timeout)
        payment = await self._io(self.store.get(payment_id), deadline)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        def compute(current: Payment, now) -> Payment:
            return refund_state(current, now, amount, reason)

        return await self._mutate(payment, compute, deadline)

    async def record_webhook_attempt(
        self,
        payment_id: str,
        delivered: bool,
        timeout: Optional[float] = None,
    ) -> Payment:
        """Count a merchant callback delivery attempt."""
        deadline = self._deadline(timeout)
        payment = await self._io(self.store.get(payment_id), deadline)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        def compute(current: Payment, now) -> Payment:
            return webhook_state(current, delivered, self.webhook_max_attempts)

        stored = await self._mutate(payment, compute, deadline)
        logger.info(
            f"Webhook for payment {payment_id}: {stored.webhook_status.value} "
            f"(attempt {stored.webhook_attempts})"
        )
        return stored

    async def reap(self, limit: Optional[int] = None, timeout: Optional[float] = None) -> int:
        """
        Persist `expired` for pending payments past their deadline.

        Safe to run alongside itself and client transitions: every write is
        conditional, and a payment that moved on in the meantime is skipped.
        """
        deadline = self._deadline(timeout)
        candidates = await self._io(
            self.store.find_expired_pending(self.clock.now(), limit or self.reap_batch_size),
            deadline,
        )

        expired = 0
        for payment in candidates:
            if await self._expire_one(payment, timeout=timeout):
                expired += 1

        if candidates:
            logger.info(f"Reaper expired {expired} of {len(candidates)} candidate payments")
        return expired

    async def _expire_one(self, payment: Payment, timeout: Optional[float] = None) -> bool:
        deadline = self._deadline(timeout)

        for _ in range(self.cas_max_attempts):
            now = self.clock.now()
            # Re-check right before writing: a racing approval wins
            if payment.status != PaymentStatus.PENDING or not is_past_expiry(payment, now):
                return False

            updated = next_state(payment, PaymentStatus.EXPIRED, now, self.ttl)
            stored = await self._io(self.store.compare_and_swap(updated, payment.version), deadline)
            if stored is not None:
                logger.info(
                    f"Payment {payment.payment_id} status: pending -> expired",
                    extra={"payment_id": payment.payment_id, "status": "expired"},
                )
                return True

            payment = await self._io(self.store.get(payment.payment_id), deadline)
            if payment is None:
                return False

        logger.warning(f"Reaper skipped payment {payment.payment_id}: kept losing update races")
        return False

    async def list_for_owner(
        self,
        owner_uid: str,
        status: Optional[Any] = None,
        page: int = 1,
        limit: int = 10,
        timeout: Optional[float] = None,
    ) -> Tuple[List[Payment], Dict[str, int]]:
        """One page of a user's payments, newest first, plus pagination info."""
        if status:
            try:
                status = PaymentStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status}")
        page = max(page, 1)
        limit = max(min(limit, 100), 1)

        deadline = self._deadline(timeout)
        payments = await self._io(
            self.store.list_for_owner(owner_uid, status, limit=limit, offset=(page - 1) * limit),
            deadline,
        )
        total = await self._io(self.store.count(owner_uid=owner_uid, status=status), deadline)

        return payments, {
            "page": page,
            "page_size": limit,
            "total": total,
            "total_pages": math.ceil(total / limit),
        }

    def to_public_view(self, payment: Payment) -> Dict[str, Any]:
        return to_public_view(payment, self.clock.now())
