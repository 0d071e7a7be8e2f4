"""
Payment Store - keyed persistence for payment snapshots.

Each method runs in its own short transaction. Nothing here reads then
writes inside one transaction: mutations are a single INSERT or a single
conditional UPDATE guarded by the version column, so the lifecycle layer
can rely on "write only if nobody else wrote since I read".
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pitrace.clock import Clock, SystemClock
from pitrace.errors import StoreError
from pitrace.fsm.states import PaymentStatus
from pitrace.models.payment import PaymentRecord
from pitrace.schemas.payment import Payment

logger = logging.getLogger(__name__)

# Fields that never change after the first insert
_IMMUTABLE = ("payment_id", "identifier", "owner_uid", "owner", "created_at")


def _dump(model) -> Optional[Dict[str, Any]]:
    return model.model_dump(mode="json") if model is not None else None


class PaymentStore:
    """SQLAlchemy-backed store for payments."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
    ):
        self.session_maker = session_maker
        self.clock = clock or SystemClock()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Payment store failure: {e}", exc_info=True)
            raise StoreError("Payment store unavailable") from e

    # --- mapping ---

    @staticmethod
    def _to_domain(record: PaymentRecord) -> Payment:
        return Payment(
            payment_id=record.payment_id,
            identifier=record.identifier,
            owner=record.owner,
            amount=record.amount,
            currency=record.currency,
            memo=record.memo or "",
            metadata=record.extra_metadata or {},
            subject=record.subject,
            status=record.status,
            network_data=record.network_data,
            expires_at=record.expires_at,
            approved_at=record.approved_at,
            completed_at=record.completed_at,
            cancelled_at=record.cancelled_at,
            failed_at=record.failed_at,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            device_info=record.device_info or {},
            callback_url=record.callback_url,
            webhook_url=record.webhook_url,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            last_error=record.last_error,
            webhook_status=record.webhook_status,
            webhook_attempts=record.webhook_attempts,
            refund=record.refund,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _to_values(payment: Payment) -> Dict[str, Any]:
        return {
            "payment_id": payment.payment_id,
            "identifier": payment.identifier,
            "owner_uid": payment.owner.uid,
            "owner": _dump(payment.owner),
            "amount": payment.amount,
            "currency": payment.currency.value,
            "memo": payment.memo,
            "extra_metadata": dict(payment.metadata),
            "subject": _dump(payment.subject),
            "status": payment.status.value,
            "network_data": _dump(payment.network_data),
            "expires_at": payment.expires_at,
            "approved_at": payment.approved_at,
            "completed_at": payment.completed_at,
            "cancelled_at": payment.cancelled_at,
            "failed_at": payment.failed_at,
            "ip_address": payment.ip_address,
            "user_agent": payment.user_agent,
            "device_info": dict(payment.device_info),
            "callback_url": payment.callback_url,
            "webhook_url": payment.webhook_url,
            "retry_count": payment.retry_count,
            "max_retries": payment.max_retries,
            "last_error": _dump(payment.last_error),
            "webhook_status": payment.webhook_status.value,
            "webhook_attempts": payment.webhook_attempts,
            "refund": _dump(payment.refund),
            "created_at": payment.created_at,
        }

    # --- reads ---

    async def get(self, payment_id: str) -> Optional[Payment]:
        async with self._transaction() as session:
            record = await session.get(PaymentRecord, payment_id)
            return self._to_domain(record) if record else None

    async def get_by_identifier(self, identifier: str) -> Optional[Payment]:
        async with self._transaction() as session:
            result = await session.execute(
                select(PaymentRecord).where(PaymentRecord.identifier == identifier)
            )
            record = result.scalar_one_or_none()
            return self._to_domain(record) if record else None

    async def find(
        self,
        payment_id: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> Optional[Payment]:
        """Look up by payment_id, then by identifier. First match wins."""
        if payment_id:
            payment = await self.get(payment_id)
            if payment:
                return payment
        if identifier:
            return await self.get_by_identifier(identifier)
        return None

    async def find_expired_pending(self, now, limit: int = 500) -> List[Payment]:
        """Pending payments whose deadline passed before `now`, oldest first."""
        async with self._transaction() as session:
            result = await session.execute(
                select(PaymentRecord)
                .where(PaymentRecord.status == PaymentStatus.PENDING.value)
                .where(PaymentRecord.expires_at < now)
                .order_by(PaymentRecord.expires_at)
                .limit(limit)
            )
            return [self._to_domain(r) for r in result.scalars().all()]

    async def list_for_owner(
        self,
        owner_uid: str,
        status: Optional[PaymentStatus] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Payment]:
        stmt = select(PaymentRecord).where(PaymentRecord.owner_uid == owner_uid)
        if status:
            stmt = stmt.where(PaymentRecord.status == status.value)
        stmt = (
            stmt.order_by(PaymentRecord.created_at.desc(), PaymentRecord.payment_id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [self._to_domain(r) for r in result.scalars().all()]

    async def list_recent_completed(self, limit: int = 5) -> List[Payment]:
        async with self._transaction() as session:
            result = await session.execute(
                select(PaymentRecord)
                .where(PaymentRecord.status == PaymentStatus.COMPLETED.value)
                .order_by(PaymentRecord.completed_at.desc())
                .limit(limit)
            )
            return [self._to_domain(r) for r in result.scalars().all()]

    async def count(
        self,
        owner_uid: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
    ) -> int:
        stmt = select(func.count()).select_from(PaymentRecord)
        if owner_uid:
            stmt = stmt.where(PaymentRecord.owner_uid == owner_uid)
        if status:
            stmt = stmt.where(PaymentRecord.status == status.value)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.scalar() or 0

    async def aggregate_by_status(
        self,
        owner_uid: Optional[str] = None,
    ) -> List[Tuple[str, int, Decimal]]:
        """(status, count, summed amount) rows from one grouped query."""
        stmt = select(
            PaymentRecord.status,
            func.count(PaymentRecord.payment_id),
            func.sum(PaymentRecord.amount),
        )
        if owner_uid:
            stmt = stmt.where(PaymentRecord.owner_uid == owner_uid)
        stmt = stmt.group_by(PaymentRecord.status)

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [
                (status, count, Decimal(str(total or 0)))
                for status, count, total in result.all()
            ]

    # --- writes ---

    async def insert_if_absent(self, payment: Payment) -> Optional[Payment]:
        """
        Insert a new payment.

        Returns the stored snapshot, or None when the payment_id or
        identifier is already taken.
        """
        now = self.clock.now()
        values = self._to_values(payment)
        values.update(version=0, created_at=now, updated_at=now)

        try:
            async with self._transaction() as session:
                session.add(PaymentRecord(**values))
        except IntegrityError:
            logger.info(f"Insert rejected, key already present: {payment.payment_id}")
            return None

        return payment.model_copy(update={"version": 0, "created_at": now, "updated_at": now})

    async def compare_and_swap(self, payment: Payment, expected_version: int) -> Optional[Payment]:
        """
        Write `payment` only if the stored version still equals `expected_version`.

        Returns the stored snapshot (version bumped) or None if another
        writer got there first.
        """
        now = self.clock.now()
        values = self._to_values(payment)
        for key in _IMMUTABLE:
            values.pop(key)
        values.update(version=expected_version + 1, updated_at=now)

        async with self._transaction() as session:
            result = await session.execute(
                update(PaymentRecord)
                .where(PaymentRecord.payment_id == payment.payment_id)
                .where(PaymentRecord.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

        return payment.model_copy(update={"version": expected_version + 1, "updated_at": now})
