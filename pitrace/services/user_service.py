"""
User Service - login upsert and profile lookup.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pitrace.clock import Clock, SystemClock
from pitrace.fsm.states import LoginType
from pitrace.models.user import User

logger = logging.getLogger(__name__)


class UserService:
    """Service for user records."""

    def __init__(self, db: AsyncSession, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    async def get_user_by_uid(self, uid: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.uid == uid))
        return result.scalar_one_or_none()

    async def record_login(
        self,
        uid: str,
        username: str,
        login_type: LoginType,
        wallet_address: Optional[str] = None,
    ) -> User:
        """
        Find or create the user and stamp last_login.

        Wallet addresses are only kept for Pi logins; a new address replaces
        the stored one, a missing one leaves it alone.
        """
        now = self.clock.now()
        wallet = wallet_address if login_type == LoginType.PI else None

        user = await self.get_user_by_uid(uid)
        if user:
            user.last_login = now
            user.updated_at = now
            if wallet:
                user.wallet_address = wallet
            await self.db.flush()
            return user

        user = User(
            uid=uid,
            username=username,
            wallet_address=wallet,
            login_type=login_type.value,
            last_login=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            # Concurrent first login for the same uid
            await self.db.rollback()
            user = await self.get_user_by_uid(uid)
            if user is None:
                raise
            return user

        logger.info(f"Created new user: {uid} ({login_type.value})")
        return user
