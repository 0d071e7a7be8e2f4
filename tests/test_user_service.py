"""
Tests for UserService.
"""

import pytest
from sqlalchemy import select

from pitrace.fsm.states import LoginType
from pitrace.models.user import User
from pitrace.services.user_service import UserService


@pytest.mark.asyncio
async def test_record_login_new_user(db, clock):
    """Test creating a new user."""
    service = UserService(db, clock)

    user = await service.record_login("pi_1", "alice", LoginType.PI, wallet_address="GALICE")

    assert user.id is not None
    assert user.wallet_address == "GALICE"
    assert user.login_type == "pi"
    assert user.last_login == clock.now()

    # Verify in DB
    result = await db.execute(select(User).where(User.uid == "pi_1"))
    assert result.scalar_one().id == user.id


@pytest.mark.asyncio
async def test_record_login_existing_user(db, clock):
    """Test logging in again updates last_login only."""
    service = UserService(db, clock)
    created = await service.record_login("pi_1", "alice", LoginType.PI, wallet_address="GALICE")
    created_id = created.id

    clock.advance(hours=1)
    again = await service.record_login("pi_1", "alice", LoginType.PI)

    assert again.id == created_id
    assert again.wallet_address == "GALICE"
    assert again.last_login == clock.now()


@pytest.mark.asyncio
async def test_guest_wallet_is_ignored(db, clock):
    user = await UserService(db, clock).record_login("guest_1", "visitor", LoginType.GUEST, wallet_address="GX")
    assert user.wallet_address is None


@pytest.mark.asyncio
async def test_get_user_by_uid_missing(db):
    assert await UserService(db).get_user_by_uid("nobody") is None
