"""User model - wallet users and guests."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pitrace.database import Base, UTCDateTime
from pitrace.fsm.states import LoginType


class User(Base):
    """
    One row per wallet/guest uid.
    Payments snapshot the fields they need, so edits here don't rewrite history.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    uid: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        index=True,
    )

    username: Mapped[str] = mapped_column(String(255), nullable=False)

    # Only recorded for Pi logins
    wallet_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    login_type: Mapped[str] = mapped_column(
        String(10),
        default=LoginType.GUEST.value,
        nullable=False,
    )

    last_login: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.uid}>"

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "username": self.username,
            "wallet_address": self.wallet_address,
            "login_type": self.login_type,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
