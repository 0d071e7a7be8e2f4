"""
Auth Service - signed, time-bounded credentials (JWT).
"""

import logging
from datetime import timedelta
from typing import Optional

import jwt

from pitrace.clock import Clock, SystemClock
from pitrace.config import Settings
from pitrace.errors import InvalidCredentialError, UnauthenticatedError
from pitrace.fsm.states import LoginType
from pitrace.schemas.auth import Identity

logger = logging.getLogger(__name__)


class TokenService:
    """Issues and verifies bearer credentials."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "pi-trace",
        expires_days: int = 7,
        clock: Optional[Clock] = None,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.expires_days = expires_days
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "TokenService":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            expires_days=settings.jwt_expires_days,
            clock=clock,
        )

    @property
    def expires_in(self) -> str:
        return f"{self.expires_days}d"

    def issue(
        self,
        uid: str,
        username: str,
        login_type: LoginType,
        wallet_address: Optional[str] = None,
    ) -> str:
        now = self.clock.now()
        payload = {
            "uid": uid,
            "username": username,
            "loginType": LoginType(login_type).value,
            "walletAddress": wallet_address,
            "iss": self.issuer,
            "sub": uid,
            "iat": now,
            "exp": now + timedelta(days=self.expires_days),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> Identity:
        """
        Decode a bearer token into the caller identity.

        Raises UnauthenticatedError when no token is given and
        InvalidCredentialError for anything malformed, expired or forged.
        """
        if not token:
            raise UnauthenticatedError("Authentication required")

        try:
            # Lifetime is checked against the injected clock below, not the wall clock
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    "require": ["exp", "iss", "sub"],
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except jwt.PyJWTError as e:
            logger.warning(f"Token verification failed: {e}")
            raise InvalidCredentialError("Invalid authentication token")

        try:
            expires_at = float(claims["exp"])
        except (TypeError, ValueError):
            raise InvalidCredentialError("Invalid token payload")
        if self.clock.timestamp() >= expires_at:
            raise InvalidCredentialError("Authentication token expired")

        uid = claims.get("uid")
        username = claims.get("username")
        if not uid or not username or claims.get("sub") != uid:
            raise InvalidCredentialError("Invalid token payload")

        try:
            login_type = LoginType(claims.get("loginType", LoginType.GUEST.value))
        except ValueError:
            raise InvalidCredentialError("Invalid token payload")

        return Identity(
            uid=uid,
            display_name=username,
            wallet_address=claims.get("walletAddress"),
            login_type=login_type,
        )
