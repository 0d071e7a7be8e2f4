"""
Admission Gate - credential check and rate limiting in front of every
payment-mutating operation, plus ownership authorization.
"""

import hashlib
import hmac
import logging
from enum import Enum
from typing import Dict, Optional

from pitrace.clock import Clock
from pitrace.config import Settings
from pitrace.errors import ForbiddenError, InvalidCredentialError
from pitrace.redis import RedisClient
from pitrace.schemas.auth import Identity
from pitrace.schemas.payment import Payment
from pitrace.services.auth_service import TokenService
from pitrace.services.rate_limiter import (
    RateLimiter,
    RedisRateLimiter,
    SlidingWindowRateLimiter,
)

logger = logging.getLogger(__name__)


class EndpointClass(str, Enum):
    """Each class has its own rate budget."""

    AUTH = "auth"
    API = "api"


def build_rate_limiters(settings: Settings, clock: Optional[Clock] = None) -> Dict[EndpointClass, RateLimiter]:
    """One limiter per endpoint class, on the configured backend."""
    budgets = {
        EndpointClass.AUTH: (settings.auth_rate_limit_max, settings.auth_rate_limit_window_seconds),
        EndpointClass.API: (settings.api_rate_limit_max, settings.api_rate_limit_window_seconds),
    }

    if settings.rate_limit_backend == "redis":
        redis = RedisClient.get_client(settings.redis_url)
        return {
            endpoint: RedisRateLimiter(
                redis,
                max_requests,
                window,
                clock=clock,
                prefix=f"pitrace:ratelimit:{endpoint.value}",
            )
            for endpoint, (max_requests, window) in budgets.items()
        }

    return {
        endpoint: SlidingWindowRateLimiter(
            max_requests,
            window,
            clock=clock,
            sweep_interval=settings.rate_limit_sweep_seconds,
        )
        for endpoint, (max_requests, window) in budgets.items()
    }


class AdmissionGate:
    """Composes credential verification with per-identity rate limits."""

    def __init__(
        self,
        tokens: TokenService,
        limiters: Dict[EndpointClass, RateLimiter],
        webhook_secret: str = "",
    ):
        self.tokens = tokens
        self.limiters = limiters
        self.webhook_secret = webhook_secret

    def authenticate(self, token: Optional[str]) -> Identity:
        return self.tokens.verify(token)

    async def throttle(self, endpoint: EndpointClass, key: str) -> None:
        await self.limiters[endpoint].check(key)

    async def admit(
        self,
        endpoint: EndpointClass,
        token: Optional[str] = None,
        client_ip: Optional[str] = None,
        require_auth: bool = True,
    ) -> Optional[Identity]:
        """
        Admit a request or raise.

        Authenticated calls are counted per uid, anonymous ones per client IP.
        """
        identity = self.authenticate(token) if require_auth else None
        key = f"uid:{identity.uid}" if identity else f"ip:{client_ip or 'unknown'}"
        await self.throttle(endpoint, key)
        return identity

    @staticmethod
    def authorize(identity: Identity, payment: Payment) -> None:
        """Only the paying user may act on a payment."""
        if identity.uid != payment.owner.uid:
            logger.warning(
                f"User {identity.uid} denied access to payment {payment.payment_id}",
                extra={"payment_id": payment.payment_id, "identity": identity.uid},
            )
            raise ForbiddenError("You do not have access to this payment")

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> None:
        """
        HMAC SHA256 check for wallet callbacks.
        Without a configured secret the status endpoint stays open.
        """
        if not self.webhook_secret:
            return

        expected = hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        if not signature or not hmac.compare_digest(expected, signature):
            logger.error("Invalid payment webhook signature")
            raise InvalidCredentialError("Invalid webhook signature")
