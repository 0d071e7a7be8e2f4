"""Services package."""

from pitrace.services.admission import AdmissionGate, EndpointClass, build_rate_limiters
from pitrace.services.auth_service import TokenService
from pitrace.services.catalog_service import CatalogService
from pitrace.services.payment_service import PaymentService
from pitrace.services.payment_store import PaymentStore
from pitrace.services.rate_limiter import RateLimiter, RedisRateLimiter, SlidingWindowRateLimiter
from pitrace.services.stats_service import StatsService
from pitrace.services.user_service import UserService

__all__ = [
    "AdmissionGate",
    "EndpointClass",
    "build_rate_limiters",
    "TokenService",
    "CatalogService",
    "PaymentService",
    "PaymentStore",
    "RateLimiter",
    "RedisRateLimiter",
    "SlidingWindowRateLimiter",
    "StatsService",
    "UserService",
]
