from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from pitrace.clock import Clock
from pitrace.services.admission import AdmissionGate
from pitrace.services.payment_service import PaymentService
from pitrace.services.stats_service import StatsService

bearer_scheme = HTTPBearer(auto_error=False)


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with request.app.state.session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_stats_service(request: Request) -> StatsService:
    return request.app.state.stats_service


def get_admission(request: Request) -> AdmissionGate:
    return request.app.state.admission


def get_clock(request: Request) -> Clock:
    return request.app.state.clock
