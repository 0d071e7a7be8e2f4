"""
Auth API - Pi wallet or guest login, returns a bearer token.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pitrace.api.deps import client_ip, get_admission, get_clock, get_db
from pitrace.clock import Clock
from pitrace.fsm.states import LoginType
from pitrace.schemas.requests import AuthRequest
from pitrace.services.admission import AdmissionGate, EndpointClass
from pitrace.services.user_service import UserService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/auth")
async def login(
    body: AuthRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    gate: AdmissionGate = Depends(get_admission),
    clock: Clock = Depends(get_clock),
):
    """Upsert the user and issue a token. Throttled per client IP."""
    await gate.admit(EndpointClass.AUTH, client_ip=client_ip(request), require_auth=False)

    user = await UserService(db, clock).record_login(
        uid=body.uid,
        username=body.username,
        login_type=body.login_type,
        wallet_address=body.wallet_address,
    )
    token = gate.tokens.issue(
        uid=user.uid,
        username=user.username,
        login_type=LoginType(user.login_type),
        wallet_address=user.wallet_address,
    )

    logger.info(f"User {user.uid} logged in ({user.login_type})", extra={"identity": user.uid})
    return {
        "success": True,
        "data": {
            "user": user.to_dict(),
            "token": token,
            "expires_in": gate.tokens.expires_in,
        },
        "message": "Authentication successful",
    }
