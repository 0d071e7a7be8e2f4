"""
Payments API.

POST creates (authenticated), GET lists a user's payments or public stats,
PUT applies wallet status callbacks. Retry and refund are owner-only.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from pitrace.api.deps import (
    bearer_token,
    client_ip,
    get_admission,
    get_payment_service,
    get_stats_service,
)
from pitrace.errors import ValidationError
from pitrace.schemas.requests import CreatePaymentRequest, RefundRequest, UpdatePaymentRequest
from pitrace.services.admission import AdmissionGate, EndpointClass
from pitrace.services.payment_service import PaymentService
from pitrace.services.stats_service import StatsService

router = APIRouter()
logger = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "X-PiTrace-Signature"


@router.options("/payments")
@router.options("/payments/{path:path}")
async def payments_preflight() -> Response:
    """CORS preflight, never admission checked."""
    return Response(status_code=200)


@router.post("/payments", status_code=201)
async def create_payment(
    body: CreatePaymentRequest,
    request: Request,
    token: Optional[str] = Depends(bearer_token),
    gate: AdmissionGate = Depends(get_admission),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a pending payment for the authenticated user."""
    ip = client_ip(request)
    identity = await gate.admit(EndpointClass.API, token=token, client_ip=ip)

    payment = await service.create(
        owner=identity.as_owner(),
        amount=body.amount,
        currency=body.currency,
        memo=body.memo,
        metadata=body.metadata,
        product_id=body.product_id,
        service_type=body.service_type,
        identifier=body.identifier,
        device_info=body.device_info,
        ip_address=ip,
        user_agent=request.headers.get("user-agent"),
        callback_url=body.callback_url,
        webhook_url=body.webhook_url,
    )

    return {
        "success": True,
        "data": service.to_public_view(payment),
        "message": "Payment created successfully. Please approve in your Pi Wallet.",
    }


@router.get("/payments")
async def get_payments(
    user_id: Optional[str] = Query(None, alias="userId"),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: PaymentService = Depends(get_payment_service),
    stats: StatsService = Depends(get_stats_service),
):
    """
    With userId: that user's payments, newest first, paginated.
    Without: public stats and the latest completed payments.
    """
    if not user_id:
        return {"success": True, "data": await stats.public_overview()}

    payments, pagination = await service.list_for_owner(user_id, status, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "payments": [service.to_public_view(p) for p in payments],
            "pagination": pagination,
        },
    }


@router.put("/payments")
async def update_payment(
    body: UpdatePaymentRequest,
    request: Request,
    gate: AdmissionGate = Depends(get_admission),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Status update from the wallet network or client app.

    Open unless a webhook secret is configured; see DESIGN.md.
    """
    gate.verify_webhook_signature(await request.body(), request.headers.get(WEBHOOK_SIGNATURE_HEADER))
    await gate.admit(EndpointClass.API, client_ip=client_ip(request), require_auth=False)

    if not body.payment_id and not body.identifier:
        raise ValidationError("Payment ID is required")

    payment = await service.transition(
        body.payment_id,
        body.status,
        transaction_data=body.transaction_data,
        identifier=body.identifier,
    )

    return {
        "success": True,
        "data": service.to_public_view(payment),
        "message": f"Payment {payment.status.value} successfully",
    }


@router.post("/payments/{payment_id}/retry")
async def retry_payment(
    payment_id: str,
    request: Request,
    token: Optional[str] = Depends(bearer_token),
    gate: AdmissionGate = Depends(get_admission),
    service: PaymentService = Depends(get_payment_service),
):
    identity = await gate.admit(EndpointClass.API, token=token, client_ip=client_ip(request))
    gate.authorize(identity, await service.get(payment_id))

    payment = await service.retry(payment_id)
    return {
        "success": True,
        "data": service.to_public_view(payment),
        "message": "Payment is pending again. Please approve in your Pi Wallet.",
    }


@router.post("/payments/{payment_id}/refund")
async def refund_payment(
    payment_id: str,
    body: RefundRequest,
    request: Request,
    token: Optional[str] = Depends(bearer_token),
    gate: AdmissionGate = Depends(get_admission),
    service: PaymentService = Depends(get_payment_service),
):
    identity = await gate.admit(EndpointClass.API, token=token, client_ip=client_ip(request))
    gate.authorize(identity, await service.get(payment_id))

    payment = await service.refund(payment_id, amount=body.amount, reason=body.reason)
    return {
        "success": True,
        "data": service.to_public_view(payment),
        "message": "Payment refunded",
    }
