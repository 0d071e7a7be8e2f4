"""Request bodies accepted by the HTTP surface."""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from pitrace.fsm.states import Currency, LoginType, ServiceType


class CreatePaymentRequest(BaseModel):
    """Body for POST /payments. Amount sign is checked by the service."""

    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal
    currency: Currency = Currency.PI
    memo: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    identifier: Optional[str] = None
    product_id: Optional[str] = Field(default=None, alias="productId")
    service_type: Optional[ServiceType] = Field(default=None, alias="serviceType")
    device_info: Dict[str, Any] = Field(default_factory=dict, alias="deviceInfo")
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")


class UpdatePaymentRequest(BaseModel):
    """Body for PUT /payments, sent by the wallet network or the client app."""

    model_config = ConfigDict(populate_by_name=True)

    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    identifier: Optional[str] = None
    status: str
    transaction_data: Optional[Dict[str, Any]] = Field(default=None, alias="transactionData")


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = None
    reason: str = ""


class AuthRequest(BaseModel):
    """Body for POST /auth."""

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1)
    uid: str = Field(min_length=1)
    wallet_address: Optional[str] = Field(default=None, alias="walletAddress")
    login_type: LoginType = Field(alias="loginType")
