# -*- coding: utf-8 -*-
"""
Mercado Pago payload schemas.

Everything the payment processor sends us, whether an API response or a
webhook notification, is parsed through these models before any field is
read. Unknown fields are ignored; missing or mistyped required fields
raise `pydantic.ValidationError`, which the client turns into
`GatewayPayloadError`.
"""
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _as_str(v):
    if v is None:
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v))
    return v


class GatewayModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PaymentMetadata(GatewayModel):
    """Metadata we attach to charges. Mercado Pago echoes keys back in snake_case."""
    type: Optional[str] = None
    plan_id: Optional[str] = Field(None, validation_alias=AliasChoices("plan_id", "planId"))
    plan_slug: Optional[str] = Field(None, validation_alias=AliasChoices("plan_slug", "planSlug"))
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    order_id: Optional[str] = Field(None, validation_alias=AliasChoices("order_id", "orderId"))
    payment_id: Optional[str] = Field(None, validation_alias=AliasChoices("payment_id", "paymentId"))
    preapproval_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("preapproval_id", "preapprovalId"))

    @property
    def is_subscription(self) -> bool:
        return self.type == "subscription"


class CardInfo(GatewayModel):
    last_four_digits: Optional[str] = None
    first_six_digits: Optional[str] = None


class PixTransactionData(GatewayModel):
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None


class PointOfInteraction(GatewayModel):
    type: Optional[str] = None
    transaction_data: Optional[PixTransactionData] = None


class GatewayPayment(GatewayModel):
    """A payment as returned by `GET /v1/payments/{id}` or `POST /v1/payments`."""
    id: str
    status: str
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None
    transaction_amount: Optional[float] = None
    currency_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_type_id: Optional[str] = None
    date_created: Optional[datetime] = None
    date_approved: Optional[datetime] = None
    date_of_expiration: Optional[datetime] = None
    metadata: PaymentMetadata = Field(default_factory=PaymentMetadata)
    card: Optional[CardInfo] = None
    point_of_interaction: Optional[PointOfInteraction] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str(v)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("status must be a non-empty string")
        return v.strip().lower()

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v):
        return v or {}

    @property
    def card_last_four(self) -> Optional[str]:
        return self.card.last_four_digits if self.card else None

    @property
    def pix_data(self) -> PixTransactionData:
        if self.point_of_interaction and self.point_of_interaction.transaction_data:
            return self.point_of_interaction.transaction_data
        return PixTransactionData()


class AutoRecurring(GatewayModel):
    frequency: int = 1
    frequency_type: str = "months"
    transaction_amount: Optional[float] = None
    currency_id: str = "BRL"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Preapproval(GatewayModel):
    """A recurring-billing agreement (`/preapproval`)."""
    id: str
    status: str
    external_reference: Optional[str] = None
    payer_email: Optional[str] = None
    reason: Optional[str] = None
    next_payment_date: Optional[datetime] = None
    auto_recurring: Optional[AutoRecurring] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str(v)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("status must be a non-empty string")
        return v.strip().lower()


class PreapprovalSearchResult(GatewayModel):
    results: List[Preapproval] = Field(default_factory=list)


class NotificationData(GatewayModel):
    id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str(v)


class WebhookNotification(GatewayModel):
    """Body of a webhook delivery. Only used to learn which entity to re-fetch."""
    id: Optional[str] = None
    type: Optional[str] = None
    topic: Optional[str] = None
    action: Optional[str] = None
    live_mode: Optional[bool] = None
    api_version: Optional[str] = None
    data: Optional[NotificationData] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str(v)

    @property
    def resource_id(self) -> Optional[str]:
        return self.data.id if self.data and self.data.id else None

    @property
    def kind(self) -> Optional[str]:
        return self.type or self.topic


class PayerIdentification(GatewayModel):
    type: str
    number: str


class Payer(GatewayModel):
    email: str
    first_name: str = ""
    last_name: str = ""
    identification: Optional[PayerIdentification] = None


class ChargeRequest(GatewayModel):
    """What the checkout asks the gateway to charge."""
    amount: float
    description: str
    external_reference: str
    payer: Payer
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CardChargeRequest(ChargeRequest):
    token: str = Field(..., min_length=1)
    payment_method_id: str
    issuer_id: Optional[int] = None
    installments: int = Field(1, ge=1, le=12)


class PreapprovalRequest(GatewayModel):
    reason: str
    payer_email: str
    card_token_id: str = Field(..., min_length=1)
    external_reference: str
    amount: float
    start_date: Optional[datetime] = None
    frequency_months: int = 1


class PixCharge(GatewayModel):
    """QR material handed to the buyer after a PIX charge is created."""
    payment_id: str
    status: str
    status_detail: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None
    expiration_date: datetime
