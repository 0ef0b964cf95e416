"""
Pydantic schemas for checkout requests.

Card payments only ever carry the single-use token produced by the
Mercado Pago browser SDK; raw card data never reaches this service.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from headshop.schemas.shipping import CamelModel, SelectedShippingOption


class PixPaymentData(CamelModel):
    method: Literal["pix"]


class CardPaymentData(CamelModel):
    method: Literal["credit_card", "debit_card"]
    # Optional here so a missing token is reported as MISSING_CARD_TOKEN
    token: Optional[str] = None
    payment_method_id: str = Field(..., min_length=1, alias="paymentMethodId")
    issuer_id: Optional[int] = Field(None, alias="issuerId")
    installments: int = Field(1, ge=1, le=12)
    payer_email: Optional[str] = Field(None, alias="payerEmail")
    identification_type: Optional[str] = Field(None, alias="identificationType")
    identification_number: Optional[str] = Field(None, alias="identificationNumber")

    @field_validator("issuer_id", mode="before")
    @classmethod
    def parse_issuer(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            if not v.isdigit():
                raise ValueError("ID do emissor deve ser um número válido")
            return int(v)
        return v


PaymentData = Annotated[Union[PixPaymentData, CardPaymentData], Field(discriminator="method")]


class SubscriptionCheckoutRequest(CamelModel):
    """Body of `POST /api/checkout/subscription`."""
    plan_slug: str = Field(..., min_length=1, alias="planSlug")
    address_id: Optional[str] = Field(None, alias="addressId")
    payment_data: PaymentData = Field(..., alias="paymentData")
    shipping_option: Optional[SelectedShippingOption] = Field(None, alias="shippingOption")

    @property
    def is_pix(self) -> bool:
        return isinstance(self.payment_data, PixPaymentData)


class AdminStatusUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: Literal["ACTIVE", "PAUSED", "CANCELED"]


class ApprovePaymentRequest(CamelModel):
    payment_id: Optional[str] = Field(None, alias="paymentId")
