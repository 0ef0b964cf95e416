"""
Pydantic schemas for the shipping API.

Request bodies arrive in camelCase; Python code reads snake_case.
"""
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ShippingQuoteRequest(CamelModel):
    """Body of `POST /api/shipping/quote`. The CEP is validated by the service, not here."""
    cep: str = Field(..., description="Destination CEP, with or without hyphen")
    shipping_profile_id: Optional[str] = Field(None, alias="shippingProfileId")
    product_ids: List[str] = Field(default_factory=list, alias="productIds")
    plan_id: Optional[str] = Field(None, alias="planId")

    @field_validator("cep", mode="before")
    @classmethod
    def cep_as_string(cls, v):
        if isinstance(v, int):
            return f"{v:08d}"
        return v


class ShippingOption(CamelModel):
    """A priced delivery option returned by a quote."""
    id: str
    carrier: str
    service: str
    name: str
    price: float
    delivery_days: int = Field(..., alias="deliveryDays")
    estimated_days: int = Field(..., alias="estimatedDays")
    delivery_time: str = Field(..., alias="deliveryTime")
    recommended: bool = False


class SelectedShippingOption(CamelModel):
    """The option the buyer picked, echoed back at checkout."""
    id: str = Field(..., min_length=1)
    carrier: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)
    name: str = Field("", description="Display name")
    price: float = Field(..., ge=0)
    delivery_days: int = Field(..., ge=0, alias="deliveryDays")


class ShippingProfileRequest(CamelModel):
    """Admin create payload for a shipping profile."""
    name: str = Field(..., min_length=2, max_length=100)
    weight_kg: float = Field(..., gt=0, le=30, alias="weightKg")
    width_cm: int = Field(..., gt=0, le=100, alias="widthCm")
    height_cm: int = Field(..., gt=0, le=100, alias="heightCm")
    length_cm: int = Field(..., gt=0, le=100, alias="lengthCm")
    is_active: bool = Field(True, alias="isActive")


class ShippingProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    weight_kg: Optional[float] = Field(None, gt=0, le=30, alias="weightKg")
    width_cm: Optional[int] = Field(None, gt=0, le=100, alias="widthCm")
    height_cm: Optional[int] = Field(None, gt=0, le=100, alias="heightCm")
    length_cm: Optional[int] = Field(None, gt=0, le=100, alias="lengthCm")
    is_active: Optional[bool] = Field(None, alias="isActive")


class CarrierCompany(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""


class DeliveryRange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    min: int = 0
    max: int = 0


class MelhorEnvioQuote(BaseModel):
    """One entry of the Melhor Envio `shipment/calculate` response."""
    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    name: str = ""
    price: Optional[float] = None
    custom_price: Optional[float] = None
    error: Optional[str] = None
    company: CarrierCompany = Field(default_factory=CarrierCompany)
    delivery_range: DeliveryRange = Field(default_factory=DeliveryRange)

    @property
    def final_price(self) -> float:
        return self.custom_price if self.custom_price else (self.price or 0.0)
