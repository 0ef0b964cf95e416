# -*- coding: utf-8 -*-
"""
Shipping Quote Service.

Quotes delivery options for a destination CEP. When the Melhor Envio
integration is enabled it is tried first; any failure or an empty answer
falls through to fixed regional rates, so a quote is always produced for
a well-formed CEP.
"""
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

import requests
from pydantic import ValidationError

from headshop.infra.log import get_logger
from headshop.repositories import shipping_repository
from headshop.repositories.shipping_repository import DEFAULT_PROFILE, PackageProfile
from headshop.schemas.shipping import MelhorEnvioQuote, SelectedShippingOption, ShippingOption
from headshop.services.circuit_breaker import CircuitOpenError, get_circuit_breaker

logger = get_logger('headshop.shipping')

MIN_SHIPPING_PRICE = Decimal("15.00")
BASE_WEIGHT_KG = 0.5
SEDEX_FACTOR = Decimal("1.8")
INVALID_CEP_MESSAGE = "CEP inválido. Verifique e tente novamente."

# (fixed rate, delivery days) per UF
REGIONAL_RATES: Dict[str, Tuple[str, Decimal, int]] = {
    "SP": ("São Paulo", Decimal("15.90"), 3),
    "RJ": ("Rio de Janeiro", Decimal("18.90"), 5),
    "MG": ("Minas Gerais", Decimal("19.90"), 5),
    "ES": ("Espírito Santo", Decimal("21.90"), 6),
    "PR": ("Paraná", Decimal("22.90"), 6),
    "SC": ("Santa Catarina", Decimal("24.90"), 7),
    "RS": ("Rio Grande do Sul", Decimal("26.90"), 8),
    "GO": ("Goiás", Decimal("24.90"), 7),
    "MT": ("Mato Grosso", Decimal("29.90"), 9),
    "MS": ("Mato Grosso do Sul", Decimal("27.90"), 8),
    "DF": ("Distrito Federal", Decimal("23.90"), 6),
    "BA": ("Bahia", Decimal("29.90"), 9),
    "SE": ("Sergipe", Decimal("32.90"), 10),
    "AL": ("Alagoas", Decimal("33.90"), 10),
    "PE": ("Pernambuco", Decimal("34.90"), 10),
    "PB": ("Paraíba", Decimal("35.90"), 11),
    "RN": ("Rio Grande do Norte", Decimal("36.90"), 11),
    "CE": ("Ceará", Decimal("37.90"), 11),
    "PI": ("Piauí", Decimal("38.90"), 12),
    "MA": ("Maranhão", Decimal("39.90"), 12),
    "TO": ("Tocantins", Decimal("34.90"), 10),
    "PA": ("Pará", Decimal("42.90"), 14),
    "AP": ("Amapá", Decimal("49.90"), 16),
    "AM": ("Amazonas", Decimal("54.90"), 18),
    "RR": ("Roraima", Decimal("59.90"), 20),
    "AC": ("Acre", Decimal("59.90"), 20),
    "RO": ("Rondônia", Decimal("44.90"), 15),
}

DEFAULT_RATE = ("Brasil", Decimal("39.90"), 12)

# Inclusive CEP bands, first match wins
CEP_RANGES: List[Tuple[int, int, str]] = [
    (1000000, 19999999, "SP"),
    (20000000, 28999999, "RJ"),
    (29000000, 29999999, "ES"),
    (30000000, 39999999, "MG"),
    (40000000, 48999999, "BA"),
    (49000000, 49999999, "SE"),
    (50000000, 56999999, "PE"),
    (57000000, 57999999, "AL"),
    (58000000, 58999999, "PB"),
    (59000000, 59999999, "RN"),
    (60000000, 63999999, "CE"),
    (64000000, 64999999, "PI"),
    (65000000, 65999999, "MA"),
    (66000000, 68899999, "PA"),
    (68900000, 68999999, "AP"),
    (69000000, 69299999, "AM"),
    (69300000, 69399999, "RR"),
    (69400000, 69899999, "AM"),
    (69900000, 69999999, "AC"),
    (70000000, 72799999, "DF"),
    (72800000, 72999999, "GO"),
    (73000000, 73699999, "DF"),
    (73700000, 76799999, "GO"),
    (76800000, 76999999, "RO"),
    (77000000, 77999999, "TO"),
    (78000000, 78899999, "MT"),
    (79000000, 79999999, "MS"),
    (80000000, 87999999, "PR"),
    (88000000, 89999999, "SC"),
    (90000000, 99999999, "RS"),
]


class ShippingAPIError(Exception):
    pass


def normalize_cep(cep) -> str:
    return re.sub(r"\D", "", str(cep or ""))


def is_valid_cep(cep) -> bool:
    return re.fullmatch(r"\d{8}", normalize_cep(cep)) is not None


def format_cep(cep) -> str:
    normalized = normalize_cep(cep)
    return f"{normalized[:5]}-{normalized[5:]}"


def get_state_from_cep(cep) -> Optional[str]:
    normalized = normalize_cep(cep)
    if not normalized:
        return None
    number = int(normalized)
    for low, high, state in CEP_RANGES:
        if low <= number <= high:
            return state
    return None


def _round_price(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_fallback_rates(destination_cep: str, profile: PackageProfile) -> List[ShippingOption]:
    """PAC and SEDEX style options priced from the regional table."""
    state = get_state_from_cep(destination_cep)
    _region, fixed_rate, days = REGIONAL_RATES.get(state, DEFAULT_RATE) if state else DEFAULT_RATE

    multiplier = max(Decimal(1), Decimal(str(profile.weight_kg)) / Decimal(str(BASE_WEIGHT_KG)))
    adjusted = max(MIN_SHIPPING_PRICE, fixed_rate * multiplier)

    pac = ShippingOption(
        id="fallback_pac",
        carrier="Correios",
        service="PAC",
        name="Correios PAC",
        price=_round_price(adjusted),
        delivery_days=days + 2,
        estimated_days=days + 2,
        delivery_time=f"{days} a {days + 4} dias úteis",
        recommended=True,
    )
    sedex = ShippingOption(
        id="fallback_sedex",
        carrier="Correios",
        service="SEDEX",
        name="Correios SEDEX",
        price=_round_price(adjusted * SEDEX_FACTOR),
        delivery_days=max(1, days - 3),
        estimated_days=max(1, days - 3),
        delivery_time=f"{max(1, days - 4)} a {max(2, days - 2)} dias úteis",
        recommended=False,
    )
    return [pac, sedex]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ShippingService:
    """Resolves a package profile and prices it for a destination."""

    def __init__(
        self,
        origin_cep: str = "01310100",
        use_external_api: bool = False,
        api_token: str = "",
        api_url: str = "",
        api_timeout: int = 10,
        metrics=None,
        session=None,
    ):
        self.origin_cep = normalize_cep(origin_cep)
        self.use_external_api = use_external_api
        self.api_token = api_token
        self.api_url = api_url
        self.api_timeout = api_timeout
        self.metrics = metrics
        self.session = session or requests
        self.breaker = get_circuit_breaker("melhor_envio")

    @classmethod
    def from_config(cls, config, metrics=None) -> "ShippingService":
        return cls(
            origin_cep=config.get("SHIPPING_ORIGIN_CEP", "01310100"),
            use_external_api=config.get("SHIPPING_USE_EXTERNAL_API", False),
            api_token=config.get("MELHOR_ENVIO_TOKEN", ""),
            api_url=config.get("MELHOR_ENVIO_URL", ""),
            api_timeout=config.get("SHIPPING_API_TIMEOUT_SECONDS", 10),
            metrics=metrics,
        )

    @property
    def external_enabled(self) -> bool:
        return bool(self.use_external_api and self.api_token and self.api_url)

    def _record(self, source: str):
        if self.metrics is not None:
            self.metrics.record_shipping_quote(source)

    def resolve_profile(
        self,
        shipping_profile_id: Optional[str] = None,
        product_ids: Optional[List[str]] = None,
        plan_id: Optional[str] = None,
    ) -> PackageProfile:
        """Profile id, then products, then plan; the default profile when none matches."""
        if shipping_profile_id:
            stored = shipping_repository.get_profile_by_id(shipping_profile_id)
            if stored is not None:
                return PackageProfile.from_model(stored)
        if product_ids:
            combined = shipping_repository.get_profile_from_products(product_ids)
            if combined is not None:
                return combined
        if plan_id:
            from_plan = shipping_repository.get_profile_from_plan(plan_id)
            if from_plan is not None:
                return from_plan

        logger.info("No shipping profile found, using default profile")
        return DEFAULT_PROFILE

    def calculate_shipping(
        self,
        cep: str,
        shipping_profile_id: Optional[str] = None,
        product_ids: Optional[List[str]] = None,
        plan_id: Optional[str] = None,
    ) -> dict:
        """
        Quote delivery options for a CEP.

        Returns the quote body; `success` is False only for a malformed CEP.
        """
        normalized = normalize_cep(cep)
        if not is_valid_cep(normalized):
            self._record("invalid")
            return {
                "success": False,
                "zipCode": normalized,
                "options": [],
                "error": INVALID_CEP_MESSAGE,
                "quotedAt": _now_iso(),
            }

        profile = self.resolve_profile(shipping_profile_id, product_ids, plan_id)
        source = "fallback"
        options: List[ShippingOption] = []

        if self.external_enabled:
            try:
                options = self.breaker.call(self.fetch_melhor_envio_quotes, normalized, profile)
                if options:
                    source = "external"
            except CircuitOpenError:
                logger.warning("Shipping API circuit open, using fallback rates")
            except (ShippingAPIError, requests.RequestException, ValueError) as e:
                logger.warning("Shipping API error, using fallback rates", error=str(e))

        if not options:
            options = calculate_fallback_rates(normalized, profile)

        self._record(source)
        return {
            "success": True,
            "zipCode": format_cep(normalized),
            "location": get_state_from_cep(normalized),
            "options": [option.model_dump(by_alias=True) for option in options],
            "quotedAt": _now_iso(),
        }

    def fetch_melhor_envio_quotes(self, destination_cep: str, profile: PackageProfile) -> List[ShippingOption]:
        """Ask Melhor Envio for carrier prices; invalid entries are dropped."""
        response = self.session.post(
            self.api_url,
            json={
                "from": {"postal_code": self.origin_cep},
                "to": {"postal_code": destination_cep},
                "package": {
                    "weight": profile.weight_kg,
                    "width": profile.width_cm,
                    "height": profile.height_cm,
                    "length": profile.length_cm,
                },
            },
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_token}",
            },
            timeout=self.api_timeout,
        )
        if response.status_code != 200:
            raise ShippingAPIError(f"Melhor Envio API error: {response.status_code}")

        data = response.json()
        if not isinstance(data, list):
            raise ShippingAPIError("Unexpected Melhor Envio response")

        quotes = []
        for item in data:
            try:
                quote = MelhorEnvioQuote.model_validate(item)
            except ValidationError:
                continue
            if quote.error or not quote.price or quote.price <= 0:
                continue
            quotes.append(quote)

        options = [
            ShippingOption(
                id=f"melhor_envio_{quote.id}",
                carrier=quote.company.name,
                service=quote.name,
                name=f"{quote.company.name} {quote.name}",
                price=quote.final_price,
                delivery_days=quote.delivery_range.max,
                estimated_days=quote.delivery_range.max,
                delivery_time=f"{quote.delivery_range.min} a {quote.delivery_range.max} dias úteis",
                recommended=index == 0,
            )
            for index, quote in enumerate(quotes)
        ]
        return sorted(options, key=lambda option: option.price)

    def build_order_shipping_data(
        self,
        option: SelectedShippingOption,
        destination_cep: str,
        profile: Optional[PackageProfile] = None,
    ) -> dict:
        """Shipping details frozen into the order."""
        now = datetime.now(timezone.utc)
        return {
            "optionId": option.id,
            "carrier": option.carrier,
            "service": option.service,
            "price": option.price,
            "deliveryDays": option.delivery_days,
            "destinationZipCode": normalize_cep(destination_cep),
            "originZipCode": self.origin_cep,
            "totalWeightKg": profile.weight_kg if profile else 0,
            "dimensions": {
                "widthCm": profile.width_cm if profile else 0,
                "heightCm": profile.height_cm if profile else 0,
                "lengthCm": profile.length_cm if profile else 0,
            },
            "quotedAt": now.isoformat(),
            "estimatedDeliveryDate": (now + timedelta(days=option.delivery_days)).isoformat(),
        }


def validate_shipping_availability(product_ids: Optional[List[str]] = None, plan_id: Optional[str] = None) -> dict:
    """Check that the products or plan being bought have a shipping profile."""
    if product_ids and shipping_repository.get_profile_from_products(product_ids) is None:
        return {"valid": False, "error": "Um ou mais produtos não possuem configuração de frete"}
    if plan_id and shipping_repository.get_profile_from_plan(plan_id) is None:
        return {"valid": False, "error": "O plano selecionado não possui configuração de frete"}
    return {"valid": True}
