# -*- coding: utf-8 -*-
"""Synchronous HTTP client for the Mercado Pago REST API."""

import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, List
from urllib.parse import urljoin

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from headshop.infra.log import get_logger
from headshop.schemas.gateway import (
    CardChargeRequest,
    ChargeRequest,
    GatewayPayment,
    PixCharge,
    Preapproval,
    PreapprovalRequest,
    PreapprovalSearchResult,
)
from headshop.services.mercadopago.errors import (
    GatewayAuthError,
    GatewayHTTPError,
    GatewayNotConfiguredError,
    GatewayNotFoundError,
    GatewayPayloadError,
    GatewayRateLimitError,
    GatewayServerError,
    GatewayTimeoutError,
    GatewayValidationError,
)

logger = get_logger('headshop.gateway')

PREAPPROVAL_AUTHORIZED = "authorized"
PREAPPROVAL_PAUSED = "paused"
PREAPPROVAL_CANCELLED = "cancelled"


def _millis() -> int:
    return int(time.time() * 1000)


class MercadoPagoClient:
    """Mercado Pago API client with retry logic and typed responses.

    One instance is built per application from configuration and handed to
    the services that need it; nothing in this module keeps global state.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        timeout: int = 10,
        max_retries: int = 3,
        notification_url: Optional[str] = None,
        back_url: Optional[str] = None,
        pix_expiration_minutes: int = 30,
        metrics=None,
        session: Optional[requests.Session] = None,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.notification_url = notification_url or None
        self.back_url = back_url or None
        self.pix_expiration_minutes = pix_expiration_minutes
        self.metrics = metrics

        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=max_retries,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET", "POST", "PUT"],
                backoff_factor=1,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def _build_url(self, path: str) -> str:
        return urljoin(self.base_url + "/", path.lstrip("/"))

    @staticmethod
    def _error_code(data: Dict[str, Any]) -> Optional[str]:
        """Pull the first provider error code out of an error body."""
        causes = data.get("cause") or []
        if isinstance(causes, list) and causes:
            first = causes[0] if isinstance(causes[0], dict) else {}
            if first.get("code") is not None:
                return str(first["code"])
        if data.get("error"):
            return str(data["error"])
        return None

    def _handle_response(self, response: requests.Response) -> Dict[str, Any]:
        """Handle HTTP response and raise appropriate errors."""
        try:
            data = response.json() if response.content else {}
        except json.JSONDecodeError:
            data = {"text": response.text}
        if not isinstance(data, dict):
            data = {"text": response.text}

        if response.status_code in (200, 201):
            return data

        error_msg = data.get("message") or data.get("error") or f"HTTP {response.status_code}"
        code = self._error_code(data)

        if response.status_code == 400:
            raise GatewayValidationError(error_msg, response.status_code, response, code)
        elif response.status_code in (401, 403):
            raise GatewayAuthError(error_msg, response.status_code, response, code)
        elif response.status_code == 404:
            raise GatewayNotFoundError(error_msg, response.status_code, response, code)
        elif response.status_code == 429:
            raise GatewayRateLimitError(error_msg, response.status_code, response, code)
        elif response.status_code >= 500:
            raise GatewayServerError(error_msg, response.status_code, response, code)
        else:
            raise GatewayHTTPError(error_msg, response.status_code, response, code)

    def request(
        self,
        operation: str,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated request, recording outcome and latency."""
        if not self.configured:
            raise GatewayNotConfiguredError("MP_ACCESS_TOKEN not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key

        started = time.time()
        outcome = "ok"
        try:
            response = self.session.request(
                method=method,
                url=self._build_url(path),
                json=json_data,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            return self._handle_response(response)
        except requests.Timeout as e:
            outcome = "timeout"
            raise GatewayTimeoutError(f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            outcome = "connection_error"
            raise GatewayHTTPError(f"Request failed: {str(e)}") from e
        except GatewayValidationError:
            outcome = "rejected"
            raise
        except (GatewayAuthError, GatewayNotFoundError, GatewayRateLimitError,
                GatewayServerError, GatewayHTTPError) as e:
            outcome = f"http_{e.status_code}"
            raise
        finally:
            duration = time.time() - started
            logger.log_gateway_call(operation, outcome, round(duration * 1000, 2), path=path)
            if self.metrics is not None:
                self.metrics.record_gateway_request(operation, outcome, duration)

    @staticmethod
    def _parse(model, data: Dict[str, Any], operation: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise GatewayPayloadError(
                f"Unexpected {operation} payload: {e.error_count()} validation error(s)"
            ) from e

    # -- Payments ------------------------------------------------------------

    def _payer(self, request: ChargeRequest) -> Dict[str, Any]:
        payer = {
            "email": request.payer.email,
            "first_name": request.payer.first_name,
            "last_name": request.payer.last_name,
        }
        if request.payer.identification:
            payer["identification"] = {
                "type": request.payer.identification.type,
                "number": request.payer.identification.number,
            }
        return payer

    def create_pix_payment(self, request: ChargeRequest) -> PixCharge:
        """Create a PIX charge and return its QR material."""
        body = {
            "transaction_amount": round(request.amount, 2),
            "description": request.description,
            "payment_method_id": "pix",
            "external_reference": request.external_reference,
            "payer": self._payer(request),
            "metadata": request.metadata,
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url

        data = self.request(
            "create_pix_payment", "POST", "/v1/payments", json_data=body,
            idempotency_key=f"pix_{request.external_reference}_{_millis()}",
        )
        payment = self._parse(GatewayPayment, data, "create_pix_payment")
        pix = payment.pix_data
        expiration = payment.date_of_expiration or (
            datetime.now(timezone.utc) + timedelta(minutes=self.pix_expiration_minutes)
        )
        return PixCharge(
            payment_id=payment.id,
            status=payment.status,
            status_detail=payment.status_detail,
            qr_code=pix.qr_code,
            qr_code_base64=pix.qr_code_base64,
            ticket_url=pix.ticket_url,
            expiration_date=expiration,
        )

    def create_card_payment(self, request: CardChargeRequest) -> GatewayPayment:
        """Charge a tokenized card. The token is single use; no card data passes through us."""
        body = {
            "transaction_amount": round(request.amount, 2),
            "description": request.description,
            "token": request.token,
            "payment_method_id": request.payment_method_id,
            "installments": request.installments,
            "external_reference": request.external_reference,
            "payer": self._payer(request),
            "metadata": request.metadata,
        }
        if request.issuer_id is not None:
            body["issuer_id"] = request.issuer_id
        if self.notification_url:
            body["notification_url"] = self.notification_url

        data = self.request(
            "create_card_payment", "POST", "/v1/payments", json_data=body,
            idempotency_key=f"card_{request.external_reference}_{_millis()}",
        )
        return self._parse(GatewayPayment, data, "create_card_payment")

    def get_payment(self, payment_id: str) -> GatewayPayment:
        """Fetch the authoritative state of a payment."""
        data = self.request("get_payment", "GET", f"/v1/payments/{payment_id}")
        return self._parse(GatewayPayment, data, "get_payment")

    # -- Preapprovals (recurring billing) ------------------------------------

    def create_preapproval(self, request: PreapprovalRequest) -> Preapproval:
        """Authorize monthly charges against the card token."""
        auto_recurring = {
            "frequency": request.frequency_months,
            "frequency_type": "months",
            "transaction_amount": round(request.amount, 2),
            "currency_id": "BRL",
        }
        if request.start_date:
            auto_recurring["start_date"] = request.start_date.isoformat()

        body = {
            "reason": request.reason,
            "payer_email": request.payer_email,
            "card_token_id": request.card_token_id,
            "external_reference": request.external_reference,
            "status": PREAPPROVAL_AUTHORIZED,
            "auto_recurring": auto_recurring,
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url
        if self.back_url:
            body["back_url"] = self.back_url

        data = self.request(
            "create_preapproval", "POST", "/preapproval", json_data=body,
            idempotency_key=f"preapproval-{request.external_reference}-{_millis()}",
        )
        return self._parse(Preapproval, data, "create_preapproval")

    def get_preapproval(self, preapproval_id: str) -> Preapproval:
        data = self.request("get_preapproval", "GET", f"/preapproval/{preapproval_id}")
        return self._parse(Preapproval, data, "get_preapproval")

    def update_preapproval_status(self, preapproval_id: str, status: str) -> Preapproval:
        data = self.request(
            "update_preapproval", "PUT", f"/preapproval/{preapproval_id}",
            json_data={"status": status},
        )
        return self._parse(Preapproval, data, "update_preapproval")

    def pause_preapproval(self, preapproval_id: str) -> Preapproval:
        return self.update_preapproval_status(preapproval_id, PREAPPROVAL_PAUSED)

    def resume_preapproval(self, preapproval_id: str) -> Preapproval:
        return self.update_preapproval_status(preapproval_id, PREAPPROVAL_AUTHORIZED)

    def cancel_preapproval(self, preapproval_id: str) -> Preapproval:
        return self.update_preapproval_status(preapproval_id, PREAPPROVAL_CANCELLED)

    def search_preapprovals(self, external_reference: str) -> List[Preapproval]:
        data = self.request(
            "search_preapprovals", "GET", "/preapproval/search",
            params={"external_reference": external_reference},
        )
        return self._parse(PreapprovalSearchResult, data, "search_preapprovals").results
