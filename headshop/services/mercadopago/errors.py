# -*- coding: utf-8 -*-
"""Exception classes for the Mercado Pago client."""

DEFAULT_USER_MESSAGE = "Erro ao processar pagamento. Tente novamente."

# Provider error codes and card rejection details shown to the buyer.
USER_MESSAGES = {
    # Card token
    "2006": "Token do cartão não encontrado. Tente novamente.",
    "2062": "Token de cartão inválido. Verifique os dados.",
    "3003": "Token já utilizado. Insira os dados novamente.",
    # Card rejections (status_detail)
    "cc_rejected_bad_filled_card_number": "Número do cartão incorreto.",
    "cc_rejected_bad_filled_date": "Data de validade incorreta.",
    "cc_rejected_bad_filled_other": "Dados do cartão incorretos.",
    "cc_rejected_bad_filled_security_code": "CVV incorreto.",
    "cc_rejected_blacklist": "Cartão não permitido.",
    "cc_rejected_call_for_authorize": "Autorize o pagamento junto ao banco.",
    "cc_rejected_card_disabled": "Cartão desabilitado. Contate o banco.",
    "cc_rejected_card_error": "Erro no cartão. Tente outro.",
    "cc_rejected_duplicated_payment": "Pagamento duplicado. Aguarde.",
    "cc_rejected_high_risk": "Pagamento recusado por segurança.",
    "cc_rejected_insufficient_amount": "Saldo insuficiente.",
    "cc_rejected_invalid_installments": "Parcelas não permitidas.",
    "cc_rejected_max_attempts": "Limite de tentativas. Tente outro cartão.",
    "cc_rejected_other_reason": "Pagamento recusado pelo banco.",
    # Payer data
    "2067": "CPF/CNPJ inválido.",
    "4033": "Parcelas inválidas.",
    "4050": "Email inválido.",
    "1": "Erro nos parâmetros enviados.",
}


def user_message(code) -> str:
    """Portuguese message for a provider error code or status detail."""
    if code is None:
        return DEFAULT_USER_MESSAGE
    return USER_MESSAGES.get(str(code), DEFAULT_USER_MESSAGE)


class GatewayError(Exception):
    """Base exception for all payment gateway errors."""

    def __init__(self, message: str, status_code: int = None, response=None, code: str = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response
        self.code = code

    @property
    def user_message(self) -> str:
        return user_message(self.code)


class GatewayHTTPError(GatewayError):
    """Raised when an HTTP request fails."""
    pass


class GatewayAuthError(GatewayError):
    """Raised when the access token is rejected (401/403)."""
    pass


class GatewayRateLimitError(GatewayError):
    """Raised when rate limit is exceeded (429)."""
    pass


class GatewayServerError(GatewayError):
    """Raised when the gateway returns a 5xx error."""
    pass


class GatewayValidationError(GatewayError):
    """Raised when the gateway rejects our request (400)."""
    pass


class GatewayNotFoundError(GatewayError):
    """Raised when the resource does not exist (404)."""
    pass


class GatewayTimeoutError(GatewayError):
    """Raised when request times out."""
    pass


class GatewayPayloadError(GatewayError):
    """Raised when a gateway response does not match the expected schema."""
    pass


class GatewayNotConfiguredError(GatewayError):
    """Raised when no access token is configured."""
    pass
