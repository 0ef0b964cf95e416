"""Mercado Pago status vocabularies mapped onto our own."""
from typing import Optional

from headshop.models import PaymentStatus, SubscriptionStatus

MP_STATUS_MAP = {
    "pending": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "in_mediation": PaymentStatus.PENDING,
    "approved": PaymentStatus.PAID,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}

# Simplified vocabulary the checkout page polls against
POLLING_STATUSES = ("approved", "rejected", "cancelled")

PREAPPROVAL_STATUS_MAP = {
    "authorized": SubscriptionStatus.ACTIVE,
    "paused": SubscriptionStatus.PAUSED,
    "cancelled": SubscriptionStatus.CANCELED,
    "pending": None,
}


def map_payment_status(mp_status: Optional[str]) -> str:
    """Map a provider payment status; unknown values stay PENDING."""
    return MP_STATUS_MAP.get((mp_status or "").lower(), PaymentStatus.PENDING)


def map_polling_status(mp_status: Optional[str]) -> str:
    status = (mp_status or "").lower()
    return status if status in POLLING_STATUSES else "pending"


def map_preapproval_status(mp_status: Optional[str]) -> Optional[str]:
    """Subscription status for a preapproval status, or None when no change applies."""
    return PREAPPROVAL_STATUS_MAP.get((mp_status or "").lower())
