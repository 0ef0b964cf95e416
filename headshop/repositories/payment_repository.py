"""
Payment repository.

An order may carry several payments (retries, recurring charges); the most
recent one is the one status checks look at.
"""
from datetime import datetime
from typing import List, Optional

from headshop.infra.db import db
from headshop.models import Order, Payment, PaymentStatus, PaymentProvider
from headshop.models.base import to_money, utcnow, naive_utc


def find_payment_by_id(payment_id: str) -> Optional[Payment]:
    return db.session.get(Payment, payment_id)


def find_payment_by_transaction_id(transaction_id: str) -> Optional[Payment]:
    if not transaction_id:
        return None
    return Payment.query.filter_by(transaction_id=str(transaction_id)).first()


def find_order_payments(order_id: str) -> List[Payment]:
    return (
        Payment.query.filter_by(order_id=order_id)
        .order_by(Payment.created_at.desc())
        .all()
    )


def find_latest_order_payment(order_id: str) -> Optional[Payment]:
    return (
        Payment.query.filter_by(order_id=order_id)
        .order_by(Payment.created_at.desc())
        .first()
    )


def create_payment(
    order_id: str,
    amount,
    method: Optional[str] = None,
    provider: str = PaymentProvider.MERCADO_PAGO,
    status: str = PaymentStatus.PENDING,
    transaction_id: Optional[str] = None,
    payload: Optional[dict] = None,
) -> Payment:
    payment = Payment(
        order_id=order_id,
        amount=to_money(amount),
        method=method,
        provider=provider,
        status=status,
        transaction_id=transaction_id,
        payload=payload,
    )
    db.session.add(payment)
    db.session.commit()
    return payment


def update_payment_status(
    payment: Payment,
    status: str,
    transaction_id: Optional[str] = None,
    payload: Optional[dict] = None,
) -> Payment:
    if status not in PaymentStatus.ALL:
        raise ValueError(f"Unknown payment status: {status}")
    payment.status = status
    if transaction_id:
        payment.transaction_id = str(transaction_id)
    if payload:
        payment.payload = payload
    db.session.commit()
    return payment


def mark_payment_as_paid(payment: Payment, transaction_id: Optional[str] = None, payload: Optional[dict] = None) -> Payment:
    return update_payment_status(payment, PaymentStatus.PAID, transaction_id, payload)


def mark_payment_as_failed(payment: Payment, payload: Optional[dict] = None) -> Payment:
    return update_payment_status(payment, PaymentStatus.FAILED, payload=payload)


def mark_payment_as_refunded(payment: Payment, payload: Optional[dict] = None) -> Payment:
    return update_payment_status(payment, PaymentStatus.REFUNDED, payload=payload)


def store_pix_data(
    payment: Payment,
    transaction_id: str,
    qr_code: Optional[str],
    qr_code_base64: Optional[str],
    ticket_url: Optional[str],
    expires_at: Optional[datetime],
) -> Payment:
    """Keep the QR material so an unpaid PIX can be shown again later."""
    payment.transaction_id = str(transaction_id)
    payment.pix_qr_code = qr_code
    payment.pix_qr_code_base64 = qr_code_base64
    payment.pix_ticket_url = ticket_url
    payment.pix_expires_at = naive_utc(expires_at)
    db.session.commit()
    return payment


def find_pending_pix_payment(user_id: str) -> Optional[Payment]:
    """Most recent unpaid, unexpired PIX payment of a user."""
    return (
        Payment.query.join(Order, Payment.order_id == Order.id)
        .filter(
            Order.user_id == user_id,
            Payment.status == PaymentStatus.PENDING,
            Payment.provider == PaymentProvider.MERCADO_PAGO,
            Payment.pix_qr_code.isnot(None),
            Payment.pix_expires_at > utcnow(),
        )
        .order_by(Payment.created_at.desc())
        .first()
    )
