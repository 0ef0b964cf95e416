"""
Order and Payment Models

An order is created at checkout and never deleted; cancellation is a status
change. Payments hang off the order, the most recent one drives status checks.
"""
from sqlalchemy import Column, String, Text, Numeric, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from headshop.database import db
from headshop.models.base import new_id, utcnow, isoformat


class OrderStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"

    ALL = (PENDING, PAID, SHIPPED, DELIVERED, CANCELED)


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELED = "CANCELED"

    ALL = (PENDING, PAID, FAILED, REFUNDED, CANCELED)


class PaymentProvider:
    MERCADO_PAGO = "MERCADO_PAGO"
    STRIPE = "STRIPE"
    MANUAL = "MANUAL"


class Order(db.Model):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=True, index=True)
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING, index=True)
    subtotal_amount = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    notes = Column(Text, nullable=True)
    shipping_data = Column(JSON, nullable=True)
    address_snapshot = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    payments = relationship(
        "Payment",
        back_populates="order",
        order_by="Payment.created_at",
        cascade="all, delete-orphan",
    )

    @property
    def is_subscription(self) -> bool:
        return self.plan_id is not None

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "status": self.status,
            "subtotalAmount": float(self.subtotal_amount),
            "discountAmount": float(self.discount_amount or 0),
            "shippingAmount": float(self.shipping_amount or 0),
            "totalAmount": float(self.total_amount),
            "currency": self.currency,
            "notes": self.notes,
            "shippingData": self.shipping_data,
            "addressSnapshot": self.address_snapshot,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


class Payment(db.Model):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING, index=True)
    provider = Column(String(16), nullable=False, default=PaymentProvider.MERCADO_PAGO)
    method = Column(String(16), nullable=True)  # pix, credit_card, debit_card
    amount = Column(Numeric(10, 2), nullable=False)
    transaction_id = Column(String(64), unique=True, nullable=True)
    payload = Column(JSON, nullable=True)

    # PIX material kept so the client can recover an unpaid QR code
    pix_qr_code = Column(Text, nullable=True)
    pix_qr_code_base64 = Column(Text, nullable=True)
    pix_ticket_url = Column(String(512), nullable=True)
    pix_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payments")

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "status": self.status,
            "provider": self.provider,
            "method": self.method,
            "amount": float(self.amount),
            "transactionId": self.transaction_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
