"""
Subscription Models

A user holds at most one ACTIVE subscription. The rule is enforced by the
partial unique index below, not by application checks alone.
"""
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from headshop.database import db
from headshop.models.base import new_id, utcnow, isoformat


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELED = "CANCELED"

    ALL = (ACTIVE, PAUSED, CANCELED)


class CycleStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


ACTIVE_ONLY = text("status = 'ACTIVE'")


class Subscription(db.Model):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_user_active",
            "user_id",
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True, index=True)
    status = Column(String(16), nullable=False, default=SubscriptionStatus.ACTIVE)
    provider = Column(String(16), nullable=False, default="MERCADO_PAGO")
    provider_sub_id = Column(String(64), nullable=True, index=True)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    next_billing_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    plan = relationship("SubscriptionPlan")
    cycles = relationship(
        "SubscriptionCycle",
        back_populates="subscription",
        order_by="SubscriptionCycle.cycle_start",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_plan: bool = False):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "orderId": self.order_id,
            "status": self.status,
            "provider": self.provider,
            "providerSubId": self.provider_sub_id,
            "startedAt": isoformat(self.started_at),
            "nextBillingAt": isoformat(self.next_billing_at),
            "canceledAt": isoformat(self.canceled_at),
        }
        if include_plan and self.plan is not None:
            data["plan"] = self.plan.to_dict()
        return data


class SubscriptionCycle(db.Model):
    __tablename__ = "subscription_cycles"

    id = Column(String(36), primary_key=True, default=new_id)
    subscription_id = Column(String(36), ForeignKey("subscriptions.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=CycleStatus.PENDING)
    cycle_start = Column(DateTime, nullable=False)
    cycle_end = Column(DateTime, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_id = Column(String(36), ForeignKey("payments.id"), unique=True, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    subscription = relationship("Subscription", back_populates="cycles")

    def to_dict(self):
        return {
            "id": self.id,
            "subscriptionId": self.subscription_id,
            "status": self.status,
            "cycleStart": isoformat(self.cycle_start),
            "cycleEnd": isoformat(self.cycle_end),
            "amount": float(self.amount),
            "paymentId": self.payment_id,
        }
