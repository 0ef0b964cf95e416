"""Import every model so metadata is complete for create_all and Alembic."""
from headshop.models.user import User, UserStatus, Address
from headshop.models.catalog import ShippingProfile, Product, SubscriptionPlan
from headshop.models.order import Order, OrderStatus, Payment, PaymentStatus, PaymentProvider
from headshop.models.subscription import (
    Subscription,
    SubscriptionCycle,
    SubscriptionStatus,
    CycleStatus,
)
from headshop.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "UserStatus",
    "Address",
    "ShippingProfile",
    "Product",
    "SubscriptionPlan",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "PaymentProvider",
    "Subscription",
    "SubscriptionCycle",
    "SubscriptionStatus",
    "CycleStatus",
    "WebhookEvent",
]
