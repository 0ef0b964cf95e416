"""
Order repository.

Orders are created at checkout and never deleted; every write here commits.
"""
from typing import Optional

from headshop.infra.db import db
from headshop.models import Order, OrderStatus, SubscriptionPlan
from headshop.models.base import to_money


def find_order_by_id(order_id: str) -> Optional[Order]:
    return db.session.get(Order, order_id)


def create_subscription_order(
    user_id: str,
    plan: SubscriptionPlan,
    address_snapshot: dict,
    shipping_amount=0,
    shipping_data: Optional[dict] = None,
) -> Order:
    """Create the order for a subscription's first month. Totals are computed here, never taken from the client."""
    subtotal = to_money(plan.price)
    shipping = to_money(shipping_amount or 0)
    order = Order(
        user_id=user_id,
        plan_id=plan.id,
        status=OrderStatus.PENDING,
        subtotal_amount=subtotal,
        discount_amount=to_money(0),
        shipping_amount=shipping,
        total_amount=to_money(subtotal + shipping),
        notes=f"Assinatura: {plan.name} (Plan ID: {plan.id})",
        shipping_data=shipping_data,
        address_snapshot=address_snapshot,
    )
    db.session.add(order)
    db.session.commit()
    return order


def update_order_status(order: Order, status: str) -> Order:
    if status not in OrderStatus.ALL:
        raise ValueError(f"Unknown order status: {status}")
    order.status = status
    db.session.commit()
    return order


def mark_order_as_paid(order: Order) -> Order:
    return update_order_status(order, OrderStatus.PAID)


def cancel_order(order: Order) -> Order:
    return update_order_status(order, OrderStatus.CANCELED)


def order_belongs_to_user(order_id: str, user_id: str) -> bool:
    return db.session.query(
        Order.query.filter_by(id=order_id, user_id=user_id).exists()
    ).scalar()
