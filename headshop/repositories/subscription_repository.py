"""
Subscription repository.

Plans, subscriptions and their billing cycles. The one-ACTIVE-per-user rule
lives in the database as the `uq_subscriptions_user_active` partial index;
inserts and reactivations that would break it raise
`ActiveSubscriptionExists`.
"""
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.models import (
    CycleStatus,
    Subscription,
    SubscriptionCycle,
    SubscriptionPlan,
    SubscriptionStatus,
)
from headshop.models.base import add_months, first_day_of_next_month, to_money, utcnow

logger = get_logger('headshop.subscriptions')


class ActiveSubscriptionExists(Exception):
    """The user already holds an ACTIVE subscription."""

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} already has an active subscription")
        self.user_id = user_id


# -- Plans -------------------------------------------------------------------

def find_active_plans() -> List[SubscriptionPlan]:
    return (
        SubscriptionPlan.query.filter_by(active=True)
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )


def find_plan_by_slug(slug: str) -> Optional[SubscriptionPlan]:
    return SubscriptionPlan.query.filter_by(slug=slug, active=True).first()


def find_plan_by_id(plan_id: str) -> Optional[SubscriptionPlan]:
    return SubscriptionPlan.query.filter_by(id=plan_id, active=True).first()


# -- Subscriptions -----------------------------------------------------------

def find_subscription_by_id(subscription_id: str) -> Optional[Subscription]:
    return db.session.get(Subscription, subscription_id)


def find_user_active_subscription(user_id: str) -> Optional[Subscription]:
    return (
        Subscription.query.filter_by(user_id=user_id, status=SubscriptionStatus.ACTIVE)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def find_user_current_subscription(user_id: str) -> Optional[Subscription]:
    """The ACTIVE subscription, else the most recent PAUSED one."""
    return find_user_active_subscription(user_id) or (
        Subscription.query.filter_by(user_id=user_id, status=SubscriptionStatus.PAUSED)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def user_has_any_active_subscription(user_id: str) -> bool:
    return find_user_active_subscription(user_id) is not None


def find_by_provider_sub_id(
    provider_sub_id: str,
    statuses: Iterable[str] = (SubscriptionStatus.ACTIVE,),
) -> Optional[Subscription]:
    if not provider_sub_id:
        return None
    query = Subscription.query.filter_by(provider_sub_id=str(provider_sub_id))
    if statuses:
        query = query.filter(Subscription.status.in_(list(statuses)))
    return query.order_by(Subscription.created_at.desc()).first()


def find_by_order_id(order_id: str) -> Optional[Subscription]:
    return (
        Subscription.query.filter_by(order_id=order_id)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def find_user_plan_subscription(
    user_id: str,
    plan_id: str,
    statuses: Iterable[str] = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED),
) -> Optional[Subscription]:
    return (
        Subscription.query.filter_by(user_id=user_id, plan_id=plan_id)
        .filter(Subscription.status.in_(list(statuses)))
        .order_by(Subscription.created_at.desc())
        .first()
    )


def create_subscription_with_first_cycle(
    user_id: str,
    plan_id: str,
    amount,
    order_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    provider: str = "MERCADO_PAGO",
    provider_sub_id: Optional[str] = None,
    next_billing_at: Optional[datetime] = None,
) -> Subscription:
    """
    Create an ACTIVE subscription and its first cycle in one transaction.

    The cycle is PAID when a local payment id is given, PENDING otherwise.

    Raises:
        ActiveSubscriptionExists: the partial unique index rejected the insert
    """
    now = utcnow()
    subscription = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        order_id=order_id,
        status=SubscriptionStatus.ACTIVE,
        provider=provider,
        provider_sub_id=provider_sub_id,
        started_at=now,
        next_billing_at=next_billing_at or first_day_of_next_month(now),
    )
    cycle = SubscriptionCycle(
        status=CycleStatus.PAID if payment_id else CycleStatus.PENDING,
        cycle_start=now,
        cycle_end=add_months(now, 1),
        amount=to_money(amount),
        payment_id=payment_id,
    )
    subscription.cycles.append(cycle)
    db.session.add(subscription)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if user_has_any_active_subscription(user_id):
            raise ActiveSubscriptionExists(user_id)
        raise

    logger.info(
        "Subscription created",
        subscription_id=subscription.id,
        user_id=user_id,
        plan_id=plan_id,
        cycle_status=cycle.status,
    )
    return subscription


def create_renewal_cycle(subscription: Subscription, amount, payment_id: Optional[str] = None) -> SubscriptionCycle:
    """
    Record a recurring charge as a new cycle.

    The cycle starts at the subscription's `next_billing_at` and lasts one
    month; `next_billing_at` then moves to the first day of the month the
    cycle ends in.
    """
    cycle_start = subscription.next_billing_at or utcnow()
    cycle_end = add_months(cycle_start, 1)
    cycle = SubscriptionCycle(
        subscription_id=subscription.id,
        status=CycleStatus.PAID if payment_id else CycleStatus.PENDING,
        cycle_start=cycle_start,
        cycle_end=cycle_end,
        amount=to_money(amount),
        payment_id=payment_id,
    )
    db.session.add(cycle)
    subscription.next_billing_at = cycle_end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    db.session.commit()
    return cycle


def cycle_exists_for_payment(payment_id: str) -> bool:
    return db.session.query(
        SubscriptionCycle.query.filter_by(payment_id=payment_id).exists()
    ).scalar()


def update_subscription_status(subscription: Subscription, status: str) -> Subscription:
    """Persist a status change; canceled_at follows the CANCELED state."""
    if status not in SubscriptionStatus.ALL:
        raise ValueError(f"Unknown subscription status: {status}")
    if status == SubscriptionStatus.ACTIVE and subscription.status == SubscriptionStatus.CANCELED:
        return reactivate_subscription(subscription)
    if status == SubscriptionStatus.CANCELED:
        return cancel_subscription(subscription)

    subscription.status = status
    _commit_or_conflict(subscription)
    return subscription


def cancel_subscription(subscription: Subscription) -> Subscription:
    subscription.status = SubscriptionStatus.CANCELED
    subscription.canceled_at = utcnow()
    db.session.commit()
    return subscription


def reactivate_subscription(subscription: Subscription) -> Subscription:
    """
    Bring a CANCELED subscription back to ACTIVE.

    Raises:
        ActiveSubscriptionExists: the user already holds another ACTIVE one
    """
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.canceled_at = None
    subscription.next_billing_at = first_day_of_next_month(utcnow())
    _commit_or_conflict(subscription)
    return subscription


def _commit_or_conflict(subscription: Subscription):
    user_id = subscription.user_id
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ActiveSubscriptionExists(user_id)
