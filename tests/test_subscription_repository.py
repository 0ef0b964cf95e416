# -*- coding: utf-8 -*-
"""Tests for subscription persistence and the one-ACTIVE-per-user rule."""
from datetime import datetime
from decimal import Decimal

import pytest

from headshop.models import CycleStatus, Subscription, SubscriptionStatus
from headshop.repositories import subscription_repository
from headshop.repositories.subscription_repository import ActiveSubscriptionExists


class TestPlans:

    def test_active_plans_sorted_by_price(self, app, plan):
        from headshop.database import db
        from headshop.models import SubscriptionPlan
        db.session.add(SubscriptionPlan(name="Plano Mini", slug="mini", price=Decimal("29.90")))
        db.session.add(SubscriptionPlan(name="Antigo", slug="antigo", price=Decimal("9.90"), active=False))
        db.session.commit()

        slugs = [p.slug for p in subscription_repository.find_active_plans()]
        assert slugs == ["mini", "essencial"]

    def test_inactive_plan_not_found_by_slug(self, app, plan):
        plan.active = False
        from headshop.database import db
        db.session.commit()
        assert subscription_repository.find_plan_by_slug("essencial") is None


class TestCreateSubscription:

    def test_first_cycle_paid_with_payment(self, app, user, plan, subscription_order):
        order, payment = subscription_order
        sub = subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, order.total_amount, order_id=order.id, payment_id=payment.id)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert len(sub.cycles) == 1
        assert sub.cycles[0].status == CycleStatus.PAID
        assert sub.cycles[0].amount == Decimal("65.80")
        assert sub.next_billing_at.day == 1
        assert subscription_repository.cycle_exists_for_payment(payment.id)

    def test_first_cycle_pending_without_payment(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        assert sub.cycles[0].status == CycleStatus.PENDING

    def test_explicit_next_billing(self, app, user, plan):
        when = datetime(2030, 3, 15)
        sub = subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, plan.price, next_billing_at=when)
        assert sub.next_billing_at == when

    def test_second_active_subscription_rejected(self, app, user, plan):
        subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        with pytest.raises(ActiveSubscriptionExists):
            subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        assert Subscription.query.filter_by(user_id=user.id).count() == 1

    def test_paused_does_not_block_new_active(self, app, user, plan):
        first = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        subscription_repository.update_subscription_status(first, SubscriptionStatus.PAUSED)
        second = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        assert second.status == SubscriptionStatus.ACTIVE
        assert subscription_repository.find_user_current_subscription(user.id).id == second.id


class TestStatusUpdates:

    def test_cancel_sets_canceled_at(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        subscription_repository.update_subscription_status(sub, SubscriptionStatus.CANCELED)
        assert sub.status == SubscriptionStatus.CANCELED
        assert sub.canceled_at is not None

    def test_reactivate_clears_canceled_at(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        subscription_repository.cancel_subscription(sub)
        subscription_repository.update_subscription_status(sub, SubscriptionStatus.ACTIVE)
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.canceled_at is None
        assert sub.next_billing_at.day == 1

    def test_reactivate_conflict(self, app, user, plan):
        old = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        subscription_repository.cancel_subscription(old)
        subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)

        with pytest.raises(ActiveSubscriptionExists):
            subscription_repository.update_subscription_status(old, SubscriptionStatus.ACTIVE)
        assert subscription_repository.find_subscription_by_id(old.id).status == SubscriptionStatus.CANCELED

    def test_unknown_status(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        with pytest.raises(ValueError):
            subscription_repository.update_subscription_status(sub, "EXPIRED")


class TestRenewalCycles:

    def test_renewal_starts_at_next_billing(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, plan.price, next_billing_at=datetime(2026, 1, 15, 10, 0))

        cycle = subscription_repository.create_renewal_cycle(sub, plan.price)

        assert cycle.cycle_start == datetime(2026, 1, 15, 10, 0)
        assert cycle.cycle_end == datetime(2026, 2, 15, 10, 0)
        assert cycle.status == CycleStatus.PENDING
        assert sub.next_billing_at == datetime(2026, 2, 1)

    def test_month_end_clamped(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, plan.price, next_billing_at=datetime(2026, 1, 31))
        cycle = subscription_repository.create_renewal_cycle(sub, plan.price)
        assert cycle.cycle_end == datetime(2026, 2, 28)


class TestProviderLookup:

    def test_find_by_provider_sub_id_filters_status(self, app, user, plan):
        sub = subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, plan.price, provider_sub_id="pre-abc")
        subscription_repository.cancel_subscription(sub)

        assert subscription_repository.find_by_provider_sub_id("pre-abc") is None
        assert subscription_repository.find_by_provider_sub_id("pre-abc", statuses=()).id == sub.id
        assert subscription_repository.find_by_provider_sub_id(None) is None
