# -*- coding: utf-8 -*-
import pytest

from headshop.models import PaymentStatus, SubscriptionStatus
from headshop.services.payment_status import (
    map_payment_status,
    map_polling_status,
    map_preapproval_status,
)


class TestPaymentStatusMapping:
    """Mercado Pago payment statuses onto local payment statuses."""

    @pytest.mark.parametrize("mp_status,expected", [
        ("approved", PaymentStatus.PAID),
        ("pending", PaymentStatus.PENDING),
        ("in_process", PaymentStatus.PENDING),
        ("authorized", PaymentStatus.PENDING),
        ("rejected", PaymentStatus.FAILED),
        ("cancelled", PaymentStatus.CANCELED),
        ("refunded", PaymentStatus.REFUNDED),
        ("charged_back", PaymentStatus.REFUNDED),
    ])
    def test_known_statuses(self, mp_status, expected):
        assert map_payment_status(mp_status) == expected

    def test_unknown_status_stays_pending(self):
        assert map_payment_status("something_new") == PaymentStatus.PENDING
        assert map_payment_status(None) == PaymentStatus.PENDING

    def test_case_insensitive(self):
        assert map_payment_status("APPROVED") == PaymentStatus.PAID


class TestPollingStatus:
    """Simplified vocabulary used by the checkout page."""

    def test_terminal_statuses_pass_through(self):
        assert map_polling_status("approved") == "approved"
        assert map_polling_status("rejected") == "rejected"
        assert map_polling_status("cancelled") == "cancelled"

    def test_everything_else_is_pending(self):
        assert map_polling_status("in_process") == "pending"
        assert map_polling_status("refunded") == "pending"
        assert map_polling_status(None) == "pending"


class TestPreapprovalStatus:

    def test_mapping(self):
        assert map_preapproval_status("authorized") == SubscriptionStatus.ACTIVE
        assert map_preapproval_status("paused") == SubscriptionStatus.PAUSED
        assert map_preapproval_status("cancelled") == SubscriptionStatus.CANCELED

    def test_pending_and_unknown_mean_no_change(self):
        assert map_preapproval_status("pending") is None
        assert map_preapproval_status("whatever") is None
