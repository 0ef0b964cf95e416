import pytest
import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from prometheus_client import REGISTRY

# Set test environment variables
os.environ["TESTING"] = "true"
os.environ["HEADSHOP_LOG_JSON"] = "false"
os.environ["RATELIMIT_ENABLED"] = "false"
os.environ["HEADSHOP_ADMIN_TOKEN"] = "test-admin-token"
os.environ["MP_ACCESS_TOKEN"] = ""
os.environ["MP_WEBHOOK_SECRET"] = ""
os.environ["SHIPPING_USE_EXTERNAL_API"] = "false"

from headshop.schemas.gateway import GatewayPayment, PixCharge, Preapproval  # noqa: E402
from headshop.services.mercadopago.errors import GatewayNotFoundError  # noqa: E402


class FakeGateway:
    """In-memory stand-in for MercadoPagoClient."""

    def __init__(self):
        self.payments = {}
        self.preapprovals = {}
        self.calls = []
        self.pix_error = None
        self.card_result = None
        self.card_error = None
        self.preapproval_error = None
        self.next_preapproval_id = "2c938084726fca480172750000000000"

    def add_payment(self, **fields):
        payment = GatewayPayment.model_validate(fields)
        self.payments[payment.id] = payment
        return payment

    def add_preapproval(self, **fields):
        preapproval = Preapproval.model_validate(fields)
        self.preapprovals[preapproval.id] = preapproval
        return preapproval

    def create_pix_payment(self, request):
        self.calls.append(("create_pix_payment", request))
        if self.pix_error:
            raise self.pix_error
        return PixCharge(
            payment_id="1234567890",
            status="pending",
            qr_code="00020126580014br.gov.bcb.pix",
            qr_code_base64="iVBORw0KGgo=",
            ticket_url="https://www.mercadopago.com.br/payments/1234567890/ticket",
            expiration_date=datetime.now(timezone.utc) + timedelta(minutes=30),
        )

    def create_card_payment(self, request):
        self.calls.append(("create_card_payment", request))
        if self.card_error:
            raise self.card_error
        return self.card_result

    def create_preapproval(self, request):
        self.calls.append(("create_preapproval", request))
        if self.preapproval_error:
            raise self.preapproval_error
        return self.add_preapproval(
            id=self.next_preapproval_id,
            status="authorized",
            external_reference=request.external_reference,
            next_payment_date=request.start_date,
        )

    def get_payment(self, payment_id):
        self.calls.append(("get_payment", payment_id))
        if payment_id not in self.payments:
            raise GatewayNotFoundError("Payment not found", 404)
        return self.payments[payment_id]

    def get_preapproval(self, preapproval_id):
        self.calls.append(("get_preapproval", preapproval_id))
        if preapproval_id not in self.preapprovals:
            raise GatewayNotFoundError("Preapproval not found", 404)
        return self.preapprovals[preapproval_id]

    def _update_preapproval(self, operation, preapproval_id, status):
        self.calls.append((operation, preapproval_id))
        if self.preapproval_error:
            raise self.preapproval_error
        return self.add_preapproval(id=preapproval_id, status=status)

    def pause_preapproval(self, preapproval_id):
        return self._update_preapproval("pause_preapproval", preapproval_id, "paused")

    def resume_preapproval(self, preapproval_id):
        return self._update_preapproval("resume_preapproval", preapproval_id, "authorized")

    def cancel_preapproval(self, preapproval_id):
        return self._update_preapproval("cancel_preapproval", preapproval_id, "cancelled")

    def called(self, operation):
        return [args for name, args in self.calls if name == operation]


@pytest.fixture(autouse=True)
def clear_prometheus_registry():
    """Clear the default prometheus registry before each test."""
    collectors = list(REGISTRY._collector_to_names.keys())
    for collector in collectors:
        REGISTRY.unregister(collector)
    yield


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()
    with patch.dict(os.environ, {
        "DATABASE_URL": f"sqlite:///{db_path}",
    }):
        from headshop.factory import create_app
        from headshop.database import db
        app = create_app()
        app.extensions["mercadopago"] = FakeGateway()
        with app.app_context():
            db.create_all()
            yield app
            db.session.remove()
            db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions["mercadopago"]


@pytest.fixture
def metrics(app):
    return app.extensions["metrics"]


@pytest.fixture
def admin_headers():
    return {"Authorization": "Bearer test-admin-token"}


@pytest.fixture
def user(app):
    from headshop.database import db
    from headshop.models import User
    user = User(email="cliente@example.com", full_name="Maria Souza Lima", whatsapp="11999990000")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def blocked_user(app):
    from headshop.database import db
    from headshop.models import User, UserStatus
    user = User(email="bloqueado@example.com", full_name="Joao Bloqueado", status=UserStatus.BLOCKED)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def address(app, user):
    from headshop.database import db
    from headshop.models import Address
    address = Address(
        user_id=user.id,
        street="Avenida Paulista",
        number="1000",
        neighborhood="Bela Vista",
        city="São Paulo",
        state="SP",
        zip_code="01310100",
    )
    db.session.add(address)
    db.session.commit()
    return address


@pytest.fixture
def shipping_profile(app):
    from headshop.repositories import shipping_repository
    return shipping_repository.create_profile(
        name="Caixa Média", weight_kg=Decimal("1.500"), width_cm=25, height_cm=15, length_cm=35)


@pytest.fixture
def plan(app, shipping_profile):
    from headshop.database import db
    from headshop.models import SubscriptionPlan
    plan = SubscriptionPlan(
        name="Plano Essencial",
        slug="essencial",
        description="Kit mensal",
        price=Decimal("49.90"),
        shipping_profile_id=shipping_profile.id,
    )
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture
def subscription_order(app, user, plan, address):
    """A PENDING subscription order with one PENDING payment."""
    from headshop.repositories import order_repository, payment_repository
    order = order_repository.create_subscription_order(
        user.id, plan, address.snapshot(user), shipping_amount=Decimal("15.90"))
    payment = payment_repository.create_payment(order.id, order.total_amount, method="pix")
    return order, payment


@pytest.fixture
def user_headers(user):
    return {"X-User-ID": user.id}
