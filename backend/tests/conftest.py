"""
Pytest fixtures for steeltrack backend tests.

Provides the in-memory database, a recording SMS sender, one ACTIVE user per
role (plus a second dealer/ASO for ownership checks), a frozen clock and
helpers to authenticate API calls.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from steeltrack import create_app
from steeltrack.extensions import db
from steeltrack.models import User, Product
from steeltrack.models.identity import (
    ROLE_SUPER_ADMIN,
    ROLE_ASO,
    ROLE_DEALER,
    ROLE_BARBENDER,
    STATUS_ACTIVE,
)
from steeltrack.services import mapping_service, stock_service, token_service
from steeltrack.services.sms_service import SmsSender


# Modules whose notion of "now" the frozen clock replaces.
# token_service is left on the real clock: python-jose checks exp against it.
CLOCK_MODULES = (
    "steeltrack.services.otp_service",
    "steeltrack.services.rate_limit_service",
    "steeltrack.services.identity_service",
    "steeltrack.services.stock_service",
    "steeltrack.services.ledger_service",
    "steeltrack.services.reward_service",
    "steeltrack.services.security_service",
)

FROZEN_NOW = datetime(2026, 3, 10, 9, 0, 0)


class RecordingSmsSender(SmsSender):
    """
    Keeps every code instead of sending it.

    Set deliver=False to simulate a refused message, or error to an exception
    instance to simulate a sender that blows up.
    """

    def __init__(self):
        self.sent = []
        self.deliver = True
        self.error = None

    def send(self, country_code, phone_no, code):
        self.sent.append((country_code, phone_no, code))
        if self.error is not None:
            raise self.error
        return self.deliver

    @property
    def last_code(self):
        return self.sent[-1][2]


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'JWT_SECRET': 'test-secret',
        'OTP_HASH_ROUNDS': 4,
        'FAST2SMS_API_KEY': '',
        'STOCK_EPOCH': '2025-01-01',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before the test; keep the schema."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def sms(app):
    """Swap the SMS sender for one that records codes."""
    previous = app.extensions["sms_sender"]
    sender = RecordingSmsSender()
    app.extensions["sms_sender"] = sender
    yield sender
    app.extensions["sms_sender"] = previous


@pytest.fixture(scope='function')
def clock(monkeypatch):
    """Freeze service-layer time at FROZEN_NOW; advance with clock.advance(minutes=5)."""
    frozen = FrozenClock(FROZEN_NOW)
    for module in CLOCK_MODULES:
        monkeypatch.setattr(f"{module}.utcnow", frozen)
    return frozen


def make_user(role, phone_no, name, status=STATUS_ACTIVE, **kwargs):
    user = User(
        country_code="91",
        phone_no=phone_no,
        name=name,
        role=role,
        status=status,
        last_otp_validated_at=FROZEN_NOW if status == STATUS_ACTIVE else None,
        **kwargs,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(ROLE_SUPER_ADMIN, "9000000001", "Head Office")


@pytest.fixture(scope='function')
def aso(db_session, admin):
    return make_user(ROLE_ASO, "9000000002", "Area Officer North", created_by_id=admin.id)


@pytest.fixture(scope='function')
def other_aso(db_session, admin):
    return make_user(ROLE_ASO, "9000000003", "Area Officer South", created_by_id=admin.id)


@pytest.fixture(scope='function')
def dealer(db_session, admin):
    return make_user(ROLE_DEALER, "9000000011", "Shree Steels", created_by_id=admin.id)


@pytest.fixture(scope='function')
def other_dealer(db_session, admin):
    return make_user(ROLE_DEALER, "9000000012", "Ganesh Traders", created_by_id=admin.id)


@pytest.fixture(scope='function')
def barbender(db_session, dealer):
    return make_user(
        ROLE_BARBENDER, "9000000021", "Ravi Kumar",
        dealer_id=dealer.id, created_by_id=dealer.id,
    )


@pytest.fixture(scope='function')
def other_barbender(db_session, other_dealer):
    return make_user(
        ROLE_BARBENDER, "9000000022", "Suresh",
        dealer_id=other_dealer.id, created_by_id=other_dealer.id,
    )


@pytest.fixture(scope='function')
def product(db_session, admin):
    product = Product(
        code="STL-012",
        name="TMT Bar 12mm",
        category="tmt_bar",
        thickness_inch=Decimal("0.472"),
        grade="Fe 500",
        unit="kg",
        price_per_unit=Decimal("285"),
        created_by_id=admin.id,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def mapped_dealer(admin, aso, dealer):
    """dealer mapped to aso."""
    mapping_service.map_dealer_to_aso(admin.id, aso.id, dealer.id)
    db.session.commit()
    return dealer


@pytest.fixture(scope='function')
def stocked_dealer(clock, aso, mapped_dealer, product):
    """Mapped dealer holding 500 kg received from aso."""
    dispatch = stock_service.dispatch_stock(aso.id, mapped_dealer.id, product.id, 500)
    db.session.commit()
    stock_service.receive_dispatch(mapped_dealer.id, dispatch.id)
    db.session.commit()
    return mapped_dealer


@pytest.fixture(scope='function')
def auth_headers(app):
    """Build Authorization headers for a user: auth_headers(user)."""
    def _headers(user):
        token = token_service.issue(user).token
        return {"Authorization": f"Bearer {token}"}
    return _headers
