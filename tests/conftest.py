"""Pytest configuration and shared fixtures."""

from decimal import Decimal
from itertools import count

import pytest
import requests
from flask import g
from flask_login import FlaskLoginClient

from settlement import create_app
from settlement.extensions import db
from settlement.models import PaymentTransaction, User
from settlement.services import BookingService
from settlement.services.payment_service import PaymentGateway

_emails = count(1)


class FakeGateway(PaymentGateway):
    def __init__(self, fail=False):
        self.fail = fail
        self.charges = []

    def create_charge(self, order_id, amount, customer_details):
        if self.fail:
            raise requests.ConnectionError("gateway down")
        self.charges.append((order_id, amount, customer_details))
        return {"reference": f"ref-{order_id}", "redirect_url": f"https://pay.example/{order_id}"}


def _make_app(overrides=None):
    app = create_app("testing", overrides=overrides)
    app.test_client_class = FlaskLoginClient
    app.extensions["payment_gateway"] = FakeGateway()

    # Requests share the fixture's app context, and with it `g`. Flask-Login caches
    # the loaded user there, so drop it or one client's user answers for the next.
    @app.before_request
    def _forget_cached_login():
        g.pop("_login_user", None)

    return app


@pytest.fixture
def app():
    app = _make_app()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database so several threads can share it."""
    app = _make_app(
        {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'settlement.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def make_user(app):
    def _make_user(role="customer", **fields):
        n = next(_emails)
        user = User(
            full_name=fields.pop("full_name", f"{role.title()} {n}"),
            email=fields.pop("email", f"{role}{n}@example.com"),
            phone=fields.pop("phone", f"08123{n:06d}"),
            role=role,
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user("customer")


@pytest.fixture
def talent(make_user):
    return make_user("talent")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_booking(customer, talent):
    def _make_booking(base_price=100000, talent_user=None, service_type="video_call"):
        return BookingService.create_booking(
            customer_id=customer.id,
            talent_id=(talent_user or talent).id,
            service_type=service_type,
            base_price=base_price,
        )

    return _make_booking


@pytest.fixture
def pay():
    def _pay(booking, status="paid"):
        transaction = booking.current_transaction()
        BookingService.apply_payment_status(transaction.gateway_order_id, status)
        return BookingService.get_booking(booking.id)

    return _pay


@pytest.fixture
def seed_earnings(app):
    def _seed(talent_id, amount):
        """Record a settled service charge worth `amount` to the talent."""
        db.session.add(
            PaymentTransaction(
                transaction_type="service",
                talent_id=talent_id,
                amount=Decimal(amount),
                payment_status="paid",
                commission_rate=Decimal("0.20"),
                platform_fee=0,
                talent_earnings=Decimal(amount),
            )
        )
        db.session.commit()

    return _seed