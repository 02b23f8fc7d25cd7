"""
Shared fixtures: in-memory SQLite per test, factories, HTTP client.

Environment is pinned before any project module is imported, because
config.settings reads it at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYMENT_GATEWAY"] = "sandbox"
os.environ["GATEWAY_KEY_ID"] = "rzp_test_key"
os.environ["GATEWAY_KEY_SECRET"] = "test_secret"
os.environ["NOTIFY_API_KEY"] = ""
os.environ["NOTIFY_API_URL"] = ""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from config.database import Base, get_db, enable_sqlite_savepoints
from common.security import compute_payment_signature
from modules.cart.service import cart_service
from modules.catalog.models import Product
from modules.checkout.service import checkout_service
from modules.coupon.models import Coupon
from modules.user.models import User, UserAddress, UserRole


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


# ==========================================
# Factories
# ==========================================

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=UserRole.USER.value, is_blocked=False, email=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            full_name=f"Test User {counter['n']}",
            role=role,
            is_blocked=is_blocked,
        )
        db.add(user)
        db.flush()
        return user

    return _make


@pytest.fixture
def make_address(db):
    def _make(user):
        address = UserAddress(
            user_id=user.id,
            address_line1="12 Lake Road",
            city="Pune",
            state="MH",
            pincode="411001",
            phone_number="9876543210",
        )
        db.add(address)
        db.flush()
        return address

    return _make


@pytest.fixture
def make_product(db):
    def _make(price="100.00", stock=5, name="Steel Bottle", is_active=True):
        product = Product(
            name=name,
            price=Decimal(price),
            stock_quantity=stock,
            reserved_quantity=0,
            is_active=is_active,
        )
        db.add(product)
        db.flush()
        return product

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", percent="10", min_order="0", **kwargs):
        coupon = Coupon(
            code=code,
            discount_percent=Decimal(percent),
            min_order_amount=Decimal(min_order),
            max_per_user=kwargs.pop("max_per_user", 1),
            current_uses=kwargs.pop("current_uses", 0),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db.add(coupon)
        db.flush()
        return coupon

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN.value)


@pytest.fixture
def address(make_address, user):
    return make_address(user)


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def ready_checkout(db, user, address, product):
    """Cart with 2 x product (100.00), checkout with address, optional coupon."""
    def _make(qty=2, coupon_code=None, target_user=None, target_address=None, target_product=None):
        u = target_user or user
        a = target_address or address
        p = target_product or product
        cart_service.add_item(db, u.id, p.id, qty)
        checkout_service.create_checkout(db, u.id)
        checkout_service.set_address(db, u.id, a.id)
        if coupon_code:
            checkout_service.apply_coupon(db, u.id, coupon_code)
        return checkout_service.get_active_session(db, u.id)

    return _make


@pytest.fixture
def sign():
    def _sign(gateway_order_id, gateway_payment_id):
        return compute_payment_signature(gateway_order_id, gateway_payment_id)

    return _sign
