"""
Pytest configuration and shared fixtures.

Every test gets a fresh in-memory SQLite schema. The engine is built through
database.base.build_engine so SAVEPOINTs behave the way they do on PostgreSQL.
"""
import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import itertools
import pytest
from decimal import Decimal
from sqlalchemy.orm import sessionmaker

import modules  # noqa: F401
from database.base import Base, build_engine
from modules.orders.models import Order
from modules.referrals.service import ReferralService
from modules.users.models import User, UserRole

_counter = itertools.count(1)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Factory for committed users"""
    def _make_user(role: UserRole = UserRole.CONSUMER, first_name: str = "Test", last_name: str = "User") -> User:
        n = next(_counter)
        user = User(
            email=f"{role.value}{n}@freshfarmily.test",
            first_name=first_name,
            last_name=f"{last_name}{n}",
            role=role,
        )
        db.add(user)
        db.commit()
        return user
    return _make_user


@pytest.fixture
def make_order(db):
    """Factory for committed orders"""
    def _make_order(user: User, subtotal=Decimal("20.00"), delivery_fee=Decimal("5.99")) -> Order:
        order = Order(
            order_number=f"FF-{next(_counter):06d}",
            user_id=user.id,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            total_amount=subtotal + delivery_fee,
        )
        db.add(order)
        db.commit()
        return order
    return _make_order


@pytest.fixture
def service(db):
    return ReferralService(db)


@pytest.fixture
def referrer_codes(service):
    """Generate both outbound codes for a user and return them"""
    def _codes(user: User) -> dict:
        result = service.generate_referral_code(user.id, user.role)
        assert result.success, result.message
        return result.data
    return _codes


@pytest.fixture
def client(db):
    """
    TestClient with the session and the authenticated user overridden.
    Use client.login(user) to pick the caller.
    """
    from fastapi.testclient import TestClient
    from database.base import get_db
    from server import app
    from shared.dependencies import get_current_user

    from fastapi import HTTPException

    class AuthTestClient(TestClient):
        user = None

        def login(self, user):
            self.user = user

    test_client = AuthTestClient(app)

    def _current_user():
        if test_client.user is None:
            raise HTTPException(status_code=401, detail="Could not validate credentials")
        return test_client.user

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = _current_user

    yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def make_settings():
    """Frozen Settings with overrides, for services running under other limits"""
    from config.settings import Settings

    def _make_settings(**overrides) -> Settings:
        return Settings(JWT_SECRET_KEY="test-secret-key", **overrides)
    return _make_settings
