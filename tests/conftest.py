"""
Shared fixtures: an in-memory database, a frozen clock and seed records.

The clock is frozen at 2024-01-11 12:00 UTC, so a transaction due on
2024-01-01 is exactly ten days late.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from condohub.core.clock import FixedClock
from condohub.core.database import Base, enable_sqlite_savepoints
from condohub.models import (
    Condominium, Unit, User, FinancialTransaction, MaintenanceRequest, UserRole,
    TransactionType, TransactionCategory, TransactionStatus, MaintenanceStatus
)

NOW = datetime(2024, 1, 11, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    # expire_on_commit=False keeps seeded objects readable without reopening
    # a transaction on the shared in-memory connection
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def condominium(db):
    condo = Condominium(name="Residencial Aurora")
    db.add(condo)
    db.commit()
    return condo


def _user(db, name, role):
    user = User(name=name, email=f"{name.lower()}@example.com", role=role)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    return _user(db, "Admin", UserRole.ADMIN.value)


@pytest.fixture
def manager(db):
    return _user(db, "Manager", UserRole.MANAGER.value)


@pytest.fixture
def syndic(db):
    return _user(db, "Syndic", UserRole.SYNDIC.value)


@pytest.fixture
def resident(db):
    return _user(db, "Resident", UserRole.RESIDENT.value)


@pytest.fixture
def unit(db, condominium, resident):
    unit = Unit(
        condominium_id=condominium.id,
        number="101",
        block="A",
        resident_user_id=resident.id,
        monthly_amount=Decimal("450.00"),
        payment_due_day=21,
    )
    db.add(unit)
    db.commit()
    return unit


@pytest.fixture
def make_transaction(db, condominium):
    """Factory for committed transactions; keyword arguments override defaults"""
    def _make(**overrides):
        fields = {
            "condominium_id": condominium.id,
            "type": TransactionType.INCOME.value,
            "category": TransactionCategory.CONDOMINIUM_FEE.value,
            "description": "Monthly fee",
            "amount": Decimal("100.00"),
            "due_date": date(2024, 1, 1),
            "status": TransactionStatus.PENDING.value,
        }
        fields.update(overrides)
        transaction = FinancialTransaction(**fields)
        db.add(transaction)
        db.commit()
        return transaction
    return _make


@pytest.fixture
def make_request(db, condominium, resident):
    """Factory for committed maintenance requests"""
    def _make(**overrides):
        fields = {
            "condominium_id": condominium.id,
            "user_id": resident.id,
            "title": "Leaking pipe",
            "description": "Water leaking under the kitchen sink",
            "status": MaintenanceStatus.IN_PROGRESS.value,
            "estimated_cost": Decimal("250.00"),
        }
        fields.update(overrides)
        request = MaintenanceRequest(**fields)
        db.add(request)
        db.commit()
        return request
    return _make
