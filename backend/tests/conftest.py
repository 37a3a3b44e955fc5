"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Test database, markers and marketplace fixtures
WHY: Every test starts from empty tables with a known farmer, buyers and listing
HOW: Point settings at a test SQLite file before the package is imported
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./data/test_farm_exchange.db")
os.environ.setdefault("LOG_FILE", "./data/logs/test.log")

import pytest
from decimal import Decimal

from farm_exchange.core.database import Base, engine, init_db
from farm_exchange.services.capability_gate import Caller
from farm_exchange.services.inventory_ledger import inventory_ledger
from farm_exchange.services.profile_directory import profile_directory


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "concurrency: Tests that race threads against one harvest"
    )


@pytest.fixture(autouse=True)
def fresh_database():
    """
    Create a fresh database for each test.

    WHAT: Setup and teardown test tables
    WHY: Ensure test isolation
    HOW: Drop/create all tables before and after each test
    """
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


def as_caller(profile) -> Caller:
    return Caller(profile_id=profile.id, role=profile.role)


@pytest.fixture
def farmer():
    profile = profile_directory.register("Fern Fields", "fern@example.com", "farmer", location="Valley")
    return as_caller(profile)


@pytest.fixture
def other_farmer():
    profile = profile_directory.register("Oscar Orchard", "oscar@example.com", "farmer")
    return as_caller(profile)


@pytest.fixture
def buyer():
    profile = profile_directory.register("Ada Buyer", "ada@example.com", "buyer")
    return as_caller(profile)


@pytest.fixture
def other_buyer():
    profile = profile_directory.register("Ben Buyer", "ben@example.com", "buyer")
    return as_caller(profile)


@pytest.fixture
def harvest(farmer):
    """Ten units at 2.00 each."""
    return inventory_ledger.create_listing(farmer, {
        "title": "Heirloom Tomatoes",
        "description": "Vine ripened",
        "category": "vegetables",
        "price": Decimal("2.00"),
        "unit": "kg",
        "quantity": Decimal("10"),
    })
