"""
Schema and constraint tests.

WHAT: Test CHECK constraints and foreign key delete policies
WHY: Quantity/status consistency and history retention hold even for writes that bypass the services
HOW: Insert invalid rows directly and verify IntegrityError is raised
"""

from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from farm_exchange.core.database import SessionLocal
from farm_exchange.core.models import Profile, Harvest, Transaction, Message, Role, HarvestStatus


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


def add_profiles(db):
    farmer = Profile(full_name="Fern Fields", email="fern@example.com", role=Role.FARMER)
    buyer = Profile(full_name="Ada Buyer", email="ada@example.com", role=Role.BUYER)
    db.add_all([farmer, buyer])
    db.flush()
    return farmer, buyer


def add_harvest(db, owner, quantity="5", status=HarvestStatus.AVAILABLE, price="1.00"):
    harvest = Harvest(
        owner_id=owner.id, title="Kale", category="greens", price=Decimal(price), unit="bunch",
        quantity_available=Decimal(quantity), status=status,
    )
    db.add(harvest)
    db.flush()
    return harvest


@pytest.mark.unit
class TestCheckConstraints:
    """Test CHECK constraints."""

    def test_harvest_quantity_non_negative(self, db_session):
        farmer, _ = add_profiles(db_session)
        with pytest.raises(IntegrityError):
            add_harvest(db_session, farmer, quantity="-1")

    def test_harvest_price_positive(self, db_session):
        farmer, _ = add_profiles(db_session)
        with pytest.raises(IntegrityError):
            add_harvest(db_session, farmer, price="0")

    @pytest.mark.parametrize("quantity,status", [
        ("0", HarvestStatus.AVAILABLE),
        ("3", HarvestStatus.SOLD_OUT),
    ])
    def test_harvest_status_matches_quantity(self, db_session, quantity, status):
        farmer, _ = add_profiles(db_session)
        with pytest.raises(IntegrityError):
            add_harvest(db_session, farmer, quantity=quantity, status=status)

    def test_sold_out_with_zero_is_valid(self, db_session):
        farmer, _ = add_profiles(db_session)
        harvest = add_harvest(db_session, farmer, quantity="0", status=HarvestStatus.SOLD_OUT)
        assert harvest.version == 1

    def test_message_not_to_self(self, db_session):
        farmer, _ = add_profiles(db_session)
        db_session.add(Message(sender_id=farmer.id, recipient_id=farmer.id, subject="Me", content="Hi"))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_transaction_quantity_positive(self, db_session):
        farmer, buyer = add_profiles(db_session)
        db_session.add(Transaction(
            buyer_id=buyer.id, seller_id=farmer.id, harvest_title="Kale", unit="bunch",
            quantity=Decimal("0"), unit_price=Decimal("1.00"), total_price=Decimal("0.00"),
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()

    def test_email_unique(self, db_session):
        add_profiles(db_session)
        db_session.add(Profile(full_name="Copy", email="fern@example.com", role=Role.BUYER))
        with pytest.raises(IntegrityError):
            db_session.flush()


@pytest.mark.unit
class TestDeletePolicies:
    """Test foreign key ON DELETE behaviour."""

    def test_profile_with_transaction_is_restricted(self, db_session):
        farmer, buyer = add_profiles(db_session)
        db_session.add(Transaction(
            buyer_id=buyer.id, seller_id=farmer.id, harvest_title="Kale", unit="bunch",
            quantity=Decimal("1"), unit_price=Decimal("1.00"), total_price=Decimal("1.00"),
        ))
        db_session.flush()
        with pytest.raises(IntegrityError):
            db_session.execute(text("DELETE FROM profiles WHERE id = :id"), {"id": buyer.id})

    def test_harvest_delete_nulls_references(self, db_session):
        farmer, buyer = add_profiles(db_session)
        harvest = add_harvest(db_session, farmer)
        transaction = Transaction(
            harvest_id=harvest.id, buyer_id=buyer.id, seller_id=farmer.id, harvest_title="Kale",
            unit="bunch", quantity=Decimal("1"), unit_price=Decimal("1.00"), total_price=Decimal("1.00"),
        )
        message = Message(
            sender_id=buyer.id, recipient_id=farmer.id, harvest_id=harvest.id, subject="Kale", content="Fresh?",
        )
        db_session.add_all([transaction, message])
        db_session.flush()

        transaction_id, message_id = transaction.id, message.id

        db_session.execute(text("DELETE FROM harvests WHERE id = :id"), {"id": harvest.id})
        db_session.expunge_all()
        assert db_session.query(Harvest).filter_by(id=harvest.id).first() is None
        assert db_session.get(Transaction, transaction_id).harvest_id is None
        assert db_session.get(Message, message_id).harvest_id is None

    def test_profile_delete_cascades_to_harvests(self, db_session):
        farmer, _ = add_profiles(db_session)
        harvest = add_harvest(db_session, farmer)
        harvest_id = harvest.id

        db_session.execute(text("DELETE FROM profiles WHERE id = :id"), {"id": farmer.id})
        db_session.expunge_all()
        assert db_session.query(Harvest).filter_by(id=harvest_id).first() is None
        assert db_session.query(Profile).filter_by(id=farmer.id).first() is None
