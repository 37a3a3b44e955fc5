"""
ORM models for the marketplace entity store.

WHAT: SQLAlchemy models for profiles, harvests, transactions and messages
WHY: Persist listings, purchase records and message threads
HOW: Declarative models with CHECK constraints mirroring the invariants
"""

from datetime import datetime
from uuid import uuid4
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Date, Text,
    ForeignKey, CheckConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from .database import Base


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Role(str, enum.Enum):
    """Closed set of profile roles."""
    FARMER = "farmer"
    BUYER = "buyer"


class HarvestStatus(str, enum.Enum):
    """Harvest availability values."""
    AVAILABLE = "available"
    SOLD_OUT = "sold_out"


class TransactionStatus(str, enum.Enum):
    """Transaction lifecycle values."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Profile(Base):
    """
    Profile table - a marketplace user.

    WHAT: Farmer or buyer identity with contact fields
    WHY: Owner of listings, party to transactions and messages
    HOW: Unique email, role fixed at creation
    """
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    full_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(SQLEnum(Role, values_callable=_values, name="profile_role"), nullable=False)
    location = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    bio = Column(String(1000), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    harvests = relationship(
        "Harvest", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self):
        return f"<Profile(id={self.id}, name={self.full_name}, role={self.role})>"


class Harvest(Base):
    """
    Harvest table - a sellable lot listed by a farmer.

    WHAT: Listing with price, unit and available quantity
    WHY: Source of inventory for reservations
    HOW: Version column guards concurrent writers; CHECKs keep quantity and status consistent
    """
    __tablename__ = "harvests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    owner_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    unit = Column(String(32), nullable=False)
    quantity_available = Column(Numeric(12, 3), nullable=False)
    status = Column(
        SQLEnum(HarvestStatus, values_callable=_values, name="harvest_status"),
        nullable=False,
        default=HarvestStatus.AVAILABLE
    )
    image_url = Column(String(500), nullable=True)
    harvest_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity_available >= 0", name="check_harvest_quantity_non_negative"),
        CheckConstraint("price > 0", name="check_harvest_price_positive"),
        CheckConstraint(
            "(status = 'sold_out' AND quantity_available = 0) OR "
            "(status = 'available' AND quantity_available > 0)",
            name="check_harvest_status_matches_quantity"
        ),
        Index("idx_harvest_owner", "owner_id"),
        Index("idx_harvest_status", "status"),
        Index("idx_harvest_category", "category"),
    )

    __mapper_args__ = {"version_id_col": version}

    owner = relationship("Profile", back_populates="harvests")

    def __repr__(self):
        return f"<Harvest(id={self.id}, title={self.title}, qty={self.quantity_available}, status={self.status})>"


class Transaction(Base):
    """
    Transaction table - a purchase record.

    WHAT: Buyer's reservation against a harvest with a price snapshot
    WHY: Record purchase intent; settlement happens out of band
    HOW: Seller, price and harvest details copied at creation, harvest FK nulled on delete
    """
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    harvest_id = Column(String(36), ForeignKey("harvests.id", ondelete="SET NULL"), nullable=True)
    buyer_id = Column(String(36), ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)
    seller_id = Column(String(36), ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)
    # Snapshot fields
    harvest_title = Column(String(200), nullable=False)
    unit = Column(String(32), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(14, 2), nullable=False)
    status = Column(
        SQLEnum(TransactionStatus, values_callable=_values, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING
    )
    transaction_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_transaction_quantity_positive"),
        CheckConstraint("total_price >= 0", name="check_transaction_total_non_negative"),
        Index("idx_transaction_buyer", "buyer_id"),
        Index("idx_transaction_seller", "seller_id"),
        Index("idx_transaction_harvest", "harvest_id"),
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, qty={self.quantity}, total={self.total_price}, status={self.status})>"


class Message(Base):
    """
    Message table - a directed note between two profiles.

    WHAT: Subject and body from sender to recipient, optionally about a harvest
    WHY: Buyers and farmers negotiate and follow up outside the purchase flow
    HOW: Profiles restrict deletion, harvest reference nulled on delete
    """
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    sender_id = Column(String(36), ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)
    recipient_id = Column(String(36), ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)
    harvest_id = Column(String(36), ForeignKey("harvests.id", ondelete="SET NULL"), nullable=True)
    subject = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("sender_id <> recipient_id", name="check_message_not_to_self"),
        Index("idx_message_sender", "sender_id"),
        Index("idx_message_recipient_unread", "recipient_id", "is_read"),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, subject={self.subject}, read={self.is_read})>"
