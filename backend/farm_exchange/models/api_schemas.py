"""
Pydantic API schemas.

WHAT: Request and response models for the FastAPI layer
WHY: Type-safe validation and serialization at the request boundary
HOW: Pydantic v2 models; services receive plain dicts and typed values
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ========== Profiles ==========

class ProfileCreate(BaseModel):
    """Registration payload; credentials are handled by the identity provider."""
    full_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: Literal["farmer", "buyer"]
    location: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    bio: Optional[str] = Field(None, max_length=1000)
    avatar_url: Optional[str] = Field(None, max_length=500)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    location: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    bio: Optional[str] = Field(None, max_length=1000)
    avatar_url: Optional[str] = Field(None, max_length=500)


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    email: str
    role: str
    location: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime

    @field_validator("role", mode="before")
    @classmethod
    def role_value(cls, v):
        return getattr(v, "value", v)


# ========== Harvests ==========

class HarvestCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: str = Field(..., min_length=1, max_length=50)
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    unit: str = Field(..., min_length=1, max_length=32)
    quantity: Decimal = Field(..., ge=0, max_digits=12, decimal_places=3)
    image_url: Optional[str] = Field(None, max_length=500)
    harvest_date: Optional[date] = None


class HarvestUpdate(BaseModel):
    """Editable listing fields. Quantity and status are not accepted."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    unit: Optional[str] = Field(None, min_length=1, max_length=32)
    image_url: Optional[str] = Field(None, max_length=500)
    harvest_date: Optional[date] = None


class HarvestOut(BaseModel):
    id: str
    owner_id: str
    farmer_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    category: str
    price: Decimal
    unit: str
    quantity_available: Decimal
    status: str
    image_url: Optional[str] = None
    harvest_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class HarvestListResponse(BaseModel):
    harvests: List[HarvestOut]
    total: int


class PurchaseCreate(BaseModel):
    quantity: Decimal = Field(..., gt=0, max_digits=12, decimal_places=3)


# ========== Transactions ==========

class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    harvest_id: Optional[str] = None
    buyer_id: str
    seller_id: str
    harvest_title: str
    unit: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    status: str
    transaction_date: datetime

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v):
        return getattr(v, "value", v)


class TransactionStatusUpdate(BaseModel):
    status: Literal["pending", "completed", "cancelled"]


class TransactionStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    pending: int
    completed: int
    cancelled: int
    revenue: Decimal


class TransactionListResponse(BaseModel):
    transactions: List[TransactionOut]
    stats: TransactionStatsOut


# ========== Messages ==========

class MessageCreate(BaseModel):
    recipient_id: str = Field(..., min_length=1, max_length=36)
    subject: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=5000)
    harvest_id: Optional[str] = Field(None, max_length=36)


class MessageReply(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    recipient_id: str
    harvest_id: Optional[str] = None
    subject: str
    content: str
    is_read: bool
    created_at: datetime


class InboxResponse(BaseModel):
    messages: List[MessageOut]
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


# ========== Dashboard ==========

class DashboardResponse(BaseModel):
    role: str
    unread_messages: int
    stats: TransactionStatsOut
    recent_listings: List[HarvestOut] = []
    recent_sales: List[TransactionOut] = []
    recent_purchases: List[TransactionOut] = []
