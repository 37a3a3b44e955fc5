"""
Inventory ledger.

WHAT: Owns harvest listings and every change to their available quantity
WHY: Quantity must never go negative or double-sell under concurrent purchases
HOW: Per-harvest keyed lock around read-check-decrement, version column as the storage-level guard
"""

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import joinedload, contains_eager
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import settings
from ..core.database import get_db, get_read_db
from ..core.locks import harvest_locks
from ..core.models import Harvest, Profile, HarvestStatus
from .capability_gate import Caller, Action, PurchaseRequest, capability_gate
from ..utils.exceptions import (
    NotFoundError,
    BusyError,
    ConflictError,
    ValidationError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

EDITABLE_FIELDS = ("title", "description", "category", "price", "unit", "image_url", "harvest_date")
LEDGER_FIELDS = ("quantity_available", "status")

# Scales of Harvest.price and Harvest.quantity_available
PRICE_STEP = Decimal("0.01")
QUANTITY_STEP = Decimal("0.001")


@dataclass(frozen=True)
class Reservation:
    """Successful check-and-decrement, with the harvest details observed under the lock."""
    harvest_id: str
    buyer_id: str
    seller_id: str
    quantity: Decimal
    unit_price: Decimal
    harvest_title: str
    unit: str
    remaining: Decimal


def to_decimal(value, field: str, step: Decimal) -> Decimal:
    """
    Coerce a numeric input to Decimal without going through float.

    The value must be finite and a whole multiple of `step`, the scale of
    the column it ends up in; finer values would be rounded by the store.
    """
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(
                f"{field} must be a number",
                field_errors=[{"field": field, "error": f"not a number: {value!r}"}]
            )
    if not number.is_finite():
        raise ValidationError(
            f"{field} must be finite",
            field_errors=[{"field": field, "error": f"not finite: {value!r}"}]
        )
    try:
        exact = number == number.quantize(step)
    except InvalidOperation:
        raise ValidationError(
            f"{field} is out of range",
            field_errors=[{"field": field, "error": f"out of range: {value!r}"}]
        )
    if not exact:
        raise ValidationError(
            f"{field} has more precision than {step}",
            field_errors=[{"field": field, "error": f"at most {-step.as_tuple().exponent} decimal places"}]
        )
    return number


def is_store_locked(error: OperationalError) -> bool:
    """True when SQLite gave up waiting for its write lock."""
    return "database is locked" in str(error.orig)


class InventoryLedger:
    """
    Sole path through which harvest quantity is read-and-mutated.

    Mutations of one harvest are serialized on that harvest's lock; mutations
    of different harvests never share a lock.
    """

    def __init__(self, session_scope=get_db, read_scope=get_read_db, gate=capability_gate, locks=harvest_locks):
        self._session_scope = session_scope
        self._read_scope = read_scope
        self._gate = gate
        self._locks = locks

    # Listing management

    def create_listing(self, owner: Caller, fields: dict) -> Harvest:
        """
        Create a harvest listing owned by `owner`.

        Quantity starts at fields["quantity"]; status is available, or
        sold_out for a zero-quantity lot.
        """
        self._gate.require(owner, Action.CREATE_LISTING)

        price = to_decimal(fields.get("price"), "price", PRICE_STEP)
        quantity = to_decimal(fields.get("quantity"), "quantity", QUANTITY_STEP)
        if price <= 0:
            raise ValidationError("price must be positive", [{"field": "price", "error": "must be > 0"}])
        if quantity < 0:
            raise ValidationError("quantity cannot be negative", [{"field": "quantity", "error": "must be >= 0"}])

        now = datetime.utcnow()
        with self._session_scope() as db:
            harvest = Harvest(
                owner_id=owner.profile_id,
                title=fields["title"],
                description=fields.get("description"),
                category=fields["category"],
                price=price,
                unit=fields["unit"],
                quantity_available=quantity,
                status=HarvestStatus.AVAILABLE if quantity > 0 else HarvestStatus.SOLD_OUT,
                image_url=fields.get("image_url"),
                harvest_date=fields.get("harvest_date"),
                created_at=now,
                updated_at=now,
            )
            db.add(harvest)
            db.flush()
            logger.info(f"Listing {harvest.id} created by {owner.profile_id} (qty={quantity} {harvest.unit})")
            return harvest

    def update_listing(self, harvest_id: str, owner: Caller, fields: dict) -> Harvest:
        """
        Edit descriptive fields of a listing.

        quantity_available and status are owned by reserve()/release() and
        are rejected here.
        """
        blocked = [name for name in LEDGER_FIELDS + ("quantity",) if name in fields]
        if blocked:
            raise ValidationError(
                "Quantity and status are not editable on a listing",
                field_errors=[{"field": name, "error": "not editable"} for name in blocked]
            )
        unknown = [name for name in fields if name not in EDITABLE_FIELDS]
        if unknown:
            raise ValidationError(
                "Unknown listing fields",
                field_errors=[{"field": name, "error": "unknown field"} for name in unknown]
            )
        if "price" in fields:
            fields = dict(fields, price=to_decimal(fields["price"], "price", PRICE_STEP))
            if fields["price"] <= 0:
                raise ValidationError("price must be positive", [{"field": "price", "error": "must be > 0"}])

        with self._locks.hold(harvest_id, settings.RESERVATION_LOCK_TIMEOUT):
            with self._session_scope() as db:
                harvest = db.get(Harvest, harvest_id)
                if harvest is None:
                    raise NotFoundError("Harvest", harvest_id)
                self._gate.require(owner, Action.EDIT_LISTING, harvest)

                for name, value in fields.items():
                    setattr(harvest, name, value)
                harvest.updated_at = datetime.utcnow()
                db.flush()
                logger.info(f"Listing {harvest_id} updated by {owner.profile_id}: {sorted(fields)}")
                return harvest

    def delete_listing(self, harvest_id: str, owner: Caller) -> None:
        """
        Remove a listing.

        Transactions keep their snapshot fields and messages keep their
        content; both lose only the harvest reference.
        """
        with self._locks.hold(harvest_id, settings.RESERVATION_LOCK_TIMEOUT):
            with self._session_scope() as db:
                harvest = db.get(Harvest, harvest_id)
                if harvest is None:
                    raise NotFoundError("Harvest", harvest_id)
                self._gate.require(owner, Action.DELETE_LISTING, harvest)
                db.delete(harvest)
        logger.info(f"Listing {harvest_id} deleted by {owner.profile_id}")

    # Reads

    def get(self, harvest_id: str) -> Harvest:
        with self._read_scope() as db:
            harvest = (
                db.query(Harvest)
                .options(joinedload(Harvest.owner))
                .filter(Harvest.id == harvest_id)
                .first()
            )
            if harvest is None:
                raise NotFoundError("Harvest", harvest_id)
            return harvest

    def browse(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Harvest], int]:
        """
        Available listings, newest first.

        Args:
            search: matched against title, description and farmer name
            category: exact category; "all" or None disables the filter

        Returns:
            (page of harvests, total matching)
        """
        limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
        with self._read_scope() as db:
            query = (
                db.query(Harvest)
                .join(Profile, Harvest.owner_id == Profile.id)
                .filter(Harvest.status == HarvestStatus.AVAILABLE, Harvest.quantity_available > 0)
            )
            if search:
                like = f"%{search}%"
                query = query.filter(or_(
                    Harvest.title.ilike(like),
                    Harvest.description.ilike(like),
                    Profile.full_name.ilike(like),
                ))
            if category and category != "all":
                query = query.filter(Harvest.category == category)

            total = query.count()
            rows = (
                query.options(contains_eager(Harvest.owner))
                .order_by(Harvest.created_at.desc(), Harvest.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            return rows, total

    def listings_for(self, owner: Caller) -> List[Harvest]:
        """All listings owned by `owner`, newest first, any status."""
        with self._read_scope() as db:
            return (
                db.query(Harvest)
                .filter(Harvest.owner_id == owner.profile_id)
                .order_by(Harvest.created_at.desc(), Harvest.id.desc())
                .all()
            )

    # Quantity accounting

    def reserve(self, buyer: Caller, harvest_id: str, quantity) -> Reservation:
        """
        Atomically check and decrement a harvest's available quantity.

        Busy and Conflict are retried up to RESERVATION_MAX_RETRIES times
        before surfacing.

        Raises:
            NotFoundError: no such harvest
            ForbiddenError: caller is not a buyer
            InsufficientQuantityError: quantity not in (0, quantity_available]; nothing changed
            BusyError: harvest lock not acquired in time
            ConflictError: harvest changed under us on every attempt
        """
        quantity = to_decimal(quantity, "quantity", QUANTITY_STEP)
        attempt = 0
        while True:
            try:
                return self._reserve_once(buyer, harvest_id, quantity)
            except (BusyError, ConflictError) as e:
                attempt += 1
                if attempt > settings.RESERVATION_MAX_RETRIES:
                    logger.warning(f"Reserve on {harvest_id} gave up after {attempt} attempts: {e.code}")
                    raise
                logger.debug(f"Reserve on {harvest_id} retry {attempt} after {e.code}")
                time.sleep(settings.RESERVATION_RETRY_DELAY * attempt)

    def _reserve_once(self, buyer: Caller, harvest_id: str, quantity: Decimal) -> Reservation:
        with self._locks.hold(harvest_id, settings.RESERVATION_LOCK_TIMEOUT):
            try:
                with self._session_scope() as db:
                    # Decision read happens inside the critical section
                    harvest = db.get(Harvest, harvest_id, with_for_update=True)
                    if harvest is None:
                        raise NotFoundError("Harvest", harvest_id)
                    self._gate.require(buyer, Action.PURCHASE, PurchaseRequest(harvest, quantity))

                    remaining = harvest.quantity_available - quantity
                    harvest.quantity_available = remaining
                    if remaining == 0:
                        harvest.status = HarvestStatus.SOLD_OUT
                    harvest.updated_at = datetime.utcnow()
                    db.flush()

                    reservation = Reservation(
                        harvest_id=harvest.id,
                        buyer_id=buyer.profile_id,
                        seller_id=harvest.owner_id,
                        quantity=quantity,
                        unit_price=harvest.price,
                        harvest_title=harvest.title,
                        unit=harvest.unit,
                        remaining=remaining,
                    )
            except StaleDataError:
                raise ConflictError(harvest_id)
            except OperationalError as e:
                if not is_store_locked(e):
                    raise
                raise BusyError(harvest_id, settings.RESERVATION_LOCK_TIMEOUT)

        logger.info(
            f"Reserved {quantity} of harvest {harvest_id} for buyer {buyer.profile_id} "
            f"(remaining={reservation.remaining})"
        )
        return reservation

    def release(self, reservation: Reservation) -> Harvest:
        """
        Return a reservation's quantity to its harvest.

        Compensates a reservation whose transaction could not be recorded;
        a sold_out harvest becomes available again.

        Raises:
            NotFoundError: harvest deleted since the reservation
        """
        attempt = 0
        while True:
            try:
                return self._release_once(reservation)
            except (BusyError, ConflictError) as e:
                attempt += 1
                if attempt > settings.RESERVATION_MAX_RETRIES:
                    logger.error(
                        f"Release of {reservation.quantity} to {reservation.harvest_id} failed: {e.code}"
                    )
                    raise
                time.sleep(settings.RESERVATION_RETRY_DELAY * attempt)

    def _release_once(self, reservation: Reservation) -> Harvest:
        harvest_id = reservation.harvest_id
        with self._locks.hold(harvest_id, settings.RESERVATION_LOCK_TIMEOUT):
            try:
                with self._session_scope() as db:
                    harvest = db.get(Harvest, harvest_id, with_for_update=True)
                    if harvest is None:
                        raise NotFoundError("Harvest", harvest_id)
                    harvest.quantity_available = harvest.quantity_available + reservation.quantity
                    harvest.status = HarvestStatus.AVAILABLE
                    harvest.updated_at = datetime.utcnow()
                    db.flush()
            except StaleDataError:
                raise ConflictError(harvest_id)
            except OperationalError as e:
                if not is_store_locked(e):
                    raise
                raise BusyError(harvest_id, settings.RESERVATION_LOCK_TIMEOUT)

        logger.info(f"Released {reservation.quantity} back to harvest {harvest_id}")
        return harvest


# Singleton instance
inventory_ledger = InventoryLedger()
