"""
Transaction engine.

WHAT: Purchase records and their pending -> completed | cancelled lifecycle
WHY: A purchase reserves inventory and records intent; the seller settles it out of band
HOW: Created only from a ledger Reservation, status changes gated to the seller
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List

from sqlalchemy import func

from ..core.database import get_db, get_read_db
from ..core.models import Transaction, TransactionStatus, Role
from .capability_gate import Caller, Action, capability_gate
from .inventory_ledger import Reservation, InventoryLedger, inventory_ledger
from ..utils.exceptions import NotFoundError, InvalidStateError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")


@dataclass
class TransactionStats:
    """Counts and revenue over one caller's view of transactions."""
    total: int = 0
    pending: int = 0
    completed: int = 0
    cancelled: int = 0
    revenue: Decimal = Decimal("0.00")


def parse_status(value) -> TransactionStatus:
    if isinstance(value, TransactionStatus):
        return value
    try:
        return TransactionStatus(value)
    except ValueError:
        allowed = [s.value for s in TransactionStatus]
        raise ValidationError(
            f"Unknown transaction status: {value}",
            field_errors=[{"field": "status", "error": f"must be one of {allowed}"}]
        )


class TransactionEngine:
    """Creates transactions from reservations and drives their state machine."""

    def __init__(self, session_scope=get_db, read_scope=get_read_db, gate=capability_gate, ledger: InventoryLedger = inventory_ledger):
        self._session_scope = session_scope
        self._read_scope = read_scope
        self._gate = gate
        self._ledger = ledger

    def purchase(self, buyer: Caller, harvest_id: str, quantity) -> Transaction:
        """
        Reserve inventory and record a pending transaction as one unit.

        If recording the transaction fails after a successful reservation,
        the reserved quantity is released back to the harvest before the
        error propagates.
        """
        reservation = self._ledger.reserve(buyer, harvest_id, quantity)
        try:
            return self.create_from_reservation(reservation)
        except Exception:
            logger.error(
                f"Recording transaction for reservation on {harvest_id} failed; releasing {reservation.quantity}",
                exc_info=True
            )
            self._ledger.release(reservation)
            raise

    def create_from_reservation(self, reservation: Reservation) -> Transaction:
        """
        Record a pending transaction for a successful reservation.

        Seller, unit price, title and unit are snapshots taken under the
        harvest lock; later edits to the harvest do not reach them.
        """
        total = (reservation.quantity * reservation.unit_price).quantize(CENTS, rounding=ROUND_HALF_UP)
        with self._session_scope() as db:
            transaction = Transaction(
                harvest_id=reservation.harvest_id,
                buyer_id=reservation.buyer_id,
                seller_id=reservation.seller_id,
                harvest_title=reservation.harvest_title,
                unit=reservation.unit,
                quantity=reservation.quantity,
                unit_price=reservation.unit_price,
                total_price=total,
                status=TransactionStatus.PENDING,
            )
            db.add(transaction)
            db.flush()
            logger.info(
                f"Transaction {transaction.id} created: buyer={reservation.buyer_id} "
                f"seller={reservation.seller_id} qty={reservation.quantity} total={total}"
            )
            return transaction

    def update_status(self, transaction_id: str, caller: Caller, new_status) -> Transaction:
        """
        Move a pending transaction to completed or cancelled.

        Cancelling does not restock the harvest.

        Raises:
            NotFoundError: no such transaction
            ForbiddenError: caller is not the seller
            InvalidStateError: transaction already terminal, or target is not terminal
        """
        new_status = parse_status(new_status)
        with self._session_scope() as db:
            transaction = db.get(Transaction, transaction_id, with_for_update=True)
            if transaction is None:
                raise NotFoundError("Transaction", transaction_id)
            self._gate.require(caller, Action.UPDATE_TRANSACTION_STATUS, transaction)
            if not new_status.is_terminal:
                raise InvalidStateError(transaction_id, transaction.status.value, new_status.value)

            previous = transaction.status
            transaction.status = new_status
            db.flush()
            logger.info(
                f"Transaction {transaction_id} {previous.value} -> {new_status.value} by {caller.profile_id}"
            )
            return transaction

    def get(self, transaction_id: str, caller: Caller) -> Transaction:
        """Fetch one transaction; only its buyer or seller may see it."""
        with self._read_scope() as db:
            transaction = db.get(Transaction, transaction_id)
            if transaction is None:
                raise NotFoundError("Transaction", transaction_id)
            self._gate.require(caller, Action.VIEW_TRANSACTION, transaction)
            return transaction

    def list(
        self,
        caller: Caller,
        role: Optional[Role] = None,
        status: Optional[str] = None,
    ) -> List[Transaction]:
        """
        Transactions visible to the caller, most recent first.

        Farmers see their sales, buyers their purchases. `role` defaults to
        the caller's own role; `status` of None or "all" disables the filter.
        """
        query_role = role or caller.role
        with self._read_scope() as db:
            query = db.query(Transaction)
            if query_role is Role.FARMER:
                query = query.filter(Transaction.seller_id == caller.profile_id)
            else:
                query = query.filter(Transaction.buyer_id == caller.profile_id)
            if status and status != "all":
                query = query.filter(Transaction.status == parse_status(status))
            return query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).all()

    def stats(self, caller: Caller) -> TransactionStats:
        """Per-status counts and completed revenue over the caller's view."""
        side = Transaction.seller_id if caller.is_farmer else Transaction.buyer_id
        with self._read_scope() as db:
            rows = (
                db.query(Transaction.status, func.count(Transaction.id), func.sum(Transaction.total_price))
                .filter(side == caller.profile_id)
                .group_by(Transaction.status)
                .all()
            )

        stats = TransactionStats()
        for status, count, amount in rows:
            stats.total += count
            setattr(stats, status.value, count)
            if status is TransactionStatus.COMPLETED and amount is not None:
                stats.revenue = Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)
        return stats


# Singleton instance
transaction_engine = TransactionEngine()
