"""
Capability gate.

WHAT: Role and ownership checks for every marketplace mutation
WHY: Farmer/Buyer permissions live in one place instead of per operation
HOW: authorize() returns a Decision with a stable reason code; require() raises the matching typed error
"""

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Any

from ..core.database import get_read_db
from ..core.models import Profile, Harvest, Transaction, Message, Role, HarvestStatus, TransactionStatus
from ..utils.exceptions import (
    UnauthenticatedError,
    NotFoundError,
    ForbiddenError,
    InsufficientQuantityError,
    InvalidStateError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Caller:
    """Authenticated identity handed to the core by the request layer."""
    profile_id: str
    role: Role

    @property
    def is_farmer(self) -> bool:
        return self.role is Role.FARMER

    @property
    def is_buyer(self) -> bool:
        return self.role is Role.BUYER


class Action(str, enum.Enum):
    """Operations gated by role capability."""
    CREATE_LISTING = "create_listing"
    EDIT_LISTING = "edit_listing"
    DELETE_LISTING = "delete_listing"
    PURCHASE = "purchase"
    UPDATE_TRANSACTION_STATUS = "update_transaction_status"
    VIEW_TRANSACTION = "view_transaction"
    SEND_MESSAGE = "send_message"
    READ_MESSAGE = "read_message"
    MARK_MESSAGE_READ = "mark_message_read"
    DELETE_PROFILE = "delete_profile"


class Reason(str, enum.Enum):
    """Stable denial codes consumed by the request layer."""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NOT_FARMER = "NOT_FARMER"
    NOT_BUYER = "NOT_BUYER"
    NOT_OWNER = "NOT_OWNER"
    HARVEST_NOT_FOUND = "HARVEST_NOT_FOUND"
    HARVEST_UNAVAILABLE = "HARVEST_UNAVAILABLE"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INSUFFICIENT_QUANTITY = "INSUFFICIENT_QUANTITY"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    NOT_SELLER = "NOT_SELLER"
    NOT_PARTY = "NOT_PARTY"
    TRANSACTION_NOT_PENDING = "TRANSACTION_NOT_PENDING"
    NOT_SENDER = "NOT_SENDER"
    RECIPIENT_NOT_FOUND = "RECIPIENT_NOT_FOUND"
    SELF_MESSAGE = "SELF_MESSAGE"
    MESSAGE_NOT_FOUND = "MESSAGE_NOT_FOUND"
    NOT_PARTICIPANT = "NOT_PARTICIPANT"
    NOT_RECIPIENT = "NOT_RECIPIENT"
    NOT_SELF = "NOT_SELF"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"


@dataclass(frozen=True)
class Decision:
    """Outcome of a capability check."""
    allowed: bool
    reason: Optional[Reason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = Decision(allowed=True)


def denied(reason: Reason) -> Decision:
    return Decision(allowed=False, reason=reason)


@dataclass(frozen=True)
class PurchaseRequest:
    """Resource for a purchase check: the harvest as currently read, and the amount asked for."""
    harvest: Optional[Harvest]
    quantity: Decimal


@dataclass(frozen=True)
class MessageDraft:
    """Resource for a send check."""
    sender_id: str
    recipient: Optional[Profile]


_NOT_FOUND_REASONS = {
    Reason.HARVEST_NOT_FOUND: "Harvest",
    Reason.TRANSACTION_NOT_FOUND: "Transaction",
    Reason.RECIPIENT_NOT_FOUND: "Profile",
    Reason.MESSAGE_NOT_FOUND: "Message",
}

_QUANTITY_REASONS = {
    Reason.HARVEST_UNAVAILABLE,
    Reason.INVALID_QUANTITY,
    Reason.INSUFFICIENT_QUANTITY,
}


class CapabilityGate:
    """
    Central authorization for the marketplace.

    Rules, first match wins:
      - listing create/edit/delete: farmer, and owner of the harvest
      - purchase: buyer; harvest exists, is available, quantity in (0, available]
      - transaction status update: caller is the seller; transaction pending
      - message send: caller is the sender; recipient exists and differs
      - message read: caller is sender or recipient
    Unauthenticated callers are always denied.
    """

    def __init__(self, session_scope=get_read_db):
        self._session_scope = session_scope

    def resolve_caller(self, profile_id: Optional[str]) -> Caller:
        """
        Resolve an authenticated profile id into a Caller with its role.

        Raises:
            UnauthenticatedError: id missing or no such profile
        """
        if not profile_id:
            raise UnauthenticatedError()
        with self._session_scope() as db:
            profile = db.get(Profile, profile_id)
            if profile is None:
                raise UnauthenticatedError(f"Unknown caller: {profile_id}")
            return Caller(profile_id=profile.id, role=profile.role)

    def authorize(self, caller: Optional[Caller], action: Action, resource: Any = None) -> Decision:
        """Evaluate `action` on `resource` for `caller`. Never raises."""
        if caller is None:
            return denied(Reason.UNAUTHENTICATED)

        if action in (Action.CREATE_LISTING, Action.EDIT_LISTING, Action.DELETE_LISTING):
            return self._check_listing(caller, action, resource)
        if action is Action.PURCHASE:
            return self._check_purchase(caller, resource)
        if action is Action.UPDATE_TRANSACTION_STATUS:
            return self._check_status_update(caller, resource)
        if action is Action.VIEW_TRANSACTION:
            return self._check_view_transaction(caller, resource)
        if action is Action.SEND_MESSAGE:
            return self._check_send(caller, resource)
        if action is Action.READ_MESSAGE:
            return self._check_read(caller, resource)
        if action is Action.MARK_MESSAGE_READ:
            return self._check_mark_read(caller, resource)
        if action is Action.DELETE_PROFILE:
            return ALLOWED if resource.id == caller.profile_id else denied(Reason.NOT_SELF)
        return denied(Reason.UNKNOWN_ACTION)

    def require(self, caller: Optional[Caller], action: Action, resource: Any = None) -> None:
        """
        Authorize or raise the typed error for the denial reason.

        Raises:
            UnauthenticatedError, NotFoundError, InsufficientQuantityError,
            InvalidStateError, ForbiddenError
        """
        decision = self.authorize(caller, action, resource)
        if decision.allowed:
            return
        reason = decision.reason
        who = caller.profile_id if caller else None
        logger.warning(f"Denied {action.value} for caller {who}: {reason.value}")

        if reason is Reason.UNAUTHENTICATED:
            raise UnauthenticatedError()
        if reason in _NOT_FOUND_REASONS:
            raise NotFoundError(_NOT_FOUND_REASONS[reason], _resource_id(resource))
        if reason in _QUANTITY_REASONS:
            harvest = resource.harvest
            raise InsufficientQuantityError(
                harvest.id, resource.quantity, harvest.quantity_available, reason=reason.value
            )
        if reason is Reason.TRANSACTION_NOT_PENDING:
            raise InvalidStateError(resource.id, resource.status.value)
        raise ForbiddenError(reason.value)

    # Rule checks

    def _check_listing(self, caller: Caller, action: Action, harvest: Optional[Harvest]) -> Decision:
        if not caller.is_farmer:
            return denied(Reason.NOT_FARMER)
        if action is Action.CREATE_LISTING:
            # New listings are always owned by the caller
            return ALLOWED
        if harvest is None:
            return denied(Reason.HARVEST_NOT_FOUND)
        if harvest.owner_id != caller.profile_id:
            return denied(Reason.NOT_OWNER)
        return ALLOWED

    def _check_purchase(self, caller: Caller, request: PurchaseRequest) -> Decision:
        if not caller.is_buyer:
            return denied(Reason.NOT_BUYER)
        harvest = request.harvest
        if harvest is None:
            return denied(Reason.HARVEST_NOT_FOUND)
        if harvest.status != HarvestStatus.AVAILABLE:
            return denied(Reason.HARVEST_UNAVAILABLE)
        if request.quantity <= 0:
            return denied(Reason.INVALID_QUANTITY)
        if request.quantity > harvest.quantity_available:
            return denied(Reason.INSUFFICIENT_QUANTITY)
        return ALLOWED

    def _check_status_update(self, caller: Caller, transaction: Optional[Transaction]) -> Decision:
        if transaction is None:
            return denied(Reason.TRANSACTION_NOT_FOUND)
        if transaction.seller_id != caller.profile_id:
            return denied(Reason.NOT_SELLER)
        if transaction.status != TransactionStatus.PENDING:
            return denied(Reason.TRANSACTION_NOT_PENDING)
        return ALLOWED

    def _check_view_transaction(self, caller: Caller, transaction: Optional[Transaction]) -> Decision:
        if transaction is None:
            return denied(Reason.TRANSACTION_NOT_FOUND)
        if caller.profile_id not in (transaction.buyer_id, transaction.seller_id):
            return denied(Reason.NOT_PARTY)
        return ALLOWED

    def _check_send(self, caller: Caller, draft: MessageDraft) -> Decision:
        if draft.sender_id != caller.profile_id:
            return denied(Reason.NOT_SENDER)
        if draft.recipient is None:
            return denied(Reason.RECIPIENT_NOT_FOUND)
        if draft.recipient.id == draft.sender_id:
            return denied(Reason.SELF_MESSAGE)
        return ALLOWED

    def _check_read(self, caller: Caller, message: Optional[Message]) -> Decision:
        if message is None:
            return denied(Reason.MESSAGE_NOT_FOUND)
        if caller.profile_id not in (message.sender_id, message.recipient_id):
            return denied(Reason.NOT_PARTICIPANT)
        return ALLOWED

    def _check_mark_read(self, caller: Caller, message: Optional[Message]) -> Decision:
        if message is None:
            return denied(Reason.MESSAGE_NOT_FOUND)
        if message.recipient_id != caller.profile_id:
            return denied(Reason.NOT_RECIPIENT)
        return ALLOWED


def _resource_id(resource: Any) -> str:
    if isinstance(resource, PurchaseRequest):
        return "unknown"
    if isinstance(resource, MessageDraft):
        return "recipient"
    return str(getattr(resource, "id", "unknown"))


# Singleton instance
capability_gate = CapabilityGate()
