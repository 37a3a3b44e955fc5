"""
Marketplace business exceptions.

WHAT: Typed failures raised by the marketplace core
WHY: Callers and the HTTP layer need a stable code per failure kind
HOW: One base class carrying message, code, details; a subclass per kind
"""

from typing import Optional, List, Dict, Any


class MarketplaceError(Exception):
    """Base class for marketplace business exceptions."""

    code = "MARKETPLACE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class UnauthenticatedError(MarketplaceError):
    """Raised when a request carries no resolvable caller identity."""

    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Caller identity is missing or unknown"):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": entity_id}
        )


class ForbiddenError(MarketplaceError):
    """Raised when the capability gate denies an action."""

    code = "FORBIDDEN"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Operation not permitted: {reason}",
            details={"reason": reason}
        )
        self.reason = reason


class InsufficientQuantityError(MarketplaceError):
    """Raised when a reservation exceeds what a harvest has available."""

    code = "INSUFFICIENT_QUANTITY"

    def __init__(self, harvest_id: str, requested, available, reason: str = "INSUFFICIENT_QUANTITY"):
        super().__init__(
            message=f"Insufficient quantity: harvest {harvest_id} has {available}, requested {requested}",
            details={
                "harvest_id": harvest_id,
                "requested": str(requested),
                "available": str(available),
                "reason": reason,
            }
        )
        self.reason = reason


class InvalidStateError(MarketplaceError):
    """Raised when a status transition starts from a terminal state."""

    code = "INVALID_STATE"

    def __init__(self, transaction_id: str, current_status: str, requested_status: Optional[str] = None):
        super().__init__(
            message=f"Transaction {transaction_id} is {current_status}; cannot move to {requested_status}",
            details={
                "transaction_id": transaction_id,
                "current_status": current_status,
                "requested_status": requested_status,
            }
        )


class BusyError(MarketplaceError):
    """Raised when a harvest's serialization point is not acquired in time."""

    code = "BUSY"

    def __init__(self, harvest_id: str, timeout: float):
        super().__init__(
            message=f"Harvest {harvest_id} is busy; lock not acquired within {timeout}s",
            details={"harvest_id": harvest_id, "timeout": timeout}
        )


class ConflictError(MarketplaceError):
    """Raised when a concurrent writer changed a harvest under us."""

    code = "CONFLICT"

    def __init__(self, harvest_id: str):
        super().__init__(
            message=f"Harvest {harvest_id} was modified concurrently",
            details={"harvest_id": harvest_id}
        )


class ValidationError(MarketplaceError):
    """Raised for validation errors."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            details={"field_errors": field_errors} if field_errors else None
        )
