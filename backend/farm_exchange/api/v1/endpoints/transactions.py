"""
Transaction endpoints.

WHAT: List, inspect and settle transactions
WHY: Buyers track purchases, farmers mark sales completed or cancelled
HOW: Thin handlers over the transaction engine
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..deps import get_caller
from ....models.api_schemas import (
    TransactionOut,
    TransactionListResponse,
    TransactionStatsOut,
    TransactionStatusUpdate,
)
from ....services.capability_gate import Caller
from ....services.transaction_engine import transaction_engine

router = APIRouter()


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(status: Optional[str] = None, caller: Caller = Depends(get_caller)):
    """Sales for farmers, purchases for buyers, most recent first."""
    rows = transaction_engine.list(caller, status=status)
    return TransactionListResponse(
        transactions=[TransactionOut.model_validate(t) for t in rows],
        stats=TransactionStatsOut.model_validate(transaction_engine.stats(caller)),
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: str, caller: Caller = Depends(get_caller)):
    return TransactionOut.model_validate(transaction_engine.get(transaction_id, caller))


@router.patch("/transactions/{transaction_id}/status", response_model=TransactionOut)
def update_transaction_status(
    transaction_id: str,
    payload: TransactionStatusUpdate,
    caller: Caller = Depends(get_caller),
):
    """Seller moves a pending transaction to completed or cancelled."""
    transaction = transaction_engine.update_status(transaction_id, caller, payload.status)
    return TransactionOut.model_validate(transaction)
