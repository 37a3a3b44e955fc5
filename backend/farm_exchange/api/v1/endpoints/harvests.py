"""
Harvest listing endpoints.

WHAT: Browse, manage and purchase harvest listings
WHY: Farmers list lots, buyers reserve from them
HOW: Thin handlers over the inventory ledger and transaction engine
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..deps import get_caller
from ....core.models import Harvest
from ....models.api_schemas import (
    HarvestCreate,
    HarvestUpdate,
    HarvestOut,
    HarvestListResponse,
    PurchaseCreate,
    TransactionOut,
)
from ....services.capability_gate import Caller
from ....services.inventory_ledger import inventory_ledger
from ....services.transaction_engine import transaction_engine

router = APIRouter()


def harvest_out(harvest: Harvest, farmer_name: Optional[str] = None) -> HarvestOut:
    return HarvestOut(
        id=harvest.id,
        owner_id=harvest.owner_id,
        farmer_name=farmer_name,
        title=harvest.title,
        description=harvest.description,
        category=harvest.category,
        price=harvest.price,
        unit=harvest.unit,
        quantity_available=harvest.quantity_available,
        status=harvest.status.value,
        image_url=harvest.image_url,
        harvest_date=harvest.harvest_date,
        created_at=harvest.created_at,
        updated_at=harvest.updated_at,
    )


@router.get("/harvests", response_model=HarvestListResponse)
def browse_harvests(
    search: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = Query(20, gt=0, le=100),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
):
    """Available listings, newest first."""
    rows, total = inventory_ledger.browse(search=search, category=category, limit=limit, offset=offset)
    return HarvestListResponse(
        harvests=[harvest_out(h, h.owner.full_name) for h in rows],
        total=total,
    )


@router.get("/harvests/mine", response_model=HarvestListResponse)
def my_harvests(caller: Caller = Depends(get_caller)):
    rows = inventory_ledger.listings_for(caller)
    return HarvestListResponse(harvests=[harvest_out(h) for h in rows], total=len(rows))


@router.get("/harvests/{harvest_id}", response_model=HarvestOut)
def get_harvest(harvest_id: str, caller: Caller = Depends(get_caller)):
    harvest = inventory_ledger.get(harvest_id)
    return harvest_out(harvest, harvest.owner.full_name)


@router.post("/harvests", response_model=HarvestOut, status_code=status.HTTP_201_CREATED)
def create_harvest(payload: HarvestCreate, caller: Caller = Depends(get_caller)):
    harvest = inventory_ledger.create_listing(caller, payload.model_dump())
    return harvest_out(harvest)


@router.patch("/harvests/{harvest_id}", response_model=HarvestOut)
def update_harvest(harvest_id: str, payload: HarvestUpdate, caller: Caller = Depends(get_caller)):
    harvest = inventory_ledger.update_listing(harvest_id, caller, payload.model_dump(exclude_unset=True))
    return harvest_out(harvest)


@router.delete("/harvests/{harvest_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_harvest(harvest_id: str, caller: Caller = Depends(get_caller)):
    inventory_ledger.delete_listing(harvest_id, caller)


@router.post(
    "/harvests/{harvest_id}/purchase",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
)
def purchase_harvest(harvest_id: str, payload: PurchaseCreate, caller: Caller = Depends(get_caller)):
    """
    Reserve quantity from a listing and record a pending transaction.

    409 when the quantity is no longer available, 503 when the listing
    stayed busy past the lock timeout.
    """
    transaction = transaction_engine.purchase(caller, harvest_id, payload.quantity)
    return TransactionOut.model_validate(transaction)
