"""
Profile and dashboard endpoints.

WHAT: Registration, profile lookup, contacts and dashboard summary
WHY: Other endpoints key everything to a profile id
HOW: Thin handlers over the profile directory and dashboard summary
"""

from typing import List

from fastapi import APIRouter, Depends, status

from ..deps import get_caller
from .harvests import harvest_out
from ....models.api_schemas import (
    ProfileCreate,
    ProfileUpdate,
    ProfileOut,
    DashboardResponse,
    TransactionOut,
    TransactionStatsOut,
)
from ....services.capability_gate import Caller
from ....services.dashboard import build_summary
from ....services.profile_directory import profile_directory

router = APIRouter()


@router.post("/profiles", response_model=ProfileOut, status_code=status.HTTP_201_CREATED)
def register_profile(payload: ProfileCreate):
    """Create a profile. Called by the sign-up flow after credentials are stored."""
    data = payload.model_dump(exclude={"full_name", "email", "role"}, exclude_none=True)
    profile = profile_directory.register(payload.full_name, payload.email, payload.role, **data)
    return ProfileOut.model_validate(profile)


@router.get("/profiles/me", response_model=ProfileOut)
def my_profile(caller: Caller = Depends(get_caller)):
    return ProfileOut.model_validate(profile_directory.get(caller.profile_id))


@router.patch("/profiles/me", response_model=ProfileOut)
def update_my_profile(payload: ProfileUpdate, caller: Caller = Depends(get_caller)):
    profile = profile_directory.update_contact(caller, payload.model_dump(exclude_unset=True))
    return ProfileOut.model_validate(profile)


@router.get("/profiles/contacts", response_model=List[ProfileOut])
def contacts(caller: Caller = Depends(get_caller)):
    """Profiles the caller can message: farmers for buyers, buyers for farmers."""
    return [ProfileOut.model_validate(p) for p in profile_directory.contacts_for(caller)]


@router.get("/profiles/{profile_id}", response_model=ProfileOut)
def get_profile(profile_id: str, caller: Caller = Depends(get_caller)):
    return ProfileOut.model_validate(profile_directory.get(profile_id))


@router.delete("/profiles/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_profile(profile_id: str, caller: Caller = Depends(get_caller)):
    profile_directory.delete(profile_id, caller)


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(caller: Caller = Depends(get_caller)):
    summary = build_summary(caller)
    return DashboardResponse(
        role=summary.role,
        unread_messages=summary.unread_messages,
        stats=TransactionStatsOut.model_validate(summary.stats),
        recent_listings=[harvest_out(h) for h in summary.recent_listings],
        recent_sales=[TransactionOut.model_validate(t) for t in summary.recent_sales],
        recent_purchases=[TransactionOut.model_validate(t) for t in summary.recent_purchases],
    )
