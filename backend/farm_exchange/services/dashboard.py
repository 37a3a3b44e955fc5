"""
Dashboard summary.

WHAT: Recent listings, sales or purchases, and unread count for one caller
WHY: Landing view after sign-in
HOW: Composes ledger, engine and hub reads; no state of its own
"""

from dataclasses import dataclass, field
from typing import List

from ..core.models import Harvest, Transaction
from .capability_gate import Caller
from .inventory_ledger import inventory_ledger
from .transaction_engine import transaction_engine, TransactionStats
from .messaging_hub import messaging_hub

RECENT_LIMIT = 5


@dataclass
class DashboardSummary:
    role: str
    unread_messages: int
    stats: TransactionStats
    recent_listings: List[Harvest] = field(default_factory=list)
    recent_sales: List[Transaction] = field(default_factory=list)
    recent_purchases: List[Transaction] = field(default_factory=list)


def build_summary(caller: Caller, ledger=inventory_ledger, engine=transaction_engine, hub=messaging_hub) -> DashboardSummary:
    summary = DashboardSummary(
        role=caller.role.value,
        unread_messages=hub.unread_count(caller.profile_id),
        stats=engine.stats(caller),
    )
    recent = engine.list(caller)[:RECENT_LIMIT]
    if caller.is_farmer:
        summary.recent_listings = ledger.listings_for(caller)[:RECENT_LIMIT]
        summary.recent_sales = recent
    else:
        summary.recent_purchases = recent
    return summary
