"""Marketplace services: capability gate, inventory ledger, transaction engine, messaging hub."""

from .capability_gate import Caller, Action, Decision, Reason, CapabilityGate, capability_gate
from .inventory_ledger import Reservation, InventoryLedger, inventory_ledger
from .transaction_engine import TransactionEngine, TransactionStats, transaction_engine
from .messaging_hub import MessagingHub, messaging_hub
from .profile_directory import ProfileDirectory, profile_directory

__all__ = [
    "Caller",
    "Action",
    "Decision",
    "Reason",
    "CapabilityGate",
    "capability_gate",
    "Reservation",
    "InventoryLedger",
    "inventory_ledger",
    "TransactionEngine",
    "TransactionStats",
    "transaction_engine",
    "MessagingHub",
    "messaging_hub",
    "ProfileDirectory",
    "profile_directory",
]
