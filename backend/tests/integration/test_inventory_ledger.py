"""
Integration tests for the inventory ledger.

WHAT: Listing management and the reserve/release quantity accounting
WHY: Quantity must never go negative, oversell, or change on a failed reservation
HOW: Real SQLite database; threads racing reserve() against one harvest
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from farm_exchange.core.config import settings
from farm_exchange.core.database import get_db, engine
from farm_exchange.core.locks import harvest_locks
from farm_exchange.core.models import Harvest, HarvestStatus
from farm_exchange.services.inventory_ledger import inventory_ledger, InventoryLedger
from farm_exchange.utils.exceptions import (
    ForbiddenError, NotFoundError, InsufficientQuantityError, ValidationError, BusyError, ConflictError,
)


def current(harvest_id) -> Harvest:
    with get_db() as db:
        return db.get(Harvest, harvest_id)


def assert_consistent(harvest: Harvest):
    assert harvest.quantity_available >= 0
    assert (harvest.status == HarvestStatus.SOLD_OUT) == (harvest.quantity_available == 0)


@pytest.mark.integration
class TestListings:

    def test_create_initializes_quantity_and_status(self, harvest, farmer):
        assert harvest.owner_id == farmer.profile_id
        assert harvest.quantity_available == Decimal("10")
        assert harvest.status == HarvestStatus.AVAILABLE
        assert harvest.created_at is not None
        assert harvest.updated_at is not None

    def test_buyer_cannot_create(self, buyer):
        with pytest.raises(ForbiddenError):
            inventory_ledger.create_listing(buyer, {
                "title": "Eggs", "category": "dairy", "price": "4.50", "unit": "dozen", "quantity": "3",
            })

    def test_non_positive_price_rejected(self, farmer):
        with pytest.raises(ValidationError):
            inventory_ledger.create_listing(farmer, {
                "title": "Eggs", "category": "dairy", "price": "0", "unit": "dozen", "quantity": "3",
            })

    def test_update_edits_descriptive_fields_only(self, harvest, farmer):
        updated = inventory_ledger.update_listing(harvest.id, farmer, {
            "title": "Cherry Tomatoes", "price": Decimal("3.25"),
        })
        assert updated.title == "Cherry Tomatoes"
        assert updated.price == Decimal("3.25")
        assert updated.quantity_available == Decimal("10")
        assert updated.status == HarvestStatus.AVAILABLE

    @pytest.mark.parametrize("field", ["quantity_available", "status", "quantity"])
    def test_update_rejects_ledger_fields(self, harvest, farmer, field):
        with pytest.raises(ValidationError):
            inventory_ledger.update_listing(harvest.id, farmer, {field: "99"})
        assert current(harvest.id).quantity_available == Decimal("10")

    def test_update_by_other_farmer_forbidden(self, harvest, other_farmer):
        with pytest.raises(ForbiddenError):
            inventory_ledger.update_listing(harvest.id, other_farmer, {"title": "Mine now"})

    def test_update_missing_harvest(self, farmer):
        with pytest.raises(NotFoundError):
            inventory_ledger.update_listing("missing", farmer, {"title": "x"})

    def test_delete_by_owner(self, harvest, farmer):
        inventory_ledger.delete_listing(harvest.id, farmer)
        assert current(harvest.id) is None

    def test_delete_by_other_farmer_forbidden(self, harvest, other_farmer):
        with pytest.raises(ForbiddenError):
            inventory_ledger.delete_listing(harvest.id, other_farmer)
        assert current(harvest.id) is not None

    def test_browse_filters_and_orders(self, harvest, farmer, buyer):
        inventory_ledger.create_listing(farmer, {
            "title": "Honeycrisp Apples", "category": "fruit", "price": "1.50", "unit": "kg", "quantity": "5",
        })
        inventory_ledger.reserve(buyer, harvest.id, "10")

        rows, total = inventory_ledger.browse()
        assert total == 1
        assert [h.title for h in rows] == ["Honeycrisp Apples"]
        assert rows[0].owner.full_name == "Fern Fields"

        rows, total = inventory_ledger.browse(search="fern")
        assert total == 1
        rows, total = inventory_ledger.browse(category="vegetables")
        assert total == 0

    def test_listings_for_owner_include_sold_out(self, harvest, farmer, buyer):
        inventory_ledger.reserve(buyer, harvest.id, "10")
        rows = inventory_ledger.listings_for(farmer)
        assert [h.status for h in rows] == [HarvestStatus.SOLD_OUT]


@pytest.mark.integration
class TestReserve:

    def test_reserve_decrements(self, harvest, buyer, farmer):
        reservation = inventory_ledger.reserve(buyer, harvest.id, "4")
        assert reservation.quantity == Decimal("4")
        assert reservation.remaining == Decimal("6")
        assert reservation.seller_id == farmer.profile_id
        assert reservation.unit_price == Decimal("2.00")

        stored = current(harvest.id)
        assert stored.quantity_available == Decimal("6")
        assert stored.status == HarvestStatus.AVAILABLE

    def test_reserve_all_flips_sold_out(self, harvest, buyer):
        inventory_ledger.reserve(buyer, harvest.id, "10")
        stored = current(harvest.id)
        assert stored.quantity_available == 0
        assert stored.status == HarvestStatus.SOLD_OUT
        with pytest.raises(InsufficientQuantityError):
            inventory_ledger.reserve(buyer, harvest.id, "1")

    @pytest.mark.parametrize("quantity", ["11", "0", "-2"])
    def test_failed_reserve_changes_nothing(self, harvest, buyer, quantity):
        with pytest.raises(InsufficientQuantityError):
            inventory_ledger.reserve(buyer, harvest.id, quantity)
        stored = current(harvest.id)
        assert stored.quantity_available == Decimal("10")
        assert stored.version == harvest.version

    def test_farmer_cannot_reserve(self, harvest, farmer):
        with pytest.raises(ForbiddenError):
            inventory_ledger.reserve(farmer, harvest.id, "1")

    def test_reserve_missing_harvest(self, buyer):
        with pytest.raises(NotFoundError):
            inventory_ledger.reserve(buyer, "missing", "1")

    def test_fractional_quantities(self, harvest, buyer):
        inventory_ledger.reserve(buyer, harvest.id, "2.5")
        inventory_ledger.reserve(buyer, harvest.id, "7.5")
        assert current(harvest.id).status == HarvestStatus.SOLD_OUT

    def test_release_restores_and_reopens(self, harvest, buyer):
        reservation = inventory_ledger.reserve(buyer, harvest.id, "10")
        inventory_ledger.release(reservation)
        stored = current(harvest.id)
        assert stored.quantity_available == Decimal("10")
        assert stored.status == HarvestStatus.AVAILABLE


@pytest.mark.integration
class TestNumericInput:

    def test_quantity_finer_than_storage_scale_rejected(self, harvest, buyer):
        with pytest.raises(ValidationError) as exc_info:
            inventory_ledger.reserve(buyer, harvest.id, "9.9999")
        assert exc_info.value.details["field_errors"][0]["field"] == "quantity"

        stored = current(harvest.id)
        assert stored.quantity_available == Decimal("10")
        assert stored.version == harvest.version
        assert_consistent(stored)

    def test_quantity_at_storage_scale_accepted(self, harvest, buyer):
        inventory_ledger.reserve(buyer, harvest.id, "9.999")
        stored = current(harvest.id)
        assert stored.quantity_available == Decimal("0.001")
        assert_consistent(stored)

    @pytest.mark.parametrize("fields", [
        {"price": "1.005", "quantity": "3"},
        {"price": "1.00", "quantity": "3.0001"},
    ])
    def test_listing_values_finer_than_storage_scale_rejected(self, farmer, fields):
        with pytest.raises(ValidationError):
            inventory_ledger.create_listing(farmer, dict(fields, title="Plums", category="fruit", unit="kg"))
        assert inventory_ledger.listings_for(farmer) == []

    def test_price_edit_finer_than_cents_rejected(self, harvest, farmer):
        with pytest.raises(ValidationError):
            inventory_ledger.update_listing(harvest.id, farmer, {"price": "2.001"})
        assert current(harvest.id).price == Decimal("2.00")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", "sNaN", "lots", None])
    def test_reserve_rejects_non_numbers(self, harvest, buyer, value):
        with pytest.raises(ValidationError):
            inventory_ledger.reserve(buyer, harvest.id, value)
        assert current(harvest.id).quantity_available == Decimal("10")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", Decimal("NaN")])
    def test_create_rejects_non_finite_price(self, farmer, value):
        with pytest.raises(ValidationError):
            inventory_ledger.create_listing(farmer, {
                "title": "Plums", "category": "fruit", "price": value, "unit": "kg", "quantity": "3",
            })

    def test_out_of_range_quantity_rejected(self, harvest, buyer):
        with pytest.raises(ValidationError):
            inventory_ledger.reserve(buyer, harvest.id, "1e40")


@pytest.mark.integration
class TestSerialization:

    def test_busy_when_lock_not_acquired(self, harvest, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_LOCK_TIMEOUT", 0.05)
        monkeypatch.setattr(settings, "RESERVATION_MAX_RETRIES", 1)
        monkeypatch.setattr(settings, "RESERVATION_RETRY_DELAY", 0.01)

        with harvest_locks.hold(harvest.id, timeout=1):
            with pytest.raises(BusyError):
                inventory_ledger.reserve(buyer, harvest.id, "1")
        assert current(harvest.id).quantity_available == Decimal("10")

    def test_busy_is_retried(self, harvest, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_LOCK_TIMEOUT", 0.2)
        monkeypatch.setattr(settings, "RESERVATION_MAX_RETRIES", 5)
        monkeypatch.setattr(settings, "RESERVATION_RETRY_DELAY", 0.05)
        held = threading.Event()

        def hold_briefly():
            with harvest_locks.hold(harvest.id, timeout=1):
                held.set()
                time.sleep(0.3)

        worker = threading.Thread(target=hold_briefly)
        worker.start()
        held.wait(timeout=2)
        reservation = inventory_ledger.reserve(buyer, harvest.id, "1")
        worker.join(timeout=2)
        assert reservation.remaining == Decimal("9")

    def test_other_harvest_not_blocked(self, harvest, farmer, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_LOCK_TIMEOUT", 0.2)
        monkeypatch.setattr(settings, "RESERVATION_MAX_RETRIES", 0)
        apples = inventory_ledger.create_listing(farmer, {
            "title": "Apples", "category": "fruit", "price": "1.00", "unit": "kg", "quantity": "5",
        })
        with harvest_locks.hold(harvest.id, timeout=1):
            reservation = inventory_ledger.reserve(buyer, apples.id, "2")
        assert reservation.remaining == Decimal("3")

    def test_store_lock_timeout_becomes_busy(self, harvest, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_MAX_RETRIES", 1)
        monkeypatch.setattr(settings, "RESERVATION_RETRY_DELAY", 0)
        attempts = []

        @contextmanager
        def locked_store():
            attempts.append(1)
            raise OperationalError("BEGIN IMMEDIATE", {}, sqlite3.OperationalError("database is locked"))
            yield

        ledger = InventoryLedger(session_scope=locked_store)
        with pytest.raises(BusyError):
            ledger.reserve(buyer, harvest.id, "1")
        assert len(attempts) == 2
        assert harvest_locks.active_keys() == 0
        assert current(harvest.id).quantity_available == Decimal("10")

    def test_other_store_errors_propagate(self, harvest, buyer):
        @contextmanager
        def broken_store():
            raise OperationalError("SELECT", {}, sqlite3.OperationalError("disk I/O error"))
            yield

        ledger = InventoryLedger(session_scope=broken_store)
        with pytest.raises(OperationalError):
            ledger.reserve(buyer, harvest.id, "1")

    def test_reads_do_not_wait_for_writers(self, harvest, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_MAX_RETRIES", 0)
        with engine.begin() as writer:
            writer.execute(
                text("UPDATE harvests SET title = 'Held' WHERE id = :id"), {"id": harvest.id}
            )
            started = time.monotonic()
            rows, total = inventory_ledger.browse()
            assert inventory_ledger.get(harvest.id).title == "Heirloom Tomatoes"
            assert time.monotonic() - started < 5
        assert total == 1
        assert current(harvest.id).title == "Held"

    def test_conflict_is_retried_then_surfaced(self, harvest, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_MAX_RETRIES", 2)
        monkeypatch.setattr(settings, "RESERVATION_RETRY_DELAY", 0)
        ledger = InventoryLedger()
        real = ledger._reserve_once
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise ConflictError(harvest.id)
            return real(*args)

        monkeypatch.setattr(ledger, "_reserve_once", flaky)
        assert ledger.reserve(buyer, harvest.id, "1").remaining == Decimal("9")
        assert len(calls) == 2

        def always_conflict(*args):
            calls.append(args)
            raise ConflictError(harvest.id)

        calls.clear()
        monkeypatch.setattr(ledger, "_reserve_once", always_conflict)
        with pytest.raises(ConflictError):
            ledger.reserve(buyer, harvest.id, "1")
        assert len(calls) == 3


@pytest.mark.integration
@pytest.mark.concurrency
class TestNoOversell:

    @pytest.mark.parametrize("threads", [4, 16])
    def test_concurrent_reserves_never_exceed_quantity(self, harvest, buyer, other_buyer, threads, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_LOCK_TIMEOUT", 10)
        amounts = [Decimal(n) for n in (1, 2, 3, 4)] * 6
        buyers = [buyer, other_buyer]

        def attempt(i):
            try:
                return inventory_ledger.reserve(buyers[i % 2], harvest.id, amounts[i]).quantity
            except InsufficientQuantityError:
                return Decimal("0")

        with ThreadPoolExecutor(max_workers=threads) as executor:
            granted = list(executor.map(attempt, range(len(amounts))))

        stored = current(harvest.id)
        assert sum(granted) <= Decimal("10")
        assert stored.quantity_available == Decimal("10") - sum(granted)
        assert_consistent(stored)

    def test_single_unit_race_sells_exactly_quantity(self, harvest, buyer, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_LOCK_TIMEOUT", 10)
        start = threading.Barrier(8)

        def attempt(_):
            start.wait(timeout=5)
            successes = 0
            for _ in range(3):
                try:
                    inventory_ledger.reserve(buyer, harvest.id, "1")
                    successes += 1
                except InsufficientQuantityError:
                    pass
            return successes

        with ThreadPoolExecutor(max_workers=8) as executor:
            total = sum(executor.map(attempt, range(8)))

        assert total == 10
        stored = current(harvest.id)
        assert stored.quantity_available == 0
        assert stored.status == HarvestStatus.SOLD_OUT
