"""
Tests for metal rates and product stock
"""

import pytest
from decimal import Decimal
from datetime import date

from jewel_ledger.currency import Money
from jewel_ledger.clock import FixedClock
from jewel_ledger.storage import InMemoryStorage
from jewel_ledger.audit import AuditTrail, AuditEventType
from jewel_ledger.exceptions import (
    EntityNotFoundError, InsufficientStockError, InvalidAmountError
)
from jewel_ledger.rates import RateBook, MetalType
from jewel_ledger.inventory import InventoryManager


@pytest.fixture
def clock():
    return FixedClock(date(2024, 7, 1))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


class TestMetalType:
    """Test classification of product categories"""

    def test_from_category(self):
        assert MetalType.from_category("Gold Necklace") == MetalType.GOLD
        assert MetalType.from_category("Silver Anklet") == MetalType.SILVER
        assert MetalType.from_category("Diamond Ring") == MetalType.OTHER
        assert MetalType.from_category(None) == MetalType.OTHER

    def test_is_precious(self):
        assert MetalType.GOLD.is_precious
        assert MetalType.SILVER.is_precious
        assert not MetalType.OTHER.is_precious


class TestRateBook:
    """Test active rate bookkeeping"""

    @pytest.fixture
    def rate_book(self, storage, audit_trail, clock):
        return RateBook(storage, audit_trail, clock)

    def test_set_and_find_rate(self, rate_book):
        rate = rate_book.set_rate(MetalType.GOLD, "22K", Decimal("6500"))

        assert rate.is_active
        assert rate.rate_date == date(2024, 7, 1)
        assert rate_book.find_active_rate(MetalType.GOLD, "22K") == Decimal("6500")
        assert rate_book.find_active_rate(MetalType.GOLD, "24K") is None
        assert rate_book.get_rate(rate.id) == rate

    def test_new_rate_retires_previous(self, rate_book, clock):
        first = rate_book.set_rate(MetalType.GOLD, "22K", Decimal("6500"))
        clock.advance_to(date(2024, 7, 2))
        rate_book.set_rate(MetalType.GOLD, "22K", Decimal("6550"))

        assert rate_book.find_active_rate(MetalType.GOLD, "22K") == Decimal("6550")
        assert not rate_book.get_rate(first.id).is_active
        assert len(rate_book.list_rates(active_only=True)) == 1
        assert len(rate_book.list_rates()) == 2

    def test_purities_are_independent(self, rate_book):
        rate_book.set_rate(MetalType.GOLD, "22K", Decimal("6500"))
        rate_book.set_rate(MetalType.GOLD, "24K", Decimal("7100"))
        rate_book.set_rate(MetalType.SILVER, "925", "85.50")

        assert rate_book.find_active_rate(MetalType.GOLD, "22K") == Decimal("6500")
        assert rate_book.find_active_rate(MetalType.GOLD, "24K") == Decimal("7100")
        assert rate_book.find_active_rate(MetalType.SILVER, "925") == Decimal("85.50")

    def test_rejects_non_positive_rate(self, rate_book):
        with pytest.raises(InvalidAmountError):
            rate_book.set_rate(MetalType.GOLD, "22K", Decimal("0"))

    def test_rate_changes_are_audited(self, rate_book, audit_trail):
        rate_book.set_rate(MetalType.GOLD, "22K", Decimal("6500"))
        events = audit_trail.get_events_by_type(AuditEventType.RATE_SET)
        assert len(events) == 1
        assert events[0].metadata["metal"] == "Gold"
        assert events[0].metadata["rate_per_gram"] == "6500"

    def test_missing_rate(self, rate_book):
        with pytest.raises(EntityNotFoundError):
            rate_book.get_rate("missing")


class TestInventoryManager:
    """Test products and stock levels"""

    @pytest.fixture
    def inventory(self, storage, audit_trail, clock):
        return InventoryManager(storage, audit_trail, clock)

    @pytest.fixture
    def bangle(self, inventory):
        return inventory.create_product("Bangle", "Gold Bangle", Decimal("15.250"),
                                        Money(Decimal("1200")), stock=2, purity="22K")

    def test_create_product(self, inventory, bangle):
        assert bangle.metal == MetalType.GOLD
        assert bangle.version == 1
        assert inventory.get_product(bangle.id) == bangle
        assert [p.name for p in inventory.list_products()] == ["Bangle"]

    def test_rejects_negative_values(self, inventory):
        with pytest.raises(InvalidAmountError):
            inventory.create_product("Chain", "Gold Chain", Decimal("-1"), Money(Decimal("100")))
        with pytest.raises(InvalidAmountError):
            inventory.create_product("Chain", "Gold Chain", Decimal("5"), Money(Decimal("-100")))
        with pytest.raises(InvalidAmountError):
            inventory.create_product("Chain", "Gold Chain", Decimal("5"), Money(Decimal("100")), stock=-1)

    def test_adjust_stock(self, inventory, bangle, audit_trail):
        updated = inventory.adjust_stock(bangle.id, 3, "restock")
        assert updated.stock == 5
        assert inventory.get_product(bangle.id).stock == 5

        updated = inventory.adjust_stock(bangle.id, -5)
        assert updated.stock == 0

        events = audit_trail.get_events_by_type(AuditEventType.STOCK_ADJUSTED)
        assert [e.metadata["stock"] for e in events] == [5, 0]

    def test_stock_never_goes_negative(self, inventory, bangle):
        with pytest.raises(InsufficientStockError):
            inventory.adjust_stock(bangle.id, -3)
        assert inventory.get_product(bangle.id).stock == 2

    def test_check_available(self, inventory, bangle):
        assert inventory.check_available(bangle.id, 2)
        assert not inventory.check_available(bangle.id, 3)

    def test_missing_product(self, inventory):
        with pytest.raises(EntityNotFoundError):
            inventory.get_product("missing")
