"""
Test suite for redemption module

Tests settlement pricing against a maturity amount, stock checks, and the
create / reverse lifecycle that keeps stock and savings schemes in step.
"""

import pytest
from decimal import Decimal
from datetime import date

from jewel_ledger.currency import Money
from jewel_ledger.clock import FixedClock
from jewel_ledger.storage import InMemoryStorage
from jewel_ledger.audit import AuditTrail, AuditEventType
from jewel_ledger.sequences import SequenceIssuer
from jewel_ledger.exceptions import (
    AlreadyRedeemedError, EntityNotFoundError, IneligibleForRedemptionError,
    InsufficientStockError, InvalidAmountError, InvalidStateError, RateNotFoundError
)
from jewel_ledger.rates import RateBook, MetalType
from jewel_ledger.inventory import InventoryManager
from jewel_ledger.savings import SavingsManager, SavingStatus
from jewel_ledger.redemptions import (
    RedemptionLine, RedemptionManager, RedemptionSettlementCalculator
)


def inr(amount) -> Money:
    return Money(Decimal(str(amount)))


@pytest.fixture
def clock():
    return FixedClock(date(2025, 1, 15))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def rate_book(storage, audit_trail, clock):
    book = RateBook(storage, audit_trail, clock)
    book.set_rate(MetalType.GOLD, "22K", Decimal("6500"))
    return book


@pytest.fixture
def inventory(storage, audit_trail, clock):
    return InventoryManager(storage, audit_trail, clock)


@pytest.fixture
def necklace(inventory):
    return inventory.create_product("Necklace", "Gold Necklace", Decimal("2"), inr(2000),
                                    stock=3, purity="22K")


@pytest.fixture
def savings(storage, audit_trail, clock):
    return SavingsManager(storage, audit_trail, SequenceIssuer(storage), clock)


@pytest.fixture
def scheme(savings):
    """Twelve installments of 1000 with the default bonus: maturity 13000"""
    scheme = savings.create_scheme("C1", inr(1000), 12, start_date=date(2024, 1, 15))
    for _ in range(12):
        scheme = savings.pay_installment(scheme.id)
    return scheme


@pytest.fixture
def manager(storage, audit_trail, savings, inventory, rate_book, clock):
    return RedemptionManager(storage, audit_trail, SequenceIssuer(storage), savings,
                             inventory, rate_book.find_active_rate, clock)


class TestRedemptionSettlementCalculator:
    """Test pricing and settlement against a maturity amount"""

    @pytest.fixture
    def calculator(self, inventory, rate_book):
        return RedemptionSettlementCalculator(inventory, rate_book.find_active_rate)

    def test_shortfall_requires_additional_payment(self, calculator, necklace):
        settlement = calculator.settle(inr(13000), [RedemptionLine(necklace.id)])

        assert settlement.total_purchase_amount == inr(15000)
        assert settlement.additional_payment_amount == inr(2000)
        assert settlement.additional_payment_required

        item = settlement.items[0]
        assert item.rate == Decimal("6500")
        assert item.weight == Decimal("2")
        assert item.metal == MetalType.GOLD
        assert item.line_total == inr(15000)

    def test_surplus_is_not_refunded(self, calculator, necklace):
        settlement = calculator.settle(inr(20000), [RedemptionLine(necklace.id)])
        assert settlement.additional_payment_amount == inr(0)
        assert not settlement.additional_payment_required

    def test_quantity_multiplies_metal_and_making(self, calculator, necklace):
        settlement = calculator.settle(inr(13000), [RedemptionLine(necklace.id, quantity=2)])
        assert settlement.total_purchase_amount == inr(30000)
        assert settlement.additional_payment_amount == inr(17000)

    def test_line_overrides(self, calculator, necklace):
        line = RedemptionLine(necklace.id, rate=Decimal("7000"), weight=Decimal("1.5"),
                              making_charges=inr(500))
        settlement = calculator.settle(inr(13000), [line])
        assert settlement.total_purchase_amount == inr(11000)
        assert settlement.additional_payment_amount == inr(0)

    def test_missing_gold_rate(self, calculator, inventory):
        ring = inventory.create_product("Ring", "Gold Ring", Decimal("3"), inr(800),
                                        stock=1, purity="18K")
        with pytest.raises(RateNotFoundError):
            calculator.settle(inr(13000), [RedemptionLine(ring.id)])

    def test_other_metal_prices_at_zero_rate(self, calculator, inventory):
        watch = inventory.create_product("Watch", "Watches", Decimal("40"), inr(9000), stock=1)
        settlement = calculator.settle(inr(13000), [RedemptionLine(watch.id)])
        assert settlement.items[0].rate == Decimal("0")
        assert settlement.total_purchase_amount == inr(9000)

    def test_insufficient_stock(self, calculator, necklace):
        with pytest.raises(InsufficientStockError):
            calculator.settle(inr(13000), [RedemptionLine(necklace.id, quantity=4)])

    def test_stock_checked_on_total_per_product(self, calculator, necklace):
        lines = [RedemptionLine(necklace.id, quantity=2), RedemptionLine(necklace.id, quantity=2)]
        with pytest.raises(InsufficientStockError):
            calculator.settle(inr(13000), lines)

    def test_unknown_product(self, calculator):
        with pytest.raises(EntityNotFoundError):
            calculator.settle(inr(13000), [RedemptionLine("missing")])

    def test_invalid_lines(self, calculator, necklace):
        with pytest.raises(InvalidAmountError):
            calculator.settle(inr(13000), [])
        with pytest.raises(InvalidAmountError):
            calculator.settle(inr(13000), [RedemptionLine(necklace.id, quantity=0)])

    def test_negative_rate_override_rejected(self, calculator, necklace):
        with pytest.raises(InvalidAmountError):
            calculator.settle(inr(13000), [RedemptionLine(necklace.id, rate=Decimal("-6500"))])

    def test_negative_weight_override_rejected(self, calculator, necklace):
        with pytest.raises(InvalidAmountError):
            calculator.settle(inr(13000), [RedemptionLine(necklace.id, weight=Decimal("-2"))])

    def test_negative_making_charges_override_rejected(self, calculator, necklace):
        with pytest.raises(InvalidAmountError):
            calculator.settle(inr(13000), [RedemptionLine(necklace.id, making_charges=inr(-2000))])

    def test_zero_rate_override_uses_active_rate(self, calculator, necklace):
        settlement = calculator.settle(inr(13000), [RedemptionLine(necklace.id, rate=Decimal("0"))])
        assert settlement.items[0].rate == Decimal("6500")
        assert settlement.total_purchase_amount == inr(15000)

    def test_zero_rate_override_without_active_rate(self, calculator, inventory):
        ring = inventory.create_product("Ring", "Gold Ring", Decimal("3"), inr(800),
                                        stock=1, purity="18K")
        with pytest.raises(RateNotFoundError):
            calculator.settle(inr(13000), [RedemptionLine(ring.id, rate=Decimal("0"))])

    def test_totals_never_negative(self, calculator, necklace):
        line = RedemptionLine(necklace.id, weight=Decimal("0"), making_charges=inr(0))
        settlement = calculator.settle(inr(13000), [line])
        assert settlement.total_purchase_amount == inr(0)
        assert settlement.additional_payment_amount == inr(0)

    def test_settle_does_not_touch_stock(self, calculator, inventory, necklace):
        calculator.settle(inr(13000), [RedemptionLine(necklace.id, quantity=3)])
        assert inventory.get_product(necklace.id).stock == 3


class TestRedemptionManager:
    """Test redemption lifecycle"""

    def test_create_redemption(self, manager, savings, inventory, scheme, necklace, audit_trail):
        redemption = manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)], notes="wedding")

        assert redemption.redemption_number == "RED-2501-0001"
        assert redemption.customer_id == "C1"
        assert redemption.maturity_amount == inr(13000)
        assert redemption.total_purchase_amount == inr(15000)
        assert redemption.additional_payment_amount == inr(2000)
        assert redemption.redemption_date == date(2025, 1, 15)

        assert inventory.get_product(necklace.id).stock == 2

        redeemed = savings.get_scheme(scheme.id)
        assert redeemed.is_redeemed
        assert redeemed.status == SavingStatus.REDEEMED
        assert redeemed.redemption_id == redemption.id

        assert manager.get_redemption(redemption.id) == redemption
        assert manager.get_redemption_for_saving(scheme.id) == redemption
        assert len(audit_trail.get_events_by_type(AuditEventType.REDEMPTION_CREATED)) == 1
        assert audit_trail.verify_integrity()['valid']

    def test_active_scheme_can_redeem(self, manager, savings, necklace):
        scheme = savings.create_scheme("C2", inr(1000), 12)
        redemption = manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])
        assert redemption.total_purchase_amount == inr(15000)

    def test_second_redemption_rejected(self, manager, scheme, necklace):
        manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])
        with pytest.raises(AlreadyRedeemedError):
            manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])

    def test_cancelled_scheme_rejected(self, manager, savings, necklace):
        scheme = savings.create_scheme("C2", inr(1000), 12)
        savings.cancel_scheme(scheme.id)
        with pytest.raises(IneligibleForRedemptionError):
            manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])

    def test_failed_redemption_changes_nothing(self, manager, storage, savings, inventory,
                                               scheme, necklace):
        ring = inventory.create_product("Ring", "Gold Ring", Decimal("3"), inr(800),
                                        stock=1, purity="18K")
        lines = [RedemptionLine(necklace.id), RedemptionLine(ring.id)]

        with pytest.raises(RateNotFoundError):
            manager.create_redemption(scheme.id, lines)

        assert inventory.get_product(necklace.id).stock == 3
        assert inventory.get_product(ring.id).stock == 1
        assert not savings.get_scheme(scheme.id).is_redeemed
        assert storage.count("redemptions") == 0

    def test_reverse_redemption(self, manager, savings, inventory, scheme, necklace, audit_trail):
        redemption = manager.create_redemption(scheme.id, [RedemptionLine(necklace.id, quantity=2)])
        assert inventory.get_product(necklace.id).stock == 1

        manager.reverse_redemption(redemption.id)

        assert inventory.get_product(necklace.id).stock == 3
        restored = savings.get_scheme(scheme.id)
        assert not restored.is_redeemed
        assert restored.status == SavingStatus.COMPLETED
        assert restored.redemption_id is None

        with pytest.raises(EntityNotFoundError):
            manager.get_redemption(redemption.id)
        assert len(audit_trail.get_events_by_type(AuditEventType.REDEMPTION_REVERSED)) == 1

        # Scheme can be redeemed again
        again = manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])
        assert again.redemption_number == "RED-2501-0002"

    def test_linked_sale_blocks_reversal(self, manager, scheme, necklace, inventory):
        redemption = manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])
        linked = manager.link_sale(redemption.id, "SALE-1")
        assert linked.sale_id == "SALE-1"

        with pytest.raises(InvalidStateError):
            manager.reverse_redemption(redemption.id)
        assert inventory.get_product(necklace.id).stock == 2

    def test_list_redemptions(self, manager, savings, scheme, necklace):
        other = savings.create_scheme("C2", inr(1000), 12)
        manager.create_redemption(scheme.id, [RedemptionLine(necklace.id)])
        manager.create_redemption(other.id, [RedemptionLine(necklace.id)])
        assert len(manager.list_redemptions()) == 2
