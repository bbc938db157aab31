"""
Redemption Module

Turns a matured savings scheme into a jewelry purchase. The scheme's
maturity amount is snapshotted once, each purchase line is priced from the
active metal rate plus per-unit making charges, and any shortfall becomes an
additional payment. A surplus is not refunded.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import uuid

from .currency import Money, Currency, sum_money
from .clock import Clock, SystemClock
from .exceptions import (
    EntityNotFoundError, InsufficientStockError, InvalidAmountError,
    InvalidStateError, RateNotFoundError
)
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .sequences import SequenceIssuer, REDEMPTION_PREFIX
from .rates import MetalType
from .inventory import InventoryManager, Product
from .savings import (
    SavingsManager, check_redemption_eligibility, mark_redeemed, restore_unredeemed
)


logger = logging.getLogger("jewel_ledger.redemptions")

RateLookup = Callable[[MetalType, Optional[str]], Optional[Decimal]]


@dataclass(frozen=True)
class RedemptionLine:
    """Requested purchase line; unset fields are filled from the product and rate book"""
    product_id: str
    quantity: int = 1
    rate: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    making_charges: Optional[Money] = None


def _validate_line(line: RedemptionLine) -> None:
    if line.quantity < 1:
        raise InvalidAmountError("Quantity must be at least 1", line.quantity)
    if line.rate is not None and line.rate < Decimal('0'):
        raise InvalidAmountError("Rate per gram cannot be negative", line.rate)
    if line.weight is not None and line.weight < Decimal('0'):
        raise InvalidAmountError("Weight cannot be negative", line.weight)
    if line.making_charges is not None and line.making_charges.is_negative():
        raise InvalidAmountError("Making charges cannot be negative", line.making_charges.amount)


@dataclass(frozen=True)
class RedemptionItem:
    """Priced purchase line"""
    product_id: str
    product_name: str
    quantity: int
    metal: MetalType
    purity: Optional[str]
    rate: Decimal
    weight: Decimal
    making_charges: Money
    line_total: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'metal': self.metal.value,
            'purity': self.purity,
            'rate': str(self.rate),
            'weight': str(self.weight),
            'making_charges': str(self.making_charges.amount),
            'line_total': str(self.line_total.amount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'RedemptionItem':
        return cls(
            product_id=data['product_id'],
            product_name=data.get('product_name', ""),
            quantity=data['quantity'],
            metal=MetalType(data['metal']),
            purity=data.get('purity'),
            rate=Decimal(data['rate']),
            weight=Decimal(data['weight']),
            making_charges=Money(Decimal(data['making_charges']), currency),
            line_total=Money(Decimal(data['line_total']), currency),
        )


@dataclass(frozen=True)
class Settlement:
    items: Tuple[RedemptionItem, ...]
    maturity_amount: Money
    total_purchase_amount: Money
    additional_payment_amount: Money

    @property
    def additional_payment_required(self) -> bool:
        return self.additional_payment_amount.is_positive()


class RedemptionSettlementCalculator:
    """
    Prices redemption lines and settles them against a maturity amount.

    Reads products and rates through the supplied collaborators but never
    changes stock; the caller decrements it once settlement succeeds.
    """

    def __init__(self, inventory: InventoryManager, rate_lookup: RateLookup):
        self.inventory = inventory
        self.rate_lookup = rate_lookup

    def settle(self, maturity_amount: Money, lines: Iterable[RedemptionLine]) -> Settlement:
        """
        Raises:
            InvalidAmountError: If there are no lines, a quantity is below one, or
                an explicit rate, weight or making charge is negative
            EntityNotFoundError: If a product does not exist
            InsufficientStockError: If a product lacks stock for the total requested
            RateNotFoundError: If a gold or silver line has no rate and no active rate exists
        """
        lines = list(lines)
        if not lines:
            raise InvalidAmountError("At least one item is required for redemption")
        for line in lines:
            _validate_line(line)

        products = self._check_stock(lines)

        currency = maturity_amount.currency
        items = tuple(self._price_line(line, products[line.product_id], currency) for line in lines)
        total = sum_money((item.line_total for item in items), currency)
        additional = (total - maturity_amount).max(Money.zero(currency))

        return Settlement(
            items=items,
            maturity_amount=maturity_amount,
            total_purchase_amount=total,
            additional_payment_amount=additional,
        )

    def _check_stock(self, lines: List[RedemptionLine]) -> Dict[str, Product]:
        requested: Dict[str, int] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        products = {}
        for product_id, quantity in requested.items():
            product = self.inventory.get_product(product_id)
            if not self.inventory.check_available(product_id, quantity):
                raise InsufficientStockError(product_id, quantity, product.stock, product.name)
            products[product_id] = product
        return products

    def _price_line(self, line: RedemptionLine, product: Product, currency: Currency) -> RedemptionItem:
        metal = product.metal
        # A zero rate counts as not given
        rate = line.rate
        if not rate:
            rate = self.rate_lookup(metal, product.purity)
            if rate is None:
                if metal.is_precious:
                    raise RateNotFoundError(metal.value, product.purity)
                rate = Decimal('0')

        weight = line.weight if line.weight is not None else product.net_weight
        making_charges = line.making_charges if line.making_charges is not None else product.making_charges
        metal_value = Money(weight * rate * line.quantity, currency)
        line_total = metal_value + making_charges * line.quantity

        logger.debug(f"Priced {product.name}: {weight}g x {rate} x {line.quantity} "
                     f"+ making {making_charges.to_string()} = {line_total.to_string()}")

        return RedemptionItem(
            product_id=product.id,
            product_name=product.name,
            quantity=line.quantity,
            metal=metal,
            purity=product.purity,
            rate=rate,
            weight=weight,
            making_charges=making_charges,
            line_total=line_total,
        )


@dataclass
class Redemption(StorageRecord):
    """A scheme redeemed against a purchase"""
    redemption_number: str
    saving_id: str
    customer_id: str
    items: Tuple[RedemptionItem, ...]
    maturity_amount: Money
    total_purchase_amount: Money
    additional_payment_amount: Money
    redemption_date: date
    sale_id: Optional[str] = None
    notes: str = ""
    version: int = 0

    @property
    def additional_payment_required(self) -> bool:
        return self.additional_payment_amount.is_positive()

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'redemption_number': self.redemption_number,
            'saving_id': self.saving_id,
            'customer_id': self.customer_id,
            'items': [item.to_dict() for item in self.items],
            'currency': self.maturity_amount.currency.code,
            'maturity_amount': str(self.maturity_amount.amount),
            'total_purchase_amount': str(self.total_purchase_amount.amount),
            'additional_payment_required': self.additional_payment_required,
            'additional_payment_amount': str(self.additional_payment_amount.amount),
            'redemption_date': self.redemption_date.isoformat(),
            'sale_id': self.sale_id,
            'notes': self.notes,
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Redemption':
        data = cls.parse_timestamps(data)
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            redemption_number=data['redemption_number'],
            saving_id=data['saving_id'],
            customer_id=data['customer_id'],
            items=tuple(RedemptionItem.from_dict(i, currency) for i in data['items']),
            maturity_amount=Money(Decimal(data['maturity_amount']), currency),
            total_purchase_amount=Money(Decimal(data['total_purchase_amount']), currency),
            additional_payment_amount=Money(Decimal(data['additional_payment_amount']), currency),
            redemption_date=date.fromisoformat(data['redemption_date']),
            sale_id=data.get('sale_id'),
            notes=data.get('notes', ""),
            version=data.get('version', 0),
        )


class RedemptionManager:
    """Creates and reverses redemptions, keeping stock and schemes in step"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        sequences: SequenceIssuer,
        savings: SavingsManager,
        inventory: InventoryManager,
        rate_lookup: RateLookup,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.sequences = sequences
        self.savings = savings
        self.inventory = inventory
        self.clock = clock or SystemClock()
        self.calculator = RedemptionSettlementCalculator(inventory, rate_lookup)

        self.redemptions_table = "redemptions"

    def create_redemption(self, saving_id: str, lines: Iterable[RedemptionLine],
                          notes: str = "") -> Redemption:
        """
        Redeem a scheme against a purchase.

        Eligibility, settlement, stock decrement and marking the scheme
        redeemed commit together or not at all.
        """
        lines = list(lines)
        now = self.clock.now()

        with self.storage.atomic():
            scheme = self.savings.get_scheme(saving_id)
            check_redemption_eligibility(scheme)

            maturity = self.savings.maturity_calculator.calculate_maturity(scheme)
            settlement = self.calculator.settle(maturity.maturity_amount, lines)

            redemption = Redemption(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                redemption_number=self.sequences.next_number(REDEMPTION_PREFIX, now.date()),
                saving_id=scheme.id,
                customer_id=scheme.customer_id,
                items=settlement.items,
                maturity_amount=settlement.maturity_amount,
                total_purchase_amount=settlement.total_purchase_amount,
                additional_payment_amount=settlement.additional_payment_amount,
                redemption_date=self.clock.today(),
                notes=notes,
            )
            version = self.storage.replace(self.redemptions_table, redemption.id, redemption.to_dict(), 0)
            redemption = replace(redemption, version=version)

            for item in settlement.items:
                self.inventory.apply_stock_delta(item.product_id, -item.quantity)

            self.savings.save_scheme(mark_redeemed(scheme, redemption.redemption_date, redemption.id))

        logger.info(
            f"Redemption {redemption.redemption_number} for scheme {scheme.scheme_number}: "
            f"purchase {redemption.total_purchase_amount.to_string()} against maturity "
            f"{redemption.maturity_amount.to_string()}, additional "
            f"{redemption.additional_payment_amount.to_string()}"
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.REDEMPTION_CREATED,
            entity_type="redemption",
            entity_id=redemption.id,
            metadata={
                "redemption_number": redemption.redemption_number,
                "saving_id": saving_id,
                "maturity_amount": redemption.maturity_amount.amount,
                "total_purchase_amount": redemption.total_purchase_amount.amount,
                "additional_payment_amount": redemption.additional_payment_amount.amount,
                "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in redemption.items],
            }
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.SAVING_REDEEMED,
            entity_type="saving",
            entity_id=saving_id,
            metadata={"redemption_id": redemption.id, "direct": False}
        )
        return redemption

    def get_redemption(self, redemption_id: str) -> Redemption:
        data = self.storage.load(self.redemptions_table, redemption_id)
        if not data:
            raise EntityNotFoundError("redemption", redemption_id)
        return Redemption.from_dict(data)

    def get_redemption_for_saving(self, saving_id: str) -> Optional[Redemption]:
        records = self.storage.find(self.redemptions_table, {'saving_id': saving_id})
        return Redemption.from_dict(records[0]) if records else None

    def list_redemptions(self) -> List[Redemption]:
        redemptions = [Redemption.from_dict(r) for r in self.storage.load_all(self.redemptions_table)]
        return sorted(redemptions, key=lambda r: r.created_at, reverse=True)

    def link_sale(self, redemption_id: str, sale_id: str) -> Redemption:
        """Attach the sale that billed this redemption; a linked redemption can no longer be reversed"""
        with self.storage.atomic():
            redemption = self.get_redemption(redemption_id)
            updated = replace(redemption, sale_id=sale_id, updated_at=self.clock.now())
            version = self.storage.replace(self.redemptions_table, redemption_id,
                                           updated.to_dict(), redemption.version)
        logger.info(f"Redemption {redemption.redemption_number} linked to sale {sale_id}")
        return replace(updated, version=version)

    def reverse_redemption(self, redemption_id: str) -> None:
        """
        Delete a redemption, returning its items to stock and the scheme to
        Completed / not redeemed.

        Raises:
            InvalidStateError: If the redemption is already linked to a sale
        """
        with self.storage.atomic():
            redemption = self.get_redemption(redemption_id)
            if redemption.sale_id:
                raise InvalidStateError(
                    "Cannot delete redemption that is linked to a sale. Delete the sale first.",
                    {'redemption_id': redemption_id, 'sale_id': redemption.sale_id}
                )

            for item in redemption.items:
                self.inventory.apply_stock_delta(item.product_id, item.quantity)

            scheme = self.savings.get_scheme(redemption.saving_id)
            self.savings.save_scheme(restore_unredeemed(scheme))
            self.storage.delete(self.redemptions_table, redemption_id)

        logger.info(f"Reversed redemption {redemption.redemption_number}")
        self.audit_trail.log_event(
            event_type=AuditEventType.REDEMPTION_REVERSED,
            entity_type="redemption",
            entity_id=redemption_id,
            metadata={
                "redemption_number": redemption.redemption_number,
                "saving_id": redemption.saving_id,
                "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in redemption.items],
            }
        )
