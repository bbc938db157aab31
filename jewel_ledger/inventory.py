"""
Inventory Module

Products on the shop floor and their stock counts. Redemptions check
availability here and decrement stock once a settlement succeeds.
"""

from decimal import Decimal
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple
import logging
import uuid

from .currency import Money, Currency
from .clock import Clock, SystemClock
from .exceptions import EntityNotFoundError, InsufficientStockError, InvalidAmountError
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .rates import MetalType


logger = logging.getLogger("jewel_ledger.inventory")


@dataclass
class Product(StorageRecord):
    """A stocked jewelry item"""
    name: str
    category: str                       # e.g. "Gold Necklace"
    purity: Optional[str]
    net_weight: Decimal                 # grams per unit
    making_charges: Money               # flat, per unit
    stock: int = 0
    version: int = 0

    def __post_init__(self):
        if self.stock < 0:
            raise InvalidAmountError("Stock cannot be negative", self.stock)

    @property
    def metal(self) -> MetalType:
        return MetalType.from_category(self.category)

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'name': self.name,
            'category': self.category,
            'purity': self.purity,
            'net_weight': str(self.net_weight),
            'making_charges': str(self.making_charges.amount),
            'currency': self.making_charges.currency.code,
            'stock': self.stock,
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Product':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            name=data['name'],
            category=data['category'],
            purity=data.get('purity'),
            net_weight=Decimal(data['net_weight']),
            making_charges=Money(Decimal(data['making_charges']), Currency[data['currency']]),
            stock=data.get('stock', 0),
            version=data.get('version', 0),
        )


class InventoryManager:
    """Product catalogue and stock levels"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 clock: Optional[Clock] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.products_table = "products"

    def create_product(self, name: str, category: str, net_weight: Decimal,
                       making_charges: Money, stock: int = 0,
                       purity: Optional[str] = None) -> Product:
        if net_weight < Decimal('0'):
            raise InvalidAmountError("Net weight cannot be negative", net_weight)
        if making_charges.is_negative():
            raise InvalidAmountError("Making charges cannot be negative", making_charges.amount)

        now = self.clock.now()
        product = Product(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            category=category,
            purity=purity,
            net_weight=net_weight,
            making_charges=making_charges,
            stock=stock,
        )
        version = self.storage.replace(self.products_table, product.id, product.to_dict(), 0)
        product = replace(product, version=version)

        logger.info(f"Created product {name} ({category}) with stock {stock}")
        self.audit_trail.log_event(
            event_type=AuditEventType.PRODUCT_CREATED,
            entity_type="product",
            entity_id=product.id,
            metadata={"name": name, "category": category, "stock": stock}
        )
        return product

    def get_product(self, product_id: str) -> Product:
        data = self.storage.load(self.products_table, product_id)
        if not data:
            raise EntityNotFoundError("product", product_id)
        return Product.from_dict(data)

    def list_products(self) -> List[Product]:
        products = [Product.from_dict(p) for p in self.storage.load_all(self.products_table)]
        return sorted(products, key=lambda p: p.name)

    def check_available(self, product_id: str, quantity: int) -> bool:
        return self.get_product(product_id).stock >= quantity

    def adjust_stock(self, product_id: str, delta: int, reason: str = "") -> Product:
        """
        Add ``delta`` units (negative to remove)

        Raises:
            InsufficientStockError: If stock would go below zero
        """
        with self.storage.atomic():
            previous, updated = self.apply_stock_delta(product_id, delta)

        logger.info(f"Stock of {updated.name}: {previous.stock} -> {updated.stock} {reason}".rstrip())
        self.audit_trail.log_event(
            event_type=AuditEventType.STOCK_ADJUSTED,
            entity_type="product",
            entity_id=product_id,
            metadata={"delta": delta, "stock": updated.stock, "reason": reason}
        )
        return updated

    def apply_stock_delta(self, product_id: str, delta: int) -> Tuple[Product, Product]:
        """
        Write a stock change without auditing; for use inside a caller's
        atomic block. Returns (before, after).
        """
        product = self.get_product(product_id)
        new_stock = product.stock + delta
        if new_stock < 0:
            raise InsufficientStockError(product_id, -delta, product.stock, product.name)
        updated = replace(product, stock=new_stock, updated_at=self.clock.now())
        version = self.storage.replace(self.products_table, product_id, updated.to_dict(), product.version)
        return product, replace(updated, version=version)
