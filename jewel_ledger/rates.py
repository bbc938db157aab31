"""
Metal Rates Module

Daily per-gram rates for precious metals. At most one rate is active per
(metal, purity); setting a new one retires the previous.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .clock import Clock, SystemClock
from .exceptions import InvalidAmountError, EntityNotFoundError
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType


logger = logging.getLogger("jewel_ledger.rates")


class MetalType(Enum):
    GOLD = "Gold"
    SILVER = "Silver"
    OTHER = "Other"

    @classmethod
    def from_category(cls, category: str) -> 'MetalType':
        """Classify a product category such as 'Gold Necklace' by the metal it names"""
        category = category or ""
        if "Gold" in category:
            return cls.GOLD
        if "Silver" in category:
            return cls.SILVER
        return cls.OTHER

    @property
    def is_precious(self) -> bool:
        """Precious metals must have a rate before they can be priced"""
        return self in (MetalType.GOLD, MetalType.SILVER)


@dataclass
class Rate(StorageRecord):
    """Per-gram rate for one metal and purity"""
    metal: MetalType
    purity: str                 # e.g. "22K", "24K", "925"
    rate_per_gram: Decimal
    rate_date: date
    is_active: bool = True
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'metal': self.metal.value,
            'purity': self.purity,
            'rate_per_gram': str(self.rate_per_gram),
            'rate_date': self.rate_date.isoformat(),
            'is_active': self.is_active,
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rate':
        data = cls.parse_timestamps(data)
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            metal=MetalType(data['metal']),
            purity=data['purity'],
            rate_per_gram=Decimal(data['rate_per_gram']),
            rate_date=date.fromisoformat(data['rate_date']),
            is_active=data.get('is_active', True),
            version=data.get('version', 0),
        )


class RateBook:
    """Stores metal rates and answers active-rate lookups"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 clock: Optional[Clock] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.rates_table = "rates"

    def set_rate(self, metal: MetalType, purity: str, rate_per_gram: Decimal,
                 rate_date: Optional[date] = None) -> Rate:
        """Record a new active rate, retiring any other active rate for the same metal and purity"""
        if not isinstance(rate_per_gram, Decimal):
            rate_per_gram = Decimal(str(rate_per_gram))
        if rate_per_gram <= Decimal('0'):
            raise InvalidAmountError("Rate per gram must be greater than zero", rate_per_gram)

        now = self.clock.now()
        with self.storage.atomic():
            retired = 0
            for existing in self._active_rates(metal, purity):
                stale = replace(existing, is_active=False, updated_at=now)
                self.storage.replace(self.rates_table, stale.id, stale.to_dict(), existing.version)
                retired += 1

            rate = Rate(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                metal=metal,
                purity=purity,
                rate_per_gram=rate_per_gram,
                rate_date=rate_date or self.clock.today(),
            )
            version = self.storage.replace(self.rates_table, rate.id, rate.to_dict(), 0)
            rate = replace(rate, version=version)

        logger.info(f"Set {metal.value} {purity} rate to {rate_per_gram}/g (retired {retired})")
        self.audit_trail.log_event(
            event_type=AuditEventType.RATE_SET,
            entity_type="rate",
            entity_id=rate.id,
            metadata={
                "metal": metal,
                "purity": purity,
                "rate_per_gram": rate_per_gram,
                "rate_date": rate.rate_date,
            }
        )
        return rate

    def find_active_rate(self, metal: MetalType, purity: Optional[str]) -> Optional[Decimal]:
        """Per-gram rate of the active rate for (metal, purity), or None"""
        active = self._active_rates(metal, purity)
        if not active:
            return None
        return max(active, key=lambda r: (r.rate_date, r.created_at)).rate_per_gram

    def get_rate(self, rate_id: str) -> Rate:
        data = self.storage.load(self.rates_table, rate_id)
        if not data:
            raise EntityNotFoundError("rate", rate_id)
        return Rate.from_dict(data)

    def list_rates(self, active_only: bool = False) -> List[Rate]:
        if active_only:
            records = self.storage.find(self.rates_table, {'is_active': True})
        else:
            records = self.storage.load_all(self.rates_table)
        rates = [Rate.from_dict(r) for r in records]
        return sorted(rates, key=lambda r: (r.metal.value, r.purity, r.rate_date))

    def _active_rates(self, metal: MetalType, purity: Optional[str]) -> List[Rate]:
        records = self.storage.find(self.rates_table, {
            'metal': metal.value,
            'purity': purity,
            'is_active': True,
        })
        return [Rate.from_dict(r) for r in records]
