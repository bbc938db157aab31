"""
Ledger system wiring and request dependencies
"""

from decimal import Decimal
from typing import Optional

from fastapi import HTTPException

from ..storage import StorageInterface, create_storage
from ..clock import Clock, SystemClock
from ..currency import Currency
from ..audit import AuditTrail
from ..sequences import SequenceIssuer
from ..rates import RateBook
from ..inventory import InventoryManager
from ..loans import LoanManager
from ..savings import SavingsManager
from ..redemptions import RedemptionManager
from ..exceptions import ConcurrentModificationError, EntityNotFoundError
from ..config import LedgerConfig, get_config


class LedgerSystem:
    """All ledger components wired over one storage backend"""

    def __init__(self, storage: Optional[StorageInterface] = None, clock: Optional[Clock] = None,
                 config: Optional[LedgerConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.storage_backend, self.config.database_path)
        self.clock = clock or SystemClock()
        self.currency = Currency[self.config.default_currency]

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.sequences = SequenceIssuer(self.storage)
        self.rate_book = RateBook(self.storage, self.audit_trail, self.clock)
        self.inventory = InventoryManager(self.storage, self.audit_trail, self.clock)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, self.sequences, self.clock)
        self.savings_manager = SavingsManager(
            self.storage, self.audit_trail, self.sequences, self.clock,
            min_paid_ratio=Decimal(self.config.direct_redemption_min_paid_ratio)
        )
        self.redemption_manager = RedemptionManager(
            self.storage, self.audit_trail, self.sequences,
            self.savings_manager, self.inventory,
            rate_lookup=self.rate_book.find_active_rate,
            clock=self.clock
        )


# Global ledger system, created on first request
ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    global ledger_system
    if ledger_system is None:
        ledger_system = LedgerSystem()
    return ledger_system


def http_error(error: Exception) -> HTTPException:
    """Map a ledger error onto an HTTP status"""
    if isinstance(error, EntityNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConcurrentModificationError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
