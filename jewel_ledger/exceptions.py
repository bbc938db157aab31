"""Typed errors raised by the ledger engine and its managers."""

from typing import Any, Optional


class LedgerError(ValueError):
    """Base exception for all ledger errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class InvalidAmountError(LedgerError):
    """Raised for a non-positive payment, installment, quantity or principal."""

    def __init__(self, message: str, amount: Any = None):
        details = {'amount': str(amount)} if amount is not None else {}
        super().__init__(message, details)


class InvalidPaymentDateError(LedgerError):
    """Raised when a loan payment is dated before the loan start date."""

    def __init__(self, payment_date, start_date):
        super().__init__(
            f"Payment date {payment_date.isoformat()} is before loan start {start_date.isoformat()}",
            {'payment_date': payment_date.isoformat(), 'start_date': start_date.isoformat()}
        )


class RateNotFoundError(LedgerError):
    """Raised when no active rate exists for a precious metal and purity."""

    def __init__(self, metal: str, purity: Optional[str]):
        super().__init__(
            f"Current rate not found for {metal} with purity {purity}",
            {'metal': metal, 'purity': purity}
        )


class InsufficientStockError(LedgerError):
    """Raised when a redemption line asks for more units than are in stock."""

    def __init__(self, product_id: str, requested: int, available: int, product_name: str = None):
        name = product_name or product_id
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}",
            {'product_id': product_id, 'requested': requested, 'available': available}
        )


class AlreadyRedeemedError(LedgerError):
    """Raised when a saving scheme has already been redeemed."""

    def __init__(self, saving_id: str):
        super().__init__("This saving scheme has already been redeemed", {'saving_id': saving_id})


class IneligibleForRedemptionError(LedgerError):
    """Raised when a saving scheme's status does not allow redemption."""

    def __init__(self, saving_id: str, status: str, reason: str = None):
        message = reason or "This saving scheme is not eligible for redemption. It must be completed or active."
        super().__init__(message, {'saving_id': saving_id, 'status': status})


class InvalidStateError(LedgerError):
    """Raised when an entity is in the wrong status for the operation."""


class EntityNotFoundError(LedgerError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type.capitalize()} '{entity_id}' not found",
                         {'entity_type': entity_type, 'entity_id': entity_id})
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConcurrentModificationError(LedgerError):
    """Raised when a versioned replace finds the stored record has moved on."""

    def __init__(self, table: str, record_id: str, expected: int, actual: Optional[int]):
        super().__init__(
            f"Record {table}/{record_id} was modified concurrently",
            {'expected_version': expected, 'actual_version': actual}
        )
