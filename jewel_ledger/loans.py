"""
Loan Module

Pawn-style gold loans: simple monthly interest accrued over irregular payment
intervals, interest-first payment allocation, extensions and status
derivation.

The calculators here are pure: they take a Loan and return new values or a
new Loan built with ``dataclasses.replace``. The accrual is always replayed
from the full payment history, never kept as a running total, so editing or
removing an out-of-order payment cannot leave drift behind. ``LoanManager``
is the store-facing layer that loads, calls the calculators, and persists.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, percent_of, sum_money
from .clock import Clock, SystemClock
from .exceptions import (
    EntityNotFoundError, InvalidAmountError, InvalidPaymentDateError, InvalidStateError
)
from .periods import whole_months_between
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .sequences import SequenceIssuer, LOAN_PREFIX


logger = logging.getLogger("jewel_ledger.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "Active"
    CLOSED = "Closed"          # Paid in full; derived, never set directly
    DEFAULTED = "Defaulted"
    EXTENDED = "Extended"


class PaymentMethod(Enum):
    CASH = "Cash"
    CARD = "Card"
    UPI = "UPI"
    BANK_TRANSFER = "Bank Transfer"
    PARTIAL = "Partial"
    OTHER = "Other"


class PledgedItemType(Enum):
    GOLD_JEWELRY = "Gold Jewelry"
    SILVER_JEWELRY = "Silver Jewelry"
    DIAMOND_JEWELRY = "Diamond Jewelry"
    OTHER_JEWELRY = "Other Jewelry"
    WATCH = "Watch"
    OTHER = "Other"


@dataclass(frozen=True)
class PledgedItem:
    """Collateral held against a loan"""
    name: str
    weight: Decimal                     # grams
    loan_amount: Money
    item_type: PledgedItemType = PledgedItemType.GOLD_JEWELRY
    purity: Optional[str] = None        # e.g. "22K"
    quantity: int = 1
    description: str = ""

    def __post_init__(self):
        if self.quantity < 1:
            raise InvalidAmountError("Quantity must be at least 1", self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'weight': str(self.weight),
            'loan_amount': str(self.loan_amount.amount),
            'item_type': self.item_type.value,
            'purity': self.purity,
            'quantity': self.quantity,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'PledgedItem':
        return cls(
            name=data['name'],
            weight=Decimal(data['weight']),
            loan_amount=Money(Decimal(data['loan_amount']), currency),
            item_type=PledgedItemType(data['item_type']),
            purity=data.get('purity'),
            quantity=data.get('quantity', 1),
            description=data.get('description', ""),
        )


@dataclass(frozen=True)
class LoanPayment:
    """A payment received against a loan"""
    id: str
    amount: Money
    date: date
    method: PaymentMethod = PaymentMethod.CASH
    applied_to_interest: Optional[Money] = None
    applied_to_principal: Optional[Money] = None
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'amount': str(self.amount.amount),
            'date': self.date.isoformat(),
            'method': self.method.value,
            'applied_to_interest': str(self.applied_to_interest.amount) if self.applied_to_interest else None,
            'applied_to_principal': str(self.applied_to_principal.amount) if self.applied_to_principal else None,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'LoanPayment':
        def money(key):
            value = data.get(key)
            return Money(Decimal(value), currency) if value is not None else None

        return cls(
            id=data['id'],
            amount=Money(Decimal(data['amount']), currency),
            date=date.fromisoformat(data['date']),
            method=PaymentMethod(data.get('method', PaymentMethod.CASH.value)),
            applied_to_interest=money('applied_to_interest'),
            applied_to_principal=money('applied_to_principal'),
            notes=data.get('notes', ""),
        )


@dataclass(frozen=True)
class LoanExtension:
    """Record of a due-date extension"""
    previous_due_date: Optional[date]
    new_due_date: date
    reason: str
    fee: Money
    extended_on: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'previous_due_date': self.previous_due_date.isoformat() if self.previous_due_date else None,
            'new_due_date': self.new_due_date.isoformat(),
            'reason': self.reason,
            'fee': str(self.fee.amount),
            'extended_on': self.extended_on.isoformat() if self.extended_on else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'LoanExtension':
        previous = data.get('previous_due_date')
        extended_on = data.get('extended_on')
        return cls(
            previous_due_date=date.fromisoformat(previous) if previous else None,
            new_due_date=date.fromisoformat(data['new_due_date']),
            reason=data.get('reason', ""),
            fee=Money(Decimal(data.get('fee', '0')), currency),
            extended_on=date.fromisoformat(extended_on) if extended_on else None,
        )


@dataclass
class Loan(StorageRecord):
    """Gold loan with its full payment history"""
    loan_number: str
    customer_id: str
    principal: Money
    monthly_rate_percent: Decimal       # simple interest, percent per month
    start_date: date
    due_date: Optional[date] = None
    items: Tuple[PledgedItem, ...] = ()
    payments: Tuple[LoanPayment, ...] = ()
    extensions: Tuple[LoanExtension, ...] = ()
    status: LoanStatus = LoanStatus.ACTIVE
    notes: str = ""
    version: int = 0

    def __post_init__(self):
        if not isinstance(self.monthly_rate_percent, Decimal):
            self.monthly_rate_percent = Decimal(str(self.monthly_rate_percent))
        if not self.principal.is_positive():
            raise InvalidAmountError("Loan principal must be greater than zero", self.principal.amount)
        if self.monthly_rate_percent < Decimal('0'):
            raise InvalidAmountError("Interest rate cannot be negative", self.monthly_rate_percent)
        self.items = tuple(self.items)
        self.payments = tuple(self.payments)
        self.extensions = tuple(self.extensions)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    def find_payment(self, payment_id: str) -> Optional[LoanPayment]:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        return None

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'loan_number': self.loan_number,
            'customer_id': self.customer_id,
            'principal': str(self.principal.amount),
            'currency': self.currency.code,
            'monthly_rate_percent': str(self.monthly_rate_percent),
            'start_date': self.start_date.isoformat(),
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'items': [item.to_dict() for item in self.items],
            'payments': [payment.to_dict() for payment in self.payments],
            'extensions': [extension.to_dict() for extension in self.extensions],
            'status': self.status.value,
            'notes': self.notes,
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = cls.parse_timestamps(data)
        currency = Currency[data['currency']]
        due_date = data.get('due_date')
        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            loan_number=data['loan_number'],
            customer_id=data['customer_id'],
            principal=Money(Decimal(data['principal']), currency),
            monthly_rate_percent=Decimal(data['monthly_rate_percent']),
            start_date=date.fromisoformat(data['start_date']),
            due_date=date.fromisoformat(due_date) if due_date else None,
            items=tuple(PledgedItem.from_dict(i, currency) for i in data.get('items', [])),
            payments=tuple(LoanPayment.from_dict(p, currency) for p in data.get('payments', [])),
            extensions=tuple(LoanExtension.from_dict(e, currency) for e in data.get('extensions', [])),
            status=LoanStatus(data['status']),
            notes=data.get('notes', ""),
            version=data.get('version', 0),
        )


@dataclass(frozen=True)
class AccrualSnapshot:
    """Outstanding position of a loan as of a date"""
    as_of: date
    original_principal: Money
    remaining_principal: Money
    interest_accrued: Money
    total_due: Money
    total_paid: Money
    paid_in_full: bool
    monthly_rate_percent: Decimal

    @property
    def monthly_interest_amount(self) -> Money:
        """Interest one more whole month would add on the remaining principal"""
        return percent_of(self.remaining_principal, self.monthly_rate_percent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'as_of': self.as_of.isoformat(),
            'original_principal': str(self.original_principal.amount),
            'remaining_principal': str(self.remaining_principal.amount),
            'interest_accrued': str(self.interest_accrued.amount),
            'total_due': str(self.total_due.amount),
            'total_paid': str(self.total_paid.amount),
            'paid_in_full': self.paid_in_full,
            'monthly_rate_percent': str(self.monthly_rate_percent),
            'monthly_interest_amount': str(self.monthly_interest_amount.amount),
        }


class LoanAccrualCalculator:
    """
    Replays a loan's payment history to find what is owed as of a date.

    Interest is simple (never compounded), charged per whole elapsed month on
    the principal outstanding at the start of each period. A trailing partial
    month is not charged. Each payment clears accrued interest first and the
    remainder reduces principal, which never goes below zero.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def today(self) -> date:
        return self.clock.today()

    def accrue(self, loan: Loan, as_of: Optional[date] = None) -> AccrualSnapshot:
        """
        Compute the loan position as of ``as_of`` (defaults to today)

        Every recorded payment is replayed, including any dated after
        ``as_of``; such a payment ends up in the position while the final
        period from it to ``as_of`` accrues nothing.

        Raises:
            InvalidPaymentDateError: If any payment predates the loan start
        """
        if as_of is None:
            as_of = self.today()

        currency = loan.currency
        zero = Money.zero(currency)

        # sorted() is stable, so same-day payments keep their recorded order
        payments = sorted(loan.payments, key=lambda p: p.date)
        for payment in payments:
            if payment.date < loan.start_date:
                raise InvalidPaymentDateError(payment.date, loan.start_date)

        remaining_principal = loan.principal
        accrued_interest = zero
        cursor = loan.start_date

        for payment in payments:
            accrued_interest = accrued_interest + self._interest_for_period(
                remaining_principal, loan.monthly_rate_percent, cursor, payment.date
            )

            to_interest = payment.amount.min(accrued_interest)
            accrued_interest = accrued_interest - to_interest
            to_principal = payment.amount - to_interest
            remaining_principal = (remaining_principal - to_principal).max(zero)

            cursor = payment.date

        if remaining_principal.is_positive():
            accrued_interest = accrued_interest + self._interest_for_period(
                remaining_principal, loan.monthly_rate_percent, cursor, as_of
            )

        total_due = remaining_principal + accrued_interest
        total_paid = sum_money((p.amount for p in payments), currency)

        return AccrualSnapshot(
            as_of=as_of,
            original_principal=loan.principal,
            remaining_principal=remaining_principal,
            interest_accrued=accrued_interest,
            total_due=total_due,
            total_paid=total_paid,
            paid_in_full=total_due <= zero,
            monthly_rate_percent=loan.monthly_rate_percent,
        )

    @staticmethod
    def _interest_for_period(principal: Money, monthly_rate_percent: Decimal,
                             start: date, end: date) -> Money:
        months = whole_months_between(start, end)
        if months <= 0:
            return Money.zero(principal.currency)
        return Money(principal.amount * monthly_rate_percent / Decimal('100') * months,
                     principal.currency)


def derive_loan_status(current: LoanStatus, snapshot: AccrualSnapshot) -> LoanStatus:
    """Closed exactly when paid in full; a Closed loan that is no longer paid reopens"""
    if snapshot.paid_in_full:
        return LoanStatus.CLOSED
    if current == LoanStatus.CLOSED:
        return LoanStatus.ACTIVE
    return current


@dataclass(frozen=True)
class PaymentAllocation:
    """Result of applying a new payment to a loan"""
    payment: LoanPayment
    applied_to_interest: Money
    applied_to_principal: Money
    before: AccrualSnapshot             # as of the payment date, before the payment
    after: AccrualSnapshot              # as of today, with the payment
    updated_loan: Loan

    @property
    def excess_amount(self) -> Money:
        """Part of the payment beyond the principal that was outstanding"""
        zero = Money.zero(self.applied_to_principal.currency)
        return (self.applied_to_principal - self.before.remaining_principal).max(zero)


@dataclass(frozen=True)
class PaymentRemoval:
    removed_payment: LoanPayment
    snapshot: AccrualSnapshot
    updated_loan: Loan


class LoanPaymentAllocator:
    """Splits payments between outstanding interest and principal"""

    def __init__(self, calculator: Optional[LoanAccrualCalculator] = None):
        self.calculator = calculator or LoanAccrualCalculator()

    def allocate(
        self,
        loan: Loan,
        payment_amount: Money,
        payment_date: Optional[date] = None,
        method: PaymentMethod = PaymentMethod.CASH,
        notes: str = "",
        payment_id: Optional[str] = None
    ) -> PaymentAllocation:
        """
        Apply a new payment: interest first, remainder to principal.

        The split is taken from an accrual as of ``payment_date`` over the
        recorded history, so a back-dated payment is split against interest
        that already reflects any later recorded payments.

        Raises:
            InvalidAmountError: If the payment is not positive
            InvalidPaymentDateError: If the payment predates the loan start
        """
        if not payment_amount.is_positive():
            raise InvalidAmountError("Payment amount must be greater than zero", payment_amount.amount)
        if payment_date is None:
            payment_date = self.calculator.today()
        if payment_date < loan.start_date:
            raise InvalidPaymentDateError(payment_date, loan.start_date)

        before = self.calculator.accrue(loan, payment_date)
        pending_interest = before.interest_accrued

        if payment_amount <= pending_interest:
            applied_to_interest = payment_amount
            applied_to_principal = Money.zero(loan.currency)
        else:
            applied_to_interest = pending_interest
            applied_to_principal = payment_amount - pending_interest

        payment = LoanPayment(
            id=payment_id or str(uuid.uuid4()),
            amount=payment_amount,
            date=payment_date,
            method=method,
            applied_to_interest=applied_to_interest,
            applied_to_principal=applied_to_principal,
            notes=_allocation_note(notes, method, applied_to_interest, applied_to_principal),
        )

        with_payment = replace(loan, payments=loan.payments + (payment,))
        after = self.calculator.accrue(with_payment, max(payment_date, self.calculator.today()))
        updated = replace(with_payment, status=derive_loan_status(loan.status, after))

        return PaymentAllocation(
            payment=payment,
            applied_to_interest=applied_to_interest,
            applied_to_principal=applied_to_principal,
            before=before,
            after=after,
            updated_loan=updated,
        )

    def remove_payment(self, loan: Loan, payment_id: str) -> PaymentRemoval:
        """
        Drop a payment and re-derive status from a fresh accrual as of today.

        Raises:
            EntityNotFoundError: If the loan has no such payment
        """
        removed = loan.find_payment(payment_id)
        if removed is None:
            raise EntityNotFoundError("payment", payment_id)

        remaining = tuple(p for p in loan.payments if p.id != payment_id)
        without_payment = replace(loan, payments=remaining)
        snapshot = self.calculator.accrue(without_payment, self.calculator.today())
        updated = replace(without_payment, status=derive_loan_status(loan.status, snapshot))

        return PaymentRemoval(removed_payment=removed, snapshot=snapshot, updated_loan=updated)


def _allocation_note(notes: str, method: PaymentMethod, to_interest: Money, to_principal: Money) -> str:
    text = notes or ""
    if method == PaymentMethod.PARTIAL and "Partial payment" not in text:
        text = f"{text} (Partial payment)" if text else "Partial payment"
    applied = f"Applied: {to_interest.to_string()} to interest, {to_principal.to_string()} to principal"
    return f"{text} ({applied})" if text else applied


def extend_loan(loan: Loan, new_due_date: date, reason: str, fee: Optional[Money] = None,
                extended_on: Optional[date] = None) -> Loan:
    """
    Move the due date and record the extension. The fee is recorded only.

    Raises:
        InvalidStateError: If the loan is closed
        InvalidAmountError: If the fee is negative
    """
    if loan.status == LoanStatus.CLOSED:
        raise InvalidStateError("Cannot extend a closed loan", {'loan_id': loan.id})
    if new_due_date < loan.start_date:
        raise InvalidStateError("New due date cannot be before the loan start date",
                                {'new_due_date': new_due_date.isoformat()})
    fee = fee or Money.zero(loan.currency)
    if fee.is_negative():
        raise InvalidAmountError("Extension fee cannot be negative", fee.amount)

    extension = LoanExtension(
        previous_due_date=loan.due_date,
        new_due_date=new_due_date,
        reason=reason,
        fee=fee,
        extended_on=extended_on,
    )
    return replace(
        loan,
        extensions=loan.extensions + (extension,),
        due_date=new_due_date,
        status=LoanStatus.EXTENDED,
    )


def mark_loan_defaulted(loan: Loan) -> Loan:
    if loan.status == LoanStatus.CLOSED:
        raise InvalidStateError("Cannot default a closed loan", {'loan_id': loan.id})
    return replace(loan, status=LoanStatus.DEFAULTED)


class LoanManager:
    """
    Loads loans, runs the calculators, and persists the results.

    Every read-compute-write runs inside ``storage.atomic()`` and is written
    with a versioned replace, so a stale snapshot can never be committed.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        sequences: SequenceIssuer,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.sequences = sequences
        self.clock = clock or SystemClock()
        self.calculator = LoanAccrualCalculator(self.clock)
        self.allocator = LoanPaymentAllocator(self.calculator)

        self.loans_table = "loans"

    def create_loan(
        self,
        customer_id: str,
        principal: Money,
        monthly_rate_percent: Decimal,
        start_date: Optional[date] = None,
        due_date: Optional[date] = None,
        items: Tuple[PledgedItem, ...] = (),
        notes: str = ""
    ) -> Loan:
        """Create a new Active loan with no payments"""
        now = self.clock.now()
        start_date = start_date or self.clock.today()

        with self.storage.atomic():
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_number=self.sequences.next_number(LOAN_PREFIX, now.date()),
                customer_id=customer_id,
                principal=principal,
                monthly_rate_percent=monthly_rate_percent,
                start_date=start_date,
                due_date=due_date,
                items=tuple(items),
                notes=notes,
            )
            loan = self._save_loan(loan)

        logger.info(f"Created loan {loan.loan_number} for {principal.to_string()} "
                    f"at {monthly_rate_percent}% per month")
        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CREATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "loan_number": loan.loan_number,
                "customer_id": customer_id,
                "principal": principal.amount,
                "monthly_rate_percent": monthly_rate_percent,
                "start_date": start_date,
            }
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise EntityNotFoundError("loan", loan_id)
        return Loan.from_dict(data)

    def list_customer_loans(self, customer_id: str) -> List[Loan]:
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, {'customer_id': customer_id})]
        return sorted(loans, key=lambda loan: loan.created_at, reverse=True)

    def calculate(self, loan_id: str, as_of: Optional[date] = None) -> AccrualSnapshot:
        """Current outstanding position, without any mutation"""
        return self.calculator.accrue(self.get_loan(loan_id), as_of)

    def add_payment(
        self,
        loan_id: str,
        amount: Money,
        payment_date: Optional[date] = None,
        method: PaymentMethod = PaymentMethod.CASH,
        notes: str = ""
    ) -> PaymentAllocation:
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            allocation = self.allocator.allocate(loan, amount, payment_date, method, notes)
            saved = self._save_loan(allocation.updated_loan)
            allocation = replace(allocation, updated_loan=saved)

        logger.info(
            f"Loan {loan.loan_number}: payment {amount.to_string()} applied "
            f"{allocation.applied_to_interest.to_string()} to interest, "
            f"{allocation.applied_to_principal.to_string()} to principal"
        )
        if allocation.excess_amount.is_positive():
            logger.warning(f"Loan {loan.loan_number}: payment exceeds outstanding principal "
                           f"by {allocation.excess_amount.to_string()}")

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_PAYMENT_ADDED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "payment_id": allocation.payment.id,
                "amount": amount.amount,
                "payment_date": allocation.payment.date,
                "method": allocation.payment.method,
                "applied_to_interest": allocation.applied_to_interest.amount,
                "applied_to_principal": allocation.applied_to_principal.amount,
                "total_due": allocation.after.total_due.amount,
            }
        )
        self._log_status_change(loan, saved)
        return allocation

    def remove_payment(self, loan_id: str, payment_id: str) -> PaymentRemoval:
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            removal = self.allocator.remove_payment(loan, payment_id)
            saved = self._save_loan(removal.updated_loan)
            removal = replace(removal, updated_loan=saved)

        logger.info(f"Loan {loan.loan_number}: removed payment {payment_id} "
                    f"({removal.removed_payment.amount.to_string()})")
        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_PAYMENT_REMOVED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "payment_id": payment_id,
                "amount": removal.removed_payment.amount.amount,
                "total_due": removal.snapshot.total_due.amount,
            }
        )
        self._log_status_change(loan, saved)
        return removal

    def extend_loan(self, loan_id: str, new_due_date: date, reason: str,
                    fee: Optional[Money] = None) -> Loan:
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            saved = self._save_loan(extend_loan(loan, new_due_date, reason, fee, self.clock.today()))

        logger.info(f"Loan {loan.loan_number}: due date extended to {new_due_date.isoformat()}")
        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_EXTENDED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "previous_due_date": loan.due_date,
                "new_due_date": new_due_date,
                "reason": reason,
                "fee": saved.extensions[-1].fee.amount,
            }
        )
        return saved

    def mark_defaulted(self, loan_id: str) -> Loan:
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            saved = self._save_loan(mark_loan_defaulted(loan))

        logger.info(f"Loan {loan.loan_number} marked as defaulted")
        self._log_status_change(loan, saved)
        return saved

    def _log_status_change(self, before: Loan, after: Loan) -> None:
        if before.status == after.status:
            return
        event_type = {
            LoanStatus.CLOSED: AuditEventType.LOAN_CLOSED,
            LoanStatus.ACTIVE: AuditEventType.LOAN_REOPENED,
            LoanStatus.DEFAULTED: AuditEventType.LOAN_DEFAULTED,
        }.get(after.status)
        if event_type is None:
            return
        logger.info(f"Loan {after.loan_number}: {before.status.value} -> {after.status.value}")
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="loan",
            entity_id=after.id,
            metadata={"previous_status": before.status, "status": after.status}
        )

    def _save_loan(self, loan: Loan) -> Loan:
        """Versioned write; returns the loan at its new version"""
        updated = replace(loan, updated_at=self.clock.now())
        version = self.storage.replace(self.loans_table, loan.id, updated.to_dict(), loan.version)
        return replace(updated, version=version)
