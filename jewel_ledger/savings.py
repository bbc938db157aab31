"""
Savings Scheme Module

Recurring gold-savings schemes: a customer pays a fixed installment every
month for a fixed duration and at maturity receives the contributions plus a
bonus, usually taken as jewelry through a redemption.

The schedule is generated exactly once, when the scheme is created.
Afterwards only individual installments change, and every change recomputes
``total_paid``, ``remaining_amount`` and the Active/Completed status from the
installment list.
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
    AlreadyRedeemedError, EntityNotFoundError, IneligibleForRedemptionError,
    InvalidAmountError, InvalidStateError
)
from .periods import add_months
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .sequences import SequenceIssuer, SAVING_PREFIX


logger = logging.getLogger("jewel_ledger.savings")

MINIMUM_INSTALLMENT = Decimal('1')
DEFAULT_DIRECT_REDEMPTION_RATIO = Decimal('0.7')


class SavingStatus(Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    DEFAULTED = "Defaulted"
    REDEEMED = "Redeemed"


class InstallmentStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"
    MISSED = "Missed"
    WAIVED = "Waived"


class InstallmentPaymentMethod(Enum):
    CASH = "Cash"
    CARD = "Card"
    UPI = "UPI"
    BANK_TRANSFER = "Bank Transfer"
    OTHER = "Other"


@dataclass(frozen=True)
class Installment:
    """One scheduled monthly contribution"""
    id: str
    number: int                 # 1-based position in the schedule
    amount: Money
    due_date: date
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_date: Optional[date] = None
    payment_method: Optional[InstallmentPaymentMethod] = None
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'number': self.number,
            'amount': str(self.amount.amount),
            'due_date': self.due_date.isoformat(),
            'status': self.status.value,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'payment_method': self.payment_method.value if self.payment_method else None,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'Installment':
        paid_date = data.get('paid_date')
        method = data.get('payment_method')
        return cls(
            id=data['id'],
            number=data['number'],
            amount=Money(Decimal(data['amount']), currency),
            due_date=date.fromisoformat(data['due_date']),
            status=InstallmentStatus(data['status']),
            paid_date=date.fromisoformat(paid_date) if paid_date else None,
            payment_method=InstallmentPaymentMethod(method) if method else None,
            notes=data.get('notes', ""),
        )


@dataclass
class SavingScheme(StorageRecord):
    """Gold savings scheme with its installment schedule"""
    scheme_number: str
    customer_id: str
    scheme_name: str
    installment_amount: Money
    duration_months: int
    start_date: date
    maturity_date: date
    total_amount: Money
    installments: Tuple[Installment, ...]
    bonus_amount: Optional[Money] = None
    bonus_percent: Decimal = Decimal('0')
    total_paid: Optional[Money] = None
    remaining_amount: Optional[Money] = None
    status: SavingStatus = SavingStatus.ACTIVE
    is_redeemed: bool = False
    redemption_date: Optional[date] = None
    redemption_id: Optional[str] = None
    notes: str = ""
    version: int = 0

    def __post_init__(self):
        currency = self.installment_amount.currency
        if self.bonus_amount is None:
            self.bonus_amount = Money.zero(currency)
        if not isinstance(self.bonus_percent, Decimal):
            self.bonus_percent = Decimal(str(self.bonus_percent))
        if self.total_paid is None:
            self.total_paid = Money.zero(currency)
        if self.remaining_amount is None:
            self.remaining_amount = self.total_amount - self.total_paid
        self.installments = tuple(self.installments)

    @property
    def currency(self) -> Currency:
        return self.installment_amount.currency

    def find_installment(self, installment_id: str) -> Optional[Installment]:
        for installment in self.installments:
            if installment.id == installment_id:
                return installment
        return None

    def next_pending_installment(self) -> Optional[Installment]:
        for installment in self.installments:
            if installment.status == InstallmentStatus.PENDING:
                return installment
        return None

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            'scheme_number': self.scheme_number,
            'customer_id': self.customer_id,
            'scheme_name': self.scheme_name,
            'installment_amount': str(self.installment_amount.amount),
            'currency': self.currency.code,
            'duration_months': self.duration_months,
            'start_date': self.start_date.isoformat(),
            'maturity_date': self.maturity_date.isoformat(),
            'total_amount': str(self.total_amount.amount),
            'installments': [i.to_dict() for i in self.installments],
            'bonus_amount': str(self.bonus_amount.amount),
            'bonus_percent': str(self.bonus_percent),
            'total_paid': str(self.total_paid.amount),
            'remaining_amount': str(self.remaining_amount.amount),
            'status': self.status.value,
            'is_redeemed': self.is_redeemed,
            'redemption_date': self.redemption_date.isoformat() if self.redemption_date else None,
            'redemption_id': self.redemption_id,
            'notes': self.notes,
            'version': self.version,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SavingScheme':
        data = cls.parse_timestamps(data)
        currency = Currency[data['currency']]
        redemption_date = data.get('redemption_date')

        def money(key):
            return Money(Decimal(data[key]), currency)

        return cls(
            id=data['id'],
            created_at=data['created_at'],
            updated_at=data['updated_at'],
            scheme_number=data['scheme_number'],
            customer_id=data['customer_id'],
            scheme_name=data['scheme_name'],
            installment_amount=money('installment_amount'),
            duration_months=data['duration_months'],
            start_date=date.fromisoformat(data['start_date']),
            maturity_date=date.fromisoformat(data['maturity_date']),
            total_amount=money('total_amount'),
            installments=tuple(Installment.from_dict(i, currency) for i in data['installments']),
            bonus_amount=money('bonus_amount'),
            bonus_percent=Decimal(data.get('bonus_percent', '0')),
            total_paid=money('total_paid'),
            remaining_amount=money('remaining_amount'),
            status=SavingStatus(data['status']),
            is_redeemed=data.get('is_redeemed', False),
            redemption_date=date.fromisoformat(redemption_date) if redemption_date else None,
            redemption_id=data.get('redemption_id'),
            notes=data.get('notes', ""),
            version=data.get('version', 0),
        )


@dataclass(frozen=True)
class Schedule:
    installments: Tuple[Installment, ...]
    maturity_date: date


class SavingsScheduleGenerator:
    """Builds the monthly installment schedule for a new scheme"""

    def generate(self, start_date: date, installment_amount: Money, duration_months: int) -> Schedule:
        """
        One Pending installment per month starting on ``start_date``;
        maturity falls one month after the last installment.

        Raises:
            InvalidAmountError: If the installment is below the minimum or the duration is not positive
        """
        if installment_amount.amount < MINIMUM_INSTALLMENT:
            raise InvalidAmountError(
                f"Installment amount must be at least {MINIMUM_INSTALLMENT}", installment_amount.amount
            )
        if duration_months < 1:
            raise InvalidAmountError("Duration must be at least one month", duration_months)

        installments = tuple(
            Installment(
                id=str(uuid.uuid4()),
                number=i + 1,
                amount=installment_amount,
                due_date=add_months(start_date, i),
            )
            for i in range(duration_months)
        )
        return Schedule(installments=installments, maturity_date=add_months(start_date, duration_months))


@dataclass(frozen=True)
class MaturityValue:
    total_contribution: Money
    bonus_amount: Money
    maturity_amount: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_contribution': str(self.total_contribution.amount),
            'bonus_amount': str(self.bonus_amount.amount),
            'maturity_amount': str(self.maturity_amount.amount),
        }


class SavingsMaturityCalculator:
    """
    Maturity payout of a scheme.

    Bonus precedence: an explicit bonus amount, else a bonus percentage of the
    contribution, else one installment.
    """

    def calculate_maturity(self, scheme: SavingScheme) -> MaturityValue:
        total_contribution = scheme.installment_amount * scheme.duration_months

        if scheme.bonus_amount.is_positive():
            bonus = scheme.bonus_amount
        elif scheme.bonus_percent > Decimal('0'):
            bonus = percent_of(total_contribution, scheme.bonus_percent)
        else:
            bonus = scheme.installment_amount

        return MaturityValue(
            total_contribution=total_contribution,
            bonus_amount=bonus,
            maturity_amount=total_contribution + bonus,
        )


def recompute_totals(scheme: SavingScheme) -> SavingScheme:
    """Re-derive total paid, remaining amount and Active/Completed status from the installments"""
    total_paid = sum_money(
        (i.amount for i in scheme.installments if i.status == InstallmentStatus.PAID),
        scheme.currency,
    )
    status = scheme.status
    if status == SavingStatus.ACTIVE and total_paid >= scheme.total_amount:
        status = SavingStatus.COMPLETED
    elif status == SavingStatus.COMPLETED and total_paid < scheme.total_amount:
        status = SavingStatus.ACTIVE

    return replace(
        scheme,
        total_paid=total_paid,
        remaining_amount=scheme.total_amount - total_paid,
        status=status,
    )


def _ensure_open_for_installments(scheme: SavingScheme) -> None:
    if scheme.status in (SavingStatus.REDEEMED, SavingStatus.CANCELLED) or scheme.is_redeemed:
        raise InvalidStateError(
            f"Installments of a {scheme.status.value.lower()} scheme cannot be changed",
            {'saving_id': scheme.id, 'status': scheme.status.value}
        )


def _replace_installment(scheme: SavingScheme, updated: Installment) -> SavingScheme:
    installments = tuple(updated if i.id == updated.id else i for i in scheme.installments)
    return recompute_totals(replace(scheme, installments=installments))


def _get_installment(scheme: SavingScheme, installment_id: str) -> Installment:
    installment = scheme.find_installment(installment_id)
    if installment is None:
        raise EntityNotFoundError("installment", installment_id)
    return installment


def record_installment_payment(
    scheme: SavingScheme,
    installment_id: str,
    paid_date: date,
    method: InstallmentPaymentMethod = InstallmentPaymentMethod.CASH,
    notes: str = ""
) -> SavingScheme:
    """Mark one installment Paid and recompute the scheme totals"""
    _ensure_open_for_installments(scheme)
    installment = _get_installment(scheme, installment_id)
    if installment.status == InstallmentStatus.PAID:
        raise InvalidStateError(f"Installment {installment.number} is already paid",
                                {'installment_id': installment_id})

    paid = replace(
        installment,
        status=InstallmentStatus.PAID,
        paid_date=paid_date,
        payment_method=method,
        notes=notes or installment.notes,
    )
    return _replace_installment(scheme, paid)


def update_installment(
    scheme: SavingScheme,
    installment_id: str,
    status: Optional[InstallmentStatus] = None,
    paid_date: Optional[date] = None,
    payment_method: Optional[InstallmentPaymentMethod] = None,
    notes: Optional[str] = None,
    today: Optional[date] = None
) -> SavingScheme:
    """
    Edit one installment. Moving it out of Paid clears its paid date and
    method; moving it into Paid without a paid date stamps ``today``.
    """
    _ensure_open_for_installments(scheme)
    installment = _get_installment(scheme, installment_id)

    changes: Dict[str, Any] = {}
    if status is not None:
        changes['status'] = status
        if status != InstallmentStatus.PAID:
            changes['paid_date'] = None
            changes['payment_method'] = None
        elif paid_date is None and installment.paid_date is None:
            if today is None:
                raise InvalidStateError("A paid installment needs a paid date",
                                        {'installment_id': installment_id})
            changes['paid_date'] = today
    if paid_date is not None:
        changes['paid_date'] = paid_date
    if payment_method is not None:
        changes['payment_method'] = payment_method
    if notes is not None:
        changes['notes'] = notes

    return _replace_installment(scheme, replace(installment, **changes))


def check_redemption_eligibility(scheme: SavingScheme) -> None:
    """
    Raises:
        AlreadyRedeemedError: If the scheme was already redeemed
        IneligibleForRedemptionError: If the scheme is neither Completed nor Active
    """
    if scheme.is_redeemed:
        raise AlreadyRedeemedError(scheme.id)
    if scheme.status not in (SavingStatus.COMPLETED, SavingStatus.ACTIVE):
        raise IneligibleForRedemptionError(scheme.id, scheme.status.value)


def redeem_for_cash(scheme: SavingScheme, on: date,
                    min_paid_ratio: Decimal = DEFAULT_DIRECT_REDEMPTION_RATIO) -> SavingScheme:
    """
    Close out a scheme without a purchase. Allowed once the scheme is
    Completed or enough of it has been paid.
    """
    if scheme.is_redeemed:
        raise AlreadyRedeemedError(scheme.id)
    threshold = scheme.total_amount * min_paid_ratio
    if scheme.status != SavingStatus.COMPLETED and scheme.total_paid < threshold:
        raise IneligibleForRedemptionError(
            scheme.id, scheme.status.value,
            f"Saving scheme must be completed or have at least {min_paid_ratio * 100:.0f}% paid to redeem"
        )
    return mark_redeemed(scheme, on)


def mark_redeemed(scheme: SavingScheme, on: date, redemption_id: Optional[str] = None) -> SavingScheme:
    return replace(
        scheme,
        is_redeemed=True,
        redemption_date=on,
        redemption_id=redemption_id,
        status=SavingStatus.REDEEMED,
    )


def restore_unredeemed(scheme: SavingScheme) -> SavingScheme:
    """Undo a redemption: the scheme goes back to Completed and can be redeemed again"""
    return replace(
        scheme,
        is_redeemed=False,
        redemption_date=None,
        redemption_id=None,
        status=SavingStatus.COMPLETED,
    )


def cancel_scheme(scheme: SavingScheme) -> SavingScheme:
    if scheme.status in (SavingStatus.REDEEMED, SavingStatus.CANCELLED):
        raise InvalidStateError(f"Cannot cancel a {scheme.status.value.lower()} scheme",
                                {'saving_id': scheme.id})
    return replace(scheme, status=SavingStatus.CANCELLED)


def mark_scheme_defaulted(scheme: SavingScheme) -> SavingScheme:
    if scheme.status != SavingStatus.ACTIVE:
        raise InvalidStateError("Only an active scheme can be marked as defaulted",
                                {'saving_id': scheme.id, 'status': scheme.status.value})
    return replace(scheme, status=SavingStatus.DEFAULTED)


class SavingsManager:
    """
    Saving scheme lifecycle on top of storage.

    Mutations run inside ``storage.atomic()`` and persist with a versioned
    replace; audit events are written once the block has committed.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        sequences: SequenceIssuer,
        clock: Optional[Clock] = None,
        min_paid_ratio: Decimal = DEFAULT_DIRECT_REDEMPTION_RATIO
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.sequences = sequences
        self.clock = clock or SystemClock()
        self.min_paid_ratio = min_paid_ratio
        self.schedule_generator = SavingsScheduleGenerator()
        self.maturity_calculator = SavingsMaturityCalculator()

        self.schemes_table = "savings"

    def create_scheme(
        self,
        customer_id: str,
        installment_amount: Money,
        duration_months: int,
        start_date: Optional[date] = None,
        scheme_name: str = "Gold Savings",
        bonus_amount: Optional[Money] = None,
        bonus_percent: Decimal = Decimal('0'),
        notes: str = ""
    ) -> SavingScheme:
        start_date = start_date or self.clock.today()
        if bonus_amount is not None and bonus_amount.is_negative():
            raise InvalidAmountError("Bonus amount cannot be negative", bonus_amount.amount)
        if Decimal(str(bonus_percent)) < Decimal('0'):
            raise InvalidAmountError("Bonus percentage cannot be negative", bonus_percent)

        schedule = self.schedule_generator.generate(start_date, installment_amount, duration_months)
        now = self.clock.now()

        with self.storage.atomic():
            scheme = SavingScheme(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                scheme_number=self.sequences.next_number(SAVING_PREFIX, now.date()),
                customer_id=customer_id,
                scheme_name=scheme_name,
                installment_amount=installment_amount,
                duration_months=duration_months,
                start_date=start_date,
                maturity_date=schedule.maturity_date,
                total_amount=installment_amount * duration_months,
                installments=schedule.installments,
                bonus_amount=bonus_amount,
                bonus_percent=bonus_percent,
                notes=notes,
            )
            scheme = self.save_scheme(scheme)

        logger.info(f"Created saving scheme {scheme.scheme_number}: {duration_months} x "
                    f"{installment_amount.to_string()}, matures {scheme.maturity_date.isoformat()}")
        self.audit_trail.log_event(
            event_type=AuditEventType.SAVING_CREATED,
            entity_type="saving",
            entity_id=scheme.id,
            metadata={
                "scheme_number": scheme.scheme_number,
                "customer_id": customer_id,
                "installment_amount": installment_amount.amount,
                "duration_months": duration_months,
                "start_date": start_date,
                "maturity_date": scheme.maturity_date,
            }
        )
        return scheme

    def get_scheme(self, scheme_id: str) -> SavingScheme:
        data = self.storage.load(self.schemes_table, scheme_id)
        if not data:
            raise EntityNotFoundError("saving", scheme_id)
        return SavingScheme.from_dict(data)

    def list_customer_schemes(self, customer_id: str) -> List[SavingScheme]:
        schemes = [SavingScheme.from_dict(d)
                   for d in self.storage.find(self.schemes_table, {'customer_id': customer_id})]
        return sorted(schemes, key=lambda s: s.created_at, reverse=True)

    def maturity(self, scheme_id: str) -> MaturityValue:
        return self.maturity_calculator.calculate_maturity(self.get_scheme(scheme_id))

    def pay_installment(
        self,
        scheme_id: str,
        installment_id: Optional[str] = None,
        paid_date: Optional[date] = None,
        method: InstallmentPaymentMethod = InstallmentPaymentMethod.CASH,
        notes: str = ""
    ) -> SavingScheme:
        """Pay one installment; without an id the earliest pending one is paid"""
        with self.storage.atomic():
            scheme = self.get_scheme(scheme_id)
            if installment_id is None:
                pending = scheme.next_pending_installment()
                if pending is None:
                    raise InvalidStateError("No pending installments remain", {'saving_id': scheme_id})
                installment_id = pending.id
            updated = record_installment_payment(
                scheme, installment_id, paid_date or self.clock.today(), method, notes
            )
            saved = self.save_scheme(updated)

        installment = saved.find_installment(installment_id)
        logger.info(f"Scheme {saved.scheme_number}: installment {installment.number} paid, "
                    f"total paid {saved.total_paid.to_string()}")
        self.audit_trail.log_event(
            event_type=AuditEventType.INSTALLMENT_PAID,
            entity_type="saving",
            entity_id=scheme_id,
            metadata={
                "installment_id": installment_id,
                "number": installment.number,
                "amount": installment.amount.amount,
                "paid_date": installment.paid_date,
                "method": method,
                "total_paid": saved.total_paid.amount,
            }
        )
        self._log_status_change(scheme, saved)
        return saved

    def update_installment(
        self,
        scheme_id: str,
        installment_id: str,
        status: Optional[InstallmentStatus] = None,
        paid_date: Optional[date] = None,
        payment_method: Optional[InstallmentPaymentMethod] = None,
        notes: Optional[str] = None
    ) -> SavingScheme:
        with self.storage.atomic():
            scheme = self.get_scheme(scheme_id)
            updated = update_installment(scheme, installment_id, status, paid_date, payment_method, notes,
                                         today=self.clock.today())
            saved = self.save_scheme(updated)

        logger.info(f"Scheme {saved.scheme_number}: installment {installment_id} updated, "
                    f"total paid {saved.total_paid.to_string()}")
        self.audit_trail.log_event(
            event_type=AuditEventType.INSTALLMENT_UPDATED,
            entity_type="saving",
            entity_id=scheme_id,
            metadata={
                "installment_id": installment_id,
                "status": status,
                "paid_date": paid_date,
                "total_paid": saved.total_paid.amount,
            }
        )
        self._log_status_change(scheme, saved)
        return saved

    def redeem_for_cash(self, scheme_id: str) -> SavingScheme:
        with self.storage.atomic():
            scheme = self.get_scheme(scheme_id)
            saved = self.save_scheme(redeem_for_cash(scheme, self.clock.today(), self.min_paid_ratio))

        logger.info(f"Scheme {saved.scheme_number} redeemed for cash, "
                    f"total paid {saved.total_paid.to_string()}")
        self.audit_trail.log_event(
            event_type=AuditEventType.SAVING_REDEEMED,
            entity_type="saving",
            entity_id=scheme_id,
            metadata={"direct": True, "total_paid": saved.total_paid.amount}
        )
        return saved

    def cancel_scheme(self, scheme_id: str) -> SavingScheme:
        with self.storage.atomic():
            scheme = self.get_scheme(scheme_id)
            saved = self.save_scheme(cancel_scheme(scheme))

        self._log_status_change(scheme, saved)
        return saved

    def mark_defaulted(self, scheme_id: str) -> SavingScheme:
        with self.storage.atomic():
            scheme = self.get_scheme(scheme_id)
            saved = self.save_scheme(mark_scheme_defaulted(scheme))

        self._log_status_change(scheme, saved)
        return saved

    def _log_status_change(self, before: SavingScheme, after: SavingScheme) -> None:
        if before.status == after.status:
            return
        event_type = {
            SavingStatus.COMPLETED: AuditEventType.SAVING_COMPLETED,
            SavingStatus.CANCELLED: AuditEventType.SAVING_CANCELLED,
            SavingStatus.DEFAULTED: AuditEventType.SAVING_DEFAULTED,
        }.get(after.status)
        logger.info(f"Scheme {after.scheme_number}: {before.status.value} -> {after.status.value}")
        if event_type is None:
            return
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="saving",
            entity_id=after.id,
            metadata={"previous_status": before.status, "status": after.status}
        )

    def save_scheme(self, scheme: SavingScheme) -> SavingScheme:
        """Versioned write; returns the scheme at its new version"""
        updated = replace(scheme, updated_at=self.clock.now())
        version = self.storage.replace(self.schemes_table, scheme.id, updated.to_dict(), scheme.version)
        return replace(updated, version=version)
