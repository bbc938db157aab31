"""
Test suite for savings module

Tests schedule generation, maturity and bonus precedence, installment
recording with derived totals and status, cash redemption eligibility, and
the store-facing SavingsManager.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from jewel_ledger.currency import Money
from jewel_ledger.clock import FixedClock
from jewel_ledger.storage import InMemoryStorage
from jewel_ledger.audit import AuditTrail, AuditEventType
from jewel_ledger.sequences import SequenceIssuer
from jewel_ledger.exceptions import (
    AlreadyRedeemedError, EntityNotFoundError, IneligibleForRedemptionError,
    InvalidAmountError, InvalidStateError
)
from jewel_ledger.savings import (
    SavingScheme, SavingStatus, InstallmentStatus, InstallmentPaymentMethod,
    SavingsScheduleGenerator, SavingsMaturityCalculator, SavingsManager,
    record_installment_payment, update_installment, redeem_for_cash,
    check_redemption_eligibility, cancel_scheme, mark_scheme_defaulted, restore_unredeemed
)


NOW = datetime(2024, 1, 15, tzinfo=timezone.utc)


def inr(amount) -> Money:
    return Money(Decimal(str(amount)))


def make_scheme(installment="1000", duration=12, start=date(2024, 1, 15),
                bonus_amount=None, bonus_percent="0") -> SavingScheme:
    installment_amount = inr(installment)
    schedule = SavingsScheduleGenerator().generate(start, installment_amount, duration)
    return SavingScheme(
        id="S1",
        created_at=NOW,
        updated_at=NOW,
        scheme_number="SAV-2401-0001",
        customer_id="C1",
        scheme_name="Gold Savings",
        installment_amount=installment_amount,
        duration_months=duration,
        start_date=start,
        maturity_date=schedule.maturity_date,
        total_amount=installment_amount * duration,
        installments=schedule.installments,
        bonus_amount=bonus_amount,
        bonus_percent=Decimal(bonus_percent),
    )


def pay_all(scheme: SavingScheme, count: int) -> SavingScheme:
    for installment in scheme.installments[:count]:
        scheme = record_installment_payment(scheme, installment.id, installment.due_date)
    return scheme


class TestSavingsScheduleGenerator:
    """Test installment schedule generation"""

    def test_schedule_completeness(self):
        schedule = SavingsScheduleGenerator().generate(date(2024, 1, 15), inr(1000), 12)

        assert len(schedule.installments) == 12
        assert all(i.status == InstallmentStatus.PENDING for i in schedule.installments)
        assert [i.number for i in schedule.installments] == list(range(1, 13))
        assert schedule.installments[0].due_date == date(2024, 1, 15)
        assert schedule.installments[-1].due_date == date(2024, 12, 15)
        assert schedule.maturity_date == date(2025, 1, 15)

        due_dates = [i.due_date for i in schedule.installments]
        for earlier, later in zip(due_dates, due_dates[1:]):
            assert later > earlier
            assert (later.year - earlier.year) * 12 + later.month - earlier.month == 1

    def test_month_end_start_clamps(self):
        schedule = SavingsScheduleGenerator().generate(date(2024, 1, 31), inr(500), 3)
        assert [i.due_date for i in schedule.installments] == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)
        ]
        assert schedule.maturity_date == date(2024, 4, 30)

    def test_installment_ids_are_unique(self):
        schedule = SavingsScheduleGenerator().generate(date(2024, 1, 1), inr(500), 24)
        assert len({i.id for i in schedule.installments}) == 24

    def test_rejects_small_installment(self):
        with pytest.raises(InvalidAmountError):
            SavingsScheduleGenerator().generate(date(2024, 1, 1), inr("0.50"), 12)

    def test_rejects_zero_duration(self):
        with pytest.raises(InvalidAmountError):
            SavingsScheduleGenerator().generate(date(2024, 1, 1), inr(1000), 0)


class TestSavingsMaturityCalculator:
    """Test maturity amount and bonus precedence"""

    def test_default_bonus_is_one_installment(self):
        maturity = SavingsMaturityCalculator().calculate_maturity(make_scheme())
        assert maturity.total_contribution == inr(12000)
        assert maturity.bonus_amount == inr(1000)
        assert maturity.maturity_amount == inr(13000)

    def test_bonus_percentage(self):
        maturity = SavingsMaturityCalculator().calculate_maturity(make_scheme(bonus_percent="5"))
        assert maturity.bonus_amount == inr(600)
        assert maturity.maturity_amount == inr(12600)

    def test_bonus_amount_takes_precedence(self):
        scheme = make_scheme(bonus_amount=inr(500), bonus_percent="10")
        maturity = SavingsMaturityCalculator().calculate_maturity(scheme)
        assert maturity.bonus_amount == inr(500)
        assert maturity.maturity_amount == inr(12500)

    def test_maturity_ignores_payments_made(self):
        scheme = pay_all(make_scheme(), 3)
        assert SavingsMaturityCalculator().calculate_maturity(scheme).maturity_amount == inr(13000)


class TestInstallmentRecording:
    """Test totals and status derived from installments"""

    def test_payment_updates_totals(self):
        scheme = make_scheme()
        first = scheme.installments[0]

        paid = record_installment_payment(scheme, first.id, date(2024, 1, 20),
                                          InstallmentPaymentMethod.UPI, "first")

        assert paid.total_paid == inr(1000)
        assert paid.remaining_amount == inr(11000)
        assert paid.installments[0].status == InstallmentStatus.PAID
        assert paid.installments[0].paid_date == date(2024, 1, 20)
        assert paid.installments[0].payment_method == InstallmentPaymentMethod.UPI
        assert scheme.total_paid == inr(0)
        assert scheme.installments[0].status == InstallmentStatus.PENDING

    def test_total_paid_only_counts_paid_installments(self):
        scheme = pay_all(make_scheme(), 2)
        scheme = update_installment(scheme, scheme.installments[2].id, status=InstallmentStatus.WAIVED)
        scheme = update_installment(scheme, scheme.installments[3].id, status=InstallmentStatus.MISSED)
        assert scheme.total_paid == inr(2000)

    def test_completes_when_fully_paid(self):
        scheme = pay_all(make_scheme(), 11)
        assert scheme.status == SavingStatus.ACTIVE

        scheme = pay_all(scheme, 0)
        last = scheme.installments[-1]
        scheme = record_installment_payment(scheme, last.id, last.due_date)
        assert scheme.status == SavingStatus.COMPLETED
        assert scheme.remaining_amount == inr(0)

    def test_unpaying_reverts_completed_to_active(self):
        scheme = pay_all(make_scheme(), 12)
        assert scheme.status == SavingStatus.COMPLETED

        scheme = update_installment(scheme, scheme.installments[5].id, status=InstallmentStatus.PENDING)
        assert scheme.status == SavingStatus.ACTIVE
        assert scheme.total_paid == inr(11000)
        assert scheme.installments[5].paid_date is None

    def test_marking_paid_stamps_today(self):
        scheme = make_scheme()
        target = scheme.installments[0]

        scheme = update_installment(scheme, target.id, status=InstallmentStatus.PAID,
                                    today=date(2024, 2, 3))
        assert scheme.installments[0].paid_date == date(2024, 2, 3)
        assert scheme.total_paid == inr(1000)

    def test_marking_paid_keeps_explicit_date(self):
        scheme = make_scheme()
        target = scheme.installments[0]

        scheme = update_installment(scheme, target.id, status=InstallmentStatus.PAID,
                                    paid_date=date(2024, 1, 20), today=date(2024, 2, 3))
        assert scheme.installments[0].paid_date == date(2024, 1, 20)

    def test_marking_paid_without_any_date_rejected(self):
        scheme = make_scheme()
        with pytest.raises(InvalidStateError):
            update_installment(scheme, scheme.installments[0].id, status=InstallmentStatus.PAID)

    def test_paying_twice_rejected(self):
        scheme = pay_all(make_scheme(), 1)
        with pytest.raises(InvalidStateError):
            record_installment_payment(scheme, scheme.installments[0].id, date(2024, 2, 1))

    def test_unknown_installment(self):
        with pytest.raises(EntityNotFoundError):
            record_installment_payment(make_scheme(), "missing", date(2024, 2, 1))

    def test_cancelled_scheme_is_frozen(self):
        scheme = cancel_scheme(make_scheme())
        with pytest.raises(InvalidStateError):
            record_installment_payment(scheme, scheme.installments[0].id, date(2024, 2, 1))
        with pytest.raises(InvalidStateError):
            update_installment(scheme, scheme.installments[0].id, notes="late")


class TestRedemptionEligibility:
    """Test redemption preconditions"""

    def test_active_and_completed_are_eligible(self):
        check_redemption_eligibility(make_scheme())
        check_redemption_eligibility(pay_all(make_scheme(), 12))

    def test_already_redeemed(self):
        scheme = redeem_for_cash(pay_all(make_scheme(), 12), date(2025, 1, 15))
        with pytest.raises(AlreadyRedeemedError):
            check_redemption_eligibility(scheme)

    def test_cancelled_and_defaulted_ineligible(self):
        with pytest.raises(IneligibleForRedemptionError):
            check_redemption_eligibility(cancel_scheme(make_scheme()))
        with pytest.raises(IneligibleForRedemptionError):
            check_redemption_eligibility(mark_scheme_defaulted(make_scheme()))

    def test_cash_redemption_needs_seventy_percent(self):
        with pytest.raises(IneligibleForRedemptionError):
            redeem_for_cash(pay_all(make_scheme(), 8), date(2024, 9, 1))

        redeemed = redeem_for_cash(pay_all(make_scheme(), 9), date(2024, 10, 1))
        assert redeemed.is_redeemed
        assert redeemed.status == SavingStatus.REDEEMED
        assert redeemed.redemption_date == date(2024, 10, 1)

    def test_cash_redemption_twice_rejected(self):
        redeemed = redeem_for_cash(pay_all(make_scheme(), 12), date(2025, 1, 15))
        with pytest.raises(AlreadyRedeemedError):
            redeem_for_cash(redeemed, date(2025, 1, 16))

    def test_restore_unredeemed(self):
        redeemed = redeem_for_cash(pay_all(make_scheme(), 12), date(2025, 1, 15))
        restored = restore_unredeemed(redeemed)
        assert not restored.is_redeemed
        assert restored.status == SavingStatus.COMPLETED
        assert restored.redemption_date is None

    def test_only_active_can_default(self):
        with pytest.raises(InvalidStateError):
            mark_scheme_defaulted(pay_all(make_scheme(), 12))


class TestSavingsManager:
    """Test the store-facing savings lifecycle"""

    @pytest.fixture
    def clock(self):
        return FixedClock(date(2024, 1, 15))

    @pytest.fixture
    def storage(self):
        return InMemoryStorage()

    @pytest.fixture
    def audit_trail(self, storage):
        return AuditTrail(storage)

    @pytest.fixture
    def manager(self, storage, audit_trail, clock):
        return SavingsManager(storage, audit_trail, SequenceIssuer(storage), clock)

    def test_create_scheme(self, manager):
        scheme = manager.create_scheme("C1", inr(1000), 12)

        assert scheme.scheme_number == "SAV-2401-0001"
        assert scheme.total_amount == inr(12000)
        assert scheme.remaining_amount == inr(12000)
        assert scheme.maturity_date == date(2025, 1, 15)
        assert len(scheme.installments) == 12
        assert manager.get_scheme(scheme.id) == scheme
        assert manager.maturity(scheme.id).maturity_amount == inr(13000)

    def test_create_rejects_negative_bonus(self, manager):
        with pytest.raises(InvalidAmountError):
            manager.create_scheme("C1", inr(1000), 12, bonus_amount=inr(-5))

    def test_pay_installments_in_order_until_completed(self, manager, audit_trail, clock):
        scheme = manager.create_scheme("C1", inr(1000), 3)

        for _ in range(3):
            scheme = manager.pay_installment(scheme.id)

        assert scheme.status == SavingStatus.COMPLETED
        assert scheme.total_paid == inr(3000)
        assert all(i.paid_date == date(2024, 1, 15) for i in scheme.installments)

        with pytest.raises(InvalidStateError):
            manager.pay_installment(scheme.id)

        completed = audit_trail.get_events_by_type(AuditEventType.SAVING_COMPLETED)
        assert [e.entity_id for e in completed] == [scheme.id]

    def test_update_installment(self, manager):
        scheme = manager.create_scheme("C1", inr(1000), 2)
        scheme = manager.pay_installment(scheme.id)
        scheme = manager.pay_installment(scheme.id)

        target = scheme.installments[1]
        scheme = manager.update_installment(scheme.id, target.id, status=InstallmentStatus.PENDING)
        assert scheme.status == SavingStatus.ACTIVE
        assert manager.get_scheme(scheme.id).total_paid == inr(1000)

    def test_update_to_paid_uses_clock_date(self, manager, clock):
        scheme = manager.create_scheme("C1", inr(1000), 2)
        clock.advance_to(date(2024, 2, 10))

        scheme = manager.update_installment(scheme.id, scheme.installments[0].id,
                                            status=InstallmentStatus.PAID)
        assert scheme.installments[0].paid_date == date(2024, 2, 10)
        assert manager.get_scheme(scheme.id).total_paid == inr(1000)

    def test_redeem_for_cash(self, manager):
        scheme = manager.create_scheme("C1", inr(1000), 10)
        for _ in range(6):
            manager.pay_installment(scheme.id)

        with pytest.raises(IneligibleForRedemptionError):
            manager.redeem_for_cash(scheme.id)

        manager.pay_installment(scheme.id)
        redeemed = manager.redeem_for_cash(scheme.id)
        assert redeemed.status == SavingStatus.REDEEMED

        with pytest.raises(InvalidStateError):
            manager.pay_installment(scheme.id)

    def test_cancel_and_default(self, manager):
        first = manager.create_scheme("C1", inr(1000), 12)
        second = manager.create_scheme("C1", inr(1000), 12)

        assert manager.cancel_scheme(first.id).status == SavingStatus.CANCELLED
        with pytest.raises(InvalidStateError):
            manager.cancel_scheme(first.id)

        assert manager.mark_defaulted(second.id).status == SavingStatus.DEFAULTED

    def test_missing_scheme(self, manager):
        with pytest.raises(EntityNotFoundError):
            manager.get_scheme("missing")

    def test_list_customer_schemes(self, manager):
        manager.create_scheme("C1", inr(1000), 12)
        manager.create_scheme("C2", inr(1000), 12)
        assert len(manager.list_customer_schemes("C1")) == 1
