"""
Savings scheme endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system, http_error
from .schemas import (
    CreateSavingRequest, PayInstallmentRequest, UpdateInstallmentRequest, parse_date, parse_decimal
)
from ..savings import InstallmentPaymentMethod, InstallmentStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_saving(
    request: CreateSavingRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Open a savings scheme and generate its installment schedule"""
    try:
        scheme = system.savings_manager.create_scheme(
            customer_id=request.customer_id,
            installment_amount=request.installment_amount.to_money(system.currency),
            duration_months=request.duration_months,
            start_date=parse_date(request.start_date),
            scheme_name=request.scheme_name,
            bonus_amount=request.bonus_amount.to_money(system.currency) if request.bonus_amount else None,
            bonus_percent=parse_decimal(request.bonus_percent),
            notes=request.notes,
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "saving_id": scheme.id,
        "scheme_number": scheme.scheme_number,
        "maturity_date": scheme.maturity_date.isoformat(),
        "installments": len(scheme.installments),
        "message": "Saving scheme created successfully"
    }


@router.get("/{saving_id}")
async def get_saving(
    saving_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        scheme = system.savings_manager.get_scheme(saving_id)
    except ValueError as e:
        raise http_error(e)

    result = scheme.to_dict()
    result["maturity"] = system.savings_manager.maturity_calculator.calculate_maturity(scheme).to_dict()
    return result


@router.get("/{saving_id}/maturity")
async def get_maturity(
    saving_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Contribution, bonus and maturity amount"""
    try:
        maturity = system.savings_manager.maturity(saving_id)
    except ValueError as e:
        raise http_error(e)
    return maturity.to_dict()


@router.post("/{saving_id}/installments/pay")
async def pay_installment(
    saving_id: str,
    request: PayInstallmentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        scheme = system.savings_manager.pay_installment(
            scheme_id=saving_id,
            installment_id=request.installment_id,
            paid_date=parse_date(request.paid_date),
            method=InstallmentPaymentMethod(request.payment_method),
            notes=request.notes,
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "saving_id": scheme.id,
        "total_paid": str(scheme.total_paid.amount),
        "remaining_amount": str(scheme.remaining_amount.amount),
        "status": scheme.status.value,
        "message": "Installment paid successfully"
    }


@router.patch("/{saving_id}/installments/{installment_id}")
async def update_installment(
    saving_id: str,
    installment_id: str,
    request: UpdateInstallmentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        scheme = system.savings_manager.update_installment(
            scheme_id=saving_id,
            installment_id=installment_id,
            status=InstallmentStatus(request.status) if request.status else None,
            paid_date=parse_date(request.paid_date),
            payment_method=InstallmentPaymentMethod(request.payment_method) if request.payment_method else None,
            notes=request.notes,
        )
    except ValueError as e:
        raise http_error(e)
    return scheme.to_dict()


@router.post("/{saving_id}/redeem")
async def redeem_for_cash(
    saving_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Redeem without a purchase"""
    try:
        scheme = system.savings_manager.redeem_for_cash(saving_id)
    except ValueError as e:
        raise http_error(e)

    return {
        "saving_id": scheme.id,
        "status": scheme.status.value,
        "redemption_date": scheme.redemption_date.isoformat(),
        "total_paid": str(scheme.total_paid.amount),
        "message": "Saving scheme redeemed successfully"
    }


@router.post("/{saving_id}/cancel")
async def cancel_saving(
    saving_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        scheme = system.savings_manager.cancel_scheme(saving_id)
    except ValueError as e:
        raise http_error(e)
    return {"saving_id": scheme.id, "status": scheme.status.value}


@router.post("/{saving_id}/default")
async def mark_defaulted(
    saving_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        scheme = system.savings_manager.mark_defaulted(saving_id)
    except ValueError as e:
        raise http_error(e)
    return {"saving_id": scheme.id, "status": scheme.status.value}
