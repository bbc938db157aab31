"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system, http_error
from .schemas import CreateLoanRequest, ExtendLoanRequest, LoanPaymentRequest, parse_date, parse_decimal
from ..loans import PaymentMethod


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Open a new gold loan"""
    try:
        loan = system.loan_manager.create_loan(
            customer_id=request.customer_id,
            principal=request.principal.to_money(system.currency),
            monthly_rate_percent=parse_decimal(request.monthly_rate_percent),
            start_date=parse_date(request.start_date),
            due_date=parse_date(request.due_date),
            items=tuple(item.to_item(system.currency) for item in request.items),
            notes=request.notes,
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "loan_id": loan.id,
        "loan_number": loan.loan_number,
        "status": loan.status.value,
        "message": "Loan created successfully"
    }


@router.get("/customer/{customer_id}")
async def list_customer_loans(
    customer_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    loans = system.loan_manager.list_customer_loans(customer_id)
    return {"loans": [loan.to_dict() for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get loan details with its current position"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
        snapshot = system.loan_manager.calculator.accrue(loan)
    except ValueError as e:
        raise http_error(e)

    result = loan.to_dict()
    result["calculation"] = snapshot.to_dict()
    return result


@router.get("/{loan_id}/calculate")
async def calculate_loan(
    loan_id: str,
    as_of: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Outstanding principal, interest and total due as of a date (default today)"""
    try:
        snapshot = system.loan_manager.calculate(loan_id, parse_date(as_of))
    except ValueError as e:
        raise http_error(e)
    return snapshot.to_dict()


@router.post("/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
async def add_payment(
    loan_id: str,
    request: LoanPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a payment: accrued interest is cleared first, the rest reduces principal"""
    try:
        allocation = system.loan_manager.add_payment(
            loan_id=loan_id,
            amount=request.amount.to_money(system.currency),
            payment_date=parse_date(request.payment_date),
            method=PaymentMethod(request.method),
            notes=request.notes,
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "payment": allocation.payment.to_dict(),
        "applied_to_interest": str(allocation.applied_to_interest.amount),
        "applied_to_principal": str(allocation.applied_to_principal.amount),
        "status": allocation.updated_loan.status.value,
        "calculation": allocation.after.to_dict(),
        "message": "Payment added successfully"
    }


@router.delete("/{loan_id}/payments/{payment_id}")
async def remove_payment(
    loan_id: str,
    payment_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        removal = system.loan_manager.remove_payment(loan_id, payment_id)
    except ValueError as e:
        raise http_error(e)

    return {
        "removed_payment": removal.removed_payment.to_dict(),
        "status": removal.updated_loan.status.value,
        "calculation": removal.snapshot.to_dict(),
        "message": "Payment removed successfully"
    }


@router.post("/{loan_id}/extend")
async def extend_loan(
    loan_id: str,
    request: ExtendLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Move the due date; any fee is recorded with the extension"""
    try:
        loan = system.loan_manager.extend_loan(
            loan_id=loan_id,
            new_due_date=parse_date(request.new_due_date),
            reason=request.reason,
            fee=request.fee.to_money(system.currency) if request.fee else None,
        )
    except ValueError as e:
        raise http_error(e)
    return loan.to_dict()


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        loan = system.loan_manager.mark_defaulted(loan_id)
    except ValueError as e:
        raise http_error(e)
    return {"loan_id": loan.id, "status": loan.status.value}
