"""
Metal rate endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .dependencies import LedgerSystem, get_ledger_system, http_error
from .schemas import SetRateRequest, parse_date, parse_decimal
from ..rates import MetalType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def set_rate(
    request: SetRateRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Set today's rate; the previous active rate for the same metal and purity is retired"""
    try:
        rate = system.rate_book.set_rate(
            metal=MetalType(request.metal),
            purity=request.purity,
            rate_per_gram=parse_decimal(request.rate_per_gram),
            rate_date=parse_date(request.rate_date),
        )
    except ValueError as e:
        raise http_error(e)
    return rate.to_dict()


@router.get("")
async def list_rates(
    active_only: bool = False,
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"rates": [r.to_dict() for r in system.rate_book.list_rates(active_only)]}


@router.get("/active")
async def get_active_rate(
    metal: str,
    purity: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        rate = system.rate_book.find_active_rate(MetalType(metal), purity)
    except ValueError as e:
        raise http_error(e)
    if rate is None:
        raise HTTPException(status_code=404, detail=f"No active rate for {metal} {purity}")
    return {"metal": metal, "purity": purity, "rate_per_gram": str(rate)}
