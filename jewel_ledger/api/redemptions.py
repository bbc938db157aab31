"""
Redemption endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system, http_error
from .schemas import CreateRedemptionRequest, LinkSaleRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_redemption(
    request: CreateRedemptionRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Redeem a savings scheme against a jewelry purchase"""
    try:
        redemption = system.redemption_manager.create_redemption(
            saving_id=request.saving_id,
            lines=[line.to_line(system.currency) for line in request.items],
            notes=request.notes,
        )
    except ValueError as e:
        raise http_error(e)

    result = redemption.to_dict()
    result["message"] = "Redemption created successfully"
    return result


@router.get("")
async def list_redemptions(system: LedgerSystem = Depends(get_ledger_system)):
    return {"redemptions": [r.to_dict() for r in system.redemption_manager.list_redemptions()]}


@router.get("/{redemption_id}")
async def get_redemption(
    redemption_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        redemption = system.redemption_manager.get_redemption(redemption_id)
    except ValueError as e:
        raise http_error(e)
    return redemption.to_dict()


@router.post("/{redemption_id}/sale")
async def link_sale(
    redemption_id: str,
    request: LinkSaleRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        redemption = system.redemption_manager.link_sale(redemption_id, request.sale_id)
    except ValueError as e:
        raise http_error(e)
    return redemption.to_dict()


@router.delete("/{redemption_id}")
async def reverse_redemption(
    redemption_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a redemption, restoring stock and reopening the scheme for redemption"""
    try:
        system.redemption_manager.reverse_redemption(redemption_id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Redemption deleted successfully"}
