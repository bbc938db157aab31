"""
Product and stock endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system, http_error
from .schemas import AdjustStockRequest, CreateProductRequest, parse_decimal


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    request: CreateProductRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        product = system.inventory.create_product(
            name=request.name,
            category=request.category,
            net_weight=parse_decimal(request.net_weight),
            making_charges=request.making_charges.to_money(system.currency),
            stock=request.stock,
            purity=request.purity,
        )
    except ValueError as e:
        raise http_error(e)
    return product.to_dict()


@router.get("")
async def list_products(system: LedgerSystem = Depends(get_ledger_system)):
    return {"products": [p.to_dict() for p in system.inventory.list_products()]}


@router.get("/{product_id}")
async def get_product(
    product_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        product = system.inventory.get_product(product_id)
    except ValueError as e:
        raise http_error(e)
    return product.to_dict()


@router.post("/{product_id}/stock")
async def adjust_stock(
    product_id: str,
    request: AdjustStockRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Add (positive delta) or remove (negative delta) units"""
    try:
        product = system.inventory.adjust_stock(product_id, request.delta, request.reason)
    except ValueError as e:
        raise http_error(e)
    return product.to_dict()
