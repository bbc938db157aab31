"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from ..currency import Money, Currency, decimal_from_string
from ..loans import PledgedItem, PledgedItemType
from ..redemptions import RedemptionLine


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string, in the ledger currency")

    def to_money(self, currency: Currency = Currency.INR) -> Money:
        return Money(decimal_from_string(self.amount), currency)


def parse_date(value: Optional[str]) -> Optional[date]:
    """ISO date string to date; None passes through"""
    if value is None:
        return None
    return date.fromisoformat(value)


def parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    return decimal_from_string(value)


# Loan schemas
class PledgedItemModel(BaseModel):
    name: str
    weight: str = Field(..., description="Weight in grams as string")
    loan_amount: MoneyModel
    item_type: str = PledgedItemType.GOLD_JEWELRY.value
    purity: Optional[str] = None
    quantity: int = 1
    description: str = ""

    def to_item(self, currency: Currency) -> PledgedItem:
        return PledgedItem(
            name=self.name,
            weight=decimal_from_string(self.weight),
            loan_amount=self.loan_amount.to_money(currency),
            item_type=PledgedItemType(self.item_type),
            purity=self.purity,
            quantity=self.quantity,
            description=self.description,
        )


class CreateLoanRequest(BaseModel):
    customer_id: str
    principal: MoneyModel
    monthly_rate_percent: str = Field(..., description="Simple interest percent per month")
    start_date: Optional[str] = None  # ISO date string
    due_date: Optional[str] = None
    items: List[PledgedItemModel] = []
    notes: str = ""


class LoanPaymentRequest(BaseModel):
    amount: MoneyModel
    payment_date: Optional[str] = None
    method: str = Field("Cash", description="Cash, Card, UPI, Bank Transfer, Partial, Other")
    notes: str = ""


class ExtendLoanRequest(BaseModel):
    new_due_date: str
    reason: str = ""
    fee: Optional[MoneyModel] = None


# Savings schemas
class CreateSavingRequest(BaseModel):
    customer_id: str
    installment_amount: MoneyModel
    duration_months: int
    start_date: Optional[str] = None
    scheme_name: str = "Gold Savings"
    bonus_amount: Optional[MoneyModel] = None
    bonus_percent: str = "0"
    notes: str = ""


class PayInstallmentRequest(BaseModel):
    installment_id: Optional[str] = Field(None, description="Defaults to the earliest pending installment")
    paid_date: Optional[str] = None
    payment_method: str = Field("Cash", description="Cash, Card, UPI, Bank Transfer, Other")
    notes: str = ""


class UpdateInstallmentRequest(BaseModel):
    status: Optional[str] = Field(None, description="Pending, Paid, Missed, Waived")
    paid_date: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


# Redemption schemas
class RedemptionLineModel(BaseModel):
    product_id: str
    quantity: int = 1
    rate: Optional[str] = Field(None, description="Per-gram rate; defaults to the active rate")
    weight: Optional[str] = Field(None, description="Grams per unit; defaults to product net weight")
    making_charges: Optional[MoneyModel] = None

    def to_line(self, currency: Currency) -> RedemptionLine:
        return RedemptionLine(
            product_id=self.product_id,
            quantity=self.quantity,
            rate=parse_decimal(self.rate),
            weight=parse_decimal(self.weight),
            making_charges=self.making_charges.to_money(currency) if self.making_charges else None,
        )


class CreateRedemptionRequest(BaseModel):
    saving_id: str
    items: List[RedemptionLineModel]
    notes: str = ""


class LinkSaleRequest(BaseModel):
    sale_id: str


# Rate and product schemas
class SetRateRequest(BaseModel):
    metal: str = Field(..., description="Gold, Silver or Other")
    purity: str
    rate_per_gram: str
    rate_date: Optional[str] = None


class CreateProductRequest(BaseModel):
    name: str
    category: str
    net_weight: str
    making_charges: MoneyModel
    purity: Optional[str] = None
    stock: int = 0


class AdjustStockRequest(BaseModel):
    delta: int
    reason: str = ""
