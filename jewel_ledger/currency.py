"""
Money Module

ISO 4217 currency codes and an immutable Money type with proper Decimal
precision. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
import re

from .exceptions import InvalidAmountError

# Set global decimal context for financial precision
getcontext().prec = 28

HUNDRED = Decimal('100')


class Currency(Enum):
    """ISO 4217 currency of the ledger, with precision and display symbol"""
    INR = ("INR", 2, "₹")  # Indian Rupee

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    Every amount is rounded half-up to the currency precision on creation.
    """
    amount: Decimal
    currency: Currency = Currency.INR

    def __post_init__(self):
        try:
            amount = self.amount if isinstance(self.amount, Decimal) else Decimal(str(self.amount))
            rounded = amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            rounded = None
        if rounded is None or not rounded.is_finite():
            raise InvalidAmountError("Amount is not a finite number within supported precision",
                                     self.amount)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency = Currency.INR) -> 'Money':
        return cls(Decimal('0'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    __rmul__ = __mul__

    def __truediv__(self, divisor: Decimal) -> 'Money':
        if not isinstance(divisor, Decimal):
            divisor = Decimal(str(divisor))
        return Money(self.amount / divisor, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def min(self, other: 'Money') -> 'Money':
        return self if self <= other else other

    def max(self, other: 'Money') -> 'Money':
        return self if self >= other else other

    def to_string(self) -> str:
        """Format for display, e.g. '₹1,250.00'"""
        return f"{self.currency.symbol}{self.amount:,.{self.currency.precision}f}"


def percent_of(money: Money, percent: Decimal) -> Money:
    """Return ``percent`` percent of ``money``, rounded to currency precision"""
    if not isinstance(percent, Decimal):
        percent = Decimal(str(percent))
    return Money(money.amount * percent / HUNDRED, money.currency)


def sum_money(amounts, currency: Currency = Currency.INR) -> Money:
    """Sum an iterable of Money, starting from zero in ``currency``"""
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total


_NUMBER_PATTERN = re.compile(r'[+-]?(?:\d[\d,]*)?(?:\.\d+)?')


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Only a leading currency symbol, whitespace and comma grouping (including
    lakh grouping) are tolerated; anything else is rejected.

    Args:
        value: String representation of number, e.g. "₹1,25,000.50"

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = re.sub(r'\s+', '', value)
    sign = ""
    if clean_value[:1] in ('-', '+'):
        sign, clean_value = clean_value[0], clean_value[1:]
    for currency in Currency:
        if clean_value.startswith(currency.symbol):
            clean_value = clean_value[len(currency.symbol):]
            break
    clean_value = sign + clean_value

    if not _NUMBER_PATTERN.fullmatch(clean_value) or not re.search(r'\d', clean_value):
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    if ',' in clean_value and '.' not in clean_value and clean_value.count(',') == 1:
        whole, fraction = clean_value.split(',')
        if len(fraction) <= 2:  # Likely decimal separator
            return Decimal(f"{whole}.{fraction}")
    return Decimal(clean_value.replace(',', ''))
