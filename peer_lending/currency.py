"""
Currency and Money Module

ISO 4217 currencies with their display precision and an immutable Money type.
Monetary values are always Decimal; floats never enter a calculation.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Compounding over hundreds of days needs more headroom than cents
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    COP = ("COP", 2)  # Colombian Peso, centavos kept for reconciliation
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    MXN = ("MXN", 2)  # Mexican Peso

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, e.g. Decimal('0.01')"""
        return Decimal('0.1') ** self.precision


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """Coerce a numeric value to Decimal going through str for floats"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_amount(value: Decimal, currency: Currency) -> Decimal:
    """Round a raw Decimal to the currency precision (half-up)"""
    return to_decimal(value).quantize(currency.quantum, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    The amount is rounded to the currency precision on construction.
    """
    amount: Decimal
    currency: Currency = Currency.COP

    def __post_init__(self):
        object.__setattr__(self, 'amount', round_amount(to_decimal(self.amount), self.currency))

    @classmethod
    def zero(cls, currency: Currency = Currency.COP) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)

    def __truediv__(self, divisor) -> 'Money':
        return Money(self.amount / to_decimal(divisor), self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"

    def to_dict(self) -> dict:
        return {'amount': str(self.amount), 'currency': self.currency.code}

    @classmethod
    def from_dict(cls, data: dict) -> 'Money':
        return cls(Decimal(data['amount']), Currency[data['currency']])
