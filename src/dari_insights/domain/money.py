from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from dari_insights.errors import CurrencyMismatchError, ValidationError

DEFAULT_CURRENCY = "SAR"

_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() keeps 0.1 as 0.1 instead of its binary expansion
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid monetary amount '{value}'") from exc


class Money(BaseModel):
    """
    Exact decimal amount tagged with an ISO-4217 currency code.

    Arithmetic and ordering between two values require the same currency and
    raise CurrencyMismatchError otherwise. Equality never raises: values in
    different currencies are simply unequal.
    """
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"Invalid currency code '{value}'")
        return code

    @classmethod
    def of(cls, amount: Any, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(amount=to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(amount=Decimal("0"), currency=currency)

    def _check_currency(self, other: "Money", operation: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {operation} Money and {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency, operation)

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other, "add")
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other, "subtract")
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> "Money":
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> "Money":
        return Money(amount=abs(self.amount), currency=self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def times(self, factor: Any) -> "Money":
        value = (self.amount * to_decimal(factor)).quantize(_CENT, rounding=ROUND_HALF_UP)
        return Money(amount=value, currency=self.currency)

    def divided_by(self, divisor: Any) -> "Money":
        divisor_value = to_decimal(divisor)
        if divisor_value == 0:
            raise ValidationError("Cannot divide money by zero")
        value = (self.amount / divisor_value).quantize(_CENT, rounding=ROUND_HALF_UP)
        return Money(amount=value, currency=self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def format(self) -> str:
        value = self.amount.quantize(_CENT, rounding=ROUND_HALF_UP)
        return f"{value:,.2f} {self.currency}"

    def __str__(self) -> str:
        return self.format()


def total(values: Iterable[Money], currency: str = DEFAULT_CURRENCY) -> Money:
    """Sum of the values. Every value must be in the given currency."""
    result = Money.zero(currency)
    for value in values:
        result = result + value
    return result
