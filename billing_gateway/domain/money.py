"""Money value type - fixed two-decimal amounts with half-up rounding"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import ClassVar, Iterable

from billing_gateway.domain.exceptions import InvalidMoneyValueError

_CENT = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    if isinstance(value, bool):
        raise InvalidMoneyValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation as e:
            raise InvalidMoneyValueError(f"Not a monetary amount: {value!r}") from e
    elif isinstance(value, float):
        # repr of the float, not its binary expansion
        amount = Decimal(str(value))
    else:
        raise InvalidMoneyValueError(f"Not a monetary amount: {value!r}")

    if not amount.is_finite():
        raise InvalidMoneyValueError(f"Amount must be finite, got {value!r}")
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, order=True)
class Money:
    """
    Immutable decimal amount quantized to cents.

    Arithmetic permits any sign so callers can compute intermediate
    differences; `Money.of` is the public constructor and only accepts
    non-negative literals. Currency is tracked on the invoice, not here.
    """

    amount: Decimal

    ZERO: ClassVar["Money"]

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_decimal(self.amount))

    @classmethod
    def of(cls, value) -> "Money":
        money = cls(_to_decimal(value))
        if money.is_negative():
            raise InvalidMoneyValueError(f"Amount cannot be negative, got {value!r}")
        return money

    @classmethod
    def from_cents(cls, cents: int) -> "Money":
        return cls(Decimal(cents) / 100)

    @classmethod
    def sum(cls, amounts: Iterable["Money"]) -> "Money":
        total = cls.ZERO
        for amount in amounts:
            total = total.add(amount)
        return total

    @property
    def cents(self) -> int:
        return int(self.amount * 100)

    def add(self, other: "Money") -> "Money":
        return Money(self.amount + other.amount)

    def subtract(self, other: "Money") -> "Money":
        return Money(self.amount - other.amount)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def __str__(self) -> str:
        return f"{self.amount:.2f}"


Money.ZERO = Money(Decimal("0"))
