"""
Fixed-point money value.

Amounts are held as integer minor units together with the currency code;
the number of decimal places comes from ``DJ_BILLING['CURRENCY_SCALES']``.
Conversion from and to ``Decimal`` happens only at the system boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import total_ordering

from .conf import billing_settings
from .exceptions import ValidationError


def currency_scale(currency: str) -> int:
    """Return the number of decimal places used by ``currency``."""
    code = str(currency or "").upper()
    try:
        return int(billing_settings.CURRENCY_SCALES[code])
    except KeyError:
        raise ValidationError(f"Unsupported currency: {currency!r}") from None


@total_ordering
@dataclass(frozen=True)
class Money:
    minor: int
    currency: str

    def __post_init__(self):
        if isinstance(self.minor, bool) or not isinstance(self.minor, int):
            raise ValidationError("Money minor units must be an integer.")
        code = str(self.currency or "").upper()
        currency_scale(code)
        object.__setattr__(self, "currency", code)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(0, currency)

    @classmethod
    def from_decimal(cls, value, currency: str) -> Money:
        """
        Build a Money from a boundary value.

        Accepts ``Decimal``, ``int`` or a numeric string. Floats are refused,
        as are values carrying more decimal places than the currency allows.
        """
        if isinstance(value, Money):
            if value.currency != str(currency or "").upper():
                raise ValidationError(
                    f"Currency mismatch: {value.currency} != {currency}"
                )
            return value
        if value is None or isinstance(value, (bool, float)):
            raise ValidationError(
                "Amount must be a Decimal, an integer or a numeric string."
            )
        try:
            val = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError("Amount must be a number.") from None

        if not val.is_finite():
            raise ValidationError("Amount must be finite.")

        scale = currency_scale(currency)
        scaled = val.scaleb(scale)
        if scaled != scaled.to_integral_value():
            raise ValidationError(
                f"Amount {value} has more than {scale} decimal places for {currency}."
            )
        return cls(int(scaled), currency)

    @property
    def scale(self) -> int:
        return currency_scale(self.currency)

    def to_decimal(self) -> Decimal:
        return Decimal(self.minor).scaleb(-self.scale)

    def as_dict(self) -> dict:
        """Boundary representation: fixed-point string plus currency code."""
        return {"amount": str(self.to_decimal()), "currencyCode": self.currency}

    @property
    def is_zero(self) -> bool:
        return self.minor == 0

    @property
    def is_positive(self) -> bool:
        return self.minor > 0

    @property
    def is_negative(self) -> bool:
        return self.minor < 0

    def _check(self, other) -> Money:
        if not isinstance(other, Money):
            raise ValidationError(f"Cannot combine Money with {type(other).__name__}.")
        if other.currency != self.currency:
            raise ValidationError(
                f"Currency mismatch: {self.currency} != {other.currency}"
            )
        return other

    def __add__(self, other) -> Money:
        other = self._check(other)
        return Money(self.minor + other.minor, self.currency)

    def __sub__(self, other) -> Money:
        other = self._check(other)
        return Money(self.minor - other.minor, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.minor, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.minor), self.currency)

    def __mul__(self, factor) -> Money:
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise ValidationError("Money can only be multiplied by an integer.")
        return Money(self.minor * factor, self.currency)

    __rmul__ = __mul__

    def __lt__(self, other) -> bool:
        other = self._check(other)
        return self.minor < other.minor

    def __str__(self):
        return f"{self.to_decimal()} {self.currency}"
