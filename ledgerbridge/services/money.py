"""Exact money arithmetic over integer minor units."""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation

from ledgerbridge.services.errors import ValidationError

# ISO 4217 exponents that differ from the common two-decimal case.
_CURRENCY_EXPONENTS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "CLP": 0,
    "ISK": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
}

_CURRENCY_SYMBOLS: dict[str, str] = {"USD": "$", "CAD": "$", "AUD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}

_STRIP_PATTERN = re.compile(r"[\s$€£¥,]|[A-Z]{3}")


# Amounts are stored in signed 64-bit columns.
MAX_MINOR_UNITS = 2**63 - 1


def minor_unit_exponent(currency: str = "USD") -> int:
    """Return the number of decimal places in the currency's minor unit."""
    return _CURRENCY_EXPONENTS.get(currency.upper(), 2)


def to_minor_units(value: Decimal | str | int, currency: str = "USD") -> int:
    """Convert a human decimal amount to an integer count of minor units."""

    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError("money values must be Decimal, str or int, never float")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid money value '{value}'") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid money value '{value}'")
    scaled = amount.scaleb(minor_unit_exponent(currency))
    if abs(scaled) > MAX_MINOR_UNITS:
        raise ValidationError(f"Money value '{value}' is out of range")
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_decimal(minor: int, currency: str = "USD") -> Decimal:
    """Convert integer minor units back to an exact decimal amount."""
    exponent = minor_unit_exponent(currency)
    return Decimal(int(minor)).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))


def parse_money(text: str | int | Decimal | None, currency: str = "USD") -> int:
    """Parse a loosely formatted export cell into minor units.

    Handles ``"$1,234.50"``, ``"-12"``, ``"(12.50)"`` and ``"12.50 USD"``.
    Empty cells count as zero.
    """

    if text is None:
        return 0
    if isinstance(text, (int, Decimal)) and not isinstance(text, bool):
        return to_minor_units(text, currency)
    if isinstance(text, float):
        # Spreadsheet exports hand us floats; their repr is the value the user saw.
        return to_minor_units(repr(text), currency)
    cleaned = str(text).strip()
    if not cleaned:
        return 0
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    cleaned = _STRIP_PATTERN.sub("", cleaned.upper())
    if not cleaned:
        raise ValidationError(f"Invalid money value '{text}'")
    minor = to_minor_units(cleaned, currency)
    return -minor if negative else minor


def add(*amounts: int | None) -> int:
    return sum(int(amount or 0) for amount in amounts)


def subtract(minuend: int | None, *subtrahends: int | None) -> int:
    return int(minuend or 0) - add(*subtrahends)


def multiply(amount: int, factor: int | Decimal | str) -> int:
    """Scale an amount by a rate, rounding half-to-even to the nearest minor unit."""
    product = Decimal(int(amount)) * Decimal(str(factor))
    return int(product.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def divide(amount: int, divisor: int | Decimal | str) -> int:
    """Divide an amount, rounding half-to-even; dividing by zero yields 0."""
    divisor_decimal = Decimal(str(divisor))
    if divisor_decimal == 0:
        return 0
    quotient = Decimal(int(amount)) / divisor_decimal
    return int(quotient.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def format_money(minor: int, currency: str = "USD") -> str:
    """Render minor units for display, e.g. ``-$1,234.50``."""
    amount = to_decimal(abs(int(minor)), currency)
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    body = f"{amount:,}"
    text = f"{symbol}{body}" if symbol else f"{body} {currency.upper()}"
    return f"-{text}" if minor < 0 else text


@dataclass(slots=True, frozen=True)
class MoneyAmount:
    """Integer minor units tagged with their currency."""

    amount_minor: int
    currency: str = "USD"

    @classmethod
    def parse(cls, value: Decimal | str | int, currency: str = "USD") -> "MoneyAmount":
        return cls(amount_minor=to_minor_units(value, currency), currency=currency.upper())

    def _check(self, other: "MoneyAmount") -> None:
        if other.currency != self.currency:
            raise ValueError(f"Cannot combine {self.currency} with {other.currency}")

    def __add__(self, other: "MoneyAmount") -> "MoneyAmount":
        self._check(other)
        return MoneyAmount(self.amount_minor + other.amount_minor, self.currency)

    def __sub__(self, other: "MoneyAmount") -> "MoneyAmount":
        self._check(other)
        return MoneyAmount(self.amount_minor - other.amount_minor, self.currency)

    def to_decimal(self) -> Decimal:
        return to_decimal(self.amount_minor, self.currency)

    def __str__(self) -> str:
        return format_money(self.amount_minor, self.currency)


__all__ = [
    "MAX_MINOR_UNITS",
    "MoneyAmount",
    "add",
    "divide",
    "format_money",
    "minor_unit_exponent",
    "multiply",
    "parse_money",
    "subtract",
    "to_decimal",
    "to_minor_units",
]
