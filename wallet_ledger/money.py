"""
Amount Handling Module

Parses, validates and rounds monetary amounts. Balances, entry amounts,
prices and rates are Decimal from input to storage. NEVER uses float for
monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any, Optional
import re

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

BASE_CURRENCY = "INR"
DISPLAY_PRECISION = 2

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def quantum(precision: int = DISPLAY_PRECISION) -> Decimal:
    """Smallest representable step for a precision, e.g. 0.01"""
    return Decimal('0.1') ** precision


def quantize(value: Decimal, precision: int = DISPLAY_PRECISION) -> Decimal:
    """Round half-up to the display precision"""
    return value.quantize(quantum(precision), rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """
    Convert a raw value to Decimal without losing precision

    Floats go through str() so that 0.1 stays 0.1 instead of its binary
    expansion. Booleans are rejected even though they are ints.

    Raises:
        ValidationError: If the value is missing or not a finite number
    """
    if value is None or isinstance(value, bool):
        raise ValidationError("Valid amount required")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        if not value.strip():
            raise ValidationError("Valid amount required")
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"Cannot convert '{value}' to an amount")
    else:
        raise ValidationError("Valid amount required")

    if not result.is_finite():
        raise ValidationError("Amount must be a finite number")
    return result


def parse_amount(
    value: Any,
    max_amount: Optional[Decimal] = None,
    precision: int = DISPLAY_PRECISION
) -> Decimal:
    """
    Validate a movement amount

    Args:
        value: Raw amount (Decimal, int, float or numeric string)
        max_amount: Optional upper bound for a single movement
        precision: Maximum number of decimal places accepted

    Returns:
        The amount as a Decimal quantized to the precision

    Raises:
        ValidationError: If the amount is missing, not positive, has too many
            decimal places or exceeds max_amount
    """
    amount = to_decimal(value)

    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    if max_amount is not None and amount > max_amount:
        raise ValidationError(f"Amount exceeds maximum of {max_amount}")

    # Rounding here would silently create or destroy fractions of a unit
    try:
        exact = amount == amount.quantize(quantum(precision))
    except InvalidOperation:
        raise ValidationError("Amount is too large")
    if not exact:
        raise ValidationError(f"Amount cannot have more than {precision} decimal places")

    return quantize(amount, precision)


def normalize_currency(code: Optional[str], default: str = BASE_CURRENCY) -> str:
    """
    Normalize an ISO 4217 style currency code

    Raises:
        ValidationError: If the code is not three letters
    """
    if code is None:
        return default

    if not isinstance(code, str):
        raise ValidationError("Invalid currency")

    clean = code.strip().upper()
    if not clean:
        return default

    if not _CURRENCY_CODE.match(clean):
        raise ValidationError(f"Invalid currency '{code}'")
    return clean


def convert_amount(amount: Decimal, rate: Decimal, precision: int = DISPLAY_PRECISION) -> Decimal:
    """Multiply by an exchange rate and round to display precision"""
    if not isinstance(rate, Decimal):
        rate = Decimal(str(rate))
    return quantize(amount * rate, precision)
