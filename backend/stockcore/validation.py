# Overview: Input coercion shared by services and routes.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
# Basis points: 10000 = 100%
MAX_TAX_RATE_BPS = 10_000


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints (not bools) and plain digit strings with an optional minus.
    Rejects floats, decimals and scientific notation instead of truncating.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than 0", details={field: number})
    return number


def require_non_negative_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} cannot be negative", details={field: number})
    return number


def optional_non_negative_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return require_non_negative_int(value, field)


def require_price_cents(value: Any, field: str = "price_cents") -> int:
    cents = require_non_negative_int(value, field)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def require_tax_rate_bps(value: Any, field: str = "tax_rate_bps") -> int:
    bps = require_non_negative_int(value, field)
    if bps > MAX_TAX_RATE_BPS:
        raise ValidationError(f"{field} cannot exceed {MAX_TAX_RATE_BPS} (100%)")
    return bps


def require_text(value: Any, field: str, *, max_length: int) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} is too long (max {max_length} characters)")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} is too long (max {max_length} characters)")
    return text


def coerce_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, str)):
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    elif isinstance(value, float):
        number = Decimal(str(value))
    else:
        raise ValidationError(f"{field} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return number


def coerce_label_ids(value: Any) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("label_ids must be a list")
    return list(value)
