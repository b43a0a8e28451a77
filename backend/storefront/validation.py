# Overview: Input validation for JSON payloads; column-driven coercion, money conversion and pagination.

"""
Shared input validation.

Money enters the API in two shapes: admin catalog payloads carry integer
cents columns, storefront inputs (price filters, loyalty amounts, raffle
retail price) carry dollars. Dollars are parsed as Decimal and converted
half-up; cents are rendered back to the frontend as two-decimal floats.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from werkzeug.routing import IntegerConverter


# Largest price a product or variant may carry: $999,999.99
MAX_PRICE_CENTS = 99_999_999

# Signed 64-bit column range; SQLite raises OverflowError past it
MAX_DB_INT = 2**63 - 1
MIN_DB_INT = -(2**63)


class ValidationError(ValueError):
    """400-level input problem."""

    status_code = 400


class ConflictError(ValueError):
    """409-level uniqueness conflict (duplicate slug or SKU)."""

    status_code = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    What a client may write to one model.

    writable_fields and required_on_create name columns. aliases maps JSON
    keys to columns for endpoints that speak camelCase (profile, addresses);
    when aliases is set only the aliased keys are accepted.
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    aliases: dict[str, str] = field(default_factory=dict)

    def to_columns(self, payload: dict) -> dict:
        if not self.aliases:
            return dict(payload)
        unknown = sorted(k for k in payload if k not in self.aliases)
        if unknown:
            raise ValidationError(f"Field not allowed: {unknown[0]}")
        return {self.aliases[k]: v for k, v in payload.items()}

    def display_name(self, column: str) -> str:
        for key, target in self.aliases.items():
            if target == column:
                return key
        return column


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain digit strings within the signed 64-bit range;
    rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, str):
        text = value.strip()
        if "." in text or "e" in text.lower():
            raise ValidationError(f"{field} must be a whole number")
        if not re.fullmatch(r"[+-]?\d+", text):
            raise ValidationError(f"{field} must be an integer")
        value = int(text)
    elif not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if not MIN_DB_INT <= value <= MAX_DB_INT:
        raise ValidationError(f"{field} is out of range")
    return value


class DatabaseIntConverter(IntegerConverter):
    """<int:...> URL segment capped at MAX_DB_INT; larger ids 404 instead of overflowing the query."""

    def __init__(self, map, fixed_digits=0, min=None, max=MAX_DB_INT, signed=False):
        super().__init__(map, fixed_digits=fixed_digits, min=min, max=max, signed=signed)


def coerce_decimal(value: Any, field: str) -> Decimal:
    """Parse a JSON number or numeric string into a Decimal without float drift."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a number")
    return result


def dollars_to_cents(value: Any, field: str) -> int:
    amount = coerce_decimal(value, field)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_dollars(cents: int | None) -> float | None:
    """Render authoritative cents as the two-decimal float the frontend expects."""
    if cents is None:
        return None
    return float(Decimal(cents) / 100)


def _clean_value(column, name: str, raw: Any):
    coltype = column.type

    if isinstance(coltype, Boolean):
        if not isinstance(raw, bool):
            raise ValidationError(f"{name} must be true or false")
        return raw

    if isinstance(coltype, Integer):
        return coerce_int(raw, name)

    if isinstance(coltype, (String, Text)):
        if not isinstance(raw, (str, int, float)) or isinstance(raw, bool):
            raise ValidationError(f"{name} must be a string")
        text = str(raw).strip()
        if not text and not column.nullable:
            raise ValidationError(f"{name} cannot be blank")
        if isinstance(coltype, String) and coltype.length and len(text) > coltype.length:
            raise ValidationError(f"{name} exceeds max length {coltype.length}")
        return text if text or not column.nullable else None

    return raw


def validate_payload(*, model, payload: dict, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Turn a JSON body into a column patch for model.

    Rejects keys outside the policy, enforces required_on_create unless
    partial, and coerces each value against its column (type, nullability,
    String length). The returned dict is safe to pass to the model.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    data = policy.to_columns(payload)
    columns = {c.key: c for c in model.__mapper__.columns}

    for key in data:
        if key not in policy.writable_fields or key not in columns:
            raise ValidationError(f"Field not allowed: {policy.display_name(key)}")

    if not partial:
        missing = sorted(policy.display_name(f) for f in policy.required_on_create if data.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    patch: dict = {}
    for key, raw in data.items():
        column = columns[key]
        name = policy.display_name(key)
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{name} cannot be null")
            patch[key] = None
        else:
            patch[key] = _clean_value(column, name, raw)
    return patch


def enforce_price_rules(patch: dict, field: str = "price_cents", allow_negative: bool = False) -> None:
    price = patch.get(field)
    if price is None:
        return
    if price < 0 and not allow_negative:
        raise ValidationError(f"{field} must be >= 0")
    if abs(price) > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} cents")


def parse_pagination(args, *, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """page >= 1, 1 <= limit <= max_limit; missing or junk values fall back to defaults."""
    page = args.get("page", type=int) or 1
    limit = args.get("limit", type=int) or default_limit
    limit = min(max(limit, 1), max_limit)
    # keeps (page - 1) * limit inside MAX_DB_INT
    return min(max(page, 1), MAX_DB_INT // max_limit), limit
