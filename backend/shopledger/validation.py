# Overview: Input validation and coercion for JSON payloads.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_business_date


# Largest money amount accepted anywhere (999,999,999,999 minor units)
MAX_AMOUNT_CENTS = 999_999_999_999

# Largest single stock movement or sale line
MAX_QUANTITY = 1_000_000
MAX_ML = 1_000_000.0


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_int(name: str, value: Any, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """Strict integer parsing: rejects floats, bools and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{name} must be an integer, not a decimal")
        result = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{name} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{name} cannot exceed {maximum}")
    return result


def parse_amount_cents(name: str, value: Any, *, allow_zero: bool = True) -> int:
    amount = parse_int(name, value, minimum=0)
    if not allow_zero and amount == 0:
        raise ValidationError(f"{name} must be greater than zero")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS}")
    return amount


def parse_ml(name: str, value: Any, *, allow_zero: bool = False) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be a number of millilitres")
    try:
        ml = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number of millilitres")
    if not math.isfinite(ml) or ml < 0 or (ml == 0 and not allow_zero):
        raise ValidationError(f"{name} must be a positive number of millilitres")
    if ml > MAX_ML:
        raise ValidationError(f"{name} cannot exceed {MAX_ML:,.0f}ml")
    return round(ml, 3)


def require_fields(payload: dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(col.key, value)

    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number")
        if not math.isfinite(number):
            raise ValidationError(f"{col.key} must be a finite number")
        return number

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Business rules for products that column metadata cannot express."""
    for key in ("price_cents", "wholesale_price_cents", "cost_price_cents"):
        if patch.get(key) is not None:
            if patch[key] < 0:
                raise ValidationError(f"{key} must be >= 0")
            if patch[key] > MAX_AMOUNT_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")

    if patch.get("quantity_per_unit") is not None:
        if not 1 <= patch["quantity_per_unit"] <= MAX_QUANTITY:
            raise ValidationError(f"quantity_per_unit must be between 1 and {MAX_QUANTITY}")
    for key in ("stock", "min_stock"):
        if patch.get(key) is not None and not 0 <= patch[key] <= MAX_QUANTITY:
            raise ValidationError(f"{key} must be between 0 and {MAX_QUANTITY}")
    if patch.get("stock_ml") is not None and not 0 <= patch["stock_ml"] <= MAX_ML:
        raise ValidationError(f"stock_ml must be between 0 and {MAX_ML:,.0f}")


def parse_window(start: Any, end: Any):
    """Optional inclusive date window; both ends or neither."""
    if start in (None, "") and end in (None, ""):
        return None, None
    if start in (None, "") or end in (None, ""):
        raise ValidationError("start and end must be given together")
    try:
        start_day = parse_business_date(start)
        end_day = parse_business_date(end)
    except ValueError:
        raise ValidationError("start and end must be ISO dates (YYYY-MM-DD)")
    if end_day < start_day:
        raise ValidationError("end must not be before start")
    return start_day, end_day
