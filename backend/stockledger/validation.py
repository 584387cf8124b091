from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stockledger.errors import ValidationError
from stockledger.time_utils import parse_iso_datetime


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_REASON_LENGTH = 255

FIELD_INT = "int"
FIELD_STR = "str"
FIELD_DATETIME = "datetime"
FIELD_LIST = "list"


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for operation payloads:
    - fields: what clients are allowed to send, mapped to the expected kind
    - required: fields that must be present
    - max_lengths: String limits (mirrors the backing column lengths)
    """
    fields: dict[str, str]
    required: set[str] = field(default_factory=set)
    max_lengths: dict[str, int] = field(default_factory=dict)


def coerce_int(name: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_value(name: str, kind: str, value: Any):
    if value is None:
        return None

    if kind == FIELD_INT:
        return coerce_int(name, value)

    if kind == FIELD_DATETIME:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{name} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{name} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{name} must be a datetime")

    if kind == FIELD_LIST:
        if not isinstance(value, list):
            raise ValidationError(f"{name} must be a list")
        return value

    return str(value).strip()


def validate_payload(payload: Any, policy: PayloadPolicy) -> dict:
    """
    Validates + normalizes an incoming JSON object against a PayloadPolicy.

    Unknown fields are rejected (security boundary), required fields must be
    present and non-null, and values are coerced to their declared kind.
    Returns a cleaned dict containing only the provided fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")

    cleaned: dict = {}
    for k, raw in payload.items():
        val = _coerce_value(k, policy.fields[k], raw)
        limit = policy.max_lengths.get(k)
        if limit and isinstance(val, str) and len(val) > limit:
            raise ValidationError(f"{k} exceeds max length {limit}")
        cleaned[k] = val

    return cleaned


def require_positive_int(name: str, value: Any) -> int:
    number = coerce_int(name, value)
    if number <= 0:
        raise ValidationError(f"{name} must be positive", details={"field": name, "value": number})
    return number


def require_non_negative_int(name: str, value: Any) -> int:
    number = coerce_int(name, value)
    if number < 0:
        raise ValidationError(f"{name} cannot be negative", details={"field": name, "value": number})
    return number


def require_non_zero_int(name: str, value: Any) -> int:
    number = coerce_int(name, value)
    if number == 0:
        raise ValidationError(f"{name} must be non-zero", details={"field": name, "value": number})
    return number


def require_cents(name: str, value: Any, *, default: int | None = 0) -> int | None:
    if value is None:
        return default
    cents = require_non_negative_int(name, value)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def clean_reason(value: Any, *, default: str | None = None) -> str | None:
    if value is None:
        return default
    reason = str(value).strip()
    if not reason:
        return default
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason exceeds max length {MAX_REASON_LENGTH}")
    return reason


def require_choice(name: str, value: Any, choices) -> str:
    normalized = str(value).strip().upper()
    if normalized not in choices:
        raise ValidationError(
            f"Invalid {name}: {value}",
            details={"field": name, "allowed": sorted(choices)},
        )
    return normalized
