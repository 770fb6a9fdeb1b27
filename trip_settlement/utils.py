"""
Utilities Module

Shared helpers for the settlement engine.

Features:
    - Decimal-safe money rounding
    - Input validation helpers
    - Timestamp and identifier generation

Functions:
    to_decimal: Convert a number to Decimal without float artifacts.
    round_money: Round a Decimal to 2 decimal places (ROUND_HALF_UP).
    money_to_float: Round and convert to float for JSON/Firestore.
    validate_non_empty_string: Validate a required string field.
    validate_date: Validate a YYYY-MM-DD date string.
    get_timestamp: Current UTC timestamp in ISO format.
    generate_id: Generate a unique identifier for records.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from trip_settlement.errors import InvalidInputError

CENT = Decimal("0.01")


def to_decimal(value, field_name: str = "amount") -> Decimal:
    """
    Convert a number to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1.

    Raises:
        InvalidInputError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise InvalidInputError(f"{field_name} must be a number, got: {value}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field_name} must be a number, got: {value}")
    if not result.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite number, got: {value}")
    return result


def round_money(value: Decimal) -> Decimal:
    """
    Round a Decimal to 2 decimal places using ROUND_HALF_UP.

    Raises:
        InvalidInputError: If the value has too many digits to be held
            at cent precision.
    """
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidInputError(f"amount is too large: {value}")


def money_to_float(value: Decimal) -> float:
    """Round a Decimal to 2 decimal places and convert to float."""
    return float(round_money(value))


def validate_non_empty_string(value: str, field_name: str) -> str:
    """
    Validate that a string is non-empty.

    Returns:
        str: The stripped value.

    Raises:
        InvalidInputError: If the value is empty or not a string.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field_name} must be a non-empty string")
    return value.strip()


def validate_date(date_str: str, field_name: str) -> str:
    """
    Validate date string format (YYYY-MM-DD).

    Raises:
        InvalidInputError: If date format is invalid.
    """
    try:
        datetime.strptime(date_str, "%Y-%m-%d")
    except (TypeError, ValueError):
        raise InvalidInputError(f"{field_name} must be in YYYY-MM-DD format, got: {date_str}")
    return date_str


def get_timestamp() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def generate_id(prefix: str) -> str:
    """
    Generate a unique identifier.

    Args:
        prefix: Prefix for the ID (e.g., "exp", "msg").

    Returns:
        str: Identifier like "exp_3f2a9c1b7d4e".
    """
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
