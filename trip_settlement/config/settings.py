"""
Settings Module

Process-wide configuration read once from the environment.

Variables:
    EXPENSE_STORE           - "firestore" (default) or "memory"
    CURRENCY_RATES_FILE     - optional JSON rate table
    TRIPS_FILE              - JSON trip -> members map seeding the memory
                              backend's trip directory
    STRICT_MANUAL_SPLITS    - enforce manual split totals (default true)
    MANUAL_SPLIT_TOLERANCE  - allowed manual total drift (default 0.01)
    LOG_LEVEL               - package log level (default INFO)

The memory backend keeps expenses and chat messages in process memory and
reads trip membership from TRIPS_FILE; without it every trip is unknown.
"""

import os
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Optional

VALID_STORES = {"firestore", "memory"}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got: {value}")


class Settings:
    """
    Immutable runtime settings.

    Attributes:
        expense_store (str): Storage backend name.
        currency_rates_file (str | None): Path of a JSON rate table.
        trips_file (str | None): Path of a JSON trip directory (memory backend).
        strict_manual_splits (bool): Reject manual splits that do not add up.
        manual_split_tolerance (Decimal): Allowed drift for manual totals.
        log_level (str): Level name for the package logger.
    """

    __slots__ = (
        "expense_store",
        "currency_rates_file",
        "trips_file",
        "strict_manual_splits",
        "manual_split_tolerance",
        "log_level",
    )

    def __init__(
        self,
        expense_store: str = "firestore",
        currency_rates_file: Optional[str] = None,
        trips_file: Optional[str] = None,
        strict_manual_splits: bool = True,
        manual_split_tolerance: Decimal = Decimal("0.01"),
        log_level: str = "INFO"
    ):
        if expense_store not in VALID_STORES:
            raise ValueError(f"EXPENSE_STORE must be one of {sorted(VALID_STORES)}, got: {expense_store}")
        if manual_split_tolerance < 0:
            raise ValueError("MANUAL_SPLIT_TOLERANCE must not be negative")

        object.__setattr__(self, "expense_store", expense_store)
        object.__setattr__(self, "currency_rates_file", currency_rates_file)
        object.__setattr__(self, "trips_file", trips_file)
        object.__setattr__(self, "strict_manual_splits", strict_manual_splits)
        object.__setattr__(self, "manual_split_tolerance", manual_split_tolerance)
        object.__setattr__(self, "log_level", log_level.upper())

    def __setattr__(self, name, value):
        raise AttributeError("Settings are read-only")

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ

        tolerance_raw = env.get("MANUAL_SPLIT_TOLERANCE", "0.01")
        try:
            tolerance = Decimal(tolerance_raw)
        except InvalidOperation:
            raise ValueError(f"MANUAL_SPLIT_TOLERANCE must be a number, got: {tolerance_raw}")

        return cls(
            expense_store=env.get("EXPENSE_STORE", "firestore").strip().lower(),
            currency_rates_file=env.get("CURRENCY_RATES_FILE") or None,
            trips_file=env.get("TRIPS_FILE") or None,
            strict_manual_splits=_parse_bool(env.get("STRICT_MANUAL_SPLITS", "true"), "STRICT_MANUAL_SPLITS"),
            manual_split_tolerance=tolerance,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    def __repr__(self) -> str:
        return (
            f"Settings(expense_store='{self.expense_store}', "
            f"strict_manual_splits={self.strict_manual_splits}, "
            f"manual_split_tolerance={self.manual_split_tolerance})"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, loaded on first call."""
    return Settings.from_env()
