"""
Currency Module

Conversion between trip currencies and the reference accounting unit.

Features:
    - Immutable rate table loaded once at startup
    - Optional JSON rate file (CURRENCY_RATES_FILE)
    - Decimal-safe conversion in both directions
    - Unknown currency codes pass through at rate 1

Rate table file format:
    {
        "reference": "USD",
        "rates": {"EUR": 1.08, "GBP": 1.27, "INR": 0.012}
    }
    A rate is the number of reference units per 1 unit of the currency.

Classes:
    CurrencyRateTable: Immutable mapping of currency code to rate.
    CurrencyConverter: Pure conversion functions over a rate table.
"""

import json
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Optional

from trip_settlement.logging_config import get_logger

logger = get_logger("currency")

REFERENCE_CURRENCY = "USD"

DEFAULT_RATES = {
    "USD": "1.0",
    "EUR": "1.08",
    "GBP": "1.27",
    "INR": "0.012",
}

_ONE = Decimal("1")


def _to_decimal(value) -> Decimal:
    """Convert a number to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_currency(code: str) -> str:
    """Upper-case and strip a currency code."""
    return code.strip().upper()


class CurrencyRateTable:
    """
    Immutable currency rate table.

    Attributes:
        reference (str): Reference currency code (rate 1 by definition).
        rates (Mapping[str, Decimal]): Read-only code -> rate mapping.
    """

    def __init__(self, rates: dict, reference: str = REFERENCE_CURRENCY):
        reference = normalize_currency(reference)
        parsed = {}

        for code, rate in rates.items():
            try:
                value = _to_decimal(rate)
            except InvalidOperation:
                raise ValueError(f"rate for {code} must be a number, got: {rate}")
            if not value.is_finite() or value <= 0:
                raise ValueError(f"rate for {code} must be positive, got: {rate}")
            parsed[normalize_currency(code)] = value

        # The reference currency always converts at 1
        parsed[reference] = _ONE

        self._reference = reference
        self._rates = MappingProxyType(parsed)

    @property
    def reference(self) -> str:
        return self._reference

    @property
    def rates(self):
        return self._rates

    def rate_for(self, currency: str) -> Decimal:
        """Rate for a currency; unknown codes use 1."""
        return self._rates.get(normalize_currency(currency), _ONE)

    def __contains__(self, currency: str) -> bool:
        return normalize_currency(currency) in self._rates

    def __repr__(self) -> str:
        return f"CurrencyRateTable(reference='{self._reference}', currencies={sorted(self._rates)})"

    @classmethod
    def default(cls) -> "CurrencyRateTable":
        """Built-in table used when no rate file is configured."""
        return cls(DEFAULT_RATES, REFERENCE_CURRENCY)

    @classmethod
    def from_file(cls, path: str) -> "CurrencyRateTable":
        """
        Load a rate table from a JSON file.

        Args:
            path: Path to the JSON document.

        Returns:
            CurrencyRateTable: The loaded table.

        Raises:
            ValueError: If the document is malformed or a rate is invalid.
            OSError: If the file cannot be read.
        """
        with open(path, encoding="utf-8") as fh:
            # parse_float keeps configured rates exact
            document = json.load(fh, parse_float=Decimal)

        if not isinstance(document, dict) or not isinstance(document.get("rates"), dict):
            raise ValueError(f"rate file {path} must contain a 'rates' object")

        table = cls(document["rates"], document.get("reference", REFERENCE_CURRENCY))
        logger.info(
            "Loaded currency rate table",
            extra={"path": path, "currencies": sorted(table.rates)},
        )
        return table


def load_rate_table(path: Optional[str] = None) -> CurrencyRateTable:
    """Rate table from a file when one is configured, else the defaults."""
    if path:
        return CurrencyRateTable.from_file(path)
    return CurrencyRateTable.default()


class CurrencyConverter:
    """
    Stateless conversion between currencies and the reference unit.

    The rate table is shared by reference; converters hold no other state.
    """

    def __init__(self, table: CurrencyRateTable):
        self.table = table

    @property
    def reference(self) -> str:
        return self.table.reference

    def is_supported(self, currency: str) -> bool:
        """True if the currency has an explicit rate."""
        return currency in self.table

    def to_reference(self, amount, currency: str) -> Decimal:
        """
        Convert an amount in ``currency`` to the reference currency.

        Unknown currencies convert at rate 1. The result is not rounded;
        callers round when presenting totals.
        """
        return _to_decimal(amount) * self.table.rate_for(currency)

    def from_reference(self, reference_amount, currency: str) -> Decimal:
        """Convert a reference-currency amount into ``currency``."""
        return _to_decimal(reference_amount) / self.table.rate_for(currency)
