"""Currency rate table and converter."""

import json
from decimal import Decimal

import pytest

from trip_settlement.currency import (
    CurrencyConverter,
    CurrencyRateTable,
    load_rate_table,
)


class TestCurrencyRateTable:

    def test_default_table_has_reference_at_one(self):
        table = CurrencyRateTable.default()
        assert table.reference == "USD"
        assert table.rate_for("USD") == Decimal("1")
        assert table.rate_for("EUR") == Decimal("1.08")

    def test_table_is_read_only(self):
        table = CurrencyRateTable.default()
        with pytest.raises(TypeError):
            table.rates["EUR"] = Decimal("2")

    def test_codes_are_normalized(self):
        table = CurrencyRateTable({"eur ": "1.10"})
        assert "EUR" in table
        assert table.rate_for("eur") == Decimal("1.10")

    @pytest.mark.parametrize("rate", [0, -1, "abc", "NaN"])
    def test_invalid_rates_rejected(self, rate):
        with pytest.raises(ValueError):
            CurrencyRateTable({"EUR": rate})

    def test_from_file(self, tmp_path):
        path = tmp_path / "rates.json"
        path.write_text(json.dumps({"reference": "EUR", "rates": {"USD": 0.92}}))

        table = CurrencyRateTable.from_file(str(path))

        assert table.reference == "EUR"
        assert table.rate_for("EUR") == Decimal("1")
        assert table.rate_for("USD") == Decimal("0.92")

    def test_from_file_requires_rates_object(self, tmp_path):
        path = tmp_path / "rates.json"
        path.write_text(json.dumps({"EUR": 1.08}))
        with pytest.raises(ValueError):
            CurrencyRateTable.from_file(str(path))

    def test_load_rate_table_defaults_without_path(self):
        assert dict(load_rate_table(None).rates) == dict(CurrencyRateTable.default().rates)


class TestCurrencyConverter:

    def test_to_reference(self, converter):
        assert converter.to_reference(50, "EUR") == Decimal("54.00")
        assert converter.to_reference(Decimal("100"), "USD") == Decimal("100")

    def test_from_reference(self, converter):
        assert converter.from_reference(Decimal("54"), "EUR") == Decimal("50")

    def test_unknown_currency_passes_through(self, converter):
        assert not converter.is_supported("XYZ")
        assert converter.to_reference(Decimal("12.34"), "XYZ") == Decimal("12.34")
        assert converter.from_reference(Decimal("12.34"), "XYZ") == Decimal("12.34")

    def test_conversion_is_not_rounded(self, converter):
        assert converter.to_reference(Decimal("0.01"), "INR") == Decimal("0.00012")

    def test_round_trip_every_supported_currency(self, converter):
        amount = Decimal("19.99")
        for currency in converter.table.rates:
            back = converter.from_reference(converter.to_reference(amount, currency), currency)
            assert abs(back - amount) < Decimal("1e-9"), currency

    def test_converters_share_one_table(self):
        table = CurrencyRateTable.default()
        assert CurrencyConverter(table).table is CurrencyConverter(table).table
