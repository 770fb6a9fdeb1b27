"""
Analytics Module

This module builds the trip expense listing and its summary.

Features:
    - Filtering by category, contributor, currency, status and date range
    - Newest-first pagination
    - Category-wise totals in the reference currency
    - Currency breakdown with reference-currency equivalents

Data Model:
    Input - records: list of ExpenseRecord
    Input - converter: CurrencyConverter

    Output - summary dict:
        - totalAmount: float (nominal sum across currencies)
        - totalExpenses: int
        - byCategory: dict of category -> reference amount
        - totalAmountUSD: float (reference currency total)
        - currencyBreakdown: dict of currency -> {amount, usdEquivalent}
        - mixedCurrency: bool (totalAmount is only meaningful when false)

Functions:
    filter_expenses: Apply listing filters to records.
    paginate: Slice the newest-first listing for one page.
    generate_summary: Totals, category and currency breakdown.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional

from trip_settlement.errors import InvalidInputError
from trip_settlement.utils import money_to_float

MAX_PAGE_SIZE = 100

FILTER_FIELDS = ("category", "contributor_id", "currency", "status", "date_from", "date_to")


def filter_expenses(records, filters: Optional[dict] = None) -> list:
    """
    Apply listing filters.

    Args:
        records: ExpenseRecords of a trip.
        filters: Optional dict with any of:
            - category, contributor_id, currency: exact match
            - status: matches the derived settlement status
              (pending, partial, settled)
            - date_from, date_to: inclusive YYYY-MM-DD bounds

    Returns:
        list: Matching records.
    """
    filters = {k: v for k, v in (filters or {}).items() if v is not None}
    unknown = set(filters) - set(FILTER_FIELDS)
    if unknown:
        raise InvalidInputError(f"unknown filters: {sorted(unknown)}")

    currency = filters.get("currency")
    if currency:
        currency = currency.upper()

    matched = []
    for record in records:
        if "category" in filters and record.category != filters["category"]:
            continue
        if "contributor_id" in filters and record.contributor_id != filters["contributor_id"]:
            continue
        if currency and record.currency != currency:
            continue
        if "status" in filters and record.settlement_status != filters["status"]:
            continue
        if "date_from" in filters and record.date < filters["date_from"]:
            continue
        if "date_to" in filters and record.date > filters["date_to"]:
            continue
        matched.append(record)

    return matched


def paginate(records, page: int, limit: int) -> list:
    """
    Return one page of records, newest date first.

    Raises:
        InvalidInputError: If page < 1 or limit outside 1..MAX_PAGE_SIZE.
    """
    if page < 1:
        raise InvalidInputError(f"page must be >= 1, got: {page}")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got: {limit}")

    # Newest first; created_at breaks ties within a day
    ordered = sorted(
        records,
        key=lambda r: (r.date or "", r.created_at or ""),
        reverse=True
    )
    start = (page - 1) * limit
    return ordered[start:start + limit]


def generate_summary(records, converter) -> dict:
    """
    Generate the expense summary for a set of records.

    Args:
        records: ExpenseRecords (typically all records matching a filter).
        converter: CurrencyConverter for the reference currency.

    Returns:
        dict: totalAmount, totalExpenses, byCategory, totalAmountUSD,
              currencyBreakdown, mixedCurrency, referenceCurrency.

    Notes:
        - Every currency present appears in currencyBreakdown
        - totalAmountUSD equals the sum of the usdEquivalent values before
          rounding
    """
    nominal_total = Decimal("0")
    reference_total = Decimal("0")
    category_totals = defaultdict(Decimal)   # category -> reference amount
    currency_totals = defaultdict(Decimal)   # currency -> nominal amount
    currency_reference = defaultdict(Decimal)

    for record in records:
        reference_amount = converter.to_reference(record.amount, record.currency)

        nominal_total += record.amount
        reference_total += reference_amount
        category_totals[record.category] += reference_amount
        currency_totals[record.currency] += record.amount
        currency_reference[record.currency] += reference_amount

    currency_breakdown = {
        currency: {
            "amount": money_to_float(amount),
            "usdEquivalent": money_to_float(currency_reference[currency])
        }
        for currency, amount in currency_totals.items()
    }

    return {
        "totalAmount": money_to_float(nominal_total),
        "totalExpenses": len(records),
        "byCategory": {
            category: money_to_float(amount)
            for category, amount in category_totals.items()
        },
        "totalAmountUSD": money_to_float(reference_total),
        "currencyBreakdown": currency_breakdown,
        "mixedCurrency": len(currency_totals) > 1,
        "referenceCurrency": converter.reference
    }
