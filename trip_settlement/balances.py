"""
Balances Module

This module folds expense records into per-member balances.

Features:
    - Per-member paid / owes / balance for a trip
    - One member's balance across every trip they belong to
    - Currency normalization to the reference currency before summing
    - Decimal-safe rounding
    - Suggested transfers that clear all balances

Data Model:
    Input - records: list of ExpenseRecord
    Input - member_ids: list of member IDs of the trip

    Output - balances (list of dicts, member order preserved):
        - user: string (member_id)
        - paid: float (sum of expenses this member contributed)
        - owes: float (sum of this member's shares, paid or pending)
        - balance: float (paid - owes)
            - Positive = member is owed money
            - Negative = member owes money

Functions:
    calculate_balances: Per-member balances for a set of records.
    calculate_member_balance: One member's balance across trips.
    suggest_transfers: Who pays whom to clear the balances.
"""

from collections import defaultdict
from decimal import Decimal

from trip_settlement.utils import CENT, money_to_float, round_money


def _reference_amount(record, converter) -> Decimal:
    return round_money(converter.to_reference(record.amount, record.currency))


def _reference_shares(record, converter) -> dict:
    """
    Reference-currency amount of each share, rounded to cents.

    The rounded shares add up exactly to the converted share total. The
    rounding residue goes to the contributor's share, or to the first share
    when the contributor does not participate, as in the splitter.
    """
    converted = {
        share.member_id: round_money(converter.to_reference(share.amount, record.currency))
        for share in record.shares
    }
    if not converted:
        return converted

    share_total = sum((share.amount for share in record.shares), Decimal("0"))
    target = round_money(converter.to_reference(share_total, record.currency))
    absorber = record.contributor_id if record.contributor_id in converted else record.shares[0].member_id
    converted[absorber] += target - sum(converted.values())
    return converted


def _accumulate(records, converter) -> tuple[dict, dict]:
    """Sum contributed and owed reference amounts per member."""
    paid = defaultdict(Decimal)
    owes = defaultdict(Decimal)

    for record in records:
        paid[record.contributor_id] += _reference_amount(record, converter)
        for member_id, amount in _reference_shares(record, converter).items():
            owes[member_id] += amount

    return paid, owes


def calculate_balances(records, member_ids: list[str], converter) -> list[dict]:
    """
    Calculate per-member balances from expense records.

    For each record:
        1. The contributor's paid increases by the expense amount
        2. Each share's member owes increases by the share amount

    Args:
        records: ExpenseRecords read from one consistent snapshot.
        member_ids: Trip members, in display order.
        converter: CurrencyConverter for the reference currency.

    Returns:
        list[dict]: One entry per member with user, paid, owes, balance.

    Notes:
        - Members with no activity get all-zero entries
        - Members present in records but no longer in member_ids are
          appended so the balances still sum to zero
        - Each record is converted and rounded to cents on its own, so
          the balances of records whose shares add up to the amount sum
          to exactly zero
    """
    paid, owes = _accumulate(records, converter)

    ordered = list(dict.fromkeys(member_ids))
    seen = set(ordered)
    for member_id in list(paid) + list(owes):
        if member_id not in seen:
            ordered.append(member_id)
            seen.add(member_id)

    balances = []
    for member_id in ordered:
        member_paid = paid.get(member_id, Decimal("0"))
        member_owes = owes.get(member_id, Decimal("0"))
        balances.append({
            "user": member_id,
            "paid": money_to_float(member_paid),
            "owes": money_to_float(member_owes),
            "balance": money_to_float(member_paid - member_owes)
        })

    return balances


def total_reference_amount(records, converter) -> Decimal:
    """Sum of all record amounts in the reference currency."""
    return sum(
        (_reference_amount(r, converter) for r in records),
        Decimal("0")
    )


def calculate_member_balance(records, member_id: str, converter) -> dict:
    """
    Calculate one member's balance across every trip in ``records``.

    Args:
        records: ExpenseRecords of all trips the member belongs to.
        member_id: The member.
        converter: CurrencyConverter for the reference currency.

    Returns:
        dict: Containing:
            - user: member_id
            - currency: reference currency
            - paid, owes, balance: floats over all trips
            - trips: list of {trip_id, paid, owes, balance}
    """
    by_trip = defaultdict(list)
    for record in records:
        by_trip[record.trip_id].append(record)

    total_paid = Decimal("0")
    total_owes = Decimal("0")
    trips = []

    for trip_id in sorted(by_trip):
        paid, owes = _accumulate(by_trip[trip_id], converter)
        trip_paid = paid.get(member_id, Decimal("0"))
        trip_owes = owes.get(member_id, Decimal("0"))
        total_paid += trip_paid
        total_owes += trip_owes
        trips.append({
            "trip_id": trip_id,
            "paid": money_to_float(trip_paid),
            "owes": money_to_float(trip_owes),
            "balance": money_to_float(trip_paid - trip_owes)
        })

    return {
        "user": member_id,
        "currency": converter.reference,
        "paid": money_to_float(total_paid),
        "owes": money_to_float(total_owes),
        "balance": money_to_float(total_paid - total_owes),
        "trips": trips
    }


def suggest_transfers(balances: list[dict]) -> list[dict]:
    """
    Convert member balances into a short list of transfers.

    Uses a greedy algorithm:
        1. Split members into debtors (balance < 0) and creditors (balance > 0)
        2. Sort both by the size of their balance, largest first
        3. Match the largest debtor with the largest creditor, settle the
           smaller of the two amounts, and move on when one is cleared

    Args:
        balances: Output of calculate_balances().

    Returns:
        list[dict]: Transfers, each containing:
            - from_member: string (debtor who pays)
            - to_member: string (creditor who receives)
            - amount: float (reference currency)

    Notes:
        - Balances below one cent are ignored
        - Suggestions only; nothing is recorded as paid
    """
    debtors = []
    creditors = []
    for entry in balances:
        net = Decimal(str(entry["balance"]))
        if net <= -CENT:
            debtors.append([entry["user"], -net])
        elif net >= CENT:
            creditors.append([entry["user"], net])

    # Stable sorts keep member order among equal balances
    debtors.sort(key=lambda d: d[1], reverse=True)
    creditors.sort(key=lambda c: c[1], reverse=True)

    transfers = []
    debtor_idx = 0
    creditor_idx = 0
    while debtor_idx < len(debtors) and creditor_idx < len(creditors):
        debtor = debtors[debtor_idx]
        creditor = creditors[creditor_idx]
        amount = min(debtor[1], creditor[1])

        transfers.append({
            "from_member": debtor[0],
            "to_member": creditor[0],
            "amount": money_to_float(amount)
        })

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] < CENT:
            debtor_idx += 1
        if creditor[1] < CENT:
            creditor_idx += 1

    return transfers
