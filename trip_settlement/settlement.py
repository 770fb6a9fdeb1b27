"""
Settlement Module

Derives settlement status for expenses from the payment state of their
shares.

Features:
    - Three-state settlement status per expense (pending / partial / settled)
    - Coarse persisted status derived from the same resolver
    - Paid / pending partition for one expense
    - Paid / pending partition for a trip or a single member

Status rules (per expense):
    settled - every share is paid
    partial - some amount has been paid but not every share
    pending - nothing has been paid

    "Settled" is decided by share states, not by comparing the paid total
    with the expense amount. The two agree whenever the shares add up to the
    amount. They can differ for lenient manual splits and for strict splits
    within the tolerance; there an expense with every share paid is settled
    even if the paid total is a cent off the amount.

    The persisted ``status`` field only distinguishes pending / settled and
    is always computed from resolve_settlement_status(); it is never set on
    its own.

Functions:
    resolve_settlement_status: Derive the three-state status of an expense.
    coarse_status: Collapse the derived status into the persisted status.
    summarize_expense_settlement: Paid/pending breakdown for one expense.
    summarize_shares: Paid/pending breakdown over many expenses.
"""

from decimal import Decimal

from trip_settlement.utils import money_to_float

# Share payment states
SHARE_PENDING = "pending"
SHARE_PAID = "paid"

# Derived settlement statuses
SETTLEMENT_PENDING = "pending"
SETTLEMENT_PARTIAL = "partial"
SETTLEMENT_SETTLED = "settled"

# Persisted coarse statuses
STATUS_PENDING = "pending"
STATUS_SETTLED = "settled"


def _paid_total(shares) -> Decimal:
    return sum((s.amount for s in shares if s.state == SHARE_PAID), Decimal("0"))


def resolve_settlement_status(shares) -> str:
    """
    Derive the settlement status from a list of shares.

    Args:
        shares: Shares of one expense (objects with ``state`` and ``amount``).

    Returns:
        str: One of "pending", "partial", "settled".

    Notes:
        - When splits reconcile with the expense amount, "every share paid"
          is the same as "total paid == amount"
        - An expense with no shares cannot exist; an empty list is pending
    """
    if shares and all(s.state == SHARE_PAID for s in shares):
        return SETTLEMENT_SETTLED
    if _paid_total(shares) == 0:
        return SETTLEMENT_PENDING
    return SETTLEMENT_PARTIAL


def coarse_status(settlement_status: str) -> str:
    """Map the derived status onto the two-state persisted status."""
    if settlement_status == SETTLEMENT_SETTLED:
        return STATUS_SETTLED
    return STATUS_PENDING


def _share_entry(share) -> dict:
    return {
        "member_id": share.member_id,
        "amount": money_to_float(share.amount),
        "paid_at": share.paid_at,
    }


def summarize_expense_settlement(record) -> dict:
    """
    Build the paid/pending breakdown for one expense.

    Args:
        record: An ExpenseRecord.

    Returns:
        dict: Containing:
            - totalAmount: float (expense amount, expense currency)
            - totalPaid: float
            - totalPending: float
            - pending: list of {member_id, amount, paid_at}
            - paid: list of {member_id, amount, paid_at}
            - status: persisted coarse status
            - settlementStatus: derived three-state status
    """
    paid = [s for s in record.shares if s.state == SHARE_PAID]
    pending = [s for s in record.shares if s.state != SHARE_PAID]

    total_paid = sum((s.amount for s in paid), Decimal("0"))
    total_pending = sum((s.amount for s in pending), Decimal("0"))
    settlement_status = resolve_settlement_status(record.shares)

    return {
        "totalAmount": money_to_float(record.amount),
        "totalPaid": money_to_float(total_paid),
        "totalPending": money_to_float(total_pending),
        "pending": [_share_entry(s) for s in pending],
        "paid": [_share_entry(s) for s in paid],
        "status": coarse_status(settlement_status),
        "settlementStatus": settlement_status,
    }


def summarize_shares(records, converter, member_id=None) -> dict:
    """
    Partition every share in a scope into paid and pending lists.

    Amounts are converted to the reference currency before summing so
    mixed-currency trips produce meaningful totals.

    Args:
        records: ExpenseRecords of one trip (or of all trips of a member).
        converter: CurrencyConverter used for normalization.
        member_id: When given, only that member's shares are included.

    Returns:
        dict: Containing:
            - currency: reference currency code
            - totalPaid: float
            - totalPending: float
            - paid: list of share entries with expense context
            - pending: list of share entries with expense context
    """
    paid_entries = []
    pending_entries = []
    total_paid = Decimal("0")
    total_pending = Decimal("0")

    for record in records:
        for share in record.shares:
            if member_id is not None and share.member_id != member_id:
                continue

            reference_amount = converter.to_reference(share.amount, record.currency)
            entry = {
                "expense_id": record.expense_id,
                "trip_id": record.trip_id,
                "contributor_id": record.contributor_id,
                "member_id": share.member_id,
                "amount": money_to_float(share.amount),
                "currency": record.currency,
                "reference_amount": money_to_float(reference_amount),
                "paid_at": share.paid_at,
            }

            if share.state == SHARE_PAID:
                paid_entries.append(entry)
                total_paid += reference_amount
            else:
                pending_entries.append(entry)
                total_pending += reference_amount

    return {
        "currency": converter.reference,
        "totalPaid": money_to_float(total_paid),
        "totalPending": money_to_float(total_pending),
        "paid": paid_entries,
        "pending": pending_entries,
    }
