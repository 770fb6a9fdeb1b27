"""
Splitter Module

This module computes the per-member obligations of a single expense.

Features:
    - Even splitting among participants
    - Manual splitting with optional total validation
    - Decimal-safe rounding with explicit remainder policy
    - Contributor's own share recorded as already paid

Rounding policy (even split):
    Each share is amount / n rounded to 2 decimal places (ROUND_HALF_UP).
    The difference between amount and the sum of rounded shares is added
    to the contributor's share, since the contributor already holds the
    full amount. If the contributor is not a participant, the first
    participant absorbs it. Shares always add up to amount exactly.

Functions:
    split_expense: Produce the shares list for one expense.
    validate_manual_total: Check manual amounts against the expense total.
"""

from decimal import Decimal
from typing import Optional

from trip_settlement.errors import InvalidInputError
from trip_settlement.expenses import SPLIT_EVEN, Share, validate_split_type
from trip_settlement.settlement import SHARE_PAID, SHARE_PENDING
from trip_settlement.utils import get_timestamp, round_money, to_decimal

DEFAULT_TOLERANCE = Decimal("0.01")


def _validate_participants(participants: list[str]) -> None:
    if not isinstance(participants, list) or len(participants) == 0:
        raise InvalidInputError("participants must be a non-empty list of member IDs")
    if len(set(participants)) != len(participants):
        raise InvalidInputError("participants must not contain duplicates")


def _even_amounts(amount: Decimal, participants: list[str], contributor_id: str) -> dict:
    """Per-member amounts for an even split, remainder included."""
    share = round_money(amount / Decimal(len(participants)))
    amounts = {member_id: share for member_id in participants}

    absorber = contributor_id if contributor_id in amounts else participants[0]
    remainder = amount - share * len(participants)
    amounts[absorber] += remainder

    if amounts[absorber] < 0:
        # Rounded-up sub-cent shares overshoot by more than one share
        return _allocate_cents(amount, participants, absorber)

    return amounts


def _allocate_cents(amount: Decimal, participants: list[str], absorber: str) -> dict:
    """Whole-cent allocation: floor shares, leftover cents absorber-first."""
    cents = int(amount * 100)
    base, leftover = divmod(cents, len(participants))
    order = [absorber] + [m for m in participants if m != absorber]

    amounts = {member_id: Decimal(base) / 100 for member_id in participants}
    for member_id in order[:leftover]:
        amounts[member_id] += Decimal("0.01")
    return amounts


def validate_manual_total(
    amount: Decimal,
    manual_splits: dict,
    tolerance: Decimal = DEFAULT_TOLERANCE
) -> None:
    """
    Check that manual split amounts add up to the expense amount.

    Args:
        amount: Expense total.
        manual_splits: Dict of member_id -> amount.
        tolerance: Largest accepted difference.

    Raises:
        InvalidInputError: If the total differs by more than tolerance.
    """
    total = sum((to_decimal(v, "manual split") for v in manual_splits.values()), Decimal("0"))
    if abs(total - amount) > tolerance:
        raise InvalidInputError(
            f"manual splits add up to {total}, expected {amount} (tolerance {tolerance})"
        )


def _manual_amounts(
    amount: Decimal,
    participants: list[str],
    manual_splits: Optional[dict],
    strict: bool,
    tolerance: Decimal
) -> dict:
    if not isinstance(manual_splits, dict) or not manual_splits:
        raise InvalidInputError("manual split requires an amount for each participant")

    if set(manual_splits) != set(participants):
        missing = sorted(set(participants) - set(manual_splits))
        extra = sorted(set(manual_splits) - set(participants))
        raise InvalidInputError(
            f"manual splits must cover exactly the participants (missing: {missing}, unexpected: {extra})"
        )

    amounts = {}
    for member_id in participants:
        value = to_decimal(manual_splits[member_id], f"manual split for {member_id}")
        if value < 0:
            raise InvalidInputError(f"manual split for {member_id} must not be negative, got: {value}")
        amounts[member_id] = round_money(value)

    if strict:
        validate_manual_total(amount, amounts, tolerance)

    return amounts


def split_expense(
    amount,
    participants: list[str],
    split_type: str,
    contributor_id: str,
    manual_splits: Optional[dict] = None,
    strict: bool = True,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    paid_at: Optional[str] = None
) -> list[Share]:
    """
    Divide an expense into per-member shares.

    Args:
        amount: Expense total (must be > 0).
        participants: Ordered member IDs sharing the cost.
        split_type: "even" or "manual".
        contributor_id: Member who paid the expense.
        manual_splits: Dict of member_id -> amount (manual mode only).
        strict: Reject manual splits that do not add up to amount.
        tolerance: Accepted manual total drift in strict mode.
        paid_at: Timestamp recorded on the contributor's share.

    Returns:
        list[Share]: One share per participant, in participant order.

    Raises:
        InvalidInputError: On non-positive amount, empty or duplicate
            participants, unknown split type, or malformed manual splits.

    Notes:
        - The contributor's share (if any) starts as paid
        - All other shares start as pending
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise InvalidInputError(f"amount must be a positive number, got: {amount}")
    _validate_participants(participants)
    validate_split_type(split_type)

    if split_type == SPLIT_EVEN:
        amounts = _even_amounts(amount, participants, contributor_id)
    else:
        amounts = _manual_amounts(amount, participants, manual_splits, strict, tolerance)

    paid_at = paid_at or get_timestamp()
    shares = []
    for member_id in participants:
        if member_id == contributor_id:
            shares.append(Share(member_id, amounts[member_id], SHARE_PAID, paid_at))
        else:
            shares.append(Share(member_id, amounts[member_id], SHARE_PENDING))

    return shares
