"""
Expenses Module

This module defines the persisted expense record and its lifecycle rules.

Features:
    - Expense and share data shapes with storage (de)serialization
    - Field validation for new expenses and content edits
    - One-way share transition pending -> paid
    - Cached settlement status recomputed on every share mutation

Data Model:
    Expense stored at: expenses/{expense_id}
    Fields:
        - expense_id: string (exp_xxxxxxxxxxxx)
        - trip_id: string (owning trip)
        - contributor_id: string (member who paid)
        - amount: float (must be > 0)
        - currency: string (3-letter code)
        - description: string
        - category: string (transport, accommodation, food, activities, shopping, other)
        - split_type: string (even, manual)
        - date: string (YYYY-MM-DD)
        - notes: string or None
        - tags: list of strings
        - shares: list of {member_id, amount, state, paid_at}
        - status: string (pending, settled)
        - settlement_status: string (pending, partial, settled)
        - chat_message_id: string or None
        - created_at / updated_at: ISO timestamps

Classes:
    Share: One participant's portion of an expense.
    ExpenseRecord: One contributed cost, its shares and payment state.
"""

from decimal import Decimal
from typing import Optional

from trip_settlement.errors import ConflictError, InvalidInputError, NotFoundError
from trip_settlement.settlement import (
    SHARE_PAID,
    SHARE_PENDING,
    coarse_status,
    resolve_settlement_status,
)
from trip_settlement.utils import (
    money_to_float,
    to_decimal,
    validate_date,
    validate_non_empty_string,
)

# Valid expense categories
VALID_CATEGORIES = {"transport", "accommodation", "food", "activities", "shopping", "other"}

SPLIT_EVEN = "even"
SPLIT_MANUAL = "manual"
VALID_SPLIT_TYPES = {SPLIT_EVEN, SPLIT_MANUAL}

MAX_AMOUNT = Decimal("1000000000")
MAX_DESCRIPTION_LENGTH = 200
MAX_NOTES_LENGTH = 500

# Fields the contributor may change after creation
EDITABLE_FIELDS = {"description", "category", "date", "notes", "tags"}


class Share:
    """
    One participant's portion of an expense.

    Attributes:
        member_id (str): Trip member who owes this share.
        amount (Decimal): Obligation in the expense currency.
        state (str): "pending" or "paid".
        paid_at (str | None): ISO timestamp set once when paid.
    """

    def __init__(
        self,
        member_id: str,
        amount: Decimal,
        state: str = SHARE_PENDING,
        paid_at: Optional[str] = None
    ):
        self.member_id = member_id
        self.amount = amount
        self.state = state
        self.paid_at = paid_at

    @property
    def is_paid(self) -> bool:
        return self.state == SHARE_PAID

    def to_dict(self) -> dict:
        """Convert share to dictionary for Firestore storage."""
        return {
            "member_id": self.member_id,
            "amount": money_to_float(self.amount),
            "state": self.state,
            "paid_at": self.paid_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Share":
        """Create a Share instance from a dictionary."""
        return cls(
            member_id=data.get("member_id"),
            amount=to_decimal(data.get("amount", 0)),
            state=data.get("state", SHARE_PENDING),
            paid_at=data.get("paid_at")
        )

    def __repr__(self) -> str:
        return f"Share(member='{self.member_id}', amount={self.amount}, state='{self.state}')"


class ExpenseRecord:
    """
    Represents a single shared cost within a trip.

    Attributes:
        expense_id (str): Unique identifier.
        trip_id (str): Owning trip.
        contributor_id (str): Member who paid the full amount up front.
        amount (Decimal): Total cost (> 0).
        currency (str): Currency code of amount and shares.
        description (str): Short description.
        category (str): One of VALID_CATEGORIES.
        split_type (str): "even" or "manual".
        date (str): Date of the expense (YYYY-MM-DD).
        shares (list[Share]): Per-member obligations, one per participant.
        notes (str | None): Optional longer note.
        tags (list[str]): Free-form tags.
        chat_message_id (str | None): Linked system chat message.
        status (str): Cached coarse status.
        settlement_status (str): Cached derived status.
    """

    def __init__(
        self,
        expense_id: str,
        trip_id: str,
        contributor_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        category: str,
        split_type: str,
        date: str,
        shares: list[Share],
        notes: Optional[str] = None,
        tags: Optional[list[str]] = None,
        chat_message_id: Optional[str] = None,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None
    ):
        self.expense_id = expense_id
        self.trip_id = trip_id
        self.contributor_id = contributor_id
        self.amount = amount
        self.currency = currency
        self.description = description
        self.category = category
        self.split_type = split_type
        self.date = date
        self.shares = shares
        self.notes = notes
        self.tags = tags or []
        self.chat_message_id = chat_message_id
        self.created_at = created_at
        self.updated_at = updated_at or created_at
        self.refresh_status()

    @property
    def participant_ids(self) -> list[str]:
        return [s.member_id for s in self.shares]

    def share_for(self, member_id: str) -> Share:
        """
        Find the share belonging to a member.

        Raises:
            NotFoundError: If the member has no share on this expense.
        """
        for share in self.shares:
            if share.member_id == member_id:
                return share
        raise NotFoundError(f"member '{member_id}' has no share on expense {self.expense_id}")

    def refresh_status(self) -> None:
        """Recompute the cached statuses from the share states."""
        self.settlement_status = resolve_settlement_status(self.shares)
        self.status = coarse_status(self.settlement_status)

    def mark_share_paid(self, member_id: str, paid_at: str) -> Share:
        """
        Move one share from pending to paid.

        Callers that share the record between requests must run this inside
        an atomic read-check-write (see firebase_store).

        Args:
            member_id: Member whose share is paid.
            paid_at: ISO timestamp of the payment.

        Returns:
            Share: The updated share.

        Raises:
            NotFoundError: If the member has no share.
            ConflictError: If the share is already paid.
        """
        share = self.share_for(member_id)
        if share.is_paid:
            raise ConflictError(f"share of member '{member_id}' on expense {self.expense_id} is already paid")

        share.state = SHARE_PAID
        share.paid_at = paid_at
        self.updated_at = paid_at
        self.refresh_status()
        return share

    def apply_update(self, changes: dict, updated_at: str) -> None:
        """
        Apply a content edit.

        Only description, category, date, notes and tags may change; amount,
        currency and the split are fixed once shares exist.

        Raises:
            InvalidInputError: If a field is not editable or invalid.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"fields cannot be edited: {sorted(unknown)}")

        if "description" in changes:
            self.description = validate_description(changes["description"])
        if "category" in changes:
            self.category = validate_category(changes["category"])
        if "date" in changes:
            self.date = validate_date(changes["date"], "date")
        if "notes" in changes:
            self.notes = validate_notes(changes["notes"])
        if "tags" in changes:
            self.tags = validate_tags(changes["tags"])

        self.updated_at = updated_at

    def to_dict(self) -> dict:
        """Convert expense to dictionary for Firestore storage."""
        return {
            "expense_id": self.expense_id,
            "trip_id": self.trip_id,
            "contributor_id": self.contributor_id,
            "amount": money_to_float(self.amount),
            "currency": self.currency,
            "description": self.description,
            "category": self.category,
            "split_type": self.split_type,
            "date": self.date,
            "shares": [s.to_dict() for s in self.shares],
            "notes": self.notes,
            "tags": list(self.tags),
            "chat_message_id": self.chat_message_id,
            "status": self.status,
            "settlement_status": self.settlement_status,
            "created_at": self.created_at,
            "updated_at": self.updated_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExpenseRecord":
        """Create an ExpenseRecord instance from a dictionary."""
        # Cached statuses are recomputed from shares, never trusted
        return cls(
            expense_id=data.get("expense_id"),
            trip_id=data.get("trip_id"),
            contributor_id=data.get("contributor_id"),
            amount=to_decimal(data.get("amount", 0)),
            currency=data.get("currency"),
            description=data.get("description"),
            category=data.get("category"),
            split_type=data.get("split_type"),
            date=data.get("date"),
            shares=[Share.from_dict(s) for s in data.get("shares", [])],
            notes=data.get("notes"),
            tags=data.get("tags", []),
            chat_message_id=data.get("chat_message_id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at")
        )

    def __repr__(self) -> str:
        """Return string representation of expense."""
        return (
            f"ExpenseRecord(id='{self.expense_id}', trip='{self.trip_id}', "
            f"contributor='{self.contributor_id}', amount={self.amount} {self.currency}, "
            f"status='{self.settlement_status}')"
        )


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def validate_amount(amount) -> Decimal:
    """
    Validate an expense amount.

    Returns:
        Decimal: The amount.

    Raises:
        InvalidInputError: If the amount is not a positive number, exceeds
            MAX_AMOUNT or has more than 2 decimal places.
    """
    value = to_decimal(amount, "amount")
    if value <= 0:
        raise InvalidInputError(f"amount must be a positive number, got: {amount}")
    if value > MAX_AMOUNT:
        raise InvalidInputError(f"amount must not exceed {MAX_AMOUNT}, got: {amount}")
    if value != value.quantize(Decimal("0.01")):
        raise InvalidInputError(f"amount must have at most 2 decimal places, got: {amount}")
    return value


def validate_currency(currency: str) -> str:
    code = validate_non_empty_string(currency, "currency").upper()
    if len(code) > 3 or not code.isalpha():
        raise InvalidInputError(f"currency must be a code of up to 3 letters, got: {currency}")
    return code


def validate_description(description: str) -> str:
    text = validate_non_empty_string(description, "description")
    if len(text) > MAX_DESCRIPTION_LENGTH:
        raise InvalidInputError(f"description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return text


def validate_category(category: str) -> str:
    if category not in VALID_CATEGORIES:
        raise InvalidInputError(f"category must be one of {sorted(VALID_CATEGORIES)}, got: {category}")
    return category


def validate_split_type(split_type: str) -> str:
    if split_type not in VALID_SPLIT_TYPES:
        raise InvalidInputError(f"split_type must be one of {sorted(VALID_SPLIT_TYPES)}, got: {split_type}")
    return split_type


def validate_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise InvalidInputError("notes must be a string")
    notes = notes.strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise InvalidInputError(f"notes must be at most {MAX_NOTES_LENGTH} characters")
    return notes or None


def validate_tags(tags) -> list[str]:
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise InvalidInputError("tags must be a list of strings")
    # Drop blanks and duplicates, keep order
    cleaned = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned
