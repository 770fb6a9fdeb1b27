"""
Service Module

Expense operations of the settlement engine, wired to a store, a trip
directory, a chat sink and a currency converter.

Operations:
    create_expense          - split, persist, then announce in chat
    list_trip_expenses      - filtered page plus summary
    get_expense             - one record
    mark_share_paid         - atomic pending -> paid transition
    get_trip_balances       - per-member balances and suggested transfers
    get_member_balances     - one member's balance over all their trips
    get_settlement_detail   - paid/pending breakdown of one expense
    get_trip_settlements    - paid/pending partition of a trip
    update_expense          - contributor-only content edit
    delete_expense          - contributor-only delete with chat cleanup

Partial failures:
    Creating an expense and posting its chat message are separate steps.
    The expense is stored first; a chat failure is logged and returned as a
    warning and never removes the expense.
"""

from decimal import Decimal
from typing import Optional

from trip_settlement.analytics import filter_expenses, generate_summary, paginate
from trip_settlement.balances import (
    calculate_balances,
    calculate_member_balance,
    suggest_transfers,
    total_reference_amount,
)
from trip_settlement.errors import ForbiddenError, InvalidInputError
from trip_settlement.expenses import (
    ExpenseRecord,
    validate_amount,
    validate_category,
    validate_currency,
    validate_description,
    validate_notes,
    validate_split_type,
    validate_tags,
)
from trip_settlement.logging_config import LogContext, get_logger
from trip_settlement.settlement import summarize_expense_settlement, summarize_shares
from trip_settlement.splitter import DEFAULT_TOLERANCE, split_expense
from trip_settlement.utils import (
    generate_id,
    get_timestamp,
    money_to_float,
    today,
    validate_date,
    validate_non_empty_string,
)

logger = get_logger("service")


class ExpenseService:
    """
    Expense splitting and settlement operations.

    Args:
        store: Expense store (FirestoreExpenseStore or InMemoryExpenseStore).
        directory: Trip directory supplying member lists.
        chat: Chat sink for system messages.
        converter: CurrencyConverter over the process rate table.
        strict_manual_splits: Reject manual splits that do not add up.
        manual_split_tolerance: Accepted drift for manual totals.
    """

    def __init__(
        self,
        store,
        directory,
        chat,
        converter,
        strict_manual_splits: bool = True,
        manual_split_tolerance: Decimal = DEFAULT_TOLERANCE
    ):
        self.store = store
        self.directory = directory
        self.chat = chat
        self.converter = converter
        self.strict_manual_splits = strict_manual_splits
        self.manual_split_tolerance = manual_split_tolerance

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_expense(
        self,
        trip_id: str,
        contributor_id: str,
        amount,
        description: str,
        currency: str = "USD",
        category: str = "other",
        split_type: str = "even",
        split_between: Optional[list[str]] = None,
        manual_splits: Optional[dict] = None,
        date: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[list[str]] = None
    ) -> tuple[ExpenseRecord, list[str]]:
        """
        Create an expense and split it among participants.

        Args:
            trip_id: Owning trip.
            contributor_id: Member who paid (the acting member).
            amount: Expense total (must be > 0).
            description: Short description.
            currency: Currency code of amount.
            category: Expense category.
            split_type: "even" or "manual".
            split_between: Participants; defaults to every trip member, or
                to the manual_splits keys for a manual split.
            manual_splits: member_id -> amount (manual mode only).
            date: YYYY-MM-DD, defaults to today.
            notes: Optional longer note.
            tags: Optional list of tags.

        Returns:
            tuple: (the stored ExpenseRecord, list of warning strings)

        Raises:
            NotFoundError: If the trip does not exist.
            ForbiddenError: If the contributor is not a trip member.
            InvalidInputError: If validation or splitting fails.
        """
        trip_id = validate_non_empty_string(trip_id, "trip_id")
        contributor_id = validate_non_empty_string(contributor_id, "contributor_id")
        amount = validate_amount(amount)
        currency = validate_currency(currency)
        description = validate_description(description)
        category = validate_category(category)
        split_type = validate_split_type(split_type)
        date = validate_date(date, "date") if date else today()
        notes = validate_notes(notes)
        tags = validate_tags(tags)

        members = self.directory.get_members(trip_id)
        if contributor_id not in members:
            raise ForbiddenError(f"member '{contributor_id}' is not part of trip {trip_id}")

        participants = self._resolve_participants(trip_id, members, split_type, split_between, manual_splits)

        created_at = get_timestamp()
        shares = split_expense(
            amount=amount,
            participants=participants,
            split_type=split_type,
            contributor_id=contributor_id,
            manual_splits=manual_splits,
            strict=self.strict_manual_splits,
            tolerance=self.manual_split_tolerance,
            paid_at=created_at
        )

        record = ExpenseRecord(
            expense_id=generate_id("exp"),
            trip_id=trip_id,
            contributor_id=contributor_id,
            amount=amount,
            currency=currency,
            description=description,
            category=category,
            split_type=split_type,
            date=date,
            shares=shares,
            notes=notes,
            tags=tags,
            created_at=created_at
        )

        # Step 1: the financial record is stored on its own
        self.store.add(record)

        with LogContext.bind(trip_id=trip_id, expense_id=record.expense_id):
            logger.info(
                "Expense created",
                extra={
                    "amount": str(amount),
                    "currency": currency,
                    "split_type": split_type,
                    "participants": len(participants),
                },
            )
            # Step 2: best-effort chat message
            warnings = self._announce(record)

        return record, warnings

    def _resolve_participants(
        self,
        trip_id: str,
        members: list[str],
        split_type: str,
        split_between: Optional[list[str]],
        manual_splits: Optional[dict]
    ) -> list[str]:
        if split_between:
            participants = list(split_between)
        elif split_type == "manual" and isinstance(manual_splits, dict) and manual_splits:
            participants = list(manual_splits)
        else:
            participants = list(members)

        outsiders = [m for m in participants if m not in members]
        if outsiders:
            raise InvalidInputError(f"members {outsiders} are not part of trip {trip_id}")
        return participants

    def _announce(self, record: ExpenseRecord) -> list[str]:
        """
        Post the chat message and link it to the record; failures become
        warnings.

        A message that cannot be linked to the record is removed again.
        """
        try:
            message_id = self.chat.post_expense_message(record)
        except Exception as e:
            logger.warning("Chat message for expense failed", exc_info=True)
            return [f"expense saved but chat message failed: {e}"]

        try:
            self.store.set_chat_message(record.expense_id, message_id)
        except Exception as e:
            logger.warning("Linking chat message to expense failed", exc_info=True)
            warnings = [f"expense saved but chat message could not be linked: {e}"]
            try:
                self.chat.delete_message(record.trip_id, message_id)
            except Exception as cleanup_error:
                logger.warning("Unlinked chat message cleanup failed", exc_info=True)
                warnings.append(f"unlinked chat message {message_id} was not removed: {cleanup_error}")
            return warnings

        record.chat_message_id = message_id
        return []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_expense(self, expense_id: str) -> ExpenseRecord:
        return self.store.get(expense_id)

    def get_trip_members(self, trip_id: str) -> list[str]:
        return self.directory.get_members(trip_id)

    def list_trip_expenses(
        self,
        trip_id: str,
        page: int = 1,
        limit: int = 20,
        filters: Optional[dict] = None
    ) -> dict:
        """
        List a trip's expenses with a summary.

        Returns:
            dict: Containing:
                - expenses: list of records (one page, newest first)
                - total: number of records matching the filters
                - page, limit: echo of the pagination input
                - summary: generate_summary() over all matching records
        """
        self.directory.get_members(trip_id)
        records = filter_expenses(self.store.list_for_trip(trip_id), filters)

        return {
            "expenses": paginate(records, page, limit),
            "total": len(records),
            "page": page,
            "limit": limit,
            "summary": generate_summary(records, self.converter)
        }

    def get_trip_balances(self, trip_id: str) -> dict:
        """
        Per-member balances of a trip, in the reference currency.

        Returns:
            dict: balances (list of {user, paid, owes, balance}),
                  transfers (suggested {from_member, to_member, amount}),
                  totalExpenses, totalAmount, currency.
        """
        members = self.directory.get_members(trip_id)
        records = self.store.list_for_trip(trip_id)
        balances = calculate_balances(records, members, self.converter)

        return {
            "balances": balances,
            "transfers": suggest_transfers(balances),
            "totalExpenses": len(records),
            "totalAmount": money_to_float(total_reference_amount(records, self.converter)),
            "currency": self.converter.reference
        }

    def get_member_balances(self, member_id: str) -> dict:
        """One member's balance over every trip they belong to."""
        trip_ids = self.directory.get_member_trips(member_id)
        records = self.store.list_for_trips(trip_ids)
        return calculate_member_balance(records, member_id, self.converter)

    def get_settlement_detail(self, expense_id: str) -> dict:
        record = self.store.get(expense_id)
        return {
            "expense": record,
            "settlements": summarize_expense_settlement(record)
        }

    def get_trip_settlements(self, trip_id: str, member_id: Optional[str] = None) -> dict:
        """Paid/pending partition of all shares of a trip (or one member)."""
        self.directory.get_members(trip_id)
        records = self.store.list_for_trip(trip_id)
        summary = summarize_shares(records, self.converter, member_id=member_id)
        summary["trip_id"] = trip_id
        summary["member_id"] = member_id
        return summary

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mark_share_paid(self, expense_id: str, member_id: str) -> ExpenseRecord:
        """
        Mark a member's share of an expense as paid.

        Raises:
            NotFoundError: If the expense or the share does not exist.
            ConflictError: If the share is already paid.
        """
        paid_at = get_timestamp()
        with LogContext.bind(expense_id=expense_id):
            record = self.store.mark_share_paid(expense_id, member_id, paid_at)
            logger.info(
                "Share marked paid",
                extra={"member_id": member_id, "settlement_status": record.settlement_status},
            )
        return record

    def update_expense(self, expense_id: str, actor_id: str, changes: dict) -> ExpenseRecord:
        """
        Edit content fields of an expense.

        Raises:
            NotFoundError: If the expense does not exist.
            ForbiddenError: If the actor is not the contributor.
            InvalidInputError: If a field is not editable or invalid.
        """
        record = self.store.get(expense_id)
        self._require_contributor(record, actor_id, "edit")

        record.apply_update(changes, get_timestamp())
        self.store.update_content(record)

        with LogContext.bind(trip_id=record.trip_id, expense_id=expense_id):
            logger.info("Expense updated", extra={"fields": sorted(changes)})
        return record

    def delete_expense(self, expense_id: str, actor_id: str) -> list[str]:
        """
        Delete an expense and its chat message.

        Returns:
            list[str]: Warnings (chat cleanup failures).

        Raises:
            NotFoundError: If the expense does not exist.
            ForbiddenError: If the actor is not the contributor.
        """
        record = self.store.get(expense_id)
        self._require_contributor(record, actor_id, "delete")

        self.store.delete(expense_id)

        warnings = []
        with LogContext.bind(trip_id=record.trip_id, expense_id=expense_id):
            logger.info("Expense deleted")
            if record.chat_message_id:
                try:
                    self.chat.delete_message(record.trip_id, record.chat_message_id)
                except Exception as e:
                    logger.warning("Chat message cleanup failed", exc_info=True)
                    warnings.append(f"expense deleted but chat message cleanup failed: {e}")

        return warnings

    @staticmethod
    def _require_contributor(record: ExpenseRecord, actor_id: str, action: str) -> None:
        if record.contributor_id != actor_id:
            raise ForbiddenError(f"only the contributor can {action} expense {record.expense_id}")
