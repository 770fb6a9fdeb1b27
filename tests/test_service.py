"""Expense service orchestration."""

from decimal import Decimal

import pytest

from conftest import MEMBERS, TRIP_ID, FailingChatSink
from trip_settlement.chat import InMemoryChatSink
from trip_settlement.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from trip_settlement.firebase_store import InMemoryExpenseStore
from trip_settlement.service import ExpenseService


class UnlinkableStore(InMemoryExpenseStore):
    """Store that saves expenses but cannot attach chat messages."""

    def set_chat_message(self, expense_id, message_id):
        raise ConnectionError("store write rejected")


class UndeletableChatSink(InMemoryChatSink):

    def delete_message(self, trip_id, message_id):
        raise ConnectionError("chat service unreachable")


def create(service, **overrides):
    params = {
        "trip_id": TRIP_ID,
        "contributor_id": "alice",
        "amount": Decimal("90"),
        "description": "Dinner at the harbour",
    }
    params.update(overrides)
    return service.create_expense(**params)


class TestCreateExpense:

    def test_defaults_to_all_members(self, service, store):
        record, warnings = create(service)

        assert warnings == []
        assert record.participant_ids == MEMBERS
        assert record.currency == "USD"
        assert record.category == "other"
        assert record.split_type == "even"
        assert store.get(record.expense_id).participant_ids == MEMBERS

    def test_explicit_subset(self, service):
        record, _ = create(service, split_between=["alice", "bob"])
        assert record.participant_ids == ["alice", "bob"]
        assert record.share_for("bob").amount == Decimal("45")

    def test_manual_split_defaults_to_split_keys(self, service):
        record, _ = create(
            service, split_type="manual",
            manual_splits={"bob": Decimal("60"), "carol": Decimal("30")}
        )
        assert record.participant_ids == ["bob", "carol"]
        assert record.settlement_status == "pending"

    def test_lenient_manual_split(self, store, directory, chat, converter):
        service = ExpenseService(store, directory, chat, converter, strict_manual_splits=False)
        record, _ = create(
            service, split_type="manual",
            manual_splits={"alice": Decimal("10"), "bob": Decimal("10")}
        )
        assert sum(s.amount for s in record.shares) == Decimal("20")

    def test_contributor_must_be_member(self, service):
        with pytest.raises(ForbiddenError):
            create(service, contributor_id="mallory")

    def test_participants_must_be_members(self, service):
        with pytest.raises(InvalidInputError):
            create(service, split_between=["alice", "mallory"])

    def test_unknown_trip(self, service):
        with pytest.raises(NotFoundError):
            create(service, trip_id="trip_nowhere")

    @pytest.mark.parametrize("overrides", [
        {"amount": Decimal("0")},
        {"amount": Decimal("-3")},
        {"category": "yachts"},
        {"currency": "EURO"},
        {"description": "   "},
        {"date": "01/03/2026"},
        {"split_type": "ratio"},
    ])
    def test_invalid_input(self, service, overrides):
        with pytest.raises(InvalidInputError):
            create(service, **overrides)

    def test_chat_message_linked(self, service, chat, store):
        record, _ = create(service)

        assert record.chat_message_id in chat.messages
        assert store.get(record.expense_id).chat_message_id == record.chat_message_id
        assert "Dinner at the harbour" in chat.messages[record.chat_message_id]["text"]

    def test_chat_failure_keeps_expense(self, store, directory, converter):
        service = ExpenseService(store, directory, FailingChatSink(), converter)

        record, warnings = create(service)

        assert len(warnings) == 1
        assert "chat message failed" in warnings[0]
        stored = store.get(record.expense_id)
        assert stored.amount == Decimal("90")
        assert stored.chat_message_id is None


    def test_unlinked_chat_message_is_removed(self, directory, chat, converter):
        store = UnlinkableStore()
        service = ExpenseService(store, directory, chat, converter)

        record, warnings = create(service)

        assert len(warnings) == 1
        assert "could not be linked" in warnings[0]
        assert chat.messages == {}
        assert store.get(record.expense_id).chat_message_id is None

        assert service.delete_expense(record.expense_id, "alice") == []
        assert chat.messages == {}

    def test_unlinked_chat_message_cleanup_failure(self, directory, converter):
        chat = UndeletableChatSink()
        service = ExpenseService(UnlinkableStore(), directory, chat, converter)

        _, warnings = create(service)

        assert len(warnings) == 2
        assert "was not removed" in warnings[1]
        assert len(chat.messages) == 1


class TestPayments:

    def test_scenario_ninety_dollars(self, service):
        record, _ = create(service)

        service.mark_share_paid(record.expense_id, "bob")
        detail = service.get_settlement_detail(record.expense_id)["settlements"]
        assert detail["settlementStatus"] == "partial"
        assert (detail["totalPaid"], detail["totalPending"]) == (60.0, 30.0)

        updated = service.mark_share_paid(record.expense_id, "carol")
        detail = service.get_settlement_detail(record.expense_id)["settlements"]
        assert updated.status == "settled"
        assert detail["settlementStatus"] == "settled"
        assert (detail["totalPaid"], detail["totalPending"]) == (90.0, 0.0)

    def test_second_payment_conflicts(self, service):
        record, _ = create(service)
        first = service.mark_share_paid(record.expense_id, "bob").share_for("bob").paid_at

        with pytest.raises(ConflictError):
            service.mark_share_paid(record.expense_id, "bob")
        assert service.get_expense(record.expense_id).share_for("bob").paid_at == first

    def test_member_without_share(self, service):
        record, _ = create(service, split_between=["alice", "bob"])
        with pytest.raises(NotFoundError):
            service.mark_share_paid(record.expense_id, "carol")

    def test_unknown_expense(self, service):
        with pytest.raises(NotFoundError):
            service.mark_share_paid("exp_missing", "bob")


class TestQueries:

    def test_trip_listing_and_summary(self, service):
        create(service, amount=Decimal("100"), date="2026-03-01")
        create(service, amount=Decimal("50"), currency="EUR", contributor_id="bob", date="2026-03-02")

        result = service.list_trip_expenses(TRIP_ID, page=1, limit=1)

        assert result["total"] == 2
        assert len(result["expenses"]) == 1
        assert result["expenses"][0].currency == "EUR"
        assert result["summary"]["totalAmountUSD"] == 154.0
        assert result["summary"]["currencyBreakdown"]["EUR"] == {"amount": 50.0, "usdEquivalent": 54.0}

    def test_trip_balances_zero_sum(self, service):
        create(service, amount=Decimal("100"))
        create(service, amount=Decimal("50"), currency="EUR", contributor_id="bob")
        create(service, amount=Decimal("10"), contributor_id="carol", split_between=["carol", "alice"])

        result = service.get_trip_balances(TRIP_ID)

        assert result["totalExpenses"] == 3
        assert result["totalAmount"] == 164.0
        assert [b["user"] for b in result["balances"]] == MEMBERS
        assert sum(b["balance"] for b in result["balances"]) == pytest.approx(0, abs=1e-9)

    def test_member_balances_across_trips(self, service):
        create(service, amount=Decimal("90"))
        create(service, trip_id="trip_porto", contributor_id="dave", amount=Decimal("20"))

        result = service.get_member_balances("alice")

        assert result["paid"] == 90.0
        assert result["owes"] == 40.0
        assert [t["trip_id"] for t in result["trips"]] == ["trip_lisbon", "trip_porto"]

    def test_trip_settlements_for_member(self, service):
        record, _ = create(service)
        service.mark_share_paid(record.expense_id, "bob")

        summary = service.get_trip_settlements(TRIP_ID, member_id="bob")

        assert summary["totalPaid"] == 30.0
        assert summary["totalPending"] == 0.0
        assert summary["member_id"] == "bob"


class TestUpdateAndDelete:

    def test_contributor_can_edit(self, service, store):
        record, _ = create(service)
        service.update_expense(record.expense_id, "alice", {"description": "Seafood dinner", "tags": ["food"]})

        stored = store.get(record.expense_id)
        assert stored.description == "Seafood dinner"
        assert stored.tags == ["food"]

    def test_others_cannot_edit(self, service):
        record, _ = create(service)
        with pytest.raises(ForbiddenError):
            service.update_expense(record.expense_id, "bob", {"description": "Mine now"})

    def test_delete_removes_chat_message(self, service, chat, store):
        record, _ = create(service)

        warnings = service.delete_expense(record.expense_id, "alice")

        assert warnings == []
        assert record.chat_message_id not in chat.messages
        with pytest.raises(NotFoundError):
            store.get(record.expense_id)

    def test_others_cannot_delete(self, service, store):
        record, _ = create(service)
        with pytest.raises(ForbiddenError):
            service.delete_expense(record.expense_id, "bob")
        assert store.get(record.expense_id)

    def test_delete_with_failing_chat_cleanup(self, service, store):
        record, _ = create(service)
        service.chat = FailingChatSink()

        warnings = service.delete_expense(record.expense_id, "alice")

        assert len(warnings) == 1
        with pytest.raises(NotFoundError):
            store.get(record.expense_id)
