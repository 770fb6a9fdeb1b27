"""Balance aggregation over expense records."""

from decimal import Decimal

import pytest

from trip_settlement.balances import calculate_balances, calculate_member_balance, suggest_transfers
from trip_settlement.expenses import ExpenseRecord
from trip_settlement.splitter import split_expense

MEMBERS = ["alice", "bob", "carol", "dave"]


def record_for(expense_id, amount, contributor, participants, currency="USD", trip_id="trip_lisbon",
               split_type="even", manual_splits=None):
    return ExpenseRecord(
        expense_id=expense_id,
        trip_id=trip_id,
        contributor_id=contributor,
        amount=Decimal(amount),
        currency=currency,
        description="Shared cost",
        category="other",
        split_type=split_type,
        date="2026-03-01",
        shares=split_expense(Decimal(amount), list(participants), split_type, contributor,
                             manual_splits=manual_splits),
        created_at="2026-03-01T10:00:00+00:00"
    )


def by_user(balances):
    return {b["user"]: b for b in balances}


class TestTripBalances:

    def test_paid_owes_balance(self, converter):
        records = [
            record_for("e1", "90", "alice", ["alice", "bob", "carol"]),
            record_for("e2", "40", "bob", ["alice", "bob"]),
        ]

        balances = by_user(calculate_balances(records, MEMBERS, converter))

        assert balances["alice"] == {"user": "alice", "paid": 90.0, "owes": 50.0, "balance": 40.0}
        assert balances["bob"] == {"user": "bob", "paid": 40.0, "owes": 50.0, "balance": -10.0}
        assert balances["carol"] == {"user": "carol", "paid": 0.0, "owes": 30.0, "balance": -30.0}

    def test_inactive_member_gets_zero_entry(self, converter):
        records = [record_for("e1", "90", "alice", ["alice", "bob", "carol"])]

        balances = by_user(calculate_balances(records, MEMBERS, converter))

        assert balances["dave"] == {"user": "dave", "paid": 0.0, "owes": 0.0, "balance": 0.0}

    def test_member_order_preserved(self, converter):
        balances = calculate_balances([], ["carol", "alice"], converter)
        assert [b["user"] for b in balances] == ["carol", "alice"]

    def test_former_member_is_included(self, converter):
        records = [record_for("e1", "90", "erin", ["erin", "alice", "bob"])]

        balances = by_user(calculate_balances(records, ["alice", "bob"], converter))

        assert balances["erin"]["balance"] == 60.0
        assert sum(b["balance"] for b in balances.values()) == pytest.approx(0)

    def test_owes_counts_paid_and_pending_shares(self, converter):
        record = record_for("e1", "90", "alice", ["alice", "bob", "carol"])
        record.mark_share_paid("bob", "2026-03-02T00:00:00+00:00")

        balances = by_user(calculate_balances([record], MEMBERS, converter))

        assert balances["bob"]["owes"] == 30.0

    def test_mixed_currency_normalized(self, converter):
        records = [
            record_for("e1", "100", "alice", ["alice", "bob"]),
            record_for("e2", "50", "bob", ["alice", "bob"], currency="EUR"),
        ]

        balances = by_user(calculate_balances(records, ["alice", "bob"], converter))

        # alice: paid 100, owes 50 + 27 -> +23; bob: paid 54, owes 50 + 27 -> -23
        assert balances["alice"]["balance"] == 23.0
        assert balances["bob"]["balance"] == -23.0

    @pytest.mark.parametrize("amounts", [
        ["100", "33.33", "0.07"],
        ["12.34", "56.78", "90.12", "0.01"],
        ["1000", "999.99"],
    ])
    def test_zero_sum(self, converter, amounts):
        currencies = ["USD", "EUR", "GBP", "INR"]
        records = [
            record_for(f"e{i}", amount, MEMBERS[i % 4], MEMBERS[: 2 + i % 3], currency=currencies[i % 4])
            for i, amount in enumerate(amounts)
        ]
        records.append(record_for(
            "manual", "10", "dave", ["alice", "dave"], split_type="manual",
            manual_splits={"alice": "7.5", "dave": "2.5"}
        ))

        balances = calculate_balances(records, MEMBERS, converter)

        total = sum(Decimal(str(b["balance"])) for b in balances)
        assert total == 0

    def test_zero_sum_in_foreign_currency(self, converter):
        records = [record_for("e1", "100", "alice", ["alice", "bob", "carol"], currency="EUR")]

        balances = by_user(calculate_balances(records, MEMBERS, converter))

        # 33.34 / 33.33 / 33.33 EUR convert to 36.01 / 36.00 / 36.00; alice absorbs the cent
        assert balances["alice"] == {"user": "alice", "paid": 108.0, "owes": 36.0, "balance": 72.0}
        assert balances["bob"]["balance"] == -36.0
        assert balances["carol"]["balance"] == -36.0
        assert sum(Decimal(str(b["balance"])) for b in balances.values()) == 0

    def test_residue_goes_to_first_share_without_contributor(self, converter):
        records = [record_for("e1", "100", "dave", ["alice", "bob", "carol"], currency="EUR")]

        balances = by_user(calculate_balances(records, MEMBERS, converter))

        assert balances["alice"]["owes"] == 36.0
        assert balances["dave"]["balance"] == 108.0
        assert sum(Decimal(str(b["balance"])) for b in balances.values()) == 0


class TestMemberBalance:

    def test_across_trips(self, converter):
        records = [
            record_for("e1", "90", "alice", ["alice", "bob", "carol"]),
            record_for("e2", "20", "dave", ["alice", "dave"], trip_id="trip_porto"),
        ]

        result = calculate_member_balance(records, "alice", converter)

        assert result["paid"] == 90.0
        assert result["owes"] == 40.0
        assert result["balance"] == 50.0
        assert result["currency"] == "USD"
        assert result["trips"] == [
            {"trip_id": "trip_lisbon", "paid": 90.0, "owes": 30.0, "balance": 60.0},
            {"trip_id": "trip_porto", "paid": 0.0, "owes": 10.0, "balance": -10.0},
        ]

    def test_no_records(self, converter):
        result = calculate_member_balance([], "alice", converter)
        assert result["balance"] == 0.0
        assert result["trips"] == []


class TestSuggestTransfers:

    def entries(self, **balances):
        return [{"user": user, "paid": 0.0, "owes": 0.0, "balance": value} for user, value in balances.items()]

    def test_debtors_pay_creditor(self, converter):
        records = [record_for("e1", "90", "alice", ["alice", "bob", "carol"])]

        transfers = suggest_transfers(calculate_balances(records, MEMBERS, converter))

        assert transfers == [
            {"from_member": "bob", "to_member": "alice", "amount": 30.0},
            {"from_member": "carol", "to_member": "alice", "amount": 30.0},
        ]

    def test_largest_balances_matched_first(self):
        transfers = suggest_transfers(self.entries(alice=50.0, bob=-20.0, carol=-70.0, dave=40.0))

        assert transfers == [
            {"from_member": "carol", "to_member": "alice", "amount": 50.0},
            {"from_member": "carol", "to_member": "dave", "amount": 20.0},
            {"from_member": "bob", "to_member": "dave", "amount": 20.0},
        ]

    def test_transfers_clear_every_balance(self, converter):
        records = [
            record_for("e1", "100", "alice", ["alice", "bob", "carol"], currency="EUR"),
            record_for("e2", "37.10", "bob", MEMBERS, currency="GBP"),
            record_for("e3", "12.34", "dave", ["carol", "dave"]),
        ]
        balances = calculate_balances(records, MEMBERS, converter)

        remaining = {b["user"]: Decimal(str(b["balance"])) for b in balances}
        for transfer in suggest_transfers(balances):
            amount = Decimal(str(transfer["amount"]))
            remaining[transfer["from_member"]] += amount
            remaining[transfer["to_member"]] -= amount

        assert all(value == 0 for value in remaining.values())

    def test_settled_trip_needs_no_transfers(self):
        assert suggest_transfers(self.entries(alice=0.0, bob=0.0)) == []
