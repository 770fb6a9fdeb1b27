"""
Firebase Store Module

This module persists expense records for the settlement engine.

Features:
    - Save, load, list and delete expense records
    - Atomic pending -> paid share transition (Firestore transaction)
    - Content edits that never overwrite share state
    - In-memory store with the same contract for local runs and tests

Firestore Structure:
    expenses/{expense_id}
        - see expenses.py for the document fields
        - trip_id is indexed for per-trip queries

Concurrency:
    mark_share_paid() reads the record, checks the share is still pending
    and writes it back as one atomic unit. Firestore retries the
    transaction on contention, so two concurrent calls for the same share
    cannot both succeed.

Classes:
    FirestoreExpenseStore: Firestore-backed store.
    InMemoryExpenseStore: Process-local store guarded by a lock.
"""

import copy
import threading
from typing import Optional

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from trip_settlement.config.firebase_config import get_db
from trip_settlement.errors import NotFoundError
from trip_settlement.expenses import EDITABLE_FIELDS, ExpenseRecord
from trip_settlement.logging_config import get_logger

logger = get_logger("store")

EXPENSES_COLLECTION = "expenses"


def _content_fields(record: ExpenseRecord) -> dict:
    """Document fields written by a content edit."""
    data = record.to_dict()
    fields = {name: data[name] for name in EDITABLE_FIELDS}
    fields["updated_at"] = data["updated_at"]
    return fields


def _payment_fields(record: ExpenseRecord) -> dict:
    """Document fields written by a share transition."""
    data = record.to_dict()
    return {
        "shares": data["shares"],
        "status": data["status"],
        "settlement_status": data["settlement_status"],
        "updated_at": data["updated_at"],
    }


class FirestoreExpenseStore:
    """
    Expense store backed by Cloud Firestore.

    Args:
        db: Optional Firestore client; defaults to get_db() on first use.
    """

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            self._db = get_db()
        return self._db

    def _doc(self, expense_id: str):
        return self.db.collection(EXPENSES_COLLECTION).document(expense_id)

    def add(self, record: ExpenseRecord) -> ExpenseRecord:
        """Store a new record at expenses/{expense_id}."""
        self._doc(record.expense_id).set(record.to_dict())
        return record

    def get(self, expense_id: str) -> ExpenseRecord:
        """
        Load one record.

        Raises:
            NotFoundError: If no record exists.
        """
        snapshot = self._doc(expense_id).get()
        if not snapshot.exists:
            raise NotFoundError(f"expense {expense_id} not found")
        return ExpenseRecord.from_dict(snapshot.to_dict())

    def list_for_trip(self, trip_id: str) -> list[ExpenseRecord]:
        """All records of a trip from a single query snapshot."""
        docs = self.db.collection(EXPENSES_COLLECTION) \
                      .where(filter=FieldFilter("trip_id", "==", trip_id)).stream()
        return [ExpenseRecord.from_dict(doc.to_dict()) for doc in docs]

    def list_for_trips(self, trip_ids: list[str]) -> list[ExpenseRecord]:
        records = []
        for trip_id in trip_ids:
            records.extend(self.list_for_trip(trip_id))
        return records

    def update_content(self, record: ExpenseRecord) -> ExpenseRecord:
        """Write edited content fields only; shares are left untouched."""
        self._doc(record.expense_id).update(_content_fields(record))
        return record

    def set_chat_message(self, expense_id: str, message_id: Optional[str]) -> None:
        self._doc(expense_id).update({"chat_message_id": message_id})

    def delete(self, expense_id: str) -> None:
        self._doc(expense_id).delete()

    def mark_share_paid(self, expense_id: str, member_id: str, paid_at: str) -> ExpenseRecord:
        """
        Atomically mark one share paid.

        Args:
            expense_id: The expense.
            member_id: Member whose share is paid.
            paid_at: ISO timestamp of the payment.

        Returns:
            ExpenseRecord: The record after the transition.

        Raises:
            NotFoundError: If the expense or the member's share is missing.
            ConflictError: If the share was already paid at write time.
        """
        doc_ref = self._doc(expense_id)

        @firestore.transactional
        def _transition(transaction):
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"expense {expense_id} not found")

            record = ExpenseRecord.from_dict(snapshot.to_dict())
            record.mark_share_paid(member_id, paid_at)
            transaction.update(doc_ref, _payment_fields(record))
            return record

        return _transition(self.db.transaction())


class InMemoryExpenseStore:
    """
    Process-local expense store.

    Records are kept in their serialized form so callers never share
    mutable state with the store, matching document semantics.
    """

    def __init__(self):
        self._docs: dict[str, dict] = {}
        self._lock = threading.Lock()

    def add(self, record: ExpenseRecord) -> ExpenseRecord:
        with self._lock:
            self._docs[record.expense_id] = record.to_dict()
        return record

    def get(self, expense_id: str) -> ExpenseRecord:
        with self._lock:
            data = self._docs.get(expense_id)
            if data is None:
                raise NotFoundError(f"expense {expense_id} not found")
            data = copy.deepcopy(data)
        return ExpenseRecord.from_dict(data)

    def list_for_trip(self, trip_id: str) -> list[ExpenseRecord]:
        return self.list_for_trips([trip_id])

    def list_for_trips(self, trip_ids: list[str]) -> list[ExpenseRecord]:
        wanted = set(trip_ids)
        # Copy under the lock so every caller sees one snapshot
        with self._lock:
            snapshot = [copy.deepcopy(d) for d in self._docs.values() if d["trip_id"] in wanted]
        return [ExpenseRecord.from_dict(d) for d in snapshot]

    def update_content(self, record: ExpenseRecord) -> ExpenseRecord:
        with self._lock:
            if record.expense_id not in self._docs:
                raise NotFoundError(f"expense {record.expense_id} not found")
            self._docs[record.expense_id].update(_content_fields(record))
        return record

    def set_chat_message(self, expense_id: str, message_id: Optional[str]) -> None:
        with self._lock:
            if expense_id in self._docs:
                self._docs[expense_id]["chat_message_id"] = message_id

    def delete(self, expense_id: str) -> None:
        with self._lock:
            self._docs.pop(expense_id, None)

    def mark_share_paid(self, expense_id: str, member_id: str, paid_at: str) -> ExpenseRecord:
        """Atomically mark one share paid (check and write under one lock)."""
        with self._lock:
            data = self._docs.get(expense_id)
            if data is None:
                raise NotFoundError(f"expense {expense_id} not found")

            record = ExpenseRecord.from_dict(copy.deepcopy(data))
            record.mark_share_paid(member_id, paid_at)
            data.update(_payment_fields(record))
        return record


def create_store(backend: str):
    """Build the expense store named by the EXPENSE_STORE setting."""
    if backend == "memory":
        logger.warning("Using in-memory expense store; data is lost on restart")
        return InMemoryExpenseStore()
    return FirestoreExpenseStore()
