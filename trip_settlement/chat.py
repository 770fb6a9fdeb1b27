"""
Chat Module

System messages posted to a trip's chat when expenses change. The chat
itself belongs to another service; this module only writes and removes
the expense messages.

Firestore Structure:
    trips/{trip_id}/messages/{message_id}
        - message_id: string
        - type: "expense"
        - expense_id: string
        - sender_id: string (the contributor)
        - text: string
        - created_at: timestamp

Classes:
    FirestoreChatSink: Writes messages to Firestore.
    InMemoryChatSink: Keeps messages in a dict.
"""

from trip_settlement.config.firebase_config import get_db
from trip_settlement.utils import generate_id, get_timestamp, money_to_float

TRIPS_COLLECTION = "trips"
MESSAGES_COLLECTION = "messages"


def build_expense_message(record, message_id: str) -> dict:
    """Message document announcing a new expense."""
    return {
        "message_id": message_id,
        "type": "expense",
        "expense_id": record.expense_id,
        "sender_id": record.contributor_id,
        "text": (
            f"{record.contributor_id} added an expense: {record.description} "
            f"({money_to_float(record.amount):.2f} {record.currency})"
        ),
        "created_at": get_timestamp()
    }


class FirestoreChatSink:

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            self._db = get_db()
        return self._db

    def _messages(self, trip_id: str):
        return self.db.collection(TRIPS_COLLECTION).document(trip_id) \
                      .collection(MESSAGES_COLLECTION)

    def post_expense_message(self, record) -> str:
        """Post the system message for a new expense; returns its ID."""
        message_id = generate_id("msg")
        self._messages(record.trip_id).document(message_id).set(
            build_expense_message(record, message_id)
        )
        return message_id

    def delete_message(self, trip_id: str, message_id: str) -> None:
        self._messages(trip_id).document(message_id).delete()


class InMemoryChatSink:

    def __init__(self):
        self.messages: dict[str, dict] = {}

    def post_expense_message(self, record) -> str:
        message_id = generate_id("msg")
        message = build_expense_message(record, message_id)
        message["trip_id"] = record.trip_id
        self.messages[message_id] = message
        return message_id

    def delete_message(self, trip_id: str, message_id: str) -> None:
        self.messages.pop(message_id, None)


def create_chat_sink(backend: str):
    if backend == "memory":
        return InMemoryChatSink()
    return FirestoreChatSink()
