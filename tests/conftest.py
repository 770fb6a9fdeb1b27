import pytest
from fastapi.testclient import TestClient

from trip_settlement.chat import InMemoryChatSink
from trip_settlement.currency import CurrencyConverter, CurrencyRateTable
from trip_settlement.firebase_store import InMemoryExpenseStore
from trip_settlement.main import app, get_service
from trip_settlement.members import InMemoryTripDirectory
from trip_settlement.service import ExpenseService

TRIP_ID = "trip_lisbon"
MEMBERS = ["alice", "bob", "carol"]


class FailingChatSink:
    """Chat sink whose every call fails."""

    def post_expense_message(self, record):
        raise ConnectionError("chat service unreachable")

    def delete_message(self, trip_id, message_id):
        raise ConnectionError("chat service unreachable")


@pytest.fixture
def converter():
    return CurrencyConverter(CurrencyRateTable.default())


@pytest.fixture
def directory():
    return InMemoryTripDirectory({
        TRIP_ID: list(MEMBERS),
        "trip_porto": ["alice", "dave"],
    })


@pytest.fixture
def store():
    return InMemoryExpenseStore()


@pytest.fixture
def chat():
    return InMemoryChatSink()


@pytest.fixture
def service(store, directory, chat, converter):
    return ExpenseService(store=store, directory=directory, chat=chat, converter=converter)


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_actor(member_id):
    return {"X-Actor-Id": member_id}
