"""
Members Module

Read access to trip membership, owned by the trip service outside this
engine.

Data Model:
    Trip stored at: trips/{trip_id}
    Fields used here:
        - members: list of member IDs (array, queried with array_contains)

Classes:
    FirestoreTripDirectory: Reads trip documents from Firestore.
    InMemoryTripDirectory: Dict-backed directory for local runs and tests.

Trips file (memory backend):
    {"trip_lisbon": ["alice", "bob", "carol"], "trip_porto": ["alice", "dave"]}
"""

import json
from typing import Optional

from google.cloud.firestore_v1.base_query import FieldFilter

from trip_settlement.config.firebase_config import get_db
from trip_settlement.errors import NotFoundError
from trip_settlement.logging_config import get_logger

logger = get_logger("members")

TRIPS_COLLECTION = "trips"


class FirestoreTripDirectory:

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            self._db = get_db()
        return self._db

    def get_members(self, trip_id: str) -> list[str]:
        """
        Get the member IDs of a trip.

        Raises:
            NotFoundError: If the trip does not exist.
        """
        snapshot = self.db.collection(TRIPS_COLLECTION).document(trip_id).get()
        if not snapshot.exists:
            raise NotFoundError(f"trip {trip_id} not found")
        return list(snapshot.to_dict().get("members", []))

    def get_member_trips(self, member_id: str) -> list[str]:
        """IDs of every trip the member belongs to."""
        docs = self.db.collection(TRIPS_COLLECTION) \
                      .where(filter=FieldFilter("members", "array_contains", member_id)).stream()
        return [doc.id for doc in docs]


class InMemoryTripDirectory:

    def __init__(self, trips: Optional[dict[str, list[str]]] = None):
        self._trips = {trip_id: list(members) for trip_id, members in (trips or {}).items()}

    @classmethod
    def from_file(cls, path: str) -> "InMemoryTripDirectory":
        """
        Load a directory from a JSON object of trip_id -> member IDs.

        Raises:
            ValueError: If the document is not such an object.
            OSError: If the file cannot be read.
        """
        with open(path, encoding="utf-8") as fh:
            document = json.load(fh)

        if not isinstance(document, dict) or not all(
            isinstance(members, list) and all(isinstance(m, str) for m in members)
            for members in document.values()
        ):
            raise ValueError(f"trips file {path} must map trip IDs to lists of member IDs")

        logger.info("Loaded trip directory", extra={"path": path, "trips": len(document)})
        return cls(document)

    def add_trip(self, trip_id: str, members: list[str]) -> None:
        self._trips[trip_id] = list(members)

    def get_members(self, trip_id: str) -> list[str]:
        if trip_id not in self._trips:
            raise NotFoundError(f"trip {trip_id} not found")
        return list(self._trips[trip_id])

    def get_member_trips(self, member_id: str) -> list[str]:
        return [trip_id for trip_id, members in self._trips.items() if member_id in members]


def create_directory(backend: str, trips_file: Optional[str] = None):
    if backend == "memory":
        if trips_file:
            return InMemoryTripDirectory.from_file(trips_file)
        logger.warning("In-memory trip directory has no trips; set TRIPS_FILE")
        return InMemoryTripDirectory()
    return FirestoreTripDirectory()
