import json
import os

import firebase_admin
from firebase_admin import credentials, firestore

from trip_settlement.errors import BackendUnavailableError
from trip_settlement.logging_config import get_logger

logger = get_logger("config.firebase")

_db = None

DEFAULT_CREDENTIALS_PATH = "config/serviceAccountKey.json"


def get_db():
    """
    Return the process-wide Firestore client, initializing Firebase on first use.

    Credentials come from the FIREBASE_SERVICE_ACCOUNT environment variable
    (service-account JSON) or, locally, from config/serviceAccountKey.json.

    Raises:
        BackendUnavailableError: If Firebase cannot be initialized.
    """
    global _db
    if _db:
        return _db

    try:
        if "FIREBASE_SERVICE_ACCOUNT" in os.environ:
            cred_dict = json.loads(os.environ["FIREBASE_SERVICE_ACCOUNT"])
            cred = credentials.Certificate(cred_dict)
        else:
            cred = credentials.Certificate(DEFAULT_CREDENTIALS_PATH)

        if not firebase_admin._apps:
            firebase_admin.initialize_app(cred)

        _db = firestore.client()
        logger.info("Firestore client initialized")
        return _db

    except Exception as e:
        logger.error("Firebase init failed", exc_info=True)
        raise BackendUnavailableError(f"Firebase init failed: {e}") from e
