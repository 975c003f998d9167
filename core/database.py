"""
POSTUREIQ Firebase Database Initialization

Initializes Firebase Admin SDK for Firestore access.
Supports mock mode when credentials are unavailable.
"""

import copy
import logging
import uuid
from pathlib import Path
from typing import Any, Iterator, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from core.config import settings

# Configure logging
logger = logging.getLogger(__name__)

# Global Firestore client
_db: Optional[firestore.Client] = None
_mock_mode: bool = False
_mock_db: Optional["MockFirestoreClient"] = None


def init_firebase() -> bool:
    """
    Initialize Firebase Admin SDK.

    Returns:
        bool: True if connected successfully, False if running in mock mode.
    """
    global _db, _mock_mode

    # Already initialized?
    if _db is not None:
        return not _mock_mode

    cred_path = Path(__file__).parent.parent / settings.FIREBASE_CREDENTIALS_PATH

    if not cred_path.exists():
        logger.warning(
            f"⚠️ Firebase credentials not found at '{cred_path}'. "
            "Running in MOCK MODE - assessments are kept in memory."
        )
        _mock_mode = True
        return False

    try:
        cred = credentials.Certificate(str(cred_path))

        # Check if already initialized (happens during hot reload)
        if not firebase_admin._apps:
            firebase_admin.initialize_app(cred, {
                'projectId': settings.FIREBASE_PROJECT_ID,
            })
            logger.info(f"🔥 Firebase Admin SDK initialized for project: {settings.FIREBASE_PROJECT_ID}")

        _db = firestore.client()
        logger.info("✅ Connected to Firestore successfully!")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to initialize Firebase: {e}")
        logger.warning("Running in MOCK MODE - assessments are kept in memory.")
        _mock_mode = True
        return False


def get_db() -> Optional[firestore.Client]:
    """
    Get Firestore database client.

    Returns:
        Firestore client or None if in mock mode.
    """
    if _db is None and not _mock_mode:
        init_firebase()

    return _db


def is_mock_mode() -> bool:
    """Check if running in mock mode (no Firebase connection)."""
    return _mock_mode


# ============================================
# Mock Database for Development/Testing
# ============================================

class MockFirestoreClient:
    """
    Mock Firestore client for development without Firebase.
    Stores data in memory.
    """

    def __init__(self):
        self._collections: dict = {}
        logger.info("🧪 MockFirestoreClient initialized (in-memory storage)")

    def collection(self, name: str) -> "MockCollection":
        if name not in self._collections:
            self._collections[name] = MockCollection(name)
        return self._collections[name]


_OPERATORS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
}


class MockQuery:
    """Chained where() filters over a mock collection."""

    def __init__(self, collection: "MockCollection", filters: list = None):
        self._collection = collection
        self._filters = filters or []

    def where(self, field: str, op: str, value: Any) -> "MockQuery":
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported mock query operator '{op}'")
        return MockQuery(self._collection, self._filters + [(field, op, value)])

    def stream(self) -> Iterator["MockDocument"]:
        for doc in list(self._collection._documents.values()):
            if not doc.exists:
                continue
            data = doc._data
            if all(_OPERATORS[op](data.get(field), value) for field, op, value in self._filters):
                yield doc

    def get(self) -> List["MockDocument"]:
        return list(self.stream())


class MockCollection:
    """Mock Firestore collection."""

    def __init__(self, name: str):
        self.name = name
        self._documents: dict = {}

    def document(self, doc_id: str = None) -> "MockDocument":
        if doc_id is None:
            doc_id = uuid.uuid4().hex
        if doc_id not in self._documents:
            self._documents[doc_id] = MockDocument(doc_id, self)
        return self._documents[doc_id]

    def add(self, data: dict):
        doc = self.document()
        doc.set(data)
        return (None, doc)

    def where(self, field: str, op: str, value: Any) -> MockQuery:
        return MockQuery(self).where(field, op, value)

    def stream(self) -> Iterator["MockDocument"]:
        return MockQuery(self).stream()

    def get(self) -> List["MockDocument"]:
        return list(self.stream())


class MockDocument:
    """Mock Firestore document (reference and snapshot in one)."""

    def __init__(self, doc_id: str, collection: MockCollection):
        self.id = doc_id
        self._collection = collection
        self._data: dict = {}
        self.exists = False

    def set(self, data: dict, merge: bool = False):
        if merge:
            self._data.update(copy.deepcopy(data))
        else:
            self._data = copy.deepcopy(data)
        self.exists = True

    def update(self, data: dict):
        if not self.exists:
            raise KeyError(f"No document to update: {self._collection.name}/{self.id}")
        self._data.update(copy.deepcopy(data))

    def get(self) -> "MockDocument":
        return self

    def to_dict(self) -> Optional[dict]:
        return copy.deepcopy(self._data) if self.exists else None

    def delete(self):
        self._data = {}
        self.exists = False
        self._collection._documents.pop(self.id, None)


def get_mock_db() -> MockFirestoreClient:
    """Get the shared in-memory database client."""
    global _mock_db
    if _mock_db is None:
        _mock_db = MockFirestoreClient()
    return _mock_db


# ============================================
# Database Helper Functions
# ============================================

def get_database():
    """
    Get database client (real or mock).
    Use this in your services to automatically handle mock mode.
    """
    db = get_db()
    if _mock_mode or db is None:
        return get_mock_db()
    return db
