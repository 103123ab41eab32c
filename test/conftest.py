import os
import sys
from typing import Any, Dict, List, Optional

import pytest
from firebase_admin import firestore

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from push_functions.exceptions import DeliveryFailure, StoreFailure


class FakeRef:
    def __init__(self, path: str):
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def __eq__(self, other):
        return isinstance(other, FakeRef) and other.path == self.path

    def __hash__(self):
        return hash(self.path)

    def __repr__(self):
        return f"FakeRef({self.path!r})"


class FakeStore:
    """In-memory stand-in for FirestoreStore keyed by document path"""

    def __init__(self, docs: Optional[Dict[str, Dict[str, Any]]] = None):
        self.docs = {path: dict(data) for path, data in (docs or {}).items()}
        self.updates: List[tuple] = []
        self.batches: List[List[FakeRef]] = []
        self.get_many_calls: List[List[str]] = []
        self.fail_updates = 0
        self.fail_batches = set()

    def document(self, path: str) -> FakeRef:
        return FakeRef(path)

    def get(self, collection: str, doc_id: str):
        return self.get_by_ref(FakeRef(f"{collection}/{doc_id}"))

    def get_by_ref(self, ref: FakeRef):
        data = self.docs.get(ref.path)
        if data is None:
            return None
        return {**data, "id": ref.id}

    def get_many(self, collection: str, doc_ids):
        doc_ids = list(doc_ids)
        self.get_many_calls.append(doc_ids)
        found = [self.get(collection, doc_id) for doc_id in doc_ids]
        return [doc for doc in found if doc is not None]

    def query_older_than(self, collection: str, field: str, cutoff):
        return [
            FakeRef(path) for path, data in self.docs.items()
            if path.startswith(f"{collection}/") and path.count("/") == 1
            and data.get(field) is not None and data[field] < cutoff
        ]

    def update(self, ref: FakeRef, fields: Dict[str, Any]) -> None:
        if self.fail_updates:
            self.fail_updates -= 1
            raise StoreFailure(f"Failed to update {ref.path}")
        self.updates.append((ref.path, dict(fields)))
        doc = self.docs.setdefault(ref.path, {})
        for key, value in fields.items():
            if value is firestore.DELETE_FIELD:
                doc.pop(key, None)
            else:
                doc[key] = value

    def clear_field_if_equals(self, ref: FakeRef, field: str, expected) -> bool:
        doc = self.docs.get(ref.path)
        if doc is None or doc.get(field) != expected:
            return False
        self.update(ref, {field: firestore.DELETE_FIELD})
        return True

    def batch_delete(self, refs: List[FakeRef]) -> int:
        index = len(self.batches)
        self.batches.append(list(refs))
        if index in self.fail_batches:
            raise StoreFailure(f"Failed to delete {len(refs)} documents")
        for ref in refs:
            self.docs.pop(ref.path, None)
        return len(refs)


class FakeDelivery:
    """Records sent messages and fails for the configured tokens"""

    def __init__(self, failing_tokens: Optional[Dict[str, Exception]] = None):
        self.failing_tokens = failing_tokens or {}
        self.messages = []

    def send(self, message) -> str:
        self.messages.append(message)
        error = self.failing_tokens.get(message.token)
        if error is not None:
            raise error
        return f"projects/test/messages/{len(self.messages)}"

    @property
    def tokens(self) -> List[str]:
        return [message.token for message in self.messages]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def delivery():
    return FakeDelivery()


def delivery_failure(reason: str = "internal error", code: str = "INTERNAL") -> DeliveryFailure:
    return DeliveryFailure(reason, code=code)
