import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import google.cloud.firestore
from firebase_admin import firestore
from firebase_admin.firestore import FieldFilter
from google.api_core.exceptions import GoogleAPIError

from .exceptions import StoreFailure

logger = logging.getLogger(__name__)


class FirestoreStore:
    """Thin wrapper over the Firestore client with the reads and writes the functions need.

    Every method is blocking; async callers run them through asyncio.to_thread.
    Firestore errors are logged and re-raised as StoreFailure.
    """

    def __init__(self, firestore_db: google.cloud.firestore.Client):
        self.db = firestore_db

    def document(self, path: str) -> google.cloud.firestore.DocumentReference:
        return self.db.document(path)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a document by ID.

        Args:
            collection: Collection name
            doc_id: Document ID

        Returns:
            Document data with its ID under 'id', or None if it does not exist
        """
        return self.get_by_ref(self.db.collection(collection).document(doc_id))

    def get_by_ref(self, ref: google.cloud.firestore.DocumentReference) -> Optional[Dict[str, Any]]:
        try:
            snapshot = ref.get()
        except GoogleAPIError as e:
            logger.error(f"Error reading document {ref.path}: {str(e)}")
            raise StoreFailure(f"Failed to read {ref.path}") from e

        if not snapshot.exists:
            return None
        return {**snapshot.to_dict(), "id": snapshot.id}

    def get_many(self, collection: str, doc_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Get several documents of one collection in a single round trip.

        Args:
            collection: Collection name
            doc_ids: Document IDs to fetch

        Returns:
            Data of the documents that exist, each with its ID under 'id'
        """
        refs = [self.db.collection(collection).document(doc_id) for doc_id in doc_ids]
        if not refs:
            return []

        try:
            snapshots = list(self.db.get_all(refs))
        except GoogleAPIError as e:
            logger.error(f"Error reading {len(refs)} documents from {collection}: {str(e)}")
            raise StoreFailure(f"Failed to read documents from {collection}") from e

        return [{**snapshot.to_dict(), "id": snapshot.id} for snapshot in snapshots if snapshot.exists]

    def query_older_than(self,
                         collection: str,
                         field: str,
                         cutoff: datetime) -> List[google.cloud.firestore.DocumentReference]:
        """
        Find documents whose timestamp field is strictly before a cutoff.

        Args:
            collection: Collection name
            field: Timestamp field to compare
            cutoff: Exclusive upper bound

        Returns:
            References of the matching documents
        """
        query = self.db.collection(collection).where(filter=FieldFilter(field, '<', cutoff))
        try:
            return [snapshot.reference for snapshot in query.stream()]
        except GoogleAPIError as e:
            logger.error(f"Error querying {collection} for {field} < {cutoff}: {str(e)}")
            raise StoreFailure(f"Failed to query {collection}") from e

    def update(self, ref: google.cloud.firestore.DocumentReference, fields: Dict[str, Any]) -> None:
        try:
            ref.update(fields)
        except GoogleAPIError as e:
            logger.error(f"Error updating document {ref.path}: {str(e)}")
            raise StoreFailure(f"Failed to update {ref.path}") from e

    def batch_delete(self, refs: List[google.cloud.firestore.DocumentReference]) -> int:
        """
        Delete documents in one atomic batch.

        Args:
            refs: References to delete, at most 500 per Firestore batch

        Returns:
            Number of deleted documents
        """
        batch = self.db.batch()
        for ref in refs:
            batch.delete(ref)

        try:
            batch.commit()
        except GoogleAPIError as e:
            logger.error(f"Error committing batch delete of {len(refs)} documents: {str(e)}")
            raise StoreFailure(f"Failed to delete {len(refs)} documents") from e
        return len(refs)

    def clear_field_if_equals(self,
                              ref: google.cloud.firestore.DocumentReference,
                              field: str,
                              expected: Any) -> bool:
        """
        Delete a field in a transaction, only while it still holds an expected value.

        Args:
            ref: Document reference
            field: Field to delete
            expected: Value the field must still have

        Returns:
            True if the field was deleted, False if the document or value had changed
        """
        transaction = self.db.transaction()

        @firestore.transactional
        def clear_field(transaction, ref):
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists or (snapshot.to_dict() or {}).get(field) != expected:
                return False
            transaction.update(ref, {field: firestore.DELETE_FIELD})
            return True

        try:
            return clear_field(transaction, ref)
        except GoogleAPIError as e:
            logger.error(f"Error clearing {field} on document {ref.path}: {str(e)}")
            raise StoreFailure(f"Failed to update {ref.path}") from e
