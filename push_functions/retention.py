import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import settings
from .exceptions import StoreFailure
from .schemas import SweepResult
from .store import FirestoreStore

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes notification requests older than the retention period."""

    def __init__(self,
                 store: FirestoreStore,
                 collection: str = None,
                 retention_days: int = None,
                 batch_limit: int = None):
        self.store = store
        self.collection = settings.notification_requests_collection if collection is None else collection
        self.retention = timedelta(days=settings.retention_days if retention_days is None else retention_days)
        self.batch_limit = settings.batch_write_limit if batch_limit is None else batch_limit
        if self.batch_limit < 1:
            raise ValueError(f"batch_limit must be at least 1, got {self.batch_limit}")

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Delete every request created before now minus the retention period.

        Each chunk of up to batch_limit documents is deleted atomically. All
        chunks are attempted even when one fails.

        Args:
            now: Reference time, current UTC time if omitted

        Returns:
            SweepResult with the number of matched and deleted documents

        Raises:
            StoreFailure: The query failed, or one or more chunks could not be deleted
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        refs = await asyncio.to_thread(self.store.query_older_than, self.collection, 'createdAt', cutoff)

        result = SweepResult(matched=len(refs))
        if not refs:
            logger.info("No old notification requests to delete")
            return result

        for start in range(0, len(refs), self.batch_limit):
            chunk = refs[start:start + self.batch_limit]
            try:
                result.deleted += await asyncio.to_thread(self.store.batch_delete, chunk)
            except StoreFailure as e:
                result.errors.append(str(e))

        logger.info(f"Deleted {result.deleted} old notification requests")
        if result.errors:
            raise StoreFailure(
                f"Deleted {result.deleted} of {result.matched} old notification requests, "
                f"{len(result.errors)} batch(es) failed: {'; '.join(result.errors)}"
            )
        return result
