import asyncio
import logging
from typing import Any, Dict, Optional

import google.cloud.firestore
from firebase_admin import firestore
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import settings
from .dispatcher import DispatchEngine
from .exceptions import MissingToken, StoreFailure
from .schemas import NotificationRequest
from .store import FirestoreStore

logger = logging.getLogger(__name__)


class StatusTracker:
    """Processes a notification request at most once and records how it went on the document.

    The processed check and the status write are not done in a transaction:
    two deliveries of the same create event that arrive together can both
    send. The event source is at-least-once and this race is accepted.
    """

    def __init__(self, store: FirestoreStore, engine: DispatchEngine, write_attempts: int = None):
        self.store = store
        self.engine = engine
        self.write_attempts = settings.status_write_attempts if write_attempts is None else write_attempts
        if self.write_attempts < 1:
            raise ValueError(f"write_attempts must be at least 1, got {self.write_attempts}")

    async def process(self,
                      request: NotificationRequest,
                      ref: google.cloud.firestore.DocumentReference) -> Optional[str]:
        """
        Send a notification request and mark its document processed.

        Args:
            request: The notification request data
            ref: Reference of the request document

        Returns:
            The FCM message ID, or None when there was nothing to do

        Raises:
            DeliveryFailure: Sending failed, after the document was marked failed
            StoreFailure: The status could not be written
        """
        if request.processed:
            logger.info(f"Notification request {ref.id} already processed, skipping")
            return None

        try:
            response = await self.engine.send_single(request)
        except MissingToken:
            logger.error(f"No recipient token provided in notification request {ref.id}")
            return None
        except Exception as e:
            logger.error(f"Error sending notification: {str(e)}")
            await self._write_status(ref, {
                'processed': True,
                'failed': True,
                'error': str(e),
                'processedAt': firestore.SERVER_TIMESTAMP,
            })
            raise

        await self._write_status(ref, {
            'processed': True,
            'processedAt': firestore.SERVER_TIMESTAMP,
            'messageId': response,
        })
        return response

    async def _write_status(self, ref: google.cloud.firestore.DocumentReference, fields: Dict[str, Any]) -> None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreFailure),
            stop=stop_after_attempt(self.write_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            reraise=True,
        ):
            with attempt:
                await asyncio.to_thread(self.store.update, ref, fields)
