import asyncio
import logging
from typing import Any, Dict, Optional

from .config import settings
from .delivery import FcmDelivery
from .dispatcher import DispatchEngine
from .exceptions import RecordNotFound
from .recipients import RecipientResolver
from .retention import RetentionSweeper
from .schemas import (Chat, ChatMessage, FanOutResult, FanOutStatus, NotificationRequest,
                      SweepResult, User)
from .status_tracker import StatusTracker
from .store import FirestoreStore

logger = logging.getLogger(__name__)


class NotificationHandlers:
    """
    The work behind the three triggered functions: notification requests,
    new chat messages and the daily cleanup of old requests.
    """

    def __init__(self, store: FirestoreStore, delivery: FcmDelivery):
        """
        Args:
            store: Firestore store collaborator
            delivery: FCM delivery collaborator
        """
        self.store = store
        self.delivery = delivery
        self.resolver = RecipientResolver(store)
        self.engine = DispatchEngine(delivery, self.resolver, store)
        self.tracker = StatusTracker(store, self.engine)
        self.sweeper = RetentionSweeper(store)
        logger.info("NotificationHandlers initialized")

    @classmethod
    def from_firebase(cls) -> "NotificationHandlers":
        """Build handlers on top of the default Firebase app."""
        from .firebase import FirebaseApp

        firebase_app = FirebaseApp()
        return cls(
            FirestoreStore(firebase_app.get_firestore_db()),
            FcmDelivery(app=firebase_app.app, dry_run=settings.fcm_dry_run),
        )

    async def process_notification_request(self, document_path: str) -> Optional[str]:
        """
        Handle a newly created notification request.

        Args:
            document_path: Path of the request, e.g. notification_requests/abc

        Returns:
            The FCM message ID, or None when nothing was sent
        """
        collection, _, request_id = document_path.rpartition("/")
        try:
            doc = await self._get_required(collection, request_id)
        except RecordNotFound as e:
            logger.warning(f"{str(e)}, nothing to send")
            return None

        request = NotificationRequest.model_validate(doc)
        return await self.tracker.process(request, self.store.document(document_path))

    async def send_message_notification(self, chat_id: str, message_id: str) -> FanOutResult:
        """
        Notify the offline participants of a chat about a new message.

        Args:
            chat_id: ID of the chat
            message_id: ID of the new message

        Returns:
            FanOutResult, with a not found status when a document is missing
        """
        messages_collection = f"{settings.chats_collection}/{chat_id}/{settings.messages_collection}"
        not_found_statuses = {
            messages_collection: FanOutStatus.MESSAGE_NOT_FOUND,
            settings.chats_collection: FanOutStatus.CHAT_NOT_FOUND,
            settings.users_collection: FanOutStatus.SENDER_NOT_FOUND,
        }

        try:
            message_doc = await self._get_required(messages_collection, message_id)
            message = ChatMessage.model_validate({**message_doc, 'chatId': chat_id})
            chat = Chat.model_validate(await self._get_required(settings.chats_collection, chat_id))
            sender = User.model_validate(await self._get_required(settings.users_collection, message.senderId))

            result = await self.engine.fan_out(message, chat, sender)
            if result.outcomes:
                logger.info(f"Message {message_id} notifications: {result.success_count} sent, "
                            f"{result.failure_count} failed")
            return result

        except RecordNotFound as e:
            logger.info(f"{str(e)}, nothing to notify")
            return FanOutResult(status=not_found_statuses[e.collection])
        except Exception as e:
            logger.error(f"Error in send_message_notification: {str(e)}")
            raise

    async def cleanup_notification_requests(self) -> SweepResult:
        return await self.sweeper.sweep()

    async def _get_required(self, collection: str, doc_id: str) -> Dict[str, Any]:
        doc = await asyncio.to_thread(self.store.get, collection, doc_id)
        if doc is None:
            raise RecordNotFound(collection, doc_id)
        return doc
