import asyncio
import logging
from typing import List, Optional

from .config import settings
from .delivery import FcmDelivery
from .exceptions import DeliveryFailure, MissingToken, StoreFailure
from .payloads import NotificationPayload, build_notification_payload
from .preview import get_message_preview
from .recipients import RecipientResolver
from .schemas import (Chat, ChatMessage, DispatchOutcome, FanOutResult, FanOutStatus,
                      NotificationRequest, Recipient, User)
from .store import FirestoreStore

logger = logging.getLogger(__name__)

GROUP_CHAT_TITLE = "Group Chat"
NEW_MESSAGE_EVENT = "new_message"


class DispatchEngine:
    """Builds notification payloads and hands them to FCM, one token per send."""

    def __init__(self,
                 delivery: FcmDelivery,
                 resolver: RecipientResolver,
                 store: Optional[FirestoreStore] = None,
                 prune_invalid_tokens: bool = None):
        """
        Args:
            delivery: Delivery collaborator used for every send
            resolver: Resolves chat participants to device tokens
            store: Needed only to clear invalid tokens from user documents
            prune_invalid_tokens: Clear tokens FCM reports as unregistered
        """
        self.delivery = delivery
        self.resolver = resolver
        self.store = store
        if prune_invalid_tokens is None:
            prune_invalid_tokens = settings.prune_invalid_tokens
        self.prune_invalid_tokens = prune_invalid_tokens and store is not None

    async def send_single(self, request: NotificationRequest) -> str:
        """
        Send a notification request to its single target.

        Args:
            request: The notification request

        Returns:
            The FCM message ID

        Raises:
            MissingToken: The request has no recipient token
            DeliveryFailure: FCM did not accept the message
        """
        if not request.recipientToken:
            raise MissingToken("No recipient token provided")

        payload = build_notification_payload(
            request.title,
            request.body,
            request.data,
            request.timestamp,
        )
        response = await asyncio.to_thread(self.delivery.send, payload.to_message(request.recipientToken))
        logger.info(f"Successfully sent message: {response}")
        return response

    async def fan_out(self, message: ChatMessage, chat: Chat, sender: User) -> FanOutResult:
        """
        Notify every eligible participant of a chat about a new message.

        Sends run concurrently and each one's outcome is captured on its own, so
        a failing token never affects the others.

        Args:
            message: The new chat message
            chat: The chat the message was posted to
            sender: The user who sent the message

        Returns:
            FanOutResult with one outcome per recipient in resolution order
        """
        recipients = await self.resolver.resolve(chat.participants, message.senderId)
        if not recipients:
            logger.info(f"No recipients to notify for chat {chat.id}")
            return FanOutResult(status=FanOutStatus.NO_RECIPIENTS)

        payload = self.build_chat_payload(message, chat, sender)
        results = await asyncio.gather(
            *(self._send(payload, recipient) for recipient in recipients),
            return_exceptions=True,
        )

        outcomes = []
        for index, (recipient, result) in enumerate(zip(recipients, results)):
            if isinstance(result, BaseException):
                code = getattr(result, "code", None)
                code = code if isinstance(code, str) else None
                outcomes.append(DispatchOutcome.failed(recipient.token, str(result), code))
                logger.error(f"Failed to send notification to token {index}: {str(result)}")
            else:
                outcomes.append(DispatchOutcome.succeeded(recipient.token, result))
                logger.info(f"Notification sent successfully to token {index}: {result}")

        if self.prune_invalid_tokens:
            await self._prune_invalid_tokens(recipients, results)

        return FanOutResult(status=FanOutStatus.SENT, outcomes=outcomes)

    @staticmethod
    def build_chat_payload(message: ChatMessage, chat: Chat, sender: User) -> NotificationPayload:
        preview = get_message_preview(message)
        sender_name = sender.name or sender.id  # Default to ID if name not found
        if chat.isGroupChat:
            title = chat.name or GROUP_CHAT_TITLE
            body = f"{sender_name}: {preview}"
        else:
            title = sender_name
            body = preview

        return build_notification_payload(title, body, {
            'chatId': chat.id,
            'messageId': message.id,
            'senderId': message.senderId,
            'type': NEW_MESSAGE_EVENT,
        })

    async def _send(self, payload: NotificationPayload, recipient: Recipient) -> str:
        return await asyncio.to_thread(self.delivery.send, payload.to_message(recipient.token))

    async def _prune_invalid_tokens(self, recipients: List[Recipient], results: List) -> None:
        for recipient, result in zip(recipients, results):
            if not isinstance(result, DeliveryFailure) or not FcmDelivery.is_invalid_token(result):
                continue
            for user_id in recipient.userIds or [recipient.userId]:
                user_ref = self.store.document(f"{self.resolver.users_collection}/{user_id}")
                try:
                    # The device may have registered a new token while the send was in flight
                    cleared = await asyncio.to_thread(
                        self.store.clear_field_if_equals, user_ref, 'fcmToken', recipient.token
                    )
                except StoreFailure as e:
                    logger.error(f"Error removing invalid token of user {user_id}: {str(e)}")
                    continue
                if cleared:
                    logger.info(f"Removed invalid token of user {user_id}")
                else:
                    logger.info(f"Token of user {user_id} changed since the send, keeping it")
