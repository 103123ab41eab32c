import asyncio
import logging
from typing import Iterable, List, Set

from .config import settings
from .schemas import Recipient, User
from .store import FirestoreStore

logger = logging.getLogger(__name__)


class RecipientResolver:
    """Turns chat participants into the device tokens that should get a push."""

    def __init__(self, store: FirestoreStore, users_collection: str = None):
        self.store = store
        self.users_collection = settings.users_collection if users_collection is None else users_collection

    async def resolve(self, participants: Iterable[str], sender_id: str) -> List[Recipient]:
        """
        Resolve the deliverable recipients of a message.

        The sender is excluded, as is every user without an FCM token or who is
        not explicitly offline. A token shared by several users is only returned
        once, with all of those users listed in its userIds.

        Args:
            participants: User IDs of the chat participants
            sender_id: User ID of the message sender

        Returns:
            Recipients in participant order, empty if nobody should be notified
        """
        user_ids = []
        for user_id in participants:
            if user_id != sender_id and user_id not in user_ids:
                user_ids.append(user_id)

        if not user_ids:
            logger.info(f"No recipients besides sender {sender_id}")
            return []

        user_docs = await asyncio.to_thread(self.store.get_many, self.users_collection, user_ids)
        users = {doc["id"]: User.model_validate(doc) for doc in user_docs}

        recipients = []
        by_token = {}
        for user_id in user_ids:
            user = users.get(user_id)
            if user is None:
                logger.warning(f"User {user_id} not found, skipping notification")
                continue
            if not user.is_deliverable:
                continue
            if user.fcmToken in by_token:
                by_token[user.fcmToken].userIds.append(user_id)
                continue
            recipient = Recipient(userId=user_id, token=user.fcmToken, userIds=[user_id])
            by_token[user.fcmToken] = recipient
            recipients.append(recipient)

        if not recipients:
            logger.info("No FCM tokens found for recipients")
        return recipients

    async def resolve_tokens(self, participants: Iterable[str], sender_id: str) -> Set[str]:
        recipients = await self.resolve(participants, sender_id)
        return {recipient.token for recipient in recipients}
