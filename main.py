import asyncio
import logging
import time
from typing import Dict, Optional

import functions_framework
from pythonjsonlogger import jsonlogger

from push_functions.config import settings
from push_functions.handlers import NotificationHandlers

DOCUMENTS_PREFIX = "documents/"


# Configure logging
def setup_logging():
    """Configure logging for the functions."""
    log_level = getattr(logging, settings.log_level.upper())

    # Create JSON formatter for structured logging
    class CustomJsonFormatter(jsonlogger.JsonFormatter):
        def add_fields(self, log_record, record, message_dict):
            super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
            log_record['service'] = settings.service_name
            log_record['environment'] = settings.environment
            log_record['timestamp'] = time.strftime(
                '%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)
            )

    handler = logging.StreamHandler()
    handler.setFormatter(CustomJsonFormatter('%(timestamp)s %(levelname)s %(service)s %(environment)s %(name)s %(message)s'))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    root_logger.addHandler(handler)

    # Set specific logger levels
    logging.getLogger('google').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


setup_logging()
logger = logging.getLogger(__name__)

_handlers: Optional[NotificationHandlers] = None


def get_handlers() -> NotificationHandlers:
    """Build the handlers on first use so Firebase is only initialized inside a running function."""
    global _handlers
    if _handlers is None:
        _handlers = NotificationHandlers.from_firebase()
    return _handlers


def document_path(cloud_event) -> str:
    """
    Path of the document a Firestore CloudEvent is about.

    Args:
        cloud_event: Firestore document event

    Returns:
        Document path relative to the database root, e.g. chats/c1/messages/m1
    """
    path = cloud_event.get("document")
    if not path:
        subject = cloud_event.get("subject") or ""
        if not subject.startswith(DOCUMENTS_PREFIX):
            raise ValueError(f"Event {cloud_event.get('id')} does not reference a document: {subject!r}")
        path = subject[len(DOCUMENTS_PREFIX):]
    return path.strip("/")


def path_params(path: str) -> Dict[str, str]:
    """Map collection names to document IDs, e.g. {'chats': 'c1', 'messages': 'm1'}"""
    segments = path.split("/")
    return dict(zip(segments[0::2], segments[1::2]))


@functions_framework.cloud_event
def process_notification_requests(cloud_event) -> Optional[str]:
    """Triggered on create of notification_requests/{requestId}"""
    path = document_path(cloud_event)
    logger.info(f"Processing notification request {path}")
    return asyncio.run(get_handlers().process_notification_request(path))


@functions_framework.cloud_event
def send_message_notification(cloud_event) -> None:
    """Triggered on create of chats/{chatId}/messages/{messageId}"""
    params = path_params(document_path(cloud_event))
    chat_id = params.get(settings.chats_collection)
    message_id = params.get(settings.messages_collection)
    if not chat_id or not message_id:
        raise ValueError(f"Event {cloud_event.get('id')} is not about a chat message")

    result = asyncio.run(get_handlers().send_message_notification(chat_id, message_id))
    logger.info(f"Message notification for chat {chat_id} finished with status {result.status.value}")


@functions_framework.cloud_event
def cleanup_notification_requests(cloud_event) -> None:
    """Triggered every 24 hours by Cloud Scheduler through Pub/Sub"""
    result = asyncio.run(get_handlers().cleanup_notification_requests())
    logger.info(f"Cleanup matched {result.matched} and deleted {result.deleted} notification requests")
