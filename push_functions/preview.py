from .schemas import ChatMessage, MessageType

PREVIEW_MAX_LENGTH = 50
DEFAULT_PREVIEW = "New message"


def get_message_preview(message: ChatMessage) -> str:
    """Short human-readable preview of a chat message for the notification body"""
    if message.type == MessageType.TEXT:
        text = message.text
        if text and len(text) > PREVIEW_MAX_LENGTH:
            return f"{text[:PREVIEW_MAX_LENGTH]}..."
        return text or DEFAULT_PREVIEW
    if message.type == MessageType.IMAGE:
        return "📷 Photo"
    if message.type == MessageType.FILE:
        return "📎 File"
    return DEFAULT_PREVIEW
