from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    OTHER = "other"


class NotificationRequest(BaseModel):
    """A document in the notification_requests collection"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    recipientToken: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("recipientToken", "recipientTarget"),
    )
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[Any] = None
    createdAt: Optional[datetime] = None
    processed: bool = False
    failed: Optional[bool] = None
    error: Optional[str] = None
    messageId: Optional[str] = None

    @field_validator("data", mode="before")
    @classmethod
    def _none_data(cls, value):
        return value or {}


class ChatMessage(BaseModel):
    """A document in chats/{chatId}/messages"""
    model_config = ConfigDict(extra="ignore")

    id: str
    chatId: str
    senderId: str
    type: MessageType = MessageType.OTHER
    text: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type(cls, value):
        try:
            return MessageType(value)
        except ValueError:
            return MessageType.OTHER


class Chat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    participants: List[str] = Field(default_factory=list)
    isGroupChat: bool = False
    name: Optional[str] = None

    @field_validator("participants", mode="before")
    @classmethod
    def _none_participants(cls, value):
        return value or []


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    fcmToken: Optional[str] = None
    isOnline: Optional[bool] = None
    name: Optional[str] = None

    @property
    def is_deliverable(self) -> bool:
        # Only offline users get a push, online users already see the message in-app
        return bool(self.fcmToken) and self.isOnline is False


class Recipient(BaseModel):
    userId: str
    token: str
    # Every user whose document holds this token, userId first
    userIds: List[str] = Field(default_factory=list)


class DispatchOutcome(BaseModel):
    """Result of one send to one delivery token"""
    token: str
    success: bool
    receiptId: Optional[str] = None
    error: Optional[str] = None
    errorCode: Optional[str] = None

    @classmethod
    def succeeded(cls, token: str, receipt_id: str) -> "DispatchOutcome":
        return cls(token=token, success=True, receiptId=receipt_id)

    @classmethod
    def failed(cls, token: str, reason: str, code: Optional[str] = None) -> "DispatchOutcome":
        return cls(token=token, success=False, error=reason, errorCode=code)


class FanOutStatus(str, Enum):
    SENT = "sent"
    NO_RECIPIENTS = "no_recipients"
    CHAT_NOT_FOUND = "chat_not_found"
    SENDER_NOT_FOUND = "sender_not_found"
    MESSAGE_NOT_FOUND = "message_not_found"


class FanOutResult(BaseModel):
    status: FanOutStatus
    outcomes: List[DispatchOutcome] = Field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)


class SweepResult(BaseModel):
    matched: int = 0
    deleted: int = 0
    errors: List[str] = Field(default_factory=list)
