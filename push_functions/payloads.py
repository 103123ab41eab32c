import time
from typing import Any, Dict, Optional

from firebase_admin import messaging
from pydantic import BaseModel, Field

from .config import settings

DEFAULT_TITLE = "New Message"
DEFAULT_BODY = "You have a new message"


class ApnsExtension(BaseModel):
    """iOS specific part of a notification"""
    title: str
    body: str
    badge: int = 1
    sound: str = "default"

    def to_config(self) -> messaging.APNSConfig:
        return messaging.APNSConfig(
            payload=messaging.APNSPayload(
                aps=messaging.Aps(
                    alert=messaging.ApsAlert(title=self.title, body=self.body),
                    badge=self.badge,
                    sound=self.sound,
                )
            )
        )


class AndroidExtension(BaseModel):
    """Android specific part of a notification"""
    title: str
    body: str
    icon: str
    color: str
    sound: str = "default"
    priority: str = "high"

    def to_config(self) -> messaging.AndroidConfig:
        return messaging.AndroidConfig(
            priority=self.priority,
            notification=messaging.AndroidNotification(
                title=self.title,
                body=self.body,
                icon=self.icon,
                color=self.color,
                sound=self.sound,
            ),
        )


class NotificationPayload(BaseModel):
    """Channel agnostic notification with the two per-platform extensions"""
    title: str
    body: str
    data: Dict[str, str] = Field(default_factory=dict)
    apns: ApnsExtension
    android: AndroidExtension

    def to_message(self, token: str) -> messaging.Message:
        """
        Build the FCM message addressed to a single device token.

        Args:
            token: FCM registration token of the device

        Returns:
            messaging.Message ready for messaging.send
        """
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=self.title, body=self.body),
            data=dict(self.data),
            apns=self.apns.to_config(),
            android=self.android.to_config(),
        )


def build_notification_payload(title: Optional[str],
                               body: Optional[str],
                               data: Optional[Dict[str, Any]] = None,
                               timestamp: Optional[Any] = None) -> NotificationPayload:
    """
    Build a notification payload from a title, body and data bag.

    Empty title and body fall back to the generic new message texts. Data values
    are converted to strings as FCM only accepts string values, and a timestamp
    entry is always present.

    Args:
        title: Notification title
        body: Notification body
        data: Additional key/value data delivered with the notification
        timestamp: Timestamp to embed, current time in milliseconds if omitted

    Returns:
        NotificationPayload
    """
    title = title or DEFAULT_TITLE
    body = body or DEFAULT_BODY

    payload_data = {k: v if isinstance(v, str) else str(v) for k, v in (data or {}).items()}
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    payload_data["timestamp"] = str(timestamp)

    return NotificationPayload(
        title=title,
        body=body,
        data=payload_data,
        apns=ApnsExtension(title=title, body=body),
        android=AndroidExtension(
            title=title,
            body=body,
            icon=settings.android_icon,
            color=settings.android_color,
        ),
    )
