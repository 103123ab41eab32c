import logging

from firebase_admin import messaging
from firebase_admin.exceptions import FirebaseError

from .exceptions import DeliveryFailure

logger = logging.getLogger(__name__)


class FcmDelivery:
    """Sends single messages through Firebase Cloud Messaging."""

    # Firebase error codes that indicate an invalid token
    INVALID_TOKEN_CODES = [
        "registration-token-not-registered",
        "invalid-registration-token",
        "NOT_FOUND",
        "UNREGISTERED",
    ]

    def __init__(self, app=None, dry_run: bool = False):
        """
        Args:
            app: Firebase app to send with, the default app if None
            dry_run: Validate messages with FCM without delivering them
        """
        self.app = app
        self.dry_run = dry_run

    def send(self, message: messaging.Message) -> str:
        """
        Send one message.

        Args:
            message: FCM message addressed to a single token

        Returns:
            The message ID assigned by FCM

        Raises:
            DeliveryFailure: FCM did not accept the message
        """
        try:
            response = messaging.send(message, dry_run=self.dry_run, app=self.app)
        except FirebaseError as e:
            raise DeliveryFailure(str(e), code=e.code, cause=e) from e
        except ValueError as e:
            # Raised by the SDK for malformed messages before any request is made
            raise DeliveryFailure(str(e), code="invalid-argument", cause=e) from e

        logger.debug(f"FCM accepted message: {response}")
        return response

    @classmethod
    def is_invalid_token(cls, error: Exception) -> bool:
        """Whether a delivery error means the token will never work again"""
        cause = getattr(error, "cause", None) or error
        if isinstance(cause, (messaging.UnregisteredError, messaging.SenderIdMismatchError)):
            return True
        return getattr(error, "code", None) in cls.INVALID_TOKEN_CODES
