from typing import Optional


class PushFunctionsError(Exception):
    """Base class for errors raised by the push notification functions."""


class MissingToken(PushFunctionsError):
    """The notification has no delivery token to address."""


class RecordNotFound(PushFunctionsError):
    """A chat, sender or user document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class DeliveryFailure(PushFunctionsError):
    """FCM rejected or failed to accept a message."""

    def __init__(self, message: str, code: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(message)
        self.code = code
        self.cause = cause


class StoreFailure(PushFunctionsError):
    """A Firestore read, write, query or batch operation failed."""
