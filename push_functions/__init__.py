"""Firestore-triggered push notification functions for the chat app."""

__version__ = "1.0.0"
