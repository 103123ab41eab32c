from .firebase import FirebaseApp

__all__ = ["FirebaseApp"]
