from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the push notification functions"""

    # Application settings
    service_name: str = "chat-push-functions"
    log_level: str = "INFO"
    environment: str = "dev"

    # Firebase settings
    firebase_secret: Optional[str] = None  # service account JSON, ADC is used when unset
    firebase_project_id: Optional[str] = None

    # Firestore collections
    notification_requests_collection: str = "notification_requests"
    chats_collection: str = "chats"
    messages_collection: str = "messages"
    users_collection: str = "users"

    # Retention settings
    retention_days: int = 7
    batch_write_limit: int = 500  # Firestore allows up to 500 writes per batch

    # FCM settings
    android_icon: str = "ic_notification"
    android_color: str = "#007AFF"
    fcm_dry_run: bool = False
    prune_invalid_tokens: bool = True

    # Status bookkeeping
    status_write_attempts: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


# Create settings instance
settings = Settings()
