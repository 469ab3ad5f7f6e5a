from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import field_validator
import sys


class Settings(BaseSettings):
    # App
    APP_NAME: str = "SyncStream"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"  # TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = False  # Set True for JSON logging in production
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"

    # Redis ("memory://" keeps all room state in-process)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_FALLBACK_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Room Settings
    ROOM_CODE_LENGTH: int = 6
    ROOM_CODE_ALPHABET: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I
    ROOM_CODE_MAX_ATTEMPTS: int = 10
    ROOM_MAX_PARTICIPANTS: int = 50
    ROOM_IDLE_TIMEOUT: int = 3600  # seconds
    ROOM_CLEANUP_INTERVAL: int = 300  # seconds

    # Chat Settings
    CHAT_HISTORY_LIMIT: int = 100  # messages kept per room
    CHAT_HISTORY_WINDOW: int = 50  # messages sent to a joining participant
    CHAT_MESSAGE_MAX_LENGTH: int = 500

    # Participant Settings
    PARTICIPANT_NAME_MAX_LENGTH: int = 20
    PARTICIPANT_AVATAR_MAX_LENGTH: int = 16
    DEFAULT_AVATAR: str = "🎬"

    # Playback Settings
    MEDIA_URL_MAX_LENGTH: int = 2048
    PLAYBACK_HOST_ONLY: bool = False  # only the host may change media / playback

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("ROOM_CODE_ALPHABET")
    @classmethod
    def validate_code_alphabet(cls, v: str) -> str:
        """Alphabet must be non-empty, upper-case and free of duplicates."""
        if not v or len(set(v)) != len(v):
            raise ValueError("ROOM_CODE_ALPHABET must contain unique characters")
        if v != v.upper():
            raise ValueError("ROOM_CODE_ALPHABET must be upper-case")
        return v

    @field_validator("CHAT_HISTORY_WINDOW")
    @classmethod
    def validate_history_window(cls, v: int, info) -> int:
        limit = info.data.get("CHAT_HISTORY_LIMIT", 100)
        if v > limit:
            raise ValueError("CHAT_HISTORY_WINDOW cannot exceed CHAT_HISTORY_LIMIT")
        return v

    def get_cors_origins(self) -> list[str]:
        return self.CORS_ORIGINS


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Raises ValidationError if configuration is invalid.
    """
    try:
        return Settings()
    except Exception as e:
        print(f"\n{'='*70}")
        print(f"CONFIGURATION ERROR: {e}")
        print(f"{'='*70}\n")
        sys.exit(1)


settings = get_settings()
