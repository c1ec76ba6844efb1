"""
Tracker Sync Service configuration.
Manages all configurations through environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List

from cryptography.fernet import Fernet, InvalidToken


class Settings(BaseSettings):
    """Application settings using Pydantic Settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Application Settings
    APP_NAME: str = "Tracker Sync Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # API Settings
    API_V1_STR: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # PostgreSQL Configuration
    DATABASE_URL: Optional[str] = None  # Overrides the POSTGRES_* settings when set
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DATABASE: str = "tracker_sync"

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 10
    DB_POOL_RECYCLE: int = 1800

    # Security Configuration
    ENCRYPTION_KEY: Optional[str] = None  # Fernet key; required unless DEBUG
    JIRA_WEBHOOK_SECRET: Optional[str] = None

    # Tracker HTTP Configuration
    TRACKER_REQUEST_TIMEOUT: int = 30
    JIRA_PAGE_SIZE: int = 100
    JIRA_SPRINT_PAGE_SIZE: int = 50
    AZURE_BATCH_SIZE: int = 200
    AZURE_API_VERSION: str = "7.0"
    JIRA_STORY_POINTS_FIELD: str = "customfield_10016"
    DONE_STATUS_NAMES: str = "Done,Closed,Resolved"
    OPEN_STATUS_NAMES: str = "To Do,Open,In Progress"

    # LLM Configuration
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    LLM_MODELS: str = "gpt-4o-mini,gpt-4o"  # Ordered fallback list
    LLM_TIMEOUT_SECONDS: float = 15.0
    LLM_TEMPERATURE: float = 0.3
    LLM_MAX_TOKENS: int = 1500

    # Insight economics
    HOURS_PER_STORY_POINT: float = 8.0
    DEFAULT_HOURLY_RATE: float = 50.0

    # Job Scheduling Configuration
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_TIMEZONE: str = "UTC"
    SYNC_INTERVAL_MINUTES: int = 60
    INSIGHT_JOB_INTERVAL_SECONDS: int = 30
    INSIGHT_JOB_MAX_ATTEMPTS: int = 3
    INSIGHT_JOB_BATCH_SIZE: int = 20

    # RabbitMQ Configuration
    QUEUE_PUBLISH_ENABLED: bool = False
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> list:
        """Convert CORS_ORIGINS string to list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def llm_models_list(self) -> List[str]:
        """Ordered list of LLM models to try."""
        return [model.strip() for model in self.LLM_MODELS.split(",") if model.strip()]

    @property
    def done_status_names(self) -> List[str]:
        return [name.strip().lower() for name in self.DONE_STATUS_NAMES.split(",") if name.strip()]

    @property
    def open_status_names(self) -> List[str]:
        return [name.strip() for name in self.OPEN_STATUS_NAMES.split(",") if name.strip()]

    @property
    def postgres_connection_string(self) -> str:
        """Builds the PostgreSQL connection string with proper UTF-8 encoding."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}?client_encoding=utf8"


class AppConfig:
    """Utility class for managing configurations and encryption."""

    _debug_key: Optional[str] = None

    @classmethod
    def load_key(cls) -> str:
        """
        Loads the encryption key.

        With DEBUG on and no key configured, a throwaway key is generated for
        the life of the process; tokens stored under it do not survive a restart.

        Raises:
            ConfigurationError: If ENCRYPTION_KEY is unset outside DEBUG
        """
        settings = get_settings()
        if settings.ENCRYPTION_KEY:
            return settings.ENCRYPTION_KEY

        if not settings.DEBUG:
            from tracker_sync.core.errors import ConfigurationError
            raise ConfigurationError("ENCRYPTION_KEY is not set; generate one with Fernet.generate_key()")

        if cls._debug_key is None:
            cls._debug_key = Fernet.generate_key().decode('utf-8')
        return cls._debug_key

    @staticmethod
    def encrypt_token(token: str, key: str) -> str:
        """
        Encrypts a token using the provided Fernet key.
        """
        fernet = Fernet(key.encode('utf-8'))
        return fernet.encrypt(token.encode('utf-8')).decode('utf-8')

    @staticmethod
    def decrypt_token(encrypted_token: str, key: str) -> str:
        """
        Decrypts a token using the provided Fernet key.

        Raises:
            ConfigurationError: If the ciphertext was not produced with this key
        """
        from tracker_sync.core.errors import ConfigurationError

        try:
            fernet = Fernet(key.encode('utf-8'))
            return fernet.decrypt(encrypted_token.encode('utf-8')).decode('utf-8')
        except (InvalidToken, ValueError) as e:
            raise ConfigurationError("Stored tracker token could not be decrypted; re-enter the API token") from e


# Global settings instance (lazy initialization)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Returns the settings instance with lazy initialization."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
