"""
Credential store for tracker configurations.

Tokens are encrypted with Fernet before they reach the database and are only
decrypted when a tracker client is built. Public views never include them.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from tracker_sync.core.config import AppConfig
from tracker_sync.core.errors import ValidationError, NotFoundError
from tracker_sync.core.logging_config import get_logger
from tracker_sync.core.utils import DateTimeHelper, DataValidator, ConfigHelper
from tracker_sync.models.unified_models import TrackerConfiguration
from tracker_sync.schemas.api_schemas import ConfigurationCreate, ConfigurationUpdate, TrackerProvider

logger = get_logger(__name__)


def validate_base_url(base_url: Optional[str]) -> str:
    """Normalizes a tracker URL, rejecting anything that is not http(s)."""
    normalized = DataValidator.normalize_base_url(base_url)
    if not normalized:
        raise ValidationError("Tracker URL is required")
    if not DataValidator.is_valid_url(normalized):
        raise ValidationError("Invalid URL. Use a URL starting with https:// or http://")
    return normalized


class ConfigurationService:
    """CRUD for TrackerConfiguration rows."""

    def __init__(self, session: Session):
        self.session = session

    def create_configuration(self, data: ConfigurationCreate) -> TrackerConfiguration:
        base_url = validate_base_url(data.base_url)
        username = (data.username or '').strip() or None
        token = (data.api_token or '').strip()

        if not (data.name or '').strip():
            raise ValidationError("Configuration name is required")
        if data.provider == TrackerProvider.JIRA and not username:
            raise ValidationError("Username (email) is required for Jira")
        if not token:
            raise ValidationError("API token is required")

        config = TrackerConfiguration(
            name=data.name.strip(),
            provider=data.provider.value,
            base_url=base_url,
            username=username,
            secret_token=AppConfig.encrypt_token(token, AppConfig.load_key()),
            selected_project_keys=DataValidator.parse_project_keys(data.project_keys),
            settings=dict(data.settings or {}),
            sync_enabled=data.sync_enabled,
        )
        self.session.add(config)
        self.session.flush()

        logger.info(
            f"Created {config.provider} configuration {config.id}: "
            f"{ConfigHelper.mask_sensitive_data({'base_url': base_url, 'api_token': token})}"
        )
        return config

    def update_configuration(self, config_id: int, data: ConfigurationUpdate) -> TrackerConfiguration:
        config = self.get_configuration(config_id)

        if data.name is not None:
            if not data.name.strip():
                raise ValidationError("Configuration name is required")
            config.name = data.name.strip()
        if data.base_url is not None:
            config.base_url = validate_base_url(data.base_url)
        if data.username is not None:
            username = data.username.strip() or None
            if config.provider == TrackerProvider.JIRA.value and not username:
                raise ValidationError("Username (email) is required for Jira")
            config.username = username
        if data.api_token and data.api_token.strip():
            config.secret_token = AppConfig.encrypt_token(data.api_token.strip(), AppConfig.load_key())
        if data.project_keys is not None:
            config.selected_project_keys = DataValidator.parse_project_keys(data.project_keys)
        if data.settings is not None:
            config.settings = dict(data.settings)
        if data.sync_enabled is not None:
            config.sync_enabled = data.sync_enabled

        self.session.flush()
        logger.info(f"Updated configuration {config.id}")
        return config

    def get_configuration(self, config_id: int) -> TrackerConfiguration:
        config = self.session.get(TrackerConfiguration, config_id)
        if config is None:
            raise NotFoundError(f"Configuration {config_id} not found")
        return config

    def list_configurations(self, provider: Optional[str] = None) -> List[TrackerConfiguration]:
        query = select(TrackerConfiguration).order_by(TrackerConfiguration.id)
        if provider:
            query = query.where(TrackerConfiguration.provider == provider)
        return list(self.session.execute(query).scalars())

    def delete_configuration(self, config_id: int) -> None:
        """Removes the configuration and every row scoped to it."""
        config = self.get_configuration(config_id)
        self.session.delete(config)
        self.session.flush()
        logger.info(f"Deleted configuration {config_id} and its mirrored data")

    @staticmethod
    def decrypt_token(config: TrackerConfiguration) -> str:
        """Cleartext token for tracker clients. Raises ConfigurationError when undecryptable."""
        return AppConfig.decrypt_token(config.secret_token, AppConfig.load_key())

    def mark_synced(self, config: TrackerConfiguration) -> None:
        config.last_sync_at = DateTimeHelper.now_utc()
        self.session.flush()


def to_public_dict(config: TrackerConfiguration) -> Dict[str, Any]:
    """Configuration fields that may leave the service."""
    return {
        'id': config.id,
        'name': config.name,
        'provider': config.provider,
        'base_url': config.base_url,
        'username': config.username,
        'selected_project_keys': list(config.selected_project_keys or []),
        'settings': dict(config.settings or {}),
        'sync_enabled': config.sync_enabled,
        'has_token': config.has_token,
        'last_sync_at': config.last_sync_at,
        'created_at': config.created_at,
    }
