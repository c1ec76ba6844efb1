"""
Unit tests for configuration, token encryption and shared helpers.
"""

from datetime import datetime

import pytest
from cryptography.fernet import Fernet

from tracker_sync.core.config import AppConfig, Settings
from tracker_sync.core.errors import ConfigurationError
from tracker_sync.core.utils import DateTimeHelper, DataValidator, ConfigHelper, chunk_list
from tracker_sync.main import check_encryption_key


class TestTokenEncryption:
    """Tokens are stored as Fernet ciphertext."""

    def test_round_trip(self):
        key = Fernet.generate_key().decode()
        encrypted = AppConfig.encrypt_token("my-api-token", key)

        assert encrypted != "my-api-token"
        assert AppConfig.decrypt_token(encrypted, key) == "my-api-token"

    def test_wrong_key_raises_configuration_error(self):
        encrypted = AppConfig.encrypt_token("my-api-token", Fernet.generate_key().decode())

        with pytest.raises(ConfigurationError):
            AppConfig.decrypt_token(encrypted, Fernet.generate_key().decode())

    def test_cleartext_value_is_not_passed_through(self):
        with pytest.raises(ConfigurationError):
            AppConfig.decrypt_token("not-encrypted", Fernet.generate_key().decode())


class TestEncryptionKey:

    def test_configured_key_is_used(self, settings):
        assert AppConfig.load_key() == settings.ENCRYPTION_KEY

    def test_missing_key_outside_debug_is_an_error(self, settings, monkeypatch):
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", None)
        monkeypatch.setattr(settings, "DEBUG", False)

        with pytest.raises(ConfigurationError, match="ENCRYPTION_KEY is not set"):
            AppConfig.load_key()

    def test_missing_key_fails_startup(self, settings, monkeypatch):
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", None)
        monkeypatch.setattr(settings, "DEBUG", False)

        with pytest.raises(ConfigurationError):
            check_encryption_key()

    def test_debug_generates_one_key_per_process(self, settings, monkeypatch):
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", None)
        monkeypatch.setattr(settings, "DEBUG", True)
        monkeypatch.setattr(AppConfig, "_debug_key", None)

        key = AppConfig.load_key()

        assert AppConfig.load_key() == key
        assert AppConfig.decrypt_token(AppConfig.encrypt_token("t", key), key) == "t"

    def test_no_key_is_shipped_in_defaults(self):
        assert Settings.model_fields["ENCRYPTION_KEY"].default is None


class TestSettings:

    def test_comma_separated_lists(self):
        settings = Settings(
            LLM_MODELS="model-a, model-b,,",
            DONE_STATUS_NAMES="Done, CLOSED",
            CORS_ORIGINS="http://a.test, http://b.test"
        )

        assert settings.llm_models_list == ["model-a", "model-b"]
        assert settings.done_status_names == ["done", "closed"]
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_database_url_overrides_postgres_settings(self):
        assert Settings(DATABASE_URL="sqlite://").postgres_connection_string == "sqlite://"
        assert Settings(POSTGRES_HOST="db", DATABASE_URL=None).postgres_connection_string.startswith("postgresql://")


class TestDateTimeHelper:

    def test_parses_jira_offset_format_to_naive_utc(self):
        parsed = DateTimeHelper.parse_jira_datetime_to_naive_utc("2024-03-01T10:00:00.000-0300")
        assert parsed == datetime(2024, 3, 1, 13, 0, 0)
        assert parsed.tzinfo is None

    def test_parses_azure_format_with_long_fraction(self):
        parsed = DateTimeHelper.parse_jira_datetime_to_naive_utc("2024-03-01T10:00:00.1234567Z")
        assert parsed == datetime(2024, 3, 1, 10, 0, 0, 123456)

    def test_invalid_values_return_none(self):
        assert DateTimeHelper.parse_jira_datetime_to_naive_utc(None) is None
        assert DateTimeHelper.parse_jira_datetime_to_naive_utc("yesterday") is None


class TestDataValidator:

    @pytest.mark.parametrize("value,expected", [
        ("PROJ, OPS ,,PROJ", ["PROJ", "OPS"]),
        (["A", " B ", ""], ["A", "B"]),
        (None, []),
        ("", []),
    ])
    def test_parse_project_keys(self, value, expected):
        assert DataValidator.parse_project_keys(value) == expected

    def test_url_validation(self):
        assert DataValidator.is_valid_url("https://acme.atlassian.net")
        assert not DataValidator.is_valid_url("ftp://acme")
        assert not DataValidator.is_valid_url("acme.atlassian.net")
        assert DataValidator.normalize_base_url(" https://dev.azure.com/acme/ ") == "https://dev.azure.com/acme"


def test_chunk_list():
    assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunk_list([], 3) == []


def test_mask_sensitive_data():
    masked = ConfigHelper.mask_sensitive_data({'api_token': 'abcdefgh', 'base_url': 'https://x'})
    assert masked['api_token'] == 'ab****gh'
    assert masked['base_url'] == 'https://x'
