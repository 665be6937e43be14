"""Settings loading and validation."""

import pytest
from pydantic import ValidationError

from tokensmith.config import MIN_TOKEN_BYTES, Settings, get_settings, reset_settings_cache


class TestSettingsDefaults:
    def test_defaults(self):
        settings = Settings()

        assert settings.access_token_ttl_minutes == 30
        assert settings.refresh_token_ttl_minutes == 480
        assert settings.token_bytes == 32
        assert settings.credential_key_prefix == "cred"
        assert settings.database_url is None

    def test_blank_database_url_means_memory_users(self):
        assert Settings(database_url="").database_url is None


class TestSettingsValidation:
    def test_token_bytes_floor(self):
        with pytest.raises(ValidationError):
            Settings(token_bytes=MIN_TOKEN_BYTES - 1)
        assert Settings(token_bytes=MIN_TOKEN_BYTES).token_bytes == MIN_TOKEN_BYTES

    @pytest.mark.parametrize("field", ["access_token_ttl_minutes", "refresh_token_ttl_minutes"])
    def test_ttls_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_refresh_must_outlive_access(self):
        with pytest.raises(ValidationError, match="refresh_token_ttl_minutes"):
            Settings(access_token_ttl_minutes=60, refresh_token_ttl_minutes=60)

    def test_store_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(store_timeout_seconds=0)


class TestSettingsFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
        monkeypatch.setenv("REFRESH_TOKEN_TTL_MINUTES", "60")
        monkeypatch.setenv("ALLOW_SIGNUP", "false")
        monkeypatch.setenv("CREDENTIAL_KEY_PREFIX", "auth")

        settings = Settings.from_env()

        assert settings.access_token_ttl_minutes == 5
        assert settings.refresh_token_ttl_minutes == 60
        assert settings.allow_signup is False
        assert settings.credential_key_prefix == "auth"

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        reset_settings_cache()
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("TOKEN_BYTES", "48")
        assert get_settings().token_bytes == first.token_bytes

        reset_settings_cache()
        assert get_settings().token_bytes == 48
        reset_settings_cache()
