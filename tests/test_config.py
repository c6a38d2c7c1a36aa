"""
Tests for settings loading
"""
import pytest

from adherence_sync.core.config import ConfigurationError, load_settings

ENV = {
    "WISEPILL_BASE_URL": "https://registry.test/api",
    "WISEPILL_USERNAME": "user",
    "WISEPILL_SECRET": "secret",
    "DHIS2_BASE_URL": "https://tracker.test",
    "DHIS2_PAT": "d2pat_abc",
    "TIME_ZONE": "Africa/Nairobi",
    "CLOSE_PREVIOUS_EPISODE": "true",
    "PORT": "8080",
}


@pytest.fixture
def env(monkeypatch):
    for name in ("SECRET_KEY", "DATABASE_URL", "REQUEST_TIMEOUT", "DHIS2_USERNAME", "DHIS2_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_settings_from_environment(env, tmp_path):
    settings = load_settings(tmp_path / ".env")

    assert settings.registry_base_url == "https://registry.test/api"
    assert settings.tracker_token == "d2pat_abc"
    assert settings.time_zone == "Africa/Nairobi"
    assert settings.close_previous_episode is True
    assert settings.port == 8080
    assert settings.secret_key is None


def test_dotenv_file_fills_missing_values_only(env, tmp_path):
    env.delenv("DHIS2_BASE_URL")
    dotenv = tmp_path / ".env"
    dotenv.write_text("DHIS2_BASE_URL=https://from-file.test\nTIME_ZONE=UTC\n")

    settings = load_settings(dotenv)

    assert settings.tracker_base_url == "https://from-file.test"
    assert settings.time_zone == "Africa/Nairobi"


def test_missing_base_url_is_a_configuration_error(env, tmp_path):
    env.delenv("WISEPILL_BASE_URL")

    with pytest.raises(ConfigurationError, match="WISEPILL_BASE_URL"):
        load_settings(tmp_path / ".env")


def test_time_zone_defaults_to_utc(env, tmp_path):
    env.delenv("TIME_ZONE")
    assert load_settings(tmp_path / ".env").time_zone == "UTC"


def test_time_zone_abbreviation_is_rejected(env, tmp_path):
    env.setenv("TIME_ZONE", "CEST")

    with pytest.raises(ConfigurationError, match="IANA"):
        load_settings(tmp_path / ".env")
