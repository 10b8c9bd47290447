"""
Unit tests for settings loading and validation.
"""

from datetime import timedelta

import pytest

from config import ConfigInvalid, load_settings, parse_duration

ENV_VARS = [
    "DOMAINS", "EMAIL", "PFX_PASSWORD", "CHECK_INTERVAL", "RENEW_BEFORE_DAYS",
    "AZURE_KEYVAULT_NAME", "AZURE_KEYVAULT_URL", "AZURE_CERT_NAME",
    "ACME_DIRECTORY_URL", "ACME_STAGING_URL", "ACME_USE_STAGING",
    "HTTP_HOST", "HTTP_PORT", "SHUTDOWN_GRACE_SECONDS",
    "NOTIFY_EMAIL_ENABLED", "SMTP_HOST", "SMTP_PORT", "SMTP_USERNAME", "SMTP_PASSWORD",
    "SMTP_FROM", "SMTP_TO", "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def required_env(clean_env):
    clean_env.setenv("DOMAINS", "example.com,www.example.com")
    clean_env.setenv("EMAIL", "admin@example.com")
    clean_env.setenv("AZURE_KEYVAULT_NAME", "my-vault")
    clean_env.setenv("AZURE_CERT_NAME", "web")
    return clean_env


def load(**overrides):
    return load_settings(_env_file=None, **overrides)


class TestParseDuration:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("24h", timedelta(hours=24)),
            ("90m", timedelta(minutes=90)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("45s", timedelta(seconds=45)),
            ("500ms", timedelta(milliseconds=500)),
            ("1.5h", timedelta(minutes=90)),
            ("3600", timedelta(hours=1)),
            (60, timedelta(minutes=1)),
            (timedelta(days=1), timedelta(days=1)),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "tomorrow", "24x", "h", "1h 30m"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestDefaults:

    def test_required_only(self, required_env):
        settings = load()

        assert settings.domains == ["example.com", "www.example.com"]
        assert settings.email == "admin@example.com"
        assert settings.pfx_password == ""
        assert settings.check_interval == timedelta(hours=24)
        assert settings.renew_before_days == 30
        assert settings.http_host == "0.0.0.0"
        assert settings.http_port == 80
        assert settings.shutdown_grace_seconds == 5.0
        assert settings.notify_email_enabled is False

    def test_derived_urls(self, required_env):
        settings = load()

        assert settings.vault_url == "https://my-vault.vault.azure.net/"
        assert settings.directory_url == "https://acme-v02.api.letsencrypt.org/directory"

    def test_notification_addresses_default_to_email(self, required_env):
        settings = load()

        assert settings.notification_sender == "admin@example.com"
        assert settings.notification_recipient == "admin@example.com"


class TestEnvironment:

    def test_domains_trimmed_and_empty_entries_dropped(self, required_env):
        required_env.setenv("DOMAINS", " example.com , ,www.example.com,")

        assert load().domains == ["example.com", "www.example.com"]

    def test_overrides(self, required_env):
        required_env.setenv("CHECK_INTERVAL", "12h")
        required_env.setenv("RENEW_BEFORE_DAYS", "14")
        required_env.setenv("PFX_PASSWORD", "s3cret")
        required_env.setenv("ACME_USE_STAGING", "true")
        required_env.setenv("AZURE_KEYVAULT_URL", "https://vault.example.net/")
        required_env.setenv("SMTP_TO", "ops@example.com")

        settings = load()

        assert settings.check_interval == timedelta(hours=12)
        assert settings.renew_before_days == 14
        assert settings.pfx_password == "s3cret"
        assert settings.directory_url == "https://acme-staging-v02.api.letsencrypt.org/directory"
        assert settings.vault_url == "https://vault.example.net/"
        assert settings.notification_recipient == "ops@example.com"

    def test_field_names_accepted_as_overrides(self, required_env):
        settings = load(renew_before_days=7)
        assert settings.renew_before_days == 7


class TestValidation:

    @pytest.mark.parametrize("missing", ["DOMAINS", "EMAIL", "AZURE_KEYVAULT_NAME", "AZURE_CERT_NAME"])
    def test_missing_required(self, required_env, missing):
        required_env.delenv(missing)

        with pytest.raises(ConfigInvalid) as exc_info:
            load()

        assert exc_info.value.suggestion

    def test_blank_domains(self, required_env):
        required_env.setenv("DOMAINS", " , ")

        with pytest.raises(ConfigInvalid, match="domain"):
            load()

    def test_blank_email(self, required_env):
        required_env.setenv("EMAIL", "   ")

        with pytest.raises(ConfigInvalid):
            load()

    @pytest.mark.parametrize("value", ["soon", "0s", "0"])
    def test_bad_check_interval(self, required_env, value):
        required_env.setenv("CHECK_INTERVAL", value)

        with pytest.raises(ConfigInvalid, match="CHECK_INTERVAL|check_interval"):
            load()

    @pytest.mark.parametrize("value", ["-1", "thirty"])
    def test_bad_renew_before_days(self, required_env, value):
        required_env.setenv("RENEW_BEFORE_DAYS", value)

        with pytest.raises(ConfigInvalid):
            load()

    def test_zero_lead_time_allowed(self, required_env):
        required_env.setenv("RENEW_BEFORE_DAYS", "0")
        assert load().renew_before_days == 0


class TestNotificationFlag:

    @pytest.mark.parametrize("value", ["true", "TRUE", " True "])
    def test_true_enables(self, required_env, value):
        required_env.setenv("NOTIFY_EMAIL_ENABLED", value)
        assert load().notify_email_enabled is True

    @pytest.mark.parametrize("value", ["false", "enabled", "yes", "1", ""])
    def test_anything_else_disables(self, required_env, value):
        required_env.setenv("NOTIFY_EMAIL_ENABLED", value)
        assert load().notify_email_enabled is False
