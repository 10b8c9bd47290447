"""
Configuration utilities and settings management.

Reads the renewer's settings from environment variables (or a local
.env file) once at startup and validates them before anything runs.
"""

import re
from datetime import timedelta
from typing import Annotated

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class ConfigInvalid(Exception):
    """Configuration is missing or malformed; the service cannot start."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


def parse_duration(value) -> timedelta:
    """
    Parse a check interval.

    Accepts Go-style duration strings ("24h", "1h30m", "90s", "500ms"),
    plain numbers of seconds, or a timedelta.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip().lower()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))

    parts = _DURATION_PART.findall(text)
    if not parts or "".join(number + unit for number, unit in parts) != text:
        raise ValueError(f"invalid duration {value!r}, expected e.g. '24h', '90m' or '1h30m'")

    return timedelta(seconds=sum(float(number) * _DURATION_UNITS[unit] for number, unit in parts))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Certificate
    domains: Annotated[list[str], NoDecode] = Field(
        ..., alias="DOMAINS", description="Comma-separated hostnames covered by the certificate"
    )
    email: str = Field(..., alias="EMAIL", description="ACME account contact and default notification address")
    pfx_password: str = Field(default="", alias="PFX_PASSWORD", description="Password protecting the PFX bundle")

    # Renewal policy
    check_interval: timedelta = Field(
        default=timedelta(hours=24), alias="CHECK_INTERVAL", description="Time between certificate checks"
    )
    renew_before_days: int = Field(
        default=30, alias="RENEW_BEFORE_DAYS", description="Days before expiry to trigger renewal"
    )

    # Azure Key Vault
    azure_keyvault_name: str = Field(..., alias="AZURE_KEYVAULT_NAME")
    azure_keyvault_url: str | None = Field(
        default=None, alias="AZURE_KEYVAULT_URL", description="Overrides the URL derived from the vault name"
    )
    azure_cert_name: str = Field(..., alias="AZURE_CERT_NAME", description="Certificate object name in Key Vault")
    azure_tenant_id: str = Field(default="", alias="AZURE_TENANT_ID")
    azure_client_id: str = Field(default="", alias="AZURE_CLIENT_ID")
    azure_client_secret: str = Field(default="", alias="AZURE_CLIENT_SECRET")

    # ACME/Let's Encrypt Configuration
    acme_directory_url: str = Field(
        default="https://acme-v02.api.letsencrypt.org/directory",
        alias="ACME_DIRECTORY_URL",
        description="ACME directory URL (production Let's Encrypt)",
    )
    acme_staging_url: str = Field(
        default="https://acme-staging-v02.api.letsencrypt.org/directory",
        alias="ACME_STAGING_URL",
        description="ACME staging directory URL for testing",
    )
    acme_use_staging: bool = Field(
        default=False,
        alias="ACME_USE_STAGING",
        description="Use staging environment to avoid rate limits during testing",
    )

    # HTTP responder
    http_host: str = Field(default="0.0.0.0", alias="HTTP_HOST")
    http_port: int = Field(default=80, alias="HTTP_PORT")
    shutdown_grace_seconds: float = Field(
        default=5.0, alias="SHUTDOWN_GRACE_SECONDS", description="Grace period for in-flight requests on shutdown"
    )

    # Email notifications
    notify_email_enabled: bool = Field(default=False, alias="NOTIFY_EMAIL_ENABLED")
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str = Field(default="", alias="SMTP_USERNAME")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_from: str = Field(default="", alias="SMTP_FROM", description="Defaults to EMAIL")
    smtp_to: str = Field(default="", alias="SMTP_TO", description="Defaults to EMAIL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file
        populate_by_name = True

    @field_validator("domains", mode="before")
    @classmethod
    def _split_domains(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        domains = [d.strip() for d in value if d and d.strip()]
        if not domains:
            raise ValueError("at least one domain is required")
        return domains

    @field_validator("email", "azure_keyvault_name", "azure_cert_name")
    @classmethod
    def _required_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("check_interval", mode="before")
    @classmethod
    def _parse_check_interval(cls, value):
        interval = parse_duration(value)
        if interval.total_seconds() <= 0:
            raise ValueError("must be a positive duration")
        return interval

    @field_validator("notify_email_enabled", mode="before")
    @classmethod
    def _enabled_flag(cls, value):
        # Only "true" enables; any other string disables rather than failing
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return value

    @field_validator("renew_before_days")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def directory_url(self) -> str:
        """Get the ACME directory URL based on settings."""
        if self.acme_use_staging:
            return self.acme_staging_url
        return self.acme_directory_url

    @property
    def vault_url(self) -> str:
        if self.azure_keyvault_url:
            return self.azure_keyvault_url
        return f"https://{self.azure_keyvault_name}.vault.azure.net/"

    @property
    def notification_sender(self) -> str:
        return self.smtp_from or self.email

    @property
    def notification_recipient(self) -> str:
        return self.smtp_to or self.email


def load_settings(**overrides) -> Settings:
    """
    Build and validate settings.

    Raises:
        ConfigInvalid: when a required value is missing or a value is malformed
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "settings"
            problems.append(f"{field}: {error['msg']}")
        raise ConfigInvalid(
            "Invalid configuration: " + "; ".join(problems),
            suggestion="Set DOMAINS, EMAIL, AZURE_KEYVAULT_NAME and AZURE_CERT_NAME",
        ) from e
