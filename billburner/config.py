"""Application configuration management using Pydantic Settings.

This module provides a centralized configuration class that loads settings
from environment variables (.env file). Provider passwords, mailbox passwords
and the InfluxDB token are wrapped in SecretStr so they never end up in logs.
"""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent


class MailboxConfig(BaseModel):
    """Connection parameters for one IMAP mailbox."""

    host: str
    username: str
    password: SecretStr
    secure: bool = False
    timeout_seconds: float = 20.0

    @property
    def port(self) -> int:
        return 993 if self.secure else 143


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Provider credentials follow a ``<prefix>_username`` / ``<prefix>_password``
    naming scheme. ``providers.yaml`` refers to a provider's credentials (and
    to an OTP mailbox) by that prefix.
    """

    # Provider credentials
    ameren_username: str = Field(default="", description="Power portal login email")
    ameren_password: SecretStr = Field(default=SecretStr(""))
    spire_username: str = Field(default="", description="Gas portal login email")
    spire_password: SecretStr = Field(default=SecretStr(""))
    stlmsd_username: str = Field(default="", description="Sewer portal username")
    stlmsd_password: SecretStr = Field(default=SecretStr(""))
    stlo_egov_username: str = Field(default="", description="Water portal username")
    stlo_egov_password: SecretStr = Field(default=SecretStr(""))
    att_username: str = Field(default="", description="Wireless/Internet portal user ID")
    att_password: SecretStr = Field(default=SecretStr(""))
    pennymac_username: str = Field(default="", description="Mortgage portal username")
    pennymac_password: SecretStr = Field(default=SecretStr(""))
    state_farm_username: str = Field(default="", description="Insurance portal username")
    state_farm_password: SecretStr = Field(default=SecretStr(""))

    # OTP mailboxes
    imap_host: str = Field(default="", description="IMAP server host used for OTP mail")
    imap_secure: bool = Field(default=False, description="Use IMAP over TLS (port 993)")
    imap_username: str = Field(default="", description="Mailbox receiving mortgage codes")
    imap_password: SecretStr = Field(default=SecretStr(""))
    email_username: str = Field(default="", description="Mailbox receiving insurance codes")
    email_password: SecretStr = Field(default=SecretStr(""))
    otp_timeout_seconds: int = Field(
        default=60, description="How long to keep polling the mailbox for a code"
    )
    otp_poll_interval_seconds: float = Field(
        default=5.0, description="Delay between mailbox searches"
    )
    imap_timeout_seconds: float = Field(
        default=20.0, description="Socket timeout for every IMAP operation"
    )

    # Sink Configuration
    sink_backend: str = Field(
        default="influx", description="Where bills are written (influx, sqlite or none)"
    )
    influxdb_url: str = Field(default="http://localhost:8086")
    influxdb_token: SecretStr = Field(default=SecretStr(""))
    influxdb_org: str = Field(default="")
    influxdb_bucket: str = Field(default="bills")
    influxdb_timeout_ms: int = Field(
        default=10000, description="HTTP timeout for InfluxDB writes"
    )
    sink_db_path: str = Field(
        default="data/bills.db", description="SQLite database used by the sqlite sink"
    )

    # Browser Configuration
    browser_profile_dir: str = Field(
        default=str(Path.home() / ".config" / "billburner" / "Profile"),
        description="Directory for the Playwright persistent Chromium profile",
    )
    browser_headless: bool = Field(default=False, description="Run browser in headless mode")
    browser_fresh_profile: bool = Field(
        default=True, description="Delete the profile directory before launching"
    )
    browser_stealth: bool = Field(
        default=True, description="Install the automation-detection bypass script"
    )
    screenshot_dir: str | None = Field(
        default=None, description="Where to save a screenshot when a provider fails"
    )

    # Timing Configuration
    watchdog_seconds: float = Field(
        default=120.0, description="Wall-clock limit for the whole run"
    )
    step_timeout_ms: int = Field(
        default=15000, description="Default bound for every await step"
    )
    poll_interval_ms: int = Field(default=250, description="Bounded poll interval")

    # Provider Configuration
    providers_path: str = Field(
        default=str(PACKAGE_DIR / "providers.yaml"),
        description="Path to the provider workflow definitions",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="console", description="Log output format (json or console)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def credentials(self, prefix: str) -> tuple[str, str]:
        """Return the ``(username, password)`` pair stored under ``prefix``.

        Raises:
            KeyError: If no credential fields exist for the prefix.
        """
        try:
            username = getattr(self, f"{prefix}_username")
            password = getattr(self, f"{prefix}_password")
        except AttributeError as e:
            raise KeyError(f"Unknown credential prefix: {prefix}") from e
        return username, password.get_secret_value()

    def mailbox(self, prefix: str) -> MailboxConfig:
        """Build the mailbox configuration for the credentials under ``prefix``."""
        username, password = self.credentials(prefix)
        return MailboxConfig(
            host=self.imap_host,
            username=username,
            password=SecretStr(password),
            secure=self.imap_secure,
            timeout_seconds=self.imap_timeout_seconds,
        )


# Singleton instance - import this to access settings throughout the application
settings = Settings()
