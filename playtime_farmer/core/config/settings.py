"""Application settings with Pydantic validation."""

import base64
import binascii
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from playtime_farmer.constants import Intervals, RateLimits, Timeouts


class FarmerSettings(BaseSettings):
    """Process-wide settings read from the environment and ``.env``."""

    # Environment
    env: str = Field(
        default="production", description="Environment (production, development, testing)"
    )

    @model_validator(mode="before")
    @classmethod
    def default_env_for_pytest(cls, data: Any) -> Any:
        """Auto-detect testing environment when running under pytest."""
        import sys

        if not isinstance(data, dict):
            return data

        if ("env" not in data or not data.get("env")) and "pytest" in sys.modules:
            data["env"] = "testing"

        return data

    # Logging
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(default=True, description="Write the log file as JSON lines")
    logs_dir: Path = Field(default=Path("logs"), description="Directory for log files")

    # Files
    data_dir: Path = Field(
        default=Path("data"), description="Directory for session caches and ledgers"
    )
    config_path: Path = Field(
        default=Path("config/config.yaml"), description="Fleet configuration file"
    )

    # Session provider, overridable per fleet file
    provider: Optional[str] = Field(
        default=None, description="Session provider factory as 'package.module:attribute'"
    )

    # Encryption
    encryption_key: Optional[SecretStr] = Field(
        default=None,
        description=(
            "Base64-encoded Fernet key used to decrypt passwords stored encrypted. "
            'Generate with: python -c "from cryptography.fernet import Fernet; '
            'print(Fernet.generate_key().decode())"'
        ),
    )

    # Timing
    checkpoint_interval: float = Field(
        default=Intervals.CHECKPOINT_SECONDS,
        ge=Intervals.CHECKPOINT_MIN_SECONDS,
        le=Intervals.CHECKPOINT_MAX_SECONDS,
        description="Seconds between ledger checkpoints",
    )
    login_timeout: float = Field(
        default=Timeouts.LOGIN_SECONDS, gt=0, description="Seconds to wait for a login outcome"
    )
    challenge_timeout: float = Field(
        default=Timeouts.CHALLENGE_SECONDS,
        gt=0,
        description="Seconds to wait for an interactively entered one-time code",
    )
    shutdown_timeout: int = Field(
        default=Timeouts.SHUTDOWN_SECONDS,
        ge=5,
        le=300,
        description="Seconds allowed for a graceful fleet shutdown",
    )

    # Rate limiting
    account_cooldown_seconds: float = Field(
        default=RateLimits.ACCOUNT_COOLDOWN_SECONDS,
        ge=0,
        description="Account-level cool-down after the provider rate limits an account",
    )
    max_rate_limit_cycles: int = Field(
        default=RateLimits.MAX_COOLDOWN_CYCLES,
        ge=0,
        le=20,
        description="Cool-downs before a rate-limited account is given up",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env
        env_ignore_empty=True,
    )

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key_format(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        """Validate encryption key format (should be url-safe base64 of 32 bytes)."""
        if v is None:
            return None

        try:
            decoded = base64.urlsafe_b64decode(v.get_secret_value())
        except (binascii.Error, ValueError):
            raise ValueError("ENCRYPTION_KEY must be a valid base64-encoded string")

        if len(decoded) != 32:
            raise ValueError(
                f"ENCRYPTION_KEY must decode to exactly 32 bytes, got {len(decoded)}"
            )
        return v

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ["production", "development", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f'ENV must be one of: {", ".join(allowed)}')
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(allowed)}')
        return v_upper

    def get_encryption_key(self) -> Optional[str]:
        return self.encryption_key.get_secret_value() if self.encryption_key else None

    def is_development(self) -> bool:
        return self.env in ("development", "testing")


_settings: Optional[FarmerSettings] = None


def get_settings() -> FarmerSettings:
    """
    Get application settings singleton.

    Returns:
        FarmerSettings instance

    Raises:
        ValidationError: If settings are invalid
    """
    global _settings
    if _settings is None:
        _settings = FarmerSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (for testing)."""
    global _settings
    _settings = None
