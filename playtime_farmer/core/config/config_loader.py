"""Configuration loader with YAML and environment variable support."""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from playtime_farmer.core.config.config_models import AccountConfig, FleetConfig
from playtime_farmer.core.exceptions import ConfigurationError
from playtime_farmer.utils.encryption import decrypt_password

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def load_env_variables(env_path: Union[str, Path] = ".env") -> None:
    """Load environment variables from a .env file if it exists."""
    env_path = Path(env_path)
    if env_path.exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded environment variables from {env_path}")


def substitute_env_vars(value: Any) -> Any:
    """
    Recursively substitute ``${VAR}`` references in configuration values.

    Unset variables become empty strings.

    Args:
        value: Configuration value (string, dict, list, etc.)

    Returns:
        Value with environment variables substituted
    """
    if isinstance(value, str):
        for name in _ENV_PATTERN.findall(value):
            env_value = os.getenv(name)
            if env_value is None:
                logger.debug(f"Environment variable '{name}' not set, using empty string")
                env_value = ""
            value = value.replace(f"${{{name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    else:
        return value


def _format_validation_error(error: ValidationError) -> list:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    ]


def load_config(
    config_path: Union[str, Path], env_path: Optional[Union[str, Path]] = ".env"
) -> FleetConfig:
    """
    Load and validate the fleet configuration.

    Args:
        config_path: YAML file
        env_path: .env file loaded before substitution (None to skip)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    if env_path is not None:
        load_env_variables(env_path)

    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    try:
        config = FleetConfig.model_validate(substitute_env_vars(raw))
    except ValidationError as e:
        problems = _format_validation_error(e)
        raise ConfigurationError(
            f"Invalid configuration in {path}: " + "; ".join(problems),
            details={"errors": problems},
        ) from e

    logger.info(f"Configuration loaded from {path} ({len(config.accounts)} account(s))")
    return config


def resolve_password(account: AccountConfig, encryption_key: Optional[str] = None) -> str:
    """
    Return the plain-text password of ``account``.

    Raises:
        ConfigurationError: If an encrypted password cannot be decrypted
    """
    secret = account.password.get_secret_value()
    if not account.password_encrypted:
        return secret
    try:
        return decrypt_password(secret, encryption_key)
    except ValueError as e:
        raise ConfigurationError(
            f"Cannot decrypt password of account '{account.account_id}': {e}"
        ) from e
