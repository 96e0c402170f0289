"""Configuration: environment settings and the fleet file."""

from .config_loader import load_config, resolve_password
from .config_models import AccountConfig, ActivityConfig, FleetConfig, ReconnectConfig
from .settings import FarmerSettings, get_settings, reset_settings

__all__ = [
    "load_config",
    "resolve_password",
    "AccountConfig",
    "ActivityConfig",
    "FleetConfig",
    "ReconnectConfig",
    "FarmerSettings",
    "get_settings",
    "reset_settings",
]
