"""Playtime Farmer - keeps presence sessions alive and accumulates activity playtime."""

import importlib as _importlib
from typing import TYPE_CHECKING, Any

__version__ = "0.4.0"
__license__ = "MIT"

if TYPE_CHECKING:
    from .core.config.config_loader import load_config as load_config
    from .core.logger import setup_structured_logging as setup_structured_logging
    from .services.events.event_bus import EventBus as EventBus
    from .services.farming.fleet_runner import FleetRunner as FleetRunner
    from .services.farming.playtime_accumulator import (
        PlaytimeAccumulator as PlaytimeAccumulator,
    )
    from .services.farming.reconnect_supervisor import (
        ReconnectSupervisor as ReconnectSupervisor,
    )
    from .services.session.session_cache import SessionCache as SessionCache
    from .services.session.session_orchestrator import (
        SessionOrchestrator as SessionOrchestrator,
    )

# Explicit lazy-loading map: name -> (module_path, attribute_name)
_LAZY_MODULE_MAP = {
    "load_config": ("playtime_farmer.core.config.config_loader", "load_config"),
    "setup_structured_logging": ("playtime_farmer.core.logger", "setup_structured_logging"),
    "EventBus": ("playtime_farmer.services.events.event_bus", "EventBus"),
    "FleetRunner": ("playtime_farmer.services.farming.fleet_runner", "FleetRunner"),
    "PlaytimeAccumulator": (
        "playtime_farmer.services.farming.playtime_accumulator",
        "PlaytimeAccumulator",
    ),
    "ReconnectSupervisor": (
        "playtime_farmer.services.farming.reconnect_supervisor",
        "ReconnectSupervisor",
    ),
    "SessionCache": ("playtime_farmer.services.session.session_cache", "SessionCache"),
    "SessionOrchestrator": (
        "playtime_farmer.services.session.session_orchestrator",
        "SessionOrchestrator",
    ),
}

__all__ = list(_LAZY_MODULE_MAP.keys())


def __getattr__(name: str) -> Any:
    """Lazy import with explicit mapping - importlib based."""
    if name in _LAZY_MODULE_MAP:
        module_path, attr_name = _LAZY_MODULE_MAP[name]
        module = _importlib.import_module(module_path)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
