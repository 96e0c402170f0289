"""Event bus."""

from .event_bus import EventBus, FarmerEvent, ProviderEvent

__all__ = ["EventBus", "FarmerEvent", "ProviderEvent"]
