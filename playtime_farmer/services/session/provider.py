"""Session provider interface and loader.

The provider owns the wire protocol. It exposes login, telemetry and teardown
operations and reports outcomes through its ``events`` bus:

- ``connected()``
- ``challenge_required(domain_hint, submit_code, was_last_code_wrong)``
- ``logged_on(AccountInfo)``
- ``error(ProviderError)``
- ``disconnected(reason_code, reason_text)``
"""

import importlib
from abc import ABC, abstractmethod
from typing import Callable, List

from playtime_farmer.core.exceptions import ProviderLoadError
from playtime_farmer.models import ActivityEntry, LogOnDetails, PresenceState
from playtime_farmer.services.events import EventBus

ProviderFactory = Callable[[], "SessionProvider"]


class SessionProvider(ABC):
    """Abstract base class for session providers."""

    def __init__(self) -> None:
        self.events = EventBus(name=type(self).__name__)

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport; safe to call when not connected."""

    @abstractmethod
    async def log_on(self, details: LogOnDetails) -> None:
        """Start a login; the outcome arrives as events."""

    @abstractmethod
    async def log_off(self) -> None:
        """End the session."""

    @abstractmethod
    async def set_activities(self, activities: List[ActivityEntry]) -> None:
        """Report the given activities as currently active (empty list clears)."""

    @abstractmethod
    async def set_presence_state(self, state: PresenceState) -> None:
        """Change the presence shown to other users."""


def load_provider_factory(target: str) -> ProviderFactory:
    """
    Resolve a ``package.module:attribute`` path to a provider factory.

    The attribute must be a zero-argument callable (typically the provider
    class) returning a ``SessionProvider``.

    Args:
        target: Dotted import path with ``:`` before the attribute

    Returns:
        The factory

    Raises:
        ProviderLoadError: If the path is malformed, the import fails or the
            attribute is missing or not callable
    """
    module_path, sep, attr_path = target.partition(":")
    if not sep or not module_path or not attr_path:
        raise ProviderLoadError(target, "expected 'package.module:attribute'")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ProviderLoadError(target, str(e)) from e

    obj = module
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ProviderLoadError(target, f"attribute '{attr_path}' not found") from e

    if not callable(obj):
        raise ProviderLoadError(target, f"'{attr_path}' is not callable")
    return obj
