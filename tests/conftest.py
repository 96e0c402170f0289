"""Pytest configuration and common fixtures."""

import asyncio
import os
import sys
from collections import deque
from pathlib import Path
from typing import Any, Deque, List, Optional, Tuple

# Set environment variables BEFORE any playtime_farmer imports
os.environ.setdefault("ENV", "testing")

from cryptography.fernet import Fernet

if not os.getenv("ENCRYPTION_KEY"):
    os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from loguru import logger

from playtime_farmer.models import (
    AccountIdentity,
    AccountInfo,
    ActivityEntry,
    LogOnDetails,
    PresenceState,
    ProviderError,
    ProviderErrorKind,
)
from playtime_farmer.services.events import EventBus, ProviderEvent
from playtime_farmer.services.farming.reconnect_supervisor import ReconnectSupervisor
from playtime_farmer.services.session.provider import SessionProvider
from playtime_farmer.services.session.session_orchestrator import SessionOrchestrator

Response = Tuple[str, Any]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSessionProvider(SessionProvider):
    """
    Scriptable provider.

    Each ``log_on`` (and each submitted one-time code) consumes the next queued
    response; when the queue is empty ``default_response`` is used.

    Responses: ``("logged_on", None)``, ``("error", ProviderErrorKind)``,
    ``("challenge", domain_hint)``, ``("silent", None)``, ``("disconnect", reason)``.
    """

    def __init__(self, token: Optional[bytes] = b"\xca\xfe\xba\xbe"):
        super().__init__()
        self.token = token
        self.responses: Deque[Response] = deque()
        self.default_response: Response = ("logged_on", None)
        self.log_on_calls: List[LogOnDetails] = []
        self.activity_calls: List[List[ActivityEntry]] = []
        self.presence_calls: List[PresenceState] = []
        self.submitted_codes: List[str] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.connected = False
        # Seconds connect() / disconnect() take, to hold a call in flight
        self.connect_delay = 0.0
        self.disconnect_delay = 0.0

    def queue(self, *responses: Response) -> "FakeSessionProvider":
        self.responses.extend(responses)
        return self

    def _next(self) -> Response:
        return self.responses.popleft() if self.responses else self.default_response

    def _respond(self, response: Response) -> None:
        kind, arg = response
        account_id = self.log_on_calls[-1].account_id if self.log_on_calls else "?"
        if kind == "logged_on":
            self.events.publish(
                ProviderEvent.LOGGED_ON,
                AccountInfo(account_id, display_name=account_id, session_token=self.token),
            )
        elif kind == "error":
            self.events.publish(
                ProviderEvent.ERROR, ProviderError(f"simulated {arg.value}", kind=arg)
            )
        elif kind == "challenge":
            self.events.publish(ProviderEvent.CHALLENGE_REQUIRED, arg, self._submit, False)
        elif kind == "disconnect":
            self.drop(arg)
        elif kind != "silent":
            raise ValueError(f"unknown fake response {kind}")

    def _submit(self, code: str) -> None:
        self.submitted_codes.append(code)
        self._respond(self._next())

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        self.connected = True
        self.events.publish(ProviderEvent.CONNECTED)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.disconnect_delay:
            await asyncio.sleep(self.disconnect_delay)
        self.connected = False

    async def log_on(self, details: LogOnDetails) -> None:
        self.log_on_calls.append(details)
        self._respond(self._next())

    async def log_off(self) -> None:
        self.connected = False

    async def set_activities(self, activities: List[ActivityEntry]) -> None:
        self.activity_calls.append(list(activities))

    async def set_presence_state(self, state: PresenceState) -> None:
        self.presence_calls.append(state)

    def drop(self, reason: str = "connection reset") -> None:
        """Simulate the remote side closing the session."""
        self.connected = False
        self.events.publish(ProviderEvent.DISCONNECTED, 2, reason)

    @property
    def broadcast_ids(self) -> List[int]:
        return [a.activity_id for a in self.activity_calls[-1]] if self.activity_calls else []


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Automatically set up test environment for all tests."""
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    monkeypatch.delenv("ENCRYPTION_KEY_OLD", raising=False)
    monkeypatch.setenv("ENV", "testing")
    yield


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during the test."""
    messages: List[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_provider():
    return FakeSessionProvider()


@pytest.fixture
def make_provider():
    """Factory fixture for additional providers."""
    return FakeSessionProvider


@pytest.fixture
def make_orchestrator(tmp_path, clock, fake_provider):
    """
    Build an orchestrator wired to the fake provider with fast timings.

    Keyword arguments override the defaults below.
    """

    def _make(**overrides) -> SessionOrchestrator:
        events = overrides.pop("events", None) or EventBus(name="test")
        supervisor_options = {
            "max_attempts": 3,
            "base_delay": 0.001,
            "max_delay": 0.01,
            "backoff_multiplier": 2.0,
        }
        supervisor_options.update(overrides.pop("supervisor_options", {}))
        options = {
            "identity": AccountIdentity("A"),
            "provider": fake_provider,
            "activities": [ActivityEntry(1), ActivityEntry(2)],
            "targets": {1: 1.0},
            "password": "hunter2",
            "data_dir": tmp_path,
            "events": events,
            "supervisor": ReconnectSupervisor(events, **supervisor_options),
            "checkpoint_interval": 3600,
            "login_timeout": 0.2,
            "challenge_timeout": 0.2,
            "provider_timeout": 0.2,
            "clock": clock,
        }
        options.update(overrides)
        identity = options.pop("identity")
        provider = options.pop("provider")
        activities = options.pop("activities")
        return SessionOrchestrator(identity, provider, activities, **options)

    return _make


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(interval)


@pytest.fixture
def until():
    return wait_until


@pytest.fixture
def restore_logger():
    """Undo ``setup_structured_logging`` after tests that call it."""
    yield
    logger.remove()
    logger.configure(extra={}, patcher=lambda record: None)
    logger.add(sys.stderr)
