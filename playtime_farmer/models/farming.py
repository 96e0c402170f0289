"""Data models for farming sessions.

This module contains the data classes and enums shared by the accumulator,
the reconnect supervisor and the session orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from playtime_farmer.constants import Reconnect

# activity_id -> target hours; activities without an entry farm indefinitely
TargetHours = Mapping[int, float]


class PresenceState(str, Enum):
    """Presence shown to other users while farming."""

    ONLINE = "online"
    INVISIBLE = "invisible"
    AWAY = "away"
    OFFLINE = "offline"


class OTPFormat(str, Enum):
    """How one-time codes are derived from a shared secret."""

    STEAM = "steam"
    TOTP = "totp"


class OrchestratorState(Enum):
    """Account lifecycle states."""

    LOGGED_OUT = "logged_out"
    CONNECTING = "connecting"
    CHALLENGE_REQUIRED = "challenge_required"
    LOGGED_ON = "logged_on"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class SupervisorState(Enum):
    """Reconnect supervisor states."""

    IDLE = "idle"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class AccountIdentity:
    """
    Who an orchestrator logs in as.

    Attributes:
        account_id: Account name used for login, file names and log lines
        otp_seed: Optional shared secret used to derive one-time codes
        otp_format: Algorithm used with ``otp_seed``
    """

    account_id: str
    otp_seed: Optional[str] = field(default=None, repr=False)
    otp_format: OTPFormat = OTPFormat.STEAM


@dataclass(frozen=True)
class ActivityEntry:
    """One activity an account reports as currently active."""

    activity_id: int
    label: str = ""


@dataclass
class ConnectionState:
    """In-memory connection bookkeeping owned by one reconnect supervisor."""

    connected: bool = False
    reconnecting: bool = False
    attempt: int = 0
    max_attempts: int = Reconnect.MAX_ATTEMPTS
    base_delay: float = Reconnect.INITIAL_DELAY_SECONDS
    max_delay: float = Reconnect.MAX_DELAY_SECONDS
    backoff_multiplier: float = Reconnect.BACKOFF_MULTIPLIER
    last_disconnect_reason: Optional[str] = None


@dataclass
class OrchestratorStatus:
    """Point-in-time snapshot used by the console ``status`` command."""

    account_id: str
    state: OrchestratorState
    connected: bool
    reconnecting: bool
    attempt: int
    max_attempts: int
    activities: List[ActivityEntry]
    accumulated_hours: Dict[int, float]
    progress: Dict[int, float]
    last_error: Optional[str] = None


@dataclass
class AccountOutcome:
    """How one account's run ended."""

    account_id: str
    status: str
    error: Optional[Dict[str, Any]] = None
    accumulated_seconds: Dict[int, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in ("stopped", "not_started")
