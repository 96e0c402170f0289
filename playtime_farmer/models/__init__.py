"""Domain models."""

from .farming import (
    AccountOutcome,
    AccountIdentity,
    ActivityEntry,
    ConnectionState,
    OrchestratorState,
    OrchestratorStatus,
    OTPFormat,
    PresenceState,
    SupervisorState,
    TargetHours,
)
from .provider import AccountInfo, LogOnDetails, ProviderError, ProviderErrorKind

__all__ = [
    "AccountOutcome",
    "AccountIdentity",
    "ActivityEntry",
    "ConnectionState",
    "OrchestratorState",
    "OrchestratorStatus",
    "OTPFormat",
    "PresenceState",
    "SupervisorState",
    "TargetHours",
    "AccountInfo",
    "LogOnDetails",
    "ProviderError",
    "ProviderErrorKind",
]
