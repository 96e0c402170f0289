"""Custom exception classes for Playtime Farmer."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class FarmerError(Exception):
    """Base exception for Playtime Farmer."""

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize farmer error.

        Args:
            message: Error message
            recoverable: Whether the reconnect supervisor may retry after this error
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Configuration Errors
class ConfigurationError(FarmerError):
    """Configuration error occurred."""

    def __init__(
        self,
        message: str = "Configuration error",
        recoverable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class ProviderLoadError(ConfigurationError):
    """The configured session provider could not be imported or built."""

    def __init__(self, target: str, reason: str):
        self.target = target
        super().__init__(
            f"Cannot load session provider '{target}': {reason}",
            details={"provider": target},
        )


# Authentication Errors
class AuthenticationError(FarmerError):
    """Credentials were rejected; never retried automatically."""

    def __init__(
        self,
        message: str = "Authentication rejected",
        code: Optional[str] = None,
    ):
        self.code = code
        super().__init__(message, recoverable=False, details={"code": code})


class ChallengeRequiredError(AuthenticationError):
    """A one-time code is needed but nobody can supply it."""

    def __init__(self, message: str = "One-time code required but no handler is registered"):
        super().__init__(message, code="challenge_required")


class ChallengeTimeoutError(FarmerError):
    """No one-time code was supplied before the challenge timed out."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        message = "One-time code was not supplied in time"
        if timeout:
            message += f" ({timeout:.0f}s)"
        super().__init__(message, recoverable=True, details={"timeout": timeout})


class RateLimitError(FarmerError):
    """Provider throttled the account; handled by an account-level cool-down."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
    ):
        """
        Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Recommended wait time in seconds before retry
        """
        self.retry_after = retry_after
        if self.retry_after:
            message += f". Please wait {self.retry_after:.0f} seconds."
        # Not recoverable at the connection level; the fleet applies its own cool-down
        super().__init__(message, recoverable=False, details={"retry_after": self.retry_after})


# Connectivity Errors
class NetworkError(FarmerError):
    """Network connection error occurred."""

    def __init__(self, message: str = "Network error occurred", recoverable: bool = True):
        super().__init__(message, recoverable)


class LoginTimeoutError(NetworkError):
    """The provider did not answer a login attempt in time."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        message = "Login attempt timed out"
        if timeout:
            message += f" after {timeout:.0f}s"
        super().__init__(message)
        self.details = {"timeout": timeout}


class SessionExpiredError(FarmerError):
    """The cached session token is no longer accepted."""

    def __init__(self, message: str = "Session token is no longer valid"):
        super().__init__(message, recoverable=True)


class ReconnectExhaustedError(FarmerError):
    """All reconnect attempts failed."""

    def __init__(self, attempts: int, reason: Optional[str] = None):
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Failed to reconnect after {attempts} attempts (last reason: {reason or 'unknown'})",
            recoverable=False,
            details={"attempts": attempts, "reason": reason},
        )


# Lifecycle Errors
class InvalidStateTransitionError(FarmerError):
    """The orchestrator was asked to move along an edge its state machine does not have."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid state transition {current} -> {target}",
            recoverable=False,
            details={"from": current, "to": target},
        )


class ShutdownTimeoutError(FarmerError):
    """Graceful shutdown timed out."""

    def __init__(self, message: str = "Graceful shutdown timed out", timeout: Optional[int] = None):
        """
        Initialize shutdown timeout error.

        Args:
            message: Error message
            timeout: Timeout value in seconds
        """
        self.timeout = timeout
        details = {"timeout": timeout} if timeout else {}
        super().__init__(message, recoverable=False, details=details)
