"""Tests for custom exceptions."""

import pytest

from playtime_farmer.core.exceptions import (
    AuthenticationError,
    ChallengeRequiredError,
    ChallengeTimeoutError,
    ConfigurationError,
    FarmerError,
    InvalidStateTransitionError,
    LoginTimeoutError,
    NetworkError,
    ProviderLoadError,
    RateLimitError,
    ReconnectExhaustedError,
    SessionExpiredError,
    ShutdownTimeoutError,
)
from playtime_farmer.models import ProviderError, ProviderErrorKind
from playtime_farmer.services.session.session_orchestrator import map_provider_error


def test_farmer_error():
    """Test FarmerError base exception."""
    error = FarmerError("Test error")
    assert error.message == "Test error"
    assert error.recoverable is True
    assert error.details == {}
    assert str(error) == "Test error"


def test_to_dict():
    """Test serialization used in account outcomes."""
    data = NetworkError("socket closed").to_dict()

    assert data["error"] == "NetworkError"
    assert data["message"] == "socket closed"
    assert data["recoverable"] is True
    assert "timestamp" in data


@pytest.mark.parametrize(
    "error,recoverable",
    [
        (ConfigurationError(), False),
        (AuthenticationError(), False),
        (ChallengeRequiredError(), False),
        (RateLimitError(), False),
        (ReconnectExhaustedError(3), False),
        (InvalidStateTransitionError("failed", "connecting"), False),
        (ShutdownTimeoutError(), False),
        (NetworkError(), True),
        (LoginTimeoutError(10), True),
        (ChallengeTimeoutError(60), True),
        (SessionExpiredError(), True),
    ],
)
def test_recoverability(error, recoverable):
    assert isinstance(error, FarmerError)
    assert error.recoverable is recoverable


def test_hierarchy():
    assert issubclass(ProviderLoadError, ConfigurationError)
    assert issubclass(ChallengeRequiredError, AuthenticationError)
    assert issubclass(LoginTimeoutError, NetworkError)


def test_rate_limit_message():
    error = RateLimitError("Too many logins", retry_after=60)
    assert str(error) == "Too many logins. Please wait 60 seconds."
    assert error.details == {"retry_after": 60}


def test_login_timeout_details():
    error = LoginTimeoutError(15)
    assert "15s" in error.message
    assert error.details == {"timeout": 15}


def test_reconnect_exhausted_message():
    error = ReconnectExhaustedError(10, "connection reset")
    assert error.attempts == 10
    assert "connection reset" in str(error)


def test_provider_load_error():
    error = ProviderLoadError("pkg:thing", "boom")
    assert error.details == {"provider": "pkg:thing"}
    assert "pkg:thing" in str(error)


@pytest.mark.parametrize(
    "kind,expected",
    [
        (ProviderErrorKind.INVALID_SESSION_TOKEN, SessionExpiredError),
        (ProviderErrorKind.INVALID_CREDENTIALS, AuthenticationError),
        (ProviderErrorKind.ACCOUNT_LOCKED, AuthenticationError),
        (ProviderErrorKind.ACCESS_DENIED, AuthenticationError),
        (ProviderErrorKind.RATE_LIMITED, RateLimitError),
        (ProviderErrorKind.NETWORK, NetworkError),
        (ProviderErrorKind.TIMEOUT, NetworkError),
        (ProviderErrorKind.SERVICE_UNAVAILABLE, NetworkError),
        (ProviderErrorKind.UNKNOWN, NetworkError),
    ],
)
def test_provider_error_mapping(kind, expected):
    error = map_provider_error(ProviderError("provider said no", kind=kind))
    assert type(error) is expected


def test_rate_limit_mapping_keeps_retry_after():
    error = map_provider_error(
        ProviderError("slow down", kind=ProviderErrorKind.RATE_LIMITED, retry_after=30)
    )
    assert error.retry_after == 30
