"""Timing-related constants (timeouts, intervals, delays) - all in SECONDS."""

from typing import Final


class Timeouts:
    """Timeout values."""

    LOGIN_SECONDS: Final[float] = 15.0
    CHALLENGE_SECONDS: Final[float] = 120.0
    PROVIDER_TEARDOWN_SECONDS: Final[float] = 5.0
    SHUTDOWN_SECONDS: Final[int] = 30


class Intervals:
    """Interval values."""

    CHECKPOINT_SECONDS: Final[float] = 60.0
    CHECKPOINT_MIN_SECONDS: Final[float] = 1.0
    CHECKPOINT_MAX_SECONDS: Final[float] = 3600.0


class Delays:
    """Fleet start-up delays."""

    FLEET_START_SECONDS: Final[float] = 2.0
    FLEET_START_MIN_RECOMMENDED_SECONDS: Final[float] = 2.0
