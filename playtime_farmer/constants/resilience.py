"""Resilience-related constants (reconnect backoff, rate-limit cool-down)."""

from typing import Final


class Reconnect:
    """Reconnect supervisor defaults."""

    MAX_ATTEMPTS: Final[int] = 10
    INITIAL_DELAY_SECONDS: Final[float] = 3.0
    MAX_DELAY_SECONDS: Final[float] = 60.0
    BACKOFF_MULTIPLIER: Final[float] = 1.5


class RateLimits:
    """Account-level cool-down applied after the provider reports rate limiting."""

    ACCOUNT_COOLDOWN_SECONDS: Final[int] = 900
    COOLDOWN_JITTER_SECONDS: Final[int] = 30
    MAX_COOLDOWN_CYCLES: Final[int] = 3


class Persistence:
    """Atomic file replacement retry settings."""

    REPLACE_ATTEMPTS: Final[int] = 3
    REPLACE_WAIT_SECONDS: Final[float] = 0.05
