"""Unified constants and configuration defaults for Playtime Farmer.

All classes can be imported directly from this package:
    from playtime_farmer.constants import Reconnect, Timeouts, Intervals
"""

# Logging
from .logging import LogEmoji

# One-time codes
from .otp import OneTimeCode

# Resilience-related
from .resilience import (
    Persistence,
    RateLimits,
    Reconnect,
)

# Timing-related
from .timing import (
    Delays,
    Intervals,
    Timeouts,
)

__all__ = [
    # Timing
    "Timeouts",
    "Intervals",
    "Delays",
    # Resilience
    "Reconnect",
    "RateLimits",
    "Persistence",
    # Logging
    "LogEmoji",
    # One-time codes
    "OneTimeCode",
]
