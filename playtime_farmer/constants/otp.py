"""One-time code constants."""

from typing import Final


class OneTimeCode:
    """Shared-secret code derivation parameters."""

    STEP_SECONDS: Final[int] = 30
    GUARD_CODE_LENGTH: Final[int] = 5
    GUARD_ALPHABET: Final[str] = "23456789BCDFGHJKMNPQRTVWXY"
    TOTP_DIGITS: Final[int] = 6
