"""One-time code derivation from a pre-shared secret."""

import base64
import binascii
import hashlib
import hmac
import struct
import time
from typing import Optional, Union

import pyotp

from playtime_farmer.constants import OneTimeCode
from playtime_farmer.models import OTPFormat


def _guard_code(seed: str, timestamp: int) -> str:
    """
    Five-character mobile guard code.

    HMAC-SHA1 over the 30-second time step with the base64 secret, dynamic
    truncation, then base-26 digits from the guard alphabet.
    """
    try:
        key = base64.b64decode(seed, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("OTP seed must be base64 encoded") from e

    counter = timestamp // OneTimeCode.STEP_SECONDS
    mac = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = mac[19] & 0x0F
    value = struct.unpack(">I", mac[offset : offset + 4])[0] & 0x7FFFFFFF

    alphabet = OneTimeCode.GUARD_ALPHABET
    chars = []
    for _ in range(OneTimeCode.GUARD_CODE_LENGTH):
        chars.append(alphabet[value % len(alphabet)])
        value //= len(alphabet)
    return "".join(chars)


def _totp_code(seed: str, timestamp: int) -> str:
    """RFC 6238 code from a base32 secret."""
    totp = pyotp.TOTP(
        seed.replace(" ", "").upper(),
        digits=OneTimeCode.TOTP_DIGITS,
        interval=OneTimeCode.STEP_SECONDS,
    )
    try:
        return totp.at(timestamp)
    except (binascii.Error, ValueError) as e:
        raise ValueError("OTP seed must be base32 encoded") from e


def generate_one_time_code(
    seed: str,
    fmt: Union[OTPFormat, str] = OTPFormat.STEAM,
    timestamp: Optional[float] = None,
) -> str:
    """
    Derive the code that is valid at ``timestamp``.

    Args:
        seed: Shared secret (base64 for ``steam``, base32 for ``totp``)
        fmt: Code format
        timestamp: Unix time; defaults to now

    Returns:
        The one-time code

    Raises:
        ValueError: If the seed cannot be decoded or the format is unknown
    """
    fmt = OTPFormat(fmt)
    ts = int(time.time() if timestamp is None else timestamp)
    if fmt is OTPFormat.TOTP:
        return _totp_code(seed, ts)
    return _guard_code(seed, ts)
