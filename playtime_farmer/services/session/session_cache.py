"""Per-account session token cache."""

import re
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from playtime_farmer.utils.atomic_io import atomic_write_json, read_json

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_file_stem(account_id: str) -> str:
    """Map an account id to a string usable inside a file name."""
    return _UNSAFE_CHARS.sub("_", account_id) or "_"


class SessionCache:
    """
    Durable store of reusable session tokens, one file per account.

    Each file holds ``{"token": <hex>, "accountId": <id>}``. Entries that are
    missing, unreadable or written for another account are treated as misses.
    """

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)

    def path_for(self, account_id: str) -> Path:
        return self.cache_dir / f"session_{safe_file_stem(account_id)}.json"

    def save(self, account_id: str, token: bytes) -> bool:
        """
        Persist ``token`` for ``account_id``, replacing any previous entry.

        Args:
            account_id: Account the token belongs to
            token: Opaque session token bytes

        Returns:
            True if the entry was written; on failure the previous entry is intact
        """
        path = self.path_for(account_id)
        try:
            atomic_write_json(path, {"token": bytes(token).hex(), "accountId": account_id})
        except OSError as e:
            logger.warning(f"Could not save session token to {path}: {e}")
            return False
        logger.debug(f"Session token cached at {path.name}")
        return True

    def load(self, account_id: str) -> Optional[bytes]:
        """
        Return the cached token for ``account_id``.

        Returns:
            Token bytes, or None when there is no usable entry
        """
        path = self.path_for(account_id)
        if not path.exists():
            return None

        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session cache {path.name}: {e}")
            return None

        if not isinstance(data, dict) or data.get("accountId") != account_id:
            logger.warning(f"Ignoring session cache {path.name}: account mismatch")
            return None

        try:
            return bytes.fromhex(data["token"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Ignoring session cache {path.name}: malformed token")
            return None

    def clear(self, account_id: str) -> bool:
        """
        Delete the entry for ``account_id``.

        Returns:
            True if an entry was removed
        """
        path = self.path_for(account_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not remove session cache {path.name}: {e}")
            return False
        logger.info(f"Cleared cached session for {account_id}")
        return True
