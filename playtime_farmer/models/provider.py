"""Value objects exchanged with the session provider."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProviderErrorKind(str, Enum):
    """Normalized classification of provider-reported errors."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    INVALID_SESSION_TOKEN = "invalid_session_token"
    UNKNOWN = "unknown"


@dataclass
class LogOnDetails:
    """Arguments of one ``SessionProvider.log_on`` call."""

    account_id: str
    password: Optional[str] = field(default=None, repr=False)
    session_token: Optional[bytes] = field(default=None, repr=False)
    one_time_code: Optional[str] = field(default=None, repr=False)

    @property
    def uses_session_token(self) -> bool:
        return self.session_token is not None


@dataclass
class AccountInfo:
    """Payload of the provider ``logged_on`` event."""

    account_id: str
    display_name: Optional[str] = None
    session_token: Optional[bytes] = field(default=None, repr=False)


@dataclass
class ProviderError:
    """Payload of the provider ``error`` event."""

    message: str
    kind: ProviderErrorKind = ProviderErrorKind.UNKNOWN
    code: Optional[int] = None
    retry_after: Optional[float] = None
