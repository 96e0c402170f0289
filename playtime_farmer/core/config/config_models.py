"""Pydantic models for the fleet configuration file."""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator, model_validator

from playtime_farmer.constants import Delays, Reconnect
from playtime_farmer.models import AccountIdentity, ActivityEntry, OTPFormat, PresenceState


class ActivityConfig(BaseModel):
    """One activity to farm. A bare integer in YAML is accepted as ``{id: N}``."""

    id: int = Field(gt=0, description="Activity id; 0 is reserved for the custom label")
    label: str = Field(default="")


class ReconnectConfig(BaseModel):
    """Reconnect backoff parameters."""

    max_attempts: int = Field(default=Reconnect.MAX_ATTEMPTS, ge=1, le=1000)
    initial_delay: float = Field(default=Reconnect.INITIAL_DELAY_SECONDS, ge=0)
    max_delay: float = Field(default=Reconnect.MAX_DELAY_SECONDS, gt=0)
    multiplier: float = Field(default=Reconnect.BACKOFF_MULTIPLIER, ge=1)

    @model_validator(mode="after")
    def check_delays(self) -> "ReconnectConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must not be smaller than initial_delay")
        return self


class AccountConfig(BaseModel):
    """One account of the fleet."""

    account_id: str = Field(
        min_length=1, validation_alias=AliasChoices("account_id", "username")
    )
    password: SecretStr = Field(default=SecretStr(""))
    password_encrypted: bool = Field(default=False)
    otp_seed: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("otp_seed", "shared_secret")
    )
    otp_format: OTPFormat = Field(default=OTPFormat.STEAM)
    activities: List[ActivityConfig] = Field(min_length=1)
    targets: Dict[int, float] = Field(
        default_factory=dict, description="activity id -> target hours"
    )
    custom_label: Optional[str] = Field(default=None, max_length=64)
    presence: PresenceState = Field(default=PresenceState.ONLINE)
    reconnect: Optional[ReconnectConfig] = Field(default=None)

    @field_validator("account_id")
    @classmethod
    def strip_account_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("account_id must not be blank")
        return v

    @field_validator("password")
    @classmethod
    def require_password(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("password must not be empty")
        return v

    @field_validator("activities", mode="before")
    @classmethod
    def coerce_activities(cls, v: Any) -> Any:
        """Accept ``[730, {id: 440, label: TF2}]``."""
        if isinstance(v, list):
            return [{"id": item} if isinstance(item, int) else item for item in v]
        return v

    @field_validator("custom_label")
    @classmethod
    def blank_label_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_activities_and_targets(self) -> "AccountConfig":
        ids = [a.id for a in self.activities]
        if len(ids) != len(set(ids)):
            raise ValueError("activity ids must be unique")
        for activity_id, hours in self.targets.items():
            if activity_id not in ids:
                raise ValueError(f"target for activity {activity_id} which is not configured")
            if hours <= 0:
                raise ValueError(f"target for activity {activity_id} must be positive")
        return self

    def to_identity(self) -> AccountIdentity:
        seed = self.otp_seed.get_secret_value() if self.otp_seed else None
        return AccountIdentity(self.account_id, otp_seed=seed or None, otp_format=self.otp_format)

    def to_activities(self) -> List[ActivityEntry]:
        return [ActivityEntry(a.id, a.label) for a in self.activities]


class FleetConfig(BaseModel):
    """Root of the fleet configuration file."""

    provider: Optional[str] = Field(
        default=None, description="Session provider factory as 'package.module:attribute'"
    )
    start_delay: float = Field(default=Delays.FLEET_START_SECONDS, ge=0)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    accounts: List[AccountConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def check_unique_accounts(self) -> "FleetConfig":
        seen = set()
        for account in self.accounts:
            key = account.account_id.lower()
            if key in seen:
                raise ValueError(f"account '{account.account_id}' is configured twice")
            seen.add(key)
        return self

    def reconnect_for(self, account: AccountConfig) -> ReconnectConfig:
        return account.reconnect or self.reconnect
