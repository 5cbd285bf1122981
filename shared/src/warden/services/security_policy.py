"""Security thresholds as typed Pydantic models, built from settings."""

from __future__ import annotations

from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field

from warden.config import Settings, get_settings


class AccountLockoutSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_failures: int = Field(default=5, ge=1)
    window_minutes: int = Field(default=15, ge=1)
    duration_minutes: int = Field(default=30, ge=1)

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)


class ResourceSecretSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    lockout_window_seconds: int = Field(default=300, ge=1)
    hash_rounds: int = Field(default=12, ge=4, le=31)


class AccessSessionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    ttl_minutes: int = Field(default=120, ge=1)

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)


class SuspicionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    location_window_minutes: int = 60
    max_distinct_origins: int = 2
    failure_window_minutes: int = 5
    max_recent_failures: int = 3
    lock_on_detection: bool = False


class StoreSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=5.0, gt=0)


class SecurityPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    lockout: AccountLockoutSettings = Field(default_factory=AccountLockoutSettings)
    resource_secret: ResourceSecretSettings = Field(default_factory=ResourceSecretSettings)
    access_session: AccessSessionSettings = Field(default_factory=AccessSessionSettings)
    suspicion: SuspicionSettings = Field(default_factory=SuspicionSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    @classmethod
    def from_settings(cls, settings: Settings) -> SecurityPolicy:
        return cls(
            lockout=AccountLockoutSettings(
                max_failures=settings.lockout_max_failures,
                window_minutes=settings.lockout_window_minutes,
                duration_minutes=settings.lockout_duration_minutes,
            ),
            resource_secret=ResourceSecretSettings(
                max_attempts=settings.resource_secret_max_attempts,
                lockout_window_seconds=settings.resource_secret_lockout_seconds,
                hash_rounds=settings.secret_hash_rounds,
            ),
            access_session=AccessSessionSettings(
                ttl_minutes=settings.access_session_ttl_minutes,
            ),
            suspicion=SuspicionSettings(
                lock_on_detection=settings.suspicion_lock_on_detection,
            ),
            store=StoreSettings(timeout_seconds=settings.store_timeout_seconds),
        )


def load_security_policy() -> SecurityPolicy:
    return SecurityPolicy.from_settings(get_settings())
