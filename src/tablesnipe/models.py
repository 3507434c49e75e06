"""Pydantic models for snipes, platform slots and limiter state."""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


def ensure_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are read as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


# --- Enums ---


class Platform(str, Enum):
    """Platforms a snipe can target."""

    RESY = "resy"
    OPENTABLE = "opentable"


class SnipeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    def can_transition_to(self, target: SnipeStatus) -> bool:
        return target in _TRANSITIONS[self]


_TERMINAL_STATUSES = frozenset(
    {SnipeStatus.SUCCESS, SnipeStatus.FAILED, SnipeStatus.CANCELLED}
)

_TRANSITIONS: dict[SnipeStatus, frozenset[SnipeStatus]] = {
    SnipeStatus.PENDING: frozenset(
        {SnipeStatus.RUNNING, SnipeStatus.FAILED, SnipeStatus.CANCELLED}
    ),
    SnipeStatus.RUNNING: frozenset({SnipeStatus.SUCCESS, SnipeStatus.FAILED}),
    SnipeStatus.SUCCESS: frozenset(),
    SnipeStatus.FAILED: frozenset(),
    SnipeStatus.CANCELLED: frozenset(),
}


# --- Snipe Models ---


class RestaurantRef(BaseModel):
    """Platform + platform-specific restaurant id."""

    platform: Platform
    restaurant_id: str = Field(min_length=1)

    @model_validator(mode="after")
    def _strip_platform_prefix(self) -> RestaurantRef:
        # Search results hand out ids like "resy-12345"
        prefix = f"{self.platform.value}-"
        if self.restaurant_id.startswith(prefix) and len(self.restaurant_id) > len(prefix):
            self.restaurant_id = self.restaurant_id[len(prefix):]
        return self


class SnipeRequest(BaseModel):
    """Parameters for a new snipe, as accepted from callers."""

    restaurant: RestaurantRef
    date: date
    party_size: int = Field(ge=1, le=20)
    preferred_times: list[str] = Field(min_length=1, max_length=5)
    release_time: datetime

    @field_validator("preferred_times")
    @classmethod
    def _clean_times(cls, value: list[str]) -> list[str]:
        cleaned = [t.strip() for t in value]
        if any(not t for t in cleaned):
            raise ValueError("preferred times must not be blank")
        return cleaned

    @field_validator("release_time")
    @classmethod
    def _release_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Snipe(BaseModel):
    """A scheduled booking attempt as persisted by the store."""

    id: str
    restaurant: RestaurantRef
    date: date
    party_size: int
    preferred_times: list[str]
    release_time: datetime
    status: SnipeStatus = SnipeStatus.PENDING
    created_at: datetime
    result: str | None = None

    @property
    def platform(self) -> Platform:
        return self.restaurant.platform


# --- Platform Models ---


class Slot(BaseModel):
    """One bookable slot returned by a platform availability query."""

    slot_id: str
    time: str  # "2026-03-26 19:00:00" (Resy) or "19:00" (OpenTable)
    token: str = ""
    seating_type: str = ""
    booking_url: str | None = None


class BookingOutcome(BaseModel):
    success: bool
    confirmation_id: str | None = None
    booking_url: str | None = None
    error: str | None = None


# --- Rate Limiting ---


class RateLimit(BaseModel):
    """Token bucket budget: refill_rate tokens every refill_interval_seconds."""

    max_tokens: int = Field(ge=1)
    refill_rate: int = Field(ge=1)
    refill_interval_seconds: float = Field(default=60.0, gt=0)


DEFAULT_RATE_LIMITS: dict[str, RateLimit] = {
    "resy": RateLimit(max_tokens=20, refill_rate=20),
    "opentable": RateLimit(max_tokens=30, refill_rate=30),
    "tock": RateLimit(max_tokens=15, refill_rate=15),
}

FALLBACK_RATE_LIMIT = RateLimit(max_tokens=10, refill_rate=10)


class BucketStatus(BaseModel):
    platform: str
    available: int
    max: int
    next_refill: float  # seconds until the next refill
    is_limited: bool


# --- Settings ---


class NotificationSettings(BaseModel):
    """Push channels for snipe outcomes. Unset fields fall back to env vars."""

    webhook_url: str | None = None  # Discord or Slack incoming webhook
    ntfy_topic: str | None = None
    ntfy_server: str = "https://ntfy.sh"
    pushover_user: str | None = None
    pushover_token: str | None = None

    def with_env_defaults(self, environ: Mapping[str, str] | None = None) -> NotificationSettings:
        env = os.environ if environ is None else environ
        return NotificationSettings(
            webhook_url=self.webhook_url or env.get("NOTIFICATION_WEBHOOK"),
            ntfy_topic=self.ntfy_topic or env.get("NTFY_TOPIC"),
            ntfy_server=(
                self.ntfy_server
                if "ntfy_server" in self.model_fields_set
                else env.get("NTFY_SERVER", self.ntfy_server)
            ),
            pushover_user=self.pushover_user or env.get("PUSHOVER_USER"),
            pushover_token=self.pushover_token or env.get("PUSHOVER_TOKEN"),
        )

    @property
    def has_channels(self) -> bool:
        return bool(
            self.webhook_url
            or self.ntfy_topic
            or (self.pushover_user and self.pushover_token)
        )


class SniperSettings(BaseModel):
    """Loaded from the YAML settings file (all fields optional)."""

    db_path: Path = Field(
        default_factory=lambda: Path.home() / ".tablesnipe" / "snipes.db"
    )
    lead_time_seconds: float = Field(default=30.0, ge=0)
    poll_interval_seconds: float = Field(default=0.5, gt=0)
    max_poll_duration_seconds: float = Field(default=120.0, gt=0)
    match_tolerance_minutes: int = Field(default=15, ge=0)
    acquire_timeout_seconds: float = Field(default=30.0, ge=0)
    rate_limits: dict[str, RateLimit] = Field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )
    default_rate_limit: RateLimit = FALLBACK_RATE_LIMIT
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @field_validator("db_path")
    @classmethod
    def _expand_db_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("rate_limits")
    @classmethod
    def _merge_default_limits(cls, value: dict[str, RateLimit]) -> dict[str, RateLimit]:
        return {**DEFAULT_RATE_LIMITS, **{k.lower(): v for k, v in value.items()}}
