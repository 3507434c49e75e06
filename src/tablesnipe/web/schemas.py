"""Pydantic request/response schemas for the web API."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from tablesnipe.models import (
    BucketStatus,
    Platform,
    RestaurantRef,
    Snipe,
    SnipeRequest,
)


# ---------------------------------------------------------------------------
# Snipes
# ---------------------------------------------------------------------------


class SnipeCreateRequest(BaseModel):
    restaurant_id: int | str  # "12345" or "resy-12345"
    platform: Platform
    date: date
    party_size: int = Field(ge=1, le=20)
    preferred_times: list[str] = Field(min_length=1, max_length=5)  # ["7:00 PM", "7:30 PM"]
    release_time: datetime  # ISO 8601; naive values are local time

    def to_request(self) -> SnipeRequest:
        return SnipeRequest(
            restaurant=RestaurantRef(
                platform=self.platform, restaurant_id=str(self.restaurant_id)
            ),
            date=self.date,
            party_size=self.party_size,
            preferred_times=self.preferred_times,
            release_time=self.release_time,
        )


class SnipeOut(BaseModel):
    id: str
    platform: str
    restaurant_id: str
    date: str
    party_size: int
    preferred_times: list[str]
    release_time: str
    status: str
    created_at: str
    result: str | None = None
    is_scheduled: bool = False

    @classmethod
    def from_snipe(cls, snipe: Snipe, is_scheduled: bool = False) -> SnipeOut:
        return cls(
            id=snipe.id,
            platform=snipe.platform.value,
            restaurant_id=snipe.restaurant.restaurant_id,
            date=snipe.date.isoformat(),
            party_size=snipe.party_size,
            preferred_times=snipe.preferred_times,
            release_time=snipe.release_time.isoformat(),
            status=snipe.status.value,
            created_at=snipe.created_at.isoformat(),
            result=snipe.result,
            is_scheduled=is_scheduled,
        )


class SnipeListResponse(BaseModel):
    snipes: list[SnipeOut]


class SnipeCancelResponse(BaseModel):
    cancelled: bool
    snipe: SnipeOut


# ---------------------------------------------------------------------------
# Rate limits
# ---------------------------------------------------------------------------


class LimitsResponse(BaseModel):
    limits: list[BucketStatus]
