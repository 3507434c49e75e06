"""Async platform clients used by the snipe executor.

The platform set is closed: every ``Platform`` member maps to exactly one
client class here. Each client exposes the same two calls the executor needs:

- ``get_availability()``: idempotent read, safe to retry
- ``book()``: submits (or, for link-only platforms, produces) a booking;
  never retried automatically
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Protocol
from urllib.parse import urlencode

import httpx
import orjson

from tablesnipe.auth import CredentialStore, ResyCredentials
from tablesnipe.errors import AuthError, BookingError
from tablesnipe.models import BookingOutcome, Platform, Slot

logger = logging.getLogger(__name__)

# Regex for fast book_token extraction from /3/details response
_BOOK_TOKEN_RE = re.compile(rb'"book_token"\s*:\s*\{\s*"value"\s*:\s*"([^"]+)"')


def extract_book_token_fast(content: bytes) -> str | None:
    """Extract book_token from a /3/details body without a full JSON parse."""
    m = _BOOK_TOKEN_RE.search(content)
    return m.group(1).decode() if m else None


class PlatformClient(Protocol):
    platform: Platform

    async def get_availability(
        self, restaurant_id: str, day: date, party_size: int
    ) -> list[Slot]: ...

    async def book(self, slot: Slot, day: date, party_size: int) -> BookingOutcome: ...

    async def aclose(self) -> None: ...


def default_payment_method_id(details: dict) -> int | None:
    """The account's default card from a /3/details body, if it lists one."""
    methods = (details.get("user") or {}).get("payment_methods") or []
    for method in methods:
        if method.get("is_default") and method.get("id") is not None:
            return method["id"]
    return None


class ResyClient:
    """
    Async HTTP client for the Resy API.

    Credentials come from the keyring on first use unless passed in. A 401 on
    an availability read triggers one re-login when email and password are
    stored; booking calls are never replayed.
    """

    platform = Platform.RESY
    BASE_URL = "https://api.resy.com"

    def __init__(
        self,
        credentials: ResyCredentials | None = None,
        credential_store: CredentialStore | None = None,
        payment_method_id: int | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._credentials = credentials
        self._credential_store = credential_store or CredentialStore()
        self._payment_method_id = payment_method_id
        self._timeout = httpx.Timeout(timeout, connect=5.0)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ResyClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_credentials(self) -> ResyCredentials:
        if self._credentials is None:
            self._credentials = self._credential_store.load()
        return self._credentials

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            creds = self._get_credentials()
            headers = {
                "Authorization": f'ResyAPI api_key="{creds.api_key}"',
                "Accept": "application/json",
            }
            if creds.auth_token:
                token = creds.auth_token.get_secret_value()
                headers["X-Resy-Auth-Token"] = token
                headers["X-Resy-Universal-Auth"] = token
            self._client = httpx.AsyncClient(
                http2=True,
                base_url=self.BASE_URL,
                headers=headers,
                timeout=self._timeout,
            )
        return self._client

    def set_auth_token(self, token: str) -> None:
        """Update the auth token on the live client."""
        if self._client:
            self._client.headers["X-Resy-Auth-Token"] = token
            self._client.headers["X-Resy-Universal-Auth"] = token

    async def refresh_auth_token(self) -> str:
        """POST /3/auth/password with stored email+password, return the new token."""
        creds = self._get_credentials()
        if not creds.can_login:
            raise AuthError("Resy token rejected and no email/password stored to refresh it.")
        resp = await self._http().post(
            "/3/auth/password",
            data={"email": creds.email, "password": creds.password.get_secret_value()},
        )
        resp.raise_for_status()
        token = orjson.loads(resp.content).get("token")
        if not token:
            raise AuthError("Resy login response had no token.")
        self.set_auth_token(token)
        try:
            self._credential_store.store_auth_token(token)
        except Exception as e:
            logger.warning("Could not persist refreshed Resy token: %s", e)
        logger.info("Resy auth token refreshed")
        return token

    async def get_availability(
        self, restaurant_id: str, day: date, party_size: int
    ) -> list[Slot]:
        """GET /4/find: available slots for a venue+date+party."""
        params = {
            "venue_id": restaurant_id,
            "day": day.isoformat(),
            "party_size": party_size,
            "lat": "0",
            "long": "0",
        }
        resp = await self._http().get("/4/find", params=params)
        if resp.status_code == 401 and self._get_credentials().can_login:
            await self.refresh_auth_token()
            resp = await self._http().get("/4/find", params=params)
        resp.raise_for_status()

        data = orjson.loads(resp.content)
        slots: list[Slot] = []
        for venue in (data.get("results") or {}).get("venues") or []:
            for s in venue.get("slots") or []:
                config = s.get("config") or {}
                slots.append(
                    Slot(
                        slot_id=str(config.get("id", "")),
                        token=config.get("token", ""),
                        seating_type=config.get("type", ""),
                        time=(s.get("date") or {}).get("start", ""),
                    )
                )
        return slots

    async def book(self, slot: Slot, day: date, party_size: int) -> BookingOutcome:
        """GET /3/details for a book token, then POST /3/book."""
        http = self._http()
        resp = await http.get(
            "/3/details",
            params={
                "config_id": slot.token or slot.slot_id,
                "day": day.isoformat(),
                "party_size": party_size,
            },
        )
        resp.raise_for_status()

        book_token = extract_book_token_fast(resp.content)
        details = None
        if not book_token:
            details = orjson.loads(resp.content)
            book_token = (details.get("book_token") or {}).get("value")
        if not book_token:
            raise BookingError("Resy details response had no book token")

        payment_method_id = self._payment_method_id
        if payment_method_id is None:
            payment_method_id = default_payment_method_id(
                details if details is not None else orjson.loads(resp.content)
            )

        data = {"book_token": book_token, "source_id": "resy.com-venue-details"}
        if payment_method_id is not None:
            data["struct_payment_method"] = json.dumps({"id": payment_method_id})
        else:
            logger.warning("No Resy payment method on file; booking without one")
        resp = await http.post("/3/book", data=data)
        resp.raise_for_status()

        body = orjson.loads(resp.content)
        confirmation = body.get("resy_token") or body.get("reservation_id")
        if not confirmation:
            return BookingOutcome(success=False, error="Resy booking response had no confirmation")
        return BookingOutcome(success=True, confirmation_id=str(confirmation))


class OpenTableClient:
    """OpenTable availability reader. Bookings must be finished by hand via a link."""

    platform = Platform.OPENTABLE
    BASE_URL = "https://www.opentable.com/restref/api"
    BOOKING_URL = "https://www.opentable.com/booking/experiences-availability"

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = httpx.Timeout(timeout, connect=5.0)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> OpenTableClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
                },
                timeout=self._timeout,
            )
        return self._client

    def booking_url(self, restaurant_id: str, day: date, slot_time: str, party_size: int) -> str:
        query = urlencode({
            "rid": restaurant_id,
            "datetime": f"{day.isoformat()}T{slot_time}",
            "covers": party_size,
        })
        return f"{self.BOOKING_URL}?{query}"

    async def get_availability(
        self, restaurant_id: str, day: date, party_size: int
    ) -> list[Slot]:
        day_str = day.isoformat()
        resp = await self._http().get(
            "/availability",
            params={
                "rid": restaurant_id,
                "datetime": f"{day_str}T19:00",
                "party_size": party_size,
            },
        )
        resp.raise_for_status()

        data = orjson.loads(resp.content)
        day_slots = (data.get("availability") or {}).get(day_str) or []
        return [
            Slot(
                slot_id=f"ot-{restaurant_id}-{day_str}-{s['time']}",
                time=s["time"],
                booking_url=self.booking_url(restaurant_id, day, s["time"], party_size),
            )
            for s in day_slots
            if s.get("available") and s.get("time")
        ]

    async def book(self, slot: Slot, day: date, party_size: int) -> BookingOutcome:
        if not slot.booking_url:
            return BookingOutcome(success=False, error="OpenTable slot has no booking link")
        return BookingOutcome(success=True, booking_url=slot.booking_url)


def build_platform_clients(
    credential_store: CredentialStore | None = None,
) -> dict[Platform, PlatformClient]:
    """One client per supported platform."""
    return {
        Platform.RESY: ResyClient(credential_store=credential_store),
        Platform.OPENTABLE: OpenTableClient(),
    }
