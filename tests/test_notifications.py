"""Tests for snipe outcome notifiers."""

import io
import json

import httpx
import pytest
import respx
from rich.console import Console

from tablesnipe.models import NotificationSettings
from tablesnipe.notifications import (
    PUSHOVER_URL,
    SNIPE_FAILED,
    SNIPE_SUCCEEDED,
    ConsoleNotifier,
    FanoutNotifier,
    PushNotifier,
    build_notifier,
)

WEBHOOK = "https://discord.com/api/webhooks/1/abc"

DETAILS = {
    "snipe_id": "snipe-0123456789ab",
    "platform": "resy",
    "restaurant_id": "12345",
    "date": "2026-03-26",
    "party_size": 2,
    "status": "success",
    "result": "Successfully booked! Reservation ID: RESY-42, Time: 19:00",
}

NOTIFY_ENV = ("NOTIFICATION_WEBHOOK", "NTFY_TOPIC", "NTFY_SERVER", "PUSHOVER_USER", "PUSHOVER_TOKEN")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in NOTIFY_ENV:
        monkeypatch.delenv(name, raising=False)


class TestNotificationSettings:
    def test_env_fallback(self):
        env = {
            "NOTIFICATION_WEBHOOK": WEBHOOK,
            "NTFY_TOPIC": "dinner",
            "NTFY_SERVER": "https://ntfy.example.com",
            "PUSHOVER_USER": "u1",
        }
        resolved = NotificationSettings().with_env_defaults(env)

        assert resolved.webhook_url == WEBHOOK
        assert resolved.ntfy_topic == "dinner"
        assert resolved.ntfy_server == "https://ntfy.example.com"
        assert resolved.pushover_user == "u1"
        assert resolved.has_channels

    def test_config_wins_over_env(self):
        settings = NotificationSettings(ntfy_topic="mine", ntfy_server="https://push.local")
        resolved = settings.with_env_defaults(
            {"NTFY_TOPIC": "theirs", "NTFY_SERVER": "https://ntfy.example.com"}
        )

        assert resolved.ntfy_topic == "mine"
        assert resolved.ntfy_server == "https://push.local"

    def test_pushover_needs_both_keys(self):
        assert not NotificationSettings(pushover_user="u1").has_channels
        assert NotificationSettings(pushover_user="u1", pushover_token="t1").has_channels
        assert not NotificationSettings().with_env_defaults({}).has_channels


@pytest.mark.asyncio
class TestPushNotifier:
    async def test_sends_to_every_channel(self):
        notifier = PushNotifier(
            NotificationSettings(
                webhook_url=WEBHOOK,
                ntfy_topic="dinner",
                pushover_user="u1",
                pushover_token="t1",
            )
        )
        with respx.mock:
            webhook = respx.post(WEBHOOK).mock(return_value=httpx.Response(204))
            ntfy = respx.post("https://ntfy.sh/dinner").mock(return_value=httpx.Response(200))
            pushover = respx.post(PUSHOVER_URL).mock(return_value=httpx.Response(200, json={"status": 1}))
            try:
                await notifier.notify(SNIPE_SUCCEEDED, DETAILS)
            finally:
                await notifier.aclose()

        body = json.loads(webhook.calls.last.request.content)
        assert body["content"].startswith("**Reservation Sniped!**\n")
        assert body["text"].startswith("*Reservation Sniped!*\n")
        assert "RESY 12345 on 2026-03-26 for 2" in body["content"]

        request = ntfy.calls.last.request
        assert request.headers["Title"] == "Reservation Sniped!"
        assert request.headers["Priority"] == "high"
        assert request.headers["Tags"] == "fork_and_knife,bell"
        assert b"Reservation ID: RESY-42" in request.content

        payload = json.loads(pushover.calls.last.request.content)
        assert payload["token"] == "t1"
        assert payload["user"] == "u1"
        assert payload["title"] == "Reservation Sniped!"
        assert payload["priority"] == 1

    async def test_failing_channel_does_not_block_others(self):
        notifier = PushNotifier(NotificationSettings(webhook_url=WEBHOOK, ntfy_topic="dinner"))
        with respx.mock:
            respx.post(WEBHOOK).mock(return_value=httpx.Response(500))
            ntfy = respx.post("https://ntfy.sh/dinner").mock(return_value=httpx.Response(200))
            try:
                await notifier.notify(SNIPE_FAILED, {**DETAILS, "result": "timed out"})
            finally:
                await notifier.aclose()

        assert ntfy.called
        assert ntfy.calls.last.request.headers["Title"] == "Snipe Failed"

    async def test_unreachable_channel_is_swallowed(self):
        notifier = PushNotifier(NotificationSettings(webhook_url=WEBHOOK))
        with respx.mock:
            respx.post(WEBHOOK).mock(side_effect=httpx.ConnectError("refused"))
            try:
                await notifier.notify(SNIPE_SUCCEEDED, DETAILS)
            finally:
                await notifier.aclose()

    async def test_no_channels_sends_nothing(self):
        notifier = PushNotifier(NotificationSettings())
        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(url__regex=r".*").mock(return_value=httpx.Response(200))
            await notifier.notify(SNIPE_SUCCEEDED, DETAILS)

        assert not route.called

    async def test_custom_ntfy_server(self):
        notifier = PushNotifier(
            NotificationSettings(ntfy_topic="dinner", ntfy_server="https://ntfy.example.com/")
        )
        with respx.mock:
            ntfy = respx.post("https://ntfy.example.com/dinner").mock(return_value=httpx.Response(200))
            try:
                await notifier.notify(SNIPE_SUCCEEDED, DETAILS)
            finally:
                await notifier.aclose()

        assert ntfy.called


class Exploding:
    async def notify(self, event, details):
        raise RuntimeError("no display")


class Recording:
    def __init__(self):
        self.events = []

    async def notify(self, event, details):
        self.events.append((event, details["snipe_id"]))


@pytest.mark.asyncio
class TestFanoutNotifier:
    async def test_one_failure_does_not_stop_the_rest(self):
        recording = Recording()

        await FanoutNotifier([Exploding(), recording]).notify(SNIPE_SUCCEEDED, DETAILS)

        assert recording.events == [(SNIPE_SUCCEEDED, DETAILS["snipe_id"])]

    async def test_aclose_skips_notifiers_without_it(self):
        push = PushNotifier(NotificationSettings(webhook_url=WEBHOOK))
        await FanoutNotifier([Recording(), push]).aclose()
        assert push._client is None


class TestBuildNotifier:
    def test_console_only_without_channels(self):
        assert isinstance(build_notifier(NotificationSettings()), ConsoleNotifier)

    def test_push_channels_from_env(self, monkeypatch):
        monkeypatch.setenv("NTFY_TOPIC", "dinner")

        notifier = build_notifier(NotificationSettings())

        assert isinstance(notifier, FanoutNotifier)
        push = notifier.notifiers[1]
        assert isinstance(push, PushNotifier)
        assert push.settings.ntfy_topic == "dinner"


@pytest.mark.asyncio
async def test_console_notifier_prints_panel():
    out = io.StringIO()
    notifier = ConsoleNotifier(Console(file=out, width=120), desktop=False)

    await notifier.notify(SNIPE_SUCCEEDED, DETAILS)

    text = out.getvalue()
    assert "RESERVATION SNIPED" in text
    assert "RESY-42" in text
