"""Snipe outcome notifications.

- ``ConsoleNotifier``: Rich panel on the console + macOS notification
- ``PushNotifier``: webhook (Discord/Slack), ntfy and Pushover over HTTP,
  for servers nobody is watching
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tablesnipe.models import NotificationSettings, Snipe

logger = logging.getLogger(__name__)

SNIPE_SUCCEEDED = "snipe_succeeded"
SNIPE_FAILED = "snipe_failed"

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"


class Notifier(Protocol):
    async def notify(self, event: str, details: dict[str, Any]) -> None: ...


class NullNotifier:
    async def notify(self, event: str, details: dict[str, Any]) -> None:
        return None


def _headline(event: str) -> str:
    return "Reservation Sniped!" if event == SNIPE_SUCCEEDED else "Snipe Failed"


class ConsoleNotifier:
    """Prints a panel per outcome and pops a desktop notification on macOS."""

    def __init__(self, console: Console | None = None, desktop: bool = True) -> None:
        self.console = console or Console()
        self.desktop = desktop

    async def notify(self, event: str, details: dict[str, Any]) -> None:
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column(style="bold")
        table.add_column()
        for key, value in details.items():
            table.add_row(key.replace("_", " ").capitalize(), str(value))

        if event == SNIPE_SUCCEEDED:
            title, style = "RESERVATION SNIPED", "green"
        else:
            title, style = "SNIPE FAILED", "red"

        self.console.print(Panel(table, title=title, border_style=style))
        if self.desktop:
            _macos_notify(_headline(event), str(details.get("result", "")))


class PushNotifier:
    """
    Sends each outcome to every configured push channel.

    Channels are independent: one failing (bad URL, 5xx, timeout) is logged
    and never stops the others or reaches the caller.
    """

    def __init__(self, settings: NotificationSettings, timeout: float = 10.0) -> None:
        self.settings = settings
        self._timeout = httpx.Timeout(timeout, connect=5.0)
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def notify(self, event: str, details: dict[str, Any]) -> None:
        title = _headline(event)
        message = (
            f"{str(details.get('platform', '')).upper()} {details.get('restaurant_id', '')} "
            f"on {details.get('date', '')} for {details.get('party_size', '')}: "
            f"{details.get('result', '')}"
        )

        sends = []
        if self.settings.webhook_url:
            sends.append(("webhook", self._send_webhook(title, message)))
        if self.settings.ntfy_topic:
            sends.append(("ntfy", self._send_ntfy(title, message, event)))
        if self.settings.pushover_user and self.settings.pushover_token:
            sends.append(("pushover", self._send_pushover(title, message)))
        if not sends:
            return

        results = await asyncio.gather(*(coro for _, coro in sends), return_exceptions=True)
        sent = 0
        for (channel, _), result in zip(sends, results):
            if isinstance(result, Exception):
                logger.warning("%s notification failed: %s", channel, result)
            else:
                sent += 1
        logger.info("Snipe %s notification sent via %d channel(s)", details.get("snipe_id"), sent)

    async def _send_webhook(self, title: str, message: str) -> None:
        # Discord reads "content", Slack reads "text"
        resp = await self._http().post(
            self.settings.webhook_url,
            json={"content": f"**{title}**\n{message}", "text": f"*{title}*\n{message}"},
        )
        resp.raise_for_status()

    async def _send_ntfy(self, title: str, message: str, event: str) -> None:
        resp = await self._http().post(
            f"{self.settings.ntfy_server.rstrip('/')}/{self.settings.ntfy_topic}",
            content=message.encode(),
            headers={
                "Title": title,
                "Priority": "high",
                "Tags": "fork_and_knife,bell" if event == SNIPE_SUCCEEDED else "x",
            },
        )
        resp.raise_for_status()

    async def _send_pushover(self, title: str, message: str) -> None:
        resp = await self._http().post(
            PUSHOVER_URL,
            json={
                "token": self.settings.pushover_token,
                "user": self.settings.pushover_user,
                "title": title,
                "message": message,
                "priority": 1,
            },
        )
        resp.raise_for_status()


class FanoutNotifier:
    """Delivers to several notifiers; one raising doesn't stop the rest."""

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers = list(notifiers)

    async def notify(self, event: str, details: dict[str, Any]) -> None:
        results = await asyncio.gather(
            *(n.notify(event, details) for n in self.notifiers), return_exceptions=True
        )
        for notifier, result in zip(self.notifiers, results):
            if isinstance(result, Exception):
                logger.warning("%s failed: %s", type(notifier).__name__, result)

    async def aclose(self) -> None:
        for notifier in self.notifiers:
            close = getattr(notifier, "aclose", None)
            if close is not None:
                await close()


def build_notifier(
    settings: NotificationSettings, console: Console | None = None
) -> Notifier:
    """Console output, plus push channels when any are configured (settings or env)."""
    channels = settings.with_env_defaults()
    console_notifier = ConsoleNotifier(console)
    if not channels.has_channels:
        return console_notifier
    return FanoutNotifier([console_notifier, PushNotifier(channels)])


def snipe_details(snipe: Snipe) -> dict[str, Any]:
    """Notification payload for a finished snipe."""
    return {
        "snipe_id": snipe.id,
        "platform": snipe.platform.value,
        "restaurant_id": snipe.restaurant.restaurant_id,
        "date": snipe.date.isoformat(),
        "party_size": snipe.party_size,
        "status": snipe.status.value,
        "result": snipe.result or "",
    }


def _macos_notify(title: str, message: str) -> None:
    """Send a macOS notification via osascript."""
    if sys.platform != "darwin":
        return
    try:
        script = f'display notification "{message}" with title "{title}"'
        subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            timeout=5,
        )
    except Exception:
        pass  # Non-critical
