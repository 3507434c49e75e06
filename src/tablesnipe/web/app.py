"""FastAPI application factory.

The app owns the sniper for its whole lifetime: the lifespan opens the
store, builds the limiter, platform clients, executor and scheduler, and
recovers persisted snipes before the first request is served.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI

from tablesnipe.config import load_settings
from tablesnipe.models import Platform, SniperSettings
from tablesnipe.notifications import Notifier, build_notifier
from tablesnipe.platforms import PlatformClient, build_platform_clients
from tablesnipe.rate_limiter import RateLimiter
from tablesnipe.scheduler import SnipeScheduler
from tablesnipe.service import SnipeService
from tablesnipe.sniper import SnipeExecutor
from tablesnipe.store import SnipeStore

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TABLESNIPE_CONFIG"


def _load_dotenv():
    """Load .env file from the working directory if it exists."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    key, value = key.strip(), value.strip()
                    if key not in os.environ:  # Don't override existing env vars
                        os.environ[key] = value
        logger.info("Loaded .env from %s", env_path)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: SniperSettings = app.state.settings

    store = SnipeStore(settings.db_path)
    rate_limiter = RateLimiter(settings.rate_limits, settings.default_rate_limit)
    clients = app.state.clients or build_platform_clients()
    notifier = app.state.notifier or build_notifier(settings.notifications)
    executor = SnipeExecutor.from_settings(settings, store, clients, rate_limiter, notifier)
    scheduler = SnipeScheduler(store, executor, lead_time=settings.lead_time_seconds)

    await scheduler.startup()

    app.state.store = store
    app.state.rate_limiter = rate_limiter
    app.state.scheduler = scheduler
    app.state.service = SnipeService(store, scheduler)

    yield

    # Graceful stop: pending snipes stay pending for the next startup()
    scheduler.shutdown()
    for client in clients.values():
        try:
            await client.aclose()
        except Exception as e:
            logger.warning("Closing %s client failed: %s", client.platform.value, e)
    close_notifier = getattr(notifier, "aclose", None)
    if close_notifier is not None:
        await close_notifier()
    store.close()


def create_app(
    settings: SniperSettings | None = None,
    clients: Mapping[Platform, PlatformClient] | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    if settings is None:
        _load_dotenv()
        settings = load_settings(os.environ.get(CONFIG_ENV_VAR))

    app = FastAPI(title="tablesnipe", lifespan=lifespan)
    app.state.settings = settings
    app.state.clients = clients
    app.state.notifier = notifier

    from tablesnipe.web.routes import limits, snipes

    app.include_router(snipes.router, prefix="/api/snipes")
    app.include_router(limits.router, prefix="/api/limits")

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
