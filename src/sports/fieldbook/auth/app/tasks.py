import asyncio
from datetime import datetime, timedelta, timezone
import logging
from typing import NoReturn

from aiohttp import web
import sentry_sdk
from sqlalchemy.exc import SQLAlchemyError

from sports.fieldbook.auth.app.config import (
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SessionManagerAppKey,
    SettingsAppKey,
)

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Tick the health gauge every 30 seconds, reducing the health score by 1 each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    while True:
        await health_gauge.tick()
        await asyncio.sleep(30)


async def purge_refresh_tokens(app: web.Application) -> int:
    """Delete revoked refresh tokens that expired longer ago than the retention window."""
    settings = app[SettingsAppKey]
    refresh_tokens = app[SessionManagerAppKey].refresh_tokens

    cutoff = datetime.now(timezone.utc) - timedelta(
        days=settings.refresh_token_purge_retention_days
    )
    purged = await refresh_tokens.purge(cutoff)
    app[MetricsClientAppKey].gauge("fieldbook.task.refresh_token_purge.count", purged)
    if purged > 0:
        logger.info("Purged %d refresh tokens expired before %s", purged, cutoff)
    return purged


async def refresh_token_purge_task(app: web.Application) -> NoReturn:
    """
    Periodically remove dead refresh token rows.

    Session flows never delete refresh tokens, so without this the table only grows.
    A failed run is reported and retried on the next interval.
    """

    logger.info("Starting refresh token purge task")

    settings = app[SettingsAppKey]
    health_gauge = app[HealthGaugeAppKey]
    while True:
        try:
            await purge_refresh_tokens(app)
        except SQLAlchemyError as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Error purging refresh tokens")
            await health_gauge.womp()
        await asyncio.sleep(settings.refresh_token_purge_interval)
