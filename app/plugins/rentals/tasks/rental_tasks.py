import asyncio
from datetime import date
from typing import Optional

import dramatiq
import structlog

import workers  # noqa: F401  sets the broker before actors are declared
from core.config import settings
from core.database import db_manager
from core.scheduler_decorators import run_every_day
from plugins.rentals.container import build_services
from plugins.rentals.storage.store import select_store
from utils.date_helper import ensure_date, today_utc

logger = structlog.get_logger(__name__)


async def _with_services(job):
    store = await select_store(settings.DATA_DIR)
    try:
        return await job(build_services(store, settings))
    finally:
        await db_manager.close()


async def _async_send_indexing_reminders(as_of: date):
    sent = await _with_services(lambda svc: svc.reminders.run(as_of))
    logger.info("indexing_reminders_task_done", as_of=as_of.isoformat(), sent=len(sent))
    return sent


async def _async_refresh_exchange_rate():
    result = await _with_services(lambda svc: svc.exchange.refresh_contracts(force_refresh=True))
    logger.info("exchange_refresh_task_done", **result)
    return result


@run_every_day(hour=6, minute=0)
@dramatiq.actor(max_retries=3)
def send_indexing_reminders(as_of: Optional[str] = None):
    """Entry point for Dramatiq (sync context)."""
    asyncio.run(_async_send_indexing_reminders(ensure_date(as_of) if as_of else today_utc()))


@run_every_day(hour=13, minute=30)
@dramatiq.actor(max_retries=3)
def refresh_exchange_rate():
    """BNR publishes the day's rates shortly after 13:00 Bucharest time."""
    asyncio.run(_async_refresh_exchange_rate())
