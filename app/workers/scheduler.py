import asyncio
from datetime import datetime, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.config import settings
from core.logging import configure_logging
from core.scheduler_decorators import SCHEDULED_TASKS
from workers import discover_plugin_workers

logger = structlog.get_logger(__name__)


def build_scheduler(tasks=None) -> AsyncIOScheduler:
    """One APScheduler job per scheduled actor; each run enqueues the actor."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    for task in SCHEDULED_TASKS if tasks is None else tasks:
        func = task["func"]
        # Dramatiq actor is the .send() method
        job_func = lambda f=func: f.send()
        scheduler.add_job(
            job_func,
            trigger=task["trigger"],
            id=task["name"],
            name=task["name"],
            coalesce=True,
            misfire_grace_time=600,
            max_instances=1,
            replace_existing=True,
            **task["trigger_args"],
        )
        logger.info("job_registered", job=task["name"], trigger=task["trigger"], args=task["trigger_args"])
    return scheduler


async def start_scheduler():
    """Scan plugins, load scheduled tasks, and start APScheduler."""
    configure_logging(settings.LOG_LEVEL)
    discover_plugin_workers()
    scheduler = build_scheduler()
    scheduler.start()
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    for job in scheduler.get_jobs():
        next_run = job.next_run_time.strftime("%Y-%m-%d %H:%M:%S") if job.next_run_time else "-"
        logger.info("job_scheduled", job=job.name, next_run=next_run, now=now)

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        scheduler.shutdown()
        logger.info("scheduler_stopped")


if __name__ == "__main__":
    asyncio.run(start_scheduler())
