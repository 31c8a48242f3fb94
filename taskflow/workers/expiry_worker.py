from __future__ import annotations

from dataclasses import asdict
import logging

from arq import cron
from arq.connections import RedisSettings

from taskflow.core.config import get_settings
from taskflow.core.logging import configure_logging
from taskflow.persistence.db import SessionLocal
from taskflow.services.sweeper import ExpirySweeper


logger = logging.getLogger(__name__)


async def sweep_expired(ctx) -> dict[str, int]:
    # Runs on the hourly cron and can also be enqueued by operators for an immediate sweep.
    report = await ctx["sweeper"].run_cycle()
    return asdict(report)


async def _startup(ctx) -> None:
    configure_logging()
    ctx["sweeper"] = ExpirySweeper(SessionLocal)
    logger.info("expiry_worker_started")


async def _shutdown(ctx) -> None:
    ctx.pop("sweeper", None)


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.sweeper_queue_name
    functions = [sweep_expired]
    # Top of every hour; arq keeps cron jobs unique so runs never overlap.
    cron_jobs = [cron(sweep_expired, minute=0, run_at_startup=True)]
    on_startup = _startup
    on_shutdown = _shutdown
