"""ARQ worker for store background jobs."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.config import get_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def task_reap_reservations(ctx: dict):
    from libs.db.config import AsyncSessionLocal
    from services.store_service.services.reaper import reap_reservations

    settings = get_settings()
    logger.info("Running: reap_reservations")
    async with AsyncSessionLocal() as db:
        result = await reap_reservations(
            db,
            ttl_minutes=settings.RESERVATION_TTL_MINUTES,
            limit=settings.REAPER_BATCH_LIMIT,
        )
    return {
        "processed": result.processed,
        "cutoff": result.cutoff,
        "failed": len(result.failed_order_ids),
    }


async def startup(ctx: dict):
    configure_logging()
    logger.info("Store worker started")


class WorkerSettings:
    redis_settings = get_redis_settings()

    on_startup = startup

    functions = [
        task_reap_reservations,
    ]

    cron_jobs = [
        cron(
            task_reap_reservations,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
    ]
