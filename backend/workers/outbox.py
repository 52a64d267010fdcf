"""
Outbox Worker — delivers pending side effects (emails).

Schedule: every minute
Queue: notifications
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.outbox.drain",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def drain(self, batch_size: int | None = None):
    """Deliver one batch of pending outbox messages."""
    run_id = self.request.id or "manual"

    async def _drain():
        from core.config import get_settings
        from notifications.outbox import drain_outbox

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                report = await drain_outbox(db, batch_size=batch_size)
            return report.as_dict()
        finally:
            await engine.dispose()

    try:
        result = asyncio.run(_drain())
        if any(result.values()):
            logger.info("outbox_worker.completed", run_id=run_id, **result)
        return result
    except Exception as exc:
        logger.error("outbox_worker.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
