"""
Billing Worker — daily overdue sweep.

Flags invoices past their due date that still carry a balance. Once overdue,
an invoice stays overdue until fully paid.

Schedule: crontab(hour=0, minute=15) — daily
Queue: billing
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.billing.flag_overdue_invoices",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def flag_overdue_invoices(self):
    run_id = self.request.id or "manual"
    logger.info("billing_worker.started", run_id=run_id)

    async def _sweep():
        from billing.reconciler import flag_overdue
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                flagged = await flag_overdue(db)
                await db.commit()
            return flagged
        finally:
            await engine.dispose()

    try:
        flagged = asyncio.run(_sweep())
        logger.info("billing_worker.completed", run_id=run_id, flagged=flagged)
        return {"status": "success", "flagged": flagged}
    except Exception as exc:
        logger.error("billing_worker.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
