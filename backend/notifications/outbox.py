"""
Transactional outbox for side effects (emails).

Producers call ``enqueue`` inside their own transaction, so a message exists
if and only if the business write committed. ``drain_outbox`` (run by the
Celery beat task) delivers pending messages at-least-once:

  handler returns truthy   → sent
  handler raises / False   → attempts += 1, retried on the next drain
  attempts ≥ max_attempts  → failed (kept for inspection)
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import OutboxMessage, utcnow
from notifications import email

logger = structlog.get_logger()

TOPIC_PAYMENT_RECEIPT = "email.payment_receipt"
TOPIC_PACKAGE_RECEIVED = "email.package_received"

Handler = Callable[[dict], bool | Awaitable[bool]]


@dataclass
class DrainReport:
    sent: int = 0
    retried: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"sent": self.sent, "retried": self.retried, "failed": self.failed}


def enqueue(db: AsyncSession, topic: str, payload: dict) -> OutboxMessage:
    """Add a message to the caller's transaction; nothing is sent here."""
    message = OutboxMessage(topic=topic, payload=payload, status="pending", attempts=0)
    db.add(message)
    logger.debug("outbox.enqueued", topic=topic)
    return message


def default_handlers() -> dict[str, Handler]:
    # SendGrid's client is synchronous; keep it off the event loop.
    async def _receipt(payload: dict) -> bool:
        return await asyncio.to_thread(email.send_payment_receipt, payload)

    async def _received(payload: dict) -> bool:
        return await asyncio.to_thread(email.send_package_received, payload)

    return {TOPIC_PAYMENT_RECEIPT: _receipt, TOPIC_PACKAGE_RECEIVED: _received}


async def _dispatch(handler: Handler, payload: dict) -> bool:
    result = handler(payload)
    if asyncio.iscoroutine(result):
        result = await result
    return bool(result)


async def drain_outbox(
    db: AsyncSession,
    handlers: dict[str, Handler] | None = None,
    batch_size: int | None = None,
    max_attempts: int | None = None,
) -> DrainReport:
    settings = get_settings()
    handlers = handlers if handlers is not None else default_handlers()
    batch_size = batch_size or settings.outbox_batch_size
    max_attempts = max_attempts or settings.outbox_max_attempts

    result = await db.execute(
        select(OutboxMessage)
        .where(OutboxMessage.status == "pending")
        .order_by(OutboxMessage.message_id)
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )
    report = DrainReport()

    for message in result.scalars().all():
        handler = handlers.get(message.topic)
        message.attempts += 1
        if handler is None:
            message.status = "failed"
            message.last_error = f"No handler for topic '{message.topic}'"
            report.failed += 1
            logger.error("outbox.unknown_topic", message_id=message.message_id, topic=message.topic)
            continue

        try:
            delivered = await _dispatch(handler, message.payload)
            error = None if delivered else "handler reported failure"
        except Exception as exc:  # handler failures are recorded, never propagated
            delivered = False
            error = f"{type(exc).__name__}: {exc}"

        if delivered:
            message.status = "sent"
            message.dispatched_at = utcnow()
            message.last_error = None
            report.sent += 1
            continue

        message.last_error = error
        if message.attempts >= max_attempts:
            message.status = "failed"
            report.failed += 1
        else:
            report.retried += 1
        logger.warning(
            "outbox.dispatch_failed",
            message_id=message.message_id,
            topic=message.topic,
            attempts=message.attempts,
            error=error,
        )

    await db.commit()
    if report.sent or report.retried or report.failed:
        logger.info("outbox.drained", **report.as_dict())
    return report
