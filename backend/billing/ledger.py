"""
Payment ledger — standalone Payment rows for reporting.

Recording is best-effort: the row is written inside a SAVEPOINT so a failure
rolls back only the ledger insert, is logged, and never reaches the caller.
"""

import secrets

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Payment, utcnow

logger = structlog.get_logger()


def new_payment_number() -> str:
    return f"PAY-{utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"


async def record_payment(
    db: AsyncSession,
    *,
    amount: float,
    currency: str,
    method: str,
    user_id=None,
    invoice_id=None,
    package_id=None,
    tracking_number: str | None = None,
    gateway: str = "manual",
    gateway_ref: str | None = None,
    reference: str | None = None,
    status: str = "captured",
    meta: dict | None = None,
) -> Payment | None:
    payment = Payment(
        payment_number=new_payment_number(),
        user_id=user_id,
        invoice_id=invoice_id,
        package_id=package_id,
        tracking_number=tracking_number,
        amount=amount,
        currency=currency,
        method=method,
        status=status,
        gateway=gateway,
        gateway_ref=gateway_ref,
        reference=reference,
        meta=meta,
        paid_at=utcnow() if status == "captured" else None,
    )
    try:
        async with db.begin_nested():
            db.add(payment)
    except SQLAlchemyError as exc:
        logger.error(
            "ledger.record_failed",
            amount=amount,
            method=method,
            tracking_number=tracking_number,
            reference=reference,
            error=str(exc),
        )
        return None

    logger.info(
        "ledger.recorded",
        payment_number=payment.payment_number,
        amount=amount,
        currency=currency,
        method=method,
        gateway=gateway,
    )
    return payment
