"""
Bulk payments — one customer payment spread over several packages.

Two policies, chosen per request:

  best_effort  each item runs in its own SAVEPOINT; a failing item is rolled
               back and reported, every other item is committed
  atomic       all items share the transaction; the first failure rolls the
               whole batch back

Either way the result has one entry per requested item, in request order:
``{tracking_number, success, error?}``.

PayPal payments are captured before any invoice is touched. A failed capture
raises GatewayError and the batch never starts. A batch that names the same
tracking number twice is rejected before anything is charged.

An item that finds no invoice, overpays or has the wrong currency still leaves
an unapplied ledger row, in atomic mode too.
"""

from dataclasses import dataclass, field, replace

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing.reconciler import EPSILON, locate_invoice
from core.errors import CargoDeskError, Forbidden, GatewayError, ValidationError
from db.models import User, utcnow
from notifications.outbox import TOPIC_PAYMENT_RECEIPT, enqueue
from payments.gateway import (
    UNAPPLIED_ERRORS,
    GatewayResult,
    card_result,
    new_reference,
    offline_result,
    pay_invoice,
    paypal_result,
    record_unapplied,
)
from payments.paypal import PayPalCapture, PayPalClient
from shipping.lifecycle import Actor, get_package

logger = structlog.get_logger()

BULK_MODES = ("best_effort", "atomic")


@dataclass(frozen=True)
class BulkItem:
    tracking_number: str
    amount: float
    invoice_number: str | None = None


@dataclass
class BulkItemResult:
    tracking_number: str
    success: bool
    error: str | None = None
    amount: float = 0.0
    invoice_number: str | None = None
    invoice_status: str | None = None

    def as_dict(self) -> dict:
        body = {"tracking_number": self.tracking_number, "success": self.success}
        if self.error:
            body["error"] = self.error
        if self.success:
            body["amount"] = self.amount
            body["invoice_number"] = self.invoice_number
            body["invoice_status"] = self.invoice_status
        return body


@dataclass
class BulkOutcome:
    mode: str
    results: list[BulkItemResult] = field(default_factory=list)
    capture: PayPalCapture | None = None

    @property
    def processed_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total_applied(self) -> float:
        return round(sum(r.amount for r in self.results if r.success), 2)

    def as_dict(self) -> dict:
        failed = len(self.results) - self.processed_count
        return {
            "success": failed == 0,
            "mode": self.mode,
            "message": f"Processed {self.processed_count} of {len(self.results)} payments",
            "processed_count": self.processed_count,
            "failed_count": failed,
            "total_applied": self.total_applied,
            "results": [r.as_dict() for r in self.results],
        }


def _item_result(base: GatewayResult, item: BulkItem) -> GatewayResult:
    """Narrow a batch-level gateway result to one item; references stay unique per invoice."""
    return replace(base, reference=f"{base.reference}:{item.tracking_number}", amount=item.amount, meta=dict(base.meta))


async def _apply_item(
    db: AsyncSession,
    item: BulkItem,
    base: GatewayResult,
    user: User,
    actor: Actor,
) -> BulkItemResult:
    if item.amount is None or item.amount <= 0:
        raise ValidationError("Amount must be positive")
    package = await get_package(db, item.tracking_number, include_deleted=False)
    if package.user_id != user.user_id:
        raise Forbidden("Package belongs to another customer")

    invoice = None
    if item.invoice_number:
        invoice = await locate_invoice(db, invoice_number=item.invoice_number)
        if invoice.package_id != package.package_id:
            raise ValidationError("Invoice does not belong to this package")

    outcome = await pay_invoice(
        db, _item_result(base, item), package=package, invoice=invoice, actor=actor, commit_unapplied=False
    )
    return BulkItemResult(
        tracking_number=item.tracking_number,
        success=True,
        amount=outcome.applied.amount,
        invoice_number=outcome.invoice.invoice_number,
        invoice_status=outcome.invoice.status,
    )


async def _record_unapplied_item(
    db: AsyncSession, base: GatewayResult, item: BulkItem, error: CargoDeskError, user_id
) -> None:
    await record_unapplied(
        db, _item_result(base, item), error, user_id=user_id, tracking_number=item.tracking_number
    )


async def _capture_paypal(client: PayPalClient | None, order_id: str | None, expected: float) -> PayPalCapture:
    if client is None or not order_id:
        raise ValidationError(
            "PayPal payments need a PayPal order id",
            details=[{"field": "paypal_order_id", "message": "required"}],
        )
    capture = await client.capture_order(order_id)
    if capture.amount + EPSILON < expected:
        logger.error(
            "payments.bulk_capture_short",
            order_id=order_id,
            captured=capture.amount,
            expected=expected,
        )
        raise GatewayError(
            "Captured amount is less than the items total",
            details={"captured": capture.amount, "expected": expected},
        )
    return capture


async def process_bulk(
    db: AsyncSession,
    items: list[BulkItem],
    *,
    user: User,
    method: str,
    currency: str | None = None,
    mode: str = "best_effort",
    paypal_order_id: str | None = None,
    paypal_client: PayPalClient | None = None,
    card_number: str | None = None,
    card_expiry: str | None = None,
) -> BulkOutcome:
    if not items:
        raise ValidationError("No items provided", details=[{"field": "items", "message": "required"}])
    if mode not in BULK_MODES:
        raise ValidationError(
            f"Unknown bulk mode '{mode}'",
            details=[{"field": "mode", "message": f"must be one of {', '.join(BULK_MODES)}"}],
        )

    seen: set[str] = set()
    repeated: list[str] = []
    for item in items:
        if item.tracking_number in seen and item.tracking_number not in repeated:
            repeated.append(item.tracking_number)
        seen.add(item.tracking_number)
    if repeated:
        raise ValidationError(
            "Duplicate tracking numbers in batch",
            details=[{"field": "items", "message": f"duplicate tracking_number {t}"} for t in repeated],
        )

    expected = round(sum(item.amount or 0.0 for item in items), 2)
    outcome = BulkOutcome(mode=mode)

    if method == "paypal":
        outcome.capture = await _capture_paypal(paypal_client, paypal_order_id, expected)
        base = paypal_result(outcome.capture)
        if currency and not base.currency:
            base = replace(base, currency=currency)
    elif method == "card":
        base = card_result(expected, currency, card_number, card_expiry, reference=new_reference("BULK"))
    else:
        base = offline_result(method, expected, currency, reference=new_reference("BULK"))

    actor = Actor(role="customer", name=user.user_code)
    user_id = user.user_id

    if mode == "best_effort":
        for item in items:
            try:
                async with db.begin_nested():
                    result = await _apply_item(db, item, base, user, actor)
            except (CargoDeskError, SQLAlchemyError) as exc:
                message = exc.message if isinstance(exc, CargoDeskError) else "Payment could not be recorded"
                logger.warning("payments.bulk_item_failed", tracking_number=item.tracking_number, error=str(exc))
                result = BulkItemResult(tracking_number=item.tracking_number, success=False, error=message)
                if isinstance(exc, UNAPPLIED_ERRORS):
                    await _record_unapplied_item(db, base, item, exc, user_id)
            outcome.results.append(result)
    else:
        for index, item in enumerate(items):
            try:
                outcome.results.append(await _apply_item(db, item, base, user, actor))
            except (CargoDeskError, SQLAlchemyError) as exc:
                await db.rollback()
                message = exc.message if isinstance(exc, CargoDeskError) else "Payment could not be recorded"
                logger.warning(
                    "payments.bulk_atomic_rolled_back",
                    tracking_number=item.tracking_number,
                    error=str(exc),
                    captured_order=outcome.capture.order_id if outcome.capture else None,
                )
                rolled_back = f"Rolled back: batch failed on {item.tracking_number}"
                outcome.results = [
                    BulkItemResult(tracking_number=done.tracking_number, success=False, error=rolled_back)
                    for done in outcome.results
                ]
                outcome.results.append(BulkItemResult(tracking_number=item.tracking_number, success=False, error=message))
                outcome.results.extend(
                    BulkItemResult(tracking_number=rest.tracking_number, success=False, error=rolled_back)
                    for rest in items[index + 1 :]
                )
                if isinstance(exc, UNAPPLIED_ERRORS):
                    await _record_unapplied_item(db, base, item, exc, user_id)
                    await db.commit()
                return outcome

    if outcome.processed_count and user.email:
        enqueue(
            db,
            TOPIC_PAYMENT_RECEIPT,
            {
                "to": user.email,
                "first_name": user.first_name,
                "amount": outcome.total_applied,
                "currency": base.currency,
                "method": method,
                "tracking_number": ", ".join(r.tracking_number for r in outcome.results if r.success),
                "reference": "Bulk payment",
                "receipt_number": base.reference,
                "paid_at": utcnow().isoformat(),
            },
        )
    await db.commit()

    logger.info(
        "payments.bulk_processed",
        mode=mode,
        method=method,
        processed=outcome.processed_count,
        failed=len(outcome.results) - outcome.processed_count,
        total_applied=outcome.total_applied,
    )
    return outcome
