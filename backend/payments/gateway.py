"""
Payment Gateway Adapter — one ledger shape for every payment source.

Card, PayPal and offline (bank / wallet / cash) payments are normalised into a
GatewayResult, then ``pay_invoice`` runs the shared pipeline:

  reconcile invoice → package history note → ledger row → receipt (outbox)

Only reconciliation errors propagate. The ledger row and the receipt are
side effects and cannot fail the payment. When reconciliation fails after the
money was taken (no invoice, overpayment, wrong currency) the ledger row is
still written, marked unapplied, and committed before the error is re-raised.
"""

import secrets
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from billing.ledger import record_payment
from billing.reconciler import AppliedPayment, apply_payment, locate_invoice
from core.config import get_settings
from core.errors import AmountExceedsBalance, CargoDeskError, CurrencyMismatch, NotFound, ValidationError
from db.models import PAYMENT_METHODS, Invoice, Package, Payment, User, utcnow
from notifications.outbox import TOPIC_PAYMENT_RECEIPT, enqueue
from payments.paypal import PayPalCapture
from shipping.lifecycle import Actor, add_note

logger = structlog.get_logger()

OFFLINE_METHODS = ("bank", "wallet", "cash")

# Reconciliation failures that leave a captured payment without an invoice.
UNAPPLIED_ERRORS = (NotFound, AmountExceedsBalance, CurrencyMismatch)


@dataclass(frozen=True)
class GatewayResult:
    method: str
    gateway: str
    status: str
    reference: str
    amount: float
    currency: str | None
    gateway_ref: str | None = None
    meta: dict = field(default_factory=dict)


@dataclass
class PaymentOutcome:
    applied: AppliedPayment
    ledger: Payment | None

    @property
    def invoice(self) -> Invoice:
        return self.applied.invoice


def new_reference(prefix: str = "PAY") -> str:
    return f"{prefix}-{utcnow():%Y%m%d%H%M%S}-{secrets.token_hex(4).upper()}"


def card_result(
    amount: float,
    currency: str | None,
    card_number: str | None = None,
    expiry: str | None = None,
    reference: str | None = None,
) -> GatewayResult:
    """Card capture; only the last four digits are ever kept."""
    digits = "".join(ch for ch in (card_number or "") if ch.isdigit())
    meta = {"last4": digits[-4:]} if digits else {}
    if expiry:
        meta["expiry"] = expiry
    ref = reference or new_reference()
    return GatewayResult(
        method="card",
        gateway="card",
        status="captured",
        reference=ref,
        gateway_ref=ref,
        amount=amount,
        currency=currency,
        meta=meta,
    )


def paypal_result(capture: PayPalCapture, amount: float | None = None) -> GatewayResult:
    """A confirmed PayPal capture. ``amount`` narrows the captured total to one invoice."""
    return GatewayResult(
        method="paypal",
        gateway="paypal",
        status="captured",
        reference=capture.transaction_id or capture.order_id,
        gateway_ref=capture.order_id,
        amount=capture.amount if amount is None else amount,
        currency=capture.currency,
        meta={"paypal_order_id": capture.order_id, "transaction_id": capture.transaction_id},
    )


def offline_result(method: str, amount: float, currency: str | None, reference: str | None = None) -> GatewayResult:
    if method not in OFFLINE_METHODS:
        raise ValidationError(
            f"Unsupported payment method '{method}'",
            details=[{"field": "method", "message": f"must be one of {', '.join(PAYMENT_METHODS)}"}],
        )
    return GatewayResult(
        method=method,
        gateway="manual",
        status="captured",
        reference=reference or new_reference(),
        amount=amount,
        currency=currency,
    )


def receipt_payload(user: User | None, result: GatewayResult, invoice: Invoice, tracking_number: str | None) -> dict:
    return {
        "to": user.email if user else None,
        "first_name": user.first_name if user else None,
        "amount": result.amount,
        "currency": result.currency or invoice.currency,
        "method": result.method,
        "tracking_number": tracking_number,
        "reference": invoice.invoice_number,
        "receipt_number": result.reference,
        "paid_at": utcnow().isoformat(),
    }


async def record_unapplied(
    db: AsyncSession,
    result: GatewayResult,
    error: CargoDeskError,
    *,
    invoice: Invoice | None = None,
    user_id=None,
    package_id=None,
    tracking_number: str | None = None,
) -> Payment | None:
    """Ledger row for a payment no invoice absorbed. Flushes; the caller commits."""
    currency = result.currency or (invoice.currency if invoice is not None else get_settings().invoice_currency)
    meta = {**result.meta, "unapplied": True, "error": error.message}
    if invoice is not None:
        meta["invoice_number"] = invoice.invoice_number
    ledger = await record_payment(
        db,
        amount=result.amount,
        currency=currency.upper(),
        method=result.method,
        user_id=invoice.user_id if invoice is not None else user_id,
        invoice_id=invoice.invoice_id if invoice is not None else None,
        package_id=invoice.package_id if invoice is not None else package_id,
        tracking_number=tracking_number,
        gateway=result.gateway,
        gateway_ref=result.gateway_ref,
        reference=result.reference,
        status=result.status,
        meta=meta,
    )
    logger.warning(
        "payments.unapplied_recorded",
        method=result.method,
        amount=result.amount,
        reference=result.reference,
        tracking_number=tracking_number,
        error=error.message,
    )
    return ledger


async def pay_invoice(
    db: AsyncSession,
    result: GatewayResult,
    *,
    package: Package | None = None,
    invoice: Invoice | None = None,
    user: User | None = None,
    actor: Actor | None = None,
    allow_overpayment: bool | None = None,
    commit_unapplied: bool = True,
) -> PaymentOutcome:
    """Apply one normalised payment. Flushes; the caller commits.

    With ``commit_unapplied`` a reconciliation failure commits an unapplied
    ledger row before re-raising. Bulk runs pass False and record it themselves.
    """
    try:
        if invoice is None:
            invoice = await locate_invoice(db, package=package)
        applied = await apply_payment(
            db,
            invoice,
            amount=result.amount,
            currency=result.currency,
            method=result.method,
            reference=result.reference,
            allow_overpayment=allow_overpayment,
        )
    except UNAPPLIED_ERRORS as exc:
        if commit_unapplied and result.status == "captured":
            owner = user.user_id if user is not None else (package.user_id if package is not None else None)
            await record_unapplied(
                db,
                result,
                exc,
                invoice=invoice,
                user_id=owner,
                package_id=package.package_id if package is not None else None,
                tracking_number=package.tracking_number if package is not None else None,
            )
            await db.commit()
        raise
    if applied.duplicate:
        return PaymentOutcome(applied=applied, ledger=None)

    tracking_number = package.tracking_number if package is not None else None
    if package is not None:
        await add_note(
            db,
            package,
            f"Payment received: {result.amount:.2f} {invoice.currency} via {result.method}",
            actor,
        )

    ledger = await record_payment(
        db,
        amount=result.amount,
        currency=invoice.currency,
        method=result.method,
        user_id=invoice.user_id,
        invoice_id=invoice.invoice_id,
        package_id=invoice.package_id,
        tracking_number=tracking_number,
        gateway=result.gateway,
        gateway_ref=result.gateway_ref,
        reference=result.reference,
        status=result.status,
        meta={"invoice_number": invoice.invoice_number, **result.meta},
    )

    if user is not None and user.email:
        enqueue(db, TOPIC_PAYMENT_RECEIPT, receipt_payload(user, result, invoice, tracking_number))

    logger.info(
        "payments.applied",
        invoice_number=invoice.invoice_number,
        method=result.method,
        amount=result.amount,
        status=invoice.status,
    )
    return PaymentOutcome(applied=applied, ledger=ledger)
