"""
Invoice/Billing Reconciler — applies payment events to invoices.

Given {invoice or package, amount, currency, method, reference}:
  1. locate the invoice (newest invoice on the package if only that is known)
  2. amount_paid += amount
  3. balance_due = max(0, total − amount_paid)
  4. status = derive_status(...)
  5. append an InvoicePayment row (unique on invoice + reference)

Step 5's unique key is what makes a payment count only once: replaying the
same gateway reference returns the earlier application unchanged.
"""

from dataclasses import dataclass
from datetime import date

import structlog
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import get_settings
from core.errors import AmountExceedsBalance, CurrencyMismatch, NotFound, ValidationError
from db.models import Invoice, InvoicePayment, Package, utcnow

logger = structlog.get_logger()

# Floating point slack when comparing money amounts.
EPSILON = 0.005


@dataclass
class AppliedPayment:
    invoice: Invoice
    invoice_payment: InvoicePayment
    amount: float
    duplicate: bool = False


def balance_due(total: float, amount_paid: float) -> float:
    return round(max(0.0, (total or 0.0) - (amount_paid or 0.0)), 2)


def derive_status(
    total: float,
    amount_paid: float,
    due_date: date | None,
    current_status: str = "sent",
    today: date | None = None,
) -> str:
    balance = balance_due(total, amount_paid)
    if balance <= 0:
        return "paid"
    today = today or utcnow().date()
    if current_status == "overdue" or (due_date is not None and due_date < today):
        return "overdue"
    if (amount_paid or 0.0) > 0:
        return "partially_paid"
    return "draft" if current_status == "draft" else "sent"


async def locate_invoice(
    db: AsyncSession,
    invoice_id=None,
    invoice_number: str | None = None,
    package: Package | None = None,
    tracking_number: str | None = None,
) -> Invoice:
    query = select(Invoice).options(selectinload(Invoice.items), selectinload(Invoice.payments))
    if invoice_id is not None:
        query = query.where(Invoice.invoice_id == invoice_id)
    elif invoice_number:
        query = query.where(Invoice.invoice_number == invoice_number.strip())
    elif package is not None:
        query = query.where(Invoice.package_id == package.package_id)
    elif tracking_number:
        query = query.join(Package, Invoice.package_id == Package.package_id).where(
            Package.tracking_number == tracking_number.strip()
        )
    else:
        raise ValidationError("An invoice id, invoice number or package is required")

    result = await db.execute(query.order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc()).limit(1))
    invoice = result.scalar_one_or_none()
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice


async def _existing_application(db: AsyncSession, invoice: Invoice, reference: str) -> InvoicePayment | None:
    result = await db.execute(
        select(InvoicePayment).where(
            InvoicePayment.invoice_id == invoice.invoice_id,
            InvoicePayment.reference == reference,
        )
    )
    return result.scalar_one_or_none()


async def apply_payment(
    db: AsyncSession,
    invoice: Invoice,
    amount: float,
    currency: str | None,
    method: str,
    reference: str,
    allow_overpayment: bool | None = None,
    today: date | None = None,
) -> AppliedPayment:
    """Apply one payment to `invoice` and flush. Caller owns the commit.

    ``allow_overpayment=None`` defers to settings; the admin path passes False.
    """
    settings = get_settings()
    if allow_overpayment is None:
        allow_overpayment = settings.allow_overpayment

    if amount is None or amount <= 0:
        raise ValidationError("Payment amount must be positive", details=[{"field": "amount", "message": "must be > 0"}])
    if not reference:
        raise ValidationError("Payment reference is required", details=[{"field": "reference", "message": "required"}])

    currency = (currency or invoice.currency).upper()
    if settings.enforce_currency_match and currency != invoice.currency.upper():
        raise CurrencyMismatch(f"Payment currency {currency} does not match invoice currency {invoice.currency}")

    previous = await _existing_application(db, invoice, reference)
    if previous is not None:
        logger.info(
            "reconciler.duplicate_payment",
            invoice_number=invoice.invoice_number,
            reference=reference,
        )
        return AppliedPayment(invoice=invoice, invoice_payment=previous, amount=0.0, duplicate=True)

    balance = balance_due(invoice.total, invoice.amount_paid)
    if not allow_overpayment and amount > balance + EPSILON:
        raise AmountExceedsBalance(
            f"Payment of {amount:.2f} exceeds balance of {balance:.2f}",
            details={"balance_due": balance, "amount": amount},
        )

    invoice.amount_paid = round((invoice.amount_paid or 0.0) + amount, 2)
    invoice.balance_due = balance_due(invoice.total, invoice.amount_paid)
    invoice.status = derive_status(invoice.total, invoice.amount_paid, invoice.due_date, invoice.status, today)
    invoice.updated_at = utcnow()

    applied = InvoicePayment(
        invoice_id=invoice.invoice_id,
        amount=amount,
        currency=currency,
        method=method,
        reference=reference,
        paid_at=utcnow(),
    )
    if "payments" in inspect(invoice).unloaded:
        db.add(applied)
    else:
        invoice.payments.append(applied)
    await db.flush()

    logger.info(
        "reconciler.payment_applied",
        invoice_number=invoice.invoice_number,
        amount=amount,
        amount_paid=invoice.amount_paid,
        balance_due=invoice.balance_due,
        status=invoice.status,
    )
    return AppliedPayment(invoice=invoice, invoice_payment=applied, amount=amount)


async def flag_overdue(db: AsyncSession, today: date | None = None) -> int:
    """Mark past-due invoices with an open balance as overdue. Caller commits."""
    today = today or utcnow().date()
    result = await db.execute(
        select(Invoice).where(
            Invoice.due_date < today,
            Invoice.balance_due > 0,
            Invoice.status.in_(("sent", "partially_paid")),
        )
    )
    flagged = 0
    for invoice in result.scalars().all():
        invoice.status = "overdue"
        flagged += 1
    if flagged:
        await db.flush()
    logger.info("reconciler.overdue_flagged", count=flagged, as_of=today.isoformat())
    return flagged
