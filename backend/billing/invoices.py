"""
Invoice building — line math, totals, numbering and intake auto-billing.

Line:     amount = quantity × unit_price
          tax    = amount × tax_rate / 100
Invoice:  total  = subtotal + tax_total − discount
          discount is either a percentage of the subtotal or a fixed amount,
          never more than subtotal + tax.
"""

import math
import re
from dataclasses import dataclass
from datetime import date, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from core.errors import ValidationError
from db.models import Invoice, InvoiceItem, Package, utcnow

logger = structlog.get_logger()

KG_TO_LB = 2.20462
FREE_STORAGE_DAYS = 7
STORAGE_FEE_PER_DAY = 50.0

_NUMBER_RE = re.compile(r"^INV-(\d{4})-(\d+)$")


@dataclass(frozen=True)
class LineTotals:
    amount: float
    tax_amount: float
    total: float


def _money(value: float) -> float:
    return round(value, 2)


def compute_line(quantity: float, unit_price: float, tax_rate: float = 0.0) -> LineTotals:
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be positive", details=[{"field": "quantity", "message": "must be > 0"}])
    if unit_price is None or unit_price < 0:
        raise ValidationError("unit_price must be non-negative", details=[{"field": "unit_price", "message": "must be >= 0"}])
    if tax_rate is None or tax_rate < 0:
        raise ValidationError("tax_rate must be non-negative", details=[{"field": "tax_rate", "message": "must be >= 0"}])

    amount = _money(quantity * unit_price)
    tax_amount = _money(amount * tax_rate / 100)
    return LineTotals(amount=amount, tax_amount=tax_amount, total=_money(amount + tax_amount))


def discount_for(subtotal: float, tax_total: float, discount_type: str | None, discount_value: float | None) -> float:
    if not discount_type or not discount_value:
        return 0.0
    if discount_type == "percentage":
        discount = subtotal * min(discount_value, 100.0) / 100
    elif discount_type == "fixed":
        discount = discount_value
    else:
        raise ValidationError(
            f"Unknown discount type '{discount_type}'",
            details=[{"field": "discount_type", "message": "must be 'percentage' or 'fixed'"}],
        )
    return _money(min(max(discount, 0.0), subtotal + tax_total))


def recalculate_totals(invoice: Invoice) -> Invoice:
    """Recompute every line and the invoice totals from the items in memory."""
    subtotal = 0.0
    tax_total = 0.0
    for item in invoice.items:
        line = compute_line(item.quantity, item.unit_price, item.tax_rate or 0.0)
        item.amount, item.tax_amount, item.total = line.amount, line.tax_amount, line.total
        subtotal += line.amount
        tax_total += line.tax_amount

    invoice.subtotal = _money(subtotal)
    invoice.tax_total = _money(tax_total)
    invoice.discount_amount = discount_for(invoice.subtotal, invoice.tax_total, invoice.discount_type, invoice.discount_value)
    invoice.total = _money(invoice.subtotal + invoice.tax_total - invoice.discount_amount)
    invoice.balance_due = _money(max(0.0, invoice.total - (invoice.amount_paid or 0.0)))
    return invoice


async def next_invoice_number(db: AsyncSession, year: int | None = None) -> str:
    """INV-<year>-<NNNN>, one past the highest number issued this year."""
    year = year or utcnow().year
    prefix = f"INV-{year}-"
    result = await db.execute(select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{prefix}%")))
    highest = 0
    for number in result.scalars().all():
        match = _NUMBER_RE.match(number)
        if match:
            highest = max(highest, int(match.group(2)))
    return f"{prefix}{highest + 1:04d}"


async def create_invoice(
    db: AsyncSession,
    user_id,
    items: list[dict],
    currency: str | None = None,
    due_date: date | None = None,
    discount_type: str | None = None,
    discount_value: float | None = None,
    notes: str | None = None,
    package_id=None,
    invoice_number: str | None = None,
    invoice_type: str = "billing",
    status: str = "sent",
) -> Invoice:
    """Build, total and flush a new invoice. Caller owns the commit."""
    settings = get_settings()
    if not items:
        raise ValidationError("Invoice needs at least one item", details=[{"field": "items", "message": "required"}])

    issue_date = utcnow().date()
    invoice = Invoice(
        invoice_number=invoice_number or await next_invoice_number(db, issue_date.year),
        invoice_type=invoice_type,
        user_id=user_id,
        package_id=package_id,
        currency=(currency or settings.invoice_currency).upper(),
        issue_date=issue_date,
        due_date=due_date or issue_date + timedelta(days=settings.invoice_payment_terms_days),
        discount_type=discount_type,
        discount_value=discount_value,
        amount_paid=0.0,
        status=status,
        notes=notes,
    )
    for raw in items:
        invoice.items.append(
            InvoiceItem(
                description=raw["description"],
                quantity=raw.get("quantity", 1),
                unit_price=raw.get("unit_price", 0.0),
                tax_rate=raw.get("tax_rate", 0.0),
                tracking_number=raw.get("tracking_number"),
            )
        )
    invoice.payments = []
    recalculate_totals(invoice)

    db.add(invoice)
    await db.flush()
    logger.info(
        "invoices.created",
        invoice_number=invoice.invoice_number,
        total=invoice.total,
        currency=invoice.currency,
        items=len(invoice.items),
    )
    return invoice


# ─── Intake tariff ─────────────────────────────────────────────────────────


def shipping_charge(weight_kg: float, settings: Settings | None = None) -> float:
    """First pound at the flat rate, every further (started) pound at the additional rate."""
    settings = settings or get_settings()
    weight_lb = (weight_kg or 0.0) * KG_TO_LB
    if weight_lb <= 0:
        return 0.0
    return settings.first_lb_rate + max(0, math.ceil(weight_lb) - 1) * settings.additional_lb_rate


def customs_duty(declared_value_usd: float, settings: Settings | None = None) -> float:
    settings = settings or get_settings()
    if (declared_value_usd or 0.0) <= settings.customs_duty_threshold:
        return 0.0
    return _money(declared_value_usd * settings.declared_value_exchange_rate * settings.customs_duty_rate)


def storage_fee(days_in_storage: int) -> float:
    if days_in_storage <= FREE_STORAGE_DAYS:
        return 0.0
    return (days_in_storage - FREE_STORAGE_DAYS) * STORAGE_FEE_PER_DAY


def days_in_storage(package: Package, today: date | None = None) -> int:
    received = package.received_at or package.created_at
    if received is None:
        return 0
    return max(0, ((today or utcnow().date()) - received.date()).days)


@dataclass(frozen=True)
class PackageCharges:
    days_in_storage: int
    shipping: float
    storage: float
    customs_duty: float

    @property
    def total(self) -> float:
        return _money(self.shipping + self.storage + self.customs_duty)


def package_charges(package: Package, settings: Settings | None = None, today: date | None = None) -> PackageCharges:
    """Cost breakdown of one package in the invoice currency."""
    settings = settings or get_settings()
    days = days_in_storage(package, today)
    return PackageCharges(
        days_in_storage=days,
        shipping=shipping_charge(package.weight, settings),
        storage=storage_fee(days),
        customs_duty=customs_duty(package.declared_value, settings),
    )


def tariff_items(package: Package, settings: Settings | None = None, today: date | None = None) -> list[dict]:
    settings = settings or get_settings()
    charges = package_charges(package, settings, today)
    items = [
        {
            "description": f"Shipping charges for {package.tracking_number}",
            "quantity": 1,
            "unit_price": charges.shipping,
            "tracking_number": package.tracking_number,
        }
    ]
    if charges.customs_duty:
        items.append(
            {
                "description": f"Customs duty for {package.tracking_number}",
                "quantity": 1,
                "unit_price": charges.customs_duty,
                "tracking_number": package.tracking_number,
            }
        )
    if charges.storage:
        items.append(
            {
                "description": f"Storage for {package.tracking_number} ({charges.days_in_storage} days)",
                "quantity": 1,
                "unit_price": charges.storage,
                "tracking_number": package.tracking_number,
            }
        )
    return items


async def build_package_invoice(db: AsyncSession, package: Package, today: date | None = None) -> Invoice | None:
    """Auto-bill a received package as INV-<tracking>; no-op if already billed or free."""
    settings = get_settings()
    number = f"INV-{package.tracking_number}"
    existing = await db.execute(select(Invoice.invoice_id).where(Invoice.invoice_number == number))
    if existing.scalar_one_or_none() is not None:
        return None

    items = tariff_items(package, settings, today)
    if sum(i["unit_price"] for i in items) <= 0:
        return None

    invoice = await create_invoice(
        db,
        user_id=package.user_id,
        items=items,
        currency=settings.invoice_currency,
        package_id=package.package_id,
        invoice_number=number,
        invoice_type="package",
        notes=f"Auto-generated on receipt of {package.tracking_number}",
    )
    package.shipping_cost = invoice.total
    return invoice
