"""
Invoices Router — billing endpoints.

  /api/admin/invoices     create, list, detail
  /api/admin/bills/pay    manual payment entry (never allows overpayment)
  /api/customer/bills     own invoices
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import actor_from, get_db, get_current_customer, require_roles
from billing.invoices import create_invoice
from billing.reconciler import locate_invoice
from core.errors import NotFound, ValidationError
from db.models import Invoice, User
from payments.gateway import card_result, offline_result, pay_invoice
from shipping.lifecycle import get_package

router = APIRouter(prefix="/api/admin/invoices", tags=["invoices"])
bills_router = APIRouter(prefix="/api/admin/bills", tags=["invoices"])
customer_router = APIRouter(prefix="/api/customer/bills", tags=["invoices"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class InvoiceItemIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: float = Field(1, gt=0)
    unit_price: float = Field(..., ge=0)
    tax_rate: float = Field(0, ge=0, le=100)
    tracking_number: str | None = None


class InvoiceCreate(BaseModel):
    user_code: str = Field(..., min_length=1)
    items: list[InvoiceItemIn] = Field(..., min_length=1)
    currency: str | None = Field(None, min_length=3, max_length=3)
    due_date: date | None = None
    discount_type: str | None = Field(None, pattern="^(percentage|fixed)$")
    discount_value: float | None = Field(None, ge=0)
    tracking_number: str | None = None
    notes: str | None = None
    status: str = Field("sent", pattern="^(draft|sent)$")


class InvoiceItemResponse(BaseModel):
    description: str
    quantity: float
    unit_price: float
    tax_rate: float
    amount: float
    tax_amount: float
    total: float
    tracking_number: str | None

    model_config = {"from_attributes": True}


class InvoicePaymentResponse(BaseModel):
    amount: float
    currency: str
    method: str
    reference: str
    paid_at: datetime

    model_config = {"from_attributes": True}


class InvoiceResponse(BaseModel):
    invoice_id: UUID
    invoice_number: str
    invoice_type: str
    user_id: UUID
    package_id: UUID | None
    currency: str
    issue_date: date
    due_date: date
    subtotal: float
    tax_total: float
    discount_amount: float
    total: float
    amount_paid: float
    balance_due: float
    status: str
    notes: str | None

    model_config = {"from_attributes": True}


class InvoiceDetail(InvoiceResponse):
    items: list[InvoiceItemResponse]
    payments: list[InvoicePaymentResponse]


class ManualPayment(BaseModel):
    """Admin-entered payment against an invoice or a package's latest invoice."""

    invoice_number: str | None = None
    tracking_number: str | None = None
    amount: float = Field(..., gt=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    method: str = Field(..., pattern="^(card|bank|wallet|cash)$")
    reference: str | None = None
    card_number: str | None = None


class PaymentResult(BaseModel):
    invoice: InvoiceDetail
    duplicate: bool
    payment_number: str | None


# ─── Admin ──────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[InvoiceResponse])
async def list_invoices(
    status: str | None = None,
    user_code: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    query = select(Invoice)
    if status:
        query = query.where(Invoice.status == status)
    if user_code:
        query = query.join(User, Invoice.user_id == User.user_id).where(User.user_code == user_code)
    result = await db.execute(query.order_by(Invoice.created_at.desc()).limit(limit))
    return result.scalars().all()


@router.post("/", response_model=InvoiceDetail, status_code=201)
async def create_invoice_endpoint(
    body: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    customer = (await db.execute(select(User).where(User.user_code == body.user_code))).scalar_one_or_none()
    if customer is None:
        raise NotFound("Customer not found")

    package_id = None
    if body.tracking_number:
        package = await get_package(db, body.tracking_number, include_deleted=False)
        if package.user_id != customer.user_id:
            raise ValidationError("Package belongs to another customer")
        package_id = package.package_id

    invoice = await create_invoice(
        db,
        user_id=customer.user_id,
        items=[item.model_dump() for item in body.items],
        currency=body.currency,
        due_date=body.due_date,
        discount_type=body.discount_type,
        discount_value=body.discount_value,
        notes=body.notes,
        package_id=package_id,
        status=body.status,
    )
    await db.commit()
    return invoice


@router.get("/{invoice_number}", response_model=InvoiceDetail)
async def get_invoice(
    invoice_number: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    return await locate_invoice(db, invoice_number=invoice_number)


@bills_router.post("/pay", response_model=PaymentResult)
async def admin_pay_bill(
    body: ManualPayment,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    package = None
    if body.tracking_number:
        package = await get_package(db, body.tracking_number)
    if body.invoice_number:
        invoice = await locate_invoice(db, invoice_number=body.invoice_number)
    elif package is not None:
        invoice = await locate_invoice(db, package=package)
    else:
        raise ValidationError(
            "invoice_number or tracking_number is required",
            details=[{"field": "invoice_number", "message": "required"}],
        )

    if body.method == "card":
        result = card_result(body.amount, body.currency, body.card_number, reference=body.reference)
    else:
        result = offline_result(body.method, body.amount, body.currency, body.reference)

    customer = await db.get(User, invoice.user_id)
    outcome = await pay_invoice(
        db,
        result,
        package=package,
        invoice=invoice,
        user=customer,
        actor=actor_from(user),
        allow_overpayment=False,
    )
    await db.commit()
    return PaymentResult(
        invoice=InvoiceDetail.model_validate(outcome.invoice),
        duplicate=outcome.applied.duplicate,
        payment_number=outcome.ledger.payment_number if outcome.ledger else None,
    )


# ─── Customer ───────────────────────────────────────────────────────────────


@customer_router.get("/", response_model=list[InvoiceDetail])
async def my_bills(
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    query = (
        select(Invoice)
        .where(Invoice.user_id == customer.user_id)
        .options(selectinload(Invoice.items), selectinload(Invoice.payments))
    )
    if status:
        query = query.where(Invoice.status == status)
    result = await db.execute(query.order_by(Invoice.created_at.desc()))
    return result.scalars().all()


@customer_router.get("/{invoice_number}", response_model=InvoiceDetail)
async def my_bill(
    invoice_number: str,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    invoice = await locate_invoice(db, invoice_number=invoice_number)
    if invoice.user_id != customer.user_id:
        raise NotFound("Invoice not found")
    return invoice
