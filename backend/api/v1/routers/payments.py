"""
Payments Router — customer self-service payments and the admin ledger view.

PayPal flow: create-paypal-order → customer approves on PayPal →
capture-paypal (captures, then applies to the invoice in one request).
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_customer, get_db, get_paypal_client, require_roles
from billing.reconciler import EPSILON, locate_invoice
from core.errors import Forbidden, GatewayError, ValidationError
from db.models import Payment, User
from payments.bulk import BulkItem, process_bulk
from payments.gateway import card_result, offline_result, pay_invoice, paypal_result, record_unapplied
from payments.paypal import PayPalClient
from shipping.lifecycle import Actor, get_package

router = APIRouter(prefix="/api/customer/payments", tags=["payments"])
admin_router = APIRouter(prefix="/api/admin/transactions", tags=["payments"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CardDetails(BaseModel):
    card_number: str = Field(..., min_length=12, max_length=23)
    expiry: str | None = None


class PaymentRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    method: str = Field(..., pattern="^(card|paypal|bank|wallet|cash)$")
    paypal_order_id: str | None = None
    card_details: CardDetails | None = None
    invoice_number: str | None = None


class PaymentResponse(BaseModel):
    success: bool = True
    message: str
    tracking_number: str
    amount: float
    currency: str
    invoice_number: str
    invoice_status: str
    balance_due: float
    payment_id: UUID | None
    duplicate: bool = False


class BulkItemIn(BaseModel):
    tracking_number: str = Field(..., min_length=1)
    amount: float
    invoice_number: str | None = None


class BulkPaymentRequest(BaseModel):
    items: list[BulkItemIn] = Field(..., min_length=1)
    method: str = Field(..., pattern="^(card|paypal|bank|wallet|cash)$")
    currency: str | None = Field(None, min_length=3, max_length=3)
    mode: str = Field("best_effort", pattern="^(best_effort|atomic)$")
    paypal_order_id: str | None = None
    card_details: CardDetails | None = None


class PayPalOrderRequest(BaseModel):
    tracking_numbers: list[str] = Field(..., min_length=1)
    amount: float | None = Field(None, gt=0)


class PayPalOrderResponse(BaseModel):
    order_id: str
    status: str
    approve_url: str | None
    amount: float
    currency: str


class PayPalCaptureRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    tracking_number: str = Field(..., min_length=1)
    invoice_number: str | None = None


class LedgerEntry(BaseModel):
    payment_id: UUID
    payment_number: str
    tracking_number: str | None
    amount: float
    currency: str
    method: str
    status: str
    gateway: str
    gateway_ref: str | None
    reference: str | None
    paid_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _own_package(db: AsyncSession, customer: User, tracking_number: str):
    package = await get_package(db, tracking_number, include_deleted=False)
    if package.user_id != customer.user_id:
        raise Forbidden("Package belongs to another customer")
    return package


def _customer_actor(customer: User) -> Actor:
    return Actor(role="customer", name=customer.user_code)


def _payment_response(outcome, tracking_number: str, message: str) -> PaymentResponse:
    invoice = outcome.invoice
    return PaymentResponse(
        message=message,
        tracking_number=tracking_number,
        amount=outcome.applied.invoice_payment.amount,
        currency=invoice.currency,
        invoice_number=invoice.invoice_number,
        invoice_status=invoice.status,
        balance_due=invoice.balance_due,
        payment_id=outcome.ledger.payment_id if outcome.ledger else None,
        duplicate=outcome.applied.duplicate,
    )


# ─── Customer ───────────────────────────────────────────────────────────────


@router.post("/process", response_model=PaymentResponse)
async def process_payment(
    body: PaymentRequest,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    package = await _own_package(db, customer, body.tracking_number)
    invoice = None
    if body.invoice_number:
        invoice = await locate_invoice(db, invoice_number=body.invoice_number)
        if invoice.package_id != package.package_id:
            raise ValidationError("Invoice does not belong to this package")

    if body.method == "paypal":
        if not body.paypal_order_id:
            raise ValidationError(
                "paypal_order_id is required for PayPal payments",
                details=[{"field": "paypal_order_id", "message": "required"}],
            )
        capture = await paypal.capture_order(body.paypal_order_id)
        if body.amount > capture.amount + EPSILON:
            error = GatewayError(
                f"PayPal captured {capture.amount:.2f} but {body.amount:.2f} was requested",
                details={"captured": capture.amount, "requested": body.amount},
            )
            await record_unapplied(
                db,
                paypal_result(capture),
                error,
                invoice=invoice,
                user_id=customer.user_id,
                package_id=package.package_id,
                tracking_number=package.tracking_number,
            )
            await db.commit()
            raise error
        result = paypal_result(capture, amount=body.amount)
    elif body.method == "card":
        card = body.card_details
        result = card_result(body.amount, body.currency, card.card_number if card else None, card.expiry if card else None)
    else:
        result = offline_result(body.method, body.amount, body.currency)

    outcome = await pay_invoice(
        db,
        result,
        package=package,
        invoice=invoice,
        user=customer,
        actor=_customer_actor(customer),
    )
    await db.commit()
    return _payment_response(outcome, package.tracking_number, "Payment processed successfully")


@router.post("/process-bulk")
async def process_bulk_payment(
    body: BulkPaymentRequest,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    card = body.card_details
    outcome = await process_bulk(
        db,
        [BulkItem(i.tracking_number, i.amount, i.invoice_number) for i in body.items],
        user=customer,
        method=body.method,
        currency=body.currency,
        mode=body.mode,
        paypal_order_id=body.paypal_order_id,
        paypal_client=paypal,
        card_number=card.card_number if card else None,
        card_expiry=card.expiry if card else None,
    )
    return outcome.as_dict()


@router.post("/create-paypal-order", response_model=PayPalOrderResponse)
async def create_paypal_order(
    body: PayPalOrderRequest,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    """Open a PayPal order for the outstanding balance of one or more packages."""
    items = []
    currency = None
    for tracking_number in body.tracking_numbers:
        package = await _own_package(db, customer, tracking_number)
        invoice = await locate_invoice(db, package=package)
        if invoice.balance_due <= 0:
            raise ValidationError(f"Invoice {invoice.invoice_number} is already paid")
        if currency and invoice.currency != currency:
            raise ValidationError("All invoices in one PayPal order must share a currency")
        currency = invoice.currency
        items.append({"name": f"Invoice {invoice.invoice_number}", "amount": invoice.balance_due})

    amount = body.amount if len(items) == 1 and body.amount else round(sum(i["amount"] for i in items), 2)
    if len(items) == 1:
        items[0]["amount"] = amount
    order = await paypal.create_order(
        amount,
        currency,
        items=items,
        description=f"Shipping charges for {', '.join(body.tracking_numbers)}"[:127],
        custom_id=customer.user_code,
    )
    return PayPalOrderResponse(
        order_id=order.order_id,
        status=order.status,
        approve_url=order.approve_url,
        amount=amount,
        currency=currency,
    )


@router.post("/capture-paypal", response_model=PaymentResponse)
async def capture_paypal(
    body: PayPalCaptureRequest,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    package = await _own_package(db, customer, body.tracking_number)
    invoice = await locate_invoice(
        db,
        invoice_number=body.invoice_number,
        package=None if body.invoice_number else package,
    )
    # Nothing is written until PayPal confirms the capture.
    capture = await paypal.capture_order(body.order_id)
    outcome = await pay_invoice(
        db,
        paypal_result(capture),
        package=package,
        invoice=invoice,
        user=customer,
        actor=_customer_actor(customer),
    )
    await db.commit()
    return _payment_response(outcome, package.tracking_number, "PayPal payment captured")


@router.get("/", response_model=list[LedgerEntry])
async def my_payments(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    result = await db.execute(
        select(Payment).where(Payment.user_id == customer.user_id).order_by(Payment.created_at.desc()).limit(limit)
    )
    return result.scalars().all()


# ─── Admin ──────────────────────────────────────────────────────────────────


@admin_router.get("/", response_model=list[LedgerEntry])
async def list_transactions(
    method: str | None = None,
    status: str | None = None,
    tracking_number: str | None = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    query = select(Payment)
    if method:
        query = query.where(Payment.method == method)
    if status:
        query = query.where(Payment.status == status)
    if tracking_number:
        query = query.where(Payment.tracking_number == tracking_number)
    result = await db.execute(query.order_by(Payment.created_at.desc()).limit(limit))
    return result.scalars().all()
