"""
Reports Router — admin dashboard figures and the audit trail.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, require_roles
from db.models import AuditLog, Invoice, Payment, utcnow
from shipping.lifecycle import count_active_by_status

router = APIRouter(prefix="/api/admin/reports", tags=["reports"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class InvoiceTotals(BaseModel):
    currency: str
    count: int
    billed: float
    collected: float
    outstanding: float
    overdue_count: int


class Dashboard(BaseModel):
    packages_by_status: dict[str, int]
    active_packages: int
    invoices: list[InvoiceTotals]
    payments_by_currency: dict[str, float]
    generated_at: datetime


class AuditEntry(BaseModel):
    audit_id: int
    actor: str
    action: str
    entity: str
    entity_id: str | None
    details: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditPage(BaseModel):
    logs: list[AuditEntry]
    total: int
    page: int
    limit: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/dashboard", response_model=Dashboard)
async def dashboard(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    by_status = await count_active_by_status(db)

    overdue = func.sum(case((Invoice.status == "overdue", 1), else_=0))
    invoice_rows = (
        await db.execute(
            select(
                Invoice.currency,
                func.count(Invoice.invoice_id),
                func.coalesce(func.sum(Invoice.total), 0.0),
                func.coalesce(func.sum(Invoice.amount_paid), 0.0),
                func.coalesce(func.sum(Invoice.balance_due), 0.0),
                func.coalesce(overdue, 0),
            )
            .where(Invoice.status != "draft")
            .group_by(Invoice.currency)
            .order_by(Invoice.currency)
        )
    ).all()

    payment_rows = (
        await db.execute(
            select(Payment.currency, func.coalesce(func.sum(Payment.amount), 0.0))
            .where(Payment.status == "captured")
            .group_by(Payment.currency)
        )
    ).all()

    return Dashboard(
        packages_by_status=by_status,
        active_packages=sum(by_status.values()),
        invoices=[
            InvoiceTotals(
                currency=currency,
                count=count,
                billed=round(billed, 2),
                collected=round(collected, 2),
                outstanding=round(outstanding, 2),
                overdue_count=int(overdue_count),
            )
            for currency, count, billed, collected, outstanding, overdue_count in invoice_rows
        ],
        payments_by_currency={currency: round(total, 2) for currency, total in payment_rows},
        generated_at=utcnow(),
    )


@router.get("/audit-logs", response_model=AuditPage)
async def audit_logs(
    entity: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    actor: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    query = select(AuditLog)
    if entity:
        query = query.where(AuditLog.entity == entity)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    if action:
        query = query.where(AuditLog.action == action)
    if actor:
        query = query.where(AuditLog.actor == actor)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(AuditLog.created_at.desc(), AuditLog.audit_id.desc()).offset((page - 1) * limit).limit(limit)
    )
    return AuditPage(logs=result.scalars().all(), total=total, page=page, limit=limit)
