"""
Pre-alerts Router.

  /api/customer/prealerts   create, list own, withdraw while submitted
  /api/admin/prealerts      review queue, approve / reject
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import actor_from, get_current_customer, get_db, require_roles
from db import audit
from db.models import User
from shipping import prealerts

router = APIRouter(prefix="/api/admin/prealerts", tags=["prealerts"])
customer_router = APIRouter(prefix="/api/customer/prealerts", tags=["prealerts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PreAlertCreate(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    carrier: str | None = None
    origin: str | None = None
    expected_date: date | None = None
    notes: str | None = None


class PreAlertResponse(BaseModel):
    pre_alert_id: UUID
    tracking_number: str
    carrier: str | None
    origin: str | None
    expected_date: date | None
    notes: str | None
    status: str
    package_id: UUID | None
    decided_at: datetime | None
    matched_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AdminPreAlertResponse(PreAlertResponse):
    user_code: str
    decided_by: str | None


class Decision(BaseModel):
    id: UUID
    action: str = Field(..., pattern="^(approve|reject)$")


# ─── Customer ───────────────────────────────────────────────────────────────


@customer_router.post("/", response_model=PreAlertResponse, status_code=201)
async def create_pre_alert(
    body: PreAlertCreate,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    return await prealerts.create_pre_alert(db, customer, **body.model_dump())


@customer_router.get("/", response_model=list[PreAlertResponse])
async def my_pre_alerts(
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    return await prealerts.list_for_user(db, customer)


@customer_router.delete("/{pre_alert_id}", status_code=204)
async def withdraw_pre_alert(
    pre_alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    await prealerts.delete_own(db, customer, pre_alert_id)


# ─── Admin ──────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[AdminPreAlertResponse])
async def list_pre_alerts(
    status: str | None = None,
    q: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    rows = await prealerts.admin_list(db, status, q)
    return [
        AdminPreAlertResponse(
            **PreAlertResponse.model_validate(pre_alert).model_dump(),
            user_code=user_code,
            decided_by=pre_alert.decided_by,
        )
        for pre_alert, user_code in rows
    ]


@router.put("/", response_model=PreAlertResponse)
@router.post("/decide", response_model=PreAlertResponse)
async def decide_pre_alert(
    body: Decision,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    actor = actor_from(user).name
    pre_alert = await prealerts.decide(db, body.id, body.action, actor)
    audit.record(db, actor, f"pre_alert.{body.action}", "pre_alert", body.id)
    await db.commit()
    return pre_alert
