"""
Packages Router — lifecycle endpoints for each audience.

  /api/admin/packages       list, detail, charges, status update, soft delete, intake
  /api/warehouse/packages   staff session: intake and status updates
  /api/customer/packages    own packages, tracking lookup
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import actor_from, get_current_customer, get_db, require_roles
from billing.invoices import package_charges
from core.errors import NotFound
from db.models import Invoice, Package, User
from shipping.intake import PackageIntake, receive_package
from shipping.lifecycle import get_package, soft_delete, update_status

router = APIRouter(prefix="/api/admin/packages", tags=["packages"])
warehouse_router = APIRouter(prefix="/api/warehouse/packages", tags=["packages"])
customer_router = APIRouter(prefix="/api/customer/packages", tags=["packages"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class HistoryEntry(BaseModel):
    status: str
    at: datetime
    note: str | None
    actor: str | None

    model_config = {"from_attributes": True}


class PackageResponse(BaseModel):
    package_id: UUID
    tracking_number: str
    user_id: UUID
    description: str | None
    shipper: str | None
    weight: float
    length: float | None
    width: float | None
    height: float | None
    dimension_unit: str
    declared_value: float
    service_mode: str
    origin_country: str | None
    destination_country: str | None
    is_fragile: bool
    is_hazardous: bool
    shipping_cost: float
    consolidation_id: str | None
    warehouse_location: str | None
    status: str
    received_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PackageDetail(PackageResponse):
    history: list[HistoryEntry]


class PackageCharges(BaseModel):
    tracking_number: str
    days_in_storage: int
    shipping: float
    storage: float
    customs_duty: float
    total: float
    amount_paid: float
    outstanding: float


class PackageList(BaseModel):
    packages: list[PackageResponse]
    total: int
    page: int
    per_page: int


class StatusUpdate(BaseModel):
    tracking_number: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    note: str | None = None


class IntakeRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    user_code: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0)
    description: str | None = None
    shipper: str | None = None
    length: float | None = Field(None, ge=0)
    width: float | None = Field(None, ge=0)
    height: float | None = Field(None, ge=0)
    dimension_unit: str = "cm"
    declared_value: float = Field(0.0, ge=0)
    service_mode: str = Field("air", pattern="^(air|ocean|local)$")
    origin_country: str | None = Field(None, min_length=2, max_length=2)
    destination_country: str | None = Field(None, min_length=2, max_length=2)
    is_fragile: bool = False
    is_hazardous: bool = False
    warehouse_location: str | None = None
    received_by: str | None = None


class IntakeResponse(BaseModel):
    package: PackageDetail
    created: bool
    pre_alert_status: str | None
    invoice_number: str | None
    invoice_total: float | None
    low_stock: list[str]
    warnings: list[str]


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _list_packages(
    db: AsyncSession,
    page: int,
    per_page: int,
    status: str | None = None,
    q: str | None = None,
    user_id=None,
    include_deleted: bool = False,
) -> PackageList:
    query = select(Package)
    if user_id is not None:
        query = query.where(Package.user_id == user_id)
    if status:
        query = query.where(Package.status == status)
    elif not include_deleted:
        query = query.where(Package.status != "deleted")
    if q:
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(
                Package.tracking_number.ilike(pattern),
                Package.description.ilike(pattern),
                Package.shipper.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Package.created_at.desc()).offset((page - 1) * per_page).limit(per_page)
    )
    return PackageList(
        packages=[PackageResponse.model_validate(p) for p in result.scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
    )


def intake_from(body: IntakeRequest) -> PackageIntake:
    return PackageIntake(**body.model_dump())


def intake_response(outcome) -> IntakeResponse:
    return IntakeResponse(
        package=PackageDetail.model_validate(outcome.package),
        created=outcome.created,
        pre_alert_status=outcome.pre_alert.status if outcome.pre_alert else None,
        invoice_number=outcome.invoice.invoice_number if outcome.invoice else None,
        invoice_total=outcome.invoice.total if outcome.invoice else None,
        low_stock=[item.name for item in outcome.materials.low_stock] if outcome.materials else [],
        warnings=outcome.warnings,
    )


# ─── Admin ──────────────────────────────────────────────────────────────────


@router.get("/", response_model=PackageList)
async def list_packages(
    status: str | None = None,
    q: str | None = None,
    user_code: str | None = None,
    include_deleted: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    user_id = None
    if user_code:
        owner = (await db.execute(select(User).where(User.user_code == user_code))).scalar_one_or_none()
        if owner is None:
            raise NotFound("Customer not found")
        user_id = owner.user_id
    return await _list_packages(db, page, per_page, status, q, user_id, include_deleted)


@router.post("/", response_model=IntakeResponse, status_code=201)
async def admin_receive_package(
    body: IntakeRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    outcome = await receive_package(db, intake_from(body), actor_from(user))
    return intake_response(outcome)


@router.get("/{tracking_number}", response_model=PackageDetail)
async def get_package_detail(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    return await get_package(db, tracking_number)


@router.get("/{tracking_number}/charges", response_model=PackageCharges)
async def get_package_charges(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    """Shipping, storage and duty owed on a package, against what its invoices have collected."""
    package = await get_package(db, tracking_number)
    charges = package_charges(package)
    paid = await db.execute(
        select(func.coalesce(func.sum(Invoice.amount_paid), 0.0)).where(Invoice.package_id == package.package_id)
    )
    amount_paid = round(paid.scalar_one(), 2)
    return PackageCharges(
        tracking_number=package.tracking_number,
        days_in_storage=charges.days_in_storage,
        shipping=charges.shipping,
        storage=charges.storage,
        customs_duty=charges.customs_duty,
        total=charges.total,
        amount_paid=amount_paid,
        outstanding=max(0.0, round(charges.total - amount_paid, 2)),
    )


@router.patch("/status", response_model=PackageDetail)
async def admin_update_status(
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    return await update_status(db, body.tracking_number, body.status, actor_from(user), body.note)


@router.delete("/{tracking_number}", response_model=PackageDetail)
async def delete_package(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    return await soft_delete(db, tracking_number, actor_from(user))


# ─── Warehouse staff (session) ──────────────────────────────────────────────


@warehouse_router.post("/", response_model=IntakeResponse, status_code=201)
async def warehouse_receive_package(
    body: IntakeRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("warehouse", "admin")),
):
    outcome = await receive_package(db, intake_from(body), actor_from(user))
    return intake_response(outcome)


@warehouse_router.post("/update-status", response_model=PackageDetail)
async def warehouse_update_status(
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("warehouse", "admin")),
):
    return await update_status(db, body.tracking_number, body.status, actor_from(user), body.note)


# ─── Customer ───────────────────────────────────────────────────────────────


@customer_router.get("/", response_model=PackageList)
async def my_packages(
    status: str | None = None,
    q: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    return await _list_packages(db, page, per_page, status, q, customer.user_id)


@customer_router.get("/track/{tracking_number}", response_model=PackageDetail)
async def track_package(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
    customer: User = Depends(get_current_customer),
):
    result = await db.execute(
        select(Package)
        .where(
            Package.tracking_number == tracking_number.strip(),
            Package.user_id == customer.user_id,
            Package.status != "deleted",
        )
        .options(selectinload(Package.history))
    )
    package = result.scalar_one_or_none()
    if package is None:
        raise NotFound("Package not found")
    return package
