"""
Warehouse Integration API — API-key authenticated, enveloped responses.

Keys travel in ``x-warehouse-key``, ``x-api-key`` or ``?id=``. Every request
is checked for the endpoint's permission and counted against the key's
rate-limit window; errors are rendered in the same envelope by core.errors.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import api_key_actor, get_db, require_api_key
from api.v1.routers.packages import (
    IntakeRequest,
    PackageDetail,
    StatusUpdate,
    _list_packages,
    intake_from,
    intake_response,
)
from core import envelope
from core.errors import NotFound
from db.models import ApiKey, Package, User
from inventory import stock
from pricing.delivery import estimate_delivery
from pricing.insurance import compute_insurance
from pricing.rates import load_rules, quote_rate
from shipping.intake import receive_package
from shipping.lifecycle import OPERATIONAL_STATUSES, soft_delete, update_status

router = APIRouter(prefix=envelope.WAREHOUSE_API_PREFIX, tags=["warehouse-api"])

CUSTOMER_LIST_LIMIT = 500
IN_FLIGHT_STATUSES = sorted(OPERATIONAL_STATUSES - {"delivered", "unknown"})


# ─── Packages ───────────────────────────────────────────────────────────────


@router.get("/packages")
async def list_packages(
    q: str | None = None,
    status: str | None = None,
    user_code: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("packages:read")),
):
    user_id = None
    if user_code:
        owner = (await db.execute(select(User).where(User.user_code == user_code))).scalar_one_or_none()
        if owner is None:
            raise NotFound("Customer not found")
        user_id = owner.user_id
    listing = await _list_packages(db, page, per_page, status, q, user_id)
    return envelope.success(listing.model_dump(mode="json"))


@router.post("/packages", status_code=201)
async def add_package(
    body: IntakeRequest,
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("packages:write")),
):
    outcome = await receive_package(db, intake_from(body), api_key_actor(key))
    message = "Package received" if outcome.created else "Package updated"
    return envelope.success(intake_response(outcome).model_dump(mode="json"), message, code=201)


@router.post("/packages/status")
async def package_status(
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("packages:write")),
):
    package = await update_status(db, body.tracking_number, body.status, api_key_actor(key), body.note)
    return envelope.success(PackageDetail.model_validate(package).model_dump(mode="json"), "Status updated")


@router.delete("/packages/{tracking_number}")
async def delete_package(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("packages:write")),
):
    package = await soft_delete(db, tracking_number, api_key_actor(key))
    return envelope.success({"tracking_number": package.tracking_number, "status": package.status}, "Package deleted")


# ─── Customers ──────────────────────────────────────────────────────────────


@router.get("/customers")
async def list_customers(
    q: str | None = None,
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("customers:read")),
):
    query = select(User).where(User.role == "customer", User.active.is_(True))
    if q:
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(
                User.user_code.ilike(pattern),
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.phone.ilike(pattern),
            )
        )
    customers = (await db.execute(query.order_by(User.created_at.desc()).limit(CUSTOMER_LIST_LIMIT))).scalars().all()

    counts = dict(
        (
            await db.execute(
                select(Package.user_id, func.count(Package.package_id))
                .where(Package.status.in_(IN_FLIGHT_STATUSES))
                .group_by(Package.user_id)
            )
        ).all()
    )
    results = [
        {
            "user_code": c.user_code,
            "full_name": " ".join(part for part in (c.first_name, c.last_name) if part),
            "email": c.email,
            "phone": c.phone,
            "active_packages": counts.get(c.user_id, 0),
        }
        for c in customers
    ]
    return envelope.success({"customers": results, "total_count": len(results)})


# ─── Inventory ──────────────────────────────────────────────────────────────


@router.get("/inventory")
async def list_inventory(
    category: str | None = None,
    location: str | None = None,
    low_stock: bool = False,
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("inventory:read")),
):
    items = await stock.list_items(db, category, location, low_stock)
    data = [
        {
            "item_id": str(item.item_id),
            "name": item.name,
            "category": item.category,
            "location": item.location,
            "unit": item.unit,
            "current_stock": item.current_stock,
            "min_stock": item.min_stock,
            "status": stock.stock_status(item),
        }
        for item in items
    ]
    return envelope.success({"items": data, "summary": await stock.summary(db)})


# ─── Rates ──────────────────────────────────────────────────────────────────


@router.get("/rate-calculator")
async def rate_calculator(
    origin: str | None = None,
    destination: str | None = None,
    weight: float | None = Query(None, ge=0),
    declared_value: float = Query(0.0, ge=0),
    service_mode: str = Query("air", pattern="^(air|ocean|local)$"),
    is_fragile: bool = False,
    is_hazardous: bool = False,
    origin_country: str | None = Query(None, min_length=2, max_length=2),
    destination_country: str | None = Query(None, min_length=2, max_length=2),
    is_express: bool = False,
    db: AsyncSession = Depends(get_db),
    key: ApiKey = Depends(require_api_key("rates:read")),
):
    """Full quote when origin, destination and weight are given; otherwise the active rules."""
    if origin is None or destination is None or weight is None:
        rules = await load_rules(db, origin, destination)
        return envelope.success(
            {
                "rules": [
                    {
                        "id": r.rule_id,
                        "name": r.name,
                        "origin": r.origin,
                        "destination": r.destination,
                        "weight_min": r.weight_min,
                        "weight_max": r.weight_max,
                        "base_rate": r.base_rate,
                        "per_kg_rate": r.per_kg_rate,
                        "currency": r.currency,
                    }
                    for r in rules
                ]
            }
        )

    quote = await quote_rate(db, origin, destination, weight)
    data = quote.as_dict()
    data["insurance"] = compute_insurance(
        declared_value, service_mode, is_fragile, is_hazardous, quote.currency
    ).as_dict()
    if origin_country and destination_country:
        data["delivery"] = estimate_delivery(service_mode, origin_country, destination_country, is_express).as_dict()
    return envelope.success(data, "Rate calculated")
