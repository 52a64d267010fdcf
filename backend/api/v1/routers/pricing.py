"""
Pricing Router — rule maintenance, quotes and consolidations (admin).

  /api/admin/pricing-rules          CRUD over weight-banded lane rules
  /api/admin/quotes/*               rate, insurance and delivery estimates
  /api/admin/consolidations[/quote] group received packages into one shipment
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import actor_from, get_db, require_roles
from core.config import get_settings
from core.errors import NotFound, ValidationError
from db import audit
from db.models import Package, PricingRule
from pricing.consolidation import ConsolidationPackage, can_consolidate, consolidate, recommend_load_type, total_volume
from pricing.delivery import estimate_delivery
from pricing.insurance import compute_insurance
from pricing.rates import quote_rate
from shipping.lifecycle import add_note

router = APIRouter(prefix="/api/admin", tags=["pricing"])

CONSOLIDATABLE_STATUSES = ("received", "in_processing", "ready_to_ship")


# ─── Schemas ────────────────────────────────────────────────────────────────


class PricingRuleIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    origin: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    weight_min: float = Field(0.0, ge=0)
    weight_max: float = Field(..., gt=0)
    base_rate: float = Field(0.0, ge=0)
    per_kg_rate: float = Field(0.0, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    active: bool = True

    @model_validator(mode="after")
    def _band_is_ordered(self):
        if self.weight_max <= self.weight_min:
            raise ValueError("weight_max must be greater than weight_min")
        return self


class PricingRuleResponse(PricingRuleIn):
    rule_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class RateQuoteRequest(BaseModel):
    origin: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0)


class InsuranceQuoteRequest(BaseModel):
    declared_value: float = Field(0.0, ge=0)
    service_mode: str = Field("air", pattern="^(air|ocean|local)$")
    is_fragile: bool = False
    is_hazardous: bool = False
    currency: str = Field("USD", min_length=3, max_length=3)


class DeliveryQuoteRequest(BaseModel):
    service_mode: str = Field("air", pattern="^(air|ocean|local)$")
    origin_country: str = Field(..., min_length=2, max_length=2)
    destination_country: str = Field(..., min_length=2, max_length=2)
    is_express: bool = False


class ConsolidationRequest(BaseModel):
    tracking_numbers: list[str] = Field(..., min_length=1)
    service_mode: str = Field("air", pattern="^(air|ocean|local)$")
    consolidation_type: str = Field("standard", pattern="^(standard|fcl|lcl)$")


# ─── Pricing rules ──────────────────────────────────────────────────────────


async def _get_rule(db: AsyncSession, rule_id: int) -> PricingRule:
    rule = await db.get(PricingRule, rule_id)
    if rule is None:
        raise NotFound("Pricing rule not found")
    return rule


@router.get("/pricing-rules", response_model=list[PricingRuleResponse])
async def list_rules(
    origin: str | None = None,
    destination: str | None = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    query = select(PricingRule)
    if not include_inactive:
        query = query.where(PricingRule.active.is_(True))
    if origin:
        query = query.where(PricingRule.origin.ilike(origin.strip()))
    if destination:
        query = query.where(PricingRule.destination.ilike(destination.strip()))
    result = await db.execute(query.order_by(PricingRule.created_at, PricingRule.rule_id))
    return result.scalars().all()


@router.post("/pricing-rules", response_model=PricingRuleResponse, status_code=201)
async def create_rule(
    body: PricingRuleIn,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    rule = PricingRule(**body.model_dump())
    db.add(rule)
    await db.flush()
    audit.record(db, actor_from(user).name, "pricing_rule.created", "pricing_rule", rule.rule_id, body.model_dump())
    await db.commit()
    return rule


@router.put("/pricing-rules/{rule_id}", response_model=PricingRuleResponse)
async def update_rule(
    rule_id: int,
    body: PricingRuleIn,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    rule = await _get_rule(db, rule_id)
    for key, value in body.model_dump().items():
        setattr(rule, key, value)
    audit.record(db, actor_from(user).name, "pricing_rule.updated", "pricing_rule", rule_id, body.model_dump())
    await db.commit()
    return rule


@router.delete("/pricing-rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    rule = await _get_rule(db, rule_id)
    await db.delete(rule)
    audit.record(db, actor_from(user).name, "pricing_rule.deleted", "pricing_rule", rule_id)
    await db.commit()


# ─── Quotes ─────────────────────────────────────────────────────────────────


@router.post("/quotes/rate")
async def rate_quote(
    body: RateQuoteRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin", "warehouse")),
):
    quote = await quote_rate(db, body.origin, body.destination, body.weight)
    return quote.as_dict()


@router.post("/quotes/insurance")
async def insurance_quote(
    body: InsuranceQuoteRequest,
    user: dict = Depends(require_roles("admin", "warehouse")),
):
    return compute_insurance(
        body.declared_value, body.service_mode, body.is_fragile, body.is_hazardous, body.currency
    ).as_dict()


@router.post("/quotes/delivery")
async def delivery_quote(
    body: DeliveryQuoteRequest,
    user: dict = Depends(require_roles("admin", "warehouse")),
):
    return estimate_delivery(
        body.service_mode, body.origin_country, body.destination_country, body.is_express
    ).as_dict()


# ─── Consolidations ─────────────────────────────────────────────────────────


async def _consolidation_packages(db: AsyncSession, tracking_numbers: list[str]) -> list[Package]:
    wanted = {t.strip() for t in tracking_numbers if t.strip()}
    result = await db.execute(
        select(Package).where(Package.tracking_number.in_(sorted(wanted))).options(selectinload(Package.history))
    )
    packages = list(result.scalars().all())
    missing = wanted - {p.tracking_number for p in packages}
    if missing:
        raise NotFound(f"Packages not found: {', '.join(sorted(missing))}")
    for package in packages:
        if package.status not in CONSOLIDATABLE_STATUSES:
            raise ValidationError(f"Package {package.tracking_number} is {package.status} and cannot be consolidated")
        if package.consolidation_id:
            raise ValidationError(f"Package {package.tracking_number} is already in {package.consolidation_id}")
    return packages


def _plan(packages: list[Package], body: ConsolidationRequest):
    settings = get_settings()
    units = [ConsolidationPackage.from_package(p) for p in packages]
    check = can_consolidate(
        units,
        max_weight=settings.consolidation_max_weight_kg,
        max_volume=settings.consolidation_max_volume_m3,
    )
    if not check.ok:
        raise ValidationError(check.reason)
    result = consolidate(units, body.service_mode, body.consolidation_type)
    return check, result, units


@router.post("/consolidations/quote")
async def consolidation_quote(
    body: ConsolidationRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    """Dry run: nothing is assigned."""
    packages = await _consolidation_packages(db, body.tracking_numbers)
    check, result, units = _plan(packages, body)
    return {
        **result.as_dict(),
        "note": check.reason,
        "recommended_load_type": recommend_load_type(total_volume(units), result.total_weight),
    }


@router.post("/consolidations", status_code=201)
async def create_consolidation(
    body: ConsolidationRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    packages = await _consolidation_packages(db, body.tracking_numbers)
    check, result, _ = _plan(packages, body)
    actor = actor_from(user)
    for package in packages:
        package.consolidation_id = result.consolidation_id
        await add_note(db, package, f"Added to consolidation {result.consolidation_id}", actor)
    audit.record(
        db,
        actor.name,
        "consolidation.created",
        "consolidation",
        result.consolidation_id,
        {"tracking_numbers": [p.tracking_number for p in packages], "estimated_cost": result.estimated_cost},
    )
    await db.commit()
    return {**result.as_dict(), "note": check.reason}
