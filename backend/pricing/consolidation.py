"""
Consolidation Service — group packages into one shipment unit.

Pricing by mode:
  ocean FCL   flat per container: ≤33 m³ → 20ft ($1500), else 40ft ($2500)
  ocean LCL   $150 per m³
  air         chargeable weight × $5, chargeable = max(actual, volume × 167)
  local       $10 per package

Volumes are computed in m³ from L×W×H in centimetres.
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from db.models import utcnow

FCL_20FT_VOLUME_M3 = 33.0
FCL_WEIGHT_KG = 28000.0
LCL_MIN_VOLUME_M3 = 10.0

FCL_20FT_COST = 1500.0
FCL_40FT_COST = 2500.0
LCL_COST_PER_M3 = 150.0
AIR_VOLUMETRIC_KG_PER_M3 = 167.0
AIR_COST_PER_KG = 5.0
LOCAL_COST_PER_PACKAGE = 10.0

LEAD_TIME_DAYS = {"ocean": 30, "air": 7, "local": 3}

# Multipliers that bring a linear dimension to centimetres.
_TO_CM = {"cm": 1.0, "mm": 0.1, "m": 100.0, "in": 2.54, "ft": 30.48}


@dataclass
class ConsolidationPackage:
    tracking_number: str
    weight: float
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    unit: str = "cm"
    value: float = 0.0
    customer_id: str = ""
    status: str = "received"

    @classmethod
    def from_package(cls, pkg) -> "ConsolidationPackage":
        return cls(
            tracking_number=pkg.tracking_number,
            weight=pkg.weight or 0.0,
            length=pkg.length or 0.0,
            width=pkg.width or 0.0,
            height=pkg.height or 0.0,
            unit=pkg.dimension_unit or "cm",
            value=pkg.declared_value or 0.0,
            customer_id=str(pkg.user_id),
            status=pkg.status,
        )

    @property
    def volume_m3(self) -> float:
        factor = _TO_CM.get((self.unit or "cm").lower(), 1.0)
        return (self.length * factor) * (self.width * factor) * (self.height * factor) / 1_000_000


@dataclass
class ConsolidationCheck:
    ok: bool
    reason: str | None = None


@dataclass
class ConsolidationResult:
    consolidation_id: str
    total_packages: int
    total_weight: float
    total_volume: float
    total_value: float
    chargeable_weight: float | None
    container_size: str | None
    estimated_cost: float
    estimated_delivery: datetime
    packages: list[ConsolidationPackage] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "consolidation_id": self.consolidation_id,
            "total_packages": self.total_packages,
            "total_weight": self.total_weight,
            "total_volume": round(self.total_volume, 6),
            "total_value": self.total_value,
            "chargeable_weight": self.chargeable_weight,
            "container_size": self.container_size,
            "estimated_cost": self.estimated_cost,
            "estimated_delivery": self.estimated_delivery.isoformat(),
            "tracking_numbers": [p.tracking_number for p in self.packages],
        }


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def new_consolidation_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"CONS-{_base36(int(time.time() * 1000))}-{suffix}"


def total_volume(packages: list[ConsolidationPackage]) -> float:
    return sum(p.volume_m3 for p in packages)


def can_consolidate(
    packages: list[ConsolidationPackage],
    max_weight: float = 1000.0,
    max_volume: float = FCL_20FT_VOLUME_M3,
) -> ConsolidationCheck:
    if len(packages) < 2:
        return ConsolidationCheck(False, "At least 2 packages required for consolidation")

    weight = sum(p.weight for p in packages)
    volume = total_volume(packages)
    if weight > max_weight:
        return ConsolidationCheck(False, f"Total weight ({weight}kg) exceeds maximum ({max_weight}kg)")
    if volume > max_volume:
        return ConsolidationCheck(False, f"Total volume ({volume:.2f}m³) exceeds maximum ({max_volume}m³)")

    if len({p.customer_id for p in packages}) > 1:
        return ConsolidationCheck(True, "Multi-customer consolidation")
    return ConsolidationCheck(True)


def consolidate(
    packages: list[ConsolidationPackage],
    service_mode: str,
    consolidation_type: str = "standard",
    now: datetime | None = None,
) -> ConsolidationResult:
    weight = sum(p.weight for p in packages)
    volume = total_volume(packages)
    value = sum(p.value for p in packages)

    cost = 0.0
    chargeable = None
    container = None
    if service_mode == "ocean":
        if consolidation_type == "fcl":
            container = "40ft" if volume > FCL_20FT_VOLUME_M3 else "20ft"
            cost = FCL_40FT_COST if container == "40ft" else FCL_20FT_COST
        elif consolidation_type == "lcl":
            cost = volume * LCL_COST_PER_M3
    elif service_mode == "air":
        chargeable = max(weight, volume * AIR_VOLUMETRIC_KG_PER_M3)
        cost = chargeable * AIR_COST_PER_KG
    else:
        cost = len(packages) * LOCAL_COST_PER_PACKAGE

    start = now or utcnow()
    return ConsolidationResult(
        consolidation_id=new_consolidation_id(),
        total_packages=len(packages),
        total_weight=weight,
        total_volume=volume,
        total_value=value,
        chargeable_weight=round(chargeable, 2) if chargeable is not None else None,
        container_size=container,
        estimated_cost=round(cost, 2),
        estimated_delivery=start + timedelta(days=LEAD_TIME_DAYS.get(service_mode, LEAD_TIME_DAYS["local"])),
        packages=list(packages),
    )


def recommend_load_type(total_volume_m3: float, total_weight_kg: float) -> str:
    """FCL / LCL / standard recommendation for an ocean shipment."""
    if total_volume_m3 >= FCL_20FT_VOLUME_M3 or total_weight_kg >= FCL_WEIGHT_KG:
        return "fcl"
    if total_volume_m3 > LCL_MIN_VOLUME_M3:
        return "lcl"
    return "standard"
