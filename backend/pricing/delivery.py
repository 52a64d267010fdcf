"""
Delivery Estimator — transit days by service mode and lane.

Base days are keyed by (mode, domestic / same region / different region,
express / standard). International lanes add customs clearance on top.
Countries outside the listed regions share a region with nothing, not even
each other.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from db.models import utcnow

REGIONS: dict[str, frozenset[str]] = {
    "caribbean": frozenset({"JM", "BB", "TT", "BS", "HT", "DO", "CU", "PR", "GD", "LC", "VC", "AG", "DM", "KN"}),
    "north_america": frozenset({"US", "CA", "MX"}),
    "europe": frozenset({"GB", "FR", "DE", "IT", "ES", "NL", "BE", "CH", "AT", "SE", "NO", "DK", "FI"}),
    "asia": frozenset({"CN", "JP", "KR", "IN", "SG", "MY", "TH", "ID", "PH", "VN", "TW", "HK"}),
}

# (express, standard)
BASE_DAYS: dict[tuple[str, str], tuple[int, int]] = {
    ("air", "domestic"): (2, 4),
    ("air", "same_region"): (3, 7),
    ("air", "different_region"): (5, 14),
    ("ocean", "domestic"): (7, 14),
    ("ocean", "same_region"): (14, 30),
    ("ocean", "different_region"): (21, 45),
}
LOCAL_DAYS = (1, 2)
CUSTOMS_DAYS = (2, 5)


@dataclass(frozen=True)
class DeliveryEstimate:
    days: int
    date: datetime
    service_mode: str
    origin_country: str
    destination_country: str
    is_express: bool

    def as_dict(self) -> dict:
        return {
            "days": self.days,
            "date": self.date.isoformat(),
            "service_mode": self.service_mode,
            "origin_country": self.origin_country,
            "destination_country": self.destination_country,
            "is_express": self.is_express,
            "label": format_estimate(self),
        }


def region_of(country: str) -> str | None:
    code = (country or "").strip().upper()
    for name, members in REGIONS.items():
        if code in members:
            return name
    return None


def same_region(country_a: str, country_b: str) -> bool:
    region = region_of(country_a)
    return region is not None and region == region_of(country_b)


def lane_type(origin_country: str, destination_country: str) -> str:
    if origin_country.strip().upper() == destination_country.strip().upper():
        return "domestic"
    return "same_region" if same_region(origin_country, destination_country) else "different_region"


def estimate_delivery(
    service_mode: str,
    origin_country: str,
    destination_country: str,
    is_express: bool = False,
    start_date: datetime | None = None,
) -> DeliveryEstimate:
    pick = 0 if is_express else 1
    lane = lane_type(origin_country, destination_country)

    if service_mode == "local":
        days = LOCAL_DAYS[pick]
    else:
        days = BASE_DAYS.get((service_mode, lane), (0, 0))[pick]

    if lane != "domestic":
        days += CUSTOMS_DAYS[pick]

    start = start_date or utcnow()
    return DeliveryEstimate(
        days=days,
        date=start + timedelta(days=days),
        service_mode=service_mode,
        origin_country=origin_country,
        destination_country=destination_country,
        is_express=is_express,
    )


def format_estimate(estimate: DeliveryEstimate) -> str:
    plural = "" if estimate.days == 1 else "s"
    return f"{estimate.days} business day{plural} (Estimated: {estimate.date.strftime('%A, %B %d, %Y')})"
