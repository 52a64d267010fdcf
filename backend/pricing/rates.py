"""
Rate Engine — Weight-Banded Lane Pricing.

  rate = base_rate + weight_kg × per_kg_rate

Rules are filtered by lane (origin → destination) and then scanned in store
order; the first rule whose band [weight_min, weight_max) contains the weight
wins. Overlapping bands are not merged or deduplicated.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NoMatchingRule, ValidationError
from db.models import PricingRule

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateQuote:
    rate: float
    currency: str
    matched_rule: Any

    def as_dict(self) -> dict:
        rule = self.matched_rule
        return {
            "rate": self.rate,
            "currency": self.currency,
            "matched_rule": {
                "id": getattr(rule, "rule_id", None),
                "name": rule.name,
                "origin": rule.origin,
                "destination": rule.destination,
                "weight_min": rule.weight_min,
                "weight_max": rule.weight_max,
                "base_rate": rule.base_rate,
                "per_kg_rate": rule.per_kg_rate,
            },
        }


def _lane_matches(rule, origin: str, destination: str) -> bool:
    return (
        rule.origin.strip().lower() == origin.strip().lower()
        and rule.destination.strip().lower() == destination.strip().lower()
    )


def band_contains(rule, weight_kg: float) -> bool:
    """Lower bound inclusive, upper bound exclusive."""
    return rule.weight_min <= weight_kg < rule.weight_max


def compute_rate(rules: Iterable, origin: str, destination: str, weight_kg: float) -> RateQuote:
    """Pure lookup over an ordered rule set."""
    if weight_kg is None or not math.isfinite(weight_kg) or weight_kg < 0:
        raise ValidationError("weight must be a non-negative number", details=[{"field": "weight", "message": "invalid"}])

    for rule in rules:
        if not getattr(rule, "active", True):
            continue
        if not _lane_matches(rule, origin, destination):
            continue
        if band_contains(rule, weight_kg):
            rate = round(rule.base_rate + weight_kg * rule.per_kg_rate, 2)
            return RateQuote(rate=rate, currency=rule.currency, matched_rule=rule)

    raise NoMatchingRule(f"No pricing rule for {origin} → {destination} at {weight_kg} kg")


async def load_rules(db: AsyncSession, origin: str | None = None, destination: str | None = None) -> list[PricingRule]:
    """Active rules in store order (insertion order)."""
    query = select(PricingRule).where(PricingRule.active.is_(True)).order_by(PricingRule.created_at, PricingRule.rule_id)
    result = await db.execute(query)
    rules = list(result.scalars().all())
    if origin is not None and destination is not None:
        rules = [r for r in rules if _lane_matches(r, origin, destination)]
    return rules


async def quote_rate(db: AsyncSession, origin: str, destination: str, weight_kg: float) -> RateQuote:
    rules = await load_rules(db, origin, destination)
    quote = compute_rate(rules, origin, destination, weight_kg)
    logger.debug(
        "rates.quoted",
        origin=origin,
        destination=destination,
        weight_kg=weight_kg,
        rate=quote.rate,
        rule_id=quote.matched_rule.rule_id,
    )
    return quote
