"""
Insurance Calculator.

  premium = max(base_premium, declared_value × 2% × mode × fragile × hazardous)

Rounded to 2 decimals. Bad numeric input counts as a zero declared value.
"""

import math
from dataclasses import asdict, dataclass

BASE_PREMIUM = 5.00
VALUE_BASED_RATE = 0.02

SERVICE_MODE_MULTIPLIERS = {
    "air": 1.0,
    "ocean": 0.8,  # slower, lower risk
    "local": 0.6,  # short distance
}
FRAGILE_MULTIPLIER = 1.5
HAZARDOUS_MULTIPLIER = 2.0


@dataclass(frozen=True)
class InsuranceQuote:
    base_premium: float
    value_based_premium: float
    service_mode_multiplier: float
    fragile_multiplier: float
    hazardous_multiplier: float
    total_premium: float
    currency: str

    def as_dict(self) -> dict:
        return asdict(self)


def _as_value(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def compute_insurance(
    declared_value,
    service_mode: str = "air",
    is_fragile: bool = False,
    is_hazardous: bool = False,
    currency: str = "USD",
) -> InsuranceQuote:
    value = _as_value(declared_value)
    value_based = value * VALUE_BASED_RATE
    mode_multiplier = SERVICE_MODE_MULTIPLIERS.get(service_mode, 1.0)
    fragile = FRAGILE_MULTIPLIER if is_fragile else 1.0
    hazardous = HAZARDOUS_MULTIPLIER if is_hazardous else 1.0

    total = max(BASE_PREMIUM, value_based * mode_multiplier * fragile * hazardous)
    return InsuranceQuote(
        base_premium=BASE_PREMIUM,
        value_based_premium=value_based,
        service_mode_multiplier=mode_multiplier,
        fragile_multiplier=fragile,
        hazardous_multiplier=hazardous,
        total_premium=round(total, 2),
        currency=currency,
    )
