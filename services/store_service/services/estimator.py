"""Shipping and tax estimation.

Pure functions: no I/O and no state. Amounts are integer cents, weights grams.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

# ---------------------------------------------------------------------------
# Shipping tiers
# ---------------------------------------------------------------------------
FREE_SHIPPING_THRESHOLD = 50000  # $500
SHIPPING_TIERS = (
    (1000, 500),  # <= 1 kg: $5
    (5000, 1500),  # <= 5 kg: $15
)
HEAVY_SHIPPING = 3000  # $30

# ---------------------------------------------------------------------------
# Tax table
# ---------------------------------------------------------------------------
DEFAULT_TAX_CODE = "default"

# Region keys are "COUNTRY-REGION", country keys "COUNTRY"; "EU" applies to
# every member state without its own entry.
TAX_CODE_RATES: dict[str, dict] = {
    "default": {"base": 0.08},
    "food": {"base": 0.02, "regions": {"US-CA": 0.015, "US-NY": 0.01}},
    # NJ exempts most clothing
    "clothing": {"base": 0.05, "regions": {"US-NJ": 0.0}},
    "digital": {"base": 0.00, "regions": {"EU": 0.20}},
    "books": {"base": 0.04, "regions": {"US-NY": 0.00}},
}

EU_COUNTRIES = frozenset(
    {
        "DE", "FR", "ES", "IT", "NL", "BE", "LU", "AT", "FI", "SE", "DK", "IE", "PT",
        "PL", "CZ", "SK", "SI", "EE", "LV", "LT", "GR", "HR", "RO", "BG", "HU",
    }
)


@dataclass
class TaxLine:
    amount: int  # per unit
    quantity: int = 1
    tax_code: str = DEFAULT_TAX_CODE


@dataclass
class TaxBucket:
    rate: float
    taxable: int = 0
    tax: int = 0


@dataclass
class Estimate:
    shipping: int
    tax_total: int
    tax_breakdown: dict[str, TaxBucket] = field(default_factory=dict)
    currency: str = "USD"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def estimate_shipping(net_subtotal: int, total_weight: int = 0) -> int:
    """Flat-rate shipping by weight, free above the threshold."""
    if net_subtotal >= FREE_SHIPPING_THRESHOLD:
        return 0
    for max_weight, cost in SHIPPING_TIERS:
        if total_weight <= max_weight:
            return cost
    return HEAVY_SHIPPING


def resolve_rate(
    tax_code: Optional[str], country: Optional[str] = None, region: Optional[str] = None
) -> float:
    """Rate for a tax code at an address: region, then country, then EU, then base."""
    config = TAX_CODE_RATES.get(tax_code or DEFAULT_TAX_CODE, TAX_CODE_RATES["default"])
    base = config["base"]
    regions = config.get("regions")
    if not regions:
        return base

    country_key = country.upper() if country else None
    region_key = f"{country_key}-{region.upper()}" if region else None
    if region_key and region_key in regions:
        return regions[region_key]
    if country_key and country_key in regions:
        return regions[country_key]
    if country_key in EU_COUNTRIES and "EU" in regions:
        return regions["EU"]
    return base


def compute_taxes(
    lines: Sequence[TaxLine],
    country: Optional[str] = None,
    region: Optional[str] = None,
) -> tuple[int, dict[str, TaxBucket]]:
    """Per-line tax rounded to cents, summed into per-code buckets."""
    breakdown: dict[str, TaxBucket] = {}
    tax_total = 0
    for line in lines:
        line_total = max(0, line.amount * line.quantity)
        code = line.tax_code or DEFAULT_TAX_CODE
        rate = resolve_rate(code, country, region)
        tax = round_half_up(line_total * rate)
        bucket = breakdown.setdefault(code, TaxBucket(rate=rate))
        bucket.taxable += line_total
        bucket.tax += tax
        tax_total += tax
    return tax_total, breakdown


def fabricate_lines(
    subtotal: int, discount_amount: int = 0, tax_codes: Sequence[str] = ()
) -> list[TaxLine]:
    """Split the net subtotal evenly across tax codes.

    Used when the caller sends only totals. The division remainder goes to the
    first line so the lines always sum to the net amount.
    """
    net = max(0, subtotal - discount_amount)
    if not net:
        return []
    if not tax_codes:
        return [TaxLine(amount=net)]

    per = net // len(tax_codes)
    lines = [TaxLine(amount=per, tax_code=code or DEFAULT_TAX_CODE) for code in tax_codes]
    lines[0].amount += net - per * len(tax_codes)
    return lines


def estimate(
    *,
    subtotal: int = 0,
    discount_amount: int = 0,
    currency: str = "USD",
    total_weight: int = 0,
    tax_codes: Sequence[str] = (),
    lines: Optional[Sequence[TaxLine]] = None,
    country: Optional[str] = None,
    region: Optional[str] = None,
) -> Estimate:
    """Shipping plus tax for a cart.

    Explicit ``lines`` take precedence over lines fabricated from the totals.
    """
    net = max(0, subtotal - discount_amount)
    shipping = estimate_shipping(net, total_weight)
    if lines is None:
        lines = fabricate_lines(subtotal, discount_amount, tax_codes)
    tax_total, breakdown = compute_taxes(lines, country, region)
    return Estimate(
        shipping=shipping,
        tax_total=tax_total,
        tax_breakdown=breakdown,
        currency=currency,
    )
