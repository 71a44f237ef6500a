# dealflow/domain/scoring.py
"""
Buyer/property match scoring.

Points (before clamping to 0-100):
  location  40 zip match | 15 no zip preference | 0 outside preferred zips
  beds      25 exact | 15 off by one | 6 two extra | 0 otherwise | 12 unknown
  baths     15 meets | 7 short by <=1 | 0 otherwise | 8 unknown
  budget    20 strong (>=20% down) | 14 good (>=10%) | 6 limited | 10 unknown
  proximity 10 <=10mi | 7 <=25mi | 4 <=50mi | 0 beyond; omitted when distance is unknown

Missing inputs fall back to the neutral value for that factor. Nothing here
raises.
"""
from __future__ import annotations

from .geo import distance_miles, extract_zip_from_address, normalize_zip
from .types import BudgetBand, Buyer, Property, Score

ZIP_MATCH_POINTS = 40
NO_ZIP_PREFERENCE_POINTS = 15

BEDS_EXACT, BEDS_NEAR, BEDS_EXTRA, BEDS_UNKNOWN = 25, 15, 6, 12
BATHS_MEETS, BATHS_NEAR, BATHS_UNKNOWN = 15, 7, 8

BUDGET_POINTS: dict[BudgetBand, int] = {
    BudgetBand.strong: 20,
    BudgetBand.good: 14,
    BudgetBand.limited: 6,
}
BUDGET_UNKNOWN = 10
STRONG_RATIO = 0.20
GOOD_RATIO = 0.10

# (max miles, points); decays with distance, capped at the first entry
PROXIMITY_STEPS: tuple[tuple[float, int], ...] = ((10.0, 10), (25.0, 7), (50.0, 4))


def property_zip(prop: Property) -> str | None:
    return normalize_zip(prop.zip_code) or extract_zip_from_address(prop.address)


def budget_band(buyer: Buyer, price: float | None) -> tuple[BudgetBand | None, float | None]:
    """
    Returns (band, down_payment_ratio). Ratio is None when the band came from
    the buyer's price range instead of a down payment.
    """
    if not price or price <= 0:
        return None, None

    if buyer.down_payment and buyer.down_payment > 0:
        ratio = buyer.down_payment / price
        if ratio >= STRONG_RATIO:
            return BudgetBand.strong, ratio
        if ratio >= GOOD_RATIO:
            return BudgetBand.good, ratio
        return BudgetBand.limited, ratio

    lo, hi = buyer.price_min, buyer.price_max
    if lo is None and hi is None:
        return None, None
    if lo is not None and hi is not None:
        midpoint = (lo + hi) / 2.0
    else:
        midpoint = lo if lo is not None else hi
    ceiling = hi if hi is not None else midpoint

    if price <= midpoint:
        return BudgetBand.strong, None
    if price <= ceiling:
        return BudgetBand.good, None
    return BudgetBand.limited, None


def _beds_points(desired: int | None, actual: int | None) -> tuple[int, str | None, str | None]:
    if not desired or not actual:
        return BEDS_UNKNOWN, (f"{actual} beds" if actual else None), None
    diff = actual - desired
    if diff == 0:
        return BEDS_EXACT, f"Exact bed count: {actual} beds", None
    if abs(diff) == 1:
        return BEDS_NEAR, f"Close bed count: {actual} beds", None
    if diff == 2:
        return BEDS_EXTRA, f"{actual} beds (more than desired)", None
    return 0, None, f"Bedrooms far from target: {actual} vs {desired} desired"


def _baths_points(desired: float | None, actual: float | None) -> tuple[int, str | None, str | None]:
    if not desired or not actual:
        return BATHS_UNKNOWN, (f"{actual:g} baths" if actual else None), None
    if actual >= desired:
        return BATHS_MEETS, f"{actual:g} baths", None
    if desired - actual <= 1:
        return BATHS_NEAR, None, f"Fewer bathrooms: {actual:g} vs {desired:g} desired"
    return 0, None, f"Too few bathrooms: {actual:g} vs {desired:g} desired"


def _proximity_points(distance: float | None) -> int | None:
    if distance is None:
        return None
    for max_miles, pts in PROXIMITY_STEPS:
        if distance <= max_miles:
            return pts
    return 0


def _location_reason(
    *,
    zip_code: str | None,
    is_priority: bool,
    has_zip_prefs: bool,
    band: BudgetBand | None,
    ratio: float | None,
    budget_pts: int,
    distance: float | None,
    proximity_pts: int | None,
) -> str:
    if is_priority:
        return f"In preferred ZIP code {zip_code}"

    candidates: list[tuple[int, str]] = []
    if proximity_pts:
        candidates.append((proximity_pts, f"{distance:.1f} mi from preferred location"))
    if band is not None:
        if ratio is not None:
            candidates.append((budget_pts, f"{band.value.capitalize()} down payment ({ratio * 100:.0f}% of price)"))
        else:
            candidates.append((budget_pts, f"{band.value.capitalize()} fit for price range"))

    if candidates:
        # max() keeps the first of equal entries, so proximity wins ties
        return max(candidates, key=lambda c: c[0])[1]
    if distance is not None:
        return f"{distance:.0f} mi from preferred location"
    if has_zip_prefs:
        return "Outside preferred ZIP codes"
    return "No location preference set"


def score_property(buyer: Buyer, prop: Property) -> Score:
    highlights: list[str] = []
    concerns: list[str] = []

    # --- location / zip priority ---
    zip_code = property_zip(prop)
    has_zip_prefs = bool(buyer.preferred_zip_codes)
    is_priority = has_zip_prefs and zip_code is not None and zip_code in buyer.preferred_zip_codes
    if is_priority:
        location_pts = ZIP_MATCH_POINTS
        highlights.append("In preferred ZIP code")
    elif has_zip_prefs:
        location_pts = 0
        concerns.append("Not in preferred ZIP codes")
    else:
        location_pts = NO_ZIP_PREFERENCE_POINTS

    # --- beds / baths ---
    beds_pts, hi, co = _beds_points(buyer.desired_beds, prop.beds)
    highlights.extend(x for x in (hi,) if x)
    concerns.extend(x for x in (co,) if x)

    baths_pts, hi, co = _baths_points(buyer.desired_baths, prop.baths)
    highlights.extend(x for x in (hi,) if x)
    concerns.extend(x for x in (co,) if x)

    # --- budget ---
    band, ratio = budget_band(buyer, prop.price)
    if band is None:
        budget_pts = BUDGET_UNKNOWN
    else:
        budget_pts = BUDGET_POINTS[band]
        if band == BudgetBand.limited:
            concerns.append("Limited budget for this price")
        elif ratio is not None:
            highlights.append(f"{band.value.capitalize()} down payment: {ratio * 100:.0f}% of price")

    # --- proximity ---
    distance = distance_miles(buyer.location, prop.location)
    proximity_pts = _proximity_points(distance)
    if proximity_pts:
        highlights.append(f"{distance:.1f} mi from preferred location")

    total = location_pts + beds_pts + baths_pts + budget_pts + (proximity_pts or 0)
    total = max(0, min(100, total))

    return Score(
        score=int(total),
        is_priority=is_priority,
        distance_miles=distance,
        budget_band=band,
        location_reason=_location_reason(
            zip_code=zip_code,
            is_priority=is_priority,
            has_zip_prefs=has_zip_prefs,
            band=band,
            ratio=ratio,
            budget_pts=budget_pts,
            distance=distance,
            proximity_pts=proximity_pts,
        ),
        location_points=location_pts,
        beds_points=beds_pts,
        baths_points=baths_pts,
        budget_points=budget_pts,
        proximity_points=proximity_pts or 0,
        highlights=tuple(highlights),
        concerns=tuple(concerns),
    )


def match_quality(score: int) -> str:
    if score >= 80:
        return "Excellent Match"
    if score >= 60:
        return "Good Match"
    if score >= 40:
        return "Fair Match"
    return "Limited Match"
