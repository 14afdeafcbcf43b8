"""
Pure numeric and date helpers shared by the projection engine.

All functions are pure and typed for testability. Rounding is half-up so
that fixture values stay stable across platforms and never depend on
banker's rounding.
"""

import math
from datetime import datetime, timedelta
from typing import Sequence

DATE_FORMAT = "%Y-%m-%d"


# =============================================================================
# NUMBERS
# =============================================================================


def finite(value: float, default: float = 0.0) -> float:
    """Return value when it is a finite number, else default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def clamp(value: float, low: float, high: float) -> float:
    """Clamp into [low, high]; NaN collapses to low."""
    if value != value:
        return low
    return max(low, min(high, value))


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def clamp_score(value: float) -> int:
    """Round and clamp a score into the integer range 0..100."""
    return int(clamp(round_half_up(finite(value)), 0.0, 100.0))


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round half away from zero at the given number of decimals.

    Args:
        value: Number to round
        digits: Decimal places

    Returns:
        Rounded value (0.0 for non-finite input)
    """
    if not math.isfinite(value):
        return 0.0
    scale = 10**digits
    scaled = abs(value) * scale
    rounded = math.floor(scaled + 0.5 + 1e-9) / scale
    return math.copysign(rounded, value) if rounded else 0.0


def round1(value: float) -> float:
    return round_half_up(value, 1)


def round3(value: float) -> float:
    return round_half_up(value, 3)


def round6(value: float) -> float:
    return round_half_up(value, 6)


def floor1(value: float) -> float:
    """Round down to 0.1; used for caps so a rounded value never exceeds them."""
    if not math.isfinite(value):
        return 0.0
    return math.floor(value * 10 + 1e-9) / 10


def lerp(low: float, high: float, alpha: float) -> float:
    """Linear interpolation with alpha clamped into [0, 1]."""
    return low + (high - low) * clamp01(alpha)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    total = sum(weights)
    if total <= 0:
        return mean(values)
    return sum(v * w for v, w in zip(values, weights)) / total


def population_std(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    m = mean(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / len(values))


def normal_cdf(z: float) -> float:
    """Standard normal CDF: Phi(z) = (1 + erf(z / sqrt 2)) / 2."""
    return 0.5 * (1.0 + math.erf(z / math.sqrt(2.0)))


# =============================================================================
# TRAINING LOAD METRICS
# =============================================================================


def load_monotony(weekly_loads: Sequence[float], cap: float) -> float:
    """
    Foster-style monotony of a load window.

    monotony = mean / std, capped; a perfectly flat non-zero window hits the cap.

    Args:
        weekly_loads: Loads in the window
        cap: Upper bound on the ratio

    Returns:
        Monotony in [0, cap]
    """
    m = mean(weekly_loads)
    if m <= 0:
        return 0.0
    std = population_std(weekly_loads)
    if std <= 1e-9:
        return cap
    return min(cap, m / std)


def load_strain(weekly_loads: Sequence[float], monotony: float, days_per_week: int = 7) -> float:
    """Strain = mean daily load x monotony, with each weekly load spread over the week."""
    return mean(weekly_loads) / days_per_week * monotony


# =============================================================================
# DATES
# =============================================================================


def parse_date(value: str) -> datetime:
    return datetime.strptime(value, DATE_FORMAT)


def format_date(value: datetime) -> str:
    return value.strftime(DATE_FORMAT)


def add_days(value: str, days: int) -> str:
    """Shift an ISO date string by a number of days."""
    return format_date(parse_date(value) + timedelta(days=days))


def diff_days(start: str, end: str) -> int:
    """Whole days from start to end (negative when end is earlier)."""
    return (parse_date(end) - parse_date(start)).days


def overlap_days(start_a: str, end_a: str, start_b: str, end_b: str) -> int:
    """Number of calendar days shared by two inclusive date ranges."""
    start = max(start_a, start_b)
    end = min(end_a, end_b)
    if start > end:
        return 0
    return diff_days(start, end) + 1
