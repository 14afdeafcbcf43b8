"""
Safety caps for weekly load progression.

Two independent hard caps bound every planned week:

    TSS ramp:  applied <= floor1(previous_week_tss * (1 + pct / 100))
    CTL ramp:  CTL(after week) - CTL(before week) <= max_ctl_ramp_per_week

Both caps round down, so an applied value never exceeds a cap after
rounding. Requested loads above a cap are clamped, never rejected.
"""

from typing import Any, Mapping

from .config import (
    ABSOLUTE_MAX_CTL_RAMP_PER_WEEK,
    ABSOLUTE_MAX_WEEKLY_TSS_RAMP_PCT,
    CTL_RAMP_BISECTION_STEPS,
    DAYS_PER_WEEK,
    DEFAULT_OPTIMIZATION_PROFILE,
    MAX_POST_GOAL_RECOVERY_DAYS,
    PROFILE_PARAMS,
)
from .metrics import clamp, finite, floor1, round_half_up
from .models import CreationConfig, SafetyConfig
from .physiology import ctl_ramp_for_load


def _config_value(config: CreationConfig | Mapping[str, Any] | None, name: str) -> Any:
    if config is None:
        return None
    if isinstance(config, Mapping):
        return config.get(name)
    return getattr(config, name, None)


def normalize_projection_safety_config(
    config: CreationConfig | Mapping[str, Any] | None,
) -> SafetyConfig:
    """
    Fill profile defaults and clamp safety settings into their hard bounds.

    Bounds:
        post_goal_recovery_days: rounded into [0, 28]
        max_weekly_tss_ramp_pct: [0, 40]
        max_ctl_ramp_per_week:   [0, 12]

    Missing or non-finite values take the profile default; an unknown
    profile falls back to "balanced".

    Args:
        config: CreationConfig, a plain mapping, or None

    Returns:
        SafetyConfig
    """
    profile = _config_value(config, "optimization_profile")
    if profile not in PROFILE_PARAMS:
        profile = DEFAULT_OPTIMIZATION_PROFILE
    defaults = PROFILE_PARAMS[profile]

    recovery_days = finite(
        _config_value(config, "post_goal_recovery_days"), defaults.post_goal_recovery_days
    )
    tss_ramp = finite(
        _config_value(config, "max_weekly_tss_ramp_pct"), defaults.max_weekly_tss_ramp_pct
    )
    ctl_ramp = finite(
        _config_value(config, "max_ctl_ramp_per_week"), defaults.max_ctl_ramp_per_week
    )

    return SafetyConfig(
        optimization_profile=profile,
        post_goal_recovery_days=int(
            clamp(round_half_up(recovery_days), 0, MAX_POST_GOAL_RECOVERY_DAYS)
        ),
        max_weekly_tss_ramp_pct=clamp(tss_ramp, 0.0, ABSOLUTE_MAX_WEEKLY_TSS_RAMP_PCT),
        max_ctl_ramp_per_week=clamp(ctl_ramp, 0.0, ABSOLUTE_MAX_CTL_RAMP_PER_WEEK),
    )


def max_weekly_tss_for_ramp(previous_week_tss: float, max_ramp_pct: float) -> float:
    """
    Largest weekly load allowed by the percentage ramp cap.

    Args:
        previous_week_tss: Load applied in the previous week
        max_ramp_pct: Allowed week-over-week increase in percent

    Returns:
        Cap rounded down to 0.1
    """
    return floor1(max(0.0, previous_week_tss) * (1 + max_ramp_pct / 100))


def find_weekly_tss_for_ctl_ramp_limit(
    starting_ctl: float,
    upper_weekly_tss: float,
    max_ctl_ramp: float,
    days: int = DAYS_PER_WEEK,
) -> float:
    """
    Largest weekly load whose CTL gain stays within max_ctl_ramp.

    Bisection over [0, upper_weekly_tss]; the lower end always satisfies the
    limit because CTL gain increases with load, and the result is rounded
    down to 0.1 so the cap still holds after rounding.

    Args:
        starting_ctl: CTL before the week
        upper_weekly_tss: Load that violates the limit
        max_ctl_ramp: Allowed CTL gain for the week
        days: Days in the week

    Returns:
        Capped weekly load
    """
    low = 0.0
    high = max(0.0, upper_weekly_tss)
    for _ in range(CTL_RAMP_BISECTION_STEPS):
        mid = (low + high) / 2
        if ctl_ramp_for_load(starting_ctl, mid, days) > max_ctl_ramp:
            high = mid
        else:
            low = mid
    return floor1(low)


def max_weekly_tss_for_ctl_ramp(
    starting_ctl: float,
    candidate_weekly_tss: float,
    max_ctl_ramp: float,
    days: int = DAYS_PER_WEEK,
) -> tuple[float, bool]:
    """
    Apply the CTL ramp cap to a candidate load.

    Returns:
        Tuple (allowed load, whether the candidate had to be clamped)
    """
    if ctl_ramp_for_load(starting_ctl, candidate_weekly_tss, days) <= max_ctl_ramp:
        return candidate_weekly_tss, False
    return (
        find_weekly_tss_for_ctl_ramp_limit(starting_ctl, candidate_weekly_tss, max_ctl_ramp, days),
        True,
    )
