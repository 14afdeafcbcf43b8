"""
Target scoring and the goal difficulty index (GDI).

A target is scored by comparing the required performance with a projected
one. Projection comes either directly from the caller or from projected
fitness:

    capability ratio = (projected CTL / required CTL)^0.25

and the difficulty ratio r = required / projected (time targets invert
this) feeds a distribution-aware utility:

    r <= 1           -> 100
    gap <= tol       -> 100 - 50 * (gap / tol)^2
    gap >  tol       -> 50 * exp(-3 * (gap - tol) / tol)

where gap = r - 1, sigma = 0.03 + 0.07 * (1 - confidence) and
tol = max(0.02, 1.5 * sigma).

The GDI folds four per-goal pressures (performance gap, load gap, timeline
pressure, evidence sparsity) into one 0..1 index with fixed feasibility
bands.
"""

import math
from dataclasses import dataclass
from typing import Sequence

from .config import (
    BUILD_TIME_THRESHOLDS,
    CAPABILITY_EXPONENT,
    GDI_BAND_THRESHOLDS,
    GDI_PERFORMANCE_GAP_SCALE,
    GDI_TOP_BAND,
    GDI_WEIGHTS,
    IMPLAUSIBLE_SCORE_CAP,
    INFERRED_CAPABILITY_BASE,
    INFERRED_CAPABILITY_SPAN,
    INFERRED_CONFIDENCE_FACTOR,
    PLAUSIBLE_LTHR_RANGE,
    PLAUSIBLE_POWER_1H_WATTS,
    PLAUSIBLE_POWER_EXPONENT,
    PLAUSIBLE_RIEGEL_EXPONENT,
    PLAUSIBLE_RUN_5K_TIME_S,
    PLAUSIBLE_SPEED_FACTORS,
    SCORE_SIGMA_BASE,
    SCORE_SIGMA_CONFIDENCE_SPAN,
    SCORE_TOLERANCE_MIN,
    SCORE_TOLERANCE_SIGMA_MULT,
    priority_influence_weight,
)
from .engine.config_loader import NoHistoryCalibration
from .metrics import clamp, clamp01, finite, normal_cdf, round1, round3, weighted_mean
from .models import (
    GdiComponents,
    Goal,
    GoalGdi,
    HrThresholdTarget,
    PaceThresholdTarget,
    PlanGdi,
    PowerThresholdTarget,
    RacePerformanceTarget,
    Target,
    TargetScore,
    target_sort_key,
)
from .no_history import derive_goal_demand_profile, derive_goal_tier_from_targets
from .recovery import estimate_race_duration_hours

DEFAULT_SCORE_CONFIDENCE = 0.5  # Used when a direct projection carries no confidence
MIN_CAPABILITY_RATIO = 0.05


@dataclass(frozen=True)
class _Requirement:
    value: float
    unit: str
    higher_is_better: bool


# =============================================================================
# DEMAND AND CAPABILITY
# =============================================================================


def goal_demand_ctl(
    goal: Goal,
    weeks_to_goal: float,
    calibration: NoHistoryCalibration,
) -> float:
    """
    CTL a goal asks for on its target date.

    Uses the continuous goal-demand model on the goal's own targets, so it is
    available whether or not a no-history context was supplied.
    """
    targets = sorted(goal.targets, key=target_sort_key)
    tier = derive_goal_tier_from_targets(targets)
    profile = derive_goal_demand_profile(targets, tier, weeks_to_goal, calibration)
    return profile.required_event_demand_range.target


def _requirement(target: Target) -> _Requirement:
    if isinstance(target, RacePerformanceTarget):
        seconds = (
            target.target_time_s
            if target.target_time_s is not None
            else estimate_race_duration_hours(target) * 3600
        )
        return _Requirement(value=seconds, unit="s", higher_is_better=False)
    if isinstance(target, PowerThresholdTarget):
        return _Requirement(value=target.target_watts, unit="W", higher_is_better=True)
    if isinstance(target, PaceThresholdTarget):
        return _Requirement(value=target.target_speed_mps, unit="m/s", higher_is_better=True)
    return _Requirement(value=target.target_lthr_bpm, unit="bpm", higher_is_better=True)


def _value_from_ratio(requirement: _Requirement, ratio: float) -> float:
    ratio = max(MIN_CAPABILITY_RATIO, ratio)
    if requirement.higher_is_better:
        return requirement.value * ratio
    return requirement.value / ratio


def project_target_capability(
    target: Target,
    projected_ctl: float,
    required_ctl: float,
) -> float:
    """
    Projected performance for a target given fitness on the goal date.

        ratio = (ctl / required_ctl)^0.25

    Power, pace and HR targets scale up with the ratio; race times scale
    down.

    Args:
        target: Goal target
        projected_ctl: CTL projected for the goal date
        required_ctl: Demand CTL of the goal

    Returns:
        Projected value in the target's own unit
    """
    if finite(required_ctl) <= 0:
        ratio = 1.0
    else:
        ratio = (max(0.0, finite(projected_ctl)) / required_ctl) ** CAPABILITY_EXPONENT
    return _value_from_ratio(_requirement(target), ratio)


# =============================================================================
# PLAUSIBILITY
# =============================================================================


def plausible_speed_mps(distance_m: float, activity_category: str) -> float:
    """
    Fastest plausible average speed over a distance.

    Riegel-scaled from a 5 km run reference, times an activity factor.
    """
    distance_m = max(1.0, distance_m)
    seconds = PLAUSIBLE_RUN_5K_TIME_S * (distance_m / 5000) ** PLAUSIBLE_RIEGEL_EXPONENT
    factor = PLAUSIBLE_SPEED_FACTORS.get(activity_category, PLAUSIBLE_SPEED_FACTORS["other"])
    return distance_m / seconds * factor


def plausible_power_watts(duration_s: float) -> float:
    """Highest plausible power held for a duration (power-duration curve)."""
    hours = max(1 / 60, duration_s / 3600)
    return PLAUSIBLE_POWER_1H_WATTS * hours ** (-PLAUSIBLE_POWER_EXPONENT)


def is_target_demand_plausible(target: Target) -> bool:
    if isinstance(target, RacePerformanceTarget):
        if target.target_time_s is None:
            return True
        speed = target.distance_m / target.target_time_s
        return speed <= plausible_speed_mps(target.distance_m, target.activity_category)
    if isinstance(target, PaceThresholdTarget):
        distance = target.target_speed_mps * target.test_duration_s
        return target.target_speed_mps <= plausible_speed_mps(distance, target.activity_category)
    if isinstance(target, PowerThresholdTarget):
        return target.target_watts <= plausible_power_watts(target.test_duration_s)
    low, high = PLAUSIBLE_LTHR_RANGE
    return low <= target.target_lthr_bpm <= high


# =============================================================================
# TARGET SATISFACTION
# =============================================================================


def satisfaction_utility(difficulty_ratio: float, tolerance: float) -> float:
    """Score 0..100 for a difficulty ratio (1.0 = exactly on target)."""
    gap = difficulty_ratio - 1
    if gap <= 0:
        return 100.0
    if gap <= tolerance:
        return 100 - 50 * (gap / tolerance) ** 2
    return 50 * math.exp(-3 * (gap - tolerance) / tolerance)


def score_target_satisfaction(
    target: Target,
    projected_value: float | None = None,
    readiness_score: float | None = None,
    readiness_confidence: float | None = None,
) -> TargetScore:
    """
    Score how well a projection satisfies one target.

    When no direct projection is given, capability is inferred from the
    readiness score (ratio 0.85 at readiness 0, 1.15 at 100) with reduced
    confidence, and the score is flagged projection_inferred_from_readiness.
    Targets above the plausible physiological curve are flagged
    target_demand_above_plausible_cap and capped at 35.

    Harder targets never score higher than easier ones for a fixed
    projection.

    Args:
        target: Goal target
        projected_value: Projection in the target's unit (seconds for races)
        readiness_score: 0..100 readiness used to infer a missing projection
        readiness_confidence: 0..100 confidence in the projection

    Returns:
        TargetScore
    """
    requirement = _requirement(target)
    codes: list[str] = []

    if readiness_confidence is None:
        confidence = DEFAULT_SCORE_CONFIDENCE
    else:
        confidence = clamp01(finite(readiness_confidence) / 100)

    projection = finite(projected_value, -1.0) if projected_value is not None else -1.0
    if projection <= 0:
        readiness = clamp(finite(readiness_score, 50.0), 0.0, 100.0)
        ratio = INFERRED_CAPABILITY_BASE + INFERRED_CAPABILITY_SPAN * readiness / 100
        projection = _value_from_ratio(requirement, ratio)
        confidence *= INFERRED_CONFIDENCE_FACTOR
        codes.append("projection_inferred_from_readiness")

    if requirement.higher_is_better:
        difficulty = requirement.value / projection
    else:
        difficulty = projection / requirement.value
    difficulty = finite(difficulty, 1.0)

    sigma = SCORE_SIGMA_BASE + SCORE_SIGMA_CONFIDENCE_SPAN * (1 - confidence)
    tolerance = max(SCORE_TOLERANCE_MIN, SCORE_TOLERANCE_SIGMA_MULT * sigma)
    score = satisfaction_utility(difficulty, tolerance)
    probability = normal_cdf((1 - difficulty) / sigma)

    if not is_target_demand_plausible(target):
        score = min(score, IMPLAUSIBLE_SCORE_CAP)
        probability = min(probability, IMPLAUSIBLE_SCORE_CAP / 100)
        codes.append("target_demand_above_plausible_cap")

    if difficulty <= 1:
        codes.append("target_met_by_projection")
    elif difficulty - 1 <= tolerance:
        codes.append("target_within_tolerance_band")
    else:
        codes.append("target_beyond_tolerance_band")

    return TargetScore(
        target_type=target.target_type,
        score_0_100=round1(clamp(finite(score), 0.0, 100.0)),
        attainment_probability=round3(clamp01(finite(probability))),
        difficulty_ratio=round3(difficulty),
        required_value=round3(requirement.value),
        projected_value=round3(projection),
        unit=requirement.unit,
        rationale_codes=tuple(codes),
    )


def aggregate_target_scores(targets: Sequence[Target], scores: Sequence[TargetScore]) -> float:
    """Target-weight mean of target scores (0 when there are none)."""
    if not scores:
        return 0.0
    return weighted_mean([s.score_0_100 for s in scores], [t.weight for t in targets])


# =============================================================================
# GOAL DIFFICULTY INDEX
# =============================================================================


def map_gdi_to_feasibility_band(gdi: float) -> str:
    """
    Feasibility band for a GDI value.

        < 0.30 feasible, < 0.50 stretch, < 0.75 aggressive,
        < 0.90 nearly_impossible, else infeasible
    """
    value = finite(gdi)
    for upper, band in GDI_BAND_THRESHOLDS:
        if value < upper:
            return band
    return GDI_TOP_BAND


def compute_gdi_components(
    target_scores: Sequence[TargetScore],
    targets: Sequence[Target],
    projected_ctl: float,
    required_ctl: float,
    weeks_to_goal: float,
    goal_tier: str,
    evidence_confidence: float,
) -> GdiComponents:
    """
    The four GDI pressures of one goal, each in [0, 1].

        PG: weighted mean difficulty excess / 0.12
        LG: 1 - projected CTL / required CTL
        TP: share of the full build time that is missing
        SP: 1 - evidence confidence
    """
    if target_scores:
        excess = weighted_mean(
            [max(0.0, s.difficulty_ratio - 1) for s in target_scores],
            [t.weight for t in targets],
        )
        performance_gap = clamp01(excess / GDI_PERFORMANCE_GAP_SCALE)
    else:
        performance_gap = 0.0

    if finite(required_ctl) > 0:
        load_gap = clamp01(1 - finite(projected_ctl) / required_ctl)
    else:
        load_gap = 0.0

    full_weeks, _ = BUILD_TIME_THRESHOLDS.get(goal_tier, BUILD_TIME_THRESHOLDS["medium"])
    timeline_pressure = clamp01((full_weeks - max(0.0, finite(weeks_to_goal))) / full_weeks)

    return GdiComponents(
        performance_gap=round3(performance_gap),
        load_gap=round3(load_gap),
        timeline_pressure=round3(timeline_pressure),
        sparsity_penalty=round3(clamp01(1 - finite(evidence_confidence))),
    )


def compute_goal_gdi(goal_id: str, priority: int, components: GdiComponents) -> GoalGdi:
    """
    Combine GDI components into the goal's index and band.

        raw = 0.55 * PG + 0.35 * LG + 0.30 * TP + 0.25 * SP   (0 .. 1.45)
        gdi = round3(min(1, raw))

    The band is taken from the raw value.
    """
    clamped = GdiComponents(
        performance_gap=clamp01(finite(components.performance_gap)),
        load_gap=clamp01(finite(components.load_gap)),
        timeline_pressure=clamp01(finite(components.timeline_pressure)),
        sparsity_penalty=clamp01(finite(components.sparsity_penalty)),
    )
    raw = (
        GDI_WEIGHTS["performance_gap"] * clamped.performance_gap
        + GDI_WEIGHTS["load_gap"] * clamped.load_gap
        + GDI_WEIGHTS["timeline_pressure"] * clamped.timeline_pressure
        + GDI_WEIGHTS["sparsity_penalty"] * clamped.sparsity_penalty
    )
    return GoalGdi(
        goal_id=goal_id,
        priority=priority,
        gdi=round3(min(1.0, raw)),
        feasibility_band=map_gdi_to_feasibility_band(raw),
        components=clamped,
    )


def compute_plan_gdi(goal_gdis: Sequence[GoalGdi]) -> PlanGdi:
    """
    Aggregate goal GDIs into the plan's difficulty.

    Equal-priority goals aggregate as an arithmetic mean. Otherwise the plan
    takes the larger of the priority-weighted mean and the worst goal among
    the top-priority ("A") goals, so an A goal can never be averaged away.

    Args:
        goal_gdis: Per-goal GDIs

    Returns:
        PlanGdi (gdi 0, "feasible" for an empty list)
    """
    if not goal_gdis:
        return PlanGdi(gdi=0.0, feasibility_band="feasible")

    ordered = sorted(goal_gdis, key=lambda g: (g.priority, -g.gdi, g.goal_id))
    top_priority = ordered[0].priority
    worst_top = ordered[0]

    if all(g.priority == top_priority for g in ordered):
        gdi = round3(sum(g.gdi for g in ordered) / len(ordered))
    else:
        weighted = weighted_mean(
            [g.gdi for g in ordered], [priority_influence_weight(g.priority) for g in ordered]
        )
        gdi = round3(max(weighted, worst_top.gdi))

    return PlanGdi(
        gdi=gdi,
        feasibility_band=map_gdi_to_feasibility_band(gdi),
        dominant_goal_id=worst_top.goal_id,
    )
