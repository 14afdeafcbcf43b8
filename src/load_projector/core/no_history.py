"""
No-history evidence and starting-floor resolver.

When an athlete has little or no completed training history, the projection
cannot observe a starting fitness. This module infers a conservative floor
instead:

    1. Count strong behavioural signals -> fitness level (weak / strong)
    2. Look up the (goal tier x fitness level) CTL floor matrix
    3. Clamp the floor by what the athlete's weekly availability can hold
    4. Derive a continuous goal-demand profile from the goal targets
    5. Weight the available evidence into a 0..1 confidence score

Every decision leaves a rationale code so callers can explain the floor.
"""

import logging
import math
from dataclasses import dataclass
from typing import Sequence

from .config import (
    BUILD_TIME_THRESHOLDS,
    DAYS_PER_WEEK,
    DEMAND_BAND_LOW,
    DEMAND_BAND_STRETCH,
    DEMAND_CONFIDENCE_BASE,
    DEMAND_CONFIDENCE_CAP,
    DEMAND_CONFIDENCE_CTL_ORIGIN,
    DEMAND_CONFIDENCE_CTL_SPAN,
    DEMAND_CONFIDENCE_PACE_BONUS,
    DEMAND_CONFIDENCE_SLOPE,
    DEMAND_CONFIDENCE_WEEKS,
    DEMAND_DISTANCE_CTL_BASE,
    DEMAND_DISTANCE_CTL_SCALE,
    DEMAND_DISTANCE_KM_BOUNDS,
    DEMAND_EVENT_CTL_MAX,
    DEMAND_EVENT_CTL_MIN,
    DEMAND_HORIZON_EXTENDED_THRESHOLD,
    DEMAND_HORIZON_MULTIPLIER_SCALE,
    DEMAND_HORIZON_PRESSURE_BOUNDS,
    DEMAND_HORIZON_REFERENCE_WEEKS,
    DEMAND_HORIZON_SHORT_THRESHOLD,
    DEMAND_HR_THRESHOLD_CTL,
    DEMAND_MAX_SHARE,
    DEMAND_NO_TARGET_BASE_CTL,
    DEMAND_NO_TARGET_TIER_STEP,
    DEMAND_PACE_BOOST_CAP,
    DEMAND_PACE_BOOST_PER_KPH,
    DEMAND_PACE_REFERENCE_KPH,
    DEMAND_PACE_THRESHOLD_CTL,
    DEMAND_POWER_THRESHOLD_CTL,
    DEMAND_RACE_WEIGHT_DISTANCE_CAP,
    DEMAND_RACE_WEIGHT_DISTANCE_KM,
    DEMAND_RACE_WEIGHT_PACE_BONUS,
    DEMAND_THRESHOLD_WEIGHTS,
    DEMAND_TIER_BIAS_CTL,
    EVIDENCE_BASE_BY_STATE,
    EVIDENCE_DEFAULT_SIGNAL_QUALITY,
    EVIDENCE_EFFORT_MARKER_DELTA,
    EVIDENCE_MIN_BY_STATE,
    EVIDENCE_PROFILE_MARKER_DELTA,
    GOAL_TIER_HIGH_DISTANCE_M,
    GOAL_TIER_MEDIUM_DISTANCE_M,
    LONG_HORIZON_WEEKS,
    NO_HISTORY_CONSERVATIVE_IF,
    NO_HISTORY_CTL_FLOOR_MATRIX,
    NO_HISTORY_DEFAULT_STARTING_CTL,
    NO_HISTORY_INTENSITY_MODEL_VERSION,
    NO_HISTORY_STRONG_IF,
    NO_HISTORY_TARGET_EVENT_CTL_FACTOR,
    NO_HISTORY_TARGET_EVENT_CTL_MAX,
    NO_HISTORY_TARGET_EVENT_CTL_MIN,
    NO_HISTORY_WEAK_IF,
    STRONG_SIGNAL_QUALITY,
    STRONG_SIGNALS_FOR_PROMOTION,
    weekly_tss_from_ctl,
)
from .engine.config_loader import Calibration, NoHistoryCalibration
from .metrics import clamp, clamp01, finite, round1, round_half_up
from .models import (
    Availability,
    ContextSummary,
    DemandBand,
    EvidenceWeighting,
    FloorValues,
    Goal,
    IntensityModel,
    NoHistoryAnchor,
    NoHistoryContext,
    RacePerformanceTarget,
    Target,
    target_sort_key,
)

logger = logging.getLogger(__name__)

TIER_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2}


@dataclass(frozen=True)
class NoHistoryEvidence:
    strong_signal_tokens: tuple[str, ...]
    rationale_codes: tuple[str, ...]


@dataclass(frozen=True)
class FitnessInference:
    fitness_level: str
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class ProjectionFloor:
    goal_tier: str
    fitness_level: str
    start_ctl_floor: float
    start_weekly_tss_floor: int
    target_event_ctl: float


@dataclass(frozen=True)
class FloorClamp:
    start_ctl: float
    start_weekly_tss: int
    floor_clamped_by_availability: bool
    reasons: tuple[str, ...]
    assumed_intensity_model_version: str


@dataclass(frozen=True)
class GoalDemandProfile:
    required_event_demand_range: DemandBand
    required_peak_weekly_tss: DemandBand
    demand_confidence: str
    minimum_confidence_score: float
    rationale_codes: tuple[str, ...]


def _unique(codes: Sequence[str]) -> tuple[str, ...]:
    """Drop repeated codes, keeping first occurrence order."""
    return tuple(dict.fromkeys(codes))


def round_weeks_to_event(value: float | None) -> int:
    """Whole weeks to the event, floored; non-finite or negative -> 0."""
    return max(0, math.floor(finite(value)))


# =============================================================================
# EVIDENCE AND FITNESS LEVEL
# =============================================================================


def collect_no_history_evidence(summary: ContextSummary | None) -> NoHistoryEvidence:
    """
    Count independent strong signals in the behavioural context.

    Strong signals: high consistency, high effort confidence, high profile
    metric completeness, and signal quality >= 0.8.
    """
    if summary is None:
        return NoHistoryEvidence(strong_signal_tokens=(), rationale_codes=())

    tokens = []
    if summary.recent_consistency_marker == "high":
        tokens.append("strong_consistency_marker")
    if summary.effort_confidence_marker == "high":
        tokens.append("strong_effort_marker")
    if summary.profile_metric_completeness_marker == "high":
        tokens.append("strong_profile_metrics_marker")
    if finite(summary.signal_quality) >= STRONG_SIGNAL_QUALITY:
        tokens.append("strong_signal_quality_score")

    return NoHistoryEvidence(
        strong_signal_tokens=_unique(tokens),
        rationale_codes=tuple(summary.rationale_codes),
    )


def determine_no_history_fitness_level(evidence: NoHistoryEvidence) -> FitnessInference:
    """Strong with two or more independent strong signals, otherwise weak."""
    if len(evidence.strong_signal_tokens) >= STRONG_SIGNALS_FOR_PROMOTION:
        return FitnessInference(
            fitness_level="strong",
            reasons=(
                *evidence.strong_signal_tokens,
                "fitness_promoted_to_strong_two_independent_signals",
            ),
        )
    return FitnessInference(
        fitness_level="weak",
        reasons=(
            *evidence.strong_signal_tokens,
            "fitness_defaulted_to_weak_insufficient_strong_signals",
        ),
    )


# =============================================================================
# FLOOR
# =============================================================================


def derive_no_history_projection_floor(goal_tier: str, fitness_level: str) -> ProjectionFloor:
    """
    Canonical CTL and weekly-TSS floors for a goal tier and fitness level.

    Args:
        goal_tier: "low", "medium" or "high"
        fitness_level: "weak" or "strong"

    Returns:
        ProjectionFloor with start_weekly_tss_floor = round(start_ctl_floor * 7)
    """
    start_ctl = NO_HISTORY_CTL_FLOOR_MATRIX[fitness_level][goal_tier]
    target_event_ctl = round1(
        clamp(
            start_ctl * NO_HISTORY_TARGET_EVENT_CTL_FACTOR,
            NO_HISTORY_TARGET_EVENT_CTL_MIN,
            NO_HISTORY_TARGET_EVENT_CTL_MAX,
        )
    )
    return ProjectionFloor(
        goal_tier=goal_tier,
        fitness_level=fitness_level,
        start_ctl_floor=start_ctl,
        start_weekly_tss_floor=weekly_tss_from_ctl(start_ctl),
        target_event_ctl=target_event_ctl,
    )


def count_available_training_days(availability: Availability) -> int:
    """Days with at least one usable window that are not hard rest days."""
    rest_days = set(availability.hard_rest_days)
    return sum(
        1
        for day in availability.days
        if day.day not in rest_days and any(w.minutes > 0 for w in day.windows)
    )


def clamp_floor_by_availability(
    floor: ProjectionFloor,
    availability: Availability | None,
    intensity_model: IntensityModel | None,
) -> FloorClamp:
    """
    Lower the weekly floor to what the athlete's schedule can hold.

    feasible_weekly_tss = round(minutes / 60 * 100 * IF^2), where minutes sums
    the windows of non-rest days (each capped at the max session duration)
    and IF is the intensity factor for the inferred fitness level.

    Args:
        floor: Unclamped floor
        availability: Weekly availability, or None to skip clamping
        intensity_model: Assumed intensity factors (defaults fill gaps)

    Returns:
        FloorClamp with the (possibly lowered) floor and rationale codes
    """
    model = intensity_model or IntensityModel()
    version = model.version or NO_HISTORY_INTENSITY_MODEL_VERSION

    if availability is None:
        return FloorClamp(
            start_ctl=floor.start_ctl_floor,
            start_weekly_tss=floor.start_weekly_tss_floor,
            floor_clamped_by_availability=False,
            reasons=("availability_missing_skip_floor_clamp",),
            assumed_intensity_model_version=version,
        )

    rest_days = set(availability.hard_rest_days)
    session_cap = availability.max_single_session_duration_minutes
    total_minutes = 0.0
    for day in availability.days:
        if day.day in rest_days:
            continue
        for window in day.windows:
            minutes = window.minutes
            if session_cap is not None:
                minutes = min(minutes, session_cap)
            total_minutes += minutes

    weak_if = model.weak_if if model.weak_if is not None else NO_HISTORY_WEAK_IF
    strong_if = model.strong_if if model.strong_if is not None else NO_HISTORY_STRONG_IF
    conservative_if = (
        model.conservative_if if model.conservative_if is not None else NO_HISTORY_CONSERVATIVE_IF
    )
    intensity_factor = strong_if if floor.fitness_level == "strong" else weak_if
    intensity_factor = finite(intensity_factor, conservative_if)

    feasible_weekly_tss = max(
        0, int(round_half_up(total_minutes / 60 * 100 * intensity_factor**2))
    )
    clamped_weekly_tss = min(floor.start_weekly_tss_floor, feasible_weekly_tss)
    clamped_ctl = round1(clamped_weekly_tss / DAYS_PER_WEEK)
    derived_weekly_tss = weekly_tss_from_ctl(clamped_ctl)
    was_clamped = derived_weekly_tss < floor.start_weekly_tss_floor

    reasons = [f"availability_training_days_{count_available_training_days(availability)}"]
    if model.weak_if is None or model.strong_if is None:
        reasons.append("intensity_model_missing_using_conservative_baseline")
    if was_clamped:
        reasons.append("floor_clamped_by_availability")

    return FloorClamp(
        start_ctl=clamped_ctl,
        start_weekly_tss=derived_weekly_tss,
        floor_clamped_by_availability=was_clamped,
        reasons=tuple(reasons),
        assumed_intensity_model_version=version,
    )


# =============================================================================
# BUILD TIME AND GOAL TIER
# =============================================================================


def classify_build_time_feasibility(goal_tier: str, weeks_to_event: float) -> str:
    """
    Whether there is enough time to build for the goal.

        tier    full   limited
        high    >=16   >=12
        medium  >=12   >=8
        low     >=8    >=6

    Anything shorter than the limited threshold is "insufficient".
    """
    weeks = round_weeks_to_event(weeks_to_event)
    full, limited = BUILD_TIME_THRESHOLDS.get(goal_tier, BUILD_TIME_THRESHOLDS["medium"])
    if weeks >= full:
        return "full"
    if weeks >= limited:
        return "limited"
    return "insufficient"


def map_feasibility_to_confidence(feasibility: str) -> str:
    if feasibility == "full":
        return "high"
    if feasibility == "limited":
        return "medium"
    return "low"


def derive_goal_tier_from_targets(targets: Sequence[Target]) -> str:
    """
    Goal tier implied by the targets.

    Race >= 30 km -> high; race >= 10 km or any non-race target -> medium;
    no targets -> medium; otherwise low.
    """
    if not targets:
        return "medium"

    has_medium_signal = False
    for target in targets:
        if isinstance(target, RacePerformanceTarget):
            if target.distance_m >= GOAL_TIER_HIGH_DISTANCE_M:
                return "high"
            if target.distance_m >= GOAL_TIER_MEDIUM_DISTANCE_M:
                has_medium_signal = True
            continue
        has_medium_signal = True
    return "medium" if has_medium_signal else "low"


# =============================================================================
# GOAL DEMAND
# =============================================================================


def _demand_band(target: float) -> DemandBand:
    return DemandBand(
        min=round1(target * DEMAND_BAND_LOW),
        target=round1(target),
        stretch=round1(target * DEMAND_BAND_STRETCH),
    )


def confidence_to_score_floor(confidence: str, calibration: NoHistoryCalibration) -> float:
    if confidence == "high":
        return calibration.confidence_floor_high
    if confidence == "medium":
        return calibration.confidence_floor_mid
    return calibration.confidence_floor_low


def race_demand_ctl(target: RacePerformanceTarget, tier_bias: float) -> tuple[float, float]:
    """
    Continuous CTL demand of a race target.

        demand = 28 + 13 * ln(1 + km) + clamp((kph - 9.5) * 3.2, 0, 24) + tier_bias

    Returns:
        Tuple (demand CTL, pace boost)
    """
    distance_km = clamp(target.distance_m / 1000, *DEMAND_DISTANCE_KM_BOUNDS)
    distance_ctl = DEMAND_DISTANCE_CTL_BASE + DEMAND_DISTANCE_CTL_SCALE * math.log(1 + distance_km)
    pace_boost = 0.0
    if target.target_time_s is not None and finite(target.target_time_s) > 0:
        speed_kph = distance_km * 3600 / target.target_time_s
        pace_boost = clamp(
            (speed_kph - DEMAND_PACE_REFERENCE_KPH) * DEMAND_PACE_BOOST_PER_KPH,
            0.0,
            DEMAND_PACE_BOOST_CAP,
        )
    return distance_ctl + pace_boost + tier_bias, pace_boost


def derive_goal_demand_profile(
    targets: Sequence[Target],
    goal_tier: str,
    weeks_to_event: float,
    calibration: NoHistoryCalibration,
) -> GoalDemandProfile:
    """
    Required event CTL and peak weekly load implied by the goal targets.

    Candidates (CTL units, each plus 4 * tier rank):
        race:            28 + 13 * ln(1 + km) + pace boost
        pace threshold:  56
        power threshold: 60
        HR threshold:    54

    The intrinsic demand is 0.7 * max + 0.3 * weighted mean of the candidates,
    then scaled by horizon pressure: short horizons ask for more, long ones
    for less. The function is continuous in target time, so nearby targets
    produce nearby demands.

    Args:
        targets: Goal targets in canonical order
        goal_tier: Goal tier
        weeks_to_event: Weeks until the event
        calibration: No-history calibration section

    Returns:
        GoalDemandProfile
    """
    tier_rank = TIER_RANK.get(goal_tier, 1)
    tier_bias = tier_rank * DEMAND_TIER_BIAS_CTL
    reasons = ["demand_model_dynamic_continuous_v1", f"goal_tier_{goal_tier}"]

    candidates: list[float] = []
    weights: list[float] = []
    has_race_pace = False
    for target in targets:
        if isinstance(target, RacePerformanceTarget):
            demand, pace_boost = race_demand_ctl(target, tier_bias)
            if target.target_time_s is not None and finite(target.target_time_s) > 0:
                has_race_pace = True
                reasons.append("race_performance_target_with_pace")
            else:
                reasons.append("race_performance_target_without_pace")
            distance_km = clamp(target.distance_m / 1000, *DEMAND_DISTANCE_KM_BOUNDS)
            candidates.append(demand)
            weights.append(
                1
                + min(DEMAND_RACE_WEIGHT_DISTANCE_CAP, distance_km / DEMAND_RACE_WEIGHT_DISTANCE_KM)
                + (DEMAND_RACE_WEIGHT_PACE_BONUS if pace_boost > 0 else 0.0)
            )
            continue

        threshold_ctl = {
            "pace_threshold": DEMAND_PACE_THRESHOLD_CTL,
            "power_threshold": DEMAND_POWER_THRESHOLD_CTL,
            "hr_threshold": DEMAND_HR_THRESHOLD_CTL,
        }[target.target_type]
        candidates.append(threshold_ctl + tier_bias)
        weights.append(DEMAND_THRESHOLD_WEIGHTS[target.target_type])
        reasons.append(f"{target.target_type}_target_included")

    if not candidates:
        intrinsic = DEMAND_NO_TARGET_BASE_CTL + tier_rank * DEMAND_NO_TARGET_TIER_STEP
        reasons.append("goal_targets_missing_using_dynamic_tier_baseline")
    else:
        weighted = sum(c * w for c, w in zip(candidates, weights)) / sum(weights)
        intrinsic = max(candidates) * DEMAND_MAX_SHARE + weighted * (1 - DEMAND_MAX_SHARE)
        reasons.append(
            "multi_goal_demand_aggregation_max_weighted"
            if len(candidates) > 1
            else "single_goal_demand_applied"
        )

    weeks = round_weeks_to_event(weeks_to_event)
    pressure = clamp(
        (DEMAND_HORIZON_REFERENCE_WEEKS - weeks) / DEMAND_HORIZON_REFERENCE_WEEKS,
        *DEMAND_HORIZON_PRESSURE_BOUNDS,
    )
    multiplier = (
        1
        + pressure
        * DEMAND_HORIZON_MULTIPLIER_SCALE
        * calibration.demand_tier_time_pressure_scale
    )
    reasons.append(f"event_horizon_weeks_{weeks}")
    if pressure > DEMAND_HORIZON_SHORT_THRESHOLD:
        reasons.append("horizon_pressure_short")
    elif pressure < DEMAND_HORIZON_EXTENDED_THRESHOLD:
        reasons.append("horizon_pressure_extended")
    else:
        reasons.append("horizon_pressure_balanced")

    target_event_ctl = round1(
        clamp(intrinsic * multiplier, DEMAND_EVENT_CTL_MIN, DEMAND_EVENT_CTL_MAX)
    )

    high_weeks, medium_weeks = DEMAND_CONFIDENCE_WEEKS
    if weeks >= high_weeks:
        confidence = "high"
    elif weeks >= medium_weeks:
        confidence = "medium"
    else:
        confidence = "low"

    intrinsic_floor = clamp01(
        (target_event_ctl - DEMAND_CONFIDENCE_CTL_ORIGIN) / DEMAND_CONFIDENCE_CTL_SPAN
    )
    demand_floor = min(
        DEMAND_CONFIDENCE_CAP,
        DEMAND_CONFIDENCE_BASE
        + intrinsic_floor * DEMAND_CONFIDENCE_SLOPE
        + (DEMAND_CONFIDENCE_PACE_BONUS if has_race_pace else 0.0),
    )

    return GoalDemandProfile(
        required_event_demand_range=_demand_band(target_event_ctl),
        required_peak_weekly_tss=_demand_band(target_event_ctl * DAYS_PER_WEEK),
        demand_confidence=confidence,
        minimum_confidence_score=max(
            confidence_to_score_floor(confidence, calibration), demand_floor
        ),
        rationale_codes=_unique(reasons),
    )


# =============================================================================
# EVIDENCE WEIGHTING
# =============================================================================


def derive_evidence_weighting(
    history_availability_state: str,
    rationale_codes: Sequence[str] = (),
    signal_quality: float | None = None,
    effort_confidence_marker: str | None = None,
    profile_metric_completeness_marker: str | None = None,
) -> EvidenceWeighting:
    """
    Weight the available evidence into a 0..1 confidence score.

        score = 0.7 * base(state) + 0.3 * signal_quality
                +/- 0.08 effort marker, +/- 0.06 profile marker

    then floored at the per-state minimum. Any rationale code mentioning
    "stale" forces the stale state.
    """
    has_stale_marker = any("stale" in code for code in rationale_codes)
    state = "stale" if has_stale_marker else history_availability_state
    if state not in EVIDENCE_BASE_BY_STATE:
        state = "none"

    reasons = [f"confidence_state_{state}"]
    if has_stale_marker:
        reasons.append("confidence_discount_stale_history")

    quality = clamp01(finite(signal_quality, EVIDENCE_DEFAULT_SIGNAL_QUALITY))
    confidence = EVIDENCE_BASE_BY_STATE[state] * 0.7 + quality * 0.3

    if effort_confidence_marker == "high":
        confidence += EVIDENCE_EFFORT_MARKER_DELTA
        reasons.append("confidence_boost_effort_marker_high")
    elif effort_confidence_marker == "low":
        confidence -= EVIDENCE_EFFORT_MARKER_DELTA
        reasons.append("confidence_penalty_effort_marker_low")

    if profile_metric_completeness_marker == "high":
        confidence += EVIDENCE_PROFILE_MARKER_DELTA
        reasons.append("confidence_boost_profile_metrics_high")
    elif profile_metric_completeness_marker == "low":
        confidence -= EVIDENCE_PROFILE_MARKER_DELTA
        reasons.append("confidence_penalty_profile_metrics_low")

    return EvidenceWeighting(
        score=max(EVIDENCE_MIN_BY_STATE[state], clamp01(confidence)),
        state=state,
        reasons=tuple(reasons),
    )


# =============================================================================
# ANCHOR
# =============================================================================


def resolve_no_history_anchor(
    context: NoHistoryContext | None,
    goals: Sequence[Goal],
    weeks_to_event: float,
    horizon_weeks: float,
    calibration: Calibration,
) -> NoHistoryAnchor:
    """
    Resolve the no-history starting floor, demand profile and confidence.

    Confidence starts from build-time feasibility and is downgraded from
    high to medium by a weak fitness inference, a multi-goal plan, a horizon
    longer than 52 weeks, or an availability clamp.

    Args:
        context: No-history context, or None for an inactive anchor
        goals: Canonically ordered goals
        weeks_to_event: Weeks from the timeline start to the primary goal,
            used when the context does not provide its own value
        horizon_weeks: Total plan length in weeks
        calibration: Normalized calibration

    Returns:
        NoHistoryAnchor (inactive default when context is None)
    """
    if context is None:
        return NoHistoryAnchor()

    targets = sorted(
        (target for goal in goals for target in goal.targets), key=target_sort_key
    )
    goal_tier = context.goal_tier or derive_goal_tier_from_targets(targets)
    weeks = context.weeks_to_event if context.weeks_to_event is not None else weeks_to_event
    summary = context.context_summary

    evidence = collect_no_history_evidence(summary)
    fitness = determine_no_history_fitness_level(evidence)
    floor = derive_no_history_projection_floor(goal_tier, fitness.fitness_level)
    clamped = clamp_floor_by_availability(floor, context.availability, context.intensity_model)
    feasibility = classify_build_time_feasibility(goal_tier, weeks)

    confidence = map_feasibility_to_confidence(feasibility)
    confidence_reasons = []
    if fitness.fitness_level == "weak" and confidence == "high":
        confidence = "medium"
        confidence_reasons.append("confidence_downgraded_weak_fitness_inference")
    if len(goals) > 1:
        if confidence == "high":
            confidence = "medium"
        confidence_reasons.append("confidence_downgraded_multi_goal_plan")
    if max(horizon_weeks, finite(weeks)) > LONG_HORIZON_WEEKS:
        if confidence == "high":
            confidence = "medium"
        confidence_reasons.append("confidence_downgraded_long_horizon")
    if clamped.floor_clamped_by_availability and confidence == "high":
        confidence = "medium"
        confidence_reasons.append("confidence_downgraded_availability_clamped")

    override = context.starting_ctl_override
    has_override = override is not None and math.isfinite(override) and override >= 0
    starting_ctl = round1(override if has_override else NO_HISTORY_DEFAULT_STARTING_CTL)

    demand = derive_goal_demand_profile(targets, goal_tier, weeks, calibration.no_history)
    weighting = derive_evidence_weighting(
        context.history_availability_state,
        rationale_codes=evidence.rationale_codes,
        signal_quality=summary.signal_quality,
        effort_confidence_marker=summary.effort_confidence_marker,
        profile_metric_completeness_marker=summary.profile_metric_completeness_marker,
    )
    effective_score = max(
        weighting.score,
        confidence_to_score_floor(demand.demand_confidence, calibration.no_history),
        demand.minimum_confidence_score,
    )
    evidence_reasons = weighting.reasons
    if effective_score > weighting.score:
        evidence_reasons = (
            *weighting.reasons,
            f"confidence_floor_from_goal_demand_{demand.demand_confidence}",
        )

    floor_applied = weighting.state != "rich"
    if feasibility == "full":
        warnings: tuple[str, ...] = ()
    elif feasibility == "limited":
        warnings = ("build_time_limited",)
    else:
        warnings = ("build_time_insufficient",)

    anchor = NoHistoryAnchor(
        projection_floor_applied=floor_applied,
        projection_floor_values=(
            FloorValues(start_ctl=clamped.start_ctl, start_weekly_tss=clamped.start_weekly_tss)
            if floor_applied
            else None
        ),
        fitness_level=fitness.fitness_level,
        fitness_inference_reasons=(
            *fitness.reasons,
            *evidence.rationale_codes,
            *demand.rationale_codes,
            *clamped.reasons,
            *confidence_reasons,
            "starting_ctl_override_applied" if has_override else "starting_ctl_defaulted_never_trained",
        ),
        projection_floor_confidence=confidence,
        floor_clamped_by_availability=clamped.floor_clamped_by_availability,
        projection_floor_tier=goal_tier,
        starting_state_is_prior=floor_applied,
        target_event_ctl=demand.required_event_demand_range.target,
        weeks_to_event=round_weeks_to_event(weeks),
        periodization_feasibility=feasibility,
        build_phase_warnings=warnings,
        assumed_intensity_model_version=clamped.assumed_intensity_model_version,
        starting_ctl_for_projection=starting_ctl,
        starting_weekly_tss_for_projection=weekly_tss_from_ctl(starting_ctl),
        required_event_demand_range=demand.required_event_demand_range,
        required_peak_weekly_tss=demand.required_peak_weekly_tss,
        evidence_confidence=EvidenceWeighting(
            score=effective_score, state=weighting.state, reasons=tuple(evidence_reasons)
        ),
        demand_confidence=demand.demand_confidence,
    )
    logger.debug(
        "No-history anchor: tier=%s fitness=%s floor_applied=%s target_event_ctl=%.1f evidence=%.3f",
        goal_tier,
        fitness.fitness_level,
        floor_applied,
        anchor.target_event_ctl,
        effective_score,
    )
    return anchor
