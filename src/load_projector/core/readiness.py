"""
Plan-level readiness: capacity envelope, durability, composite readiness,
feasibility metadata and the per-point readiness timeline.

All scores are integers 0..100 and all ratios are rounded to 3 decimals, so
identical inputs always produce identical payloads.
"""

from typing import Sequence

from .config import (
    ABSOLUTE_FITNESS_REFERENCE_CTL,
    ABSOLUTE_FITNESS_WEIGHT,
    ATTAINMENT_LOW_SCORE,
    DAYS_PER_WEEK,
    DELOAD_GRACE_WEEKS,
    DURABILITY_LOW_SCORE,
    DURABILITY_WINDOW_WEEKS,
    ENVELOPE_GROWTH_BASE,
    ENVELOPE_GROWTH_CONFIDENCE_SPAN,
    ENVELOPE_HIGH_FACTOR,
    ENVELOPE_LOW_FACTOR,
    ENVELOPE_MAX_RAMP,
    ENVELOPE_OUTSIDE_RATIO,
    ENVELOPE_OUTSIDE_SCORE,
    ENVELOPE_REFERENCE_FLOOR_TSS,
    FATIGUE_SIGNAL_WEIGHT,
    FITNESS_SIGNAL_WEIGHT,
    FORM_SIGNAL_WEIGHT,
    MONOTONY_CAP,
    PROGRESSIVE_FITNESS_EXPONENT,
    PROGRESSIVE_FITNESS_WEIGHT,
    READINESS_BAND_HIGH,
    READINESS_BAND_MEDIUM,
    priority_influence_weight,
)
from .engine.config_loader import (
    DurabilityPenalties,
    EnvelopePenalties,
    ReadinessCompositeWeights,
    ReadinessTimelineCalibration,
)
from .metrics import (
    clamp01,
    clamp_score,
    diff_days,
    finite,
    load_monotony,
    load_strain,
    mean,
    round1,
    round3,
    round_half_up,
)
from .models import (
    CapacityEnvelope,
    CompositeReadiness,
    DemandGap,
    DurabilityScore,
    FeasibilityComponents,
    FeasibilityMetadata,
    GoalMarker,
    ProjectionPoint,
    ProjectionUncertainty,
)

REDUCING_PATTERNS = frozenset({"taper", "event", "recovery"})

# Feasibility metadata weights
FEASIBILITY_SCORE_WEIGHTS = {
    "load_state": 0.35,
    "intensity_balance": 0.25,
    "specificity": 0.25,
    "execution_confidence": 0.15,
}
LOW_EVIDENCE_CONFIDENCE = 0.5
HIGH_EVIDENCE_CONFIDENCE = 0.75
DEMAND_GAP_FULFILLMENT_MIN = 0.85
CLAMP_PRESSURE_MAX = 0.15
UNCERTAINTY_BOUNDS = (0.08, 0.28)

# Goal anchors on the readiness timeline
GOAL_WINDOW_BASE_DAYS = 8
GOAL_WINDOW_PRIORITY_DAYS = 10
GOAL_SLOPE_BASE = 1.1
GOAL_SLOPE_PRIORITY = 0.7
GOAL_PEAK_BASE = 78
GOAL_PEAK_PRIORITY = 10
GOAL_PEAK_FEASIBILITY = 6
RAW_SIGNAL_REBLEND = 0.1


def readiness_band(score: float) -> str:
    if score >= READINESS_BAND_HIGH:
        return "high"
    if score >= READINESS_BAND_MEDIUM:
        return "medium"
    return "low"


# =============================================================================
# STATE READINESS
# =============================================================================


def compute_state_readiness(
    ctl: float,
    atl: float,
    required_ctl: float,
    target_tsb: float,
    calibration: ReadinessTimelineCalibration,
) -> float:
    """
    Readiness 0..100 of a fitness state for one goal.

        fitness = 0.7 * (ctl / required)^1.35 + 0.3 * ctl / 100
        form    = 1 - |tsb - target_tsb| / tolerance
        fatigue = 1 - max(0, atl - ctl) / (required * overflow scale)

        state = 100 * (0.5 * form + 0.3 * fitness + 0.2 * fatigue)

    Args:
        ctl: Fitness on the goal date
        atl: Fatigue on the goal date
        required_ctl: Demand CTL of the goal
        target_tsb: Best form for the event
        calibration: Timeline calibration (form tolerance, overflow scale)

    Returns:
        State readiness, 1 decimal
    """
    ctl = finite(ctl)
    atl = finite(atl)
    required = max(1.0, finite(required_ctl))
    progressive = clamp01(ctl / required) ** PROGRESSIVE_FITNESS_EXPONENT
    absolute = clamp01(ctl / ABSOLUTE_FITNESS_REFERENCE_CTL)
    fitness = PROGRESSIVE_FITNESS_WEIGHT * progressive + ABSOLUTE_FITNESS_WEIGHT * absolute
    form = clamp01(1 - abs((ctl - atl) - target_tsb) / max(1e-6, calibration.form_tolerance))
    overflow = max(1.0, required * calibration.fatigue_overflow_scale)
    fatigue = clamp01(1 - max(0.0, atl - ctl) / overflow)
    signal = (
        FORM_SIGNAL_WEIGHT * form
        + FITNESS_SIGNAL_WEIGHT * fitness
        + FATIGUE_SIGNAL_WEIGHT * fatigue
    )
    return round1(100 * signal)


# =============================================================================
# CAPACITY ENVELOPE
# =============================================================================


def _blend_excess(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return round3(clamp01(0.5 * mean(values) + 0.5 * max(values)))


def compute_capacity_envelope(
    weekly_loads: Sequence[float],
    patterns: Sequence[str],
    starting_ctl: float,
    evidence_confidence: float,
    penalties: EnvelopePenalties,
) -> CapacityEnvelope:
    """
    Score planned weekly loads against a capacity envelope.

    The envelope is anchored on the starting weekly load and grows with
    evidence:

        ref    = max(ctl * 7, 140 * (0.6 + 0.4 * conf))
        high_i = ref * 1.35 * (1 + g)^i, g = 0.05 + 0.03 * conf
        low    = ref * 0.5 (build weeks only)
        ramp   <= 10% week over week

    Each excess ratio is 0.5 * mean + 0.5 * max of the per-week excess, so a
    load further outside the bounds never scores better.

    Args:
        weekly_loads: Applied weekly TSS per week
        patterns: Week pattern names, parallel to weekly_loads
        starting_ctl: CTL at the start of the plan
        evidence_confidence: Evidence confidence 0..1
        penalties: Envelope penalty weights

    Returns:
        CapacityEnvelope
    """
    confidence = clamp01(finite(evidence_confidence))
    reference = max(
        max(0.0, finite(starting_ctl)) * DAYS_PER_WEEK,
        ENVELOPE_REFERENCE_FLOOR_TSS * (0.6 + 0.4 * confidence),
    )
    growth = ENVELOPE_GROWTH_BASE + ENVELOPE_GROWTH_CONFIDENCE_SPAN * confidence
    low = reference * ENVELOPE_LOW_FACTOR

    over_high: list[float] = []
    under_low: list[float] = []
    over_ramp: list[float] = []
    for i, load in enumerate(weekly_loads):
        load = max(0.0, finite(load))
        high = reference * ENVELOPE_HIGH_FACTOR * (1 + growth) ** i
        over_high.append(max(0.0, load / high - 1))
        if i < len(patterns) and patterns[i] == "build":
            under_low.append(max(0.0, 1 - load / low))
        if i > 0:
            previous = finite(weekly_loads[i - 1])
            if previous > 0:
                ramp = load / previous - 1
                over_ramp.append(max(0.0, ramp - ENVELOPE_MAX_RAMP) / ENVELOPE_MAX_RAMP)

    ratios = {
        "over_high": _blend_excess(over_high),
        "under_low": _blend_excess(under_low),
        "over_ramp": _blend_excess(over_ramp),
    }
    penalty = clamp01(
        penalties.over_high_weight * ratios["over_high"]
        + penalties.under_low_weight * ratios["under_low"]
        + penalties.over_ramp_weight * ratios["over_ramp"]
    )
    score = clamp_score(100 * (1 - penalty))
    factors = tuple(name for name, ratio in ratios.items() if ratio > 0)

    if not factors:
        state = "inside"
    elif max(ratios.values()) >= ENVELOPE_OUTSIDE_RATIO or score < ENVELOPE_OUTSIDE_SCORE:
        state = "outside"
    else:
        state = "edge"

    return CapacityEnvelope(
        envelope_score=score,
        envelope_state=state,
        limiting_factors=factors,
        over_high_ratio=ratios["over_high"],
        under_low_ratio=ratios["under_low"],
        over_ramp_ratio=ratios["over_ramp"],
        reference_weekly_tss=round1(reference),
    )


# =============================================================================
# DURABILITY
# =============================================================================


def _windows(values: Sequence[float], size: int) -> list[Sequence[float]]:
    if len(values) <= size:
        return [values] if values else []
    return [values[i : i + size] for i in range(len(values) - size + 1)]


def longest_deload_debt(weekly_loads: Sequence[float], patterns: Sequence[str]) -> int:
    """
    Weeks beyond the grace period in the longest run without a deload.

    A week counts as a deload when its load drops below the previous week or
    its pattern is taper, event or recovery.
    """
    longest = 0
    run = 0
    for i, load in enumerate(weekly_loads):
        pattern = patterns[i] if i < len(patterns) else "build"
        reducing = pattern in REDUCING_PATTERNS or (i > 0 and load < weekly_loads[i - 1])
        run = 0 if reducing else run + 1
        longest = max(longest, run)
    return max(0, longest - DELOAD_GRACE_WEEKS)


def compute_durability_score(
    weekly_loads: Sequence[float],
    patterns: Sequence[str],
    penalties: DurabilityPenalties,
) -> DurabilityScore:
    """
    Durability of a plan from monotony, strain and deload debt.

        penalty = 0.4 * monotony + 0.4 * strain + 0.2 * debt
        score   = round(100 * (1 - penalty))

    Monotony is the worst 4-week weekly-load monotony; strain is the mean
    daily load times that window's monotony.

    Args:
        weekly_loads: Applied weekly TSS per week
        patterns: Week pattern names, parallel to weekly_loads
        penalties: Durability thresholds and scales

    Returns:
        DurabilityScore
    """
    loads = [max(0.0, finite(v)) for v in weekly_loads]
    monotony = 0.0
    strain = 0.0
    for window in _windows(loads, DURABILITY_WINDOW_WEEKS):
        window_monotony = load_monotony(window, MONOTONY_CAP)
        monotony = max(monotony, window_monotony)
        strain = max(strain, load_strain(window, window_monotony, DAYS_PER_WEEK))
    debt = longest_deload_debt(loads, patterns)

    monotony_penalty = clamp01(
        (monotony - penalties.monotony_threshold) / max(1e-6, penalties.monotony_scale)
    )
    strain_penalty = clamp01(
        (strain - penalties.strain_threshold) / max(1e-6, penalties.strain_scale)
    )
    debt_penalty = clamp01(debt / max(1e-6, penalties.deload_debt_scale))

    codes: list[str] = []
    if monotony_penalty > 0:
        codes.append("durability_penalty_monotony_high")
    if strain_penalty > 0:
        codes.append("durability_penalty_strain_high")
    if debt_penalty > 0:
        codes.append("durability_penalty_deload_debt")

    penalty = 0.4 * monotony_penalty + 0.4 * strain_penalty + 0.2 * debt_penalty
    return DurabilityScore(
        durability_score=clamp_score(100 * (1 - penalty)),
        monotony=round3(monotony),
        strain=round1(strain),
        deload_debt_weeks=debt,
        rationale_codes=tuple(codes),
    )


# =============================================================================
# COMPOSITE READINESS
# =============================================================================


def compute_composite_readiness(
    target_attainment: float,
    envelope: CapacityEnvelope,
    durability: DurabilityScore,
    evidence_confidence: float,
    weights: ReadinessCompositeWeights,
) -> CompositeReadiness:
    """
    Plan readiness from attainment, envelope, durability and evidence.

    Args:
        target_attainment: Priority-weighted target attainment 0..100
        envelope: Capacity envelope of the plan
        durability: Durability of the plan
        evidence_confidence: Evidence confidence 0..1
        weights: Composite weights (sum to 1)

    Returns:
        CompositeReadiness
    """
    evidence = clamp01(finite(evidence_confidence))
    attainment = max(0.0, min(100.0, finite(target_attainment)))
    score = clamp_score(
        weights.target_attainment_weight * attainment
        + weights.envelope_weight * envelope.envelope_score
        + weights.durability_weight * durability.durability_score
        + weights.evidence_weight * evidence * 100
    )
    confidence = clamp_score(
        100
        * clamp01(
            0.55 * evidence
            + 0.25 * envelope.envelope_score / 100
            + 0.2 * durability.durability_score / 100
        )
    )

    codes: list[str] = []
    if envelope.envelope_state != "inside":
        codes.append(f"readiness_penalty_capacity_envelope_{envelope.envelope_state}")
    if durability.durability_score < DURABILITY_LOW_SCORE:
        codes.append("readiness_penalty_durability_low")
    if attainment < ATTAINMENT_LOW_SCORE:
        codes.append("readiness_penalty_target_attainment_low")

    return CompositeReadiness(
        readiness_score=score,
        readiness_confidence=confidence,
        readiness_band=readiness_band(score),
        rationale_codes=tuple(codes),
    )


# =============================================================================
# FEASIBILITY METADATA
# =============================================================================


def compute_projection_feasibility_metadata(
    required_weekly_tss_target: float,
    feasible_weekly_tss_applied: float,
    tss_ramp_clamp_weeks: int,
    ctl_ramp_clamp_weeks: int,
    evidence_confidence: float,
    projection_weeks: int,
) -> FeasibilityMetadata:
    """
    Demand gap, feasibility readiness and load uncertainty of a projection.

    Clamp pressure is the share of weeks where a ramp cap bit. It lowers
    every component and widens the uncertainty interval, as does low
    evidence confidence.

    Args:
        required_weekly_tss_target: Weekly load the goals ask for
        feasible_weekly_tss_applied: Highest weekly load the plan reaches
        tss_ramp_clamp_weeks: Weeks clamped by the TSS ramp cap
        ctl_ramp_clamp_weeks: Weeks clamped by the CTL ramp cap
        evidence_confidence: Evidence confidence 0..1
        projection_weeks: Number of planned weeks

    Returns:
        FeasibilityMetadata
    """
    required = max(0.0, finite(required_weekly_tss_target))
    feasible = max(0.0, finite(feasible_weekly_tss_applied))
    confidence = clamp01(finite(evidence_confidence))

    unmet = max(0.0, round1(required - feasible))
    unmet_ratio = round3(unmet / required) if required > 0 else 0.0
    clamp_pressure = clamp01(
        (tss_ramp_clamp_weeks + ctl_ramp_clamp_weeks) / max(1, projection_weeks)
    )
    fulfillment = clamp01(feasible / required) if required > 0 else 1.0

    components = FeasibilityComponents(
        load_state=round3(
            clamp01(fulfillment * 0.75 + (1 - unmet_ratio) * 0.25 - clamp_pressure * 0.35)
        ),
        intensity_balance=round3(
            clamp01(1 - clamp_pressure * 0.7 - min(0.12, tss_ramp_clamp_weeks * 0.04))
        ),
        specificity=round3(clamp01(fulfillment * 0.85 + (1 - clamp_pressure) * 0.15)),
        execution_confidence=round3(clamp01(confidence * 0.8 + (1 - clamp_pressure) * 0.2)),
    )
    score = clamp_score(
        100
        * (
            FEASIBILITY_SCORE_WEIGHTS["load_state"] * components.load_state
            + FEASIBILITY_SCORE_WEIGHTS["intensity_balance"] * components.intensity_balance
            + FEASIBILITY_SCORE_WEIGHTS["specificity"] * components.specificity
            + FEASIBILITY_SCORE_WEIGHTS["execution_confidence"] * components.execution_confidence
        )
    )

    limiters: list[str] = []
    if unmet > 0:
        limiters.append("required_growth_exceeds_caps")
    if tss_ramp_clamp_weeks > 0:
        limiters.append("tss_ramp_cap_pressure")
    if ctl_ramp_clamp_weeks > 0:
        limiters.append("ctl_ramp_cap_pressure")
    if confidence < LOW_EVIDENCE_CONFIDENCE:
        limiters.append("low_evidence_confidence")

    codes: list[str] = []
    if fulfillment < DEMAND_GAP_FULFILLMENT_MIN:
        codes.append("readiness_penalty_demand_gap")
    if clamp_pressure > CLAMP_PRESSURE_MAX:
        codes.append("readiness_penalty_clamp_pressure")
    if confidence >= HIGH_EVIDENCE_CONFIDENCE:
        codes.append("readiness_credit_evidence_confidence_high")

    low_pct, high_pct = UNCERTAINTY_BOUNDS
    uncertainty_pct = min(
        high_pct, max(low_pct, 0.06 + (1 - confidence) * 0.18 + clamp_pressure * 0.05)
    )
    likely = round1(feasible)
    delta = round1(likely * uncertainty_pct)

    return FeasibilityMetadata(
        demand_gap=DemandGap(
            required_weekly_tss_target=round1(required),
            feasible_weekly_tss_applied=round1(feasible),
            unmet_weekly_tss=unmet,
            unmet_ratio=unmet_ratio,
        ),
        readiness_band=readiness_band(score),
        dominant_limiters=tuple(limiters),
        readiness_score=score,
        readiness_components=components,
        projection_uncertainty=ProjectionUncertainty(
            tss_low=round1(max(0.0, likely - delta)),
            tss_likely=likely,
            tss_high=round1(likely + delta),
            confidence=round3(1 - uncertainty_pct),
        ),
        readiness_rationale_codes=tuple(codes),
    )


# =============================================================================
# READINESS TIMELINE
# =============================================================================


def _raw_point_scores(
    points: Sequence[ProjectionPoint],
    feasibility: float,
    calibration: ReadinessTimelineCalibration,
) -> list[int]:
    peak = max(1.0, max(p.predicted_fitness_ctl for p in points))
    raw: list[int] = []
    for p in points:
        fitness = clamp01(p.predicted_fitness_ctl / peak)
        form = clamp01(
            1 - abs(p.predicted_form_tsb - calibration.target_tsb) / max(1e-6, calibration.form_tolerance)
        )
        overload = max(0.0, p.predicted_fatigue_atl - p.predicted_fitness_ctl)
        fatigue = clamp01(1 - overload / max(1.0, peak * calibration.fatigue_overflow_scale))
        signal = (
            FORM_SIGNAL_WEIGHT * form
            + FITNESS_SIGNAL_WEIGHT * fitness
            + FATIGUE_SIGNAL_WEIGHT * fatigue
        )
        blend = calibration.feasibility_blend_weight
        raw.append(clamp_score((signal * (1 - blend) + feasibility * blend) * 100))
    return raw


def _nearest_index(dates: Sequence[str], target_date: str) -> int:
    if target_date in dates:
        return dates.index(target_date)
    return min((abs(diff_days(d, target_date)), i) for i, d in enumerate(dates))[1]


def compute_point_readiness_scores(
    points: Sequence[ProjectionPoint],
    plan_readiness: float | None,
    goals: Sequence[GoalMarker],
    calibration: ReadinessTimelineCalibration,
) -> list[int]:
    """
    Readiness 0..100 for every projection point, peaking on goal dates.

    A raw form/fitness/fatigue signal is blended with plan feasibility, then
    iteratively smoothed while each goal date is lifted to a local peak and
    its neighbours are held below a priority-dependent slope. Neighbouring
    samples never differ by more than the calibrated max step. Finally the
    series is capped at plan readiness and each in-timeline goal date takes
    the series maximum.

    Args:
        points: Projection points in date order
        plan_readiness: Composite plan readiness (None -> 50)
        goals: Goal markers
        calibration: Timeline calibration

    Returns:
        One integer score per point
    """
    if not points:
        return []
    feasibility = clamp01(finite(plan_readiness if plan_readiness is not None else 50.0, 50.0) / 100)
    raw = _raw_point_scores(points, feasibility, calibration)
    cap = clamp_score(plan_readiness) if plan_readiness is not None else 100
    dates = [p.date for p in points]
    first, last = dates[0], dates[-1]

    in_timeline = [g for g in goals if first <= g.target_date <= last]
    if not in_timeline:
        return [min(cap, v) for v in raw]

    anchors = []
    for goal in in_timeline:
        # 0.1 for priority 10 up to 1.0 for the "A" goal: wider window, higher peak
        weight = priority_influence_weight(goal.priority) / 10
        anchors.append(
            (
                _nearest_index(dates, goal.target_date),
                int(round_half_up(GOAL_WINDOW_BASE_DAYS + weight * GOAL_WINDOW_PRIORITY_DAYS)),
                GOAL_SLOPE_BASE + weight * GOAL_SLOPE_PRIORITY,
                clamp_score(GOAL_PEAK_BASE + weight * GOAL_PEAK_PRIORITY + feasibility * GOAL_PEAK_FEASIBILITY),
            )
        )
    anchors.sort(key=lambda a: a[0])
    day_offsets = [diff_days(first, d) for d in dates]

    lam = calibration.smoothing_lambda
    max_step = calibration.max_step_delta
    values = list(raw)
    n = len(values)
    for _ in range(int(calibration.smoothing_iterations)):
        smoothed = list(values)
        for i in range(1, n - 1):
            smoothed[i] = clamp_score((raw[i] + lam * values[i - 1] + lam * values[i + 1]) / (1 + 2 * lam))
        values = smoothed

        for index, window, slope, base_peak in anchors:
            local = [
                values[j]
                for j in range(n)
                if j != index and abs(day_offsets[j] - day_offsets[index]) <= window
            ]
            required = max(base_peak, (max(local) + 1) if local else base_peak)
            values[index] = clamp_score(max(values[index], required))
            goal_score = values[index]
            for j in range(n):
                distance = abs(day_offsets[j] - day_offsets[index])
                if j == index or distance > window:
                    continue
                ceiling = goal_score - max(0, window - distance) * slope
                values[j] = clamp_score(min(values[j], ceiling))

        for i in range(1, n):
            values[i] = clamp_score(min(values[i], values[i - 1] + max_step))
        for i in range(n - 2, -1, -1):
            values[i] = clamp_score(min(values[i], values[i + 1] + max_step))

        values = [
            clamp_score((1 - RAW_SIGNAL_REBLEND) * v + RAW_SIGNAL_REBLEND * r)
            for v, r in zip(values, raw)
        ]

    for index, window, _, _ in anchors:
        local = [
            values[j] for j in range(n) if abs(day_offsets[j] - day_offsets[index]) <= window
        ]
        values[index] = max(values[index], max(local))

    values = [min(cap, v) for v in values]
    peak = max(values)
    goal_dates = {g.target_date for g in in_timeline}
    return [peak if d in goal_dates else v for d, v in zip(dates, values)]
