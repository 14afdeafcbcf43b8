"""
Deterministic weekly load optimizer.

For each week that still has a goal ahead of it, a small lattice of
alternative loads is built around the composer's naive choice. Every
candidate is rolled forward over a short lookahead (later weeks follow the
naive composer) and scored with a model-predictive objective:

    objective = w_goal * goal_attainment + w_readiness * projected_readiness
                - w_risk * overload - w_volatility * volatility
                - w_churn * plan_change - w_monotony * monotony
                - w_strain * strain - w_curvature * curvature

The best candidate wins by a strict tie-break, so the result never depends
on the order in which candidates or goals were produced.

Lookahead length and lattice size come from the optimization profile table
and are hard ceilings; semantic projection controls (ambition, risk
tolerance, curvature) only move the weights within those bounds.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .composer import ComposerContext, WeekDecision, WeekFrame, compose_week
from .config import (
    CANDIDATE_STEPS_BOUNDS,
    CHURN_SCALE,
    CONTROL_CHURN_RANGE,
    CONTROL_PREPAREDNESS_RANGE,
    CONTROL_RISK_RANGE,
    CONTROL_VOLATILITY_RANGE,
    CURVATURE_HORIZON_DECAY,
    CURVATURE_HORIZON_FLOOR,
    CURVATURE_PHASE_WEIGHTS,
    CURVATURE_SCALE_FLOOR,
    CURVATURE_SCALE_FRACTION,
    CURVATURE_TARGET_SCALE,
    CURVATURE_WEIGHT_MAX,
    DAYS_PER_WEEK,
    LOOKAHEAD_WEEKS_BOUNDS,
    MONOTONY_CAP,
    NO_GOAL_SORT_DATE,
    OPTIMIZER_MONOTONY_WEIGHT,
    OPTIMIZER_STRAIN_WEIGHT,
    OVERLOAD_TSB_SCALE,
    OVERLOAD_TSB_THRESHOLD,
    PENALTY_WEIGHT_SCALE,
    PROJECTION_CONTROL_DEFAULTS,
    READINESS_TERM_FRACTION,
    VOLATILITY_SCALE,
    get_profile_params,
    priority_influence_weight,
)
from .engine.config_loader import Calibration, DurabilityPenalties
from .metrics import (
    add_days,
    clamp,
    clamp01,
    finite,
    lerp,
    load_monotony,
    load_strain,
    mean,
    round1,
    round3,
    round6,
    round_half_up,
)
from .models import FitnessState, OptimizerError, ProjectionControl, SafetyConfig
from .physiology import simulate_days

logger = logging.getLogger(__name__)


# =============================================================================
# EFFECTIVE CONTROLS
# =============================================================================


@dataclass(frozen=True)
class EffectiveControls:
    """Optimizer weights and search bounds after applying projection controls."""

    ambition: float
    risk_tolerance: float
    curvature: float
    curvature_strength: float
    preparedness_weight: float
    risk_penalty_weight: float
    volatility_penalty_weight: float
    churn_penalty_weight: float
    lookahead_weeks: int
    candidate_steps: int
    max_weekly_tss_ramp_pct: float
    max_ctl_ramp_per_week: float
    curvature_weight: float


def _control_value(control: ProjectionControl | Mapping[str, Any] | None, name: str) -> float:
    default = PROJECTION_CONTROL_DEFAULTS[name]
    if control is None:
        return default
    raw = control.get(name) if isinstance(control, Mapping) else getattr(control, name, None)
    return finite(raw, default) if raw is not None else default


def normalize_projection_control(
    control: ProjectionControl | Mapping[str, Any] | None,
) -> ProjectionControl:
    """Fill defaults and clamp each control into its range (never reject)."""
    return ProjectionControl(
        ambition=clamp01(_control_value(control, "ambition")),
        risk_tolerance=clamp01(_control_value(control, "risk_tolerance")),
        curvature=clamp(_control_value(control, "curvature"), -1.0, 1.0),
        curvature_strength=clamp01(_control_value(control, "curvature_strength")),
    )


def resolve_profile_search_bounds(profile: str) -> tuple[int, int]:
    """
    Hard ceilings on lookahead weeks and lattice size for a profile.

    Returns:
        Tuple (max lookahead weeks, max candidate steps)
    """
    params = get_profile_params(profile)
    return (
        min(LOOKAHEAD_WEEKS_BOUNDS[1], params.horizon_weeks),
        min(CANDIDATE_STEPS_BOUNDS[1], params.candidate_count),
    )


def _clamp_int(value: float, low: int, high: int) -> int:
    return int(clamp(round_half_up(value), low, max(low, high)))


def resolve_effective_controls(
    safety: SafetyConfig,
    calibration: Calibration,
    control: ProjectionControl | Mapping[str, Any] | None = None,
) -> EffectiveControls:
    """
    Map semantic projection controls onto optimizer parameters.

        preparedness x lerp(0.75, 1.65, ambition)
        risk         x lerp(1.8, 0.35, risk_tolerance)
        volatility   x lerp(1.45, 0.5, risk_tolerance)
        churn        x lerp(1.3, 0.55, risk_tolerance)

    Lookahead and candidate count move from the calibrated values toward
    the profile ceilings as ambition grows. Ramp caps are passed through
    unchanged; the curvature weight is lerp(0, 18, curvature_strength).

    Args:
        safety: Normalized safety config
        calibration: Normalized calibration
        control: Projection controls (defaults when None)

    Returns:
        EffectiveControls
    """
    normalized = normalize_projection_control(control)
    optimizer = calibration.optimizer
    max_lookahead, max_steps = resolve_profile_search_bounds(safety.optimization_profile)
    min_lookahead, min_steps = LOOKAHEAD_WEEKS_BOUNDS[0], CANDIDATE_STEPS_BOUNDS[0]

    base_lookahead = _clamp_int(optimizer.lookahead_weeks, min_lookahead, max_lookahead)
    base_steps = _clamp_int(optimizer.candidate_steps, min_steps, max_steps)
    ambition = normalized.ambition
    risk_tolerance = normalized.risk_tolerance

    return EffectiveControls(
        ambition=ambition,
        risk_tolerance=risk_tolerance,
        curvature=normalized.curvature,
        curvature_strength=normalized.curvature_strength,
        preparedness_weight=round3(
            optimizer.preparedness_weight * lerp(*CONTROL_PREPAREDNESS_RANGE, ambition)
        ),
        risk_penalty_weight=round3(
            optimizer.risk_penalty_weight * lerp(*CONTROL_RISK_RANGE, risk_tolerance)
        ),
        volatility_penalty_weight=round3(
            optimizer.volatility_penalty_weight * lerp(*CONTROL_VOLATILITY_RANGE, risk_tolerance)
        ),
        churn_penalty_weight=round3(
            optimizer.churn_penalty_weight * lerp(*CONTROL_CHURN_RANGE, risk_tolerance)
        ),
        lookahead_weeks=_clamp_int(
            lerp(base_lookahead, max_lookahead, ambition), min_lookahead, max_lookahead
        ),
        candidate_steps=_clamp_int(lerp(base_steps, max_steps, ambition), min_steps, max_steps),
        max_weekly_tss_ramp_pct=round3(safety.max_weekly_tss_ramp_pct),
        max_ctl_ramp_per_week=round3(safety.max_ctl_ramp_per_week),
        curvature_weight=round3(lerp(0.0, CURVATURE_WEIGHT_MAX, normalized.curvature_strength)),
    )


# =============================================================================
# CURVATURE
# =============================================================================


def curvature_phase(frame: WeekFrame) -> str:
    """Curvature envelope phase of a week: event/taper/recovery, else deload or ramp."""
    pattern = frame.effective_pattern
    if pattern in ("event", "taper", "recovery"):
        return pattern
    return "deload" if frame.pattern.rhythm == "deload" else "ramp"


def build_curvature_envelope(pattern: str, week_index: int) -> float:
    """
    Curvature emphasis for one lookahead week.

        envelope = phase weight * clamp(1 - 0.04 * i, 0.35, 1)

    Ramp weeks keep full weight; taper, event and recovery weeks barely count.
    """
    phase_weight = CURVATURE_PHASE_WEIGHTS.get(pattern, CURVATURE_PHASE_WEIGHTS["ramp"])
    decay = clamp(1 - week_index * CURVATURE_HORIZON_DECAY, CURVATURE_HORIZON_FLOOR, 1.0)
    return round3(phase_weight * decay)


def compute_curvature_penalty(
    previous_week_tss: float,
    weekly_actions: Sequence[float],
    envelopes: Sequence[float],
    curvature: float,
    scale_reference: float,
) -> float:
    """
    Mean squared mismatch between the load's second difference and the target.

        delta2 = ((x[t+1] - x[t]) - (x[t] - x[t-1])) / max(20, ref * 0.12)
        kappa  = curvature * envelope[t] * 0.18
        penalty = mean((delta2 - kappa)^2)

    Positive curvature asks for an accelerating (back-loaded) ramp, negative
    for a front-loaded one.

    Args:
        previous_week_tss: Load before the first action
        weekly_actions: Loads of the lookahead weeks
        envelopes: Curvature envelope per lookahead week
        curvature: Curvature target in [-1, 1]
        scale_reference: Typical weekly load

    Returns:
        Penalty rounded to 1e-6 (0 with fewer than two actions)
    """
    if len(weekly_actions) < 2:
        return 0.0

    series = [previous_week_tss, *weekly_actions]
    scale = max(CURVATURE_SCALE_FLOOR, scale_reference * CURVATURE_SCALE_FRACTION)
    total = 0.0
    samples = 0
    for t in range(1, len(weekly_actions)):
        delta2 = ((series[t + 1] - series[t]) - (series[t] - series[t - 1])) / scale
        envelope = envelopes[t] if t < len(envelopes) else (envelopes[-1] if envelopes else 0.0)
        kappa = curvature * envelope * CURVATURE_TARGET_SCALE
        total += (delta2 - kappa) ** 2
        samples += 1
    return round6(total / samples) if samples else 0.0


# =============================================================================
# LATTICE
# =============================================================================


def build_candidate_lattice(
    seed_weekly_tss: float,
    upper_bound_weekly_tss: float,
    steps: int,
    span: float,
    allow_upward: bool = True,
) -> list[float]:
    """
    Evenly spaced candidate loads around the composer's choice.

    The lattice covers [seed * (1 - span), min(upper, seed * (1 + span))]
    with an odd number of points (just [.., min(upper, seed)] when upward
    moves are not allowed). The seed is always a candidate.

    Args:
        seed_weekly_tss: Naive composer load
        upper_bound_weekly_tss: Largest load allowed by both caps
        steps: Requested number of points (made odd, at least 3)
        span: Relative half-width of the lattice
        allow_upward: False for taper, event and recovery weeks

    Returns:
        Sorted, de-duplicated candidate loads rounded to 0.1
    """
    steps = max(CANDIDATE_STEPS_BOUNDS[0], int(steps))
    if steps % 2 == 0:
        steps -= 1
    seed = max(0.0, finite(seed_weekly_tss))
    upper = max(seed, finite(upper_bound_weekly_tss, seed))
    low = max(0.0, seed * (1 - span))
    high = min(upper, seed * (1 + span)) if allow_upward else min(upper, seed)

    values = {min(round1(low + (high - low) * i / (steps - 1)), upper) for i in range(steps)}
    # The seed itself is kept unrounded so an unchanged week stays identical
    values.discard(round1(seed))
    values.add(seed)
    return sorted(values)


# =============================================================================
# OBJECTIVE
# =============================================================================


@dataclass(frozen=True)
class ObjectiveComponents:
    goal_attainment: float
    projected_readiness: float
    overload_penalty: float
    load_volatility_penalty: float
    plan_change_penalty: float
    monotony_penalty: float
    strain_penalty: float
    curvature_penalty: float = 0.0


@dataclass(frozen=True)
class ObjectiveWeights:
    w_goal: float
    w_readiness: float
    w_risk: float
    w_volatility: float
    w_churn: float
    w_monotony: float
    w_strain: float
    w_curvature: float = 0.0


@dataclass(frozen=True)
class ObjectiveResult:
    objective_score: float
    weighted_terms: dict[str, float]


def evaluate_mpc_objective(
    components: ObjectiveComponents,
    weights: ObjectiveWeights,
) -> ObjectiveResult:
    """
    Combine objective components into one score.

    Non-finite components or weights count as zero, so the score is always
    finite.
    """
    terms = {
        "goal_attainment": finite(weights.w_goal) * finite(components.goal_attainment),
        "projected_readiness": finite(weights.w_readiness) * finite(components.projected_readiness),
        "overload_penalty": -finite(weights.w_risk) * finite(components.overload_penalty),
        "load_volatility_penalty": -finite(weights.w_volatility)
        * finite(components.load_volatility_penalty),
        "plan_change_penalty": -finite(weights.w_churn) * finite(components.plan_change_penalty),
        "monotony_penalty": -finite(weights.w_monotony) * finite(components.monotony_penalty),
        "strain_penalty": -finite(weights.w_strain) * finite(components.strain_penalty),
        "curvature_penalty": -finite(weights.w_curvature) * finite(components.curvature_penalty),
    }
    weighted = {name: round6(finite(value)) for name, value in terms.items()}
    return ObjectiveResult(
        objective_score=round6(finite(sum(terms.values()))),
        weighted_terms=weighted,
    )


def build_objective_weights(
    controls: EffectiveControls,
    profile: str,
) -> ObjectiveWeights:
    """Objective weights from the effective controls and the profile table."""
    params = get_profile_params(profile)
    return ObjectiveWeights(
        w_goal=controls.preparedness_weight,
        w_readiness=controls.preparedness_weight * READINESS_TERM_FRACTION,
        w_risk=controls.risk_penalty_weight * PENALTY_WEIGHT_SCALE,
        w_volatility=controls.volatility_penalty_weight * PENALTY_WEIGHT_SCALE,
        w_churn=controls.churn_penalty_weight * PENALTY_WEIGHT_SCALE,
        w_monotony=OPTIMIZER_MONOTONY_WEIGHT * PENALTY_WEIGHT_SCALE * params.monotony_multiplier,
        w_strain=OPTIMIZER_STRAIN_WEIGHT * PENALTY_WEIGHT_SCALE * params.strain_multiplier,
        w_curvature=controls.curvature_weight,
    )


# =============================================================================
# CANDIDATE SELECTION
# =============================================================================


@dataclass(frozen=True)
class Candidate:
    value: float
    objective: float
    delta_from_previous: float
    primary_goal_date: str | None = None
    primary_goal_id: str | None = None


def _candidate_key(candidate: Candidate) -> tuple:
    return (
        -round6(candidate.objective),
        round6(abs(candidate.delta_from_previous)),
        candidate.primary_goal_date or NO_GOAL_SORT_DATE,
        candidate.primary_goal_id or "",
        candidate.value,
    )


def pick_best_candidate(candidates: Sequence[Candidate]) -> Candidate:
    """
    Select the winning candidate.

    Precedence:
        1. higher objective (rounded to 1e-6)
        2. smaller |delta from previous week|
        3. earlier primary-goal date
        4. smaller primary-goal id
        5. smaller value

    Raises:
        OptimizerError: If candidates is empty
    """
    if not candidates:
        raise OptimizerError("cannot pick candidate from empty collection")
    return min(candidates, key=_candidate_key)


# =============================================================================
# ROLLOUT
# =============================================================================


@dataclass(frozen=True)
class GoalObjective:
    """What the optimizer knows about one goal."""

    goal_id: str
    target_date: str
    priority: int
    required_ctl: float
    target_tsb: float


@dataclass(frozen=True)
class OptimizerSettings:
    """Per-plan optimizer inputs that do not change from week to week."""

    controls: EffectiveControls
    weights: ObjectiveWeights
    lattice_span: float
    durability: DurabilityPenalties
    form_tolerance: float
    scale_reference: float


@dataclass(frozen=True)
class WeekOptimization:
    value: float
    naive_value: float
    candidates: tuple[Candidate, ...]
    components: ObjectiveComponents | None


def build_optimizer_settings(
    safety: SafetyConfig,
    calibration: Calibration,
    control: ProjectionControl | Mapping[str, Any] | None,
    scale_reference: float,
) -> OptimizerSettings:
    controls = resolve_effective_controls(safety, calibration, control)
    return OptimizerSettings(
        controls=controls,
        weights=build_objective_weights(controls, safety.optimization_profile),
        lattice_span=get_profile_params(safety.optimization_profile).lattice_span,
        durability=calibration.durability_penalties,
        form_tolerance=calibration.readiness_timeline.form_tolerance,
        scale_reference=max(1.0, finite(scale_reference)),
    )


def _rollout(
    ctx: ComposerContext,
    frames: Sequence[WeekFrame],
    state: FitnessState,
    previous_week_tss: float,
    previous_demand_floor: float | None,
    first_week_tss: float,
    first_decision: WeekDecision,
) -> tuple[list[float], list[tuple[str, FitnessState]]]:
    """Roll a first-week load forward; later weeks follow the naive composer."""
    loads: list[float] = []
    days: list[tuple[str, FitnessState]] = []
    demand_floor = previous_demand_floor
    for offset, frame in enumerate(frames):
        if offset == 0:
            decision = first_decision
            load = first_week_tss
        else:
            decision = compose_week(ctx, frame, state, previous_week_tss, demand_floor)
            load = decision.applied_weekly_tss
        snapshots = simulate_days(state, load, frame.window.days)
        for day_offset, snapshot in enumerate(snapshots):
            days.append((add_days(frame.window.start_date, day_offset), snapshot))
        state = snapshots[-1]
        loads.append(load)
        previous_week_tss = load
        if decision.demand_band_minimum_weekly_tss is not None:
            demand_floor = decision.demand_band_minimum_weekly_tss
    return loads, days


def _form_signal(tsb: float, target_tsb: float, tolerance: float) -> float:
    return clamp01(1 - abs(tsb - target_tsb) / max(1e-6, tolerance))


def score_rollout(
    loads: Sequence[float],
    days: Sequence[tuple[str, FitnessState]],
    frames: Sequence[WeekFrame],
    previous_week_tss: float,
    naive_weekly_tss: float,
    goals: Sequence[GoalObjective],
    settings: OptimizerSettings,
) -> ObjectiveComponents:
    """
    Objective components of one rolled-out candidate.

    Goal attainment is CTL over the goal's demand CTL at goal days inside the
    lookahead (priority weighted), or terminal CTL toward the next goal when
    none falls inside. Projected readiness is the form signal at those goal
    days.
    """
    horizon_end = frames[-1].window.end_date
    by_date = dict(days)
    in_horizon = [g for g in goals if g.target_date in by_date]

    if in_horizon:
        weights = [priority_influence_weight(g.priority) for g in in_horizon]
        attainment = [
            min(1.0, by_date[g.target_date].ctl / g.required_ctl) if g.required_ctl > 0 else 1.0
            for g in in_horizon
        ]
        goal_attainment = sum(a * w for a, w in zip(attainment, weights)) / sum(weights)
        projected_readiness = mean(
            [
                _form_signal(by_date[g.target_date].tsb, g.target_tsb, settings.form_tolerance)
                for g in in_horizon
            ]
        )
    else:
        upcoming = sorted(
            (g for g in goals if g.target_date > horizon_end),
            key=lambda g: (g.target_date, g.priority, g.goal_id),
        )
        terminal_ctl = days[-1][1].ctl if days else 0.0
        if upcoming and upcoming[0].required_ctl > 0:
            goal_attainment = clamp01(terminal_ctl / upcoming[0].required_ctl)
        else:
            goal_attainment = 1.0
        projected_readiness = 0.0

    overload = mean(
        [
            clamp01((-state.tsb - OVERLOAD_TSB_THRESHOLD) / OVERLOAD_TSB_SCALE)
            for _, state in days
        ]
    )

    series = [previous_week_tss, *loads]
    relative_steps = [
        abs(series[i] - series[i - 1]) / max(1.0, series[i - 1]) for i in range(1, len(series))
    ]
    volatility = clamp01(mean(relative_steps) / VOLATILITY_SCALE)
    churn = clamp01(
        abs(loads[0] - naive_weekly_tss) / max(1.0, naive_weekly_tss) / CHURN_SCALE
    )

    monotony = load_monotony(series, MONOTONY_CAP)
    strain = load_strain(series, monotony, DAYS_PER_WEEK)
    penalties = settings.durability
    monotony_penalty = clamp01((monotony - penalties.monotony_threshold) / penalties.monotony_scale)
    strain_penalty = clamp01((strain - penalties.strain_threshold) / penalties.strain_scale)

    envelopes = [
        build_curvature_envelope(curvature_phase(frame), offset)
        for offset, frame in enumerate(frames)
    ]
    curvature = compute_curvature_penalty(
        previous_week_tss,
        loads,
        envelopes,
        settings.controls.curvature,
        settings.scale_reference,
    )

    return ObjectiveComponents(
        goal_attainment=finite(goal_attainment),
        projected_readiness=finite(projected_readiness),
        overload_penalty=finite(overload),
        load_volatility_penalty=finite(volatility),
        plan_change_penalty=finite(churn),
        monotony_penalty=finite(monotony_penalty),
        strain_penalty=finite(strain_penalty),
        curvature_penalty=finite(curvature),
    )


def optimize_weekly_load(
    ctx: ComposerContext,
    frames: Sequence[WeekFrame],
    position: int,
    state: FitnessState,
    previous_week_tss: float,
    previous_demand_floor: float | None,
    decision: WeekDecision,
    goals: Sequence[GoalObjective],
    settings: OptimizerSettings,
) -> WeekOptimization:
    """
    Choose the weekly load for frames[position].

    The optimizer only acts while a goal lies at or after the week start;
    otherwise the composer's naive load is returned untouched. Every
    candidate stays within the week's cap upper bound.

    Args:
        ctx: Composer context
        frames: All weeks of the plan
        position: Index of the week being decided
        state: Fitness state at the start of the week
        previous_week_tss: Load applied in the previous week
        previous_demand_floor: Previous week's weighted demand floor
        decision: Naive composer decision for the week
        goals: In-timeline goals with their demand CTL and target form
        settings: Per-plan optimizer settings

    Returns:
        WeekOptimization with the chosen value and the scored candidates
    """
    frame = frames[position]
    naive = decision.applied_weekly_tss
    ahead = [g for g in goals if g.target_date >= frame.window.start_date]
    if not ahead:
        return WeekOptimization(value=naive, naive_value=naive, candidates=(), components=None)

    primary = min(ahead, key=lambda g: (g.target_date, g.priority, g.goal_id))
    horizon = list(frames[position : position + settings.controls.lookahead_weeks])
    allow_upward = frame.effective_pattern not in ("taper", "event", "recovery")
    lattice = build_candidate_lattice(
        naive,
        decision.upper_bound_weekly_tss,
        settings.controls.candidate_steps,
        settings.lattice_span,
        allow_upward,
    )

    candidates: list[Candidate] = []
    components_by_value: dict[float, ObjectiveComponents] = {}
    for value in lattice:
        loads, days = _rollout(
            ctx, horizon, state, previous_week_tss, previous_demand_floor, value, decision
        )
        components = score_rollout(
            loads, days, horizon, previous_week_tss, naive, ahead, settings
        )
        result = evaluate_mpc_objective(components, settings.weights)
        components_by_value[value] = components
        candidates.append(
            Candidate(
                value=value,
                objective=result.objective_score,
                delta_from_previous=value - previous_week_tss,
                primary_goal_date=primary.target_date,
                primary_goal_id=primary.goal_id,
            )
        )

    best = pick_best_candidate(candidates)
    if best.value != naive:
        logger.debug(
            "week %d: optimizer moved load %.1f -> %.1f (objective %.6f, %d candidates)",
            frame.window.index,
            naive,
            best.value,
            best.objective,
            len(candidates),
        )
    return WeekOptimization(
        value=best.value,
        naive_value=naive,
        candidates=tuple(candidates),
        components=components_by_value[best.value],
    )
