"""
Projection orchestrator for load-projector.

Builds a deterministic week-by-week load projection from a request:
windows and week patterns, a naive capped-composer pass, an optional
optimizer pass guarded against regressions, fitness simulation, and the
scoring layers (goal assessments, GDI, capacity envelope, durability,
composite readiness and the readiness timeline).

Goals are canonicalized by (date, priority, id) and targets by their
canonical key before anything else runs, so reordering the input never
changes the output.
"""

import logging
from dataclasses import dataclass, replace
from typing import Sequence

from .composer import (
    ComposerContext,
    WeekDecision,
    WeekFrame,
    build_composer_context,
    build_week_metadata,
    compose_week,
    dynamic_seed_weekly_tss,
)
from .config import (
    ALIGNMENT_PENALTY_WEIGHT,
    ATTAINMENT_WEIGHT,
    DAYS_PER_WEEK,
    STATE_WEIGHT,
    optimal_tsb_for_duration,
    priority_influence_weight,
)
from .engine.config_loader import Calibration, normalize_calibration
from .metrics import (
    add_days,
    clamp,
    clamp01,
    diff_days,
    round1,
    weighted_mean,
)
from .models import (
    ConstraintSummary,
    FitnessState,
    Goal,
    GoalAssessment,
    GoalGdi,
    GoalMarker,
    Microcycle,
    NoHistoryAnchor,
    OptimizerSummary,
    ProjectionError,
    ProjectionPayload,
    ProjectionPoint,
    ProjectionRequest,
    RecoverySegment,
    StartingState,
    Target,
    target_sort_key,
)
from .no_history import derive_goal_tier_from_targets, resolve_no_history_anchor
from .optimizer import GoalObjective, OptimizerSettings, build_optimizer_settings, optimize_weekly_load
from .physiology import seed_starting_state, simulate_days
from .readiness import (
    compute_capacity_envelope,
    compute_composite_readiness,
    compute_durability_score,
    compute_point_readiness_scores,
    compute_projection_feasibility_metadata,
    compute_state_readiness,
)
from .recovery import compute_post_event_fatigue_penalty, derive_recovery_segments, find_recovery_overlap
from .safety import normalize_projection_safety_config
from .scoring import (
    aggregate_target_scores,
    compute_gdi_components,
    compute_goal_gdi,
    compute_plan_gdi,
    goal_demand_ctl,
    project_target_capability,
    score_target_satisfaction,
)
from .timeline import build_week_windows, find_block_for_date, get_week_pattern, week_index_within_block

logger = logging.getLogger(__name__)

NEUTRAL_ATTAINMENT = 50.0  # Composite attainment for a plan without goals
FORM_MISALIGNED_LOSS = 50.0


@dataclass(frozen=True)
class _WeekTrace:
    """
    Everything one pass decided for one week.

    Consumed by _build_microcycles() so the payload never re-derives a value
    the pass already computed.
    """

    frame: WeekFrame
    decision: WeekDecision
    previous_week_tss: float
    applied_weekly_tss: float
    state_before: FitnessState
    state_after: FitnessState
    days: tuple[tuple[str, FitnessState], ...]


@dataclass(frozen=True)
class _PlanPass:
    weeks: tuple[_WeekTrace, ...]

    @property
    def loads(self) -> list[float]:
        return [w.applied_weekly_tss for w in self.weeks]

    def daily_states(self) -> dict[str, FitnessState]:
        return {day: state for week in self.weeks for day, state in week.days}


# =============================================================================
# REQUEST NORMALIZATION
# =============================================================================


def _goal_key(goal: Goal | GoalMarker) -> tuple:
    return (goal.target_date, goal.priority, goal.id)


def canonicalize_goals(goals: Sequence[Goal]) -> list[Goal]:
    """Goals sorted by (date, priority, id) with targets in canonical order."""
    return [
        replace(goal, targets=sorted(goal.targets, key=target_sort_key))
        for goal in sorted(goals, key=_goal_key)
    ]


def validate_request(request: ProjectionRequest) -> None:
    """
    Reject requests the engine cannot project.

    Raises:
        ProjectionError: If the timeline is inverted, or starts after the
            latest goal date
    """
    timeline = request.timeline
    if timeline.start_date > timeline.end_date:
        raise ProjectionError(
            f"timeline.start_date ({timeline.start_date}) must be on or before "
            f"timeline.end_date ({timeline.end_date})"
        )
    if request.goals:
        latest = max(goal.target_date for goal in request.goals)
        if timeline.start_date > latest:
            raise ProjectionError(
                f"timeline.start_date ({timeline.start_date}) is after the latest goal date ({latest})"
            )


def primary_target(goal: Goal) -> Target | None:
    """Heaviest target of a goal (first in canonical order on ties)."""
    if not goal.targets:
        return None
    return max(enumerate(goal.targets), key=lambda item: (item[1].weight, -item[0]))[1]


def goal_target_tsb(goal: Goal, calibration: Calibration) -> float:
    """Best event-day form for a goal, from the duration of its primary target."""
    target = primary_target(goal)
    duration = target.duration_hours if target is not None else None
    return optimal_tsb_for_duration(duration, calibration.readiness_timeline.target_tsb)


def _weeks_between(start: str, end: str) -> float:
    return max(0.0, diff_days(start, end) / DAYS_PER_WEEK)


# =============================================================================
# FRAMES AND PASSES
# =============================================================================


def build_week_frames(
    request: ProjectionRequest,
    markers: Sequence[GoalMarker],
    segments: Sequence[RecoverySegment],
) -> list[WeekFrame]:
    """Windows with their owning block, week pattern and recovery coverage."""
    frames: list[WeekFrame] = []
    for window in build_week_windows(request.timeline.start_date, request.timeline.end_date):
        block = find_block_for_date(request.blocks, window.start_date, window.end_date)
        pattern = get_week_pattern(
            block.phase if block is not None else "build",
            week_index_within_block(block, window.start_date),
            window.start_date,
            window.end_date,
            markers,
        )
        recovery = find_recovery_overlap(segments, window.start_date, window.end_date, window.days)
        frames.append(WeekFrame(window=window, block=block, pattern=pattern, recovery=recovery))
    return frames


def run_plan_pass(
    ctx: ComposerContext,
    frames: Sequence[WeekFrame],
    objectives: Sequence[GoalObjective],
    settings: OptimizerSettings | None = None,
) -> _PlanPass:
    """
    Compose every week, optionally letting the optimizer pick each load.

    Fitness state, previous load and the demand floor carry forward from
    week to week and are never reset.
    """
    state = ctx.seed.state
    previous_week_tss = ctx.seed.seed_weekly_tss
    demand_floor: float | None = None
    weeks: list[_WeekTrace] = []

    for position, frame in enumerate(frames):
        decision = compose_week(ctx, frame, state, previous_week_tss, demand_floor)
        load = decision.applied_weekly_tss
        if settings is not None:
            load = optimize_weekly_load(
                ctx,
                frames,
                position,
                state,
                previous_week_tss,
                demand_floor,
                decision,
                objectives,
                settings,
            ).value

        snapshots = simulate_days(state, load, frame.window.days)
        days = tuple(
            (add_days(frame.window.start_date, offset), snapshot)
            for offset, snapshot in enumerate(snapshots)
        )
        weeks.append(
            _WeekTrace(
                frame=frame,
                decision=decision,
                previous_week_tss=previous_week_tss,
                applied_weekly_tss=load,
                state_before=state,
                state_after=snapshots[-1],
                days=days,
            )
        )
        state = snapshots[-1]
        previous_week_tss = load
        if decision.demand_band_minimum_weekly_tss is not None:
            demand_floor = decision.demand_band_minimum_weekly_tss

    return _PlanPass(weeks=tuple(weeks))


def goal_day_readiness(
    plan: _PlanPass,
    objectives: Sequence[GoalObjective],
    calibration: Calibration,
) -> float:
    """Priority-weighted state readiness on the goal days a plan reaches."""
    daily = plan.daily_states()
    scores: list[float] = []
    weights: list[float] = []
    for objective in objectives:
        state = daily.get(objective.target_date)
        if state is None:
            continue
        scores.append(
            compute_state_readiness(
                state.ctl,
                state.atl,
                objective.required_ctl,
                objective.target_tsb,
                calibration.readiness_timeline,
            )
        )
        weights.append(priority_influence_weight(objective.priority))
    if not scores:
        return 0.0
    return weighted_mean(scores, weights)


def _build_microcycles(ctx: ComposerContext, plan: _PlanPass) -> tuple[Microcycle, ...]:
    microcycles: list[Microcycle] = []
    for week in plan.weeks:
        frame = week.frame
        metadata = build_week_metadata(
            ctx,
            week.decision,
            frame.recovery,
            week.previous_week_tss,
            week.applied_weekly_tss,
            week.state_after.ctl - week.state_before.ctl,
        )
        microcycles.append(
            Microcycle(
                index=frame.window.index,
                week_start_date=frame.window.start_date,
                week_end_date=frame.window.end_date,
                phase=frame.block.name if frame.block is not None else "unassigned",
                block_phase=frame.block.phase if frame.block is not None else "build",
                pattern=frame.effective_pattern,
                rhythm=frame.pattern.rhythm,
                pattern_multiplier=frame.pattern.multiplier,
                planned_weekly_tss=round1(week.applied_weekly_tss),
                projected_ctl=round1(week.state_after.ctl),
                projected_atl=round1(week.state_after.atl),
                projected_tsb=round1(week.state_after.tsb),
                metadata=metadata,
            )
        )
    return tuple(microcycles)


def _build_points(
    plan: _PlanPass,
    markers: Sequence[GoalMarker],
) -> list[ProjectionPoint]:
    """One point per week end plus one per in-timeline goal date."""
    goal_dates = {marker.target_date for marker in markers}
    by_date: dict[str, ProjectionPoint] = {}
    for week in plan.weeks:
        for day, state in week.days:
            if day == week.frame.window.end_date or day in goal_dates:
                by_date[day] = ProjectionPoint(
                    date=day,
                    predicted_load_tss=round1(week.applied_weekly_tss),
                    predicted_fitness_ctl=round1(state.ctl),
                    predicted_fatigue_atl=round1(state.atl),
                    predicted_form_tsb=round1(state.tsb),
                )
    return [by_date[day] for day in sorted(by_date)]


# =============================================================================
# GOAL ASSESSMENT
# =============================================================================


def _state_on(
    date: str,
    daily: dict[str, FitnessState],
    start_state: FitnessState,
    final_state: FitnessState,
    timeline_start: str,
) -> FitnessState:
    if date in daily:
        return daily[date]
    return start_state if date < timeline_start else final_state


def assess_goal(
    goal: Goal,
    earlier_goals: Sequence[Goal],
    state: FitnessState,
    required_ctl: float,
    evidence_confidence: float,
    calibration: Calibration,
    in_timeline: bool,
) -> GoalAssessment:
    """
    Readiness of one goal on its target date.

        goal_readiness = 0.55 * state + 0.45 * attainment - 0.2 * alignment_loss

    State readiness is discounted by the residual fatigue of earlier goals;
    alignment loss measures how far race-day form is from the best form for
    the event's duration.
    """
    timeline_cal = calibration.readiness_timeline
    target_tsb = goal_target_tsb(goal, calibration)

    target_scores = tuple(
        score_target_satisfaction(
            target,
            projected_value=project_target_capability(target, state.ctl, required_ctl),
            readiness_confidence=evidence_confidence * 100,
        )
        for target in goal.targets
    )
    if target_scores:
        attainment = round1(aggregate_target_scores(goal.targets, target_scores))
    else:
        attainment = round1(100 * clamp01(state.ctl / required_ctl) if required_ctl > 0 else 100.0)

    penalty = 0.0
    for earlier in earlier_goals:
        penalty += compute_post_event_fatigue_penalty(
            diff_days(earlier.target_date, goal.target_date),
            primary_target(earlier),
            state.ctl,
            state.atl,
        )
    state_score = max(
        0.0,
        compute_state_readiness(state.ctl, state.atl, required_ctl, target_tsb, timeline_cal)
        - penalty,
    )
    alignment_loss = min(
        100.0, abs(state.tsb - target_tsb) / max(1e-6, timeline_cal.form_tolerance) * 100
    )
    readiness = clamp(
        STATE_WEIGHT * state_score
        + ATTAINMENT_WEIGHT * attainment
        - ALIGNMENT_PENALTY_WEIGHT * alignment_loss,
        0.0,
        100.0,
    )

    codes: list[str] = []
    if not in_timeline:
        codes.append("goal_outside_timeline")
    if penalty > 0:
        codes.append("post_event_fatigue_penalty_applied")
    if alignment_loss > FORM_MISALIGNED_LOSS:
        codes.append("goal_form_misaligned")
    if not goal.targets:
        codes.append("attainment_from_load_only")

    return GoalAssessment(
        goal_id=goal.id,
        priority=goal.priority,
        target_scores=target_scores,
        goal_readiness_score=round1(readiness),
        state_readiness_score=round1(state_score),
        target_attainment_score=attainment,
        goal_alignment_loss_0_100=round1(alignment_loss),
        post_event_fatigue_penalty=round1(penalty),
        rationale_codes=tuple(codes),
    )


# =============================================================================
# RISK FLAGS
# =============================================================================


def collect_risk_flags(
    anchor: NoHistoryAnchor,
    envelope_state: str,
    tss_clamp_weeks: int,
    ctl_clamp_weeks: int,
    optimizer_fallback: bool,
    plan_gdi_band: str | None,
) -> tuple[str, ...]:
    flags: list[str] = []
    if anchor.projection_feasibility is not None:
        flags.append(f"feasibility_band_{anchor.projection_feasibility.readiness_band}")
    if envelope_state != "inside":
        flags.append(f"capacity_envelope_{envelope_state}")
    if tss_clamp_weeks > 0:
        flags.append("tss_ramp_cap_pressure")
    if ctl_clamp_weeks > 0:
        flags.append("ctl_ramp_cap_pressure")
    if anchor.projection_floor_applied:
        flags.append("no_history_floor_active")
    flags.extend(anchor.build_phase_warnings)
    if optimizer_fallback:
        flags.append("optimizer_fallback_naive")
    if plan_gdi_band is not None:
        flags.append(f"plan_gdi_{plan_gdi_band}")
    return tuple(flags)


def _required_weekly_tss_target(plan: _PlanPass, anchor: NoHistoryAnchor) -> float:
    floors = [
        w.decision.floor_minimum_weekly_tss
        for w in plan.weeks
        if w.decision.floor_minimum_weekly_tss is not None
    ]
    if floors:
        return max(floors)
    if anchor.required_peak_weekly_tss is not None:
        return anchor.required_peak_weekly_tss.target
    weighted = [
        w.decision.demand_band_minimum_weekly_tss
        for w in plan.weeks
        if w.decision.demand_band_minimum_weekly_tss is not None
    ]
    return max(weighted) if weighted else 0.0


# =============================================================================
# ORCHESTRATION
# =============================================================================


def build_projection(request: ProjectionRequest) -> ProjectionPayload:
    """
    Build the full projection payload for a request.

    Args:
        request: Projection request

    Returns:
        ProjectionPayload

    Raises:
        ProjectionError: If the request fails validation
        CalibrationError: If calibration overrides are invalid
    """
    validate_request(request)
    timeline = request.timeline
    creation = request.creation_config
    safety = normalize_projection_safety_config(creation)
    calibration = normalize_calibration(creation.calibration if creation is not None else None)

    goals = canonicalize_goals(request.goals)
    markers = [
        GoalMarker(id=g.id, name=g.name, target_date=g.target_date, priority=g.priority)
        for g in goals
    ]
    in_timeline = [
        g for g in goals if timeline.start_date <= g.target_date <= timeline.end_date
    ]
    in_timeline_markers = [m for m in markers if timeline.start_date <= m.target_date <= timeline.end_date]

    upcoming = [g for g in goals if g.target_date >= timeline.start_date]
    primary = upcoming[0] if upcoming else None
    weeks_to_event = _weeks_between(timeline.start_date, primary.target_date) if primary else 0.0

    segments = derive_recovery_segments(
        in_timeline_markers, safety.post_goal_recovery_days, timeline.end_date
    )
    frames = build_week_frames(request, markers, segments)
    horizon_weeks = len(frames)

    anchor = resolve_no_history_anchor(
        request.no_history, goals, weeks_to_event, horizon_weeks, calibration
    )
    floor_values = anchor.projection_floor_values if anchor.projection_floor_applied else None
    seed = seed_starting_state(
        request.starting_ctl,
        request.starting_atl,
        request.starting_tsb,
        request.baseline_weekly_tss,
        dynamic_seed_weekly_tss(request.blocks, timeline.start_date),
        floor_starting_ctl=anchor.starting_ctl_for_projection if floor_values is not None else None,
        floor_starting_weekly_tss=(
            anchor.starting_weekly_tss_for_projection if floor_values is not None else None
        ),
    )
    ctx = build_composer_context(safety, seed, anchor, calibration)
    logger.debug(
        "projection %s..%s: %d weeks, %d goals, seed %.1f (%s)",
        timeline.start_date,
        timeline.end_date,
        horizon_weeks,
        len(goals),
        seed.seed_weekly_tss,
        seed.seed_source,
    )

    required_ctl_by_goal = {
        g.id: goal_demand_ctl(
            g, _weeks_between(timeline.start_date, g.target_date), calibration.no_history
        )
        for g in goals
    }
    objectives = [
        GoalObjective(
            goal_id=g.id,
            target_date=g.target_date,
            priority=g.priority,
            required_ctl=required_ctl_by_goal[g.id],
            target_tsb=goal_target_tsb(g, calibration),
        )
        for g in in_timeline
    ]

    # Naive pass, then the optimizer pass behind the regression guard
    naive = run_plan_pass(ctx, frames, objectives)
    settings = build_optimizer_settings(
        safety, calibration, request.projection_control, seed.seed_weekly_tss
    )
    plan = naive
    fallback = False
    optimized_readiness = naive_readiness = goal_day_readiness(naive, objectives, calibration)
    if not request.disable_weekly_tss_optimizer:
        optimized = run_plan_pass(ctx, frames, objectives, settings)
        optimized_readiness = goal_day_readiness(optimized, objectives, calibration)
        if optimized.loads == naive.loads:
            plan = naive
        elif optimized_readiness < naive_readiness:
            fallback = True
            logger.info(
                "optimizer plan scored %.2f below naive %.2f on goal days; keeping naive loads",
                optimized_readiness,
                naive_readiness,
            )
        else:
            plan = optimized
    changed_weeks = sum(1 for a, b in zip(plan.loads, naive.loads) if a != b)

    microcycles = _build_microcycles(ctx, plan)
    daily = plan.daily_states()
    final_state = plan.weeks[-1].state_after if plan.weeks else seed.state

    # Goal assessments and difficulty
    evidence = ctx.evidence_confidence
    assessments: list[GoalAssessment] = []
    goal_gdis: list[GoalGdi] = []
    for index, goal in enumerate(goals):
        state = _state_on(goal.target_date, daily, seed.state, final_state, timeline.start_date)
        required_ctl = required_ctl_by_goal[goal.id]
        earlier = [g for g in goals[:index] if g.target_date < goal.target_date]
        assessment = assess_goal(
            goal,
            earlier,
            state,
            required_ctl,
            evidence,
            calibration,
            in_timeline=goal.target_date in daily,
        )
        assessments.append(assessment)
        components = compute_gdi_components(
            assessment.target_scores,
            goal.targets,
            state.ctl,
            required_ctl,
            _weeks_between(timeline.start_date, goal.target_date),
            derive_goal_tier_from_targets(goal.targets),
            evidence,
        )
        goal_gdis.append(compute_goal_gdi(goal.id, goal.priority, components))
    plan_gdi = compute_plan_gdi(goal_gdis)

    # Plan-level readiness
    loads = plan.loads
    patterns = [w.frame.effective_pattern for w in plan.weeks]
    envelope = compute_capacity_envelope(
        loads, patterns, seed.state.ctl, evidence, calibration.envelope_penalties
    )
    durability = compute_durability_score(loads, patterns, calibration.durability_penalties)
    if assessments:
        attainment = weighted_mean(
            [a.target_attainment_score for a in assessments],
            [priority_influence_weight(a.priority) for a in assessments],
        )
    else:
        attainment = NEUTRAL_ATTAINMENT
    composite = compute_composite_readiness(
        attainment, envelope, durability, evidence, calibration.readiness_composite
    )

    tss_clamp_weeks = sum(1 for w in plan.weeks if w.decision.tss_ramp_clamped)
    ctl_clamp_weeks = sum(1 for w in plan.weeks if w.decision.ctl_ramp_clamped)
    recovery_weeks = sum(1 for w in plan.weeks if w.frame.recovery.active)

    if request.no_history is not None:
        anchor = replace(
            anchor,
            projection_feasibility=compute_projection_feasibility_metadata(
                _required_weekly_tss_target(plan, anchor),
                max(loads) if loads else 0.0,
                tss_clamp_weeks,
                ctl_clamp_weeks,
                evidence,
                horizon_weeks,
            ),
        )

    base_points = _build_points(plan, in_timeline_markers)
    readiness_scores = compute_point_readiness_scores(
        base_points,
        composite.readiness_score,
        in_timeline_markers,
        calibration.readiness_timeline,
    )
    points = tuple(
        replace(point, readiness_score=score) for point, score in zip(base_points, readiness_scores)
    )

    risk_flags = collect_risk_flags(
        anchor,
        envelope.envelope_state,
        tss_clamp_weeks,
        ctl_clamp_weeks,
        fallback,
        plan_gdi.feasibility_band if goal_gdis else None,
    )

    return ProjectionPayload(
        start_date=timeline.start_date,
        end_date=timeline.end_date,
        points=points,
        microcycles=microcycles,
        goal_markers=tuple(markers),
        goal_assessments=tuple(assessments),
        recovery_segments=tuple(segments),
        constraint_summary=ConstraintSummary(
            normalized_creation_config=safety,
            tss_ramp_clamp_weeks=tss_clamp_weeks,
            ctl_ramp_clamp_weeks=ctl_clamp_weeks,
            recovery_weeks=recovery_weeks,
            starting_state=StartingState(
                starting_ctl=round1(seed.state.ctl),
                starting_atl=round1(seed.state.atl),
                starting_tsb=round1(seed.state.tsb),
                starting_state_is_prior=seed.is_prior,
            ),
        ),
        capacity_envelope=envelope,
        durability=durability,
        readiness_score=composite.readiness_score,
        readiness_confidence=composite.readiness_confidence,
        readiness_band=composite.readiness_band,
        readiness_rationale_codes=composite.rationale_codes,
        plan_gdi=plan_gdi,
        goal_gdis=tuple(goal_gdis),
        no_history=anchor,
        optimizer=OptimizerSummary(
            enabled=not request.disable_weekly_tss_optimizer,
            applied=plan is not naive,
            fallback_to_naive=fallback,
            changed_weeks=changed_weeks,
            lookahead_weeks=settings.controls.lookahead_weeks,
            candidate_steps=settings.controls.candidate_steps,
            naive_goal_readiness=round1(naive_readiness),
            optimized_goal_readiness=round1(optimized_readiness),
        ),
        risk_flags=risk_flags,
    )
