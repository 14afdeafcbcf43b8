"""
Weekly load composer.

Produces one planned weekly load per week from four signals:

    rolling base = (9 * previous week + 5 * block midpoint + 1 * demand) / 15
    requested    = rolling base * pattern multiplier * recovery factor
    floored      = max(requested, confidence-weighted no-history demand floor)
    applied      = floored, capped by the TSS ramp cap and the CTL ramp cap

The previous week's load dominates the blend, so the plan evolves smoothly
from wherever the athlete is; the block range and the demand floor pull it
toward where the plan wants to go. Caps always win over demand, and any
demand the caps suppressed stays visible in the clamp metadata.
"""

from dataclasses import dataclass
from typing import Sequence

from .config import (
    DAYS_PER_WEEK,
    DEFAULT_EVIDENCE_CONFIDENCE,
    DEMAND_RHYTHM_DELOAD,
    DEMAND_RHYTHM_EVENT,
    DEMAND_RHYTHM_RECOVERY,
    DEMAND_RHYTHM_TAPER,
    DEMAND_RHYTHM_WAVE,
    DYNAMIC_SEED_FRACTION,
    ROLLING_WEIGHT_BLOCK,
    ROLLING_WEIGHT_DEMAND,
    ROLLING_WEIGHT_PREVIOUS,
)
from .engine.config_loader import Calibration
from .metrics import clamp01, round1, round3
from .models import (
    Block,
    CtlRampMetadata,
    FitnessState,
    NoHistoryAnchor,
    ProjectionSeed,
    RecoveryMetadata,
    RollingBaseComponents,
    SafetyConfig,
    TssRange,
    TssRampMetadata,
    WeekMetadata,
    WeekPattern,
)
from .physiology import ctl_ramp_for_load
from .safety import max_weekly_tss_for_ctl_ramp, max_weekly_tss_for_ramp
from .timeline import WeekWindow, find_block_for_date


@dataclass(frozen=True)
class WeekFrame:
    """Load-independent description of one week: window, block, pattern, recovery."""

    window: WeekWindow
    block: Block | None
    pattern: WeekPattern
    recovery: RecoveryMetadata

    @property
    def effective_pattern(self) -> str:
        return "recovery" if self.recovery.active else self.pattern.pattern


@dataclass(frozen=True)
class ComposerContext:
    """Per-plan inputs that stay fixed from week to week."""

    safety: SafetyConfig
    seed: ProjectionSeed
    evidence_confidence: float
    target_event_ctl: float | None = None
    weeks_to_event: int = 0
    starting_ctl_for_floor: float = 0.0
    starting_weekly_tss_for_floor: float | None = None  # None when no floor is active
    target_weekly_tss_floor: float | None = None
    floor_hold_weeks: int = 0


@dataclass(frozen=True)
class WeekDecision:
    """
    Composer output for one week, before the load is simulated.

    applied_weekly_tss is the naive choice; upper_bound_weekly_tss is the
    largest load that satisfies both caps from this week's starting state.
    """

    rolling_base_weekly_tss: float
    rolling_base_components: RollingBaseComponents
    pattern_requested_weekly_tss: float
    raw_requested_weekly_tss: float
    requested_weekly_tss: float
    applied_weekly_tss: float
    max_allowed_weekly_tss: float
    upper_bound_weekly_tss: float
    tss_ramp_clamped: bool
    ctl_ramp_clamped: bool
    requested_ctl_ramp: float
    floor_enforced: bool
    floor_override_applied: bool
    floor_minimum_weekly_tss: float | None
    demand_band_minimum_weekly_tss: float | None


# =============================================================================
# BUILDING BLOCKS
# =============================================================================


def weekly_load_from_block_and_baseline(
    block_range: TssRange | None,
    baseline_weekly_tss: float,
    previous_week_tss: float | None = None,
    demand_floor_weekly_tss: float | None = None,
) -> float:
    """
    Rolling weekly base load.

        base = (9 * previous + 5 * midpoint + 1 * demand) / 15

    midpoint is the block range midpoint (or the baseline when the block has
    no range), previous defaults to the baseline and demand to the midpoint.

    Examples:
        range 280-320, baseline 200            -> 240.0
        range 280-320, previous 320, demand 360 -> 316.0

    Args:
        block_range: Target weekly TSS range of the owning block
        baseline_weekly_tss: Effective baseline
        previous_week_tss: Load applied in the previous week
        demand_floor_weekly_tss: Previous week's weighted demand floor

    Returns:
        Base load rounded to 0.1, never negative
    """
    midpoint = block_range.midpoint if block_range is not None else baseline_weekly_tss
    previous = previous_week_tss if previous_week_tss is not None else baseline_weekly_tss
    demand = demand_floor_weekly_tss if demand_floor_weekly_tss is not None else midpoint
    total_weight = ROLLING_WEIGHT_PREVIOUS + ROLLING_WEIGHT_BLOCK + ROLLING_WEIGHT_DEMAND
    base = (
        ROLLING_WEIGHT_PREVIOUS * previous
        + ROLLING_WEIGHT_BLOCK * midpoint
        + ROLLING_WEIGHT_DEMAND * demand
    ) / total_weight
    return round1(max(0.0, base))


def dynamic_seed_weekly_tss(blocks: Sequence[Block], timeline_start: str) -> float | None:
    """Near-term demand seed: first week's block midpoint x 0.85."""
    block = find_block_for_date(blocks, timeline_start)
    if block is None or block.target_weekly_tss_range is None:
        return None
    return round1(block.target_weekly_tss_range.midpoint * DYNAMIC_SEED_FRACTION)


def demand_rhythm_multiplier(
    pattern: str,
    rhythm: str,
    week_index: int,
    weeks_to_event: int,
) -> float:
    """
    Week-to-week rhythm applied to the no-history demand floor.

        event 0.62, recovery 0.72,
        taper 0.70 / 0.80 / 0.88 with <= 1 / <= 2 / more weeks remaining,
        deload 0.82, otherwise a 3-week wave 0.90 / 1.00 / 1.08
    """
    if pattern == "event":
        return DEMAND_RHYTHM_EVENT
    if pattern == "recovery":
        return DEMAND_RHYTHM_RECOVERY
    if pattern == "taper":
        weeks_remaining = max(0, weeks_to_event - week_index - 1)
        if weeks_remaining <= 1:
            return DEMAND_RHYTHM_TAPER[0]
        if weeks_remaining <= 2:
            return DEMAND_RHYTHM_TAPER[1]
        return DEMAND_RHYTHM_TAPER[2]
    if rhythm == "deload":
        return DEMAND_RHYTHM_DELOAD
    return DEMAND_RHYTHM_WAVE[week_index % len(DEMAND_RHYTHM_WAVE)]


def blend_demand_with_confidence(
    demand_floor_weekly_tss: float | None,
    conservative_baseline_weekly_tss: float,
    confidence: float,
) -> float | None:
    """
    Move from a conservative baseline toward the demand floor by confidence.

        blended = baseline + (floor - baseline) * confidence
    """
    if demand_floor_weekly_tss is None:
        return None
    baseline = max(0.0, conservative_baseline_weekly_tss)
    return round1(baseline + (demand_floor_weekly_tss - baseline) * clamp01(confidence))


def build_composer_context(
    safety: SafetyConfig,
    seed: ProjectionSeed,
    anchor: NoHistoryAnchor,
    calibration: Calibration,
) -> ComposerContext:
    """
    Collect the per-plan composer inputs from the seed and no-history anchor.

    The initial ramp floor climbs from the projection's starting load to the
    no-history floor over the reliability horizon (in whole weeks).
    """
    evidence = (
        anchor.evidence_confidence.score
        if anchor.evidence_confidence is not None
        else DEFAULT_EVIDENCE_CONFIDENCE
    )
    floor_active = anchor.projection_floor_applied and anchor.projection_floor_values is not None

    starting_weekly = None
    target_floor = None
    hold_weeks = 0
    if floor_active:
        starting_weekly = float(anchor.starting_weekly_tss_for_projection or 0)
        target_floor = float(max(anchor.projection_floor_values.start_weekly_tss, starting_weekly))
        horizon_days = calibration.no_history.reliability_horizon_days
        hold_weeks = -(-horizon_days // DAYS_PER_WEEK)

    return ComposerContext(
        safety=safety,
        seed=seed,
        evidence_confidence=evidence,
        target_event_ctl=anchor.target_event_ctl,
        weeks_to_event=max(0, anchor.weeks_to_event or 0),
        starting_ctl_for_floor=anchor.starting_ctl_for_projection or 0.0,
        starting_weekly_tss_for_floor=starting_weekly,
        target_weekly_tss_floor=target_floor,
        floor_hold_weeks=hold_weeks,
    )


def _progressive_demand_floor(ctx: ComposerContext, week_index: int) -> float:
    """
    Larger of the initial ramp floor and the goal-demand floor for a week.

    Goal-demand floor: CTL interpolated from the starting CTL toward the
    target event CTL, with fraction min(1, (week + 1) / weeks_to_event), x 7.
    """
    initial_floor = 0.0
    if ctx.starting_weekly_tss_for_floor is not None:
        start = ctx.starting_weekly_tss_for_floor
        target = ctx.target_weekly_tss_floor if ctx.target_weekly_tss_floor is not None else start
        if week_index < ctx.floor_hold_weeks:
            progress = min(1.0, max(0, week_index) / max(1, ctx.floor_hold_weeks - 1))
            initial_floor = round1(start + (target - start) * progress)
        else:
            initial_floor = target

    goal_floor = 0.0
    if ctx.target_event_ctl is not None and ctx.weeks_to_event > 0:
        fraction = min(1.0, (week_index + 1) / ctx.weeks_to_event)
        ctl = ctx.starting_ctl_for_floor * (1 - fraction) + ctx.target_event_ctl * fraction
        goal_floor = round1(ctl) * DAYS_PER_WEEK

    return max(initial_floor, goal_floor)


# =============================================================================
# WEEK COMPOSITION
# =============================================================================


def compose_week(
    ctx: ComposerContext,
    frame: WeekFrame,
    state: FitnessState,
    previous_week_tss: float,
    previous_demand_floor: float | None,
) -> WeekDecision:
    """
    Compose the naive planned load for one week and its cap bounds.

    Args:
        ctx: Per-plan composer context
        frame: The week with its block, pattern and recovery coverage
        state: Fitness state at the start of the week
        previous_week_tss: Load applied in the previous week
        previous_demand_floor: Previous week's weighted demand floor

    Returns:
        WeekDecision
    """
    window, block, pattern, recovery = frame.window, frame.block, frame.pattern, frame.recovery
    block_range = block.target_weekly_tss_range if block is not None else None
    baseline = ctx.seed.baseline_weekly_tss
    base = weekly_load_from_block_and_baseline(
        block_range, baseline, previous_week_tss, previous_demand_floor
    )
    components = RollingBaseComponents(
        previous_week_tss=round1(previous_week_tss),
        block_midpoint_tss=round1(block_range.midpoint if block_range is not None else baseline),
        demand_floor_tss=round1(previous_demand_floor) if previous_demand_floor is not None else None,
        rationale_codes=(
            "rolling_base_prior_week_primary",
            "rolling_base_block_midpoint_signal",
            "rolling_base_demand_floor_signal"
            if previous_demand_floor is not None
            else "rolling_base_demand_floor_absent",
        ),
    )

    pattern_requested = max(0.0, round1(base * pattern.multiplier))
    raw_requested = max(0.0, round1(pattern_requested * recovery.reduction_factor))

    effective_pattern = frame.effective_pattern
    enforce_floor = (
        ctx.target_event_ctl is not None
        and window.index < ctx.weeks_to_event
        and not recovery.active
        and not pattern.goal_influenced
        and pattern.rhythm == "ramp"
        and pattern.pattern not in ("taper", "recovery")
    )

    floor_minimum = None
    weighted_floor = None
    if enforce_floor:
        progressive = _progressive_demand_floor(ctx, window.index)
        rhythm_multiplier = demand_rhythm_multiplier(
            effective_pattern, pattern.rhythm, window.index, ctx.weeks_to_event
        )
        floor_minimum = 0.0 if progressive <= 0 else round1(progressive * rhythm_multiplier)
        conservative = (
            ctx.starting_weekly_tss_for_floor
            if ctx.starting_weekly_tss_for_floor is not None
            else baseline
        )
        weighted_floor = blend_demand_with_confidence(
            floor_minimum, conservative, ctx.evidence_confidence
        )

    floor_override = weighted_floor is not None and raw_requested < weighted_floor
    requested = max(raw_requested, weighted_floor) if weighted_floor is not None else raw_requested

    max_allowed = max_weekly_tss_for_ramp(previous_week_tss, ctx.safety.max_weekly_tss_ramp_pct)
    tss_clamped = requested > max_allowed
    tss_capped = max_allowed if tss_clamped else requested

    requested_ctl_ramp = ctl_ramp_for_load(state.ctl, tss_capped, window.days)
    applied, ctl_clamped = max_weekly_tss_for_ctl_ramp(
        state.ctl, tss_capped, ctx.safety.max_ctl_ramp_per_week, window.days
    )
    upper_bound, _ = max_weekly_tss_for_ctl_ramp(
        state.ctl, max_allowed, ctx.safety.max_ctl_ramp_per_week, window.days
    )

    return WeekDecision(
        rolling_base_weekly_tss=base,
        rolling_base_components=components,
        pattern_requested_weekly_tss=pattern_requested,
        raw_requested_weekly_tss=raw_requested,
        requested_weekly_tss=requested,
        applied_weekly_tss=applied,
        max_allowed_weekly_tss=max_allowed,
        upper_bound_weekly_tss=max(applied, upper_bound),
        tss_ramp_clamped=tss_clamped,
        ctl_ramp_clamped=ctl_clamped,
        requested_ctl_ramp=requested_ctl_ramp,
        floor_enforced=enforce_floor,
        floor_override_applied=floor_override,
        floor_minimum_weekly_tss=floor_minimum,
        demand_band_minimum_weekly_tss=weighted_floor,
    )


def build_week_metadata(
    ctx: ComposerContext,
    decision: WeekDecision,
    recovery: RecoveryMetadata,
    previous_week_tss: float,
    applied_weekly_tss: float,
    applied_ctl_ramp: float,
) -> WeekMetadata:
    """
    Clamp metadata for a week once its load has been chosen.

    The requested values and clamp flags come from the composer and describe
    the requested load: `clamped` records that the request exceeded a cap,
    even when the optimizer later applied a different load. The applied
    values reflect the load that was actually simulated.
    """
    weighted_floor = decision.demand_band_minimum_weekly_tss
    unmet = 0.0 if weighted_floor is None else max(0.0, round1(weighted_floor - applied_weekly_tss))
    return WeekMetadata(
        recovery=recovery,
        tss_ramp=TssRampMetadata(
            previous_week_tss=round1(previous_week_tss),
            seed_weekly_tss=ctx.seed.seed_weekly_tss,
            seed_source=ctx.seed.seed_source,
            rolling_base_weekly_tss=decision.rolling_base_weekly_tss,
            rolling_base_components=decision.rolling_base_components,
            requested_weekly_tss=decision.requested_weekly_tss,
            raw_requested_weekly_tss=decision.raw_requested_weekly_tss,
            applied_weekly_tss=applied_weekly_tss,
            max_weekly_tss_ramp_pct=ctx.safety.max_weekly_tss_ramp_pct,
            max_allowed_weekly_tss=decision.max_allowed_weekly_tss,
            clamped=decision.tss_ramp_clamped,
            floor_override_applied=decision.floor_override_applied,
            floor_minimum_weekly_tss=decision.floor_minimum_weekly_tss,
            demand_band_minimum_weekly_tss=weighted_floor,
            demand_gap_unmet_weekly_tss=unmet,
            weekly_load_override_reason="demand_band_floor" if decision.floor_override_applied else None,
        ),
        ctl_ramp=CtlRampMetadata(
            requested_ctl_ramp=round3(decision.requested_ctl_ramp),
            applied_ctl_ramp=round3(applied_ctl_ramp),
            max_ctl_ramp_per_week=ctx.safety.max_ctl_ramp_per_week,
            clamped=decision.ctl_ramp_clamped,
        ),
        seed_source=ctx.seed.seed_source,
    )
