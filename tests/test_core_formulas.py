"""
Formula-focused unit tests for the projection engine core.

Each test class covers one formula or decision table. Expected values are
hand-computed from the formulas so the tests double as worked examples.
"""

import math

import pytest

from load_projector.core.composer import (
    blend_demand_with_confidence,
    demand_rhythm_multiplier,
    dynamic_seed_weekly_tss,
    weekly_load_from_block_and_baseline,
)
from load_projector.core.config import priority_influence_weight
from load_projector.core.conflicts import resolve_constraint_conflicts
from load_projector.core.engine.config_loader import (
    load_calibration_overrides,
    merge_calibration_overrides,
    normalize_calibration,
)
from load_projector.core.metrics import (
    add_days,
    clamp_score,
    diff_days,
    floor1,
    load_monotony,
    load_strain,
    overlap_days,
    round_half_up,
)
from load_projector.core.models import (
    Availability,
    AvailabilityDay,
    AvailabilityWindow,
    Block,
    CalibrationError,
    CapacityEnvelope,
    ContextSummary,
    CreationConstraints,
    DurabilityScore,
    FitnessState,
    GdiComponents,
    Goal,
    GoalGdi,
    GoalMarker,
    HrThresholdTarget,
    NoHistoryContext,
    OptimizerError,
    PowerThresholdTarget,
    ProjectionPoint,
    RacePerformanceTarget,
    TssRange,
)
from load_projector.core.no_history import (
    clamp_floor_by_availability,
    classify_build_time_feasibility,
    collect_no_history_evidence,
    derive_evidence_weighting,
    derive_goal_tier_from_targets,
    derive_no_history_projection_floor,
    determine_no_history_fitness_level,
    race_demand_ctl,
    resolve_no_history_anchor,
)
from load_projector.core.optimizer import (
    Candidate,
    ObjectiveComponents,
    ObjectiveWeights,
    build_candidate_lattice,
    compute_curvature_penalty,
    evaluate_mpc_objective,
    normalize_projection_control,
    pick_best_candidate,
    resolve_effective_controls,
)
from load_projector.core.physiology import (
    ctl_ramp_for_load,
    seed_starting_state,
    simulate_week,
    update_daily,
)
from load_projector.core.readiness import (
    compute_capacity_envelope,
    compute_composite_readiness,
    compute_durability_score,
    compute_point_readiness_scores,
    compute_projection_feasibility_metadata,
    compute_state_readiness,
    longest_deload_debt,
)
from load_projector.core.recovery import (
    compute_event_recovery_profile,
    derive_recovery_segments,
    find_recovery_overlap,
)
from load_projector.core.safety import (
    max_weekly_tss_for_ctl_ramp,
    max_weekly_tss_for_ramp,
    normalize_projection_safety_config,
)
from load_projector.core.scoring import (
    compute_gdi_components,
    compute_goal_gdi,
    compute_plan_gdi,
    map_gdi_to_feasibility_band,
    score_target_satisfaction,
)
from load_projector.core.timeline import (
    build_week_windows,
    get_week_pattern,
    goal_event_multiplier,
    goal_taper_multiplier,
    week_rhythm,
)

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def calibration():
    return normalize_calibration()


def _marker(goal_id: str, date: str, priority: int = 1) -> GoalMarker:
    return GoalMarker(id=goal_id, name=goal_id.upper(), target_date=date, priority=priority)


def _gdi(goal_id: str, priority: int, gdi: float):
    """GoalGdi with a fixed index; components are not used by plan aggregation."""
    return GoalGdi(
        goal_id=goal_id,
        priority=priority,
        gdi=gdi,
        feasibility_band=map_gdi_to_feasibility_band(gdi),
        components=GdiComponents(0.0, 0.0, 0.0, 0.0),
    )


def _inside_envelope() -> CapacityEnvelope:
    return CapacityEnvelope(
        envelope_score=100,
        envelope_state="inside",
        limiting_factors=(),
        over_high_ratio=0.0,
        under_low_ratio=0.0,
        over_ramp_ratio=0.0,
        reference_weekly_tss=280.0,
    )


def _durable() -> DurabilityScore:
    return DurabilityScore(durability_score=100, monotony=0.0, strain=0.0, deload_debt_weeks=0)


# ===========================================================================
# metrics.py: rounding and clamping
# ===========================================================================


class TestRounding:
    """Half-up rounding, 0..100 score clamp and the 0.1 floor used for caps."""

    def test_half_rounds_away_from_zero(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -3
        assert round_half_up(0.125, 2) == pytest.approx(0.13)

    def test_non_finite_rounds_to_zero(self):
        assert round_half_up(float("nan")) == 0.0
        assert round_half_up(float("inf"), 1) == 0.0

    def test_clamp_score_bounds(self):
        assert clamp_score(100.6) == 100
        assert clamp_score(-3) == 0
        assert clamp_score(float("nan")) == 0
        assert clamp_score(54.5) == 55

    def test_floor1_never_rounds_up(self):
        assert floor1(12.39) == pytest.approx(12.3)
        assert floor1(12.3) == pytest.approx(12.3)


class TestLoadMonotony:
    """monotony = mean / std, capped; flat non-zero windows hit the cap."""

    def test_flat_window_hits_cap(self):
        assert load_monotony([100, 100, 100], 10) == 10

    def test_zero_window_is_zero(self):
        assert load_monotony([0, 0], 10) == 0

    def test_varied_window(self):
        # mean 200, std 100 -> 2.0
        assert load_monotony([100, 300], 10) == pytest.approx(2.0)

    def test_strain_spreads_weekly_load_over_days(self):
        # 700 / 7 * 2 = 200
        assert load_strain([700, 700], 2.0, 7) == pytest.approx(200.0)


class TestDates:
    def test_diff_days(self):
        assert diff_days("2026-01-01", "2026-01-08") == 7
        assert diff_days("2026-01-08", "2026-01-01") == -7

    def test_add_days_crosses_month(self):
        assert add_days("2026-02-27", 2) == "2026-03-01"

    def test_overlap_days_inclusive(self):
        assert overlap_days("2026-01-01", "2026-01-10", "2026-01-05", "2026-01-20") == 6
        assert overlap_days("2026-01-01", "2026-01-04", "2026-01-05", "2026-01-20") == 0


# ===========================================================================
# physiology.py: CTL / ATL model
# ===========================================================================


class TestDailyUpdate:
    """
    ctl' = ctl + (tss - ctl) / 42
    atl' = atl + (tss - atl) / 7
    """

    def test_single_day_from_zero(self):
        state = update_daily(FitnessState(0.0, 0.0), 42.0)
        assert state.ctl == pytest.approx(1.0)
        assert state.atl == pytest.approx(6.0)

    def test_steady_state_is_stable(self):
        # 350 / 7 = 50 per day keeps a 50 / 50 state unchanged
        state = simulate_week(FitnessState(50.0, 50.0), 350.0)
        assert state.ctl == pytest.approx(50.0)
        assert state.atl == pytest.approx(50.0)
        assert state.tsb == pytest.approx(0.0)

    def test_ctl_ramp_grows_with_load(self):
        assert ctl_ramp_for_load(40.0, 420.0) > ctl_ramp_for_load(40.0, 280.0)
        assert ctl_ramp_for_load(40.0, 280.0) == pytest.approx(0.0, abs=1e-9)


class TestSeedStartingState:
    """CTL: explicit -> baseline / 7 -> demand seed / 7; ATL: explicit -> CTL - TSB -> CTL."""

    def test_explicit_ctl_with_tsb(self):
        seed = seed_starting_state(40.0, None, -5.0, None, None)
        assert seed.state.ctl == pytest.approx(40.0)
        assert seed.state.atl == pytest.approx(45.0)
        assert seed.seed_weekly_tss == pytest.approx(280.0)
        assert seed.seed_source == "starting_ctl"
        assert seed.is_prior is False

    def test_baseline_fallback(self):
        seed = seed_starting_state(None, None, None, 210.0, None)
        assert seed.state.ctl == pytest.approx(30.0)
        assert seed.state.atl == pytest.approx(30.0)
        assert seed.seed_source == "baseline_fallback"

    def test_floor_forces_prior_state(self):
        seed = seed_starting_state(
            None, None, None, None, 255.0, floor_starting_ctl=0.0, floor_starting_weekly_tss=0
        )
        assert seed.state.ctl == 0.0
        assert seed.state.atl == 0.0
        assert seed.seed_weekly_tss == pytest.approx(255.0)
        assert seed.seed_source == "dynamic_demand_seed"
        assert seed.is_prior is True


# ===========================================================================
# safety.py: creation config and hard caps
# ===========================================================================


class TestSafetyConfig:
    def test_defaults_are_balanced(self):
        safety = normalize_projection_safety_config(None)
        assert safety.optimization_profile == "balanced"
        assert safety.post_goal_recovery_days == 5
        assert safety.max_weekly_tss_ramp_pct == pytest.approx(7.0)
        assert safety.max_ctl_ramp_per_week == pytest.approx(3.0)

    def test_unknown_profile_falls_back(self):
        assert normalize_projection_safety_config({"optimization_profile": "reckless"}).optimization_profile == "balanced"

    def test_out_of_range_values_clamp(self):
        safety = normalize_projection_safety_config(
            {
                "max_weekly_tss_ramp_pct": 95,
                "max_ctl_ramp_per_week": -4,
                "post_goal_recovery_days": 60,
            }
        )
        assert safety.max_weekly_tss_ramp_pct == pytest.approx(40.0)
        assert safety.max_ctl_ramp_per_week == pytest.approx(0.0)
        assert safety.post_goal_recovery_days == 28

    def test_non_finite_takes_default(self):
        safety = normalize_projection_safety_config({"max_weekly_tss_ramp_pct": float("nan")})
        assert safety.max_weekly_tss_ramp_pct == pytest.approx(7.0)


class TestRampCaps:
    """
    TSS cap:  floor1(previous * (1 + pct / 100))
    CTL cap:  largest load with ctl_ramp <= limit (bisection, floored to 0.1)
    """

    def test_tss_ramp_cap(self):
        # 300 * 1.07 = 321.0
        assert max_weekly_tss_for_ramp(300.0, 7.0) == pytest.approx(321.0)

    def test_ctl_cap_clamps_heavy_week(self):
        allowed, clamped = max_weekly_tss_for_ctl_ramp(40.0, 700.0, 3.0)
        assert clamped is True
        assert ctl_ramp_for_load(40.0, allowed) <= 3.0
        # Bisection gets within one rounding step of the limit
        assert ctl_ramp_for_load(40.0, allowed + 0.2) > 3.0

    def test_ctl_cap_keeps_maintenance_week(self):
        assert max_weekly_tss_for_ctl_ramp(40.0, 280.0, 3.0) == (280.0, False)


# ===========================================================================
# timeline.py: weeks and patterns
# ===========================================================================


class TestWeekWindows:
    def test_partial_final_week(self):
        windows = build_week_windows("2026-01-01", "2026-01-17")
        assert len(windows) == 3
        assert windows[-1].start_date == "2026-01-15"
        assert windows[-1].end_date == "2026-01-17"
        assert windows[-1].days == 3

    def test_empty_when_inverted(self):
        assert build_week_windows("2026-02-01", "2026-01-01") == []


class TestWeekPattern:
    """
    event  = 0.82 + 0.08 * (priority - 1) / 9
    taper  = 0.90 + 0.06 * (priority - 1) / 9
    """

    def test_priority_multipliers(self):
        assert goal_event_multiplier(1) == pytest.approx(0.82)
        assert goal_event_multiplier(10) == pytest.approx(0.90)
        assert goal_taper_multiplier(1) == pytest.approx(0.90)
        assert goal_taper_multiplier(10) == pytest.approx(0.96)

    def test_every_fourth_week_is_deload(self):
        assert [week_rhythm(i) for i in range(4)] == ["ramp", "ramp", "ramp", "deload"]

    def test_peak_phase_counts_as_build(self):
        pattern = get_week_pattern("peak", 0, "2026-01-01", "2026-01-07", [])
        assert pattern.pattern == "build"
        assert pattern.multiplier == 1.0
        assert pattern.goal_influenced is False

    def test_two_events_blend_by_influence(self):
        # (0.82 * 10 + 0.90 * 1) / 11 = 0.827
        goals = [_marker("a", "2026-01-03", 1), _marker("b", "2026-01-05", 10)]
        pattern = get_week_pattern("build", 0, "2026-01-01", "2026-01-07", goals)
        assert pattern.pattern == "event"
        assert pattern.multiplier == pytest.approx(0.827)
        assert pattern.dominant_goal_id == "a"

        reversed_pattern = get_week_pattern("build", 0, "2026-01-01", "2026-01-07", goals[::-1])
        assert reversed_pattern == pattern

    def test_goal_next_week_is_taper(self):
        pattern = get_week_pattern("build", 1, "2026-01-01", "2026-01-07", [_marker("a", "2026-01-10")])
        assert pattern.pattern == "taper"
        assert pattern.multiplier == pytest.approx(0.90)


# ===========================================================================
# recovery.py: post-goal recovery windows
# ===========================================================================


class TestRecoverySegments:
    def test_single_goal(self):
        segments = derive_recovery_segments([_marker("a", "2026-01-24")], 7, "2026-03-01")
        assert [(s.start_date, s.end_date) for s in segments] == [("2026-01-25", "2026-01-31")]

    def test_overlapping_windows_are_pushed(self):
        markers = [_marker("b", "2026-01-26"), _marker("a", "2026-01-24")]
        segments = derive_recovery_segments(markers, 7, "2026-03-01")
        assert [(s.start_date, s.end_date) for s in segments] == [
            ("2026-01-25", "2026-01-31"),
            ("2026-02-01", "2026-02-07"),
        ]

    def test_truncated_at_timeline_end(self):
        segments = derive_recovery_segments([_marker("a", "2026-01-24")], 7, "2026-01-28")
        assert [(s.start_date, s.end_date) for s in segments] == [("2026-01-25", "2026-01-28")]

    def test_zero_days_disables_recovery(self):
        assert derive_recovery_segments([_marker("a", "2026-01-24")], 0, "2026-03-01") == []

    def test_week_overlap(self):
        # 4 of 7 days covered: coverage 0.571, factor 1 - 0.35 * 0.571 = 0.8
        segments = derive_recovery_segments([_marker("a", "2026-01-24")], 7, "2026-03-01")
        meta = find_recovery_overlap(segments, "2026-01-22", "2026-01-28", 7)
        assert meta.active is True
        assert meta.goal_ids == ("a",)
        assert meta.coverage == pytest.approx(0.571)
        assert meta.reduction_factor == pytest.approx(0.8)


class TestEventRecoveryProfile:
    def test_hr_test(self):
        profile = compute_event_recovery_profile(HrThresholdTarget(target_lthr_bpm=170))
        assert profile.recovery_days_full == 3
        assert profile.recovery_days_functional == 1

    def test_marathon(self):
        # 3 h: base 10.5, full round(10.5 * 0.97) = 10, functional round(4.2) = 4
        profile = compute_event_recovery_profile(
            RacePerformanceTarget(distance_m=42195, target_time_s=10800)
        )
        assert profile.fatigue_intensity == 90
        assert profile.recovery_days_full == 10
        assert profile.recovery_days_functional == 4
        assert profile.atl_spike_factor == pytest.approx(1.45)


# ===========================================================================
# conflicts.py: constraint precedence
# ===========================================================================


class TestConstraintConflicts:
    """Defaults: floor 120, cap 260, sessions 3..4."""

    def test_defaults_without_conflict(self):
        resolution = resolve_constraint_conflicts(7, 200)
        assert resolution.conflicts == ()
        assert resolution.is_blocking is False
        assert resolution.precedence["weekly_load_cap_tss"] == "default"

    def test_floor_above_cap(self):
        resolution = resolve_constraint_conflicts(
            7, 200, user_constraints={"weekly_load_floor_tss": 300, "weekly_load_cap_tss": 200}
        )
        assert [c.code for c in resolution.conflicts] == [
            "weekly_load_floor_exceeds_cap",
            "baseline_below_floor",
        ]
        assert resolution.is_blocking is True

    def test_session_conflicts(self):
        resolution = resolve_constraint_conflicts(
            4, 200, user_constraints=CreationConstraints(min_sessions_per_week=5)
        )
        assert [c.code for c in resolution.conflicts] == [
            "min_sessions_exceeds_max",
            "min_sessions_exceeds_available_days",
        ]

    def test_confirmed_suggestion_precedence(self):
        resolution = resolve_constraint_conflicts(
            7, 200, confirmed_suggestions={"weekly_load_cap_tss": 300}
        )
        assert resolution.resolved_constraints.weekly_load_cap_tss == 300
        assert resolution.precedence["weekly_load_cap_tss"] == "suggested"

    def test_user_beats_suggestion(self):
        resolution = resolve_constraint_conflicts(
            7,
            200,
            user_constraints={"weekly_load_cap_tss": 250},
            confirmed_suggestions={"weekly_load_cap_tss": 300},
        )
        assert resolution.resolved_constraints.weekly_load_cap_tss == 250
        assert resolution.precedence["weekly_load_cap_tss"] == "user"


# ===========================================================================
# composer.py: rolling base and demand rhythm
# ===========================================================================


class TestRollingBase:
    """base = (9 * previous + 5 * midpoint + 1 * demand) / 15"""

    def test_first_week(self):
        # (9 * 200 + 5 * 300 + 300) / 15 = 240
        assert weekly_load_from_block_and_baseline(TssRange(280, 320), 200) == pytest.approx(240.0)

    def test_with_previous_and_demand(self):
        # (9 * 320 + 5 * 300 + 360) / 15 = 316
        value = weekly_load_from_block_and_baseline(TssRange(280, 320), 200, 320, 360)
        assert value == pytest.approx(316.0)

    def test_no_range_uses_baseline(self):
        assert weekly_load_from_block_and_baseline(None, 150) == pytest.approx(150.0)

    def test_dynamic_seed(self):
        # 300 * 0.85 = 255
        blocks = [Block("Base", "base", "2026-01-01", "2026-02-01", TssRange(280, 320))]
        assert dynamic_seed_weekly_tss(blocks, "2026-01-01") == pytest.approx(255.0)
        assert dynamic_seed_weekly_tss([], "2026-01-01") is None


class TestDemandRhythm:
    def test_fixed_patterns(self):
        assert demand_rhythm_multiplier("event", "ramp", 0, 10) == pytest.approx(0.62)
        assert demand_rhythm_multiplier("recovery", "ramp", 0, 10) == pytest.approx(0.72)
        assert demand_rhythm_multiplier("build", "deload", 3, 10) == pytest.approx(0.82)

    def test_taper_by_weeks_remaining(self):
        assert demand_rhythm_multiplier("taper", "ramp", 8, 10) == pytest.approx(0.70)
        assert demand_rhythm_multiplier("taper", "ramp", 7, 10) == pytest.approx(0.80)
        assert demand_rhythm_multiplier("taper", "ramp", 2, 10) == pytest.approx(0.88)

    def test_ramp_wave(self):
        values = [demand_rhythm_multiplier("build", "ramp", i, 10) for i in range(3)]
        assert values == pytest.approx([0.90, 1.00, 1.08])

    def test_confidence_blend(self):
        # 100 + (300 - 100) * 0.5 = 200
        assert blend_demand_with_confidence(300, 100, 0.5) == pytest.approx(200.0)
        assert blend_demand_with_confidence(None, 100, 0.5) is None


# ===========================================================================
# no_history.py: floors, fitness level, build time
# ===========================================================================


class TestNoHistoryFloor:
    def test_floor_matrix(self):
        floor = derive_no_history_projection_floor("high", "weak")
        assert floor.start_ctl_floor == pytest.approx(35.0)
        assert floor.start_weekly_tss_floor == 245
        assert floor.target_event_ctl == pytest.approx(64.8)

    def test_two_strong_signals_promote(self):
        evidence = collect_no_history_evidence(
            ContextSummary(recent_consistency_marker="high", effort_confidence_marker="high")
        )
        assert determine_no_history_fitness_level(evidence).fitness_level == "strong"

    def test_single_signal_stays_weak(self):
        evidence = collect_no_history_evidence(ContextSummary(recent_consistency_marker="high"))
        inference = determine_no_history_fitness_level(evidence)
        assert inference.fitness_level == "weak"
        assert "fitness_defaulted_to_weak_insufficient_strong_signals" in inference.reasons

    def test_missing_availability_skips_clamp(self):
        floor = derive_no_history_projection_floor("high", "weak")
        clamp = clamp_floor_by_availability(floor, None, None)
        assert clamp.start_weekly_tss == 245
        assert clamp.reasons == ("availability_missing_skip_floor_clamp",)

    def test_availability_clamp(self):
        # 3 x 60 min at the weak intensity factor holds 139 TSS -> CTL 19.9
        availability = Availability(
            days=tuple(
                AvailabilityDay(day=name, windows=(AvailabilityWindow(360, 420),))
                for name in ("monday", "wednesday", "saturday")
            )
        )
        clamp = clamp_floor_by_availability(
            derive_no_history_projection_floor("high", "weak"), availability, None
        )
        assert clamp.start_weekly_tss == 139
        assert clamp.start_ctl == pytest.approx(19.9)
        assert clamp.floor_clamped_by_availability is True
        assert clamp.reasons[0] == "availability_training_days_3"
        assert "floor_clamped_by_availability" in clamp.reasons

    def test_build_time_thresholds(self):
        assert classify_build_time_feasibility("high", 16) == "full"
        assert classify_build_time_feasibility("high", 12) == "limited"
        assert classify_build_time_feasibility("high", 11) == "insufficient"
        assert classify_build_time_feasibility("low", 8) == "full"

    def test_goal_tier_from_targets(self):
        assert derive_goal_tier_from_targets([RacePerformanceTarget(42195)]) == "high"
        assert derive_goal_tier_from_targets([RacePerformanceTarget(10000)]) == "medium"
        assert derive_goal_tier_from_targets([RacePerformanceTarget(5000)]) == "low"
        assert derive_goal_tier_from_targets([]) == "medium"
        assert derive_goal_tier_from_targets([PowerThresholdTarget(250)]) == "medium"

    def test_race_demand_is_continuous_in_time(self):
        faster, _ = race_demand_ctl(RacePerformanceTarget(42195, 12600), 0.0)
        slower, _ = race_demand_ctl(RacePerformanceTarget(42195, 12660), 0.0)
        assert faster >= slower
        assert faster - slower < 1.0

    def test_stale_code_forces_stale_state(self):
        # 0.35 * 0.7 + 0.4 * 0.3 = 0.365
        weighting = derive_evidence_weighting("sparse", rationale_codes=("history_stale_90d",))
        assert weighting.state == "stale"
        assert weighting.score == pytest.approx(0.365)
        assert "confidence_discount_stale_history" in weighting.reasons

    def test_evidence_never_below_state_minimum(self):
        # 0.2 * 0.7 + 0 - 0.08 - 0.06 = 0.0 -> floored at 0.35 for "none"
        weighting = derive_evidence_weighting(
            "none",
            signal_quality=0.0,
            effort_confidence_marker="low",
            profile_metric_completeness_marker="low",
        )
        assert weighting.score == pytest.approx(0.35)
        assert "confidence_penalty_effort_marker_low" in weighting.reasons
        assert "confidence_penalty_profile_metrics_low" in weighting.reasons

    def test_evidence_clamped_at_one(self):
        weighting = derive_evidence_weighting(
            "rich",
            signal_quality=1.0,
            effort_confidence_marker="high",
            profile_metric_completeness_marker="high",
        )
        assert weighting.score == pytest.approx(1.0)


class TestNoHistoryConfidence:
    """Low tier, 10 weeks out: build time is "full", so confidence starts high."""

    RANK = {"low": 0, "medium": 1, "high": 2}
    STRONG = ContextSummary(recent_consistency_marker="high", effort_confidence_marker="high")

    def _anchor(self, calibration, summary=None, goals=1, horizon=10, availability=None):
        context = NoHistoryContext(
            goal_tier="low",
            context_summary=summary or ContextSummary(),
            availability=availability,
        )
        goal_list = [Goal(f"g{i}", f"Race {i}", f"2026-03-{i + 10:02d}") for i in range(goals)]
        return resolve_no_history_anchor(context, goal_list, 10, horizon, calibration)

    @staticmethod
    def _downgrades(anchor):
        return [r for r in anchor.fitness_inference_reasons if r.startswith("confidence_downgraded")]

    def test_strong_short_single_goal_stays_high(self, calibration):
        anchor = self._anchor(calibration, summary=self.STRONG)
        assert anchor.fitness_level == "strong"
        assert anchor.projection_floor_confidence == "high"
        assert self._downgrades(anchor) == []

    def test_weak_inference(self, calibration):
        anchor = self._anchor(calibration)
        assert anchor.projection_floor_confidence == "medium"
        assert self._downgrades(anchor) == ["confidence_downgraded_weak_fitness_inference"]

    def test_multi_goal_plan(self, calibration):
        anchor = self._anchor(calibration, summary=self.STRONG, goals=2)
        assert anchor.projection_floor_confidence == "medium"
        assert self._downgrades(anchor) == ["confidence_downgraded_multi_goal_plan"]

    def test_long_horizon(self, calibration):
        anchor = self._anchor(calibration, summary=self.STRONG, horizon=60)
        assert anchor.projection_floor_confidence == "medium"
        assert self._downgrades(anchor) == ["confidence_downgraded_long_horizon"]

    def test_availability_clamp(self, calibration):
        # Strong low-tier floor is 210 TSS; 3 x 60 min at IF 0.75 holds 169
        availability = Availability(
            days=tuple(
                AvailabilityDay(day=name, windows=(AvailabilityWindow(360, 420),))
                for name in ("monday", "wednesday", "saturday")
            )
        )
        anchor = self._anchor(calibration, summary=self.STRONG, availability=availability)
        assert anchor.floor_clamped_by_availability is True
        assert anchor.projection_floor_confidence == "medium"
        assert self._downgrades(anchor) == ["confidence_downgraded_availability_clamped"]

    def test_weak_long_multi_goal_is_less_confident(self, calibration):
        short = self._anchor(calibration, summary=self.STRONG)
        long = self._anchor(calibration, goals=3, horizon=60)
        assert self._downgrades(long) == [
            "confidence_downgraded_weak_fitness_inference",
            "confidence_downgraded_multi_goal_plan",
            "confidence_downgraded_long_horizon",
        ]
        rank = self.RANK
        assert rank[long.projection_floor_confidence] < rank[short.projection_floor_confidence]


# ===========================================================================
# optimizer.py: controls, lattice, curvature, tie-break
# ===========================================================================


class TestProjectionControls:
    def test_controls_are_clamped(self):
        control = normalize_projection_control({"ambition": 3, "curvature": -5})
        assert control.ambition == 1.0
        assert control.curvature == -1.0
        assert control.risk_tolerance == pytest.approx(0.4)

    def test_balanced_search_bounds(self, calibration):
        controls = resolve_effective_controls(normalize_projection_safety_config(None), calibration)
        assert controls.lookahead_weeks == 4
        assert controls.candidate_steps == 8

    def test_sustainable_search_bounds(self, calibration):
        safety = normalize_projection_safety_config({"optimization_profile": "sustainable"})
        controls = resolve_effective_controls(safety, calibration)
        assert controls.lookahead_weeks == 2
        assert controls.candidate_steps == 5

    def test_risk_tolerance_relaxes_penalties(self, calibration):
        safety = normalize_projection_safety_config(None)
        cautious = resolve_effective_controls(safety, calibration, {"risk_tolerance": 0.0})
        bold = resolve_effective_controls(safety, calibration, {"risk_tolerance": 1.0})
        assert bold.risk_penalty_weight < cautious.risk_penalty_weight
        assert bold.volatility_penalty_weight < cautious.volatility_penalty_weight
        assert bold.churn_penalty_weight < cautious.churn_penalty_weight
        # Ramp caps pass through unchanged
        assert bold.max_weekly_tss_ramp_pct == cautious.max_weekly_tss_ramp_pct


class TestCandidateLattice:
    def test_symmetric_lattice(self):
        assert build_candidate_lattice(200, 260, 5, 0.1) == pytest.approx([180, 190, 200, 210, 220])

    def test_no_upward_moves(self):
        assert max(build_candidate_lattice(200, 260, 5, 0.1, allow_upward=False)) == 200

    def test_upper_bound_respected(self):
        values = build_candidate_lattice(200, 205, 5, 0.1)
        assert all(v <= 205 for v in values)
        assert 200 in values
        assert max(values) == pytest.approx(205)

    def test_minimum_three_steps(self):
        assert len(build_candidate_lattice(200, 260, 1, 0.1)) == 3


class TestCurvaturePenalty:
    """delta2 = ((x[t+1] - x[t]) - (x[t] - x[t-1])) / max(20, 0.12 * ref); kappa = c * env * 0.18"""

    def test_back_loaded_target(self):
        # actions 100, 110, 130 after 100: delta2 = (10 - 0) / 20 = 0.5, (20 - 10) / 20 = 0.5
        # c = +1: mean((0.5 - 0.18)^2) = 0.1024
        penalty = compute_curvature_penalty(100, [100, 110, 130], [1, 1, 1], 1.0, 100)
        assert penalty == pytest.approx(0.1024)

    def test_front_loaded_target_penalizes_acceleration(self):
        # c = -1: mean((0.5 + 0.18)^2) = 0.4624
        penalty = compute_curvature_penalty(100, [100, 110, 130], [1, 1, 1], -1.0, 100)
        assert penalty == pytest.approx(0.4624)

    def test_single_action_has_no_curvature(self):
        assert compute_curvature_penalty(100, [120], [1], 1.0, 100) == 0.0


class TestCandidateTieBreak:
    def test_higher_objective_wins(self):
        best = pick_best_candidate([Candidate(200, 1.0, 0), Candidate(210, 2.0, 10)])
        assert best.value == 210

    def test_smaller_delta_then_value(self):
        candidates = [
            Candidate(220, 1.0, 20, "2026-03-01", "a"),
            Candidate(190, 1.0, -10, "2026-03-01", "a"),
            Candidate(210, 1.0, 10, "2026-03-01", "a"),
        ]
        assert pick_best_candidate(candidates).value == 190
        assert pick_best_candidate(candidates[::-1]).value == 190

    def test_goal_date_breaks_remaining_ties(self):
        candidates = [
            Candidate(200, 1.0, 0, "2026-04-01", "a"),
            Candidate(200, 1.0, 0, "2026-03-01", "b"),
        ]
        assert pick_best_candidate(candidates).primary_goal_id == "b"

    def test_empty_raises(self):
        with pytest.raises(OptimizerError):
            pick_best_candidate([])

    def test_objective_stays_finite(self):
        nan = float("nan")
        components = ObjectiveComponents(nan, nan, nan, nan, nan, nan, nan, nan)
        weights = ObjectiveWeights(14, 1, 0.35, 0.22, 0.2, 1, 1, 1)
        result = evaluate_mpc_objective(components, weights)
        assert math.isfinite(result.objective_score)


# ===========================================================================
# scoring.py: target satisfaction and GDI
# ===========================================================================


class TestTargetSatisfaction:
    def test_met_target(self):
        score = score_target_satisfaction(PowerThresholdTarget(280), projected_value=280)
        assert score.score_0_100 == pytest.approx(100.0)
        assert score.difficulty_ratio == pytest.approx(1.0)
        assert "target_met_by_projection" in score.rationale_codes

    def test_inferred_from_readiness(self):
        score = score_target_satisfaction(PowerThresholdTarget(280), readiness_score=60)
        assert "projection_inferred_from_readiness" in score.rationale_codes

    def test_implausible_target_capped(self):
        score = score_target_satisfaction(PowerThresholdTarget(2000, 3600), projected_value=2000)
        assert score.score_0_100 <= 35
        assert "target_demand_above_plausible_cap" in score.rationale_codes

    def test_harder_race_time_never_scores_higher(self):
        # Faster target times are harder for the same projected finish
        scores = [
            score_target_satisfaction(RacePerformanceTarget(42195, t), projected_value=12600).score_0_100
            for t in (13200, 12600, 12000, 11400)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_harder_power_never_scores_higher(self):
        scores = [
            score_target_satisfaction(PowerThresholdTarget(w), projected_value=280).score_0_100
            for w in (250, 270, 290, 310)
        ]
        assert scores == sorted(scores, reverse=True)


class TestGoalDifficultyIndex:
    """raw = 0.55 PG + 0.35 LG + 0.30 TP + 0.25 SP, gdi = min(1, raw)"""

    def test_bands(self):
        assert map_gdi_to_feasibility_band(0.29) == "feasible"
        assert map_gdi_to_feasibility_band(0.30) == "stretch"
        assert map_gdi_to_feasibility_band(0.5) == "aggressive"
        assert map_gdi_to_feasibility_band(0.75) == "nearly_impossible"
        assert map_gdi_to_feasibility_band(0.95) == "infeasible"

    def test_goal_gdi_extremes(self):
        assert compute_goal_gdi("a", 1, GdiComponents(0, 0, 0, 0)).gdi == 0.0
        worst = compute_goal_gdi("a", 1, GdiComponents(1, 1, 1, 1))
        assert worst.gdi == 1.0
        assert worst.feasibility_band == "infeasible"

    def test_goal_gdi_weighting(self):
        # 0.55 * 0.2 + 0.35 * 0.2 = 0.18
        gdi = compute_goal_gdi("a", 1, GdiComponents(0.2, 0.2, 0, 0))
        assert gdi.gdi == pytest.approx(0.18)
        assert gdi.feasibility_band == "feasible"

    def test_components(self):
        # LG = 1 - 30 / 60, TP = (16 - 4) / 16, SP = 1 - 0.25
        components = compute_gdi_components([], [], 30, 60, 4, "high", 0.25)
        assert components.performance_gap == 0.0
        assert components.load_gap == pytest.approx(0.5)
        assert components.timeline_pressure == pytest.approx(0.75)
        assert components.sparsity_penalty == pytest.approx(0.75)

    def test_empty_plan(self):
        plan = compute_plan_gdi([])
        assert (plan.gdi, plan.feasibility_band) == (0.0, "feasible")

    def test_equal_priorities_average(self):
        plan = compute_plan_gdi([_gdi("a", 1, 0.2), _gdi("b", 1, 0.4)])
        assert plan.gdi == pytest.approx(0.3)
        assert plan.feasibility_band == "stretch"

    def test_a_goal_cannot_be_averaged_away(self):
        # weighted (0.6 * 10 + 0.1 * 6) / 16 = 0.4125 < A goal 0.6
        plan = compute_plan_gdi([_gdi("a", 1, 0.6), _gdi("b", 5, 0.1)])
        assert plan.gdi == pytest.approx(0.6)
        assert plan.dominant_goal_id == "a"

    def test_mixed_priorities_weighted(self):
        # (0.1 * 10 + 0.9 * 6) / 16 = 0.4 > A goal 0.1
        plan = compute_plan_gdi([_gdi("a", 1, 0.1), _gdi("b", 5, 0.9)])
        assert plan.gdi == pytest.approx(0.4)
        assert plan.feasibility_band == "stretch"


# ===========================================================================
# readiness.py: state, envelope, durability, composite, timeline
# ===========================================================================


class TestStateReadiness:
    """state = 100 * (0.5 form + 0.3 fitness + 0.2 fatigue)"""

    def test_on_target_state(self, calibration):
        # form 1, fitness 0.7 + 0.3 * 0.6 = 0.88, fatigue 1 -> 96.4
        value = compute_state_readiness(60, 52, 60, 8, calibration.readiness_timeline)
        assert value == pytest.approx(96.4)

    def test_fatigued_state_scores_lower(self, calibration):
        fresh = compute_state_readiness(60, 52, 60, 8, calibration.readiness_timeline)
        tired = compute_state_readiness(60, 90, 60, 8, calibration.readiness_timeline)
        assert tired < fresh


class TestCapacityEnvelope:
    """ref = max(7 * ctl, 140 * (0.6 + 0.4 * conf)); high = ref * 1.35 * (1 + g)^i"""

    def test_steady_loads_inside(self, calibration):
        envelope = compute_capacity_envelope(
            [280] * 6, ["build"] * 6, 40, 0.5, calibration.envelope_penalties
        )
        assert envelope.envelope_state == "inside"
        assert envelope.envelope_score == 100
        assert envelope.reference_weekly_tss == pytest.approx(280.0)

    def test_jump_goes_outside(self, calibration):
        envelope = compute_capacity_envelope(
            [280, 600], ["build"] * 2, 40, 0.5, calibration.envelope_penalties
        )
        assert envelope.envelope_state == "outside"
        assert "over_ramp" in envelope.limiting_factors

    def test_further_outside_never_scores_better(self, calibration):
        penalties = calibration.envelope_penalties
        near = compute_capacity_envelope([280, 330], ["build"] * 2, 40, 0.5, penalties)
        far = compute_capacity_envelope([280, 450], ["build"] * 2, 40, 0.5, penalties)
        assert far.envelope_score <= near.envelope_score


class TestDurability:
    """penalty = 0.4 monotony + 0.4 strain + 0.2 debt"""

    def test_deload_debt(self):
        assert longest_deload_debt([100] * 5, ["build"] * 5) == 2
        assert longest_deload_debt([100, 110, 90, 100], ["build"] * 4) == 0

    def test_flat_plan(self, calibration):
        # monotony 10 -> penalty 1; strain 300 / 7 * 10 = 428.6 < 900; debt 5 / 6
        # 100 * (1 - 0.4 - 0.2 * 5 / 6) = 43.3
        durability = compute_durability_score([300] * 8, ["build"] * 8, calibration.durability_penalties)
        assert durability.durability_score == 43
        assert durability.deload_debt_weeks == 5
        assert durability.strain == pytest.approx(428.6)
        assert "durability_penalty_monotony_high" in durability.rationale_codes
        assert "durability_penalty_deload_debt" in durability.rationale_codes
        assert "durability_penalty_strain_high" not in durability.rationale_codes

    def test_deloads_improve_durability(self, calibration):
        penalties = calibration.durability_penalties
        flat = compute_durability_score([300] * 8, ["build"] * 8, penalties)
        waved = compute_durability_score(
            [300, 320, 340, 250, 300, 320, 340, 250], ["build"] * 8, penalties
        )
        assert waved.durability_score > flat.durability_score
        assert waved.deload_debt_weeks == 0


class TestCompositeReadiness:
    def test_perfect_plan(self, calibration):
        composite = compute_composite_readiness(
            100, _inside_envelope(), _durable(), 1.0, calibration.readiness_composite
        )
        assert composite.readiness_score == 100
        assert composite.readiness_band == "high"
        assert composite.rationale_codes == ()

    def test_low_attainment(self, calibration):
        # 0.45 * 20 + 30 + 15 + 10 = 64
        composite = compute_composite_readiness(
            20, _inside_envelope(), _durable(), 1.0, calibration.readiness_composite
        )
        assert composite.readiness_score == 64
        assert composite.readiness_band == "medium"
        assert composite.rationale_codes == ("readiness_penalty_target_attainment_low",)


class TestFeasibilityMetadata:
    def test_demand_gap(self):
        # unmet 100 of 500; uncertainty 0.06 + 0.2 * 0.18 = 0.096
        meta = compute_projection_feasibility_metadata(500, 400, 0, 0, 0.8, 10)
        assert meta.demand_gap.unmet_weekly_tss == pytest.approx(100.0)
        assert meta.demand_gap.unmet_ratio == pytest.approx(0.2)
        assert meta.dominant_limiters == ("required_growth_exceeds_caps",)
        assert meta.readiness_rationale_codes == (
            "readiness_penalty_demand_gap",
            "readiness_credit_evidence_confidence_high",
        )
        assert meta.projection_uncertainty.tss_low == pytest.approx(361.6)
        assert meta.projection_uncertainty.tss_high == pytest.approx(438.4)
        assert meta.projection_uncertainty.confidence == pytest.approx(0.904)

    def test_clamp_pressure_flags(self):
        meta = compute_projection_feasibility_metadata(300, 300, 2, 1, 0.3, 10)
        assert "tss_ramp_cap_pressure" in meta.dominant_limiters
        assert "ctl_ramp_cap_pressure" in meta.dominant_limiters
        assert "low_evidence_confidence" in meta.dominant_limiters
        assert "readiness_penalty_clamp_pressure" in meta.readiness_rationale_codes


class TestPointReadiness:
    def _points(self) -> list[ProjectionPoint]:
        points = []
        ctl, atl = 40.0, 45.0
        for week in range(10):
            date = add_days("2026-01-07", 7 * week)
            points.append(ProjectionPoint(date, 300.0, ctl, atl, round(ctl - atl, 1)))
            ctl += 1.5
            atl += 1.0 if week < 7 else -6.0
        return points

    def test_goal_date_is_series_peak(self, calibration):
        points = self._points()
        goal = _marker("a", points[8].date)
        scores = compute_point_readiness_scores(points, 72, [goal], calibration.readiness_timeline)
        assert len(scores) == len(points)
        assert scores[8] == max(scores)
        assert all(0 <= s <= 72 for s in scores)

    @pytest.mark.parametrize("priority", [1, 5, 10])
    def test_goal_date_peaks_at_any_priority(self, calibration, priority):
        points = self._points()
        goal = _marker("a", points[4].date, priority=priority)
        scores = compute_point_readiness_scores(points, 90, [goal], calibration.readiness_timeline)
        assert scores[4] == max(scores)

    def test_priority_influence_weight(self):
        # 11 - priority: the "A" goal weighs 10, the lowest priority 1
        assert priority_influence_weight(1) == 10
        assert priority_influence_weight(10) == 1
        assert priority_influence_weight(0) == 10
        assert priority_influence_weight(None) == 10

    def test_no_goals_caps_at_plan_readiness(self, calibration):
        scores = compute_point_readiness_scores(self._points(), 40, [], calibration.readiness_timeline)
        assert all(0 <= s <= 40 for s in scores)

    def test_empty_points(self, calibration):
        assert compute_point_readiness_scores([], 50, [], calibration.readiness_timeline) == []


# ===========================================================================
# engine/config_loader.py: calibration
# ===========================================================================


class TestCalibration:
    def test_defaults(self, calibration):
        composite = calibration.readiness_composite
        total = (
            composite.target_attainment_weight
            + composite.envelope_weight
            + composite.durability_weight
            + composite.evidence_weight
        )
        assert total == pytest.approx(1.0)
        assert calibration.optimizer.lookahead_weeks == 5

    def test_out_of_range_values_clamp(self):
        values = normalize_calibration({"optimizer": {"lookahead_weeks": 50, "candidate_steps": "many"}})
        assert values.optimizer.lookahead_weeks == 8
        assert values.optimizer.candidate_steps == 7

    def test_composite_weights_must_sum_to_one(self):
        with pytest.raises(CalibrationError):
            normalize_calibration({"readiness_composite": {"evidence_weight": 0.5}})

    def test_merge_is_deep(self):
        merged = merge_calibration_overrides({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}}
        assert merge_calibration_overrides({"a": {"x": 1}}, None) == {"a": {"x": 1}}

    def test_yaml_override_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        extra = tmp_path / "calibration.yaml"
        extra.write_text("optimizer:\n  lookahead_weeks: 3\n", encoding="utf-8")
        values = normalize_calibration(load_calibration_overrides(extra))
        assert values.optimizer.lookahead_weeks == 3
        # Untouched keys keep the bundled values
        assert values.optimizer.candidate_steps == 7

    def test_malformed_yaml_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        extra = tmp_path / "broken.yaml"
        extra.write_text("optimizer: [unclosed\n", encoding="utf-8")
        with pytest.warns(UserWarning):
            overrides = load_calibration_overrides(extra)
        assert normalize_calibration(overrides).optimizer.lookahead_weeks == 5


# ===========================================================================
# models.py: request validation
# ===========================================================================


class TestModels:
    def test_priority_is_clamped(self):
        assert Goal("a", "A", "2026-03-01", priority=0).priority == 1
        assert Goal("a", "A", "2026-03-01", priority=14).priority == 10

    def test_bad_date_rejected(self):
        with pytest.raises(ValueError):
            Goal("a", "A", "2026-3-1")

    def test_block_range_order(self):
        with pytest.raises(ValueError):
            TssRange(300, 200)
        with pytest.raises(ValueError):
            Block("B", "sprint", "2026-01-01", "2026-01-31")
