"""
Integration tests for build_projection.

These run whole requests through the planner and check the properties the
payload guarantees: determinism, order independence, hard ramp caps,
recovery, the optimizer regression guard, goal-day readiness peaks and the
no-history floor.
"""

import json
import math
import random

import pytest

from load_projector.core.models import (
    Block,
    ContextSummary,
    CreationConfig,
    Goal,
    HrThresholdTarget,
    NoHistoryContext,
    PowerThresholdTarget,
    ProjectionControl,
    ProjectionError,
    ProjectionRequest,
    RacePerformanceTarget,
    Timeline,
    TssRange,
)
from load_projector.core.metrics import add_days
from load_projector.core.planner import build_projection
from load_projector.io.serializers import (
    ValidationError,
    dict_to_request,
    payload_to_dict,
    payload_to_json,
)


# ===========================================================================
# Helpers
# ===========================================================================

START = "2026-01-05"
END = "2026-04-26"
RACE_DAY = "2026-04-19"


def _blocks() -> list[Block]:
    return [
        Block("Base", "base", "2026-01-05", "2026-02-15", TssRange(250, 300)),
        Block("Build", "build", "2026-02-16", "2026-04-05", TssRange(300, 380)),
        Block("Taper", "taper", "2026-04-06", "2026-04-26", TssRange(200, 260)),
    ]


def _marathon(priority: int = 1) -> Goal:
    return Goal(
        id="marathon",
        name="Spring Marathon",
        target_date=RACE_DAY,
        priority=priority,
        targets=[RacePerformanceTarget(distance_m=42195, target_time_s=12600)],
    )


def _tune_up() -> Goal:
    return Goal(
        id="half",
        name="Tune-up Half",
        target_date="2026-03-08",
        priority=3,
        targets=[
            RacePerformanceTarget(distance_m=21097.5, target_time_s=5700, weight=2.0),
            HrThresholdTarget(target_lthr_bpm=172),
        ],
    )


def _make_request(
    goals: list[Goal] | None = None,
    blocks: list[Block] | None = None,
    **overrides,
) -> ProjectionRequest:
    """Build a 16-week request toward a marathon with an explicit fitness state."""
    fields = dict(
        timeline=Timeline(START, END),
        blocks=_blocks() if blocks is None else blocks,
        goals=[_marathon()] if goals is None else goals,
        starting_ctl=40.0,
        starting_tsb=-5.0,
    )
    fields.update(overrides)
    return ProjectionRequest(**fields)


def _walk_numbers(value):
    if isinstance(value, dict):
        for item in value.values():
            yield from _walk_numbers(item)
    elif isinstance(value, list):
        for item in value:
            yield from _walk_numbers(item)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        yield value


def _assert_caps_hold(payload) -> None:
    for week in payload.microcycles:
        tss = week.metadata.tss_ramp
        ctl = week.metadata.ctl_ramp
        assert tss.applied_weekly_tss <= tss.max_allowed_weekly_tss + 1e-6, week.week_start_date
        assert ctl.applied_ctl_ramp <= ctl.max_ctl_ramp_per_week + 1e-3, week.week_start_date


# ===========================================================================
# Payload shape
# ===========================================================================

class TestPayloadShape:
    """One microcycle per week; one point per week end plus goal dates."""

    def test_microcycles_cover_timeline(self):
        payload = build_projection(_make_request())
        assert len(payload.microcycles) == 16
        assert payload.microcycles[0].week_start_date == START
        assert payload.microcycles[-1].week_end_date == END
        for previous, current in zip(payload.microcycles, payload.microcycles[1:]):
            assert current.week_start_date == add_days(previous.week_end_date, 1)

    def test_points_include_goal_date(self):
        payload = build_projection(_make_request())
        dates = [p.date for p in payload.points]
        assert dates == sorted(dates)
        assert RACE_DAY in dates
        assert dates[-1] == END

    def test_starting_state_reported(self):
        state = build_projection(_make_request()).constraint_summary.starting_state
        assert state.starting_ctl == pytest.approx(40.0)
        assert state.starting_atl == pytest.approx(45.0)
        assert state.starting_tsb == pytest.approx(-5.0)
        assert state.starting_state_is_prior is False

    def test_scores_in_range(self):
        payload = build_projection(_make_request(goals=[_marathon(), _tune_up()]))
        assert 0 <= payload.readiness_score <= 100
        assert 0 <= payload.readiness_confidence <= 100
        assert payload.readiness_band in ("low", "medium", "high")
        assert all(0 <= p.readiness_score <= 100 for p in payload.points)
        assert 0.0 <= payload.plan_gdi.gdi <= 1.0
        assert [g.goal_id for g in payload.goal_gdis] == ["half", "marathon"]

    def test_serializes_to_json(self):
        text = payload_to_json(build_projection(_make_request()))
        data = json.loads(text)
        assert data["start_date"] == START
        assert isinstance(data["microcycles"], list)
        assert data["no_history"]["projection_feasibility"] is None


# ===========================================================================
# Determinism and order independence
# ===========================================================================

class TestDeterminism:
    def test_same_request_same_payload(self):
        first = payload_to_json(build_projection(_make_request(goals=[_marathon(), _tune_up()])))
        second = payload_to_json(build_projection(_make_request(goals=[_marathon(), _tune_up()])))
        assert first == second

    def test_goal_target_and_block_order_do_not_matter(self):
        forward = _make_request(goals=[_marathon(), _tune_up()])

        tune_up = _tune_up()
        tune_up.targets = list(reversed(tune_up.targets))
        backward = _make_request(goals=[tune_up, _marathon()], blocks=list(reversed(_blocks())))

        assert payload_to_json(build_projection(forward)) == payload_to_json(build_projection(backward))

    def test_dict_request_matches_dataclass_request(self):
        data = {
            "timeline": {"start_date": START, "end_date": END},
            "blocks": [
                {
                    "name": b.name,
                    "phase": b.phase,
                    "start_date": b.start_date,
                    "end_date": b.end_date,
                    "target_weekly_tss_range": {
                        "min": b.target_weekly_tss_range.min,
                        "max": b.target_weekly_tss_range.max,
                    },
                }
                for b in _blocks()
            ],
            "goals": [
                {
                    "id": "marathon",
                    "name": "Spring Marathon",
                    "target_date": RACE_DAY,
                    "priority": 1,
                    "targets": [
                        {"target_type": "race_performance", "distance_m": 42195, "target_time_s": 12600}
                    ],
                }
            ],
            "starting_ctl": 40,
            "starting_tsb": -5,
        }
        from_dict = build_projection(dict_to_request(data))
        assert payload_to_dict(from_dict) == payload_to_dict(build_projection(_make_request()))


# ===========================================================================
# Hard caps
# ===========================================================================

class TestHardCaps:
    """applied TSS <= previous * (1 + pct / 100); CTL gain <= max_ctl_ramp_per_week."""

    @pytest.mark.parametrize("profile", ["sustainable", "balanced", "outcome_first"])
    def test_caps_hold_for_every_profile(self, profile):
        payload = build_projection(
            _make_request(creation_config=CreationConfig(optimization_profile=profile))
        )
        _assert_caps_hold(payload)

    def test_caps_hold_from_zero_fitness(self):
        payload = build_projection(
            _make_request(starting_ctl=None, starting_tsb=None, baseline_weekly_tss=60)
        )
        _assert_caps_hold(payload)
        assert payload.constraint_summary.tss_ramp_clamp_weeks > 0

    def test_tighter_caps_never_raise_peak_load(self):
        def peak(pct: float) -> float:
            payload = build_projection(
                _make_request(
                    starting_ctl=None,
                    starting_tsb=None,
                    baseline_weekly_tss=150,
                    creation_config=CreationConfig(max_weekly_tss_ramp_pct=pct),
                    disable_weekly_tss_optimizer=True,
                )
            )
            return max(w.planned_weekly_tss for w in payload.microcycles)

        assert peak(3.0) <= peak(10.0)

    def test_zero_ctl_ramp_freezes_fitness(self):
        payload = build_projection(
            _make_request(
                creation_config=CreationConfig(max_ctl_ramp_per_week=0.0),
                disable_weekly_tss_optimizer=True,
            )
        )
        ctl_values = [w.projected_ctl for w in payload.microcycles]
        assert max(ctl_values) <= 40.0 + 1e-3
        _assert_caps_hold(payload)

    @pytest.mark.parametrize("profile", ["sustainable", "balanced", "outcome_first"])
    def test_clamp_flags_describe_requested_load(self, profile):
        payload = build_projection(
            _make_request(
                starting_ctl=None,
                starting_tsb=None,
                baseline_weekly_tss=60,
                creation_config=CreationConfig(optimization_profile=profile),
            )
        )
        assert any(w.metadata.tss_ramp.clamped for w in payload.microcycles)
        for week in payload.microcycles:
            tss = week.metadata.tss_ramp
            ctl = week.metadata.ctl_ramp
            assert tss.clamped == (tss.requested_weekly_tss > tss.max_allowed_weekly_tss)
            if ctl.clamped:
                assert ctl.requested_ctl_ramp >= ctl.max_ctl_ramp_per_week - 1e-3
            else:
                assert ctl.requested_ctl_ramp <= ctl.max_ctl_ramp_per_week + 1e-3


# ===========================================================================
# Recovery
# ===========================================================================

class TestRecovery:
    def test_recovery_week_after_race(self):
        payload = build_projection(
            _make_request(creation_config=CreationConfig(post_goal_recovery_days=5))
        )
        assert [(s.start_date, s.end_date) for s in payload.recovery_segments] == [
            ("2026-04-20", "2026-04-24")
        ]
        last = payload.microcycles[-1]
        assert last.pattern == "recovery"
        assert last.metadata.recovery.active is True
        assert last.metadata.recovery.reduction_factor < 1.0
        assert payload.constraint_summary.recovery_weeks == 1

    def test_recovery_disabled(self):
        payload = build_projection(
            _make_request(creation_config=CreationConfig(post_goal_recovery_days=0))
        )
        assert payload.recovery_segments == ()
        assert all(not w.metadata.recovery.active for w in payload.microcycles)

    def test_race_week_is_event(self):
        payload = build_projection(_make_request())
        race_week = next(w for w in payload.microcycles if w.week_end_date == RACE_DAY)
        assert race_week.pattern == "event"
        assert race_week.pattern_multiplier == pytest.approx(0.82)


# ===========================================================================
# Goal conflict weighting
# ===========================================================================

class TestConflictWeighting:
    """Two races just after a one-week build block compete for its taper."""

    def _request(self, urgent_priority: int, later_priority: int, optimizer_off: bool):
        return ProjectionRequest(
            timeline=Timeline("2026-03-02", "2026-03-08"),
            blocks=[Block("Build", "build", "2026-03-02", "2026-03-08", TssRange(200, 200))],
            goals=[
                Goal("goal-urgent", "A race", "2026-03-10", priority=urgent_priority),
                Goal("goal-secondary", "B race", "2026-03-13", priority=later_priority),
            ],
            starting_ctl=28.0,
            baseline_weekly_tss=200.0,
            creation_config=CreationConfig(
                optimization_profile="balanced",
                post_goal_recovery_days=0,
                max_weekly_tss_ramp_pct=20.0,
                max_ctl_ramp_per_week=8.0,
            ),
            disable_weekly_tss_optimizer=optimizer_off,
        )

    @pytest.mark.parametrize("optimizer_off", [False, True])
    def test_urgent_high_priority_goal_suppresses_more(self, optimizer_off):
        hi = build_projection(self._request(1, 8, optimizer_off))
        lo = build_projection(self._request(8, 1, optimizer_off))
        assert hi.microcycles[0].pattern == "taper"
        assert lo.microcycles[0].pattern == "taper"
        assert hi.microcycles[0].pattern_multiplier < lo.microcycles[0].pattern_multiplier
        assert hi.microcycles[0].planned_weekly_tss < lo.microcycles[0].planned_weekly_tss


# ===========================================================================
# Optimizer
# ===========================================================================

class TestOptimizer:
    def test_disabled_keeps_naive_plan(self):
        payload = build_projection(_make_request(disable_weekly_tss_optimizer=True))
        summary = payload.optimizer
        assert summary.enabled is False
        assert summary.applied is False
        assert summary.changed_weeks == 0
        assert summary.optimized_goal_readiness == summary.naive_goal_readiness

    def test_enabled_never_regresses_goal_readiness(self):
        payload = build_projection(_make_request(goals=[_marathon(), _tune_up()]))
        summary = payload.optimizer
        assert summary.enabled is True
        assert summary.lookahead_weeks == 4
        assert summary.candidate_steps == 8
        if summary.applied:
            assert summary.optimized_goal_readiness >= summary.naive_goal_readiness
        else:
            assert summary.changed_weeks == 0

    def test_fallback_is_flagged(self):
        payload = build_projection(_make_request())
        if payload.optimizer.fallback_to_naive:
            assert "optimizer_fallback_naive" in payload.risk_flags
            assert payload.optimizer.changed_weeks == 0

    def test_controls_change_search(self):
        payload = build_projection(
            _make_request(projection_control=ProjectionControl(ambition=1.0, risk_tolerance=1.0))
        )
        assert payload.optimizer.lookahead_weeks == 4
        assert payload.optimizer.candidate_steps == 9
        _assert_caps_hold(payload)


# ===========================================================================
# Readiness timeline
# ===========================================================================

class TestReadinessTimeline:
    def test_goal_dates_peak(self):
        payload = build_projection(_make_request(goals=[_marathon(), _tune_up()]))
        scores = {p.date: p.readiness_score for p in payload.points}
        peak = max(scores.values())
        assert scores[RACE_DAY] == peak
        assert scores["2026-03-08"] == peak

    def test_points_capped_by_plan_readiness(self):
        payload = build_projection(_make_request())
        assert max(p.readiness_score for p in payload.points) <= payload.readiness_score

    def test_no_goals_uses_neutral_attainment(self):
        payload = build_projection(_make_request(goals=[]))
        assert payload.goal_assessments == ()
        assert payload.plan_gdi.gdi == 0.0
        assert 0 <= payload.readiness_score <= 100


# ===========================================================================
# Validation
# ===========================================================================

class TestValidation:
    def test_start_after_latest_goal(self):
        with pytest.raises(ProjectionError):
            build_projection(_make_request(timeline=Timeline("2026-05-01", "2026-06-01")))

    def test_inverted_timeline(self):
        with pytest.raises(ProjectionError):
            build_projection(_make_request(goals=[], timeline=Timeline("2026-05-01", "2026-04-01")))

    def test_goal_outside_timeline_is_assessed(self):
        late = Goal(id="autumn", name="Autumn 10k", target_date="2026-10-04", priority=2,
                    targets=[RacePerformanceTarget(distance_m=10000, target_time_s=2700)])
        payload = build_projection(_make_request(goals=[_marathon(), late]))
        assessment = next(a for a in payload.goal_assessments if a.goal_id == "autumn")
        assert "goal_outside_timeline" in assessment.rationale_codes
        assert "autumn" not in [s.goal_id for s in payload.recovery_segments]

    def test_unknown_target_type(self):
        with pytest.raises(ValidationError):
            dict_to_request(
                {
                    "timeline": {"start_date": START, "end_date": END},
                    "goals": [
                        {"id": "g", "target_date": RACE_DAY, "targets": [{"target_type": "vo2max"}]}
                    ],
                }
            )

    def test_missing_timeline(self):
        with pytest.raises(ValidationError):
            dict_to_request({"goals": []})


# ===========================================================================
# No-history floor
# ===========================================================================

class TestNoHistory:
    def _request(self, **context) -> ProjectionRequest:
        return _make_request(
            starting_ctl=None,
            starting_tsb=None,
            no_history=NoHistoryContext(**context),
        )

    def test_floor_is_a_prior(self):
        payload = build_projection(self._request())
        assert payload.constraint_summary.starting_state.starting_state_is_prior is True
        assert payload.no_history.projection_floor_applied is True
        assert payload.no_history.projection_floor_tier == "high"
        assert "no_history_floor_active" in payload.risk_flags
        assert payload.no_history.projection_feasibility is not None
        _assert_caps_hold(payload)

    def test_strong_signals_raise_the_floor(self):
        weak = build_projection(self._request())
        strong = build_projection(
            self._request(
                context_summary=ContextSummary(
                    recent_consistency_marker="high",
                    effort_confidence_marker="high",
                )
            )
        )
        assert strong.no_history.fitness_level == "strong"
        assert weak.no_history.fitness_level == "weak"
        assert (
            strong.no_history.projection_floor_values.start_weekly_tss
            >= weak.no_history.projection_floor_values.start_weekly_tss
        )

    def test_rich_history_skips_floor(self):
        payload = build_projection(self._request(history_availability_state="rich"))
        assert payload.no_history.projection_floor_applied is False
        assert "no_history_floor_active" not in payload.risk_flags

    def test_weeks_to_event_warning(self):
        payload = build_projection(self._request(weeks_to_event=6))
        assert payload.no_history.periodization_feasibility == "insufficient"
        assert "build_time_insufficient" in payload.risk_flags


# ===========================================================================
# Randomized requests
# ===========================================================================

def _random_target(rng: random.Random):
    kind = rng.choice(["race", "power", "hr"])
    if kind == "race":
        distance = rng.choice([5000, 10000, 21097.5, 42195])
        return RacePerformanceTarget(
            distance_m=distance,
            target_time_s=distance / rng.uniform(2.5, 5.0),
            weight=rng.uniform(0.5, 2.0),
        )
    if kind == "power":
        return PowerThresholdTarget(target_watts=rng.uniform(150, 420))
    return HrThresholdTarget(target_lthr_bpm=rng.uniform(140, 190))


def _random_request(rng: random.Random) -> ProjectionRequest:
    weeks = rng.randint(3, 18)
    end = add_days(START, weeks * 7 - 1 - rng.randint(0, 3))
    goals = []
    for index in range(rng.randint(0, 3)):
        goals.append(
            Goal(
                id=f"g{index}",
                name=f"Goal {index}",
                target_date=add_days(START, rng.randint(0, weeks * 7 - 5)),
                priority=rng.randint(1, 10),
                targets=[_random_target(rng) for _ in range(rng.randint(0, 2))],
            )
        )
    weights = [rng.uniform(0.05, 1.0) for _ in range(4)]
    total = sum(weights)
    composite = dict(
        zip(
            ["target_attainment_weight", "envelope_weight", "durability_weight", "evidence_weight"],
            [w / total for w in weights],
        )
    )
    return ProjectionRequest(
        timeline=Timeline(START, end),
        blocks=[Block("Only", rng.choice(["base", "build", "peak"]), START, end,
                      TssRange(rng.uniform(100, 250), rng.uniform(260, 500)))],
        goals=goals,
        starting_ctl=rng.choice([None, rng.uniform(0, 90)]),
        baseline_weekly_tss=rng.choice([None, rng.uniform(0, 600)]),
        creation_config=CreationConfig(
            optimization_profile=rng.choice(["sustainable", "balanced", "outcome_first"]),
            max_weekly_tss_ramp_pct=rng.uniform(0, 20),
            max_ctl_ramp_per_week=rng.uniform(0, 8),
            post_goal_recovery_days=rng.randint(0, 10),
            calibration={"readiness_composite": composite},
        ),
        projection_control=ProjectionControl(
            ambition=rng.random(),
            risk_tolerance=rng.random(),
            curvature=rng.uniform(-1, 1),
        ),
        no_history=rng.choice([None, NoHistoryContext()]),
        disable_weekly_tss_optimizer=rng.random() < 0.3,
    )


class TestRandomizedRequests:
    @pytest.mark.parametrize("seed", range(12))
    def test_payload_invariants(self, seed):
        rng = random.Random(seed)
        request = _random_request(rng)
        payload = build_projection(request)

        assert 0 <= payload.readiness_score <= 100
        assert all(0 <= p.readiness_score <= 100 for p in payload.points)
        assert 0.0 <= payload.plan_gdi.gdi <= 1.0
        for assessment in payload.goal_assessments:
            assert 0.0 <= assessment.goal_readiness_score <= 100.0
        _assert_caps_hold(payload)

        data = payload_to_dict(payload)
        assert all(math.isfinite(v) for v in _walk_numbers(data))

        # Same request, same payload
        assert payload_to_dict(build_projection(request)) == data
