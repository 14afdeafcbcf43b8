"""
Post-goal recovery windows and event recovery cost.

Every goal is followed by a recovery window of post_goal_recovery_days. Weeks
overlapping a window are forced to the "recovery" pattern with a reduction
factor

    factor = 1 - 0.35 * coverage

where coverage is the share of the week's days inside recovery windows.

Event recovery profiles estimate how expensive a goal event is, so a later
goal's readiness can be discounted by the residual fatigue of earlier ones.
"""

from dataclasses import dataclass
from typing import Sequence

from .config import (
    DEFAULT_RACE_SPEED_KPH,
    HR_TEST_ATL_SPIKE,
    HR_TEST_FATIGUE_INTENSITY,
    HR_TEST_RECOVERY_DAYS,
    POST_EVENT_ATL_OVERLOAD_SCALE,
    POST_EVENT_BASE_PENALTY_FRACTION,
    POST_EVENT_PENALTY_CAP,
    RACE_ATL_SPIKE_CAP,
    RACE_ATL_SPIKE_PER_HOUR,
    RACE_FUNCTIONAL_RECOVERY_FRACTION,
    RACE_INTENSITY_ACTIVITY_FACTORS,
    RACE_INTENSITY_BY_DURATION,
    RACE_INTENSITY_SHORT,
    RACE_RECOVERY_DAYS_BOUNDS,
    RACE_RECOVERY_DAYS_PER_HOUR,
    RECOVERY_REDUCTION_SLOPE,
    TEST_ATL_SPIKE,
    TEST_FATIGUE_INTENSITY,
    TEST_FUNCTIONAL_RECOVERY_FRACTION,
    TEST_RECOVERY_BASE_DAYS,
    TEST_RECOVERY_DAYS_PER_HOUR,
)
from .metrics import add_days, clamp, finite, overlap_days, round3, round_half_up
from .models import (
    GoalMarker,
    HrThresholdTarget,
    RacePerformanceTarget,
    RecoveryMetadata,
    RecoverySegment,
    Target,
)


@dataclass(frozen=True)
class EventRecoveryProfile:
    recovery_days_full: int  # Until ATL is back near baseline
    recovery_days_functional: int  # Until normal training can resume
    fatigue_intensity: int  # 0..100
    atl_spike_factor: float  # ATL multiplier on event day


# =============================================================================
# RECOVERY WINDOWS
# =============================================================================


def derive_recovery_segments(
    goal_markers: Sequence[GoalMarker],
    days: int,
    timeline_end: str,
) -> list[RecoverySegment]:
    """
    Build non-overlapping recovery windows after each goal.

    Goals are processed in (date, priority, id) order. A window starts the
    day after its goal and spans `days` days, truncated at the timeline end;
    a window that would overlap the previous one is pushed to start the day
    after it ends. Windows that end up empty are dropped.

    Args:
        goal_markers: Goals to protect with recovery
        days: Normalized post_goal_recovery_days
        timeline_end: Last day of the timeline

    Returns:
        Ordered, non-overlapping recovery segments
    """
    if days <= 0:
        return []

    ordered = sorted(goal_markers, key=lambda g: (g.target_date, g.priority, g.id))
    segments: list[RecoverySegment] = []
    for goal in ordered:
        start = add_days(goal.target_date, 1)
        if segments and start <= segments[-1].end_date:
            start = add_days(segments[-1].end_date, 1)
        end = min(add_days(start, days - 1), timeline_end)
        if start > end:
            continue
        segments.append(
            RecoverySegment(
                goal_id=goal.id,
                goal_name=goal.name,
                start_date=start,
                end_date=end,
            )
        )
    return segments


def find_recovery_overlap(
    segments: Sequence[RecoverySegment],
    week_start: str,
    week_end: str,
    week_days: int,
) -> RecoveryMetadata:
    """
    Recovery coverage of one week.

    Args:
        segments: Recovery segments of the plan
        week_start: First day of the week
        week_end: Last day of the week
        week_days: Number of days in the week

    Returns:
        RecoveryMetadata; inactive weeks have factor 1.0 and coverage 0
    """
    covered = 0
    goal_ids: list[str] = []
    for segment in segments:
        shared = overlap_days(segment.start_date, segment.end_date, week_start, week_end)
        if shared <= 0:
            continue
        covered += shared
        if segment.goal_id not in goal_ids:
            goal_ids.append(segment.goal_id)

    if covered <= 0:
        return RecoveryMetadata(active=False, goal_ids=(), reduction_factor=1.0, coverage=0.0)

    coverage = min(covered, week_days) / max(1, week_days)
    return RecoveryMetadata(
        active=True,
        goal_ids=tuple(goal_ids),
        reduction_factor=round3(1 - RECOVERY_REDUCTION_SLOPE * coverage),
        coverage=round3(coverage),
    )


# =============================================================================
# EVENT RECOVERY COST
# =============================================================================


def estimate_race_duration_hours(target: RacePerformanceTarget) -> float:
    """Target time in hours, or distance at a typical speed when no time is set."""
    if target.target_time_s is not None:
        return target.target_time_s / 3600
    speed_kph = DEFAULT_RACE_SPEED_KPH.get(target.activity_category, DEFAULT_RACE_SPEED_KPH["other"])
    return target.distance_m / 1000 / speed_kph


def estimate_race_intensity(duration_hours: float, activity_category: str) -> int:
    """
    Perceived race intensity on a 0..100 scale.

    Longer races are run at a lower relative intensity; non-running sports
    carry less impact stress.
    """
    base = RACE_INTENSITY_SHORT
    for min_hours, intensity in RACE_INTENSITY_BY_DURATION:
        if duration_hours > min_hours:
            base = intensity
            break
    factor = RACE_INTENSITY_ACTIVITY_FACTORS.get(
        activity_category, RACE_INTENSITY_ACTIVITY_FACTORS["other"]
    )
    return int(round_half_up(base * factor))


def compute_event_recovery_profile(target: Target) -> EventRecoveryProfile:
    """
    Recovery cost of completing a goal target.

    Race:        base = clamp(hours * 3.5, 2, 28)
                 full = round(base * (0.7 + 0.3 * intensity / 100))
                 functional = round(base * 0.4)
    Pace/power:  base = 3 + hours * 2, functional = round(base * 0.35)
    HR test:     3 days full, 1 day functional

    Args:
        target: Goal target

    Returns:
        EventRecoveryProfile
    """
    if isinstance(target, RacePerformanceTarget):
        hours = estimate_race_duration_hours(target)
        base_days = clamp(hours * RACE_RECOVERY_DAYS_PER_HOUR, *RACE_RECOVERY_DAYS_BOUNDS)
        intensity = estimate_race_intensity(hours, target.activity_category)
        return EventRecoveryProfile(
            recovery_days_full=int(round_half_up(base_days * (0.7 + 0.3 * intensity / 100))),
            recovery_days_functional=int(
                round_half_up(base_days * RACE_FUNCTIONAL_RECOVERY_FRACTION)
            ),
            fatigue_intensity=intensity,
            atl_spike_factor=min(RACE_ATL_SPIKE_CAP, 1 + hours * RACE_ATL_SPIKE_PER_HOUR),
        )

    if isinstance(target, HrThresholdTarget):
        full, functional = HR_TEST_RECOVERY_DAYS
        return EventRecoveryProfile(
            recovery_days_full=full,
            recovery_days_functional=functional,
            fatigue_intensity=HR_TEST_FATIGUE_INTENSITY,
            atl_spike_factor=HR_TEST_ATL_SPIKE,
        )

    # Pace and power threshold tests
    base_days = TEST_RECOVERY_BASE_DAYS + target.duration_hours * TEST_RECOVERY_DAYS_PER_HOUR
    return EventRecoveryProfile(
        recovery_days_full=int(round_half_up(base_days)),
        recovery_days_functional=int(round_half_up(base_days * TEST_FUNCTIONAL_RECOVERY_FRACTION)),
        fatigue_intensity=TEST_FATIGUE_INTENSITY,
        atl_spike_factor=TEST_ATL_SPIKE,
    )


def compute_post_event_fatigue_penalty(
    days_after_event: int,
    target: Target | None,
    ctl: float,
    atl: float,
) -> float:
    """
    Residual fatigue from an earlier event, in readiness points (0..60).

        penalty = (intensity * 0.5 + max(0, (atl / ctl - 1) * 30)) * 0.5^(days / half_life)

    with half_life = recovery_days_full / 3.

    Args:
        days_after_event: Days between the event and the evaluated date
        target: Primary target of the earlier goal (None -> no penalty)
        ctl: CTL on the evaluated date
        atl: ATL on the evaluated date

    Returns:
        Penalty in [0, 60]; 0 on or before the event day
    """
    if days_after_event <= 0 or target is None:
        return 0.0

    profile = compute_event_recovery_profile(target)
    half_life = max(1e-6, profile.recovery_days_full / 3)
    decay = 0.5 ** (days_after_event / half_life)

    atl_ratio = finite(atl) / max(1.0, finite(ctl))
    overload = max(0.0, (atl_ratio - 1) * POST_EVENT_ATL_OVERLOAD_SCALE)
    base = profile.fatigue_intensity * POST_EVENT_BASE_PENALTY_FRACTION

    return clamp((base + overload) * decay, 0.0, POST_EVENT_PENALTY_CAP)
