"""
Timeline and microcycle windows.

Splits the planning window into contiguous 7-day weeks anchored at the
timeline start, attributes each week to a periodization block and classifies
its pattern from nearby goals:

    event:  a goal date falls inside the week
            multiplier = 0.82 + 0.08 * progress
    taper:  a goal date falls 1..7 days after the week end
            multiplier = 0.90 + 0.06 * progress

where progress = (priority - 1) / 9. Competing goal influences are blended by
influence score (11 - priority, scaled by proximity for tapers) rather than
by taking a minimum or maximum.
"""

from dataclasses import dataclass
from typing import Sequence

from .config import (
    DAYS_PER_WEEK,
    DELOAD_EVERY_N_WEEKS,
    EVENT_MULTIPLIER_BASE,
    EVENT_MULTIPLIER_PRIORITY_SPAN,
    PHASE_TO_PATTERN,
    TAPER_MULTIPLIER_BASE,
    TAPER_MULTIPLIER_PRIORITY_SPAN,
    TAPER_WINDOW_DAYS,
    priority_influence_weight,
    priority_progress,
)
from .metrics import add_days, diff_days, round3
from .models import Block, GoalMarker, WeekPattern


@dataclass(frozen=True)
class WeekWindow:
    """One calendar week of the timeline (the last one may be partial)."""

    index: int
    start_date: str
    end_date: str
    days: int


@dataclass(frozen=True)
class _GoalInfluence:
    pattern: str  # "event" or "taper"
    multiplier: float
    score: float
    goal_date: str
    goal_id: str


def build_week_windows(start_date: str, end_date: str) -> list[WeekWindow]:
    """
    Contiguous 7-day windows covering [start_date, end_date].

    Each window starts the day after the previous one ends; the final window
    is truncated at end_date.

    Args:
        start_date: Timeline start (inclusive)
        end_date: Timeline end (inclusive)

    Returns:
        Ordered list of WeekWindow (empty if start > end)
    """
    windows: list[WeekWindow] = []
    week_start = start_date
    index = 0
    while week_start <= end_date:
        week_end = min(add_days(week_start, DAYS_PER_WEEK - 1), end_date)
        windows.append(
            WeekWindow(
                index=index,
                start_date=week_start,
                end_date=week_end,
                days=diff_days(week_start, week_end) + 1,
            )
        )
        week_start = add_days(week_end, 1)
        index += 1
    return windows


def find_block_for_date(
    blocks: Sequence[Block],
    week_start: str,
    week_end: str | None = None,
) -> Block | None:
    """
    Block owning a week: the one containing its start, else its midpoint.

    Args:
        blocks: Periodization blocks
        week_start: First day of the week
        week_end: Last day of the week (defaults to week_start)

    Returns:
        Owning block, or None when no block covers the week
    """
    for block in blocks:
        if block.start_date <= week_start <= block.end_date:
            return block
    end = week_end or week_start
    midpoint = add_days(week_start, diff_days(week_start, end) // 2)
    for block in blocks:
        if block.start_date <= midpoint <= block.end_date:
            return block
    return None


def week_index_within_block(block: Block | None, week_start: str) -> int:
    if block is None:
        return 0
    return max(0, diff_days(block.start_date, week_start) // DAYS_PER_WEEK)


def goal_event_multiplier(priority: int) -> float:
    return round3(EVENT_MULTIPLIER_BASE + EVENT_MULTIPLIER_PRIORITY_SPAN * priority_progress(priority))


def goal_taper_multiplier(priority: int) -> float:
    return round3(TAPER_MULTIPLIER_BASE + TAPER_MULTIPLIER_PRIORITY_SPAN * priority_progress(priority))


def _goal_influence(goal: GoalMarker, week_start: str, week_end: str) -> _GoalInfluence | None:
    weight = priority_influence_weight(goal.priority)
    if week_start <= goal.target_date <= week_end:
        return _GoalInfluence(
            pattern="event",
            multiplier=goal_event_multiplier(goal.priority),
            score=float(weight),
            goal_date=goal.target_date,
            goal_id=goal.id,
        )

    days_until_goal = diff_days(week_end, goal.target_date)
    if days_until_goal < 1 or days_until_goal > TAPER_WINDOW_DAYS:
        return None
    proximity = (TAPER_WINDOW_DAYS + 1 - days_until_goal) / (TAPER_WINDOW_DAYS + 1)
    return _GoalInfluence(
        pattern="taper",
        multiplier=goal_taper_multiplier(goal.priority),
        score=weight * proximity,
        goal_date=goal.target_date,
        goal_id=goal.id,
    )


def _dominance_key(influence: _GoalInfluence) -> tuple:
    # Highest score, then event over taper, then earlier date, then smaller id
    return (
        -influence.score,
        0 if influence.pattern == "event" else 1,
        influence.goal_date,
        influence.goal_id,
    )


def week_rhythm(week_index: int) -> str:
    """Every fourth week of a block is a deload week, the rest ramp."""
    return "deload" if (week_index + 1) % DELOAD_EVERY_N_WEEKS == 0 else "ramp"


def get_week_pattern(
    block_phase: str,
    week_index: int,
    week_start: str,
    week_end: str,
    goals: Sequence[GoalMarker],
) -> WeekPattern:
    """
    Classify a week and compute its load multiplier.

    Without goal influence the pattern is the block phase (peak weeks count as
    build) with multiplier 1.0. With influence, the multiplier is the
    score-weighted average of the goal multipliers (never above 1.0) and the
    pattern comes from the dominant influence.

    Args:
        block_phase: Phase of the owning block ("build" when unowned)
        week_index: Week index within the block
        week_start: First day of the week
        week_end: Last day of the week
        goals: Goal markers

    Returns:
        WeekPattern
    """
    rhythm = week_rhythm(week_index)
    base_pattern = PHASE_TO_PATTERN.get(block_phase, "build")

    influences = [
        influence
        for influence in (_goal_influence(goal, week_start, week_end) for goal in goals)
        if influence is not None
    ]
    total_score = sum(influence.score for influence in influences)
    if not influences or total_score <= 0:
        return WeekPattern(pattern=base_pattern, multiplier=1.0, rhythm=rhythm)

    # Sorting first keeps the float sum independent of goal input order
    influences.sort(key=_dominance_key)
    blended = sum(i.multiplier * i.score for i in influences) / total_score
    dominant = influences[0]
    return WeekPattern(
        pattern=dominant.pattern,
        multiplier=round3(min(1.0, blended)),
        rhythm=rhythm,
        dominant_goal_id=dominant.goal_id,
        goal_influenced=True,
    )
