"""
Fitness-fatigue impulse response model (Banister model family).

Implements the two-timescale CTL/ATL model used to roll planned weekly
loads forward into a daily trajectory:

    CTL(t) = CTL(t-1) + (TSS(t) - CTL(t-1)) / tau_fitness
    ATL(t) = ATL(t-1) + (TSS(t) - ATL(t-1)) / tau_fatigue
    TSB(t) = CTL(t) - ATL(t)

Weekly loads are spread evenly over the days of the week. The state carries
forward from week to week and is never reset.
"""

import math

from .config import DAYS_PER_WEEK, TAU_FATIGUE, TAU_FITNESS, weekly_tss_from_ctl
from .metrics import finite, round1
from .models import FitnessState, ProjectionSeed


def update_daily(state: FitnessState, daily_tss: float) -> FitnessState:
    """
    Advance the state by one day of training.

    Args:
        state: State at the end of the previous day
        daily_tss: Training stress for the day

    Returns:
        State at the end of the day
    """
    return FitnessState(
        ctl=state.ctl + (daily_tss - state.ctl) / TAU_FITNESS,
        atl=state.atl + (daily_tss - state.atl) / TAU_FATIGUE,
    )


def simulate_days(
    state: FitnessState,
    weekly_tss: float,
    days: int = DAYS_PER_WEEK,
) -> list[FitnessState]:
    """
    Spread a weekly load evenly over `days` and return every daily snapshot.

    Args:
        state: State before the first day
        weekly_tss: Total load for the (possibly partial) week
        days: Number of days in the week

    Returns:
        One state per day, in order
    """
    daily_tss = weekly_tss / max(1, days)
    snapshots = []
    current = state
    for _ in range(max(1, days)):
        current = update_daily(current, daily_tss)
        snapshots.append(current)
    return snapshots


def simulate_week(
    state: FitnessState,
    weekly_tss: float,
    days: int = DAYS_PER_WEEK,
) -> FitnessState:
    """State after a whole week of evenly spread load."""
    return simulate_days(state, weekly_tss, days)[-1]


def ctl_ramp_for_load(ctl: float, weekly_tss: float, days: int = DAYS_PER_WEEK) -> float:
    """
    CTL gained over one week at the given load.

    Only CTL matters here, so ATL is carried along at zero.
    """
    after = simulate_week(FitnessState(ctl=ctl, atl=0.0), weekly_tss, days)
    return after.ctl - ctl


def seed_starting_state(
    starting_ctl: float | None,
    starting_atl: float | None,
    starting_tsb: float | None,
    baseline_weekly_tss: float | None,
    dynamic_seed_weekly_tss: float | None,
    floor_starting_ctl: float | None = None,
    floor_starting_weekly_tss: float | None = None,
) -> ProjectionSeed:
    """
    Resolve the starting CTL/ATL and the week-0 load for the rolling composer.

    CTL preference:
        explicit starting CTL -> baseline_weekly_tss / 7 -> near-term demand seed / 7
    ATL preference:
        explicit starting ATL -> CTL - starting TSB -> CTL (steady state)

    When a no-history floor is active (floor_starting_ctl is not None), CTL is
    the floor's starting CTL and ATL is forced equal to it (TSB = 0); the
    state is then flagged as a prior.

    Args:
        starting_ctl: Explicit starting CTL, if known
        starting_atl: Explicit starting ATL, if known
        starting_tsb: Explicit starting TSB, if known
        baseline_weekly_tss: Recent weekly load, if known
        dynamic_seed_weekly_tss: Near-term demand seed (first block midpoint x 0.85)
        floor_starting_ctl: Starting CTL resolved by the no-history anchor
        floor_starting_weekly_tss: Weekly load implied by that CTL

    Returns:
        ProjectionSeed with state, seed load and seed source
    """
    floor_active = floor_starting_ctl is not None

    baseline = None
    if baseline_weekly_tss is not None and finite(baseline_weekly_tss, -1.0) >= 0:
        baseline = max(0.0, round1(baseline_weekly_tss))
    dynamic_seed = max(0.0, round1(finite(dynamic_seed_weekly_tss or 0.0)))
    effective_baseline = baseline if baseline is not None else dynamic_seed

    ctl_input = starting_ctl
    if floor_active:
        ctl_input = floor_starting_ctl
        effective_baseline = max(effective_baseline, float(floor_starting_weekly_tss or 0))
    if ctl_input is not None and finite(ctl_input, -1.0) < 0:
        ctl_input = None

    ctl_seed = round1(ctl_input) if ctl_input is not None and ctl_input > 0 else None
    if ctl_seed is not None:
        seed_weekly = max(effective_baseline, float(weekly_tss_from_ctl(ctl_seed)))
        seed_source = "starting_ctl"
    else:
        seed_weekly = effective_baseline
        seed_source = "baseline_fallback" if baseline is not None else "dynamic_demand_seed"

    if ctl_input is not None:
        ctl = max(0.0, round1(ctl_input))
    else:
        ctl = max(0.0, round1(effective_baseline / DAYS_PER_WEEK))

    if floor_active:
        atl = ctl
    elif starting_atl is not None and finite(starting_atl, -1.0) >= 0:
        atl = round1(starting_atl)
    elif starting_tsb is not None and math.isfinite(starting_tsb):
        atl = max(0.0, round1(ctl - starting_tsb))
    else:
        atl = ctl

    return ProjectionSeed(
        state=FitnessState(ctl=ctl, atl=atl),
        seed_weekly_tss=round1(seed_weekly),
        seed_source=seed_source,
        baseline_weekly_tss=effective_baseline,
        is_prior=floor_active,
    )
