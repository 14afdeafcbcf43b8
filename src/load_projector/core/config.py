"""
Configuration constants for the training-load projection model.

All adjustable parameters are centralized here for easy tuning.
The per-request calibration sections (readiness weights, envelope and
durability penalties, no-history floors, optimizer weights) are mirrored in
the bundled calibration.yaml; CALIBRATION_DEFAULTS below is the source of
truth when no override is supplied.
"""

from dataclasses import dataclass
from typing import Final

# =============================================================================
# FITNESS-FATIGUE MODEL
# =============================================================================

TAU_FITNESS: Final[float] = 42.0  # CTL time constant (days)
TAU_FATIGUE: Final[float] = 7.0  # ATL time constant (days)
DAYS_PER_WEEK: Final[int] = 7

# =============================================================================
# GOALS
# =============================================================================

MIN_GOAL_PRIORITY: Final[int] = 1  # Highest priority ("A" goal)
MAX_GOAL_PRIORITY: Final[int] = 10  # Lowest priority
DEFAULT_GOAL_PRIORITY: Final[int] = 1

# =============================================================================
# SAFETY CAPS
# =============================================================================

ABSOLUTE_MAX_WEEKLY_TSS_RAMP_PCT: Final[float] = 40.0
ABSOLUTE_MAX_CTL_RAMP_PER_WEEK: Final[float] = 12.0
MAX_POST_GOAL_RECOVERY_DAYS: Final[int] = 28
CTL_RAMP_BISECTION_STEPS: Final[int] = 20
DEFAULT_OPTIMIZATION_PROFILE: Final[str] = "balanced"


@dataclass(frozen=True)
class ProfileParams:
    """Behaviour attached to one optimization profile."""

    post_goal_recovery_days: int
    max_weekly_tss_ramp_pct: float
    max_ctl_ramp_per_week: float
    horizon_weeks: int  # Hard ceiling on optimizer lookahead
    candidate_count: int  # Hard ceiling on lattice size
    lattice_span: float  # Relative half-width of the candidate lattice
    monotony_multiplier: float
    strain_multiplier: float


PROFILE_PARAMS: Final[dict[str, ProfileParams]] = {
    "sustainable": ProfileParams(
        post_goal_recovery_days=7,
        max_weekly_tss_ramp_pct=5.0,
        max_ctl_ramp_per_week=2.0,
        horizon_weeks=2,
        candidate_count=5,
        lattice_span=0.08,
        monotony_multiplier=1.4,
        strain_multiplier=1.4,
    ),
    "balanced": ProfileParams(
        post_goal_recovery_days=5,
        max_weekly_tss_ramp_pct=7.0,
        max_ctl_ramp_per_week=3.0,
        horizon_weeks=4,
        candidate_count=9,
        lattice_span=0.12,
        monotony_multiplier=1.0,
        strain_multiplier=1.0,
    ),
    "outcome_first": ProfileParams(
        post_goal_recovery_days=3,
        max_weekly_tss_ramp_pct=10.0,
        max_ctl_ramp_per_week=5.0,
        horizon_weeks=6,
        candidate_count=13,
        lattice_span=0.18,
        monotony_multiplier=0.7,
        strain_multiplier=0.7,
    ),
}

# =============================================================================
# WEEK PATTERNS
# =============================================================================

EVENT_MULTIPLIER_BASE: Final[float] = 0.82  # Priority-1 goal inside the week
EVENT_MULTIPLIER_PRIORITY_SPAN: Final[float] = 0.08
TAPER_MULTIPLIER_BASE: Final[float] = 0.90  # Priority-1 goal in the next 7 days
TAPER_MULTIPLIER_PRIORITY_SPAN: Final[float] = 0.06
TAPER_WINDOW_DAYS: Final[int] = 7
DELOAD_EVERY_N_WEEKS: Final[int] = 4  # Rhythm marker only; no load multiplier
RECOVERY_REDUCTION_SLOPE: Final[float] = 0.35  # factor = 1 - slope * coverage

PHASE_TO_PATTERN: Final[dict[str, str]] = {
    "base": "base",
    "build": "build",
    "peak": "build",
    "taper": "taper",
    "recovery": "recovery",
}

# =============================================================================
# WEEKLY LOAD COMPOSER
# =============================================================================

# Rolling composition: (9 * previous + 5 * block midpoint + 1 * demand) / 15
ROLLING_WEIGHT_PREVIOUS: Final[int] = 9
ROLLING_WEIGHT_BLOCK: Final[int] = 5
ROLLING_WEIGHT_DEMAND: Final[int] = 1

DYNAMIC_SEED_FRACTION: Final[float] = 0.85  # Near-term demand seed when CTL is absent

DEMAND_RHYTHM_EVENT: Final[float] = 0.62
DEMAND_RHYTHM_RECOVERY: Final[float] = 0.72
DEMAND_RHYTHM_TAPER: Final[tuple[float, float, float]] = (0.70, 0.80, 0.88)
DEMAND_RHYTHM_DELOAD: Final[float] = 0.82
DEMAND_RHYTHM_WAVE: Final[tuple[float, float, float]] = (0.90, 1.00, 1.08)

# =============================================================================
# NO-HISTORY FLOORS
# =============================================================================

NO_HISTORY_CTL_FLOOR_MATRIX: Final[dict[str, dict[str, float]]] = {
    "weak": {"low": 20.0, "medium": 28.0, "high": 35.0},
    "strong": {"low": 30.0, "medium": 40.0, "high": 50.0},
}
NO_HISTORY_TARGET_EVENT_CTL_FACTOR: Final[float] = 1.85
NO_HISTORY_TARGET_EVENT_CTL_MIN: Final[float] = 35.0
NO_HISTORY_TARGET_EVENT_CTL_MAX: Final[float] = 95.0
NO_HISTORY_DEFAULT_STARTING_CTL: Final[float] = 0.0
STRONG_SIGNAL_QUALITY: Final[float] = 0.8  # signal_quality counted as strong
STRONG_SIGNALS_FOR_PROMOTION: Final[int] = 2

NO_HISTORY_INTENSITY_MODEL_VERSION: Final[str] = "no_history_intensity_v1"
NO_HISTORY_WEAK_IF: Final[float] = 0.68
NO_HISTORY_STRONG_IF: Final[float] = 0.75
NO_HISTORY_CONSERVATIVE_IF: Final[float] = 0.65

# (full, limited) minimum weeks of build time per goal tier
BUILD_TIME_THRESHOLDS: Final[dict[str, tuple[int, int]]] = {
    "high": (16, 12),
    "medium": (12, 8),
    "low": (8, 6),
}
LONG_HORIZON_WEEKS: Final[int] = 52
GOAL_TIER_HIGH_DISTANCE_M: Final[float] = 30000.0
GOAL_TIER_MEDIUM_DISTANCE_M: Final[float] = 10000.0

EVIDENCE_BASE_BY_STATE: Final[dict[str, float]] = {
    "none": 0.20,
    "sparse": 0.45,
    "stale": 0.35,
    "rich": 0.80,
}
EVIDENCE_MIN_BY_STATE: Final[dict[str, float]] = {
    "none": 0.35,
    "sparse": 0.30,
    "stale": 0.25,
    "rich": 0.50,
}
EVIDENCE_DEFAULT_SIGNAL_QUALITY: Final[float] = 0.4
EVIDENCE_EFFORT_MARKER_DELTA: Final[float] = 0.08
EVIDENCE_PROFILE_MARKER_DELTA: Final[float] = 0.06
DEFAULT_EVIDENCE_CONFIDENCE: Final[float] = 0.25  # No no-history context at all

# Continuous goal-demand model (CTL units)
DEMAND_DISTANCE_CTL_BASE: Final[float] = 28.0
DEMAND_DISTANCE_CTL_SCALE: Final[float] = 13.0
DEMAND_PACE_REFERENCE_KPH: Final[float] = 9.5
DEMAND_PACE_BOOST_PER_KPH: Final[float] = 3.2
DEMAND_PACE_BOOST_CAP: Final[float] = 24.0
DEMAND_TIER_BIAS_CTL: Final[float] = 4.0
DEMAND_PACE_THRESHOLD_CTL: Final[float] = 56.0
DEMAND_POWER_THRESHOLD_CTL: Final[float] = 60.0
DEMAND_HR_THRESHOLD_CTL: Final[float] = 54.0
DEMAND_NO_TARGET_BASE_CTL: Final[float] = 48.0
DEMAND_NO_TARGET_TIER_STEP: Final[float] = 8.0
DEMAND_EVENT_CTL_MIN: Final[float] = 35.0
DEMAND_EVENT_CTL_MAX: Final[float] = 110.0
DEMAND_BAND_LOW: Final[float] = 0.85
DEMAND_BAND_STRETCH: Final[float] = 1.15
DEMAND_DISTANCE_KM_BOUNDS: Final[tuple[float, float]] = (1.0, 100.0)
DEMAND_RACE_WEIGHT_DISTANCE_KM: Final[float] = 60.0  # weight = 1 + min(0.8, km / 60)
DEMAND_RACE_WEIGHT_DISTANCE_CAP: Final[float] = 0.8
DEMAND_RACE_WEIGHT_PACE_BONUS: Final[float] = 0.25
DEMAND_THRESHOLD_WEIGHTS: Final[dict[str, float]] = {
    "pace_threshold": 1.0,
    "power_threshold": 1.05,
    "hr_threshold": 0.95,
}
DEMAND_MAX_SHARE: Final[float] = 0.7  # demand = 0.7 * max + 0.3 * weighted mean

# Horizon pressure: clamp((20 - weeks) / 20, -0.35, 0.7), demand x (1 + p * 0.12)
DEMAND_HORIZON_REFERENCE_WEEKS: Final[float] = 20.0
DEMAND_HORIZON_PRESSURE_BOUNDS: Final[tuple[float, float]] = (-0.35, 0.7)
DEMAND_HORIZON_MULTIPLIER_SCALE: Final[float] = 0.12
DEMAND_HORIZON_SHORT_THRESHOLD: Final[float] = 0.25
DEMAND_HORIZON_EXTENDED_THRESHOLD: Final[float] = -0.1
DEMAND_CONFIDENCE_WEEKS: Final[tuple[int, int]] = (16, 10)  # high, medium

# Confidence floor implied by how demanding the event is
DEMAND_CONFIDENCE_CTL_ORIGIN: Final[float] = 45.0
DEMAND_CONFIDENCE_CTL_SPAN: Final[float] = 55.0
DEMAND_CONFIDENCE_BASE: Final[float] = 0.5
DEMAND_CONFIDENCE_SLOPE: Final[float] = 0.38
DEMAND_CONFIDENCE_PACE_BONUS: Final[float] = 0.04
DEMAND_CONFIDENCE_CAP: Final[float] = 0.94

# =============================================================================
# OPTIMIZER
# =============================================================================

LOOKAHEAD_WEEKS_BOUNDS: Final[tuple[int, int]] = (1, 8)
CANDIDATE_STEPS_BOUNDS: Final[tuple[int, int]] = (3, 15)

PROJECTION_CONTROL_DEFAULTS: Final[dict[str, float]] = {
    "ambition": 0.5,
    "risk_tolerance": 0.4,
    "curvature": 0.0,
    "curvature_strength": 0.35,
}

# Control -> weight multipliers as (value at 0, value at 1) for lerp
CONTROL_PREPAREDNESS_RANGE: Final[tuple[float, float]] = (0.75, 1.65)  # by ambition
CONTROL_RISK_RANGE: Final[tuple[float, float]] = (1.8, 0.35)  # by risk tolerance
CONTROL_VOLATILITY_RANGE: Final[tuple[float, float]] = (1.45, 0.5)
CONTROL_CHURN_RANGE: Final[tuple[float, float]] = (1.3, 0.55)

CURVATURE_WEIGHT_MAX: Final[float] = 18.0
CURVATURE_TARGET_SCALE: Final[float] = 0.18
CURVATURE_HORIZON_DECAY: Final[float] = 0.04  # Envelope loss per lookahead week
CURVATURE_HORIZON_FLOOR: Final[float] = 0.35
CURVATURE_SCALE_FLOOR: Final[float] = 20.0  # Second differences divided by max(20, ref * 0.12)
CURVATURE_SCALE_FRACTION: Final[float] = 0.12
CURVATURE_PHASE_WEIGHTS: Final[dict[str, float]] = {
    "ramp": 1.0,
    "deload": 0.45,
    "taper": 0.15,
    "event": 0.10,
    "recovery": 0.08,
}

PENALTY_WEIGHT_SCALE: Final[float] = 10.0  # Calibration penalty weights -> objective units
READINESS_TERM_FRACTION: Final[float] = 0.5  # w_readiness = fraction * w_goal
OVERLOAD_TSB_THRESHOLD: Final[float] = 20.0  # TSB below -threshold starts to count
OVERLOAD_TSB_SCALE: Final[float] = 30.0
VOLATILITY_SCALE: Final[float] = 0.25  # Relative week-over-week change = full penalty
CHURN_SCALE: Final[float] = 0.25  # Relative departure from composer seed = full penalty
OPTIMIZER_MONOTONY_WEIGHT: Final[float] = 0.15  # Before profile multiplier and weight scale
OPTIMIZER_STRAIN_WEIGHT: Final[float] = 0.10
NO_GOAL_SORT_DATE: Final[str] = "9999-12-31"  # Tie-break date for candidates without a goal

# =============================================================================
# TARGET SCORING
# =============================================================================

CAPABILITY_EXPONENT: Final[float] = 0.25  # performance ~ (ctl / required_ctl)^k
SCORE_SIGMA_BASE: Final[float] = 0.03
SCORE_SIGMA_CONFIDENCE_SPAN: Final[float] = 0.07
SCORE_TOLERANCE_MIN: Final[float] = 0.02
SCORE_TOLERANCE_SIGMA_MULT: Final[float] = 1.5
IMPLAUSIBLE_SCORE_CAP: Final[float] = 35.0
INFERRED_CAPABILITY_BASE: Final[float] = 0.85  # ratio at readiness 0
INFERRED_CAPABILITY_SPAN: Final[float] = 0.30  # ratio at readiness 100 = base + span
INFERRED_CONFIDENCE_FACTOR: Final[float] = 0.6

# Plausibility: reference run time for 5 km, Riegel exponent for other distances
PLAUSIBLE_RUN_5K_TIME_S: Final[float] = 760.0
PLAUSIBLE_RIEGEL_EXPONENT: Final[float] = 1.06
PLAUSIBLE_SPEED_FACTORS: Final[dict[str, float]] = {
    "run": 1.0,
    "bike": 2.6,
    "swim": 0.3,
    "other": 2.6,
}
PLAUSIBLE_POWER_1H_WATTS: Final[float] = 520.0
PLAUSIBLE_POWER_EXPONENT: Final[float] = 0.07
PLAUSIBLE_LTHR_RANGE: Final[tuple[float, float]] = (120.0, 210.0)

# =============================================================================
# GOAL DIFFICULTY INDEX
# =============================================================================

GDI_WEIGHTS: Final[dict[str, float]] = {
    "performance_gap": 0.55,
    "load_gap": 0.35,
    "timeline_pressure": 0.30,
    "sparsity_penalty": 0.25,
}
GDI_PERFORMANCE_GAP_SCALE: Final[float] = 0.12  # Difficulty ratio excess for PG = 1

# Upper bounds (exclusive) of each band, in order
GDI_BAND_THRESHOLDS: Final[tuple[tuple[float, str], ...]] = (
    (0.30, "feasible"),
    (0.50, "stretch"),
    (0.75, "aggressive"),
    (0.90, "nearly_impossible"),
)
GDI_TOP_BAND: Final[str] = "infeasible"

# =============================================================================
# READINESS
# =============================================================================

STATE_WEIGHT: Final[float] = 0.55
ATTAINMENT_WEIGHT: Final[float] = 0.45
ALIGNMENT_PENALTY_WEIGHT: Final[float] = 0.2

READINESS_BAND_HIGH: Final[int] = 75
READINESS_BAND_MEDIUM: Final[int] = 55

FORM_SIGNAL_WEIGHT: Final[float] = 0.5
FITNESS_SIGNAL_WEIGHT: Final[float] = 0.3
FATIGUE_SIGNAL_WEIGHT: Final[float] = 0.2
PROGRESSIVE_FITNESS_EXPONENT: Final[float] = 1.35
PROGRESSIVE_FITNESS_WEIGHT: Final[float] = 0.7
ABSOLUTE_FITNESS_WEIGHT: Final[float] = 0.3
ABSOLUTE_FITNESS_REFERENCE_CTL: Final[float] = 100.0

ENVELOPE_REFERENCE_FLOOR_TSS: Final[float] = 140.0
ENVELOPE_HIGH_FACTOR: Final[float] = 1.35
ENVELOPE_LOW_FACTOR: Final[float] = 0.5
ENVELOPE_MAX_RAMP: Final[float] = 0.10
ENVELOPE_GROWTH_BASE: Final[float] = 0.05
ENVELOPE_GROWTH_CONFIDENCE_SPAN: Final[float] = 0.03
ENVELOPE_OUTSIDE_RATIO: Final[float] = 0.5
ENVELOPE_OUTSIDE_SCORE: Final[int] = 70

DURABILITY_WINDOW_WEEKS: Final[int] = 4
MONOTONY_CAP: Final[float] = 10.0
DELOAD_GRACE_WEEKS: Final[int] = 3
DURABILITY_LOW_SCORE: Final[int] = 60
ATTAINMENT_LOW_SCORE: Final[int] = 50

# =============================================================================
# EVENT RECOVERY
# =============================================================================

RACE_RECOVERY_DAYS_PER_HOUR: Final[float] = 3.5
RACE_RECOVERY_DAYS_BOUNDS: Final[tuple[float, float]] = (2.0, 28.0)
RACE_FUNCTIONAL_RECOVERY_FRACTION: Final[float] = 0.4
RACE_ATL_SPIKE_PER_HOUR: Final[float] = 0.15
RACE_ATL_SPIKE_CAP: Final[float] = 2.5

# (min duration in hours, exclusive; base intensity), longest first
RACE_INTENSITY_BY_DURATION: Final[tuple[tuple[float, int], ...]] = (
    (24.0, 70),
    (12.0, 75),
    (6.0, 80),
    (3.0, 85),
    (1.0, 90),
)
RACE_INTENSITY_SHORT: Final[int] = 95
RACE_INTENSITY_ACTIVITY_FACTORS: Final[dict[str, float]] = {
    "run": 1.0,
    "bike": 0.9,
    "swim": 0.95,
    "other": 0.85,
}

# Typical race speeds used when a race target has no target time
DEFAULT_RACE_SPEED_KPH: Final[dict[str, float]] = {
    "run": 10.0,
    "bike": 28.0,
    "swim": 3.0,
    "other": 20.0,
}

TEST_RECOVERY_BASE_DAYS: Final[float] = 3.0  # Pace/power threshold tests
TEST_RECOVERY_DAYS_PER_HOUR: Final[float] = 2.0
TEST_FUNCTIONAL_RECOVERY_FRACTION: Final[float] = 0.35
TEST_FATIGUE_INTENSITY: Final[int] = 75
TEST_ATL_SPIKE: Final[float] = 1.2

HR_TEST_RECOVERY_DAYS: Final[tuple[int, int]] = (3, 1)  # (full, functional)
HR_TEST_FATIGUE_INTENSITY: Final[int] = 65
HR_TEST_ATL_SPIKE: Final[float] = 1.1

POST_EVENT_BASE_PENALTY_FRACTION: Final[float] = 0.5  # Of fatigue intensity
POST_EVENT_ATL_OVERLOAD_SCALE: Final[float] = 30.0
POST_EVENT_PENALTY_CAP: Final[float] = 60.0

# =============================================================================
# CALIBRATION DEFAULTS (mirrored in calibration.yaml)
# =============================================================================

CALIBRATION_DEFAULTS: Final[dict[str, dict[str, float]]] = {
    "readiness_composite": {
        "target_attainment_weight": 0.45,
        "envelope_weight": 0.30,
        "durability_weight": 0.15,
        "evidence_weight": 0.10,
    },
    "readiness_timeline": {
        "target_tsb": 8.0,
        "form_tolerance": 20.0,
        "fatigue_overflow_scale": 0.4,
        "feasibility_blend_weight": 0.15,
        "smoothing_iterations": 60,
        "smoothing_lambda": 0.42,
        "max_step_delta": 6.0,
    },
    "envelope_penalties": {
        "over_high_weight": 0.55,
        "under_low_weight": 0.20,
        "over_ramp_weight": 0.35,
    },
    "durability_penalties": {
        "monotony_threshold": 4.0,
        "monotony_scale": 6.0,
        "strain_threshold": 900.0,
        "strain_scale": 900.0,
        "deload_debt_scale": 6.0,
    },
    "no_history": {
        "reliability_horizon_days": 42,
        "confidence_floor_high": 0.75,
        "confidence_floor_mid": 0.60,
        "confidence_floor_low": 0.45,
        "demand_tier_time_pressure_scale": 1.0,
    },
    "optimizer": {
        "preparedness_weight": 14.0,
        "risk_penalty_weight": 0.35,
        "volatility_penalty_weight": 0.22,
        "churn_penalty_weight": 0.20,
        "lookahead_weeks": 5,
        "candidate_steps": 7,
    },
}

# Inclusive (min, max) for every calibration field; out-of-range input is clamped
CALIBRATION_BOUNDS: Final[dict[str, dict[str, tuple[float, float]]]] = {
    "readiness_composite": {
        "target_attainment_weight": (0.0, 1.0),
        "envelope_weight": (0.0, 1.0),
        "durability_weight": (0.0, 1.0),
        "evidence_weight": (0.0, 1.0),
    },
    "readiness_timeline": {
        "target_tsb": (-30.0, 40.0),
        "form_tolerance": (1.0, 60.0),
        "fatigue_overflow_scale": (0.05, 2.0),
        "feasibility_blend_weight": (0.0, 1.0),
        "smoothing_iterations": (0, 120),
        "smoothing_lambda": (0.0, 2.0),
        "max_step_delta": (1.0, 50.0),
    },
    "envelope_penalties": {
        "over_high_weight": (0.0, 3.0),
        "under_low_weight": (0.0, 3.0),
        "over_ramp_weight": (0.0, 3.0),
    },
    "durability_penalties": {
        "monotony_threshold": (1.0, 10.0),
        "monotony_scale": (0.1, 10.0),
        "strain_threshold": (0.0, 5000.0),
        "strain_scale": (1.0, 5000.0),
        "deload_debt_scale": (1.0, 20.0),
    },
    "no_history": {
        "reliability_horizon_days": (7, 112),
        "confidence_floor_high": (0.0, 1.0),
        "confidence_floor_mid": (0.0, 1.0),
        "confidence_floor_low": (0.0, 1.0),
        "demand_tier_time_pressure_scale": (0.0, 3.0),
    },
    "optimizer": {
        "preparedness_weight": (0.0, 50.0),
        "risk_penalty_weight": (0.0, 5.0),
        "volatility_penalty_weight": (0.0, 5.0),
        "churn_penalty_weight": (0.0, 5.0),
        "lookahead_weeks": (1, 8),
        "candidate_steps": (3, 15),
    },
}

INTEGER_CALIBRATION_FIELDS: Final[frozenset[str]] = frozenset(
    {"smoothing_iterations", "reliability_horizon_days", "lookahead_weeks", "candidate_steps"}
)
COMPOSITE_WEIGHT_TOLERANCE: Final[float] = 1e-6


def get_profile_params(profile: str) -> ProfileParams:
    """
    Look up the behaviour table entry for an optimization profile.

    Unknown names fall back to the default profile.

    Args:
        profile: Profile name (sustainable, balanced, outcome_first)

    Returns:
        ProfileParams for the profile
    """
    return PROFILE_PARAMS.get(profile, PROFILE_PARAMS[DEFAULT_OPTIMIZATION_PROFILE])


def weekly_tss_from_ctl(ctl: float) -> int:
    """Steady-state weekly TSS that holds CTL constant: round(ctl * 7)."""
    return int(round(ctl * DAYS_PER_WEEK))


def normalize_priority(priority: float | None) -> int:
    """Round and clamp a goal priority into [1, 10]; missing -> 1."""
    if priority is None or priority != priority:
        return DEFAULT_GOAL_PRIORITY
    return max(MIN_GOAL_PRIORITY, min(MAX_GOAL_PRIORITY, int(round(priority))))


def priority_progress(priority: float | None) -> float:
    """
    Position of a priority on the 1..10 scale.

    progress = (priority - 1) / 9, so the "A" goal is 0.0 and the lowest 1.0.
    """
    return (normalize_priority(priority) - MIN_GOAL_PRIORITY) / (
        MAX_GOAL_PRIORITY - MIN_GOAL_PRIORITY
    )


def priority_influence_weight(priority: float | None) -> int:
    """Influence weight 11 - priority: the "A" goal weighs 10, the lowest 1."""
    return MAX_GOAL_PRIORITY - normalize_priority(priority) + 1


def optimal_tsb_for_duration(duration_hours: float | None, default: float) -> float:
    """
    Best race-day form for an event of the given duration.

    Shorter events want a fresher athlete:
        < 0.5 h -> 15, < 1.5 h -> 12, < 3 h -> 8, < 5 h -> 5, else 3

    Args:
        duration_hours: Expected event duration; None or <= 0 uses default
        default: Calibrated target TSB

    Returns:
        Target TSB for the event day
    """
    if duration_hours is None or duration_hours <= 0:
        return default
    if duration_hours < 0.5:
        return 15.0
    if duration_hours < 1.5:
        return 12.0
    if duration_hours < 3:
        return 8.0
    if duration_hours < 5:
        return 5.0
    return 3.0
