"""
Data models for load-projector.

Request dataclasses describe the timeline, periodization blocks, goals and
starting state handed to the engine; result dataclasses carry the projected
microcycles, points and scores back out. Dates are ISO ``YYYY-MM-DD`` strings
throughout; arithmetic on them goes through ``datetime.date``.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import ClassVar, Literal

from .config import normalize_priority

ActivityCategory = Literal["run", "bike", "swim", "other"]
BlockPhase = Literal["base", "build", "taper", "peak", "recovery"]
OptimizationProfile = Literal["sustainable", "balanced", "outcome_first"]
PatternName = Literal["base", "build", "taper", "event", "recovery"]
Rhythm = Literal["ramp", "deload"]
HistoryState = Literal["none", "sparse", "stale", "rich"]
GoalTier = Literal["low", "medium", "high"]
FitnessLevel = Literal["weak", "strong"]
ConfidenceLevel = Literal["high", "medium", "low"]
BuildTimeFeasibility = Literal["full", "limited", "insufficient"]
FeasibilityBand = Literal[
    "feasible", "stretch", "aggressive", "nearly_impossible", "infeasible"
]
ReadinessBand = Literal["high", "medium", "low"]
EnvelopeState = Literal["inside", "edge", "outside"]
SeedSource = Literal["starting_ctl", "baseline_fallback", "dynamic_demand_seed"]
Marker = Literal["low", "moderate", "high"]

ACTIVITY_CATEGORIES: frozenset[str] = frozenset({"run", "bike", "swim", "other"})
BLOCK_PHASES: frozenset[str] = frozenset({"base", "build", "taper", "peak", "recovery"})
HISTORY_STATES: frozenset[str] = frozenset({"none", "sparse", "stale", "rich"})
GOAL_TIERS: frozenset[str] = frozenset({"low", "medium", "high"})


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ProjectionError(Exception):
    """Fatal problem with a projection request; the caller must reject it."""


class CalibrationError(ProjectionError):
    """Calibration overrides violate an invariant (e.g. composite weight sum)."""


class OptimizerError(ProjectionError):
    """The weekly optimizer was asked to do something impossible."""


def parse_iso_date(value: str, name: str = "date") -> date:
    """
    Parse an ISO calendar date.

    Args:
        value: Date string in YYYY-MM-DD format
        name: Field name used in the error message

    Returns:
        Parsed date

    Raises:
        ValueError: If the string is not a valid ISO date
    """
    if not isinstance(value, str) or len(value) != 10:
        raise ValueError(f"{name} must be YYYY-MM-DD, got {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{name} must be YYYY-MM-DD, got {value!r}") from None


# =============================================================================
# TARGETS
# =============================================================================


@dataclass(frozen=True)
class RacePerformanceTarget:
    """Finish a race distance in (at most) a target time."""

    target_type: ClassVar[str] = "race_performance"

    distance_m: float
    target_time_s: float | None = None  # None = "just finish"
    activity_category: ActivityCategory = "run"
    weight: float = 1.0

    def __post_init__(self) -> None:
        if self.distance_m <= 0:
            raise ValueError("distance_m must be positive")
        if self.target_time_s is not None and self.target_time_s <= 0:
            raise ValueError("target_time_s must be positive")
        if self.activity_category not in ACTIVITY_CATEGORIES:
            raise ValueError(f"unknown activity_category: {self.activity_category}")
        if self.weight < 0:
            raise ValueError("weight must be non-negative")

    @property
    def duration_hours(self) -> float | None:
        if self.target_time_s is None:
            return None
        return self.target_time_s / 3600


@dataclass(frozen=True)
class PowerThresholdTarget:
    """Hold a target power for a test duration."""

    target_type: ClassVar[str] = "power_threshold"

    target_watts: float
    test_duration_s: float = 3600.0
    activity_category: ActivityCategory = "bike"
    weight: float = 1.0

    def __post_init__(self) -> None:
        if self.target_watts <= 0:
            raise ValueError("target_watts must be positive")
        if self.test_duration_s <= 0:
            raise ValueError("test_duration_s must be positive")
        if self.activity_category not in ACTIVITY_CATEGORIES:
            raise ValueError(f"unknown activity_category: {self.activity_category}")
        if self.weight < 0:
            raise ValueError("weight must be non-negative")

    @property
    def duration_hours(self) -> float:
        return self.test_duration_s / 3600


@dataclass(frozen=True)
class PaceThresholdTarget:
    """Hold a target speed for a test duration."""

    target_type: ClassVar[str] = "pace_threshold"

    target_speed_mps: float
    test_duration_s: float = 3600.0
    activity_category: ActivityCategory = "run"
    weight: float = 1.0

    def __post_init__(self) -> None:
        if self.target_speed_mps <= 0:
            raise ValueError("target_speed_mps must be positive")
        if self.test_duration_s <= 0:
            raise ValueError("test_duration_s must be positive")
        if self.activity_category not in ACTIVITY_CATEGORIES:
            raise ValueError(f"unknown activity_category: {self.activity_category}")
        if self.weight < 0:
            raise ValueError("weight must be non-negative")

    @property
    def duration_hours(self) -> float:
        return self.test_duration_s / 3600


@dataclass(frozen=True)
class HrThresholdTarget:
    """Reach a lactate-threshold heart rate."""

    target_type: ClassVar[str] = "hr_threshold"

    target_lthr_bpm: float
    weight: float = 1.0

    def __post_init__(self) -> None:
        if self.target_lthr_bpm <= 0:
            raise ValueError("target_lthr_bpm must be positive")
        if self.weight < 0:
            raise ValueError("weight must be non-negative")

    @property
    def duration_hours(self) -> None:
        return None


Target = RacePerformanceTarget | PowerThresholdTarget | PaceThresholdTarget | HrThresholdTarget

TARGET_TYPES: dict[str, type] = {
    RacePerformanceTarget.target_type: RacePerformanceTarget,
    PowerThresholdTarget.target_type: PowerThresholdTarget,
    PaceThresholdTarget.target_type: PaceThresholdTarget,
    HrThresholdTarget.target_type: HrThresholdTarget,
}


def target_sort_key(target: Target) -> tuple:
    """
    Canonical ordering key for targets.

    Two requests whose target lists differ only in order sort to the same
    sequence, which keeps every downstream aggregate order-independent.
    """
    if isinstance(target, RacePerformanceTarget):
        values = (target.distance_m, target.target_time_s or 0.0, target.activity_category)
    elif isinstance(target, PowerThresholdTarget):
        values = (target.target_watts, target.test_duration_s, target.activity_category)
    elif isinstance(target, PaceThresholdTarget):
        values = (target.target_speed_mps, target.test_duration_s, target.activity_category)
    else:
        values = (target.target_lthr_bpm, 0.0, "")
    return (target.target_type, *values, target.weight)


# =============================================================================
# REQUEST
# =============================================================================


@dataclass(frozen=True)
class Timeline:
    """Planning window; ordering of the two dates is checked by the planner."""

    start_date: str
    end_date: str

    def __post_init__(self) -> None:
        parse_iso_date(self.start_date, "timeline.start_date")
        parse_iso_date(self.end_date, "timeline.end_date")


@dataclass(frozen=True)
class TssRange:
    """Inclusive weekly TSS target range of a block."""

    min: float
    max: float

    def __post_init__(self) -> None:
        if self.min < 0 or self.max < 0:
            raise ValueError("target_weekly_tss_range must be non-negative")
        if self.min > self.max:
            raise ValueError("target_weekly_tss_range.min must be <= max")

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2


@dataclass(frozen=True)
class Block:
    """A periodization block."""

    name: str
    phase: BlockPhase
    start_date: str
    end_date: str
    target_weekly_tss_range: TssRange | None = None

    def __post_init__(self) -> None:
        if self.phase not in BLOCK_PHASES:
            raise ValueError(f"unknown block phase: {self.phase}")
        start = parse_iso_date(self.start_date, "block.start_date")
        end = parse_iso_date(self.end_date, "block.end_date")
        if start > end:
            raise ValueError("block.start_date must be <= block.end_date")


@dataclass
class Goal:
    """
    A dated goal with zero or more performance targets.

    Priority 1 is the "A" goal; values are rounded and clamped into 1..10.
    """

    id: str
    name: str
    target_date: str
    priority: int = 1
    targets: list[Target] = field(default_factory=list)

    def __post_init__(self) -> None:
        parse_iso_date(self.target_date, "goal.target_date")
        self.priority = normalize_priority(self.priority)


@dataclass
class CreationConfig:
    """Safety and calibration settings; any field may be left out."""

    optimization_profile: str | None = None
    post_goal_recovery_days: float | None = None
    max_weekly_tss_ramp_pct: float | None = None
    max_ctl_ramp_per_week: float | None = None
    calibration: dict | None = None  # Partial calibration overrides


@dataclass
class ProjectionControl:
    """Semantic knobs mapped onto optimizer weights (clamped, never rejected)."""

    ambition: float = 0.5
    risk_tolerance: float = 0.4
    curvature: float = 0.0  # -1 front-loaded .. +1 back-loaded
    curvature_strength: float = 0.35


@dataclass(frozen=True)
class AvailabilityWindow:
    start_minute_of_day: int
    end_minute_of_day: int

    @property
    def minutes(self) -> int:
        return max(0, self.end_minute_of_day - self.start_minute_of_day)


@dataclass(frozen=True)
class AvailabilityDay:
    day: str  # "monday" .. "sunday"
    windows: tuple[AvailabilityWindow, ...] = ()
    max_sessions: int | None = None


@dataclass(frozen=True)
class Availability:
    """Weekly training availability used to clamp the no-history floor."""

    days: tuple[AvailabilityDay, ...] = ()
    hard_rest_days: tuple[str, ...] = ()
    max_single_session_duration_minutes: float | None = None


@dataclass(frozen=True)
class IntensityModel:
    """Assumed intensity factors; missing values use the conservative model."""

    version: str | None = None
    weak_if: float | None = None
    strong_if: float | None = None
    conservative_if: float | None = None


@dataclass(frozen=True)
class ContextSummary:
    """Behavioural evidence markers gathered outside the engine."""

    signal_quality: float | None = None  # 0..1
    recent_consistency_marker: Marker | None = None
    effort_confidence_marker: Marker | None = None
    profile_metric_completeness_marker: Marker | None = None
    rationale_codes: tuple[str, ...] = ()


@dataclass
class NoHistoryContext:
    """Inputs for the no-history floor resolver."""

    history_availability_state: HistoryState = "none"
    goal_tier: GoalTier | None = None  # Derived from targets when absent
    weeks_to_event: float | None = None  # Derived from the timeline when absent
    context_summary: ContextSummary = field(default_factory=ContextSummary)
    availability: Availability | None = None
    intensity_model: IntensityModel | None = None
    starting_ctl_override: float | None = None

    def __post_init__(self) -> None:
        if self.history_availability_state not in HISTORY_STATES:
            raise ValueError(
                f"unknown history_availability_state: {self.history_availability_state}"
            )
        if self.goal_tier is not None and self.goal_tier not in GOAL_TIERS:
            raise ValueError(f"unknown goal_tier: {self.goal_tier}")


@dataclass
class ProjectionRequest:
    """Everything the orchestrator needs to build a projection."""

    timeline: Timeline
    blocks: list[Block] = field(default_factory=list)
    goals: list[Goal] = field(default_factory=list)
    starting_ctl: float | None = None
    starting_atl: float | None = None
    starting_tsb: float | None = None
    baseline_weekly_tss: float | None = None
    creation_config: CreationConfig | None = None
    projection_control: ProjectionControl | None = None
    no_history: NoHistoryContext | None = None
    disable_weekly_tss_optimizer: bool = False


# =============================================================================
# CONSTRAINT RESOLUTION
# =============================================================================


@dataclass
class CreationConstraints:
    """User-facing plan constraints; None means "not provided"."""

    weekly_load_floor_tss: float | None = None
    weekly_load_cap_tss: float | None = None
    hard_rest_days: list[str] | None = None
    min_sessions_per_week: int | None = None
    max_sessions_per_week: int | None = None
    max_single_session_duration_minutes: float | None = None
    goal_difficulty_preference: str | None = None


@dataclass(frozen=True)
class ConstraintConflict:
    code: str
    severity: Literal["blocking", "warning"]
    message: str
    field_paths: tuple[str, ...]
    suggestions: tuple[str, ...]


@dataclass(frozen=True)
class ConstraintResolution:
    resolved_constraints: CreationConstraints
    conflicts: tuple[ConstraintConflict, ...]
    is_blocking: bool
    precedence: dict[str, str]  # field -> "user" | "suggested" | "default"


# =============================================================================
# INTERMEDIATE RESULTS
# =============================================================================


@dataclass(frozen=True)
class FitnessState:
    """
    State of the fitness-fatigue impulse response model.
    """

    ctl: float = 0.0  # Chronic training load ("fitness")
    atl: float = 0.0  # Acute training load ("fatigue")

    @property
    def tsb(self) -> float:
        """Training stress balance ("form") = CTL - ATL."""
        return self.ctl - self.atl


@dataclass(frozen=True)
class ProjectionSeed:
    """Starting state and week-0 load the rolling composer starts from."""

    state: FitnessState
    seed_weekly_tss: float
    seed_source: SeedSource
    baseline_weekly_tss: float  # Effective baseline seen by the composer
    is_prior: bool  # Seeded from a no-history floor, not an observation


@dataclass(frozen=True)
class SafetyConfig:
    """Normalized creation config with profile defaults filled in."""

    optimization_profile: OptimizationProfile
    post_goal_recovery_days: int
    max_weekly_tss_ramp_pct: float
    max_ctl_ramp_per_week: float


@dataclass(frozen=True)
class WeekPattern:
    pattern: PatternName
    multiplier: float
    rhythm: Rhythm
    dominant_goal_id: str | None = None
    goal_influenced: bool = False


@dataclass(frozen=True)
class GoalMarker:
    id: str
    name: str
    target_date: str
    priority: int


@dataclass(frozen=True)
class RecoverySegment:
    goal_id: str
    goal_name: str
    start_date: str
    end_date: str


@dataclass(frozen=True)
class DemandBand:
    min: float
    target: float
    stretch: float


@dataclass(frozen=True)
class EvidenceWeighting:
    score: float  # 0..1
    state: HistoryState
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class FloorValues:
    start_ctl: float
    start_weekly_tss: int


@dataclass(frozen=True)
class DemandGap:
    required_weekly_tss_target: float
    feasible_weekly_tss_applied: float
    unmet_weekly_tss: float
    unmet_ratio: float


@dataclass(frozen=True)
class FeasibilityComponents:
    load_state: float
    intensity_balance: float
    specificity: float
    execution_confidence: float


@dataclass(frozen=True)
class ProjectionUncertainty:
    tss_low: float
    tss_likely: float
    tss_high: float
    confidence: float


@dataclass(frozen=True)
class FeasibilityMetadata:
    demand_gap: DemandGap
    readiness_band: ReadinessBand
    dominant_limiters: tuple[str, ...]
    readiness_score: int
    readiness_components: FeasibilityComponents
    projection_uncertainty: ProjectionUncertainty
    readiness_rationale_codes: tuple[str, ...]


@dataclass(frozen=True)
class NoHistoryAnchor:
    """Resolved no-history floor; an inactive anchor has every field unset."""

    projection_floor_applied: bool = False
    projection_floor_values: FloorValues | None = None
    fitness_level: FitnessLevel | None = None
    fitness_inference_reasons: tuple[str, ...] = ()
    projection_floor_confidence: ConfidenceLevel | None = None
    floor_clamped_by_availability: bool = False
    projection_floor_tier: GoalTier | None = None
    starting_state_is_prior: bool = False
    target_event_ctl: float | None = None
    weeks_to_event: int | None = None
    periodization_feasibility: BuildTimeFeasibility | None = None
    build_phase_warnings: tuple[str, ...] = ()
    assumed_intensity_model_version: str | None = None
    starting_ctl_for_projection: float | None = None
    starting_weekly_tss_for_projection: int | None = None
    required_event_demand_range: DemandBand | None = None
    required_peak_weekly_tss: DemandBand | None = None
    evidence_confidence: EvidenceWeighting | None = None
    demand_confidence: ConfidenceLevel | None = None
    projection_feasibility: FeasibilityMetadata | None = None


# =============================================================================
# MICROCYCLES AND POINTS
# =============================================================================


@dataclass(frozen=True)
class RecoveryMetadata:
    active: bool
    goal_ids: tuple[str, ...]
    reduction_factor: float
    coverage: float


@dataclass(frozen=True)
class RollingBaseComponents:
    previous_week_tss: float
    block_midpoint_tss: float
    demand_floor_tss: float | None
    rationale_codes: tuple[str, ...]


@dataclass(frozen=True)
class TssRampMetadata:
    previous_week_tss: float
    seed_weekly_tss: float
    seed_source: SeedSource
    rolling_base_weekly_tss: float
    rolling_base_components: RollingBaseComponents
    requested_weekly_tss: float  # After pattern, recovery and demand floor
    raw_requested_weekly_tss: float  # Before the demand floor
    applied_weekly_tss: float
    max_weekly_tss_ramp_pct: float
    max_allowed_weekly_tss: float
    clamped: bool  # requested_weekly_tss > max_allowed_weekly_tss
    floor_override_applied: bool
    floor_minimum_weekly_tss: float | None
    demand_band_minimum_weekly_tss: float | None
    demand_gap_unmet_weekly_tss: float
    weekly_load_override_reason: str | None


@dataclass(frozen=True)
class CtlRampMetadata:
    requested_ctl_ramp: float
    applied_ctl_ramp: float
    max_ctl_ramp_per_week: float
    clamped: bool  # requested_ctl_ramp > max_ctl_ramp_per_week


@dataclass(frozen=True)
class WeekMetadata:
    recovery: RecoveryMetadata
    tss_ramp: TssRampMetadata
    ctl_ramp: CtlRampMetadata
    seed_source: SeedSource


@dataclass(frozen=True)
class Microcycle:
    """One planned week. Built once per run and never mutated."""

    index: int
    week_start_date: str
    week_end_date: str
    phase: str  # Owning block name
    block_phase: str
    pattern: PatternName
    rhythm: Rhythm
    pattern_multiplier: float
    planned_weekly_tss: float
    projected_ctl: float
    projected_atl: float
    projected_tsb: float
    metadata: WeekMetadata


@dataclass(frozen=True)
class ProjectionPoint:
    date: str
    predicted_load_tss: float
    predicted_fitness_ctl: float
    predicted_fatigue_atl: float
    predicted_form_tsb: float
    readiness_score: int = 0


# =============================================================================
# SCORES
# =============================================================================


@dataclass(frozen=True)
class TargetScore:
    target_type: str
    score_0_100: float
    attainment_probability: float  # 0..1
    difficulty_ratio: float  # required / projected
    required_value: float
    projected_value: float
    unit: str
    rationale_codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class GoalAssessment:
    goal_id: str
    priority: int
    target_scores: tuple[TargetScore, ...]
    goal_readiness_score: float
    state_readiness_score: float
    target_attainment_score: float
    goal_alignment_loss_0_100: float
    post_event_fatigue_penalty: float
    rationale_codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class GdiComponents:
    performance_gap: float
    load_gap: float
    timeline_pressure: float
    sparsity_penalty: float


@dataclass(frozen=True)
class GoalGdi:
    goal_id: str
    priority: int
    gdi: float
    feasibility_band: FeasibilityBand
    components: GdiComponents


@dataclass(frozen=True)
class PlanGdi:
    gdi: float
    feasibility_band: FeasibilityBand
    dominant_goal_id: str | None = None


@dataclass(frozen=True)
class CapacityEnvelope:
    envelope_score: int
    envelope_state: EnvelopeState
    limiting_factors: tuple[str, ...]
    over_high_ratio: float
    under_low_ratio: float
    over_ramp_ratio: float
    reference_weekly_tss: float


@dataclass(frozen=True)
class DurabilityScore:
    durability_score: int
    monotony: float
    strain: float
    deload_debt_weeks: int
    rationale_codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompositeReadiness:
    readiness_score: int
    readiness_confidence: int
    readiness_band: ReadinessBand
    rationale_codes: tuple[str, ...]


# =============================================================================
# PAYLOAD
# =============================================================================


@dataclass(frozen=True)
class StartingState:
    starting_ctl: float
    starting_atl: float
    starting_tsb: float
    starting_state_is_prior: bool


@dataclass(frozen=True)
class ConstraintSummary:
    normalized_creation_config: SafetyConfig
    tss_ramp_clamp_weeks: int
    ctl_ramp_clamp_weeks: int
    recovery_weeks: int
    starting_state: StartingState


@dataclass(frozen=True)
class OptimizerSummary:
    enabled: bool
    applied: bool  # Optimized loads ended up in the payload
    fallback_to_naive: bool
    changed_weeks: int
    lookahead_weeks: int
    candidate_steps: int
    naive_goal_readiness: float
    optimized_goal_readiness: float


@dataclass(frozen=True)
class ProjectionPayload:
    """Full projection result. Serializable with dataclasses.asdict."""

    start_date: str
    end_date: str
    points: tuple[ProjectionPoint, ...]
    microcycles: tuple[Microcycle, ...]
    goal_markers: tuple[GoalMarker, ...]
    goal_assessments: tuple[GoalAssessment, ...]
    recovery_segments: tuple[RecoverySegment, ...]
    constraint_summary: ConstraintSummary
    capacity_envelope: CapacityEnvelope
    durability: DurabilityScore
    readiness_score: int
    readiness_confidence: int
    readiness_band: ReadinessBand
    readiness_rationale_codes: tuple[str, ...]
    plan_gdi: PlanGdi
    goal_gdis: tuple[GoalGdi, ...]
    no_history: NoHistoryAnchor
    optimizer: OptimizerSummary
    risk_flags: tuple[str, ...]
