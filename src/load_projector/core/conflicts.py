"""
Constraint-conflict resolution for plan creation.

Each constraint field is resolved with a fixed precedence:

    1. locked user value
    2. user value
    3. confirmed suggestion
    4. default

The resolved set is then checked against the athlete's available training
days and baseline load. Conflicts are reported, never auto-fixed.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from .models import ConstraintConflict, ConstraintResolution, CreationConstraints

DEFAULT_CONSTRAINTS = CreationConstraints(
    weekly_load_floor_tss=120,
    weekly_load_cap_tss=260,
    hard_rest_days=["wednesday", "friday", "sunday"],
    min_sessions_per_week=3,
    max_sessions_per_week=4,
    max_single_session_duration_minutes=90,
    goal_difficulty_preference="conservative",
)

CONSTRAINT_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(CreationConstraints))


@dataclass(frozen=True)
class _Rule:
    code: str
    message: str
    field_paths: tuple[str, ...]
    suggestions: tuple[str, ...]


_RULES: dict[str, _Rule] = {
    rule.code: rule
    for rule in (
        _Rule(
            "weekly_load_floor_exceeds_cap",
            "Weekly load floor exceeds weekly load cap",
            ("constraints.weekly_load_floor_tss", "constraints.weekly_load_cap_tss"),
            (
                "Lower weekly load floor",
                "Raise weekly load cap",
                "Unlock one of the load bound fields",
            ),
        ),
        _Rule(
            "min_sessions_exceeds_max",
            "Minimum sessions exceed maximum sessions",
            ("constraints.min_sessions_per_week", "constraints.max_sessions_per_week"),
            ("Lower minimum sessions", "Raise maximum sessions"),
        ),
        _Rule(
            "min_sessions_exceeds_available_days",
            "Minimum sessions exceed available training days from availability/rest constraints",
            (
                "constraints.min_sessions_per_week",
                "availability_config.days",
                "constraints.hard_rest_days",
            ),
            (
                "Reduce minimum sessions",
                "Increase available training days",
                "Relax hard rest day constraints",
            ),
        ),
        _Rule(
            "max_sessions_exceeds_available_days",
            "Maximum sessions exceed available training days from availability/rest constraints",
            (
                "constraints.max_sessions_per_week",
                "availability_config.days",
                "constraints.hard_rest_days",
            ),
            (
                "Reduce maximum sessions",
                "Increase available training days",
                "Relax hard rest day constraints",
            ),
        ),
        _Rule(
            "baseline_below_floor",
            "Baseline weekly load is below configured floor",
            ("baseline_load.weekly_tss", "constraints.weekly_load_floor_tss"),
            ("Increase baseline weekly load", "Lower weekly load floor"),
        ),
        _Rule(
            "baseline_above_cap",
            "Baseline weekly load exceeds configured cap",
            ("baseline_load.weekly_tss", "constraints.weekly_load_cap_tss"),
            ("Reduce baseline weekly load", "Raise weekly load cap"),
        ),
    )
}


def _as_mapping(constraints: CreationConstraints | Mapping[str, Any] | None) -> dict[str, Any]:
    if constraints is None:
        return {}
    if isinstance(constraints, CreationConstraints):
        return {name: getattr(constraints, name) for name in CONSTRAINT_FIELDS}
    return {name: constraints.get(name) for name in CONSTRAINT_FIELDS}


def _resolve_value(user: Any, suggested: Any, default: Any, locked: bool) -> tuple[Any, str]:
    if locked and user is not None:
        return user, "user"
    if user is not None:
        return user, "user"
    if suggested is not None:
        return suggested, "suggested"
    return default, "default"


def _conflict(code: str) -> ConstraintConflict:
    rule = _RULES[code]
    return ConstraintConflict(
        code=rule.code,
        severity="blocking",
        message=rule.message,
        field_paths=rule.field_paths,
        suggestions=rule.suggestions,
    )


def resolve_constraint_conflicts(
    availability_training_days: int,
    baseline_weekly_tss: float,
    user_constraints: CreationConstraints | Mapping[str, Any] | None = None,
    confirmed_suggestions: CreationConstraints | Mapping[str, Any] | None = None,
    defaults: CreationConstraints | Mapping[str, Any] | None = None,
    locks: Mapping[str, bool] | None = None,
) -> ConstraintResolution:
    """
    Resolve creation constraints by precedence and report conflicts.

    Args:
        availability_training_days: Days per week the athlete can train
        baseline_weekly_tss: Current weekly load
        user_constraints: Values entered by the user
        confirmed_suggestions: Suggested values the user accepted
        defaults: Overrides for the built-in defaults
        locks: Field name -> locked flag

    Returns:
        ConstraintResolution with resolved values, conflicts in a fixed
        order, the blocking flag and the per-field precedence source
    """
    user = _as_mapping(user_constraints)
    suggested = _as_mapping(confirmed_suggestions)
    base_defaults = _as_mapping(DEFAULT_CONSTRAINTS)
    base_defaults.update(
        {k: v for k, v in _as_mapping(defaults).items() if v is not None}
    )
    locks = locks or {}

    resolved: dict[str, Any] = {}
    precedence: dict[str, str] = {}
    for name in CONSTRAINT_FIELDS:
        value, source = _resolve_value(
            user.get(name), suggested.get(name), base_defaults.get(name), bool(locks.get(name))
        )
        resolved[name] = list(value) if isinstance(value, (list, tuple)) else value
        precedence[name] = source

    constraints = replace(CreationConstraints(), **resolved)
    floor = constraints.weekly_load_floor_tss
    cap = constraints.weekly_load_cap_tss
    min_sessions = constraints.min_sessions_per_week
    max_sessions = constraints.max_sessions_per_week

    codes: list[str] = []
    if floor is not None and cap is not None and floor > cap:
        codes.append("weekly_load_floor_exceeds_cap")
    if min_sessions is not None and max_sessions is not None and min_sessions > max_sessions:
        codes.append("min_sessions_exceeds_max")
    if min_sessions is not None and min_sessions > availability_training_days:
        codes.append("min_sessions_exceeds_available_days")
    if max_sessions is not None and max_sessions > availability_training_days:
        codes.append("max_sessions_exceeds_available_days")
    if floor is not None and baseline_weekly_tss < floor:
        codes.append("baseline_below_floor")
    if cap is not None and baseline_weekly_tss > cap:
        codes.append("baseline_above_cap")

    conflicts = tuple(_conflict(code) for code in codes)
    return ConstraintResolution(
        resolved_constraints=constraints,
        conflicts=conflicts,
        is_blocking=any(c.severity == "blocking" for c in conflicts),
        precedence=precedence,
    )
