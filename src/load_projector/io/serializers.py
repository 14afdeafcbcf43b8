"""
JSON serialization for projection requests and payloads.

Handles conversion between the engine's dataclasses and JSON-compatible
dicts. Request parsing validates shapes and types here; value invariants
(date formats, positive targets, known enums) are checked by the model
constructors and surface as ValidationError.
"""

import json
from dataclasses import asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Mapping

from ..core.models import (
    TARGET_TYPES,
    Availability,
    AvailabilityDay,
    AvailabilityWindow,
    Block,
    ContextSummary,
    CreationConfig,
    CreationConstraints,
    Goal,
    IntensityModel,
    NoHistoryContext,
    ProjectionControl,
    ProjectionPayload,
    ProjectionRequest,
    Target,
    Timeline,
    TssRange,
)


class ValidationError(Exception):
    """Raised when request data validation fails."""

    pass


def _require_mapping(data: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError(f"{name} must be an object, got {type(data).__name__}")
    return data


def _require(data: Mapping[str, Any], key: str, name: str) -> Any:
    if data.get(key) is None:
        raise ValidationError(f"{name}.{key} is required")
    return data[key]


def _optional_number(data: Mapping[str, Any], key: str, name: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name}.{key} must be a number, got {value!r}")
    return float(value)


def _known_fields(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only the keys that are fields of cls."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _build(cls: type, name: str, /, **kwargs: Any) -> Any:
    try:
        return cls(**kwargs)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {name}: {e}") from e


# =============================================================================
# REQUEST
# =============================================================================


def dict_to_target(data: dict[str, Any]) -> Target:
    """
    Convert dict to a goal target.

    The "target_type" tag selects the target class: race_performance,
    power_threshold, pace_threshold or hr_threshold.

    Raises:
        ValidationError: If the tag is unknown or a field is invalid
    """
    data = _require_mapping(data, "target")
    target_type = data.get("target_type")
    cls = TARGET_TYPES.get(target_type)
    if cls is None:
        raise ValidationError(
            f"Invalid target_type: {target_type!r}. Must be one of {sorted(TARGET_TYPES)}"
        )
    return _build(cls, f"{target_type} target", **_known_fields(cls, data))


def dict_to_goal(data: dict[str, Any]) -> Goal:
    """
    Convert dict to Goal.

    Args:
        data: Dict with id, name, target_date, optional priority and targets

    Returns:
        Goal instance

    Raises:
        ValidationError: If data is invalid
    """
    data = _require_mapping(data, "goal")
    targets = data.get("targets") or []
    if not isinstance(targets, list):
        raise ValidationError("goal.targets must be a list")
    priority = _optional_number(data, "priority", "goal")
    return _build(
        Goal,
        "goal",
        id=str(_require(data, "id", "goal")),
        name=str(data.get("name", data["id"])),
        target_date=_require(data, "target_date", "goal"),
        priority=priority if priority is not None else 1,
        targets=[dict_to_target(t) for t in targets],
    )


def dict_to_block(data: dict[str, Any]) -> Block:
    """Convert dict to Block."""
    data = _require_mapping(data, "block")
    tss_range = data.get("target_weekly_tss_range")
    if tss_range is not None:
        tss_range = _require_mapping(tss_range, "block.target_weekly_tss_range")
        tss_range = _build(
            TssRange,
            "target_weekly_tss_range",
            min=float(_require(tss_range, "min", "target_weekly_tss_range")),
            max=float(_require(tss_range, "max", "target_weekly_tss_range")),
        )
    return _build(
        Block,
        "block",
        name=str(data.get("name", data.get("phase", "block"))),
        phase=_require(data, "phase", "block"),
        start_date=_require(data, "start_date", "block"),
        end_date=_require(data, "end_date", "block"),
        target_weekly_tss_range=tss_range,
    )


def _dict_to_availability(data: dict[str, Any]) -> Availability:
    data = _require_mapping(data, "availability")
    days = []
    for day in data.get("days") or []:
        day = _require_mapping(day, "availability.days[]")
        windows = tuple(
            _build(AvailabilityWindow, "availability window", **_known_fields(AvailabilityWindow, w))
            for w in day.get("windows") or []
        )
        days.append(
            AvailabilityDay(
                day=str(_require(day, "day", "availability.days[]")),
                windows=windows,
                max_sessions=day.get("max_sessions"),
            )
        )
    return Availability(
        days=tuple(days),
        hard_rest_days=tuple(data.get("hard_rest_days") or ()),
        max_single_session_duration_minutes=_optional_number(
            data, "max_single_session_duration_minutes", "availability"
        ),
    )


def dict_to_no_history_context(data: dict[str, Any]) -> NoHistoryContext:
    """Convert dict to NoHistoryContext."""
    data = _require_mapping(data, "no_history")
    summary = data.get("context_summary") or {}
    summary = _require_mapping(summary, "no_history.context_summary")
    summary_fields = _known_fields(ContextSummary, summary)
    if "rationale_codes" in summary_fields:
        summary_fields["rationale_codes"] = tuple(summary_fields["rationale_codes"])

    availability = data.get("availability")
    intensity = data.get("intensity_model")
    return _build(
        NoHistoryContext,
        "no_history",
        history_availability_state=data.get("history_availability_state", "none"),
        goal_tier=data.get("goal_tier"),
        weeks_to_event=_optional_number(data, "weeks_to_event", "no_history"),
        context_summary=ContextSummary(**summary_fields),
        availability=_dict_to_availability(availability) if availability is not None else None,
        intensity_model=(
            IntensityModel(**_known_fields(IntensityModel, _require_mapping(intensity, "intensity_model")))
            if intensity is not None
            else None
        ),
        starting_ctl_override=_optional_number(data, "starting_ctl_override", "no_history"),
    )


def dict_to_request(data: dict[str, Any]) -> ProjectionRequest:
    """
    Convert dict to ProjectionRequest.

    Unknown keys are ignored; missing optional sections take their defaults.

    Args:
        data: Dict representation of the request

    Returns:
        ProjectionRequest instance

    Raises:
        ValidationError: If data is invalid
    """
    data = _require_mapping(data, "request")
    timeline = _require_mapping(_require(data, "timeline", "request"), "timeline")

    creation = data.get("creation_config")
    control = data.get("projection_control")
    no_history = data.get("no_history")

    return ProjectionRequest(
        timeline=_build(
            Timeline,
            "timeline",
            start_date=_require(timeline, "start_date", "timeline"),
            end_date=_require(timeline, "end_date", "timeline"),
        ),
        blocks=[dict_to_block(b) for b in data.get("blocks") or []],
        goals=[dict_to_goal(g) for g in data.get("goals") or []],
        starting_ctl=_optional_number(data, "starting_ctl", "request"),
        starting_atl=_optional_number(data, "starting_atl", "request"),
        starting_tsb=_optional_number(data, "starting_tsb", "request"),
        baseline_weekly_tss=_optional_number(data, "baseline_weekly_tss", "request"),
        creation_config=(
            CreationConfig(**_known_fields(CreationConfig, _require_mapping(creation, "creation_config")))
            if creation is not None
            else None
        ),
        projection_control=(
            ProjectionControl(**_known_fields(ProjectionControl, _require_mapping(control, "projection_control")))
            if control is not None
            else None
        ),
        no_history=dict_to_no_history_context(no_history) if no_history is not None else None,
        disable_weekly_tss_optimizer=bool(data.get("disable_weekly_tss_optimizer", False)),
    )


def dict_to_constraints(data: dict[str, Any] | None) -> CreationConstraints:
    """Convert dict to CreationConstraints (missing fields stay None)."""
    if data is None:
        return CreationConstraints()
    return CreationConstraints(**_known_fields(CreationConstraints, _require_mapping(data, "constraints")))


def load_request_file(path: Path) -> ProjectionRequest:
    """
    Read a projection request from a JSON file.

    Raises:
        ValidationError: If the file cannot be read or parsed
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}") from e
    return dict_to_request(data)


# =============================================================================
# PAYLOAD
# =============================================================================


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def payload_to_dict(payload: ProjectionPayload) -> dict[str, Any]:
    """
    Convert a projection payload to a JSON-compatible dict.

    Tuples become lists; key order follows the dataclass field order, so the
    same payload always serializes to the same text.
    """
    if not is_dataclass(payload):
        raise TypeError(f"expected a dataclass payload, got {type(payload).__name__}")
    return _jsonable(asdict(payload))


def payload_to_json(payload: ProjectionPayload, indent: int | None = 2) -> str:
    """Serialize a projection payload to JSON text."""
    return json.dumps(payload_to_dict(payload), indent=indent)
