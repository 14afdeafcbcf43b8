"""
Calibration normalization and YAML loading.

normalize_calibration() turns a (possibly partial, possibly hostile) mapping
of overrides into an immutable Calibration value. Every field is filled from
config.CALIBRATION_DEFAULTS, coerced to a finite number and clamped into
config.CALIBRATION_BOUNDS, so fuzzed input can never push NaN or Infinity
into the engine.

The YAML helpers are only used by the CLI: the engine itself never touches
the filesystem and receives overrides as a plain mapping.

Usage:
    from load_projector.core.engine.config_loader import load_calibration_overrides
    overrides = load_calibration_overrides()
    calibration = normalize_calibration(overrides)

If the bundled YAML cannot be parsed, the config.py defaults are used.  If the
user override file exists but has parse errors, a warning is issued and the
file is ignored.
"""

from __future__ import annotations

import importlib.resources
import logging
import math
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..config import (
    CALIBRATION_BOUNDS,
    CALIBRATION_DEFAULTS,
    COMPOSITE_WEIGHT_TOLERANCE,
    INTEGER_CALIBRATION_FIELDS,
)
from ..models import CalibrationError

logger = logging.getLogger(__name__)

CALIBRATION_FILENAME = "calibration.yaml"
USER_CONFIG_DIRNAME = ".load-projector"


# ---------------------------------------------------------------------------
# Calibration value
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadinessCompositeWeights:
    target_attainment_weight: float
    envelope_weight: float
    durability_weight: float
    evidence_weight: float


@dataclass(frozen=True)
class ReadinessTimelineCalibration:
    target_tsb: float
    form_tolerance: float
    fatigue_overflow_scale: float
    feasibility_blend_weight: float
    smoothing_iterations: int
    smoothing_lambda: float
    max_step_delta: float


@dataclass(frozen=True)
class EnvelopePenalties:
    over_high_weight: float
    under_low_weight: float
    over_ramp_weight: float


@dataclass(frozen=True)
class DurabilityPenalties:
    monotony_threshold: float
    monotony_scale: float
    strain_threshold: float
    strain_scale: float
    deload_debt_scale: float


@dataclass(frozen=True)
class NoHistoryCalibration:
    reliability_horizon_days: int
    confidence_floor_high: float
    confidence_floor_mid: float
    confidence_floor_low: float
    demand_tier_time_pressure_scale: float


@dataclass(frozen=True)
class OptimizerCalibration:
    preparedness_weight: float
    risk_penalty_weight: float
    volatility_penalty_weight: float
    churn_penalty_weight: float
    lookahead_weeks: int
    candidate_steps: int


@dataclass(frozen=True)
class Calibration:
    """Immutable calibration threaded through every engine call."""

    readiness_composite: ReadinessCompositeWeights
    readiness_timeline: ReadinessTimelineCalibration
    envelope_penalties: EnvelopePenalties
    durability_penalties: DurabilityPenalties
    no_history: NoHistoryCalibration
    optimizer: OptimizerCalibration


_SECTION_TYPES: dict[str, type] = {
    "readiness_composite": ReadinessCompositeWeights,
    "readiness_timeline": ReadinessTimelineCalibration,
    "envelope_penalties": EnvelopePenalties,
    "durability_penalties": DurabilityPenalties,
    "no_history": NoHistoryCalibration,
    "optimizer": OptimizerCalibration,
}


def _coerce_field(name: str, raw: Any, default: float, bounds: tuple[float, float]) -> float:
    """Coerce one calibration value: non-numeric or non-finite -> default, then clamp."""
    if isinstance(raw, bool):
        value = float(default)
    else:
        try:
            value = float(raw)
        except (TypeError, ValueError):
            logger.debug("calibration field %s is not numeric (%r); using default", name, raw)
            value = float(default)
    if not math.isfinite(value):
        value = float(default)

    low, high = bounds
    value = max(low, min(high, value))
    if name in INTEGER_CALIBRATION_FIELDS:
        return int(round(value))
    return value


def normalize_calibration(overrides: Mapping[str, Any] | None = None) -> Calibration:
    """
    Build a Calibration from partial overrides.

    Missing sections and fields take their defaults; every value is clamped
    into its documented range. Unknown keys are ignored.

    Args:
        overrides: Mapping of section name -> mapping of field -> value

    Returns:
        Fully populated Calibration

    Raises:
        CalibrationError: If the readiness composite weights do not sum to 1
    """
    source = overrides if isinstance(overrides, Mapping) else {}
    sections: dict[str, Any] = {}

    for section_name, defaults in CALIBRATION_DEFAULTS.items():
        section_override = source.get(section_name)
        if not isinstance(section_override, Mapping):
            section_override = {}
        bounds = CALIBRATION_BOUNDS[section_name]
        values = {
            field_name: _coerce_field(
                field_name,
                section_override.get(field_name, default),
                default,
                bounds[field_name],
            )
            for field_name, default in defaults.items()
        }
        sections[section_name] = _SECTION_TYPES[section_name](**values)

    composite: ReadinessCompositeWeights = sections["readiness_composite"]
    weight_sum = (
        composite.target_attainment_weight
        + composite.envelope_weight
        + composite.durability_weight
        + composite.evidence_weight
    )
    if abs(weight_sum - 1.0) > COMPOSITE_WEIGHT_TOLERANCE:
        raise CalibrationError(
            f"readiness_composite weights must sum to 1.0, got {weight_sum:.6f}"
        )

    return Calibration(**sections)


# ---------------------------------------------------------------------------
# YAML helpers
# ---------------------------------------------------------------------------


def _load_yaml_file(path: Path, *, warn: bool = False) -> dict[str, Any]:
    """Load a single YAML file; return {} when it is missing or malformed."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        if warn:
            warnings.warn(f"Ignoring calibration file {path}: {exc}", stacklevel=2)
        return {}
    if not isinstance(data, dict):
        if warn and data is not None:
            warnings.warn(f"Ignoring calibration file {path}: top level must be a mapping", stacklevel=2)
        return {}
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (non-destructive to base)."""
    result = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def get_bundled_yaml_path() -> Path | None:
    """Return the path to the bundled calibration.yaml, or None if not found."""
    ref = importlib.resources.files("load_projector").joinpath(CALIBRATION_FILENAME)
    if ref.is_file():
        return Path(str(ref))
    candidate = Path(__file__).parent.parent.parent / CALIBRATION_FILENAME
    return candidate if candidate.exists() else None


def get_user_yaml_path() -> Path | None:
    """Return ~/.load-projector/calibration.yaml if it exists, else None."""
    home = Path(os.environ.get("HOME", "~")).expanduser()
    p = home / USER_CONFIG_DIRNAME / CALIBRATION_FILENAME
    return p if p.exists() else None


def load_calibration_overrides(extra_path: Path | None = None) -> dict[str, Any]:
    """
    Load and merge calibration overrides from YAML sources.

    Load order (later overrides earlier):
    1. Bundled src/load_projector/calibration.yaml
    2. User override at ~/.load-projector/calibration.yaml
    3. extra_path, when given (e.g. the CLI --calibration option)

    Returns:
        Merged dict of calibration sections. Empty dict if no YAML available.
    """
    config: dict[str, Any] = {}

    bundled = get_bundled_yaml_path()
    if bundled is not None:
        config = _deep_merge(config, _load_yaml_file(bundled))

    for path in (get_user_yaml_path(), extra_path):
        if path is None:
            continue
        user_cfg = _load_yaml_file(path, warn=True)
        if user_cfg:
            logger.debug("merged calibration overrides from %s", path)
            config = _deep_merge(config, user_cfg)

    return config


def merge_calibration_overrides(base: Mapping[str, Any], override: Mapping[str, Any] | None) -> dict[str, Any]:
    """Layer request-level overrides on top of file overrides (request wins)."""
    if not isinstance(override, Mapping):
        return dict(base)
    return _deep_merge(dict(base), dict(override))
