"""Settings commands: conflicts, calibration."""

import json
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer

from ...core.conflicts import resolve_constraint_conflicts
from ...core.engine.config_loader import (
    get_bundled_yaml_path,
    get_user_yaml_path,
    load_calibration_overrides,
    normalize_calibration,
)
from ...core.models import CalibrationError
from ...io.serializers import ValidationError, dict_to_constraints
from .. import views
from ..app import CalibrationOption, JsonOption, app


def _read_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must contain a JSON object")
    return data


@app.command()
def conflicts(
    constraints_path: Annotated[
        Path,
        typer.Argument(
            help='JSON with "user", "confirmed", "defaults" and "locks" sections',
            exists=True,
            dir_okay=False,
        ),
    ],
    available_days: Annotated[
        int,
        typer.Option("--available-days", "-d", help="Days per week available for training"),
    ] = 7,
    baseline: Annotated[
        float,
        typer.Option("--baseline", "-b", help="Current weekly TSS"),
    ] = 0.0,
    json_out: JsonOption = False,
) -> None:
    """
    Resolve creation constraints by precedence and list conflicts.

    Exits with status 3 when a blocking conflict remains.
    """
    try:
        data = _read_json(constraints_path)
        resolution = resolve_constraint_conflicts(
            available_days,
            baseline,
            user_constraints=dict_to_constraints(data.get("user")),
            confirmed_suggestions=dict_to_constraints(data.get("confirmed")),
            defaults=dict_to_constraints(data.get("defaults")),
            locks=data.get("locks") or {},
        )
    except ValidationError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(asdict(resolution), indent=2, default=list))
    else:
        views.print_conflicts(resolution)

    if resolution.is_blocking:
        raise typer.Exit(3)


@app.command()
def calibration(
    calibration_path: CalibrationOption = None,
    show_paths: Annotated[
        bool,
        typer.Option("--paths", help="Show which calibration files are read"),
    ] = False,
    json_out: JsonOption = False,
) -> None:
    """
    Show the effective calibration after YAML overrides and clamping.
    """
    if show_paths:
        bundled = get_bundled_yaml_path()
        user = get_user_yaml_path()
        views.print_info(f"Bundled: {bundled or 'not found'}")
        views.print_info(f"User:    {user or 'none'}")
        if calibration_path is not None:
            views.print_info(f"Extra:   {calibration_path}")

    try:
        values = normalize_calibration(load_calibration_overrides(calibration_path))
    except CalibrationError as e:
        views.print_error(f"Invalid calibration: {e}")
        raise typer.Exit(2)

    if json_out:
        print(json.dumps(asdict(values), indent=2))
        return

    views.print_calibration(values)
