"""Projection commands: project, gdi."""

import json
from pathlib import Path
from typing import Annotated

import typer

from ...core.models import CalibrationError, ProjectionError
from ...core.planner import build_projection
from ...io.serializers import ValidationError, payload_to_dict, payload_to_json
from .. import views
from ..app import CalibrationOption, JsonOption, app, load_request

RequestArgument = Annotated[
    Path,
    typer.Argument(help="Projection request JSON file", exists=True, dir_okay=False),
]


def _run(request_path: Path, calibration_path: Path | None, disable_optimizer: bool = False):
    try:
        request = load_request(request_path, calibration_path)
        if disable_optimizer:
            request.disable_weekly_tss_optimizer = True
        return build_projection(request)
    except CalibrationError as e:
        views.print_error(f"Invalid calibration: {e}")
        raise typer.Exit(2)
    except (ValidationError, ProjectionError) as e:
        views.print_error(str(e))
        raise typer.Exit(1)


@app.command()
def project(
    request_path: RequestArgument,
    json_out: JsonOption = False,
    no_optimizer: Annotated[
        bool,
        typer.Option("--no-optimizer", help="Use the naive capped composer only"),
    ] = False,
    calibration_path: CalibrationOption = None,
) -> None:
    """
    Project weekly loads, fitness and readiness for a request.
    """
    payload = _run(request_path, calibration_path, disable_optimizer=no_optimizer)

    if json_out:
        print(payload_to_json(payload))
        return

    views.print_projection(payload)


@app.command()
def gdi(
    request_path: RequestArgument,
    json_out: JsonOption = False,
    calibration_path: CalibrationOption = None,
) -> None:
    """
    Show the goal difficulty index of every goal and of the plan.
    """
    payload = _run(request_path, calibration_path)

    if json_out:
        data = payload_to_dict(payload)
        print(json.dumps({"plan_gdi": data["plan_gdi"], "goal_gdis": data["goal_gdis"]}, indent=2))
        return

    if not payload.goal_gdis:
        views.print_warning("Request has no goals; nothing to score.")
    views.console.print(views.format_gdi_table(payload.goal_gdis, payload.plan_gdi))
