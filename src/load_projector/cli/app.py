"""Shared Typer app object, shared option types, and request loading."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from ..core.engine.config_loader import load_calibration_overrides, merge_calibration_overrides
from ..core.models import CreationConfig, ProjectionRequest
from ..io.serializers import load_request_file

# Shared --calibration option type used by every command that runs the engine
CalibrationOption = Annotated[
    Optional[Path],
    typer.Option(
        "--calibration",
        "-c",
        help="Extra calibration YAML layered over the bundled and user files",
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option("--json", "-j", help="Output as JSON for machine processing"),
]

app = typer.Typer(
    name="load-projector",
    help="Deterministic training-load projection: weekly loads, fitness and goal readiness.",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log engine decisions to stderr"),
    ] = False,
) -> None:
    """
    Project weekly training load toward dated goals.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def load_request(request_path: Path, calibration_path: Path | None) -> ProjectionRequest:
    """
    Read a request file and attach calibration overrides.

    YAML overrides (bundled, user, --calibration) form the base; a
    creation_config.calibration section inside the request wins over them.
    """
    request = load_request_file(request_path)
    overrides = load_calibration_overrides(calibration_path)
    creation = request.creation_config or CreationConfig()
    creation.calibration = merge_calibration_overrides(overrides, creation.calibration)
    request.creation_config = creation
    return request
