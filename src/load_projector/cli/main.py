"""
CLI entry point using Typer.

Provides commands for load projection:
- project: Project weekly loads, fitness and readiness for a request
- gdi: Show goal difficulty per goal and for the plan
- conflicts: Resolve creation constraints and list conflicts
- calibration: Show the effective calibration
"""

from .app import app
from .commands import projection, settings  # noqa: F401  (registers commands)


if __name__ == "__main__":
    app()
