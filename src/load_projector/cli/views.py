"""
CLI view formatters using Rich for pretty console output.

Handles table formatting and display of projection payloads.
"""

from rich.console import Console
from rich.table import Table

from ..core.engine.config_loader import Calibration
from ..core.models import (
    ConstraintResolution,
    GoalAssessment,
    GoalGdi,
    Microcycle,
    PlanGdi,
    ProjectionPayload,
)

console = Console()

BAND_STYLES = {
    "feasible": "green",
    "stretch": "cyan",
    "aggressive": "yellow",
    "nearly_impossible": "red",
    "infeasible": "bold red",
    "high": "green",
    "medium": "yellow",
    "low": "red",
    "inside": "green",
    "edge": "yellow",
    "outside": "red",
}


def _band(value: str) -> str:
    style = BAND_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def format_microcycle_table(microcycles: tuple[Microcycle, ...]) -> Table:
    """
    Create a Rich table with one row per planned week.

    Args:
        microcycles: Microcycles of a projection

    Returns:
        Rich Table object
    """
    table = Table(title="Weekly Plan")

    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("Week", style="cyan")
    table.add_column("Phase", style="magenta")
    table.add_column("Pattern", style="green")
    table.add_column("TSS", justify="right", style="bold")
    table.add_column("CTL", justify="right")
    table.add_column("ATL", justify="right")
    table.add_column("TSB", justify="right")
    table.add_column("Caps", justify="center")

    for m in microcycles:
        caps = []
        if m.metadata.tss_ramp.clamped:
            caps.append("tss")
        if m.metadata.ctl_ramp.clamped:
            caps.append("ctl")
        if m.metadata.tss_ramp.floor_override_applied:
            caps.append("floor")
        table.add_row(
            str(m.index + 1),
            f"{m.week_start_date} → {m.week_end_date}",
            m.phase,
            m.pattern if m.rhythm == "ramp" else f"{m.pattern} (deload)",
            f"{m.planned_weekly_tss:.1f}",
            f"{m.projected_ctl:.1f}",
            f"{m.projected_atl:.1f}",
            f"{m.projected_tsb:+.1f}",
            ",".join(caps) or "-",
        )

    return table


def format_goal_table(assessments: tuple[GoalAssessment, ...], gdis: tuple[GoalGdi, ...]) -> Table:
    """Create a Rich table of goal readiness and difficulty."""
    table = Table(title="Goals")

    table.add_column("Goal", style="cyan")
    table.add_column("Prio", justify="right")
    table.add_column("Readiness", justify="right", style="bold")
    table.add_column("State", justify="right")
    table.add_column("Targets", justify="right")
    table.add_column("GDI", justify="right")
    table.add_column("Band")

    gdi_by_goal = {g.goal_id: g for g in gdis}
    for a in assessments:
        gdi = gdi_by_goal.get(a.goal_id)
        table.add_row(
            a.goal_id,
            str(a.priority),
            f"{a.goal_readiness_score:.1f}",
            f"{a.state_readiness_score:.1f}",
            f"{a.target_attainment_score:.1f}",
            f"{gdi.gdi:.3f}" if gdi is not None else "-",
            _band(gdi.feasibility_band) if gdi is not None else "-",
        )

    return table


def format_gdi_table(gdis: tuple[GoalGdi, ...], plan_gdi: PlanGdi) -> Table:
    """Create a Rich table with the GDI components of every goal."""
    table = Table(title=f"Goal Difficulty (plan {plan_gdi.gdi:.3f}, {plan_gdi.feasibility_band})")

    table.add_column("Goal", style="cyan")
    table.add_column("PG", justify="right")
    table.add_column("LG", justify="right")
    table.add_column("TP", justify="right")
    table.add_column("SP", justify="right")
    table.add_column("GDI", justify="right", style="bold")
    table.add_column("Band")

    for g in gdis:
        c = g.components
        table.add_row(
            g.goal_id,
            f"{c.performance_gap:.3f}",
            f"{c.load_gap:.3f}",
            f"{c.timeline_pressure:.3f}",
            f"{c.sparsity_penalty:.3f}",
            f"{g.gdi:.3f}",
            _band(g.feasibility_band),
        )

    return table


def format_summary(payload: ProjectionPayload) -> str:
    """
    Format plan-level readiness as a text block.

    Args:
        payload: Projection payload

    Returns:
        Formatted string (Rich markup)
    """
    start = payload.constraint_summary.starting_state
    config = payload.constraint_summary.normalized_creation_config
    lines = [
        f"Projection {payload.start_date} → {payload.end_date}",
        f"- Profile: {config.optimization_profile}"
        f"  (ramp ≤ {config.max_weekly_tss_ramp_pct:g}%/wk, CTL ≤ {config.max_ctl_ramp_per_week:g}/wk)",
        f"- Start: CTL {start.starting_ctl:.1f}  ATL {start.starting_atl:.1f}  TSB {start.starting_tsb:+.1f}"
        + ("  (prior)" if start.starting_state_is_prior else ""),
        f"- Readiness: {payload.readiness_score}/100 {_band(payload.readiness_band)}"
        f"  (confidence {payload.readiness_confidence})",
        f"- Capacity envelope: {payload.capacity_envelope.envelope_score}"
        f" {_band(payload.capacity_envelope.envelope_state)}",
        f"- Durability: {payload.durability.durability_score}",
    ]
    if payload.goal_gdis:
        lines.append(
            f"- Plan GDI: {payload.plan_gdi.gdi:.3f} {_band(payload.plan_gdi.feasibility_band)}"
        )
    optimizer = payload.optimizer
    if optimizer.enabled:
        state = "fallback to naive" if optimizer.fallback_to_naive else f"{optimizer.changed_weeks} weeks changed"
        lines.append(f"- Optimizer: {state}")
    if payload.risk_flags:
        lines.append(f"- Risk flags: {', '.join(payload.risk_flags)}")
    return "\n".join(lines)


def print_projection(payload: ProjectionPayload) -> None:
    """Print the weekly plan, goals and plan summary."""
    console.print(format_microcycle_table(payload.microcycles))
    if payload.goal_assessments:
        console.print(format_goal_table(payload.goal_assessments, payload.goal_gdis))
    console.print()
    console.print(format_summary(payload))


def print_conflicts(resolution: ConstraintResolution) -> None:
    """Print resolved constraints and any conflicts between them."""
    table = Table(title="Resolved Constraints")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Source", style="dim")
    for field_name, source in resolution.precedence.items():
        value = getattr(resolution.resolved_constraints, field_name)
        table.add_row(field_name, str(value), source)
    console.print(table)

    if not resolution.conflicts:
        print_success("No conflicts.")
        return
    for conflict in resolution.conflicts:
        style = "red" if conflict.severity == "blocking" else "yellow"
        console.print(f"[{style}]{conflict.severity}[/{style}] {conflict.code}: {conflict.message}")
        for suggestion in conflict.suggestions:
            console.print(f"    → {suggestion}")


def print_calibration(calibration: Calibration) -> None:
    """Print every calibration section as a table."""
    for section_name in (
        "readiness_composite",
        "readiness_timeline",
        "envelope_penalties",
        "durability_penalties",
        "no_history",
        "optimizer",
    ):
        section = getattr(calibration, section_name)
        table = Table(title=section_name, show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", justify="right")
        for field_name, value in vars(section).items():
            table.add_row(field_name, f"{value:g}")
        console.print(table)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]Error: {message}[/red]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning: {message}[/yellow]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]{message}[/blue]")
