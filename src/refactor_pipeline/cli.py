"""Command-line interface for the refactoring pipeline.

One command per phase operation, each resuming the persisted session, plus
``run`` for the whole pipeline end to end. Pipeline errors are printed with
Rich and mapped to their category exit code.
"""

from __future__ import annotations

import asyncio
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table
from rich.theme import Theme

from . import __version__
from .collaborators import ConsoleApproval
from .config import PipelineConfig
from .errors import EXIT_INVALID_INPUT, EXIT_UNEXPECTED, GateFailure, PipelineError
from .gates.evaluator import GateReport
from .models import ArtifactKind
from .planning.loader import ChangeSetLoader
from .session import PipelineSession, default_collaborators
from .utils.file_ops import REFACTOR_DIR
from .utils.logger import setup_logging

# Custom theme for consistent styling
custom_theme = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red bold",
    "success": "green bold",
    "muted": "dim",
})

console = Console(theme=custom_theme)
app = typer.Typer(
    name="refactor-pipeline",
    help="Phase-gated refactoring pipeline orchestrator",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


class Scope(str, Enum):
    quick = "quick"
    full = "full"
    all = "all"


@dataclass
class CliState:
    project: Path
    config_path: Optional[Path] = None
    verbose: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[info]Refactor Pipeline[/info] v{__version__}")
        raise typer.Exit()


@app.callback()
def default_command(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(
        None,
        "--project", "-p",
        help="Path to the project directory (default: current directory)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="Pipeline config file (default: <project>/.refactor/pipeline.yaml)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Echo pipeline logs to stderr",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Sequence, gate and verify refactoring changes one phase at a time.

    Examples:
        refactor-pipeline intake
        refactor-pipeline plan --changes changes.yaml
        refactor-pipeline -p ./my-project run --changes changes.yaml --yes
    """
    project_path = Path(project) if project else Path.cwd()
    if not project_path.exists():
        console.print(f"[error]Project path does not exist:[/error] {project_path}")
        raise typer.Exit(EXIT_INVALID_INPUT)
    ctx.obj = CliState(
        project=project_path.resolve(),
        config_path=Path(config) if config else None,
        verbose=verbose,
    )


def _load_config(state: CliState) -> PipelineConfig:
    env_path = state.project / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    try:
        config = PipelineConfig.load(state.project, state.config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[error]Invalid configuration:[/error] {e}")
        raise typer.Exit(EXIT_INVALID_INPUT)
    setup_logging(state.project / REFACTOR_DIR / "logs", level=config.log_level, console=state.verbose)
    return config


@contextmanager
def _session(ctx: typer.Context) -> Iterator[PipelineSession]:
    """Open the project session; pipeline errors exit with their code."""
    state: CliState = ctx.obj
    config = _load_config(state)
    collaborators = default_collaborators(state.project, config, approval=ConsoleApproval(console))
    try:
        with PipelineSession.open(state.project, config, collaborators) as session:
            yield session
    except PipelineError as e:
        _show_error(e)
        raise typer.Exit(e.exit_code)


@app.command()
def intake(ctx: typer.Context) -> None:
    """Scan the project and record the context artifact."""
    with _session(ctx) as session:
        with console.status("Scanning..."):
            artifact = session.intake()
        summary = artifact.content["summary"]
        console.print(f"[success]Context recorded[/success] {artifact.id}: {summary['total_files']} file(s)")
        for language, count in sorted(summary["by_language"].items()):
            console.print(f"  [muted]•[/muted] {language}: {count}")


@app.command()
def analyze(ctx: typer.Context) -> None:
    """Measure the untouched project (build, tests, static analysis)."""
    with _session(ctx) as session:
        with console.status("Measuring baseline..."):
            artifact = asyncio.run(session.analyze())
        baseline = artifact.content["baseline"]
        table = Table(title=f"Baseline ({artifact.id})", show_header=True, header_style="bold cyan")
        table.add_column("Measure", style="dim")
        table.add_column("Value")
        for key, value in baseline.items():
            table.add_row(key, str(value))
        console.print(table)


@app.command()
def review(ctx: typer.Context) -> None:
    """Rank analysis findings into the review worklist."""
    with _session(ctx) as session:
        artifact = session.review()
        content = artifact.content
        console.print(f"[success]Review recorded[/success] {artifact.id}: {content['total_findings']} finding(s)")

        if content["hotspots"]:
            table = Table(title="Hotspots", show_header=True, header_style="bold cyan")
            table.add_column("File")
            table.add_column("Findings", justify="right")
            table.add_column("Categories", style="dim")
            for spot in content["hotspots"]:
                table.add_row(spot["path"], str(spot["findings"]), ", ".join(spot["categories"]))
            console.print(table)
        for recommendation in content["recommendations"]:
            console.print(f"  [warning]•[/warning] {recommendation}")


@app.command()
def plan(
    ctx: typer.Context,
    changes: str = typer.Option(
        ...,
        "--changes", "-c",
        help="Proposed change set (YAML or JSON)",
    ),
) -> None:
    """Sequence a proposed change set into a new plan version."""
    with _session(ctx) as session:
        records = ChangeSetLoader(Path(changes)).load()
        artifact = session.plan(records, source=str(Path(changes).resolve()))
        _show_plan(session, artifact.id)
        for notice in artifact.content.get("notices", []):
            console.print(f"[warning]Cycle collapsed:[/warning] {notice['message']}")
        console.print("[muted]Approve with:[/muted] refactor-pipeline approve")


@app.command()
def approve(
    ctx: typer.Context,
    reject: bool = typer.Option(
        False,
        "--reject",
        help="Record a refusal instead of an approval",
    ),
    ask: bool = typer.Option(
        False,
        "--ask",
        help="Prompt for the decision (subject to the approval timeout)",
    ),
) -> None:
    """Record the operator decision for the current plan version."""
    with _session(ctx) as session:
        if ask:
            _show_plan(session, session.current_plan_artifact().id)
            approved = asyncio.run(session.request_approval())
            plan_id = session.current_plan_artifact().id
        else:
            approved = not reject
            plan_id = session.approve(approved).id

        if approved:
            console.print(f"[success]Approved[/success] {plan_id}")
        else:
            console.print(f"[warning]Not approved[/warning] {plan_id}")


@app.command()
def execute(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Option(
        None,
        "--change-id",
        help="Execute a single change instead of the remaining plan",
    ),
) -> None:
    """Apply the approved plan one change at a time."""
    with _session(ctx) as session:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Executing...", total=None)

            def on_progress(message: str, current: int, total: int) -> None:
                progress.update(task, completed=current - 1, total=total, description=message)

            report = asyncio.run(session.execute(change_id, on_progress=on_progress))

        table = Table(title="Execution", show_header=True, header_style="bold cyan")
        table.add_column("Change")
        table.add_column("Status")
        table.add_column("Lines", justify="right")
        for entry in report.entries:
            table.add_row(entry.change_id, entry.status.value, f"+{entry.added} / -{entry.removed}")
        console.print(table)
        console.print(f"[info]Phase:[/info] {session.phase.value}")


@app.command()
def validate(
    ctx: typer.Context,
    scope: Scope = typer.Option(
        Scope.quick,
        "--scope", "-s",
        help="quick: tests covering changed files; full: all tests; all: also advisory metrics",
    ),
) -> None:
    """Measure the changed project and evaluate the quality gates."""
    with _session(ctx) as session:
        try:
            with console.status("Evaluating gates..."):
                report = asyncio.run(session.validate(scope.value))
        except GateFailure:
            artifact = session.store.get(ArtifactKind.VALIDATION_REPORT)
            if artifact is not None:
                _show_gate_table(artifact.content["metrics"])
            raise
        _show_gate_table([m.to_dict() for m in report.metrics])
        _show_verdict(report)


@app.command()
def explain(ctx: typer.Context) -> None:
    """Write the explanation artifact and the markdown summary."""
    with _session(ctx) as session:
        artifact = session.explain()
        content = artifact.content
        style = "success" if content["status"] == "SUCCESS" else "warning"
        console.print(Panel(
            f"[{style}]{content['status']}[/{style}]\n"
            f"Changes: {content['changes_completed']} / {content['changes_planned']}  "
            f"Lines: +{content['lines_added']} / -{content['lines_removed']}",
            title="Refactoring Result",
            border_style=style,
        ))
        console.print(f"[info]Full report:[/info] {session.files.refactor_dir / 'summary.md'}")


@app.command()
def rollback(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Option(
        None,
        "--change-id",
        help="Roll back from this change onward (default: the failure point)",
    ),
) -> None:
    """Restore snapshots from the failure point and return to execution."""
    with _session(ctx) as session:
        rolled_back = session.rollback(change_id)
        if not rolled_back:
            console.print("[muted]Nothing to roll back[/muted]")
        for cid in rolled_back:
            console.print(f"  [warning]•[/warning] {cid}: rolled back")
        console.print(f"[info]Phase:[/info] {session.phase.value}")


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes", "-y",
        help="Do not ask for confirmation",
    ),
) -> None:
    """Archive all artifacts and return to intake."""
    if not yes and not typer.confirm("Archive all artifacts and restart from intake?"):
        raise typer.Exit()
    with _session(ctx) as session:
        archived = session.reset()
        console.print(f"[success]Session reset[/success]: {len(archived)} artifact(s) archived")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the current phase, plan and change statuses."""
    with _session(ctx) as session:
        info = session.status()
        console.print(f"[info]Phase:[/info] {info['phase']}")
        if info["plan_artifact_id"]:
            approval = "approved" if info["plan_approved"] else "not approved"
            console.print(f"[info]Plan:[/info] {info['plan_artifact_id']} ({approval})")
        if info["verdict"]:
            console.print(f"[info]Verdict:[/info] {info['verdict']}")
        if info["changes"]:
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Change")
            table.add_column("Title")
            table.add_column("Risk")
            table.add_column("Status")
            for change in info["changes"]:
                table.add_row(change["id"], change["title"], change["risk_level"], change["status"])
            console.print(table)


@app.command()
def run(
    ctx: typer.Context,
    changes: Optional[str] = typer.Option(
        None,
        "--changes", "-c",
        help="Proposed change set (YAML or JSON); needed when the session has no plan yet",
    ),
    yes: bool = typer.Option(
        False,
        "--yes", "-y",
        help="Approve the plan without prompting",
    ),
    scope: Scope = typer.Option(
        Scope.quick,
        "--scope", "-s",
        help="Validation scope",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress banner and verbose output",
    ),
) -> None:
    """Run every remaining phase end to end.

    This runs the complete pipeline: intake -> analyze -> review -> plan ->
    execute -> validate -> explain

    Examples:
        refactor-pipeline run --changes changes.yaml
        refactor-pipeline -p ./my-project run --changes changes.yaml --yes --scope full
    """
    from .orchestrator import PipelineOrchestrator

    state: CliState = ctx.obj
    config = _load_config(state)
    collaborators = default_collaborators(state.project, config, approval=ConsoleApproval(console))

    if not quiet:
        _show_banner()
        console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Refactoring...", total=7)

        def on_progress(message: str, current: int, total: int) -> None:
            progress.update(task, completed=current - 1, description=message)

        orchestrator = PipelineOrchestrator(
            project_path=state.project,
            changes_path=Path(changes) if changes else None,
            config=config,
            collaborators=collaborators,
            approve=yes,
            scope=scope.value,
            on_progress=on_progress,
        )
        try:
            result = orchestrator.run()
        except PipelineError as e:
            # Raised before the session opened (e.g. the lock is held).
            _show_error(e)
            raise typer.Exit(e.exit_code)

    _show_result(result)
    if result.summary_path and result.summary_path.exists():
        console.print()
        console.print(f"[info]Full report:[/info] {result.summary_path}")

    raise typer.Exit(result.exit_code)


def _show_banner() -> None:
    """Display the application banner."""
    console.print(Panel(
        f"Refactor Pipeline v{__version__}\nPhase-gated refactoring orchestrator",
        border_style="cyan",
    ))


def _show_plan(session: PipelineSession, plan_id: str) -> None:
    table = Table(title=f"Plan {plan_id}", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Change")
    table.add_column("Risk")
    table.add_column("After", style="dim")
    table.add_column("Files", style="dim")
    sequenced = session.sequenced
    for i, change in enumerate(sequenced.changes if sequenced else [], start=1):
        table.add_row(
            str(i),
            f"{change.id} {change.title}".strip(),
            change.risk_level.value,
            ", ".join(sequenced.prerequisites.get(change.id, [])),
            ", ".join(change.files_affected),
        )
    console.print(table)


def _show_gate_table(metrics: list[dict]) -> None:
    table = Table(title="Quality Gates", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Tier", style="dim")
    table.add_column("Observed", justify="right")
    table.add_column("Required")
    table.add_column("Result")
    for metric in metrics:
        passed = metric.get("passed")
        result = {True: "[success]pass[/success]", False: "[error]FAIL[/error]"}.get(passed, "[muted]-[/muted]")
        observed = metric.get("observed_value")
        table.add_row(
            metric["name"],
            metric["tier"],
            "missing" if observed is None else str(observed),
            f"{metric['comparison']} {metric['threshold']}",
            result,
        )
    console.print(table)


def _show_verdict(report: GateReport) -> None:
    style = "success" if report.verdict.value == "passed" else "warning"
    console.print(Panel(
        f"[{style}]{report.verdict.value.upper()}[/{style}] "
        f"({report.target_passes}/{report.target_total} target metrics)",
        title="Verdict",
        border_style=style,
    ))


def _show_error(error: PipelineError) -> None:
    lines = [f"[error]{error.message}[/error]"]
    for key, value in error.details.items():
        if key == "failures":
            for failure in value:
                culprit = failure.get("responsible_change_id")
                hint = f" (change {culprit})" if culprit else ""
                lines.append(
                    f"  • {failure['name']}: observed {failure.get('observed_value')}, "
                    f"required {failure['comparison']} {failure['threshold']}{hint}"
                )
        else:
            lines.append(f"  [muted]{key}:[/muted] {value}")
    console.print(Panel("\n".join(lines), title=type(error).__name__, border_style="red"))


def _show_result(result) -> None:
    """Display the end-to-end result in a formatted table."""
    status_style = "success" if result.success else "error"
    status_text = "SUCCESS" if result.success else "FAILED"
    console.print()
    console.print(Panel(
        f"[{status_style}]{status_text}[/{status_style}]",
        title="Refactoring Result",
        border_style=status_style,
    ))

    table = Table(title="Summary", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    table.add_row("Status", status_text)
    table.add_row("Phase", result.phase)
    table.add_row("Verdict", result.verdict or "-")
    table.add_row("Exit code", str(result.exit_code))
    console.print(table)

    if result.error:
        console.print()
        console.print(f"[error]{result.error['error']}:[/error] {result.error['message']}")

    if result.warnings:
        console.print()
        console.print("[warning]Warnings:[/warning]")
        for warning in result.warnings:
            console.print(f"  [warning]•[/warning] {warning}")


def main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[warning]Interrupted by user[/warning]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[error]Unexpected error:[/error] {e}")
        sys.exit(EXIT_UNEXPECTED)


if __name__ == "__main__":
    main()
