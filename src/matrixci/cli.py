# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from matrixci import settings
from matrixci.errors import ConfigurationError, EventError
from matrixci.governor import ConcurrencyGovernor
from matrixci.model import EVENT_KINDS, Event
from matrixci.reporter import outcome_to_dict
from matrixci.runner import load_workflow, plan_jobs, run_workflow
from matrixci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "matrixci_workflow.py"


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, MATRIXCI_WORKFLOW, or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()
    workflow_arg = workflow_arg or settings.WORKFLOW

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".py", ".json"):
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  matrixci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  matrixci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  matrixci run --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(ctx, workflow_path: Path):
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except ConfigurationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=settings.DEBUG,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: CI matrix orchestration engine."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the plan as JSON")
@click.pass_context
def plan(ctx, workflow, as_json):
    """Expand the matrix and print the jobs that would run."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    wf = _load(ctx, workflow_path)

    try:
        jobs = plan_jobs(wf)
    except ConfigurationError as e:
        console.print_error("Invalid matrix", str(e))
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(
            [{"name": j.name, "matrix": dict(j.spec.values), "included": j.spec.included} for j in jobs],
            indent=2,
            default=str,
        ))
        return
    console.print_plan([(j.name, j.spec) for j in jobs])


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--event", "kind", type=click.Choice(EVENT_KINDS), default="push", show_default=True, help="Event kind")
@click.option("--ref", default=None, help="Git ref of the event (e.g. refs/heads/master)")
@click.option("--cron", default=None, help="Cron expression of a schedule event")
@click.option("--run-id", default=None, help="Run identifier (random if omitted)")
@click.option("--workers", default=None, type=int, help="Number of parallel jobs")
@click.option("--fail-fast/--no-fail-fast", default=None, help="Override the workflow's fail-fast setting")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the run outcome as JSON")
@click.pass_context
def run(ctx, workflow, kind, ref, cron, run_id, workers, fail_fast, as_json):
    """Run a workflow for one event."""
    if as_json:
        # keep stdout parseable
        set_console(Console(debug=ctx.obj.get("debug", False), quiet=True))
    console = get_console()
    workflow_path = discover_workflow(workflow)
    wf = _load(ctx, workflow_path)

    event_kwargs = {"kind": kind, "ref": ref, "cron": cron, "workflow": wf.name}
    if run_id:
        event_kwargs["run_id"] = run_id
    event = Event(**event_kwargs)

    try:
        outcome = run_workflow(
            wf,
            event,
            governor=ConcurrencyGovernor(),
            max_workers=workers,
            fail_fast=fail_fast,
        )
    except EventError as e:
        console.print_error("Malformed event", str(e))
        sys.exit(1)
    except ConfigurationError as e:
        console.print_error("Run rejected", str(e), suggestion="Fix the workflow matrix/steps and retry.")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if outcome is None:
        return

    if as_json:
        click.echo(json.dumps(outcome_to_dict(outcome), indent=2, default=str))

    if not outcome.ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
