# runner.py
from __future__ import annotations

import os
import runpy
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from . import settings
from .errors import ConfigurationError
from .executor import StepExecutor, cancelled_outcome, check_steps, resolve_executors, run_job
from .governor import CancelToken, ConcurrencyGovernor, run_key, should_cancel_in_progress
from .matrix import expand_matrix
from .model import FAILED, BoundJob, ConcurrencyPolicy, Event, JobOutcome, JobSpec, RunOutcome, Workflow
from .reporter import report
from .triggers import evaluate_trigger
from .ui.console import Console, get_console

# Without an explicit policy every run gets its own key.
DEFAULT_POLICY = ConcurrencyPolicy(group="{workflow}-{run_id}", cancel_in_progress=False)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a .py or .json file.

    A .py file must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)

    A .json file is a declarative description (see matrixci.config).
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".json":
        from .config import load_description_file

        return load_description_file(wf_path)

    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py or .json file, got: {wf_path.name}")

    module_name = f"matrixci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    wf = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]

    if not isinstance(wf, Workflow):
        raise TypeError(
            "Workflow file must return/define a Workflow. "
            "Define workflow() -> Workflow or WORKFLOW = Workflow(...)."
        )
    return wf


# ----------------------------------------------------------------------
# Binding: JobSpec -> BoundJob
# ----------------------------------------------------------------------

def _format(template: str, spec: JobSpec, what: str) -> str:
    try:
        return template.format_map(dict(spec.values))
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Cannot render {what} {template!r} for matrix job ({spec.label}): {e!r}"
            " (write literal braces as {{ }}, e.g. \"echo ${{HOME}}\")"
        ) from e


def _render_inputs(inputs: Mapping[str, Any], spec: JobSpec, step: str) -> Dict[str, Any]:
    # Only strings are templates; callables and other values pass through.
    return {
        k: _format(v, spec, f"input {k!r} of step {step!r}") if isinstance(v, str) else v
        for k, v in inputs.items()
    }


def bind_job(workflow: Workflow, spec: JobSpec) -> BoundJob:
    if callable(workflow.job_name):
        name = str(workflow.job_name(spec))
    elif workflow.job_name:
        name = _format(workflow.job_name, spec, "job name")
    else:
        name = spec.label or workflow.name

    if callable(workflow.env):
        env = dict(workflow.env(spec))
    else:
        env = {k: _format(str(v), spec, f"env {k!r}") for k, v in (workflow.env or {}).items()}

    if callable(workflow.continue_on_error):
        continue_on_error = bool(workflow.continue_on_error(spec))
    elif workflow.continue_on_error is None:
        continue_on_error = spec.allows_failure()
    else:
        continue_on_error = bool(workflow.continue_on_error)

    steps = tuple(
        replace(
            s,
            name=_format(s.name, spec, "step name"),
            inputs=_render_inputs(s.inputs, spec, s.name),
        )
        for s in workflow.steps
    )
    return BoundJob(spec=spec, name=name, steps=steps, env=env, continue_on_error=continue_on_error)


def plan_jobs(
    workflow: Workflow,
    executors: Optional[Mapping[str, StepExecutor]] = None,
) -> List[BoundJob]:
    """Expand + bind + validate. Raises ConfigurationError before anything runs."""
    if not workflow.steps:
        raise ConfigurationError(f"Workflow {workflow.name!r} has no steps")
    executors = resolve_executors(executors)
    jobs = [bind_job(workflow, spec) for spec in expand_matrix(workflow.matrix)]
    for j in jobs:
        check_steps(j, executors)
    return jobs


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

def _default_workers() -> int:
    if settings.MAX_WORKERS:
        return settings.MAX_WORKERS
    c = os.cpu_count() or 2
    return max(1, c - 1)


def execute_jobs(
    jobs: List[BoundJob],
    *,
    executors: Mapping[str, StepExecutor],
    token: CancelToken,
    fail_fast: bool,
    run_id: str = "",
    max_workers: int | None = None,
    repo_root: str | Path = ".",
    console: Console | None = None,
) -> List[JobOutcome]:
    """
    Run jobs in parallel, at most `max_workers` at a time.

    Jobs that never got a worker are reported `cancelled` when fail-fast
    trips or the run token is cancelled. In-flight jobs always finish.
    """
    console = console or get_console()
    if max_workers is None:
        max_workers = _default_workers()

    pending = deque(jobs)
    outcomes: Dict = {}
    failed = False
    in_flight: Dict = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while pending or in_flight:
            # schedule while there are free workers
            while pending and len(in_flight) < max_workers:
                if (fail_fast and failed) or token.cancelled:
                    break
                job = pending.popleft()
                fut = pool.submit(
                    run_job,
                    job,
                    executors=executors,
                    token=token,
                    run_id=run_id,
                    repo_root=repo_root,
                    console=console,
                )
                in_flight[fut] = job

            if not in_flight:
                break

            # wait for one completion, then loop to fill the freed slot
            fut = next(as_completed(list(in_flight.keys())))
            job = in_flight.pop(fut)
            outcome = fut.result()
            outcomes[job.spec.key] = outcome
            if outcome.status == FAILED:
                failed = True

    if pending:
        reason = "fail-fast" if failed and fail_fast else "run cancelled"
        console.print_info(f"Cancelling {len(pending)} job(s) not yet started ({reason})")
    for job in pending:
        outcomes[job.spec.key] = cancelled_outcome(job)

    return [outcomes[j.spec.key] for j in jobs]


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_workflow(
    workflow: Workflow,
    event: Event,
    *,
    governor: ConcurrencyGovernor,
    executors: Optional[Mapping[str, StepExecutor]] = None,
    max_workers: int | None = None,
    fail_fast: bool | None = None,
    repo_root: str | Path = ".",
    console: Console | None = None,
) -> Optional[RunOutcome]:
    """
    Trigger -> expand -> admit -> execute -> report.

    Returns None when the trigger rejects the event. ConfigurationError is
    raised before the run is admitted, so it never cancels another run.
    """
    console = console or get_console()

    if not event.workflow:
        event = replace(event, workflow=workflow.name)

    decision = evaluate_trigger(workflow.trigger, event)
    if not decision:
        console.print_trigger_rejected(workflow.name, decision.reason)
        return None
    console.print_debug(f"trigger: {decision.reason}")

    executors = resolve_executors(executors)
    jobs = plan_jobs(workflow, executors)

    policy = workflow.concurrency or DEFAULT_POLICY
    key = run_key(policy, event)
    admission = governor.admit(key, event.run_id, should_cancel_in_progress(policy, event))
    for prior in admission.superseded:
        console.print_superseded(prior.run_id, key)

    console.print_run_started(
        workflow=workflow.name,
        run_id=event.run_id,
        run_key=key,
        job_count=len(jobs),
    )

    try:
        outcomes = execute_jobs(
            jobs,
            executors=executors,
            token=admission.handle.token,
            fail_fast=workflow.fail_fast if fail_fast is None else fail_fast,
            run_id=event.run_id,
            max_workers=max_workers,
            repo_root=repo_root,
            console=console,
        )
    finally:
        governor.release(admission.handle)

    superseded = admission.handle.superseded_by is not None
    if superseded:
        console.print_info(f"Run {event.run_id} was superseded; discarding its results")

    outcome = report(outcomes, run_id=event.run_id, run_key=key, superseded=superseded)
    console.print_results(outcome)
    return outcome
