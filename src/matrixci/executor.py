# executor.py
from __future__ import annotations

import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import CancellationError, ConfigurationError, StepFailure
from .governor import CancelToken
from .model import (
    CANCELLED,
    FAILED,
    SKIPPED,
    SUCCEEDED,
    BoundJob,
    JobOutcome,
    JobSpec,
    Step,
    StepResult,
)
from .ui.console import Console, get_console

RUN_CONDITIONS = ("success", "always", "failure")

# Keep failure output short enough for a console line / status payload.
OUTPUT_TAIL = 4000

# Shell steps run under bash when it is installed, like a CI runner's default.
DEFAULT_SHELL = shutil.which("bash") or "/bin/sh"


@dataclass
class StepContext:
    """What a step executor gets to see."""
    run_id: str
    job: str
    spec: JobSpec
    step: Step
    inputs: Mapping[str, Any]
    env: Dict[str, str]
    cwd: Path
    token: CancelToken


StepExecutor = Callable[[Step, StepContext], Any]


# ----------------------------------------------------------------------
# Built-in step executors
# ----------------------------------------------------------------------

def shell_executor(step: Step, ctx: StepContext) -> None:
    cmd = ctx.inputs.get("run")
    if not cmd:
        raise StepFailure(job=ctx.job, step=step.name, message="shell step has no 'run' input")
    if not ctx.cwd.exists():
        raise StepFailure(job=ctx.job, step=step.name, message=f"cwd not found: {ctx.cwd}")

    env = os.environ.copy()
    env.update(ctx.env)

    shell = ctx.inputs.get("shell") or DEFAULT_SHELL
    proc = subprocess.run(
        [shell, "-c", cmd],
        cwd=str(ctx.cwd),
        env=env,
        text=True,
        capture_output=True,
    )

    if proc.returncode != 0:
        raise StepFailure(
            job=ctx.job,
            step=step.name,
            message=cmd,
            exit_code=proc.returncode,
            stdout=proc.stdout[-OUTPUT_TAIL:],
            stderr=proc.stderr[-OUTPUT_TAIL:],
        )


def call_executor(step: Step, ctx: StepContext) -> None:
    fn = ctx.inputs.get("fn")
    if not callable(fn):
        raise StepFailure(job=ctx.job, step=step.name, message="call step has no callable 'fn' input")
    if fn(ctx) is False:
        raise StepFailure(job=ctx.job, step=step.name, message="step returned False")


DEFAULT_EXECUTORS: Dict[str, StepExecutor] = {
    "shell": shell_executor,
    "call": call_executor,
}


def resolve_executors(extra: Optional[Mapping[str, StepExecutor]] = None) -> Dict[str, StepExecutor]:
    executors = dict(DEFAULT_EXECUTORS)
    if extra:
        executors.update(extra)
    return executors


def check_steps(job: BoundJob, executors: Mapping[str, StepExecutor]) -> None:
    for step in job.steps:
        if step.uses not in executors:
            raise ConfigurationError(
                f"[{job.name}] step '{step.name}' uses unknown executor {step.uses!r}. "
                f"Known: {sorted(executors)}"
            )
        if step.run_condition not in RUN_CONDITIONS:
            raise ConfigurationError(
                f"[{job.name}] step '{step.name}' has bad run_condition {step.run_condition!r}"
            )


# ----------------------------------------------------------------------
# Job execution
# ----------------------------------------------------------------------

def _should_run(step: Step, job_failed: bool) -> bool:
    if step.run_condition == "always":
        return True
    if step.run_condition == "failure":
        return job_failed
    return not job_failed


def run_job(
    job: BoundJob,
    *,
    executors: Mapping[str, StepExecutor],
    token: CancelToken,
    run_id: str = "",
    repo_root: str | Path = ".",
    console: Console | None = None,
) -> JobOutcome:
    """
    Run one bound job's steps in order.

    - a failed step without allow_failure marks the job failed; later steps
      only run if their run_condition asks for it
    - job.continue_on_error turns a failed job into a degraded success
    - the cancel token is checked before every step; once set the rest of
      the steps are skipped and the job ends cancelled
    - an executor may raise CancellationError to stop early; same result
    """
    console = console or get_console()
    root = Path(repo_root).resolve()
    results: List[StepResult] = []
    job_failed = False
    degraded = False
    cancelled = False

    console.print_job_start(job.name)

    for step in job.steps:
        if cancelled or token.cancelled:
            cancelled = True
            results.append(StepResult(name=step.name, status=SKIPPED))
            continue

        if not _should_run(step, job_failed):
            console.print_step_skipped(step.name)
            results.append(StepResult(name=step.name, status=SKIPPED))
            continue

        console.print_step(step.name)
        env = dict(job.env)
        env.update(step.env)
        ctx = StepContext(
            run_id=run_id,
            job=job.name,
            spec=job.spec,
            step=step,
            inputs=step.inputs,
            env=env,
            cwd=(root / (step.cwd or ".")).resolve(),
            token=token,
        )

        started = time.monotonic()
        try:
            executors[step.uses](step, ctx)
        except CancellationError:
            cancelled = True
            results.append(StepResult(name=step.name, status=SKIPPED, duration_s=time.monotonic() - started))
            continue
        except Exception as e:
            duration = time.monotonic() - started
            results.append(
                StepResult(
                    name=step.name,
                    status=FAILED,
                    allowed_failure=step.allow_failure,
                    error=str(e),
                    duration_s=duration,
                )
            )
            exit_code = e.exit_code if isinstance(e, StepFailure) else None
            console.print_failure(step.name, str(e), exit_code=exit_code)
            if step.allow_failure:
                degraded = True
            else:
                job_failed = True
            continue

        results.append(
            StepResult(name=step.name, status=SUCCEEDED, duration_s=time.monotonic() - started)
        )

    if cancelled:
        status = CANCELLED
    elif job_failed and job.continue_on_error:
        status = SUCCEEDED
        degraded = True
    elif job_failed:
        status = FAILED
    else:
        status = SUCCEEDED

    console.print_job_result(job.name, status, degraded=degraded)
    return JobOutcome(
        spec=job.spec,
        name=job.name,
        steps=tuple(results),
        status=status,
        degraded=degraded,
    )


def cancelled_outcome(job: BoundJob) -> JobOutcome:
    """Outcome for a job that never started."""
    return JobOutcome(
        spec=job.spec,
        name=job.name,
        steps=tuple(StepResult(name=s.name, status=SKIPPED) for s in job.steps),
        status=CANCELLED,
    )
