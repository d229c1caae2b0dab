# src/matrixci/dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .model import (
    EVENT_KINDS,
    Axis,
    ConcurrencyPolicy,
    Event,
    JobSpec,
    MatrixSpec,
    Step,
    TriggerSpec,
    Workflow,
)


# ---------------------------------------------------------------------
# Step helpers
#
# String inputs (and step names) are str.format templates over the matrix
# values: "cargo {mode[cargo-command]}". Use {{ }} for literal braces.
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    allow_failure: bool = False,
    when: str = "success",
    shell: str | None = None,
) -> Step:
    """Create a shell step. `shell` overrides the interpreter (bash by default)."""
    inputs = {"run": cmd}
    if shell:
        inputs["shell"] = shell
    return Step(
        name=name,
        uses="shell",
        inputs=inputs,
        cwd=cwd,
        env=env or {},
        allow_failure=allow_failure,
        run_condition=when,
    )


def uses(
    name: str,
    executor: str,
    *,
    allow_failure: bool = False,
    when: str = "success",
    cwd: str | None = None,
    **inputs: Any,
) -> Step:
    """Step delegated to a registered executor: uses("Checkout", "checkout", ref="main")."""
    return Step(
        name=name,
        uses=executor,
        inputs=inputs,
        allow_failure=allow_failure,
        run_condition=when,
        cwd=cwd,
    )


def call(
    name: str,
    fn: Callable[..., Any],
    *,
    allow_failure: bool = False,
    when: str = "success",
) -> Step:
    """In-process step: fn(ctx) is called; raising or returning False fails it."""
    return Step(
        name=name,
        uses="call",
        inputs={"fn": fn},
        allow_failure=allow_failure,
        run_condition=when,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def axis(name: str, *variants: Any) -> Axis:
    """
    axis("mode", {"name": "clippy", "cargo-command": "clippy"}, {"name": "test", ...})
    axis("py", "3.11", "3.12")
    """
    if len(variants) == 1 and isinstance(variants[0], (list, tuple)):
        variants = tuple(variants[0])
    return Axis(name=name, variants=tuple(variants))


def matrix(
    *axes: Axis,
    include: Iterable[Mapping[str, Any]] = (),
    exclude: Iterable[Mapping[str, Any]] = (),
) -> MatrixSpec:
    return MatrixSpec(
        axes=tuple(axes),
        include=tuple(dict(i) for i in include),
        exclude=tuple(dict(e) for e in exclude),
    )


# ---------------------------------------------------------------------
# Trigger / concurrency
# ---------------------------------------------------------------------

def trigger(
    *,
    push: Optional[Sequence[str]] = None,
    pull_request: bool = True,
    schedule: Optional[Sequence[str]] = None,
) -> TriggerSpec:
    """
    trigger(push=["master"], pull_request=True, schedule=["0 20 * * 0"])

    push=None disables push events; push=[] accepts pushes to any ref.
    """
    kinds: List[str] = []
    if push is not None:
        kinds.append("push")
    if pull_request:
        kinds.append("pull_request")
    if schedule:
        kinds.append("schedule")
    return TriggerSpec(
        event_kinds=tuple(k for k in EVENT_KINDS if k in kinds),
        ref_filters=tuple(push or ()),
        cron_schedule=tuple(schedule or ()),
    )


def concurrency(
    group: Union[str, Callable[[Event], str]] = "{workflow}-{ref_or_run_id}",
    *,
    cancel_in_progress: Union[bool, Callable[[Event], bool]] = False,
) -> ConcurrencyPolicy:
    return ConcurrencyPolicy(group=group, cancel_in_progress=cancel_in_progress)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    name: str,
    *steps: Step,
    matrix: MatrixSpec,
    fail_fast: bool = True,
    concurrency: Optional[ConcurrencyPolicy] = None,
    trigger: Optional[TriggerSpec] = None,
    job_name: Union[str, Callable[[JobSpec], str], None] = None,
    continue_on_error: Union[bool, Callable[[JobSpec], bool], None] = None,
    env: Union[Dict[str, str], Callable[[JobSpec], Dict[str, str]], None] = None,
) -> Workflow:
    """
    Workflow definition helper.

    Users can write:
        from matrixci import wf, sh, axis, matrix

        def workflow():
            return wf(
                "code",
                sh("Run cargo", "cargo {mode[cargo-command]}"),
                matrix=matrix(axis("mode", ...)),
            )
    """
    if not steps:
        raise ValueError(f"wf({name!r}) must have at least one step")
    return Workflow(
        name=name,
        matrix=matrix,
        steps=list(steps),
        fail_fast=fail_fast,
        concurrency=concurrency,
        trigger=trigger or TriggerSpec(),
        job_name=job_name,
        continue_on_error=continue_on_error,
        env=env,
    )
