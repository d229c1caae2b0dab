# config.py
# Declarative (JSON) workflow descriptions, validated with pydantic and
# turned into the same Workflow objects the Python DSL builds.
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .model import Axis, ConcurrencyPolicy, Event, MatrixSpec, Step, TriggerSpec, Workflow


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StepModel(_Model):
    name: str
    uses: str = "shell"
    run: Optional[str] = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    allow_failure: bool = False
    run_condition: Literal["success", "always", "failure"] = "success"
    cwd: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)

    def to_step(self) -> Step:
        inputs = dict(self.inputs)
        if self.run is not None:
            inputs["run"] = self.run
        return Step(
            name=self.name,
            uses=self.uses,
            inputs=inputs,
            allow_failure=self.allow_failure,
            run_condition=self.run_condition,
            cwd=self.cwd,
            env=self.env,
        )


class MatrixModel(_Model):
    # dict order is the declared axis order
    axes: dict[str, list[Any]] = Field(default_factory=dict)
    include: list[dict[str, Any]] = Field(default_factory=list)
    exclude: list[dict[str, Any]] = Field(default_factory=list)

    def to_spec(self) -> MatrixSpec:
        return MatrixSpec(
            axes=tuple(Axis(name=k, variants=tuple(v)) for k, v in self.axes.items()),
            include=tuple(self.include),
            exclude=tuple(self.exclude),
        )


class ConcurrencyModel(_Model):
    group: str = "{workflow}-{ref_or_run_id}"
    cancel_in_progress: bool = False
    # refs whose in-progress runs are never cancelled (e.g. the main branch)
    protected_refs: list[str] = Field(default_factory=list)

    def to_policy(self) -> ConcurrencyPolicy:
        if not self.protected_refs:
            return ConcurrencyPolicy(group=self.group, cancel_in_progress=self.cancel_in_progress)

        protected = frozenset(self.protected_refs)
        enabled = self.cancel_in_progress

        def cancel(event: Event) -> bool:
            return enabled and event.ref not in protected

        return ConcurrencyPolicy(group=self.group, cancel_in_progress=cancel)


class TriggerModel(_Model):
    push: Optional[list[str]] = None
    pull_request: bool = True
    schedule: list[str] = Field(default_factory=list)

    def to_spec(self) -> TriggerSpec:
        kinds = []
        if self.push is not None:
            kinds.append("push")
        if self.pull_request:
            kinds.append("pull_request")
        if self.schedule:
            kinds.append("schedule")
        return TriggerSpec(
            event_kinds=tuple(kinds),
            ref_filters=tuple(self.push or ()),
            cron_schedule=tuple(self.schedule),
        )


class WorkflowModel(_Model):
    name: str
    on: Optional[TriggerModel] = None
    concurrency: Optional[ConcurrencyModel] = None
    matrix: MatrixModel
    fail_fast: bool = True
    job_name: Optional[str] = None
    continue_on_error: Optional[bool] = None
    env: dict[str, str] = Field(default_factory=dict)
    steps: list[StepModel] = Field(min_length=1)

    def to_workflow(self) -> Workflow:
        return Workflow(
            name=self.name,
            matrix=self.matrix.to_spec(),
            steps=[s.to_step() for s in self.steps],
            fail_fast=self.fail_fast,
            concurrency=self.concurrency.to_policy() if self.concurrency else None,
            trigger=self.on.to_spec() if self.on else TriggerSpec(),
            job_name=self.job_name,
            continue_on_error=self.continue_on_error,
            env=self.env or None,
        )


def load_description(data: dict[str, Any]) -> Workflow:
    """Validate a workflow description dict and build a Workflow."""
    try:
        model = WorkflowModel.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid workflow description:\n{e}") from e
    return model.to_workflow()


def load_description_file(path: str | Path) -> Workflow:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{p.name} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{p.name} must contain a JSON object")
    return load_description(data)
