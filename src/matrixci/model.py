# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

# Step / job / run statuses
SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"
CANCELLED = "cancelled"

EVENT_KINDS = ("push", "pull_request", "schedule")


def freeze(value: Any) -> Any:
    """Turn variant values into something hashable (dicts/lists -> tuples)."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(freeze(v) for v in value)
    return value


def label_of(value: Any) -> str:
    if isinstance(value, Mapping):
        return str(value.get("name", ""))
    return str(value)


@dataclass(frozen=True)
class Axis:
    """A named matrix dimension with an ordered list of variants."""
    name: str
    variants: Tuple[Any, ...]


@dataclass(frozen=True)
class MatrixSpec:
    axes: Tuple[Axis, ...] = ()
    include: Tuple[Mapping[str, Any], ...] = ()
    exclude: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class JobSpec:
    """
    One concrete matrix combination.

    `values` maps axis name -> chosen variant. Entries that came from
    `include` may carry attributes that are not axes at all.
    """
    values: Mapping[str, Any]
    included: bool = False

    @property
    def key(self) -> Tuple[Tuple[str, Any], ...]:
        # key order in `values` is display order only
        return tuple(sorted((str(name), freeze(v)) for name, v in self.values.items()))

    @property
    def label(self) -> str:
        parts = [label_of(v) for v in self.values.values()]
        return " / ".join(p for p in parts if p)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def allows_failure(self) -> bool:
        """True if any variant declares `allow-fail` or `experimental`."""
        for v in self.values.values():
            if isinstance(v, Mapping) and (v.get("allow-fail") or v.get("experimental")):
                return True
        return False


@dataclass(frozen=True)
class Step:
    """A single unit of work inside a job, run by the executor named in `uses`."""
    name: str
    uses: str = "shell"
    inputs: Mapping[str, Any] = field(default_factory=dict)
    allow_failure: bool = False
    run_condition: str = "success"  # success | always | failure
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str  # succeeded | failed | skipped
    allowed_failure: bool = False
    error: str | None = None
    duration_s: float = 0.0


@dataclass(frozen=True)
class JobOutcome:
    spec: JobSpec
    name: str
    steps: Tuple[StepResult, ...]
    status: str  # succeeded | failed | cancelled
    degraded: bool = False


@dataclass(frozen=True)
class RunOutcome:
    run_id: str
    run_key: str | None
    status: str  # succeeded | failed | cancelled
    jobs: Mapping[Tuple, JobOutcome] = field(default_factory=dict)
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return self.status == SUCCEEDED


@dataclass(frozen=True)
class Event:
    """An incoming pipeline event (push, pull_request or schedule tick)."""
    kind: str
    ref: str | None = None
    cron: str | None = None
    workflow: str = ""
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    sha: str | None = None


@dataclass(frozen=True)
class TriggerSpec:
    event_kinds: Tuple[str, ...] = EVENT_KINDS
    ref_filters: Tuple[str, ...] = ()
    cron_schedule: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConcurrencyPolicy:
    """
    group: str.format template over the event, or a callable(Event) -> str.
    cancel_in_progress: bool or callable(Event) -> bool.
    """
    group: Union[str, Callable[[Event], str]] = "{workflow}-{ref_or_run_id}"
    cancel_in_progress: Union[bool, Callable[[Event], bool]] = False


@dataclass
class Workflow:
    """
    A matrix workflow: one step template expanded over every JobSpec.

    job_name / env / continue_on_error may be plain values (strings are
    formatted with the JobSpec values) or callables taking the JobSpec.
    """
    name: str
    matrix: MatrixSpec
    steps: List[Step]
    fail_fast: bool = True
    concurrency: Optional[ConcurrencyPolicy] = None
    trigger: TriggerSpec = field(default_factory=TriggerSpec)
    job_name: Union[str, Callable[[JobSpec], str], None] = None
    continue_on_error: Union[bool, Callable[[JobSpec], bool], None] = None
    env: Union[Dict[str, str], Callable[[JobSpec], Dict[str, str]], None] = None


@dataclass(frozen=True)
class BoundJob:
    """A JobSpec with its rendered name, env and steps, ready to execute."""
    spec: JobSpec
    name: str
    steps: Tuple[Step, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    continue_on_error: bool = False
