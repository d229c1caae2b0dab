from .dsl import axis, call, concurrency, matrix, sh, trigger, uses, wf
from .governor import ConcurrencyGovernor
from .matrix import expand
from .model import Event, JobOutcome, JobSpec, RunOutcome, Step, Workflow
from .reporter import report
from .runner import load_workflow, run_workflow
from .triggers import evaluate_trigger

__all__ = [
    "axis",
    "call",
    "concurrency",
    "matrix",
    "sh",
    "trigger",
    "uses",
    "wf",
    "ConcurrencyGovernor",
    "expand",
    "Event",
    "JobOutcome",
    "JobSpec",
    "RunOutcome",
    "Step",
    "Workflow",
    "report",
    "load_workflow",
    "run_workflow",
    "evaluate_trigger",
]
