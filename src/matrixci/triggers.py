# triggers.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch

from .errors import EventError
from .model import EVENT_KINDS, Event, TriggerSpec

BRANCH_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class TriggerDecision:
    admitted: bool
    reason: str

    def __bool__(self) -> bool:
        return self.admitted


def normalize_cron(expr: str) -> str:
    return " ".join(expr.split())


def _short_ref(ref: str) -> str:
    return ref[len(BRANCH_PREFIX):] if ref.startswith(BRANCH_PREFIX) else ref


def _matches_any(ref: str, patterns: tuple[str, ...]) -> bool:
    short = _short_ref(ref)
    return any(fnmatch(ref, p) or fnmatch(short, p) for p in patterns)


def validate_event(event: Event) -> None:
    if event.kind not in EVENT_KINDS:
        raise EventError(f"Unknown event kind {event.kind!r}. Expected one of {list(EVENT_KINDS)}")
    if event.kind == "push" and not event.ref:
        raise EventError("push event has no ref")
    if event.kind == "schedule" and not (event.cron and event.cron.strip()):
        raise EventError("schedule event has no cron expression")


def evaluate_trigger(trigger: TriggerSpec, event: Event) -> TriggerDecision:
    """
    Decide whether `event` starts a run.

      - push: ref must match one of trigger.ref_filters (empty list = any ref)
      - pull_request: always
      - schedule: event cron must equal a configured schedule
    """
    validate_event(event)

    if event.kind not in trigger.event_kinds:
        return TriggerDecision(False, f"event kind {event.kind!r} not enabled")

    if event.kind == "push":
        if not trigger.ref_filters:
            return TriggerDecision(True, "push (no ref filter)")
        if _matches_any(event.ref, trigger.ref_filters):
            return TriggerDecision(True, f"push to {event.ref} matched {list(trigger.ref_filters)}")
        return TriggerDecision(False, f"push to {event.ref} not in {list(trigger.ref_filters)}")

    if event.kind == "pull_request":
        return TriggerDecision(True, "pull_request")

    cron = normalize_cron(event.cron)
    if cron in {normalize_cron(c) for c in trigger.cron_schedule}:
        return TriggerDecision(True, f"schedule '{cron}'")
    return TriggerDecision(False, f"schedule '{cron}' not configured")
