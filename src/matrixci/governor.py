# governor.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError, GovernorConflict
from .model import ConcurrencyPolicy, Event


class CancelToken:
    """Cooperative cancellation flag, checked between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass(eq=False)
class RunHandle:
    run_id: str
    key: str
    token: CancelToken = field(default_factory=CancelToken)
    superseded_by: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


@dataclass(frozen=True)
class Admission:
    handle: RunHandle
    superseded: Tuple[RunHandle, ...] = ()

    @property
    def proceed(self) -> bool:
        # A later admit on the same key may already have superseded us.
        return not self.handle.cancelled

    @property
    def cancelled_prior_run(self) -> Optional[RunHandle]:
        return self.superseded[0] if self.superseded else None


class ConcurrencyGovernor:
    """
    Registry of active runs per RunKey.

    admit() is a single critical section: cancelling the previous owner and
    registering the new run happen under one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Dict[str, List[RunHandle]] = {}

    def admit(self, run_key: str, run_id: str, cancel_in_progress: bool) -> Admission:
        handle = RunHandle(run_id=run_id, key=run_key)
        with self._lock:
            current = self._active.setdefault(run_key, [])
            if any(h.run_id == run_id for h in current):
                raise GovernorConflict(f"run {run_id!r} already active for key {run_key!r}")

            superseded: Tuple[RunHandle, ...] = ()
            if cancel_in_progress and current:
                superseded = tuple(current)
                for h in superseded:
                    h.superseded_by = run_id
                    h.token.cancel(f"superseded by run {run_id}")
                current.clear()

            current.append(handle)
        return Admission(handle=handle, superseded=superseded)

    def release(self, handle: RunHandle) -> None:
        with self._lock:
            current = self._active.get(handle.key)
            if not current:
                return
            if handle in current:
                current.remove(handle)
            if not current:
                del self._active[handle.key]

    def active(self, run_key: str) -> List[RunHandle]:
        with self._lock:
            return list(self._active.get(run_key, []))


def _event_context(event: Event) -> dict:
    return {
        "workflow": event.workflow,
        "ref": event.ref or "",
        "run_id": event.run_id,
        "kind": event.kind,
        "sha": event.sha or "",
        "ref_or_run_id": event.ref or event.run_id,
    }


def run_key(policy: ConcurrencyPolicy, event: Event) -> str:
    if callable(policy.group):
        return str(policy.group(event))
    try:
        return policy.group.format_map(_event_context(event))
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigurationError(f"Bad concurrency group template {policy.group!r}: {e}") from e


def should_cancel_in_progress(policy: ConcurrencyPolicy, event: Event) -> bool:
    if callable(policy.cancel_in_progress):
        return bool(policy.cancel_in_progress(event))
    return bool(policy.cancel_in_progress)
