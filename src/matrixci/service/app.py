from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, Mapping, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from matrixci.errors import ConfigurationError, EventError, GovernorConflict
from matrixci.executor import StepExecutor
from matrixci.governor import ConcurrencyGovernor
from matrixci.model import Event, RunOutcome, Workflow
from matrixci.reporter import outcome_to_dict
from matrixci.runner import run_workflow

# -------------------- Schemas --------------------

class EventRequest(BaseModel):
    kind: str
    ref: Optional[str] = None
    cron: Optional[str] = None
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sha: Optional[str] = None


class StepResultResponse(BaseModel):
    name: str
    status: str
    allowed_failure: bool
    error: Optional[str]
    duration_s: float


class JobResponse(BaseModel):
    name: str
    matrix: dict[str, Any]
    included: bool
    status: str
    degraded: bool
    steps: list[StepResultResponse]


class RunResponse(BaseModel):
    run_id: str
    run_key: Optional[str]
    status: str
    superseded: bool = False
    jobs: list[JobResponse]


class EventResponse(BaseModel):
    admitted: bool
    run: Optional[RunResponse] = None


# -------------------- Storage --------------------

class RunStore:
    """In-memory outcome store: by run id, and latest authoritative run per key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, RunOutcome] = {}
        self._latest: Dict[str, str] = {}

    def put(self, outcome: RunOutcome) -> None:
        with self._lock:
            self._runs[outcome.run_id] = outcome
            # superseded runs never become the status of their key
            if outcome.run_key is not None and not outcome.superseded:
                self._latest[outcome.run_key] = outcome.run_id

    def get(self, run_id: str) -> Optional[RunOutcome]:
        with self._lock:
            return self._runs.get(run_id)

    def latest(self, run_key: str) -> Optional[RunOutcome]:
        with self._lock:
            run_id = self._latest.get(run_key)
            return self._runs.get(run_id) if run_id else None


# -------------------- App --------------------

def create_app(
    workflow: Workflow,
    *,
    governor: Optional[ConcurrencyGovernor] = None,
    executors: Optional[Mapping[str, StepExecutor]] = None,
    store: Optional[RunStore] = None,
    max_workers: int | None = None,
) -> FastAPI:
    app = FastAPI(title="matrixci status")
    governor = governor or ConcurrencyGovernor()
    store = store or RunStore()
    app.state.governor = governor
    app.state.store = store

    # Plain `def` endpoints run in FastAPI's threadpool, so a long run does
    # not block a newer event from superseding it.
    @app.post("/events", response_model=EventResponse)
    def post_event(req: EventRequest):
        event = Event(
            kind=req.kind,
            ref=req.ref,
            cron=req.cron,
            workflow=workflow.name,
            run_id=req.run_id,
            sha=req.sha,
        )
        try:
            outcome = run_workflow(
                workflow,
                event,
                governor=governor,
                executors=executors,
                max_workers=max_workers,
            )
        except EventError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except GovernorConflict as e:
            raise HTTPException(status_code=409, detail=str(e))

        if outcome is None:
            return EventResponse(admitted=False)
        store.put(outcome)
        return EventResponse(admitted=True, run=RunResponse(**outcome_to_dict(outcome)))

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        outcome = store.get(run_id)
        if outcome is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return RunResponse(**outcome_to_dict(outcome))

    @app.get("/status/{run_key:path}", response_model=RunResponse)
    def get_status(run_key: str):
        outcome = store.latest(run_key)
        if outcome is None:
            raise HTTPException(status_code=404, detail="No run for key")
        return RunResponse(**outcome_to_dict(outcome))

    return app
