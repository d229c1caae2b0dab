# reporter.py
from __future__ import annotations

from typing import Any, Dict, Iterable

from .model import CANCELLED, FAILED, SUCCEEDED, JobOutcome, RunOutcome


def report(
    job_outcomes: Iterable[JobOutcome],
    *,
    run_id: str,
    run_key: str | None = None,
    superseded: bool = False,
) -> RunOutcome:
    """
    Fold job outcomes into one run outcome. Pure: same input, same output.

    A superseded run reports `cancelled` and drops its job outcomes.
    """
    if superseded:
        return RunOutcome(run_id=run_id, run_key=run_key, status=CANCELLED, jobs={}, superseded=True)

    jobs: Dict = {}
    for o in job_outcomes:
        jobs.setdefault(o.spec.key, o)

    statuses = {o.status for o in jobs.values()}
    if FAILED in statuses:
        status = FAILED
    elif CANCELLED in statuses:
        status = CANCELLED
    else:
        status = SUCCEEDED

    return RunOutcome(run_id=run_id, run_key=run_key, status=status, jobs=jobs)


def outcome_to_dict(outcome: RunOutcome) -> Dict[str, Any]:
    """JSON-ready form of a RunOutcome (for CLI output and the status API)."""
    jobs = []
    for o in outcome.jobs.values():
        jobs.append(
            {
                "name": o.name,
                "matrix": dict(o.spec.values),
                "included": o.spec.included,
                "status": o.status,
                "degraded": o.degraded,
                "steps": [
                    {
                        "name": s.name,
                        "status": s.status,
                        "allowed_failure": s.allowed_failure,
                        "error": s.error,
                        "duration_s": round(s.duration_s, 3),
                    }
                    for s in o.steps
                ],
            }
        )
    return {
        "run_id": outcome.run_id,
        "run_key": outcome.run_key,
        "status": outcome.status,
        "superseded": outcome.superseded,
        "jobs": jobs,
    }
