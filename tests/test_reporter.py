from __future__ import annotations

import json

from matrixci.model import JobOutcome, JobSpec, StepResult
from matrixci.reporter import outcome_to_dict, report


def _outcome(mode, status, degraded=False):
    spec = JobSpec(values={"mode": {"name": mode}})
    steps = (StepResult(name="step", status="failed" if status == "failed" else "succeeded"),)
    return JobOutcome(spec=spec, name=mode, steps=steps, status=status, degraded=degraded)


def test_all_succeeded():
    outcome = report([_outcome("a", "succeeded"), _outcome("b", "succeeded", degraded=True)], run_id="r")

    assert outcome.status == "succeeded"
    assert outcome.ok
    assert len(outcome.jobs) == 2


def test_any_failure_fails_the_run():
    outcome = report(
        [_outcome("a", "succeeded"), _outcome("b", "failed"), _outcome("c", "cancelled")],
        run_id="r",
        run_key="k",
    )

    assert outcome.status == "failed"
    assert outcome.run_key == "k"
    assert [j.name for j in outcome.jobs.values()] == ["a", "b", "c"]


def test_cancelled_jobs_without_failure():
    outcome = report([_outcome("a", "succeeded"), _outcome("b", "cancelled")], run_id="r")

    assert outcome.status == "cancelled"


def test_superseded_run_discards_job_outcomes():
    outcome = report([_outcome("a", "failed")], run_id="r", run_key="k", superseded=True)

    assert outcome.status == "cancelled"
    assert outcome.jobs == {}
    assert outcome.superseded


def test_report_is_idempotent():
    jobs = [_outcome("a", "succeeded"), _outcome("b", "failed")]

    assert report(jobs, run_id="r") == report(jobs, run_id="r")


def test_outcome_to_dict_is_json_ready():
    data = outcome_to_dict(report([_outcome("a", "failed")], run_id="r", run_key="k"))

    assert json.loads(json.dumps(data)) == data
    assert data["status"] == "failed"
    assert data["jobs"][0]["matrix"] == {"mode": {"name": "a"}}
    assert data["jobs"][0]["steps"][0]["status"] == "failed"
