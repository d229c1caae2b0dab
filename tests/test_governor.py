from __future__ import annotations

import threading

import pytest

from matrixci.dsl import concurrency
from matrixci.errors import ConfigurationError, GovernorConflict
from matrixci.governor import ConcurrencyGovernor, run_key, should_cancel_in_progress
from matrixci.model import Event


def test_first_admit_registers_and_proceeds():
    gov = ConcurrencyGovernor()

    adm = gov.admit("k", "r1", cancel_in_progress=True)

    assert adm.proceed
    assert adm.cancelled_prior_run is None
    assert gov.active("k") == [adm.handle]


def test_cancel_in_progress_supersedes_prior_run():
    gov = ConcurrencyGovernor()
    first = gov.admit("k", "r1", cancel_in_progress=True)

    second = gov.admit("k", "r2", cancel_in_progress=True)

    assert first.handle.cancelled
    assert not first.proceed
    assert second.proceed
    assert second.cancelled_prior_run is first.handle
    assert gov.active("k") == [second.handle]


def test_without_cancel_both_runs_stay_active():
    gov = ConcurrencyGovernor()
    first = gov.admit("k", "r1", cancel_in_progress=False)

    second = gov.admit("k", "r2", cancel_in_progress=False)

    assert not first.handle.cancelled
    assert second.superseded == ()
    assert gov.active("k") == [first.handle, second.handle]


def test_keys_are_independent():
    gov = ConcurrencyGovernor()
    a = gov.admit("a", "r1", cancel_in_progress=True)

    gov.admit("b", "r2", cancel_in_progress=True)

    assert not a.handle.cancelled


def test_release_is_idempotent():
    gov = ConcurrencyGovernor()
    adm = gov.admit("k", "r1", cancel_in_progress=False)

    gov.release(adm.handle)
    gov.release(adm.handle)

    assert gov.active("k") == []


def test_release_of_superseded_run_keeps_new_owner():
    gov = ConcurrencyGovernor()
    first = gov.admit("k", "r1", cancel_in_progress=True)
    second = gov.admit("k", "r2", cancel_in_progress=True)

    gov.release(first.handle)

    assert gov.active("k") == [second.handle]


def test_same_run_twice_is_a_conflict():
    gov = ConcurrencyGovernor()
    gov.admit("k", "r1", cancel_in_progress=False)

    with pytest.raises(GovernorConflict):
        gov.admit("k", "r1", cancel_in_progress=False)


def test_concurrent_admits_leave_exactly_one_owner():
    gov = ConcurrencyGovernor()
    n = 32
    barrier = threading.Barrier(n)
    admissions = []
    lock = threading.Lock()

    def admit(i):
        barrier.wait()
        adm = gov.admit("k", f"r{i}", cancel_in_progress=True)
        with lock:
            admissions.append(adm)

    threads = [threading.Thread(target=admit, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    active = gov.active("k")
    assert len(active) == 1
    assert sum(1 for a in admissions if not a.handle.cancelled) == 1
    assert not active[0].cancelled


def test_run_key_uses_ref_or_falls_back_to_run_id():
    policy = concurrency()

    assert run_key(policy, Event(kind="push", ref="refs/heads/dev", workflow="code")) == "code-refs/heads/dev"
    assert run_key(policy, Event(kind="schedule", cron="0 20 * * 0", workflow="code", run_id="42")) == "code-42"


def test_run_key_callable_group():
    policy = concurrency(lambda e: f"{e.workflow}:{e.kind}")

    assert run_key(policy, Event(kind="pull_request", workflow="code")) == "code:pull_request"


def test_bad_group_template_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        run_key(concurrency("{branch}"), Event(kind="push", ref="refs/heads/x"))


def test_cancel_in_progress_except_on_master():
    policy = concurrency(cancel_in_progress=lambda e: e.ref != "refs/heads/master")

    assert should_cancel_in_progress(policy, Event(kind="push", ref="refs/heads/dev"))
    assert not should_cancel_in_progress(policy, Event(kind="push", ref="refs/heads/master"))
    assert should_cancel_in_progress(concurrency(cancel_in_progress=True), Event(kind="pull_request"))
