from __future__ import annotations

import shutil

import pytest

from matrixci.dsl import call, sh, uses
from matrixci.errors import CancellationError, ConfigurationError, StepFailure
from matrixci.executor import check_steps, resolve_executors, run_job
from matrixci.governor import CancelToken
from matrixci.model import BoundJob, JobSpec

SPEC = JobSpec(values={"mode": {"name": "test"}})


def _job(*steps, continue_on_error=False, env=None):
    return BoundJob(
        spec=SPEC,
        name="job",
        steps=tuple(steps),
        env=env or {},
        continue_on_error=continue_on_error,
    )


def _run(job, token=None, **kwargs):
    return run_job(job, executors=resolve_executors(), token=token or CancelToken(), **kwargs)


def _fail(ctx):
    raise StepFailure(job=ctx.job, step=ctx.step.name, message="boom")


def _statuses(outcome):
    return [s.status for s in outcome.steps]


def test_steps_run_in_order():
    seen = []
    job = _job(*(call(f"s{i}", lambda ctx, i=i: seen.append(i)) for i in range(4)))

    outcome = _run(job)

    assert seen == [0, 1, 2, 3]
    assert outcome.status == "succeeded"
    assert _statuses(outcome) == ["succeeded"] * 4
    assert not outcome.degraded


def test_failure_skips_rest_but_runs_always_and_failure_steps():
    seen = []
    job = _job(
        call("build", lambda ctx: seen.append("build")),
        call("test", _fail),
        call("package", lambda ctx: seen.append("package")),
        call("report", lambda ctx: seen.append("report"), when="always"),
        call("notify", lambda ctx: seen.append("notify"), when="failure"),
    )

    outcome = _run(job)

    assert outcome.status == "failed"
    assert seen == ["build", "report", "notify"]
    assert _statuses(outcome) == ["succeeded", "failed", "skipped", "succeeded", "succeeded"]
    assert "boom" in outcome.steps[1].error


def test_failure_only_step_is_skipped_on_success():
    job = _job(call("ok", lambda ctx: None), call("notify", _fail, when="failure"))

    outcome = _run(job)

    assert outcome.status == "succeeded"
    assert _statuses(outcome) == ["succeeded", "skipped"]


def test_allow_failure_step_is_masked():
    seen = []
    job = _job(call("flaky", _fail, allow_failure=True), call("after", lambda ctx: seen.append(1)))

    outcome = _run(job)

    assert outcome.status == "succeeded"
    assert outcome.degraded
    assert outcome.steps[0].status == "failed"
    assert outcome.steps[0].allowed_failure
    assert seen == [1]


def test_continue_on_error_job_reports_degraded_success():
    job = _job(call("test", _fail), call("after", lambda ctx: None), continue_on_error=True)

    outcome = _run(job)

    assert outcome.status == "succeeded"
    assert outcome.degraded
    assert _statuses(outcome) == ["failed", "skipped"]


@pytest.mark.parametrize(
    "results, allowed, expected",
    [
        ([True, True], [False, False], "succeeded"),
        ([False, True], [True, False], "succeeded"),
        ([True, False], [False, False], "failed"),
        ([False, False], [True, False], "failed"),
    ],
)
def test_job_succeeds_iff_every_failure_is_allowed(results, allowed, expected):
    steps = [
        call(f"s{i}", lambda ctx, ok=ok: ok, allow_failure=a, when="always")
        for i, (ok, a) in enumerate(zip(results, allowed))
    ]

    assert _run(_job(*steps)).status == expected


def test_false_return_or_exception_fails_step():
    def explode(ctx):
        raise RuntimeError("unexpected")

    outcome = _run(_job(call("false", lambda ctx: False), call("raise", explode, when="always")))

    assert _statuses(outcome) == ["failed", "failed"]
    assert outcome.steps[1].error == "unexpected"


def test_cancelled_token_skips_every_step():
    seen = []
    token = CancelToken()
    token.cancel("superseded")

    outcome = _run(_job(call("a", lambda ctx: seen.append(1))), token=token)

    assert outcome.status == "cancelled"
    assert seen == []
    assert _statuses(outcome) == ["skipped"]


def test_cancellation_is_honoured_at_the_next_step_boundary():
    seen = []

    def cancel_mid_step(ctx):
        ctx.token.cancel("superseded")
        seen.append("first")  # the running step still finishes

    outcome = _run(_job(call("first", cancel_mid_step), call("second", lambda ctx: seen.append("second"))))

    assert outcome.status == "cancelled"
    assert seen == ["first"]
    assert _statuses(outcome) == ["succeeded", "skipped"]


def test_step_context_carries_env_and_inputs():
    captured = {}

    def capture(ctx):
        captured["env"] = dict(ctx.env)
        captured["spec"] = ctx.spec
        captured["run_id"] = ctx.run_id

    job = _job(
        call("capture", capture),
        env={"RUST_BACKTRACE": "1"},
    )

    _run(job, run_id="r-9")

    assert captured["env"] == {"RUST_BACKTRACE": "1"}
    assert captured["spec"] is SPEC
    assert captured["run_id"] == "r-9"


def test_shell_executor_success_and_failure(tmp_path):
    job = _job(
        sh("write", "echo $GREETING > out.txt", env={"GREETING": "hello"}),
        sh("fail", "exit 3"),
    )

    outcome = _run(job, repo_root=tmp_path)

    assert (tmp_path / "out.txt").read_text().strip() == "hello"
    assert _statuses(outcome) == ["succeeded", "failed"]
    assert "exit=3" in outcome.steps[1].error


def test_shell_executor_missing_cwd_fails(tmp_path):
    outcome = _run(_job(sh("nowhere", "true", cwd="missing")), repo_root=tmp_path)

    assert outcome.status == "failed"
    assert "cwd not found" in outcome.steps[0].error


def test_custom_executor_receives_inputs():
    seen = {}

    def checkout(step, ctx):
        seen.update(ctx.inputs)

    outcome = run_job(
        _job(uses("Checkout", "checkout", ref="main")),
        executors=resolve_executors({"checkout": checkout}),
        token=CancelToken(),
    )

    assert outcome.status == "succeeded"
    assert seen == {"ref": "main"}


def test_check_steps_rejects_unknown_executor_and_condition():
    with pytest.raises(ConfigurationError, match="unknown executor"):
        check_steps(_job(uses("Checkout", "checkout")), resolve_executors())

    with pytest.raises(ConfigurationError, match="run_condition"):
        check_steps(_job(call("x", lambda ctx: None, when="sometimes")), resolve_executors())


def test_executor_can_stop_early_on_cancellation():
    def watch(ctx):
        ctx.token.cancel("superseded")
        raise CancellationError("stopped")

    outcome = _run(_job(call("watch", watch), call("after", lambda ctx: None)))

    assert outcome.status == "cancelled"
    assert _statuses(outcome) == ["skipped", "skipped"]


@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")
def test_shell_steps_run_under_bash(tmp_path):
    outcome = _run(_job(sh("bashism", "[[ -n $BASH_VERSION ]]")), repo_root=tmp_path)

    assert outcome.status == "succeeded"


def test_shell_input_overrides_interpreter(tmp_path):
    job = _job(sh("sh", "echo $0 > shell.txt", shell="/bin/sh"))

    outcome = _run(job, repo_root=tmp_path)

    assert outcome.status == "succeeded"
    assert (tmp_path / "shell.txt").read_text().strip() == "/bin/sh"
