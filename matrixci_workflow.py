# matrixci_workflow.py
# Rust crate CI: toolchain x platform x mode, pushes to master, PRs and a weekly run.
from __future__ import annotations

from matrixci.dsl import axis, concurrency, matrix, sh, trigger, wf


def workflow():
    return wf(
        "code",
        sh(
            "Install rust toolchain",
            "rustup toolchain install {rust-toolchain[name]} --component rustfmt,clippy "
            "&& rustup default {rust-toolchain[name]}",
        ),
        sh(
            "Print build environment info",
            "set -x; cargo --version; cargo clippy --version; env",
        ),
        sh("Run cargo {mode[cargo-command]}", "cargo {mode[cargo-command]}"),
        matrix=matrix(
            axis("rust-toolchain", {"name": "stable", "allow-fail": False}),
            axis(
                "platform",
                {"name": "Linux", "os": "ubuntu-latest", "env": {}, "experimental": False},
            ),
            axis(
                "mode",
                {"name": "clippy", "cargo-command": "clippy"},
                {"name": "test", "cargo-command": "test"},
            ),
        ),
        fail_fast=False,
        trigger=trigger(push=["master"], pull_request=True, schedule=["0 20 * * 0"]),
        concurrency=concurrency(
            "{workflow}-{ref_or_run_id}",
            cancel_in_progress=lambda event: event.ref != "refs/heads/master",
        ),
        env=lambda spec: dict(spec["platform"].get("env", {})),
    )
