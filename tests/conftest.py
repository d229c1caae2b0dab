from __future__ import annotations

import pytest

from matrixci.dsl import axis, call, matrix, wf
from matrixci.ui.console import Console, get_console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    previous = get_console()
    set_console(Console(quiet=True))
    yield
    set_console(previous)


@pytest.fixture
def rust_matrix():
    return matrix(
        axis("rust-toolchain", {"name": "stable", "allow-fail": False}),
        axis("platform", {"name": "Linux", "os": "ubuntu-latest", "env": {}, "experimental": False}),
        axis(
            "mode",
            {"name": "clippy", "cargo-command": "clippy"},
            {"name": "test", "cargo-command": "test"},
        ),
    )


@pytest.fixture
def make_workflow(rust_matrix):
    def _make(*steps, **kwargs):
        if not steps:
            steps = (call("noop", lambda ctx: None),)
        kwargs.setdefault("matrix", rust_matrix)
        return wf("code", *steps, **kwargs)

    return _make
