# pipelines/metric_engine.py
# Gate for changes under horaedb/: style check and unit tests, run in parallel.
from __future__ import annotations

from ..dsl import env, job, on, setup, wf
from ..model import Pipeline
from ..step_workflows.checks import drift_step, make_step, tools_step

PROJECT_DIR = "horaedb"
PATHS = [f"{PROJECT_DIR}/**"]
RUST_VERSION = "nightly-2024-01-28"
CARGO_SORT = "--git https://github.com/DevinR528/cargo-sort --rev 55ec890 --locked"


def workflow() -> Pipeline:
    return wf(
        "Metric Engine CI",
        job(
            "style-check",
            tools_step(
                "Install check binaries",
                components=["clippy", "rustfmt"],
                cargo_installs=[CARGO_SORT],
            ),
            make_step("Run Style Check", "fmt", "sort", "clippy"),
            drift_step("Check lock"),
            cwd=PROJECT_DIR,
            timeout_minutes=60,
            packages=["protobuf-compiler"],
        ),
        job(
            "unit-test",
            make_step("Run Unit Tests", "test", kind="test"),
            drift_step("Check lock"),
            cwd=PROJECT_DIR,
            timeout_minutes=60,
            packages=["protobuf-compiler"],
        ),
        on=[
            on("merge_group"),
            on("workflow_dispatch"),
            on("push", branches=["main", "dev"], paths=PATHS),
            on("pull_request", paths=PATHS),
        ],
        env=env(
            RUSTFLAGS="-C debuginfo=1",
            CARGO_TERM_COLOR="always",
            RUST_BACKTRACE="1",
            LOCK_FILE="Cargo.lock",
            RUST_VERSION=RUST_VERSION,
        ),
        setup=setup(
            submodules=True,
            toolchain=[
                "rustup set auto-self-update disable",
                "rustup toolchain install ${RUST_VERSION} --profile minimal",
            ],
            quota="sudo make ensure-disk-quota",
            package_update="sudo apt update",
            package_install="sudo apt install --yes {packages}",
        ),
    )
