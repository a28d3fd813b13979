# relayci_workflow.py
# The same pipeline as ci.yml, written with the Python DSL.
from __future__ import annotations

from relayci.dsl import cache_step, checkout_step, job, on, pipeline, sh, toolchain_step


def workflow():
    return pipeline(
        "Continuous integration",
        job(
            "test",
            toolchain_step("Install Rust environment", "${{ matrix.rust }}", components=["rustfmt"]),
            checkout_step("Checkout code"),
            sh("Check formatting", "cargo fmt --all -- --check"),
            cache_step(
                "Cache dependencies",
                paths=["~/.cargo/registry", "~/.cargo/git", "target"],
                key="${{ runner.OS }}-cargo-${{ hashFiles('**/Cargo.lock') }}",
                restore_keys=["${{ runner.OS }}-cargo-"],
            ),
            sh("Build library (default features)", "cargo build"),
            sh("Test library (default features)", "cargo test"),
            sh("Build library (all features)", "cargo build --all-features"),
            sh("Test library (all features)", "cargo test --all-features"),
            sh("Build program", "cargo build --bin tree-sitter-graph --features=cli"),
            runs_on="${{ matrix.os }}",
            matrix={"os": ["ubuntu-latest"], "rust": ["stable"]},
        ),
        triggers=on(push=["main"], pull_request=True, schedule=["0 0 1,15 * *"]),
    )
