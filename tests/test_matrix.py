import pytest

from relayci.dsl import job, sh
from relayci.errors import ResolutionError
from relayci.matrix import Matrix, expand
from relayci.model import JobStatus


def _job(**kwargs):
    return job("test", sh("Build", "cargo build"), **kwargs)


def test_product_size_and_order() -> None:
    m = Matrix({"os": ["ubuntu-latest", "macos-latest"], "toolchain": ["stable", "beta", "nightly"]})
    combos = list(m.combinations())
    assert len(m) == len(combos) == 6
    assert combos[0] == {"os": "ubuntu-latest", "toolchain": "stable"}
    assert combos[1] == {"os": "ubuntu-latest", "toolchain": "beta"}
    assert combos[-1] == {"os": "macos-latest", "toolchain": "nightly"}


def test_ci_definition_expands_to_one_job_run(ci_definition) -> None:
    runs = expand(ci_definition.jobs["test"])
    assert len(runs) == 1
    run = runs[0]
    assert run.axes == {"os": "ubuntu-latest", "rust": "stable"}
    assert run.runner == "ubuntu-latest"
    assert run.status == JobStatus.PENDING
    assert run.name == "test (ubuntu-latest, stable)"


def test_empty_axis_yields_no_job_runs() -> None:
    assert expand(_job(matrix={"os": ["ubuntu-latest"], "toolchain": []})) == []


def test_no_axes_yields_a_single_job_run() -> None:
    runs = expand(_job())
    assert len(runs) == 1
    assert runs[0].axes == {}
    assert runs[0].runner == "ubuntu-latest"


def test_duplicate_values_are_not_deduplicated() -> None:
    runs = expand(_job(matrix={"toolchain": ["stable", "stable"]}))
    assert len(runs) == 2
    assert runs[0].id != runs[1].id


def test_each_job_run_shares_the_step_list() -> None:
    spec = _job(runs_on="${{ matrix.os }}", matrix={"os": ["ubuntu-latest", "windows-latest"]})
    runs = expand(spec)
    assert [r.runner for r in runs] == ["ubuntu-latest", "windows-latest"]
    assert all(r.job.steps == spec.steps for r in runs)


def test_unknown_axis_in_runs_on() -> None:
    with pytest.raises(ResolutionError):
        expand(_job(runs_on="${{ matrix.arch }}", matrix={"os": ["ubuntu-latest"]}))
