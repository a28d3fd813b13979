from click.testing import CliRunner

from relayci.cli import cli

from .conftest import REPO_ROOT

CI_YML = str(REPO_ROOT / "ci.yml")
EVENT_ARGS = ["--repo", "file:///repo", "--sha", "abc123"]


def test_check() -> None:
    result = CliRunner().invoke(cli, ["check", CI_YML])
    assert result.exit_code == 0
    assert "OK (1 job(s): test)" in result.output


def test_check_invalid_workflow(tmp_path) -> None:
    bad = tmp_path / "bad.yml"
    bad.write_text("on: push\njobs: {}\n")
    result = CliRunner().invoke(cli, ["check", str(bad)])
    assert result.exit_code == 1


def test_plan_shows_the_expansion() -> None:
    result = CliRunner().invoke(cli, ["plan", "--workflow", CI_YML, "--branch", "main", *EVENT_ARGS])
    assert result.exit_code == 0
    assert "TRIGGER: run" in result.output
    assert "JobRuns: 1" in result.output
    assert "test (ubuntu-latest, stable) [runs-on: ubuntu-latest]" in result.output
    assert "9. Build program" in result.output


def test_run_skips_untriggered_events(tmp_path) -> None:
    result = CliRunner().invoke(
        cli,
        [
            "run", "--workflow", CI_YML, "--branch", "feature/x",
            "--cache-dir", str(tmp_path / "cache"), "--work-dir", str(tmp_path / "work"),
            *EVENT_ARGS,
        ],
    )
    assert result.exit_code == 0
    assert "TRIGGER: skip" in result.output


def test_missing_workflow_file(tmp_path) -> None:
    result = CliRunner().invoke(cli, ["check", str(tmp_path / "nope.yml")])
    assert result.exit_code == 1
