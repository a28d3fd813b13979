from __future__ import annotations

import shutil
import subprocess
from types import SimpleNamespace

import pytest

from relayci import git
from relayci.dsl import job, sh
from relayci.errors import CheckoutError
from relayci.matrix import expand
from relayci.provision import Provisioner
from relayci.triggers import Event

from .conftest import FakeCommandRunner

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd, *args) -> str:
    return subprocess.check_output(
        ["git", "-c", "user.name=relayci", "-c", "user.email=ci@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=str(cwd),
        text=True,
    ).strip()


@pytest.fixture
def origin(tmp_path):
    """
    A repository with two commits on main plus a pull request merge commit
    that is only reachable through refs/pull/7/merge.
    """
    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, "init", "--quiet")
    _git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    (repo / "Cargo.lock").write_text("version = 3\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "--quiet", "-m", "first")
    first = _git(repo, "rev-parse", "HEAD")
    (repo / "src.rs").write_text("fn main() {}\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "--quiet", "-m", "second")

    _git(repo, "checkout", "--quiet", "-b", "pr")
    (repo / "pr.rs").write_text("// pr\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "--quiet", "-m", "merge pr")
    merge = _git(repo, "rev-parse", "HEAD")
    _git(repo, "update-ref", "refs/pull/7/merge", merge)
    _git(repo, "checkout", "--quiet", "main")
    _git(repo, "branch", "--quiet", "-D", "pr")

    return SimpleNamespace(url=f"file://{repo}", first=first, merge=merge)


@pytest.fixture
def checkout_into(tmp_path):
    provisioner = Provisioner(tmp_path / "work", FakeCommandRunner())

    def _checkout(event: Event):
        (run,) = expand(job("j", sh("noop", "true")))
        ctx = SimpleNamespace(event=event, workspace=provisioner.create_workspace(run, "p1"))
        return provisioner.checkout(ctx), ctx.workspace.path

    return _checkout


@requires_git
def test_checkout_exact_sha(origin, checkout_into) -> None:
    sha, path = checkout_into(Event("push", branch="main", sha=origin.first, repo_url=origin.url))

    assert sha == origin.first
    assert git.head_sha(cwd=path) == origin.first
    assert (path / "Cargo.lock").exists()
    assert not (path / "src.rs").exists()


@requires_git
def test_checkout_pull_request_ref_is_fetched(origin, checkout_into) -> None:
    sha, path = checkout_into(Event("pull_request", ref="refs/pull/7/merge", repo_url=origin.url))

    assert sha == origin.merge
    assert (path / "pr.rs").exists()


@requires_git
def test_checkout_branch(origin, checkout_into) -> None:
    sha, path = checkout_into(Event("push", branch="main", repo_url=origin.url))
    assert (path / "src.rs").exists()
    assert sha == git.head_sha(cwd=path)


@requires_git
def test_missing_ref_is_a_checkout_error(origin, checkout_into) -> None:
    with pytest.raises(CheckoutError) as exc:
        checkout_into(Event("push", ref="refs/heads/nope", repo_url=origin.url))
    assert "refs/heads/nope" in exc.value.message


@requires_git
def test_unreachable_repository(tmp_path, checkout_into) -> None:
    with pytest.raises(CheckoutError):
        checkout_into(Event("push", branch="main", repo_url=f"file://{tmp_path / 'missing'}"))


def test_no_repository(checkout_into) -> None:
    with pytest.raises(CheckoutError):
        checkout_into(Event("push", branch="main"))


def test_git_not_installed(tmp_path, monkeypatch, checkout_into) -> None:
    empty = tmp_path / "empty-path"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty))

    with pytest.raises(CheckoutError) as exc:
        checkout_into(Event("push", branch="main", repo_url="file:///nowhere"))
    assert exc.value.details["hint"] == "Install Git or fix PATH."
