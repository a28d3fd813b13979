from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from relayci.errors import CheckoutError
from relayci.provision import Provisioner
from relayci.runner import PipelineRunner, load_workflow
from relayci.shell import CancelToken, CommandResult
from relayci.ui.console import Console

REPO_ROOT = Path(__file__).resolve().parents[1]
CARGO_LOCK = '# This file is automatically @generated by Cargo.\nversion = 3\n\n[[package]]\nname = "tree-sitter-graph"\nversion = "0.11.0"\n'


@dataclass
class Call:
    command: str
    cwd: Path
    env: Dict[str, str]
    timeout: Optional[float]


@dataclass
class FakeCommandRunner:
    """Records commands; exit codes come from `failures` (substring -> code) or `fail_when`."""
    failures: Dict[str, int] = field(default_factory=dict)
    fail_when: Optional[Callable[[str, Dict[str, str]], int]] = None
    on_run: Optional[Callable[[str, Path, Dict[str, str], Optional[CancelToken]], None]] = None
    calls: List[Call] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def commands(self) -> List[str]:
        return [c.command for c in self.calls]

    def run(self, command, *, cwd, env, timeout=None, cancel=None):
        with self._lock:
            self.calls.append(Call(command, Path(cwd), dict(env), timeout))
        if self.on_run is not None:
            self.on_run(command, Path(cwd), dict(env), cancel)
        if self.fail_when is not None:
            code = self.fail_when(command, env)
            if code:
                return CommandResult(exit_code=code, stderr=f"{command}: failed")
        for needle, code in self.failures.items():
            if needle in command:
                return CommandResult(exit_code=code, stderr=f"{command}: failed")
        return CommandResult(exit_code=0, stdout="ok\n")


class FakeProvisioner(Provisioner):
    """Real workspace + toolchain handling; checkout writes `files` instead of cloning."""

    def __init__(self, work_root, runner, *, files: Optional[Dict[str, str]] = None,
                 checkout_error: Optional[str] = None):
        super().__init__(work_root, runner)
        self.files = {"Cargo.lock": CARGO_LOCK, "src/lib.rs": "pub fn parse() {}\n"} if files is None else files
        self.checkout_error = checkout_error
        self.workspaces: List[Path] = []

    def create_workspace(self, run, pipeline_id):
        ws = super().create_workspace(run, pipeline_id)
        self.workspaces.append(ws.root)
        return ws

    def checkout(self, ctx, *, repository=None, ref=None, depth=0):
        if self.checkout_error:
            raise CheckoutError(self.checkout_error)
        for rel, content in self.files.items():
            p = ctx.workspace.path / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
        return "0123456789abcdef0123456789abcdef01234567"


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    # cache paths like ~/.cargo/registry must never touch the real home
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def console() -> Console:
    return Console()


@pytest.fixture
def ci_definition():
    return load_workflow(REPO_ROOT / "ci.yml")


@pytest.fixture
def make_runner(tmp_path, console):
    def _make(definition, command_runner, **provisioner_kwargs) -> PipelineRunner:
        provisioner = FakeProvisioner(tmp_path / "work", command_runner, **provisioner_kwargs)
        return PipelineRunner(
            definition,
            cache_root=tmp_path / "cache",
            work_root=tmp_path / "work",
            max_workers=2,
            command_runner=command_runner,
            provisioner=provisioner,
            console=console,
        )

    return _make
