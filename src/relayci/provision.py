# provision.py
from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Sequence

from . import git
from .errors import CheckoutError, ProvisioningError, TOOL_HINTS
from .model import JobRun
from .shell import CommandRunner

if TYPE_CHECKING:
    from .executor import JobContext

_CHANNEL = re.compile(
    r"^(?:stable|beta|nightly)(?:-\d{4}-\d{2}-\d{2})?$"
    r"|^\d+\.\d+(?:\.\d+)?$"
)


def resolve_channel(version: str) -> str:
    """Validate a toolchain channel/version. Raises ProvisioningError if unresolvable."""
    v = (version or "").strip()
    if not _CHANNEL.match(v):
        raise ProvisioningError(
            f"cannot resolve toolchain {version!r}",
            details={"expected": "stable | beta | nightly[-YYYY-MM-DD] | X.Y[.Z]"},
        )
    return v


@dataclass(frozen=True)
class Workspace:
    """
    Isolated per-JobRun directory.

    `path` is where the repository is checked out; `home` is the JobRun's
    own home directory (cargo registry, git cache and other ~ paths).
    """
    root: Path

    @property
    def path(self) -> Path:
        return self.root / "repo"

    @property
    def home(self) -> Path:
        return self.root / "home"


def rustup_home() -> str:
    """The toolchain store shared by every JobRun (read from the process environment)."""
    return os.environ.get("RUSTUP_HOME") or str(Path.home() / ".rustup")


class Provisioner:
    """
    Prepares the execution environment of a JobRun:
      - an isolated workspace directory with its own home (HOME, CARGO_HOME)
      - a toolchain (rustup, scoped to the JobRun through RUSTUP_TOOLCHAIN)
      - the repository content at the triggering revision
    """

    def __init__(self, work_root: str | Path, runner: CommandRunner, *, keep_workspaces: bool = False):
        self.work_root = Path(work_root).expanduser().resolve()
        self.runner = runner
        self.keep_workspaces = keep_workspaces

    def create_workspace(self, run: JobRun, pipeline_id: str) -> Workspace:
        ws = Workspace(self.work_root / pipeline_id[:12] / run.id)
        if ws.root.exists():
            shutil.rmtree(ws.root)
        ws.path.mkdir(parents=True)
        ws.home.mkdir()
        return ws

    def environment(self, workspace: Workspace) -> Dict[str, str]:
        """Base environment of a JobRun: its own home, the shared toolchain store."""
        return {
            "HOME": str(workspace.home),
            "CARGO_HOME": str(workspace.home / ".cargo"),
            "RUSTUP_HOME": rustup_home(),
        }

    def release(self, workspace: Workspace) -> None:
        if self.keep_workspaces:
            return
        shutil.rmtree(workspace.root, ignore_errors=True)

    # ------------------------------------------------------------------
    # Toolchain
    # ------------------------------------------------------------------

    def install_toolchain(
        self,
        ctx: "JobContext",
        version: str,
        *,
        components: Sequence[str] = (),
        targets: Sequence[str] = (),
    ) -> str:
        channel = resolve_channel(version)

        cmd = f"rustup toolchain install {channel} --profile minimal --no-self-update"
        if components:
            cmd += " --component " + ",".join(components)
        if targets:
            cmd += " --target " + ",".join(targets)

        result = self.runner.run(
            cmd,
            cwd=ctx.workspace.root,
            env=ctx.env,
            cancel=ctx.cancel,
        )
        if not result.ok:
            details = {"exit_code": result.exit_code, "command": cmd}
            if result.exit_code == 127:
                details["hint"] = TOOL_HINTS["rustup"]
            if result.stderr.strip():
                details["stderr"] = result.stderr.strip().splitlines()[-1]
            raise ProvisioningError(f"failed to install toolchain {channel!r}", details=details)

        # scope the toolchain to this JobRun instead of changing the global default
        ctx.env["RUSTUP_TOOLCHAIN"] = channel
        return channel

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def checkout(self, ctx: "JobContext", *, repository: str | None = None, ref: str | None = None, depth: int = 0) -> str:
        """Fetch the repository at the triggering revision. Returns the checked-out SHA."""
        url = repository or ctx.event.repo_url
        target = ref or ctx.event.checkout_ref
        if not url:
            raise CheckoutError("no repository to check out", details={"ref": target})

        dest = ctx.workspace.path
        try:
            git.clone(url, dest, depth=depth)
            try:
                git.checkout(target, cwd=dest)
            except subprocess.CalledProcessError:
                git.fetch_ref(target, cwd=dest)
                git.checkout("FETCH_HEAD", cwd=dest)
            return git.head_sha(cwd=dest)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise CheckoutError(
                f"could not check out {target!r} from {url}",
                details={"stderr": stderr.splitlines()[-1] if stderr else ""},
            ) from e
        except FileNotFoundError as e:
            raise CheckoutError("git command not found", details={"hint": TOOL_HINTS["git"]}) from e
