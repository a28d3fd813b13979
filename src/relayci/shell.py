# shell.py
from __future__ import annotations

import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

OUTPUT_TAIL = 4000  # chars of stdout/stderr kept for failure reports


class CancelToken:
    """Cooperative cancellation flag shared between a JobRun and whoever may cancel it."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class CommandRunner(Protocol):
    """Executes one shell command. Injected into the executor and the provisioner."""

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: Dict[str, str],
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> CommandResult:
        ...


class ShellCommandRunner:
    """Runs commands through the system shell, honoring timeout and cancellation."""

    def __init__(self, poll_interval: float = 0.2, echo: bool = False):
        self.poll_interval = poll_interval
        self.echo = echo

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: Dict[str, str],
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> CommandResult:
        full_env = os.environ.copy()
        full_env.update(env)

        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(cwd),
            env=full_env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        deadline = time.monotonic() + timeout if timeout else None
        out_parts: list[str] = []
        err_parts: list[str] = []
        timed_out = cancelled = False

        while True:
            try:
                out, err = proc.communicate(timeout=self.poll_interval)
                out_parts.append(out or "")
                err_parts.append(err or "")
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    cancelled = True
                elif deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                else:
                    continue
                proc.kill()
                out, err = proc.communicate()
                out_parts.append(out or "")
                err_parts.append(err or "")
                break

        stdout = "".join(out_parts)
        stderr = "".join(err_parts)
        if self.echo and stdout:
            print(stdout, end="" if stdout.endswith("\n") else "\n")

        return CommandResult(
            exit_code=proc.returncode,
            stdout=stdout[-OUTPUT_TAIL:],
            stderr=stderr[-OUTPUT_TAIL:],
            timed_out=timed_out,
            cancelled=cancelled,
        )
