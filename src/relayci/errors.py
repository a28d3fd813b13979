# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-JobRun failure reports
      - debugging without full tracebacks
    """
    message: str
    job: str = ""
    step: str | None = None
    details: dict = field(default_factory=dict)

    kind: ClassVar[str] = "ci_error"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Workflow definition could not be loaded or validated."""
    kind = "invalid_workflow"


class ProvisioningError(CIError):
    """Toolchain could not be resolved or installed. Fatal to the JobRun."""
    kind = "provisioning"


class CheckoutError(CIError):
    """Repository content could not be fetched. Fatal to the JobRun."""
    kind = "checkout"


class ResolutionError(CIError):
    """An expression (cache key, hashFiles) could not be resolved. Non-fatal for caching."""
    kind = "resolution"


class CacheSaveError(CIError):
    """Cache persistence failed after a successful job. Logged only."""
    kind = "cache_save"


@dataclass(eq=False)
class StepFailure(CIError):
    position: int = 0
    command: str = ""
    exit_code: int | None = None

    kind: ClassVar[str] = "step_failed"

    def __str__(self) -> str:
        where = f"[{self.job}] step {self.position} '{self.step}'"
        if self.exit_code is not None:
            return f"{where} failed (exit={self.exit_code}): {self.command or self.message}"
        return f"{where} failed: {self.message}"


TOOL_HINTS = {
    "git": "Install Git or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "cargo": "Install a Rust toolchain with rustup or fix PATH.",
    "bash": "Install bash or fix PATH.",
}
