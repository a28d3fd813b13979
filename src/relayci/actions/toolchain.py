# actions/toolchain.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from ..errors import ProvisioningError, ResolutionError
from ..model import Step

if TYPE_CHECKING:
    from ..executor import JobContext


# ---------------------------------------------------------------------
# Toolchain step helper
# ---------------------------------------------------------------------

def toolchain_step(
    name: str,
    version: str = "stable",
    *,
    components: List[str] | None = None,
    targets: List[str] | None = None,
) -> Step:
    """Create a step that installs a Rust toolchain for the rest of the job."""
    config: Dict[str, Any] = {"rust-version": version}
    if components:
        config["components"] = ",".join(components)
    if targets:
        config["targets"] = ",".join(targets)
    return Step(name=name, uses="setup-toolchain", with_=config)


def _split(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [p.strip() for p in str(value).replace("\n", ",").split(",") if p.strip()]


# ---------------------------------------------------------------------
# Toolchain step execution
# ---------------------------------------------------------------------

def run_action(ctx: "JobContext", step: Step, config: Dict[str, Any]) -> None:
    raw = config.get("rust-version", config.get("toolchain", "stable"))
    try:
        version = str(ctx.render(raw))
    except ResolutionError as e:
        raise ProvisioningError(f"cannot resolve toolchain {raw!r}: {e.message}") from e

    channel = ctx.provisioner.install_toolchain(
        ctx,
        version,
        components=_split(config.get("components")),
        targets=_split(config.get("targets")),
    )
    ctx.console.print_info(f"TOOLCHAIN: {channel}")
