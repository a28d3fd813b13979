# actions/checkout.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from ..model import Step

if TYPE_CHECKING:
    from ..executor import JobContext


def checkout_step(name: str = "Checkout code", *, ref: str | None = None, fetch_depth: int = 0) -> Step:
    """Create a step that checks out the triggering revision into the workspace."""
    config: Dict[str, Any] = {}
    if ref:
        config["ref"] = ref
    if fetch_depth:
        config["fetch-depth"] = fetch_depth
    return Step(name=name, uses="checkout", with_=config)


def run_action(ctx: "JobContext", step: Step, config: Dict[str, Any]) -> None:
    rendered = ctx.render(config)
    sha = ctx.provisioner.checkout(
        ctx,
        repository=rendered.get("repository"),
        ref=rendered.get("ref"),
        depth=int(rendered.get("fetch-depth", 0) or 0),
    )
    ctx.sha = sha
    ctx.console.print_info(f"CHECKOUT: {sha[:12]}")
