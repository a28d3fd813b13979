# actions/cache.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..cache import CacheOutcome, CacheResult
from ..errors import CIError, ResolutionError
from ..executor import PostStep
from ..model import Step

if TYPE_CHECKING:
    from ..executor import JobContext


# ---------------------------------------------------------------------
# Cache step helper
# ---------------------------------------------------------------------

def cache_step(
    name: str,
    *,
    paths: List[str],
    key: str,
    restore_keys: List[str] | None = None,
) -> Step:
    """
    Create a dependency cache step.

    Restores at this point in the job; saves after the job succeeded unless
    the exact key was hit.
    """
    config: Dict[str, Any] = {"path": "\n".join(paths), "key": key}
    if restore_keys:
        config["restore-keys"] = "\n".join(restore_keys)
    return Step(name=name, uses="cache", with_=config)


def _lines(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [line.strip() for line in str(value).splitlines() if line.strip()]


# ---------------------------------------------------------------------
# Cache step execution
# ---------------------------------------------------------------------

def run_action(ctx: "JobContext", step: Step, config: Dict[str, Any]) -> None:
    paths = _lines(config.get("path"))
    if not paths or not config.get("key"):
        raise CIError("cache action needs 'path' and 'key'")

    try:
        key = str(ctx.render(str(config["key"])))
        restore_keys = [str(ctx.render(k)) for k in _lines(config.get("restore-keys"))]
    except ResolutionError as e:
        # no key -> behave as a full miss; nothing to restore, nothing to save
        ctx.console.print_warning(f"[{ctx.run.name}] cache key unresolved, continuing without cache: {e.message}")
        ctx.console.print_cache_miss(ctx.run.name)
        return

    result = ctx.cache.restore(key, restore_keys, paths, workspace=ctx.workspace.path, home=ctx.workspace.home)
    if result.outcome == CacheOutcome.MISS:
        ctx.console.print_cache_miss(ctx.run.name)
    else:
        ctx.console.print_cache_hit(ctx.run.name, f"{result.outcome.value}: {result.reason}")

    ctx.post_steps.append(PostStep(f"Post {step.label}", _saver(result, paths)))


def _saver(result: CacheResult, paths: List[str]):
    def save(ctx: "JobContext") -> Optional[str]:
        if not result.needs_save:
            return f"cache hit on {result.key}, not saving"
        ctx.cache.save(result.key, paths, workspace=ctx.workspace.path, home=ctx.workspace.home)
        ctx.cache.prune(keep=ctx.cache_keep)
        ctx.console.print_cache_saved(ctx.run.name, result.key)
        return None

    return save
