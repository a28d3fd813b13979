# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .actions.cache import cache_step
from .actions.checkout import checkout_step
from .actions.toolchain import toolchain_step
from .matrix import Matrix
from .model import JobSpec, PipelineDefinition, PullRequestTrigger, Step, Triggers
from .triggers import CronExpression


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None,
       timeout_minutes: float | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=env or {}, timeout_minutes=timeout_minutes)


def uses(name: str, action: str, **config: Any) -> Step:
    """
    Create an external-action step.

    Keyword arguments become the action configuration; underscores map to
    dashes so `restore_keys=` reaches the action as `restore-keys`.
    """
    return Step(name=name, uses=action, with_={k.replace("_", "-"): v for k, v in config.items()})


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    runs_on: str = "ubuntu-latest",
    matrix: Optional[Matrix | Dict[str, Iterable[Any]]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout_minutes: float | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobSpec:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    if isinstance(matrix, Matrix):
        axes = dict(matrix.axes)
    else:
        axes = {k: list(v) for k, v in (matrix or {}).items()}

    return JobSpec(
        name=name,
        steps=steps_final,
        runs_on=runs_on,
        matrix=axes,
        env=env or {},
        timeout_minutes=timeout_minutes,
    )


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def on(
    *,
    push: Optional[List[str]] = None,
    pull_request: bool | List[str] = False,
    schedule: Optional[List[str]] = None,
) -> Triggers:
    """
    Example:
        on(push=["main"], pull_request=True, schedule=["0 0 1,15 * *"])
    """
    for expr in schedule or []:
        CronExpression.parse(expr)  # fail at definition time

    pr: Optional[PullRequestTrigger] = None
    if pull_request is True:
        pr = PullRequestTrigger()
    elif pull_request:
        pr = PullRequestTrigger(branches=list(pull_request))

    return Triggers(
        push_branches=list(push) if push is not None else None,
        pull_request=pr,
        schedules=list(schedule or []),
    )


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(name: str, *jobs: JobSpec, triggers: Triggers) -> PipelineDefinition:
    """
    Users can write, in a *_workflow.py file:

        from relayci.dsl import pipeline, job, sh, on

        def workflow():
            return pipeline("ci", job(...), triggers=on(push=["main"]))

    Or define PIPELINE = pipeline(...) directly.
    """
    by_name: Dict[str, JobSpec] = {}
    for j in jobs:
        if j.name in by_name:
            raise ValueError(f"Duplicate job name: {j.name}")
        by_name[j.name] = j
    return PipelineDefinition(name=name, triggers=triggers, jobs=by_name)


__all__ = [
    "sh",
    "uses",
    "job",
    "on",
    "pipeline",
    "cache_step",
    "checkout_step",
    "toolchain_step",
]
