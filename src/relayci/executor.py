# executor.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .cache import CacheStore
from .errors import TOOL_HINTS, CacheSaveError, CIError, StepFailure
from .expressions import render, render_value
from .model import JobRun, JobStatus, Step, StepResult, StepStatus
from .provision import Provisioner, Workspace
from .shell import CancelToken, CommandRunner
from .triggers import Event
from .ui.console import Console, get_console


@dataclass
class PostStep:
    """
    Runs after every step succeeded (e.g. cache save).

    `fn` returns None when it did its work, or a reason string when it
    decided to skip.
    """
    name: str
    fn: Callable[["JobContext"], Optional[str]]


@dataclass
class JobContext:
    """Everything a step of one JobRun may touch. Never shared between JobRuns."""
    run: JobRun
    event: Event
    workspace: Workspace
    runner: CommandRunner
    provisioner: Provisioner
    cache: CacheStore
    cancel: CancelToken
    console: Console
    env: Dict[str, str] = field(default_factory=dict)
    sha: str | None = None
    cache_keep: int = 5
    post_steps: List[PostStep] = field(default_factory=list)

    def contexts(self) -> Dict[str, Dict[str, Any]]:
        return {
            "matrix": dict(self.run.axes),
            "runner": {"os": self.run.runner},
            "env": dict(self.env),
            "github": {
                "event_name": self.event.kind,
                "ref": self.event.ref or self.event.branch or "",
                "sha": self.sha or self.event.sha or "",
                "repository": self.event.repo_url or "",
            },
        }

    def render(self, value: Any) -> Any:
        return render_value(value, self.contexts(), workspace=self.workspace.path)


ActionHandler = Callable[[JobContext, Step, Dict[str, Any]], None]


class ActionRegistry:
    """
    Maps action references to handlers.

    "actions/cache@v2" and "actions/cache" resolve to the same handler;
    aliases let GitHub-style references point at the built-ins.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler, *aliases: str) -> None:
        for n in (name, *aliases):
            self._handlers[n.lower()] = handler

    def resolve(self, uses: str) -> ActionHandler:
        name = uses.split("@", 1)[0].strip().lower()
        if name not in self._handlers:
            raise CIError(
                f"unknown action {uses!r}",
                details={"known": ", ".join(sorted(self._handlers))},
            )
        return self._handlers[name]

    def __contains__(self, uses: str) -> bool:
        return uses.split("@", 1)[0].strip().lower() in self._handlers


def default_registry() -> ActionRegistry:
    from .actions import cache as cache_action
    from .actions import checkout as checkout_action
    from .actions import toolchain as toolchain_action

    reg = ActionRegistry()
    reg.register("setup-toolchain", toolchain_action.run_action, "hecrj/setup-rust-action", "actions-rs/toolchain")
    reg.register("checkout", checkout_action.run_action, "actions/checkout")
    reg.register("cache", cache_action.run_action, "actions/cache")
    return reg


class JobExecutor:
    """
    Runs the steps of one JobRun strictly in order.

    State machine:
        pending -> running -> succeeded | failed | cancelled

    - first failing step: remaining steps (and post steps) are skipped, status failed
    - cancel token set:   remaining steps skipped, no post steps, status cancelled
    - workspace is released in every case
    """

    def __init__(
        self,
        provisioner: Provisioner,
        runner: CommandRunner,
        cache: CacheStore,
        *,
        registry: ActionRegistry | None = None,
        console: Console | None = None,
        cache_keep: int = 5,
    ):
        self.provisioner = provisioner
        self.runner = runner
        self.cache = cache
        self.registry = registry or default_registry()
        self.console = console or get_console()
        self.cache_keep = cache_keep

    # ------------------------------------------------------------------

    def execute(self, run: JobRun, event: Event, *, pipeline_id: str, cancel: CancelToken | None = None) -> JobRun:
        cancel = cancel or CancelToken()
        if cancel.cancelled:
            run.transition(JobStatus.CANCELLED)
            run.steps = [
                StepResult(i, s.label, StepStatus.SKIPPED) for i, s in enumerate(run.job.steps, start=1)
            ]
            return run

        run.transition(JobStatus.RUNNING)
        self.console.print_job_start(run.name)

        workspace = self.provisioner.create_workspace(run, pipeline_id)
        env = self.provisioner.environment(workspace)
        env.update({k: str(v) for k, v in run.job.env.items()})
        ctx = JobContext(
            run=run,
            event=event,
            workspace=workspace,
            runner=self.runner,
            provisioner=self.provisioner,
            cache=self.cache,
            cancel=cancel,
            console=self.console,
            env=env,
            cache_keep=self.cache_keep,
        )

        try:
            status = self._run_steps(ctx)
            if status == JobStatus.SUCCEEDED and ctx.cancel.cancelled:
                run.error = "cancelled"
                status = JobStatus.CANCELLED
            if status == JobStatus.SUCCEEDED:
                status = self._run_post_steps(ctx)
            else:
                reason = "cancelled" if status == JobStatus.CANCELLED else "job did not succeed"
                self._skip_post_steps(ctx, 0, reason)
            run.transition(status)
        finally:
            self.provisioner.release(workspace)

        if run.status == JobStatus.SUCCEEDED:
            self.console.print_success(run.name)
        elif run.status == JobStatus.CANCELLED:
            self.console.print_info(f"JOB CANCELLED: {run.name}")
        else:
            self.console.print_failure(run.name, run.error or "", is_job=True)
        return run

    def _run_steps(self, ctx: JobContext) -> JobStatus:
        run = ctx.run
        steps = run.job.steps

        for i, step in enumerate(steps, start=1):
            if ctx.cancel.cancelled:
                self._skip_rest(run, i, "cancelled")
                run.error = "cancelled"
                return JobStatus.CANCELLED

            self.console.print_step(step.label)
            started = time.monotonic()
            try:
                self._run_step(ctx, step, i)
            except Exception as e:
                duration = time.monotonic() - started
                if ctx.cancel.cancelled:
                    run.steps.append(StepResult(i, step.label, StepStatus.SKIPPED, error="cancelled", duration=duration))
                    self._skip_rest(run, i + 1, "cancelled")
                    run.error = "cancelled"
                    return JobStatus.CANCELLED

                exit_code = e.exit_code if isinstance(e, StepFailure) else None
                run.steps.append(
                    StepResult(i, step.label, StepStatus.FAILURE, exit_code=exit_code, error=str(e), duration=duration)
                )
                run.failed_step = (i, step.label)
                run.error = str(e)
                hint = e.details.get("hint") if isinstance(e, CIError) else None
                self.console.print_failure(step.label, str(e), exit_code=exit_code, hint=hint)
                self._skip_rest(run, i + 1, f"step {i} failed")
                return JobStatus.FAILED

            run.steps.append(StepResult(i, step.label, StepStatus.SUCCESS, exit_code=0, duration=time.monotonic() - started))

        return JobStatus.SUCCEEDED

    def _skip_rest(self, run: JobRun, start: int, reason: str) -> None:
        for j, rest in enumerate(run.job.steps[start - 1:], start=start):
            run.steps.append(StepResult(j, rest.label, StepStatus.SKIPPED, error=reason))

    def _run_step(self, ctx: JobContext, step: Step, position: int) -> None:
        run = ctx.run
        try:
            if step.uses is not None:
                handler = self.registry.resolve(step.uses)
                handler(ctx, step, dict(step.with_))
                return
            self._run_command(ctx, step, position)
        except CIError as e:
            # actions raise without knowing where they sit in the job
            if not e.job:
                e.job = run.name
            if not e.step:
                e.step = step.label
            raise

    def _step_timeout(self, ctx: JobContext, step: Step) -> Optional[float]:
        minutes = step.timeout_minutes if step.timeout_minutes is not None else ctx.run.job.timeout_minutes
        return minutes * 60 if minutes else None

    def _run_command(self, ctx: JobContext, step: Step, position: int) -> None:
        command = render(step.run or "", ctx.contexts(), workspace=ctx.workspace.path)
        env = dict(ctx.env)
        env.update({k: str(ctx.render(v)) for k, v in step.env.items()})

        cwd = ctx.workspace.path / (step.cwd or ".")
        if not cwd.exists():
            raise StepFailure(f"cwd not found: {cwd}", job=ctx.run.name, step=step.label, position=position, command=command)

        self.console.print_debug(f"$ {command} (cwd={cwd})")
        result = ctx.runner.run(
            command,
            cwd=cwd,
            env=env,
            timeout=self._step_timeout(ctx, step),
            cancel=ctx.cancel,
        )
        if result.ok:
            return

        details: Dict[str, Any] = {}
        if result.stderr.strip():
            details["stderr"] = result.stderr.strip()[-500:]
        tool = command.split()[0] if command.split() else ""
        if result.exit_code == 127 and tool in TOOL_HINTS:
            details["hint"] = TOOL_HINTS[tool]
        if result.timed_out:
            message = f"timed out after {step.timeout_minutes or ctx.run.job.timeout_minutes} minute(s)"
        elif result.cancelled:
            message = "cancelled"
        else:
            message = f"command exited with {result.exit_code}"
        raise StepFailure(
            message,
            job=ctx.run.name,
            step=step.label,
            details=details,
            position=position,
            command=command,
            exit_code=None if (result.timed_out or result.cancelled) else result.exit_code,
        )

    def _skip_post_steps(self, ctx: JobContext, start: int, reason: str) -> None:
        for post in ctx.post_steps[start:]:
            ctx.run.steps.append(StepResult(len(ctx.run.steps) + 1, post.name, StepStatus.SKIPPED, error=reason))

    def _run_post_steps(self, ctx: JobContext) -> JobStatus:
        run = ctx.run
        for n, post in enumerate(ctx.post_steps):
            # a cancelled JobRun never persists anything
            if ctx.cancel.cancelled:
                self._skip_post_steps(ctx, n, "cancelled")
                run.error = "cancelled"
                return JobStatus.CANCELLED

            index = len(run.steps) + 1
            started = time.monotonic()
            try:
                skipped = post.fn(ctx)
            except CacheSaveError as e:
                # persistence failures never fail a succeeded job
                self.console.print_warning(f"[{run.name}] {post.name}: {e.message}")
                run.steps.append(
                    StepResult(index, post.name, StepStatus.FAILURE, error=str(e), duration=time.monotonic() - started)
                )
                continue
            status = StepStatus.SKIPPED if skipped else StepStatus.SUCCESS
            run.steps.append(StepResult(index, post.name, status, error=skipped, duration=time.monotonic() - started))
        return JobStatus.SUCCEEDED
