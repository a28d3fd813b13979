# runner.py
from __future__ import annotations

import os
import runpy
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional

from . import settings
from .cache import CacheStore
from .config import load_yaml_workflow
from .errors import CIError, ConfigError
from .executor import ActionRegistry, JobExecutor
from .matrix import expand
from .model import JobRun, JobStatus, PipelineDefinition, PipelineRun
from .provision import Provisioner
from .shell import CancelToken, CommandRunner, ShellCommandRunner
from .triggers import Event, TriggerDecision, evaluate
from .ui.console import Console, get_console


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> PipelineDefinition:
    """
    Load a pipeline definition.

    Supports:
      - .yml / .yaml: declarative workflow (see relayci.config)
      - .py:          module defining workflow() -> PipelineDefinition
                      or PIPELINE = PipelineDefinition
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in (".yml", ".yaml"):
        return load_yaml_workflow(wf_path)
    if wf_path.suffix != ".py":
        raise ConfigError(f"Workflow must be a .yml, .yaml or .py file, got: {wf_path.name}")

    module_name = f"relayci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    definition = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        definition = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        definition = globals_dict["PIPELINE"]

    if not isinstance(definition, PipelineDefinition):
        raise ConfigError(
            "Workflow module must return/define a PipelineDefinition. "
            "Define workflow() -> pipeline(...) or PIPELINE = pipeline(...).",
            details={"source": str(wf_path)},
        )
    return definition


# ----------------------------------------------------------------------
# Pipeline execution
# ----------------------------------------------------------------------

class PipelineRunner:
    """
    One pipeline run: trigger -> matrix -> parallel JobRuns.

    JobRuns share nothing but the cache store. A failing JobRun never stops
    its siblings; cancel() stops all not-yet-terminal ones.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        *,
        cache_root: str | Path = settings.CACHE_DIR,
        work_root: str | Path = settings.WORK_DIR,
        namespace: Optional[str] = None,
        max_workers: Optional[int] = settings.MAX_WORKERS,
        command_runner: Optional[CommandRunner] = None,
        provisioner: Optional[Provisioner] = None,
        registry: Optional[ActionRegistry] = None,
        cache_keep: int = settings.CACHE_KEEP,
        console: Optional[Console] = None,
    ):
        self.definition = definition
        self.console = console or get_console()
        self.command_runner = command_runner or ShellCommandRunner()
        self.provisioner = provisioner or Provisioner(work_root, self.command_runner)
        self.cache = CacheStore(cache_root, namespace=namespace or definition.name)
        self.max_workers = max_workers
        self.executor = JobExecutor(
            self.provisioner,
            self.command_runner,
            self.cache,
            registry=registry,
            console=self.console,
            cache_keep=cache_keep,
        )
        self._tokens: Dict[str, CancelToken] = {}
        self._lock = threading.Lock()
        self._cancelled = False

    def plan(self, event: Event) -> PipelineRun:
        """Expand every job's matrix into Pending JobRuns."""
        run = PipelineRun(definition=self.definition, event=event)
        for spec in self.definition.jobs.values():
            run.job_runs.extend(expand(spec))
        return run

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            for token in self._tokens.values():
                token.cancel()

    def _token_for(self, job_run: JobRun) -> CancelToken:
        with self._lock:
            token = self._tokens.setdefault(job_run.id, CancelToken())
            if self._cancelled:
                token.cancel()
            return token

    def execute(self, run: PipelineRun) -> PipelineRun:
        for job_run in run.job_runs:
            self._token_for(job_run)

        if not run.job_runs:
            return run

        workers = self.max_workers
        if workers is None:
            workers = max(1, min(len(run.job_runs), (os.cpu_count() or 2) - 1))

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._execute_one, job_run, run): job_run
                for job_run in run.job_runs
            }
            for future in as_completed(futures):
                job_run = futures[future]
                try:
                    future.result()
                except Exception as e:
                    # bookkeeping errors (workspace creation, illegal transition)
                    job_run.error = str(e)
                    if not job_run.status.terminal:
                        if job_run.status == JobStatus.PENDING:
                            job_run.transition(JobStatus.RUNNING)
                        job_run.transition(JobStatus.FAILED)
                    self.console.print_failure(job_run.name, str(e), is_job=True)
        return run

    def _execute_one(self, job_run: JobRun, run: PipelineRun) -> JobRun:
        return self.executor.execute(job_run, run.event, pipeline_id=run.id, cancel=self._token_for(job_run))


def run_pipeline(
    definition: PipelineDefinition,
    event: Event,
    *,
    runner: Optional[PipelineRunner] = None,
    **runner_kwargs,
) -> tuple[TriggerDecision, Optional[PipelineRun]]:
    """
    Evaluate the trigger for `event` and, if it fires, run the pipeline.

    Returns (decision, run); run is None when the event does not trigger.
    """
    runner = runner or PipelineRunner(definition, **runner_kwargs)
    console = runner.console

    decision = evaluate(definition.triggers, event)
    console.print_trigger(decision.should_run, decision.reason)
    if not decision.should_run:
        return decision, None

    try:
        run = runner.plan(event)
    except CIError as e:
        raise ConfigError(f"could not expand matrix: {e.message}", job=e.job) from e

    console.print_run_started(workflow=definition.name, event=event.kind, job_count=len(run.job_runs))
    runner.execute(run)
    console.print_results(run)
    return decision, run
