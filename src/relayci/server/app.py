from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Literal

from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .. import settings
from ..model import PipelineDefinition, PipelineRun
from ..runner import PipelineRunner, load_workflow
from ..triggers import Event, evaluate, parse_timestamp

# -------------------- Schemas --------------------

class EventRequest(BaseModel):
    kind: Literal["push", "pull_request", "schedule"]
    branch: str | None = None
    ref: str | None = None
    sha: str | None = None
    repo_url: str | None = None
    timestamp: datetime | None = None
    cron: str | None = None


class EventResponse(BaseModel):
    triggered: bool
    reason: str
    run_id: str | None = None


class StepResponse(BaseModel):
    index: int
    name: str
    status: str
    exit_code: int | None = None
    error: str | None = None


class JobRunResponse(BaseModel):
    id: str
    name: str
    axes: dict[str, Any] = Field(default_factory=dict)
    runner: str
    status: str
    error: str | None = None
    failed_step: dict[str, Any] | None = None
    steps: list[StepResponse] = Field(default_factory=list)


class RunResponse(BaseModel):
    run_id: str
    event: str
    status: str
    jobs: list[JobRunResponse]


# -------------------- Registry --------------------

class RunRegistry:
    """In-memory record of pipeline runs and their runners (for cancellation)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, tuple[PipelineRun, PipelineRunner]] = {}

    def add(self, run: PipelineRun, runner: PipelineRunner) -> None:
        with self._lock:
            self._runs[run.id] = (run, runner)

    def get(self, run_id: str) -> tuple[PipelineRun, PipelineRunner]:
        with self._lock:
            if run_id not in self._runs:
                raise HTTPException(status_code=404, detail="run not found")
            return self._runs[run_id]


def _run_response(run: PipelineRun) -> RunResponse:
    return RunResponse(
        run_id=run.id,
        event=run.event.kind,
        status=run.status.value,
        jobs=[JobRunResponse(**jr.to_dict()) for jr in run.job_runs],
    )


# -------------------- App --------------------

def create_app(
    definition: PipelineDefinition | None = None,
    runner_factory: Callable[[PipelineDefinition], PipelineRunner] | None = None,
) -> FastAPI:
    """
    Build the event intake API.

    Run with: uvicorn --factory relayci.server.app:create_app
    (the workflow comes from RELAYCI_WORKFLOW when not passed in).
    """
    if definition is None:
        if not settings.WORKFLOW:
            raise RuntimeError("RELAYCI_WORKFLOW is not set")
        definition = load_workflow(settings.WORKFLOW)
    factory = runner_factory or (lambda d: PipelineRunner(d))

    app = FastAPI(title="relayci event intake")
    registry = RunRegistry()
    app.state.registry = registry
    app.state.definition = definition

    @app.post("/events", response_model=EventResponse)
    def receive_event(req: EventRequest, background: BackgroundTasks):
        event = Event(
            kind=req.kind,
            branch=req.branch,
            ref=req.ref,
            sha=req.sha,
            repo_url=req.repo_url,
            timestamp=parse_timestamp(req.timestamp.isoformat()) if req.timestamp else parse_timestamp(None),
            cron=req.cron,
        )
        decision = evaluate(definition.triggers, event)
        if not decision.should_run:
            return EventResponse(triggered=False, reason=decision.reason)

        runner = factory(definition)
        try:
            run = runner.plan(event)
        except Exception as e:
            raise HTTPException(status_code=422, detail=f"could not expand matrix: {e}") from e
        registry.add(run, runner)
        background.add_task(runner.execute, run)
        return EventResponse(triggered=True, reason=decision.reason, run_id=run.id)

    @app.get("/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str):
        run, _runner = registry.get(run_id)
        return _run_response(run)

    @app.post("/runs/{run_id}/cancel", response_model=RunResponse)
    def cancel_run(run_id: str):
        run, runner = registry.get(run_id)
        runner.cancel()
        return _run_response(run)

    return app
