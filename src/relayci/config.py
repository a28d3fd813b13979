# config.py
"""
Declarative workflow files.

The YAML shape follows GitHub Actions workflows:

    name: Continuous integration
    on:
      push:
        branches: [main]
      pull_request:
      schedule:
        - cron: "0 0 1,15 * *"
    jobs:
      test:
        runs-on: ${{ matrix.os }}
        strategy:
          matrix:
            os: [ubuntu-latest]
        steps:
          - uses: actions/checkout@v2
          - run: cargo test

Files are parsed with PyYAML and validated with pydantic; every problem
surfaces as a ConfigError at load time.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError
from .model import JobSpec, PipelineDefinition, PullRequestTrigger, Step, Triggers
from .triggers import CronExpression

AxisValue = Union[str, int, float, bool]


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# -------------------- Triggers --------------------

class BranchFilter(_Model):
    branches: Optional[List[str]] = None


class ScheduleEntry(_Model):
    cron: str

    @field_validator("cron")
    @classmethod
    def _parse_cron(cls, v: str) -> str:
        try:
            CronExpression.parse(v)
        except ConfigError as e:
            raise ValueError(e.message) from e
        return v


class TriggersModel(_Model):
    push: Optional[BranchFilter] = None
    pull_request: Optional[BranchFilter] = None
    schedule: List[ScheduleEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        # on: push  /  on: [push, pull_request]
        if isinstance(data, str):
            data = [data]
        if isinstance(data, list):
            data = {name: {} for name in data}
        if isinstance(data, dict):
            # `pull_request:` with no body means "enabled, no filter"
            data = {
                k: v if v is not None else ([] if k == "schedule" else {})
                for k, v in data.items()
            }
        return data


# -------------------- Jobs --------------------

class StepModel(_Model):
    name: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    run: Optional[str] = None
    env: Dict[str, Any] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)

    @model_validator(mode="after")
    def _one_of(self) -> "StepModel":
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        return self


class StrategyModel(_Model):
    matrix: Dict[str, List[AxisValue]] = Field(default_factory=dict)


class JobModel(_Model):
    name: Optional[str] = None
    runs_on: str = Field(alias="runs-on")
    strategy: StrategyModel = Field(default_factory=StrategyModel)
    env: Dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    steps: List[StepModel] = Field(min_length=1)


class WorkflowModel(_Model):
    name: str = ""
    on: TriggersModel
    jobs: Dict[str, JobModel] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _yaml_on_key(cls, data: Any) -> Any:
        # YAML 1.1 reads a bare `on:` key as boolean True
        if isinstance(data, dict) and True in data and "on" not in data:
            data = dict(data)
            data["on"] = data.pop(True)
        return data


# -------------------- Conversion --------------------

def _to_step(m: StepModel) -> Step:
    return Step(
        name=m.name or "",
        run=m.run,
        uses=m.uses,
        with_=dict(m.with_),
        env={k: str(v) for k, v in m.env.items()},
        cwd=m.working_directory,
        timeout_minutes=m.timeout_minutes,
    )


def to_definition(wf: WorkflowModel, *, default_name: str = "workflow") -> PipelineDefinition:
    triggers = Triggers(
        push_branches=(wf.on.push.branches or ["*"]) if wf.on.push is not None else None,
        pull_request=PullRequestTrigger(wf.on.pull_request.branches) if wf.on.pull_request is not None else None,
        schedules=[s.cron for s in wf.on.schedule],
    )
    jobs = {
        job_id: JobSpec(
            name=job.name or job_id,
            steps=[_to_step(s) for s in job.steps],
            runs_on=job.runs_on,
            matrix={axis: list(values) for axis, values in job.strategy.matrix.items()},
            env={k: str(v) for k, v in job.env.items()},
            timeout_minutes=job.timeout_minutes,
        )
        for job_id, job in wf.jobs.items()
    }
    return PipelineDefinition(name=wf.name or default_name, triggers=triggers, jobs=jobs)


def parse_workflow(data: Any, *, source: str = "<workflow>") -> PipelineDefinition:
    if not isinstance(data, dict):
        raise ConfigError("workflow must be a mapping", details={"source": source})
    try:
        wf = WorkflowModel.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ConfigError(
            f"invalid workflow ({len(problems)} problem(s))",
            details={"source": source, "problems": "; ".join(problems)},
        ) from e
    return to_definition(wf, default_name=Path(source).stem)


def load_yaml_workflow(path: str | Path) -> PipelineDefinition:
    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"could not parse YAML: {e}", details={"source": str(p)}) from e
    return parse_workflow(data, source=str(p))
