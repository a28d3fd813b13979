from .dsl import job, sh, uses, on, pipeline
from .matrix import Matrix, matrix, expand
from .runner import run_pipeline, load_workflow, PipelineRunner
from .model import JobSpec, Step, PipelineDefinition, JobRun, JobStatus
from .triggers import Event, evaluate

__all__ = [
    "job", "sh", "uses", "on", "pipeline",
    "Matrix", "matrix", "expand",
    "run_pipeline", "load_workflow", "PipelineRunner",
    "JobSpec", "Step", "PipelineDefinition", "JobRun", "JobStatus",
    "Event", "evaluate",
]
