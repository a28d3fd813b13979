# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from . import git, settings
from .errors import CIError
from .expressions import has_expression, render
from .model import PipelineDefinition
from .runner import PipelineRunner, load_workflow, run_pipeline
from .triggers import Event, evaluate, parse_timestamp
from .ui.console import Console, get_console, set_console

DEFAULT_WORKFLOWS = ("ci.yml", "relayci.yml", "relayci_workflow.py")


def find_workflow_files() -> list[Path]:
    """Find all workflow files in the current directory."""
    current_dir = Path(".")
    found = [current_dir / name for name in DEFAULT_WORKFLOWS if (current_dir / name).exists()]
    for path in current_dir.glob("*_workflow.py"):
        if path not in found:
            found.append(path)
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, RELAYCI_WORKFLOW, or the current directory.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    workflow_arg = workflow_arg or settings.WORKFLOW
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  relayci run --workflow ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *(f"  {n}" for n in DEFAULT_WORKFLOWS), "  *_workflow.py"],
            suggestion="Specify a workflow explicitly:\n  relayci run --workflow my_workflow.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  relayci run --workflow ci.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(ctx: click.Context, workflow: str | None) -> tuple[Path, PipelineDefinition]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except (CIError, FileNotFoundError, TypeError, ValueError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)


def _event_from_options(kind, branch, ref, sha, repo, at, cron) -> Event:
    """Fill in branch/sha/repository from the local checkout when not given."""
    if repo is None:
        try:
            repo = git.get_remote_url("origin")
        except (subprocess.CalledProcessError, FileNotFoundError):
            repo = None
    if repo is None:
        # no origin remote: clone straight from the local checkout
        try:
            repo = str(git.repo_root())
        except (subprocess.CalledProcessError, FileNotFoundError):
            repo = None
    if branch is None and kind != "schedule":
        try:
            branch = git.current_branch()
        except (subprocess.CalledProcessError, FileNotFoundError):
            branch = None
    if sha is None and ref is None:
        try:
            sha = git.head_sha()
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = None
    return Event(
        kind=kind,
        branch=branch,
        ref=ref,
        sha=sha,
        repo_url=repo,
        timestamp=parse_timestamp(at),
        cron=cron,
    )


def event_options(fn):
    options = [
        click.option("--event", "kind", type=click.Choice(["push", "pull_request", "schedule"]),
                     default="push", show_default=True, help="Event kind"),
        click.option("--branch", default=None, help="Pushed branch / pull request base (defaults to current branch)"),
        click.option("--ref", default=None, help="Ref to check out (e.g. refs/pull/1/merge)"),
        click.option("--sha", default=None, help="Commit to check out (defaults to HEAD)"),
        click.option("--repo", default=None, help="Repository URL or path (defaults to this repository)"),
        click.option("--at", default=None, help="Event time, ISO-8601 UTC (defaults to now)"),
        click.option("--cron", default=None, help="Schedule expression that fired"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """relayci — trigger-driven, cache-aware CI pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (ci.yml, relayci.yml or *_workflow.py)")
@event_options
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Number of parallel JobRuns")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--work-dir", default=settings.WORK_DIR, show_default=True, help="Workspace directory")
@click.option("--cache-keep", default=settings.CACHE_KEEP, show_default=True, type=int, help="Cache entries kept per namespace")
@click.option("--keep-workspaces", is_flag=True, default=False, help="Do not delete JobRun workspaces")
@click.option("--echo/--no-echo", default=False, help="Print command output")
@click.pass_context
def run(ctx, workflow, kind, branch, ref, sha, repo, at, cron, workers, cache_dir, work_dir,
        cache_keep, keep_workspaces, echo):
    """Evaluate an event and run the pipeline if it triggers."""
    from .provision import Provisioner
    from .shell import ShellCommandRunner

    console = get_console()
    _path, definition = _load(ctx, workflow)

    try:
        event = _event_from_options(kind, branch, ref, sha, repo, at, cron)
        command_runner = ShellCommandRunner(echo=echo)
        runner = PipelineRunner(
            definition,
            cache_root=cache_dir,
            work_root=work_dir,
            max_workers=workers,
            command_runner=command_runner,
            provisioner=Provisioner(work_dir, command_runner, keep_workspaces=keep_workspaces),
            cache_keep=cache_keep,
            console=console,
        )
        _decision, pipeline_run = run_pipeline(definition, event, runner=runner)
        if pipeline_run is not None and pipeline_run.status.value != "succeeded":
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except CIError as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (ci.yml, relayci.yml or *_workflow.py)")
@event_options
@click.pass_context
def plan(ctx, workflow, kind, branch, ref, sha, repo, at, cron):
    """Show the trigger decision and the matrix expansion without running anything."""
    console = get_console()
    _path, definition = _load(ctx, workflow)

    event = _event_from_options(kind, branch, ref, sha, repo, at, cron)
    decision = evaluate(definition.triggers, event)
    console.print_trigger(decision.should_run, decision.reason)

    try:
        pipeline_run = PipelineRunner(definition, console=console).plan(event)
    except CIError as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_info(f"\nJobRuns: {len(pipeline_run.job_runs)}")
    for job_run in pipeline_run.job_runs:
        labels = []
        for step in job_run.job.steps:
            label = step.label
            if has_expression(label):
                # hashFiles() needs a checkout; leave such labels as written
                try:
                    label = render(label, {"matrix": job_run.axes, "runner": {"os": job_run.runner}})
                except CIError:
                    label = step.label
            labels.append(label)
        console.print_plan_job(job_run.name, job_run.runner, labels)


@cli.command()
@click.argument("workflow", required=False)
@click.pass_context
def check(ctx, workflow):
    """Validate a workflow file."""
    console = get_console()
    path, definition = _load(ctx, workflow)
    jobs = ", ".join(definition.jobs)
    console.print_info(f"{path}: OK ({len(definition.jobs)} job(s): {jobs})")


if __name__ == "__main__":
    cli()
