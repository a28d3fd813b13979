# matrix.py
from __future__ import annotations

import itertools
from typing import Any, Dict, Iterable, Iterator, List, Mapping

from .errors import ResolutionError
from .expressions import render
from .model import JobRun, JobSpec


class Matrix:
    """
    Cartesian-product matrix expander.

    Example:
        Matrix({"os": ["ubuntu-latest"], "toolchain": ["stable", "beta"]}).combinations()
        -> [{"os": "ubuntu-latest", "toolchain": "stable"},
            {"os": "ubuntu-latest", "toolchain": "beta"}]

    Axes keep declaration order. No combination is skipped or deduplicated;
    any empty axis makes the whole product empty.
    """
    def __init__(self, axes: Mapping[str, Iterable[Any]]):
        self.axes: Dict[str, List[Any]] = {k: list(v) for k, v in axes.items()}

    def __len__(self) -> int:
        n = 1
        for values in self.axes.values():
            n *= len(values)
        return n

    def combinations(self) -> Iterator[Dict[str, Any]]:
        keys = list(self.axes)
        for values in itertools.product(*(self.axes[k] for k in keys)):
            yield dict(zip(keys, values))


def matrix(**axes: Iterable[Any]) -> Matrix:
    return Matrix(axes)


def expand(job: JobSpec) -> List[JobRun]:
    """One Pending JobRun per axis combination of `job`."""
    runs: List[JobRun] = []
    for combo in Matrix(job.matrix).combinations():
        try:
            runner = render(job.runs_on, {"matrix": combo})
        except ResolutionError as e:
            raise ResolutionError(
                f"runs-on {job.runs_on!r} could not be resolved: {e.message}", job=job.name
            ) from e
        runs.append(JobRun(job=job, axes=combo, runner=runner))
    return runs
