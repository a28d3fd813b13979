# expressions.py
from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from .errors import ResolutionError

_EXPR = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_CALL = re.compile(r"^(\w+)\((.*)\)$", re.DOTALL)
_STRING_ARG = re.compile(r"""\s*(?:'([^']*)'|"([^"]*)")\s*(?:,|$)""")

EXCLUDED_DIRS = {".git"}


def _hash_file_contents(path: Path) -> bytes:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.digest()


def hash_files(root: str | Path, patterns: Iterable[str]) -> str:
    """
    Hash every file under `root` matching any glob pattern.

    Files are visited in sorted relative-path order; each file's SHA-256 is
    fed into an outer SHA-256. Raises ResolutionError when nothing matches.
    """
    root_p = Path(root).resolve()
    patterns = list(patterns)
    matched: Dict[str, Path] = {}
    for pattern in patterns:
        for p in root_p.glob(pattern):
            if not p.is_file():
                continue
            rel = p.relative_to(root_p)
            if EXCLUDED_DIRS.intersection(rel.parts[:-1]):
                continue
            matched[rel.as_posix()] = p

    if not matched:
        raise ResolutionError(
            "hashFiles matched no files",
            details={"patterns": list(patterns), "root": str(root_p)},
        )

    outer = hashlib.sha256()
    for rel in sorted(matched):
        outer.update(_hash_file_contents(matched[rel]))
    return outer.hexdigest()


def _parse_string_args(text: str) -> List[str]:
    args: List[str] = []
    pos = 0
    text = text.strip()
    while pos < len(text):
        m = _STRING_ARG.match(text, pos)
        if not m:
            raise ResolutionError(f"Unsupported function arguments: {text!r}")
        args.append(m.group(1) if m.group(1) is not None else m.group(2))
        pos = m.end()
    return args


def _lookup(path: str, contexts: Mapping[str, Mapping[str, Any]]) -> Any:
    head, _, rest = path.partition(".")
    ctx = {k.lower(): v for k, v in contexts.items()}.get(head.lower())
    if ctx is None or not rest:
        raise ResolutionError(f"Unknown expression context: {path!r}")
    # runner.OS and runner.os are the same value
    lowered = {k.lower(): v for k, v in ctx.items()}
    if rest.lower() not in lowered:
        raise ResolutionError(f"Unknown expression: {path!r}")
    return lowered[rest.lower()]


def evaluate(expr: str, contexts: Mapping[str, Mapping[str, Any]], *, workspace: Path | None = None) -> Any:
    call = _CALL.match(expr)
    if call:
        fn, raw_args = call.group(1), call.group(2)
        if fn.lower() != "hashfiles":
            raise ResolutionError(f"Unsupported function: {fn}()")
        if workspace is None:
            raise ResolutionError("hashFiles() needs a checked-out workspace")
        return hash_files(workspace, _parse_string_args(raw_args))
    return _lookup(expr, contexts)


def render(template: str, contexts: Mapping[str, Mapping[str, Any]], *, workspace: Path | None = None) -> str:
    """Substitute every ${{ ... }} in `template`."""
    return _EXPR.sub(lambda m: str(evaluate(m.group(1), contexts, workspace=workspace)), template)


def render_value(value: Any, contexts: Mapping[str, Mapping[str, Any]], *, workspace: Path | None = None) -> Any:
    """Render strings inside (possibly nested) action configuration."""
    if isinstance(value, str):
        return render(value, contexts, workspace=workspace)
    if isinstance(value, list):
        return [render_value(v, contexts, workspace=workspace) for v in value]
    if isinstance(value, dict):
        return {k: render_value(v, contexts, workspace=workspace) for k, v in value.items()}
    return value


def has_expression(text: str) -> bool:
    return bool(_EXPR.search(text))
