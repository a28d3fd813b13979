# cache.py
from __future__ import annotations

import enum
import io
import json
import re
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import CacheSaveError

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Key-addressed dependency caching:
#   key          = "<runner>-cargo-<hashFiles('**/Cargo.lock')>"
#   restore_keys = ["<runner>-cargo-"]
#
# Lookup order:
#   1. exact key                       -> HIT (no prefix scan)
#   2. each restore prefix, in order   -> PARTIAL_HIT with the newest entry
#   3. nothing                         -> MISS, local paths untouched
#
# Cache artifact:
#   a tar.gz holding every declared path (member names are prefixed with
#   the path's position so each path extracts back to where it came from)
#   plus a manifest.json recording key, paths and save time.
#
# Layout:
#   root/
#     <namespace>/
#       <key>.tar.gz
#       <key>.manifest.json
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".relayci/cache"
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class CacheOutcome(str, enum.Enum):
    HIT = "hit"
    PARTIAL_HIT = "partial-hit"
    MISS = "miss"


@dataclass(frozen=True)
class CacheResult:
    outcome: CacheOutcome
    key: str                       # the key that was looked up
    matched_key: str | None = None  # the key actually restored
    reason: str = ""
    manifest: Dict = field(default_factory=dict)

    @property
    def needs_save(self) -> bool:
        return self.outcome != CacheOutcome.HIT


def find_restore_match(
    index: Mapping[str, float],
    key: str,
    restore_keys: Sequence[str] = (),
) -> Tuple[CacheOutcome, Optional[str]]:
    """
    Resolve a cache lookup over an index of {key: saved_at}.

    Exact key wins without consulting prefixes. Otherwise prefixes are
    scanned in declaration order; the first prefix with any candidate
    returns its newest entry (saved_at, then key as tiebreak).
    """
    if key in index:
        return CacheOutcome.HIT, key

    for prefix in restore_keys:
        candidates = [k for k in index if k.startswith(prefix)]
        if candidates:
            newest = max(candidates, key=lambda k: (index[k], k))
            return CacheOutcome.PARTIAL_HIT, newest

    return CacheOutcome.MISS, None


def _safe_name(key: str) -> str:
    return _UNSAFE.sub("_", key)


def _resolve_path(entry: str, workspace: Path, home: Optional[Path] = None) -> Path:
    if home is not None and (entry == "~" or entry.startswith("~/")):
        p = home / entry[2:]
    else:
        p = Path(entry).expanduser()
    if not p.is_absolute():
        p = workspace / p
    return p


def _iter_files_under(root: Path):
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file() or p.is_symlink():
            yield p


class CacheStore:
    """File-based cache store shared by every JobRun of a namespace."""

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR, namespace: str = "default"):
        self.root = Path(root).expanduser().resolve()
        self.namespace = namespace

    def _ns_dir(self) -> Path:
        d = self.root / _safe_name(self.namespace)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, key: str) -> Path:
        return self._ns_dir() / f"{_safe_name(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self._ns_dir() / f"{_safe_name(key)}.manifest.json"

    def index(self) -> Dict[str, float]:
        """{key: saved_at} for every complete entry in the namespace."""
        out: Dict[str, float] = {}
        for man in self._ns_dir().glob("*.manifest.json"):
            try:
                data = json.loads(man.read_text(encoding="utf-8"))
                key = data.get("key")
                if not isinstance(key, str) or not key or not self.artifact_path(key).exists():
                    continue
                saved_at = float(data.get("saved_at", man.stat().st_mtime))
            except (OSError, TypeError, ValueError, AttributeError):
                # unreadable or malformed manifest: not an entry
                continue
            out[key] = saved_at
        return out

    def restore(
        self,
        key: str,
        restore_keys: Sequence[str] = (),
        paths: Sequence[str] = (),
        *,
        workspace: str | Path = ".",
        home: str | Path | None = None,
    ) -> CacheResult:
        """
        Restore cached paths into place.

        NOTE:
          - restore is "overwrite by extraction"; files not in the archive are left alone.
          - on MISS nothing is touched.
          - `~` paths land under `home` when given, else the process home.
        """
        ws = Path(workspace).resolve()
        home_p = Path(home) if home is not None else None
        outcome, matched = find_restore_match(self.index(), key, restore_keys)
        if matched is None:
            return CacheResult(outcome=CacheOutcome.MISS, key=key, reason="cache miss")

        art = self.artifact_path(matched)
        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                self._extract(tar, paths, ws, home_p)
        except (OSError, tarfile.TarError) as e:
            return CacheResult(
                outcome=CacheOutcome.MISS,
                key=key,
                reason=f"cache exists but restore failed: {e}",
            )

        try:
            stored = json.loads(self.manifest_path(matched).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            stored = {}
        if not isinstance(stored, dict):
            stored = {}

        reason = "exact key" if outcome == CacheOutcome.HIT else f"restored from {matched}"
        return CacheResult(outcome=outcome, key=key, matched_key=matched, reason=reason, manifest=stored)

    def _extract(self, tar: tarfile.TarFile, paths: Sequence[str], workspace: Path, home: Optional[Path]) -> None:
        for member in tar.getmembers():
            idx_s, _, rel = member.name.partition("/")
            if not idx_s.isdigit() or int(idx_s) >= len(paths):
                continue
            target = _resolve_path(paths[int(idx_s)], workspace, home)
            if rel:
                dest_dir = target
                member.name = rel
            else:
                # the cached path was a single file
                dest_dir = target.parent
                member.name = target.name
            dest_dir.mkdir(parents=True, exist_ok=True)
            tar.extract(member, path=str(dest_dir), filter="data")

    def save(
        self,
        key: str,
        paths: Sequence[str],
        *,
        workspace: str | Path = ".",
        home: str | Path | None = None,
    ) -> Dict:
        """
        Archive `paths` under `key`. Returns the manifest.

        Written to a temp file then renamed, so concurrent savers of the same
        key leave one complete entry (last write wins).
        """
        ws = Path(workspace).resolve()
        home_p = Path(home) if home is not None else None
        manifest = {
            "key": key,
            "namespace": self.namespace,
            "paths": list(paths),
            "saved_at": time.time(),
        }

        try:
            art = self.artifact_path(key)
            man = self.manifest_path(key)
            tmp = art.with_name(f"{art.name}.{time.time_ns()}.tmp")
            try:
                with tarfile.open(str(tmp), mode="w:gz") as tar:
                    for idx, entry in enumerate(paths):
                        src = _resolve_path(entry, ws, home_p)
                        if not src.exists():
                            continue
                        if src.is_file():
                            tar.add(str(src), arcname=str(idx), recursive=False)
                            continue
                        for f in _iter_files_under(src):
                            arcname = f"{idx}/{f.relative_to(src).as_posix()}"
                            tar.add(str(f), arcname=arcname, recursive=False)

                    payload = json.dumps(manifest, sort_keys=True, indent=2).encode("utf-8")
                    info = tarfile.TarInfo(name=".relayci_cache_manifest.json")
                    info.size = len(payload)
                    info.mtime = int(manifest["saved_at"])
                    tar.addfile(info, fileobj=io.BytesIO(payload))

                tmp.replace(art)
                man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")
            finally:
                tmp.unlink(missing_ok=True)
        except OSError as e:
            raise CacheSaveError(
                f"could not save cache entry: {e}",
                details={"key": key, "namespace": self.namespace},
            ) from e

        return manifest

    def prune(self, keep: int = 5) -> List[str]:
        """Keep only the newest N entries. Returns the removed keys."""
        removed: List[str] = []
        try:
            ordered = sorted(self.index().items(), key=lambda kv: (kv[1], kv[0]), reverse=True)
            for key, _saved_at in ordered[max(keep, 0):]:
                self.artifact_path(key).unlink(missing_ok=True)
                self.manifest_path(key).unlink(missing_ok=True)
                removed.append(key)
        except OSError as e:
            raise CacheSaveError(
                f"could not prune cache entries: {e}",
                details={"namespace": self.namespace, "removed": ", ".join(removed)},
            ) from e
        return removed
