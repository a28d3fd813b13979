# triggers.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from fnmatch import fnmatch
from typing import FrozenSet, List, Optional

from .errors import ConfigError
from .model import Triggers

EVENT_KINDS = ("push", "pull_request", "schedule")


@dataclass(frozen=True)
class Event:
    """
    An incoming repository event or schedule tick.

    `branch` is the pushed branch for push events and the base branch for
    pull requests. `ref`/`sha` identify what to check out.
    """
    kind: str
    branch: str | None = None
    ref: str | None = None
    sha: str | None = None
    repo_url: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cron: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind {self.kind!r}. Expected one of {EVENT_KINDS}")

    @property
    def checkout_ref(self) -> str:
        if self.sha:
            return self.sha
        if self.ref:
            return self.ref
        if self.branch:
            return self.branch
        return "HEAD"


@dataclass(frozen=True)
class TriggerDecision:
    should_run: bool
    reason: str
    event: Event


# ---------------------------------------------------------------------
# Cron
# ---------------------------------------------------------------------

_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 6),
)

_MONTH_NAMES = {n: i for i, n in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1)}
_DOW_NAMES = {n: i for i, n in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}


def _parse_value(token: str, field_idx: int, expr: str) -> int:
    names = _MONTH_NAMES if field_idx == 3 else _DOW_NAMES if field_idx == 4 else {}
    low = token.lower()
    if low in names:
        return names[low]
    if not token.isdigit():
        raise ConfigError(f"Invalid cron value {token!r} in {expr!r}")
    # day of week 7 is folded onto Sunday (0) by the caller
    return int(token)


def _parse_field(text: str, field_idx: int, expr: str) -> FrozenSet[int]:
    label, lo, hi = _FIELDS[field_idx]
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise ConfigError(f"Empty {label} list item in cron {expr!r}")
        step = 1
        if "/" in part:
            part, step_s = part.split("/", 1)
            if not step_s.isdigit() or int(step_s) == 0:
                raise ConfigError(f"Invalid step {step_s!r} for {label} in cron {expr!r}")
            step = int(step_s)

        if part == "*":
            start, end = lo, hi
        elif "-" in part:
            a, b = part.split("-", 1)
            start, end = _parse_value(a, field_idx, expr), _parse_value(b, field_idx, expr)
        else:
            start = _parse_value(part, field_idx, expr)
            end = hi if step != 1 else start

        top = 7 if field_idx == 4 else hi
        if not (lo <= start <= top and lo <= end <= top) or start > end:
            raise ConfigError(f"{label} value out of range ({lo}-{hi}) in cron {expr!r}")
        values.update(v % 7 if field_idx == 4 else v for v in range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """Five-field cron expression evaluated at minute granularity in UTC."""
    source: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    days_restricted: bool
    weekdays_restricted: bool

    @classmethod
    def parse(cls, expr: str) -> "CronExpression":
        parts = expr.split()
        if len(parts) != 5:
            raise ConfigError(f"Cron expression must have 5 fields, got {len(parts)}: {expr!r}")
        fields = [_parse_field(p, i, expr) for i, p in enumerate(parts)]
        return cls(
            source=expr,
            minutes=fields[0],
            hours=fields[1],
            days=fields[2],
            months=fields[3],
            weekdays=fields[4],
            days_restricted=not parts[2].startswith("*"),
            weekdays_restricted=not parts[4].startswith("*"),
        )

    def matches(self, when: datetime) -> bool:
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)
        if when.minute not in self.minutes or when.hour not in self.hours:
            return False
        if when.month not in self.months:
            return False

        dom = when.day in self.days
        dow = (when.isoweekday() % 7) in self.weekdays
        # Vixie cron: when both day fields are restricted, either may match
        if self.days_restricted and self.weekdays_restricted:
            return dom or dow
        return dom and dow


# ---------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------

def _branch_allowed(branch: str | None, patterns: List[str]) -> bool:
    if branch is None:
        return False
    return any(fnmatch(branch, p) for p in patterns)


def evaluate(triggers: Triggers, event: Event) -> TriggerDecision:
    """Decide whether `event` creates a pipeline run. Pure; no side effects."""
    if event.kind == "push":
        if triggers.push_branches is None:
            return TriggerDecision(False, "push is not a configured trigger", event)
        if _branch_allowed(event.branch, triggers.push_branches):
            return TriggerDecision(True, f"push to {event.branch!r}", event)
        return TriggerDecision(
            False, f"branch {event.branch!r} not in {triggers.push_branches}", event
        )

    if event.kind == "pull_request":
        pr = triggers.pull_request
        if pr is None:
            return TriggerDecision(False, "pull_request is not a configured trigger", event)
        if pr.branches is None or _branch_allowed(event.branch, pr.branches):
            return TriggerDecision(True, "pull request", event)
        return TriggerDecision(False, f"base branch {event.branch!r} not in {pr.branches}", event)

    # schedule
    candidates = triggers.schedules
    if event.cron is not None:
        candidates = [c for c in candidates if c == event.cron]
        if not candidates:
            return TriggerDecision(False, f"cron {event.cron!r} is not configured", event)
    for expr in candidates:
        if CronExpression.parse(expr).matches(event.timestamp):
            return TriggerDecision(True, f"schedule {expr!r}", event)
    stamp = event.timestamp.strftime("%Y-%m-%d %H:%M")
    return TriggerDecision(False, f"no schedule matches {stamp} UTC", event)


def parse_timestamp(text: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not text:
        return datetime.now(timezone.utc)
    when = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)
