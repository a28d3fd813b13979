from datetime import datetime, timezone

import pytest

from relayci.errors import ConfigError
from relayci.model import PullRequestTrigger, Triggers
from relayci.triggers import CronExpression, Event, evaluate, parse_timestamp

TRIGGERS = Triggers(
    push_branches=["main"],
    pull_request=PullRequestTrigger(),
    schedules=["0 0 1,15 * *"],
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_push_to_main_fires() -> None:
    decision = evaluate(TRIGGERS, Event("push", branch="main", sha="abc"))
    assert decision.should_run
    assert decision.event.checkout_ref == "abc"


@pytest.mark.parametrize("branch", ["feature/x", "mainline", None])
def test_push_to_other_branches_does_not_fire(branch) -> None:
    assert not evaluate(TRIGGERS, Event("push", branch=branch)).should_run


@pytest.mark.parametrize("branch", ["main", "release", None])
def test_pull_request_always_fires(branch) -> None:
    assert evaluate(TRIGGERS, Event("pull_request", branch=branch)).should_run


def test_pull_request_branch_filter() -> None:
    triggers = Triggers(pull_request=PullRequestTrigger(branches=["main"]))
    assert evaluate(triggers, Event("pull_request", branch="main")).should_run
    assert not evaluate(triggers, Event("pull_request", branch="dev")).should_run


def test_unconfigured_event_kinds_do_not_fire() -> None:
    triggers = Triggers(schedules=["0 0 1,15 * *"])
    assert not evaluate(triggers, Event("push", branch="main")).should_run
    assert not evaluate(triggers, Event("pull_request")).should_run


@pytest.mark.parametrize(
    "when, expected",
    [
        (utc(2026, 1, 1, 0, 0), True),
        (utc(2026, 1, 15, 0, 0), True),
        (utc(2026, 2, 1, 0, 0, 59), True),  # minute granularity
        (utc(2026, 1, 15, 0, 1), False),
        (utc(2026, 1, 15, 1, 0), False),
        (utc(2026, 1, 2, 0, 0), False),
        (utc(2026, 1, 16, 0, 0), False),
    ],
)
def test_schedule_first_and_fifteenth_at_midnight(when, expected) -> None:
    assert evaluate(TRIGGERS, Event("schedule", timestamp=when)).should_run is expected


def test_schedule_is_evaluated_in_utc() -> None:
    from datetime import timedelta

    plus_two = timezone(timedelta(hours=2))
    # 02:00 at +02:00 is midnight UTC
    when = datetime(2026, 3, 15, 2, 0, tzinfo=plus_two)
    assert evaluate(TRIGGERS, Event("schedule", timestamp=when)).should_run


def test_schedule_event_with_unknown_cron_does_not_fire() -> None:
    event = Event("schedule", timestamp=utc(2026, 1, 1, 0, 0), cron="*/5 * * * *")
    assert not evaluate(TRIGGERS, event).should_run


def test_cron_steps_ranges_and_names() -> None:
    expr = CronExpression.parse("*/15 9-17 * jan-mar mon-fri")
    assert expr.matches(utc(2026, 1, 5, 9, 30))     # Monday
    assert not expr.matches(utc(2026, 1, 4, 9, 30))  # Sunday
    assert not expr.matches(utc(2026, 4, 6, 9, 30))  # April
    assert not expr.matches(utc(2026, 1, 5, 9, 31))


def test_cron_day_fields_are_ored_when_both_restricted() -> None:
    expr = CronExpression.parse("0 0 1 * 1")
    assert expr.matches(utc(2026, 1, 1, 0, 0))  # the 1st (a Thursday)
    assert expr.matches(utc(2026, 1, 5, 0, 0))  # a Monday
    assert not expr.matches(utc(2026, 1, 6, 0, 0))


def test_cron_sunday_as_seven() -> None:
    assert CronExpression.parse("0 0 * * 7").matches(utc(2026, 1, 4, 0, 0))
    assert CronExpression.parse("0 0 * * 5-7").matches(utc(2026, 1, 4, 0, 0))


@pytest.mark.parametrize("expr", ["0 0 1,15 *", "60 0 * * *", "0 0 0 * *", "0 0 */0 * *", "a b c d e", "0 0 5-1 * *"])
def test_invalid_cron_expressions(expr) -> None:
    with pytest.raises(ConfigError):
        CronExpression.parse(expr)


def test_unknown_event_kind() -> None:
    with pytest.raises(ValueError):
        Event("release")


def test_parse_timestamp_defaults_to_utc() -> None:
    assert parse_timestamp("2026-01-15T00:00:00") == utc(2026, 1, 15, 0, 0)
    assert parse_timestamp("2026-01-15T00:00:00Z") == utc(2026, 1, 15, 0, 0)
