"""Occurrence calculator — evaluates cron expressions into upcoming run times."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from apscheduler.triggers.cron import CronTrigger

from soundoff.core.errors import InvalidCount, InvalidCronExpression

_MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# Cron numbering: 0 (and 7) is Sunday. APScheduler numbers Monday as 0, so
# weekdays are always handed to it by name.
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_RESOLUTION = timedelta(microseconds=1)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _split_fields(expression: str) -> list[str]:
    text = expression.strip().lower()
    if text.startswith("@"):
        if text not in _MACROS:
            raise InvalidCronExpression(expression, f"unknown macro {text!r}")
        text = _MACROS[text]
    parts = text.split()
    if len(parts) != 5:
        raise InvalidCronExpression(
            expression,
            f"Expected 5 fields (minute hour day month weekday), got {len(parts)}",
        )
    return parts


def _weekday_value(token: str, expression: str) -> int:
    if token.isdigit():
        value = int(token)
        if value > 7:
            raise InvalidCronExpression(expression, f"weekday {value} out of range")
        return value
    if token in _WEEKDAYS:
        return _WEEKDAYS.index(token)
    raise InvalidCronExpression(expression, f"unknown weekday {token!r}")


def _translate_day_of_week(field: str, expression: str) -> str:
    """Rewrite a cron weekday field into APScheduler's named form."""
    if field in ("*", "?"):
        return "*"

    days: set[int] = set()
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidCronExpression(expression, f"invalid step in {part!r}")
            step = int(step_text)

        if base in ("*", "?"):
            start, end = 0, 6
        elif "-" in base:
            low, _, high = base.partition("-")
            start, end = _weekday_value(low, expression), _weekday_value(high, expression)
            if start > end:
                raise InvalidCronExpression(expression, f"invalid weekday range {base!r}")
        else:
            start = _weekday_value(base, expression)
            end = 6 if step_text else start

        days.update(day % 7 for day in range(start, end + 1, step))

    if not days:
        raise InvalidCronExpression(expression, f"weekday field {field!r} matches nothing")
    return ",".join(_WEEKDAYS[day] for day in sorted(days))


def _trigger(minute: str, hour: str, day: str, month: str, day_of_week: str) -> CronTrigger:
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=day_of_week,
        timezone="UTC",
    )


def _build_triggers(expression: str) -> list[CronTrigger]:
    minute, hour, day, month, dow = _split_fields(expression)
    day_of_week = _translate_day_of_week(dow, expression)
    if day == "?":
        day = "*"

    try:
        if not day.startswith("*") and not dow.startswith("*") and dow != "?":
            # Both day fields restricted: cron fires when either one matches.
            return [
                _trigger(minute, hour, day, month, "*"),
                _trigger(minute, hour, "*", month, day_of_week),
            ]
        return [_trigger(minute, hour, day, month, day_of_week)]
    except (ValueError, KeyError) as exc:
        raise InvalidCronExpression(expression, str(exc)) from exc


def _next_fire(triggers: list[CronTrigger], after: datetime) -> datetime | None:
    now = after + _RESOLUTION
    candidates = [t.get_next_fire_time(None, now) for t in triggers]
    candidates = [c for c in candidates if c is not None]
    if not candidates:
        return None
    return min(candidates).astimezone(UTC)


def next_run_times(expression: str, after: datetime, n: int) -> list[datetime]:
    """Return the next ``n`` UTC fire times of ``expression`` strictly after ``after``.

    Raises InvalidCount when ``n`` is not positive and InvalidCronExpression
    when the expression cannot be parsed or never fires.
    """
    if n <= 0:
        raise InvalidCount(n)

    triggers = _build_triggers(expression)
    cursor = ensure_utc(after)
    run_times: list[datetime] = []
    while len(run_times) < n:
        fire_time = _next_fire(triggers, cursor)
        if fire_time is None:
            raise InvalidCronExpression(expression, "expression never fires")
        run_times.append(fire_time)
        cursor = fire_time
    return run_times


def next_run_times_from_now(expression: str, n: int) -> list[datetime]:
    return next_run_times(expression, datetime.now(UTC), n)


def validate_cron(expression: str) -> None:
    """Raise InvalidCronExpression unless ``expression`` parses and fires at least once."""
    next_run_times_from_now(expression, 1)
