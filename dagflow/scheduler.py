"""Cron-driven scheduler that triggers DAG runs from a background thread."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

logger = logging.getLogger(__name__)

_MAX_YEAR = 2099
_MIN_YEAR = 1970

_MONTH_NAMES = {
    name: number
    for number, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"],
        start=1,
    )
}
_WEEKDAY_NAMES = {
    name: number
    for number, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"], start=1)
}
_SHORTHANDS = {
    "@yearly": "0 0 0 1 1 *",
    "@annually": "0 0 0 1 1 *",
    "@monthly": "0 0 0 1 * *",
    "@weekly": "0 0 0 * * 1",
    "@daily": "0 0 0 * * *",
    "@hourly": "0 0 * * * *",
}


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class UnknownJobError(SchedulerError, KeyError):
    """A job id was never registered, or has already been removed."""

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__(f"unknown job id: {job_id}")
        self.job_id = job_id

    def __str__(self) -> str:
        return str(self.args[0])


class CronError(SchedulerError, ValueError):
    """A cron expression could not be parsed."""


def _to_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _cron_weekday(moment: datetime) -> int:
    """Day of week numbered 1 (Sunday) to 7 (Saturday)."""
    return (moment.weekday() + 1) % 7 + 1


def _parse_value(token: str, names: dict[str, int], low: int, high: int) -> int:
    upper = token.upper()
    if upper in names:
        return names[upper]
    if not token.isdigit():
        raise CronError(f"invalid cron value: {token!r}")
    value = int(token)
    if not low <= value <= high:
        raise CronError(f"cron value {value} out of range {low}-{high}")
    return value


def _parse_field(
    text: str, low: int, high: int, names: dict[str, int] | None = None
) -> frozenset[int]:
    names = names or {}
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise CronError(f"empty item in cron field {text!r}")
        base, slash, step_text = part.partition("/")
        step = 1
        if slash:
            if not step_text.isdigit() or int(step_text) == 0:
                raise CronError(f"invalid cron step: {step_text!r}")
            step = int(step_text)
        if base in ("*", "?"):
            start, end = low, high
        elif "-" in base:
            first, _, last = base.partition("-")
            start = _parse_value(first, names, low, high)
            end = _parse_value(last, names, low, high)
            if start > end:
                raise CronError(f"invalid cron range: {base!r}")
        else:
            start = _parse_value(base, names, low, high)
            end = high if slash else start
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """A parsed cron expression: ``sec min hour day month weekday [year]``.

    Weekdays are numbered 1 (Sunday) to 7 (Saturday); names such as ``MON``
    and ``JAN`` are accepted. Both the day-of-month and day-of-week fields
    must match for a moment to fire.
    """

    expression: str
    seconds: frozenset[int]
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]
    years: frozenset[int] | None = None

    @classmethod
    def parse(cls, expr: str) -> CronSchedule:
        """Parse a 6- or 7-field cron expression, or an ``@daily``-style shorthand."""
        text = expr.strip()
        fields = _SHORTHANDS.get(text.lower(), text).split()
        if len(fields) not in (6, 7):
            raise CronError(
                f"cron expression must have 6 or 7 fields, got {len(fields)}: {expr!r}"
            )
        years = (
            _parse_field(fields[6], _MIN_YEAR, _MAX_YEAR) if len(fields) == 7 else None
        )
        return cls(
            expression=expr,
            seconds=_parse_field(fields[0], 0, 59),
            minutes=_parse_field(fields[1], 0, 59),
            hours=_parse_field(fields[2], 0, 23),
            days_of_month=_parse_field(fields[3], 1, 31),
            months=_parse_field(fields[4], 1, 12, _MONTH_NAMES),
            days_of_week=_parse_field(fields[5], 1, 7, _WEEKDAY_NAMES),
            years=years,
        )

    def _year_ok(self, year: int) -> bool:
        return self.years is None or year in self.years

    def _day_ok(self, moment: datetime) -> bool:
        return (
            moment.day in self.days_of_month
            and _cron_weekday(moment) in self.days_of_week
        )

    def matches(self, moment: datetime) -> bool:
        """True if the schedule fires at ``moment`` (to the second, in UTC)."""
        moment = _to_utc(moment)
        return (
            self._year_ok(moment.year)
            and moment.month in self.months
            and self._day_ok(moment)
            and moment.hour in self.hours
            and moment.minute in self.minutes
            and moment.second in self.seconds
        )

    def next_after(self, moment: datetime) -> datetime | None:
        """First firing time strictly after ``moment``, or ``None`` if there is none."""
        last_year = max(self.years) if self.years else _MAX_YEAR
        current = _to_utc(moment).replace(microsecond=0) + timedelta(seconds=1)
        while current.year <= last_year:
            if not self._year_ok(current.year):
                current = datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
            elif current.month not in self.months:
                if current.month == 12:
                    current = datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
                else:
                    current = datetime(
                        current.year, current.month + 1, 1, tzinfo=timezone.utc
                    )
            elif not self._day_ok(current):
                current = current.replace(hour=0, minute=0, second=0) + timedelta(days=1)
            elif current.hour not in self.hours:
                current = current.replace(minute=0, second=0) + timedelta(hours=1)
            elif current.minute not in self.minutes:
                current = current.replace(second=0) + timedelta(minutes=1)
            elif current.second not in self.seconds:
                current += timedelta(seconds=1)
            else:
                return current
        return None


@dataclass
class _Job:
    dag_name: str
    schedule: CronSchedule
    body: Callable[[], object]
    next_run: datetime | None = field(default=None)


class DagScheduler:
    """Registers cron-triggered DAG jobs and fires them from a background thread.

    Jobs may be registered before or after :meth:`start`; :meth:`shutdown`
    stops the tick loop and the scheduler may be started again afterwards.
    """

    def __init__(self, tick_interval: float = 0.05) -> None:
        self._tick_interval = tick_interval
        self._jobs: dict[uuid.UUID, _Job] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> DagScheduler:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def start(self) -> None:
        """Start the background tick loop; a no-op if it is already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            now = datetime.now(timezone.utc)
            for job in self._jobs.values():
                job.next_run = job.schedule.next_after(now)
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._loop, name="dag-scheduler", daemon=True
            )
            self._thread.start()
        logger.info("DagScheduler started")

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = datetime.now(timezone.utc)
            due: list[_Job] = []
            with self._lock:
                for job in self._jobs.values():
                    if job.next_run is not None and job.next_run <= now:
                        due.append(job)
                        job.next_run = job.schedule.next_after(now)
            for job in due:
                threading.Thread(target=self._fire, args=(job,), daemon=True).start()
            self._stop.wait(self._tick_interval)

    @staticmethod
    def _fire(job: _Job) -> None:
        logger.debug("tick: dag=%s", job.dag_name)
        try:
            job.body()
        except Exception:
            logger.exception("scheduled run failed: dag=%s", job.dag_name)

    def schedule(
        self, dag_name: str, cron_expr: str, body: Callable[[], object]
    ) -> uuid.UUID:
        """Register ``body`` to run whenever ``cron_expr`` matches; return the job id."""
        try:
            parsed = CronSchedule.parse(cron_expr)
        except CronError as exc:
            raise CronError(f"invalid cron expression: {cron_expr}: {exc}") from exc
        job_id = uuid.uuid4()
        job = _Job(
            dag_name=dag_name,
            schedule=parsed,
            body=body,
            next_run=parsed.next_after(datetime.now(timezone.utc)),
        )
        with self._lock:
            self._jobs[job_id] = job
        return job_id

    def _job(self, job_id: uuid.UUID) -> _Job:
        with self._lock:
            try:
                return self._jobs[job_id]
            except KeyError:
                raise UnknownJobError(job_id) from None

    def unschedule(self, job_id: uuid.UUID) -> None:
        """Remove a registered job."""
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise UnknownJobError(job_id)

    def next_fire(self, job_id: uuid.UUID) -> datetime | None:
        """Next time the job fires, computed from now, or ``None`` if it never will."""
        job = self._job(job_id)
        return job.schedule.next_after(datetime.now(timezone.utc))

    def dag_name(self, job_id: uuid.UUID) -> str:
        """DAG name registered for ``job_id``."""
        return self._job(job_id).dag_name

    def job_count(self) -> int:
        """Number of registered jobs."""
        with self._lock:
            return len(self._jobs)

    def shutdown(self) -> None:
        """Stop the tick loop and wait for it to finish."""
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()