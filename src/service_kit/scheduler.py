"""
Scheduler module for the service kit.

This module provides an extended cron rule parser (six fields including
seconds, month and weekday names, ``@`` macros such as ``@every 20 second``)
and a scheduler that runs each job on its own thread, checking its rule
once per second.
"""

import hashlib
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from .exceptions import InvalidArgumentError, PreconditionFailedError
from .locks import ReadWriteLock, WaitGroup

if TYPE_CHECKING:
    from .rotating_logger import Logger


class CronParseError(InvalidArgumentError):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, message: str, expression: str) -> None:
        self.expression = expression
        super().__init__(
            code="cron_parse_error",
            message=f"{message}: '{expression}'",
            details={"expression": expression},
        )


@dataclass(frozen=True)
class CronField:
    """A parsed cron field. An empty value set matches anything."""

    values: frozenset[int]
    min_value: int
    max_value: int

    @property
    def is_any(self) -> bool:
        return not self.values

    def matches(self, value: int) -> bool:
        """Check if a value matches this field."""
        return not self.values or value in self.values

    def candidates(self) -> list[int]:
        """Matching values in ascending order."""
        if self.values:
            return sorted(self.values)
        return list(range(self.min_value, self.max_value + 1))


@dataclass(frozen=True)
class CronRule:
    """Represents a parsed six-field cron rule."""

    second: CronField
    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField
    original_expression: str = ""

    def fields(self) -> tuple[CronField, ...]:
        return (
            self.second,
            self.minute,
            self.hour,
            self.day_of_month,
            self.month,
            self.day_of_week,
        )

    def matches(self, dt: datetime) -> bool:
        """
        Check if a datetime matches this rule.

        Every non-empty field must contain the corresponding component of
        dt. Weekdays count from Sunday = 0.
        """
        components = (
            dt.second,
            dt.minute,
            dt.hour,
            dt.day,
            dt.month,
            dt.isoweekday() % 7,
        )
        return all(f.matches(v) for f, v in zip(self.fields(), components))

    def next_after(self, instant: datetime, limit_days: int = 366 * 4) -> Optional[datetime]:
        """
        Find the first whole second strictly after instant that matches.

        Args:
            instant: Starting point (naive or aware)
            limit_days: How many calendar days ahead to search

        Returns:
            The matching datetime, or None if nothing matches in the window
        """
        start = instant.replace(microsecond=0) + timedelta(seconds=1)
        first_day = start.date()

        for offset in range(limit_days + 1):
            day = first_day + timedelta(days=offset)
            if not (
                self.month.matches(day.month)
                and self.day_of_month.matches(day.day)
                and self.day_of_week.matches(day.isoweekday() % 7)
            ):
                continue

            same_day = offset == 0
            for hour in self.hour.candidates():
                if same_day and hour < start.hour:
                    continue
                for minute in self.minute.candidates():
                    if same_day and hour == start.hour and minute < start.minute:
                        continue
                    for second in self.second.candidates():
                        candidate = datetime(
                            day.year, day.month, day.day, hour, minute, second,
                            tzinfo=instant.tzinfo,
                        )
                        if candidate >= start:
                            return candidate
        return None


class CronParser:
    """Parser for extended cron expressions."""

    # Field definitions: (min, max, name)
    FIELD_DEFS = [
        (0, 59, "second"),
        (0, 59, "minute"),
        (0, 23, "hour"),
        (1, 31, "day_of_month"),
        (1, 12, "month"),
        (0, 6, "day_of_week"),  # 0 = Sunday
    ]

    # Month name mappings
    MONTH_NAMES = {
        "jan": 1, "feb": 2, "mar": 3, "apr": 4,
        "may": 5, "jun": 6, "jul": 7, "aug": 8,
        "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    }

    # Day of week name mappings
    DOW_NAMES = {
        "sun": 0, "mon": 1, "tue": 2, "wed": 3,
        "thu": 4, "fri": 5, "sat": 6,
    }

    MACROS = {
        "@yearly": "0 0 0 1 1 *",
        "@annually": "0 0 0 1 1 *",
        "@monthly": "0 0 0 1 * *",
        "@weekly": "0 0 0 * * 0",
        "@daily": "0 0 0 * * *",
        "@midnight": "0 0 0 * * *",
        "@hourly": "0 0 * * * *",
    }

    # @every units: (template, largest N allowed, 0 when N is not allowed)
    EVERY_UNITS = {
        "second": ("{} * * * * *", 59),
        "minute": ("0 {} * * * *", 59),
        "hour": ("0 0 {} * * *", 23),
        "day": ("0 0 0 {} * *", 31),
        "month": ("0 0 0 1 {} *", 12),
        "dayofweek": ("0 0 0 * * {}", 6),
        "week": ("0 0 0 * * 0", 0),
        "year": ("0 0 0 1 1 *", 0),
    }

    def parse(self, expression: str) -> CronRule:
        """
        Parse a cron expression into a CronRule.

        Fields: second minute hour day-of-month month day-of-week. With five
        fields the seconds field defaults to "0". An empty expression or a
        bare "*" matches every second.

        Per field:
        - * : any value
        - n : exact value (month and weekday names allowed)
        - a-b : inclusive range, reversed if a > b
        - a,b,c : enumeration of values or ranges
        - */k : every value in the field's bounds divisible by k

        Args:
            expression: The cron expression to parse

        Returns:
            A CronRule object

        Raises:
            CronParseError: If the expression is invalid
        """
        original = expression
        expression = expression.strip()
        if expression in ("", "*"):
            return self._build([frozenset()] * 6, original)

        if expression.startswith("@"):
            expression = self._expand_macro(expression, original)

        fields = expression.split()
        if len(fields) == 5:
            fields = ["0"] + fields
        elif len(fields) != 6:
            raise CronParseError(
                f"Invalid number of fields (expected 5 or 6, got {len(fields)})",
                original,
            )

        parsed_fields = []
        for field_str, (min_val, max_val, name) in zip(fields, self.FIELD_DEFS):
            try:
                parsed_fields.append(self._parse_field(field_str, min_val, max_val, name))
            except ValueError as e:
                raise CronParseError(f"Invalid {name} field: {e}", original) from e

        return self._build(parsed_fields, original)

    def _build(self, value_sets: list[frozenset[int]], expression: str) -> CronRule:
        fields = [
            CronField(values=values, min_value=min_val, max_value=max_val)
            for values, (min_val, max_val, _) in zip(value_sets, self.FIELD_DEFS)
        ]
        return CronRule(*fields, original_expression=expression)

    def _expand_macro(self, expression: str, original: str) -> str:
        macro = expression.lower()
        if macro in self.MACROS:
            return self.MACROS[macro]

        parts = macro.split()
        if parts[0] != "@every" or len(parts) not in (2, 3):
            raise CronParseError("Unrecognized macro", original)

        unit = parts[-1]
        if unit not in self.EVERY_UNITS and unit.endswith("s"):
            unit = unit[:-1]
        if unit not in self.EVERY_UNITS:
            raise CronParseError(f"Unknown @every unit {parts[-1]}", original)

        template, max_step = self.EVERY_UNITS[unit]
        if len(parts) == 2:
            return template.format("*")

        try:
            step = int(parts[1])
        except ValueError:
            raise CronParseError(f"Invalid @every count {parts[1]}", original) from None
        if step < 1 or step > max_step:
            raise CronParseError(f"@every count {step} out of bounds for {unit}", original)
        return template.format(f"*/{step}")

    def _parse_field(
        self, field_str: str, min_val: int, max_val: int, field_name: str
    ) -> frozenset[int]:
        """Parse a single cron field into its value set (empty means any)."""
        names = self._names_for(field_name)

        if "," in field_str:
            values: set[int] = set()
            for part in field_str.split(","):
                part = part.strip()
                if part:
                    values.update(self._parse_part(part, min_val, max_val, names))
            return frozenset(values)

        if field_str == "*":
            return frozenset()
        return frozenset(self._parse_part(field_str, min_val, max_val, names))

    def _names_for(self, field_name: str) -> dict[str, int]:
        if field_name == "month":
            return self.MONTH_NAMES
        if field_name == "day_of_week":
            return self.DOW_NAMES
        return {}

    def _parse_part(
        self, part: str, min_val: int, max_val: int, names: dict[str, int]
    ) -> Iterable[int]:
        # Step values (*/5)
        if "/" in part:
            base, step_str = part.split("/", 1)
            if base != "*":
                raise ValueError(f"Step must follow '*', got {part}")
            step = self._to_int(step_str, names)
            if step < 1 or step > max_val:
                raise ValueError(f"Step {step} out of bounds [1-{max_val}]")
            return [i for i in range(min_val, max_val + 1) if i % step == 0]

        # Range (1-5, jan-mar)
        if "-" in part:
            start_str, end_str = part.split("-", 1)
            start = self._to_int(start_str, names)
            end = self._to_int(end_str, names)
            if start > end:
                start, end = end, start
            if start < min_val or end > max_val:
                raise ValueError(f"Range {start}-{end} out of bounds [{min_val}-{max_val}]")
            return range(start, end + 1)

        # Single value
        val = self._to_int(part, names)
        if val < min_val or val > max_val:
            raise ValueError(f"Value {val} out of bounds [{min_val}-{max_val}]")
        return [val]

    @staticmethod
    def _to_int(token: str, names: dict[str, int]) -> int:
        token = token.strip().lower()
        if token in names:
            return names[token]
        try:
            return int(token)
        except ValueError as e:
            raise ValueError(f"Invalid value: {token}") from e


_default_parser = CronParser()


def parse_rule(expression: str) -> CronRule:
    """Parse a cron expression with the default parser."""
    return _default_parser.parse(expression)


def is_due(now: datetime, rule: CronRule) -> bool:
    """Check whether rule matches the whole second of now."""
    return rule.matches(now)


@dataclass
class CronJob:
    """A registered job and the thread that runs it."""

    id: str
    rule: str
    parsed: CronRule
    loop: Callable[[], None]
    tidy: Optional[Callable[[], None]] = None
    stop: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None


class Scheduler:
    """
    Cron scheduler running one thread per job.

    Each job thread wakes at every whole second, runs ``loop`` when the
    rule matches, and runs ``tidy`` exactly once when the job is removed
    or the scheduler is emptied. A job never overlaps with itself; a slow
    ``loop`` simply delays the next check.
    """

    def __init__(self, logger: Optional["Logger"] = None) -> None:
        """
        Initialize the scheduler.

        Args:
            logger: Optional logger for job lifecycle and crashes
        """
        self._parser = CronParser()
        self._jobs: dict[str, CronJob] = {}
        self._lock = ReadWriteLock()
        self._install_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._wait_group = WaitGroup()
        self._logger = logger

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def add(
        self,
        rule: str,
        loop: Callable[[], None],
        tidy: Optional[Callable[[], None]] = None,
    ) -> str:
        """
        Schedule a new job.

        Args:
            rule: Cron expression
            loop: Called each second the rule matches
            tidy: Called once when the job is removed

        Returns:
            The generated job ID (hex SHA-1)

        Raises:
            CronParseError: If the rule is invalid
            PreconditionFailedError: If the scheduler was emptied
        """
        job_id = self._new_id(rule)
        while self.has(job_id):
            job_id = self._new_id(rule)
        self.set(job_id, rule, loop, tidy)
        return job_id

    def set(
        self,
        job_id: str,
        rule: str,
        loop: Callable[[], None],
        tidy: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Install a job under job_id, replacing (and tidying) any existing one.

        Raises:
            CronParseError: If the rule is invalid
            PreconditionFailedError: If the scheduler was emptied
        """
        parsed = self._parser.parse(rule)

        while True:
            with self._install_lock:
                if self._cancelled.is_set():
                    raise PreconditionFailedError(
                        code="scheduler_cancelled",
                        message="scheduler has been emptied",
                    )
                old = self._pop(job_id)
                if old is None:
                    self._install(CronJob(id=job_id, rule=rule, parsed=parsed, loop=loop, tidy=tidy))
                    return
            self._finish(old)

    def delete(self, job_id: str) -> None:
        """
        Remove a job and wait until its tidy function has run.

        Unknown IDs are ignored. Called from inside the job's own loop, the
        job stops after the current run without waiting.
        """
        job = self._pop(job_id)
        if job is not None:
            self._finish(job)

    def has(self, job_id: str) -> bool:
        with self._lock.read():
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return self.has(job_id)

    def list_jobs(self) -> list[str]:
        """IDs of the registered jobs."""
        with self._lock.read():
            return list(self._jobs)

    def get_rule(self, job_id: str) -> Optional[CronRule]:
        with self._lock.read():
            job = self._jobs.get(job_id)
        return job.parsed if job is not None else None

    def empty(self) -> None:
        """Cancel the scheduler; every job stops and runs its tidy function."""
        self._cancelled.set()
        with self._lock.read():
            jobs = list(self._jobs.values())
        for job in jobs:
            job.stop.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every job thread has exited.

        Returns:
            False if the timeout elapsed first, True otherwise
        """
        return self._wait_group.wait(timeout)

    def parse_cron(self, expression: str) -> CronRule:
        """
        Parse a cron expression without scheduling a job.

        Raises:
            CronParseError: If the expression is invalid
        """
        return self._parser.parse(expression)

    @staticmethod
    def _new_id(rule: str) -> str:
        return hashlib.sha1(f"xcron-{rule}-{time.time_ns()}".encode("utf-8")).hexdigest()

    def _install(self, job: CronJob) -> None:
        job.thread = threading.Thread(
            target=self._run_job,
            args=(job,),
            name=f"cron-job-{job.id[:8]}",
            daemon=True,
        )
        with self._lock.write():
            self._jobs[job.id] = job
        self._wait_group.add(1)
        job.thread.start()
        if self._logger is not None:
            self._logger.debug("cron job %s installed with rule %r", job.id, job.rule)

    def _pop(self, job_id: str) -> Optional[CronJob]:
        with self._lock.write():
            return self._jobs.pop(job_id, None)

    def _finish(self, job: CronJob) -> None:
        job.stop.set()
        if job.thread is not None and job.thread is not threading.current_thread():
            job.thread.join()

    def _run_job(self, job: CronJob) -> None:
        last_checked: Optional[int] = None
        try:
            while not self._cancelled.is_set():
                now = time.time()
                # Wake just past the next whole second.
                if job.stop.wait(1.0 - (now % 1.0) + 0.001):
                    break
                if self._cancelled.is_set():
                    break

                second = int(time.time())
                if second == last_checked:
                    continue
                last_checked = second

                if job.parsed.matches(datetime.fromtimestamp(second)):
                    job.loop()
        except Exception as e:
            if self._logger is not None:
                self._logger.error("cron job %s crashed: %r", job.id, e)
            raise
        finally:
            with self._lock.write():
                if self._jobs.get(job.id) is job:
                    del self._jobs[job.id]
            try:
                if job.tidy is not None:
                    job.tidy()
            finally:
                self._wait_group.done()
                if self._logger is not None:
                    self._logger.debug("cron job %s removed", job.id)
