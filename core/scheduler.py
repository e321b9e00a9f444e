# core/scheduler.py
"""
Cron-driven dispatch for report jobs

Wraps an APScheduler BackgroundScheduler and keeps the mapping from job id
to the engine registration. Each registration closes over the Job value it
was created with; changing a job therefore always goes through schedule()
again, which cancels the previous registration before adding the new one.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Dict, Optional

from apscheduler.job import Job as EngineJob
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.exceptions import ValidationError
from core.models import Job
from core.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')

CRON_DESCRIPTORS = {
    '@yearly': '0 0 1 1 *',
    '@annually': '0 0 1 1 *',
    '@monthly': '0 0 1 * *',
    '@weekly': '0 0 * * 0',
    '@daily': '0 0 * * *',
    '@midnight': '0 0 * * *',
    '@hourly': '0 * * * *',
}

_DURATION_UNITS = {'h': 3600.0, 'm': 60.0, 's': 1.0, 'ms': 0.001}
_DURATION_PART_RE = re.compile(r'(\d+(?:\.\d+)?)(ms|h|m|s)')
_DURATION_RE = re.compile(r'(?:\d+(?:\.\d+)?(?:ms|h|m|s))+')

JobCallback = Callable[[Job], None]


def _expand_weekday_term(term: str) -> str:
    """Translate one numeric day-of-week term (0/7 = Sunday) into weekday names"""
    base, _, step_text = term.partition('/')
    if any(ch.isalpha() for ch in base):
        return term
    step = int(step_text) if step_text else 1
    if step <= 0:
        raise ValueError(f"invalid step in day-of-week term {term!r}")

    if base in ('*', '?'):
        if not step_text:
            return '*'
        start, end = 0, 6
    elif '-' in base:
        low, high = base.split('-', 1)
        start, end = int(low), int(high)
    else:
        start = int(base)
        end = 6 if step_text else start

    if not (0 <= start <= 7 and 0 <= end <= 7) or start > end:
        raise ValueError(f"day-of-week out of range in {term!r}")
    days = sorted({day % 7 for day in range(start, end + 1, step)})
    return ','.join(WEEKDAY_NAMES[day] for day in days)


def standard_day_of_week(field: str) -> str:
    """
    Normalize a standard cron day-of-week field for APScheduler.

    APScheduler numbers weekdays from Monday, standard cron from Sunday, so
    numeric values are rewritten as names; name-based terms pass through.
    """
    return ','.join(_expand_weekday_term(term) for term in field.split(','))


def _is_unrestricted(field: str) -> bool:
    return field in ('*', '?')


def parse_every(duration: str, timezone: str = 'UTC') -> IntervalTrigger:
    """
    Compile the duration of an ``@every`` descriptor, e.g. ``1h30m`` or ``90s``.

    Sub-second parts are dropped and anything shorter than a second runs
    every second.
    """
    text = duration.strip()
    if not text or not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration {duration!r}")

    seconds = sum(float(amount) * _DURATION_UNITS[unit]
                  for amount, unit in _DURATION_PART_RE.findall(text))
    if seconds <= 0:
        raise ValueError(f"duration {duration!r} must be positive")
    return IntervalTrigger(seconds=max(int(seconds), 1), timezone=timezone)


def parse_cron(expression: str, timezone: str = 'UTC') -> BaseTrigger:
    """
    Compile a 5-field cron expression (minute hour day month day-of-week)

    The ``@yearly``/``@monthly``/``@weekly``/``@daily``/``@hourly`` shortcuts
    and ``@every <duration>`` are accepted too. When both day-of-month and
    day-of-week are restricted the job fires on days matching either field,
    as in standard cron.

    Raises:
        ValidationError: if the expression is malformed
    """
    text = (expression or '').strip()
    if text.startswith('@every'):
        try:
            return parse_every(text[len('@every'):], timezone)
        except ValueError as e:
            raise ValidationError(f"Invalid cron expression {expression!r}: {e}")
    if text.startswith('@'):
        if text.lower() not in CRON_DESCRIPTORS:
            raise ValidationError(f"Invalid cron expression {expression!r}: unknown descriptor")
        text = CRON_DESCRIPTORS[text.lower()]

    fields = text.split()
    if len(fields) != 5:
        raise ValidationError(
            f"Invalid cron expression {expression!r}: expected 5 fields, got {len(fields)}")

    minute, hour, day, month, day_of_week = fields
    shared = {'minute': minute, 'hour': hour, 'month': '*' if month == '?' else month,
              'timezone': timezone}
    try:
        day_of_week = standard_day_of_week(day_of_week)
        if _is_unrestricted(day) or day_of_week == '*':
            return CronTrigger(day='*' if day == '?' else day, day_of_week=day_of_week, **shared)
        return OrTrigger([
            CronTrigger(day=day, **shared),
            CronTrigger(day_of_week=day_of_week, **shared),
        ])
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid cron expression {expression!r}: {e}")


def default_engine(timezone: str = 'UTC', max_instances: int = 3) -> BackgroundScheduler:
    """
    Background engine firing each due job on its own worker thread.

    max_instances > 1 lets a new firing start while a previous run of the
    same job is still busy; there is no skip-if-running guard.
    """
    return BackgroundScheduler(
        timezone=timezone,
        job_defaults={
            'coalesce': False,
            'max_instances': max_instances,
            'misfire_grace_time': 60,
        },
    )


class ReportScheduler:
    """Owns the job id -> engine registration map"""

    def __init__(self,
                 engine: Optional[BackgroundScheduler] = None,
                 lock: Optional[ReadWriteLock] = None,
                 timezone: str = 'UTC',
                 max_instances: int = 3):
        self.timezone = timezone
        self.engine = engine or default_engine(timezone, max_instances)
        self._lock = lock or ReadWriteLock()
        self._registrations: Dict[str, EngineJob] = {}

    @property
    def running(self) -> bool:
        return bool(self.engine.running)

    def start(self, paused: bool = False):
        if not self.engine.running:
            self.engine.start(paused=paused)
            logger.info(f"Scheduler started ({'paused' if paused else 'active'}, tz={self.timezone})")

    def shutdown(self, wait: bool = False):
        if self.engine.running:
            self.engine.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def schedule(self, job: Job, callback: JobCallback) -> EngineJob:
        """
        Register (or re-register) a job.

        The callback receives the exact Job value passed here. Any existing
        registration for job.id is cancelled first, so at most one is live.

        Raises:
            ValidationError: if job.cron_expression does not parse
        """
        trigger = parse_cron(job.cron_expression, self.timezone)

        with self._lock.write_locked():
            previous = self._registrations.pop(job.id, None)
            if previous is not None:
                self._remove_engine_job(previous)

            registration = self.engine.add_job(
                callback,
                trigger=trigger,
                args=(job,),
                id=job.id,
                name=f"report:{job.id}",
                replace_existing=True,
            )
            self._registrations[job.id] = registration

        logger.info(f"Scheduled job {job.id} with cron '{job.cron_expression}'")
        return registration

    def unschedule(self, job_id: str) -> bool:
        """Cancel the registration for job_id; returns False when there was none"""
        with self._lock.write_locked():
            registration = self._registrations.pop(job_id, None)
            if registration is None:
                return False
            self._remove_engine_job(registration)

        logger.info(f"Unscheduled job {job_id}")
        return True

    def unschedule_all(self) -> int:
        with self._lock.write_locked():
            registrations = list(self._registrations.values())
            self._registrations.clear()
            for registration in registrations:
                self._remove_engine_job(registration)
        if registrations:
            logger.info(f"Unscheduled {len(registrations)} jobs")
        return len(registrations)

    def active_registrations(self) -> Dict[str, Optional[datetime]]:
        """job id -> next fire time (None while the engine is not running)"""
        with self._lock.read_locked():
            return {job_id: getattr(registration, 'next_run_time', None)
                    for job_id, registration in self._registrations.items()}

    def is_scheduled(self, job_id: str) -> bool:
        with self._lock.read_locked():
            return job_id in self._registrations

    def _remove_engine_job(self, registration: EngineJob):
        try:
            self.engine.remove_job(registration.id)
        except LookupError:
            # already gone from the engine (e.g. removed during shutdown)
            logger.debug(f"Engine registration {registration.id} was already removed")
