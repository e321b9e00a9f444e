# services/reporter.py
"""
Report scheduler service

Owns the job and config stores, the cron scheduler and the execution
pipeline, and implements every operation of the resource API. The job map
and the registration map share one readers/writer lock; the config store
keeps its own.
"""

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from apscheduler.schedulers.base import BaseScheduler

from core.config_store import ConfigStore
from core.email_composer import build_test_message
from core.exceptions import NotFoundError, PersistenceError, ValidationError
from core.job_store import JobStore
from core.models import Job, connection_defaults_from_env, generate_job_id, validate_job, validate_recipients
from core.render_client import RenderClient
from core.rwlock import ReadWriteLock
from core.scheduler import ReportScheduler
from tasks.email_sender import sender_from_connection
from tasks.report_runner import ExecutionTicket, ReportPipeline, SenderFactory

logger = logging.getLogger(__name__)


class ReporterService:
    """Single-process report scheduler"""

    def __init__(self,
                 jobs_file: str,
                 config_file: str,
                 env_defaults=None,
                 render_client: Optional[RenderClient] = None,
                 sender_factory: Optional[SenderFactory] = None,
                 engine: Optional[BaseScheduler] = None,
                 timezone_name: str = 'UTC',
                 max_instances: int = 3,
                 executor_workers: int = 4,
                 version: str = '0.0.0',
                 commit: str = 'unknown'):
        self.timezone = timezone_name
        self.version = version
        self.commit = commit

        self._lock = ReadWriteLock()
        # serializes store.put + scheduler.schedule pairs
        self._mutation = threading.Lock()

        self.job_store = JobStore(jobs_file, self._lock)
        self.config_store = ConfigStore(
            config_file, env_defaults or connection_defaults_from_env(os.environ, logger))
        self.scheduler = ReportScheduler(engine=engine, lock=self._lock,
                                         timezone=timezone_name, max_instances=max_instances)
        self.render_client = render_client or RenderClient()
        self.sender_factory = sender_factory or sender_from_connection
        self.pipeline = ReportPipeline(self.config_store, self.render_client,
                                       self.sender_factory, max_workers=executor_workers)

        self.started_at: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **kwargs) -> 'ReporterService':
        """Build from a Flask app.config mapping"""
        render_client = kwargs.pop('render_client', None) or RenderClient(
            timeout=config['RENDER_TIMEOUT'], list_timeout=config['DASHBOARD_LIST_TIMEOUT'])
        smtp_timeout = config['SMTP_TIMEOUT']
        sender_factory = kwargs.pop('sender_factory', None) or (
            lambda connection: sender_from_connection(connection, timeout=smtp_timeout))
        return cls(
            jobs_file=config['JOBS_FILE'],
            config_file=config['CONFIG_FILE'],
            render_client=render_client,
            sender_factory=sender_factory,
            timezone_name=config['SCHEDULER_TIMEZONE'],
            max_instances=config['SCHEDULER_MAX_INSTANCES'],
            executor_workers=config['EXECUTOR_WORKERS'],
            version=config['VERSION'],
            commit=config['BUILD_COMMIT'],
            **kwargs,
        )

    # Lifecycle

    def start(self, paused: bool = False):
        """
        Load persisted state, register every job and start the engine.

        An unreadable config or jobs file is logged and the service comes up
        without it, so one bad file cannot keep the API from starting.
        """
        try:
            self.config_store.load()
        except PersistenceError as e:
            logger.error(f"Starting without saved configuration: {e}")
        try:
            jobs = self.job_store.read_file()
        except PersistenceError as e:
            logger.error(f"Starting without saved jobs: {e}")
            jobs = []
        self._install_jobs(jobs)
        self.scheduler.start(paused=paused)
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()
        logger.info(f"Reporter service started with {len(self.job_store.ids())} jobs")

    def shutdown(self, wait: bool = False):
        self.scheduler.shutdown(wait=wait)
        self.pipeline.shutdown(wait=wait)
        logger.info("Reporter service stopped")

    def reload(self) -> int:
        """
        Re-read both files and re-register every schedule from scratch

        Raises:
            PersistenceError: if either file cannot be read; jobs and
                registrations are left as they were
        """
        jobs = self.job_store.read_file()
        self.config_store.load()
        count = self._install_jobs(jobs)
        logger.info(f"Reloaded configuration and {count} jobs")
        return count

    def _install_jobs(self, jobs: List[Job]) -> int:
        with self._mutation:
            self.job_store.replace_all(jobs)
            self.scheduler.unschedule_all()
            for job in jobs:
                try:
                    self.scheduler.schedule(job, self.pipeline.run_scheduled)
                except ValidationError as e:
                    logger.error(f"Failed to schedule job {job.id}: {e}")
        return len(jobs)

    # Jobs

    def list_jobs(self) -> List[Job]:
        return self.job_store.list()

    def get_job(self, job_id: str) -> Job:
        job = self.job_store.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def create_job(self, payload: Mapping[str, Any]) -> Job:
        """
        Validate, store and schedule a new job

        An id is generated when the payload has none.

        Raises:
            ValidationError: invalid payload or an id that is already taken
        """
        job = Job.from_dict(payload)
        if not job.id:
            job = job.with_id(generate_job_id())
        validate_job(job, self.timezone)

        with self._mutation:
            if self.job_store.exists(job.id):
                raise ValidationError(f"job {job.id} already exists")
            self.job_store.put(job)
            self.scheduler.schedule(job, self.pipeline.run_scheduled)

        logger.info(f"Created job {job.id}")
        return job

    def update_job(self, job_id: str, payload: Mapping[str, Any]) -> Job:
        """Replace a job; the path id always wins over an id in the payload"""
        job = Job.from_dict(payload).with_id(job_id)
        validate_job(job, self.timezone)

        with self._mutation:
            if not self.job_store.exists(job_id):
                raise NotFoundError(job_id)
            self.job_store.put(job)
            self.scheduler.schedule(job, self.pipeline.run_scheduled)

        logger.info(f"Updated job {job_id}")
        return job

    def delete_job(self, job_id: str):
        with self._mutation:
            if not self.job_store.exists(job_id):
                raise NotFoundError(job_id)
            self.scheduler.unschedule(job_id)
            self.job_store.delete(job_id)
        logger.info(f"Deleted job {job_id}")

    def execute_job(self, job_id: str) -> ExecutionTicket:
        return self.pipeline.submit(self.get_job(job_id))

    # Connection config

    def read_config(self) -> Dict[str, Any]:
        return self.config_store.read().to_dict()

    def update_config(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self.config_store.update(payload).to_dict()

    def send_test_email(self, payload: Mapping[str, Any]):
        """
        Send a text-only message with the current SMTP settings

        Args:
            payload: {recipients, subject, body}; recipients may be a list or a comma-separated string
        """
        if not isinstance(payload, Mapping):
            raise ValidationError("request body must be a JSON object")

        recipients = payload.get('recipients') or []
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(',') if r.strip()]
        if not isinstance(recipients, (list, tuple)):
            raise ValidationError("recipients must be a list of email addresses")
        recipients = validate_recipients(str(r).strip() for r in recipients)

        subject = str(payload.get('subject') or 'Test email from Grafana Reporter')
        body = str(payload.get('body') or 'This is a test email.')

        sender = self.sender_factory(self.config_store.snapshot())
        message = build_test_message(sender.from_address, recipients, subject, body)
        sender.send(message, recipients)
        logger.info(f"Test email sent to {len(recipients)} recipient(s)")

    def list_dashboards(self) -> List[Any]:
        return self.render_client.list_dashboards(self.config_store.snapshot())

    # Introspection

    def uptime_seconds(self) -> float:
        if self._started_monotonic is None:
            return 0.0
        return round(time.monotonic() - self._started_monotonic, 3)

    def version_info(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'commit': self.commit,
            'startedAt': self.started_at.isoformat() if self.started_at else None,
            'uptimeSeconds': self.uptime_seconds(),
        }

    def health(self) -> Dict[str, Any]:
        registrations = self.scheduler.active_registrations()
        running = self.scheduler.running
        return {
            'status': 'ok' if running else 'unavailable',
            'scheduler': 'running' if running else 'stopped',
            'jobs': len(self.job_store.ids()),
            'scheduled': len(registrations),
            'uptimeSeconds': self.uptime_seconds(),
        }
