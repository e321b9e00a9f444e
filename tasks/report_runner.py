# tasks/report_runner.py
"""
Execution pipeline: render a job, compose the email, deliver it

Scheduled firings and on-demand triggers go through the same execute().
No lock is held while rendering or sending; the job is an immutable value
and the connection config is a snapshot taken at the start of the run.
"""

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from core.config_store import ConfigStore
from core.email_composer import compose_report_message
from core.exceptions import ReporterError
from core.models import ConnectionConfig, Job
from core.render_client import RenderClient
from tasks.email_sender import SMTPSender, sender_from_connection

logger = logging.getLogger(__name__)

SenderFactory = Callable[[ConnectionConfig], SMTPSender]


@dataclass(frozen=True)
class ExecutionTicket:
    """Acknowledgement for a detached execution; carries no completion signal"""
    execution_id: str
    job_id: str
    submitted_at: datetime

    def to_dict(self):
        return {
            'executionId': self.execution_id,
            'jobId': self.job_id,
            'submittedAt': self.submitted_at.isoformat(),
        }


class ReportPipeline:
    """Render -> compose -> send for one job"""

    def __init__(self,
                 config_store: ConfigStore,
                 render_client: Optional[RenderClient] = None,
                 sender_factory: Optional[SenderFactory] = None,
                 max_workers: int = 4):
        self.config_store = config_store
        self.render_client = render_client or RenderClient()
        self.sender_factory = sender_factory or sender_from_connection
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='report-exec')

    def execute(self, job: Job):
        """
        Run the pipeline once and propagate any failure

        Raises:
            ConfigurationError: missing Grafana URL or SMTP host
            RenderError: render service failure
            DeliveryError: SMTP failure
        """
        started = time.monotonic()
        logger.info(f"Executing job {job.id} ({job.format.value}, {len(job.recipients)} recipients)")

        connection = self.config_store.snapshot()
        payload = self.render_client.render(job, connection)

        sender = self.sender_factory(connection)
        message = compose_report_message(job, payload, sender.from_address)
        sender.send(message, job.recipients)

        logger.info(f"Job {job.id} delivered in {time.monotonic() - started:.2f}s")

    def run_scheduled(self, job: Job):
        """Engine callback: failures are logged and the job stays scheduled"""
        try:
            self.execute(job)
        except ReporterError as e:
            logger.error(f"Scheduled execution of job {job.id} failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error in scheduled execution of job {job.id}")

    def submit(self, job: Job) -> ExecutionTicket:
        """Start a detached execution and return immediately"""
        ticket = ExecutionTicket(
            execution_id=uuid.uuid4().hex,
            job_id=job.id,
            submitted_at=datetime.now(timezone.utc),
        )
        future = self._executor.submit(self.execute, job)
        future.add_done_callback(lambda f: self._log_outcome(ticket, f))
        logger.info(f"Job {job.id} submitted for execution ({ticket.execution_id})")
        return ticket

    @staticmethod
    def _log_outcome(ticket: ExecutionTicket, future: Future):
        error = future.exception()
        if error is None:
            return
        if isinstance(error, ReporterError):
            logger.error(f"Execution {ticket.execution_id} of job {ticket.job_id} failed: {error}")
        else:
            logger.error(f"Execution {ticket.execution_id} of job {ticket.job_id} failed unexpectedly",
                         exc_info=(type(error), error, error.__traceback__))

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait)
