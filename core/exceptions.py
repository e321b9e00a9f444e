# core/exceptions.py
"""
Error taxonomy for the report scheduler

Every error raised by the stores, the scheduler and the execution pipeline
derives from ReporterError so the API layer can map it onto an HTTP status.
"""

from typing import Optional


class ReporterError(Exception):
    """Base exception for report scheduling operations"""
    status_code = 500


class ValidationError(ReporterError):
    """Rejected input: malformed cron, missing fields, bad recipients"""
    status_code = 400


class NotFoundError(ReporterError):
    """Operation on an unknown job id"""
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class ConfigurationError(ReporterError):
    """A connection setting needed for the operation is not configured"""
    status_code = 500


class DownstreamError(ReporterError):
    """The render service or the SMTP relay failed"""
    status_code = 502


class RenderError(DownstreamError):
    """Non-success response (or transport failure) from the render service"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.response_status = status_code
        self.body = body


class DeliveryError(DownstreamError):
    """SMTP connection or protocol failure"""

    def __init__(self, message: str, smtp_code: Optional[int] = None):
        super().__init__(message)
        self.smtp_code = smtp_code


class PersistenceError(ReporterError):
    """The backing JSON file could not be written"""
    status_code = 500
