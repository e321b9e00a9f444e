# core/models.py
"""
Domain types for scheduled reports

Jobs and the connection config are immutable value objects. They are
parsed from, and serialized back to, flat camelCase JSON records, so
jobs.json / config.json files written by earlier plugin releases load
unchanged.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from core.credentials import mask_secret, merge_secret
from core.exceptions import ValidationError

DEFAULT_FROM = 'now-24h'
DEFAULT_TO = 'now'
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_SCALE = 1
DEFAULT_SUBJECT = 'Grafana Report'
DEFAULT_BODY = 'Please find attached your scheduled Grafana report.'
DEFAULT_GRAFANA_URL = 'http://localhost:3000'
DEFAULT_SMTP_PORT = 587


class ReportFormat(Enum):
    """Delivery formats; html embeds a PNG render in the email body"""
    PNG = "png"
    PDF = "pdf"
    HTML = "html"


@dataclass(frozen=True)
class DashboardRef:
    uid: str
    slug: str


@dataclass(frozen=True)
class TimeRange:
    from_: str = DEFAULT_FROM
    to: str = DEFAULT_TO


@dataclass(frozen=True)
class RenderOptions:
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    scale: int = DEFAULT_SCALE


def normalize_variables(raw: Optional[Mapping[str, Any]]) -> Dict[str, Tuple[str, ...]]:
    """
    Accept both historical encodings of dashboard variables.

    Older job files store one string per variable, newer ones a list of
    strings. Both normalize to a tuple of values; nothing else is inferred.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("variables must be an object mapping names to values")

    variables = {}
    for name, value in raw.items():
        if isinstance(value, str):
            variables[str(name)] = (value,)
        elif isinstance(value, (list, tuple)):
            if not all(isinstance(item, str) for item in value):
                raise ValidationError(f"variable '{name}' must contain only strings")
            variables[str(name)] = tuple(value)
        else:
            raise ValidationError(f"variable '{name}' must be a string or a list of strings")
    return variables


@dataclass(frozen=True)
class Job:
    """
    A scheduled report definition.

    Instances are never mutated; an edit produces a new Job which has to be
    stored with JobStore.put() and re-registered with the scheduler.
    """
    id: str
    cron_expression: str
    dashboard: DashboardRef
    recipients: Tuple[str, ...]
    time_range: TimeRange = field(default_factory=TimeRange)
    render_options: RenderOptions = field(default_factory=RenderOptions)
    format: ReportFormat = ReportFormat.PNG
    subject: str = DEFAULT_SUBJECT
    body: str = DEFAULT_BODY
    panel_id: Optional[int] = None
    variables: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'recipients', tuple(self.recipients))
        object.__setattr__(self, 'variables',
                           MappingProxyType({k: tuple(v) for k, v in dict(self.variables).items()}))

    def __hash__(self):
        return hash((self.id, self.cron_expression))

    @property
    def is_panel(self) -> bool:
        return self.panel_id is not None

    def with_id(self, job_id: str) -> 'Job':
        return replace(self, id=job_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Job':
        """Parse a flat job record (wire or disk format)"""
        if not isinstance(data, Mapping):
            raise ValidationError("job must be a JSON object")

        recipients = data.get('recipients') or []
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(',') if r.strip()]
        if not isinstance(recipients, (list, tuple)):
            raise ValidationError("recipients must be a list of email addresses")

        raw_format = data.get('format') or ReportFormat.PNG.value
        try:
            report_format = ReportFormat(str(raw_format).lower())
        except ValueError:
            raise ValidationError(f"unsupported format '{raw_format}', expected png, pdf or html")

        return cls(
            id=str(data.get('id') or ''),
            cron_expression=str(data.get('cron') or '').strip(),
            dashboard=DashboardRef(uid=str(data.get('dashboardUid') or ''),
                                   slug=str(data.get('slug') or '')),
            panel_id=_optional_int(data.get('panelId'), 'panelId'),
            time_range=TimeRange(from_=str(data.get('from') or DEFAULT_FROM),
                                 to=str(data.get('to') or DEFAULT_TO)),
            render_options=RenderOptions(
                width=_int_field(data.get('width'), 'width', DEFAULT_WIDTH),
                height=_int_field(data.get('height'), 'height', DEFAULT_HEIGHT),
                scale=_int_field(data.get('scale'), 'scale', DEFAULT_SCALE),
            ),
            format=report_format,
            recipients=tuple(str(r).strip() for r in recipients if str(r).strip()),
            subject=str(data.get('subject') if data.get('subject') is not None else DEFAULT_SUBJECT),
            body=str(data.get('body') if data.get('body') is not None else DEFAULT_BODY),
            variables=normalize_variables(data.get('variables')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the flat record; variables always use the list encoding"""
        record = {
            'id': self.id,
            'cron': self.cron_expression,
            'dashboardUid': self.dashboard.uid,
            'slug': self.dashboard.slug,
        }
        if self.panel_id is not None:
            record['panelId'] = self.panel_id
        record.update({
            'from': self.time_range.from_,
            'to': self.time_range.to,
            'width': self.render_options.width,
            'height': self.render_options.height,
            'scale': self.render_options.scale,
            'format': self.format.value,
            'recipients': list(self.recipients),
            'subject': self.subject,
            'body': self.body,
        })
        if self.variables:
            record['variables'] = {name: list(values) for name, values in self.variables.items()}
        return record


def generate_job_id() -> str:
    return f"job-{time.time_ns()}"


def _int_field(value: Any, name: str, default: int) -> int:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer, got {value!r}")


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    return _int_field(value, name, 0)


def validate_recipients(recipients: Iterable[str]) -> List[str]:
    """Syntax-check every address; raises ValidationError listing the bad ones"""
    recipients = list(recipients)
    if not recipients:
        raise ValidationError("at least one recipient is required")

    invalid = []
    for address in recipients:
        try:
            validate_email(address, check_deliverability=False)
        except EmailNotValidError as e:
            invalid.append(f"{address} ({e})")
    if invalid:
        raise ValidationError(f"invalid recipient address: {', '.join(invalid)}")
    return recipients


def validate_job(job: Job, timezone: str = 'UTC') -> Job:
    """
    Full validation applied before a job is accepted or updated

    Args:
        job: Parsed job
        timezone: Scheduler timezone used to compile the cron expression

    Returns:
        The same job, for chaining

    Raises:
        ValidationError: on the first problem found
    """
    # core.scheduler imports this module
    from core.scheduler import parse_cron

    if not job.cron_expression:
        raise ValidationError("cron expression is required")
    parse_cron(job.cron_expression, timezone)

    if not job.dashboard.uid:
        raise ValidationError("dashboardUid is required")
    if not job.dashboard.slug:
        raise ValidationError("slug is required")

    options = job.render_options
    if options.width <= 0 or options.height <= 0 or options.scale <= 0:
        raise ValidationError("width, height and scale must be positive")

    validate_recipients(job.recipients)
    return job


@dataclass(frozen=True)
class ConnectionConfig:
    """Render-service and SMTP credentials; cleartext, never sent to clients as-is"""
    grafana_url: str = ''
    grafana_api_key: str = ''
    smtp_host: str = ''
    smtp_port: int = 0
    smtp_user: str = ''
    smtp_password: str = ''
    smtp_from: str = ''

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ConnectionConfig':
        if not isinstance(data, Mapping):
            raise ValidationError("config must be a JSON object")
        return cls(
            grafana_url=str(data.get('grafanaUrl') or ''),
            grafana_api_key=str(data.get('grafanaApiKey') or ''),
            smtp_host=str(data.get('smtpHost') or ''),
            smtp_port=_int_field(data.get('smtpPort'), 'smtpPort', 0),
            smtp_user=str(data.get('smtpUser') or ''),
            smtp_password=str(data.get('smtpPassword') or ''),
            smtp_from=str(data.get('smtpFrom') or ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'grafanaUrl': self.grafana_url,
            'grafanaApiKey': self.grafana_api_key,
            'smtpHost': self.smtp_host,
            'smtpPort': self.smtp_port,
            'smtpUser': self.smtp_user,
            'smtpPassword': self.smtp_password,
            'smtpFrom': self.smtp_from,
        }

    def masked(self) -> 'ConnectionConfig':
        return replace(self,
                       grafana_api_key=mask_secret(self.grafana_api_key),
                       smtp_password=mask_secret(self.smtp_password))

    def merged_with(self, incoming: 'ConnectionConfig') -> 'ConnectionConfig':
        """Take every field from incoming, except masked secrets which keep the stored value"""
        return replace(incoming,
                       grafana_api_key=merge_secret(incoming.grafana_api_key, self.grafana_api_key),
                       smtp_password=merge_secret(incoming.smtp_password, self.smtp_password))

    def with_defaults(self, defaults: 'ConnectionConfig') -> 'ConnectionConfig':
        """Fill empty fields from environment defaults"""
        merged = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            merged[name] = value if value else getattr(defaults, name)
        if not merged['smtp_from']:
            merged['smtp_from'] = merged['smtp_user']
        return ConnectionConfig(**merged)


def connection_defaults_from_env(environ: Mapping[str, str], logger=None) -> ConnectionConfig:
    """Environment fallbacks for unset connection fields"""
    port = DEFAULT_SMTP_PORT
    raw_port = environ.get('SMTP_PORT')
    if raw_port:
        try:
            port = int(raw_port)
        except ValueError:
            if logger:
                logger.warning(f"Invalid SMTP_PORT environment variable {raw_port!r}, using default {DEFAULT_SMTP_PORT}")

    user = environ.get('SMTP_USER', '')
    return ConnectionConfig(
        grafana_url=environ.get('GRAFANA_URL') or DEFAULT_GRAFANA_URL,
        grafana_api_key='',
        smtp_host=environ.get('SMTP_HOST', ''),
        smtp_port=port,
        smtp_user=user,
        smtp_password=environ.get('SMTP_PASS', ''),
        smtp_from=environ.get('SMTP_FROM') or user,
    )
