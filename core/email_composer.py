# core/email_composer.py
"""
MIME construction for report emails

Attachment mode (png, pdf):
    multipart/mixed
      text/plain             job body
      <artifact>             base64, Content-Disposition: attachment

Embedded mode (html):
    multipart/alternative
      text/plain             fallback for non-HTML clients
      multipart/related
        text/html            references the image as cid:<content-id>
        image/png            base64, Content-ID: <content-id>, inline

Base64 bodies are produced by the email package, which wraps encoded
lines at 76 characters.
"""

import logging
import uuid
from datetime import datetime, timezone
from email import encoders
from email.mime.base import MIMEBase
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid, parseaddr
from typing import Iterable, Optional

from core.models import Job, ReportFormat
from core.template_engine import template_engine

logger = logging.getLogger(__name__)

X_MAILER = 'Grafana Report Scheduler'

CONTENT_TYPES = {
    'png': 'image/png',
    'pdf': 'application/pdf',
}


def content_type_for(fmt: str) -> str:
    return CONTENT_TYPES.get(fmt, 'application/octet-stream')


def attachment_filename(fmt: str, now: Optional[datetime] = None) -> str:
    """report-YYYY-MM-DD-HHMMSS.<fmt>"""
    now = now or datetime.now(timezone.utc)
    return f"report-{now.strftime('%Y-%m-%d-%H%M%S')}.{fmt}"


def _sender_domain(sender: str) -> str:
    address = parseaddr(sender)[1]
    if '@' in address:
        return address.rsplit('@', 1)[1]
    return 'localhost'


def _set_headers(msg, sender: str, recipients: Iterable[str], subject: str,
                 now: Optional[datetime] = None):
    msg['From'] = sender
    msg['To'] = ', '.join(recipients)
    msg['Subject'] = subject
    msg['Date'] = formatdate(now.timestamp() if now else None, localtime=True)
    msg['Message-ID'] = f"<{uuid.uuid4()}@{_sender_domain(sender)}>"
    msg['X-Mailer'] = X_MAILER


def build_attachment_message(sender: str, recipients: Iterable[str], subject: str, body: str,
                             payload: bytes, fmt: str,
                             now: Optional[datetime] = None) -> MIMEMultipart:
    """
    multipart/mixed message: text body plus the rendered artifact as an attachment

    Args:
        sender: From address
        recipients: To addresses
        subject: Subject line
        body: Plain-text body
        payload: Rendered bytes
        fmt: Format name, used for the filename and the content type
        now: Timestamp for the filename and Date header (defaults to current UTC time)
    """
    msg = MIMEMultipart('mixed')
    _set_headers(msg, sender, recipients, subject, now)
    msg.attach(MIMEText(body or '', 'plain', 'utf-8'))

    filename = attachment_filename(fmt, now)
    maintype, subtype = content_type_for(fmt).split('/', 1)
    part = MIMEBase(maintype, subtype, name=filename)
    part.set_payload(payload)
    encoders.encode_base64(part)
    part.add_header('Content-Disposition', 'attachment', filename=filename)
    msg.attach(part)

    logger.debug(f"Built attachment message {filename} ({len(payload)} bytes)")
    return msg


def build_embedded_message(sender: str, recipients: Iterable[str], subject: str, body: str,
                           image: bytes, now: Optional[datetime] = None) -> MIMEMultipart:
    """multipart/alternative message with the PNG render inline in an HTML body"""
    content_id = make_msgid(idstring='report-image', domain=_sender_domain(sender))[1:-1]
    rendered = template_engine.render_report(subject=subject, body=body, content_id=content_id)

    msg = MIMEMultipart('alternative')
    _set_headers(msg, sender, recipients, subject, now)
    msg.attach(MIMEText(rendered.text, 'plain', 'utf-8'))

    related = MIMEMultipart('related')
    related.attach(MIMEText(rendered.html, 'html', 'utf-8'))

    image_part = MIMEImage(image, _subtype='png')
    image_part.add_header('Content-ID', f"<{content_id}>")
    image_part.add_header('Content-Disposition', 'inline', filename='report.png')
    related.attach(image_part)

    msg.attach(related)
    logger.debug(f"Built embedded message ({len(image)} bytes, css inlined: {rendered.inline_css_applied})")
    return msg


def compose_report_message(job: Job, payload: bytes, sender: str,
                           now: Optional[datetime] = None) -> MIMEMultipart:
    """Pick the delivery mode for a job's format"""
    if job.format is ReportFormat.HTML:
        return build_embedded_message(sender, job.recipients, job.subject, job.body, payload, now)
    return build_attachment_message(sender, job.recipients, job.subject, job.body,
                                    payload, job.format.value, now)


def build_test_message(sender: str, recipients: Iterable[str], subject: str,
                       body: str) -> MIMEMultipart:
    """Text-only multipart/mixed message used to check the SMTP settings"""
    msg = MIMEMultipart('mixed')
    _set_headers(msg, sender, recipients, subject)
    msg.attach(MIMEText(body or '', 'plain', 'utf-8'))
    return msg
