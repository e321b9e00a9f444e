"""
Tests for core/email_composer.py MIME structure
"""

import base64
import email
import logging
from datetime import datetime, timezone

from conftest import PDF_BYTES, PNG_BYTES, make_job
from core.email_composer import (
    attachment_filename,
    build_attachment_message,
    build_test_message,
    compose_report_message,
    content_type_for,
)
from core.template_engine import template_engine

SENDER = 'reports@example.com'
NOW = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


def reparse(msg):
    """Serialize and parse back, as a receiving client would"""
    return email.message_from_bytes(msg.as_bytes())


def test_attachment_filename():
    assert attachment_filename('pdf', NOW) == 'report-2024-03-05-140709.pdf'


def test_content_types():
    assert content_type_for('png') == 'image/png'
    assert content_type_for('pdf') == 'application/pdf'
    assert content_type_for('csv') == 'application/octet-stream'


def test_common_headers():
    msg = reparse(compose_report_message(make_job(recipients=['a@example.com', 'b@example.com']),
                                         PNG_BYTES, SENDER, NOW))
    assert msg['From'] == SENDER
    assert msg['To'] == 'a@example.com, b@example.com'
    assert msg['Subject'] == 'Daily report'
    assert msg['MIME-Version'] == '1.0'
    assert msg['Date']
    assert msg['Message-ID'].startswith('<') and msg['Message-ID'].endswith('@example.com>')
    assert msg['X-Mailer']


# ---------------------------------------------------------------------------
# Attachment mode
# ---------------------------------------------------------------------------

def test_pdf_attachment_round_trips():
    msg = reparse(compose_report_message(make_job(format='pdf'), PDF_BYTES, SENDER, NOW))

    assert msg.get_content_type() == 'multipart/mixed'
    body, attachment = msg.get_payload()
    assert body.get_content_type() == 'text/plain'
    assert body.get_payload(decode=True).decode('utf-8') == 'Line one\nLine two'

    assert attachment.get_content_type() == 'application/pdf'
    assert attachment['Content-Transfer-Encoding'] == 'base64'
    assert attachment.get_content_disposition() == 'attachment'
    assert attachment.get_filename() == 'report-2024-03-05-140709.pdf'
    assert attachment.get_payload(decode=True) == PDF_BYTES


def test_base64_lines_wrapped_at_76():
    msg = build_attachment_message(SENDER, ['a@example.com'], 's', 'b', PNG_BYTES, 'png', NOW)
    encoded = msg.get_payload()[1].get_payload()
    lines = encoded.strip().splitlines()
    assert len(lines) > 1
    assert all(len(line) <= 76 for line in lines)
    assert base64.b64decode(''.join(lines)) == PNG_BYTES


def test_png_attachment_content_type():
    msg = reparse(compose_report_message(make_job(format='png'), PNG_BYTES, SENDER, NOW))
    attachment = msg.get_payload()[1]
    assert attachment.get_content_type() == 'image/png'
    assert attachment.get_filename().endswith('.png')


# ---------------------------------------------------------------------------
# Embedded mode
# ---------------------------------------------------------------------------

def test_html_message_structure_and_cid():
    msg = reparse(compose_report_message(make_job(format='html'), PNG_BYTES, SENDER, NOW))

    assert msg.get_content_type() == 'multipart/alternative'
    fallback, related = msg.get_payload()
    assert fallback.get_content_type() == 'text/plain'
    assert 'HTML-capable' in fallback.get_payload(decode=True).decode('utf-8')
    assert related.get_content_type() == 'multipart/related'

    html_part, image_part = related.get_payload()
    assert html_part.get_content_type() == 'text/html'
    assert image_part.get_content_type() == 'image/png'
    assert image_part.get_content_disposition() == 'inline'
    assert image_part.get_payload(decode=True) == PNG_BYTES

    content_id = image_part['Content-ID']
    assert content_id.startswith('<') and content_id.endswith('>')
    html = html_part.get_payload(decode=True).decode('utf-8')
    assert f"cid:{content_id[1:-1]}" in html


def test_html_body_is_escaped_and_line_broken():
    job = make_job(format='html', body='<script>alert(1)</script>\nsecond line')
    msg = reparse(compose_report_message(job, PNG_BYTES, SENDER, NOW))
    html = msg.get_payload()[1].get_payload()[0].get_payload(decode=True).decode('utf-8')

    assert '<script>' not in html
    assert '&lt;script&gt;' in html
    assert '<br>' in html or '<br/>' in html


def test_html_body_has_no_external_resources():
    msg = reparse(compose_report_message(make_job(format='html'), PNG_BYTES, SENDER, NOW))
    html = msg.get_payload()[1].get_payload()[0].get_payload(decode=True).decode('utf-8')
    assert 'src="http' not in html
    assert 'href=' not in html
    assert '<iframe' not in html


def test_embedded_message_logs_css_inlining(caplog, monkeypatch):
    monkeypatch.setattr(template_engine, 'enable_css_inlining', False)
    with caplog.at_level(logging.DEBUG, logger='core.email_composer'):
        compose_report_message(make_job(format='html'), PNG_BYTES, SENDER, NOW)
    assert 'css inlined: False' in caplog.text


# ---------------------------------------------------------------------------
# Test message
# ---------------------------------------------------------------------------

def test_test_message_is_text_only_mixed():
    msg = reparse(build_test_message(SENDER, ['a@example.com'], 'Hello', 'Testing'))
    assert msg.get_content_type() == 'multipart/mixed'
    parts = msg.get_payload()
    assert len(parts) == 1
    assert parts[0].get_payload(decode=True).decode('utf-8') == 'Testing'
