"""
Shared fixtures for the report scheduler test suite.

External I/O is faked: the render service through httpx.MockTransport and
SMTP through a recording sender, so no test opens a network connection.
"""

import json

import httpx
import pytest

from app import create_app
from core.models import ConnectionConfig, Job
from core.render_client import RenderClient

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + bytes(range(256)) * 4
PDF_BYTES = b'%PDF-1.4\n' + b'report body ' * 200 + b'\n%%EOF'


def make_job_payload(**overrides):
    payload = {
        'cron': '0 9 * * *',
        'dashboardUid': 'abc123',
        'slug': 'dash',
        'from': 'now-24h',
        'to': 'now',
        'width': 1920,
        'height': 1080,
        'scale': 1,
        'format': 'png',
        'recipients': ['ops@example.com'],
        'subject': 'Daily report',
        'body': 'Line one\nLine two',
    }
    payload.update(overrides)
    return payload


def make_job(**overrides):
    payload = make_job_payload(**overrides)
    payload.setdefault('id', 'job-1')
    return Job.from_dict(payload)


class RecordingSender:
    """Stands in for SMTPSender; keeps every message instead of sending it"""

    def __init__(self, connection=None, fail_with=None):
        self.connection = connection
        self.from_address = (connection.smtp_from if connection else '') or 'reports@example.com'
        self.fail_with = fail_with
        self.sent = []

    def send(self, message, recipients):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((message, list(recipients)))


class RenderService:
    """Fake Grafana renderer behind an httpx.MockTransport"""

    def __init__(self, status_code=200, content=PNG_BYTES, dashboards=None):
        self.status_code = status_code
        self.content = content
        self.dashboards = dashboards if dashboards is not None else [
            {'uid': 'abc123', 'title': 'Dash', 'url': '/d/abc123/dash', 'type': 'dash-db'},
        ]
        self.search_status = 200
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == '/api/search':
            if self.search_status != 200:
                return httpx.Response(self.search_status, text='unauthorized')
            return httpx.Response(200, content=json.dumps(self.dashboards).encode(),
                                  headers={'Content-Type': 'application/json'})
        if self.status_code != 200:
            return httpx.Response(self.status_code, text='renderer exploded')
        return httpx.Response(200, content=self.content)

    def client(self):
        return RenderClient(timeout=5, list_timeout=5, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def render_service():
    return RenderService()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def connection():
    return ConnectionConfig(
        grafana_url='http://grafana.local:3000',
        grafana_api_key='glsa_secretkey',
        smtp_host='smtp.example.com',
        smtp_port=587,
        smtp_user='reports@example.com',
        smtp_password='secretpass',
        smtp_from='reports@example.com',
    )


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'data'
    path.mkdir()
    return path


@pytest.fixture
def app(data_dir, render_service, sender, monkeypatch):
    """Testing app with a paused scheduler engine and fake render/SMTP"""
    for name in ('GRAFANA_URL', 'SMTP_HOST', 'SMTP_PORT', 'SMTP_USER', 'SMTP_PASS', 'SMTP_FROM'):
        monkeypatch.delenv(name, raising=False)

    (data_dir / 'config.json').write_text(json.dumps({
        'grafanaUrl': 'http://grafana.local:3000',
        'grafanaApiKey': 'glsa_secretkey',
        'smtpHost': 'smtp.example.com',
        'smtpPort': 587,
        'smtpUser': 'reports@example.com',
        'smtpPassword': 'secretpass',
        'smtpFrom': 'reports@example.com',
    }))

    def sender_factory(connection):
        sender.connection = connection
        return sender

    app = create_app('testing', overrides={'DATA_DIR': str(data_dir)},
                     render_client=render_service.client(),
                     sender_factory=sender_factory)
    yield app
    app.extensions['reporter'].shutdown(wait=True)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    return app.extensions['reporter']
