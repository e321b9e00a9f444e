# config/settings.py
"""
Process settings for the Grafana report scheduler
"""

import os
from importlib.metadata import PackageNotFoundError, version as _dist_version


def _package_version() -> str:
    try:
        return _dist_version('grafana-report-scheduler')
    except PackageNotFoundError:
        return '0.0.0'


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


class ReporterSettings:
    """Settings shared by every environment"""

    # Persistence
    DATA_DIR = os.environ.get('REPORTER_DATA_DIR', '/var/lib/grafana/plugin-data/grafana-reporter')
    JOBS_FILE = os.environ.get('REPORTER_JOBS_FILE') or os.path.join(DATA_DIR, 'jobs.json')
    CONFIG_FILE = os.environ.get('REPORTER_CONFIG_FILE') or os.path.join(DATA_DIR, 'config.json')

    # Network timeouts (seconds)
    RENDER_TIMEOUT = float(os.environ.get('REPORTER_RENDER_TIMEOUT', 60))
    DASHBOARD_LIST_TIMEOUT = float(os.environ.get('REPORTER_DASHBOARD_LIST_TIMEOUT', 30))
    SMTP_TIMEOUT = float(os.environ.get('REPORTER_SMTP_TIMEOUT', 30))

    # Scheduling
    START_SCHEDULER = True
    SCHEDULER_TIMEZONE = os.environ.get('REPORTER_TIMEZONE', 'UTC')
    SCHEDULER_MAX_INSTANCES = int(os.environ.get('REPORTER_MAX_OVERLAP', 3))
    EXECUTOR_WORKERS = int(os.environ.get('REPORTER_EXECUTOR_WORKERS', 4))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('REPORTER_LOG_FILE')

    # The management UI is served by Grafana, on another origin
    CORS_ORIGINS = _env_list('REPORTER_CORS_ORIGINS', 'http://localhost:3000')

    # Rate limiting for endpoints with outbound side effects
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_HEADERS_ENABLED = True
    ACTION_RATE_LIMIT = os.environ.get('REPORTER_ACTION_RATE_LIMIT', '10 per minute')

    # Build identity
    VERSION = os.environ.get('APP_VERSION') or _package_version()
    BUILD_COMMIT = os.environ.get('BUILD_COMMIT', 'unknown')

    MAX_CONTENT_LENGTH = 1024 * 1024  # 1MB


class DevelopmentSettings(ReporterSettings):
    """Local development: data kept next to the checkout"""

    DATA_DIR = os.environ.get('REPORTER_DATA_DIR', os.path.join(os.getcwd(), 'data'))
    JOBS_FILE = os.environ.get('REPORTER_JOBS_FILE') or os.path.join(DATA_DIR, 'jobs.json')
    CONFIG_FILE = os.environ.get('REPORTER_CONFIG_FILE') or os.path.join(DATA_DIR, 'config.json')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingSettings(ReporterSettings):
    """Used by the test suite; paths are overridden per test"""

    TESTING = True
    START_SCHEDULER = False
    RATELIMIT_ENABLED = False
    LOG_LEVEL = 'DEBUG'
    EXECUTOR_WORKERS = 2


SETTINGS_BY_NAME = {
    'development': DevelopmentSettings,
    'testing': TestingSettings,
    'production': ReporterSettings,
}
