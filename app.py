# app.py
"""
Flask Application Factory for the Grafana Report Scheduler

Wires the reporter service (job/config stores, cron scheduler, execution
pipeline) to the resource API and provides:
- Environment-based configuration management
- Journal-friendly logging with optional rotating file output
- JSON error responses for the reporter error taxonomy
- CORS for the management UI and rate limits on side-effecting endpoints
"""

import os
import logging
import logging.handlers
import atexit
from typing import Optional, Dict, Any

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.http import HTTP_STATUS_CODES

from api.jobs import jobs_bp
from api.settings import settings_bp
from api.system import system_bp
from config.settings import SETTINGS_BY_NAME
from core.exceptions import ReporterError
from middleware.security import limiter, security_headers
from services.reporter import ReporterService

NOISY_LOGGERS = ('werkzeug', 'apscheduler', 'httpx', 'httpcore')


def setup_logging(app: Flask) -> None:
    """
    Configure logging for systemd journal integration

    Handlers go on the root logger so every module-level logger is covered.
    Calling this again (e.g. once per test app) replaces the handlers it
    installed before instead of stacking them.
    """
    # Remove default Flask handlers to avoid duplicate logs
    app.logger.handlers.clear()

    journal_formatter = logging.Formatter(
        fmt='%(name)s[%(process)d]: %(levelname)s %(message)s'
    )
    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-20s %(levelname)-8s %(funcName)-15s:%(lineno)-4d %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, '_reporter_handler', False)]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(journal_formatter)
    stream_handler._reporter_handler = True
    root.addHandler(stream_handler)

    log_file = app.config.get('LOG_FILE')
    if log_file:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(detailed_formatter)
        file_handler._reporter_handler = True
        root.addHandler(file_handler)

    # Suppress verbose third-party logs in production
    if not app.debug and log_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(jobs_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(system_bp)
    app.logger.info("Application blueprints registered")


def error_response(status_code: int, message: str, error: Optional[str] = None):
    return jsonify({
        'error': error or HTTP_STATUS_CODES.get(status_code, 'Error'),
        'message': message,
        'status_code': status_code
    }), status_code


def configure_error_handlers(app: Flask) -> None:
    """
    Map reporter errors and HTTP errors onto JSON bodies
    """
    @app.errorhandler(ReporterError)
    def handle_reporter_error(e):
        status = e.status_code
        if status >= 500:
            app.logger.error(f"{type(e).__name__} on {request.method} {request.path}: {e}")
        else:
            app.logger.warning(f"{type(e).__name__} on {request.method} {request.path}: {e}")
        return error_response(status, str(e))

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded for {request.remote_addr}")
        return error_response(429, 'Too many requests. Please try again later.', 'Rate Limit Exceeded')

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return error_response(e.code or 500, e.description or '')

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions"""
        app.logger.error(f"Unhandled exception: {e}", exc_info=True)
        return error_response(500, 'An unexpected error occurred')


def configure_request_middleware(app: Flask) -> None:
    @app.after_request
    def after_request(response):
        return security_headers(response)


def load_settings(app: Flask, config_name: Optional[str], overrides: Optional[Dict[str, Any]]) -> str:
    config_name = config_name or os.environ.get('REPORTER_ENV', 'production')
    app.config.from_object(SETTINGS_BY_NAME.get(config_name, SETTINGS_BY_NAME['production']))

    overrides = dict(overrides or {})
    if 'DATA_DIR' in overrides:
        overrides.setdefault('JOBS_FILE', os.path.join(overrides['DATA_DIR'], 'jobs.json'))
        overrides.setdefault('CONFIG_FILE', os.path.join(overrides['DATA_DIR'], 'config.json'))
    app.config.update(overrides)
    return config_name


def create_app(config_name: str = None, overrides: Optional[Dict[str, Any]] = None,
               **service_options) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')
        overrides: Config keys applied after the settings class
        **service_options: Passed to ReporterService (render_client, sender_factory, engine)

    Returns:
        Configured Flask application with a started reporter service
    """
    app = Flask(__name__)

    config_name = load_settings(app, config_name, overrides)
    setup_logging(app)
    app.logger.info(f"Starting Grafana report scheduler in {config_name} mode")

    CORS(app, origins=app.config['CORS_ORIGINS'])
    limiter.init_app(app)

    register_blueprints(app)
    configure_error_handlers(app)
    configure_request_middleware(app)

    service = ReporterService.from_config(app.config, **service_options)
    # A paused engine keeps every registration but never fires
    service.start(paused=not app.config['START_SCHEDULER'])
    app.extensions['reporter'] = service

    atexit.register(service.shutdown)

    app.logger.info("Flask application factory completed successfully")
    return app


if __name__ == '__main__':
    # Development server
    app = create_app('development')
    app.run(
        host='0.0.0.0',
        port=int(os.environ.get('PORT', 5000)),
        debug=True,
        use_reloader=False
    )
