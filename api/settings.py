# api/settings.py
"""
Connection settings, test email and dashboard listing endpoints
"""

from flask import Blueprint, jsonify
import logging

from api.jobs import action_rate_limit, json_body, reporter
from middleware.security import audit_access, limiter

settings_bp = Blueprint('settings', __name__)
logger = logging.getLogger(__name__)


@settings_bp.route('/config', methods=['GET'])
@audit_access('Configuration read')
def get_config():
    """Connection config with secrets masked"""
    return jsonify(reporter().read_config())


@settings_bp.route('/config', methods=['POST'])
@audit_access('Configuration update')
def update_config():
    reporter().update_config(json_body())
    return jsonify({'message': 'Configuration saved successfully'})


@settings_bp.route('/test-email', methods=['POST'])
@limiter.limit(action_rate_limit)
@audit_access('Test email')
def send_test_email():
    reporter().send_test_email(json_body())
    return jsonify({'message': 'Test email sent successfully'})


@settings_bp.route('/dashboards', methods=['GET'])
def list_dashboards():
    """Dashboards from the Grafana search API, forwarded as-is"""
    return jsonify(reporter().list_dashboards())
