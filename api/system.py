# api/system.py
"""
Version, health and reload endpoints
"""

from flask import Blueprint, jsonify
import logging

from api.jobs import reporter
from middleware.security import audit_access

system_bp = Blueprint('system', __name__)
logger = logging.getLogger(__name__)


@system_bp.route('/version', methods=['GET'])
def version():
    return jsonify(reporter().version_info())


@system_bp.route('/health', methods=['GET'])
def health():
    """200 while the scheduler engine is running, 503 otherwise"""
    status = reporter().health()
    return jsonify(status), 200 if status['status'] == 'ok' else 503


@system_bp.route('/reload', methods=['POST'])
@audit_access('Reload')
def reload():
    count = reporter().reload()
    return jsonify({'message': 'Configuration and jobs reloaded', 'jobs': count})
