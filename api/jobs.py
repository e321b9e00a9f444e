# api/jobs.py
"""
Job API endpoints
"""

from flask import Blueprint, current_app, jsonify, request
import logging

from core.exceptions import ValidationError
from middleware.security import audit_access, limiter

jobs_bp = Blueprint('jobs', __name__)
logger = logging.getLogger(__name__)


def reporter():
    return current_app.extensions['reporter']


def json_body():
    """Request body as a JSON object, or a 400"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def action_rate_limit():
    return current_app.config['ACTION_RATE_LIMIT']


@jobs_bp.route('/jobs', methods=['GET'])
def list_jobs():
    """List every job"""
    return jsonify([job.to_dict() for job in reporter().list_jobs()])


@jobs_bp.route('/jobs', methods=['POST'])
def create_job():
    job = reporter().create_job(json_body())
    return jsonify(job.to_dict()), 201


@jobs_bp.route('/jobs/<job_id>', methods=['GET'])
def get_job(job_id):
    return jsonify(reporter().get_job(job_id).to_dict())


@jobs_bp.route('/jobs/<job_id>', methods=['PUT'])
def update_job(job_id):
    """Replace a job; the id in the path wins over one in the body"""
    job = reporter().update_job(job_id, json_body())
    return jsonify(job.to_dict())


@jobs_bp.route('/jobs/<job_id>', methods=['DELETE'])
def delete_job(job_id):
    reporter().delete_job(job_id)
    return '', 204


@jobs_bp.route('/jobs/<job_id>/execute', methods=['POST'])
@limiter.limit(action_rate_limit)
@audit_access('Manual execution')
def execute_job(job_id):
    """Start a detached run and acknowledge immediately"""
    ticket = reporter().execute_job(job_id)
    return jsonify({
        'message': 'Job execution started',
        'executionId': ticket.execution_id,
        'jobId': ticket.job_id,
    }), 202
