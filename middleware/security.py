# middleware/security.py
"""
Security Middleware for Request Processing
"""

from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from functools import wraps
import logging

logger = logging.getLogger(__name__)

# Rate limiter for endpoints with outbound side effects (initialized in create_app)
limiter = Limiter(key_func=get_remote_address)


def security_headers(response):
    """Add security headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    response.headers['Referrer-Policy'] = 'no-referrer'
    response.headers['Cache-Control'] = 'no-store'

    return response


def audit_access(action):
    """Decorator logging access to endpoints that touch credentials or send mail"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            target = kwargs.get('job_id')
            logger.info(f"{action} requested by {get_remote_address()}"
                        f"{' for job ' + target if target else ''} ({request.method} {request.path})")
            return f(*args, **kwargs)
        return decorated_function
    return decorator
