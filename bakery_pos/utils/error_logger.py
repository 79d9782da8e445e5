"""
Error Logger Utility
Stores unexpected errors in the error_logs table together with the request,
the signed-in user and the branch the request was scoped to.
"""

import json
import logging
import traceback
from datetime import datetime
from flask import request, has_request_context, g
from flask_login import current_user

logger = logging.getLogger(__name__)

REDACTED = '[REDACTED]'
MAX_VALUE_LENGTH = 500
MAX_PAYLOAD_LENGTH = 4000

# Request keys never written to the log
SENSITIVE_KEYS = (
    'password', 'token', 'secret', 'api_key', 'authorization', 'cookie', 'session', 'salary'
)


def _is_sensitive(key):
    key = str(key).lower()
    return any(marker in key for marker in SENSITIVE_KEYS)


def _sanitize_data(data):
    """Redact sensitive keys, recursing into nested objects and lists"""
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else _sanitize_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_sanitize_data(value) for value in data]
    if data is None or isinstance(data, (bool, int, float)):
        return data
    return str(data)[:MAX_VALUE_LENGTH]


def _request_payload():
    """Query string, form and JSON body of the current request, sanitized"""
    payload = {}
    if request.args:
        payload['args'] = request.args.to_dict(flat=False)
    if request.form:
        payload['form'] = request.form.to_dict(flat=False)
    body = request.get_json(silent=True) if request.is_json else None
    if body:
        payload['json'] = body
    if not payload:
        return None
    return json.dumps(_sanitize_data(payload), default=str)[:MAX_PAYLOAD_LENGTH]


def _scope_branch_id():
    scope = getattr(g, 'branch_scope', None)
    branch_id = getattr(scope, 'effective_branch_id', None)
    # Only real branch rows can be referenced
    return branch_id if isinstance(branch_id, int) and not isinstance(branch_id, bool) else None


def _request_details():
    """Columns describing the current request; empty outside a request"""
    if not has_request_context():
        return {}

    details = {
        'request_url': request.url[:512],
        'request_method': request.method,
        'ip_address': request.remote_addr,
        'user_agent': str(request.user_agent)[:512] or None,
        'blueprint': request.blueprint,
        'endpoint': request.endpoint,
        'branch_id': _scope_branch_id(),
    }

    try:
        details['request_data'] = _request_payload()
    except Exception as e:
        logger.warning(f"Could not capture request data for error log: {e}")

    try:
        if current_user.is_authenticated:
            details['user_id'] = current_user.id
    except Exception as e:
        logger.warning(f"Could not capture user for error log: {e}")

    return details


def _current_traceback(error):
    if getattr(error, '__traceback__', None) is not None:
        return ''.join(traceback.format_exception(type(error), error, error.__traceback__))
    return None


def log_error(error, status_code=500):
    """
    Log an error to the database.

    Safe to call from error handlers: failures while storing the entry are
    logged and swallowed so the original response still goes out.

    Args:
        error: The exception or error object
        status_code: HTTP status code (default 500)

    Returns:
        ErrorLog or None if it could not be stored
    """
    from bakery_pos.models import db, ErrorLog

    try:
        # The failed request may have left the session in a broken transaction
        db.session.rollback()
        error_log = ErrorLog(
            timestamp=datetime.utcnow(),
            error_type=type(error).__name__,
            error_message=str(error)[:2000],
            traceback=_current_traceback(error),
            status_code=status_code,
            is_resolved=False,
            **_request_details()
        )
        db.session.add(error_log)
        db.session.commit()
        return error_log
    except Exception as e:
        db.session.rollback()
        logger.error(f"Could not store error log entry: {e}")
        return None
