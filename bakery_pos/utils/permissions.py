"""
Role Decorators
"""

from functools import wraps
from flask import jsonify
from flask_login import current_user

from bakery_pos.models import Roles


def role_required(*role_names):
    """
    Decorator to require one of the given roles for a route

    Usage:
        @role_required('admin', 'owner')
        def branch_settings():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401

            if current_user.effective_role not in role_names:
                return jsonify({'error': 'Insufficient permissions'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def manager_required(f):
    """
    Decorator to require admin or owner role
    Shortcut for @role_required('admin', 'owner')
    """
    return role_required(Roles.ADMIN, Roles.OWNER)(f)
