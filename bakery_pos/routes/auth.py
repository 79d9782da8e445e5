"""
Authentication Routes
Handles user login, logout, and authentication
"""

from flask import Blueprint, request, jsonify, current_app, g
from flask_login import login_user, logout_user, current_user, login_required
from datetime import datetime
from bakery_pos import limiter
from bakery_pos.models import db, User, ActivityLog
from bakery_pos.utils.branch_context import set_branch_context, clear_branch_selection
from bakery_pos.utils.helpers import as_bool, as_text, get_request_data

bp = Blueprint('auth', __name__)


def _login_rate_limit():
    return current_app.config.get('LOGIN_RATE_LIMIT', '10 per minute')


@bp.route('/login', methods=['POST'])
@limiter.limit(_login_rate_limit)
def login():
    """User login"""
    data = get_request_data()
    password = data.get('password') or ''
    try:
        email = as_text(data.get('email')).lower()
    except ValueError:
        email = ''
    if not isinstance(password, str):
        password = ''
    remember = as_bool(data.get('remember', False))

    user = User.query.filter(db.func.lower(User.email) == email).first() if email else None

    if user is None or not user.check_password(password):
        log_activity(None, 'failed_login', 'user', None, f'Failed login attempt for email: {email}')
        return jsonify({'error': 'Invalid email or password'}), 401

    if not user.is_active:
        return jsonify({'error': 'Your account has been deactivated. Please contact administrator.'}), 403

    # Login successful; a previous user's branch state must not carry over
    clear_branch_selection()
    login_user(user, remember=remember)
    user.last_login = datetime.utcnow()
    db.session.commit()

    log_activity(user.id, 'login', 'user', user.id, 'User logged in')

    scope = set_branch_context()
    return jsonify({
        'user': user.to_dict(),
        'scope': scope.to_dict()
    })


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """User logout; the persisted branch selection is dropped with the session"""
    log_activity(current_user.id, 'logout', 'user', current_user.id, 'User logged out')
    logout_user()
    clear_branch_selection()
    return jsonify({'message': 'You have been logged out successfully.'})


@bp.route('/me')
@login_required
def me():
    """Current user profile and branch scope"""
    return jsonify({
        'user': current_user.to_dict(),
        'scope': g.branch_scope.to_dict()
    })


def log_activity(user_id, action, entity_type, entity_id, details, branch_id=None):
    """Helper function to log user activities"""
    try:
        log = ActivityLog(
            user_id=user_id,
            branch_id=branch_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            ip_address=request.remote_addr if request else None
        )
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        # Don't fail the request if logging fails
        db.session.rollback()
        current_app.logger.error(f"Error logging activity: {e}")
