"""
Branch Management Routes

Branch directory listing, the caller's resolved branch scope, branch
switching for administrators and owners, and branch CRUD for the settings
screens.
"""

from flask import Blueprint, jsonify, g, has_request_context
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.errors import BranchDirectoryError
from bakery_pos.models import db, Branch, User
from bakery_pos.routes.auth import log_activity
from bakery_pos.utils.branch_context import (
    branch_directory, branch_scope_changed, get_current_branch_scope, select_branch
)
from bakery_pos.utils.helpers import as_bool, as_text, get_request_data
from bakery_pos.utils.permissions import manager_required

bp = Blueprint('branches', __name__)

BRANCH_FIELDS = ('name', 'address', 'phone', 'email', 'manager')


@branch_scope_changed.connect
def record_branch_switch(sender, scope=None, previous=None, reason=None, **extra):
    """Write an activity log entry when a user switches branch"""
    if reason != 'selected' or not has_request_context() or not current_user.is_authenticated:
        return

    previous_id = previous.effective_branch_id if previous is not None else None
    log_activity(current_user.id, 'branch_switch', 'branch', scope.effective_branch_id,
                 f'Switched branch from {previous_id} to {scope.effective_branch_id}',
                 branch_id=scope.effective_branch_id)


@bp.route('/api/list')
@login_required
def api_list():
    """API endpoint to get the branch directory"""
    try:
        branches = branch_directory().list_branches()
    except BranchDirectoryError as e:
        return jsonify({'error': str(e)}), 503

    return jsonify({'branches': [branch.to_dict() for branch in branches]})


@bp.route('/api/scope')
@login_required
def api_scope():
    """API endpoint to get the branch scope resolved for this request"""
    return jsonify(get_current_branch_scope().to_dict())


@bp.route('/select', methods=['POST'])
@login_required
def select():
    """Switch the active branch (administrators and owners)"""
    data = get_request_data()
    branch_id = data.get('branch_id')
    if branch_id in (None, ''):
        return jsonify({'error': 'branch_id is required'}), 400

    # BranchDirectoryError propagates to the 503 handler
    branch = branch_directory().get_branch(branch_id)
    scope = select_branch(branch)
    return jsonify(scope.to_dict())


@bp.route('/', methods=['POST'])
@login_required
@manager_required
def create():
    """Create a new branch"""
    data = get_request_data()
    try:
        fields = {field: as_text(data.get(field)) for field in BRANCH_FIELDS}
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    name = fields['name']
    if not name:
        return jsonify({'error': 'Name is required'}), 400

    if Branch.query.filter_by(name=name).first():
        return jsonify({'error': f'Branch "{name}" already exists'}), 409

    try:
        branch = Branch(
            is_active=as_bool(data.get('is_active', True)),
            **fields
        )
        db.session.add(branch)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error creating branch: {str(e)}'}), 500

    log_activity(current_user.id, 'branch_create', 'branch', branch.id, f'Created branch {branch.name}')
    return jsonify(branch.to_dict()), 201


@bp.route('/<int:id>')
@login_required
def view(id):
    """View branch details"""
    branch = db.get_or_404(Branch, id)

    if not current_user.can_switch_branch and id != g.branch_scope.effective_branch_id:
        return jsonify({'error': 'You do not have permission to view this branch.'}), 403

    return jsonify(branch.to_dict())


@bp.route('/<int:id>', methods=['PUT', 'PATCH'])
@login_required
@manager_required
def update(id):
    """Edit branch details"""
    branch = db.get_or_404(Branch, id)
    data = get_request_data()

    try:
        changes = {field: as_text(data.get(field)) for field in BRANCH_FIELDS if field in data}
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if 'name' in changes:
        name = changes['name']
        if not name:
            return jsonify({'error': 'Name is required'}), 400
        duplicate = Branch.query.filter(Branch.name == name, Branch.id != id).first()
        if duplicate:
            return jsonify({'error': f'Branch "{name}" already exists'}), 409

    try:
        for field, value in changes.items():
            setattr(branch, field, value)
        if 'is_active' in data:
            branch.is_active = as_bool(data.get('is_active'))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error updating branch: {str(e)}'}), 500

    log_activity(current_user.id, 'branch_update', 'branch', branch.id, f'Updated branch {branch.name}')
    return jsonify(branch.to_dict())


@bp.route('/<int:id>', methods=['DELETE'])
@login_required
@manager_required
def delete(id):
    """Delete a branch and its customers and reservations"""
    branch = db.get_or_404(Branch, id)

    assigned = User.query.filter_by(branch_id=id, is_active=True).count()
    if assigned > 0:
        return jsonify({
            'error': f'Cannot delete branch with {assigned} active employees. Reassign them first.'
        }), 409

    name = branch.name
    try:
        db.session.delete(branch)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error deleting branch: {str(e)}'}), 500

    log_activity(current_user.id, 'branch_delete', 'branch', id, f'Deleted branch {name}')
    return jsonify({'message': f'Branch "{name}" deleted.'})

