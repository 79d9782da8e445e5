"""
Employee Management Routes
Administrators and owners manage staff accounts and their branch assignment
"""

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.models import db, User, Branch, Roles
from bakery_pos.routes.auth import log_activity
from bakery_pos.utils.helpers import as_bool, as_text, get_request_data, parse_date, parse_decimal, parse_int
from bakery_pos.utils.permissions import manager_required

bp = Blueprint('employees', __name__)


@bp.route('/')
@login_required
@manager_required
def index():
    """List employees, optionally for one branch"""
    query = User.query
    branch_id = request.args.get('branch_id', type=int)
    if branch_id:
        query = query.filter_by(branch_id=branch_id)
    if not as_bool(request.args.get('include_inactive', False)):
        query = query.filter_by(is_active=True)

    employees = query.order_by(User.name).all()
    return jsonify({'employees': [employee.to_dict() for employee in employees]})


@bp.route('/', methods=['POST'])
@login_required
@manager_required
def create():
    """Create an employee account"""
    data = get_request_data()
    try:
        email = as_text(data.get('email')).lower()
        name = as_text(data.get('name'))
        address = as_text(data.get('address'))
        password = _password_from(data)
        role = as_text(data.get('role')) or Roles.EMPLOYEE
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if not email or not name or not password:
        return jsonify({'error': 'Name, email and password are required'}), 400
    if len(password) < 6:
        return jsonify({'error': 'Password must be at least 6 characters long'}), 400
    if role not in Roles.ALL:
        return jsonify({'error': f'Invalid role: {role}'}), 400
    if role == Roles.OWNER and current_user.effective_role != Roles.OWNER:
        return jsonify({'error': 'Only owners can create owner accounts'}), 403
    if User.query.filter(db.func.lower(User.email) == email).first():
        return jsonify({'error': f'An account for {email} already exists'}), 409

    branch_id, error = _branch_from(data)
    if error:
        return error

    try:
        employee = User(
            email=email,
            name=name,
            role=role,
            branch_id=branch_id,
            hire_date=parse_date(data.get('hire_date')),
            salary=parse_decimal(data.get('salary')),
            payment_day=_payment_day(data.get('payment_day')),
            address=address,
            is_active=True
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    employee.set_password(password)

    try:
        db.session.add(employee)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error creating employee: {str(e)}'}), 500

    log_activity(current_user.id, 'employee_create', 'user', employee.id,
                 f'Created {role} {email}', branch_id=branch_id)
    return jsonify(employee.to_dict()), 201


@bp.route('/<int:id>')
@login_required
@manager_required
def view(id):
    employee = db.get_or_404(User, id)
    return jsonify(employee.to_dict())


@bp.route('/<int:id>', methods=['PUT', 'PATCH'])
@login_required
@manager_required
def update(id):
    """Edit employee details and branch assignment"""
    employee = db.get_or_404(User, id)
    data = get_request_data()

    if employee.role == Roles.OWNER and current_user.effective_role != Roles.OWNER:
        return jsonify({'error': 'Only owners can edit owner accounts'}), 403

    try:
        if 'name' in data:
            name = as_text(data.get('name'))
            if not name:
                return jsonify({'error': 'Name is required'}), 400
            employee.name = name
        if 'role' in data:
            role = as_text(data.get('role'))
            if role not in Roles.ALL:
                return jsonify({'error': f'Invalid role: {role}'}), 400
            if role == Roles.OWNER and current_user.effective_role != Roles.OWNER:
                return jsonify({'error': 'Only owners can grant the owner role'}), 403
            employee.role = role
        if 'branch_id' in data:
            branch_id, error = _branch_from(data)
            if error:
                return error
            employee.branch_id = branch_id
        if 'hire_date' in data:
            employee.hire_date = parse_date(data.get('hire_date'))
        if 'salary' in data:
            employee.salary = parse_decimal(data.get('salary'))
        if 'payment_day' in data:
            employee.payment_day = _payment_day(data.get('payment_day'))
        if 'address' in data:
            employee.address = as_text(data.get('address'))
        if 'is_active' in data:
            employee.is_active = as_bool(data.get('is_active'))
        password = _password_from(data)
        if password:
            if len(password) < 6:
                return jsonify({'error': 'Password must be at least 6 characters long'}), 400
            employee.set_password(password)
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error updating employee: {str(e)}'}), 500

    log_activity(current_user.id, 'employee_update', 'user', employee.id, f'Updated {employee.email}',
                 branch_id=employee.branch_id)
    return jsonify(employee.to_dict())


@bp.route('/<int:id>', methods=['DELETE'])
@login_required
@manager_required
def deactivate(id):
    """Deactivate an employee (soft delete)"""
    employee = db.get_or_404(User, id)

    if employee.id == current_user.id:
        return jsonify({'error': 'You cannot deactivate your own account'}), 400
    if employee.role == Roles.OWNER and current_user.effective_role != Roles.OWNER:
        return jsonify({'error': 'Only owners can deactivate owner accounts'}), 403

    employee.is_active = False
    db.session.commit()

    log_activity(current_user.id, 'employee_deactivate', 'user', employee.id, f'Deactivated {employee.email}',
                 branch_id=employee.branch_id)
    return jsonify(employee.to_dict())


def _branch_from(data):
    """Validated branch id from request data; returns (branch_id, error_response)"""
    raw = data.get('branch_id')
    if raw in (None, ''):
        return None, None
    try:
        branch_id = parse_int(raw)
    except ValueError:
        return None, (jsonify({'error': f'Invalid branch: {raw}'}), 400)
    if db.session.get(Branch, branch_id) is None:
        return None, (jsonify({'error': f'Branch {branch_id} not found'}), 404)
    return branch_id, None


def _password_from(data):
    password = data.get('password') or ''
    if not isinstance(password, str):
        raise ValueError('Password must be text')
    return password


def _payment_day(value):
    if value in (None, ''):
        return None
    day = parse_int(value)
    if not 1 <= day <= 31:
        raise ValueError('Payment day must be between 1 and 31')
    return day
