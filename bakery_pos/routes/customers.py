"""
Customer Management Routes
Handles customer CRUD and loyalty points for the current branch
"""

from flask import Blueprint, request, jsonify, current_app, g
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.models import db, Customer, LoyaltyLevel
from bakery_pos.routes.auth import log_activity
from bakery_pos.utils.branch_context import branch_required, filter_by_branch
from bakery_pos.utils.helpers import as_text, get_request_data, parse_decimal, parse_int
from bakery_pos.utils.permissions import manager_required

bp = Blueprint('customers', __name__)

CUSTOMER_FIELDS = ('name', 'email', 'phone', 'address', 'notes')


def _get_branch_customer_or_404(customer_id):
    """Customers of other branches are reported as missing"""
    return filter_by_branch(Customer.query, Customer).filter(
        Customer.id == customer_id
    ).first_or_404()


def _parse_benefits(data):
    """Benefits from JSON (list or text) or repeated form fields"""
    raw = data.getlist('benefits') if hasattr(data, 'getlist') else data.get('benefits')
    if raw in (None, ''):
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise ValueError('Benefits must be a list of texts')
    return [benefit for benefit in (as_text(value) for value in raw) if benefit]


@bp.route('/')
@login_required
@branch_required
def index():
    """List customers of the current branch, with optional search"""
    page = request.args.get('page', 1, type=int)
    per_page = current_app.config['ITEMS_PER_PAGE']
    search = request.args.get('q', '').strip()

    query = filter_by_branch(Customer.query, Customer)

    if search:
        query = query.filter(
            db.or_(
                Customer.name.ilike(f'%{search}%'),
                Customer.phone.ilike(f'%{search}%'),
                Customer.email.ilike(f'%{search}%')
            )
        )

    customers = query.order_by(Customer.name).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'branch_id': g.branch_scope.effective_branch_id,
        'customers': [customer.to_dict() for customer in customers.items],
        'page': customers.page,
        'pages': customers.pages,
        'total': customers.total
    })


@bp.route('/', methods=['POST'])
@login_required
@branch_required
def create():
    """Add a customer to the current branch"""
    data = get_request_data()
    try:
        fields = {field: as_text(data.get(field)) or None for field in CUSTOMER_FIELDS}
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if not fields['name']:
        return jsonify({'error': 'Name is required'}), 400

    branch_id = g.branch_scope.effective_branch_id
    try:
        customer = Customer(
            branch_id=branch_id,
            loyalty_points=parse_int(data.get('loyalty_points')),
            total_orders=parse_int(data.get('total_orders')),
            **fields
        )
    except ValueError:
        return jsonify({'error': 'Loyalty points and total orders must be whole numbers'}), 400

    if customer.loyalty_points < 0 or customer.total_orders < 0:
        return jsonify({'error': 'Loyalty points and total orders cannot be negative'}), 400

    try:
        db.session.add(customer)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error creating customer: {str(e)}'}), 500

    log_activity(current_user.id, 'customer_create', 'customer', customer.id,
                 f'Created customer {customer.name}', branch_id=branch_id)
    return jsonify(customer.to_dict()), 201


@bp.route('/<int:id>')
@login_required
@branch_required
def view(id):
    customer = _get_branch_customer_or_404(id)
    return jsonify(customer.to_dict())


@bp.route('/<int:id>', methods=['PUT', 'PATCH'])
@login_required
@branch_required
def update(id):
    """Edit customer details"""
    customer = _get_branch_customer_or_404(id)
    data = get_request_data()

    try:
        changes = {field: as_text(data.get(field)) or None for field in CUSTOMER_FIELDS if field in data}
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if 'name' in changes and not changes['name']:
        return jsonify({'error': 'Name is required'}), 400

    for field, value in changes.items():
        setattr(customer, field, value)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error updating customer: {str(e)}'}), 500

    return jsonify(customer.to_dict())


@bp.route('/<int:id>', methods=['DELETE'])
@login_required
@branch_required
def delete(id):
    customer = _get_branch_customer_or_404(id)
    name = customer.name

    try:
        db.session.delete(customer)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error deleting customer: {str(e)}'}), 500

    log_activity(current_user.id, 'customer_delete', 'customer', id, f'Deleted customer {name}',
                 branch_id=g.branch_scope.effective_branch_id)
    return jsonify({'message': f'Customer "{name}" deleted.'})


@bp.route('/<int:id>/points', methods=['POST'])
@login_required
@branch_required
def adjust_points(id):
    """
    Add or redeem loyalty points.

    Body: {"action": "add" | "redeem", "points": int} or
    {"action": "add", "amount": purchase total} to earn points from a purchase.
    """
    customer = _get_branch_customer_or_404(id)
    data = get_request_data()
    action = data.get('action', 'add')

    try:
        if data.get('amount') not in (None, '') and action == 'add':
            amount = parse_decimal(data.get('amount'))
            points = int(amount) * current_app.config.get('LOYALTY_POINTS_PER_UNIT', 1)
        else:
            points = parse_int(data.get('points'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if action == 'add':
        if points <= 0:
            return jsonify({'error': 'Points to add must be positive'}), 400
        customer.add_loyalty_points(points)
    elif action == 'redeem':
        success, result = customer.redeem_points(points)
        if not success:
            return jsonify({'error': result}), 400
    else:
        return jsonify({'error': f'Unknown action: {action}'}), 400

    db.session.commit()
    log_activity(current_user.id, f'loyalty_{action}', 'customer', customer.id,
                 f'{action} {points} points', branch_id=g.branch_scope.effective_branch_id)
    return jsonify(customer.to_dict())


@bp.route('/loyalty-levels')
@login_required
def loyalty_levels():
    """Loyalty levels shared by all branches"""
    levels = LoyaltyLevel.query.order_by(LoyaltyLevel.minimum_points).all()
    return jsonify({'levels': [level.to_dict() for level in levels]})


@bp.route('/loyalty-levels', methods=['POST'])
@login_required
@manager_required
def create_loyalty_level():
    """Add a loyalty level; benefits may be a list or a single text"""
    data = get_request_data()
    try:
        name = as_text(data.get('name'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if not name:
        return jsonify({'error': 'Name is required'}), 400
    if LoyaltyLevel.query.filter_by(name=name).first():
        return jsonify({'error': f'Loyalty level "{name}" already exists'}), 409

    try:
        minimum_points = parse_int(data.get('minimum_points'))
        discount = parse_decimal(data.get('discount_percentage'))
        benefits = _parse_benefits(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if minimum_points < 0 or discount > 100:
        return jsonify({'error': 'Invalid minimum points or discount percentage'}), 400

    level = LoyaltyLevel(
        name=name,
        minimum_points=minimum_points,
        discount_percentage=discount,
        benefits=benefits
    )

    try:
        db.session.add(level)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error creating loyalty level: {str(e)}'}), 500

    log_activity(current_user.id, 'loyalty_level_create', 'loyalty_level', level.id,
                 f'Created loyalty level {level.name}')
    return jsonify(level.to_dict()), 201
