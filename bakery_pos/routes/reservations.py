"""
Reservation Routes
Orders reserved for later delivery at the current branch
"""

from flask import Blueprint, request, jsonify, g
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.models import db, Reservation, Customer
from bakery_pos.routes.auth import log_activity
from bakery_pos.utils.branch_context import branch_required, filter_by_branch
from bakery_pos.utils.helpers import as_text, get_request_data, parse_datetime, parse_decimal, parse_int

bp = Blueprint('reservations', __name__)

# Allowed status transitions
TRANSITIONS = {
    'pending': ('completed', 'cancelled'),
    'completed': (),
    'cancelled': (),
}

CONTACT_FIELDS = ('customer_name', 'customer_phone', 'customer_email', 'customer_address')


def _get_branch_reservation_or_404(reservation_id):
    return filter_by_branch(Reservation.query, Reservation).filter(
        Reservation.id == reservation_id
    ).first_or_404()


def _parse_items(raw_items):
    """Validate reservation items; raises ValueError on bad input"""
    if raw_items in (None, ''):
        return []
    if not isinstance(raw_items, list):
        raise ValueError('Items must be a list')

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValueError('Each item must be an object')
        name = as_text(raw.get('product_name'))
        if not name:
            raise ValueError('Each item needs a product name')
        quantity = parse_int(raw.get('quantity'))
        if quantity <= 0:
            raise ValueError(f'Invalid quantity for {name}')
        price = parse_decimal(raw.get('price'))
        item = {'product_name': name, 'quantity': quantity, 'price': float(price)}
        size = as_text(raw.get('size'))
        if size:
            item['size'] = size
        items.append(item)
    return items


@bp.route('/')
@login_required
@branch_required
def index():
    """List reservations of the current branch, newest first"""
    query = filter_by_branch(Reservation.query, Reservation)

    status = request.args.get('status')
    if status:
        if status not in Reservation.STATUSES:
            return jsonify({'error': f'Invalid status: {status}'}), 400
        query = query.filter_by(status=status)

    reservations = query.order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()
    return jsonify({
        'branch_id': g.branch_scope.effective_branch_id,
        'reservations': [reservation.to_dict() for reservation in reservations]
    })


@bp.route('/', methods=['POST'])
@login_required
@branch_required
def create():
    """Create a reservation at the current branch"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'Invalid reservation data'}), 400

    branch_id = g.branch_scope.effective_branch_id

    try:
        customer_id = parse_int(data.get('customer_id'), default=None)
        contact = {field: as_text(data.get(field)) or None for field in CONTACT_FIELDS}
        notes = as_text(data.get('notes')) or None
        payment_method = as_text(data.get('payment_method')) or None
        advance_payment_method = as_text(data.get('advance_payment_method')) or None
    except ValueError as e:
        return jsonify({'error': f'Invalid reservation data: {e}'}), 400

    customer = None
    if customer_id:
        customer = filter_by_branch(Customer.query, Customer, branch_id).filter(
            Customer.id == customer_id
        ).first()
        if customer is None:
            return jsonify({'error': 'Customer not found'}), 404

    customer_name = contact['customer_name'] or (customer.name if customer else '')
    if not customer_name:
        return jsonify({'error': 'Customer name is required'}), 400

    try:
        delivery_date = parse_datetime(data.get('delivery_date'))
        items = _parse_items(data.get('items'))
        advance_amount = parse_decimal(data.get('advance_amount'))
    except ValueError as e:
        return jsonify({'error': f'Invalid reservation data: {e}'}), 400

    if delivery_date is None:
        return jsonify({'error': 'Delivery date is required'}), 400

    reservation = Reservation(
        branch_id=branch_id,
        customer_id=customer.id if customer else None,
        customer_name=customer_name,
        customer_phone=contact['customer_phone'] or (customer.phone if customer else None),
        customer_email=contact['customer_email'] or (customer.email if customer else None),
        customer_address=contact['customer_address'] or (customer.address if customer else None),
        delivery_date=delivery_date,
        notes=notes,
        status='pending',
        items=items,
        payment_method=payment_method,
        advance_amount=advance_amount,
        advance_payment_method=advance_payment_method if advance_amount > 0 else None
    )

    if items:
        reservation.calculate_total()
    else:
        try:
            reservation.total = parse_decimal(data.get('total'))
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

    if advance_amount > reservation.total:
        return jsonify({'error': 'Advance payment cannot exceed the reservation total'}), 400

    try:
        db.session.add(reservation)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error creating reservation: {str(e)}'}), 500

    log_activity(current_user.id, 'reservation_create', 'reservation', reservation.id,
                 f'Reservation for {customer_name}', branch_id=branch_id)
    return jsonify(reservation.to_dict()), 201


@bp.route('/<int:id>')
@login_required
@branch_required
def view(id):
    reservation = _get_branch_reservation_or_404(id)
    return jsonify(reservation.to_dict())


@bp.route('/<int:id>/status', methods=['POST'])
@login_required
@branch_required
def update_status(id):
    """Complete or cancel a pending reservation"""
    reservation = _get_branch_reservation_or_404(id)
    data = get_request_data()
    status = data.get('status')

    if status not in Reservation.STATUSES:
        return jsonify({'error': f'Invalid status: {status}'}), 400
    if status not in TRANSITIONS[reservation.status]:
        return jsonify({
            'error': f'Cannot change reservation from {reservation.status} to {status}'
        }), 409

    reservation.status = status
    db.session.commit()

    log_activity(current_user.id, f'reservation_{status}', 'reservation', reservation.id,
                 f'Reservation {reservation.id} {status}', branch_id=reservation.branch_id)
    return jsonify(reservation.to_dict())


@bp.route('/<int:id>', methods=['DELETE'])
@login_required
@branch_required
def delete(id):
    reservation = _get_branch_reservation_or_404(id)

    try:
        db.session.delete(reservation)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error deleting reservation: {str(e)}'}), 500

    return jsonify({'message': f'Reservation {id} deleted.'})
