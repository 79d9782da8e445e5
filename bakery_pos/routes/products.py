"""
Product Routes
Products and stock of the current branch
"""

from flask import Blueprint, request, jsonify, current_app, g
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.models import db, Product, StockMovement
from bakery_pos.routes.auth import log_activity
from bakery_pos.utils.branch_context import branch_required, filter_by_branch
from bakery_pos.utils.helpers import as_bool, as_text, get_request_data, parse_decimal, parse_int
from bakery_pos.utils.permissions import manager_required

bp = Blueprint('products', __name__)

TEXT_FIELDS = ('name', 'description', 'category')
ADJUSTMENT_TYPES = ('add', 'remove', 'set')


def _get_branch_product_or_404(product_id):
    """Products of other branches are reported as missing"""
    return filter_by_branch(Product.query, Product).filter(
        Product.id == product_id
    ).first_or_404()


def _parse_sizes(raw_sizes):
    """Validate size options; raises ValueError on bad input"""
    if raw_sizes in (None, ''):
        return []
    if not isinstance(raw_sizes, list):
        raise ValueError('Sizes must be a list')

    sizes = []
    for raw in raw_sizes:
        if not isinstance(raw, dict):
            raise ValueError('Each size must be an object')
        name = as_text(raw.get('name'))
        if not name:
            raise ValueError('Each size needs a name')
        if any(size['name'] == name for size in sizes):
            raise ValueError(f'Duplicate size: {name}')
        sizes.append({'name': name, 'price': float(parse_decimal(raw.get('price')))})
    return sizes


def _parse_stock(value):
    """Stock count or None for products that do not track stock"""
    stock = parse_int(value, default=None)
    if stock is not None and stock < 0:
        raise ValueError('Stock cannot be negative')
    return stock


def _product_changes(data, partial=False):
    """
    Validated product columns from request data.
    With partial=True only the keys present in the request are returned.
    """
    changes = {}
    for field in TEXT_FIELDS:
        if field in data or not partial:
            changes[field] = as_text(data.get(field)) or None
    if 'price' in data or not partial:
        changes['price'] = parse_decimal(data.get('price'))
    if 'cost_price' in data or not partial:
        changes['cost_price'] = parse_decimal(data.get('cost_price'))
    if 'stock' in data or not partial:
        changes['stock'] = _parse_stock(data.get('stock'))
    if 'sizes' in data or not partial:
        changes['sizes'] = _parse_sizes(data.get('sizes'))
    if 'is_active' in data:
        changes['is_active'] = as_bool(data.get('is_active'))
    return changes


@bp.route('/')
@login_required
@branch_required
def index():
    """List products of the current branch"""
    query = filter_by_branch(Product.query, Product)

    if not as_bool(request.args.get('include_inactive', False)):
        query = query.filter(Product.is_active.is_(True))

    category = request.args.get('category', '').strip()
    if category:
        query = query.filter(Product.category == category)

    search = request.args.get('q', '').strip()
    if search:
        query = query.filter(Product.name.ilike(f'%{search}%'))

    if as_bool(request.args.get('low_stock', False)):
        threshold = current_app.config.get('LOW_STOCK_THRESHOLD', 10)
        query = query.filter(Product.stock.isnot(None), Product.stock < threshold)

    products = query.order_by(Product.name).all()
    return jsonify({
        'branch_id': g.branch_scope.effective_branch_id,
        'products': [product.to_dict() for product in products]
    })


@bp.route('/categories')
@login_required
@branch_required
def categories():
    """Categories in use at the current branch"""
    rows = filter_by_branch(db.session.query(Product.category), Product).filter(
        Product.category.isnot(None), Product.is_active.is_(True)
    ).distinct().order_by(Product.category).all()
    return jsonify({'categories': [row[0] for row in rows]})


@bp.route('/', methods=['POST'])
@login_required
@manager_required
@branch_required
def create():
    """Add a product to the current branch"""
    data = get_request_data()
    try:
        fields = _product_changes(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if not fields['name']:
        return jsonify({'error': 'Name is required'}), 400

    branch_id = g.branch_scope.effective_branch_id
    product = Product(branch_id=branch_id, **fields)

    try:
        db.session.add(product)
        db.session.flush()
        if product.stock:
            db.session.add(StockMovement(
                product_id=product.id,
                branch_id=branch_id,
                user_id=current_user.id,
                movement_type='adjustment',
                quantity=product.stock,
                reference='INITIAL_STOCK',
                notes='Initial stock'
            ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error creating product: {str(e)}'}), 500

    log_activity(current_user.id, 'product_create', 'product', product.id,
                 f'Created product {product.name}', branch_id=branch_id)
    return jsonify(product.to_dict()), 201


@bp.route('/<int:id>')
@login_required
@branch_required
def view(id):
    product = _get_branch_product_or_404(id)
    return jsonify(product.to_dict())


@bp.route('/<int:id>', methods=['PUT', 'PATCH'])
@login_required
@manager_required
@branch_required
def update(id):
    """
    Edit product details.
    Stock changes go through the stock endpoint so they leave a movement.
    """
    product = _get_branch_product_or_404(id)
    data = get_request_data()
    if 'stock' in data:
        return jsonify({'error': 'Use the stock endpoint to change stock'}), 400

    try:
        changes = _product_changes(data, partial=True)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if 'name' in changes and not changes['name']:
        return jsonify({'error': 'Name is required'}), 400

    try:
        for field, value in changes.items():
            setattr(product, field, value)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error updating product: {str(e)}'}), 500

    return jsonify(product.to_dict())


@bp.route('/<int:id>', methods=['DELETE'])
@login_required
@manager_required
@branch_required
def delete(id):
    """Deactivate a product (soft delete keeps sale history intact)"""
    product = _get_branch_product_or_404(id)
    product.is_active = False
    db.session.commit()

    log_activity(current_user.id, 'product_delete', 'product', product.id,
                 f'Deactivated product {product.name}', branch_id=product.branch_id)
    return jsonify({'message': f'Product "{product.name}" deactivated.'})


@bp.route('/<int:id>/stock', methods=['POST'])
@login_required
@manager_required
@branch_required
def adjust_stock(id):
    """
    Adjust product stock at the current branch.

    Body: {"adjustment_type": "add" | "remove" | "set", "quantity": int, "reason": str}
    """
    product = _get_branch_product_or_404(id)
    data = get_request_data()

    adjustment_type = data.get('adjustment_type', 'add')
    if adjustment_type not in ADJUSTMENT_TYPES:
        return jsonify({'error': f'Invalid adjustment type: {adjustment_type}'}), 400

    try:
        quantity = parse_int(data.get('quantity'))
        reason = as_text(data.get('reason')) or 'Manual adjustment'
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if quantity < 0:
        return jsonify({'error': 'Quantity cannot be negative'}), 400

    old_quantity = product.stock or 0
    if adjustment_type == 'add':
        adjustment = quantity
    elif adjustment_type == 'remove':
        adjustment = -quantity
    else:
        adjustment = quantity - old_quantity

    new_quantity = old_quantity + adjustment
    if new_quantity < 0:
        return jsonify({'error': 'Stock cannot be negative'}), 400

    try:
        product.stock = new_quantity
        db.session.add(StockMovement(
            product_id=product.id,
            branch_id=product.branch_id,
            user_id=current_user.id,
            movement_type='adjustment',
            quantity=adjustment,
            reference='STOCK_ADJUSTMENT',
            notes=f'{reason} (Old: {old_quantity}, New: {new_quantity})'
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error adjusting stock: {str(e)}'}), 500

    if product.is_low_stock:
        current_app.logger.warning(f"Low stock: {product.name} ({new_quantity} units) "
                                   f"at branch {product.branch_id}")

    return jsonify(product.to_dict())


@bp.route('/<int:id>/movements')
@login_required
@branch_required
def movements(id):
    """Stock movement history of a product, newest first"""
    product = _get_branch_product_or_404(id)
    history = product.movements.order_by(StockMovement.timestamp.desc(), StockMovement.id.desc()).all()
    return jsonify({
        'product_id': product.id,
        'movements': [movement.to_dict() for movement in history]
    })
