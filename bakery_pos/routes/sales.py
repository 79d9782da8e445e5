"""
Sales Routes
Sales of the current branch: checkout, history and refunds
"""

from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify, current_app, g
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.models import db, Customer, Product, Sale, SaleItem, StockMovement
from bakery_pos.routes.auth import log_activity
from bakery_pos.utils.branch_context import branch_required, filter_by_branch
from bakery_pos.utils.helpers import (
    as_text, generate_sale_number, parse_date, parse_decimal, parse_int
)
from bakery_pos.utils.permissions import manager_required

bp = Blueprint('sales', __name__)


class SaleError(Exception):
    """Invalid checkout request; carries the HTTP status to answer with"""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.status_code = status_code


def _get_branch_sale_or_404(sale_id):
    return filter_by_branch(Sale.query, Sale).filter(Sale.id == sale_id).first_or_404()


def _unique_sale_number():
    for _ in range(10):
        number = generate_sale_number()
        if not Sale.query.filter_by(sale_number=number).first():
            return number
    raise SaleError('Could not allocate a sale number, try again', 503)


def _build_items(raw_items, branch_id):
    """
    Turn cart lines into SaleItem rows priced from the branch catalogue.

    Returns:
        (items, quantities) where quantities maps each product to the units sold

    Raises:
        SaleError: invalid line, unknown product or insufficient stock
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise SaleError('No items in cart')

    items = []
    quantities = {}
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise SaleError('Each item must be an object')
        try:
            product_id = parse_int(raw.get('product_id'), default=None)
            quantity = parse_int(raw.get('quantity'), default=1)
            size = as_text(raw.get('size')) or None
        except ValueError as e:
            raise SaleError(str(e))
        if product_id is None:
            raise SaleError('Each item needs a product')
        if quantity <= 0:
            raise SaleError(f'Invalid quantity for product {product_id}')

        product = filter_by_branch(Product.query, Product, branch_id).filter(
            Product.id == product_id, Product.is_active.is_(True)
        ).first()
        if product is None:
            raise SaleError(f'Product {product_id} not found', 404)

        try:
            unit_price = product.price_for(size)
        except ValueError as e:
            raise SaleError(str(e))

        item = SaleItem(
            product_id=product.id,
            product_name=product.name,
            size=size,
            quantity=quantity,
            unit_price=unit_price,
            cost_price=product.cost_price or 0
        )
        item.calculate_subtotal()
        items.append(item)
        quantities[product] = quantities.get(product, 0) + quantity

    for product, quantity in quantities.items():
        if product.tracks_stock and product.stock < quantity:
            raise SaleError(f'Insufficient stock for {product.name}. Available: {product.stock}')

    return items, quantities


@bp.route('/')
@login_required
@branch_required
def index():
    """List sales of the current branch, newest first"""
    page = request.args.get('page', 1, type=int)
    per_page = current_app.config['ITEMS_PER_PAGE']
    query = filter_by_branch(Sale.query, Sale)

    try:
        from_date = parse_date(request.args.get('from_date'))
        to_date = parse_date(request.args.get('to_date'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if from_date:
        query = query.filter(Sale.sale_date >= datetime.combine(from_date, datetime.min.time()))
    if to_date:
        query = query.filter(Sale.sale_date < datetime.combine(to_date + timedelta(days=1),
                                                               datetime.min.time()))

    status = request.args.get('status')
    if status:
        if status not in Sale.STATUSES:
            return jsonify({'error': f'Invalid status: {status}'}), 400
        query = query.filter_by(status=status)

    customer_id = request.args.get('customer_id', type=int)
    if customer_id:
        query = query.filter_by(customer_id=customer_id)

    sales = query.order_by(Sale.sale_date.desc(), Sale.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False)

    return jsonify({
        'branch_id': g.branch_scope.effective_branch_id,
        'sales': [sale.to_dict(include_items=False) for sale in sales.items],
        'page': sales.page,
        'pages': sales.pages,
        'total': sales.total
    })


@bp.route('/', methods=['POST'])
@login_required
@branch_required
def create():
    """
    Complete a sale at the current branch.

    Prices and costs come from the branch's products, stock is taken out
    and the customer's order count, last order date and loyalty points are
    updated in the same transaction.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'Invalid sale data'}), 400

    branch_id = g.branch_scope.effective_branch_id

    try:
        customer_id = parse_int(data.get('customer_id'), default=None)
        discount = parse_decimal(data.get('discount'))
        payment_method = as_text(data.get('payment_method')) or 'cash'
        notes = as_text(data.get('notes')) or None
    except ValueError as e:
        return jsonify({'error': f'Invalid sale data: {e}'}), 400

    customer = None
    if customer_id:
        customer = filter_by_branch(Customer.query, Customer, branch_id).filter(
            Customer.id == customer_id
        ).first()
        if customer is None:
            return jsonify({'error': 'Customer not found'}), 404

    try:
        items, quantities = _build_items(data.get('items'), branch_id)
        sale = Sale(
            sale_number=_unique_sale_number(),
            branch_id=branch_id,
            user_id=current_user.id,
            customer_id=customer.id if customer else None,
            customer_name=customer.name if customer else None,
            discount=discount,
            payment_method=payment_method,
            status='completed',
            notes=notes,
            items=items
        )
    except SaleError as e:
        return jsonify({'error': str(e)}), e.status_code

    sale.calculate_totals()
    if discount > sale.subtotal:
        return jsonify({'error': 'Discount cannot exceed the sale subtotal'}), 400

    low_stock = []
    try:
        db.session.add(sale)
        for product, quantity in quantities.items():
            if product.tracks_stock:
                product.stock -= quantity
                if product.is_low_stock:
                    low_stock.append(product)
            db.session.add(StockMovement(
                product_id=product.id,
                branch_id=branch_id,
                user_id=current_user.id,
                movement_type='sale',
                quantity=-quantity,
                reference=sale.sale_number,
                notes=f'Sale {sale.sale_number}'
            ))

        if customer is not None:
            sale.points_earned = customer.record_purchase(
                sale.total, current_app.config.get('LOYALTY_POINTS_PER_UNIT', 1))

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error completing sale: {str(e)}'}), 500

    for product in low_stock:
        current_app.logger.warning(f"Low stock: {product.name} ({product.stock} units) "
                                   f"at branch {branch_id}")

    log_activity(current_user.id, 'sale_create', 'sale', sale.id,
                 f'Sale {sale.sale_number} total {sale.total}', branch_id=branch_id)

    response = sale.to_dict()
    if customer is not None:
        response['customer'] = customer.to_dict()
    return jsonify(response), 201


@bp.route('/<int:id>')
@login_required
@branch_required
def view(id):
    sale = _get_branch_sale_or_404(id)
    return jsonify(sale.to_dict())


@bp.route('/<int:id>/refund', methods=['POST'])
@login_required
@manager_required
@branch_required
def refund(id):
    """Refund a sale: restore stock and take back the customer's order and points"""
    sale = _get_branch_sale_or_404(id)
    if sale.status == 'refunded':
        return jsonify({'error': 'Sale already refunded'}), 409

    try:
        for item in sale.items:
            product = db.session.get(Product, item.product_id) if item.product_id else None
            if product is None:
                continue
            if product.tracks_stock:
                product.stock += item.quantity
            db.session.add(StockMovement(
                product_id=product.id,
                branch_id=sale.branch_id,
                user_id=current_user.id,
                movement_type='return',
                quantity=item.quantity,
                reference=sale.sale_number,
                notes=f'Refund for sale {sale.sale_number}'
            ))

        if sale.customer is not None:
            sale.customer.reverse_purchase(sale.points_earned)

        sale.status = 'refunded'
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Error refunding sale: {str(e)}'}), 500

    log_activity(current_user.id, 'sale_refund', 'sale', sale.id,
                 f'Refunded sale {sale.sale_number}', branch_id=sale.branch_id)
    return jsonify(sale.to_dict())
