"""
Database Models
SQLAlchemy ORM models for the bakery back office
"""

from datetime import datetime
from decimal import Decimal
from flask import current_app, has_app_context
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


class Roles:
    """Role name constants"""
    EMPLOYEE = 'employee'
    ADMIN = 'admin'
    OWNER = 'owner'

    ALL = (EMPLOYEE, ADMIN, OWNER)


class Branch(db.Model):
    """A physical store location; every branch-scoped record points at one"""
    __tablename__ = 'branches'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False, index=True)
    address = db.Column(db.Text)
    phone = db.Column(db.String(32))
    email = db.Column(db.String(120))
    manager = db.Column(db.String(128))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    employees = db.relationship('User', backref='branch', lazy='dynamic')
    customers = db.relationship('Customer', backref='branch', lazy='dynamic',
                                cascade='all, delete-orphan')
    reservations = db.relationship('Reservation', backref='branch', lazy='dynamic',
                                   cascade='all, delete-orphan')
    products = db.relationship('Product', backref='branch', lazy='dynamic',
                               cascade='all, delete-orphan')
    sales = db.relationship('Sale', backref='branch', lazy='dynamic',
                            cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'phone': self.phone,
            'email': self.email,
            'manager': self.manager,
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f'<Branch {self.name}>'


class User(UserMixin, db.Model):
    """Employee account used for authentication and branch assignment"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(32), nullable=False, default=Roles.EMPLOYEE)
    # Roles: employee, admin, owner
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), index=True)

    # HR details kept by the settings screens
    hire_date = db.Column(db.Date)
    salary = db.Column(db.Numeric(10, 2), default=0.00)
    payment_day = db.Column(db.Integer)
    address = db.Column(db.Text)

    is_active = db.Column(db.Boolean, default=True)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password"""
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        """Admins are flagged by role or by an e-mail on the company domain"""
        if self.role == Roles.ADMIN:
            return True
        domain = current_app.config.get('ADMIN_EMAIL_DOMAIN') if has_app_context() else None
        return bool(domain and self.email and self.email.lower().endswith(domain.lower()))

    @property
    def is_owner(self):
        return self.role == Roles.OWNER

    @property
    def effective_role(self):
        """Role as seen by the branch resolver"""
        if self.is_owner:
            return Roles.OWNER
        if self.is_admin:
            return Roles.ADMIN
        return Roles.EMPLOYEE

    @property
    def can_switch_branch(self):
        return self.effective_role in (Roles.ADMIN, Roles.OWNER)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'effective_role': self.effective_role,
            'branch_id': self.branch_id,
            'hire_date': self.hire_date.isoformat() if self.hire_date else None,
            'salary': float(self.salary or 0),
            'payment_day': self.payment_day,
            'address': self.address,
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f'<User {self.email}>'


class LoyaltyLevel(db.Model):
    """Loyalty tier; a customer belongs to the highest level whose minimum they meet"""
    __tablename__ = 'loyalty_levels'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    minimum_points = db.Column(db.Integer, nullable=False, default=0)
    discount_percentage = db.Column(db.Numeric(5, 2), default=0.00)
    benefits = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @staticmethod
    def for_points(points):
        """Get the level a customer with the given points belongs to"""
        return LoyaltyLevel.query.filter(
            LoyaltyLevel.minimum_points <= (points or 0)
        ).order_by(LoyaltyLevel.minimum_points.desc()).first()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'minimum_points': self.minimum_points,
            'discount_percentage': float(self.discount_percentage or 0),
            'benefits': self.benefits or [],
        }

    def __repr__(self):
        return f'<LoyaltyLevel {self.name}>'


class Customer(db.Model):
    """Customer of a branch"""
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(32), index=True)
    address = db.Column(db.Text)
    notes = db.Column(db.Text)

    loyalty_points = db.Column(db.Integer, default=0)
    total_orders = db.Column(db.Integer, default=0)
    last_order_date = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def loyalty_level(self):
        return LoyaltyLevel.for_points(self.loyalty_points)

    def add_loyalty_points(self, points):
        """Add points and return the new balance"""
        if points < 0:
            raise ValueError('Points to add must be positive')
        self.loyalty_points = (self.loyalty_points or 0) + points
        return self.loyalty_points

    def record_purchase(self, total, points_per_unit=1):
        """
        Register a completed sale: one more order, last order date and
        points for every whole currency unit spent.

        Returns:
            int: points earned
        """
        points = int(total) * points_per_unit
        self.total_orders = (self.total_orders or 0) + 1
        self.last_order_date = datetime.utcnow()
        if points > 0:
            self.add_loyalty_points(points)
        return points

    def reverse_purchase(self, points):
        """Undo record_purchase for a refunded sale; counters never go below zero"""
        self.total_orders = max((self.total_orders or 0) - 1, 0)
        self.loyalty_points = max((self.loyalty_points or 0) - (points or 0), 0)

    def redeem_points(self, points_to_redeem):
        """Redeem loyalty points; the balance never goes below zero"""
        if points_to_redeem <= 0:
            return False, 'Points to redeem must be positive'
        if points_to_redeem > (self.loyalty_points or 0):
            return False, 'Insufficient loyalty points'
        self.loyalty_points -= points_to_redeem
        return True, self.loyalty_points

    def to_dict(self):
        level = self.loyalty_level
        return {
            'id': self.id,
            'branch_id': self.branch_id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'notes': self.notes,
            'loyalty_points': self.loyalty_points or 0,
            'loyalty_level': level.name if level else None,
            'total_orders': self.total_orders or 0,
            'last_order_date': self.last_order_date.isoformat() if self.last_order_date else None,
        }

    def __repr__(self):
        return f'<Customer {self.name}>'


class Reservation(db.Model):
    """Order reserved by a customer for later delivery"""
    __tablename__ = 'reservations'

    STATUSES = ('pending', 'completed', 'cancelled')

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'))

    # Contact data is copied so walk-in reservations need no customer record
    customer_name = db.Column(db.String(128), nullable=False)
    customer_phone = db.Column(db.String(32))
    customer_email = db.Column(db.String(120))
    customer_address = db.Column(db.Text)

    delivery_date = db.Column(db.DateTime, nullable=False)
    notes = db.Column(db.Text)
    status = db.Column(db.String(16), nullable=False, default='pending', index=True)

    items = db.Column(db.JSON, default=list)  # [{product_name, quantity, price, size}]
    total = db.Column(db.Numeric(10, 2), nullable=False, default=0.00)
    payment_method = db.Column(db.String(32))
    advance_amount = db.Column(db.Numeric(10, 2), default=0.00)
    advance_payment_method = db.Column(db.String(32))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = db.relationship('Customer')

    @property
    def has_advance_payment(self):
        return bool(self.advance_amount and self.advance_amount > 0)

    @property
    def remaining_amount(self):
        remaining = (self.total or 0) - (self.advance_amount or 0)
        return remaining if remaining > 0 else 0

    def calculate_total(self):
        """Recalculate total from items"""
        self.total = sum(
            (Decimal(str(item.get('price', 0))) * int(item.get('quantity', 0))
             for item in (self.items or [])),
            Decimal('0.00')
        )
        return self.total

    def to_dict(self):
        return {
            'id': self.id,
            'branch_id': self.branch_id,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'customer_email': self.customer_email,
            'customer_address': self.customer_address,
            'delivery_date': self.delivery_date.isoformat() if self.delivery_date else None,
            'notes': self.notes,
            'status': self.status,
            'items': self.items or [],
            'total': float(self.total or 0),
            'payment_method': self.payment_method,
            'has_advance_payment': self.has_advance_payment,
            'advance_amount': float(self.advance_amount or 0),
            'advance_payment_method': self.advance_payment_method,
            'remaining_amount': float(self.remaining_amount),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Reservation {self.id} - {self.status}>'


class Product(db.Model):
    """Product sold at one branch; stock is None for items made to order"""
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    description = db.Column(db.Text)
    category = db.Column(db.String(64), index=True)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0.00)
    cost_price = db.Column(db.Numeric(10, 2), default=0.00)
    stock = db.Column(db.Integer)
    sizes = db.Column(db.JSON, default=list)  # [{name, price}]

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    movements = db.relationship('StockMovement', backref='product', lazy='dynamic',
                                cascade='all, delete-orphan')

    @property
    def tracks_stock(self):
        return self.stock is not None

    @property
    def is_low_stock(self):
        if not self.tracks_stock:
            return False
        threshold = current_app.config.get('LOW_STOCK_THRESHOLD', 10) if has_app_context() else 10
        return self.stock < threshold

    def price_for(self, size=None):
        """Unit price, optionally for a named size"""
        if not size:
            return Decimal(str(self.price or 0))
        for option in self.sizes or []:
            if option.get('name') == size:
                return Decimal(str(option.get('price', 0)))
        raise ValueError(f'Size "{size}" not available for {self.name}')

    def to_dict(self):
        return {
            'id': self.id,
            'branch_id': self.branch_id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'price': float(self.price or 0),
            'cost_price': float(self.cost_price or 0),
            'stock': self.stock,
            'sizes': self.sizes or [],
            'is_low_stock': self.is_low_stock,
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f'<Product {self.name}>'


class StockMovement(db.Model):
    """Track stock movements (sale, return, adjustment)"""
    __tablename__ = 'stock_movements'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    movement_type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)  # Positive for in, negative for out
    reference = db.Column(db.String(128))
    notes = db.Column(db.Text)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'branch_id': self.branch_id,
            'user_id': self.user_id,
            'movement_type': self.movement_type,
            'quantity': self.quantity,
            'reference': self.reference,
            'notes': self.notes,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f'<StockMovement {self.movement_type} {self.quantity}>'


class Sale(db.Model):
    """Sales transactions of a branch"""
    __tablename__ = 'sales'

    STATUSES = ('completed', 'refunded')

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(64), unique=True, nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'))
    customer_name = db.Column(db.String(128))

    # Amounts
    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0.00)
    discount = db.Column(db.Numeric(10, 2), default=0.00)
    total = db.Column(db.Numeric(10, 2), nullable=False, default=0.00)
    total_cost = db.Column(db.Numeric(10, 2), default=0.00)

    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='completed', index=True)
    points_earned = db.Column(db.Integer, default=0)
    notes = db.Column(db.Text)

    sale_date = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship('SaleItem', backref='sale', lazy='select', cascade='all, delete-orphan')
    customer = db.relationship('Customer')

    @property
    def profit(self):
        return (self.total or 0) - (self.total_cost or 0)

    def calculate_totals(self):
        """Recalculate subtotal, cost and total from the items"""
        self.subtotal = sum((item.subtotal for item in self.items), Decimal('0.00'))
        self.total_cost = sum(((item.cost_price or 0) * item.quantity for item in self.items),
                              Decimal('0.00'))
        total = self.subtotal - Decimal(str(self.discount or 0))
        self.total = total if total > 0 else Decimal('0.00')
        return self.total

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'sale_number': self.sale_number,
            'branch_id': self.branch_id,
            'user_id': self.user_id,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'subtotal': float(self.subtotal or 0),
            'discount': float(self.discount or 0),
            'total': float(self.total or 0),
            'total_cost': float(self.total_cost or 0),
            'profit': float(self.profit),
            'payment_method': self.payment_method,
            'status': self.status,
            'points_earned': self.points_earned or 0,
            'notes': self.notes,
            'sale_date': self.sale_date.isoformat() if self.sale_date else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f'<Sale {self.sale_number}>'


class SaleItem(db.Model):
    """Individual items in a sale; name and prices are copied at sale time"""
    __tablename__ = 'sale_items'

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('sales.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'))

    product_name = db.Column(db.String(128), nullable=False)
    size = db.Column(db.String(64))
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    cost_price = db.Column(db.Numeric(10, 2), default=0.00)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False)

    def calculate_subtotal(self):
        self.subtotal = Decimal(str(self.unit_price)) * self.quantity
        return self.subtotal

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'size': self.size,
            'quantity': self.quantity,
            'unit_price': float(self.unit_price or 0),
            'cost_price': float(self.cost_price or 0),
            'subtotal': float(self.subtotal or 0),
        }

    def __repr__(self):
        return f'<SaleItem {self.product_name} x{self.quantity}>'


class ActivityLog(db.Model):
    """Log of all critical activities"""
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    branch_id = db.Column(db.Integer)
    action = db.Column(db.String(128), nullable=False)
    entity_type = db.Column(db.String(64))  # branch, customer, user, etc.
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(64))

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    # Relationship
    user = db.relationship('User')

    def __repr__(self):
        return f'<ActivityLog {self.action}>'


class ErrorLog(db.Model):
    """Unhandled application errors captured with request context"""
    __tablename__ = 'error_logs'

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    error_type = db.Column(db.String(128))
    error_message = db.Column(db.Text)
    traceback = db.Column(db.Text)
    request_url = db.Column(db.String(512))
    request_method = db.Column(db.String(16))
    request_data = db.Column(db.Text)
    user_id = db.Column(db.Integer)
    branch_id = db.Column(db.Integer)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(512))
    status_code = db.Column(db.Integer, default=500)
    blueprint = db.Column(db.String(64))
    endpoint = db.Column(db.String(128))
    is_resolved = db.Column(db.Boolean, default=False)

    def __repr__(self):
        return f'<ErrorLog {self.error_type} {self.status_code}>'
