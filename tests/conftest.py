"""
Shared pytest fixtures and configuration for all tests.

Provides common fixtures for Flask application testing, database setup,
authentication, and test data initialization.
"""

import pytest
import sys
import os
from datetime import date
from decimal import Decimal

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bakery_pos import create_app
from bakery_pos.models import db


@pytest.fixture(scope='session')
def app_factory():
    """Factory fixture for creating test app instances."""
    def _create_app(config='testing'):
        app = create_app(config)
        app.config['WTF_CSRF_ENABLED'] = False
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
        app.config['ITEMS_PER_PAGE'] = 20
        app.config['RATELIMIT_ENABLED'] = False
        return app
    return _create_app


@pytest.fixture(scope='function')
def fresh_app(app_factory):
    """
    Create a fresh application for each test with clean database.

    No application context stays pushed during the test, so every
    test client request gets its own context (and its own ``g``).
    """
    app = app_factory()

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(fresh_app):
    """Create a test client for each test."""
    return fresh_app.test_client()


@pytest.fixture(scope='function')
def init_database(fresh_app):
    """
    Initialize database with test data.

    Creates:
    - Branches (Centro, Shopping, Bairro) in that order
    - Users (owner, admin by e-mail domain, employee, unassigned, inactive)
    - Customers in Centro and Shopping
    - Loyalty levels
    - A pending reservation in Shopping
    - Products in Centro (one inactive, one made to order) and Shopping

    Returns:
        dict of ids keyed by name
    """
    from bakery_pos.models import User, Branch, Customer, LoyaltyLevel, Product, Reservation, Roles
    from datetime import datetime

    with fresh_app.app_context():
        centro = Branch(name='Centro', address='Rua Central, 10', phone='1111-1111', is_active=True)
        shopping = Branch(name='Shopping', address='Av. Shopping, 200', phone='2222-2222', is_active=True)
        bairro = Branch(name='Bairro', address='Rua do Bairro, 3', is_active=True)
        db.session.add_all([centro, shopping, bairro])
        db.session.flush()

        owner = User(email='owner@test.com', name='Owner User', role=Roles.OWNER,
                     branch_id=centro.id, is_active=True)
        owner.set_password('owner123')

        # Admin by company e-mail domain, stored role is a plain employee
        admin = User(email='gerente@boleriee.com', name='Admin User', role=Roles.EMPLOYEE,
                     is_active=True)
        admin.set_password('admin123')

        employee = User(email='employee@test.com', name='Employee User', role=Roles.EMPLOYEE,
                        branch_id=shopping.id, hire_date=date(2023, 3, 1),
                        salary=Decimal('2500.00'), payment_day=5, is_active=True)
        employee.set_password('employee123')

        unassigned = User(email='unassigned@test.com', name='Unassigned User', role=Roles.EMPLOYEE,
                          is_active=True)
        unassigned.set_password('unassigned123')

        inactive = User(email='inactive@test.com', name='Inactive User', role=Roles.EMPLOYEE,
                        branch_id=centro.id, is_active=False)
        inactive.set_password('inactive123')

        db.session.add_all([owner, admin, employee, unassigned, inactive])

        db.session.add_all([
            LoyaltyLevel(name='Bronze', minimum_points=0, discount_percentage=Decimal('0')),
            LoyaltyLevel(name='Prata', minimum_points=100, discount_percentage=Decimal('5')),
            LoyaltyLevel(name='Ouro', minimum_points=500, discount_percentage=Decimal('10'),
                         benefits=['Bolo de aniversario']),
        ])

        maria = Customer(branch_id=centro.id, name='Maria Silva', phone='9999-0001',
                         email='maria@test.com', loyalty_points=150)
        joao = Customer(branch_id=centro.id, name='Joao Souza', phone='9999-0002', loyalty_points=20)
        ana = Customer(branch_id=shopping.id, name='Ana Lima', phone='9999-0003',
                       email='ana@test.com', loyalty_points=600)
        db.session.add_all([maria, joao, ana])
        db.session.flush()

        reservation = Reservation(
            branch_id=shopping.id,
            customer_id=ana.id,
            customer_name='Ana Lima',
            customer_phone='9999-0003',
            delivery_date=datetime(2026, 12, 24, 10, 0),
            status='pending',
            items=[{'product_name': 'Bolo de Chocolate', 'quantity': 1, 'price': 80.0}],
            total=Decimal('80.00'),
            advance_amount=Decimal('30.00'),
            advance_payment_method='pix'
        )
        db.session.add(reservation)

        bolo = Product(branch_id=centro.id, name='Bolo de Chocolate', category='Bolos',
                       price=Decimal('50.00'), cost_price=Decimal('20.00'), stock=12,
                       sizes=[{'name': 'P', 'price': 30.0}, {'name': 'G', 'price': 70.0}])
        brigadeiro = Product(branch_id=centro.id, name='Brigadeiro', category='Doces',
                             price=Decimal('2.50'), cost_price=Decimal('1.00'), stock=100)
        encomenda = Product(branch_id=centro.id, name='Bolo Personalizado', category='Bolos',
                            price=Decimal('120.00'), cost_price=Decimal('60.00'), stock=None)
        sonho = Product(branch_id=centro.id, name='Sonho', category='Doces',
                        price=Decimal('4.00'), stock=5, is_active=False)
        torta = Product(branch_id=shopping.id, name='Torta de Limao', category='Tortas',
                        price=Decimal('45.00'), cost_price=Decimal('15.00'), stock=3)
        db.session.add_all([bolo, brigadeiro, encomenda, sonho, torta])
        db.session.commit()

        return {
            'centro': centro.id,
            'shopping': shopping.id,
            'bairro': bairro.id,
            'owner': owner.id,
            'admin': admin.id,
            'employee': employee.id,
            'unassigned': unassigned.id,
            'inactive': inactive.id,
            'maria': maria.id,
            'joao': joao.id,
            'ana': ana.id,
            'reservation': reservation.id,
            'bolo': bolo.id,
            'brigadeiro': brigadeiro.id,
            'encomenda': encomenda.id,
            'sonho': sonho.id,
            'torta': torta.id,
        }


def login(client, email, password):
    """Helper function to login a client."""
    return client.post('/auth/login', json={'email': email, 'password': password})


def logout_client(client):
    """Helper function to logout a client."""
    return client.post('/auth/logout')


@pytest.fixture
def auth_owner(client, init_database):
    """Login as owner; owners can switch between all branches."""
    login(client, 'owner@test.com', 'owner123')
    return client


@pytest.fixture
def auth_admin(client, init_database):
    """Login as admin (company e-mail domain) with no assigned branch."""
    login(client, 'gerente@boleriee.com', 'admin123')
    return client


@pytest.fixture
def auth_employee(client, init_database):
    """Login as a regular employee assigned to the Shopping branch."""
    login(client, 'employee@test.com', 'employee123')
    return client


@pytest.fixture
def auth_unassigned(client, init_database):
    """Login as a regular employee without a branch."""
    login(client, 'unassigned@test.com', 'unassigned123')
    return client


# Pytest configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "api: marks tests as API endpoint tests"
    )
    config.addinivalue_line(
        "markers", "auth: marks tests as authentication tests"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically add markers based on test class/function names."""
    for item in items:
        if 'api' in item.nodeid.lower():
            item.add_marker(pytest.mark.api)

        if 'auth' in item.name.lower() or 'login' in item.name.lower():
            item.add_marker(pytest.mark.auth)
