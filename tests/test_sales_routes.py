"""
Tests for Sales Routes.

Tests cover:
- Checkout pricing, stock and customer purchase history
- Branch scoping of products, customers and sale history
- Refunds
"""

import logging

import pytest

from bakery_pos.models import db, Customer, Product, Sale, StockMovement


def sell(client, items, **extra):
    payload = {'items': items, 'payment_method': 'pix'}
    payload.update(extra)
    return client.post('/sales/', json=payload)


class TestCreateSale:

    def test_sale_with_customer(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [
            {'product_id': init_database['bolo'], 'quantity': 2},
            {'product_id': init_database['brigadeiro'], 'quantity': 10},
        ], customer_id=init_database['maria'])

        assert response.status_code == 201
        data = response.get_json()
        assert data['branch_id'] == init_database['centro']
        assert data['sale_number'].startswith('SALE-')
        assert data['total'] == 125.0
        assert data['total_cost'] == 50.0
        assert data['profit'] == 75.0
        assert data['points_earned'] == 125
        assert data['customer_name'] == 'Maria Silva'
        assert data['customer']['total_orders'] == 1
        assert data['customer']['loyalty_points'] == 275
        assert len(data['items']) == 2

        with fresh_app.app_context():
            assert db.session.get(Product, init_database['bolo']).stock == 10
            assert db.session.get(Product, init_database['brigadeiro']).stock == 90
            maria = db.session.get(Customer, init_database['maria'])
            assert maria.total_orders == 1
            assert maria.last_order_date is not None
            assert maria.loyalty_points == 275
            movements = StockMovement.query.filter_by(movement_type='sale').all()
            assert sorted(m.quantity for m in movements) == [-10, -2]
            assert {m.reference for m in movements} == {data['sale_number']}

    def test_walk_in_sale_changes_no_customer(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [{'product_id': init_database['brigadeiro'], 'quantity': 4}])
        assert response.status_code == 201
        data = response.get_json()
        assert data['customer_id'] is None
        assert data['points_earned'] == 0
        assert data['payment_method'] == 'pix'

        with fresh_app.app_context():
            assert db.session.get(Customer, init_database['maria']).total_orders == 0

    def test_size_price(self, auth_owner, init_database):
        response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 1, 'size': 'G'}])
        assert response.status_code == 201
        item = response.get_json()['items'][0]
        assert item['size'] == 'G'
        assert item['unit_price'] == 70.0

    def test_unknown_size(self, auth_owner, init_database):
        response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 1, 'size': 'GG'}])
        assert response.status_code == 400

    def test_made_to_order_product_has_no_stock_check(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [{'product_id': init_database['encomenda'], 'quantity': 3}])
        assert response.status_code == 201
        with fresh_app.app_context():
            assert db.session.get(Product, init_database['encomenda']).stock is None

    def test_discount(self, auth_owner, init_database):
        response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 2}],
                        discount='10.00', customer_id=init_database['joao'])
        data = response.get_json()
        assert data['subtotal'] == 100.0
        assert data['total'] == 90.0
        assert data['points_earned'] == 90

    def test_discount_above_subtotal(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 1}], discount='60')
        assert response.status_code == 400
        with fresh_app.app_context():
            assert Sale.query.count() == 0
            assert db.session.get(Product, init_database['bolo']).stock == 12

    def test_insufficient_stock(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 13}])
        assert response.status_code == 400
        assert 'Insufficient stock' in response.get_json()['error']

    def test_stock_is_checked_across_lines(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [
            {'product_id': init_database['bolo'], 'quantity': 7},
            {'product_id': init_database['bolo'], 'quantity': 7, 'size': 'P'},
        ])
        assert response.status_code == 400
        with fresh_app.app_context():
            assert db.session.get(Product, init_database['bolo']).stock == 12

    def test_low_stock_is_logged(self, auth_owner, init_database, caplog):
        with caplog.at_level(logging.WARNING):
            response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 5}])
        assert response.status_code == 201
        assert 'Low stock: Bolo de Chocolate (7 units)' in caplog.text

    def test_other_branch_product(self, auth_owner, init_database):
        response = sell(auth_owner, [{'product_id': init_database['torta'], 'quantity': 1}])
        assert response.status_code == 404

    def test_inactive_product(self, auth_owner, init_database):
        response = sell(auth_owner, [{'product_id': init_database['sonho'], 'quantity': 1}])
        assert response.status_code == 404

    def test_other_branch_customer(self, auth_owner, init_database, fresh_app):
        response = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 1}],
                        customer_id=init_database['ana'])
        assert response.status_code == 404
        with fresh_app.app_context():
            assert db.session.get(Customer, init_database['ana']).total_orders == 0

    def test_employee_sells_at_assigned_branch(self, auth_employee, init_database):
        response = sell(auth_employee, [{'product_id': init_database['torta'], 'quantity': 1}],
                        customer_id=init_database['ana'])
        assert response.status_code == 201
        data = response.get_json()
        assert data['branch_id'] == init_database['shopping']
        assert data['customer']['loyalty_points'] == 645

    @pytest.mark.parametrize('payload', [
        {},
        {'items': []},
        {'items': 'bolo'},
        {'items': [{'quantity': 1}]},
        {'items': [{'product_id': 1, 'quantity': 0}]},
        {'items': [{'product_id': 1, 'quantity': [2]}]},
        {'items': [{'product_id': 1, 'quantity': 1}], 'discount': 'NaN'},
        {'items': [{'product_id': 1, 'quantity': 1}], 'customer_id': 'maria'},
        {'items': [{'product_id': 1, 'quantity': 1}], 'payment_method': ['pix']},
    ])
    def test_invalid_sale(self, auth_owner, init_database, payload):
        response = auth_owner.post('/sales/', json=payload)
        assert response.status_code == 400

    def test_unassigned_employee_gets_conflict(self, auth_unassigned):
        response = sell(auth_unassigned, [{'product_id': 1, 'quantity': 1}])
        assert response.status_code == 409


class TestSaleHistory:

    def test_list_is_branch_scoped(self, auth_owner, init_database):
        sell(auth_owner, [{'product_id': init_database['brigadeiro'], 'quantity': 1}])

        sales = auth_owner.get('/sales/').get_json()['sales']
        assert len(sales) == 1
        assert 'items' not in sales[0]

        auth_owner.post('/branches/select', json={'branch_id': init_database['shopping']})
        assert auth_owner.get('/sales/').get_json()['sales'] == []

    def test_filter_by_status_and_date(self, auth_owner, init_database):
        sell(auth_owner, [{'product_id': init_database['brigadeiro'], 'quantity': 1}])

        assert len(auth_owner.get('/sales/?status=completed').get_json()['sales']) == 1
        assert auth_owner.get('/sales/?status=refunded').get_json()['sales'] == []
        assert auth_owner.get('/sales/?to_date=2000-01-01').get_json()['sales'] == []
        assert auth_owner.get('/sales/?status=lost').status_code == 400
        assert auth_owner.get('/sales/?from_date=yesterday').status_code == 400

    def test_view_sale(self, auth_owner, init_database):
        sale = sell(auth_owner, [{'product_id': init_database['brigadeiro'], 'quantity': 2}]).get_json()
        response = auth_owner.get(f"/sales/{sale['id']}")
        assert response.status_code == 200
        assert response.get_json()['items'][0]['product_name'] == 'Brigadeiro'

    def test_other_branch_sale_not_found(self, auth_owner, init_database):
        sale = sell(auth_owner, [{'product_id': init_database['brigadeiro'], 'quantity': 2}]).get_json()
        auth_owner.post('/branches/select', json={'branch_id': init_database['shopping']})
        assert auth_owner.get(f"/sales/{sale['id']}").status_code == 404


class TestRefund:

    def test_refund_restores_stock_and_customer(self, auth_owner, init_database, fresh_app):
        sale = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 2}],
                    customer_id=init_database['maria']).get_json()

        response = auth_owner.post(f"/sales/{sale['id']}/refund")
        assert response.status_code == 200
        assert response.get_json()['status'] == 'refunded'

        with fresh_app.app_context():
            assert db.session.get(Product, init_database['bolo']).stock == 12
            maria = db.session.get(Customer, init_database['maria'])
            assert maria.loyalty_points == 150
            assert maria.total_orders == 0
            returned = StockMovement.query.filter_by(movement_type='return').one()
            assert returned.quantity == 2
            assert returned.reference == sale['sale_number']

    def test_refund_after_points_were_spent(self, auth_owner, init_database, fresh_app):
        sale = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 2}],
                    customer_id=init_database['joao']).get_json()
        auth_owner.post(f"/customers/{init_database['joao']}/points",
                        json={'action': 'redeem', 'points': 110})

        auth_owner.post(f"/sales/{sale['id']}/refund")
        with fresh_app.app_context():
            assert db.session.get(Customer, init_database['joao']).loyalty_points == 0

    def test_refund_twice(self, auth_owner, init_database):
        sale = sell(auth_owner, [{'product_id': init_database['bolo'], 'quantity': 1}]).get_json()
        auth_owner.post(f"/sales/{sale['id']}/refund")
        response = auth_owner.post(f"/sales/{sale['id']}/refund")
        assert response.status_code == 409

    def test_employee_cannot_refund(self, auth_employee, init_database):
        sale = sell(auth_employee, [{'product_id': init_database['torta'], 'quantity': 1}]).get_json()
        response = auth_employee.post(f"/sales/{sale['id']}/refund")
        assert response.status_code == 403
