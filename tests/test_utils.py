"""
Tests for utility modules and services.

Tests cover:
- Request value parsing helpers
- Branch directory retries
- Branch query filter
- Error logger
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from bakery_pos.models import Customer, ErrorLog
from bakery_pos.services.branch_directory import BranchDirectory, BranchDirectoryError
from bakery_pos.utils.branch_context import filter_by_branch
from bakery_pos.utils.error_logger import _sanitize_data, log_error
from bakery_pos.utils.helpers import as_bool, as_text, parse_date, parse_datetime, parse_decimal, parse_int


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:

    @pytest.mark.parametrize('value,expected', [
        ('true', True), ('on', True), ('1', True), (' Yes ', True), (True, True), (1, True),
        ('false', False), ('off', False), ('', False), (None, False), (0, False),
    ])
    def test_as_bool(self, value, expected):
        assert as_bool(value) is expected

    def test_parse_date(self):
        assert parse_date('2024-03-15') == date(2024, 3, 15)
        assert parse_date('2024-03-15T10:00:00') == date(2024, 3, 15)
        assert parse_date('') is None

    def test_parse_date_invalid(self):
        with pytest.raises(ValueError):
            parse_date('15/03/2024')

    def test_parse_datetime(self):
        assert parse_datetime('2024-03-15') == datetime(2024, 3, 15)
        assert parse_datetime('2024-03-15T10:30:00') == datetime(2024, 3, 15, 10, 30)
        assert parse_datetime('2024-03-15T10:30:00Z') == datetime(2024, 3, 15, 10, 30)
        assert parse_datetime(None) is None

    def test_parse_decimal(self):
        assert parse_decimal('10.456') == Decimal('10.46')
        assert parse_decimal(3) == Decimal('3.00')
        assert parse_decimal(None) == Decimal('0.00')

    @pytest.mark.parametrize('value', ['abc', '-1', -0.5, 'NaN', 'nan', 'sNaN', 'Infinity', '-Infinity',
                                       float('inf'), '1e999999', [1], {'amount': 1}, True])
    def test_parse_decimal_invalid(self, value):
        with pytest.raises(ValueError):
            parse_decimal(value)

    def test_as_text(self):
        assert as_text('  Bolo ') == 'Bolo'
        assert as_text(None) == ''

    @pytest.mark.parametrize('value', [42, ['Bolo'], {'name': 'Bolo'}])
    def test_as_text_rejects_other_types(self, value):
        with pytest.raises(ValueError):
            as_text(value)

    def test_parse_int(self):
        assert parse_int('12') == 12
        assert parse_int(7) == 7
        assert parse_int(3.0) == 3
        assert parse_int('') == 0
        assert parse_int(None, default=None) is None

    @pytest.mark.parametrize('value', ['many', '1.5', 2.5, [1], {'n': 1}, True, float('nan'), float('inf')])
    def test_parse_int_invalid(self, value):
        with pytest.raises(ValueError):
            parse_int(value)


# ============================================================================
# Branch directory
# ============================================================================

class TestBranchDirectory:

    def test_list_branches(self, fresh_app, init_database):
        with fresh_app.app_context():
            names = [b.name for b in BranchDirectory().list_branches()]
            assert names == ['Centro', 'Shopping', 'Bairro']

    def test_list_branches_empty(self, fresh_app):
        with fresh_app.app_context():
            assert BranchDirectory().list_branches() == []

    def test_get_branch(self, fresh_app, init_database):
        directory = BranchDirectory()
        with fresh_app.app_context():
            assert directory.get_branch(str(init_database['bairro'])).name == 'Bairro'
            assert directory.get_branch(9999) is None
            assert directory.get_branch('') is None
            assert directory.get_branch('abc') is None

    @patch('bakery_pos.services.branch_directory.time.sleep')
    def test_retries_then_raises(self, mock_sleep, fresh_app):
        operation = Mock(side_effect=OperationalError('SELECT', {}, Exception('locked')))
        directory = BranchDirectory(retries=2, retry_delay=0.5)

        with fresh_app.app_context():
            with pytest.raises(BranchDirectoryError):
                directory._with_retry(operation, 'list branches')

        assert operation.call_count == 3
        assert mock_sleep.call_count == 2

    @patch('bakery_pos.services.branch_directory.time.sleep')
    def test_retry_recovers(self, mock_sleep, fresh_app):
        operation = Mock(side_effect=[OperationalError('SELECT', {}, Exception('locked')), ['ok']])
        directory = BranchDirectory(retries=1)

        with fresh_app.app_context():
            assert directory._with_retry(operation, 'list branches') == ['ok']

        assert operation.call_count == 2

    def test_no_retries(self, fresh_app):
        operation = Mock(side_effect=OperationalError('SELECT', {}, Exception('gone')))
        with fresh_app.app_context():
            with pytest.raises(BranchDirectoryError):
                BranchDirectory(retries=0)._with_retry(operation, 'get branch')
        assert operation.call_count == 1


# ============================================================================
# Branch query filter
# ============================================================================

class TestFilterByBranch:

    def test_filters_to_branch(self, fresh_app, init_database):
        with fresh_app.app_context():
            customers = filter_by_branch(Customer.query, Customer, init_database['centro']).all()
            assert {c.name for c in customers} == {'Maria Silva', 'Joao Souza'}

    def test_no_branch_matches_nothing(self, fresh_app, init_database):
        with fresh_app.app_context():
            assert filter_by_branch(Customer.query, Customer, None).all() == []


# ============================================================================
# Error logger
# ============================================================================

class TestErrorLogger:

    def test_sanitize_data(self):
        data = _sanitize_data({'email': 'a@test.com', 'password': 'secret',
                               'nested': {'csrf_token': 'x', 'name': 'Bolo'}})
        assert data['email'] == 'a@test.com'
        assert data['password'] == '[REDACTED]'
        assert data['nested']['csrf_token'] == '[REDACTED]'
        assert data['nested']['name'] == 'Bolo'

    def test_log_error_outside_request(self, fresh_app):
        with fresh_app.app_context():
            entry = log_error(RuntimeError('boom'), status_code=503)
            assert entry is not None
            stored = ErrorLog.query.one()
            assert stored.error_type == 'RuntimeError'
            assert stored.error_message == 'boom'
            assert stored.status_code == 503
            assert stored.request_url is None

    def test_log_error_inside_request(self, fresh_app, init_database):
        with fresh_app.test_request_context('/customers/?q=x', method='GET'):
            log_error(ValueError('bad value'))
            stored = ErrorLog.query.one()
            assert stored.request_method == 'GET'
            assert 'q' in stored.request_data
            assert stored.user_id is None

    def test_log_error_never_raises(self, fresh_app):
        with fresh_app.app_context():
            with patch('bakery_pos.models.db.session.add', side_effect=Exception('db down')):
                assert log_error(RuntimeError('boom')) is None

    def test_sanitize_lists_and_salary(self):
        data = _sanitize_data({'employees': [{'name': 'Ana', 'salary': '2500'}], 'page': 2, 'api_key': 'k'})
        assert data['employees'] == [{'name': 'Ana', 'salary': '[REDACTED]'}]
        assert data['page'] == 2
        assert data['api_key'] == '[REDACTED]'

    def test_log_error_keeps_traceback_and_branch(self, fresh_app, init_database):
        from flask import g
        from bakery_pos.utils.branch_context import BranchScope, ScopeStatus

        try:
            raise KeyError('missing')
        except KeyError as e:
            error = e

        with fresh_app.test_request_context('/reservations/', method='POST',
                                            json={'customer_name': 'Ana', 'password': 'x'}):
            g.branch_scope = BranchScope(None, init_database['shopping'], init_database['shopping'],
                                         ScopeStatus.READY)
            log_error(error, status_code=500)
            stored = ErrorLog.query.one()
            assert 'KeyError' in stored.traceback
            assert stored.branch_id == init_database['shopping']
            assert 'Ana' in stored.request_data
            assert '"password": "[REDACTED]"' in stored.request_data
            assert stored.blueprint == 'reservations'
