"""
Helper Utilities
Common utility functions used across the application
"""

import random
import string
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from flask import request


def get_request_data():
    """JSON object body if present, otherwise form data"""
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data:
        return data
    return request.form


def generate_sale_number():
    """
    Generate a sale number

    Format: SALE-YYYYMMDD-XXXX
    Where XXXX is a random 4-digit number
    """
    date_part = datetime.now().strftime('%Y%m%d')
    random_part = ''.join(random.choices(string.digits, k=4))
    return f"SALE-{date_part}-{random_part}"


def as_bool(value):
    """Interpret form/JSON flags ('on', 'true', 1, True...)"""
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'on', 'yes')
    return bool(value)


def parse_date(value):
    """
    Parse an ISO date (YYYY-MM-DD)

    Returns:
        date or None for empty input

    Raises:
        ValueError: if the value is not a valid date
    """
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f'Invalid date: {value}')
    return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()


def parse_datetime(value):
    """
    Parse an ISO datetime; a bare date means midnight

    Raises:
        ValueError: if the value is not a valid datetime
    """
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError(f'Invalid datetime: {value}')
    value = value.strip()
    if len(value) == 10:
        return datetime.strptime(value, '%Y-%m-%d')
    return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)


def parse_decimal(value, default=Decimal('0.00')):
    """
    Parse a money amount

    Raises:
        ValueError: if the value is not a number or is negative
    """
    if value in (None, ''):
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise ValueError(f'Invalid amount: {value}')
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f'Invalid amount: {value}')
    if not amount.is_finite():
        raise ValueError(f'Invalid amount: {value}')
    if amount < 0:
        raise ValueError('Amount cannot be negative')
    try:
        return amount.quantize(Decimal('0.01'))
    except InvalidOperation:
        raise ValueError(f'Amount out of range: {value}')


def as_text(value):
    """
    Strip a text field; None becomes ''

    Raises:
        ValueError: if the value is not a string
    """
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValueError(f'Expected text, got {type(value).__name__}')
    return value.strip()


def parse_int(value, default=0):
    """
    Parse a whole number from form or JSON input

    Raises:
        ValueError: for booleans, lists, fractions and other non-integers
    """
    if value in (None, ''):
        return default
    if isinstance(value, bool) or isinstance(value, float) and not value.is_integer():
        raise ValueError(f'Invalid whole number: {value}')
    if not isinstance(value, (str, int, float)):
        raise ValueError(f'Invalid whole number: {value}')
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f'Invalid whole number: {value}')
