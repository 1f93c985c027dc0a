import calendar
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

from services.exceptions import ValidationError

CENTS = Decimal('0.01')


def utcnow():
    """
    Returns the current UTC time as a naive datetime.

    This is the default clock for every billing operation; the database columns
    store naive UTC timestamps, so the tzinfo is dropped.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value):
    """Converts a number (or numeric string) to a Decimal rounded half-up to cents."""
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def generate_reference(prefix):
    """
    Builds a human-readable reference such as 'INV-3F9A0C21B7D4'.

    The token is the first 12 hex characters of a uuid4, upper-cased, which keeps
    the '<PREFIX>-<uppercase token>' shape of existing invoice numbers and
    transaction ids.
    """
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def detect_card_type(card_number):
    """
    Classifies a card number by its leading digits.

    This is a display helper, not card validation: anything that is not
    recognised comes back as 'unknown'.
    """
    number = (card_number or '').strip()
    first_two = number[:2]
    if number.startswith('4'):
        return 'visa'
    if len(first_two) == 2 and first_two.isdigit() and 51 <= int(first_two) <= 55:
        return 'mastercard'
    if first_two in ('34', '37'):
        return 'amex'
    if first_two in ('60', '65'):
        return 'discover'
    return 'unknown'


TRUE_FLAGS = ('true', '1', 'yes', 'on')
FALSE_FLAGS = ('false', '0', 'no', 'off', '')


def parse_flag(value, field):
    """
    Reads a yes/no input that may arrive as a bool, 0/1 or a string such as 'false'.

    Missing values read as False.

    Raises:
        ValidationError: For any other value.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_FLAGS:
            return True
        if text in FALSE_FLAGS:
            return False
    raise ValidationError(f"'{field}' must be true or false.", field=field)


def shift_months(value, months):
    """Moves a datetime by a number of calendar months, clamping the day to the month length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _start_of_day(value):
    return datetime.combine(value.date() if isinstance(value, datetime) else value, time.min)


def _parse_day(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.", field='date_range')


def resolve_date_range(range_key, now, start_date=None, end_date=None):
    """
    Turns a named listing range into a half-open (start, end) datetime window.

    Supported keys mirror the invoice and payment filters: 'all', 'today',
    'this_week', 'this_month', 'last_month', 'last_3_months', 'last_6_months',
    'this_year', 'last_year' and 'custom' (with 'start_date' / 'end_date' as
    YYYY-MM-DD strings, either of which may be omitted).

    Args:
        range_key (str or None): The named range. None or 'all' means no bounds.
        now (datetime): Reference time the relative ranges are computed from.
        start_date, end_date (str, date or None): Bounds for the 'custom' range.

    Returns:
        tuple: (start, end) where either side may be None for an open bound.
               `end` is exclusive.

    Raises:
        ValidationError: For an unknown key, a malformed custom date, or a
                         custom start after the custom end.
    """
    if not range_key or range_key == 'all':
        return None, None

    today = _start_of_day(now)
    month_start = today.replace(day=1)

    if range_key == 'today':
        return today, today + timedelta(days=1)
    if range_key == 'this_week':
        week_start = today - timedelta(days=today.weekday()) # Weeks start on Monday.
        return week_start, week_start + timedelta(days=7)
    if range_key == 'this_month':
        return month_start, shift_months(month_start, 1)
    if range_key == 'last_month':
        return shift_months(month_start, -1), month_start
    if range_key == 'last_3_months':
        return shift_months(now, -3), None
    if range_key == 'last_6_months':
        return shift_months(now, -6), None
    if range_key == 'this_year':
        year_start = today.replace(month=1, day=1)
        return year_start, year_start.replace(year=year_start.year + 1)
    if range_key == 'last_year':
        year_start = today.replace(month=1, day=1)
        return year_start.replace(year=year_start.year - 1), year_start
    if range_key == 'custom':
        start = _start_of_day(_parse_day(start_date)) if start_date else None
        end = _start_of_day(_parse_day(end_date)) + timedelta(days=1) if end_date else None
        if start and end and start >= end:
            raise ValidationError("Start date cannot be after end date.", field='date_range')
        return start, end

    raise ValidationError(f"Unsupported date range '{range_key}'.", field='date_range')


# Amount buckets shared by the invoice and payment listings: (lower, upper).
# The two middle buckets include both bounds; under_25 and over_100 are strict.
AMOUNT_BUCKETS = {
    'under_25': (None, Decimal('25')),
    '25_50': (Decimal('25'), Decimal('50')),
    '50_100': (Decimal('50'), Decimal('100')),
    'over_100': (Decimal('100'), None),
}


def apply_amount_filter(query, column, bucket):
    """Narrows `query` to one of the AMOUNT_BUCKETS on the given amount column."""
    if not bucket or bucket == 'all':
        return query
    if bucket not in AMOUNT_BUCKETS:
        raise ValidationError(f"Unsupported amount filter '{bucket}'.", field='amount')
    if bucket == 'under_25':
        return query.filter(column < AMOUNT_BUCKETS[bucket][1])
    if bucket == 'over_100':
        return query.filter(column > AMOUNT_BUCKETS[bucket][0])
    lower, upper = AMOUNT_BUCKETS[bucket]
    return query.filter(column.between(lower, upper))


def apply_date_filter(query, column, window):
    start, end = window
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column < end)
    return query
