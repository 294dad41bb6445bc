import math
from datetime import datetime, timezone, timedelta # For date calculations.

SECONDS_PER_DAY = 86400

def utcnow():
    """
    Returns the current time as a naive datetime in UTC.

    All timestamps in the database are stored as naive UTC values, so every
    "now" in the service goes through this function.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value):
    """
    Normalizes a datetime to naive UTC.

    Args:
        value (datetime or None): A naive (assumed UTC) or timezone-aware datetime.

    Returns:
        datetime or None: The same instant as a naive UTC datetime.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

def parse_iso_datetime(value):
    """
    Parses an ISO-8601 timestamp as sent by the admin and mobile clients
    (e.g. "2024-05-01T10:00:00.000Z" or "2024-05-01").

    Args:
        value (str or None): The timestamp string. Empty strings are treated as missing.

    Returns:
        datetime or None: Naive UTC datetime, or None when `value` is empty.

    Raises:
        ValueError: If the string is not a valid ISO-8601 date or datetime.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    # datetime.fromisoformat only learned to read a trailing 'Z' in Python 3.11.
    if value.endswith('Z') or value.endswith('z'):
        value = value[:-1] + '+00:00'
    return to_naive_utc(datetime.fromisoformat(value))

def isoformat(value):
    """Serializes a naive UTC datetime for JSON responses ("2024-05-01T10:00:00Z")."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + 'Z'

def add_days(start, days):
    return start + timedelta(days=days)

def whole_days_remaining(end, now):
    """
    Number of whole days left until `end`, rounded up and never negative.

    A subscription that ends exactly 30 days from `now` has 30 days remaining, and
    one that ends 29 days and 1 second from `now` still has 30: any started day counts.
    """
    seconds = (end - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / SECONDS_PER_DAY)

def parse_bool_arg(value, default=False):
    """
    Reads a boolean query-string flag such as `?softDelete=true`.

    Args:
        value (str or None): Raw query-string value.
        default (bool): Value used when the flag is absent.

    Returns:
        bool

    Raises:
        ValueError: If the value is not a recognised boolean literal.
    """
    if value is None or value == '':
        return default
    lowered = value.strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")

def parse_positive_int_arg(value, default, maximum=None):
    """
    Reads a positive integer query-string value (page numbers, page sizes).
    Falls back to `default` for missing or invalid input and caps at `maximum`.
    """
    try:
        number = int(value) if value not in (None, '') else default
    except (TypeError, ValueError):
        number = default
    if number < 1:
        number = default
    if maximum is not None:
        number = min(number, maximum)
    return number

def enum_values(enum_cls):
    """`values_callable` for db.Enum columns: persist 'semi_annual' rather than the member name 'SEMI_ANNUAL'."""
    return [member.value for member in enum_cls]
