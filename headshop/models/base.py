"""Column helpers shared by the models."""
import calendar
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value) -> Decimal:
    """Quantize a number to cents, half-up."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def isoformat(value):
    return value.isoformat() if value else None


def naive_utc(value):
    """Convert an aware datetime from the gateway to the naive UTC we store."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int = 1) -> datetime:
    """Shift a datetime by whole months, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def first_day_of_next_month(value: datetime) -> datetime:
    nxt = add_months(value.replace(day=1), 1)
    return nxt.replace(hour=0, minute=0, second=0, microsecond=0)
