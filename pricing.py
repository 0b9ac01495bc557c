"""
Booking price computation.

total = days * rate + tax + service fee, with both surcharges a fixed share
of the subtotal. Amounts are carried unrounded; rounding happens only when an
amount is displayed or handed to the payment provider.
"""

import math
from datetime import date, datetime, timezone
from typing import NamedTuple, Union

TAX_RATE = 0.05
SERVICE_FEE_RATE = 0.05

SECONDS_PER_DAY = 24 * 60 * 60

DateLike = Union[date, datetime]


class PriceBreakdown(NamedTuple):
    subtotal: float
    tax: float
    service_fee: float
    total_amount: float


class Quote(NamedTuple):
    total_days: int
    price_per_day: float
    breakdown: PriceBreakdown


def _as_datetime(value: DateLike) -> datetime:
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def rental_days(start: DateLike, end: DateLike) -> int:
    """Whole days charged between two instants, rounded up; never less than one."""
    start_dt, end_dt = _as_datetime(start), _as_datetime(end)
    seconds = abs((end_dt - start_dt).total_seconds())
    return max(1, math.ceil(seconds / SECONDS_PER_DAY))


def calculate_booking_amount(total_days: int, price_per_day: float) -> PriceBreakdown:
    subtotal = total_days * price_per_day
    tax = subtotal * TAX_RATE
    service_fee = subtotal * SERVICE_FEE_RATE
    return PriceBreakdown(subtotal, tax, service_fee, subtotal + tax + service_fee)


def quote(price_per_day: float, start: DateLike, end: DateLike) -> Quote:
    total_days = rental_days(start, end)
    return Quote(total_days, price_per_day, calculate_booking_amount(total_days, price_per_day))


def to_minor_units(amount: float) -> int:
    # cents, as the payment provider expects
    return int(round(amount * 100))


def format_amount(amount: float) -> str:
    return f"{amount:.2f}"
