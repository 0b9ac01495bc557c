"""
Query-string to MongoDB translation for the paginated listings.

Every builder returns plain pymongo structures: a filter dict, a sort list of
(field, direction) pairs, and a Page window. Nothing here touches the
database.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

SortSpec = List[Tuple[str, int]]

DEFAULT_VEHICLE_LIMIT = 12
DEFAULT_USER_LIMIT = 10
DEFAULT_TRANSACTION_LIMIT = 20

# seats=8 in the vehicle filter means "8 or more"
SEATS_OR_MORE = "8"

USER_SORT_FIELDS = {
    "createdAt": "created_at",
    "name": "name",
    "email": "email",
    "role": "role",
}

TRANSACTION_SORT_FIELDS = {
    "createdAt": "created_at",
    "totalAmount": "total_amount",
    "startDate": "start_date",
    "endDate": "end_date",
    "status": "status",
    "paymentStatus": "payment_status",
}


class FilterError(ValueError):
    pass


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @classmethod
    def build(cls, page: Optional[int], limit: Optional[int], default_limit: int) -> "Page":
        page = 1 if page is None else page
        limit = default_limit if limit is None else limit
        if page < 1:
            raise FilterError("page must be 1 or greater")
        if limit < 1:
            raise FilterError("limit must be 1 or greater")
        return cls(page, limit)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.limit)


def search_clause(term: str, fields: Iterable[str]) -> Dict[str, Any]:
    """Case-insensitive substring match of `term` against any of `fields`."""
    pattern = re.escape(term)
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def direction(sort_order: Optional[str], default: int = DESCENDING) -> int:
    if sort_order == "asc":
        return ASCENDING
    if sort_order == "desc":
        return DESCENDING
    return default


def sort_spec(sort_by: Optional[str], sort_order: Optional[str], allowed: Mapping[str, str],
              default: str = "created_at") -> SortSpec:
    field = allowed.get(sort_by or "", default)
    return [(field, direction(sort_order))]


def date_range(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, datetime]:
    cond: Dict[str, datetime] = {}
    if start is not None:
        cond["$gte"] = start
    if end is not None:
        cond["$lte"] = end
    return cond


def vehicle_filter(
    available: Optional[str] = None,
    type: Optional[str] = None,
    location: Optional[str] = None,
    fuel_type: Optional[str] = None,
    transmission: Optional[str] = None,
    seats: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}

    if available is None or available == "true":
        filt["is_available"] = True
    elif available == "false":
        filt["is_available"] = False
    elif available != "all":
        raise FilterError(f"available must be true, false or all, not {available!r}")

    if type:
        filt["type"] = type
    if location:
        filt["location"] = {"$regex": re.escape(location), "$options": "i"}
    if fuel_type:
        filt["fuel_type"] = fuel_type
    if transmission:
        filt["transmission"] = transmission
    if seats:
        if seats == SEATS_OR_MORE:
            filt["seats"] = {"$gte": int(SEATS_OR_MORE)}
        else:
            try:
                filt["seats"] = int(seats)
            except ValueError:
                raise FilterError(f"seats must be a whole number, not {seats!r}")
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        filt["price_per_day"] = price_cond
    return filt


def vehicle_sort(sort_by: Optional[str], sort_order: Optional[str]) -> SortSpec:
    if sort_by == "price":
        field = "price_per_day"
    elif sort_by == "year":
        field = "year"
    else:
        field = "created_at"
    return [(field, direction(sort_order))]


def user_filter(role: Optional[str] = None, is_active: Optional[str] = None,
                search: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if role:
        filt["role"] = role
    if is_active is not None and is_active != "":
        filt["is_active"] = is_active == "true"
    if search:
        filt.update(search_clause(search, ["name", "email"]))
    return filt


def transaction_filter(status: Optional[str] = None, payment_status: Optional[str] = None,
                       start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                       search: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    if payment_status:
        filt["payment_status"] = payment_status
    created = date_range(start_date, end_date)
    if created:
        filt["created_at"] = created
    if search:
        filt.update(search_clause(search, ["customer_details.name", "customer_details.email"]))
    return filt
