import re
from datetime import datetime

import pytest
from pymongo import ASCENDING, DESCENDING

from listing import (
    TRANSACTION_SORT_FIELDS,
    USER_SORT_FIELDS,
    FilterError,
    Page,
    sort_spec,
    transaction_filter,
    user_filter,
    vehicle_filter,
    vehicle_sort,
)


def test_available_defaults_to_true():
    assert vehicle_filter() == {"is_available": True}
    assert vehicle_filter(available="true") == {"is_available": True}
    assert vehicle_filter(available="false") == {"is_available": False}


def test_available_all_drops_constraint():
    assert "is_available" not in vehicle_filter(available="all")


def test_available_rejects_other_values():
    with pytest.raises(FilterError):
        vehicle_filter(available="yes")


def test_eight_seats_means_eight_or_more():
    assert vehicle_filter(seats="8")["seats"] == {"$gte": 8}
    assert vehicle_filter(seats="5")["seats"] == 5
    with pytest.raises(FilterError):
        vehicle_filter(seats="lots")


def test_price_bounds_accept_zero():
    assert vehicle_filter(min_price=0)["price_per_day"] == {"$gte": 0}
    assert vehicle_filter(min_price=20, max_price=80)["price_per_day"] == {"$gte": 20, "$lte": 80}


def test_location_is_escaped_case_insensitive():
    filt = vehicle_filter(location="St. Louis (MO)")
    assert filt["location"] == {"$regex": re.escape("St. Louis (MO)"), "$options": "i"}
    assert re.search(filt["location"]["$regex"], "st. louis (mo)", re.I)


def test_exact_match_fields():
    filt = vehicle_filter(type="suv", fuel_type="electric", transmission="manual")
    assert filt["type"] == "suv"
    assert filt["fuel_type"] == "electric"
    assert filt["transmission"] == "manual"


def test_pagination_arithmetic():
    page = Page.build(3, 12, 12)
    assert page.skip == 24
    assert page.total_pages(25) == 3
    assert page.total_pages(0) == 0
    assert Page.build(None, None, 20) == Page(1, 20)


@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (-2, 5)])
def test_pagination_rejects_values_below_one(page, limit):
    with pytest.raises(FilterError):
        Page.build(page, limit, 10)


def test_vehicle_sort_keys():
    assert vehicle_sort("price", "asc") == [("price_per_day", ASCENDING)]
    assert vehicle_sort("year", "desc") == [("year", DESCENDING)]
    assert vehicle_sort("createdAt", None) == [("created_at", DESCENDING)]
    assert vehicle_sort("rating", "asc") == [("created_at", ASCENDING)]


def test_sort_spec_falls_back_for_unknown_field():
    assert sort_spec("name", "asc", USER_SORT_FIELDS) == [("name", ASCENDING)]
    assert sort_spec("password_hash", "asc", USER_SORT_FIELDS) == [("created_at", ASCENDING)]
    assert sort_spec("totalAmount", "desc", TRANSACTION_SORT_FIELDS) == [("total_amount", DESCENDING)]


def test_user_filter():
    assert user_filter() == {}
    assert user_filter(role="seller", is_active="false") == {"role": "seller", "is_active": False}
    filt = user_filter(search="a+b")
    assert filt["$or"] == [
        {"name": {"$regex": r"a\+b", "$options": "i"}},
        {"email": {"$regex": r"a\+b", "$options": "i"}},
    ]


def test_transaction_filter():
    start, end = datetime(2024, 1, 1), datetime(2024, 1, 31)
    filt = transaction_filter("confirmed", "paid", start, end, "jane")
    assert filt["status"] == "confirmed"
    assert filt["payment_status"] == "paid"
    assert filt["created_at"] == {"$gte": start, "$lte": end}
    assert [list(c)[0] for c in filt["$or"]] == ["customer_details.name", "customer_details.email"]
    assert transaction_filter(start_date=start) == {"created_at": {"$gte": start}}
