from datetime import datetime

import pytest

from finance import (
    build_report,
    dashboard_statistics,
    finance_overview,
    monthly_trend,
    payment_history_stats,
    period_start,
    resolve_date_filter,
    revenue_overview,
    status_breakdown,
    top_vehicles,
    vehicle_statistics,
)

NOW = datetime(2024, 5, 20, 12, 0)


def add_booking(db, amount, payment_status="paid", status="confirmed", created_at=NOW, vehicle_id=None,
                customer_id=None):
    db["booking"].insert_one({
        "customer_id": customer_id,
        "vehicle_id": vehicle_id,
        "total_amount": amount,
        "payment_status": payment_status,
        "status": status,
        "customer_details": {"name": "Jane Roe", "email": "jane@rental.io"},
        "created_at": created_at,
        "updated_at": created_at,
    })


def test_revenue_counts_paid_bookings_only(db):
    add_booking(db, 110)
    add_booking(db, 110)
    add_booking(db, 0, payment_status="pending", status="pending")

    stats = revenue_overview(db, {"payment_status": "paid"})
    assert stats["totalRevenue"] == 220
    assert stats["totalTransactions"] == 2
    assert stats["averageTransactionValue"] == pytest.approx(110)
    assert stats["maxTransactionValue"] == 110
    assert stats["minTransactionValue"] == 110


def test_revenue_without_matches_is_zero(db):
    assert revenue_overview(db, {"payment_status": "paid"}) == {
        "totalRevenue": 0,
        "totalTransactions": 0,
        "averageTransactionValue": 0,
        "maxTransactionValue": 0,
        "minTransactionValue": 0,
    }


def test_monthly_trend_is_ordered_by_year_and_month(db):
    add_booking(db, 200, created_at=datetime(2024, 3, 10))
    add_booking(db, 100, created_at=datetime(2023, 11, 2))
    add_booking(db, 50, created_at=datetime(2024, 3, 28))
    add_booking(db, 75, created_at=datetime(2024, 1, 5), payment_status="pending")

    trend = monthly_trend(db, NOW)
    assert [(r["year"], r["month"]) for r in trend] == [(2023, 11), (2024, 3)]
    assert trend[1]["revenue"] == 250
    assert trend[1]["transactions"] == 2


def test_monthly_trend_starts_a_year_back(db):
    add_booking(db, 10, created_at=datetime(2023, 4, 30))
    add_booking(db, 20, created_at=datetime(2023, 5, 1))
    assert [(r["year"], r["month"]) for r in monthly_trend(db, NOW)] == [(2023, 5)]


def test_status_breakdown(db):
    add_booking(db, 110)
    add_booking(db, 55, payment_status="failed", status="cancelled")
    add_booking(db, 45, payment_status="failed", status="cancelled")

    rows = status_breakdown(db, "payment_status", {})
    assert rows == [
        {"status": "failed", "count": 2, "totalAmount": 100},
        {"status": "paid", "count": 1, "totalAmount": 110},
    ]


def test_top_vehicles_joins_vehicle_documents(db, make_vehicle):
    cheap, pricey = make_vehicle(), make_vehicle(price_per_day=150.0)
    add_booking(db, 110, vehicle_id=cheap["_id"])
    add_booking(db, 330, vehicle_id=pricey["_id"])
    add_booking(db, 330, vehicle_id=pricey["_id"])
    add_booking(db, 999, vehicle_id=cheap["_id"], payment_status="pending")

    rows = top_vehicles(db, {})
    assert [r["vehicleId"] for r in rows] == [str(pricey["_id"]), str(cheap["_id"])]
    assert rows[0]["revenue"] == 660
    assert rows[0]["bookings"] == 2
    assert rows[0]["vehicle"]["license_plate"] == pricey["license_plate"]


@pytest.mark.parametrize("period,expected", [
    ("week", datetime(2024, 5, 13, 12, 0)),
    ("month", datetime(2024, 5, 1)),
    ("quarter", datetime(2024, 2, 1)),
    ("year", datetime(2024, 1, 1)),
    ("decade", None),
])
def test_period_start(period, expected):
    assert period_start(period, NOW) == expected


def test_quarter_wraps_into_previous_year():
    assert period_start("quarter", datetime(2024, 2, 10)) == datetime(2023, 11, 1)


def test_explicit_range_needs_both_bounds():
    start, end = datetime(2024, 1, 1), datetime(2024, 2, 1)
    assert resolve_date_filter("year", start, end, NOW) == {"created_at": {"$gte": start, "$lte": end}}
    assert resolve_date_filter("month", start, None, NOW) == {"created_at": {"$gte": datetime(2024, 5, 1)}}
    assert resolve_date_filter("all", now=NOW) == {}


def test_finance_overview_sections(db):
    add_booking(db, 110, created_at=datetime(2024, 5, 2))
    add_booking(db, 40, payment_status="pending", status="pending", created_at=datetime(2024, 5, 3))
    add_booking(db, 500, created_at=datetime(2024, 3, 1))

    date_filter = resolve_date_filter("month", now=NOW)
    overview = finance_overview(db, date_filter, {**date_filter, "payment_status": "paid"}, NOW)
    assert overview["revenueStats"]["totalRevenue"] == 110
    assert {r["status"] for r in overview["paymentStatusBreakdown"]} == {"paid", "pending"}
    assert len(overview["recentTransactions"]) == 2
    assert len(overview["monthlyTrend"]) == 2


def test_reports(db):
    add_booking(db, 110, status="completed", created_at=datetime(2024, 5, 2, 9))
    add_booking(db, 90, status="completed", created_at=datetime(2024, 5, 2, 18))
    add_booking(db, 60, payment_status="failed", status="cancelled", created_at=datetime(2024, 5, 4))
    add_booking(db, 70, created_at=datetime(2024, 5, 4))

    summary = build_report(db, "summary", {})
    assert summary["totalRevenue"] == 270
    assert summary["totalBookings"] == 4
    assert summary["completedBookings"] == 2
    assert summary["cancelledBookings"] == 1
    assert summary["completionRate"] == 50

    daily = build_report(db, "revenue", {})["dailyRevenue"]
    assert daily == [
        {"date": "2024-05-02", "revenue": 200, "transactions": 2},
        {"date": "2024-05-04", "revenue": 70, "transactions": 1},
    ]

    assert len(build_report(db, "transactions", {})["transactions"]) == 3
    assert build_report(db, "unknown", {}) == summary


def test_dashboard_statistics(db, make_user, make_vehicle):
    make_user("customer")
    make_user("seller")
    make_vehicle()
    make_vehicle(is_available=False)
    add_booking(db, 110, created_at=datetime(2024, 5, 10))
    add_booking(db, 80, status="pending", payment_status="pending", created_at=datetime(2024, 5, 11))
    add_booking(db, 300, created_at=datetime(2024, 1, 1))

    stats = dashboard_statistics(db, NOW)["statistics"]
    assert stats["totalUsers"] == 2
    assert stats["totalCustomers"] == 1
    assert stats["totalVehicles"] == 2
    assert stats["availableVehicles"] == 1
    assert stats["pendingBookings"] == 1
    assert stats["monthlyRevenue"] == 110


def test_payment_history_stats(db):
    add_booking(db, 110, customer_id="c1")
    add_booking(db, 40, payment_status="pending", customer_id="c1")
    add_booking(db, 25, payment_status="failed", customer_id="c1")
    add_booking(db, 999, customer_id="c2")

    assert payment_history_stats(db, "c1") == {
        "totalPayments": 3,
        "totalAmount": 175,
        "paidAmount": 110,
        "pendingAmount": 40,
        "failedAmount": 25,
    }


def test_payment_history_stats_without_bookings(db):
    assert payment_history_stats(db, "nobody") == {
        "totalPayments": 0,
        "totalAmount": 0,
        "paidAmount": 0,
        "pendingAmount": 0,
        "failedAmount": 0,
    }


def test_vehicle_statistics(db, make_vehicle):
    assert vehicle_statistics(db)["priceStats"] == {"avgPrice": 0, "minPrice": 0, "maxPrice": 0}

    make_vehicle(price_per_day=40)
    make_vehicle(price_per_day=80, is_available=False)
    stats = vehicle_statistics(db)
    assert (stats["totalVehicles"], stats["availableVehicles"], stats["unavailableVehicles"]) == (2, 1, 1)
    assert stats["priceStats"] == {"avgPrice": 60, "minPrice": 40, "maxPrice": 80}
