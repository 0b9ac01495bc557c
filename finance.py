"""
Booking statistics for the admin dashboard and finance pages.

All functions take the database handle and a `match` dict (usually built by
`resolve_date_filter`) and return JSON-ready structures. Pymongo errors are
not caught here; the app turns them into a 500 with the driver's message.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import populate, serialize_doc, utcnow
from listing import Page, SortSpec

TOP_VEHICLE_LIMIT = 10
RECENT_TRANSACTION_LIMIT = 20

CUSTOMER_FIELDS = ["name", "email"]
VEHICLE_FIELDS = ["make", "model", "license_plate"]

EMPTY_REVENUE = {
    "totalRevenue": 0,
    "totalTransactions": 0,
    "averageTransactionValue": 0,
    "maxTransactionValue": 0,
    "minTransactionValue": 0,
}

EMPTY_PAYMENT_STATS = {
    "totalPayments": 0,
    "totalAmount": 0,
    "paidAmount": 0,
    "pendingAmount": 0,
    "failedAmount": 0,
}


def period_start(period: str, now: datetime) -> Optional[datetime]:
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return datetime(now.year, now.month, 1)
    if period == "quarter":
        month, year = now.month - 3, now.year
        if month < 1:
            month += 12
            year -= 1
        return datetime(year, month, 1)
    if period == "year":
        return datetime(now.year, 1, 1)
    return None


def resolve_date_filter(period: Optional[str] = "month", start_date: Optional[datetime] = None,
                        end_date: Optional[datetime] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the created_at window for a finance request.

    An explicit range wins, but only when both bounds are given. Otherwise the
    named period is measured back from `now`; an unknown period means no
    date restriction at all.
    """
    if start_date is not None and end_date is not None:
        return {"created_at": {"$gte": start_date, "$lte": end_date}}
    since = period_start(period or "", now or utcnow())
    if since is None:
        return {}
    return {"created_at": {"$gte": since}}


def revenue_overview(db: Database, match: Dict[str, Any]) -> Dict[str, Any]:
    rows = list(db["booking"].aggregate([
        {"$match": match},
        {"$group": {
            "_id": None,
            "totalRevenue": {"$sum": "$total_amount"},
            "totalTransactions": {"$sum": 1},
            "averageTransactionValue": {"$avg": "$total_amount"},
            "maxTransactionValue": {"$max": "$total_amount"},
            "minTransactionValue": {"$min": "$total_amount"},
        }},
    ]))
    row = rows[0] if rows else {}
    return {k: row.get(k) or 0 for k in EMPTY_REVENUE}


def status_breakdown(db: Database, field: str, match: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Count and amount per distinct value of `field` (status or payment_status)."""
    rows = db["booking"].aggregate([
        {"$match": match},
        {"$group": {
            "_id": f"${field}",
            "count": {"$sum": 1},
            "totalAmount": {"$sum": "$total_amount"},
        }},
        {"$sort": {"_id": 1}},
    ])
    return [{"status": r["_id"], "count": r["count"], "totalAmount": r["totalAmount"]} for r in rows]


def monthly_trend(db: Database, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    since = datetime(now.year - 1, now.month, 1)
    rows = db["booking"].aggregate([
        {"$match": {"payment_status": "paid", "created_at": {"$gte": since}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$total_amount"},
            "transactions": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ])
    return [
        {"year": r["_id"]["year"], "month": r["_id"]["month"],
         "revenue": r["revenue"], "transactions": r["transactions"]}
        for r in rows
    ]


def top_vehicles(db: Database, match: Dict[str, Any], limit: int = TOP_VEHICLE_LIMIT) -> List[Dict[str, Any]]:
    rows = db["booking"].aggregate([
        {"$match": {**match, "payment_status": "paid"}},
        {"$group": {
            "_id": "$vehicle_id",
            "revenue": {"$sum": "$total_amount"},
            "bookings": {"$sum": 1},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": limit},
        {"$lookup": {
            "from": "vehicle",
            "localField": "_id",
            "foreignField": "_id",
            "as": "vehicle_info",
        }},
        {"$unwind": "$vehicle_info"},
    ])
    return [
        {"vehicleId": str(r["_id"]), "revenue": r["revenue"], "bookings": r["bookings"],
         "vehicle": serialize_doc(r["vehicle_info"])}
        for r in rows
    ]


def _populated(db: Database, docs: List[Dict[str, Any]], vehicle_fields: List[str] = VEHICLE_FIELDS):
    populate(db, docs, "customer_id", "user", CUSTOMER_FIELDS, target="customer")
    populate(db, docs, "vehicle_id", "vehicle", vehicle_fields, target="vehicle")
    return [serialize_doc(d) for d in docs]


def recent_transactions(db: Database, match: Dict[str, Any], limit: int = RECENT_TRANSACTION_LIMIT):
    docs = list(db["booking"].find(match).sort([("created_at", -1)]).limit(limit))
    return _populated(db, docs)


def list_transactions(db: Database, filt: Dict[str, Any], sort: SortSpec, page: Page) -> Dict[str, Any]:
    docs = list(db["booking"].find(filt).sort(sort).skip(page.skip).limit(page.limit))
    total = db["booking"].count_documents(filt)
    return {
        "transactions": _populated(db, docs, VEHICLE_FIELDS + ["year"]),
        "pagination": {
            "currentPage": page.page,
            "totalPages": page.total_pages(total),
            "totalItems": total,
            "itemsPerPage": page.limit,
        },
    }


def finance_overview(db: Database, date_filter: Dict[str, Any], revenue_match: Dict[str, Any],
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "revenueStats": revenue_overview(db, revenue_match),
        "paymentStatusBreakdown": status_breakdown(db, "payment_status", date_filter),
        "bookingStatusBreakdown": status_breakdown(db, "status", date_filter),
        "monthlyTrend": monthly_trend(db, now),
        "topVehicles": top_vehicles(db, date_filter),
        "recentTransactions": recent_transactions(db, date_filter),
    }


# Reports

def paid_revenue(db: Database, match: Dict[str, Any]) -> float:
    rows = list(db["booking"].aggregate([
        {"$match": {**match, "payment_status": "paid"}},
        {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
    ]))
    return (rows[0] if rows else {}).get("total") or 0


def summary_report(db: Database, date_filter: Dict[str, Any]) -> Dict[str, Any]:
    bookings = db["booking"]
    total = bookings.count_documents(date_filter)
    completed = bookings.count_documents({**date_filter, "status": "completed"})
    cancelled = bookings.count_documents({**date_filter, "status": "cancelled"})
    return {
        "totalRevenue": paid_revenue(db, date_filter),
        "totalBookings": total,
        "completedBookings": completed,
        "cancelledBookings": cancelled,
        "completionRate": (completed / total) * 100 if total > 0 else 0,
    }


def revenue_report(db: Database, date_filter: Dict[str, Any]) -> Dict[str, Any]:
    rows = db["booking"].aggregate([
        {"$match": {**date_filter, "payment_status": "paid"}},
        {"$group": {
            "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
            "revenue": {"$sum": "$total_amount"},
            "transactions": {"$sum": 1},
        }},
        {"$sort": {"_id": 1}},
    ])
    return {"dailyRevenue": [
        {"date": r["_id"], "revenue": r["revenue"], "transactions": r["transactions"]} for r in rows
    ]}


def transaction_report(db: Database, date_filter: Dict[str, Any]) -> Dict[str, Any]:
    docs = list(db["booking"].find({**date_filter, "payment_status": "paid"}).sort([("created_at", -1)]))
    return {"transactions": _populated(db, docs)}


REPORTS = {
    "summary": summary_report,
    "revenue": revenue_report,
    "transactions": transaction_report,
}


def build_report(db: Database, report_type: str, date_filter: Dict[str, Any]) -> Dict[str, Any]:
    report = REPORTS.get(report_type, summary_report)
    return report(db, date_filter)


# Dashboards

def dashboard_statistics(db: Database, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    users, vehicles, bookings = db["user"], db["vehicle"], db["booking"]
    recent = list(bookings.find().sort([("created_at", -1)]).limit(5))
    return {
        "statistics": {
            "totalUsers": users.count_documents({}),
            "totalCustomers": users.count_documents({"role": "customer"}),
            "totalSellers": users.count_documents({"role": "seller"}),
            "totalVehicles": vehicles.count_documents({}),
            "availableVehicles": vehicles.count_documents({"is_available": True}),
            "totalBookings": bookings.count_documents({}),
            "pendingBookings": bookings.count_documents({"status": "pending"}),
            "activeBookings": bookings.count_documents({"status": "active"}),
            "monthlyRevenue": paid_revenue(db, {"created_at": {"$gte": now - timedelta(days=30)}}),
        },
        "recentBookings": _populated(db, recent),
    }


def _count_by(db: Database, field: str) -> List[Dict[str, Any]]:
    rows = db["vehicle"].aggregate([
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ])
    return [{"value": r["_id"], "count": r["count"]} for r in rows]


def vehicle_statistics(db: Database) -> Dict[str, Any]:
    vehicles = db["vehicle"]
    price_rows = list(vehicles.aggregate([
        {"$group": {
            "_id": None,
            "avgPrice": {"$avg": "$price_per_day"},
            "minPrice": {"$min": "$price_per_day"},
            "maxPrice": {"$max": "$price_per_day"},
        }},
    ]))
    row = price_rows[0] if price_rows else {}
    price_stats = {k: row.get(k) or 0 for k in ("avgPrice", "minPrice", "maxPrice")}
    return {
        "totalVehicles": vehicles.count_documents({}),
        "availableVehicles": vehicles.count_documents({"is_available": True}),
        "unavailableVehicles": vehicles.count_documents({"is_available": False}),
        "vehiclesByType": _count_by(db, "type"),
        "vehiclesByFuel": _count_by(db, "fuel_type"),
        "priceStats": price_stats,
    }


def _amount_when(status: str) -> Dict[str, Any]:
    return {"$sum": {"$cond": [{"$eq": ["$payment_status", status]}, "$total_amount", 0]}}


def payment_history_stats(db: Database, customer_id: Any) -> Dict[str, Any]:
    rows = list(db["booking"].aggregate([
        {"$match": {"customer_id": customer_id}},
        {"$group": {
            "_id": None,
            "totalPayments": {"$sum": 1},
            "totalAmount": {"$sum": "$total_amount"},
            "paidAmount": _amount_when("paid"),
            "pendingAmount": _amount_when("pending"),
            "failedAmount": _amount_when("failed"),
        }},
    ]))
    row = rows[0] if rows else {}
    return {k: row.get(k) or 0 for k in EMPTY_PAYMENT_STATS}
