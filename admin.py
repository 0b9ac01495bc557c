import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from pymongo.database import Database

from auth import require_roles
from database import as_utc, get_db, parse_object_id, serialize_doc, utcnow
from finance import build_report, dashboard_statistics, finance_overview, list_transactions, resolve_date_filter
from listing import (
    DEFAULT_TRANSACTION_LIMIT,
    DEFAULT_USER_LIMIT,
    TRANSACTION_SORT_FIELDS,
    USER_SORT_FIELDS,
    Page,
    sort_spec,
    transaction_filter,
    user_filter,
)
from schemas import ApiModel, BookingStatus, PaymentStatus, Role, user_adapter

logger = logging.getLogger("rental.admin")

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_roles("admin")


class UserStatusUpdate(ApiModel):
    is_active: bool


class UserRoleUpdate(ApiModel):
    role: Role


def _optional_utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


@router.get("/dashboard")
def dashboard(user: dict = Depends(require_roles("admin", "branch-manager")), db: Database = Depends(get_db)):
    return dashboard_statistics(db)


@router.get("/users")
def list_users(
    role: Optional[Role] = None,
    is_active: Optional[Literal["true", "false", ""]] = Query(None, alias="isActive"),
    search: Optional[str] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = 1,
    limit: int = DEFAULT_USER_LIMIT,
    user: dict = Depends(admin_only),
    db: Database = Depends(get_db),
):
    window = Page.build(page, limit, DEFAULT_USER_LIMIT)
    filt = user_filter(role, is_active, search)
    cursor = db["user"].find(filt, {"password_hash": 0}) \
        .sort(sort_spec(sort_by, sort_order, USER_SORT_FIELDS)).skip(window.skip).limit(window.limit)
    users = [serialize_doc(d) for d in cursor]
    total = db["user"].count_documents(filt)
    return {
        "users": users,
        "totalPages": window.total_pages(total),
        "currentPage": window.page,
        "total": total,
    }


def _load_user(db: Database, user_id: str) -> dict:
    found = db["user"].find_one({"_id": parse_object_id(user_id, "user id")}, {"password_hash": 0})
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return found


@router.put("/users/{user_id}/status")
def update_user_status(user_id: str, payload: UserStatusUpdate, user: dict = Depends(admin_only),
                       db: Database = Depends(get_db)):
    target = _load_user(db, user_id)
    db["user"].update_one({"_id": target["_id"]}, {"$set": {"is_active": payload.is_active, "updated_at": utcnow()}})
    target["is_active"] = payload.is_active
    logger.info(f"user {target['_id']} is_active={payload.is_active} by {user['_id']}")
    return {
        "message": f"User {'activated' if payload.is_active else 'deactivated'} successfully",
        "user": serialize_doc(target),
    }


@router.put("/users/{user_id}/role")
def update_user_role(user_id: str, payload: UserRoleUpdate, user: dict = Depends(admin_only),
                     db: Database = Depends(get_db)):
    target = _load_user(db, user_id)
    candidate = {**target, "role": payload.role}
    try:
        user_adapter.validate_python(candidate)
    except ValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"][1:]) or str(err["loc"]) for err in e.errors())
        raise HTTPException(status_code=400, detail=f"User does not satisfy role {payload.role}: {missing}")

    db["user"].update_one({"_id": target["_id"]}, {"$set": {"role": payload.role, "updated_at": utcnow()}})
    target["role"] = payload.role
    logger.info(f"user {target['_id']} role={payload.role} by {user['_id']}")
    return {"message": "User role updated successfully", "user": serialize_doc(target)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, user: dict = Depends(admin_only), db: Database = Depends(get_db)):
    target_id = parse_object_id(user_id, "user id")
    active = db["booking"].count_documents({"customer_id": target_id, "status": {"$in": ["confirmed", "active"]}})
    if active > 0:
        raise HTTPException(status_code=400, detail="Cannot delete user with active bookings")
    db["user"].delete_one({"_id": target_id})
    logger.info(f"user {target_id} deleted by {user['_id']}")
    return {"message": "User deleted successfully"}


@router.get("/finance/overview")
def finance_overview_route(
    period: str = "month",
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    payment_status: Literal["paid", "all"] = Query("paid", alias="paymentStatus"),
    user: dict = Depends(admin_only),
    db: Database = Depends(get_db),
):
    date_filter = resolve_date_filter(period, _optional_utc(start_date), _optional_utc(end_date))
    revenue_match = dict(date_filter)
    if payment_status == "paid":
        revenue_match["payment_status"] = "paid"
    return finance_overview(db, date_filter, revenue_match)


@router.get("/finance/transactions")
def finance_transactions(
    page: int = 1,
    limit: int = DEFAULT_TRANSACTION_LIMIT,
    status: Optional[BookingStatus] = None,
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search: Optional[str] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    user: dict = Depends(admin_only),
    db: Database = Depends(get_db),
):
    window = Page.build(page, limit, DEFAULT_TRANSACTION_LIMIT)
    filt = transaction_filter(status, payment_status, _optional_utc(start_date), _optional_utc(end_date), search)
    return list_transactions(db, filt, sort_spec(sort_by, sort_order, TRANSACTION_SORT_FIELDS), window)


@router.get("/finance/reports")
def finance_reports(
    report_type: Literal["summary", "revenue", "transactions"] = Query("summary", alias="reportType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    user: dict = Depends(admin_only),
    db: Database = Depends(get_db),
):
    date_filter = {}
    if start_date is not None and end_date is not None:
        date_filter = {"created_at": {"$gte": as_utc(start_date), "$lte": as_utc(end_date)}}
    return build_report(db, report_type, date_filter)
