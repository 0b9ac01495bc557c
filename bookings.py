import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pymongo.database import Database

from auth import get_current_user, require_roles
from database import as_utc, create_document, get_db, parse_object_id, populate, serialize_doc, utcnow
from payments import (
    STRIPE_WEBHOOK_SECRET,
    PaymentError,
    StripeGateway,
    booking_by_session,
    confirm_booking_payment,
    construct_webhook_event,
    get_gateway,
    get_or_create_customer,
    handle_provider_event,
)
from pricing import calculate_booking_amount, format_amount, quote, rental_days, to_minor_units
from schemas import ApiModel, Booking, BookingStatus, CustomerDetails, role_of

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")

logger = logging.getLogger("rental.bookings")

router = APIRouter(prefix="/bookings", tags=["bookings"])

CUSTOMER_FIELDS = ["name", "email", "phone"]
VEHICLE_FIELDS = ["make", "model", "year", "license_plate", "price_per_day", "images",
                  "fuel_type", "transmission", "seats", "seller_id"]
# a vehicle is taken for a date range only by bookings in these states
BLOCKING_STATUSES = ["confirmed", "active"]


class BookingRequest(ApiModel):
    vehicle_id: str
    start_date: datetime
    end_date: datetime
    pickup_location: str
    dropoff_location: str
    customer_details: Optional[CustomerDetails] = None
    special_requests: str = ""
    notes: str = ""


class CardBookingRequest(BookingRequest):
    payment_method_id: str


class StatusUpdate(ApiModel):
    status: BookingStatus


class BookingUpdate(ApiModel):
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    special_requests: Optional[str] = None
    customer_details: Optional[Dict[str, Optional[str]]] = None


class CancelRequest(ApiModel):
    reason: Optional[str] = None


def validate_booking_dates(start: datetime, end: datetime, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    today = datetime(now.year, now.month, now.day)
    if start < today:
        raise HTTPException(status_code=400, detail="Start date cannot be in the past")
    if end < start:
        raise HTTPException(status_code=400, detail="End date cannot be before start date")


def find_conflicting_booking(db: Database, vehicle_id, start: datetime, end: datetime) -> Optional[Dict[str, Any]]:
    return db["booking"].find_one({
        "vehicle_id": vehicle_id,
        "status": {"$in": BLOCKING_STATUSES},
        "$or": [
            {"start_date": {"$lte": start}, "end_date": {"$gt": start}},
            {"start_date": {"$lt": end}, "end_date": {"$gte": end}},
            {"start_date": {"$gte": start}, "end_date": {"$lte": end}},
        ],
    })


def _populated(db: Database, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    populate(db, docs, "customer_id", "user", CUSTOMER_FIELDS, target="customer")
    populate(db, docs, "vehicle_id", "vehicle", VEHICLE_FIELDS, target="vehicle")
    populate(db, docs, "approved_by", "user", ["name"], target="approver")
    return [serialize_doc(d) for d in docs]


def _load_booking(db: Database, booking_id: str) -> Dict[str, Any]:
    booking = db["booking"].find_one({"_id": parse_object_id(booking_id, "booking id")})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def _own_booking(db: Database, booking_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    booking = _load_booking(db, booking_id)
    if booking.get("customer_id") != user["_id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    return booking


def prepare_booking(db: Database, payload: BookingRequest, user: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a booking request and return the vehicle plus the priced booking data."""
    start, end = as_utc(payload.start_date), as_utc(payload.end_date)
    validate_booking_dates(start, end)

    vehicle = db["vehicle"].find_one({"_id": parse_object_id(payload.vehicle_id, "vehicle id")})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    if find_conflicting_booking(db, vehicle["_id"], start, end):
        raise HTTPException(status_code=400, detail="Vehicle is already booked for the selected dates")

    total_days = rental_days(start, end)
    amounts = calculate_booking_amount(total_days, vehicle["price_per_day"])
    details = payload.customer_details or CustomerDetails(
        name=user["name"], email=user["email"], phone=user.get("phone") or "",
    )
    booking = Booking(
        customer_id=user["_id"],
        vehicle_id=vehicle["_id"],
        start_date=start,
        end_date=end,
        total_days=total_days,
        price_per_day=vehicle["price_per_day"],
        total_amount=amounts.total_amount,
        customer_details=details,
        pickup_location=payload.pickup_location,
        dropoff_location=payload.dropoff_location,
        special_requests=payload.special_requests,
        notes=payload.notes,
    )
    return {"vehicle": vehicle, "booking": booking}


def _vehicle_title(vehicle: Dict[str, Any]) -> str:
    return f"{vehicle.get('year')} {vehicle.get('make')} {vehicle.get('model')}"


def _payment_metadata(booking: Booking, user: Dict[str, Any]) -> Dict[str, str]:
    return {
        "vehicleId": str(booking.vehicle_id),
        "customerId": str(user["_id"]),
        "startDate": booking.start_date.isoformat(),
        "endDate": booking.end_date.isoformat(),
        "totalDays": str(booking.total_days),
        "pricePerDay": str(booking.price_per_day),
    }


@router.get("/quote")
def booking_quote(vehicle_id: str = Query(..., alias="vehicleId"),
                  start_date: datetime = Query(..., alias="startDate"),
                  end_date: datetime = Query(..., alias="endDate"),
                  db: Database = Depends(get_db)):
    vehicle = db["vehicle"].find_one({"_id": parse_object_id(vehicle_id, "vehicle id")}, {"price_per_day": 1})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    q = quote(vehicle["price_per_day"], as_utc(start_date), as_utc(end_date))
    return {
        "totalDays": q.total_days,
        "pricePerDay": q.price_per_day,
        "subtotal": q.breakdown.subtotal,
        "tax": q.breakdown.tax,
        "serviceFee": q.breakdown.service_fee,
        "totalAmount": q.breakdown.total_amount,
        "display": {k: format_amount(v) for k, v in q.breakdown._asdict().items()},
    }


@router.post("", status_code=201)
def create_booking(payload: BookingRequest, request: Request, user: dict = Depends(require_roles("customer")),
                   db: Database = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    prepared = prepare_booking(db, payload, user)
    vehicle, booking = prepared["vehicle"], prepared["booking"]

    origin = (request.headers.get("origin") or FRONTEND_URL).rstrip("/")
    session = gateway.create_checkout_session({
        "payment_method_types": ["card"],
        "line_items": [{
            "price_data": {
                "currency": "usd",
                "product_data": {
                    "name": _vehicle_title(vehicle),
                    "description": f"Vehicle rental for {booking.total_days} days",
                    "images": (vehicle.get("images") or [])[:1],
                },
                "unit_amount": to_minor_units(booking.total_amount),
            },
            "quantity": 1,
        }],
        "mode": "payment",
        "success_url": f"{origin}/booking-success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{origin}/vehicles/{vehicle['_id']}",
        "metadata": _payment_metadata(booking, user),
    })

    booking.stripe_session_id = session["id"]
    booking_id = create_document(db, "booking", booking)
    logger.info(f"booking {booking_id} created pending checkout session {session['id']}")

    doc = db["booking"].find_one({"_id": parse_object_id(booking_id)})
    return {
        "message": "Booking created successfully",
        "booking": _populated(db, [doc])[0],
        "stripeSessionUrl": session.get("url"),
        "sessionId": session["id"],
    }


@router.post("/pay-with-card", status_code=201)
def pay_with_card(payload: CardBookingRequest, user: dict = Depends(require_roles("customer")),
                  db: Database = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    prepared = prepare_booking(db, payload, user)
    vehicle, booking = prepared["vehicle"], prepared["booking"]

    card = db["paymentmethod"].find_one({"user_id": user["_id"],
                                         "stripe_payment_method_id": payload.payment_method_id})
    if not card:
        raise HTTPException(status_code=404, detail="Saved card not found")

    customer_id = get_or_create_customer(db, gateway, user)
    try:
        intent = gateway.create_payment_intent({
            "amount": to_minor_units(booking.total_amount),
            "currency": "usd",
            "customer": customer_id,
            "payment_method": payload.payment_method_id,
            "confirm": True,
            "off_session": True,
            "description": f"Vehicle rental: {_vehicle_title(vehicle)} for {booking.total_days} days",
            "metadata": _payment_metadata(booking, user),
        })
    except PaymentError as e:
        if e.requires_authentication:
            return JSONResponse(status_code=402, content={
                "detail": "Payment requires authentication", "paymentIntent": e.payment_intent,
            })
        raise

    if intent.get("status") != "succeeded":
        return JSONResponse(status_code=400, content={"detail": "Payment failed", "paymentIntent": intent})

    booking.payment_status = "paid"
    booking.status = "confirmed"
    booking.payment_intent_id = intent["id"]
    booking_id = create_document(db, "booking", booking)
    logger.info(f"booking {booking_id} created and paid with saved card")

    doc = db["booking"].find_one({"_id": parse_object_id(booking_id)})
    return {"message": "Booking created and paid successfully", "booking": _populated(db, [doc])[0]}


@router.post("/webhook")
async def provider_webhook(request: Request, db: Database = Depends(get_db)):
    payload = await request.body()
    if not STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET not configured - webhook signature verification skipped")
        try:
            event = json.loads(payload)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
    else:
        try:
            event = construct_webhook_event(payload, request.headers.get("stripe-signature", ""),
                                            STRIPE_WEBHOOK_SECRET)
        except (PaymentError, ValueError) as e:
            logger.warning(f"webhook signature verification failed: {e}")
            raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    handle_provider_event(db, event)
    return {"received": True}


@router.get("/payment-status/{session_id}")
def payment_status(session_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db),
                   gateway: StripeGateway = Depends(get_gateway)):
    session = gateway.retrieve_checkout_session(session_id)
    booking = booking_by_session(db, session_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    if booking.get("payment_status") == "pending" and session.get("payment_status") == "paid":
        confirm_booking_payment(db, booking, session.get("payment_intent"))

    return {
        "paymentStatus": session.get("payment_status"),
        "bookingStatus": booking.get("status"),
        "booking": _populated(db, [booking])[0],
        "sessionData": {
            "id": session.get("id"),
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
            "payment_status": session.get("payment_status"),
        },
    }


@router.post("/confirm/{booking_id}")
def confirm_booking(booking_id: str, user: dict = Depends(require_roles("customer")),
                    db: Database = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    booking = _load_booking(db, booking_id)
    if booking.get("customer_id") != user["_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to confirm this booking")
    if not booking.get("stripe_session_id"):
        raise HTTPException(status_code=400, detail="No payment session found for this booking")

    session = gateway.retrieve_checkout_session(booking["stripe_session_id"])
    if session.get("payment_status") != "paid":
        return JSONResponse(status_code=400, content={
            "detail": "Payment not completed", "paymentStatus": session.get("payment_status"),
        })
    confirm_booking_payment(db, booking, session.get("payment_intent"))
    return {"message": "Booking confirmed successfully", "booking": _populated(db, [booking])[0]}


@router.get("")
def list_bookings(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    filt: Dict[str, Any] = {}
    role = role_of(user)
    if role == "customer":
        filt["customer_id"] = user["_id"]
    elif role == "seller":
        vehicle_ids = [v["_id"] for v in db["vehicle"].find({"seller_id": user["_id"]}, {"_id": 1})]
        filt["vehicle_id"] = {"$in": vehicle_ids}
    # admin and branch-manager see everything
    docs = list(db["booking"].find(filt).sort([("created_at", -1)]))
    return _populated(db, docs)


@router.get("/{booking_id}")
def get_booking(booking_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    booking = _populated(db, [_load_booking(db, booking_id)])[0]
    vehicle = booking.get("vehicle") or {}
    role = role_of(user)
    has_access = (
        role in ("admin", "branch-manager")
        or booking.get("customer_id") == str(user["_id"])
        or (role == "seller" and vehicle.get("seller_id") == str(user["_id"]))
    )
    if not has_access:
        raise HTTPException(status_code=403, detail="Access denied")
    return booking


@router.put("/{booking_id}/status")
def update_booking_status(booking_id: str, payload: StatusUpdate,
                          user: dict = Depends(require_roles("branch-manager", "admin")),
                          db: Database = Depends(get_db)):
    booking = _load_booking(db, booking_id)
    update: Dict[str, Any] = {"status": payload.status, "approved_by": user["_id"], "updated_at": utcnow()}
    if payload.status == "cancelled":
        update["cancelled_at"] = utcnow()
    db["booking"].update_one({"_id": booking["_id"]}, {"$set": update})
    booking.update(update)
    logger.info(f"booking {booking['_id']} status set to {payload.status} by {user['_id']}")
    return {"message": "Booking status updated successfully", "booking": _populated(db, [booking])[0]}


@router.put("/{booking_id}/update")
def update_booking(booking_id: str, payload: BookingUpdate, user: dict = Depends(require_roles("customer")),
                   db: Database = Depends(get_db)):
    booking = _own_booking(db, booking_id, user)
    if booking.get("status") not in ("pending", "confirmed"):
        raise HTTPException(
            status_code=400,
            detail="Cannot update booking in current status. Only pending or confirmed bookings can be updated.",
        )

    update = payload.model_dump(include={"pickup_location", "dropoff_location", "special_requests"},
                                exclude_none=True)
    for key in ("name", "email", "phone"):
        value = (payload.customer_details or {}).get(key)
        if value:
            update[f"customer_details.{key}"] = value
    update["updated_at"] = utcnow()

    db["booking"].update_one({"_id": booking["_id"]}, {"$set": update})
    updated = db["booking"].find_one({"_id": booking["_id"]})
    return {"message": "Booking updated successfully", "booking": _populated(db, [updated])[0]}


@router.put("/{booking_id}/cancel")
def cancel_booking(booking_id: str, payload: Optional[CancelRequest] = None,
                   user: dict = Depends(require_roles("customer")), db: Database = Depends(get_db)):
    booking = _own_booking(db, booking_id, user)
    if booking.get("status") in ("active", "completed"):
        raise HTTPException(status_code=400, detail="Cannot cancel active or completed booking")

    update: Dict[str, Any] = {"status": "cancelled", "cancelled_at": utcnow(), "updated_at": utcnow()}
    if payload and payload.reason:
        update["cancel_reason"] = payload.reason
    db["booking"].update_one({"_id": booking["_id"]}, {"$set": update})
    booking.update(update)
    return {"message": "Booking cancelled successfully", "booking": serialize_doc(booking)}


@router.delete("/{booking_id}")
def delete_booking(booking_id: str, user: dict = Depends(require_roles("customer")),
                   db: Database = Depends(get_db)):
    booking = _own_booking(db, booking_id, user)
    if booking.get("status") not in ("cancelled", "pending", "confirmed"):
        raise HTTPException(
            status_code=400,
            detail="Cannot delete booking in current status. Only cancelled, pending, or confirmed bookings can be deleted.",
        )
    db["booking"].delete_one({"_id": booking["_id"]})
    return {"message": "Booking deleted successfully"}
