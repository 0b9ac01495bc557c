"""
Payment provider integration (Stripe, through its Python SDK) and the payment
side of the booking lifecycle.

A booking moves pending -> paid/confirmed when the provider reports a
successful charge, and pending -> failed/cancelled when the checkout expires
or the charge fails. Those two transitions live here so that the webhook, the
polling endpoints and the verify_payment script all apply them the same way.
"""

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.database import Database

from auth import require_roles
from database import as_utc, create_document, get_db, populate, serialize_doc, utcnow
from finance import payment_history_stats
from listing import DEFAULT_USER_LIMIT, Page, date_range
from schemas import ApiModel, PaymentMethod

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "").strip()
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()
WEBHOOK_TOLERANCE_SECONDS = 300

logger = logging.getLogger("rental.payments")

router = APIRouter(prefix="/payments", tags=["payments"])


class PaymentError(Exception):
    def __init__(self, message: str, code: Optional[str] = None, payment_intent: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.payment_intent = payment_intent

    @property
    def requires_authentication(self) -> bool:
        return self.code == "authentication_required" or self.payment_intent is not None


def construct_webhook_event(payload: bytes, header: str, secret: str,
                            tolerance: int = WEBHOOK_TOLERANCE_SECONDS) -> dict:
    """Check a `Stripe-Signature` header and return the decoded event.

    Raises PaymentError for a bad signature and ValueError for a body that is
    not JSON.
    """
    try:
        event = stripe.Webhook.construct_event(payload, header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        raise PaymentError(e.user_message or str(e)) from e
    return event.to_dict()


class StripeGateway:
    """Thin wrapper over the stripe SDK that returns plain dicts and raises PaymentError."""

    def __init__(self, secret_key: str):
        self.api_key = secret_key

    def _call(self, action: str, method: Callable[..., Any], *args: Any, **params: Any) -> Any:
        try:
            return method(*args, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            err = (e.json_body or {}).get("error") or {}
            logger.error(f"stripe {action} failed HTTP_{e.http_status} error={err or e}")
            raise PaymentError(e.user_message or str(e) or "Payment provider error",
                               e.code or err.get("code"), err.get("payment_intent")) from e

    def create_customer(self, name: str, email: str, metadata: Dict[str, str]) -> dict:
        customer = self._call("create customer", stripe.Customer.create, name=name, email=email, metadata=metadata)
        return customer.to_dict()

    def set_default_payment_method(self, customer_id: str, payment_method_id: Optional[str]) -> dict:
        customer = self._call("update customer", stripe.Customer.modify, customer_id,
                              invoice_settings={"default_payment_method": payment_method_id or ""})
        return customer.to_dict()

    def create_checkout_session(self, params: Dict[str, Any]) -> dict:
        return self._call("create checkout session", stripe.checkout.Session.create, **params).to_dict()

    def retrieve_checkout_session(self, session_id: str) -> dict:
        return self._call("retrieve checkout session", stripe.checkout.Session.retrieve, session_id).to_dict()

    def create_payment_intent(self, params: Dict[str, Any]) -> dict:
        return self._call("create payment intent", stripe.PaymentIntent.create, **params).to_dict()

    def create_setup_intent(self, customer_id: str) -> dict:
        intent = self._call("create setup intent", stripe.SetupIntent.create, customer=customer_id,
                            payment_method_types=["card"], usage="off_session")
        return intent.to_dict()

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict:
        pm = self._call("attach payment method", stripe.PaymentMethod.attach, payment_method_id, customer=customer_id)
        return pm.to_dict()

    def detach_payment_method(self, payment_method_id: str) -> dict:
        return self._call("detach payment method", stripe.PaymentMethod.detach, payment_method_id).to_dict()

    def list_payment_methods(self, customer_id: str) -> List[dict]:
        methods = self._call("list payment methods", stripe.PaymentMethod.list, customer=customer_id, type="card")
        return [pm.to_dict() for pm in methods.data]


_gateway: Optional[StripeGateway] = StripeGateway(STRIPE_SECRET_KEY) if STRIPE_SECRET_KEY else None
if _gateway is None:
    logger.warning("STRIPE_SECRET_KEY not set; payment routes are disabled")


def get_gateway() -> StripeGateway:
    if _gateway is None:
        raise HTTPException(status_code=503, detail="Payment provider not configured")
    return _gateway


# Booking payment transitions

def confirm_booking_payment(db: Database, booking: Dict[str, Any], payment_intent_id: Optional[str],
                            mark_unavailable: bool = False) -> Dict[str, Any]:
    update = {
        "payment_status": "paid",
        "payment_intent_id": payment_intent_id,
        "status": "confirmed",
        "confirmed_at": utcnow(),
        "updated_at": utcnow(),
    }
    db["booking"].update_one({"_id": booking["_id"]}, {"$set": update})
    if mark_unavailable:
        # separate write, no transaction with the booking update
        db["vehicle"].update_one({"_id": booking["vehicle_id"]}, {"$set": {"is_available": False}})
    booking.update(update)
    logger.info(f"payment confirmed for booking {booking['_id']}")
    return booking


def fail_booking_payment(db: Database, booking: Dict[str, Any]) -> Dict[str, Any]:
    update = {"payment_status": "failed", "status": "cancelled", "updated_at": utcnow()}
    db["booking"].update_one({"_id": booking["_id"]}, {"$set": update})
    booking.update(update)
    logger.info(f"payment failed for booking {booking['_id']}")
    return booking


def handle_provider_event(db: Database, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply a provider webhook event; returns the booking it changed, if any."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info(f"received webhook event: {event_type}")

    if event_type == "checkout.session.completed":
        booking = db["booking"].find_one({"stripe_session_id": obj.get("id")})
        if not booking:
            logger.warning(f"no booking found for session {obj.get('id')}")
            return None
        return confirm_booking_payment(db, booking, obj.get("payment_intent"))

    if event_type in ("checkout.session.expired", "payment_intent.payment_failed"):
        session_id = obj.get("id") or (obj.get("metadata") or {}).get("sessionId")
        booking = db["booking"].find_one({"stripe_session_id": session_id})
        if booking:
            return fail_booking_payment(db, booking)
        return None

    logger.warning(f"unhandled event type {event_type}")
    return None


def get_or_create_customer(db: Database, gateway: StripeGateway, user: Dict[str, Any]) -> str:
    if user.get("stripe_customer_id"):
        return user["stripe_customer_id"]
    customer = gateway.create_customer(user["name"], user["email"], {"userId": str(user["_id"])})
    # bypasses role validation on purpose: only the provider id changes
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"stripe_customer_id": customer["id"]}})
    user["stripe_customer_id"] = customer["id"]
    return customer["id"]


# Saved cards

class AddCardRequest(ApiModel):
    payment_method_id: str
    set_default: bool = False


def _card_doc(pm: Dict[str, Any]) -> Dict[str, Any]:
    card = pm.get("card") or {}
    return {
        "brand": card.get("brand"),
        "last4": card.get("last4"),
        "exp_month": card.get("exp_month"),
        "exp_year": card.get("exp_year"),
        "country": card.get("country"),
        "funding": card.get("funding"),
    }


@router.post("/setup-intent")
def create_setup_intent(user: dict = Depends(require_roles("customer")), db: Database = Depends(get_db),
                        gateway: StripeGateway = Depends(get_gateway)):
    customer_id = get_or_create_customer(db, gateway, user)
    setup_intent = gateway.create_setup_intent(customer_id)
    return {"clientSecret": setup_intent.get("client_secret")}


@router.post("/add-card", status_code=201)
def add_card(payload: AddCardRequest, user: dict = Depends(require_roles("customer")),
             db: Database = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    customer_id = get_or_create_customer(db, gateway, user)
    attached = gateway.attach_payment_method(payload.payment_method_id, customer_id)
    existing = gateway.list_payment_methods(customer_id)

    should_set_default = payload.set_default or len(existing) == 1
    if should_set_default:
        gateway.set_default_payment_method(customer_id, payload.payment_method_id)
        db["paymentmethod"].update_many({"user_id": user["_id"], "is_default": True},
                                        {"$set": {"is_default": False}})

    doc = PaymentMethod(
        user_id=user["_id"],
        stripe_customer_id=customer_id,
        stripe_payment_method_id=attached["id"],
        is_default=should_set_default,
        **_card_doc(attached),
    ).model_dump()
    existing_doc = db["paymentmethod"].find_one({"stripe_payment_method_id": attached["id"]})
    if existing_doc:
        db["paymentmethod"].update_one({"_id": existing_doc["_id"]}, {"$set": {**doc, "updated_at": utcnow()}})
    else:
        create_document(db, "paymentmethod", doc)
    saved = db["paymentmethod"].find_one({"stripe_payment_method_id": attached["id"]})
    return {"message": "Card saved successfully", "paymentMethod": serialize_doc(saved),
            "defaultSet": should_set_default}


@router.get("/cards")
def list_cards(user: dict = Depends(require_roles("customer")), db: Database = Depends(get_db)):
    cursor = db["paymentmethod"].find({"user_id": user["_id"]}).sort([("is_default", -1), ("created_at", -1)])
    return {"paymentMethods": [serialize_doc(d) for d in cursor]}


def _owned_card(db: Database, user: dict, payment_method_id: str) -> Dict[str, Any]:
    doc = db["paymentmethod"].find_one({"user_id": user["_id"], "stripe_payment_method_id": payment_method_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Card not found")
    return doc


@router.post("/cards/{payment_method_id}/default")
def set_default_card(payment_method_id: str, user: dict = Depends(require_roles("customer")),
                     db: Database = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    customer_id = get_or_create_customer(db, gateway, user)
    doc = _owned_card(db, user, payment_method_id)
    gateway.set_default_payment_method(customer_id, payment_method_id)
    db["paymentmethod"].update_many({"user_id": user["_id"], "is_default": True}, {"$set": {"is_default": False}})
    db["paymentmethod"].update_one({"_id": doc["_id"]}, {"$set": {"is_default": True}})
    return {"message": "Default card updated"}


@router.delete("/cards/{payment_method_id}")
def delete_card(payment_method_id: str, user: dict = Depends(require_roles("customer")),
                db: Database = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    customer_id = get_or_create_customer(db, gateway, user)
    doc = _owned_card(db, user, payment_method_id)
    gateway.detach_payment_method(payment_method_id)
    db["paymentmethod"].delete_one({"_id": doc["_id"]})

    if doc.get("is_default"):
        next_card = db["paymentmethod"].find_one({"user_id": user["_id"]}, sort=[("created_at", 1)])
        if next_card:
            gateway.set_default_payment_method(customer_id, next_card["stripe_payment_method_id"])
            db["paymentmethod"].update_one({"_id": next_card["_id"]}, {"$set": {"is_default": True}})
        else:
            gateway.set_default_payment_method(customer_id, None)
    return {"message": "Card deleted"}


# Payment history

def _card_summary(card: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not card:
        return None
    return {
        "brand": card.get("brand") or "unknown",
        "last4": card.get("last4") or "****",
        "expMonth": card.get("exp_month") or 0,
        "expYear": card.get("exp_year") or 0,
        "funding": card.get("funding") or "unknown",
    }


def _matches_search(entry: Dict[str, Any], term: str) -> bool:
    vehicle = entry.get("vehicle") or {}
    haystack = [
        str(vehicle.get("make") or ""),
        str(vehicle.get("model") or ""),
        str(vehicle.get("year") or ""),
        str(vehicle.get("license_plate") or ""),
        str(entry.get("payment_status") or ""),
        str(entry.get("total_amount") or ""),
    ]
    return any(term in h.lower() for h in haystack)


@router.get("/history")
def payment_history(
    page: int = Query(1),
    limit: int = Query(DEFAULT_USER_LIMIT),
    status: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search: Optional[str] = Query(None),
    card_type: Optional[str] = Query(None, alias="cardType"),
    user: dict = Depends(require_roles("customer")),
    db: Database = Depends(get_db),
):
    window = Page.build(page, limit, DEFAULT_USER_LIMIT)

    filt: Dict[str, Any] = {"customer_id": user["_id"]}
    if status:
        filt["payment_status"] = status
    created = date_range(as_utc(start_date) if start_date else None, as_utc(end_date) if end_date else None)
    if created:
        filt["created_at"] = created

    bookings = list(db["booking"].find(filt).sort([("created_at", -1)]))
    populate(db, bookings, "vehicle_id", "vehicle", ["make", "model", "year", "license_plate", "images"],
             target="vehicle")

    # card details come from the customer's saved cards, default first
    saved = db["paymentmethod"].find_one({"user_id": user["_id"]}, sort=[("is_default", -1), ("created_at", -1)])
    card = _card_summary(saved)
    for b in bookings:
        b["payment_method"] = card

    if search and search.strip():
        term = search.strip().lower()
        bookings = [b for b in bookings if _matches_search(b, term)]
    if card_type and card_type.strip():
        wanted = card_type.strip().lower()
        bookings = [b for b in bookings if ((b["payment_method"] or {}).get("brand") or "").lower() == wanted]

    total = len(bookings)
    shown = bookings[window.skip:window.skip + window.limit]
    return {
        "paymentHistory": [serialize_doc(b) for b in shown],
        "pagination": {
            "currentPage": window.page,
            "totalPages": window.total_pages(total),
            "totalItems": total,
            "itemsPerPage": window.limit,
        },
        "stats": payment_history_stats(db, user["_id"]),
    }


def booking_by_session(db: Database, session_id: str) -> Optional[Dict[str, Any]]:
    return db["booking"].find_one({"stripe_session_id": session_id})

