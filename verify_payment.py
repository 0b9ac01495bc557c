"""
Verify a checkout session against the payment provider and confirm its booking.

Usage: python verify_payment.py <session_id>

Used when a webhook was missed: asks the provider for the session and, if it
is paid while the booking is still pending, confirms the booking and takes
the vehicle off the market.
"""

import argparse
import logging
import sys
from typing import Any, Dict, Optional

from pymongo.database import Database

import database
import payments
from payments import StripeGateway, booking_by_session, confirm_booking_payment

logger = logging.getLogger("rental.verify_payment")


def verify(db: Database, gateway: StripeGateway, session_id: str) -> Dict[str, Any]:
    booking = booking_by_session(db, session_id)
    if not booking:
        logger.error(f"no booking found for session {session_id}")
        return {"outcome": "not_found", "booking": None}

    session = gateway.retrieve_checkout_session(session_id)
    logger.info(f"session {session_id} payment_status={session.get('payment_status')} "
                f"booking {booking['_id']} payment_status={booking.get('payment_status')}")

    if session.get("payment_status") == "paid" and booking.get("payment_status") == "pending":
        confirm_booking_payment(db, booking, session.get("payment_intent"), mark_unavailable=True)
        return {"outcome": "confirmed", "booking": booking}
    if session.get("payment_status") == "paid":
        return {"outcome": "already_processed", "booking": booking}
    return {"outcome": "unpaid", "booking": booking}


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Verify a checkout session and confirm its booking")
    parser.add_argument("session_id", help="checkout session id (cs_...)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="[RENTAL] %(levelname)s %(name)s: %(message)s")
    if database.db is None:
        logger.error("DATABASE_URL not set")
        return 1
    if not payments.STRIPE_SECRET_KEY:
        logger.error("STRIPE_SECRET_KEY not set")
        return 1

    result = verify(database.db, StripeGateway(payments.STRIPE_SECRET_KEY), args.session_id)
    print(result["outcome"])
    return 0 if result["outcome"] in ("confirmed", "already_processed") else 1


if __name__ == "__main__":
    sys.exit(main())
