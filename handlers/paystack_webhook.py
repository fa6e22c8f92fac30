"""
Paystack Webhook Handler
Reconciles transfer outcomes with payout requests and credits confirmed top-ups
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Request

from database import SessionLocal
from services.container import get_services
from services.paystack_service import PaystackService

logger = logging.getLogger(__name__)

router = APIRouter()


def process_paystack_event(event_type: str, data: Dict[str, Any]) -> str:
    """Apply one verified event; returns what was done"""
    services = get_services()
    session = SessionLocal()
    try:
        if event_type == "transfer.success":
            services.withdrawals.complete_payout_request(session, data.get("reference"))
            return "payout_completed"

        if event_type == "transfer.failed":
            reason = data.get("reason") or "Transfer failed"
            services.withdrawals.fail_payout_request(session, data.get("reference"), reason)
            return "payout_failed"

        if event_type == "transfer.reversed":
            services.withdrawals.fail_payout_request(session, data.get("reference"), "Transfer reversed")
            return "payout_reversed"

        if event_type == "charge.success":
            return _process_charge_success(session, data)

        logger.debug(f"Unhandled Paystack event: {event_type}")
        return "ignored"
    finally:
        session.close()


def _process_charge_success(session, data: Dict[str, Any]) -> str:
    metadata = data.get("metadata") or {}
    if isinstance(metadata, str):
        metadata = json.loads(metadata or "{}")

    reference = data.get("reference")
    user_id = metadata.get("user_id")
    if not user_id:
        logger.warning(f"⚠️ PAYSTACK_CHARGE_NO_USER: {reference} missing user_id in metadata")
        return "ignored"

    # amount on the event is in kobo; the credited USD amount was fixed at initialization
    usd_amount = metadata.get("usd_amount")
    if not usd_amount:
        logger.error(f"❌ PAYSTACK_CHARGE_NO_USD_AMOUNT: {reference} - manual intervention required")
        return "ignored"

    get_services().top_ups.credit_top_up(session, user_id, usd_amount, reference, data.get("currency"))
    return "top_up_credited"


@router.post("/paystack/webhook")
async def paystack_webhook(request: Request):
    """
    Handle Paystack event callbacks.

    Processing failures still answer 200 with an error status so Paystack does not
    keep retrying a payload that will fail the same way.
    """
    body = await request.body()
    if not body:
        logger.warning("Empty body in Paystack webhook")
        return {"status": "error", "message": "Empty request body"}

    signature = request.headers.get("x-paystack-signature")
    if not signature:
        logger.critical("🚨 SECURITY_BREACH: No signature header in Paystack webhook")
        return {"status": "error", "message": "Missing webhook signature"}

    if not PaystackService.verify_signature(body, signature):
        logger.critical("🚨 SECURITY_BREACH: Invalid Paystack webhook signature")
        return {"status": "error", "message": "Invalid webhook signature"}

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.error(f"Invalid JSON in Paystack webhook: {e}")
        return {"status": "error", "message": "Invalid JSON format"}

    event_type = payload.get("event")
    data = payload.get("data") or {}
    logger.info(f"🔄 PAYSTACK_WEBHOOK: {event_type} for {data.get('reference')}")

    try:
        outcome = process_paystack_event(event_type, data)
    except Exception as e:
        logger.error(f"❌ PAYSTACK_WEBHOOK: Error processing {event_type}: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}

    logger.info(f"✅ PAYSTACK: Webhook processed - {event_type} ({outcome})")
    return {"status": "success"}


@router.get("/paystack/status")
async def paystack_status() -> Dict[str, Any]:
    """Health check endpoint for Paystack integration"""
    return {
        "status": "operational",
        "service": "Paystack Webhook Handler",
        "configured": get_services().paystack.is_available(),
    }
