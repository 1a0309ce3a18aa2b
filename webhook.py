"""Stripe webhook: mark purchased antiques as sold once payment completes."""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import stripe

from catalog import CatalogCache, mark_products_sold
from config import Settings
from errors import CatalogStoreError, ConfigError

logger = logging.getLogger(__name__)

COMPLETED_EVENT = "checkout.session.completed"

RECEIVED = {"received": True}


def verify_event(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """Check the Stripe-Signature header and return the decoded event.

    Raises ValueError for anything that must be rejected with a 400.
    """
    if not signature:
        raise ValueError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise ValueError("Payload is not valid UTF-8")
    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE)
    except stripe.SignatureVerificationError as exc:
        raise ValueError(str(exc))
    event = json.loads(body)
    if not isinstance(event, dict):
        raise ValueError("Event payload must be a JSON object")
    return event


def product_ids_from_session(session: Dict[str, Any]) -> List[str]:
    metadata = session.get("metadata") or {}
    raw = metadata.get("product_ids") or ""
    return [pid.strip() for pid in str(raw).split(",") if pid.strip()]


def handle_webhook(payload: bytes, signature: Optional[str], settings: Settings,
                   store_factory, cache: Optional[CatalogCache] = None) -> Tuple[Dict[str, Any], int]:
    settings.require("stripe_webhook_secret")

    try:
        event = verify_event(payload, signature, settings.stripe_webhook_secret)
    except ValueError as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        return {"error": f"Webhook Error: {exc}"}, 400

    event_type = event.get("type")
    if event_type != COMPLETED_EVENT:
        logger.info("Ignoring webhook event %s (%s)", event.get("id"), event_type)
        return RECEIVED, 200

    session = (event.get("data") or {}).get("object") or {}
    session_id = session.get("id", "")
    product_ids = product_ids_from_session(session)
    logger.info(
        "%s received: session=%s products=%s github_token_set=%s",
        COMPLETED_EVENT, session_id, ", ".join(product_ids) or "(none)",
        "yes" if settings.github_token else "no",
    )
    if not product_ids:
        return RECEIVED, 200

    try:
        store = store_factory()
        matched = mark_products_sold(store, product_ids, session_id)
    except (CatalogStoreError, ConfigError) as exc:
        logger.error(
            "Error processing webhook for session %s: %s (upstream status=%s detail=%s)",
            session_id, exc, getattr(exc, "upstream_status", None), getattr(exc, "detail", None),
        )
        return {"error": "Failed to process webhook"}, 500

    if matched and cache is not None:
        cache.invalidate()
    return RECEIVED, 200
