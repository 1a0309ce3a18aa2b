import logging
from typing import Any, Dict, List

import stripe

from config import Settings
from errors import CheckoutError, ValidationError
from models import CheckoutItem

logger = logging.getLogger(__name__)

SUCCESS_PATH = "/pages/success.html?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/pages/cart.html"
# Stripe caps metadata values at 500 characters
METADATA_VALUE_LIMIT = 500


def parse_items(payload: Any) -> List[CheckoutItem]:
    items = payload.get("items") if isinstance(payload, dict) else None
    if not items or not isinstance(items, list):
        raise ValidationError("No items provided")
    return [CheckoutItem.from_dict(raw, index) for index, raw in enumerate(items)]


def build_line_items(items: List[CheckoutItem], default_currency: str) -> List[Dict[str, Any]]:
    line_items = []
    for item in items:
        product_data: Dict[str, Any] = {
            "name": item.name,
            "metadata": {"product_id": str(item.id)},
        }
        if item.description:
            product_data["description"] = item.description
        line_items.append({
            "price_data": {
                "currency": item.currency or default_currency,
                "product_data": product_data,
                "unit_amount": item.unit_amount,
            },
            "quantity": item.quantity,
        })
    return line_items


def product_ids_metadata(items: List[CheckoutItem]) -> str:
    joined = ",".join(str(item.id) for item in items)
    if len(joined) > METADATA_VALUE_LIMIT:
        raise ValidationError("Too many items for a single checkout")
    return joined


def _redirect_url(payload: Dict[str, Any], key: str, settings: Settings, path: str) -> str:
    value = payload.get(key)
    if not value:
        return settings.redirect_url(path)
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def create_checkout_session(payload: Any, settings: Settings) -> Dict[str, str]:
    """Create a hosted Stripe Checkout Session for the posted cart."""
    settings.require("stripe_secret_key")
    items = parse_items(payload)

    success_url = _redirect_url(payload, "successUrl", settings, SUCCESS_PATH)
    cancel_url = _redirect_url(payload, "cancelUrl", settings, CANCEL_PATH)
    product_ids = product_ids_metadata(items)

    try:
        session = stripe.checkout.Session.create(
            api_key=settings.stripe_secret_key,
            payment_method_types=["card"],
            mode="payment",
            line_items=build_line_items(items, settings.currency),
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"product_ids": product_ids},
        )
    except stripe.StripeError as exc:
        logger.error(
            "Stripe session creation error: status=%s request_id=%s %s",
            exc.http_status, exc.request_id, exc,
        )
        raise CheckoutError(exc.user_message or str(exc) or "Internal server error")

    logger.info("Created checkout session %s for products %s", session.id, product_ids)
    return {"url": session.url, "id": session.id}
