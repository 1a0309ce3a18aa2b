import logging

import stripe
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from catalog import (
    CatalogCache,
    available_products,
    build_store,
    distinct_values,
    featured_products,
    filter_by,
    find_by_id,
    find_by_slug,
    format_price,
)
from checkout import create_checkout_session
from config import Settings, configure_logging, load_settings
from errors import CatalogStoreError, StorefrontError
from webhook import handle_webhook

logger = logging.getLogger(__name__)


def _product_json(product):
    data = product.to_dict()
    data["priceDisplay"] = format_price(product.price, product.currency)
    return data


def create_app(settings: Settings = None, store=None) -> Flask:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.http_timeout)

    stores = [store] if store is not None else []

    # built on first use so a missing credential fails the request, not startup
    def get_store():
        if not stores:
            stores.append(build_store(settings))
        return stores[0]

    cache = CatalogCache(lambda: get_store().read().records, ttl=settings.catalog_cache_ttl)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["catalog_cache"] = cache

    @app.errorhandler(StorefrontError)
    def storefront_error(exc):
        if exc.status >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        return jsonify({"error": exc.message}), exc.status

    @app.errorhandler(CatalogStoreError)
    def catalog_unavailable(exc):
        logger.error("Catalog unavailable: %s", exc.message)
        return jsonify({"error": "Catalog unavailable"}), 502

    @app.errorhandler(404)
    def not_found(exc):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(exc):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(HTTPException)
    def http_error(exc):
        return jsonify({"error": exc.description}), exc.code

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.route("/api/create-checkout-session", methods=["POST"])
    def checkout_session():
        data = request.get_json(silent=True) or {}
        return jsonify(create_checkout_session(data, settings))

    @app.route("/api/webhook", methods=["POST"])
    def webhook_received():
        payload = request.get_data()
        sig_header = request.headers.get("Stripe-Signature")
        body, status = handle_webhook(payload, sig_header, settings, get_store, cache)
        return jsonify(body), status

    @app.route("/api/products")
    def list_products():
        products = available_products(cache.products())
        products = filter_by(products, "period", request.args.get("period"))
        products = filter_by(products, "style", request.args.get("style"))
        return jsonify({"products": [_product_json(p) for p in products]})

    @app.route("/api/products/featured")
    def list_featured():
        return jsonify({"products": [_product_json(p) for p in featured_products(cache.products())]})

    @app.route("/api/products/periods")
    def list_periods():
        return jsonify({"periods": distinct_values(cache.products(), "period")})

    @app.route("/api/products/styles")
    def list_styles():
        return jsonify({"styles": distinct_values(cache.products(), "style")})

    @app.route("/api/products/slug/<slug>")
    def product_by_slug(slug):
        product = find_by_slug(cache.products(), slug)
        if product is None:
            return jsonify({"error": "Product not found"}), 404
        return jsonify(_product_json(product))

    @app.route("/api/products/<product_id>")
    def product_by_id(product_id):
        product = find_by_id(cache.products(), product_id)
        if product is None:
            return jsonify({"error": "Product not found"}), 404
        return jsonify(_product_json(product))

    return app


if __name__ == "__main__":
    create_app().run(port=4242, debug=True)
