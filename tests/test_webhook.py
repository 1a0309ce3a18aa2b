"""Tests for the Stripe completion webhook."""

import dataclasses
import json
import time

import pytest

from app import create_app
from conftest import FakeCatalogStore, completed_event, sign


def _post(client, payload, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["Stripe-Signature"] = signature or sign(payload)
    return client.post("/api/webhook", data=payload, headers=headers)


class TestSignature:
    def test_invalid_signature_never_touches_store(self, client, store):
        payload = completed_event()

        response = _post(client, payload, signature=sign(payload, secret="whsec_wrong"))

        assert response.status_code == 400
        assert response.get_json()["error"].startswith("Webhook Error:")
        assert store.reads == 0
        assert store.writes == []

    def test_missing_signature(self, client, store):
        response = _post(client, completed_event(), signature=False)

        assert response.status_code == 400
        assert "Missing Stripe-Signature" in response.get_json()["error"]
        assert store.reads == 0

    def test_tampered_body(self, client, store):
        payload = completed_event("A")
        signature = sign(payload)

        response = _post(client, completed_event("A,B,C"), signature=signature)

        assert response.status_code == 400
        assert store.reads == 0

    def test_stale_timestamp(self, client, store):
        payload = completed_event()

        response = _post(client, payload, signature=sign(payload, timestamp=int(time.time()) - 3600))

        assert response.status_code == 400
        assert store.reads == 0

    def test_missing_webhook_secret(self, settings, store):
        settings = dataclasses.replace(settings, stripe_webhook_secret="")
        client = create_app(settings=settings, store=store).test_client()

        response = _post(client, completed_event())

        assert response.status_code == 500
        assert "STRIPE_WEBHOOK_SECRET" in response.get_json()["error"]
        assert store.reads == 0

    def test_wrong_method(self, client):
        assert client.get("/api/webhook").status_code == 405


class TestReconciliation:
    def test_marks_purchased_products_sold(self, client, store):
        response = _post(client, completed_event("A,B"))

        assert response.status_code == 200
        assert response.get_json() == {"received": True}
        assert store.availability() == {"A": False, "B": False, "C": True}
        assert len(store.writes) == 1
        assert store.writes[0]["revision"] == "1"
        assert store.writes[0]["message"] == "Mark products as sold: A, B"

    def test_redelivery_is_idempotent(self, client, store):
        payload = completed_event("A,B")

        first = _post(client, payload)
        after_first = store.availability()
        second = _post(client, payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert store.availability() == after_first == {"A": False, "B": False, "C": True}
        assert len(store.writes) == 1

    def test_unknown_product_skips_write(self, client, store):
        response = _post(client, completed_event("Z"))

        assert response.status_code == 200
        assert store.reads == 1
        assert store.writes == []

    @pytest.mark.parametrize("product_ids", [None, "", " , "])
    def test_no_product_ids_is_a_noop(self, client, store, product_ids):
        response = _post(client, completed_event(product_ids))

        assert response.status_code == 200
        assert response.get_json() == {"received": True}
        assert store.reads == 0

    def test_other_event_types_are_acknowledged(self, client, store):
        payload = json.dumps({
            "id": "evt_2",
            "type": "payment_intent.created",
            "data": {"object": {"id": "pi_1"}},
        }).encode("utf-8")

        response = _post(client, payload)

        assert response.status_code == 200
        assert response.get_json() == {"received": True}
        assert store.reads == 0

    def test_integer_ids_in_catalog_match(self, settings):
        store = FakeCatalogStore([{"id": 1, "name": "Ring", "price": 10, "available": True}])
        client = create_app(settings=settings, store=store).test_client()

        response = _post(client, completed_event("1"))

        assert response.status_code == 200
        assert store.records[0]["available"] is False

    def test_conflicting_write_is_a_server_error(self, settings, catalog_records):
        store = FakeCatalogStore(catalog_records, stale=True)
        client = create_app(settings=settings, store=store).test_client()

        response = _post(client, completed_event("A"))

        assert response.status_code == 500
        assert response.get_json() == {"error": "Failed to process webhook"}
        assert store.availability()["A"] is True

    def test_missing_github_token_is_a_server_error(self, settings):
        settings = dataclasses.replace(settings, github_token="")
        client = create_app(settings=settings).test_client()

        response = _post(client, completed_event("A"))

        assert response.status_code == 500

    def test_successful_write_refreshes_product_listing(self, client, store):
        assert len(client.get("/api/products").get_json()["products"]) == 3

        _post(client, completed_event("A"))

        ids = [p["id"] for p in client.get("/api/products").get_json()["products"]]
        assert ids == ["B", "C"]
