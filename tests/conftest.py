import copy
import hashlib
import hmac
import json
import time

import pytest

from app import create_app
from catalog import CatalogDocument
from config import Settings
from errors import CatalogConflictError

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture()
def settings():
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        currency="eur",
        site_url="https://shop.example",
        github_token="ghp_test",
        github_owner="shop",
        github_repo="website",
    )


class FakeCatalogStore:
    """In-memory catalog with call counters and a revision counter."""

    def __init__(self, records, stale=False):
        self.records = copy.deepcopy(records)
        self.revision = 1
        self.stale = stale
        self.reads = 0
        self.writes = []

    def read(self):
        self.reads += 1
        return CatalogDocument(records=copy.deepcopy(self.records), revision=str(self.revision))

    def write(self, records, revision, message):
        if self.stale or revision != str(self.revision):
            raise CatalogConflictError("Failed to commit catalog on GitHub: sha mismatch", upstream_status=409)
        self.records = copy.deepcopy(records)
        self.revision += 1
        self.writes.append({"records": copy.deepcopy(records), "revision": revision, "message": message})
        return str(self.revision)

    def availability(self):
        return {str(r["id"]): r.get("available") for r in self.records}


@pytest.fixture()
def catalog_records():
    return [
        {"id": "A", "name": "Georgian Ring", "slug": "georgian-ring", "price": 1250, "currency": "EUR",
         "available": True, "featured": True, "period": "Georgian", "style": "Ring"},
        {"id": "B", "name": "Victorian Brooch", "slug": "victorian-brooch", "price": 680.5, "currency": "EUR",
         "available": True, "featured": False, "period": "Victorian", "style": "Brooch"},
        {"id": "C", "name": "Edwardian Pendant", "slug": "edwardian-pendant", "price": 940, "currency": "EUR",
         "available": True, "featured": True, "period": "Edwardian", "style": "Pendant"},
    ]


@pytest.fixture()
def store(catalog_records):
    return FakeCatalogStore(catalog_records)


@pytest.fixture()
def client(settings, store):
    app = create_app(settings=settings, store=store)
    app.testing = True
    return app.test_client()


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def completed_event(product_ids="A,B", event_id="evt_1", session_id="cs_test_1"):
    metadata = {} if product_ids is None else {"product_ids": product_ids}
    return json.dumps({
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "object": "checkout.session", "metadata": metadata}},
    }).encode("utf-8")
