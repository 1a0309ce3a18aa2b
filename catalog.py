"""Catalog storage, reconciliation and read-side helpers.

The catalog is one JSON array of product records. It lives either in a
GitHub repository (read and committed through the contents API) or, for
single-host deployments, in a file on local disk. Both backends hand out a
revision token with every read and refuse a write whose token is stale.
"""

import base64
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from config import Settings
from errors import CatalogConflictError, CatalogStoreError
from models import Product

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"EUR": "€", "GBP": "£", "USD": "$"}

# one lock per catalog file, shared by every LocalCatalogStore on that path
_PATH_LOCKS: Dict[str, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _path_lock(path: str) -> threading.Lock:
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(path, threading.Lock())


@dataclass
class CatalogDocument:
    records: List[Dict[str, Any]]
    revision: str


def dump_catalog(records: List[Dict[str, Any]]) -> str:
    return json.dumps(records, indent=2, ensure_ascii=False) + "\n"


def parse_catalog(text: str) -> List[Dict[str, Any]]:
    try:
        records = json.loads(text)
    except ValueError as exc:
        raise CatalogStoreError(f"Catalog is not valid JSON: {exc}")
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise CatalogStoreError("Catalog must be a JSON array of product objects")
    return records


class GitHubCatalogStore:
    """Catalog file in a GitHub repository, via the REST contents API."""

    def __init__(self, token, owner, repo, path, branch="main",
                 api_url="https://api.github.com", timeout=8.0, session=None):
        self.owner = owner
        self.repo = repo
        self.path = path.lstrip("/")
        self.branch = branch
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubCatalogStore":
        settings.require("github_token", "github_owner", "github_repo")
        return cls(
            token=settings.github_token,
            owner=settings.github_owner,
            repo=settings.github_repo,
            path=settings.catalog_path,
            branch=settings.github_branch,
            api_url=settings.github_api_url,
            timeout=settings.http_timeout,
        )

    @property
    def contents_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/contents/{self.path}"

    def _request(self, method: str, action: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = self.session.request(method, self.contents_url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("GitHub %s failed: %s", action, exc)
            raise CatalogStoreError(f"Failed to {action} catalog on GitHub: {exc}")

        if resp.ok:
            return resp.json()

        detail = resp.text
        try:
            message = resp.json().get("message") or ""
        except ValueError:
            message = ""
        logger.error("GitHub %s failed: %s %s", action, resp.status_code, detail)
        summary = f"Failed to {action} catalog on GitHub"
        if message:
            summary = f"{summary}: {message}"
        # 409 is the documented sha conflict; older API versions answer 422
        if resp.status_code == 409 or (resp.status_code == 422 and "does not match" in message):
            raise CatalogConflictError(summary, upstream_status=resp.status_code, detail=detail)
        raise CatalogStoreError(summary, upstream_status=resp.status_code, detail=detail)

    def read(self) -> CatalogDocument:
        data = self._request("GET", "fetch", params={"ref": self.branch})
        if not isinstance(data, dict) or "content" not in data or "sha" not in data:
            raise CatalogStoreError(f"Unexpected GitHub contents response for {self.path}")
        text = base64.b64decode(data["content"]).decode("utf-8")
        return CatalogDocument(records=parse_catalog(text), revision=data["sha"])

    def write(self, records: List[Dict[str, Any]], revision: str, message: str) -> str:
        encoded = base64.b64encode(dump_catalog(records).encode("utf-8")).decode("ascii")
        data = self._request("PUT", "commit", json={
            "message": message,
            "content": encoded,
            "sha": revision,
            "branch": self.branch,
        })
        return (data.get("content") or {}).get("sha", "")


class LocalCatalogStore:
    """Catalog file on local disk; the revision is the SHA-256 of its bytes."""

    def __init__(self, path):
        self.path = os.path.abspath(path)
        self._lock = _path_lock(self.path)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalCatalogStore":
        settings.require("catalog_path")
        return cls(settings.catalog_path)

    def _load(self):
        try:
            with open(self.path, "rb") as f:
                raw = f.read()
        except OSError as exc:
            raise CatalogStoreError(f"Failed to read catalog {self.path}: {exc}")
        return raw, hashlib.sha256(raw).hexdigest()

    def read(self) -> CatalogDocument:
        raw, revision = self._load()
        return CatalogDocument(records=parse_catalog(raw.decode("utf-8")), revision=revision)

    def write(self, records: List[Dict[str, Any]], revision: str, message: str) -> str:
        payload = dump_catalog(records).encode("utf-8")
        with self._lock:
            _, current = self._load()
            if current != revision:
                raise CatalogConflictError(
                    f"Catalog {self.path} changed since it was read",
                    upstream_status=409,
                )
            directory = os.path.dirname(self.path)
            fd, tmp = tempfile.mkstemp(dir=directory, prefix=".catalog-", suffix=".json")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp, self.path)
            except OSError as exc:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise CatalogStoreError(f"Failed to write catalog {self.path}: {exc}")
        logger.info("Wrote catalog %s (%s)", self.path, message)
        return hashlib.sha256(payload).hexdigest()


def build_store(settings: Settings):
    if settings.catalog_backend == "local":
        return LocalCatalogStore.from_settings(settings)
    return GitHubCatalogStore.from_settings(settings)


def mark_products_sold(store, product_ids: Iterable[str], session_id: str = "") -> List[str]:
    """Flip `available` off for every catalog record in `product_ids`.

    Returns the ids whose record changed. Nothing is written when no record
    changed, so a redelivered event for products already sold is a no-op.
    """
    wanted = [str(pid) for pid in product_ids]
    doc = store.read()

    changed = []
    for record in doc.records:
        pid = str(record.get("id"))
        if pid not in wanted:
            continue
        if record.get("available") is False:
            logger.info("Product %s already marked sold (session %s)", pid, session_id)
            continue
        record["available"] = False
        changed.append(pid)

    if not changed:
        logger.info("No available products matched ids %s; skipping commit", ", ".join(wanted))
        return []

    message = f"Mark products as sold: {', '.join(changed)}"
    store.write(doc.records, doc.revision, message)
    logger.info("Marked products as sold: %s (session %s)", ", ".join(changed), session_id)
    return changed


class CatalogCache:
    """Products loaded once and reused until `ttl` seconds pass or `invalidate()`."""

    def __init__(self, loader: Callable[[], List[Dict[str, Any]]], ttl: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._products: Optional[List[Product]] = None
        self._loaded_at = 0.0

    def _expired(self) -> bool:
        if self._products is None:
            return True
        if self._ttl is None:
            return False
        return self._clock() - self._loaded_at >= self._ttl

    def products(self) -> List[Product]:
        with self._lock:
            if self._expired():
                records = self._loader()
                self._products = [Product.from_dict(r) for r in records]
                self._loaded_at = self._clock()
                logger.info("Loaded %d products into catalog cache", len(self._products))
            return list(self._products)

    def invalidate(self) -> None:
        with self._lock:
            self._products = None


def available_products(products: List[Product]) -> List[Product]:
    return [p for p in products if p.available is not False]


def featured_products(products: List[Product]) -> List[Product]:
    return [p for p in products if p.featured is True and p.available is not False]


def find_by_id(products: List[Product], product_id) -> Optional[Product]:
    return next((p for p in products if str(p.id) == str(product_id)), None)


def find_by_slug(products: List[Product], slug: str) -> Optional[Product]:
    return next((p for p in products if p.slug == slug), None)


def filter_by(products: List[Product], attribute: str, value: Optional[str]) -> List[Product]:
    if not value or value.lower() == "all":
        return products
    return [p for p in products if (getattr(p, attribute) or "").lower() == value.lower()]


def distinct_values(products: List[Product], attribute: str) -> List[str]:
    return sorted({getattr(p, attribute) for p in products if getattr(p, attribute)})


def format_price(price, currency: str = "EUR") -> str:
    code = (currency or "EUR").upper()
    whole = Decimal(str(price)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    amount = f"{int(whole):,}"
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{amount}"
    return f"{code} {amount}"
