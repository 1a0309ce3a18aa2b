import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigError

# Load env vars
load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

SECRET_FIELDS = {"stripe_secret_key", "stripe_webhook_secret", "github_token"}

ENV_NAMES = {
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "currency": "STRIPE_CURRENCY",
    "site_url": "SITE_URL",
    "github_token": "GITHUB_TOKEN",
    "github_owner": "GITHUB_OWNER",
    "github_repo": "GITHUB_REPO",
    "github_branch": "GITHUB_BRANCH",
    "github_api_url": "GITHUB_API_URL",
    "catalog_path": "CATALOG_PATH",
    "catalog_backend": "CATALOG_BACKEND",
}


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "eur"
    site_url: str = ""
    github_token: str = ""
    github_owner: str = ""
    github_repo: str = ""
    github_branch: str = "main"
    github_api_url: str = "https://api.github.com"
    catalog_path: str = "src/data/products.json"
    catalog_backend: str = "github"
    catalog_cache_ttl: Optional[float] = None
    http_timeout: float = 8.0
    log_level: str = "INFO"

    def require(self, *names: str) -> None:
        """Raise ConfigError listing every named setting that is empty."""
        missing = [ENV_NAMES.get(n, n.upper()) for n in names if not getattr(self, n)]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    def redirect_url(self, path: str) -> str:
        self.require("site_url")
        return f"{self.site_url}{path}"

    def __repr__(self) -> str:
        parts = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in SECRET_FIELDS:
                value = "***" if value else ""
            parts.append(f"{f.name}={value!r}")
        return f"Settings({', '.join(parts)})"


def validate_currency(value: Optional[str]) -> str:
    v = (value or "eur").strip().lower()
    if len(v) != 3 or not v.isalpha():
        raise ConfigError(f"Invalid currency code {value!r}: expected ISO 4217 code")
    return v


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _float_env(name: str, default: Optional[float]) -> Optional[float]:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_settings() -> Settings:
    backend = _env("CATALOG_BACKEND", "github").lower()
    if backend not in ("github", "local"):
        raise ConfigError(f"CATALOG_BACKEND must be 'github' or 'local', got {backend!r}")
    return Settings(
        stripe_secret_key=_env("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
        currency=validate_currency(os.getenv("STRIPE_CURRENCY")),
        site_url=_env("SITE_URL").rstrip("/"),
        github_token=_env("GITHUB_TOKEN"),
        github_owner=_env("GITHUB_OWNER"),
        github_repo=_env("GITHUB_REPO"),
        github_branch=_env("GITHUB_BRANCH", "main"),
        github_api_url=_env("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        catalog_path=_env("CATALOG_PATH", "src/data/products.json"),
        catalog_backend=backend,
        catalog_cache_ttl=_float_env("CATALOG_CACHE_TTL", None),
        http_timeout=_float_env("HTTP_TIMEOUT", 8.0),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
