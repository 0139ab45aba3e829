# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
import json as _json
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


def retry_budget(timeout: float, attempts: int, backoff_base: float) -> float:
    """Worst case for one gateway call: every attempt times out, plus the backoff sleeps between them."""
    attempts = max(1, attempts)
    return timeout * attempts + sum(backoff_base * (2 ** i) for i in range(attempts - 1))


def _get_json_map(name: str, default: dict | None = None) -> dict:
    raw = os.getenv(name, "")
    if not raw:
        return default or {}
    try:
        return _json.loads(raw)
    except Exception:
        return default or {}


class Settings:
    # ── Shopify (default "main" account) ─────────────────────────────────────
    SHOPIFY_SHOP_DOMAIN: str = os.getenv("SHOPIFY_SHOP_DOMAIN", "").strip().rstrip("/")
    SHOPIFY_ACCESS_TOKEN: str = os.getenv("SHOPIFY_ACCESS_TOKEN", "")
    SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION", "2024-07")
    SHOPIFY_CHANNEL_CODE: str = os.getenv("SHOPIFY_CHANNEL_CODE", "shopify")

    # Transport policy (retries belong to the gateway, never the orchestrator)
    SHOPIFY_TIMEOUT: float = _get_float("SHOPIFY_TIMEOUT", 20.0)
    SHOPIFY_MAX_ATTEMPTS: int = _get_int("SHOPIFY_MAX_ATTEMPTS", 3)
    SHOPIFY_BACKOFF_BASE: float = _get_float("SHOPIFY_BACKOFF_BASE", 0.5)

    # Extra accounts: {"backup": {"shop_domain": "...", "access_token": "...", "channel_code": "..."}}
    SYNC_ACCOUNTS: dict = _get_json_map("SYNC_ACCOUNTS", {})

    # ── Sync engine ──────────────────────────────────────────────────────────
    SYNC_CONCURRENCY: int = max(1, _get_int("SYNC_CONCURRENCY", 4))
    # Outer bound per gateway call; defaults to the gateway retry budget plus slack so
    # the last retry is never cut off. Retry-After waits from Shopify are not counted.
    SYNC_CALL_TIMEOUT: float = _get_float(
        "SYNC_CALL_TIMEOUT",
        retry_budget(SHOPIFY_TIMEOUT, SHOPIFY_MAX_ATTEMPTS, SHOPIFY_BACKOFF_BASE) + 5.0,
    )
    SYNC_LINK_BACKEND: str = os.getenv("SYNC_LINK_BACKEND", "json").strip().lower()

    DEFAULT_VENDOR: str = os.getenv("DEFAULT_VENDOR", "Unknown")
    DEFAULT_PRODUCT_STATUS: str = os.getenv("DEFAULT_PRODUCT_STATUS", "ACTIVE").upper()
    HEALTH_HISTORY_LIMIT: int = _get_int("HEALTH_HISTORY_LIMIT", 20)

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # ── Paths ────────────────────────────────────────────────────────────────
    # data directory is mounted: ./data ↔ /code/data (see docker-compose)
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    SYNC_LINK_STORE_PATH: str = os.getenv("SYNC_LINK_STORE_PATH", os.path.join(DATA_DIR, "sync_links.json"))
    CATALOG_PATH: str = os.getenv("CATALOG_PATH", os.path.join(DATA_DIR, "catalog.json"))
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")


settings = Settings()
