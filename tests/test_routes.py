import time

import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.main_app import app
from app.mapping.catalog_store import load_product, upsert_product
from app.mapping.sync_link_store import MemorySyncLinkStore
from app.models.sync_link import SyncStatus
from app.shopify.gateway import GatewayResult
from app.sync.deps import get_catalog_path, get_gateway_factory, get_link_store

from fakes import FakeGateway, blackout_blind

AUTH = (settings.ADMIN_USER, settings.ADMIN_PASS)


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_SHOP_DOMAIN", "test-shop.myshopify.com")
    monkeypatch.setattr(settings, "SHOPIFY_ACCESS_TOKEN", "shpat_test")
    monkeypatch.setattr(settings, "SYNC_ACCOUNTS", {"backup": {"shop_domain": "backup.myshopify.com", "is_active": False}})

    gw = FakeGateway()
    store = MemorySyncLinkStore()
    catalog = tmp_path / "catalog.json"
    upsert_product(blackout_blind(), catalog)

    app.dependency_overrides[get_link_store] = lambda: store
    app.dependency_overrides[get_gateway_factory] = lambda: (lambda account: gw)
    app.dependency_overrides[get_catalog_path] = lambda: catalog
    with TestClient(app) as client:
        yield client, gw, store, catalog
    app.dependency_overrides.clear()


def test_requires_admin(env):
    client, *_ = env
    assert client.post("/api/sync/create", json={"product_id": "42"}).status_code == 401


def test_create_then_update_over_http(env):
    client, gw, store, _ = env
    r = client.post("/api/sync/create", json={"product_id": "42"}, auth=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert len(body["data"]["successful"]) == 2

    r = client.post("/api/sync/update", json={"product_id": "42", "fields": {"title": "Premium Blackout"}}, auth=AUTH)
    assert r.json()["success"] is True

    r = client.post("/api/sync/create", json={"product_id": "42"}, auth=AUTH)
    assert r.status_code == 200
    assert r.json()["success"] is False


def test_inline_product(env):
    client, gw, store, _ = env
    product = blackout_blind(id=77).model_dump(mode="json")
    r = client.post("/api/sync/create", json={"product": product}, auth=AUTH)
    assert r.json()["success"] is True


def test_bad_requests(env):
    client, *_ = env
    assert client.post("/api/sync/explode", json={"product_id": "42"}, auth=AUTH).status_code == 404
    assert client.post("/api/sync/create", json={"product_id": "999"}, auth=AUTH).status_code == 404
    assert client.post("/api/sync/create", json={}, auth=AUTH).status_code == 400
    # inactive account
    r = client.post("/api/sync/create", json={"product_id": "42", "account": "backup"}, auth=AUTH)
    assert r.status_code == 404


def test_background_job_and_retry(env):
    client, gw, store, _ = env
    r = client.post("/api/sync/create", json={"product_id": "42", "blocking": False}, auth=AUTH)
    assert r.status_code == 202
    job_id = r.json()["job_id"]
    assert r.headers["Location"] == f"/api/sync/status/{job_id}"

    rec = None
    for _ in range(100):
        rec = client.get(f"/api/sync/status/{job_id}", auth=AUTH).json()
        if rec["status"] in ("done", "error"):
            break
        time.sleep(0.02)
    assert rec["status"] == "done"
    assert rec["result"]["success"] is True
    assert rec["request"]["action"] == "create"

    jobs = client.get("/api/sync/jobs", auth=AUTH).json()["jobs"]
    assert [j["id"] for j in jobs] == [job_id]

    r = client.post(f"/api/sync/retry/{job_id}", auth=AUTH)
    assert r.json()["retry_of"] == job_id
    assert client.post("/api/sync/retry/nope", auth=AUTH).status_code == 404


def test_pull_and_connection(env):
    client, gw, *_ = env
    gw.seed("Roller - Black", ["RB120-BK-60"])
    r = client.post("/api/sync/pull", json={"limit": 10}, auth=AUTH)
    assert r.json()["data"]["groups"] == {"RB120": ["gid://shopify/Product/1"]}

    r = client.post("/api/sync/test-connection", json={}, auth=AUTH)
    assert r.json()["success"] is True

    health = client.get("/api/accounts/main/health", auth=AUTH).json()
    assert health["badge"] == {"status": "healthy", "color": "green"}

    gw.failures[("test_connection", None)] = GatewayResult.transport_failure("HTTP 401")
    r = client.post("/api/sync/test-connection", json={}, auth=AUTH)
    assert r.json()["success"] is False
    assert client.get("/api/health").json()["accounts"]["main"]["status"] == "failing"


def test_accounts_hide_tokens(env):
    client, *_ = env
    accounts = client.get("/api/accounts", auth=AUTH).json()["accounts"]
    assert [a["name"] for a in accounts] == ["main", "backup"]
    assert all("access_token" not in a for a in accounts)
    assert accounts[0]["has_token"] is True


def test_links_api(env):
    client, gw, store, _ = env
    client.post("/api/sync/create", json={"product_id": "42"}, auth=AUTH)

    listed = client.get("/api/integration/links", params={"status": "synced"}, auth=AUTH).json()
    assert listed["count"] == 1
    assert listed["links"][0]["status"] == SyncStatus.SYNCED.value

    assert client.get("/api/integration/links/42/main", auth=AUTH).status_code == 200
    assert client.delete("/api/integration/links/42/main", auth=AUTH).json()["ok"] is True
    assert client.get("/api/integration/links/42/main", auth=AUTH).status_code == 404
    # remote products are untouched
    assert len(gw.products) == 2


def test_catalog_api(env, tmp_path):
    client, _, _, catalog = env
    r = client.put("/api/catalog/products", json=[blackout_blind(id=7, name="Roman Blind").model_dump(mode="json")], auth=AUTH)
    assert r.json()["upserted"] == 1
    assert client.get("/api/catalog/products/7", auth=AUTH).json()["product"]["name"] == "Roman Blind"
    assert client.get("/api/catalog/products", auth=AUTH).json()["count"] == 2

    csv = tmp_path / "export.csv"
    csv.write_text(
        "Product ID,Product Name,Parent SKU,SKU,Colour,Width,Drop,Price,Stock\n"
        "9,Roller Blind,RB,RB-RED-60,Red,60,120,19.99,4\n"
        "9,Roller Blind,RB,RB-RED-90,Red,90,120,24.99,\n"
        "9,Roller Blind,RB,RB-BLU-60,Blue,60,120,19.99,2\n"
    )
    r = client.post("/api/catalog/import", json={"path": str(csv)}, auth=AUTH)
    assert r.json() == {"ok": True, "imported": 1, "variants": 3}

    product = load_product(9, catalog)
    assert product.parent_sku == "RB"
    assert [v.color for v in product.variants] == ["Red", "Red", "Blue"]
    assert product.variants[1].stock_level == 0
    assert product.variants[0].width == 60.0

    assert client.post("/api/catalog/import", json={"path": str(tmp_path / "missing.csv")}, auth=AUTH).status_code == 404
