#=======================================================================================
# app/routes.py
# FastAPI routes for local catalog → Shopify product sync.
#
# ✅ Canonical public API lives under /api/*
# ✅ Sync actions require HTTP Basic (admin)
#
# IMPORTANT: In main_app.py, include with NO extra prefix to avoid /api/api duplication:
#   from app.routes import router as api_router
#   app.include_router(api_router)   # <-- no prefix here
#=======================================================================================

import json
import asyncio
import uuid
import time
from pathlib import Path
from typing import Any, Callable, Dict
import logging

from fastapi import APIRouter, Query, Request, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.config import settings
from app.mapping.catalog_store import load_product
from app.mapping.sync_link_store import SyncLinkStore
from app.models.audit_log import get_audit_log
from app.models.catalog import Product, SyncAccount
from app.models.connection_health import get_health, get_health_badge, get_health_history
from app.models.sync_result import SyncResult
from app.shopify.gateway import APIGateway
from app.sync.accounts import get_account, load_accounts, public_view
from app.sync.deps import get_catalog_path, get_gateway_factory, get_link_store, verify_admin
from app.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Sync API"])

PRODUCT_ACTIONS = ("create", "update", "full-update", "delete", "recreate", "link")

# ---------------------------
# Helpers
# ---------------------------
async def _safe_json(req: Request) -> Dict[str, Any]:
    """Best-effort JSON body parsing with fallbacks."""
    try:
        body = await req.json()
    except Exception:
        try:
            raw = (await req.body()).decode("utf-8", "ignore")
            body = json.loads(raw) if raw.strip() else {}
        except Exception:
            return {}
    return body if isinstance(body, dict) else {}

def _get_bool(payload: Dict[str, Any], *keys: str, default: bool = False) -> bool:
    for k in keys:
        if k in payload:
            return bool(payload.get(k))
    return default

def _now_ts() -> int:
    return int(time.time())

def _resolve_account(payload: Dict[str, Any]) -> SyncAccount:
    name = payload.get("account") or payload.get("account_name") or "main"
    account = get_account(name)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Sync account not found or inactive: {name}")
    return account

def _resolve_product(payload: Dict[str, Any], catalog_path: Path) -> Product:
    """Inline { product: {...} } wins over { product_id } looked up in the catalog."""
    inline = payload.get("product")
    if isinstance(inline, dict):
        try:
            return Product(**inline)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=f"Invalid product: {e.errors()}")
    pid = payload.get("product_id") or payload.get("productId")
    if pid is None:
        raise HTTPException(status_code=400, detail="Provide 'product' or 'product_id'")
    product = load_product(pid, catalog_path)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product not found in catalog: {pid}")
    return product

def _result_response(result: SyncResult) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(result.to_dict()))

async def _dispatch(orch: SyncOrchestrator, action: str, product: Product, account: SyncAccount, payload: Dict[str, Any]) -> SyncResult:
    if action == "create":
        return await orch.create(product, account, force=_get_bool(payload, "force"))
    if action == "update":
        return await orch.update(product, account, payload.get("fields") or {})
    if action == "full-update":
        return await orch.full_update(product, account, create_missing=_get_bool(payload, "create_missing", "createMissing"))
    if action == "delete":
        return await orch.delete(product, account)
    if action == "recreate":
        return await orch.recreate(product, account)
    if action == "link":
        return await orch.link(product, account)
    raise HTTPException(status_code=404, detail=f"Unknown sync action: {action}")

# ---------------------------
# Background job store (in-memory)
# ---------------------------
_JOBS: Dict[str, Dict[str, Any]] = {}
_JOBS_LOCK = asyncio.Lock()
_JOBS_TTL_SECONDS = 60 * 60  # keep finished jobs 1 hour

async def _cleanup_jobs_now():
    """Remove finished jobs older than TTL."""
    cutoff = _now_ts() - _JOBS_TTL_SECONDS
    async with _JOBS_LOCK:
        to_del = [jid for jid, rec in _JOBS.items()
                  if rec.get("finished") and rec.get("finished") < cutoff]
        for jid in to_del:
            _JOBS.pop(jid, None)

async def _register_job(request_info: Dict[str, Any]) -> str:
    job_id = uuid.uuid4().hex
    async with _JOBS_LOCK:
        _JOBS[job_id] = {
            "id": job_id,
            "status": "queued",
            "started": None,
            "finished": None,
            "request": request_info,
        }
    logger.info(f"[JOB][REGISTER] {job_id} {request_info.get('action')} product={request_info.get('product_id')}")
    return job_id

async def _run_job(job_id: str, orch: SyncOrchestrator, action: str, product: Product, account: SyncAccount, payload: Dict[str, Any]):
    logger.info(f"[JOB][RUN] Job {job_id} starting ({action} product={product.id} account={account.name})")
    async with _JOBS_LOCK:
        _JOBS[job_id].update({"status": "running", "started": _now_ts()})

    try:
        result = await _dispatch(orch, action, product, account, payload)
        async with _JOBS_LOCK:
            _JOBS[job_id].update({
                "status": "done",
                "finished": _now_ts(),
                "result": jsonable_encoder(result.to_dict()),
            })
        logger.info(f"[JOB][COMPLETE] Job {job_id} finished: {result.message}")
    except Exception as e:
        async with _JOBS_LOCK:
            _JOBS[job_id].update({
                "status": "error",
                "finished": _now_ts(),
                "error": str(e),
            })
        logger.error(f"[JOB][ERROR] Job {job_id} failed: {e}")

    await _cleanup_jobs_now()

def _job_accepted(job_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=202,
        content={"job_id": job_id, "status": "queued"},
        headers={"Location": f"/api/sync/status/{job_id}"},
    )

# ----------------------------------------------------------------------
# Product sync actions
# ----------------------------------------------------------------------

@router.post("/sync/pull", dependencies=[Depends(verify_admin)])
async def api_sync_pull(
    request: Request,
    store: SyncLinkStore = Depends(get_link_store),
    gateway_factory: Callable[[SyncAccount], APIGateway] = Depends(get_gateway_factory),
):
    """
    Fetch products from the account (read-only), grouped by inferred parent SKU.
    Body: { "account": "main", "limit": 50, "max_pages": 1, "after": null }
    """
    payload = await _safe_json(request)
    account = _resolve_account(payload)
    orch = SyncOrchestrator(gateway_factory(account), store)
    result = await orch.pull(
        account,
        limit=int(payload.get("limit") or 50),
        max_pages=int(payload.get("max_pages") or payload.get("maxPages") or 1),
        after=payload.get("after"),
    )
    return _result_response(result)

@router.post("/sync/test-connection", dependencies=[Depends(verify_admin)])
async def api_sync_test_connection(
    request: Request,
    store: SyncLinkStore = Depends(get_link_store),
    gateway_factory: Callable[[SyncAccount], APIGateway] = Depends(get_gateway_factory),
):
    """Body: { "account": "main" }"""
    payload = await _safe_json(request)
    account = _resolve_account(payload)
    orch = SyncOrchestrator(gateway_factory(account), store)
    return _result_response(await orch.test_connection(account))

@router.post("/sync/{action}", dependencies=[Depends(verify_admin)])
async def api_sync_action(
    action: str,
    request: Request,
    store: SyncLinkStore = Depends(get_link_store),
    gateway_factory: Callable[[SyncAccount], APIGateway] = Depends(get_gateway_factory),
    catalog_path: Path = Depends(get_catalog_path),
):
    """
    Run one sync action for one product against one account (admin-only).

    action: create | update | full-update | delete | recreate | link

    Body:
      {
        "account": "main",
        "product_id": "42" | "product": {...inline Product...},
        "force": bool,               # create
        "fields": {"title": ..., "pricing": true, "images": true},   # update
        "create_missing": bool,      # full-update
        "blocking": bool (default True)
      }

    With "blocking": false returns { job_id, status } (202 Accepted);
    poll GET /api/sync/status/{job_id}.
    """
    if action not in PRODUCT_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown sync action: {action}")
    payload = await _safe_json(request)
    account = _resolve_account(payload)
    product = _resolve_product(payload, catalog_path)
    orch = SyncOrchestrator(gateway_factory(account), store)

    if _get_bool(payload, "blocking", default=True):
        result = await _dispatch(orch, action, product, account, payload)
        return _result_response(result)

    request_info = {
        "action": action,
        "account": account.name,
        "product_id": str(product.id),
        "payload": {k: v for k, v in payload.items() if k != "blocking"},
    }
    job_id = await _register_job(request_info)
    asyncio.create_task(_run_job(job_id, orch, action, product, account, payload))
    return _job_accepted(job_id)

# ----------------------------------------------------------------------
# Jobs (admin-only)
# ----------------------------------------------------------------------
@router.get("/sync/jobs", dependencies=[Depends(verify_admin)])
async def api_sync_jobs():
    """Return all jobs in the background job store, newest first."""
    async with _JOBS_LOCK:
        jobs = list(_JOBS.values())
    jobs.sort(key=lambda j: j.get("started") or 0, reverse=True)
    return JSONResponse(content={"jobs": jobs})

@router.get("/sync/status/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_status(job_id: str):
    """Poll a background sync job."""
    async with _JOBS_LOCK:
        rec = _JOBS.get(job_id)
    if not rec:
        raise HTTPException(status_code=404, detail="job not found")
    return JSONResponse(content=rec)

@router.post("/sync/retry/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_retry(
    job_id: str,
    store: SyncLinkStore = Depends(get_link_store),
    gateway_factory: Callable[[SyncAccount], APIGateway] = Depends(get_gateway_factory),
    catalog_path: Path = Depends(get_catalog_path),
):
    """Re-queue a finished job with the same request."""
    async with _JOBS_LOCK:
        rec = _JOBS.get(job_id)
        if not rec:
            raise HTTPException(status_code=404, detail="job not found")
        if rec.get("status") not in ("done", "error"):
            raise HTTPException(status_code=400, detail="Job not finished or errored")
        params = dict(rec.get("request") or {})

    payload = dict(params.get("payload") or {})
    action = params.get("action")
    account = _resolve_account(payload)
    product = _resolve_product(payload, catalog_path)
    orch = SyncOrchestrator(gateway_factory(account), store)

    new_job_id = await _register_job({**params, "retry_of": job_id})
    asyncio.create_task(_run_job(new_job_id, orch, action, product, account, payload))
    return JSONResponse(content={"ok": True, "job_id": new_job_id, "retry_of": job_id})

# ----------------------------------------------------------------------
# Accounts, audit, health
# ----------------------------------------------------------------------
@router.get("/accounts", dependencies=[Depends(verify_admin)])
async def api_accounts():
    accounts = []
    for name, acc in load_accounts().items():
        accounts.append({**public_view(acc), "health": get_health_badge(name)})
    return JSONResponse(content={"accounts": accounts})

@router.get("/accounts/{name}/health", dependencies=[Depends(verify_admin)])
async def api_account_health(name: str, limit: int = Query(20, ge=1, le=200)):
    if name not in load_accounts():
        raise HTTPException(status_code=404, detail=f"Sync account not found: {name}")
    return JSONResponse(content={
        "account": name,
        "current": get_health(name),
        "badge": get_health_badge(name),
        "history": get_health_history(name, limit=limit),
    })

@router.get("/audit", dependencies=[Depends(verify_admin)])
async def api_audit(limit: int = Query(100, ge=1, le=500)):
    return JSONResponse(content={"entries": get_audit_log(limit)})

@router.get("/health")
async def api_health():
    """Health check used by the Admin UI: configured accounts plus last connection test per account."""
    accounts = load_accounts()
    result = {
        "ok": bool(accounts),
        "integration": {"ok": True, "link_backend": settings.SYNC_LINK_BACKEND},
        "accounts": {name: get_health_badge(name) for name in accounts},
    }
    if not accounts:
        result["error"] = "No Shopify accounts configured"
    return JSONResponse(content=result)
