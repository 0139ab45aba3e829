#=================================================================
# app/main_app.py
# FastAPI application entry-point (no static serving).
#=================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app import logging_filters

# Public API under /api/*
from app.routes import router as api_router

# Catalog + sync link maintenance (/api/catalog/*, /api/integration/links/*)
from app.mapping.catalog_api import router as catalog_router
from app.mapping.sync_link_api import router as sync_link_router

from app.db import dispose_engine, init_db
from app.config import settings
from app.sync.accounts import load_accounts

# --- FastAPI instance ---
app = FastAPI(
    title="Marketplace Sync Middleware",
    description="Middleware for syncing a local product catalog with Shopify stores.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()

# --- CORS ---
origins = settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(api_router)           # /api/*
app.include_router(catalog_router)       # /api/catalog/*
app.include_router(sync_link_router)     # /api/integration/links/*

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Marketplace Sync Middleware"}

# --- Last-resort handler; sync actions already turn failures into SyncResult bodies ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": f"Internal error: {exc}", "detail": str(exc)},
    )

@app.on_event("startup")
async def _startup():
    if settings.SYNC_LINK_BACKEND == "db":
        await init_db()
    accounts = load_accounts()
    if not accounts:
        logger.warning("[STARTUP] no Shopify accounts configured (set SHOPIFY_SHOP_DOMAIN or SYNC_ACCOUNTS)")
    logger.info(
        "[STARTUP] link backend=%s accounts=%s concurrency=%s call_timeout=%ss",
        settings.SYNC_LINK_BACKEND, ",".join(accounts) or "-",
        settings.SYNC_CONCURRENCY, settings.SYNC_CALL_TIMEOUT,
    )

@app.on_event("shutdown")
async def _shutdown():
    if settings.SYNC_LINK_BACKEND == "db":
        await dispose_engine()
