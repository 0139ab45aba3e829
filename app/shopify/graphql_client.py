#==========================================================================================
# app/shopify/graphql_client.py
# Shopify Admin API gateway (GraphQL + the REST variant endpoint).
# Every remote failure comes back as a GatewayResult; retries with exponential
# backoff happen here and only here.
#==========================================================================================
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.config import settings
from app.models.catalog import SyncAccount
from app.shopify import queries
from app.shopify.gateway import APIGateway, GatewayResult

logger = logging.getLogger("uvicorn.error")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def numeric_id(gid: str | int | None) -> str:
    """gid://shopify/ProductVariant/123 -> '123'"""
    return str(gid or "").rsplit("/", 1)[-1]


def _edges(conn: Dict[str, Any] | None) -> List[Dict[str, Any]]:
    return [e.get("node") or {} for e in ((conn or {}).get("edges") or [])]


def _flatten_product(node: Dict[str, Any] | None) -> Optional[Dict[str, Any]]:
    if not node:
        return None
    out = {k: v for k, v in node.items() if k != "variants"}
    out["variants"] = [
        {"id": v.get("id"), "sku": v.get("sku") or "", "price": v.get("price"), **({"title": v["title"]} if "title" in v else {})}
        for v in _edges(node.get("variants"))
    ]
    return out


def _is_throttled(errors: List[Dict[str, Any]]) -> bool:
    return any(((e or {}).get("extensions") or {}).get("code") == "THROTTLED" for e in errors or [])


class ShopifyGraphQLGateway(APIGateway):
    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop_domain = (shop_domain or "").replace("https://", "").replace("http://", "").rstrip("/")
        self.access_token = access_token or ""
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout if timeout is not None else settings.SHOPIFY_TIMEOUT
        self.max_attempts = max(1, max_attempts or settings.SHOPIFY_MAX_ATTEMPTS)
        self.backoff_base = backoff_base if backoff_base is not None else settings.SHOPIFY_BACKOFF_BASE
        self._transport = transport

    @classmethod
    def for_account(cls, account: SyncAccount, **kw: Any) -> "ShopifyGraphQLGateway":
        return cls(account.shop_domain, account.access_token, account.api_version, **kw)

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    @property
    def graphql_endpoint(self) -> str:
        return f"{self.base_url}/graphql.json"

    # ---------------------------
    # Transport
    # ---------------------------
    async def _send(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Tuple[Optional[httpx.Response], Optional[Dict[str, Any]], Optional[str], float]:
        """
        Returns (response, json_body, transport_error, elapsed_ms).
        Retries transport errors, 429/5xx and THROTTLED GraphQL responses.
        """
        headers = {"X-Shopify-Access-Token": self.access_token, "Content-Type": "application/json"}
        started = time.perf_counter()
        last_err: Optional[str] = None

        for attempt in range(1, self.max_attempts + 1):
            resp: Optional[httpx.Response] = None
            retry_after: Optional[float] = None
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.request(method, url, json=payload, headers=headers)
            except httpx.TimeoutException:
                last_err = f"timeout after {self.timeout:.0f}s"
            except httpx.HTTPError as e:
                last_err = f"{type(e).__name__}: {e}"
            else:
                body: Optional[Dict[str, Any]] = None
                try:
                    body = resp.json() if resp.content else {}
                except ValueError:
                    body = None

                if resp.status_code in RETRYABLE_STATUS:
                    last_err = f"HTTP {resp.status_code}"
                    try:
                        retry_after = float(resp.headers.get("Retry-After", "") or 0) or None
                    except ValueError:
                        retry_after = None
                elif isinstance(body, dict) and _is_throttled(body.get("errors") or []):
                    last_err = "THROTTLED"
                else:
                    return resp, body, None, (time.perf_counter() - started) * 1000

            if attempt < self.max_attempts:
                delay = retry_after or self.backoff_base * (2 ** (attempt - 1))
                logger.warning("[GATEWAY][RETRY] %s %s failed (attempt %s/%s): %s. Retrying in %.1fs...",
                               method, url, attempt, self.max_attempts, last_err, delay)
                await asyncio.sleep(delay)

        logger.error("[GATEWAY] %s %s gave up after %s attempts: %s", method, url, self.max_attempts, last_err)
        return None, None, last_err or "request failed", (time.perf_counter() - started) * 1000

    async def _graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> GatewayResult:
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        resp, body, err, elapsed = await self._send("POST", self.graphql_endpoint, payload)
        if err:
            return GatewayResult.transport_failure(err, elapsed_ms=elapsed)
        if resp is not None and resp.status_code >= 400:
            return GatewayResult.transport_failure(f"Shopify API error: HTTP {resp.status_code} - {resp.text[:500]}", elapsed_ms=elapsed)
        if not isinstance(body, dict):
            return GatewayResult.transport_failure("Shopify API returned a non-JSON body", elapsed_ms=elapsed)
        if body.get("errors"):
            logger.error("[GATEWAY] GraphQL errors: %s", body["errors"])
            return GatewayResult.transport_failure(f"GraphQL errors: {body['errors']}", elapsed_ms=elapsed)
        return GatewayResult.success(body.get("data") or {}, elapsed_ms=elapsed)

    @staticmethod
    def _mutation_result(res: GatewayResult, root: str, errors_key: str = "userErrors") -> Tuple[GatewayResult, Dict[str, Any]]:
        if not res.ok:
            return res, {}
        payload = res.data.get(root) or {}
        user_errors = payload.get(errors_key) or []
        if user_errors:
            return GatewayResult.rejected(user_errors, elapsed_ms=res.elapsed_ms), payload
        return res, payload

    # ---------------------------
    # Contract
    # ---------------------------
    async def test_connection(self) -> GatewayResult:
        res = await self._graphql(queries.SHOP_QUERY)
        if not res.ok:
            return res
        return GatewayResult.success({"shop": res.data.get("shop"), "endpoint": self.graphql_endpoint}, elapsed_ms=res.elapsed_ms)

    async def create_product(self, product_input: Dict[str, Any]) -> GatewayResult:
        res, payload = self._mutation_result(await self._graphql(queries.PRODUCT_CREATE, {"input": product_input}), "productCreate")
        if not res.ok:
            return res
        product = _flatten_product(payload.get("product"))
        if not product:
            return GatewayResult.rejected([{"message": "No product returned from Shopify"}], elapsed_ms=res.elapsed_ms)
        return GatewayResult.success({"product": product}, elapsed_ms=res.elapsed_ms)

    async def update_product_content(self, product_id: str, fields: Dict[str, Any]) -> GatewayResult:
        product_input = {k: v for k, v in (fields or {}).items() if k != "productOptions"}
        product_input["id"] = product_id
        res, payload = self._mutation_result(await self._graphql(queries.PRODUCT_UPDATE, {"input": product_input}), "productUpdate")
        if not res.ok:
            return res
        return GatewayResult.success({"product": payload.get("product")}, elapsed_ms=res.elapsed_ms)

    async def update_variant_prices(self, product_id: str, variants: List[Dict[str, Any]]) -> GatewayResult:
        bulk = []
        for v in variants or []:
            item = {"id": v.get("variantId") or v.get("id"), "price": str(v.get("price"))}
            if v.get("compareAtPrice") is not None:
                item["compareAtPrice"] = str(v["compareAtPrice"])
            bulk.append(item)
        res, payload = self._mutation_result(
            await self._graphql(queries.VARIANTS_BULK_UPDATE, {"productId": product_id, "variants": bulk}),
            "productVariantsBulkUpdate",
        )
        if not res.ok:
            return res
        return GatewayResult.success({"variants": payload.get("productVariants") or []}, elapsed_ms=res.elapsed_ms)

    async def update_single_variant(self, variant_id: str, fields: Dict[str, Any]) -> GatewayResult:
        vid = numeric_id(variant_id)
        url = f"{self.base_url}/variants/{vid}.json"
        resp, body, err, elapsed = await self._send("PUT", url, {"variant": {"id": int(vid) if vid.isdigit() else vid, **(fields or {})}})
        if err:
            return GatewayResult.transport_failure(err, elapsed_ms=elapsed)
        if resp is not None and resp.status_code == 422:
            errors = (body or {}).get("errors") or {}
            if isinstance(errors, dict):
                user_errors = [{"field": [k], "message": "; ".join(map(str, v if isinstance(v, list) else [v]))} for k, v in errors.items()]
            else:
                user_errors = [{"message": str(errors)}]
            return GatewayResult.rejected(user_errors, elapsed_ms=elapsed)
        if resp is None or resp.status_code >= 400:
            status = resp.status_code if resp is not None else "?"
            return GatewayResult.transport_failure(f"Shopify REST error: HTTP {status}", elapsed_ms=elapsed)
        return GatewayResult.success({"variant": (body or {}).get("variant")}, elapsed_ms=elapsed)

    async def batch_update_variant_skus(self, updates: List[Dict[str, Any]]) -> GatewayResult:
        successful: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []
        for u in updates or []:
            vid, sku = u.get("variantId"), u.get("sku")
            res = await self.update_single_variant(vid, {"sku": sku})
            if res.ok:
                successful.append({"variantId": vid, "sku": sku})
            else:
                failed.append({"variantId": vid, "sku": sku, "error": res.describe(), "transport": res.transport})
        data = {"successful": successful, "failed": failed}
        if failed:
            return GatewayResult(
                ok=False,
                data=data,
                error=f"{len(failed)} of {len(updates or [])} SKU updates failed",
                transport=all(f["transport"] for f in failed),
            )
        return GatewayResult.success(data)

    async def delete_product(self, product_id: str) -> GatewayResult:
        res, payload = self._mutation_result(await self._graphql(queries.PRODUCT_DELETE, {"input": {"id": product_id}}), "productDelete")
        if not res.ok:
            return res
        return GatewayResult.success({"deletedId": payload.get("deletedProductId")}, elapsed_ms=res.elapsed_ms)

    async def get_product(self, product_id: str) -> GatewayResult:
        res = await self._graphql(queries.PRODUCT_QUERY, {"id": product_id})
        if not res.ok:
            return res
        return GatewayResult.success({"product": _flatten_product(res.data.get("product"))}, elapsed_ms=res.elapsed_ms)

    async def search_products_by_sku(self, skus: List[str]) -> GatewayResult:
        skus = [s for s in (skus or []) if s]
        if not skus:
            return GatewayResult.success({"products": []})
        search = " OR ".join(f"sku:{s}" for s in skus)
        res = await self._graphql(queries.PRODUCTS_SEARCH, {"query": search, "first": 50})
        if not res.ok:
            return res
        products = [_flatten_product(n) for n in _edges(res.data.get("products"))]
        return GatewayResult.success({"products": [p for p in products if p]}, elapsed_ms=res.elapsed_ms)

    async def get_products(self, limit: int = 50, after: Optional[str] = None) -> GatewayResult:
        variables: Dict[str, Any] = {"first": max(1, min(int(limit), 250))}
        if after:
            variables["after"] = after
        res = await self._graphql(queries.PRODUCTS_PAGE, variables)
        if not res.ok:
            return res
        conn = res.data.get("products") or {}
        products = [_flatten_product(n) for n in _edges(conn)]
        return GatewayResult.success(
            {"products": [p for p in products if p], "page_info": conn.get("pageInfo") or {}},
            elapsed_ms=res.elapsed_ms,
        )

    async def update_product_media(self, product_id: str, images: List[Dict[str, Any]]) -> GatewayResult:
        media = [
            {"originalSource": i.get("src"), "alt": i.get("altText") or "", "mediaContentType": "IMAGE"}
            for i in images or [] if i.get("src")
        ]
        if not media:
            return GatewayResult.success({"media": []})
        res, payload = self._mutation_result(
            await self._graphql(queries.PRODUCT_CREATE_MEDIA, {"productId": product_id, "media": media}),
            "productCreateMedia",
            errors_key="mediaUserErrors",
        )
        if not res.ok:
            return res
        return GatewayResult.success({"media": payload.get("media") or []}, elapsed_ms=res.elapsed_ms)


