# app/sync/orchestrator.py
# Drives create / update / full update / delete / recreate / link / pull /
# connection test for one (product, account) pair against an APIGateway.
from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Tuple

from app.config import settings
from app.mapping.sync_link_store import SyncLinkStore
from app.models.audit_log import add_audit_entry
from app.models.catalog import Product, SyncAccount, Variant
from app.models.connection_health import record_health_check
from app.models.sync_link import SyncLink, SyncStatus, new_link
from app.models.sync_result import SyncResult
from app.shopify.gateway import APIGateway, GatewayResult
from app.sync.components.colors import ColorGroupingEngine
from app.sync.components.matching import pair_variants
from app.sync.components.pool import run_bounded
from app.sync.components.sku_patterns import SkuPatternExtractor
from app.sync.components.transformer import MarketplaceProductPayload, MarketplaceTransformer
from app.sync.components.util import now_iso

logger = logging.getLogger("uvicorn.error")

UPDATE_FIELDS = ("title", "pricing", "images")
MIN_LINK_COVERAGE = 50.0


def _item_ok(color: str, product_id: Optional[str], **extra: Any) -> Dict[str, Any]:
    return {"success": True, "color_group": color, "shopify_product_id": product_id, "error": None, "errors": [], **extra}


def _item_fail(color: str, error: str, product_id: Optional[str] = None, res: Optional[GatewayResult] = None, **extra: Any) -> Dict[str, Any]:
    errors = [e.get("message") or str(e) for e in (res.user_errors if res else [])]
    return {
        "success": False,
        "color_group": color,
        "shopify_product_id": product_id,
        "error": error,
        "errors": errors or [error],
        "transport": bool(res and res.transport),
        **extra,
    }


def _split(items: Iterable[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    ok, bad = [], []
    for it in items:
        (ok if it.get("success") else bad).append(it)
    return ok, bad


def _product_id(product: Product | str | int) -> str:
    return str(product.id if isinstance(product, Product) else product)


class SyncOrchestrator:
    """
    Each public action holds the store lock for its (product, account) key for
    the whole read-modify-write, fans color groups out over a bounded pool, and
    returns a SyncResult. Gateway exceptions and timeouts become failed items.
    """

    def __init__(
        self,
        gateway: APIGateway,
        store: SyncLinkStore,
        *,
        concurrency: Optional[int] = None,
        call_timeout: Optional[float] = None,
        grouping: Optional[ColorGroupingEngine] = None,
        transformer: Optional[MarketplaceTransformer] = None,
        extractor: Optional[SkuPatternExtractor] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.concurrency = max(1, int(concurrency or settings.SYNC_CONCURRENCY))
        self.call_timeout = float(call_timeout or settings.SYNC_CALL_TIMEOUT)
        self.grouping = grouping or ColorGroupingEngine()
        self.transformer = transformer or MarketplaceTransformer(self.grouping)
        self.extractor = extractor or SkuPatternExtractor()

    # ---------------------------
    # Plumbing
    # ---------------------------
    async def _call(self, op: str, coro: Awaitable[GatewayResult]) -> GatewayResult:
        try:
            res = await asyncio.wait_for(coro, timeout=self.call_timeout)
        except asyncio.TimeoutError:
            logger.error("[GATEWAY] %s timed out after %.1fs", op, self.call_timeout)
            return GatewayResult.transport_failure(f"{op} timed out after {self.call_timeout:g}s")
        except Exception as e:
            logger.exception("[GATEWAY] %s raised", op)
            return GatewayResult.transport_failure(f"{op} raised {type(e).__name__}: {e}")
        if not isinstance(res, GatewayResult):
            return GatewayResult.transport_failure(f"{op} returned {type(res).__name__}, expected GatewayResult")
        if not res.ok:
            if res.transport:
                logger.error("[GATEWAY] %s failed: %s", op, res.error)
            else:
                logger.warning("[GATEWAY] %s rejected: %s", op, res.error)
        return res

    async def _guard(self, tag: str, color: str, coro: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return await coro
        except Exception as e:
            logger.exception("[%s] color group %s crashed", tag, color)
            return _item_fail(color, f"{type(e).__name__}: {e}")

    def _finish(self, action: str, product_id: str, account: SyncAccount, result: SyncResult) -> SyncResult:
        level = logging.INFO if result.success else logging.WARNING
        logger.log(level, "[%s] product=%s account=%s -> %s", action.upper(), product_id, account.name, result.message)
        add_audit_entry(
            f"Shopify {action}",
            "system",
            f"product={product_id} account={account.name}: {result.message}",
            success=result.success,
        )
        return result

    async def _sync_prices(
        self,
        shopify_id: str,
        local: List[Dict[str, Any]],
        remote: Optional[List[Dict[str, Any]]] = None,
    ) -> Tuple[bool, Dict[str, Any], Optional[GatewayResult]]:
        """Pair local payloads with live variants and push prices. Returns (ok, info, failed_result)."""
        if remote is None:
            got = await self._call("get_product", self.gateway.get_product(shopify_id))
            if not got.ok:
                return False, {"error": got.describe()}, got
            remote_product = got.data.get("product")
            if not remote_product:
                return False, {"error": f"Shopify product {shopify_id} not found"}, None
            remote = remote_product.get("variants") or []

        pairing = pair_variants(local, remote)
        info: Dict[str, Any] = {"variant_pairing": pairing.summary()}
        updates = []
        for l, r in pairing.pairs:
            upd = {"variantId": r.get("id"), "price": l.get("price")}
            if l.get("compareAtPrice"):
                upd["compareAtPrice"] = l["compareAtPrice"]
            updates.append(upd)
        if not updates:
            info["error"] = "No variants could be paired for price update"
            return False, info, None

        res = await self._call("update_variant_prices", self.gateway.update_variant_prices(shopify_id, updates))
        info["updated"] = len(updates) if res.ok else 0
        if not res.ok:
            info["error"] = res.describe()
            return False, info, res
        return True, info, None

    def _sku_updates(self, local: List[Dict[str, Any]], remote: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        pairing = pair_variants(local, remote)
        return [
            {"variantId": r.get("id"), "sku": l.get("sku")}
            for l, r in pairing.pairs
            if l.get("sku") and (r.get("sku") or "") != l.get("sku")
        ]

    # ---------------------------
    # Create
    # ---------------------------
    async def create(self, product: Product, account: SyncAccount, force: bool = False) -> SyncResult:
        pid = _product_id(product)
        try:
            async with self.store.lock(pid, account.id):
                result = await self._create_locked(product, account, force=force)
        except Exception as e:
            logger.exception("[CREATE] product=%s crashed", pid)
            result = SyncResult.fail(f"Create operation failed: {e}")
        return self._finish("create", pid, account, result)

    async def _create_one(self, payload: MarketplaceProductPayload) -> Dict[str, Any]:
        color = payload.color
        res = await self._call("create_product", self.gateway.create_product(payload.product_input))
        if not res.ok:
            return _item_fail(color, f"Failed to create product for {color}: {res.describe()}", res=res)

        created = res.data.get("product") or {}
        shopify_id = created.get("id")
        if not shopify_id:
            return _item_fail(color, f"Failed to create product for {color}: no product id returned")

        warnings: List[str] = []
        remote_variants = created.get("variants") or []
        pairing = pair_variants(payload.variants, remote_variants)
        if pairing.mismatches or pairing.unmatched_local:
            warnings.append(
                f"variant pairing incomplete: {len(pairing.pairs)} paired, "
                f"{len(pairing.mismatches)} mismatched, {len(pairing.unmatched_local)} unmatched local"
            )

        if pairing.pairs:
            ok, info, _ = await self._sync_prices(shopify_id, payload.variants, remote_variants)
            if not ok:
                warnings.append(f"price update failed: {info.get('error')}")

        sku_updates = self._sku_updates(payload.variants, remote_variants)
        if sku_updates:
            skus = await self._call("batch_update_variant_skus", self.gateway.batch_update_variant_skus(sku_updates))
            if not skus.ok:
                warnings.append(f"sku update failed: {skus.describe()}")

        if payload.images:
            media = await self._call("update_product_media", self.gateway.update_product_media(shopify_id, payload.images))
            if not media.ok:
                warnings.append(f"image upload failed: {media.describe()}")

        for w in warnings:
            logger.warning("[CREATE] %s (%s): %s", color, shopify_id, w)

        return _item_ok(
            color,
            shopify_id,
            shopify_product_handle=created.get("handle"),
            shopify_product_title=created.get("title") or payload.title,
            variant_count=len(remote_variants),
            variant_pairing=pairing.summary(),
            warnings=warnings,
        )

    async def _create_locked(self, product: Product, account: SyncAccount, *, force: bool) -> SyncResult:
        pid = _product_id(product)
        payloads = self.transformer.transform_product(product, account)
        if not payloads:
            return SyncResult.fail("No Shopify products to create", data={"product_id": pid})

        link = await self.store.get(pid, account.id)
        # any mapped id blocks create, whatever the status; a failed link still owns its products
        if not force and link and link.is_linked:
            return SyncResult.fail(
                "Products already exist on Shopify for this account. Use update() instead of create().",
                data={"existing": dict(link.color_map)},
            )

        items = await run_bounded(
            payloads,
            lambda p: self._guard("CREATE", p.color, self._create_one(p)),
            self.concurrency,
        )
        successful, failed = _split(items)

        if successful:
            base = link or new_link(pid, account.id)
            color_map = dict(base.color_map)
            for it in successful:
                color_map[it["color_group"]] = str(it["shopify_product_id"])
            first = successful[0]
            metadata = dict(base.metadata)
            metadata.update({
                "handle": first.get("shopify_product_handle"),
                "title": first.get("shopify_product_title"),
                "color_groups": list(color_map),
                "last_push_timestamp": int(time.time()),
            })
            if failed:
                metadata["last_error"] = "; ".join(f["error"] for f in failed)
            else:
                metadata.pop("last_error", None)
            await self.store.put(pid, account.id, base.transition(SyncStatus.SYNCED, color_map=color_map, metadata=metadata))

        data = {"successful": successful, "failed": failed, "total_processed": len(items)}
        meta = {"original_product_id": pid, "color_groups": [p.color for p in payloads]}
        errors = [f["error"] for f in failed]
        if not failed:
            return SyncResult.ok(f"Successfully pushed {len(successful)} products to Shopify", data, metadata=meta)
        if successful:
            return SyncResult.fail(
                f"Pushed {len(successful)} products, {len(failed)} failed", data, errors=errors, metadata=meta
            )
        return SyncResult.fail("All Shopify product creations failed", data, errors=errors, metadata=meta)

    # ---------------------------
    # Update (selected fields)
    # ---------------------------
    async def update(self, product: Product, account: SyncAccount, fields: Dict[str, Any] | List[str]) -> SyncResult:
        pid = _product_id(product)
        if isinstance(fields, (list, tuple, set)):
            fields = {f: True for f in fields}
        fields = dict(fields or {})
        unknown = sorted(set(fields) - set(UPDATE_FIELDS))
        if not fields or unknown:
            msg = f"Unsupported update fields: {', '.join(unknown)}" if unknown else "No fields requested for update"
            return self._finish("update", pid, account, SyncResult.fail(msg, data={"allowed_fields": list(UPDATE_FIELDS)}))

        try:
            async with self.store.lock(pid, account.id):
                result = await self._update_locked(product, account, fields)
        except Exception as e:
            logger.exception("[UPDATE] product=%s crashed", pid)
            result = SyncResult.fail(f"Update operation failed: {e}")
        return self._finish("update", pid, account, result)

    async def _update_one(
        self,
        product: Product,
        account: SyncAccount,
        color: str,
        shopify_id: str,
        variants: List[Variant],
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        done: List[str] = []
        details: Dict[str, Any] = {}

        if "title" in fields:
            requested = fields["title"]
            base_name = requested.strip() if isinstance(requested, str) and requested.strip() else product.name
            title = self.transformer.build_title(base_name, color)
            res = await self._call("update_product_content", self.gateway.update_product_content(shopify_id, {"title": title}))
            if not res.ok:
                return _item_fail(color, f"Title update failed: {res.describe()}", shopify_id, res, updated_fields=done)
            done.append("title")
            details["title"] = title

        if "pricing" in fields:
            if not variants:
                return _item_fail(color, f"No local variants found for color group: {color}", shopify_id, updated_fields=done)
            local = [self.transformer.variant_payload(v, account) for v in variants]
            ok, info, res = await self._sync_prices(shopify_id, local)
            details["pricing"] = info
            if not ok:
                return _item_fail(color, f"Pricing update failed: {info.get('error')}", shopify_id, res, updated_fields=done)
            done.append("pricing")

        if "images" in fields:
            title = details.get("title") or self.transformer.build_title(product.name, color)
            images = self.transformer.images(product, color, title)
            if images:
                res = await self._call("update_product_media", self.gateway.update_product_media(shopify_id, images))
                if not res.ok:
                    return _item_fail(color, f"Image update failed: {res.describe()}", shopify_id, res, updated_fields=done)
            details["images"] = {"count": len(images)}
            done.append("images")

        return _item_ok(color, shopify_id, updated_fields=done, details=details)

    async def _update_locked(self, product: Product, account: SyncAccount, fields: Dict[str, Any]) -> SyncResult:
        pid = _product_id(product)
        link = await self.store.get(pid, account.id)
        if not link or not link.is_linked:
            return SyncResult.fail("No existing Shopify products found. Use create() instead of update().")
        if link.status != SyncStatus.SYNCED:
            return SyncResult.fail(f"Product is not in a synced state (status: {link.status.value})")

        groups = self.grouping.group(product)
        items = await run_bounded(
            list(link.color_map.items()),
            lambda kv: self._guard(
                "UPDATE", kv[0], self._update_one(product, account, kv[0], kv[1], groups.get(kv[0]) or [], fields)
            ),
            self.concurrency,
        )
        updated, failed = _split(items)

        if updated:
            metadata = dict(link.metadata)
            metadata["last_update"] = {"fields": sorted(fields), "at": now_iso()}
            await self.store.put(pid, account.id, link.transition(SyncStatus.SYNCED, metadata=metadata))

        data = {"updated": updated, "failed": failed, "fields_updated": sorted(fields)}
        errors = [f["error"] for f in failed]
        if not failed:
            return SyncResult.ok(f"Updated {len(updated)} Shopify products ({', '.join(sorted(fields))})", data)
        return SyncResult.fail(f"Updated {len(updated)} products, {len(failed)} failed", data, errors=errors)

    # ---------------------------
    # Full update
    # ---------------------------
    async def full_update(self, product: Product, account: SyncAccount, create_missing: bool = False) -> SyncResult:
        pid = _product_id(product)
        try:
            async with self.store.lock(pid, account.id):
                result = await self._full_update_locked(product, account, create_missing=create_missing)
        except Exception as e:
            logger.exception("[FULL] product=%s crashed", pid)
            result = SyncResult.fail(f"Full update operation failed: {e}")
        return self._finish("full_update", pid, account, result)

    async def _full_update_one(self, color: str, shopify_id: str, payload: Optional[MarketplaceProductPayload]) -> Dict[str, Any]:
        if payload is None:
            return _item_fail(color, f"No local data found for color group: {color}", shopify_id)

        steps: Dict[str, Any] = {}
        warnings: List[str] = []

        # 1. content; nothing else runs for this color if it fails
        res = await self._call(
            "update_product_content", self.gateway.update_product_content(shopify_id, payload.content_fields())
        )
        if not res.ok:
            steps["content"] = {"success": False, "error": res.describe()}
            return _item_fail(color, f"Content update failed: {res.describe()}", shopify_id, res, steps=steps)
        steps["content"] = {"success": True}

        # 2 + 3. prices and SKUs share one read of the live variants
        got = await self._call("get_product", self.gateway.get_product(shopify_id))
        remote_product = got.data.get("product") if got.ok else None
        if not remote_product:
            err = got.describe() if not got.ok else f"Shopify product {shopify_id} not found"
            steps["prices"] = {"success": False, "error": err}
            steps["skus"] = {"success": False, "error": err}
            warnings.append(f"variant sync skipped: {err}")
        else:
            remote = remote_product.get("variants") or []
            ok, info, _ = await self._sync_prices(shopify_id, payload.variants, remote)
            steps["prices"] = {"success": ok, **info}
            if not ok:
                warnings.append(f"price update failed: {info.get('error')}")

            sku_updates = self._sku_updates(payload.variants, remote)
            if sku_updates:
                skus = await self._call("batch_update_variant_skus", self.gateway.batch_update_variant_skus(sku_updates))
                steps["skus"] = {
                    "success": skus.ok,
                    "successful": len(skus.data.get("successful") or []),
                    "failed": skus.data.get("failed") or [],
                }
                if not skus.ok:
                    warnings.append(f"sku update failed: {skus.describe()}")
            else:
                steps["skus"] = {"success": True, "successful": 0, "failed": []}

        # 4. images are not pushed on a full update yet
        steps["images"] = {"success": True, "skipped": True}

        for w in warnings:
            logger.warning("[FULL] %s (%s): %s", color, shopify_id, w)
        return _item_ok(color, shopify_id, steps=steps, warnings=warnings)

    async def _full_update_locked(self, product: Product, account: SyncAccount, *, create_missing: bool) -> SyncResult:
        pid = _product_id(product)
        link = await self.store.get(pid, account.id)
        if not link or not link.is_linked:
            if not create_missing:
                return SyncResult.fail("No existing Shopify products found for full update. Use create() first.")
            logger.info("[FULL] product=%s has no products on %s, creating instead", pid, account.name)
            created = await self._create_locked(product, account, force=True)
            return SyncResult(
                success=created.success,
                message=f"No existing products found - created new products instead: {created.message}",
                data={**created.data, "operation": "create_fallback"},
                errors=list(created.errors),
                metadata=dict(created.metadata),
            )

        payloads = {p.color: p for p in self.transformer.transform_product(product, account)}
        items = await run_bounded(
            list(link.color_map.items()),
            lambda kv: self._guard("FULL", kv[0], self._full_update_one(kv[0], kv[1], payloads.get(kv[0]))),
            self.concurrency,
        )
        updated, failed = _split(items)

        metadata = dict(link.metadata)
        if updated:
            metadata["last_full_update"] = now_iso()
            metadata.pop("last_error", None)
            await self.store.put(pid, account.id, link.transition(SyncStatus.SYNCED, metadata=metadata))
        else:
            metadata["last_error"] = "; ".join(f["error"] for f in failed)
            await self.store.put(pid, account.id, link.transition(SyncStatus.FAILED, metadata=metadata))

        data = {"updated": updated, "failed": failed, "total_processed": len(items), "operation": "full_update"}
        errors = [f["error"] for f in failed]
        if not failed:
            return SyncResult.ok(f"Fully updated {len(updated)} Shopify products", data)
        return SyncResult.fail(f"Fully updated {len(updated)} products, {len(failed)} failed", data, errors=errors)

    # ---------------------------
    # Delete
    # ---------------------------
    async def delete(self, product: Product | str | int, account: SyncAccount) -> SyncResult:
        pid = _product_id(product)
        try:
            async with self.store.lock(pid, account.id):
                result = await self._delete_locked(pid, account)
        except Exception as e:
            logger.exception("[DELETE] product=%s crashed", pid)
            result = SyncResult.fail(f"Delete operation failed: {e}")
        return self._finish("delete", pid, account, result)

    async def _delete_one(self, color: str, shopify_id: str) -> Dict[str, Any]:
        res = await self._call("delete_product", self.gateway.delete_product(shopify_id))
        if not res.ok:
            return _item_fail(color, f"Failed to delete {color} ({shopify_id}): {res.describe()}", shopify_id, res)
        return _item_ok(color, shopify_id, deleted_id=res.data.get("deletedId") or shopify_id)

    async def _delete_all(self, link: SyncLink) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        items = await run_bounded(
            list(link.color_map.items()),
            lambda kv: self._guard("DELETE", kv[0], self._delete_one(kv[0], kv[1])),
            self.concurrency,
        )
        return _split(items)

    async def _delete_locked(self, pid: str, account: SyncAccount) -> SyncResult:
        link = await self.store.get(pid, account.id)
        if not link or not link.is_linked:
            return SyncResult.fail("No Shopify products linked to this product for this account")

        deleted, failed = await self._delete_all(link)
        gone = {d["color_group"] for d in deleted}
        remaining = {c: sid for c, sid in link.color_map.items() if c not in gone}

        if not deleted:
            link_state = "unchanged"
        elif not remaining:
            await self.store.clear(pid, account.id)
            link_state = "cleared"
        else:
            metadata = dict(link.metadata)
            metadata["color_groups"] = list(remaining)
            metadata["last_error"] = "; ".join(f["error"] for f in failed)
            await self.store.put(pid, account.id, link.model_copy(update={"color_map": remaining, "metadata": metadata}))
            link_state = "partial"

        data = {"deleted": deleted, "failed": failed, "remaining": remaining, "link_state": link_state}
        errors = [f["error"] for f in failed]
        if not failed:
            return SyncResult.ok(f"Deleted {len(deleted)} Shopify products", data)
        if deleted:
            return SyncResult.fail(f"Deleted {len(deleted)} products, {len(failed)} failed", data, errors=errors)
        return SyncResult.fail("Failed to delete any Shopify products", data, errors=errors)

    # ---------------------------
    # Recreate
    # ---------------------------
    async def recreate(self, product: Product, account: SyncAccount) -> SyncResult:
        pid = _product_id(product)
        try:
            async with self.store.lock(pid, account.id):
                result = await self._recreate_locked(product, account)
        except Exception as e:
            logger.exception("[RECREATE] product=%s crashed", pid)
            result = SyncResult.fail(f"Recreate operation failed: {e}")
        return self._finish("recreate", pid, account, result)

    async def _recreate_locked(self, product: Product, account: SyncAccount) -> SyncResult:
        pid = _product_id(product)
        link = await self.store.get(pid, account.id)
        deleted: List[Dict[str, Any]] = []
        delete_errors: List[Dict[str, Any]] = []

        if link and link.is_linked:
            deleted, delete_errors = await self._delete_all(link)
            for f in delete_errors:
                logger.warning("[RECREATE] continuing after failed delete of %s: %s", f["color_group"], f["error"])
            metadata = dict(link.metadata)
            metadata["recreate_started_at"] = now_iso()
            if delete_errors:
                metadata["orphaned"] = {f["color_group"]: f["shopify_product_id"] for f in delete_errors}
            await self.store.put(pid, account.id, link.transition(SyncStatus.PENDING, color_map={}, metadata=metadata))

        created = await self._create_locked(product, account, force=True)

        if not created.data.get("successful"):
            current = await self.store.get(pid, account.id)
            if current and current.status == SyncStatus.PENDING:
                metadata = dict(current.metadata)
                metadata["last_error"] = created.message
                await self.store.put(pid, account.id, current.transition(SyncStatus.FAILED, metadata=metadata))

        data = {**created.data, "operation": "recreate", "deleted": deleted, "delete_errors": delete_errors}
        return SyncResult(
            success=created.success,
            message=f"Recreate: {created.message}",
            data=data,
            errors=list(created.errors),
            metadata=dict(created.metadata),
        )

    # ---------------------------
    # Link existing products
    # ---------------------------
    async def link(self, product: Product, account: SyncAccount) -> SyncResult:
        pid = _product_id(product)
        try:
            async with self.store.lock(pid, account.id):
                result = await self._link_locked(product, account)
        except Exception as e:
            logger.exception("[LINK] product=%s crashed", pid)
            result = SyncResult.fail(f"Link operation failed: {e}")
        return self._finish("link", pid, account, result)

    def _link_color(self, product: Product, remote: Dict[str, Any], matched: List[Variant]) -> str:
        color = self.extractor.color_from_title(remote.get("title") or "", product.name)
        if color:
            return color
        if matched:
            return self.grouping.derive_color(matched[0], product)
        skus = [v.get("sku") for v in remote.get("variants") or [] if v.get("sku")]
        if skus:
            return self.extractor.extract_color(skus[0], product.parent_sku)
        return remote.get("title") or str(remote.get("id"))

    def analyze_link(self, product: Product, remote_products: List[Dict[str, Any]]) -> Tuple[bool, str, Dict[str, Any]]:
        """Decide whether search hits cover the local product well enough to link."""
        local_by_sku: Dict[str, Variant] = {}
        for v in product.variants:
            s = (v.sku or "").strip().upper()
            if s and s not in local_by_sku:
                local_by_sku[s] = v
        total = len(local_by_sku)

        by_id = {str(p.get("id")): p for p in remote_products}
        ranked = self.extractor.rank_candidates(product, remote_products)

        found: Dict[str, set] = {}
        color_groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        variant_mappings: Dict[str, Dict[str, Any]] = {}
        conflicts: List[Dict[str, Any]] = []

        for cand in ranked:
            remote = by_id.get(str(cand["id"])) or {}
            matched_variants = []
            for rv in remote.get("variants") or []:
                s = (rv.get("sku") or "").strip().upper()
                if s in local_by_sku:
                    found.setdefault(s, set()).add(str(cand["id"]))
                    matched_variants.append((s, rv))
            if not matched_variants:
                continue

            color = self._link_color(product, remote, [local_by_sku[s] for s, _ in matched_variants])
            group = color_groups.get(color)
            if group is None:
                group = color_groups[color] = {
                    "shopify_product_id": str(cand["id"]),
                    "shopify_title": cand["title"],
                    "handle": cand.get("handle"),
                    "score": cand["score"],
                    "variant_count": 0,
                }
            elif group["shopify_product_id"] != str(cand["id"]):
                conflicts.append({"color_group": color, "shopify_product_id": str(cand["id"]), "kept": group["shopify_product_id"]})
                continue

            for s, rv in matched_variants:
                local = local_by_sku[s]
                variant_mappings[local.sku] = {
                    "local_variant_id": local.id,
                    "shopify_variant_id": rv.get("id"),
                    "shopify_product_id": str(cand["id"]),
                    "color_group": color,
                }
                group["variant_count"] += 1

        found_count = len(found)
        coverage = round(found_count / total * 100, 1) if total else 0.0
        duplicates = {s: sorted(ids) for s, ids in found.items() if len(ids) > 1}
        data = {
            "coverage_percent": coverage,
            "found_skus": found_count,
            "total_skus": total,
            "missing_skus": [local_by_sku[s].sku for s in local_by_sku if s not in found],
            "color_groups": dict(color_groups),
            "variant_mappings": variant_mappings,
            "candidates": ranked,
        }
        if conflicts:
            data["color_conflicts"] = conflicts

        if not found_count:
            return False, "No matching SKUs found in Shopify products", data
        # compare unrounded; coverage_percent is display only
        if found_count * 100 < MIN_LINK_COVERAGE * total:
            return False, f"Insufficient SKU coverage: {coverage}% (found {found_count} of {total})", data
        if duplicates:
            data["duplicate_skus"] = duplicates
            return False, f"Duplicate SKUs found across multiple Shopify products: {', '.join(sorted(duplicates))}", data
        return True, f"Linked {len(color_groups)} color groups ({coverage}% SKU coverage)", data

    async def _link_locked(self, product: Product, account: SyncAccount) -> SyncResult:
        pid = _product_id(product)
        link = await self.store.get(pid, account.id)
        if link and (link.is_linked or link.status in (SyncStatus.SYNCED, SyncStatus.PENDING)):
            return SyncResult.fail(
                f"Product is already linked to Shopify (status: {link.status.value})",
                data={"color_map": dict(link.color_map)},
            )
        if not product.variants:
            return SyncResult.fail("Product has no variants to link")
        skus = product.skus()
        if not skus:
            return SyncResult.fail("Product variants have no SKUs to search with")

        res = await self._call("search_products_by_sku", self.gateway.search_products_by_sku(skus))
        if not res.ok:
            return SyncResult.fail(f"Shopify search failed: {res.describe()}", data={"searched_skus": skus})
        remote_products = res.data.get("products") or []
        if not remote_products:
            return SyncResult.fail("No matching products found in Shopify", data={"searched_skus": skus})

        ok, message, data = self.analyze_link(product, remote_products)
        if not ok:
            return SyncResult.fail(message, data)

        color_map = {c: g["shopify_product_id"] for c, g in data["color_groups"].items()}
        top = next(iter(data["color_groups"].values()))
        metadata = dict(link.metadata) if link else {}
        metadata.update({
            "linked_at": now_iso(),
            "link_method": "sku_search",
            "coverage_percent": data["coverage_percent"],
            "color_groups_linked": len(color_map),
            "color_groups": list(color_map),
            "variants_found": data["found_skus"],
            "total_variants": data["total_skus"],
            "sync_account_name": account.name,
            "handle": top.get("handle"),
            "title": top.get("shopify_title"),
        })
        metadata.pop("last_error", None)
        base = link or new_link(pid, account.id)
        await self.store.put(pid, account.id, base.transition(SyncStatus.SYNCED, color_map=color_map, metadata=metadata))
        return SyncResult.ok(message, data)

    # ---------------------------
    # Pull
    # ---------------------------
    async def pull(self, account: SyncAccount, limit: int = 50, max_pages: int = 1, after: Optional[str] = None) -> SyncResult:
        products: List[Dict[str, Any]] = []
        page_info: Dict[str, Any] = {}
        pages = 0
        cursor = after
        try:
            while pages < max(1, max_pages):
                res = await self._call("get_products", self.gateway.get_products(limit, cursor))
                if not res.ok:
                    data = {"products": products, "count": len(products), "pages": pages, "page_info": page_info}
                    result = SyncResult.fail(f"Failed to pull products from Shopify: {res.describe()}", data)
                    return self._finish("pull", "*", account, result)
                products.extend(res.data.get("products") or [])
                page_info = res.data.get("page_info") or {}
                pages += 1
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")

            groups = self.extractor.group_by_parent(products)
            data = {
                "products": products,
                "count": len(products),
                "pages": pages,
                "page_info": page_info,
                "groups": {parent: [p.get("id") for p in members] for parent, members in groups.items()},
            }
            result = SyncResult.ok(f"Pulled {len(products)} products from Shopify", data)
        except Exception as e:
            logger.exception("[PULL] account=%s crashed", account.name)
            result = SyncResult.fail(f"Pull operation failed: {e}")
        return self._finish("pull", "*", account, result)

    # ---------------------------
    # Connection test
    # ---------------------------
    async def test_connection(self, account: SyncAccount) -> SyncResult:
        started = time.perf_counter()
        res = await self._call("test_connection", self.gateway.test_connection())
        elapsed = round(res.elapsed_ms if res.elapsed_ms is not None else (time.perf_counter() - started) * 1000, 1)
        shop = res.data.get("shop") if res.ok else None
        endpoint = res.data.get("endpoint")

        if res.ok and shop:
            msg = f"Connected to {shop.get('name') or account.shop_domain}"
            entry = record_health_check(account.name, success=True, message=msg, response_time_ms=elapsed, endpoint=endpoint)
            logger.info("[CONN] %s: %s in %.1fms", account.name, msg, elapsed)
            return SyncResult.ok(msg, {"shop": shop, "response_time_ms": elapsed, "health": entry})

        msg = f"Connection failed: {res.describe() if not res.ok else 'no shop returned'}"
        entry = record_health_check(account.name, success=False, message=msg, response_time_ms=elapsed, endpoint=endpoint)
        logger.warning("[CONN] %s: %s", account.name, msg)
        return SyncResult.fail(msg, {"response_time_ms": elapsed, "health": entry})
