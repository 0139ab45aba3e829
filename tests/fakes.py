import asyncio
import copy
import itertools

from app.models.catalog import Product, SyncAccount, Variant
from app.shopify.gateway import APIGateway, GatewayResult

GID = "gid://shopify/Product/{}"
VGID = "gid://shopify/ProductVariant/{}"


def blackout_blind(**overrides):
    """Two colors, two sizes each."""
    data = dict(
        id=42,
        name="Blackout Blind",
        parent_sku="BB",
        description="<p>Blocks light</p>",
        vendor="Acme Blinds",
        variants=[
            Variant(id=1, sku="BB-BLK-120", name="Blackout Blind Black 120", color="Black", width=120, drop=160, price=49.99, stock_level=5),
            Variant(id=2, sku="BB-BLK-150", name="Blackout Blind Black 150", color="Black", width=150, drop=160, price=59.99, stock_level=3),
            Variant(id=3, sku="BB-WHT-120", name="Blackout Blind White 120", color="White", width=120, drop=160, price=49.99, stock_level=0),
            Variant(id=4, sku="BB-WHT-150", name="Blackout Blind White 150", color="White", width=150, drop=160, price=59.99, stock_level=7),
        ],
    )
    data.update(overrides)
    return Product(**data)


def account(**overrides):
    data = dict(id="main", name="main", shop_domain="test-shop.myshopify.com", access_token="shpat_test")
    data.update(overrides)
    return SyncAccount(**data)


class FakeGateway(APIGateway):
    """
    In-memory marketplace. Failures are injected per (method, key) where key is
    the product title for create_product and the product id elsewhere; a key of
    None matches every call of that method.
    """

    def __init__(self):
        self.products = {}
        self.calls = []
        self.failures = {}
        self.raises = {}
        self.delays = {}
        self.search_results = None
        self.pages = []
        self.shop = {"name": "Test Shop", "myshopifyDomain": "test-shop.myshopify.com"}
        self._ids = itertools.count(1)
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self, method, key):
        self.calls.append((method, key))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(method)
            if delay:
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        for k in ((method, key), (method, None)):
            if k in self.raises:
                raise self.raises[k]
            if k in self.failures:
                return self.failures[k]
        return None

    def called(self, method):
        return [k for m, k in self.calls if m == method]

    def seed(self, title, skus, handle=None):
        pid = GID.format(next(self._ids))
        self.products[pid] = {
            "id": pid,
            "title": title,
            "handle": handle or title.lower().replace(" ", "-"),
            "status": "ACTIVE",
            "variants": [{"id": VGID.format(next(self._ids)), "sku": s, "price": "1.00"} for s in skus],
        }
        return pid

    # ---- APIGateway ----

    async def create_product(self, product_input):
        failed = await self._enter("create_product", product_input.get("title"))
        if failed is not None:
            return failed
        options = product_input.get("productOptions") or []
        combos = 1
        for opt in options:
            combos *= max(1, len(opt.get("values") or []))
        pid = GID.format(next(self._ids))
        product = {
            "id": pid,
            "title": product_input.get("title"),
            "handle": product_input.get("handle"),
            "status": product_input.get("status"),
            "variants": [{"id": VGID.format(next(self._ids)), "sku": "", "price": "0.00"} for _ in range(combos)],
        }
        self.products[pid] = product
        return GatewayResult.success({"product": copy.deepcopy(product)})

    async def update_product_content(self, product_id, fields):
        failed = await self._enter("update_product_content", product_id)
        if failed is not None:
            return failed
        if product_id not in self.products:
            return GatewayResult.rejected([{"field": ["id"], "message": "Product does not exist"}])
        self.products[product_id].update({k: v for k, v in fields.items() if k in ("title", "handle", "status")})
        return GatewayResult.success({"product": copy.deepcopy(self.products[product_id])})

    async def update_variant_prices(self, product_id, variants):
        failed = await self._enter("update_variant_prices", product_id)
        if failed is not None:
            return failed
        by_id = {v["id"]: v for v in self.products.get(product_id, {}).get("variants", [])}
        for upd in variants:
            if upd["variantId"] in by_id:
                by_id[upd["variantId"]]["price"] = upd.get("price")
        return GatewayResult.success({"variants": variants})

    async def update_single_variant(self, variant_id, fields):
        failed = await self._enter("update_single_variant", variant_id)
        if failed is not None:
            return failed
        for p in self.products.values():
            for v in p["variants"]:
                if v["id"] == variant_id:
                    v.update(fields)
                    return GatewayResult.success({"variant": dict(v)})
        return GatewayResult.rejected([{"message": "Variant not found"}])

    async def batch_update_variant_skus(self, updates):
        failed = await self._enter("batch_update_variant_skus", None)
        if failed is not None:
            return failed
        successful, failures = [], []
        for upd in updates:
            res = await self.update_single_variant(upd["variantId"], {"sku": upd["sku"]})
            (successful if res.ok else failures).append(upd)
        if failures:
            return GatewayResult(ok=False, data={"successful": successful, "failed": failures}, error="some SKU updates failed")
        return GatewayResult.success({"successful": successful, "failed": []})

    async def delete_product(self, product_id):
        failed = await self._enter("delete_product", product_id)
        if failed is not None:
            return failed
        self.products.pop(product_id, None)
        return GatewayResult.success({"deletedId": product_id})

    async def get_product(self, product_id):
        failed = await self._enter("get_product", product_id)
        if failed is not None:
            return failed
        p = self.products.get(product_id)
        return GatewayResult.success({"product": copy.deepcopy(p) if p else None})

    async def search_products_by_sku(self, skus):
        failed = await self._enter("search_products_by_sku", None)
        if failed is not None:
            return failed
        if self.search_results is not None:
            return GatewayResult.success({"products": copy.deepcopy(self.search_results)})
        wanted = {s.upper() for s in skus}
        hits = [
            copy.deepcopy(p) for p in self.products.values()
            if any((v.get("sku") or "").upper() in wanted for v in p["variants"])
        ]
        return GatewayResult.success({"products": hits})

    async def test_connection(self):
        failed = await self._enter("test_connection", None)
        if failed is not None:
            return failed
        return GatewayResult.success({"shop": dict(self.shop), "endpoint": "fake://graphql"}, elapsed_ms=12.5)

    async def get_products(self, limit=50, after=None):
        failed = await self._enter("get_products", after)
        if failed is not None:
            return failed
        if self.pages:
            index = 0 if after is None else int(after)
            products = self.pages[index]
            has_next = index + 1 < len(self.pages)
            page_info = {"hasNextPage": has_next, "endCursor": str(index + 1) if has_next else None}
            return GatewayResult.success({"products": copy.deepcopy(products), "page_info": page_info})
        products = list(self.products.values())[:limit]
        return GatewayResult.success({"products": copy.deepcopy(products), "page_info": {"hasNextPage": False, "endCursor": None}})

    async def update_product_media(self, product_id, images):
        failed = await self._enter("update_product_media", product_id)
        if failed is not None:
            return failed
        return GatewayResult.success({"media": [{"alt": i.get("altText")} for i in images]})
