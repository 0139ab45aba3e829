# app/shopify/gateway.py
# Contract between the sync orchestrator and a marketplace product API.
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GatewayResult(BaseModel):
    """
    Result of one remote operation.

    transport=True  -> the call itself failed (exception, timeout, HTTP or GraphQL-level error)
    user_errors     -> the marketplace answered but rejected the input
    """

    ok: bool = True
    data: Dict[str, Any] = Field(default_factory=dict)
    user_errors: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    transport: bool = False
    elapsed_ms: Optional[float] = None

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None, **kw: Any) -> "GatewayResult":
        return cls(ok=True, data=data or {}, **kw)

    @classmethod
    def rejected(cls, user_errors: List[Dict[str, Any]], data: Optional[Dict[str, Any]] = None, **kw: Any) -> "GatewayResult":
        return cls(ok=False, data=data or {}, user_errors=list(user_errors or []), error=describe_user_errors(user_errors), **kw)

    @classmethod
    def transport_failure(cls, error: str, **kw: Any) -> "GatewayResult":
        return cls(ok=False, error=error, transport=True, **kw)

    def describe(self) -> str:
        if self.ok:
            return "ok"
        if self.transport:
            return f"transport error: {self.error}"
        return f"marketplace rejected request: {self.error or describe_user_errors(self.user_errors)}"


def describe_user_errors(user_errors: List[Dict[str, Any]] | None) -> str:
    msgs = []
    for e in user_errors or []:
        field = e.get("field")
        msg = e.get("message") or json.dumps(e)
        msgs.append(f"{'.'.join(map(str, field))}: {msg}" if field else msg)
    return "; ".join(msgs)


class APIGateway(ABC):
    """
    Remote operations used by the orchestrator. Implementations return a
    GatewayResult for every remote failure instead of raising.
    """

    @abstractmethod
    async def create_product(self, product_input: Dict[str, Any]) -> GatewayResult:
        """data.product = {id, handle, title, variants:[{id, sku, price}]}"""
        raise NotImplementedError

    @abstractmethod
    async def update_product_content(self, product_id: str, fields: Dict[str, Any]) -> GatewayResult:
        raise NotImplementedError

    @abstractmethod
    async def update_variant_prices(self, product_id: str, variants: List[Dict[str, Any]]) -> GatewayResult:
        """variants = [{variantId, price, compareAtPrice?}]"""
        raise NotImplementedError

    @abstractmethod
    async def update_single_variant(self, variant_id: str, fields: Dict[str, Any]) -> GatewayResult:
        raise NotImplementedError

    @abstractmethod
    async def batch_update_variant_skus(self, updates: List[Dict[str, Any]]) -> GatewayResult:
        """updates = [{variantId, sku}] -> data.successful / data.failed"""
        raise NotImplementedError

    @abstractmethod
    async def delete_product(self, product_id: str) -> GatewayResult:
        """data.deletedId"""
        raise NotImplementedError

    @abstractmethod
    async def get_product(self, product_id: str) -> GatewayResult:
        """data.product = {id, title, handle, status, variants:[{id, sku, price}]} or None"""
        raise NotImplementedError

    @abstractmethod
    async def search_products_by_sku(self, skus: List[str]) -> GatewayResult:
        """data.products = [{id, title, handle, status, variants:[{sku, id, price}]}]"""
        raise NotImplementedError

    @abstractmethod
    async def test_connection(self) -> GatewayResult:
        """data.shop"""
        raise NotImplementedError

    @abstractmethod
    async def get_products(self, limit: int = 50, after: Optional[str] = None) -> GatewayResult:
        """data.products, data.page_info = {hasNextPage, endCursor}"""
        raise NotImplementedError

    @abstractmethod
    async def update_product_media(self, product_id: str, images: List[Dict[str, Any]]) -> GatewayResult:
        """images = [{src, altText}]"""
        raise NotImplementedError
