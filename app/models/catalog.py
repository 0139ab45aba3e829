# app/models/catalog.py
# Local catalog entities (products, variants, images) and marketplace accounts.
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Variant(BaseModel):
    id: Optional[int | str] = Field(None, description="Local variant ID")
    sku: str = ""
    name: Optional[str] = Field(None, description="Display name, may embed the color")
    color: Optional[str] = None
    width: Optional[float] = Field(None, description="Width in cm")
    drop: Optional[float] = Field(None, description="Drop in cm")
    stock_level: int = 0
    price: float = 0.0
    barcode: Optional[str] = None
    weight: Optional[float] = Field(None, description="Physical weight in kg")
    status: str = "active"
    channel_prices: Dict[str, float] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def channel_price(self, channel_code: Optional[str]) -> float:
        if channel_code and channel_code in self.channel_prices:
            return float(self.channel_prices[channel_code])
        return float(self.price or 0.0)


class ProductImage(BaseModel):
    url: str
    alt_text: Optional[str] = None
    is_primary: bool = False
    sort_order: int = 0
    created_at: Optional[datetime] = None
    color: Optional[str] = Field(None, description="Restrict the image to one color group")


class Product(BaseModel):
    id: int | str
    name: str
    description: Optional[str] = None
    parent_sku: Optional[str] = None
    vendor: Optional[str] = None
    status: str = "active"
    variants: List[Variant] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)
    image_url: Optional[str] = Field(None, description="Legacy single image")
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def skus(self) -> List[str]:
        return [v.sku.strip() for v in self.variants if (v.sku or "").strip()]


class SyncAccount(BaseModel):
    id: int | str
    name: str = "main"
    channel_code: str = "shopify"
    shop_domain: str = ""
    access_token: str = ""
    api_version: str = "2024-07"
    is_active: bool = True
    settings: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")
