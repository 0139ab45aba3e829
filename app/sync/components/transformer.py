# app/sync/components/transformer.py
# Local product + one color group -> marketplace product payload (productInput,
# variants, images). Pure: no I/O.
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.config import settings
from app.models.catalog import Product, ProductImage, SyncAccount, Variant
from app.sync.components.colors import DEFAULT_COLOR, ColorGroupingEngine, normalize_color
from app.sync.components.price import variant_price_input
from app.sync.components.util import format_dimension, slugify, unique_sorted_numbers

BASE_WEIGHT_KG = 0.5
WEIGHT_PER_CM2_KG = 0.0001

_PRODUCT_TYPES = [
    ("roller", "Roller Blinds"),
    ("venetian", "Venetian Blinds"),
    ("vertical", "Vertical Blinds"),
    ("roman", "Roman Blinds"),
    ("blackout", "Blackout Blinds"),
    ("blind", "Window Blinds"),
]


class MarketplaceProductPayload(BaseModel):
    color: str
    product_id: str
    product_input: Dict[str, Any] = Field(default_factory=dict)
    variants: List[Dict[str, Any]] = Field(default_factory=list)
    images: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def title(self) -> str:
        return self.product_input.get("title") or ""

    def skus(self) -> List[str]:
        return [v.get("sku") for v in self.variants if v.get("sku")]

    def content_fields(self) -> Dict[str, Any]:
        """productInput minus what the marketplace refuses on update."""
        return {k: v for k, v in self.product_input.items() if k != "productOptions"}

    def to_wire(self) -> Dict[str, Any]:
        return {
            "productInput": dict(self.product_input),
            "variants": [dict(v) for v in self.variants],
            "images": [dict(i) for i in self.images],
            "_internal": {
                "color_group": self.color,
                "original_product_id": self.product_id,
                "variant_skus": self.skus(),
            },
        }

    @classmethod
    def from_wire(cls, wire: Dict[str, Any]) -> "MarketplaceProductPayload":
        internal = wire.get("_internal") or {}
        return cls(
            color=internal.get("color_group") or DEFAULT_COLOR,
            product_id=str(internal.get("original_product_id") or ""),
            product_input=wire.get("productInput") or {},
            variants=wire.get("variants") or [],
            images=wire.get("images") or [],
        )


def _metafield(namespace: str, key: str, value: Any, type_: str = "single_line_text_field") -> Dict[str, str]:
    if type_ == "json":
        value = json.dumps(value)
    return {"namespace": namespace, "key": key, "value": str(value), "type": type_}


class MarketplaceTransformer:
    def __init__(self, grouping: Optional[ColorGroupingEngine] = None):
        self.grouping = grouping or ColorGroupingEngine()

    # ---------------------------
    # Product-level fields
    # ---------------------------
    def build_title(self, name: str, color: str) -> str:
        name = (name or "").strip()
        if not color or color == DEFAULT_COLOR:
            return name
        if re.search(r"\b" + re.escape(color) + r"\b", name, re.IGNORECASE):
            return name
        return f"{name} - {color}"

    def build_handle(self, name: str, color: str) -> str:
        if not color or color == DEFAULT_COLOR:
            return slugify(name)
        return f"{slugify(name)}-{slugify(color)}"

    def product_type(self, product: Product) -> str:
        explicit = (product.attributes or {}).get("product_type")
        if explicit:
            return str(explicit)
        name = (product.name or "").lower()
        for needle, label in _PRODUCT_TYPES:
            if needle in name:
                return label
        return "Window Treatments"

    def product_status(self, product: Product, account: Optional[SyncAccount]) -> str:
        local = (product.status or "").strip().lower()
        if local in ("draft", "archived"):
            return local.upper()
        configured = (account.settings.get("default_status") if account else None) or settings.DEFAULT_PRODUCT_STATUS
        return str(configured).upper()

    def tags(self, product: Product, color: str) -> List[str]:
        raw = (product.attributes or {}).get("tags") or []
        if isinstance(raw, str):
            raw = [t.strip() for t in raw.split(",")]
        out = [str(t) for t in raw if str(t).strip()]
        for extra in (color if color != DEFAULT_COLOR else None, product.parent_sku):
            if extra and extra not in out:
                out.append(extra)
        return out

    def product_options(self, variants: List[Variant]) -> List[Dict[str, Any]]:
        widths = unique_sorted_numbers(v.width for v in variants)
        drops = unique_sorted_numbers(v.drop for v in variants)
        options: List[Dict[str, Any]] = []
        if widths:
            options.append({"name": "Width", "values": [{"name": format_dimension(w)} for w in widths]})
        if drops:
            options.append({"name": "Drop", "values": [{"name": format_dimension(d)} for d in drops]})
        if not options:
            labels: List[str] = []
            for v in variants:
                label = self._variant_label(v)
                if label not in labels:
                    labels.append(label)
            options.append({"name": "Title", "values": [{"name": l} for l in labels]})
        return options

    def product_metafields(self, product: Product, color: str, variants: List[Variant]) -> List[Dict[str, str]]:
        fields = [
            _metafield("pim", "product_id", product.id),
            _metafield("product", "color", color),
            _metafield("product", "variant_count", len(variants), "number_integer"),
        ]
        if product.parent_sku:
            fields.insert(1, _metafield("pim", "parent_sku", product.parent_sku))
        widths = unique_sorted_numbers(v.width for v in variants)
        if widths:
            fields.append(_metafield("product", "size_range", {
                "min_width": widths[0],
                "max_width": widths[-1],
                "available_sizes": [self._variant_label(v) for v in variants],
            }, "json"))
        return fields

    # ---------------------------
    # Variants
    # ---------------------------
    @staticmethod
    def _variant_label(v: Variant) -> str:
        if v.width and v.drop:
            return f"{format_dimension(v.width)} x {format_dimension(v.drop)}"
        if v.width:
            return format_dimension(v.width)
        return v.name or v.sku or "Default Title"

    @staticmethod
    def variant_weight(v: Variant) -> float:
        if v.weight:
            return round(float(v.weight), 3)
        return round(BASE_WEIGHT_KG + (v.width or 0) * (v.drop or 0) * WEIGHT_PER_CM2_KG, 3)

    def inventory_policy(self, v: Variant, account: Optional[SyncAccount]) -> str:
        if (v.attributes or {}).get("allow_backorder"):
            return "CONTINUE"
        return str((account.settings.get("inventory_policy") if account else None) or "DENY").upper()

    def variant_payload(self, v: Variant, account: Optional[SyncAccount]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"sku": v.sku}
        payload.update(variant_price_input(v, account))
        if v.barcode:
            payload["barcode"] = v.barcode
        payload["inventoryPolicy"] = self.inventory_policy(v, account)
        payload["inventoryQuantity"] = int(v.stock_level or 0)
        payload["weight"] = self.variant_weight(v)
        payload["weightUnit"] = "KILOGRAMS"

        option_values = []
        if v.width:
            option_values.append({"optionName": "Width", "name": format_dimension(v.width)})
        if v.drop:
            option_values.append({"optionName": "Drop", "name": format_dimension(v.drop)})
        if not option_values:
            option_values.append({"optionName": "Title", "name": self._variant_label(v)})
        payload["optionValues"] = option_values

        metafields = [_metafield("pim", "external_sku", v.sku), _metafield("pim", "status", v.status)]
        if v.id is not None:
            metafields.insert(0, _metafield("pim", "variant_id", v.id))
        if v.width and v.drop:
            metafields.append(_metafield("variant", "dimensions", {"width": v.width, "drop": v.drop, "unit": "cm"}, "json"))
        payload["metafields"] = metafields
        return payload

    # ---------------------------
    # Images
    # ---------------------------
    @staticmethod
    def _image_sort_key(img: ProductImage):
        created = img.created_at.timestamp() if img.created_at else float("inf")
        return (0 if img.is_primary else 1, img.sort_order, created)

    def images(self, product: Product, color: str, title: str) -> List[Dict[str, str]]:
        imgs = [i for i in product.images or [] if not i.color or normalize_color(i.color) == color]
        if imgs:
            return [
                {"src": i.url, "altText": i.alt_text or title}
                for i in sorted(imgs, key=self._image_sort_key)
            ]
        if product.image_url:
            return [{"src": product.image_url, "altText": title}]
        return []

    # ---------------------------
    # Entry points
    # ---------------------------
    def transform(
        self,
        color: str,
        variants: List[Variant],
        product: Product,
        account: Optional[SyncAccount] = None,
    ) -> MarketplaceProductPayload:
        title = self.build_title(product.name, color)
        vendor = product.vendor or (account.settings.get("default_vendor") if account else None) or settings.DEFAULT_VENDOR
        product_input = {
            "title": title,
            "handle": self.build_handle(product.name, color),
            "descriptionHtml": product.description or "",
            "vendor": vendor,
            "productType": self.product_type(product),
            "status": self.product_status(product, account),
            "tags": self.tags(product, color),
            "productOptions": self.product_options(variants),
            "metafields": self.product_metafields(product, color, variants),
        }
        return MarketplaceProductPayload(
            color=color,
            product_id=str(product.id),
            product_input=product_input,
            variants=[self.variant_payload(v, account) for v in variants],
            images=self.images(product, color, title),
        )

    def transform_product(self, product: Product, account: Optional[SyncAccount] = None) -> List[MarketplaceProductPayload]:
        return [
            self.transform(color, variants, product, account)
            for color, variants in self.grouping.group(product).items()
        ]
