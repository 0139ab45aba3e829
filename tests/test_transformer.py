from datetime import datetime, timezone

from app.models.catalog import ProductImage, Variant
from app.sync.components.price import money, variant_price_input
from app.sync.components.transformer import MarketplaceProductPayload, MarketplaceTransformer

from fakes import account, blackout_blind

tf = MarketplaceTransformer()


def test_titles_and_handles():
    assert tf.build_title("Blackout Blind", "Black") == "Blackout Blind - Black"
    assert tf.build_title("Black Roller Blind", "Black") == "Black Roller Blind"
    assert tf.build_title("Blackout Blind", "Default") == "Blackout Blind"
    assert tf.build_handle("Blackout Blind", "Dark Grey") == "blackout-blind-dark-grey"
    assert tf.build_handle("Blackout Blind", "Default") == "blackout-blind"


def test_blackout_blind_splits_into_one_payload_per_color():
    payloads = tf.transform_product(blackout_blind(), account())
    assert [p.color for p in payloads] == ["Black", "White"]

    black = payloads[0]
    pi = black.product_input
    assert pi["title"] == "Blackout Blind - Black"
    assert pi["handle"] == "blackout-blind-black"
    assert pi["vendor"] == "Acme Blinds"
    assert pi["productType"] == "Blackout Blinds"
    assert pi["status"] == "ACTIVE"
    assert "Black" in pi["tags"] and "BB" in pi["tags"]
    assert pi["productOptions"] == [
        {"name": "Width", "values": [{"name": "120cm"}, {"name": "150cm"}]},
        {"name": "Drop", "values": [{"name": "160cm"}]},
    ]
    assert black.skus() == ["BB-BLK-120", "BB-BLK-150"]
    assert "productOptions" not in black.content_fields()


def test_variant_payload():
    v = blackout_blind().variants[0]
    payload = tf.variant_payload(v, account())
    assert payload["sku"] == "BB-BLK-120"
    assert payload["price"] == "49.99"
    assert "compareAtPrice" not in payload
    assert payload["inventoryQuantity"] == 5
    assert payload["inventoryPolicy"] == "DENY"
    # 0.5 base + 120 * 160 * 0.0001
    assert payload["weight"] == 2.42
    assert payload["weightUnit"] == "KILOGRAMS"
    assert payload["optionValues"] == [
        {"optionName": "Width", "name": "120cm"},
        {"optionName": "Drop", "name": "160cm"},
    ]
    keys = {(m["namespace"], m["key"]) for m in payload["metafields"]}
    assert ("pim", "variant_id") in keys and ("variant", "dimensions") in keys


def test_variant_without_dimensions_uses_title_option():
    v = Variant(sku="KIT-1", name="Fitting Kit", price=5)
    payload = tf.variant_payload(v, None)
    assert payload["optionValues"] == [{"optionName": "Title", "name": "Fitting Kit"}]
    assert payload["weight"] == 0.5
    assert tf.product_options([v]) == [{"name": "Title", "values": [{"name": "Fitting Kit"}]}]


def test_channel_price_and_compare_at():
    v = Variant(sku="X", price=10, channel_prices={"shopify": 12.5}, attributes={"rrp": 20, "msrp": 5})
    assert variant_price_input(v, account()) == {"price": "12.50", "compareAtPrice": "20.00"}
    # a reference price below the selling price is ignored
    v2 = Variant(sku="Y", price=30, attributes={"rrp": 20})
    assert variant_price_input(v2, None) == {"price": "30.00"}
    assert money(19.999) == "20.00"


def test_images_filtered_by_color_and_ordered():
    product = blackout_blind(images=[
        ProductImage(url="https://cdn/a.jpg", color="black", sort_order=2),
        ProductImage(url="https://cdn/late.jpg", sort_order=1, created_at=datetime(2024, 2, 1, tzinfo=timezone.utc)),
        ProductImage(url="https://cdn/early.jpg", sort_order=1, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        ProductImage(url="https://cdn/primary.jpg", is_primary=True, sort_order=9),
        ProductImage(url="https://cdn/white.jpg", color="White"),
    ])
    imgs = tf.images(product, "Black", "Blackout Blind - Black")
    assert [i["src"] for i in imgs] == [
        "https://cdn/primary.jpg",
        "https://cdn/early.jpg",
        "https://cdn/late.jpg",
        "https://cdn/a.jpg",
    ]
    assert all(i["altText"] == "Blackout Blind - Black" for i in imgs)


def test_legacy_image_url_fallback():
    product = blackout_blind(image_url="https://cdn/legacy.jpg")
    assert tf.images(product, "White", "t") == [{"src": "https://cdn/legacy.jpg", "altText": "t"}]
    assert tf.images(blackout_blind(), "White", "t") == []


def test_draft_products_stay_draft():
    assert tf.product_status(blackout_blind(status="draft"), account()) == "DRAFT"
    acc = account(settings={"default_status": "draft"})
    assert tf.product_status(blackout_blind(), acc) == "DRAFT"


def test_wire_form_round_trip():
    payload = tf.transform_product(blackout_blind(), account())[1]
    wire = payload.to_wire()
    assert wire["_internal"] == {
        "color_group": "White",
        "original_product_id": "42",
        "variant_skus": ["BB-WHT-120", "BB-WHT-150"],
    }
    assert MarketplaceProductPayload.from_wire(wire) == payload
