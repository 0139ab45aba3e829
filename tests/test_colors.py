from app.models.catalog import Product, Variant
from app.sync.components.colors import DEFAULT_COLOR, ColorGroupingEngine, normalize_color


def _product(*variants):
    return Product(id=1, name="Roller Blind", variants=list(variants))


def test_normalize_color():
    assert normalize_color(" dark  GRAY ") == "Dark Grey"
    assert normalize_color("navy") == "Navy"
    assert normalize_color("") == DEFAULT_COLOR
    assert normalize_color(None) == DEFAULT_COLOR


def test_explicit_color_wins_over_name():
    engine = ColorGroupingEngine()
    v = Variant(sku="RB-1", name="Roller Blind Red 90", color="gray")
    assert engine.derive_color(v, _product(v)) == "Grey"


def test_known_color_from_name():
    engine = ColorGroupingEngine()
    v = Variant(sku="RB-1", name="Roller Blind Navy 90")
    assert engine.derive_color(v, _product(v)) == "Navy"


def test_word_heuristic_skips_product_name_and_sizes():
    engine = ColorGroupingEngine()
    v = Variant(sku="RB-1", name="Roller Blind Mulberry 90cm")
    assert engine.derive_color(v, _product(v)) == "Mulberry"


def test_no_color_falls_back_to_default():
    engine = ColorGroupingEngine()
    v = Variant(sku="RB-1", name="Roller Blind 120cm x 160cm")
    assert engine.derive_color(v, _product(v)) == DEFAULT_COLOR
    assert engine.derive_color(Variant(sku="RB-2"), None) == DEFAULT_COLOR


def test_group_partitions_and_sorts():
    engine = ColorGroupingEngine()
    p = _product(
        Variant(sku="RB-W-1", color="White"),
        Variant(sku="RB-1", name="Roller Blind 90"),
        Variant(sku="RB-B-1", color="black"),
        Variant(sku="RB-W-2", color="White"),
    )
    groups = engine.group(p)
    assert list(groups) == ["Black", "Default", "White"]
    assert [v.sku for v in groups["White"]] == ["RB-W-1", "RB-W-2"]
    # every variant lands in exactly one group
    assert sum(len(vs) for vs in groups.values()) == len(p.variants)


def test_group_empty_product():
    assert ColorGroupingEngine().group(_product()) == {}
