from app.sync.components.colors import DEFAULT_COLOR
from app.sync.components.sku_patterns import SkuPatternExtractor

from fakes import blackout_blind

ex = SkuPatternExtractor()


def test_match_pattern_order():
    assert ex.match_pattern("001-002") == ("numeric_prefix", "001")
    assert ex.match_pattern("RB120-BK-60") == ("alnum_prefix", "RB120")
    assert ex.match_pattern("mtmsav225") == ("letter_digit_prefix", "MTMSAV")
    assert ex.match_pattern("BLIND-RED") == ("generic_token", "BLIND")
    assert ex.match_pattern("PLAIN") == (None, None)
    assert ex.match_pattern("") == (None, None)


def test_infer_parent_takes_the_mode():
    assert ex.infer_parent(["RB120-BK-60", "RB120-WH-60", "XX-1"]) == "RB120"
    # tie keeps the first seen
    assert ex.infer_parent(["AA-1", "BB-1"]) == "AA"
    assert ex.infer_parent(["PLAIN", ""]) is None


def test_group_by_parent_collects_ungrouped():
    products = [
        {"id": "1", "variants": [{"sku": "RB120-BK-60"}, {"sku": "RB120-BK-90"}]},
        {"id": "2", "variants": [{"sku": "RB120-WH-60"}]},
        {"id": "3", "variants": [{"sku": ""}]},
    ]
    groups = ex.group_by_parent(products)
    assert [p["id"] for p in groups["RB120"]] == ["1", "2"]
    assert [p["id"] for p in groups[""]] == ["3"]


def test_extract_color():
    assert ex.extract_color("RB120-BK-60") == "Black"
    assert ex.extract_color("BB-WHT-120", "BB") == "White"
    assert ex.extract_color("RB120-BK60") == "Black"
    assert ex.extract_color("BB-XYZ-120", "BB") == DEFAULT_COLOR


def test_color_from_title():
    assert ex.color_from_title("Blackout Blind - Black", "Blackout Blind") == "Black"
    assert ex.color_from_title("blackout blind", "Blackout Blind") == DEFAULT_COLOR
    assert ex.color_from_title("Something Else", "Blackout Blind") is None
    assert ex.color_from_title("", "Blackout Blind") is None


def test_score_candidate_signals():
    product = blackout_blind()
    cand = {"id": "p1", "title": "Blackout Blind - Black", "handle": "bb-black",
            "variants": [{"sku": "BB-BLK-120"}, {"sku": "OTHER"}]}
    scored = ex.score_candidate(product, cand)
    assert scored["exact_sku_hits"] == ["BB-BLK-120"]
    assert scored["signals"] == {
        "variant_sku_containment": 30,
        "name_word_overlap": 20,
        "category_keyword": 5,
    }
    assert scored["score"] == 55
    assert scored["name_overlap"] == ["blackout", "blind"]


def test_rank_candidates_drops_candidates_without_exact_hits():
    product = blackout_blind()
    strong = {"id": "a", "title": "Blackout Blind BB - White", "variants": [{"sku": "BB-WHT-120"}]}
    weak = {"id": "b", "title": "Curtain", "variants": [{"sku": "BB-BLK-120"}]}
    unrelated = {"id": "c", "title": "Blackout Blind", "variants": [{"sku": "ZZ-1"}]}
    ranked = ex.rank_candidates(product, [weak, unrelated, strong])
    assert [r["id"] for r in ranked] == ["a", "b"]
    assert ranked[0]["score"] > ranked[1]["score"]
