import os
import sys
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "")
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.shop_matcher import ShopCandidate, ShopMatcher, expand_product_tags

MUNICH = ShopCandidate(
    id="shop-1",
    slug="shop-munich-2023",
    name="Shop Munich",
    school_short_code="mun",
    school_name="Gymnasium München",
)
WEINSTADT = ShopCandidate(
    id="shop-2",
    slug="shop-weinstadt-2024",
    name="Shop Weinstadt",
    school_short_code="gw",
    school_name="Gymnasium Weinstadt",
)
SUMMER = ShopCandidate(
    id="shop-3",
    slug="sf-2024",
    name="Sommerfest Kollektion",
    school_short_code=None,
    school_name="Realschule Am Park",
)


def _matcher():
    return ShopMatcher([MUNICH, WEINSTADT, SUMMER])


def test_expand_product_tags_keeps_segments_and_words():
    assert expand_product_tags("Gymnasium Weinstadt, shop-weinstadt-2024,, ab") == [
        "Gymnasium Weinstadt",
        "Gymnasium",
        "Weinstadt",
        "shop-weinstadt-2024",
        "shop",
        "weinstadt",
        "2024",
        "ab",
    ]
    assert expand_product_tags("") == []
    assert expand_product_tags(None) == []


def test_exact_slug_match_has_priority():
    match = _matcher().resolve("shop-weinstadt-2024")

    assert match.shop is WEINSTADT
    assert match.strategy == "slug"


def test_slug_component_match():
    match = _matcher().resolve("weinstadt")

    assert match.shop is WEINSTADT
    assert match.strategy == "slug_partial"


def test_school_short_code_is_exact_and_case_insensitive():
    match = _matcher().resolve(" GW ")

    assert match.shop is WEINSTADT
    assert match.strategy == "school_short_code"


def test_short_code_beats_partial_matches_of_other_tags():
    match = _matcher().resolve("munich, gw")

    assert match.shop is WEINSTADT
    assert match.strategy == "school_short_code"


def test_shop_name_match():
    match = _matcher().resolve("Sommerfest")

    assert match.shop is SUMMER
    assert match.strategy == "shop_name"


def test_school_name_match():
    match = _matcher().resolve("Realschule")

    assert match.shop is SUMMER
    assert match.strategy == "school_name"


def test_unknown_tags_resolve_to_nothing():
    matcher = _matcher()

    assert matcher.resolve("berlin") is None
    assert matcher.resolve("") is None
    assert matcher.resolve(None) is None


def test_resolve_any_uses_first_resolvable_field():
    match = _matcher().resolve_any(["berlin", "shop-munich-2023", "gw"])

    assert match.shop is MUNICH


def test_added_shops_become_matchable():
    matcher = ShopMatcher([])
    assert matcher.resolve("sf-2024") is None

    matcher.add(SUMMER)

    assert matcher.resolve("sf-2024").shop is SUMMER
    assert matcher.get("shop-3") is SUMMER
    assert matcher.get("missing") is None
