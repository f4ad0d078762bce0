"""
Shop Matcher
Maps free-text product tags from an export to exactly one shop.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"[\s,-]+")


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return str(value).lower().strip()


@dataclass(frozen=True)
class ShopCandidate:
    id: str
    slug: str
    name: str
    school_short_code: Optional[str] = None
    school_name: Optional[str] = None


@dataclass(frozen=True)
class ShopMatch:
    shop: ShopCandidate
    strategy: str
    tag: str


def expand_product_tags(product_tags: Optional[str]) -> List[str]:
    """
    Split a tag field on commas; segments with spaces or hyphens also
    contribute their words longer than two characters. Order-preserving, unique.
    """
    if not product_tags:
        return []
    expanded: List[str] = []
    for tag in (t.strip() for t in product_tags.split(",")):
        if not tag:
            continue
        expanded.append(tag)
        if " " in tag or "-" in tag:
            expanded.extend(w for w in _WORD_SPLIT.split(tag) if len(w) > 2)
    return list(dict.fromkeys(expanded))


def _contains_either(tag: str, value: str) -> bool:
    return bool(value) and (tag in value or value in tag)


def _slug_exact(tag: str, shop: ShopCandidate) -> bool:
    return normalize(shop.slug) == tag


def _short_code_exact(tag: str, shop: ShopCandidate) -> bool:
    return bool(shop.school_short_code) and normalize(shop.school_short_code) == tag


def _slug_partial(tag: str, shop: ShopCandidate) -> bool:
    slug = normalize(shop.slug)
    if _contains_either(tag, slug):
        return True
    return any(normalize(part) == tag for part in slug.split("-"))


def _shop_name_partial(tag: str, shop: ShopCandidate) -> bool:
    return _contains_either(tag, normalize(shop.name))


def _school_name_partial(tag: str, shop: ShopCandidate) -> bool:
    return _contains_either(tag, normalize(shop.school_name))


# Priority order is the tie-break policy: earlier strategies win over later ones
STRATEGIES: Tuple[Tuple[str, Callable[[str, ShopCandidate], bool]], ...] = (
    ("slug", _slug_exact),
    ("school_short_code", _short_code_exact),
    ("slug_partial", _slug_partial),
    ("shop_name", _shop_name_partial),
    ("school_name", _school_name_partial),
)


class ShopMatcher:
    """Resolves product tags to a shop via the ordered strategy cascade."""

    def __init__(self, shops: Iterable[ShopCandidate]):
        self.shops: List[ShopCandidate] = list(shops)

    def add(self, shop: ShopCandidate) -> None:
        self.shops.append(shop)

    def get(self, shop_id: str) -> Optional[ShopCandidate]:
        return next((s for s in self.shops if s.id == shop_id), None)

    def resolve(self, product_tags: Optional[str]) -> Optional[ShopMatch]:
        tags = [t for t in (normalize(tag) for tag in expand_product_tags(product_tags)) if t]
        if not tags:
            return None

        for strategy, matches in STRATEGIES:
            for tag in tags:
                for shop in self.shops:
                    if matches(tag, shop):
                        logger.debug(f"Tag {tag!r} -> shop {shop.name!r} via {strategy}")
                        return ShopMatch(shop=shop, strategy=strategy, tag=tag)

        logger.warning(
            f"No shop found for tags {tags!r}; slugs={[s.slug for s in self.shops]!r} "
            f"short_codes={[s.school_short_code for s in self.shops if s.school_short_code]!r}"
        )
        return None

    def resolve_any(self, tag_fields: Sequence[str]) -> Optional[ShopMatch]:
        """Resolve the first tag field (in file order) that matches a shop."""
        for product_tags in tag_fields:
            match = self.resolve(product_tags)
            if match:
                return match
        return None
