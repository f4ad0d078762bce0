"""
Shop Provisioning
Optional fallback for orders whose tags match no shop: find the school the
tags refer to (or create it) and give it a live shop.

Only used when the import runs with create_missing_shops enabled.
"""
import logging
import re
import time
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import School, Shop
from services.shop_matcher import ShopCandidate, normalize
from settings import DEFAULT_SHOP_CURRENCY

logger = logging.getLogger(__name__)

_UPPERCASE = re.compile(r"[A-Z]")
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_SCHOOL_WORDS = ("Gymnasium", "Schule")


def split_tags(product_tags: Optional[str]) -> List[str]:
    if not product_tags:
        return []
    return [t.strip() for t in product_tags.split(",") if t.strip()]


def slugify(value: str) -> str:
    return _NON_SLUG.sub("-", value.lower()).strip("-")


def guess_short_code(tags: List[str]) -> Optional[str]:
    """A short tag, lowercase or at most ten characters."""
    for tag in tags:
        if len(tag) <= 15 and (not _UPPERCASE.search(tag) or len(tag) <= 10):
            return tag
    return None


def guess_school_name(tags: List[str]) -> Optional[str]:
    """A long capitalised tag, else the longest tag."""
    for tag in tags:
        if _UPPERCASE.search(tag) and (len(tag) > 10 or any(w in tag for w in _SCHOOL_WORDS)):
            return tag
    if tags:
        return max(tags, key=len)
    return None


def find_school(schools: List[School], tags: List[str]) -> Optional[School]:
    normalized = [normalize(t) for t in tags]

    for tag in normalized:
        for school in schools:
            if school.short_code and normalize(school.short_code) == tag:
                return school
    for tag in normalized:
        for school in schools:
            if school.short_code and tag in normalize(school.short_code):
                return school
    for tag in normalized:
        for school in schools:
            name = normalize(school.name)
            if name and (name == tag or tag in name or name in tag):
                return school
    return None


class ShopProvisioner:
    """Finds or creates the school + shop for an unmatched tag set, within one run."""

    def __init__(self, storage, schools: List[School], shops: List[Shop]):
        self.storage = storage
        self.schools = list(schools)
        self.shops_by_school: Dict[str, Shop] = {}
        for shop in shops:
            self.shops_by_school.setdefault(shop.school_id, shop)
        self.created_schools: List[School] = []
        self.created_shops: List[Shop] = []

    async def provision(self, tag_fields: List[str]) -> Optional[ShopCandidate]:
        tags = list(dict.fromkeys(t for field in tag_fields for t in split_tags(field)))
        if not tags:
            return None

        school = find_school(self.schools, tags)
        if school is None:
            school = await self._create_school(tags)
            if school is None:
                return None

        shop = self.shops_by_school.get(school.id)
        if shop is None:
            shop = await self._create_shop(school)
            if shop is None:
                return None

        return ShopCandidate(
            id=shop.id,
            slug=shop.slug,
            name=shop.name,
            school_short_code=school.short_code,
            school_name=school.name,
        )

    async def _create_school(self, tags: List[str]) -> Optional[School]:
        name = guess_school_name(tags)
        if not name:
            return None
        short_code = guess_short_code(tags)
        logger.info(f"Creating school {name!r} (short_code={short_code!r})")
        try:
            school = await self.storage.create_school({
                "name": name,
                "short_code": short_code,
                "status": "existing",
            })
        except SQLAlchemyError as e:
            logger.error(f"Could not create school {name!r}: {e}")
            return None
        self.schools.append(school)
        self.created_schools.append(school)
        return school

    async def _create_shop(self, school: School) -> Optional[Shop]:
        name = f"Shop {school.name}"
        slug = f"{slugify(school.name)}-{int(time.time() * 1000)}"
        logger.info(f"Creating shop {name!r} slug={slug!r}")
        try:
            shop = await self.storage.create_shop({
                "school_id": school.id,
                "name": name,
                "slug": slug,
                "status": "live",
                "currency": DEFAULT_SHOP_CURRENCY,
            })
        except SQLAlchemyError as e:
            logger.error(f"Could not create shop for school {school.name!r}: {e}")
            return None
        self.shops_by_school[school.id] = shop
        self.created_shops.append(shop)
        return shop
