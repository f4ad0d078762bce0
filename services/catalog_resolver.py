"""
Catalog Resolver
Finds or creates the Product and ProductVariant for each parsed order line.

Product names match exactly (lowercased, trimmed) within the order's shop.
Substring matching is deliberately not used: it assigned lines such as
"Bio Hoodie Schullogo" to "Bio Hoodie Schullogo + Bock".
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from database import Product, ProductVariant
from services.order_grouping import ParsedItem
from services.shop_matcher import normalize

logger = logging.getLogger(__name__)

ProductKey = Tuple[str, str]
VariantKey = Tuple[str, ...]


def product_key(shop_id: str, name: str) -> ProductKey:
    return shop_id, normalize(name)


def combination_key(product_id: str, size: Optional[str], color: Optional[str]) -> VariantKey:
    return "combo", product_id, normalize(size), normalize(color)


def title_key(product_id: str, title: str) -> VariantKey:
    return "title", product_id, normalize(title)


def variant_display_name(size: Optional[str], color: Optional[str]) -> str:
    if size and color:
        return f"{size} / {color}"
    return size or color or ""


@dataclass
class CatalogContext:
    """
    Lookup tables for one import run.

    Built once from bulk-loaded rows and extended as products/variants are
    created, so later lines in the same run reuse them.
    """
    products: Dict[ProductKey, Product] = field(default_factory=dict)
    variants: Dict[VariantKey, ProductVariant] = field(default_factory=dict)
    created_products: List[Product] = field(default_factory=list)
    created_variants: List[ProductVariant] = field(default_factory=list)

    @classmethod
    def build(cls, products: Iterable[Product], variants: Iterable[ProductVariant]) -> "CatalogContext":
        ctx = cls()
        for product in products:
            ctx.products.setdefault(product_key(product.shop_id, product.name), product)
        for variant in variants:
            ctx.register_variant(variant, overwrite=False)
        return ctx

    def register_product(self, product: Product) -> None:
        self.products[product_key(product.shop_id, product.name)] = product

    def register_variant(self, variant: ProductVariant, overwrite: bool = True) -> None:
        keys = [combination_key(variant.product_id, variant.name, variant.color_name)]
        if not variant.color_name:
            keys.append(title_key(variant.product_id, variant.name or ""))
        for key in keys:
            if overwrite or key not in self.variants:
                self.variants[key] = variant


class CatalogResolver:
    """Resolves parsed items against a CatalogContext, creating what is missing."""

    def __init__(self, storage, context: CatalogContext):
        self.storage = storage
        self.context = context

    async def resolve_product(self, shop_id: str, item: ParsedItem) -> Optional[Product]:
        key = product_key(shop_id, item.product_name)
        product = self.context.products.get(key)
        if product:
            return product

        name = item.product_name.strip()
        base_price = item.unit_price if item.unit_price > 0 else Decimal("0")
        logger.info(f"Creating product {name!r} in shop {shop_id} with base price {base_price}")
        try:
            product = await self.storage.create_product({
                "shop_id": shop_id,
                "name": name,
                "base_price": base_price,
            })
        except SQLAlchemyError as e:
            logger.error(f"Could not create product {name!r} in shop {shop_id}: {e}")
            return None

        self.context.register_product(product)
        self.context.created_products.append(product)
        return product

    async def resolve_variant(self, product: Product, item: ParsedItem) -> Optional[ProductVariant]:
        if item.size or item.color:
            key = combination_key(product.id, item.size, item.color)
            payload = {
                "product_id": product.id,
                "name": item.size or "",
                "color_name": item.color or None,
            }
            label = variant_display_name(item.size, item.color)
        elif item.variant_title and item.variant_title.strip():
            label = item.variant_title.strip()
            key = title_key(product.id, label)
            payload = {"product_id": product.id, "name": label}
        else:
            return None

        variant = self.context.variants.get(key)
        if variant:
            return variant

        logger.info(f"Creating variant {label!r} for product {product.name!r}")
        try:
            variant = await self.storage.create_variant(payload)
        except SQLAlchemyError as e:
            # The line is still imported, just without a variant
            logger.error(f"Could not create variant {label!r} for product {product.id}: {e}")
            return None

        self.context.register_variant(variant)
        self.context.created_variants.append(variant)
        return variant
