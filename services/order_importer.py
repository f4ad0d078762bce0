"""
Order Importer
Runs one import: parse → group → resolve shop → resolve catalog → dedup → persist.

Orders are written one at a time in file order. There is no transaction
across tables: a newly created order whose items cannot be written is deleted
again, and the failure is recorded on the result instead of aborting the run.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from database import Order, OrderItem, School, Shop
from services.catalog_resolver import CatalogContext, CatalogResolver
from services.import_errors import NoShopsConfiguredError, ReferenceDataError, ShopNotFoundError
from services.order_file_parser import parse_order_file
from services.order_grouping import GroupingResult, ParsedOrder, group_rows
from services.shop_matcher import ShopCandidate, ShopMatcher, normalize
from services.shop_provisioning import ShopProvisioner, split_tags
from services.storage import storage as default_storage
from settings import IMPORT_CREATE_MISSING_SHOPS, IMPORT_ERROR_LIMIT, IMPORT_WARNING_LIMIT
from utils import round_money

logger = logging.getLogger(__name__)

ItemPair = Tuple[str, Optional[str]]
IdentityKey = Tuple[str, str, str]
DedupKey = Tuple[str, str, str, Optional[date]]

PREVIEW_TAG_LIMIT = 50


def utc_day(value: Optional[datetime]) -> Optional[date]:
    """Calendar day in UTC; naive values are already UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


def identity_key(shop_id: str, customer_name: Optional[str], customer_email: Optional[str]) -> IdentityKey:
    return shop_id, (customer_name or "").strip(), normalize(customer_email)


class ExistingOrderIndex:
    """
    Existing orders of the involved shops, keyed by (shop, name, email, day).

    When several orders share a key the newest one wins. A parsed order
    without a date matches the newest order of the same (shop, name, email).
    """

    def __init__(self, orders: Iterable[Order], items: Iterable[OrderItem]):
        self.by_day: Dict[DedupKey, Order] = {}
        self.by_identity: Dict[IdentityKey, Order] = {}
        self.pairs: Dict[str, Set[ItemPair]] = {}

        for order in sorted(orders, key=lambda o: (o.created_at or datetime.min, o.id)):
            identity = identity_key(order.shop_id, order.customer_name, order.customer_email)
            self.by_day[identity + (utc_day(order.created_at),)] = order
            self.by_identity[identity] = order

        for item in items:
            self.pairs.setdefault(item.order_id, set()).add((item.product_id, item.variant_id))

    def find(self, shop_id: str, order: ParsedOrder) -> Optional[Order]:
        identity = identity_key(shop_id, order.customer_name, order.customer_email)
        if order.order_date is None:
            return self.by_identity.get(identity)
        return self.by_day.get(identity + (utc_day(order.order_date),))

    def pairs_for(self, order_id: str) -> Set[ItemPair]:
        return self.pairs.setdefault(order_id, set())


@dataclass
class ImportResult:
    success: bool = True
    imported: int = 0
    skipped: int = 0
    skipped_rows: int = 0
    orders: List[Dict[str, Any]] = field(default_factory=list)
    shop_stats: Dict[str, int] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0
    dry_run: bool = False
    preview: Optional[Dict[str, Any]] = None
    error_limit: int = IMPORT_ERROR_LIMIT
    warning_limit: int = IMPORT_WARNING_LIMIT

    def add_error(self, order_key: str, message: str) -> None:
        self.error_count += 1
        if len(self.errors) < self.error_limit:
            self.errors.append({"orderKey": order_key, "error": message})

    def add_warning(self, warning: Dict[str, Any]) -> None:
        self.warning_count += 1
        if len(self.warnings) < self.warning_limit:
            self.warnings.append(warning)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "imported": self.imported,
            "skipped": self.skipped,
            "skippedRows": self.skipped_rows,
            "orders": self.orders,
            "shopStats": self.shop_stats,
        }
        if self.errors:
            payload["errors"] = self.errors
            if self.error_count > len(self.errors):
                payload["errorsTruncated"] = self.error_count - len(self.errors)
        if self.warnings:
            payload["warnings"] = self.warnings
            if self.warning_count > len(self.warnings):
                payload["warningsTruncated"] = self.warning_count - len(self.warnings)
        if self.dry_run:
            payload["dryRun"] = True
            payload["preview"] = self.preview
        return payload


@dataclass
class ImportRun:
    """Everything one import run resolves up front."""
    matcher: ShopMatcher
    schools: List[School]
    shops: List[Shop]
    assignments: Dict[str, ShopCandidate] = field(default_factory=dict)
    strategies: Dict[str, str] = field(default_factory=dict)


def _money(value: Decimal) -> float:
    return float(round_money(value))


class OrderImporter:
    """Import engine shared by the upload endpoints and the CLI."""

    def __init__(
        self,
        storage=None,
        error_limit: int = IMPORT_ERROR_LIMIT,
        warning_limit: int = IMPORT_WARNING_LIMIT,
        create_missing_shops: bool = IMPORT_CREATE_MISSING_SHOPS,
    ):
        self.storage = storage or default_storage
        self.error_limit = error_limit
        self.warning_limit = warning_limit
        self.create_missing_shops = create_missing_shops

    async def import_file(
        self,
        content: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None,
        shop_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> ImportResult:
        """
        Import one export file.

        Args:
            content: raw upload bytes
            filename: used for format detection
            content_type: MIME type, fallback for format detection
            shop_id: bind every order to this shop and ignore product tags
            dry_run: resolve shops and report, write nothing

        Raises:
            OrderImportError subclasses for conditions fatal to the whole file.
        """
        rows = parse_order_file(content, filename, content_type)
        grouping = group_rows(rows)

        result = ImportResult(
            skipped_rows=grouping.skipped_rows,
            dry_run=dry_run,
            error_limit=self.error_limit,
            warning_limit=self.warning_limit,
        )
        for warning in grouping.warnings:
            result.add_warning(warning.as_dict())

        run = await self._load_shops(shop_id)
        self._assign_shops(grouping, run, shop_id)

        if dry_run:
            result.preview = self._preview(grouping, run)
            logger.info(
                f"Dry run: {len(grouping.orders)} orders, "
                f"{len(run.assignments)} with shop, {len(grouping.orders) - len(run.assignments)} without"
            )
            return result

        if self.create_missing_shops and not shop_id:
            await self._provision_missing_shops(grouping, run)

        shop_ids = sorted({candidate.id for candidate in run.assignments.values()})
        catalog, index = await self._load_reference_data(shop_ids)
        resolver = CatalogResolver(self.storage, catalog)

        for key, order in grouping.orders.items():
            try:
                await self._import_order(order, run, resolver, index, result)
            except Exception as e:
                logger.exception(f"Error processing order {key}")
                result.add_error(key, str(e))

        result.skipped = len(grouping.orders) - result.imported
        logger.info(
            f"Import finished imported={result.imported} skipped={result.skipped} "
            f"errors={result.error_count} products_created={len(catalog.created_products)} "
            f"variants_created={len(catalog.created_variants)}"
        )
        return result

    # ---------------- Reference data ----------------

    async def _load_shops(self, shop_id: Optional[str]) -> ImportRun:
        try:
            if shop_id:
                shop = await self.storage.get_shop(shop_id)
                if shop is None:
                    raise ShopNotFoundError(f"Shop {shop_id} not found")
                shops = [shop]
            else:
                shops = await self.storage.get_shops()

            if self.create_missing_shops and not shop_id:
                schools = await self.storage.get_schools()
            else:
                schools = await self.storage.get_schools([s.school_id for s in shops])
        except SQLAlchemyError as e:
            logger.exception("Could not load shops")
            raise ReferenceDataError("Could not load shops") from e

        if not shops and not (self.create_missing_shops and not shop_id):
            raise NoShopsConfiguredError("No shops found. Create a shop first.")

        schools_by_id = {school.id: school for school in schools}
        candidates = []
        for shop in shops:
            school = schools_by_id.get(shop.school_id)
            candidates.append(ShopCandidate(
                id=shop.id,
                slug=shop.slug,
                name=shop.name,
                school_short_code=school.short_code if school else None,
                school_name=school.name if school else None,
            ))
        logger.info(f"Loaded {len(shops)} shops and {len(schools)} schools")
        return ImportRun(matcher=ShopMatcher(candidates), schools=schools, shops=shops)

    def _assign_shops(self, grouping: GroupingResult, run: ImportRun, shop_id: Optional[str]) -> None:
        for key, order in grouping.orders.items():
            if shop_id:
                match_shop, strategy = run.matcher.get(shop_id), "known_shop"
            else:
                match = run.matcher.resolve_any(order.product_tags)
                match_shop, strategy = (match.shop, match.strategy) if match else (None, None)
            if match_shop is None:
                continue
            order.shop_id = match_shop.id
            run.assignments[key] = match_shop
            run.strategies[key] = strategy

    async def _provision_missing_shops(self, grouping: GroupingResult, run: ImportRun) -> None:
        provisioner = ShopProvisioner(self.storage, run.schools, run.shops)
        for key, order in grouping.orders.items():
            if key in run.assignments or not order.product_tags:
                continue
            # Shops created for earlier orders are matchable by later ones
            match = run.matcher.resolve_any(order.product_tags)
            candidate = match.shop if match else await provisioner.provision(order.product_tags)
            if candidate is None:
                continue
            if run.matcher.get(candidate.id) is None:
                run.matcher.add(candidate)
            order.shop_id = candidate.id
            run.assignments[key] = candidate
            run.strategies[key] = match.strategy if match else "created"
        if provisioner.created_shops:
            logger.info(
                f"Created {len(provisioner.created_schools)} schools and "
                f"{len(provisioner.created_shops)} shops for unmatched orders"
            )

    async def _load_reference_data(self, shop_ids: List[str]) -> Tuple[CatalogContext, ExistingOrderIndex]:
        try:
            products = await self.storage.get_active_products(shop_ids)
            variants = await self.storage.get_active_variants([p.id for p in products])
            orders = await self.storage.get_orders_for_shops(shop_ids)
            items = await self.storage.get_order_items([o.id for o in orders])
        except SQLAlchemyError as e:
            logger.exception("Could not load catalog and existing orders")
            raise ReferenceDataError("Could not load products and existing orders") from e

        logger.info(
            f"Loaded reference data shops={len(shop_ids)} products={len(products)} "
            f"variants={len(variants)} orders={len(orders)} items={len(items)}"
        )
        return CatalogContext.build(products, variants), ExistingOrderIndex(orders, items)

    # ---------------- Per-order persistence ----------------

    async def _import_order(
        self,
        order: ParsedOrder,
        run: ImportRun,
        resolver: CatalogResolver,
        index: ExistingOrderIndex,
        result: ImportResult,
    ) -> None:
        shop = run.assignments.get(order.key)
        if shop is None:
            tags = ", ".join(order.product_tags) or "none"
            result.add_error(order.key, f"No shop found for product tags ({tags})")
            return

        existing = index.find(shop.id, order)
        if existing is None and not order.items:
            result.add_error(order.key, "Order has no valid items")
            return

        if existing is not None:
            db_order = existing
            seen_pairs = index.pairs_for(existing.id)
            existing_item_count = len(seen_pairs)
        else:
            total = order.total_price_from_file if order.total_price_from_file is not None else order.total_amount
            db_order = await self.storage.create_order({
                "shop_id": shop.id,
                "customer_name": order.customer_name,
                "customer_email": order.customer_email,
                "class_name": order.class_name,
                "total_amount": total,
                "created_at": order.order_date,
            })
            seen_pairs = None
            existing_item_count = 0

        try:
            item_rows = await self._build_item_rows(order, db_order.id, shop.id, resolver, seen_pairs)

            if item_rows:
                await self.storage.create_order_items(item_rows)
                if seen_pairs is not None:
                    seen_pairs.update((row["product_id"], row["variant_id"]) for row in item_rows)
            elif existing is None:
                await self.storage.delete_order(db_order.id)
                result.add_error(
                    order.key,
                    f"Order has no valid items: {len(order.items)} item(s) in file, 0 could be processed",
                )
                return

            if existing is not None and order.total_price_from_file is not None:
                await self.storage.update_order_total(existing.id, order.total_price_from_file)
        except Exception:
            if existing is None:
                await self._discard_order(db_order.id)
            raise

        if existing is not None:
            total_amount = (
                order.total_price_from_file if order.total_price_from_file is not None
                else existing.total_amount
            )
        else:
            total_amount = db_order.total_amount

        result.imported += 1
        result.orders.append({
            "id": db_order.id,
            "shopId": shop.id,
            "customerName": order.customer_name,
            "totalAmount": _money(total_amount or Decimal("0")),
            "itemCount": len(item_rows),
            "existingItemCount": existing_item_count,
            "isExtended": existing is not None,
        })
        if existing is None:
            result.shop_stats[shop.name] = result.shop_stats.get(shop.name, 0) + 1

    async def _build_item_rows(
        self,
        order: ParsedOrder,
        order_id: str,
        shop_id: str,
        resolver: CatalogResolver,
        seen_pairs: Optional[Set[ItemPair]],
    ) -> List[Dict[str, Any]]:
        """Resolve items; for an existing order, pairs it already has are skipped.

        ``seen_pairs`` is only read here. The caller merges the new pairs once
        the rows are written.
        """
        rows = []
        pending: Set[ItemPair] = set()
        for item in order.items:
            product = await resolver.resolve_product(shop_id, item)
            if product is None:
                continue
            variant = await resolver.resolve_variant(product, item)
            pair = (product.id, variant.id if variant else None)
            if seen_pairs is not None:
                if pair in seen_pairs or pair in pending:
                    continue
                pending.add(pair)
            rows.append({
                "order_id": order_id,
                "product_id": product.id,
                "variant_id": pair[1],
                "quantity": item.quantity,
                "unit_price": round_money(item.unit_price),
                "line_total": round_money(item.unit_price * item.quantity),
            })
        return rows

    async def _discard_order(self, order_id: str) -> None:
        try:
            await self.storage.delete_order(order_id)
        except SQLAlchemyError:
            logger.exception(f"Could not delete order {order_id} after failed import")

    # ---------------- Dry run ----------------

    def _preview(self, grouping: GroupingResult, run: ImportRun) -> Dict[str, Any]:
        tag_counts: Counter = Counter()
        orders = []
        for key, order in grouping.orders.items():
            for tag in dict.fromkeys(t for f in order.product_tags for t in split_tags(f)):
                tag_counts[tag] += 1
            shop = run.assignments.get(key)
            entry: Dict[str, Any] = {
                "key": key,
                "orderNumber": order.order_number,
                "customerName": order.customer_name,
                "itemCount": len(order.items),
                "totalAmount": _money(
                    order.total_price_from_file if order.total_price_from_file is not None
                    else order.total_amount
                ),
            }
            if shop is not None:
                entry.update({"shopId": shop.id, "shopName": shop.name, "strategy": run.strategies.get(key)})
            else:
                entry["unresolvedTags"] = list(order.product_tags)
            orders.append(entry)

        return {
            "orders": orders,
            "resolved": len(run.assignments),
            "unresolved": len(grouping.orders) - len(run.assignments),
            "tagFrequency": dict(tag_counts.most_common(PREVIEW_TAG_LIMIT)),
        }
