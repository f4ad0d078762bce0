"""
Storage Service Layer
Typed query layer over the school-shop schema used by the order importer:
bulk reads by id list, single inserts, single updates and single deletes.
No transaction spans more than one call; callers compensate on failure.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, delete, update
from typing import List, Optional, Dict, Any, Iterable
import logging
from datetime import datetime, timezone
from decimal import Decimal

from database import (
    AsyncSessionLocal, School, Shop, Product, ProductVariant, Order, OrderItem
)
from utils import chunked, retry_async, round_money, sanitize_string

logger = logging.getLogger(__name__)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class StorageService:
    """Storage service providing database operations"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or AsyncSessionLocal

    def _table_column_names(self, table):
        return {c.name for c in table.columns}

    def _filter_columns(self, table, row: Dict[str, Any]) -> Dict[str, Any]:
        """Drop keys that don't exist on the SQLAlchemy table (prevents invalid kw errors)."""
        allowed = self._table_column_names(table)
        return {k: v for k, v in row.items() if k in allowed}

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        return self.session_factory()

    async def _insert(self, model, data: Dict[str, Any]):
        async with self.get_session() as session:
            obj = model(**self._filter_columns(model.__table__, data))
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
            return obj

    async def _select_in(self, model, column, ids: Iterable[str], *criteria) -> list:
        unique_ids = list(dict.fromkeys(i for i in ids if i))
        if not unique_ids:
            return []
        found = []
        async with self.get_session() as session:
            for chunk in chunked(unique_ids):
                query = select(model).where(column.in_(chunk), *criteria)
                result = await session.execute(query)
                found.extend(result.scalars().all())
        return found

    # ---------------- Schools & shops ----------------

    @retry_async(max_retries=2)
    async def get_shops(self) -> List[Shop]:
        async with self.get_session() as session:
            result = await session.execute(select(Shop).order_by(Shop.created_at, Shop.id))
            return list(result.scalars().all())

    async def get_shop(self, shop_id: str) -> Optional[Shop]:
        async with self.get_session() as session:
            return await session.get(Shop, shop_id)

    @retry_async(max_retries=2)
    async def get_schools(self, school_ids: Optional[Iterable[str]] = None) -> List[School]:
        """Schools by id list, or all schools when no ids are given."""
        if school_ids is not None:
            return await self._select_in(School, School.id, school_ids)
        async with self.get_session() as session:
            result = await session.execute(select(School).order_by(School.created_at, School.id))
            return list(result.scalars().all())

    async def create_school(self, data: Dict[str, Any]) -> School:
        payload = dict(data)
        payload["name"] = sanitize_string(payload.get("name"))
        return await self._insert(School, payload)

    async def create_shop(self, data: Dict[str, Any]) -> Shop:
        return await self._insert(Shop, dict(data))

    # ---------------- Catalog ----------------

    @retry_async(max_retries=2)
    async def get_active_products(self, shop_ids: Iterable[str]) -> List[Product]:
        return await self._select_in(Product, Product.shop_id, shop_ids, Product.active.is_(True))

    @retry_async(max_retries=2)
    async def get_active_variants(self, product_ids: Iterable[str]) -> List[ProductVariant]:
        return await self._select_in(
            ProductVariant, ProductVariant.product_id, product_ids, ProductVariant.active.is_(True)
        )

    async def get_products_by_ids(self, product_ids: Iterable[str]) -> List[Product]:
        return await self._select_in(Product, Product.id, product_ids)

    async def create_product(self, data: Dict[str, Any]) -> Product:
        payload = {"active": True, "sort_index": 0, **data}
        payload["name"] = sanitize_string(payload.get("name"))
        payload["base_price"] = round_money(payload.get("base_price") or Decimal("0"))
        return await self._insert(Product, payload)

    async def create_variant(self, data: Dict[str, Any]) -> ProductVariant:
        payload = {"active": True, "additional_price": Decimal("0"), **data}
        return await self._insert(ProductVariant, payload)

    # ---------------- Orders ----------------

    @retry_async(max_retries=2)
    async def get_orders_for_shops(self, shop_ids: Iterable[str]) -> List[Order]:
        return await self._select_in(Order, Order.shop_id, shop_ids)

    @retry_async(max_retries=2)
    async def get_order_items(self, order_ids: Iterable[str]) -> List[OrderItem]:
        return await self._select_in(OrderItem, OrderItem.order_id, order_ids)

    async def get_orders(self, shop_id: Optional[str] = None) -> List[Order]:
        async with self.get_session() as session:
            query = select(Order).order_by(Order.created_at, Order.id)
            if shop_id:
                query = query.where(Order.shop_id == shop_id)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_order(self, data: Dict[str, Any]) -> Order:
        payload = {"status": "pending", **data}
        payload["customer_name"] = sanitize_string(payload.get("customer_name"))
        payload["total_amount"] = round_money(payload.get("total_amount") or Decimal("0"))
        payload["created_at"] = to_naive_utc(payload.get("created_at")) or datetime.utcnow()
        return await self._insert(Order, payload)

    async def update_order_total(self, order_id: str, total_amount: Decimal) -> None:
        async with self.get_session() as session:
            await session.execute(
                update(Order).where(Order.id == order_id).values(total_amount=round_money(total_amount))
            )
            await session.commit()

    async def delete_order(self, order_id: str) -> None:
        """Delete an order and any items already written for it."""
        async with self.get_session() as session:
            await session.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            await session.execute(delete(Order).where(Order.id == order_id))
            await session.commit()

    async def create_order_items(self, items_data: List[Dict[str, Any]]) -> List[OrderItem]:
        """Insert all items of one order in a single commit."""
        if not items_data:
            return []
        async with self.get_session() as session:
            items = [OrderItem(**self._filter_columns(OrderItem.__table__, row)) for row in items_data]
            session.add_all(items)
            await session.commit()
            return items

    async def update_order_item_product(self, item_id: str, product_id: str) -> None:
        async with self.get_session() as session:
            await session.execute(
                update(OrderItem).where(OrderItem.id == item_id).values(product_id=product_id)
            )
            await session.commit()


# Global storage instance
storage = StorageService()
