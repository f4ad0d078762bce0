"""
Product Assignment Repair
Fixes order items that earlier imports attached to the wrong product.

Older imports matched product names by substring, so a line for
"Bio Hoodie Schullogo" could end up on "Bio Hoodie Schullogo + Bock".
For every item whose product name contains "+" or " / ", the text before
it is taken as the intended product name and the item is moved to the
product of that exact name in the order's shop (created when missing).
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import Product
from services.catalog_resolver import ProductKey, product_key
from services.storage import storage as default_storage

logger = logging.getLogger(__name__)

CORRECTION_LIMIT = 100
NAME_SEPARATORS = ("+", " / ")


def intended_names(product_name: str) -> List[str]:
    """Shorter names a combined product name could stand for, most likely first."""
    name = product_name.strip()
    candidates = []
    for separator in NAME_SEPARATORS:
        if separator in name:
            head = name.split(separator, 1)[0].strip()
            if head and len(head) < len(name) and head not in candidates:
                candidates.append(head)
    return candidates


async def repair_product_assignments(
    shop_id: Optional[str] = None,
    dry_run: bool = True,
    storage=None,
) -> Dict[str, Any]:
    """
    Reassign order items to the product they were meant for.

    Args:
        shop_id: limit the repair to one shop's orders
        dry_run: report corrections without changing anything
        storage: StorageService to use (defaults to the global one)

    Returns:
        Summary with the corrections found (first 100) and error details.
    """
    storage = storage or default_storage

    orders = await storage.get_orders(shop_id)
    if not orders:
        return {
            "success": True,
            "dryRun": dry_run,
            "fixed": 0,
            "errors": 0,
            "errorDetails": [],
            "corrections": [],
            "totalCorrections": 0,
            "message": "No orders found",
        }

    orders_by_id = {order.id: order for order in orders}
    shop_ids = sorted({order.shop_id for order in orders})

    products: Dict[ProductKey, Product] = {}
    for product in await storage.get_active_products(shop_ids):
        products.setdefault(product_key(product.shop_id, product.name), product)

    items = await storage.get_order_items(list(orders_by_id))
    current_products = {p.id: p for p in await storage.get_products_by_ids([i.product_id for i in items])}
    logger.info(
        f"Checking {len(items)} order items in {len(orders)} orders "
        f"(shop_id={shop_id!r}, dry_run={dry_run})"
    )

    corrections: List[Dict[str, Any]] = []
    errors: List[Dict[str, str]] = []

    for item in items:
        order = orders_by_id[item.order_id]
        current = current_products.get(item.product_id)
        if current is None:
            continue
        candidates = intended_names(current.name)
        if not candidates:
            continue

        target = None
        for name in candidates:
            match = products.get(product_key(order.shop_id, name))
            if match is not None and match.id != current.id:
                target = match
                break

        target_id, target_name = (target.id, target.name) if target else (None, candidates[0])

        if not dry_run:
            try:
                if target is None:
                    logger.info(
                        f"Creating product {target_name!r} in shop {order.shop_id} "
                        f"with base price {current.base_price}"
                    )
                    target = await storage.create_product({
                        "shop_id": order.shop_id,
                        "name": target_name,
                        "base_price": current.base_price,
                    })
                    products[product_key(target.shop_id, target.name)] = target
                    target_id = target.id
                await storage.update_order_item_product(item.id, target.id)
            except SQLAlchemyError as e:
                logger.error(f"Could not reassign order item {item.id}: {e}")
                errors.append({"orderId": order.id, "orderItemId": item.id, "error": str(e)})
                continue
            logger.info(f"Reassigned item {item.id}: {current.name!r} -> {target_name!r}")

        corrections.append({
            "orderId": order.id,
            "orderItemId": item.id,
            "oldProductId": current.id,
            "oldProductName": current.name,
            "newProductId": target_id,
            "newProductName": target_name,
        })

    if dry_run:
        message = f"Found {len(corrections)} wrong assignments. Set dryRun=false to fix them."
    else:
        message = f"Fixed {len(corrections)} assignments."

    return {
        "success": True,
        "dryRun": dry_run,
        "fixed": len(corrections),
        "errors": len(errors),
        "errorDetails": errors[:CORRECTION_LIMIT],
        "corrections": corrections[:CORRECTION_LIMIT],
        "totalCorrections": len(corrections),
        "message": message,
    }
