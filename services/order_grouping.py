"""
Order Grouping
Folds parsed export rows into one ParsedOrder per logical order.

Grouping is done in two passes so the result does not depend on row order:
pass 1 builds order headers (customer identity, date) from the rows that
carry them, pass 2 attaches line items, file totals and product tags.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Tuple

from services.column_aliases import customer_name, field_value
from services.order_file_parser import parse_instant

logger = logging.getLogger(__name__)

UNKNOWN_CUSTOMER = "Unbekannt"

SIZE_PATTERN = re.compile(r"^(XS|S|M|L|XL|XXL|XXXL|\d+)$", re.IGNORECASE)

_NUMBER = re.compile(
    r"^\s*(?:€|EUR|\$|CHF)?\s*([+-]?\d+(?:[.,]\d+)?)\s*(?:€|EUR|\$|CHF)?\s*$",
    re.IGNORECASE,
)

# First data row of an export is line 2 (line 1 holds the headers)
FIRST_DATA_LINE = 2


@dataclass
class ParsedItem:
    product_name: str
    variant_title: Optional[str]
    size: Optional[str]
    color: Optional[str]
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class ParsedOrder:
    key: str
    order_number: Optional[str]
    customer_name: str = ""
    customer_email: Optional[str] = None
    class_name: Optional[str] = None
    order_date: Optional[datetime] = None
    shop_id: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    total_price_from_file: Optional[Decimal] = None
    product_tags: List[str] = field(default_factory=list)


@dataclass
class RowWarning:
    row: int
    column: str
    value: str
    message: str

    def as_dict(self) -> Dict[str, object]:
        return {"row": self.row, "column": self.column, "value": self.value, "message": self.message}


@dataclass
class GroupingResult:
    orders: Dict[str, ParsedOrder]
    skipped_rows: int = 0
    warnings: List[RowWarning] = field(default_factory=list)


# ---------- Field parsing ----------

def parse_decimal(raw: Optional[str]) -> Optional[Decimal]:
    """Parse a money/number cell; decimal comma and a currency sign are accepted."""
    if raw is None:
        return None
    match = _NUMBER.match(str(raw))
    if not match:
        return None
    try:
        return Decimal(match.group(1).replace(",", "."))
    except InvalidOperation:
        return None


def parse_quantity(raw: Optional[str]) -> Optional[int]:
    value = parse_decimal(raw)
    if value is None or value != value.to_integral_value():
        return None
    return int(value)


def parse_variant_title(title: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split "Size / Color"; a lone segment is a size if it looks like one, else a color."""
    if not title or not title.strip():
        return None, None
    parts = [part.strip() for part in title.split("/", 1)]
    if len(parts) == 2:
        return parts[0] or None, parts[1] or None
    single = parts[0]
    if SIZE_PATTERN.match(single):
        return single, None
    return None, single


def clean_product_name(raw: Optional[str]) -> str:
    """Drop the legacy "| supplier/school" suffix from a product title."""
    name = (raw or "").strip()
    if "|" in name:
        name = name.split("|", 1)[0].strip()
    return name


def _synthetic_key(name: str, email: Optional[str], class_name: Optional[str]) -> str:
    return "-".join([
        name.strip().lower(),
        (email or "no-email").strip().lower(),
        (class_name or "no-class").strip().lower(),
    ])


# ---------- Grouping ----------

def _order_key(row: Mapping[str, object]) -> Optional[str]:
    order_number = field_value(row, "order_number")
    if order_number:
        return order_number
    name = customer_name(row)
    if not name:
        return None
    return _synthetic_key(name, field_value(row, "customer_email"), field_value(row, "class_name"))


def _build_headers(rows: List[Mapping[str, object]], result: GroupingResult) -> List[Optional[str]]:
    """Pass 1: create one header per order key and fill in customer identity."""
    keys: List[Optional[str]] = []
    for row in rows:
        key = _order_key(row)
        keys.append(key)
        if key is None:
            result.skipped_rows += 1
            continue

        order = result.orders.get(key)
        if order is None:
            order = ParsedOrder(key=key, order_number=field_value(row, "order_number"))
            result.orders[key] = order

        name = customer_name(row)
        if name and not order.customer_name:
            order.customer_name = name
            order.customer_email = field_value(row, "customer_email")
            order.class_name = field_value(row, "class_name")
            raw_date = field_value(row, "order_date")
            if raw_date:
                order.order_date = parse_instant(raw_date)

        if order.order_date is None:
            raw_date = field_value(row, "order_date")
            if raw_date:
                order.order_date = parse_instant(raw_date)

    for order in result.orders.values():
        if not order.customer_name:
            order.customer_name = UNKNOWN_CUSTOMER
    return keys


def _attach_row(order: ParsedOrder, row: Mapping[str, object], line: int, result: GroupingResult) -> None:
    """Pass 2 for a single row: file total, tags and at most one line item."""
    raw_total = field_value(row, "total")
    if raw_total is not None:
        total = parse_decimal(raw_total)
        if total is None:
            result.warnings.append(RowWarning(line, "total", raw_total, "Unreadable order total ignored"))
        elif order.total_price_from_file is None or total > order.total_price_from_file:
            order.total_price_from_file = total

    tags = field_value(row, "product_tags")
    if tags and tags not in order.product_tags:
        order.product_tags.append(tags)

    product_name = clean_product_name(field_value(row, "product_name"))
    if not product_name:
        return

    raw_quantity = field_value(row, "quantity")
    if raw_quantity is None:
        quantity = 1
    else:
        parsed_quantity = parse_quantity(raw_quantity)
        if parsed_quantity is None:
            result.warnings.append(RowWarning(line, "quantity", raw_quantity, "Unreadable quantity, line skipped"))
            return
        quantity = parsed_quantity
    if quantity <= 0:
        return

    raw_price = field_value(row, "unit_price")
    unit_price = Decimal("0")
    if raw_price is not None:
        parsed_price = parse_decimal(raw_price)
        if parsed_price is None:
            result.warnings.append(RowWarning(line, "unit_price", raw_price, "Unreadable unit price, using 0"))
        elif parsed_price < 0:
            result.warnings.append(RowWarning(line, "unit_price", raw_price, "Negative unit price, using 0"))
        else:
            unit_price = parsed_price

    variant_title = field_value(row, "variant_title")
    size, color = parse_variant_title(variant_title)

    item = ParsedItem(
        product_name=product_name,
        variant_title=variant_title,
        size=size,
        color=color,
        quantity=quantity,
        unit_price=unit_price,
    )
    order.items.append(item)
    order.total_amount += item.line_total


def group_rows(rows: List[Mapping[str, object]]) -> GroupingResult:
    """Group raw rows into orders keyed by order number (or customer identity)."""
    result = GroupingResult(orders={})
    keys = _build_headers(rows, result)

    for index, (row, key) in enumerate(zip(rows, keys)):
        if key is None:
            continue
        _attach_row(result.orders[key], row, index + FIRST_DATA_LINE, result)

    logger.info(
        f"Grouped {len(rows)} rows into {len(result.orders)} orders "
        f"(skipped_rows={result.skipped_rows}, warnings={len(result.warnings)})"
    )
    return result
