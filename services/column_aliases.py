"""
Column alias table for order exports.

Each logical field maps to the source column names that may carry it, in
priority order. Lookups are exact and case-sensitive; the first non-empty
value wins. Support for a new export format is added here.
"""
from typing import Dict, Mapping, Optional, Tuple

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "order_number": ("Name",),
    "customer_name": ("Customer Name",),
    "customer_email": ("Customer Email", "Email"),
    "class_name": ("Class Name", "Klasse", "Line items: Custom attributes Klasse"),
    "product_name": ("Product Name", "Line items: Title"),
    "variant_title": ("Product Variant", "Line items: Variant title"),
    "quantity": ("Quantity", "Line items: Quantity"),
    "unit_price": ("Unit Price", "Line items: Price"),
    "total": ("Subtotal price", "Total Amount", "Total"),
    "order_date": ("Order Date", "Created at", "Created at (UTC)"),
    "product_tags": ("Line items: Product Tags",),
}

# Fallback for customer_name: both parts must be present
CUSTOMER_NAME_PARTS: Tuple[str, str] = ("Customer: First name", "Customer: Last name")

DATE_COLUMNS: Tuple[str, ...] = FIELD_ALIASES["order_date"]


def _clean(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def field_value(row: Mapping[str, object], field: str) -> Optional[str]:
    """Return the first non-empty aliased value of ``field`` (stripped), or None."""
    for column in FIELD_ALIASES[field]:
        value = _clean(row.get(column))
        if value:
            return value
    return None


def customer_name(row: Mapping[str, object]) -> str:
    name = field_value(row, "customer_name")
    if name:
        return name
    first, last = (_clean(row.get(column)) for column in CUSTOMER_NAME_PARTS)
    if first and last:
        return f"{first} {last}"
    return ""
