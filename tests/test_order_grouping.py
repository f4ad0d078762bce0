import os
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "")
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.order_grouping import (
    UNKNOWN_CUSTOMER,
    clean_product_name,
    group_rows,
    parse_decimal,
    parse_variant_title,
)


def _row(**values):
    keys = {
        "name": "Name",
        "customer": "Customer Name",
        "email": "Customer Email",
        "klasse": "Klasse",
        "product": "Product Name",
        "variant": "Product Variant",
        "quantity": "Quantity",
        "price": "Unit Price",
        "subtotal": "Subtotal price",
        "date": "Order Date",
        "tags": "Line items: Product Tags",
    }
    return {keys[k]: v for k, v in values.items()}


def test_parse_variant_title():
    assert parse_variant_title("M / Schwarz") == ("M", "Schwarz")
    assert parse_variant_title("XL") == ("XL", None)
    assert parse_variant_title("xxl") == ("xxl", None)
    assert parse_variant_title("152") == ("152", None)
    assert parse_variant_title("Royalblau") == (None, "Royalblau")
    assert parse_variant_title("M / Schwarz / Bio") == ("M", "Schwarz / Bio")
    assert parse_variant_title("  ") == (None, None)
    assert parse_variant_title(None) == (None, None)


def test_parse_decimal_accepts_comma_and_currency():
    assert parse_decimal("12,50 €") == Decimal("12.50")
    assert parse_decimal("EUR 7.5") == Decimal("7.5")
    assert parse_decimal("-3") == Decimal("-3")
    assert parse_decimal("zwölf") is None
    assert parse_decimal("1.234,56") is None


def test_clean_product_name_strips_legacy_suffix():
    assert clean_product_name("Bio Hoodie Schullogo | Gymnasium Weinstadt") == "Bio Hoodie Schullogo"
    assert clean_product_name("  Shirt ") == "Shirt"
    assert clean_product_name(None) == ""


def test_continuation_rows_share_the_order_header():
    rows = [
        _row(name="#100", customer="Anna Muster", email="anna@example.com", date="2024-03-01T09:00:00.000Z",
             product="Shirt", variant="M / Blau", quantity="2", price="10", tags="shop-weinstadt-2024"),
        _row(name="#100", product="Shirt", variant="L / Blau", quantity="1", price="10"),
    ]

    result = group_rows(rows)

    assert list(result.orders) == ["#100"]
    order = result.orders["#100"]
    assert order.customer_name == "Anna Muster"
    assert order.customer_email == "anna@example.com"
    assert order.order_date == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert order.total_amount == Decimal("30")
    assert order.total_price_from_file is None
    assert order.product_tags == ["shop-weinstadt-2024"]
    assert [(i.size, i.color, i.quantity) for i in order.items] == [("M", "Blau", 2), ("L", "Blau", 1)]


def test_header_comes_from_any_row_regardless_of_order():
    rows = [
        _row(name="#5", product="Cap", quantity="1", price="8"),
        _row(name="#5", customer="Ben Beispiel", klasse="7b", product="Shirt", quantity="1", price="12"),
    ]

    order = group_rows(rows).orders["#5"]

    assert order.customer_name == "Ben Beispiel"
    assert order.class_name == "7b"
    assert len(order.items) == 2


def test_orders_without_customer_get_placeholder_name():
    result = group_rows([_row(name="#9", product="Cap", quantity="1", price="8")])

    assert result.orders["#9"].customer_name == UNKNOWN_CUSTOMER


def test_synthetic_key_without_order_number():
    rows = [
        _row(customer="Anna Muster", klasse="5a", product="Shirt", quantity="1", price="10"),
        _row(customer="Anna Muster", klasse="5a", product="Cap", quantity="1", price="5"),
        _row(product="Orphan", quantity="1", price="5"),
    ]

    result = group_rows(rows)

    assert list(result.orders) == ["anna muster-no-email-5a"]
    assert len(result.orders["anna muster-no-email-5a"].items) == 2
    assert result.skipped_rows == 1


def test_first_and_last_name_columns_form_the_customer_name():
    rows = [{"Name": "#3", "Customer: First name": "Clara", "Customer: Last name": "Test", "Product Name": "Cap"}]

    order = group_rows(rows).orders["#3"]

    assert order.customer_name == "Clara Test"
    assert order.items[0].quantity == 1


def test_non_positive_quantities_are_dropped_silently():
    rows = [
        _row(name="#1", customer="A B", product="Shirt", quantity="0", price="10"),
        _row(name="#1", product="Cap", quantity="-3", price="5"),
        _row(name="#1", product="Bag", quantity="1", price="4"),
        _row(name="#1", product="", quantity="1", price="4"),
    ]

    result = group_rows(rows)

    assert [i.product_name for i in result.orders["#1"].items] == ["Bag"]
    assert result.warnings == []


def test_malformed_numbers_produce_warnings():
    rows = [
        _row(name="#1", customer="A B", product="Shirt", quantity="zwei", price="10"),
        _row(name="#1", product="Cap", quantity="1", price="gratis"),
        _row(name="#1", product="Bag", quantity="1", price="4", subtotal="n/a"),
    ]

    result = group_rows(rows)
    order = result.orders["#1"]

    assert [i.product_name for i in order.items] == ["Cap", "Bag"]
    assert order.items[0].unit_price == Decimal("0")
    assert order.total_price_from_file is None
    assert [(w.row, w.column) for w in result.warnings] == [(2, "quantity"), (3, "unit_price"), (4, "total")]


def test_largest_file_total_wins():
    rows = [
        _row(name="#1", customer="A B", product="Shirt", quantity="1", price="10", subtotal="20"),
        _row(name="#1", product="Cap", quantity="1", price="5", subtotal="35,00"),
        _row(name="#1", product="Bag", quantity="1", price="5"),
    ]

    order = group_rows(rows).orders["#1"]

    assert order.total_price_from_file == Decimal("35.00")
    assert order.total_amount == Decimal("20")
