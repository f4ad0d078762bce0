"""Create school, shop, catalog and order tables.

Revision ID: 20250301_000001
Revises:
Create Date: 2025-03-01 00:00:01.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20250301_000001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("schools"):
        op.create_table(
            "schools",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("short_code", sa.Text(), nullable=True),
            sa.Column("city", sa.Text(), nullable=True),
            sa.Column("country", sa.Text(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            _created_at(),
        )

    if not inspector.has_table("shops"):
        op.create_table(
            "shops",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("school_id", sa.String(), sa.ForeignKey("schools.id"), nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("slug", sa.String(), nullable=False, unique=True),
            sa.Column("status", sa.String(), nullable=False, server_default="draft"),
            sa.Column("currency", sa.String(), nullable=False, server_default="EUR"),
            sa.Column("shop_open_at", sa.DateTime(), nullable=True),
            sa.Column("shop_close_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.CheckConstraint("status IN ('draft','live','closed')", name="ck_shops_status"),
        )
        op.create_index("ix_shops_school_id", "shops", ["school_id"])

    if not inspector.has_table("products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("shop_id", sa.String(), sa.ForeignKey("shops.id"), nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("base_price", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_index", sa.Integer(), nullable=True, server_default=sa.text("0")),
            _created_at(),
        )
        op.create_index("ix_products_shop_id", "products", ["shop_id"])
        op.create_index("ix_products_shop_active", "products", ["shop_id", "active"])

    if not inspector.has_table("product_variants"):
        op.create_table(
            "product_variants",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("name", sa.Text(), nullable=False, server_default=""),
            sa.Column("color_name", sa.Text(), nullable=True),
            sa.Column("color_hex", sa.String(), nullable=True),
            sa.Column("additional_price", sa.Numeric(10, 2), nullable=True, server_default=sa.text("0")),
            sa.Column("sku", sa.Text(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=True, server_default=sa.true()),
        )
        op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])

    if not inspector.has_table("orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("shop_id", sa.String(), sa.ForeignKey("shops.id"), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("customer_name", sa.Text(), nullable=False),
            sa.Column("customer_email", sa.Text(), nullable=True),
            sa.Column("class_name", sa.Text(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
            _created_at(),
            sa.CheckConstraint(
                "status IN ('pending','paid','cancelled','fulfilled')",
                name="ck_orders_status",
            ),
        )
        op.create_index("ix_orders_shop_id", "orders", ["shop_id"])
        op.create_index("ix_orders_shop_customer", "orders", ["shop_id", "customer_name", "customer_email"])

    if not inspector.has_table("order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(
                "order_id",
                sa.String(),
                sa.ForeignKey("orders.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("variant_id", sa.String(), sa.ForeignKey("product_variants.id"), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
            sa.Column("line_total", sa.Numeric(10, 2), nullable=False),
            sa.CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
        )
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"])


def downgrade() -> None:
    for table in ("order_items", "orders", "product_variants", "products", "shops", "schools"):
        op.execute(sa.text(f"DROP TABLE IF EXISTS {table}"))
