# --- models + engine/session for the school-shop schema ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    String, Text, Integer, Numeric, DateTime, Boolean,
    ForeignKey, func, Index, CheckConstraint
)
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any
import logging, os, time, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

if DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
    # asyncpg uses 'ssl', not 'sslmode'; keep the URL clean and pass SSL via connect_args
    ssl_required = "sslmode=require" in DATABASE_URL or "sslmode=verify-full" in DATABASE_URL
    for param in ("sslmode=require", "sslmode=verify-full"):
        DATABASE_URL = DATABASE_URL.replace(f"?{param}", "").replace(f"&{param}", "")

    connect_args: Dict[str, Any] = {
        "server_settings": {"application_name": "school_shop_orders"},
        "command_timeout": 60,
        "timeout": 30,
    }
    if ssl_required:
        connect_args["ssl"] = "require"

    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_timeout=20,
        connect_args=connect_args,
    )
else:
    DATABASE_URL = "sqlite+aiosqlite:///:memory:"
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
    except ValueError:
        pass
    return "******"

logger = logging.getLogger(__name__)
logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")
        raise

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

def _uuid() -> str:
    return str(uuid.uuid4())

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class School(Base):
    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    short_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # 'lead' schools come from the sales funnel, 'existing' ones from imports
    status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class Shop(Base):
    __tablename__ = "shops"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    school_id: Mapped[str] = mapped_column(String, ForeignKey("schools.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    currency: Mapped[str] = mapped_column(String, nullable=False, default="EUR")
    shop_open_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    shop_close_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('draft','live','closed')", name="ck_shops_status"),
    )


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    shop_id: Mapped[str] = mapped_column(String, ForeignKey("shops.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")  # size label
    color_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color_hex: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    additional_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True, default=Decimal("0"))
    sku: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=True)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    shop_id: Mapped[str] = mapped_column(String, ForeignKey("shops.id"), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    class_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    # Stored as naive UTC
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','paid','cancelled','fulfilled')",
            name="ck_orders_status",
        ),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("product_variants.id"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    )

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_orders_shop_customer', Order.shop_id, Order.customer_name, Order.customer_email)
Index('ix_products_shop_active', Product.shop_id, Product.active)

# -------------------------------------------------------------------
# Init + health helpers
# -------------------------------------------------------------------
async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def check_db_health() -> Dict[str, Any]:
    """Round-trip a trivial query and report latency."""
    start = time.perf_counter()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        }
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)[:200]}
