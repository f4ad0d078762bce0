"""Shared helpers for tests that need a database: in-memory SQLite via aiosqlite."""
import csv
import io
import os
import sys
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database import Base, Shop
from services.storage import StorageService

CSV_HEADER = [
    "Name",
    "Customer Name",
    "Customer Email",
    "Order Date",
    "Product Name",
    "Product Variant",
    "Quantity",
    "Unit Price",
    "Line items: Product Tags",
]


async def make_storage():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return StorageService(session_factory=async_sessionmaker(engine, expire_on_commit=False)), engine


async def seed_shop(storage, slug, name, school_name, short_code=None) -> Shop:
    school = await storage.create_school({"name": school_name, "short_code": short_code})
    return await storage.create_shop({
        "school_id": school.id,
        "name": name,
        "slug": slug,
        "status": "live",
    })


async def fetch_all(storage, model, *criteria):
    async with storage.get_session() as session:
        result = await session.execute(select(model).where(*criteria))
        return list(result.scalars().all())


async def count(storage, model) -> int:
    async with storage.get_session() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


def csv_bytes(rows, header=None) -> bytes:
    header = header or CSV_HEADER
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=header)
    writer.writeheader()
    for row in rows:
        writer.writerow({column: row.get(column, "") for column in header})
    return buffer.getvalue().encode("utf-8")
