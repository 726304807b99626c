#!/usr/bin/env python3
"""
Seed Catalog Script

Inserts the starter books into catalog_items. Existing rows keep their key
and get their title, price, and content refreshed, so the script is safe to
run repeatedly.

Usage:
    python scripts/seed_catalog.py [--create-tables]
"""

import argparse
import asyncio
import os
import sys
from dataclasses import dataclass

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Base, CatalogItem
from app.db.session import close_engines, get_engine, get_write_session

logger = structlog.get_logger()


@dataclass(frozen=True)
class SeedBook:
    """One starter catalog entry."""

    catalog_key: str
    title: str
    retail_price_cents: int

    @property
    def content(self) -> str:
        return f"{self.title}\n\nDigital edition. Catalog number {self.catalog_key}.\n"


SEED_BOOKS = (
    SeedBook("979-8749522310", "Alice in Wonderland", 597),
    SeedBook("978-0345806789", "The Shining", 999),
    SeedBook("978-0060850524", "Brave New World", 1034),
)


async def upsert_book(session: AsyncSession, book: SeedBook) -> bool:
    """Insert or refresh one book. Returns True when a row was created."""
    row = await session.get(CatalogItem, book.catalog_key)
    if row is None:
        session.add(
            CatalogItem(
                catalog_key=book.catalog_key,
                title=book.title,
                retail_price_cents=book.retail_price_cents,
                content=book.content,
            )
        )
        return True

    row.title = book.title
    row.retail_price_cents = book.retail_price_cents
    row.content = book.content
    return False


async def seed(create_tables: bool) -> None:
    """Write every seed book in one transaction."""
    if create_tables:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("catalog_tables_created")

    async with get_write_session() as session:
        for book in SEED_BOOKS:
            created = await upsert_book(session, book)
            logger.info(
                "catalog_item_seeded",
                catalog_key=book.catalog_key,
                title=book.title,
                retail_price_cents=book.retail_price_cents,
                created=created,
            )
        await session.commit()

    await close_engines()
    logger.info("catalog_seed_complete", books=len(SEED_BOOKS))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Seed the storefront catalog")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="create tables from the ORM models instead of relying on migrations",
    )
    args = parser.parse_args()
    asyncio.run(seed(args.create_tables))


if __name__ == "__main__":
    main()
