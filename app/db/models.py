"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class CatalogItem(Base):
    """
    ORM model for catalog_items table.

    Listed books. Price is the only mutable field and is changed by admins only.
    """

    __tablename__ = "catalog_items"

    catalog_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    retail_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    payment_requests: Mapped[list["PaymentRequest"]] = relationship(
        back_populates="catalog_item", lazy="raise"
    )

    __table_args__ = (
        CheckConstraint("retail_price_cents >= 0", name="ck_catalog_price_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<CatalogItem(key={self.catalog_key}, price={self.retail_price_cents})>"


class PaymentRequest(Base):
    """
    ORM model for payment_requests table.

    price_cents is snapshotted from the catalog at creation and never changes.
    fulfilled_hash goes from NULL to a transaction hash at most once.
    """

    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    catalog_key: Mapped[str] = mapped_column(
        String(64), ForeignKey("catalog_items.catalog_key", ondelete="RESTRICT"), nullable=False
    )
    payer_address: Mapped[str] = mapped_column(String(42), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # Settlement
    fulfilled_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    paid_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    catalog_item: Mapped[CatalogItem] = relationship(
        back_populates="payment_requests", lazy="raise"
    )

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_payment_price_non_negative"),
        CheckConstraint(
            "(fulfilled_hash IS NULL) = (fulfilled_at IS NULL)",
            name="ck_payment_fulfillment_consistency",
        ),
        Index("idx_payment_requests_item_payer", "catalog_key", "payer_address"),
        Index("idx_payment_requests_fulfilled_hash", "fulfilled_hash"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PaymentRequest(id={self.id}, catalog_key={self.catalog_key}, "
            f"payer={self.payer_address}, fulfilled={self.fulfilled_hash is not None})>"
        )


class SpentNonce(Base):
    """
    ORM model for spent_nonces table.

    One row per consumed download nonce; the primary key rejects reuse.
    """

    __tablename__ = "spent_nonces"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    nonce: Mapped[str] = mapped_column(String(256), primary_key=True)
    catalog_key: Mapped[str] = mapped_column(String(64), nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<SpentNonce(address={self.address}, nonce={self.nonce[:16]})>"


class ChainCursor(Base):
    """
    ORM model for chain_cursors table.

    Last fully processed block per watched contract.
    """

    __tablename__ = "chain_cursors"

    contract_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    last_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("last_block >= 0", name="ck_cursor_block_non_negative"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ChainCursor(contract={self.contract_address}, last_block={self.last_block})>"
