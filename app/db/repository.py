"""
Record Stores - Explicit persistence contracts over the ORM.

The only mutation of a stored payment request is try_mark_fulfilled, a single
conditional UPDATE that succeeds for at most one caller.
"""

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CatalogItem, ChainCursor, PaymentRequest, SpentNonce
from app.exceptions import WriteVerificationError
from app.models.domain import CatalogItemData, PaymentRequestData

# Raised when the database cannot be reached. asyncpg connect failures surface
# as OSError and pool exhaustion as PoolTimeoutError, neither a DBAPIError.
STORE_OUTAGE_ERRORS = (DBAPIError, PoolTimeoutError, OSError)


def _to_payment_data(row: PaymentRequest) -> PaymentRequestData:
    return PaymentRequestData(
        id=row.id,
        catalog_key=row.catalog_key,
        payer_address=row.payer_address,
        price_cents=row.price_cents,
        fulfilled_hash=row.fulfilled_hash,
        paid_cents=row.paid_cents,
        created_at=row.created_at,
        fulfilled_at=row.fulfilled_at,
    )


def _to_catalog_data(row: CatalogItem) -> CatalogItemData:
    return CatalogItemData(
        catalog_key=row.catalog_key,
        title=row.title,
        retail_price_cents=row.retail_price_cents,
    )


class CatalogStore:
    """Read access to listed catalog items."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_items(self) -> list[CatalogItemData]:
        result = await self.session.execute(select(CatalogItem).order_by(CatalogItem.title))
        return [_to_catalog_data(row) for row in result.scalars().all()]

    async def find_by_key(self, catalog_key: str) -> CatalogItemData | None:
        result = await self.session.execute(
            select(CatalogItem).where(CatalogItem.catalog_key == catalog_key)
        )
        row = result.scalar_one_or_none()
        return _to_catalog_data(row) if row is not None else None

    async def find_content(self, catalog_key: str) -> str | None:
        """Downloadable text for an item, or None if the item has none."""
        result = await self.session.execute(
            select(CatalogItem.content).where(CatalogItem.catalog_key == catalog_key)
        )
        return result.scalar_one_or_none()


class PaymentRequestStore:
    """
    Payment request persistence.

    Usage:
        store = PaymentRequestStore(session)
        created = await store.save_new("978-0345806789", "0xabc...", 999)
        won = await store.try_mark_fulfilled(created.id, "0xhash", 999)
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, payment_request_id: int) -> PaymentRequestData | None:
        row = await self.session.get(PaymentRequest, payment_request_id, populate_existing=True)
        return _to_payment_data(row) if row is not None else None

    async def find_latest_by_item_and_payer(
        self, catalog_key: str, payer_address: str
    ) -> PaymentRequestData | None:
        """Most recently created request for the pair, fulfilled or not."""
        stmt = (
            select(PaymentRequest)
            .where(
                PaymentRequest.catalog_key == catalog_key,
                PaymentRequest.payer_address == payer_address.lower(),
            )
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_payment_data(row) if row is not None else None

    async def find_latest_fulfilled(
        self, catalog_key: str, payer_address: str
    ) -> PaymentRequestData | None:
        """Most recently fulfilled request for the pair; this one governs downloads."""
        stmt = (
            select(PaymentRequest)
            .where(
                PaymentRequest.catalog_key == catalog_key,
                PaymentRequest.payer_address == payer_address.lower(),
                PaymentRequest.fulfilled_hash.is_not(None),
            )
            .order_by(PaymentRequest.fulfilled_at.desc(), PaymentRequest.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_payment_data(row) if row is not None else None

    async def save_new(
        self, catalog_key: str, payer_address: str, price_cents: int
    ) -> PaymentRequestData:
        """Insert an unfulfilled request and return it with its assigned id."""
        row = PaymentRequest(
            catalog_key=catalog_key,
            payer_address=payer_address.lower(),
            price_cents=price_cents,
            fulfilled_hash=None,
            paid_cents=None,
            fulfilled_at=None,
        )
        self.session.add(row)
        await self.session.flush()

        if row.id is None:
            raise WriteVerificationError("payment request id not assigned after insert")

        await self.session.commit()
        return _to_payment_data(row)

    async def try_mark_fulfilled(
        self, payment_request_id: int, transaction_hash: str, paid_cents: int
    ) -> bool:
        """
        Set the fulfillment marker only if it is currently unset.

        Returns True when this call performed the transition, False when the
        request was already fulfilled (or does not exist).
        """
        stmt = (
            update(PaymentRequest)
            .where(
                PaymentRequest.id == payment_request_id,
                PaymentRequest.fulfilled_hash.is_(None),
            )
            .values(
                fulfilled_hash=transaction_hash,
                paid_cents=paid_cents,
                fulfilled_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1


class NonceStore:
    """Consumed download nonces."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def consume(self, address: str, nonce: str, catalog_key: str) -> bool:
        """Record a nonce as used. Returns False if it was already used."""
        address = address.lower()
        if await self.session.get(SpentNonce, (address, nonce)) is not None:
            return False

        # Primary key still arbitrates two requests racing past the lookup
        self.session.add(SpentNonce(address=address, nonce=nonce, catalog_key=catalog_key))
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            return False
        await self.session.commit()
        return True


class ChainCursorStore:
    """Last processed block per watched contract."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load(self, contract_address: str) -> int | None:
        row = await self.session.get(ChainCursor, contract_address.lower())
        return row.last_block if row is not None else None

    async def save(self, contract_address: str, last_block: int) -> None:
        key = contract_address.lower()
        row = await self.session.get(ChainCursor, key)
        if row is None:
            self.session.add(ChainCursor(contract_address=key, last_block=last_block))
        elif last_block > row.last_block:
            row.last_block = last_block
        await self.session.commit()
