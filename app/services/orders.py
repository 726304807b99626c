"""
Order Service - Catalog listing and payment request creation.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from eth_utils import is_address
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.repository import CatalogStore, PaymentRequestStore
from app.exceptions import CatalogItemNotFoundError, InvalidAddressError
from app.models.domain import CatalogItemData, PaymentRequestData
from app.observability.metrics import metrics

logger = get_logger(__name__)


def normalize_address(address: str | None) -> str:
    """
    Lower-case a payer address after validating it.

    Raises:
        InvalidAddressError: address missing or not a 20-byte hex address
    """
    if not address or not address.strip():
        raise InvalidAddressError(address)
    candidate = address.strip()
    if not is_address(candidate):
        raise InvalidAddressError(address)
    return candidate.lower()


class OrderService:
    """Creates and looks up payment requests for catalog items."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize order service with database session."""
        self.session = session
        self.catalog = CatalogStore(session)
        self.payments = PaymentRequestStore(session)

    async def list_catalog(self) -> list[CatalogItemData]:
        return await self.catalog.list_items()

    async def get_item(self, catalog_key: str) -> CatalogItemData:
        """
        Raises:
            CatalogItemNotFoundError: no such item
        """
        item = await self.catalog.find_by_key(catalog_key)
        if item is None:
            raise CatalogItemNotFoundError(catalog_key)
        return item

    async def create_order(self, catalog_key: str, address: str | None) -> PaymentRequestData:
        """
        Create an unfulfilled payment request priced at the item's current retail price.

        Raises:
            InvalidAddressError: missing or malformed payer address
            CatalogItemNotFoundError: no such item
        """
        payer_address = normalize_address(address)
        item = await self.get_item(catalog_key)

        created = await self.payments.save_new(
            catalog_key=item.catalog_key,
            payer_address=payer_address,
            price_cents=item.retail_price_cents,
        )
        metrics.orders_created_total.inc()

        logger.info(
            "payment_request_created",
            payment_request_id=created.id,
            catalog_key=item.catalog_key,
            payer_address=payer_address,
            price_cents=created.price_cents,
        )
        return created

    async def latest_payment(self, catalog_key: str, address: str) -> PaymentRequestData | None:
        """
        Latest payment request for an item and payer.

        Raises:
            InvalidAddressError: malformed payer address
            CatalogItemNotFoundError: no such item
        """
        payer_address = normalize_address(address)
        await self.get_item(catalog_key)
        return await self.payments.find_latest_by_item_and_payer(catalog_key, payer_address)
