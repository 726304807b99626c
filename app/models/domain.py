"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from app.models.api import ReconcileOutcome


@dataclass(frozen=True)
class CatalogItemData:
    """Immutable catalog item snapshot."""

    catalog_key: str
    title: str
    retail_price_cents: int

    def __post_init__(self) -> None:
        """Validate catalog item fields."""
        if not self.catalog_key:
            raise ValueError("catalog_key cannot be empty")
        if self.retail_price_cents < 0:
            raise ValueError(f"Price cannot be negative: {self.retail_price_cents}")


@dataclass(frozen=True)
class PaymentRequestData:
    """Immutable payment request snapshot."""

    id: int
    catalog_key: str
    payer_address: str
    price_cents: int
    fulfilled_hash: str | None
    paid_cents: int | None
    created_at: datetime
    fulfilled_at: datetime | None

    @property
    def is_fulfilled(self) -> bool:
        return self.fulfilled_hash is not None


@dataclass(frozen=True)
class ChainPaymentEvent:
    """A PaymentReceived log as delivered by the chain feed."""

    block_number: int
    transaction_hash: str
    payer_address: str
    amount: int  # smallest unit (wei)
    token: str
    payment_reference: bytes | int | str
    log_index: int = 0

    def __post_init__(self) -> None:
        """Validate event fields."""
        if self.amount < 0:
            raise ValueError(f"Amount cannot be negative: {self.amount}")
        if not self.transaction_hash:
            raise ValueError("transaction_hash cannot be empty")


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconciling one chain event against the record store."""

    outcome: ReconcileOutcome
    transaction_hash: str
    payment_request_id: int | None = None
    paid_cents: Decimal | None = None
    detail: str | None = None

    @property
    def accepted(self) -> bool:
        """True when the event fulfilled, or had already fulfilled, the request."""
        return self.outcome in (ReconcileOutcome.FULFILLED, ReconcileOutcome.DUPLICATE)


@dataclass(frozen=True)
class DownloadIntent:
    """A signed download request."""

    catalog_key: str
    address: str
    nonce: str
    signature: str

    def __post_init__(self) -> None:
        """Validate download intent fields."""
        if not self.nonce:
            raise ValueError("nonce cannot be empty")
        if not self.signature:
            raise ValueError("signature cannot be empty")


@dataclass(frozen=True)
class DownloadContent:
    """Authorized content ready to be served."""

    catalog_key: str
    title: str
    content: str
    payment_request_id: int
    fulfilled_hash: str
