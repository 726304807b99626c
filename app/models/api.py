"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum

from pydantic import BaseModel, Field


class ReconcileOutcome(str, Enum):
    """Result of reconciling one chain payment event."""

    FULFILLED = "fulfilled"
    DUPLICATE = "duplicate"
    ALREADY_FULFILLED = "already_fulfilled"
    DECODE_ERROR = "decode_error"
    NOT_FOUND = "not_found"
    UNSUPPORTED_TOKEN = "unsupported_token"
    INSUFFICIENT_AMOUNT = "insufficient_amount"


# ============================================================================
# Catalog Models
# ============================================================================


class CatalogItemResponse(BaseModel):
    """One listed catalog item."""

    catalog_key: str
    title: str
    retail_price_cents: int


class CatalogListResponse(BaseModel):
    """GET /catalog response."""

    items: list[CatalogItemResponse]


# ============================================================================
# Order Models
# ============================================================================


class CreateOrderRequest(BaseModel):
    """POST /catalog/{key}/order request body."""

    # Optional so a missing address maps to 400 rather than a validation 422
    address: str | None = Field(None, max_length=42, description="Payer chain address")


class PaymentRequestResponse(BaseModel):
    """Payment request as exposed to buyers."""

    id: int
    payment_reference: str = Field(..., description="uint256-encoded id to send as calldata")
    catalog_key: str
    payer_address: str
    price_cents: int
    fulfilled_hash: str | None = None
    paid_cents: int | None = None
    created_at: str
    fulfilled_at: str | None = None


class PaymentQuote(BaseModel):
    """Smallest-unit amounts that satisfy a payment request."""

    native_amount: str
    token_amount: str
    native_usd_cent_rate: int


class OrderResponse(BaseModel):
    """POST /catalog/{key}/order and GET /catalog/{key}/payments/{address} response."""

    payment_request: PaymentRequestResponse
    receiver_address: str
    quote: PaymentQuote


# ============================================================================
# Download Models
# ============================================================================


class DownloadRequest(BaseModel):
    """POST /catalog/{key}/download request body."""

    address: str = Field(..., min_length=1, max_length=42)
    nonce: str = Field(..., min_length=1, max_length=256)
    signature: str = Field(..., min_length=1, max_length=200)


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str
