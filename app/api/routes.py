"""
API Routes - FastAPI endpoints for the storefront.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_nonce_tracking, get_receiver_address, get_reconciler_config
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    AuthorizationError,
    CatalogItemNotFoundError,
    InvalidAddressError,
    NonceReusedError,
    PaymentNotFulfilledError,
    WriteVerificationError,
)
from app.models.api import (
    CatalogItemResponse,
    CatalogListResponse,
    CreateOrderRequest,
    DownloadRequest,
    HealthResponse,
    OrderResponse,
    PaymentQuote,
    PaymentRequestResponse,
)
from app.models.domain import DownloadIntent, PaymentRequestData
from app.services.download_auth import DownloadAuthorizer
from app.services.orders import OrderService
from app.services.payment_reference import encode_payment_reference
from app.services.pricing import ReconcilerConfig, quote_native_amount, quote_token_amount

logger = get_logger(__name__)
router = APIRouter()


def _payment_response(payment: PaymentRequestData) -> PaymentRequestResponse:
    return PaymentRequestResponse(
        id=payment.id,
        payment_reference=encode_payment_reference(payment.id),
        catalog_key=payment.catalog_key,
        payer_address=payment.payer_address,
        price_cents=payment.price_cents,
        fulfilled_hash=payment.fulfilled_hash,
        paid_cents=payment.paid_cents,
        created_at=payment.created_at.isoformat(),
        fulfilled_at=payment.fulfilled_at.isoformat() if payment.fulfilled_at else None,
    )


def _order_response(
    payment: PaymentRequestData, receiver_address: str, config: ReconcilerConfig
) -> OrderResponse:
    return OrderResponse(
        payment_request=_payment_response(payment),
        receiver_address=receiver_address,
        quote=PaymentQuote(
            native_amount=str(quote_native_amount(payment.price_cents, config)),
            token_amount=str(quote_token_amount(payment.price_cents, config)),
            native_usd_cent_rate=int(config.rate_source.native_usd_cents()),
        ),
    )


@router.get("/catalog", response_model=CatalogListResponse)
async def list_catalog(db: AsyncSession = Depends(get_read_db)) -> CatalogListResponse:
    """List every catalog item with its current retail price."""
    items = await OrderService(db).list_catalog()
    return CatalogListResponse(
        items=[
            CatalogItemResponse(
                catalog_key=item.catalog_key,
                title=item.title,
                retail_price_cents=item.retail_price_cents,
            )
            for item in items
        ]
    )


@router.post(
    "/catalog/{catalog_key}/order",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    catalog_key: str,
    request: CreateOrderRequest,
    db: AsyncSession = Depends(get_write_db),
    receiver_address: str = Depends(get_receiver_address),
    config: ReconcilerConfig = Depends(get_reconciler_config),
) -> OrderResponse:
    """
    Create a payment request for a catalog item.

    The price is snapshotted from the item's current retail price. The buyer
    pays the returned receiver contract, passing payment_reference as the id.
    """
    try:
        payment = await OrderService(db).create_order(catalog_key, request.address)

    except InvalidAddressError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A valid payer address is required",
        ) from exc

    except CatalogItemNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Catalog item not found: {exc.catalog_key}",
        ) from exc

    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    return _order_response(payment, receiver_address, config)


@router.get("/catalog/{catalog_key}/payments/{address}", response_model=OrderResponse)
async def get_latest_payment(
    catalog_key: str,
    address: str,
    db: AsyncSession = Depends(get_read_db),
    receiver_address: str = Depends(get_receiver_address),
    config: ReconcilerConfig = Depends(get_reconciler_config),
) -> OrderResponse:
    """Latest payment request for an item and payer address."""
    try:
        payment = await OrderService(db).latest_payment(catalog_key, address)

    except InvalidAddressError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A valid payer address is required",
        ) from exc

    except CatalogItemNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Catalog item not found: {exc.catalog_key}",
        ) from exc

    if payment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No payment request for this item and address",
        )

    return _order_response(payment, receiver_address, config)


@router.post("/catalog/{catalog_key}/download", response_class=PlainTextResponse)
async def download(
    catalog_key: str,
    request: DownloadRequest,
    db: AsyncSession = Depends(get_write_db),
    nonce_tracking: bool = Depends(get_nonce_tracking),
) -> PlainTextResponse:
    """
    Serve purchased content to the address that paid for it.

    The body carries the address, a nonce, and a personal_sign signature over
    keccak256(address + catalog_key + nonce).
    """
    intent = DownloadIntent(
        catalog_key=catalog_key,
        address=request.address,
        nonce=request.nonce,
        signature=request.signature,
    )

    try:
        content = await DownloadAuthorizer(db, nonce_tracking=nonce_tracking).authorize(intent)

    except NonceReusedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Nonce already used",
        ) from exc

    except AuthorizationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Signature does not match address",
        ) from exc

    except CatalogItemNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Catalog item not found: {exc.catalog_key}",
        ) from exc

    except PaymentNotFulfilledError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No fulfilled payment for this item and address",
        ) from exc

    safe_title = quote(content.title, safe=" ")
    return PlainTextResponse(
        content=content.content,
        headers={
            "Content-Disposition": f"attachment; filename=\"{safe_title}.txt\"",
            "X-Catalog-Title": safe_title,
            "X-Payment-Request-Id": str(content.payment_request_id),
            "X-Fulfilled-Hash": content.fulfilled_hash,
        },
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
