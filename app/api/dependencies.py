"""
FastAPI Dependencies - Shared configuration for route handlers.

NO DICTIONARIES - All dependencies return typed objects.
"""

from functools import lru_cache

from fastapi import HTTPException, status
from structlog import get_logger

from app.config import settings
from app.services.pricing import ReconcilerConfig, reconciler_config_from_settings

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_reconciler_config() -> ReconcilerConfig:
    """Pricing and token policy shared by quotes and the reconciler."""
    return reconciler_config_from_settings(settings)


def get_receiver_address() -> str:
    """
    Payment receiver contract that buyers pay into.

    Raises:
        HTTPException 503 if the contract address is not configured
    """
    if not settings.payment_receiver_contract:
        logger.error("payment_receiver_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment receiver not configured",
        )
    return settings.payment_receiver_contract


def get_nonce_tracking() -> bool:
    """Whether download nonces are consumed on use."""
    return settings.download_nonce_tracking
