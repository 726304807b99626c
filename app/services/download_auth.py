"""
Download Authorization - Proves address ownership before serving content.

The client signs keccak256(address + catalog_key + nonce) with the wallet's
personal-message scheme (EIP-191). The server recovers the signer, checks it
against the claimed address, then requires a fulfilled payment request for
the item and address.

When nonce tracking is enabled each verified (address, nonce) pair is
consumed, so a captured signature cannot be replayed.
"""

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as SignatureValidationError
from eth_utils import is_address, keccak
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.repository import CatalogStore, NonceStore, PaymentRequestStore
from app.exceptions import (
    AuthorizationError,
    CatalogItemNotFoundError,
    NonceReusedError,
    PaymentNotFulfilledError,
)
from app.models.domain import DownloadContent, DownloadIntent
from app.observability.metrics import metrics

logger = get_logger(__name__)


def download_message_digest(address: str, catalog_key: str, nonce: str) -> bytes:
    """keccak256 of the canonical message, using the address exactly as sent."""
    return keccak(text=f"{address}{catalog_key}{nonce}")


def recover_signer(digest: bytes, signature: str) -> str:
    """
    Recover the address that personal-signed digest.

    Raises:
        AuthorizationError: signature is malformed
    """
    try:
        return str(Account.recover_message(encode_defunct(primitive=digest), signature=signature))
    except (ValueError, TypeError, BadSignature, SignatureValidationError) as exc:
        raise AuthorizationError("invalid signature") from exc


class DownloadAuthorizer:
    """
    Decides whether a signed download request may proceed.

    Usage:
        authorizer = DownloadAuthorizer(db, nonce_tracking=True)
        content = await authorizer.authorize(intent)
    """

    def __init__(self, session: AsyncSession, nonce_tracking: bool = True) -> None:
        """Initialize authorizer with database session."""
        self.session = session
        self.nonce_tracking = nonce_tracking
        self.catalog = CatalogStore(session)
        self.payments = PaymentRequestStore(session)
        self.nonces = NonceStore(session)

    def verify_signature(self, intent: DownloadIntent) -> str:
        """
        Check the signature recovers to the claimed address.

        Returns the lower-cased address.

        Raises:
            AuthorizationError: malformed address or signature, or signer mismatch
        """
        if not is_address(intent.address):
            raise AuthorizationError("claimed address is not a valid address")

        digest = download_message_digest(intent.address, intent.catalog_key, intent.nonce)
        signer = recover_signer(digest, intent.signature)

        if signer.lower() != intent.address.lower():
            logger.warning(
                "download_signature_mismatch",
                claimed_address=intent.address,
                recovered_address=signer,
                catalog_key=intent.catalog_key,
            )
            raise AuthorizationError("signature does not match address")
        return intent.address.lower()

    async def authorize(self, intent: DownloadIntent) -> DownloadContent:
        """
        Authorize a download and return the content to serve.

        Raises:
            AuthorizationError: signature does not prove the claimed address
            NonceReusedError: nonce already consumed (nonce tracking on)
            CatalogItemNotFoundError: item missing or has no content
            PaymentNotFulfilledError: no fulfilled payment for item and address
        """
        try:
            content = await self._authorize(intent)
        except AuthorizationError:
            metrics.record_download("unauthorized")
            raise
        except (CatalogItemNotFoundError, PaymentNotFulfilledError):
            metrics.record_download("not_found")
            raise

        metrics.record_download("authorized")
        logger.info(
            "download_authorized",
            catalog_key=content.catalog_key,
            payment_request_id=content.payment_request_id,
        )
        return content

    async def _authorize(self, intent: DownloadIntent) -> DownloadContent:
        address = self.verify_signature(intent)

        item = await self.catalog.find_by_key(intent.catalog_key)
        if item is None:
            raise CatalogItemNotFoundError(intent.catalog_key)

        payment = await self.payments.find_latest_fulfilled(intent.catalog_key, address)
        if payment is None or payment.fulfilled_hash is None:
            raise PaymentNotFulfilledError(intent.catalog_key, address)

        text = await self.catalog.find_content(intent.catalog_key)
        if text is None:
            logger.error("catalog_content_missing", catalog_key=intent.catalog_key)
            raise CatalogItemNotFoundError(intent.catalog_key)

        if self.nonce_tracking:
            consumed = await self.nonces.consume(address, intent.nonce, intent.catalog_key)
            if not consumed:
                raise NonceReusedError(address, intent.nonce)

        return DownloadContent(
            catalog_key=item.catalog_key,
            title=item.title,
            content=text,
            payment_request_id=payment.id,
            fulfilled_hash=payment.fulfilled_hash,
        )
