"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from decimal import Decimal


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class PaymentReferenceDecodeError(StorefrontError):
    """Raised when a chain event's payment reference is not a request id."""

    def __init__(self, raw_reference: object, reason: str) -> None:
        self.raw_reference = raw_reference
        self.reason = reason
        super().__init__(f"Undecodable payment reference {raw_reference!r}: {reason}")


class PaymentRequestNotFoundError(StorefrontError):
    """Raised when a payment request doesn't exist."""

    def __init__(self, payment_request_id: int) -> None:
        self.payment_request_id = payment_request_id
        super().__init__(f"Payment request not found: {payment_request_id}")


class CatalogItemNotFoundError(StorefrontError):
    """Raised when a catalog item doesn't exist."""

    def __init__(self, catalog_key: str) -> None:
        self.catalog_key = catalog_key
        super().__init__(f"Catalog item not found: {catalog_key}")


class PaymentNotFulfilledError(StorefrontError):
    """Raised when no fulfilled payment request exists for an item and payer."""

    def __init__(self, catalog_key: str, payer_address: str) -> None:
        self.catalog_key = catalog_key
        self.payer_address = payer_address
        super().__init__(f"No fulfilled payment for {catalog_key} by {payer_address}")


class UnsupportedTokenError(StorefrontError):
    """Raised when a payment was made in a token outside the allowlist."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"Payments in token {token} are not supported")


class InsufficientAmountError(StorefrontError):
    """Raised when a payment's fiat value is below the required price."""

    def __init__(self, paid_cents: Decimal, required_cents: int) -> None:
        self.paid_cents = paid_cents
        self.required_cents = required_cents
        super().__init__(
            f"Insufficient payment. Paid: {paid_cents} cents, Required: {required_cents} cents"
        )


class InvalidAddressError(StorefrontError):
    """Raised when a payer address is missing or malformed."""

    def __init__(self, address: str | None) -> None:
        self.address = address
        super().__init__(f"Invalid payer address: {address!r}")


class AuthorizationError(StorefrontError):
    """Raised when a signed download request does not prove the claimed address."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authorization failed: {message}")


class NonceReusedError(AuthorizationError):
    """Raised when a download nonce has already been consumed."""

    def __init__(self, address: str, nonce: str) -> None:
        self.address = address
        self.nonce = nonce
        super().__init__(f"nonce {nonce} already used by {address}")


class ConnectivityError(StorefrontError):
    """Raised when the chain node or the database is unreachable."""

    def __init__(self, resource: str, message: str) -> None:
        self.resource = resource
        self.message = message
        super().__init__(f"{resource} unavailable: {message}")


class WriteVerificationError(StorefrontError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")
