"""
Tests for the exception hierarchy.
"""

from decimal import Decimal

import pytest

from app.exceptions import (
    AuthorizationError,
    CatalogItemNotFoundError,
    ConnectivityError,
    InsufficientAmountError,
    InvalidAddressError,
    NonceReusedError,
    PaymentNotFulfilledError,
    PaymentReferenceDecodeError,
    PaymentRequestNotFoundError,
    StorefrontError,
    UnsupportedTokenError,
    WriteVerificationError,
)


class TestExceptionHierarchy:
    """Every storefront exception derives from StorefrontError."""

    @pytest.mark.parametrize(
        "exc",
        [
            PaymentReferenceDecodeError(b"", "empty reference"),
            PaymentRequestNotFoundError(7),
            CatalogItemNotFoundError("978-0345806789"),
            PaymentNotFulfilledError("978-0345806789", "0xabc"),
            UnsupportedTokenError("0xdead"),
            InsufficientAmountError(Decimal("500.5"), 999),
            InvalidAddressError(None),
            AuthorizationError("bad signature"),
            NonceReusedError("0xabc", "n1"),
            ConnectivityError("chain", "timeout"),
            WriteVerificationError("no id"),
        ],
    )
    def test_is_storefront_error(self, exc: StorefrontError):
        """Callers can catch the whole family at once."""
        assert isinstance(exc, StorefrontError)

    def test_nonce_reuse_is_authorization_failure(self):
        """Nonce reuse is handled wherever authorization failures are."""
        assert isinstance(NonceReusedError("0xabc", "n1"), AuthorizationError)


class TestExceptionAttributes:
    """Typed attributes survive construction."""

    def test_insufficient_amount(self):
        """Exact paid value and required price are kept."""
        exc = InsufficientAmountError(Decimal("500.5"), 999)
        assert exc.paid_cents == Decimal("500.5")
        assert exc.required_cents == 999
        assert "500.5" in str(exc)

    def test_connectivity(self):
        """Resource and message are exposed separately."""
        exc = ConnectivityError("database", "connection refused")
        assert exc.resource == "database"
        assert str(exc) == "database unavailable: connection refused"

    def test_decode_error(self):
        """Raw value and reason are kept for logging."""
        exc = PaymentReferenceDecodeError("0xzz", "not hexadecimal")
        assert exc.raw_reference == "0xzz"
        assert exc.reason == "not hexadecimal"
