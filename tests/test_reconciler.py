"""
Tests for PaymentReconciler.

Covers acceptance, rejection, at-most-once fulfillment, and the error
categories that are logged instead of raised.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from app.exceptions import ConnectivityError
from app.models.api import ReconcileOutcome
from app.services.pricing import ReconcilerConfig
from app.services.reconciler import PaymentReconciler
from tests.conftest import (
    OTHER_TX_HASH,
    STABLECOIN,
    TX_HASH,
    UNLISTED_TOKEN,
    create_event,
    create_payment_data,
)

# 999 cents at 220000 cents per ether, rounded up to the next wei
WEI_FOR_999_CENTS = 4540909090909091
WEI_FOR_500_CENTS = 2272727272727273
TOKEN_UNIT = 10**16  # one cent of an 18-decimal dollar token


class TestNativePayments:
    """Native-currency events converted at the fixed rate."""

    async def test_exact_quote_fulfills_request(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Paying the quoted amount for a 999 cent item fulfills it."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert result.outcome == ReconcileOutcome.FULFILLED
        assert result.accepted is True
        assert result.payment_request_id == 42
        assert result.paid_cents >= Decimal(999)
        payment_store.try_mark_fulfilled.assert_awaited_once_with(42, TX_HASH, 999)

    async def test_half_payment_is_rejected(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """An event worth 500 cents leaves a 999 cent request payable."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_500_CENTS))

        assert result.outcome == ReconcileOutcome.INSUFFICIENT_AMOUNT
        assert result.accepted is False
        assert Decimal(500) <= result.paid_cents < Decimal(501)
        payment_store.try_mark_fulfilled.assert_not_awaited()

    async def test_one_wei_short_is_rejected(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Truncating the quote by a single wei drops below the price."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS - 1))

        assert result.outcome == ReconcileOutcome.INSUFFICIENT_AMOUNT
        payment_store.try_mark_fulfilled.assert_not_awaited()

    async def test_overpayment_stores_whole_cents(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Stored paid_cents is rounded down; the result keeps the exact value."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        # 0.005 ether = 1100 cents
        result = await reconciler.reconcile(create_event(amount=5 * 10**15))

        assert result.outcome == ReconcileOutcome.FULFILLED
        assert result.paid_cents == Decimal(1100)
        payment_store.try_mark_fulfilled.assert_awaited_once_with(42, TX_HASH, 1100)


class TestTokenPayments:
    """Allowlisted tokens are pegged 1:1 to the dollar."""

    async def test_exact_token_amount_fulfills(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """9.99 tokens pays a 999 cent request."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=999 * TOKEN_UNIT, token=STABLECOIN))

        assert result.outcome == ReconcileOutcome.FULFILLED
        assert result.paid_cents == Decimal(999)

    async def test_token_address_case_is_ignored(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Lower-cased token address matches the checksummed allowlist."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(
            create_event(amount=999 * TOKEN_UNIT, token=STABLECOIN.lower())
        )

        assert result.outcome == ReconcileOutcome.FULFILLED

    async def test_token_short_by_fraction_of_cent_is_rejected(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Underpaying by less than a cent is still underpaying."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(
            create_event(amount=999 * TOKEN_UNIT - 1, token=STABLECOIN)
        )

        assert result.outcome == ReconcileOutcome.INSUFFICIENT_AMOUNT
        payment_store.try_mark_fulfilled.assert_not_awaited()

    async def test_unlisted_token_is_rejected(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Tokens outside the allowlist never fulfill, however large the amount."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=10**24, token=UNLISTED_TOKEN))

        assert result.outcome == ReconcileOutcome.UNSUPPORTED_TOKEN
        assert result.detail == UNLISTED_TOKEN
        payment_store.try_mark_fulfilled.assert_not_awaited()


class TestAtMostOnceFulfillment:
    """The fulfillment marker is set once and never overwritten."""

    async def test_replayed_event_is_duplicate(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, fulfilled_payment
    ):
        """The same transaction delivered twice is reported as a duplicate."""
        payment_store.find_by_id.return_value = fulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert result.outcome == ReconcileOutcome.DUPLICATE
        assert result.accepted is True
        payment_store.try_mark_fulfilled.assert_not_awaited()

    async def test_replay_matches_hash_case_insensitively(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig
    ):
        """Hex case differences in the hash do not turn a replay into a conflict."""
        payment_store.find_by_id.return_value = create_payment_data(
            fulfilled_hash=TX_HASH.upper().replace("0X", "0x"), paid_cents=999
        )
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert result.outcome == ReconcileOutcome.DUPLICATE

    async def test_second_payment_does_not_overwrite(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, fulfilled_payment
    ):
        """A different transaction for a fulfilled request is not applied."""
        payment_store.find_by_id.return_value = fulfilled_payment
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(
            create_event(amount=WEI_FOR_999_CENTS, transaction_hash=OTHER_TX_HASH)
        )

        assert result.outcome == ReconcileOutcome.ALREADY_FULFILLED
        assert result.accepted is False
        assert result.detail == TX_HASH
        payment_store.try_mark_fulfilled.assert_not_awaited()

    async def test_losing_conditional_write_reports_winner(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """A concurrent delivery that won the write is reported, not overwritten."""
        winner = create_payment_data(fulfilled_hash=OTHER_TX_HASH, paid_cents=999)
        payment_store.find_by_id.side_effect = [unfulfilled_payment, winner]
        payment_store.try_mark_fulfilled.return_value = False
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert result.outcome == ReconcileOutcome.ALREADY_FULFILLED
        assert result.detail == OTHER_TX_HASH

    async def test_losing_to_same_transaction_is_duplicate(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """Two deliveries of one transaction racing end as fulfilled plus duplicate."""
        winner = create_payment_data(fulfilled_hash=TX_HASH, paid_cents=999)
        payment_store.find_by_id.side_effect = [unfulfilled_payment, winner]
        payment_store.try_mark_fulfilled.return_value = False
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert result.outcome == ReconcileOutcome.DUPLICATE


class TestRejectedEvents:
    """Events that can never apply are logged and reported, not raised."""

    @pytest.mark.parametrize("reference", [b"", "0xzz", -1, 2**64, True])
    async def test_undecodable_reference(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, reference
    ):
        """A reference that is not a request id stops before any lookup."""
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(
            create_event(amount=WEI_FOR_999_CENTS, payment_reference=reference)
        )

        assert result.outcome == ReconcileOutcome.DECODE_ERROR
        assert result.payment_request_id is None
        payment_store.find_by_id.assert_not_awaited()

    async def test_unknown_request(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig
    ):
        """A well-formed reference with no matching request is not found."""
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        result = await reconciler.reconcile(
            create_event(amount=WEI_FOR_999_CENTS, payment_reference=(7).to_bytes(32, "big"))
        )

        assert result.outcome == ReconcileOutcome.NOT_FOUND
        assert result.payment_request_id == 7
        payment_store.find_by_id.assert_awaited_once_with(7)
        payment_store.try_mark_fulfilled.assert_not_awaited()


class TestConnectivity:
    """Store failures propagate so the event can be retried."""

    async def test_lookup_failure_raises_connectivity_error(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig
    ):
        """A database outage during lookup surfaces as ConnectivityError."""
        payment_store.find_by_id.side_effect = OperationalError(
            "SELECT", {}, Exception("connection refused")
        )
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        with pytest.raises(ConnectivityError) as exc_info:
            await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert exc_info.value.resource == "database"

    async def test_write_failure_raises_connectivity_error(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, unfulfilled_payment
    ):
        """A database outage during the conditional write also surfaces."""
        payment_store.find_by_id.return_value = unfulfilled_payment
        payment_store.try_mark_fulfilled.side_effect = OperationalError(
            "UPDATE", {}, Exception("server closed the connection")
        )
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        with pytest.raises(ConnectivityError):
            await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

    @pytest.mark.parametrize(
        "error",
        [
            ConnectionRefusedError(111, "Connect call failed"),
            PoolTimeoutError("QueuePool limit of size 5 overflow 10 reached"),
        ],
        ids=["connection_refused", "pool_timeout"],
    )
    async def test_driver_and_pool_failures_raise_connectivity_error(
        self, payment_store: AsyncMock, reconciler_config: ReconcilerConfig, error: Exception
    ):
        """Connect failures and pool exhaustion are outages, not rejections."""
        payment_store.find_by_id.side_effect = error
        reconciler = PaymentReconciler(payment_store, reconciler_config)

        with pytest.raises(ConnectivityError) as exc_info:
            await reconciler.reconcile(create_event(amount=WEI_FOR_999_CENTS))

        assert exc_info.value.resource == "database"
        assert exc_info.value.__cause__ is error
