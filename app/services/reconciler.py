"""
Payment Reconciler - Turns chain payment events into fulfillment decisions.

NO DICTIONARIES - Every decision is returned as a typed ReconcileResult.

The reconciler keeps no state of its own. Each call is a function of the
incoming event, the stored request, and the ReconcilerConfig, so replaying
the chain from any block is safe.
"""

from structlog import get_logger

from app.db.repository import STORE_OUTAGE_ERRORS, PaymentRequestStore
from app.exceptions import (
    ConnectivityError,
    InsufficientAmountError,
    PaymentReferenceDecodeError,
    PaymentRequestNotFoundError,
    UnsupportedTokenError,
)
from app.models.api import ReconcileOutcome
from app.models.domain import ChainPaymentEvent, ReconcileResult
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.observability.tracing import add_span_attributes, get_tracer, set_span_error
from app.services.payment_reference import decode_payment_reference
from app.services.pricing import ReconcilerConfig, to_fiat_cents, whole_cents

logger = get_logger(__name__)
tracer = get_tracer(__name__)


class PaymentReconciler:
    """
    Reconciles one PaymentReceived event at a time.

    Steps per event:
    1. Decode paymentId to a request id
    2. Load the request
    3. Convert the amount to USD cents (native rate or 1:1 token peg)
    4. Reject if below the snapshotted price
    5. Set the fulfillment marker with a conditional write (first success wins)

    Rejections are permanent for the event and never raised; only
    ConnectivityError escapes so the caller can retry the event later.
    """

    def __init__(self, store: PaymentRequestStore, config: ReconcilerConfig) -> None:
        """Initialize reconciler with a record store and acceptance policy."""
        self.store = store
        self.config = config

    async def reconcile(self, event: ChainPaymentEvent) -> ReconcileResult:
        """
        Reconcile a single chain payment event.

        Raises:
            ConnectivityError: the record store is unreachable
        """
        with log_context(
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
            log_index=event.log_index,
        ), tracer.start_as_current_span("reconcile_payment_event") as span:
            try:
                result = await self._reconcile(event)
            except PaymentReferenceDecodeError as exc:
                logger.error(
                    "payment_reference_undecodable",
                    raw_reference=repr(exc.raw_reference),
                    reason=exc.reason,
                )
                result = ReconcileResult(
                    outcome=ReconcileOutcome.DECODE_ERROR,
                    transaction_hash=event.transaction_hash,
                    detail=exc.reason,
                )
            except PaymentRequestNotFoundError as exc:
                logger.error(
                    "payment_request_not_found",
                    payment_request_id=exc.payment_request_id,
                )
                result = ReconcileResult(
                    outcome=ReconcileOutcome.NOT_FOUND,
                    transaction_hash=event.transaction_hash,
                    payment_request_id=exc.payment_request_id,
                )
            except UnsupportedTokenError as exc:
                logger.error("payment_token_unsupported", token=exc.token)
                result = ReconcileResult(
                    outcome=ReconcileOutcome.UNSUPPORTED_TOKEN,
                    transaction_hash=event.transaction_hash,
                    detail=exc.token,
                )
            except InsufficientAmountError as exc:
                logger.error(
                    "payment_amount_insufficient",
                    paid_cents=str(exc.paid_cents),
                    required_cents=exc.required_cents,
                )
                result = ReconcileResult(
                    outcome=ReconcileOutcome.INSUFFICIENT_AMOUNT,
                    transaction_hash=event.transaction_hash,
                    paid_cents=exc.paid_cents,
                    detail=str(exc),
                )
            except STORE_OUTAGE_ERRORS as exc:
                set_span_error(span, exc)
                metrics.record_error(type(exc).__name__, "reconcile")
                raise ConnectivityError("database", str(exc)) from exc

            add_span_attributes(
                span,
                outcome=result.outcome.value,
                payment_request_id=result.payment_request_id,
            )
            metrics.record_reconciliation(
                result.outcome.value,
                paid_cents=(
                    whole_cents(result.paid_cents)
                    if result.outcome == ReconcileOutcome.FULFILLED
                    and result.paid_cents is not None
                    else None
                ),
                token_kind="native" if self.config.is_native(event.token) else "token",
            )
            return result

    async def _reconcile(self, event: ChainPaymentEvent) -> ReconcileResult:
        payment_request_id = decode_payment_reference(event.payment_reference)

        request = await self.store.find_by_id(payment_request_id)
        if request is None:
            raise PaymentRequestNotFoundError(payment_request_id)

        fiat_cents = to_fiat_cents(event.amount, event.token, self.config)
        if fiat_cents < request.price_cents:
            raise InsufficientAmountError(fiat_cents, request.price_cents)

        if request.fulfilled_hash is not None:
            return self._settled_result(event, payment_request_id, request.fulfilled_hash)

        paid_cents = whole_cents(fiat_cents)
        won = await self.store.try_mark_fulfilled(
            payment_request_id, event.transaction_hash, paid_cents
        )
        if not won:
            # Lost the conditional write to a concurrent delivery
            current = await self.store.find_by_id(payment_request_id)
            existing_hash = current.fulfilled_hash if current is not None else None
            return self._settled_result(event, payment_request_id, existing_hash)

        logger.info(
            "payment_request_fulfilled",
            payment_request_id=payment_request_id,
            paid_cents=paid_cents,
            required_cents=request.price_cents,
            token=event.token,
        )
        return ReconcileResult(
            outcome=ReconcileOutcome.FULFILLED,
            transaction_hash=event.transaction_hash,
            payment_request_id=payment_request_id,
            paid_cents=fiat_cents,
        )

    def _settled_result(
        self, event: ChainPaymentEvent, payment_request_id: int, existing_hash: str | None
    ) -> ReconcileResult:
        if existing_hash is not None and existing_hash.lower() == event.transaction_hash.lower():
            logger.info("payment_event_replayed", payment_request_id=payment_request_id)
            return ReconcileResult(
                outcome=ReconcileOutcome.DUPLICATE,
                transaction_hash=event.transaction_hash,
                payment_request_id=payment_request_id,
            )

        logger.warning(
            "payment_already_fulfilled",
            payment_request_id=payment_request_id,
            fulfilled_hash=existing_hash,
        )
        return ReconcileResult(
            outcome=ReconcileOutcome.ALREADY_FULFILLED,
            transaction_hash=event.transaction_hash,
            payment_request_id=payment_request_id,
            detail=existing_hash,
        )
