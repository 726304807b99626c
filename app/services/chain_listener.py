"""
Chain Listener - Feeds PaymentReceived events into the reconciler.

Polls the payment receiver contract's logs in block windows, reconciles
events one at a time in chain order, and records the last processed block.
Events may be delivered more than once (restarts replay the current window);
the reconciler's conditional write makes that harmless.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception

from app.db.repository import STORE_OUTAGE_ERRORS, ChainCursorStore, PaymentRequestStore
from app.exceptions import ConnectivityError
from app.models.domain import ChainPaymentEvent, ReconcileResult
from app.observability.metrics import metrics
from app.services.pricing import ReconcilerConfig
from app.services.reconciler import PaymentReconciler

logger = get_logger(__name__)

PAYMENT_RECEIVER_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "buyer", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "value", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "token", "type": "address"},
            {"indexed": False, "internalType": "bytes", "name": "paymentId", "type": "bytes"},
        ],
        "name": "PaymentReceived",
        "type": "event",
    },
]

_CONNECTIVITY_ERRORS = (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError)


class ChainEventSource(Protocol):
    """Source of PaymentReceived events."""

    async def latest_block(self) -> int:
        """
        Current chain head.

        Raises:
            ConnectivityError: node unreachable
        """
        ...

    async def fetch_events(self, from_block: int, to_block: int) -> list[ChainPaymentEvent]:
        """
        Events in the inclusive block range.

        Raises:
            ConnectivityError: node unreachable
        """
        ...


def event_from_log(log: Any) -> ChainPaymentEvent:
    """Convert a decoded web3 event log to a ChainPaymentEvent."""
    args = log["args"]
    return ChainPaymentEvent(
        block_number=int(log["blockNumber"]),
        transaction_hash=AsyncWeb3.to_hex(log["transactionHash"]),
        log_index=int(log["logIndex"]),
        payer_address=str(args["buyer"]),
        amount=int(args["value"]),
        token=str(args["token"]),
        payment_reference=args["paymentId"],
    )


class Web3PaymentEventSource:
    """ChainEventSource backed by a JSON-RPC node."""

    def __init__(self, provider_rpc: str, contract_address: str) -> None:
        self.web3 = AsyncWeb3(AsyncHTTPProvider(provider_rpc))
        self.contract = self.web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=PAYMENT_RECEIVER_ABI,
        )

    @property
    def contract_address(self) -> str:
        return str(self.contract.address)

    async def latest_block(self) -> int:
        try:
            return int(await self.web3.eth.block_number)
        except _CONNECTIVITY_ERRORS as exc:
            raise ConnectivityError("chain", str(exc)) from exc

    async def fetch_events(self, from_block: int, to_block: int) -> list[ChainPaymentEvent]:
        try:
            logs = await self.contract.events.PaymentReceived.get_logs(
                from_block=from_block, to_block=to_block
            )
        except _CONNECTIVITY_ERRORS as exc:
            raise ConnectivityError("chain", str(exc)) from exc

        events: list[ChainPaymentEvent] = []
        for log in logs:
            try:
                events.append(event_from_log(log))
            except (KeyError, TypeError, ValueError) as exc:
                logger.error(
                    "payment_event_malformed",
                    block_number=log.get("blockNumber"),
                    error=str(exc),
                )
        return events


@dataclass(frozen=True)
class PollResult:
    """Outcome of one polling window."""

    next_block: int
    caught_up: bool
    events_seen: int


class PaymentEventSubscriber:
    """
    Drives the reconciler from a ChainEventSource.

    Events are processed strictly sequentially, so two events for the same
    payment request are never reconciled concurrently.

    Usage:
        subscriber = PaymentEventSubscriber(source, get_session_factory(), config, ...)
        await subscriber.run()
    """

    def __init__(
        self,
        source: ChainEventSource,
        session_factory: async_sessionmaker[AsyncSession],
        config: ReconcilerConfig,
        contract_address: str,
        start_block: int = 0,
        batch_size: int = 2000,
        confirmations: int = 0,
        poll_interval: float = 5.0,
        reconnect_backoff: float = 10.0,
    ) -> None:
        self.source = source
        self.session_factory = session_factory
        self.config = config
        self.contract_address = contract_address
        self.start_block = start_block
        self.batch_size = batch_size
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.reconnect_backoff = reconnect_backoff

    async def resume_block(self) -> int:
        """First block to fetch: after the saved cursor, never before start_block."""
        try:
            async with self.session_factory() as session:
                cursor = await ChainCursorStore(session).load(self.contract_address)
        except STORE_OUTAGE_ERRORS as exc:
            raise ConnectivityError("database", str(exc)) from exc

        if cursor is None:
            return self.start_block
        return max(self.start_block, cursor + 1)

    async def handle_event(self, event: ChainPaymentEvent) -> ReconcileResult | None:
        """
        Reconcile one event in its own session.

        Never raises except ConnectivityError; anything else is logged and the
        event is dropped so the feed keeps flowing.
        """
        try:
            async with self.session_factory() as session:
                reconciler = PaymentReconciler(PaymentRequestStore(session), self.config)
                return await reconciler.reconcile(event)
        except ConnectivityError:
            raise
        except STORE_OUTAGE_ERRORS as exc:
            raise ConnectivityError("database", str(exc)) from exc
        except Exception as exc:
            metrics.record_error(type(exc).__name__, "handle_payment_event")
            logger.exception(
                "payment_event_handler_failed",
                transaction_hash=event.transaction_hash,
                block_number=event.block_number,
                error=str(exc),
            )
            return None

    async def poll_once(self, from_block: int) -> PollResult:
        """
        Process one window starting at from_block.

        Raises:
            ConnectivityError: the window must be retried
        """
        latest = await self.source.latest_block()
        safe_head = latest - self.confirmations
        if safe_head < from_block:
            return PollResult(next_block=from_block, caught_up=True, events_seen=0)

        to_block = min(safe_head, from_block + self.batch_size - 1)
        events = await self.source.fetch_events(from_block, to_block)

        for event in sorted(events, key=lambda e: (e.block_number, e.log_index)):
            await self.handle_event(event)

        await self._save_cursor(to_block)
        metrics.chain_last_processed_block.set(to_block)

        logger.debug(
            "chain_window_processed",
            from_block=from_block,
            to_block=to_block,
            events=len(events),
        )
        return PollResult(
            next_block=to_block + 1,
            caught_up=to_block >= safe_head,
            events_seen=len(events),
        )

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Poll until stop is set. Connectivity failures back off and retry."""
        stop = stop or asyncio.Event()
        next_block: int | None = None

        logger.info(
            "chain_listener_started",
            contract=self.contract_address,
            start_block=self.start_block,
        )

        while not stop.is_set():
            try:
                if next_block is None:
                    next_block = await self.resume_block()
                    logger.info("chain_listener_resuming", from_block=next_block)
                result = await self.poll_once(next_block)
            except ConnectivityError as exc:
                metrics.record_error("ConnectivityError", exc.resource)
                logger.warning(
                    "chain_poll_failed",
                    resource=exc.resource,
                    error=exc.message,
                    retry_in_seconds=self.reconnect_backoff,
                )
                await self._sleep(stop, self.reconnect_backoff)
                continue

            next_block = result.next_block
            if result.caught_up:
                await self._sleep(stop, self.poll_interval)

        logger.info("chain_listener_stopped", next_block=next_block)

    async def _save_cursor(self, block: int) -> None:
        try:
            async with self.session_factory() as session:
                await ChainCursorStore(session).save(self.contract_address, block)
        except STORE_OUTAGE_ERRORS as exc:
            raise ConnectivityError("database", str(exc)) from exc

    @staticmethod
    async def _sleep(stop: asyncio.Event, seconds: float) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
