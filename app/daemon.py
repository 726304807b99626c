"""
Chain Listener Daemon - Long-running process that settles payments.

Run with:
    python -m app.daemon
"""

import asyncio
import signal

from app.config import ConfigurationError, settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines, get_session_factory
from app.observability import get_logger, setup_logging, setup_tracing
from app.services.chain_listener import PaymentEventSubscriber, Web3PaymentEventSource
from app.services.pricing import reconciler_config_from_settings

setup_logging()
logger = get_logger(__name__)


def build_subscriber() -> PaymentEventSubscriber:
    """Wire the subscriber from settings."""
    if not settings.payment_receiver_contract:
        raise ConfigurationError("PAYMENT_RECEIVER_CONTRACT is required to run the chain listener")

    source = Web3PaymentEventSource(settings.provider_rpc, settings.payment_receiver_contract)
    return PaymentEventSubscriber(
        source=source,
        session_factory=get_session_factory(),
        config=reconciler_config_from_settings(settings),
        contract_address=settings.payment_receiver_contract,
        start_block=settings.start_block,
        batch_size=settings.block_batch_size,
        confirmations=settings.confirmations,
        poll_interval=settings.poll_interval_seconds,
        reconnect_backoff=settings.reconnect_backoff_seconds,
    )


async def serve() -> None:
    """Run the subscriber until SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    subscriber = build_subscriber()
    try:
        await subscriber.run(stop)
    finally:
        await close_engines()
        logger.info("database_engines_closed")


def main() -> None:
    setup_tracing("chain-listener")

    logger.info(
        "chain_daemon_starting",
        provider_rpc=settings.provider_rpc,
        contract=settings.payment_receiver_contract or None,
        accepted_tokens=sorted(settings.accepted_tokens),
    )

    if settings.run_migrations_on_startup:
        run_migrations()

    asyncio.run(serve())


if __name__ == "__main__":
    main()
