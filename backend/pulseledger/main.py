"""
pulseledger - autonomous agent process

    cd backend && python -m pulseledger.main

Initializes the local store, restores the live strategy, checks the ledger
wallet, then runs the agent scheduler until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal

from pulseledger.common.config import settings
from pulseledger.common.database import db_manager
from pulseledger.common.logging_config import setup_logging

setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_dir=settings.log_dir,
    log_file_prefix=settings.app_name,
    backup_count=settings.log_backup_count,
)
logger = logging.getLogger(__name__)

MIN_BALANCE_SOL = 0.05


async def check_ledger():
    """Log ledger status; on devnet/testnet top up a nearly empty wallet. Never fatal."""
    from pulseledger.domains.ledger.ledger_client import LedgerError, get_ledger_client

    ledger = get_ledger_client()
    if not ledger.can_write:
        logger.warning("No wallet configured, ledger commitments disabled")
        return

    try:
        status = await ledger.get_network_status()
        logger.info(
            f"Ledger {status['network']}: slot {status['slot']}, wallet {status['wallet']}, "
            f"balance {status.get('balance_sol', 0):.4f} SOL"
        )
        if status.get("balance_sol", 0) < MIN_BALANCE_SOL and ledger.network not in ("mainnet", "mainnet-beta"):
            await ledger.request_airdrop(1.0)
    except LedgerError as e:
        logger.warning(f"Ledger check failed, continuing without it: {e}")


async def main():
    logger.info(f"🚀 {settings.app_name} {settings.app_version} starting...")

    await db_manager.initialize()
    logger.info(f"✅ Database ready ({settings.database_type})")

    from pulseledger.domains.strategy.strategy_manager import get_strategy_manager
    strategy = await get_strategy_manager().restore()
    logger.info(f"✅ Strategy v{strategy.version} restored: {strategy.parameters.model_dump()}")

    await check_ledger()

    from pulseledger.schedulers import get_agent_scheduler
    scheduler = get_agent_scheduler()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    first = await scheduler.start()
    logger.info(f"✅ Agent scheduler started, first data refresh: {first['status']}")

    await stop_event.wait()

    logger.info("Shutting down...")
    await scheduler.shutdown(timeout=settings.shutdown_grace_seconds)

    from pulseledger.domains.ecosystem.client import get_ecosystem_client
    from pulseledger.domains.ledger.ledger_client import get_ledger_client
    await get_ecosystem_client().close()
    await get_ledger_client().close()
    await db_manager.close()
    logger.info("Bye")


if __name__ == "__main__":
    asyncio.run(main())
