import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path as _Path

ROOT = str(_Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from config.settings import Settings
from core.jupiter_async import JupiterAsync
from core.liquidity_supplier import LiquiditySupplier, PaperLiquiditySupplier
from core.listing_poller import ListingPoller
from core.meteora_async import MeteoraPoolsAsync
from core.notify import DiscordNotifier
from core.pool_listener import FixedBackoff, MeteoraLogListener
from core.pool_orchestrator import PoolOrchestrator
from core.pool_tx_parser import PoolTxDecoder
from core.rpc_factory import build_rpc
from core.wallet import Wallet, WalletError

log = logging.getLogger("run_watch")


def build_components(settings: Settings, wallet: Wallet):
    rpc, kind = build_rpc(settings)
    log.info("[BOOT] rpc=%s kind=%s mode=%s", settings.rpc_http, kind, settings.mode)

    notifier = DiscordNotifier(settings.discord_webhook_url)
    supplier_cls = PaperLiquiditySupplier if settings.paper else LiquiditySupplier
    supplier = supplier_cls(
        rpc,
        wallet,
        settings.program_id,
        notifier=notifier,
        lp_percentage=settings.lp_percentage,
        min_sol_balance=settings.min_sol_balance,
        commitment=settings.commitment,
        skip_preflight=settings.tx_skip_preflight,
        max_retries=settings.tx_max_retries,
    )
    decoder = PoolTxDecoder(
        rpc,
        settings.program_id,
        commitment=settings.commitment,
        markers=settings.creation_markers,
    )
    jupiter = JupiterAsync(settings.jupiter_api, timeout_s=settings.listing_http_timeout_s)
    meteora = MeteoraPoolsAsync(settings.meteora_api, timeout_s=settings.listing_http_timeout_s)
    poller = ListingPoller(jupiter, meteora, program_id=settings.program_id)
    orchestrator = PoolOrchestrator(
        decoder,
        supplier,
        poller,
        notifier,
        listing_max_attempts=settings.listing_max_attempts,
        listing_interval_s=settings.listing_interval_s,
    )
    listener = MeteoraLogListener(
        settings.rpc_ws,
        settings.program_id,
        commitment=settings.commitment,
        backoff=FixedBackoff(settings.ws_reconnect_interval_s),
    )
    closeables = [rpc, jupiter, meteora, notifier]
    return orchestrator, listener, closeables


async def main(settings: Settings) -> int:
    try:
        wallet = Wallet.load(private_key=settings.private_key, keypair_path=settings.keypair_path or None)
    except WalletError as e:
        log.error("❌ wallet: %s", e)
        return 1

    orchestrator, listener, closeables = build_components(settings, wallet)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    rc = 0
    runner = asyncio.create_task(orchestrator.run(listener))
    stopper = asyncio.create_task(stop.wait())
    try:
        await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if runner.done() and not runner.cancelled() and runner.exception() is not None:
            log.error("❌ unexpected error: %s", runner.exception())
            rc = 1
    finally:
        log.info("🛑 shutting down...")
        stopper.cancel()
        await orchestrator.shutdown(listener)
        if not runner.done():
            runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)
        await asyncio.gather(*[c.close() for c in closeables], return_exceptions=True)
        log.info("all resources released, bye")
    return rc


def cli(argv=None) -> int:
    p = argparse.ArgumentParser(description="Watch Meteora for new pools, supply liquidity, track UI listing")
    p.add_argument("--paper", action="store_true", help="Force MODE=PAPER (no transaction is sent)")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = p.parse_args(argv)

    settings = Settings.from_env()
    if args.paper:
        settings = dataclasses.replace(settings, mode="PAPER")
    level = (args.log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return asyncio.run(main(settings))
    except KeyboardInterrupt:
        print("\n🛑 stop requested (Ctrl+C).")
        return 0


if __name__ == "__main__":
    sys.exit(cli())
