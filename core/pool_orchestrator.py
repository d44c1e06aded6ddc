from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from core.listing_poller import ListingPoller
from core.models import PipelineRun, PipelineState, PoolEvent, state_for_listing
from core.notify import DiscordNotifier
from core.pool_listener import MeteoraLogListener
from core.pool_tx_parser import PoolTxDecoder

log = logging.getLogger("PoolOrchestrator")


class PoolOrchestrator:
    """
    signature -> decode -> per-pool pipeline:
      notify detected -> fund -> (funded) poll listing -> notify result
    At most one pipeline per pool address (in-flight map); the entry is
    released on every exit path.
    """

    def __init__(
        self,
        decoder: PoolTxDecoder,
        supplier: Any,
        poller: ListingPoller,
        notifier: DiscordNotifier,
        *,
        listing_max_attempts: int = 30,
        listing_interval_s: float = 10.0,
    ) -> None:
        self.decoder = decoder
        self.supplier = supplier
        self.poller = poller
        self.notifier = notifier
        self.listing_max_attempts = int(listing_max_attempts)
        self.listing_interval_s = float(listing_interval_s)

        self._in_flight: Dict[str, PipelineRun] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._queue: Optional[asyncio.Queue] = None

    def in_flight(self) -> Dict[str, PipelineState]:
        return {addr: run.state for addr, run in self._in_flight.items()}

    def is_in_flight(self, pool_address: str) -> bool:
        return pool_address in self._in_flight

    # ---------------- pipeline ----------------
    async def on_pool_event(self, event: PoolEvent) -> Optional[PipelineRun]:
        addr = event.pool_address
        if addr in self._in_flight:
            log.debug("[PIPELINE] pool=%s already in flight, skip", addr)
            return None

        run = PipelineRun(event)
        self._in_flight[addr] = run
        log.info("[PIPELINE] start pool=%s", addr)
        try:
            await self._run_pipeline(run)
        except asyncio.CancelledError:
            run.abort("cancelled")
            raise
        except Exception as e:
            log.exception("[PIPELINE] pool=%s failed: %s", addr, e)
            run.abort(str(e))
            await self.notifier.notify_error(f"Pool {addr} processing failed", str(e))
        finally:
            self._release(run)
        return run

    async def _run_pipeline(self, run: PipelineRun) -> None:
        event = run.event
        await self.notifier.notify_new_pool(event)

        run.advance(PipelineState.FUNDING)
        funding = await self.supplier.fund(event)
        if funding is None:
            run.advance(PipelineState.FUNDING_FAILED)
            log.warning("[PIPELINE] funding failed pool=%s", event.pool_address)
            await self.notifier.notify_error("Liquidity supply failed", f"pool: {event.pool_address}")
            return
        run.funding = funding
        run.advance(PipelineState.FUNDED)

        run.advance(PipelineState.POLLING)
        run.poll_task = asyncio.create_task(
            self.poller.poll(event, self.listing_max_attempts, self.listing_interval_s)
        )
        listing = await run.poll_task
        run.listing = listing
        run.advance(state_for_listing(listing))

        if listing.listed:
            log.info("🎉 [PIPELINE] done pool=%s detect -> fund -> listed (%ss)", event.pool_address, listing.seconds_to_list)
        else:
            log.warning("[PIPELINE] pool=%s not listed within the polling window", event.pool_address)
        await self.notifier.notify_listing_result(event, listing)

    def _release(self, run: PipelineRun) -> None:
        task = run.poll_task
        if task is not None and not task.done():
            task.cancel()
        if self._in_flight.get(run.pool_address) is run:
            del self._in_flight[run.pool_address]
        log.debug("[PIPELINE] released pool=%s state=%s", run.pool_address, run.state.value)

    # ---------------- ingestion ----------------
    async def handle_signature(self, signature: str) -> None:
        try:
            event = await self.decoder.decode(signature)
        except Exception as e:
            log.error("[PIPELINE] decode error sig=%s err=%s", signature, e)
            return
        if event is not None:
            await self.on_pool_event(event)

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def consume(self, queue: asyncio.Queue) -> None:
        while True:
            sig = await queue.get()
            if sig is None:
                break
            self._spawn(self.handle_signature(sig))

    async def run(self, listener: MeteoraLogListener) -> None:
        self._queue = asyncio.Queue()
        listen_task = listener.subscribe(self._queue.put)
        consumer = asyncio.create_task(self.consume(self._queue))
        log.info("🚀 [PIPELINE] monitoring new Meteora pools")
        try:
            done, _ = await asyncio.wait({listen_task, consumer}, return_when=asyncio.FIRST_COMPLETED)
            for t in done:
                if not t.cancelled() and t.exception() is not None:
                    raise t.exception()
        finally:
            if not consumer.done():
                consumer.cancel()

    async def shutdown(self, listener: MeteoraLogListener) -> None:
        await listener.unsubscribe()
        if self._queue is not None:
            self._queue.put_nowait(None)
        if self._in_flight:
            log.warning("[PIPELINE] abandoning %d in-flight pipeline(s)", len(self._in_flight))
