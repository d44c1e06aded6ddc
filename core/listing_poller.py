from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from core.jupiter_async import JupiterAsync, JupiterError
from core.meteora_async import MeteoraError, MeteoraPoolsAsync
from core.models import JUPITER, METEORA, ListingResult, PoolEvent

log = logging.getLogger("ListingPoller")

Sleep = Callable[[float], Awaitable[Any]]


class PollState(str, enum.Enum):
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    EXHAUSTED = "exhausted"


def _market_ids(route: Dict[str, Any]) -> Iterable[str]:
    # v4: {"marketInfos": [{"id", "label", "amm": {...} | str}]}
    for m in route.get("marketInfos") or []:
        if not isinstance(m, dict):
            continue
        amm = m.get("amm")
        if isinstance(amm, dict):
            yield from (str(v) for v in amm.values() if isinstance(v, str))
        elif amm:
            yield str(amm)
        for k in ("id", "label"):
            if m.get(k):
                yield str(m[k])
    # v6: {"routePlan": [{"swapInfo": {"ammKey", "label"}}]}
    for step in route.get("routePlan") or []:
        info = (step or {}).get("swapInfo") or {}
        for k in ("ammKey", "label"):
            if info.get(k):
                yield str(info[k])


def route_touches(quote: Dict[str, Any], markers: Iterable[str]) -> bool:
    """True if any route of a quote response references one of `markers` (case-insensitive)."""
    wanted = [m.lower() for m in markers if m]
    data = quote.get("data")
    if isinstance(data, dict):
        routes: List[Dict[str, Any]] = list(data.get("routesInfos") or [])
    elif isinstance(data, list):
        routes = [r for r in data if isinstance(r, dict)]
    else:
        routes = []
    if quote.get("routePlan"):
        routes.append(quote)

    for route in routes:
        for ident in _market_ids(route):
            low = ident.lower()
            if any(w in low for w in wanted):
                return True
    return False


class ListingPoller:
    def __init__(
        self,
        jupiter: JupiterAsync,
        meteora: MeteoraPoolsAsync,
        *,
        program_id: str = "",
        route_marker: str = "meteora",
        quote_amount: int = 1_000_000,
        slippage: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.jupiter = jupiter
        self.meteora = meteora
        self.markers = [m for m in (route_marker, program_id) if m]
        self.quote_amount = int(quote_amount)
        self.slippage = float(slippage)
        self._sleep = sleep

    async def check_jupiter(self, token_a: str, token_b: str) -> bool:
        try:
            quote = await self.jupiter.quote(
                input_mint=token_a,
                output_mint=token_b,
                amount=self.quote_amount,
                slippage=self.slippage,
            )
        except JupiterError as e:
            if e.no_route:
                log.debug("[LISTING] jupiter: no route yet (%s)", e)
            else:
                log.warning("[LISTING] jupiter lookup error: %s", e)
            return False
        return route_touches(quote, self.markers)

    async def check_meteora(self, pool_address: str) -> bool:
        try:
            return await self.meteora.pool_exists(pool_address)
        except MeteoraError as e:
            log.warning("[LISTING] meteora lookup error: %s", e)
            return False

    async def _round(self, event: PoolEvent) -> List[str]:
        results = await asyncio.gather(
            self.check_jupiter(event.token_a, event.token_b),
            self.check_meteora(event.pool_address),
            return_exceptions=True,
        )
        platforms = []
        for name, res in zip((JUPITER, METEORA), results):
            if isinstance(res, BaseException):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                log.warning("[LISTING] %s check error: %s", name, res)
                continue
            if res:
                platforms.append(name)
        return platforms

    async def poll(
        self,
        event: PoolEvent,
        max_attempts: int = 30,
        interval_s: float = 10,
    ) -> ListingResult:
        state = PollState.WAITING
        attempt = 0
        log.info("[LISTING] watching UI listing pool=%s", event.pool_address)

        while state == PollState.WAITING:
            if attempt >= max_attempts:
                state = PollState.EXHAUSTED
                break
            await self._sleep(interval_s)
            attempt += 1

            platforms = await self._round(event)
            if platforms:
                state = PollState.CONFIRMED
                log.info("🎉 [LISTING] pool=%s listed on %s", event.pool_address, ", ".join(platforms))
                return ListingResult(
                    listed=True,
                    platforms=frozenset(platforms),
                    seconds_to_list=int(attempt * interval_s),
                    pool_address=event.pool_address,
                    attempts=attempt,
                )
            log.debug("[LISTING] waiting pool=%s (%d/%d)", event.pool_address, attempt, max_attempts)

        log.warning("[LISTING] max attempts reached pool=%s, giving up", event.pool_address)
        return ListingResult(
            listed=False,
            platforms=frozenset(),
            seconds_to_list=None,
            pool_address=event.pool_address,
            attempts=attempt,
        )
