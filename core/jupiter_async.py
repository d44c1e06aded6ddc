from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

DEFAULT_QUOTE_API = "https://quote-api.jup.ag/v6"


@dataclass
class JupiterError(Exception):
    message: str
    data: Any = None
    status: Optional[int] = None

    def __str__(self) -> str:
        if self.data is None:
            return self.message
        return f"{self.message} | data={self.data}"

    @property
    def no_route(self) -> bool:
        # 400 / 404 on /quote = pair not routable (yet)
        return self.status in (400, 404)


class JupiterAsync:
    """
    Jupiter quote API, used as a listing check: a pair is visible on the
    Jupiter UI once /quote returns a route for it.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_QUOTE_API,
        *,
        api_key: str = "",
        timeout_s: float = 5.0,
        rps: float = 2.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = (base_url or DEFAULT_QUOTE_API).rstrip("/")
        self.api_key = (api_key or "").strip()
        self.timeout_s = float(timeout_s)
        self.v6 = "/v6" in self.base_url

        # one request slot per 1/rps seconds
        self._min_interval = 1.0 / rps if rps and rps > 0 else 0.0
        self._next_slot = 0.0
        self._slot_lock = asyncio.Lock()

        self._external_session = session
        self._session: Optional[aiohttp.ClientSession] = session

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._external_session is None:
            await self._session.close()
        self._session = None

    async def _wait_slot(self) -> None:
        if not self._min_interval:
            return
        async with self._slot_lock:
            now = time.monotonic()
            if self._next_slot > now:
                await asyncio.sleep(self._next_slot - now)
            self._next_slot = max(now, self._next_slot) + self._min_interval

    async def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage: float = 0.5,
    ) -> Dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
        }
        # v6 takes basis points; older quote APIs take a percentage
        if self.v6:
            params["slippageBps"] = str(int(round(slippage * 100)))
        else:
            params["slippage"] = str(slippage)
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        await self._wait_slot()
        s = await self._ensure_session()
        try:
            async with s.get(f"{self.base_url}/quote", params=params, headers=headers) as resp:
                body = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as e:
            raise JupiterError("Jupiter timeout") from e
        except aiohttp.ClientError as e:
            raise JupiterError("Jupiter client error", str(e)) from e

        if status != 200:
            raise JupiterError(f"Jupiter HTTP {status}", body[:400], status=status)
        try:
            j = json.loads(body)
        except json.JSONDecodeError as e:
            raise JupiterError("Jupiter invalid JSON", body[:200], status=status) from e
        if not isinstance(j, dict):
            raise JupiterError("quote: unexpected response type", j, status=status)
        return j
