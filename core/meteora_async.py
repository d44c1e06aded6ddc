from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp


@dataclass
class MeteoraError(Exception):
    message: str
    data: Any = None

    def __str__(self) -> str:
        if self.data is None:
            return self.message
        return f"{self.message} | data={self.data}"


class MeteoraPoolsAsync:
    """
    Pool lookup on the Meteora API: GET {base}/{address}
      200 => registered
      404 => not (yet) registered, expected
      anything else => MeteoraError
    """

    def __init__(
        self,
        base_url: str = "https://api.meteora.ag/pools",
        *,
        timeout_s: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = (base_url or "https://api.meteora.ag/pools").rstrip("/")
        self.timeout_s = float(timeout_s)
        self._external_session = session
        self._session: Optional[aiohttp.ClientSession] = session

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._external_session is None:
            await self._session.close()
        self._session = None

    async def pool_exists(self, pool_address: str) -> bool:
        s = await self._ensure_session()
        url = f"{self.base_url}/{pool_address}"
        try:
            async with s.get(url, headers={"accept": "application/json"}) as resp:
                if resp.status == 404:
                    return False
                txt = await resp.text()
                if resp.status != 200:
                    raise MeteoraError(f"Meteora HTTP {resp.status}", txt[:400])
                return bool(txt.strip())
        except asyncio.TimeoutError as e:
            raise MeteoraError("Meteora timeout") from e
        except aiohttp.ClientError as e:
            raise MeteoraError("Meteora client error", str(e)) from e
