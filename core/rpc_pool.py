from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterable, List

from core.solana_rpc_async import RpcError, RpcMethods, SolanaRPCAsync, is_transient

log = logging.getLogger("SolanaRPCPool")


class SolanaRPCPool(RpcMethods):
    """
    One SolanaRPCAsync per endpoint; each call walks the endpoints starting
    from a rotating index and moves on only when the error is transient.
    """

    def __init__(self, rpc_urls: Iterable[str], **client_kwargs: Any) -> None:
        self.urls: List[str] = [u.strip() for u in rpc_urls if u and u.strip()]
        if not self.urls:
            raise ValueError("SolanaRPCPool: rpc_urls empty")
        self.clients: List[SolanaRPCAsync] = [SolanaRPCAsync(u, **client_kwargs) for u in self.urls]
        self._idx = random.randrange(len(self.clients))

    def _rotation(self) -> List[int]:
        n = len(self.clients)
        start, self._idx = self._idx % n, (self._idx + 1) % n
        return [(start + k) % n for k in range(n)]

    async def call(self, method: str, params: list) -> Any:
        errors: List[RpcError] = []
        for i in self._rotation():
            try:
                return await self.clients[i].call(method, params)
            except RpcError as e:
                if not is_transient(e):
                    raise
                log.debug("[RPC_POOL] %s failed on %s, trying next: %s", method, self.urls[i], e)
                errors.append(e)
        log.warning("[RPC_POOL] %s failed on all %d endpoints", method, len(errors))
        raise errors[-1]

    async def close(self) -> None:
        await asyncio.gather(*[c.close() for c in self.clients], return_exceptions=True)
