from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

log = logging.getLogger("SolanaRPC")

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class RpcError(RuntimeError):
    pass


class RpcResponseError(RpcError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"[{self.code}] {self.message}"


class RpcTransportError(RpcError):
    """Timeout, HTTP status or socket failure."""


_TRANSIENT_HINTS = ("too many requests", "timed out", "unavailable")


def is_transient(e: BaseException) -> bool:
    """Worth repeating, on the same endpoint or the next one."""
    if isinstance(e, RpcTransportError):
        return True
    if not isinstance(e, RpcResponseError):
        return False
    if e.code == 429:
        return True
    msg = (e.message or "").lower()
    return any(h in msg for h in _TRANSIENT_HINTS)


@dataclass(frozen=True)
class TokenAmount:
    raw: int
    decimals: int

    @property
    def ui(self) -> float:
        return self.raw / (10 ** self.decimals) if self.decimals else float(self.raw)


class RpcMethods:
    """
    Typed helpers over `call(method, params)`.
    Shared by the single-endpoint client and the pool.
    """

    async def call(self, method: str, params: list) -> Any:
        raise NotImplementedError

    async def get_transaction(self, signature: str, commitment: str = "confirmed") -> Optional[Dict[str, Any]]:
        res = await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": commitment,
                },
            ],
        )
        return res if isinstance(res, dict) and res else None

    async def get_multiple_accounts(self, pubkeys: Sequence[str], encoding: str = "base64") -> List[Optional[Dict[str, Any]]]:
        out: List[Optional[Dict[str, Any]]] = []
        # getMultipleAccounts caps at 100 keys per call
        for i in range(0, len(pubkeys), 100):
            chunk = list(pubkeys[i:i + 100])
            res = await self.call("getMultipleAccounts", [chunk, {"encoding": encoding}])
            value = (res or {}).get("value") or []
            value = list(value) + [None] * (len(chunk) - len(value))
            out.extend(value[:len(chunk)])
        return out

    async def get_account_info(self, pubkey: str, encoding: str = "base64") -> Optional[Dict[str, Any]]:
        res = await self.call("getAccountInfo", [pubkey, {"encoding": encoding}])
        return (res or {}).get("value")

    async def get_balance(self, pubkey: str, commitment: str = "confirmed") -> int:
        res = await self.call("getBalance", [pubkey, {"commitment": commitment}])
        return int((res or {}).get("value") or 0)

    async def get_token_account_balance(self, token_account: str, commitment: str = "confirmed") -> TokenAmount:
        res = await self.call("getTokenAccountBalance", [token_account, {"commitment": commitment}])
        value = (res or {}).get("value") or {}
        return TokenAmount(raw=int(value.get("amount") or 0), decimals=int(value.get("decimals") or 0))

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> str:
        res = await self.call("getLatestBlockhash", [{"commitment": commitment}])
        return res["value"]["blockhash"]

    async def send_transaction(
        self,
        tx_b64: str,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "processed",
        max_retries: int = 3,
    ) -> str:
        opts = {
            "encoding": "base64",
            "skipPreflight": bool(skip_preflight),
            "preflightCommitment": preflight_commitment,
            "maxRetries": int(max_retries),
        }
        res = await self.call("sendTransaction", [tx_b64, opts])
        return str(res)

    async def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        res = await self.call("getSignatureStatuses", [list(signatures), {"searchTransactionHistory": True}])
        return list((res or {}).get("value") or [])

    async def confirm_signature(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        tries: int = 30,
        sleep_s: float = 1.0,
    ) -> bool:
        want = _COMMITMENT_RANK.get(commitment, 1)
        for _ in range(int(tries)):
            statuses = await self.get_signature_statuses([signature])
            st = statuses[0] if statuses else None
            if st:
                if st.get("err") is not None:
                    log.warning("[RPC] tx failed sig=%s err=%s", signature, st.get("err"))
                    return False
                if _COMMITMENT_RANK.get(st.get("confirmationStatus") or "", -1) >= want:
                    return True
            await asyncio.sleep(sleep_s)
        return False


class SolanaRPCAsync(RpcMethods):
    """
    Minimal async JSON-RPC client.
    - throttle (rps) + concurrency cap
    - retry with capped exponential backoff on 429 / 5xx / timeouts
    """

    def __init__(
        self,
        rpc_http: str,
        *,
        timeout_s: float = 20.0,
        rps: float = 3.0,
        max_concurrency: int = 4,
        max_retries: int = 4,
        backoff_base_s: float = 0.35,
        backoff_cap_s: float = 6.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.rpc_http = (rpc_http or "").strip()
        if not self.rpc_http:
            raise ValueError("SolanaRPCAsync: rpc_http empty")
        self.timeout_s = float(timeout_s)
        self.max_retries = int(max(0, max_retries))
        self.backoff_base_s = float(backoff_base_s)
        self.backoff_cap_s = float(backoff_cap_s)

        self.rps = float(max(0.0, rps))
        self._min_interval = 0.0 if self.rps <= 0 else (1.0 / self.rps)
        self._last_call_ts = 0.0
        self._lock = asyncio.Lock()
        self._sem = asyncio.Semaphore(int(max(1, max_concurrency)))

        self._external_session = session
        self._session: Optional[aiohttp.ClientSession] = session
        self._id = 0

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._external_session is None:
            await self._session.close()
        self._session = None

    async def _throttle(self) -> None:
        if self._min_interval <= 0:
            return
        async with self._lock:
            now = time.time()
            wait = (self._last_call_ts + self._min_interval) - now
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_call_ts = time.time()

    def _backoff(self, attempt: int) -> float:
        d = min(self.backoff_cap_s, self.backoff_base_s * (2 ** attempt))
        return d * (0.8 + random.random() * 0.4)

    async def _call_once(self, method: str, params: list) -> Any:
        await self._throttle()
        async with self._sem:
            s = await self._ensure_session()
            self._id += 1
            payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
            try:
                async with s.post(self.rpc_http, json=payload) as r:
                    txt = await r.text()
                    if r.status == 429 or r.status >= 500:
                        raise RpcTransportError(f"RPC HTTP {r.status}: {txt[:200]}")
                    try:
                        j = json.loads(txt)
                    except json.JSONDecodeError:
                        raise RpcTransportError(f"RPC non-JSON response (HTTP {r.status}): {txt[:200]}")
            except asyncio.TimeoutError as e:
                raise RpcTransportError(f"RPC timeout method={method}") from e
            except aiohttp.ClientError as e:
                raise RpcTransportError(f"RPC client error method={method}: {e}") from e

        err = j.get("error") if isinstance(j, dict) else None
        if err:
            if isinstance(err, dict):
                raise RpcResponseError(str(err.get("message") or err), err.get("code"), err.get("data"))
            raise RpcResponseError(str(err))
        return j.get("result") if isinstance(j, dict) else None

    async def call(self, method: str, params: list) -> Any:
        attempt = 0
        while True:
            try:
                return await self._call_once(method, params)
            except RpcError as e:
                if not is_transient(e) or attempt >= self.max_retries:
                    raise
                delay = self._backoff(attempt)
                log.debug("[RPC] %s transient (%s) retry in %.2fs", method, e, delay)
                attempt += 1
                await asyncio.sleep(delay)
