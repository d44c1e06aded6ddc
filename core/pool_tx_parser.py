from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from core.models import PoolEvent
from core.solana_rpc_async import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, RpcError, RpcMethods

logger = logging.getLogger("PoolTxDecoder")

DEFAULT_MARKERS = ("initialize", "createPool", "createLiquidity")
TOKEN_PROGRAMS = frozenset({TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})

# SPL token account layout: mint = bytes [0, 32)
MINT_OFFSET = 0
MINT_LEN = 32


def account_keys(tx: Dict[str, Any]) -> List[str]:
    """accountKeys as plain strings (jsonParsed gives dicts, json gives strings)."""
    msg = ((tx.get("transaction") or {}).get("message") or {})
    out: List[str] = []
    for k in msg.get("accountKeys") or []:
        if isinstance(k, dict):
            pk = k.get("pubkey")
            if pk:
                out.append(str(pk))
        elif isinstance(k, str):
            out.append(k)
    # json encoding keeps v0 lookup-table accounts apart
    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    for k in list(loaded.get("writable") or []) + list(loaded.get("readonly") or []):
        if k not in out:
            out.append(str(k))
    return out


def find_creation_marker(logs: Iterable[str], markers: Sequence[str] = DEFAULT_MARKERS) -> Optional[str]:
    for line in logs or []:
        if not isinstance(line, str):
            continue
        if any(m in line for m in markers):
            return line
    return None


def _account_bytes(info: Dict[str, Any]) -> Optional[bytes]:
    data = info.get("data")
    if isinstance(data, list) and data and isinstance(data[0], str):
        try:
            return base64.b64decode(data[0])
        except (binascii.Error, ValueError):
            return None
    return None


def mint_from_token_account(info: Optional[Dict[str, Any]]) -> Optional[str]:
    if not info:
        return None
    raw = _account_bytes(info)
    if raw is None or len(raw) < MINT_OFFSET + MINT_LEN:
        return None
    return str(Pubkey.from_bytes(raw[MINT_OFFSET:MINT_OFFSET + MINT_LEN]))


def select_pool_accounts(
    keys: Sequence[str],
    infos: Sequence[Optional[Dict[str, Any]]],
    program_id: str,
) -> Tuple[Optional[str], List[Tuple[str, Dict[str, Any]]]]:
    """
    Keep non-executable accounts owned by the program or a token program.
    Returns (first retained account in key order, token accounts in key order).
    """
    pool: Optional[str] = None
    token_accounts: List[Tuple[str, Dict[str, Any]]] = []
    for key, info in zip(keys, infos):
        if not info or info.get("executable"):
            continue
        owner = info.get("owner")
        if owner != program_id and owner not in TOKEN_PROGRAMS:
            continue
        if pool is None:
            pool = key
        if owner in TOKEN_PROGRAMS:
            token_accounts.append((key, info))
    return pool, token_accounts


class PoolTxDecoder:
    """
    signature -> PoolEvent | None
    None covers every "not a pool creation" case (missing tx, no marker,
    not enough token accounts, unresolvable mint). Those are dropped quietly.
    """

    def __init__(
        self,
        rpc: RpcMethods,
        program_id: str,
        *,
        commitment: str = "confirmed",
        markers: Sequence[str] = DEFAULT_MARKERS,
        fetch_delays: Sequence[float] = (0.0, 0.15, 0.3, 0.5),
    ) -> None:
        self.rpc = rpc
        self.program_id = program_id
        self.commitment = commitment
        self.markers = tuple(markers) or DEFAULT_MARKERS
        self.fetch_delays = tuple(fetch_delays) or (0.0,)

    async def _get_tx(self, sig: str) -> Optional[Dict[str, Any]]:
        # short retry: a fresh signature is often not queryable yet
        for delay in self.fetch_delays:
            if delay:
                await asyncio.sleep(delay)
            try:
                tx = await self.rpc.get_transaction(sig, commitment=self.commitment)
            except RpcError as e:
                logger.debug("[DECODER] getTransaction failed sig=%s err=%s", sig, e)
                continue
            if tx:
                return tx
        return None

    async def decode(self, signature: str) -> Optional[PoolEvent]:
        tx = await self._get_tx(signature)
        if not tx:
            logger.debug("[DECODER] tx unavailable sig=%s", signature)
            return None

        meta = tx.get("meta") or {}
        if meta.get("err") is not None:
            return None

        keys = account_keys(tx)
        if self.program_id not in keys:
            return None

        marker = find_creation_marker(meta.get("logMessages") or [], self.markers)
        if marker is None:
            return None

        try:
            infos = await self.rpc.get_multiple_accounts(keys)
        except RpcError as e:
            logger.debug("[DECODER] getMultipleAccounts failed sig=%s err=%s", signature, e)
            return None

        pool, token_accounts = select_pool_accounts(keys, infos, self.program_id)
        if len(token_accounts) < 2 or pool is None:
            logger.debug("[DECODER] not a pool creation sig=%s token_accounts=%d", signature, len(token_accounts))
            return None

        mints = [mint_from_token_account(info) for _, info in token_accounts[:2]]
        if not all(mints):
            logger.debug("[DECODER] mint resolution failed sig=%s", signature)
            return None

        created_at = tx.get("blockTime") or time.time()
        event = PoolEvent(
            pool_address=pool,
            token_a=mints[0],
            token_b=mints[1],
            created_at=float(created_at),
            signature=signature,
            marker=marker,
        )
        logger.info("[DECODER] new pool=%s pair=%s/%s sig=%s", pool, event.token_a, event.token_b, signature)
        return event
