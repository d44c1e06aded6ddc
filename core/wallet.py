# core/wallet.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

log = logging.getLogger("Wallet")


class WalletError(RuntimeError):
    pass


class Wallet:
    """
    Operating wallet (fee payer + LP owner).
    - PRIVATE_KEY: hex secret (64 bytes, or a 32 byte seed)
    - else KEYPAIR_PATH: keypair.json (Solana CLI int array)
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def load(cls, *, private_key: str = "", keypair_path: Optional[str] = None) -> "Wallet":
        if private_key:
            kp = cls._from_hex(private_key)
        elif keypair_path:
            kp = cls._load_keypair(keypair_path)
        else:
            raise WalletError("no wallet credential: set PRIVATE_KEY or KEYPAIR_PATH")
        w = cls(kp)
        log.info("[WALLET] Loaded keypair with pubkey: %s", w.pubkey())
        return w

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    def pubkey(self) -> str:
        return str(self._keypair.pubkey())

    def pubkey_obj(self) -> Pubkey:
        return self._keypair.pubkey()

    @staticmethod
    def _from_raw(raw: bytes) -> Keypair:
        # Solana CLI => 64 bytes (secret key)
        if len(raw) == 64:
            return Keypair.from_bytes(raw)
        if len(raw) == 32:
            return Keypair.from_seed(raw)
        raise WalletError(f"unexpected secret key size: {len(raw)} (expected 32 or 64)")

    @classmethod
    def _from_hex(cls, secret: str) -> Keypair:
        try:
            raw = bytes.fromhex(secret.strip())
        except ValueError as e:
            raise WalletError("PRIVATE_KEY is not valid hex") from e
        return cls._from_raw(raw)

    @classmethod
    def _load_keypair(cls, path: str) -> Keypair:
        p = Path(path)
        if not p.exists():
            raise WalletError(f"keypair not found: {p}")

        data = json.loads(p.read_text(encoding="utf-8"))
        if not isinstance(data, list) or not all(isinstance(x, int) for x in data):
            raise WalletError("keypair.json must be a list of ints (Solana CLI format)")
        return cls._from_raw(bytes(data))
