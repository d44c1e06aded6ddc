import asyncio
import base64
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from config.settings import METEORA_PROGRAM_ID
from core.liquidity_supplier import (
    ADD_LIQUIDITY_DISCRIMINATOR,
    LiquiditySupplier,
    PaperLiquiditySupplier,
    deposit_amount,
)
from core.models import PoolEvent
from core.solana_rpc_async import RpcMethods, RpcResponseError, TokenAmount
from core.wallet import Wallet

WALLET = Wallet(Keypair.from_seed(bytes(range(32))))
MINT_A = Pubkey.new_unique()
MINT_B = Pubkey.new_unique()
EVENT = PoolEvent(pool_address=str(Pubkey.new_unique()), token_a=str(MINT_A), token_b=str(MINT_B), created_at=0.0)
BLOCKHASH = "11111111111111111111111111111111"


def _ata(mint, program=TOKEN_PROGRAM_ID):
    return str(get_associated_token_address(WALLET.pubkey_obj(), mint, program))


class FakeRpc(RpcMethods):
    """Balances keyed by token account address; mints owned by SPL Token unless overridden."""

    def __init__(self, balances, mint_owners=None, lamports=1_000_000_000, confirmed=True, send_error=None):
        self.balances = balances
        self.mint_owners = mint_owners or {}
        self.lamports = lamports
        self.confirmed = confirmed
        self.send_error = send_error
        self.balance_reads = []
        self.sent = []

    async def get_account_info(self, pubkey, encoding="base64"):
        return {"owner": self.mint_owners.get(pubkey, str(TOKEN_PROGRAM_ID)), "executable": False}

    async def get_token_account_balance(self, token_account, commitment="confirmed"):
        self.balance_reads.append(token_account)
        if token_account not in self.balances:
            raise RpcResponseError("could not find account", -32602)
        return self.balances[token_account]

    async def get_balance(self, pubkey, commitment="confirmed"):
        return self.lamports

    async def get_latest_blockhash(self, commitment="confirmed"):
        return BLOCKHASH

    async def send_transaction(self, tx_b64, *, skip_preflight=False, preflight_commitment="processed", max_retries=3):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((tx_b64, skip_preflight, max_retries))
        return "sig-funding"

    async def confirm_signature(self, signature, *, commitment="confirmed", tries=30, sleep_s=1.0):
        return self.confirmed


class FakeNotifier:
    def __init__(self):
        self.added = []

    async def notify_liquidity_added(self, result):
        self.added.append(result)


def _supplier(rpc, cls=LiquiditySupplier, notifier=None, **kw):
    return cls(rpc, WALLET, METEORA_PROGRAM_ID, notifier=notifier, **kw)


def _decoded(rpc, index=0):
    tx = VersionedTransaction.from_bytes(base64.b64decode(rpc.sent[index][0]))
    keys = tx.message.account_keys
    ix = tx.message.instructions[-1]
    return tx, [keys[i] for i in ix.accounts], bytes(ix.data)


def test_zero_balance_on_one_side_skips_without_transaction():
    rpc = FakeRpc({_ata(MINT_A): TokenAmount(0, 6), _ata(MINT_B): TokenAmount(50_000_000, 6)})
    notifier = FakeNotifier()

    res = asyncio.run(_supplier(rpc, notifier=notifier).fund(EVENT))

    assert res is None
    assert rpc.sent == []
    assert notifier.added == []


def test_missing_ata_counts_as_empty():
    rpc = FakeRpc({_ata(MINT_B): TokenAmount(50_000_000, 6)})
    assert asyncio.run(_supplier(rpc).fund(EVENT)) is None
    assert rpc.sent == []


def test_low_sol_balance_skips():
    rpc = FakeRpc({_ata(MINT_A): TokenAmount(10, 0), _ata(MINT_B): TokenAmount(10, 0)}, lamports=1_000)
    assert asyncio.run(_supplier(rpc).fund(EVENT)) is None
    assert rpc.sent == []


def test_funds_eighty_percent_from_wallet_atas_and_notifies():
    rpc = FakeRpc({_ata(MINT_A): TokenAmount(1_000_000, 6), _ata(MINT_B): TokenAmount(50_000_000_000, 9)})
    notifier = FakeNotifier()

    res = asyncio.run(_supplier(rpc, notifier=notifier, max_retries=3).fund(EVENT))

    assert res is not None
    assert res.tx_receipt == "sig-funding"
    assert res.amount_a == pytest.approx(0.8)
    assert res.amount_b == pytest.approx(40.0)
    assert res.pool_address == EVENT.pool_address
    assert res.paper is False
    assert notifier.added == [res]
    assert rpc.balance_reads == [_ata(MINT_A), _ata(MINT_B)]

    assert len(rpc.sent) == 1
    _, skip_preflight, max_retries = rpc.sent[0]
    assert skip_preflight is True
    assert max_retries == 3
    tx, metas, data = _decoded(rpc)
    assert len(tx.message.instructions) == 1
    assert data == struct.pack("<BQQ", ADD_LIQUIDITY_DISCRIMINATOR, 800_000, 40_000_000_000)
    # deposit is drawn from the same accounts the balances were read from
    assert [str(k) for k in metas[2:4]] == [_ata(MINT_A), _ata(MINT_B)]
    assert metas[5:7] == [TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID]


def test_token_2022_mint_uses_its_own_program_and_ata():
    owners = {str(MINT_B): str(TOKEN_2022_PROGRAM_ID)}
    ata_b = _ata(MINT_B, TOKEN_2022_PROGRAM_ID)
    assert ata_b != _ata(MINT_B)
    rpc = FakeRpc({_ata(MINT_A): TokenAmount(100, 0), ata_b: TokenAmount(200, 0)}, mint_owners=owners)

    res = asyncio.run(_supplier(rpc).fund(EVENT))

    assert res is not None
    assert rpc.balance_reads == [_ata(MINT_A), ata_b]
    _, metas, _ = _decoded(rpc)
    assert str(metas[3]) == ata_b
    assert metas[5:7] == [TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID]


def test_mint_not_owned_by_token_program_skips():
    rpc = FakeRpc(
        {_ata(MINT_A): TokenAmount(100, 0), _ata(MINT_B): TokenAmount(100, 0)},
        mint_owners={str(MINT_A): "11111111111111111111111111111111"},
    )
    assert asyncio.run(_supplier(rpc).fund(EVENT)) is None
    assert rpc.sent == []


def test_unconfirmed_transaction_returns_none():
    rpc = FakeRpc({_ata(MINT_A): TokenAmount(100, 0), _ata(MINT_B): TokenAmount(100, 0)}, confirmed=False)
    notifier = FakeNotifier()
    assert asyncio.run(_supplier(rpc, notifier=notifier).fund(EVENT)) is None
    assert notifier.added == []


def test_send_error_returns_none():
    rpc = FakeRpc(
        {_ata(MINT_A): TokenAmount(100, 0), _ata(MINT_B): TokenAmount(100, 0)},
        send_error=RpcResponseError("Blockhash not found", -32002),
    )
    assert asyncio.run(_supplier(rpc).fund(EVENT)) is None


def test_paper_supplier_sends_nothing():
    rpc = FakeRpc({_ata(MINT_A): TokenAmount(100, 0), _ata(MINT_B): TokenAmount(200, 0)})
    notifier = FakeNotifier()

    res = asyncio.run(_supplier(rpc, cls=PaperLiquiditySupplier, notifier=notifier).fund(EVENT))

    assert res is not None
    assert res.paper is True
    assert res.tx_receipt.startswith("paper-")
    assert (res.amount_a, res.amount_b) == (80.0, 160.0)
    assert rpc.sent == []
    assert notifier.added == [res]


def test_deposit_amount_never_full_balance():
    assert deposit_amount(1_000, 80) == 800
    assert deposit_amount(1, 80) == 0
    with pytest.raises(ValueError):
        LiquiditySupplier(FakeRpc({}), WALLET, METEORA_PROGRAM_ID, lp_percentage=100)
