from __future__ import annotations

import base64
import logging
import struct
import time
from dataclasses import dataclass
from typing import Optional

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from core.models import FundingResult, PoolEvent
from core.notify import DiscordNotifier
from core.solana_rpc_async import RpcError, RpcMethods, TokenAmount
from core.wallet import Wallet

log = logging.getLogger("LiquiditySupplier")

# add_liquidity: 1 byte discriminator + u64 amount_a + u64 amount_b (LE)
ADD_LIQUIDITY_DISCRIMINATOR = 0x03
LP_TOKEN_SEED = b"lp-token"
LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_PROGRAMS = {str(TOKEN_PROGRAM_ID): TOKEN_PROGRAM_ID, str(TOKEN_2022_PROGRAM_ID): TOKEN_2022_PROGRAM_ID}


@dataclass(frozen=True)
class DepositSide:
    mint: Pubkey
    token_program: Pubkey
    ata: Pubkey
    balance: TokenAmount


def deposit_amount(raw_balance: int, lp_percentage: float) -> int:
    return int(raw_balance * lp_percentage // 100)


def add_liquidity_ix(
    program_id: Pubkey,
    payer: Pubkey,
    pool: Pubkey,
    side_a: DepositSide,
    side_b: DepositSide,
    amount_a: int,
    amount_b: int,
) -> Instruction:
    lp_token_account, _ = Pubkey.find_program_address([LP_TOKEN_SEED, bytes(pool)], program_id)
    data = struct.pack("<BQQ", ADD_LIQUIDITY_DISCRIMINATOR, int(amount_a), int(amount_b))
    metas = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(pool, is_signer=False, is_writable=True),
        AccountMeta(side_a.ata, is_signer=False, is_writable=True),
        AccountMeta(side_b.ata, is_signer=False, is_writable=True),
        AccountMeta(lp_token_account, is_signer=False, is_writable=True),
        AccountMeta(side_a.token_program, is_signer=False, is_writable=False),
        AccountMeta(side_b.token_program, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, metas)


class LiquiditySupplier:
    """
    Deposits LP_PERCENTAGE of the wallet's balance of both pool mints.
    - each side is drawn from the wallet ATA under the mint's own token
      program (SPL Token or Token-2022); the balance is read from that ATA
    - skips (None) when either side is empty or SOL is below the fee buffer
    - one transaction, confirmed at `commitment`; no retry of the whole attempt
    """

    paper = False

    def __init__(
        self,
        rpc: RpcMethods,
        wallet: Wallet,
        program_id: str,
        *,
        notifier: Optional[DiscordNotifier] = None,
        lp_percentage: float = 80.0,
        min_sol_balance: float = 0.1,
        commitment: str = "confirmed",
        skip_preflight: bool = True,
        max_retries: int = 3,
        confirm_tries: int = 30,
        confirm_sleep_s: float = 1.0,
    ) -> None:
        if not 0 < lp_percentage < 100:
            raise ValueError(f"lp_percentage must be in (0, 100), got {lp_percentage}")
        self.rpc = rpc
        self.wallet = wallet
        self.program_id = Pubkey.from_string(program_id)
        self.notifier = notifier
        self.lp_percentage = float(lp_percentage)
        self.min_sol_balance = float(min_sol_balance)
        self.commitment = commitment
        self.skip_preflight = bool(skip_preflight)
        self.max_retries = int(max_retries)
        self.confirm_tries = int(confirm_tries)
        self.confirm_sleep_s = float(confirm_sleep_s)

    async def _side(self, mint: str) -> Optional[DepositSide]:
        try:
            info = await self.rpc.get_account_info(mint)
        except RpcError as e:
            log.error("[FUND] mint lookup failed mint=%s err=%s", mint, e)
            return None
        token_program = TOKEN_PROGRAMS.get((info or {}).get("owner") or "")
        if token_program is None:
            log.warning("[FUND] mint=%s not owned by a token program, skip", mint)
            return None

        mint_pk = Pubkey.from_string(mint)
        ata = get_associated_token_address(self.wallet.pubkey_obj(), mint_pk, token_program)
        try:
            balance = await self.rpc.get_token_account_balance(str(ata), commitment=self.commitment)
        except RpcError as e:
            # no ATA yet -> nothing to deposit from
            log.info("[FUND] no balance in ata=%s mint=%s (%s)", ata, mint, e)
            balance = TokenAmount(raw=0, decimals=0)
        return DepositSide(mint=mint_pk, token_program=token_program, ata=ata, balance=balance)

    async def _sol_balance(self) -> float:
        try:
            return await self.rpc.get_balance(self.wallet.pubkey(), commitment=self.commitment) / LAMPORTS_PER_SOL
        except RpcError as e:
            log.error("[FUND] SOL balance read failed err=%s", e)
            return 0.0

    async def fund(self, event: PoolEvent) -> Optional[FundingResult]:
        log.info("[FUND] start pool=%s", event.pool_address)

        side_a = await self._side(event.token_a)
        side_b = await self._side(event.token_b)
        if side_a is None or side_b is None:
            return None
        bal_a, bal_b = side_a.balance, side_b.balance
        log.info("[FUND] balances %s=%s %s=%s", event.token_a, bal_a.ui, event.token_b, bal_b.ui)

        if bal_a.raw <= 0 or bal_b.raw <= 0:
            log.warning("[FUND] insufficient token balance, skip pool=%s", event.pool_address)
            return None

        sol = await self._sol_balance()
        if sol < self.min_sol_balance:
            log.warning("[FUND] SOL %.6f < buffer %.6f, skip pool=%s", sol, self.min_sol_balance, event.pool_address)
            return None

        amt_a = deposit_amount(bal_a.raw, self.lp_percentage)
        amt_b = deposit_amount(bal_b.raw, self.lp_percentage)
        if amt_a <= 0 or amt_b <= 0:
            log.warning("[FUND] deposit rounds to zero, skip pool=%s", event.pool_address)
            return None

        receipt = await self._submit(event, side_a, side_b, amt_a, amt_b)
        if not receipt:
            return None

        result = FundingResult(
            tx_receipt=receipt,
            amount_a=TokenAmount(amt_a, bal_a.decimals).ui,
            amount_b=TokenAmount(amt_b, bal_b.decimals).ui,
            pool_address=event.pool_address,
            paper=self.paper,
        )
        log.info("[FUND] ok pool=%s tx=%s amounts=%s/%s", event.pool_address, receipt, result.amount_a, result.amount_b)
        if self.notifier is not None:
            await self.notifier.notify_liquidity_added(result)
        return result

    async def _build_tx(self, event: PoolEvent, side_a: DepositSide, side_b: DepositSide, amt_a: int, amt_b: int) -> str:
        payer = self.wallet.pubkey_obj()
        pool = Pubkey.from_string(event.pool_address)
        ix = add_liquidity_ix(self.program_id, payer, pool, side_a, side_b, amt_a, amt_b)

        bh = await self.rpc.get_latest_blockhash(self.commitment)
        msg = MessageV0.try_compile(payer, [ix], [], Hash.from_string(bh))
        tx = VersionedTransaction(msg, [self.wallet.keypair])
        return base64.b64encode(bytes(tx)).decode("ascii")

    async def _submit(
        self,
        event: PoolEvent,
        side_a: DepositSide,
        side_b: DepositSide,
        amt_a: int,
        amt_b: int,
    ) -> Optional[str]:
        try:
            tx_b64 = await self._build_tx(event, side_a, side_b, amt_a, amt_b)
            sig = await self.rpc.send_transaction(
                tx_b64,
                skip_preflight=self.skip_preflight,
                preflight_commitment=self.commitment,
                max_retries=self.max_retries,
            )
            ok = await self.rpc.confirm_signature(
                sig,
                commitment=self.commitment,
                tries=self.confirm_tries,
                sleep_s=self.confirm_sleep_s,
            )
        except (RpcError, ValueError) as e:
            log.error("[FUND] submit failed pool=%s err=%s", event.pool_address, e)
            return None
        if not ok:
            log.error("[FUND] not confirmed pool=%s tx=%s", event.pool_address, sig)
            return None
        return sig


class PaperLiquiditySupplier(LiquiditySupplier):
    """
    MODE=PAPER: same balance checks and amounts, nothing is signed or sent.
    """

    paper = True

    async def _submit(
        self,
        event: PoolEvent,
        side_a: DepositSide,
        side_b: DepositSide,
        amt_a: int,
        amt_b: int,
    ) -> Optional[str]:
        log.warning("[FUND][PAPER] would add %s/%s raw to pool=%s", amt_a, amt_b, event.pool_address)
        return f"paper-{event.pool_address[:8]}-{int(time.time())}"
