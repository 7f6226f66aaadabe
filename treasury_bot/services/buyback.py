from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from treasury_bot.chain import abi
from treasury_bot.chain.rpc import ChainClient
from treasury_bot.chain.submitter import TreasuryClient
from treasury_bot.common.logging import log_event
from treasury_bot.persistence.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

SWAP_DEADLINE_S = 15 * 60
BALANCE_POLL_ATTEMPTS = 3
BALANCE_POLL_DELAY_S = 1.0


class BuybackBurnEngine:
    """
    Converts the sale pool into token buybacks and burns them.

    Two phases, with the ledger persisted between them:
      1. swap a chunk of the sale pool for tokens, record `pending_burn_*`;
      2. transfer the pending amount to the burn address, clear `pending_burn_*`.

    A restart between the phases resumes at phase 2 without swapping again.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: LedgerStore,
        treasury: TreasuryClient,
        token_address: Optional[str],
        router_address: Optional[str],
        weth_address: Optional[str],
        burn_address: str,
        chunk_wei: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = chain
        self._store = store
        self._treasury = treasury
        self._token = token_address
        self._router = router_address
        self._weth = weth_address
        self._burn_address = burn_address
        self._chunk_wei = chunk_wei if chunk_wei and chunk_wei > 0 else None
        self._sleep = sleep
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._router and self._weth)

    async def run(self) -> bool:
        """
        Returns True when a swap or burn was executed.
        """
        if not self.enabled:
            return False

        ledger = self._store.ledger
        if ledger.has_pending_burn:
            log_event(
                logger,
                "buyback.resume_pending_burn",
                pending_amount=ledger.pending_burn_amount,
                pending_cost_wei=ledger.pending_burn_cost_wei,
            )
            await self.complete_pending_burn()
            return True

        if ledger.sale_pool_wei <= 0:
            return False

        amount = min(ledger.sale_pool_wei, self._chunk_wei) if self._chunk_wei else ledger.sale_pool_wei
        if amount <= 0:
            return False

        token = str(self._token)
        treasury = self._treasury.address
        if not await self._chain.treasury_router_allowed(treasury, token):
            log_event(
                logger,
                "buyback.token_not_allowed",
                severity="ERROR",
                message="Treasury is not authorized to execute through the token address; cannot burn",
                token=token,
            )
            return False

        balance_before = await self._chain.erc20_balance_of(token, treasury)

        calldata = abi.encode_swap_exact_eth_for_tokens(
            0,
            [str(self._weth), token],
            treasury,
            int(self._clock()) + SWAP_DEADLINE_S,
        )
        tx_hash = await self._treasury.execute_via_treasury(str(self._router), amount, calldata, label="buyback_swap")
        log_event(logger, "buyback.swap_submitted", tx_hash=tx_hash, amount_wei=amount)
        await self._treasury.wait(tx_hash)

        balance_after = balance_before
        for attempt in range(BALANCE_POLL_ATTEMPTS):
            balance_after = await self._chain.erc20_balance_of(token, treasury)
            if balance_after > balance_before:
                break
            if attempt + 1 < BALANCE_POLL_ATTEMPTS:
                await self._sleep(BALANCE_POLL_DELAY_S)

        purchased = balance_after - balance_before if balance_after > balance_before else 0
        if purchased == 0:
            log_event(logger, "buyback.no_tokens_received", severity="WARNING", tx_hash=tx_hash, amount_wei=amount)
            ledger.pending_burn_amount = 0
            ledger.pending_burn_cost_wei = 0
            ledger.sale_pool_wei = max(ledger.sale_pool_wei - amount, 0)
            self._store.save()
            return True

        ledger.pending_burn_amount = purchased
        ledger.pending_burn_cost_wei = amount
        self._store.save()
        log_event(logger, "buyback.swap_confirmed", tx_hash=tx_hash, amount_wei=amount, purchased_amount=purchased)

        await self.complete_pending_burn(cost_override_wei=amount)
        return True

    async def complete_pending_burn(self, cost_override_wei: Optional[int] = None) -> None:
        ledger = self._store.ledger
        if not ledger.has_pending_burn:
            return
        if not self._token:
            raise RuntimeError("TOKEN_ADDRESS is not configured")

        burn_amount = ledger.pending_burn_amount
        tx_hash = await self._treasury.execute_via_treasury(
            self._token, 0, abi.encode_transfer(self._burn_address, burn_amount), label="burn_transfer"
        )
        log_event(logger, "buyback.burn_submitted", tx_hash=tx_hash, burn_amount=burn_amount)
        await self._treasury.wait(tx_hash)

        cost = cost_override_wei if cost_override_wei is not None else ledger.pending_burn_cost_wei
        # Never debit more than the pool holds.
        debit = min(cost, ledger.sale_pool_wei) if cost > 0 else 0

        ledger.pending_burn_amount = 0
        ledger.pending_burn_cost_wei = 0
        ledger.sale_pool_wei -= debit
        self._store.save()

        log_event(
            logger,
            "buyback.burn_completed",
            tx_hash=tx_hash,
            spent_wei=debit,
            burned_amount=burn_amount,
            sale_pool_wei=ledger.sale_pool_wei,
        )
