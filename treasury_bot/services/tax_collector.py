from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from treasury_bot.chain import abi
from treasury_bot.chain.rpc import ChainClient
from treasury_bot.common.logging import log_event
from treasury_bot.persistence.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

# Many public RPCs reject eth_getLogs spans wider than this.
MAX_LOG_SPAN = 10


class TaxCollector:
    """
    Credits `WalletTaxSent` payouts to the treasury into the commission pool.

    The scan cursor (`last_tax_block`) always advances to the head that was
    scanned, even when nothing matched, so a block is never counted twice.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: LedgerStore,
        treasury_address: str,
        token_address: Optional[str],
        throttle_ms: int = 0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._chain = chain
        self._store = store
        self._treasury = treasury_address
        self._token = token_address
        self._throttle_s = max(0, int(throttle_ms)) / 1000.0
        self._sleep = sleep

    async def collect(self) -> bool:
        """
        Returns True when new tax proceeds were credited.
        """
        if not self._token:
            return False

        ledger = self._store.ledger
        head = await self._chain.block_number()

        if ledger.last_tax_block == 0:
            # First run: anchor at the head instead of scanning from genesis.
            ledger.advance_tax_block(head)
            self._store.save()
            log_event(logger, "tax.cursor_anchored", block=head)
            return False

        if ledger.last_tax_block >= head:
            return False

        start_block = ledger.last_tax_block + 1
        total = 0
        cursor = start_block
        while cursor <= head:
            to_block = min(cursor + MAX_LOG_SPAN - 1, head)
            logs = await self._chain.get_logs(
                address=self._token,
                topics=[abi.WALLET_TAX_SENT_TOPIC],
                from_block=cursor,
                to_block=to_block,
            )
            for log in logs:
                recipient, amount = abi.decode_wallet_tax_sent(log)
                if amount > 0 and abi.same_address(recipient, self._treasury):
                    total += amount

            cursor = to_block + 1
            if cursor <= head and self._throttle_s > 0:
                await self._sleep(self._throttle_s)

        ledger.advance_tax_block(head)
        ledger.commission_pool_wei += total
        self._store.save()

        if total > 0:
            log_event(
                logger,
                "tax.proceeds_captured",
                amount_wei=total,
                commission_pool_wei=ledger.commission_pool_wei,
                from_block=start_block,
                to_block=head,
            )
            return True
        return False
