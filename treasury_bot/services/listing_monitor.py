from __future__ import annotations

import logging

from treasury_bot.chain.abi import same_address
from treasury_bot.chain.rpc import ChainClient
from treasury_bot.common.logging import log_event
from treasury_bot.ledger.models import ActiveListing, TokenStandard
from treasury_bot.persistence.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class ListingReconciler:
    """
    Detects sold listings by reading on-chain ownership.

    At most `max_checks_per_tick` listings are read per tick, oldest first; the
    rest carry over untouched. A failed read keeps the listing as-is.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: LedgerStore,
        treasury_address: str,
        max_checks_per_tick: int = 3,
    ) -> None:
        self._chain = chain
        self._store = store
        self._treasury = treasury_address
        self._max_checks = max(1, int(max_checks_per_tick))

    async def _is_sold(self, listing: ActiveListing) -> bool:
        token_id = int(listing.token_id)
        if listing.token_standard is TokenStandard.ERC1155:
            balance = await self._chain.erc1155_balance_of(listing.collection, self._treasury, token_id)
            target = listing.expected_post_sale_balance if listing.expected_post_sale_balance is not None else 0
            return balance <= target
        owner = await self._chain.owner_of(listing.collection, token_id)
        return not same_address(owner, self._treasury)

    async def reconcile(self) -> int:
        """
        Returns the proceeds (wei) credited to the sale pool this tick.
        """
        ledger = self._store.ledger
        if not ledger.active_listings:
            return 0

        remaining: list[ActiveListing] = []
        captured = 0
        checked = 0
        sold_count = 0
        for listing in ledger.active_listings:
            if checked >= self._max_checks:
                remaining.append(listing)
                continue
            checked += 1

            try:
                sold = await self._is_sold(listing)
            except Exception as e:
                log_event(
                    logger,
                    "listing.check_failed",
                    severity="WARNING",
                    error=str(e),
                    **listing.log_fields(),
                )
                remaining.append(listing)
                continue

            if not sold:
                remaining.append(listing)
                continue

            sold_count += 1
            captured += listing.expected_proceeds_wei
            log_event(logger, "listing.sale_detected", **listing.log_fields())

        ledger.active_listings = remaining
        if sold_count:
            ledger.sale_pool_wei += captured
            self._store.save()
            log_event(logger, "listing.proceeds_captured", proceeds_wei=captured, sale_pool_wei=ledger.sale_pool_wei)
        return captured
