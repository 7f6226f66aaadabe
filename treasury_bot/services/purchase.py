from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from treasury_bot.chain.rpc import ChainClient
from treasury_bot.chain.submitter import TreasuryClient
from treasury_bot.common.logging import log_event
from treasury_bot.ledger.models import ActiveListing, TokenStandard
from treasury_bot.marketplace.models import ExecutionPayload, ListingBlueprint, ListingResult, PurchaseTarget
from treasury_bot.marketplace.relist import ListingCreator
from treasury_bot.persistence.ledger_store import LedgerPersistenceError, LedgerStore

logger = logging.getLogger(__name__)


class ExecutionSource(Protocol):
    async def fetch_buy_execution(self, target: PurchaseTarget, taker: str) -> ExecutionPayload: ...


class PurchaseOrchestrator:
    """
    Spends the commission pool on the target asset, then relists it.

    The purchase deduction is committed as soon as the buy confirms. Relisting is
    best-effort: a failure there is logged and leaves the asset unlisted.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: LedgerStore,
        treasury: TreasuryClient,
        marketplace: ExecutionSource,
        listing_creator: ListingCreator,
        target: PurchaseTarget,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self._chain = chain
        self._store = store
        self._treasury = treasury
        self._marketplace = marketplace
        self._listing_creator = listing_creator
        self._target = target
        self._clock_ms = clock_ms

    @property
    def target_configured(self) -> bool:
        return bool(self._target.collection or self._target.collection_slug)

    async def attempt(self) -> bool:
        """
        Returns True when a purchase was executed.
        """
        if not self.target_configured:
            return False
        if self._target.token_id and not self._target.collection:
            logger.error("purchase.misconfigured TARGET_COLLECTION must be provided when TARGET_TOKEN_ID is set")
            return False

        ledger = self._store.ledger
        if ledger.commission_pool_wei <= 0:
            return False

        try:
            execution = await self._marketplace.fetch_buy_execution(self._target, self._treasury.address)
        except Exception as e:
            log_event(logger, "purchase.resolve_failed", severity="WARNING", error=str(e))
            return False

        cost = int(execution.value_wei)
        if cost <= 0 or cost > ledger.commission_pool_wei:
            log_event(
                logger,
                "purchase.skipped",
                reason="cost_out_of_range",
                cost_wei=cost,
                commission_pool_wei=ledger.commission_pool_wei,
            )
            return False

        tx_hash = await self._treasury.execute_via_treasury(
            execution.router, cost, execution.calldata, label="seaport_purchase"
        )
        log_event(logger, "purchase.submitted", tx_hash=tx_hash, cost_wei=cost, price_wei=execution.price_wei)
        await self._treasury.wait(tx_hash)

        ledger.commission_pool_wei -= cost
        self._store.save()
        log_event(logger, "purchase.confirmed", tx_hash=tx_hash, cost_wei=cost, commission_pool_wei=ledger.commission_pool_wei)

        if execution.blueprint is None:
            log_event(logger, "purchase.relist_skipped", severity="WARNING", reason="missing_blueprint")
            return True

        try:
            await self._relist(execution.blueprint, cost)
        except LedgerPersistenceError:
            raise
        except Exception as e:
            log_event(
                logger,
                "purchase.relist_failed",
                severity="ERROR",
                error=str(e),
                collection=execution.blueprint.offer_token,
                token_id=str(execution.blueprint.offer_identifier),
            )
        return True

    async def _post_sale_balance(self, blueprint: ListingBlueprint, listed_quantity: int) -> int:
        try:
            balance = await self._chain.erc1155_balance_of(
                blueprint.offer_token, self._treasury.address, int(blueprint.offer_identifier)
            )
        except Exception as e:
            log_event(
                logger,
                "purchase.balance_read_failed",
                severity="WARNING",
                error=str(e),
                collection=blueprint.offer_token,
                token_id=str(blueprint.offer_identifier),
            )
            return 0
        return max(balance - listed_quantity, 0)

    async def _relist(self, blueprint: ListingBlueprint, cost_wei: int) -> Optional[ListingResult]:
        listing = await self._listing_creator.create_listing(blueprint, cost_wei)
        if listing is None:
            log_event(logger, "purchase.relist_skipped", severity="WARNING", reason="nothing_to_list")
            return None

        standard = TokenStandard.from_item_type(blueprint.offer_item_type)
        if standard is TokenStandard.ERC1155:
            listed_quantity = 1
            post_sale_balance: Optional[int] = await self._post_sale_balance(blueprint, listed_quantity)
        else:
            listed_quantity = blueprint.offer_end_amount or blueprint.offer_start_amount or 1
            post_sale_balance = None

        active = ActiveListing(
            order_hash=listing.order_hash,
            collection=blueprint.offer_token,
            token_id=str(blueprint.offer_identifier),
            expected_proceeds_wei=listing.seller_proceeds_wei,
            listed_at_ms=self._clock_ms(),
            token_standard=standard,
            listed_quantity=listed_quantity,
            expected_post_sale_balance=post_sale_balance,
        )
        self._store.ledger.active_listings.append(active)
        self._store.save()
        log_event(logger, "purchase.relisted", listing_price_wei=listing.listing_price_wei, **active.log_fields())
        return listing
