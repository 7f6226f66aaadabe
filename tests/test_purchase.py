from __future__ import annotations

from typing import Optional
from unittest.mock import AsyncMock

import pytest

from tests.fakes import COLLECTION, ROUTER, TREASURY, listing_blueprint
from treasury_bot.ledger.models import TokenStandard
from treasury_bot.marketplace.models import ExecutionPayload, ListingBlueprint, ListingResult, PurchaseTarget
from treasury_bot.persistence.ledger_store import LedgerPersistenceError
from treasury_bot.services.purchase import PurchaseOrchestrator

ORDER_HASH = "0x" + "ab" * 32


def _payload(cost: int = 1_000, blueprint: Optional[ListingBlueprint] = None) -> ExecutionPayload:
    return ExecutionPayload(
        router=ROUTER,
        calldata=b"\xfb\x0f\x3e\xe1",
        value_wei=cost,
        price_wei=cost,
        blueprint=blueprint if blueprint is not None else listing_blueprint(),
    )


def _orchestrator(
    chain,
    store,
    treasury,
    *,
    marketplace: Optional[AsyncMock] = None,
    creator: Optional[AsyncMock] = None,
    target: Optional[PurchaseTarget] = None,
) -> PurchaseOrchestrator:
    if marketplace is None:
        marketplace = AsyncMock()
        marketplace.fetch_buy_execution.return_value = _payload()
    if creator is None:
        creator = AsyncMock()
        creator.create_listing.return_value = ListingResult(
            order_hash=ORDER_HASH, seller_proceeds_wei=1_170, listing_price_wei=1_200
        )
    return PurchaseOrchestrator(
        chain=chain,
        store=store,
        treasury=treasury,
        marketplace=marketplace,
        listing_creator=creator,
        target=target or PurchaseTarget(collection_slug="some-collection"),
        clock_ms=lambda: 1_700_000_000_000,
    )


@pytest.mark.asyncio
async def test_no_target_means_no_purchase(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    orchestrator = _orchestrator(chain, store, treasury, marketplace=marketplace, target=PurchaseTarget())

    assert await orchestrator.attempt() is False
    marketplace.fetch_buy_execution.assert_not_awaited()


@pytest.mark.asyncio
async def test_token_id_without_collection_is_refused(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    target = PurchaseTarget(collection_slug="some-collection", token_id="7")

    assert await _orchestrator(chain, store, treasury, marketplace=marketplace, target=target).attempt() is False
    marketplace.fetch_buy_execution.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_commission_pool_skips_marketplace(chain, store, treasury) -> None:
    marketplace = AsyncMock()
    assert await _orchestrator(chain, store, treasury, marketplace=marketplace).attempt() is False
    marketplace.fetch_buy_execution.assert_not_awaited()


@pytest.mark.asyncio
async def test_marketplace_failure_is_not_a_purchase(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    marketplace.fetch_buy_execution.side_effect = RuntimeError("no listings")

    assert await _orchestrator(chain, store, treasury, marketplace=marketplace).attempt() is False
    assert treasury.executed == []
    assert store.ledger.commission_pool_wei == 10_000


@pytest.mark.asyncio
@pytest.mark.parametrize("cost", [0, 10_001])
async def test_cost_outside_pool_is_skipped(chain, store, treasury, cost: int) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    marketplace.fetch_buy_execution.return_value = _payload(cost)

    assert await _orchestrator(chain, store, treasury, marketplace=marketplace).attempt() is False
    assert treasury.executed == []


@pytest.mark.asyncio
async def test_purchase_deducts_pool_and_records_listing(chain, store, treasury, open_store) -> None:
    store.ledger.commission_pool_wei = 10_000
    creator = AsyncMock()
    creator.create_listing.return_value = ListingResult(
        order_hash=ORDER_HASH, seller_proceeds_wei=1_170, listing_price_wei=1_200
    )

    assert await _orchestrator(chain, store, treasury, creator=creator).attempt() is True

    [(router, value, _, label)] = treasury.executed
    assert (router, value, label) == (ROUTER, 1_000, "seaport_purchase")
    assert len(treasury.waited) == 1
    creator.create_listing.assert_awaited_once()
    assert creator.create_listing.await_args.args[1] == 1_000

    persisted = open_store(0).ledger
    assert persisted.commission_pool_wei == 9_000
    [listing] = persisted.active_listings
    assert listing.order_hash == ORDER_HASH
    assert listing.expected_proceeds_wei == 1_170
    assert listing.collection == COLLECTION
    assert listing.token_id == "42"
    assert listing.listed_at_ms == 1_700_000_000_000
    assert listing.token_standard is TokenStandard.ERC721
    assert listing.expected_post_sale_balance is None


@pytest.mark.asyncio
async def test_relist_failure_keeps_committed_deduction(chain, store, treasury, open_store) -> None:
    store.ledger.commission_pool_wei = 10_000
    creator = AsyncMock()
    creator.create_listing.side_effect = RuntimeError("ownership not observed")

    assert await _orchestrator(chain, store, treasury, creator=creator).attempt() is True

    persisted = open_store(0).ledger
    assert persisted.commission_pool_wei == 9_000
    assert persisted.active_listings == []


@pytest.mark.asyncio
async def test_relist_returning_nothing_records_no_listing(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    creator = AsyncMock()
    creator.create_listing.return_value = None

    assert await _orchestrator(chain, store, treasury, creator=creator).attempt() is True
    assert store.ledger.active_listings == []
    assert store.ledger.commission_pool_wei == 9_000


@pytest.mark.asyncio
async def test_persistence_failure_during_relist_is_fatal(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    creator = AsyncMock()
    creator.create_listing.side_effect = LedgerPersistenceError("disk full")

    with pytest.raises(LedgerPersistenceError):
        await _orchestrator(chain, store, treasury, creator=creator).attempt()


@pytest.mark.asyncio
async def test_failed_purchase_transaction_leaves_pool_untouched(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    treasury.wait = AsyncMock(side_effect=RuntimeError("reverted"))

    with pytest.raises(RuntimeError):
        await _orchestrator(chain, store, treasury).attempt()

    assert store.ledger.commission_pool_wei == 10_000


@pytest.mark.asyncio
async def test_missing_blueprint_skips_relist(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    marketplace.fetch_buy_execution.return_value = ExecutionPayload(router=ROUTER, calldata=b"", value_wei=500)
    creator = AsyncMock()

    assert await _orchestrator(chain, store, treasury, marketplace=marketplace, creator=creator).attempt() is True
    creator.create_listing.assert_not_awaited()
    assert store.ledger.commission_pool_wei == 9_500


@pytest.mark.asyncio
async def test_erc1155_listing_records_post_sale_balance(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    marketplace.fetch_buy_execution.return_value = _payload(blueprint=listing_blueprint(item_type=3, token_id=9))
    chain.erc1155[(COLLECTION, TREASURY, 9)] = 3

    assert await _orchestrator(chain, store, treasury, marketplace=marketplace).attempt() is True

    [listing] = store.ledger.active_listings
    assert listing.token_standard is TokenStandard.ERC1155
    assert listing.listed_quantity == 1
    assert listing.expected_post_sale_balance == 2


@pytest.mark.asyncio
async def test_erc1155_balance_read_failure_falls_back_to_zero(chain, store, treasury) -> None:
    store.ledger.commission_pool_wei = 10_000
    marketplace = AsyncMock()
    marketplace.fetch_buy_execution.return_value = _payload(blueprint=listing_blueprint(item_type=3))
    chain.failures["erc1155_balance_of"] = RuntimeError("rpc down")

    assert await _orchestrator(chain, store, treasury, marketplace=marketplace).attempt() is True

    [listing] = store.ledger.active_listings
    assert listing.expected_post_sale_balance == 0
