from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from eth_account import Account

from treasury_bot.chain.fee_policy import FeeEscalationPolicy
from treasury_bot.chain.rpc import ChainClient
from treasury_bot.chain.submitter import TransactionSubmitter, TreasuryClient
from treasury_bot.common.config import BotConfig
from treasury_bot.common.kill_switch import get_kill_switch_state
from treasury_bot.common.logging import bind_tick_id, log_event
from treasury_bot.common.shutdown import ShutdownSignal
from treasury_bot.marketplace.models import PurchaseTarget
from treasury_bot.marketplace.opensea import OpenSeaClient
from treasury_bot.marketplace.relist import ListingCreator
from treasury_bot.persistence.ledger_store import LedgerPersistenceError, LedgerStore
from treasury_bot.services.buyback import BuybackBurnEngine
from treasury_bot.services.listing_monitor import ListingReconciler
from treasury_bot.services.purchase import PurchaseOrchestrator
from treasury_bot.services.tax_collector import TaxCollector

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TreasuryLoop:
    """
    One tick: collect tax -> reconcile listings -> buyback/burn, or purchase + relist
    when the buyback did nothing.

    Steps are isolated: a failing step is logged and the tick continues, except
    `LedgerPersistenceError`, which stops the loop. A failed buyback/burn ends the
    tick without a purchase, so the two never both act. While the execution halt switch
    is on, the write steps are skipped and the read steps keep running.
    """

    def __init__(
        self,
        *,
        tax_collector: TaxCollector,
        reconciler: ListingReconciler,
        buyback: BuybackBurnEngine,
        purchase: PurchaseOrchestrator,
        shutdown: ShutdownSignal,
        loop_interval_ms: int,
        action_cooldown_ms: int,
        kill_switch: Callable[[], tuple[bool, Optional[str]]] = get_kill_switch_state,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tax_collector = tax_collector
        self._reconciler = reconciler
        self._buyback = buyback
        self._purchase = purchase
        self._shutdown = shutdown
        self._interval_s = max(0, int(loop_interval_ms)) / 1000.0
        self._cooldown_s = max(0, int(action_cooldown_ms)) / 1000.0
        self._kill_switch = kill_switch
        self._monotonic = monotonic
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    async def _step(self, name: str, fn: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Run one step; None means it raised (already logged).
        """
        try:
            return await fn()
        except LedgerPersistenceError:
            raise
        except Exception:
            logger.exception("loop.step_failed step=%s", name)
            return None

    async def tick(self) -> bool:
        """
        Run one iteration. Returns True when a write step (buyback/burn or purchase)
        completed an action.
        """
        self._ticks += 1
        await self._step("tax_collection", self._tax_collector.collect)
        await self._step("listing_reconciliation", self._reconciler.reconcile)

        halted, source = self._kill_switch()
        if halted:
            log_event(logger, "loop.execution_halted", severity="WARNING", source=source)
            return False

        bought_back = await self._step("buyback_burn", self._buyback.run)
        if bought_back is None:
            # The sale pool (or a pending burn) still has work; it keeps priority.
            log_event(logger, "loop.purchase_skipped", reason="buyback_failed")
            return False
        if bought_back:
            return True
        return bool(await self._step("purchase_and_list", self._purchase.attempt))

    async def run(self, *, max_ticks: Optional[int] = None) -> None:
        log_event(logger, "loop.started", interval_s=self._interval_s, cooldown_s=self._cooldown_s)
        while not self._shutdown.requested:
            started = self._monotonic()
            with bind_tick_id():
                acted = await self.tick()

            if max_ticks is not None and self._ticks >= max_ticks:
                break

            if acted and self._cooldown_s > 0:
                if await self._shutdown.sleep_or_shutdown(self._cooldown_s):
                    break

            remaining = self._interval_s - (self._monotonic() - started)
            if remaining > 0 and await self._shutdown.sleep_or_shutdown(remaining):
                break
        log_event(logger, "loop.stopped", ticks=self._ticks)


async def run_bot(config: BotConfig, *, max_ticks: Optional[int] = None, install_signals: bool = True) -> None:
    """
    Wire every component from `config`, load the ledger and run the loop until a
    shutdown signal (or `max_ticks`).
    """
    shutdown = ShutdownSignal()
    if install_signals:
        shutdown.install_signal_handlers()

    chain = ChainClient(config.rpc_url)
    operator = Account.from_key(config.operator_private_key)
    submitter = TransactionSubmitter(chain, operator, chain_id=config.chain_id, fee_policy=FeeEscalationPolicy())
    treasury = TreasuryClient(submitter, config.treasury_address)
    opensea = OpenSeaClient(
        api_url=config.opensea_api_url,
        api_key=config.opensea_api_key,
        chain_id=config.chain_id,
    )

    log_event(logger, "bot.starting", operator=operator.address, **config.to_log_dict())

    store = LedgerStore(config.state_db_file, config.legacy_state_file)
    try:
        store.load(await chain.block_number())
    except BaseException:
        await opensea.aclose()
        raise

    loop = TreasuryLoop(
        tax_collector=TaxCollector(
            chain=chain,
            store=store,
            treasury_address=treasury.address,
            token_address=config.token_address,
            throttle_ms=config.log_fetch_throttle_ms,
        ),
        reconciler=ListingReconciler(
            chain=chain,
            store=store,
            treasury_address=treasury.address,
            max_checks_per_tick=config.max_listing_checks_per_tick,
        ),
        buyback=BuybackBurnEngine(
            chain=chain,
            store=store,
            treasury=treasury,
            token_address=config.token_address,
            router_address=config.buyback_router_address,
            weth_address=config.weth_address,
            burn_address=config.burn_address,
            chunk_wei=config.buyback_chunk_wei,
        ),
        purchase=PurchaseOrchestrator(
            chain=chain,
            store=store,
            treasury=treasury,
            marketplace=opensea,
            listing_creator=ListingCreator(
                chain=chain,
                treasury=treasury,
                operator=operator,
                chain_id=config.chain_id,
                markup_bps=config.relist_markup_bps,
                listing_duration_seconds=config.listing_duration_seconds,
            ),
            target=PurchaseTarget(
                collection=config.target_collection,
                collection_slug=config.target_collection_slug,
                token_id=config.target_token_id,
            ),
        ),
        shutdown=shutdown,
        loop_interval_ms=config.loop_interval_ms,
        action_cooldown_ms=config.action_cooldown_ms,
    )

    try:
        await loop.run(max_ticks=max_ticks)
    finally:
        await opensea.aclose()
        store.close()
