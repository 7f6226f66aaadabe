from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from tests.fakes import BURN, ROUTER, TOKEN, WETH, FakeShutdown, FakeTreasury
from treasury_bot.driver import TreasuryLoop
from treasury_bot.persistence.ledger_store import LedgerPersistenceError
from treasury_bot.services.buyback import BuybackBurnEngine


def _services(calls: list[str], *, buyback_acts: bool = False, purchase_acts: bool = False) -> dict[str, AsyncMock]:
    def recorder(name: str, result):
        async def _run():
            calls.append(name)
            return result

        return AsyncMock(side_effect=_run)

    tax = AsyncMock()
    tax.collect = recorder("tax", False)
    reconciler = AsyncMock()
    reconciler.reconcile = recorder("reconcile", 0)
    buyback = AsyncMock()
    buyback.run = recorder("buyback", buyback_acts)
    purchase = AsyncMock()
    purchase.attempt = recorder("purchase", purchase_acts)
    return {"tax_collector": tax, "reconciler": reconciler, "buyback": buyback, "purchase": purchase}


def _loop(services, *, shutdown=None, halted: bool = False, monotonic=None, **kwargs) -> TreasuryLoop:
    return TreasuryLoop(
        **services,
        shutdown=shutdown or FakeShutdown(),
        loop_interval_ms=kwargs.pop("loop_interval_ms", 15_000),
        action_cooldown_ms=kwargs.pop("action_cooldown_ms", 5_000),
        kill_switch=lambda: (halted, "env:EXECUTION_HALTED" if halted else None),
        monotonic=monotonic or (lambda: 0.0),
    )


@pytest.mark.asyncio
async def test_tick_runs_steps_in_order_and_purchases_when_buyback_idle() -> None:
    calls: list[str] = []
    acted = await _loop(_services(calls, purchase_acts=True)).tick()

    assert calls == ["tax", "reconcile", "buyback", "purchase"]
    assert acted is True


@pytest.mark.asyncio
async def test_purchase_skipped_when_buyback_acted() -> None:
    calls: list[str] = []
    acted = await _loop(_services(calls, buyback_acts=True)).tick()

    assert calls == ["tax", "reconcile", "buyback"]
    assert acted is True


@pytest.mark.asyncio
async def test_failing_read_step_does_not_stop_the_tick() -> None:
    calls: list[str] = []
    services = _services(calls, purchase_acts=True)
    services["tax_collector"].collect = AsyncMock(side_effect=RuntimeError("rpc timeout"))

    acted = await _loop(services).tick()

    assert calls == ["reconcile", "buyback", "purchase"]
    assert acted is True


@pytest.mark.asyncio
async def test_failed_buyback_skips_purchase_for_the_tick() -> None:
    calls: list[str] = []
    services = _services(calls, purchase_acts=True)
    services["buyback"].run = AsyncMock(side_effect=ValueError("bad receipt"))

    acted = await _loop(services).tick()

    assert calls == ["tax", "reconcile"]
    services["purchase"].attempt.assert_not_awaited()
    assert acted is False


@pytest.mark.asyncio
async def test_reverted_pending_burn_keeps_pool_away_from_purchase(chain, store, sleeper) -> None:
    store.ledger.sale_pool_wei = 500
    store.ledger.pending_burn_amount = 77
    store.ledger.pending_burn_cost_wei = 200

    def on_execute(router: str, value_wei: int, calldata: bytes, label: str) -> None:
        if label == "burn_transfer":
            raise RuntimeError("execution reverted")

    calls: list[str] = []
    services = _services(calls, purchase_acts=True)
    services["buyback"] = BuybackBurnEngine(
        chain=chain,
        store=store,
        treasury=FakeTreasury(on_execute=on_execute),
        token_address=TOKEN,
        router_address=ROUTER,
        weth_address=WETH,
        burn_address=BURN,
        sleep=sleeper,
    )

    acted = await _loop(services).tick()

    assert acted is False
    services["purchase"].attempt.assert_not_awaited()
    assert store.ledger.pending_burn_amount == 77
    assert store.ledger.sale_pool_wei == 500


@pytest.mark.asyncio
async def test_persistence_failure_is_fatal() -> None:
    calls: list[str] = []
    services = _services(calls)
    services["reconciler"].reconcile = AsyncMock(side_effect=LedgerPersistenceError("disk I/O error"))

    with pytest.raises(LedgerPersistenceError):
        await _loop(services).tick()

    assert calls == ["tax"]


@pytest.mark.asyncio
async def test_halt_switch_skips_write_steps_only() -> None:
    calls: list[str] = []
    acted = await _loop(_services(calls, buyback_acts=True), halted=True).tick()

    assert calls == ["tax", "reconcile"]
    assert acted is False


@pytest.mark.asyncio
async def test_run_stops_after_max_ticks_without_sleeping_at_the_end() -> None:
    calls: list[str] = []
    shutdown = FakeShutdown()
    loop = _loop(_services(calls), shutdown=shutdown, loop_interval_ms=1_000)

    await loop.run(max_ticks=2)

    assert loop.ticks == 2
    assert shutdown.sleeps == [1.0]


@pytest.mark.asyncio
async def test_run_sleeps_cooldown_then_remaining_interval() -> None:
    calls: list[str] = []
    shutdown = FakeShutdown()
    clock = iter([100.0, 104.0, 200.0])
    loop = _loop(
        _services(calls, buyback_acts=True),
        shutdown=shutdown,
        monotonic=lambda: next(clock),
        loop_interval_ms=15_000,
        action_cooldown_ms=5_000,
    )

    await loop.run(max_ticks=2)

    # Tick took 4 s (cooldown included), so 11 s of the interval remain.
    assert shutdown.sleeps == [5.0, 11.0]


@pytest.mark.asyncio
async def test_shutdown_during_sleep_ends_the_loop() -> None:
    calls: list[str] = []
    shutdown = FakeShutdown(stop_after_sleeps=1)
    loop = _loop(_services(calls), shutdown=shutdown)

    await loop.run()

    assert loop.ticks == 1
    assert calls == ["tax", "reconcile", "buyback", "purchase"]


@pytest.mark.asyncio
async def test_no_tick_when_shutdown_already_requested() -> None:
    calls: list[str] = []
    shutdown = FakeShutdown()
    shutdown.requested = True

    await _loop(_services(calls), shutdown=shutdown).run()

    assert calls == []
