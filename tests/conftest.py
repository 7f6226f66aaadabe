from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import pytest

from tests.fakes import FakeChain, FakeTreasury, SleepRecorder
from treasury_bot.persistence.ledger_store import LedgerStore


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "bot-state.db"


@pytest.fixture
def legacy_path(tmp_path: Path) -> Path:
    return tmp_path / "bot-state.json"


@pytest.fixture
def open_store(db_path: Path, legacy_path: Path) -> Iterator[Callable[..., LedgerStore]]:
    """
    Open (and load) a store over the test database; call again to simulate a restart.
    """
    opened: list[LedgerStore] = []

    def _open(initial_block: int = 0) -> LedgerStore:
        store = LedgerStore(db_path, legacy_path)
        store.load(initial_block)
        opened.append(store)
        return store

    yield _open
    for s in opened:
        s.close()


@pytest.fixture
def store(open_store: Callable[..., LedgerStore]) -> LedgerStore:
    return open_store(1)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def treasury() -> FakeTreasury:
    return FakeTreasury()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()
