from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from treasury_bot.common.logging import log_event
from treasury_bot.ledger.models import LEDGER_VERSION, ActiveListing, Ledger, TokenStandard
from treasury_bot.persistence.legacy_snapshot import read_legacy_snapshot

logger = logging.getLogger(__name__)


class LedgerPersistenceError(RuntimeError):
    """
    The durable store could not be read or committed.

    Fatal: the loop must not continue believing a commit happened when it did not.
    """


_SCHEMA = """
CREATE TABLE IF NOT EXISTS state (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  version INTEGER NOT NULL,
  commissionPoolWei TEXT NOT NULL,
  salePoolWei TEXT NOT NULL,
  lastTaxBlock TEXT NOT NULL,
  pendingBurnAmount TEXT NOT NULL DEFAULT '0',
  pendingBurnCostWei TEXT NOT NULL DEFAULT '0'
);

CREATE TABLE IF NOT EXISTS listings (
  orderHash TEXT PRIMARY KEY,
  collection TEXT NOT NULL,
  tokenId TEXT NOT NULL,
  expectedProceedsWei TEXT NOT NULL,
  listedAtMs INTEGER NOT NULL,
  tokenStandard TEXT NOT NULL DEFAULT 'erc721',
  listedQuantity TEXT NOT NULL DEFAULT '1',
  expectedPostSaleBalance TEXT
);
"""

# Columns added after the first release. Additive only: never drop or retype a
# column, so an older binary can still read a store written by a newer one.
_STATE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("pendingBurnAmount", "TEXT NOT NULL DEFAULT '0'"),
    ("pendingBurnCostWei", "TEXT NOT NULL DEFAULT '0'"),
)
_LISTING_COLUMNS: tuple[tuple[str, str], ...] = (
    ("tokenStandard", "TEXT NOT NULL DEFAULT 'erc721'"),
    ("listedQuantity", "TEXT NOT NULL DEFAULT '1'"),
    ("expectedPostSaleBalance", "TEXT"),
)

_UPSERT_STATE = """
INSERT INTO state (
  id, version, commissionPoolWei, salePoolWei, lastTaxBlock, pendingBurnAmount, pendingBurnCostWei
)
VALUES (1, :version, :commissionPoolWei, :salePoolWei, :lastTaxBlock, :pendingBurnAmount, :pendingBurnCostWei)
ON CONFLICT(id) DO UPDATE SET
  version = excluded.version,
  commissionPoolWei = excluded.commissionPoolWei,
  salePoolWei = excluded.salePoolWei,
  lastTaxBlock = excluded.lastTaxBlock,
  pendingBurnAmount = excluded.pendingBurnAmount,
  pendingBurnCostWei = excluded.pendingBurnCostWei
"""

_INSERT_LISTING = """
INSERT INTO listings (
  orderHash, collection, tokenId, expectedProceedsWei, listedAtMs,
  tokenStandard, listedQuantity, expectedPostSaleBalance
)
VALUES (
  :orderHash, :collection, :tokenId, :expectedProceedsWei, :listedAtMs,
  :tokenStandard, :listedQuantity, :expectedPostSaleBalance
)
"""


def _listing_row(listing: ActiveListing) -> dict[str, object]:
    return {
        "orderHash": listing.order_hash,
        "collection": listing.collection,
        "tokenId": listing.token_id,
        "expectedProceedsWei": str(listing.expected_proceeds_wei),
        "listedAtMs": int(listing.listed_at_ms),
        "tokenStandard": listing.token_standard.value,
        "listedQuantity": str(listing.listed_quantity),
        "expectedPostSaleBalance": (
            str(listing.expected_post_sale_balance) if listing.expected_post_sale_balance is not None else None
        ),
    }


def _listing_from_row(row: sqlite3.Row) -> ActiveListing:
    post_sale = row["expectedPostSaleBalance"]
    return ActiveListing(
        order_hash=str(row["orderHash"]),
        collection=str(row["collection"]),
        token_id=str(row["tokenId"]),
        expected_proceeds_wei=int(row["expectedProceedsWei"]),
        listed_at_ms=int(row["listedAtMs"]),
        token_standard=TokenStandard.parse(row["tokenStandard"]),
        listed_quantity=int(row["listedQuantity"] or "1"),
        expected_post_sale_balance=int(post_sale) if post_sale is not None else None,
    )


class LedgerStore:
    """
    SQLite-backed durable ledger.

    Tables:
      state     single row (id = 1): version, pools, pending burn, tax cursor
      listings  one row per active listing, keyed by order hash

    Semantics:
    - `load()` reads the store, or (first run only) imports the legacy JSON snapshot,
      or starts from defaults; whatever it produced is persisted before returning.
    - `save()` replaces the whole state in one transaction. A crash mid-save leaves
      the previous committed snapshot authoritative.
    """

    def __init__(self, db_file: str | Path, legacy_json_file: str | Path | None = None) -> None:
        self._db_path = Path(db_file).expanduser().resolve()
        self._legacy_path = Path(legacy_json_file).expanduser().resolve() if legacy_json_file else None
        self._conn: Optional[sqlite3.Connection] = None
        self._ledger: Optional[Ledger] = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def ledger(self) -> Ledger:
        if self._ledger is None:
            raise RuntimeError("Ledger has not been loaded")
        return self._ledger

    def load(self, initial_block: int) -> Ledger:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            db_already_exists = self._db_path.exists()
            self._conn = self._open()
            self._setup_schema()
            loaded = self._read()
        except sqlite3.Error as e:
            raise LedgerPersistenceError(f"Failed to open ledger store {self._db_path}: {e}") from e

        if loaded is not None:
            self._ledger = loaded
            log_event(logger, "ledger.loaded", source="sqlite", db_path=str(self._db_path), **loaded.snapshot_fields())
            return loaded

        source = "defaults"
        ledger: Optional[Ledger] = None
        if not db_already_exists:
            ledger = read_legacy_snapshot(self._legacy_path)
            if ledger is not None:
                source = "legacy_json"
        if ledger is None:
            ledger = Ledger.initial(initial_block)

        self._ledger = ledger
        self.save()
        log_event(logger, "ledger.loaded", source=source, db_path=str(self._db_path), **ledger.snapshot_fields())
        return ledger

    def save(self) -> None:
        ledger = self.ledger
        ledger.validate()
        try:
            with self._transaction() as conn:
                conn.execute(
                    _UPSERT_STATE,
                    {
                        "version": max(int(ledger.version), LEDGER_VERSION),
                        "commissionPoolWei": str(ledger.commission_pool_wei),
                        "salePoolWei": str(ledger.sale_pool_wei),
                        "lastTaxBlock": str(ledger.last_tax_block),
                        "pendingBurnAmount": str(ledger.pending_burn_amount),
                        "pendingBurnCostWei": str(ledger.pending_burn_cost_wei),
                    },
                )
                conn.execute("DELETE FROM listings")
                if ledger.active_listings:
                    conn.executemany(_INSERT_LISTING, [_listing_row(x) for x in ledger.active_listings])
        except sqlite3.Error as e:
            raise LedgerPersistenceError(f"Failed to commit ledger to {self._db_path}: {e}") from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _open(self) -> sqlite3.Connection:
        # Autocommit mode; `_transaction()` issues BEGIN/COMMIT explicitly.
        conn = sqlite3.connect(str(self._db_path), isolation_level=None, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = FULL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Ledger store connection has not been initialized")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def _setup_schema(self) -> None:
        conn = self._connection()
        conn.executescript(_SCHEMA)
        self._ensure_columns("state", _STATE_COLUMNS)
        self._ensure_columns("listings", _LISTING_COLUMNS)

    def _ensure_columns(self, table: str, columns: tuple[tuple[str, str], ...]) -> None:
        conn = self._connection()
        existing = {str(r["name"]) for r in conn.execute(f"PRAGMA table_info({table})").fetchall()}
        for name, decl in columns:
            if name not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("ledger.schema.column_added table=%s column=%s", table, name)

    def _read(self) -> Optional[Ledger]:
        conn = self._connection()
        row = conn.execute(
            """
            SELECT version, commissionPoolWei, salePoolWei, lastTaxBlock, pendingBurnAmount, pendingBurnCostWei
            FROM state WHERE id = 1
            """
        ).fetchone()
        if row is None:
            return None

        stored_version = row["version"] if row["version"] is not None else LEDGER_VERSION
        listings = [
            _listing_from_row(r)
            for r in conn.execute(
                """
                SELECT orderHash, collection, tokenId, expectedProceedsWei, listedAtMs,
                       tokenStandard, listedQuantity, expectedPostSaleBalance
                FROM listings
                ORDER BY listedAtMs ASC, rowid ASC
                """
            ).fetchall()
        ]
        return Ledger(
            version=max(int(stored_version), LEDGER_VERSION),
            commission_pool_wei=int(row["commissionPoolWei"]),
            sale_pool_wei=int(row["salePoolWei"]),
            pending_burn_amount=int(row["pendingBurnAmount"] or "0"),
            pending_burn_cost_wei=int(row["pendingBurnCostWei"] or "0"),
            last_tax_block=int(row["lastTaxBlock"] or "0"),
            active_listings=listings,
        )
