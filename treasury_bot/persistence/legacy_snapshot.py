"""
One-time import of the pre-SQLite JSON state snapshot.

Only `LedgerStore.load()` calls this, and only when no database file existed yet.
Once every deployment has a database this module can be deleted.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from treasury_bot.ledger.models import LEDGER_VERSION, ActiveListing, Ledger, TokenStandard


def _int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    return int(str(value).strip() or default)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(str(value).strip())


def ledger_from_legacy_dict(raw: dict[str, Any]) -> Ledger:
    version = raw.get("version")
    version_i = LEDGER_VERSION if version is None else int(version)

    listings = [
        ActiveListing(
            order_hash=str(item["orderHash"]),
            collection=str(item["collection"]),
            token_id=str(item["tokenId"]),
            expected_proceeds_wei=_int(item["expectedProceedsWei"]),
            listed_at_ms=int(item["listedAtMs"]),
            token_standard=TokenStandard.parse(item.get("tokenStandard")),
            listed_quantity=_int(item.get("listedQuantity"), default=1),
            expected_post_sale_balance=_optional_int(item.get("expectedPostSaleBalance")),
        )
        for item in (raw.get("activeListings") or [])
    ]

    ledger = Ledger(
        version=max(version_i, LEDGER_VERSION),
        commission_pool_wei=_int(raw.get("commissionPoolWei")),
        sale_pool_wei=_int(raw.get("salePoolWei")),
        pending_burn_amount=_int(raw.get("pendingBurnAmount")),
        pending_burn_cost_wei=_int(raw.get("pendingBurnCostWei")),
        last_tax_block=_int(raw.get("lastTaxBlock")),
        active_listings=listings,
    )
    ledger.validate()
    return ledger


def read_legacy_snapshot(path: str | Path | None) -> Optional[Ledger]:
    """
    Returns the imported ledger, or None when no snapshot file exists.

    Any other failure (unreadable file, bad JSON, bad field) propagates: silently
    starting from empty pools would discard the treasury's recorded balances.
    """
    if not path:
        return None
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError(f"Legacy state snapshot {path} is not a JSON object")
    return ledger_from_legacy_dict(raw)
