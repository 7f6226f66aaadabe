from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Floor for the persisted `version` field. Older stores/snapshots are clamped up on load.
LEDGER_VERSION = 3


class TokenStandard(str, Enum):
    """
    How ownership of a listed asset is observed on-chain.

    Chosen once when the listing is created (from the Seaport offer item type)
    and carried on the listing so the reconciler never re-derives it.
    """

    ERC721 = "erc721"  # single-owner: sold when ownerOf() moves away from the treasury
    ERC1155 = "erc1155"  # fungible-balance: sold when balanceOf() drops to the post-sale target

    @classmethod
    def parse(cls, value: object | None) -> "TokenStandard":
        # Unknown/empty tags predate the column and were always erc721.
        return cls.ERC1155 if str(value or "").strip().lower() == cls.ERC1155.value else cls.ERC721

    @classmethod
    def from_item_type(cls, item_type: int) -> "TokenStandard":
        # Seaport ItemType: 2 = ERC721, 3 = ERC1155.
        return cls.ERC1155 if int(item_type) == 3 else cls.ERC721


@dataclass(frozen=True, slots=True)
class ActiveListing:
    """
    A relisted asset whose sale has not been observed yet.

    `expected_post_sale_balance` is only meaningful for ERC1155 listings; it is the
    treasury balance at (or below) which the listed units count as sold.
    """

    order_hash: str
    collection: str
    token_id: str
    expected_proceeds_wei: int
    listed_at_ms: int
    token_standard: TokenStandard = TokenStandard.ERC721
    listed_quantity: int = 1
    expected_post_sale_balance: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.order_hash:
            raise ValueError("order_hash is required")
        if self.expected_proceeds_wei < 0:
            raise ValueError("expected_proceeds_wei must be >= 0")
        if self.listed_quantity <= 0:
            raise ValueError("listed_quantity must be > 0")
        if self.expected_post_sale_balance is not None and self.expected_post_sale_balance < 0:
            raise ValueError("expected_post_sale_balance must be >= 0")

    def log_fields(self) -> dict[str, object]:
        return {
            "order_hash": self.order_hash,
            "collection": self.collection,
            "token_id": self.token_id,
            "expected_proceeds_wei": self.expected_proceeds_wei,
            "token_standard": self.token_standard.value,
            "listed_quantity": self.listed_quantity,
        }


@dataclass(slots=True)
class Ledger:
    """
    The treasury's financial and listing state. Owned by the loop; mutated only by
    the services and persisted by `LedgerStore.save()` at safe boundaries.

    All amounts are integers in the smallest unit (wei / token base units).
    """

    version: int = LEDGER_VERSION
    commission_pool_wei: int = 0
    sale_pool_wei: int = 0
    pending_burn_amount: int = 0
    pending_burn_cost_wei: int = 0
    last_tax_block: int = 0
    active_listings: list[ActiveListing] = field(default_factory=list)

    @classmethod
    def initial(cls, initial_block: int) -> "Ledger":
        return cls(last_tax_block=int(initial_block))

    @property
    def has_pending_burn(self) -> bool:
        return self.pending_burn_amount > 0

    def validate(self) -> None:
        for name in (
            "commission_pool_wei",
            "sale_pool_wei",
            "pending_burn_amount",
            "pending_burn_cost_wei",
            "last_tax_block",
        ):
            if int(getattr(self, name)) < 0:
                raise ValueError(f"{name} must be >= 0")

    def advance_tax_block(self, block: int) -> None:
        # The scan cursor only moves forward.
        if block > self.last_tax_block:
            self.last_tax_block = int(block)

    def snapshot_fields(self) -> dict[str, object]:
        return {
            "commission_pool_wei": self.commission_pool_wei,
            "sale_pool_wei": self.sale_pool_wei,
            "pending_burn_amount": self.pending_burn_amount,
            "pending_burn_cost_wei": self.pending_burn_cost_wei,
            "last_tax_block": self.last_tax_block,
            "active_listings": len(self.active_listings),
        }
