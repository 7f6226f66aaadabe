from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# Seaport ItemType values.
ITEM_TYPE_NATIVE = 0
ITEM_TYPE_ERC20 = 1
ITEM_TYPE_ERC721 = 2
ITEM_TYPE_ERC1155 = 3


@dataclass(frozen=True, slots=True)
class PurchaseTarget:
    """
    What to buy: an exact token (`collection` + `token_id`) or the cheapest listing
    of a collection (`collection_slug`).
    """

    collection: Optional[str] = None
    collection_slug: Optional[str] = None
    token_id: Optional[str] = None

    @property
    def is_exact_token(self) -> bool:
        return bool(self.collection and self.token_id)


@dataclass(frozen=True, slots=True)
class ConsiderationBlueprint:
    item_type: int
    token: str
    identifier_or_criteria: int
    original_amount: int
    recipient: str
    is_seller_proceeds: bool


@dataclass(frozen=True, slots=True)
class ListingBlueprint:
    """
    Everything needed to relist the acquired asset with the same fee structure as
    the order it was bought from.
    """

    protocol_address: str
    offer_token: str
    offer_identifier: int
    offer_item_type: int
    offer_start_amount: int
    offer_end_amount: int
    conduit_key: str
    zone: str
    zone_hash: str
    order_type: int
    consideration: tuple[ConsiderationBlueprint, ...]
    total_original_consideration_items: int
    original_consideration_total: int
    counter: int
    collection_slug: Optional[str] = None

    @property
    def is_erc1155(self) -> bool:
        return int(self.offer_item_type) == ITEM_TYPE_ERC1155

    @property
    def is_nft(self) -> bool:
        return int(self.offer_item_type) in (ITEM_TYPE_ERC721, ITEM_TYPE_ERC1155)


@dataclass(frozen=True, slots=True)
class ExecutionPayload:
    """
    A ready-to-submit purchase: the treasury calls `router` with `calldata` and
    `value_wei` attached.
    """

    router: str
    calldata: bytes
    value_wei: int
    price_wei: int = 0
    source: str = "opensea"
    blueprint: Optional[ListingBlueprint] = field(default=None)


@dataclass(frozen=True, slots=True)
class ListingResult:
    order_hash: str
    seller_proceeds_wei: int
    listing_price_wei: int
