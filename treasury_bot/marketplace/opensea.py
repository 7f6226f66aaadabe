"""
OpenSea API v2 client: resolve the cheapest listing for a target and turn it into
a Seaport purchase the treasury can execute.

Response payloads are validated with pydantic before anything is derived from them;
every transport or shape failure surfaces as `MarketplaceError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Optional

import httpx
from eth_utils import is_hex_address
from pydantic import BaseModel, BeforeValidator, Field, ValidationError
from pydantic.config import ConfigDict

from treasury_bot.chain.abi import ZERO_ADDRESS, ZERO_BYTES32, checksum, same_address
from treasury_bot.common.logging import log_event
from treasury_bot.marketplace.models import (
    ConsiderationBlueprint,
    ExecutionPayload,
    ListingBlueprint,
    PurchaseTarget,
)
from treasury_bot.marketplace.order_hash import ConsiderationItem, OfferItem, OrderComponents
from treasury_bot.marketplace.seaport import SEAPORT_V1_6_ADDRESS, build_fulfillment

logger = logging.getLogger(__name__)

OPENSEA_CHAIN_SLUG: dict[int, str] = {
    1: "ethereum",
    10: "optimism",
    137: "matic",
    42161: "arbitrum",
    8453: "base",
}


class MarketplaceError(RuntimeError):
    pass


def _coerce_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer amount")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    s = str(value).strip()
    if not s:
        return 0
    return int(s, 16) if s.lower().startswith("0x") else int(s, 10)


def _coerce_address(value: Any) -> str:
    if not isinstance(value, str) or not is_hex_address(value.strip()):
        raise ValueError(f"not a hex address: {value!r}")
    return checksum(value.strip())


def _coerce_bytes32_hex(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return "0x" + value.to_bytes(32, "big").hex()
    s = str(value or "").strip()
    if not s.startswith("0x"):
        return ZERO_BYTES32
    try:
        int(s[2:] or "0", 16)
    except ValueError:
        return ZERO_BYTES32
    return s


ChainInt = Annotated[int, BeforeValidator(_coerce_int)]
Address = Annotated[str, BeforeValidator(_coerce_address)]
Bytes32Hex = Annotated[str, BeforeValidator(_coerce_bytes32_hex)]


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SeaportOfferItemModel(_ApiModel):
    item_type: ChainInt = Field(alias="itemType")
    token: Address = ZERO_ADDRESS
    identifier_or_criteria: ChainInt = Field(default=0, alias="identifierOrCriteria")
    start_amount: ChainInt = Field(default=0, alias="startAmount")
    end_amount: ChainInt = Field(default=0, alias="endAmount")


class SeaportConsiderationItemModel(SeaportOfferItemModel):
    recipient: Address = ZERO_ADDRESS


class OrderParametersModel(_ApiModel):
    offerer: Address
    zone: Address = ZERO_ADDRESS
    offer: list[SeaportOfferItemModel] = Field(default_factory=list)
    consideration: list[SeaportConsiderationItemModel] = Field(default_factory=list)
    order_type: ChainInt = Field(default=0, alias="orderType")
    start_time: ChainInt = Field(default=0, alias="startTime")
    end_time: ChainInt = Field(default=0, alias="endTime")
    zone_hash: Bytes32Hex = Field(default=ZERO_BYTES32, alias="zoneHash")
    salt: ChainInt = 0
    conduit_key: Bytes32Hex = Field(default=ZERO_BYTES32, alias="conduitKey")
    total_original_consideration_items: Optional[ChainInt] = Field(default=None, alias="totalOriginalConsiderationItems")
    counter: ChainInt = 0

    def to_components(self) -> OrderComponents:
        total_original = self.total_original_consideration_items
        return OrderComponents(
            offerer=self.offerer,
            zone=self.zone,
            offer=tuple(
                OfferItem(i.item_type, i.token, i.identifier_or_criteria, i.start_amount, i.end_amount)
                for i in self.offer
            ),
            consideration=tuple(
                ConsiderationItem(
                    i.item_type, i.token, i.identifier_or_criteria, i.start_amount, i.end_amount, i.recipient
                )
                for i in self.consideration
            ),
            order_type=self.order_type,
            start_time=self.start_time,
            end_time=self.end_time,
            zone_hash=self.zone_hash,
            salt=self.salt,
            conduit_key=self.conduit_key,
            total_original_consideration_items=(
                len(self.consideration) if total_original is None else int(total_original)
            ),
            counter=self.counter,
        )


class ProtocolDataModel(_ApiModel):
    parameters: OrderParametersModel
    signature: Any = None


class OrderModel(_ApiModel):
    """One entry of `GET /api/v2/orders/{chain}/seaport/listings`."""

    order_hash: Optional[str] = None
    protocol_address: Optional[str] = None
    current_price: ChainInt = 0
    protocol_data: ProtocolDataModel


class OrdersResponse(_ApiModel):
    orders: list[OrderModel] = Field(default_factory=list)


class PriceValueModel(_ApiModel):
    value: ChainInt = 0


class ListingPriceModel(_ApiModel):
    current: Optional[PriceValueModel] = None


class ListingModel(_ApiModel):
    """One entry of `GET /api/v2/listings/collection/{slug}/best`."""

    order_hash: str
    protocol_address: Optional[str] = None
    price: Optional[ListingPriceModel] = None
    protocol_data: ProtocolDataModel


class BestListingsResponse(_ApiModel):
    listings: list[ListingModel] = Field(default_factory=list)


class FulfillmentDataModel(_ApiModel):
    orders: list[ProtocolDataModel] = Field(default_factory=list)


class FulfillmentResponse(_ApiModel):
    """`POST /api/v2/listings/fulfillment_data`."""

    fulfillment_data: Optional[FulfillmentDataModel] = None


def extract_signature(candidate: Any) -> Optional[str]:
    """
    Signatures arrive as a hex string, as `{"signature": ...}` or as `{"data": ...}`.
    Empty / "0x" means the marketplace withheld it.
    """
    if isinstance(candidate, str):
        s = candidate.strip()
        if not s or s == "0x":
            return None
        return s
    if isinstance(candidate, dict):
        if "signature" in candidate:
            return extract_signature(candidate["signature"])
        if "data" in candidate:
            return extract_signature(candidate["data"])
    return None


def build_listing_blueprint(
    parameters: OrderParametersModel,
    protocol_address: str,
    collection_slug: Optional[str],
) -> Optional[ListingBlueprint]:
    """
    None when the order has no offer, no consideration or a zero total: there is
    nothing to rescale a relist from.
    """
    if not parameters.offer:
        return None
    offer = parameters.offer[0]

    consideration = tuple(
        ConsiderationBlueprint(
            item_type=int(item.item_type),
            token=item.token,
            identifier_or_criteria=int(item.identifier_or_criteria),
            original_amount=int(item.start_amount),
            recipient=item.recipient,
            is_seller_proceeds=same_address(item.recipient, parameters.offerer),
        )
        for item in parameters.consideration
    )
    original_total = sum(c.original_amount for c in consideration)
    if not consideration or original_total == 0:
        return None

    return ListingBlueprint(
        protocol_address=protocol_address,
        offer_token=offer.token,
        offer_identifier=int(offer.identifier_or_criteria),
        offer_item_type=int(offer.item_type),
        offer_start_amount=int(offer.start_amount) if offer.start_amount > 0 else 1,
        offer_end_amount=int(offer.end_amount) if offer.end_amount > 0 else 1,
        conduit_key=parameters.conduit_key,
        zone=parameters.zone,
        zone_hash=parameters.zone_hash,
        order_type=int(parameters.order_type),
        consideration=consideration,
        total_original_consideration_items=len(consideration),
        original_consideration_total=original_total,
        counter=int(parameters.counter),
        collection_slug=collection_slug,
    )


@dataclass(frozen=True, slots=True)
class ResolvedOrder:
    order_hash: str
    protocol_data: ProtocolDataModel
    protocol_address: str
    price_wei: int
    collection_slug: Optional[str]


class OpenSeaClient:
    """
    Async OpenSea API v2 client.

    Pass `http_client` to share a connection pool (or to inject a mock transport in
    tests); otherwise the client owns one and `aclose()` releases it.
    """

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        chain_id: int,
        timeout_s: float = 20.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._chain_id = int(chain_id)
        self._chain_slug = OPENSEA_CHAIN_SLUG.get(self._chain_id, "base")
        self._headers = {"X-API-KEY": api_key, "accept": "application/json"}
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=float(timeout_s))

    @property
    def chain_slug(self) -> str:
        return self._chain_slug

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, *, params: Any = None, json: Any = None) -> Any:
        url = f"{self._api_url}{path}"
        try:
            response = await self._client.request(method, url, params=params, json=json, headers=self._headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise MarketplaceError(
                f"OpenSea {method} {path} failed with HTTP {e.response.status_code}: {e.response.text[:500]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise MarketplaceError(f"OpenSea {method} {path} failed: {e}") from e

    async def get_cheapest_order(self, collection: str, token_id: str, slug: Optional[str] = None) -> ResolvedOrder:
        raw = await self._request(
            "GET",
            f"/api/v2/orders/{self._chain_slug}/seaport/listings",
            params={
                "asset_contract_address": collection,
                "token_ids": str(token_id),
                "order_by": "eth_price",
                "order_direction": "asc",
            },
        )
        try:
            parsed = OrdersResponse.model_validate(raw)
        except ValidationError as e:
            raise MarketplaceError(f"Unexpected OpenSea orders response: {e}") from e
        if not parsed.orders:
            raise MarketplaceError(f"No active OpenSea listings for {collection} token {token_id}")

        order = parsed.orders[0]
        return ResolvedOrder(
            order_hash=order.order_hash or "",
            protocol_data=order.protocol_data,
            protocol_address=_protocol_address(order.protocol_address),
            price_wei=int(order.current_price),
            collection_slug=slug,
        )

    async def get_best_listing(self, slug: str) -> ResolvedOrder:
        raw = await self._request("GET", f"/api/v2/listings/collection/{slug}/best", params={"limit": 1})
        try:
            parsed = BestListingsResponse.model_validate(raw)
        except ValidationError as e:
            raise MarketplaceError(f"Unexpected OpenSea best-listings response: {e}") from e
        if not parsed.listings:
            raise MarketplaceError(f"No active OpenSea listings for collection slug {slug}")

        listing = parsed.listings[0]
        price = listing.price.current.value if listing.price and listing.price.current else 0
        return ResolvedOrder(
            order_hash=listing.order_hash,
            protocol_data=listing.protocol_data,
            protocol_address=_protocol_address(listing.protocol_address),
            price_wei=int(price),
            collection_slug=slug,
        )

    async def get_fulfillment_order(self, order: ResolvedOrder, fulfiller: str) -> ProtocolDataModel:
        raw = await self._request(
            "POST",
            "/api/v2/listings/fulfillment_data",
            json={
                "listing": {
                    "hash": order.order_hash,
                    "chain": self._chain_slug,
                    "protocol_address": order.protocol_address,
                },
                "fulfiller": {"address": fulfiller},
            },
        )
        try:
            parsed = FulfillmentResponse.model_validate(raw)
        except ValidationError as e:
            raise MarketplaceError(f"Unexpected OpenSea fulfillment response: {e}") from e
        if parsed.fulfillment_data is None or not parsed.fulfillment_data.orders:
            raise MarketplaceError("OpenSea fulfillment response missing protocol data")
        return parsed.fulfillment_data.orders[0]

    async def resolve_order(self, target: PurchaseTarget) -> ResolvedOrder:
        if target.collection and target.token_id:
            return await self.get_cheapest_order(target.collection, target.token_id, target.collection_slug)
        if target.collection_slug:
            return await self.get_best_listing(target.collection_slug)
        raise MarketplaceError(
            "Either TARGET_TOKEN_ID + TARGET_COLLECTION or TARGET_COLLECTION_SLUG must be provided"
        )

    async def ensure_signed(self, order: ResolvedOrder, fulfiller: str) -> tuple[OrderParametersModel, str]:
        signature = extract_signature(order.protocol_data.signature)
        if signature:
            return order.protocol_data.parameters, signature

        hydrated = await self.get_fulfillment_order(order, fulfiller)
        signature = extract_signature(hydrated.signature)
        if not signature:
            raise MarketplaceError("OpenSea fulfillment response missing signature")
        return hydrated.parameters, signature

    async def fetch_buy_execution(self, target: PurchaseTarget, taker: str) -> ExecutionPayload:
        """
        Cheapest listing for `target`, as Seaport calldata the treasury (`taker`)
        can execute, plus the blueprint to relist it with.
        """
        resolved = await self.resolve_order(target)
        parameters, signature = await self.ensure_signed(resolved, taker)

        components = parameters.to_components()
        calldata, value_wei = build_fulfillment(components, signature)
        blueprint = build_listing_blueprint(parameters, resolved.protocol_address, resolved.collection_slug)

        log_event(
            logger,
            "opensea.order_resolved",
            order_hash=resolved.order_hash,
            price_wei=resolved.price_wei,
            value_wei=value_wei,
            protocol_address=resolved.protocol_address,
            relistable=blueprint is not None,
        )
        return ExecutionPayload(
            router=resolved.protocol_address,
            calldata=calldata,
            value_wei=value_wei,
            price_wei=resolved.price_wei if resolved.price_wei > 0 else value_wei,
            source="opensea",
            blueprint=blueprint,
        )


def _protocol_address(value: Optional[str]) -> str:
    if not value:
        return SEAPORT_V1_6_ADDRESS
    try:
        address = _coerce_address(value)
    except ValueError as e:
        raise MarketplaceError(f"Invalid Seaport protocol address from OpenSea: {value!r}") from e
    return SEAPORT_V1_6_ADDRESS if address == ZERO_ADDRESS else address
