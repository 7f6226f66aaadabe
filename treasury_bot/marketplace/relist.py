"""
Relisting an acquired asset as a treasury-offered Seaport order.

The treasury contract is the offerer. The operator key signs the order digest and
the treasury then calls `Seaport.validate([order])`, which makes the order
fillable without exposing the signature to any marketplace.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Awaitable, Callable, Optional, Sequence

from eth_account.signers.local import LocalAccount

from treasury_bot.chain.abi import ZERO_ADDRESS, same_address
from treasury_bot.chain.rpc import ChainClient
from treasury_bot.chain.submitter import TreasuryClient
from treasury_bot.common.logging import log_event
from treasury_bot.marketplace.models import ConsiderationBlueprint, ListingBlueprint, ListingResult
from treasury_bot.marketplace.order_hash import (
    ConsiderationItem,
    OfferItem,
    OrderComponents,
    order_hash,
    order_signable_message,
)
from treasury_bot.marketplace.seaport import build_validate_calldata, resolve_approval_target

logger = logging.getLogger(__name__)

BASIS_POINTS = 10_000
DEFAULT_MARKUP_BPS = 12_000
DEFAULT_LISTING_DURATION_SECONDS = 7 * 24 * 60 * 60

OWNERSHIP_CHECK_MAX_ATTEMPTS = 3
OWNERSHIP_CHECK_DELAY_S = 15.0
OWNERSHIP_PROPAGATION_DELAY_S = 15.0


class OwnershipNotObservedError(RuntimeError):
    pass


class CollectionNotAllowedError(RuntimeError):
    pass


def compute_listing_price(base_price_wei: int, markup_bps: int = DEFAULT_MARKUP_BPS) -> int:
    """
    `ceil(base * markup_bps / 10000)`; 0 for a non-positive base.
    """
    if base_price_wei <= 0:
        return 0
    return (int(base_price_wei) * int(markup_bps) + BASIS_POINTS - 1) // BASIS_POINTS


def scale_consideration_amounts(
    items: Sequence[ConsiderationBlueprint],
    original_total: int,
    new_total: int,
    seller_recipient: str,
) -> list[ConsiderationItem]:
    """
    Rescale every consideration line to `new_total`, keeping the original proportions.

    Each line gets `floor(new_total * original / original_total)`; the last line takes
    whatever remains so the amounts sum to `new_total` exactly. The seller-proceeds
    line is paid to `seller_recipient`.
    """
    if original_total <= 0 or new_total <= 0:
        return []

    scaled: list[ConsiderationItem] = []
    remainder = int(new_total)
    last = len(items) - 1
    for index, item in enumerate(items):
        if index == last:
            amount = max(remainder, 0)
        else:
            amount = int(new_total) * int(item.original_amount) // int(original_total)
            remainder -= amount
        scaled.append(
            ConsiderationItem(
                item_type=item.item_type,
                token=item.token,
                identifier_or_criteria=item.identifier_or_criteria,
                start_amount=amount,
                end_amount=amount,
                recipient=seller_recipient if item.is_seller_proceeds else item.recipient,
            )
        )
    return scaled


def seller_proceeds(blueprint: ListingBlueprint, scaled: Sequence[ConsiderationItem]) -> int:
    for index, item in enumerate(blueprint.consideration):
        if item.is_seller_proceeds:
            return int(scaled[index].start_amount) if index < len(scaled) else 0
    return 0


class ListingCreator:
    def __init__(
        self,
        *,
        chain: ChainClient,
        treasury: TreasuryClient,
        operator: LocalAccount,
        chain_id: int,
        markup_bps: int = DEFAULT_MARKUP_BPS,
        listing_duration_seconds: int = DEFAULT_LISTING_DURATION_SECONDS,
        ownership_check_delay_s: float = OWNERSHIP_CHECK_DELAY_S,
        propagation_delay_s: float = OWNERSHIP_PROPAGATION_DELAY_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = chain
        self._treasury = treasury
        self._operator = operator
        self._chain_id = int(chain_id)
        self._markup_bps = int(markup_bps)
        self._duration_s = int(listing_duration_seconds)
        self._ownership_check_delay_s = float(ownership_check_delay_s)
        self._propagation_delay_s = float(propagation_delay_s)
        self._sleep = sleep
        self._clock = clock

    async def wait_for_ownership(self, blueprint: ListingBlueprint, quantity: int) -> None:
        owner = self._treasury.address
        collection = blueprint.offer_token
        token_id = int(blueprint.offer_identifier)

        for attempt in range(OWNERSHIP_CHECK_MAX_ATTEMPTS):
            if blueprint.is_erc1155:
                balance = await self._chain.erc1155_balance_of(collection, owner, token_id)
                logger.info(
                    "relist.ownership_check attempt=%d collection=%s token_id=%s balance=%d",
                    attempt + 1,
                    collection,
                    token_id,
                    balance,
                )
                if balance >= quantity:
                    return
            else:
                current_owner = await self._chain.owner_of(collection, token_id)
                logger.info(
                    "relist.ownership_check attempt=%d collection=%s token_id=%s owner=%s",
                    attempt + 1,
                    collection,
                    token_id,
                    current_owner,
                )
                if same_address(current_owner, owner):
                    return

            if attempt + 1 < OWNERSHIP_CHECK_MAX_ATTEMPTS:
                await self._sleep(self._ownership_check_delay_s)

        if blueprint.is_erc1155:
            raise OwnershipNotObservedError(
                f"Treasury balance for token {token_id} on {collection} did not reach {quantity} "
                f"after {OWNERSHIP_CHECK_MAX_ATTEMPTS} checks"
            )
        raise OwnershipNotObservedError(
            f"Token {token_id} on {collection} is not owned by treasury after {OWNERSHIP_CHECK_MAX_ATTEMPTS} checks"
        )

    async def ensure_conduit_approval(self, collection: str, conduit_key: str, protocol_address: str) -> None:
        if same_address(collection, ZERO_ADDRESS):
            return

        operator = await resolve_approval_target(self._chain, conduit_key, protocol_address)
        if same_address(operator, ZERO_ADDRESS):
            return

        treasury = self._treasury.address
        if not await self._chain.treasury_collection_allowed(treasury, collection):
            raise CollectionNotAllowedError(
                f"Treasury collection {collection} is not allowed. "
                f"Run setCollection({collection}, true) from the treasury owner before relisting."
            )

        if await self._chain.is_approved_for_all(collection, treasury, operator):
            return

        log_event(logger, "relist.approval_missing", collection=collection, operator=operator)
        tx_hash = await self._treasury.set_collection_approval(collection, operator, True)
        await self._treasury.wait(tx_hash)
        log_event(logger, "relist.approval_confirmed", collection=collection, operator=operator, tx_hash=tx_hash)

    def _build_order(
        self, blueprint: ListingBlueprint, consideration: list[ConsiderationItem], counter: int
    ) -> OrderComponents:
        if blueprint.is_erc1155:
            start_amount = end_amount = 1
        else:
            start_amount = blueprint.offer_start_amount if blueprint.offer_start_amount > 0 else 1
            end_amount = blueprint.offer_end_amount if blueprint.offer_end_amount > 0 else 1

        now = int(self._clock())
        return OrderComponents(
            offerer=self._treasury.address,
            zone=blueprint.zone,
            offer=(
                OfferItem(
                    item_type=blueprint.offer_item_type,
                    token=blueprint.offer_token,
                    identifier_or_criteria=blueprint.offer_identifier,
                    start_amount=start_amount,
                    end_amount=end_amount,
                ),
            ),
            consideration=tuple(consideration),
            order_type=blueprint.order_type,
            start_time=now,
            end_time=now + self._duration_s,
            zone_hash=blueprint.zone_hash,
            salt=int.from_bytes(secrets.token_bytes(32), "big"),
            conduit_key=blueprint.conduit_key,
            total_original_consideration_items=len(consideration),
            counter=int(counter),
        )

    def sign_order(self, order: OrderComponents, protocol_address: str) -> bytes:
        signable = order_signable_message(order, chain_id=self._chain_id, seaport_address=protocol_address)
        return bytes(self._operator.sign_message(signable).signature)

    async def create_listing(self, blueprint: ListingBlueprint, execution_price_wei: int) -> Optional[ListingResult]:
        """
        Relist at `execution_price_wei` plus markup. Returns None when there is
        nothing to list (zero price or empty consideration); raises on any chain
        failure.
        """
        listing_price = compute_listing_price(execution_price_wei, self._markup_bps)
        if listing_price <= 0:
            return None

        consideration = scale_consideration_amounts(
            blueprint.consideration,
            blueprint.original_consideration_total,
            listing_price,
            self._treasury.address,
        )
        if not consideration:
            return None

        protocol = blueprint.protocol_address
        counter = await self._chain.seaport_counter(protocol, self._treasury.address)

        if blueprint.is_nft:
            quantity = 1 if blueprint.is_erc1155 else max(blueprint.offer_start_amount, 1)
            await self.wait_for_ownership(blueprint, quantity)

        await self.ensure_conduit_approval(blueprint.offer_token, blueprint.conduit_key, protocol)

        if self._propagation_delay_s > 0:
            await self._sleep(self._propagation_delay_s)

        order = self._build_order(blueprint, consideration, counter)
        order_hash_hex = order_hash(order)
        signature = self.sign_order(order, protocol)

        tx_hash = await self._treasury.execute_via_treasury(
            protocol, 0, build_validate_calldata(order, signature), label="seaport_validate"
        )
        await self._treasury.wait(tx_hash)

        proceeds = seller_proceeds(blueprint, consideration)
        log_event(
            logger,
            "relist.validated_onchain",
            order_hash=order_hash_hex,
            tx_hash=tx_hash,
            listing_price_wei=listing_price,
            seller_proceeds_wei=proceeds,
            **order.log_fields(),
        )
        return ListingResult(order_hash=order_hash_hex, seller_proceeds_wei=proceeds, listing_price_wei=listing_price)
