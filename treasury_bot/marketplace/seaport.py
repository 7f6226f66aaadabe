"""
Seaport calldata for the two calls the bot makes against the exchange:

- buying: `fulfillOrder` (single-unit assets) or `fulfillAdvancedOrder` for one
  unit of a fungible (ERC1155) listing;
- relisting: `validate([order])`, which makes a signed order live on-chain
  without the marketplace ever seeing the signature.
"""

from __future__ import annotations

from typing import Protocol

from treasury_bot.chain import abi
from treasury_bot.marketplace.models import ITEM_TYPE_ERC1155, ITEM_TYPE_NATIVE
from treasury_bot.marketplace.order_hash import OrderComponents, order_parameters_tuple, order_tuple

SEAPORT_V1_6_ADDRESS = "0x0000000000000068F116a894984e2DB1123eB395"

# OrderType values that allow fractional fills.
_PARTIAL_ORDER_TYPES = frozenset({1, 3})


class ConduitReader(Protocol):
    async def get_conduit(self, conduit_key: str) -> tuple[str, bool]: ...


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def fill_fraction(order: OrderComponents) -> tuple[int, int]:
    """
    (numerator, denominator) that buys exactly one unit.

    Full (non-partial) orders, and orders offering a single unit, are filled whole.
    """
    if not order.offer:
        return 1, 1
    offer = order.offer[0]
    units = max(int(offer.start_amount), int(offer.end_amount), 1)
    if units <= 1 or int(order.order_type) not in _PARTIAL_ORDER_TYPES:
        return 1, 1
    return 1, units


def required_native_value(order: OrderComponents, numerator: int = 1, denominator: int = 1) -> int:
    """
    Native currency the fulfiller must attach. Amounts are taken at their maximum
    over the order's lifetime (Seaport refunds any excess) and rounded up per item
    like Seaport does for consideration fractions.
    """
    total = 0
    for item in order.consideration:
        if int(item.item_type) != ITEM_TYPE_NATIVE:
            continue
        amount = max(int(item.start_amount), int(item.end_amount))
        total += _ceil_div(amount * int(numerator), int(denominator))
    return total


def build_fulfillment(order: OrderComponents, signature: str | bytes) -> tuple[bytes, int]:
    """
    Returns (calldata, value_wei) for buying the order's offer with native currency.
    """
    is_erc1155 = bool(order.offer) and int(order.offer[0].item_type) == ITEM_TYPE_ERC1155
    if not is_erc1155:
        calldata = abi.encode_fulfill_order(order_tuple(order, signature), order.conduit_key)
        return calldata, required_native_value(order)

    numerator, denominator = fill_fraction(order)
    advanced_order = (
        order_parameters_tuple(order),
        numerator,
        denominator,
        abi.as_bytes(signature),
        b"",
    )
    calldata = abi.encode_fulfill_advanced_order(advanced_order, order.conduit_key)
    return calldata, required_native_value(order, numerator, denominator)


def build_validate_calldata(order: OrderComponents, signature: str | bytes) -> bytes:
    return abi.encode_validate([order_tuple(order, signature)])


async def resolve_approval_target(chain: ConduitReader, conduit_key: str, protocol_address: str) -> str:
    """
    The address Seaport will pull the offered asset through: Seaport itself for a
    zero conduit key (or an unknown conduit), otherwise the conduit.
    """
    if not conduit_key or abi.as_bytes32(conduit_key) == abi.as_bytes32(abi.ZERO_BYTES32):
        return protocol_address
    conduit, exists = await chain.get_conduit(conduit_key)
    if not exists:
        return protocol_address
    return conduit
