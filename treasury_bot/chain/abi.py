"""
Calldata encoders and return-value decoders for every contract the bot touches.

Only the handful of functions actually called are covered; encoding goes through
eth-abi with explicit type strings rather than full JSON ABIs.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_bytes, to_checksum_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = "0x" + "00" * 32

# Seaport struct shapes (tuple type strings as eth-abi expects them).
OFFER_ITEM_ABI = "(uint8,address,uint256,uint256,uint256)"
CONSIDERATION_ITEM_ABI = "(uint8,address,uint256,uint256,uint256,address)"
ORDER_PARAMETERS_ABI = (
    f"(address,address,{OFFER_ITEM_ABI}[],{CONSIDERATION_ITEM_ABI}[],"
    "uint8,uint256,uint256,bytes32,uint256,bytes32,uint256)"
)
ORDER_ABI = f"({ORDER_PARAMETERS_ABI},bytes)"
ADVANCED_ORDER_ABI = f"({ORDER_PARAMETERS_ABI},uint120,uint120,bytes,bytes)"
CRITERIA_RESOLVER_ABI = "(uint256,uint8,uint256,uint256,bytes32[])"

WALLET_TAX_SENT_SIGNATURE = "WalletTaxSent(uint8,address,uint256)"
WALLET_TAX_SENT_TOPIC = "0x" + keccak(text=WALLET_TAX_SENT_SIGNATURE).hex()


def checksum(address: str) -> str:
    return to_checksum_address(address)


def same_address(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and str(a).lower() == str(b).lower()


def as_bytes32(value: str | bytes | int) -> bytes:
    if isinstance(value, int):
        return value.to_bytes(32, "big")
    raw = bytes(value) if isinstance(value, (bytes, bytearray)) else to_bytes(hexstr=value)
    if len(raw) > 32:
        raise ValueError(f"bytes32 value too long ({len(raw)} bytes)")
    return raw.rjust(32, b"\x00")


def as_bytes(value: str | bytes | None) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return to_bytes(hexstr=value)


def encode_call(signature: str, arg_types: Sequence[str], args: Sequence[Any]) -> bytes:
    return function_signature_to_4byte_selector(signature) + encode(list(arg_types), list(args))


def _call(name: str, arg_types: Sequence[str], args: Sequence[Any]) -> bytes:
    return encode_call(f"{name}({','.join(arg_types)})", arg_types, args)


# --- Treasury -----------------------------------------------------------------


def encode_execute_seaport(router: str, value_wei: int, data: bytes) -> bytes:
    return _call("executeSeaport", ["address", "uint256", "bytes"], [checksum(router), int(value_wei), bytes(data)])


def encode_set_collection_approval(collection: str, operator: str, approved: bool) -> bytes:
    return _call(
        "setCollectionApproval",
        ["address", "address", "bool"],
        [checksum(collection), checksum(operator), bool(approved)],
    )


def encode_collections(collection: str) -> bytes:
    return _call("collections", ["address"], [checksum(collection)])


def encode_routers(router: str) -> bytes:
    return _call("routers", ["address"], [checksum(router)])


# --- Tokens -------------------------------------------------------------------


def encode_erc20_balance_of(owner: str) -> bytes:
    return _call("balanceOf", ["address"], [checksum(owner)])


def encode_transfer(recipient: str, amount: int) -> bytes:
    return _call("transfer", ["address", "uint256"], [checksum(recipient), int(amount)])


def encode_owner_of(token_id: int) -> bytes:
    return _call("ownerOf", ["uint256"], [int(token_id)])


def encode_is_approved_for_all(owner: str, operator: str) -> bytes:
    return _call("isApprovedForAll", ["address", "address"], [checksum(owner), checksum(operator)])


def encode_erc1155_balance_of(owner: str, token_id: int) -> bytes:
    return _call("balanceOf", ["address", "uint256"], [checksum(owner), int(token_id)])


# --- Buyback router -----------------------------------------------------------


def encode_swap_exact_eth_for_tokens(amount_out_min: int, path: Iterable[str], to: str, deadline: int) -> bytes:
    return _call(
        "swapExactETHForTokensSupportingFeeOnTransferTokens",
        ["uint256", "address[]", "address", "uint256"],
        [int(amount_out_min), [checksum(p) for p in path], checksum(to), int(deadline)],
    )


# --- Seaport / conduit controller --------------------------------------------


def encode_get_counter(offerer: str) -> bytes:
    return _call("getCounter", ["address"], [checksum(offerer)])


def encode_get_conduit(conduit_key: str | bytes) -> bytes:
    return _call("getConduit", ["bytes32"], [as_bytes32(conduit_key)])


def encode_validate(orders: Sequence[tuple[Any, ...]]) -> bytes:
    """
    `orders` are `(parameters_tuple, signature_bytes)` pairs.
    """
    return _call("validate", [f"{ORDER_ABI}[]"], [list(orders)])


def encode_fulfill_order(order: tuple[Any, ...], fulfiller_conduit_key: str | bytes) -> bytes:
    return _call("fulfillOrder", [ORDER_ABI, "bytes32"], [order, as_bytes32(fulfiller_conduit_key)])


def encode_fulfill_advanced_order(
    advanced_order: tuple[Any, ...],
    fulfiller_conduit_key: str | bytes,
    recipient: str = ZERO_ADDRESS,
) -> bytes:
    # No criteria resolvers: only fully specified (non-criteria) orders are bought.
    return _call(
        "fulfillAdvancedOrder",
        [ADVANCED_ORDER_ABI, f"{CRITERIA_RESOLVER_ABI}[]", "bytes32", "address"],
        [advanced_order, [], as_bytes32(fulfiller_conduit_key), checksum(recipient)],
    )


# --- Decoders -----------------------------------------------------------------


def decode_uint(data: bytes) -> int:
    (value,) = decode(["uint256"], bytes(data))
    return int(value)


def decode_bool(data: bytes) -> bool:
    (value,) = decode(["bool"], bytes(data))
    return bool(value)


def decode_address(data: bytes) -> str:
    (value,) = decode(["address"], bytes(data))
    return checksum(value)


def decode_conduit(data: bytes) -> tuple[str, bool]:
    conduit, exists = decode(["address", "bool"], bytes(data))
    return checksum(conduit), bool(exists)


def decode_wallet_tax_sent(log: Mapping[str, Any]) -> tuple[str, int]:
    """
    Returns (recipient, amount). `id` is indexed and not needed.
    """
    recipient, amount = decode(["address", "uint256"], as_bytes(log["data"]))
    return checksum(recipient), int(amount)
