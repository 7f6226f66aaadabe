"""
Seaport 1.6 order hashing (EIP-712 struct hash + signing digest).

Pure functions over immutable order records. The order hash is the struct hash of
`OrderComponents`; the signing digest wraps it with the Seaport domain separator.

`total_original_consideration_items` is carried on `OrderComponents` but is not part
of the signed struct: Seaport's `OrderComponents` type ends in `counter`, and the
total only travels on-chain in `OrderParameters` (see `order_parameters_tuple`),
where Seaport checks it against the consideration length.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from eth_abi import encode
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak

from treasury_bot.chain.abi import as_bytes, as_bytes32, checksum

SEAPORT_DOMAIN_NAME = "Seaport"
SEAPORT_DOMAIN_VERSION = "1.6"

OFFER_ITEM_TYPE = (
    "OfferItem(uint8 itemType,address token,uint256 identifierOrCriteria,uint256 startAmount,uint256 endAmount)"
)
CONSIDERATION_ITEM_TYPE = (
    "ConsiderationItem(uint8 itemType,address token,uint256 identifierOrCriteria,"
    "uint256 startAmount,uint256 endAmount,address recipient)"
)
ORDER_COMPONENTS_TYPE = (
    "OrderComponents(address offerer,address zone,OfferItem[] offer,ConsiderationItem[] consideration,"
    "uint8 orderType,uint256 startTime,uint256 endTime,bytes32 zoneHash,uint256 salt,bytes32 conduitKey,"
    "uint256 counter)"
)

OFFER_ITEM_TYPEHASH = keccak(text=OFFER_ITEM_TYPE)
CONSIDERATION_ITEM_TYPEHASH = keccak(text=CONSIDERATION_ITEM_TYPE)
# Referenced types follow the primary type in alphabetical order.
ORDER_TYPEHASH = keccak(text=ORDER_COMPONENTS_TYPE + CONSIDERATION_ITEM_TYPE + OFFER_ITEM_TYPE)

# Same type set in the JSON form `encode_typed_data` takes.
SEAPORT_EIP712_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "OrderComponents": [
        {"name": "offerer", "type": "address"},
        {"name": "zone", "type": "address"},
        {"name": "offer", "type": "OfferItem[]"},
        {"name": "consideration", "type": "ConsiderationItem[]"},
        {"name": "orderType", "type": "uint8"},
        {"name": "startTime", "type": "uint256"},
        {"name": "endTime", "type": "uint256"},
        {"name": "zoneHash", "type": "bytes32"},
        {"name": "salt", "type": "uint256"},
        {"name": "conduitKey", "type": "bytes32"},
        {"name": "counter", "type": "uint256"},
    ],
    "OfferItem": [
        {"name": "itemType", "type": "uint8"},
        {"name": "token", "type": "address"},
        {"name": "identifierOrCriteria", "type": "uint256"},
        {"name": "startAmount", "type": "uint256"},
        {"name": "endAmount", "type": "uint256"},
    ],
    "ConsiderationItem": [
        {"name": "itemType", "type": "uint8"},
        {"name": "token", "type": "address"},
        {"name": "identifierOrCriteria", "type": "uint256"},
        {"name": "startAmount", "type": "uint256"},
        {"name": "endAmount", "type": "uint256"},
        {"name": "recipient", "type": "address"},
    ],
}


def to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


@dataclass(frozen=True, slots=True)
class OfferItem:
    item_type: int
    token: str
    identifier_or_criteria: int
    start_amount: int
    end_amount: int

    def as_tuple(self) -> tuple[Any, ...]:
        return (
            int(self.item_type),
            checksum(self.token),
            int(self.identifier_or_criteria),
            int(self.start_amount),
            int(self.end_amount),
        )


@dataclass(frozen=True, slots=True)
class ConsiderationItem:
    item_type: int
    token: str
    identifier_or_criteria: int
    start_amount: int
    end_amount: int
    recipient: str

    def as_tuple(self) -> tuple[Any, ...]:
        return (
            int(self.item_type),
            checksum(self.token),
            int(self.identifier_or_criteria),
            int(self.start_amount),
            int(self.end_amount),
            checksum(self.recipient),
        )


@dataclass(frozen=True, slots=True)
class OrderComponents:
    offerer: str
    zone: str
    offer: tuple[OfferItem, ...]
    consideration: tuple[ConsiderationItem, ...]
    order_type: int
    start_time: int
    end_time: int
    zone_hash: str
    salt: int
    conduit_key: str
    total_original_consideration_items: int
    counter: int = field(default=0)

    def log_fields(self) -> dict[str, object]:
        return {
            "offerer": self.offerer,
            "zone": self.zone,
            "order_type": self.order_type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "conduit_key": self.conduit_key,
            "counter": self.counter,
            "offer_items": len(self.offer),
            "consideration_items": len(self.consideration),
        }


def hash_offer_item(item: OfferItem) -> bytes:
    return keccak(
        encode(
            ["bytes32", "uint8", "address", "uint256", "uint256", "uint256"],
            [OFFER_ITEM_TYPEHASH, *item.as_tuple()],
        )
    )


def hash_consideration_item(item: ConsiderationItem) -> bytes:
    return keccak(
        encode(
            ["bytes32", "uint8", "address", "uint256", "uint256", "uint256", "address"],
            [CONSIDERATION_ITEM_TYPEHASH, *item.as_tuple()],
        )
    )


def hash_struct_array(hashes: Sequence[bytes]) -> bytes:
    # Empty arrays hash to keccak(""), never to zero.
    return keccak(b"".join(bytes(h) for h in hashes))


def order_struct_hash(order: OrderComponents) -> bytes:
    return keccak(
        encode(
            [
                "bytes32",
                "address",
                "address",
                "bytes32",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "bytes32",
                "uint256",
                "bytes32",
                "uint256",
            ],
            [
                ORDER_TYPEHASH,
                checksum(order.offerer),
                checksum(order.zone),
                hash_struct_array([hash_offer_item(i) for i in order.offer]),
                hash_struct_array([hash_consideration_item(i) for i in order.consideration]),
                int(order.order_type),
                int(order.start_time),
                int(order.end_time),
                as_bytes32(order.zone_hash),
                int(order.salt),
                as_bytes32(order.conduit_key),
                int(order.counter),
            ],
        )
    )


def order_hash(order: OrderComponents) -> str:
    """
    Seaport order hash (the value `getOrderHash` returns and marketplaces index by).
    """
    return to_hex(order_struct_hash(order))


def order_typed_data(order: OrderComponents, *, chain_id: int, seaport_address: str) -> dict[str, Any]:
    """
    Full EIP-712 payload for `order` under the Seaport 1.6 domain (what wallets and
    seaport-js sign).
    """
    return {
        "types": SEAPORT_EIP712_TYPES,
        "primaryType": "OrderComponents",
        "domain": {
            "name": SEAPORT_DOMAIN_NAME,
            "version": SEAPORT_DOMAIN_VERSION,
            "chainId": int(chain_id),
            "verifyingContract": checksum(seaport_address),
        },
        "message": {
            "offerer": checksum(order.offerer),
            "zone": checksum(order.zone),
            "offer": [
                {
                    "itemType": int(i.item_type),
                    "token": checksum(i.token),
                    "identifierOrCriteria": int(i.identifier_or_criteria),
                    "startAmount": int(i.start_amount),
                    "endAmount": int(i.end_amount),
                }
                for i in order.offer
            ],
            "consideration": [
                {
                    "itemType": int(i.item_type),
                    "token": checksum(i.token),
                    "identifierOrCriteria": int(i.identifier_or_criteria),
                    "startAmount": int(i.start_amount),
                    "endAmount": int(i.end_amount),
                    "recipient": checksum(i.recipient),
                }
                for i in order.consideration
            ],
            "orderType": int(order.order_type),
            "startTime": int(order.start_time),
            "endTime": int(order.end_time),
            "zoneHash": as_bytes32(order.zone_hash),
            "salt": int(order.salt),
            "conduitKey": as_bytes32(order.conduit_key),
            "counter": int(order.counter),
        },
    }


def order_signable_message(order: OrderComponents, *, chain_id: int, seaport_address: str) -> SignableMessage:
    return encode_typed_data(full_message=order_typed_data(order, chain_id=chain_id, seaport_address=seaport_address))


def order_parameters_tuple(order: OrderComponents) -> tuple[Any, ...]:
    """
    ABI shape of Seaport `OrderParameters` (no counter; validate() reads it on-chain).
    """
    return (
        checksum(order.offerer),
        checksum(order.zone),
        [i.as_tuple() for i in order.offer],
        [i.as_tuple() for i in order.consideration],
        int(order.order_type),
        int(order.start_time),
        int(order.end_time),
        as_bytes32(order.zone_hash),
        int(order.salt),
        as_bytes32(order.conduit_key),
        int(order.total_original_consideration_items),
    )


def order_tuple(order: OrderComponents, signature: str | bytes) -> tuple[Any, ...]:
    return (order_parameters_tuple(order), as_bytes(signature))
