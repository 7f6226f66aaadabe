"""
In-memory stand-ins for the chain and the treasury contract.

They expose the same coroutine names as `ChainClient` / `TreasuryClient`, keyed on
lower-cased addresses, and record every call so tests can assert on side effects.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from eth_abi import encode

from treasury_bot.chain.abi import WALLET_TAX_SENT_TOPIC, ZERO_ADDRESS, ZERO_BYTES32
from treasury_bot.marketplace.models import ConsiderationBlueprint, ListingBlueprint
from treasury_bot.marketplace.seaport import SEAPORT_V1_6_ADDRESS

TREASURY = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
ROUTER = "0x3333333333333333333333333333333333333333"
WETH = "0x4444444444444444444444444444444444444444"
COLLECTION = "0x5555555555555555555555555555555555555555"
SELLER = "0x6666666666666666666666666666666666666666"
FEE_RECIPIENT = "0x7777777777777777777777777777777777777777"
BUYER = "0x8888888888888888888888888888888888888888"
BURN = "0x000000000000000000000000000000000000dEaD"

# Well-known throwaway key (eth-account docs); never funded.
OPERATOR_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def wallet_tax_log(recipient: str, amount: int) -> dict[str, Any]:
    return {
        "address": TOKEN,
        "topics": [WALLET_TAX_SENT_TOPIC, "0x" + "00" * 31 + "01"],
        "data": encode(["address", "uint256"], [recipient, amount]),
    }


OPENSEA_CONDUIT_KEY = "0x0000007b02230091a7ed01230072f7006a004d60a8d4e71d599b8104250f0000"
OPENSEA_CONDUIT = "0x1E0049783F008A0085193E00003D00cd54003c71"


def listing_blueprint(
    *,
    item_type: int = 2,
    token_id: int = 42,
    conduit_key: str = OPENSEA_CONDUIT_KEY,
    consideration: Optional[tuple[ConsiderationBlueprint, ...]] = None,
) -> ListingBlueprint:
    """
    Blueprint of a 1000 wei native-currency listing: 975 to the seller, 25 to a fee recipient.
    """
    if consideration is None:
        consideration = (
            ConsiderationBlueprint(0, ZERO_ADDRESS, 0, 975, SELLER, True),
            ConsiderationBlueprint(0, ZERO_ADDRESS, 0, 25, FEE_RECIPIENT, False),
        )
    return ListingBlueprint(
        protocol_address=SEAPORT_V1_6_ADDRESS,
        offer_token=COLLECTION,
        offer_identifier=token_id,
        offer_item_type=item_type,
        offer_start_amount=1,
        offer_end_amount=1,
        conduit_key=conduit_key,
        zone=ZERO_ADDRESS,
        zone_hash=ZERO_BYTES32,
        order_type=0,
        consideration=consideration,
        total_original_consideration_items=len(consideration),
        original_consideration_total=sum(c.original_amount for c in consideration),
        counter=0,
    )


class FakeChain:
    def __init__(self) -> None:
        self.head = 0
        self.logs: list[tuple[int, dict[str, Any]]] = []
        self.owners: dict[tuple[str, int], str] = {}
        self.erc1155: dict[tuple[str, str, int], int] = {}
        self.erc20: dict[tuple[str, str], int] = {}
        self.allowed_collections: set[str] = set()
        self.allowed_routers: set[str] = set()
        self.approvals: set[tuple[str, str, str]] = set()
        self.counter = 0
        self.conduits: dict[str, tuple[str, bool]] = {}
        self.failures: dict[str, BaseException] = {}
        self.get_logs_calls: list[tuple[int, int]] = []
        self.reads: list[str] = []

    def _read(self, name: str) -> None:
        self.reads.append(name)
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    async def block_number(self) -> int:
        self._read("block_number")
        return self.head

    async def get_logs(self, *, address: str, topics: list[Any], from_block: int, to_block: int) -> list[Any]:
        self._read("get_logs")
        self.get_logs_calls.append((from_block, to_block))
        return [log for block, log in self.logs if from_block <= block <= to_block]

    async def owner_of(self, collection: str, token_id: int) -> str:
        self._read("owner_of")
        return self.owners[(collection.lower(), int(token_id))]

    async def erc1155_balance_of(self, collection: str, owner: str, token_id: int) -> int:
        self._read("erc1155_balance_of")
        return self.erc1155.get((collection.lower(), owner.lower(), int(token_id)), 0)

    async def erc20_balance_of(self, token: str, owner: str) -> int:
        self._read("erc20_balance_of")
        return self.erc20.get((token.lower(), owner.lower()), 0)

    async def is_approved_for_all(self, collection: str, owner: str, operator: str) -> bool:
        self._read("is_approved_for_all")
        return (collection.lower(), owner.lower(), operator.lower()) in self.approvals

    async def treasury_collection_allowed(self, treasury: str, collection: str) -> bool:
        self._read("treasury_collection_allowed")
        return collection.lower() in self.allowed_collections

    async def treasury_router_allowed(self, treasury: str, router: str) -> bool:
        self._read("treasury_router_allowed")
        return router.lower() in self.allowed_routers

    async def seaport_counter(self, seaport: str, offerer: str) -> int:
        self._read("seaport_counter")
        return self.counter

    async def get_conduit(self, conduit_key: str) -> tuple[str, bool]:
        self._read("get_conduit")
        return self.conduits.get(conduit_key.lower(), ("0x0000000000000000000000000000000000000000", False))


class FakeTreasury:
    """
    `on_execute(router, value_wei, calldata, label)` runs for every treasury call,
    so a test can mutate `FakeChain` state (deliver tokens, move ownership) or raise.
    """

    def __init__(
        self,
        address: str = TREASURY,
        on_execute: Optional[Callable[[str, int, bytes, str], None]] = None,
    ) -> None:
        self.address = address
        self.on_execute = on_execute
        self.executed: list[tuple[str, int, bytes, str]] = []
        self.approvals: list[tuple[str, str, bool]] = []
        self.waited: list[str] = []
        self._tx_count = 0

    def _next_hash(self) -> str:
        self._tx_count += 1
        return "0x" + f"{self._tx_count:064x}"

    def labels(self) -> list[str]:
        return [label for _, _, _, label in self.executed]

    async def execute_via_treasury(self, router: str, value_wei: int, calldata: bytes, *, label: str = "execute") -> str:
        self.executed.append((router, int(value_wei), bytes(calldata), label))
        if self.on_execute is not None:
            self.on_execute(router, int(value_wei), bytes(calldata), label)
        return self._next_hash()

    async def set_collection_approval(self, collection: str, operator: str, approved: bool) -> str:
        self.approvals.append((collection, operator, approved))
        return self._next_hash()

    async def wait(self, tx_hash: str) -> dict[str, Any]:
        self.waited.append(tx_hash)
        return {"status": 1, "transactionHash": tx_hash}


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(float(seconds))


class FakeShutdown:
    """
    `ShutdownSignal` stand-in: records sleeps instead of waiting and can request a
    stop after a number of them.
    """

    def __init__(self, *, stop_after_sleeps: Optional[int] = None) -> None:
        self.sleeps: list[float] = []
        self._stop_after = stop_after_sleeps
        self.requested = False

    async def sleep_or_shutdown(self, timeout_s: float) -> bool:
        self.sleeps.append(timeout_s)
        if self._stop_after is not None and len(self.sleeps) >= self._stop_after:
            self.requested = True
        return self.requested
