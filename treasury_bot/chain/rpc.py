from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3

from treasury_bot.chain import abi
from treasury_bot.chain.fee_policy import scale_fee

logger = logging.getLogger(__name__)

# Seaport's canonical conduit controller (same address on every supported chain).
SEAPORT_CONDUIT_CONTROLLER = "0x00000000F9490004C11Cef243f5400493c00Ad63"

# maxFeePerGas = base fee * 120% + priority fee.
_BASE_FEE_HEADROOM_PCT = 120


@dataclass(frozen=True, slots=True)
class FeeEstimate:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


class ChainClient:
    """
    Thin async adapter over web3.py.

    Every read the services need is a method here so tests can replace the whole
    chain with a fake exposing the same coroutine names.
    """

    def __init__(self, rpc_url: str, *, request_timeout_s: float = 30.0, w3: Optional[AsyncWeb3] = None) -> None:
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": float(request_timeout_s)}))

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    # --- raw RPC ---------------------------------------------------------------

    async def block_number(self) -> int:
        return int(await self._w3.eth.block_number)

    async def call(self, to: str, data: bytes, block: str | int = "latest") -> bytes:
        result = await self._w3.eth.call({"to": abi.checksum(to), "data": data}, block)
        return bytes(result)

    async def get_logs(self, *, address: str, topics: list[Any], from_block: int, to_block: int) -> list[Any]:
        return list(
            await self._w3.eth.get_logs(
                {
                    "address": abi.checksum(address),
                    "topics": topics,
                    "fromBlock": int(from_block),
                    "toBlock": int(to_block),
                }
            )
        )

    async def pending_nonce(self, address: str) -> int:
        return int(await self._w3.eth.get_transaction_count(abi.checksum(address), "pending"))

    async def estimate_eip1559_fees(self) -> FeeEstimate:
        latest = await self._w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            raise ValueError("latest block has no baseFeePerGas")
        priority = int(await self._w3.eth.max_priority_fee)
        return FeeEstimate(
            max_fee_per_gas=scale_fee(int(base_fee), _BASE_FEE_HEADROOM_PCT) + priority,
            max_priority_fee_per_gas=priority,
        )

    async def gas_price(self) -> int:
        return int(await self._w3.eth.gas_price)

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return int(await self._w3.eth.estimate_gas(tx))

    async def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = await self._w3.eth.send_raw_transaction(raw)
        return "0x" + bytes(tx_hash).hex()

    async def wait_for_receipt(self, tx_hash: str, *, timeout_s: float = 180.0) -> Any:
        return await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=float(timeout_s))

    # --- contract reads ----------------------------------------------------------

    async def owner_of(self, collection: str, token_id: int) -> str:
        return abi.decode_address(await self.call(collection, abi.encode_owner_of(token_id)))

    async def erc1155_balance_of(self, collection: str, owner: str, token_id: int) -> int:
        return abi.decode_uint(await self.call(collection, abi.encode_erc1155_balance_of(owner, token_id)))

    async def erc20_balance_of(self, token: str, owner: str) -> int:
        return abi.decode_uint(await self.call(token, abi.encode_erc20_balance_of(owner)))

    async def is_approved_for_all(self, collection: str, owner: str, operator: str) -> bool:
        return abi.decode_bool(await self.call(collection, abi.encode_is_approved_for_all(owner, operator)))

    async def treasury_collection_allowed(self, treasury: str, collection: str) -> bool:
        return abi.decode_bool(await self.call(treasury, abi.encode_collections(collection)))

    async def treasury_router_allowed(self, treasury: str, router: str) -> bool:
        return abi.decode_bool(await self.call(treasury, abi.encode_routers(router)))

    async def seaport_counter(self, seaport: str, offerer: str) -> int:
        return abi.decode_uint(await self.call(seaport, abi.encode_get_counter(offerer)))

    async def get_conduit(self, conduit_key: str, *, controller: str = SEAPORT_CONDUIT_CONTROLLER) -> tuple[str, bool]:
        return abi.decode_conduit(await self.call(controller, abi.encode_get_conduit(conduit_key)))
