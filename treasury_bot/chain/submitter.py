from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from eth_account.signers.local import LocalAccount
from web3.exceptions import TimeExhausted, TransactionNotFound

from treasury_bot.chain import abi
from treasury_bot.chain.fee_policy import FeeEscalationPolicy, error_message, scale_fee
from treasury_bot.chain.rpc import FeeEstimate
from treasury_bot.common.logging import log_event

logger = logging.getLogger(__name__)


class TransactionRevertedError(RuntimeError):
    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        super().__init__(f"Transaction reverted: {tx_hash}")
        self.tx_hash = tx_hash
        self.receipt = receipt


class SubmitChain(Protocol):
    async def pending_nonce(self, address: str) -> int: ...

    async def estimate_eip1559_fees(self) -> FeeEstimate: ...

    async def gas_price(self) -> int: ...

    async def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    async def send_raw_transaction(self, raw: bytes) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, *, timeout_s: float = ...) -> Any: ...


@dataclass(frozen=True, slots=True)
class TxIntent:
    to: str
    data: bytes
    value_wei: int = 0
    label: str = "tx"


class TransactionSubmitter:
    """
    Signs and sends operator transactions with a locally cached nonce.

    - First use reads the pending transaction count; each accepted send bumps the
      cache by one.
    - Underpriced / stale-nonce rejections are retried with the SAME nonce at the
      next fee multiplier from the shared `FeeEscalationPolicy`.
    - "nonce too low" drops the cache so the retry re-reads the chain.
    """

    def __init__(
        self,
        chain: SubmitChain,
        account: LocalAccount,
        *,
        chain_id: int,
        fee_policy: Optional[FeeEscalationPolicy] = None,
        receipt_timeout_s: float = 180.0,
    ) -> None:
        self._chain = chain
        self._account = account
        self._chain_id = int(chain_id)
        self._fee_policy = fee_policy or FeeEscalationPolicy()
        self._receipt_timeout_s = float(receipt_timeout_s)
        self._cached_nonce: Optional[int] = None

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def fee_policy(self) -> FeeEscalationPolicy:
        return self._fee_policy

    @property
    def cached_nonce(self) -> Optional[int]:
        return self._cached_nonce

    def reset_nonce_cache(self) -> None:
        self._cached_nonce = None

    async def acquire_nonce(self) -> int:
        if self._cached_nonce is None:
            self._cached_nonce = await self._chain.pending_nonce(self.address)
        return self._cached_nonce

    def _increment_nonce(self) -> None:
        if self._cached_nonce is not None:
            self._cached_nonce += 1

    async def _fee_overrides(self, multiplier_pct: int) -> FeeEstimate:
        try:
            fees = await self._chain.estimate_eip1559_fees()
            return FeeEstimate(
                max_fee_per_gas=scale_fee(fees.max_fee_per_gas, multiplier_pct),
                max_priority_fee_per_gas=scale_fee(fees.max_priority_fee_per_gas, multiplier_pct),
            )
        except Exception as e:
            # Flat gas price for both fields when the node can't quote EIP-1559 fees.
            logger.debug("tx.fee_estimate_fallback err=%s", e)
            adjusted = scale_fee(await self._chain.gas_price(), multiplier_pct)
            return FeeEstimate(max_fee_per_gas=adjusted, max_priority_fee_per_gas=adjusted)

    async def _send_once(self, intent: TxIntent, nonce: int, multiplier_pct: int) -> str:
        fees = await self._fee_overrides(multiplier_pct)
        tx: dict[str, Any] = {
            "type": 2,
            "chainId": self._chain_id,
            "nonce": int(nonce),
            "from": self.address,
            "to": abi.checksum(intent.to),
            "data": bytes(intent.data),
            "value": int(intent.value_wei),
            "maxFeePerGas": fees.max_fee_per_gas,
            "maxPriorityFeePerGas": fees.max_priority_fee_per_gas,
        }
        tx["gas"] = await self._chain.estimate_gas(dict(tx))
        tx.pop("from")
        signed = self._account.sign_transaction(tx)
        return await self._chain.send_raw_transaction(signed.raw_transaction)

    async def submit(self, intent: TxIntent) -> str:
        nonce = await self.acquire_nonce()
        policy = self._fee_policy
        for attempt, multiplier in enumerate(policy.multipliers):
            try:
                tx_hash = await self._send_once(intent, nonce, multiplier)
            except Exception as e:
                message = error_message(e)
                if not policy.should_retry(message, attempt):
                    raise
                if policy.is_stale_nonce(message):
                    self.reset_nonce_cache()
                log_event(
                    logger,
                    "tx.fee_retry",
                    severity="WARNING",
                    label=intent.label,
                    nonce=nonce,
                    attempt_multiplier_pct=multiplier,
                    next_multiplier_pct=policy.next_multiplier(attempt),
                    reason=message,
                )
                continue

            self._increment_nonce()
            log_event(
                logger,
                "tx.submitted",
                label=intent.label,
                tx_hash=tx_hash,
                nonce=nonce,
                to=intent.to,
                value_wei=intent.value_wei,
                multiplier_pct=multiplier,
            )
            return tx_hash

        # Unreachable: the last attempt either returns or raises.
        raise RuntimeError("fee escalation exhausted without a result")

    async def wait(self, tx_hash: str) -> Any:
        try:
            receipt = await self._chain.wait_for_receipt(tx_hash, timeout_s=self._receipt_timeout_s)
        except (TransactionNotFound, TimeExhausted):
            # The tx may have been dropped; the next submit must re-read the nonce.
            self.reset_nonce_cache()
            raise

        if int(receipt["status"]) != 1:
            log_event(logger, "tx.reverted", severity="ERROR", tx_hash=tx_hash)
            raise TransactionRevertedError(tx_hash, receipt)
        return receipt


class TreasuryClient:
    """
    Treasury contract entry points, all routed through one `TransactionSubmitter`.
    """

    def __init__(self, submitter: TransactionSubmitter, treasury_address: str) -> None:
        self._submitter = submitter
        self._treasury = abi.checksum(treasury_address)

    @property
    def address(self) -> str:
        return self._treasury

    @property
    def submitter(self) -> TransactionSubmitter:
        return self._submitter

    async def execute_via_treasury(self, router: str, value_wei: int, calldata: bytes, *, label: str = "execute") -> str:
        """
        `executeSeaport(router, value, data)`: the treasury calls `router` with
        `value_wei` from its own balance. The operator transaction carries no value.
        """
        return await self._submitter.submit(
            TxIntent(
                to=self._treasury,
                data=abi.encode_execute_seaport(router, value_wei, calldata),
                value_wei=0,
                label=label,
            )
        )

    async def set_collection_approval(self, collection: str, operator: str, approved: bool) -> str:
        return await self._submitter.submit(
            TxIntent(
                to=self._treasury,
                data=abi.encode_set_collection_approval(collection, operator, approved),
                value_wei=0,
                label="set_collection_approval",
            )
        )

    async def wait(self, tx_hash: str) -> Any:
        return await self._submitter.wait(tx_hash)
