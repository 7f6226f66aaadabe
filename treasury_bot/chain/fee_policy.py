from __future__ import annotations

from dataclasses import dataclass

# Percent of the estimated fee to bid on each attempt.
DEFAULT_FEE_MULTIPLIERS: tuple[int, ...] = (100, 120, 140)

_RETRYABLE_MARKERS: tuple[str, ...] = (
    "replacement transaction underpriced",
    "nonce too low",
    "fee too low",
    "max fee per gas less than block base fee",
)
_STALE_NONCE_MARKER = "nonce too low"


def scale_fee(value: int, multiplier_pct: int) -> int:
    """
    Ceiling of `value * multiplier_pct / 100`, in integer arithmetic.
    """
    return (int(value) * int(multiplier_pct) + 99) // 100


def error_message(error: BaseException) -> str:
    return str(error).lower()


@dataclass(frozen=True)
class FeeEscalationPolicy:
    """
    Retry schedule for underpriced / stale-nonce send failures.

    One instance is shared by every submitting call path, so treasury calls and
    approval calls escalate identically.
    """

    multipliers: tuple[int, ...] = DEFAULT_FEE_MULTIPLIERS

    def __post_init__(self) -> None:
        if not self.multipliers:
            raise ValueError("multipliers must not be empty")
        if any(int(m) <= 0 for m in self.multipliers):
            raise ValueError("multipliers must be > 0")

    @property
    def attempts(self) -> int:
        return len(self.multipliers)

    def is_last(self, attempt_index: int) -> bool:
        return attempt_index >= len(self.multipliers) - 1

    def next_multiplier(self, attempt_index: int) -> int | None:
        if self.is_last(attempt_index):
            return None
        return self.multipliers[attempt_index + 1]

    @staticmethod
    def is_retryable(message: str) -> bool:
        msg = message.lower()
        return any(marker in msg for marker in _RETRYABLE_MARKERS)

    @staticmethod
    def is_stale_nonce(message: str) -> bool:
        return _STALE_NONCE_MARKER in message.lower()

    def should_retry(self, message: str, attempt_index: int) -> bool:
        return self.is_retryable(message) and not self.is_last(attempt_index)
