"""
Graceful shutdown for the asyncio loop driver.

- A per-process `asyncio.Event` is set on SIGTERM/SIGINT (best-effort).
- `sleep_or_shutdown` is used in place of `asyncio.sleep` at tick boundaries so
  a stop request ends the loop without waiting out the full interval.

A shutdown request never interrupts an in-flight step: the current tick
finishes its network calls and persists before the loop observes the event.
"""

from __future__ import annotations

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)


class ShutdownSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._installed = False

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self, *, reason: str | None = None) -> None:
        """
        Programmatically request shutdown (idempotent).
        """
        if not self._event.is_set():
            logger.info("shutdown.requested reason=%s", reason or "unspecified")
        self._event.set()

    def install_signal_handlers(self) -> None:
        """
        Best-effort SIGTERM/SIGINT -> `request()`. Must run inside the event loop.
        """
        if self._installed:
            return
        loop = asyncio.get_running_loop()
        for s in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(s, lambda signum=s: self.request(reason=f"signal:{int(signum)}"))
            except (NotImplementedError, RuntimeError):
                # Windows / non-main thread: fall back to KeyboardInterrupt semantics.
                return
        self._installed = True

    async def sleep_or_shutdown(self, timeout_s: float) -> bool:
        """
        Interruptible sleep.

        Returns:
        - True if shutdown was requested (event set)
        - False if the timeout elapsed without a shutdown request
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, float(timeout_s)))
        except asyncio.TimeoutError:
            return False
        return True
