from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

TRUTHY = {"1", "true", "yes", "on"}

# Halts every chain write (purchase, relist, buyback, burn). Reads keep running
# so the tax cursor and listing reconciliation stay current.
KILL_SWITCH_ENV = "EXECUTION_HALTED"

# Optional: point to a file whose first line is truthy/falsey.
# Lets an operator halt a running bot without a restart.
KILL_SWITCH_FILE_ENV = "EXECUTION_HALTED_FILE"


def _is_truthy(value: object | None) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY


def _read_first_line(path: str) -> str:
    data = Path(path).read_text(encoding="utf-8", errors="ignore")
    return (data.splitlines()[0] if data else "").strip()


def get_kill_switch_state() -> Tuple[bool, Optional[str]]:
    """
    Returns (enabled, source).

    Source values:
    - "env:EXECUTION_HALTED"
    - "file:<path>" (from EXECUTION_HALTED_FILE)
    """
    if _is_truthy(os.getenv(KILL_SWITCH_ENV)):
        return True, f"env:{KILL_SWITCH_ENV}"

    file_path = (os.getenv(KILL_SWITCH_FILE_ENV) or "").strip()
    if file_path:
        try:
            if _is_truthy(_read_first_line(file_path)):
                return True, f"file:{file_path}"
        except OSError:
            # Unreadable file => do not halt (env var still halts).
            return False, None

    return False, None
