"""Entity identifiers: 24 lowercase hex characters, time-prefixed."""
from __future__ import annotations

import re
import secrets
import time
from typing import Callable, Optional

OBJECT_ID_PATTERN = re.compile(r"[0-9a-f]{24}")
MAX_ATTEMPTS = 16


def generate_object_id(now: Optional[float] = None) -> str:
    """
    Build an id from 8 hex chars of epoch seconds, a 6 hex "machine" part,
    a 4 hex "process" part and a 6 hex counter (all random).
    """
    seconds = int(time.time() if now is None else now)
    return (
        f"{seconds & 0xFFFFFFFF:08x}"
        f"{secrets.randbelow(0xFFFFFF + 1):06x}"
        f"{secrets.randbelow(0xFFFF + 1):04x}"
        f"{secrets.randbelow(0xFFFFFF + 1):06x}"
    )


def new_object_id(exists: Callable[[str], bool]) -> str:
    """Generate an id that `exists` does not report as taken."""
    for _ in range(MAX_ATTEMPTS):
        candidate = generate_object_id()
        if not exists(candidate):
            return candidate
    raise RuntimeError("Could not generate a unique identifier")


def is_valid_object_id(value: object) -> bool:
    """Return True when value is a 24 character lowercase hex string."""
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.fullmatch(value))
