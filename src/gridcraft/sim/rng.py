from __future__ import annotations

import hashlib

LUCK_DENOMINATOR = 2**64


def luck(key: str) -> float:
    """Deterministic pseudo-random value in [0, 1) for an arbitrary string key."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=False) / LUCK_DENOMINATOR
