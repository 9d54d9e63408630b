from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    """Exact-content digest of encoded crop bytes, used for audit and exact duplicates."""

    return hashlib.sha256(data).hexdigest()
