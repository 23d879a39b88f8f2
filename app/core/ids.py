# core/ids.py
"""
Message identifiers and timestamps.

Identifier format: <epoch milliseconds>-<9 random base36 chars>, e.g.
"1718000000000-k3j9x0a1b". The time prefix keeps identifiers roughly
sortable; the random suffix (36**9 ≈ 10**14 values) makes two identifiers
minted in the same millisecond practically never collide.
"""

import secrets
import string
import time
from datetime import datetime, timezone

_ALPHABET = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 9


def generate_message_id() -> str:
    """Return a fresh message identifier."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{millis}-{suffix}"


def utc_now_iso() -> str:
    """
    Current UTC time as ISO-8601 with millisecond precision and a Z suffix,
    matching what browser clients produce with Date.toISOString().
    """
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
