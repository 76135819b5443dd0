from __future__ import annotations

from hashlib import sha256
import json
from typing import Any


def floor_ms_to_bucket(ts_ms: int, bucket_ms: int) -> int:
    """Floor a POSIX millisecond timestamp to the start of its bucket."""
    if bucket_ms <= 0:
        raise ValueError("bucket_ms must be positive")
    return (int(ts_ms) // bucket_ms) * bucket_ms


def stable_payload_hash(payload: Any) -> str:
    """Deterministic SHA-256 over canonical JSON of payload."""
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return sha256(data).hexdigest()


def operation_dedupe_key(
    operation: str,
    actor: str,
    game_id: int | None,
    now_ms: int,
    bucket_ms: int,
) -> str:
    """Event-log key: {operation}:{actor}:{game_id}:{ts_bucket}.

    Two runs of the same operation by the same actor inside one bucket share
    a key, which lets log consumers spot accidental double submissions.
    """
    bucket = floor_ms_to_bucket(now_ms, bucket_ms)
    game = "-" if game_id is None else str(int(game_id))
    return f"{operation}:{actor}:{game}:{bucket}"


__all__ = [
    "floor_ms_to_bucket",
    "stable_payload_hash",
    "operation_dedupe_key",
]
