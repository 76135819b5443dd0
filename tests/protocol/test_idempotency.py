"""Tests for protocol/idempotency.py - Event dedupe keys and payload hashing."""

from __future__ import annotations

import pytest

from bead.protocol.idempotency import (
    floor_ms_to_bucket,
    operation_dedupe_key,
    stable_payload_hash,
)

BASE_MS = 1_767_225_600_000  # 2026-01-01T00:00:00Z


class TestFloorMsToBucket:
    """Tests for floor_ms_to_bucket function."""

    def test_floors_to_bucket_boundary(self):
        """Floors a timestamp to the start of its bucket."""
        assert floor_ms_to_bucket(BASE_MS + 45_123, 60_000) == BASE_MS

    def test_exact_bucket_boundary(self):
        """Timestamp on an exact boundary stays the same."""
        assert floor_ms_to_bucket(BASE_MS + 120_000, 60_000) == BASE_MS + 120_000

    def test_different_bucket_sizes(self):
        """Works with different bucket sizes."""
        ts = BASE_MS + 7 * 60_000 + 30_000
        assert floor_ms_to_bucket(ts, 300_000) == BASE_MS + 300_000
        assert floor_ms_to_bucket(ts, 1) == ts

    @pytest.mark.parametrize("bucket", [0, -1])
    def test_rejects_non_positive_bucket(self, bucket):
        """Zero or negative buckets raise ValueError."""
        with pytest.raises(ValueError):
            floor_ms_to_bucket(BASE_MS, bucket)


class TestOperationDedupeKey:
    """Tests for operation_dedupe_key function."""

    def test_format(self):
        """Key is operation:actor:game:bucket."""
        key = operation_dedupe_key("place_bet", "addr_test1qabc", 1001, BASE_MS + 5_000, 60_000)
        assert key == f"place_bet:addr_test1qabc:1001:{BASE_MS}"

    def test_missing_game_uses_dash(self):
        """Operations without a game use '-' in the game slot."""
        key = operation_dedupe_key("purchase_token", "addr_test1qabc", None, BASE_MS, 60_000)
        assert key.split(":")[2] == "-"

    def test_same_bucket_same_key(self):
        """Same bucket window produces the same key."""
        k1 = operation_dedupe_key("place_bet", "a", 1, BASE_MS + 1_000, 60_000)
        k2 = operation_dedupe_key("place_bet", "a", 1, BASE_MS + 59_999, 60_000)
        assert k1 == k2

    def test_different_bucket_different_key(self):
        """Different bucket windows produce different keys."""
        k1 = operation_dedupe_key("place_bet", "a", 1, BASE_MS, 60_000)
        k2 = operation_dedupe_key("place_bet", "a", 1, BASE_MS + 60_000, 60_000)
        assert k1 != k2

    def test_different_actor_different_key(self):
        """Different actors produce different keys."""
        k1 = operation_dedupe_key("redeem_bet", "a", 1, BASE_MS, 60_000)
        k2 = operation_dedupe_key("redeem_bet", "b", 1, BASE_MS, 60_000)
        assert k1 != k2


class TestStablePayloadHash:
    """Tests for stable_payload_hash function."""

    def test_produces_sha256_hex(self):
        """Produces 64-character SHA256 hex digest."""
        result = stable_payload_hash({"key": "value"})
        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)

    def test_key_order_independent(self):
        """Hash is independent of key order."""
        assert stable_payload_hash({"a": 1, "b": 2, "c": 3}) == stable_payload_hash({"c": 3, "a": 1, "b": 2})

    def test_different_values_different_hash(self):
        """Different values produce different hashes."""
        assert stable_payload_hash({"key": "value1"}) != stable_payload_hash({"key": "value2"})

    def test_handles_non_json_values(self):
        """Values JSON cannot encode natively are stringified."""
        from decimal import Decimal

        assert stable_payload_hash({"rate": Decimal("5.25")}) == stable_payload_hash({"rate": "5.25"})
