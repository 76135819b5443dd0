"""Addresses, script ids and snapshot builders shared by the test suite."""

from __future__ import annotations

from bead.ledger.types import Utxo, UtxoRef

ADA = 1_000_000
HOUR_MS = 60 * 60 * 1000

ACTOR = "addr_test1qzactor7w3k0n9d2sample0wallet0address0one"
OTHER = "addr_test1qzother5c8m2x4sample0wallet0address0two"
OPERATOR = "addr_test1qzoperator6v9p3sample0oracle0operator"
REFERRER = "addr_test1qzreferrer2h7j5sample0referral0wallet"
POT = "addr_test1wzpot4g3t8sample0bet0pot0script0address"

BET_POLICY = "a1" * 28
ORACLE_POLICY = "0c" * 28
GAME_ID = 1001
GAME_NAME = "RMA-BAR"


def make_utxo(lovelace: int, index: int = 0, address: str = ACTOR, assets=None, tx: str = "ab") -> Utxo:
    return Utxo(
        ref=UtxoRef(tx_hash=(tx * 32)[:64], index=index),
        address=address,
        assets={"lovelace": lovelace, **(assets or {})},
    )
