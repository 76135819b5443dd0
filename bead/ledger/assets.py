"""Asset unit naming: ``<policy id hex><asset name hex>``."""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Tuple

from bead.shared.enums import GameOutcome

from .types import NATIVE_UNIT

POLICY_ID_HEX_LENGTH = 56


def asset_name_hex(name: str) -> str:
    return name.encode("utf-8").hex()


def asset_unit(policy_id: str, name: str) -> str:
    return f"{policy_id}{asset_name_hex(name)}"


def split_unit(unit: str) -> Tuple[str, str]:
    """Return ``(policy_id, asset_name)`` with the name decoded when it is UTF-8."""
    if unit == NATIVE_UNIT:
        return "", ""
    policy_id, name_hex = unit[:POLICY_ID_HEX_LENGTH], unit[POLICY_ID_HEX_LENGTH:]
    try:
        name = bytes.fromhex(name_hex).decode("utf-8")
    except ValueError:
        name = name_hex
    return policy_id, name


def bet_token_name(outcome: GameOutcome, game_name: str) -> str:
    return f"{outcome.code}{game_name}"


def bet_unit(bet_policy_id: str, outcome: GameOutcome, game_name: str) -> str:
    return asset_unit(bet_policy_id, bet_token_name(outcome, game_name))


def bet_units_by_outcome(bet_policy_id: str, game_name: str) -> Dict[GameOutcome, str]:
    return {outcome: bet_unit(bet_policy_id, outcome, game_name) for outcome in GameOutcome}


def oracle_unit(oracle_policy_id: str, score_label: str) -> str:
    return asset_unit(oracle_policy_id, score_label)


def add_assets(*bundles: Mapping[str, int]) -> Dict[str, int]:
    """Sum asset bundles, dropping zero entries other than lovelace."""
    total: Dict[str, int] = {}
    for bundle in bundles:
        for unit, qty in bundle.items():
            total[unit] = total.get(unit, 0) + int(qty)
    return {unit: qty for unit, qty in total.items() if qty != 0 or unit == NATIVE_UNIT}


def sum_unit(bundles: Iterable[Mapping[str, int]], unit: str) -> int:
    return sum(int(b.get(unit, 0)) for b in bundles)


__all__ = [
    "POLICY_ID_HEX_LENGTH",
    "asset_name_hex",
    "asset_unit",
    "split_unit",
    "bet_token_name",
    "bet_unit",
    "bet_units_by_outcome",
    "oracle_unit",
    "add_assets",
    "sum_unit",
]
