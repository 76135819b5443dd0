"""Shared contract shapes used by requests and outcomes.

Amounts are integers in minor units (lovelace, whole BEAD, token units).
Ratios are Decimals rounded to eight places.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from bead.ledger.types import UtxoRef, ValidityWindow
from bead.shared.enums import AssetClass, SelectionStrategy


class GameRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Numeric game identifier")
    name: str = Field(..., description="Human label, also embedded in bet token names")
    starts_at: int = Field(..., description="Kick-off as POSIX milliseconds")


class BetScripts(BaseModel):
    """Per-game script references (parametrized by game id, name and date)."""

    model_config = ConfigDict(frozen=True)

    bet_policy_id: str
    pot_address: str
    oracle_policy_id: str


class TokenDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit: str
    asset_class: AssetClass
    quantity: int = Field(..., description="Positive for mint, negative for burn")

    @property
    def is_mint(self) -> bool:
        return self.quantity > 0

    @property
    def is_burn(self) -> bool:
        return self.quantity < 0


class AdaDistribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    treasury: int
    referral: int
    referral_percentage: Decimal


class SelectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_amount: int
    selected: List[UtxoRef] = Field(default_factory=list)
    total_input: int
    change: int
    fee_reserve: int = 0
    efficiency: Decimal
    strategy: SelectionStrategy
    dust_utxos_skipped: int = 0
    asset_targets: Dict[str, int] = Field(default_factory=dict)
    credit: int = Field(default=0, description="Lovelace received from inputs outside the selected set")


__all__ = [
    "GameRef",
    "BetScripts",
    "TokenDelta",
    "AdaDistribution",
    "SelectionResult",
    "ValidityWindow",
    "UtxoRef",
]
