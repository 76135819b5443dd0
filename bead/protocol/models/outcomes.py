from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from bead.shared.enums import GameOutcome, OperationKind

from .common import AdaDistribution, SelectionResult, TokenDelta, ValidityWindow


class BetDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    game_id: int
    outcome: GameOutcome
    bet_unit: str
    bet_tokens: int
    lovelace: int
    bead: int
    pot_address: str


class PurchaseDetails(BaseModel):
    """Purchase breakdown. ``distribution`` and ``referral_bonus`` are None
    when no referral address was supplied."""

    model_config = ConfigDict(frozen=True)

    contribution_lovelace: int
    tier_min_lovelace: int
    bead_per_ada: Decimal
    bead_minted: int
    referral_tokens: int = 0
    referral_address: Optional[str] = None
    distribution: Optional[AdaDistribution] = None
    referral_bonus: Optional[Decimal] = None


class RedemptionDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    game_id: int
    predicted: GameOutcome
    winner: GameOutcome
    eligible: bool
    tokens_burned: int
    payout_lovelace: int
    multiplier: Decimal
    total_pool: int
    total_winnings: int
    pot_selection: Optional[SelectionResult] = None
    oracle_finalized: bool = False


class GameResultDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    game_id: int
    winner: GameOutcome
    score_label: str
    oracle_unit: str
    total_pool: int
    total_winnings: int
    bets_by_outcome: Dict[GameOutcome, int] = Field(default_factory=dict)
    bettors_scanned: int = 0


OperationDetails = Union[BetDetails, PurchaseDetails, RedemptionDetails, GameResultDetails]


class OperationOutcome(BaseModel):
    """Terminal record of a successful run; never built partially."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    operation: OperationKind
    summary: str
    token_deltas: List[TokenDelta] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    validity: ValidityWindow
    selection: SelectionResult
    details: OperationDetails


__all__ = [
    "BetDetails",
    "PurchaseDetails",
    "RedemptionDetails",
    "GameResultDetails",
    "OperationDetails",
    "OperationOutcome",
]
