"""Operation requests.

Requests only fix types here. Range and policy checks live in
``bead.core.validation`` so that every violation becomes a structured
``INVALID_INPUT`` failure instead of a pydantic error.
"""
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bead.shared.enums import GameOutcome, OperationKind

from .common import BetScripts, GameRef


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    actor: str = Field(..., description="Bech32 address of the wallet driving the operation")

    @field_validator("outcome", mode="before", check_fields=False)
    @classmethod
    def _parse_outcome(cls, value: Any) -> Any:
        try:
            return GameOutcome.parse(value)
        except ValueError:
            return value


class PlaceBetRequest(_Request):
    kind: OperationKind = OperationKind.PLACE_BET
    game: GameRef
    outcome: GameOutcome
    lovelace: int = Field(..., description="Native stake in lovelace")
    bead: int = Field(default=0, description="Secondary stake in whole BEAD")
    scripts: BetScripts


class PurchaseTokenRequest(_Request):
    kind: OperationKind = OperationKind.PURCHASE_TOKEN
    contribution_lovelace: int
    referral_address: Optional[str] = None


class RedeemBetRequest(_Request):
    kind: OperationKind = OperationKind.REDEEM_BET
    game: GameRef
    outcome: GameOutcome = Field(..., description="Outcome predicted when the bet was placed")
    scripts: BetScripts
    finalize_oracle: bool = False


class PublishResultRequest(_Request):
    kind: OperationKind = OperationKind.PUBLISH_RESULT
    game: GameRef
    outcome: GameOutcome = Field(..., description="Settled winner")
    score_label: str = Field(..., description="Final score, used as the oracle token name")
    scripts: BetScripts
    bettor_addresses: List[str] = Field(default_factory=list)


__all__ = [
    "PlaceBetRequest",
    "PurchaseTokenRequest",
    "RedeemBetRequest",
    "PublishResultRequest",
]
