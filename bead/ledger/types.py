"""Ledger-facing data shapes.

These are point-in-time views handed to the core by a ledger provider and the
transaction description handed back. All models are frozen; the core never
mutates a snapshot.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bead.shared.enums import GameOutcome

NATIVE_UNIT = "lovelace"

BET_DATUM_KIND = "bet"
ORACLE_DATUM_KIND = "oracle"


class UtxoRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    tx_hash: str
    index: int = Field(ge=0)

    def __str__(self) -> str:
        return f"{self.tx_hash}#{self.index}"

    @classmethod
    def parse(cls, value: str) -> "UtxoRef":
        tx_hash, _, index = value.partition("#")
        return cls(tx_hash=tx_hash, index=int(index or 0))


class Utxo(BaseModel):
    """Unspent output as seen in the provider snapshot."""

    model_config = ConfigDict(frozen=True)

    ref: UtxoRef
    address: str
    assets: Dict[str, int] = Field(default_factory=dict)
    datum: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _ensure_native(cls, data: Any) -> Any:
        if isinstance(data, dict):
            assets = dict(data.get("assets") or {})
            assets.setdefault(NATIVE_UNIT, 0)
            data = dict(data)
            data["assets"] = assets
        return data

    @property
    def lovelace(self) -> int:
        return int(self.assets.get(NATIVE_UNIT, 0))

    def quantity(self, unit: str) -> int:
        return int(self.assets.get(unit, 0))

    def token_units(self) -> List[str]:
        return [unit for unit, qty in self.assets.items() if unit != NATIVE_UNIT and qty > 0]

    @property
    def native_only(self) -> bool:
        return not self.token_units()


class TxOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    assets: Dict[str, int] = Field(default_factory=dict)
    datum: Optional[Dict[str, Any]] = None
    label: str = "output"

    @property
    def lovelace(self) -> int:
        return int(self.assets.get(NATIVE_UNIT, 0))

    def quantity(self, unit: str) -> int:
        return int(self.assets.get(unit, 0))


class ValidityWindow(BaseModel):
    """Closed POSIX-millisecond interval during which the ledger accepts a tx."""

    model_config = ConfigDict(frozen=True)

    valid_from: int
    valid_to: int

    @model_validator(mode="after")
    def _ordered(self) -> "ValidityWindow":
        if self.valid_to < self.valid_from:
            raise ValueError("valid_to must not precede valid_from")
        return self

    def contains(self, ts_ms: int) -> bool:
        return self.valid_from <= ts_ms <= self.valid_to


class TransactionDescription(BaseModel):
    """Everything a provider needs to construct, sign and submit one tx."""

    model_config = ConfigDict(frozen=True)

    operation: str
    signer: str
    inputs: List[Utxo] = Field(default_factory=list)
    reference_inputs: List[Utxo] = Field(default_factory=list)
    outputs: List[TxOutput] = Field(default_factory=list)
    mint: Dict[str, int] = Field(default_factory=dict)
    fee: int = Field(default=0, ge=0)
    validity: ValidityWindow
    redeemers: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def fingerprint_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class OracleRecord(BaseModel):
    """Published result of one game, read once per orchestration run."""

    model_config = ConfigDict(frozen=True)

    game_id: int
    winner: Optional[GameOutcome] = None
    game_policy_id: str
    total_pool: int = Field(default=0, ge=0)
    total_winnings: int = Field(default=0, ge=0)
    oracle_unit: Optional[str] = None
    utxo: Optional[Utxo] = None

    @field_validator("winner", mode="before")
    @classmethod
    def _parse_winner(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return GameOutcome.parse(value)

    @property
    def settled(self) -> bool:
        return self.winner is not None

    def to_datum(self) -> Dict[str, Any]:
        return oracle_datum(
            game_id=self.game_id,
            winner=self.winner,
            game_policy_id=self.game_policy_id,
            total_pool=self.total_pool,
            total_winnings=self.total_winnings,
        )

    @classmethod
    def from_utxo(cls, utxo: Utxo, oracle_policy_id: Optional[str] = None) -> Optional["OracleRecord"]:
        """Parse an oracle output; ``None`` when the output carries no oracle datum."""
        datum = utxo.datum or {}
        if datum.get("kind") != ORACLE_DATUM_KIND:
            return None
        winner_code = datum.get("winner")
        winner = None if winner_code is None else GameOutcome.from_code(winner_code)
        oracle_unit = None
        for unit in utxo.token_units():
            if oracle_policy_id is None or unit.startswith(oracle_policy_id):
                oracle_unit = unit
                break
        return cls(
            game_id=int(datum.get("game", 0)),
            winner=winner,
            game_policy_id=str(datum.get("game_policy_id", "")),
            total_pool=int(datum.get("total_ada", 0)),
            total_winnings=int(datum.get("total_winnings", 0)),
            oracle_unit=oracle_unit,
            utxo=utxo,
        )


def bet_datum(game_id: int, game_name: str, outcome: GameOutcome, owner: str, bet_unit: str) -> Dict[str, Any]:
    return {
        "kind": BET_DATUM_KIND,
        "game": int(game_id),
        "game_name": game_name,
        "outcome": outcome.code,
        "owner": owner,
        "bet_unit": bet_unit,
    }


def oracle_datum(
    *,
    game_id: int,
    winner: Optional[GameOutcome],
    game_policy_id: str,
    total_pool: int,
    total_winnings: int,
) -> Dict[str, Any]:
    return {
        "kind": ORACLE_DATUM_KIND,
        "game": int(game_id),
        "winner": None if winner is None else winner.code,
        "game_policy_id": game_policy_id,
        "total_ada": int(total_pool),
        "total_winnings": int(total_winnings),
    }


def is_oracle_output(utxo: Utxo) -> bool:
    return bool(utxo.datum) and utxo.datum.get("kind") == ORACLE_DATUM_KIND


__all__ = [
    "NATIVE_UNIT",
    "BET_DATUM_KIND",
    "ORACLE_DATUM_KIND",
    "UtxoRef",
    "Utxo",
    "TxOutput",
    "ValidityWindow",
    "TransactionDescription",
    "OracleRecord",
    "bet_datum",
    "oracle_datum",
    "is_oracle_output",
]
