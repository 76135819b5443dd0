from __future__ import annotations

from enum import Enum


class GameOutcome(str, Enum):
    TIE = "tie"
    HOME = "home"
    AWAY = "away"

    @property
    def code(self) -> int:
        """On-chain integer used in datums, redeemers and bet token names."""
        return _OUTCOME_CODES[self]

    @property
    def label(self) -> str:
        return _OUTCOME_LABELS[self]

    @classmethod
    def from_code(cls, code: int | str) -> "GameOutcome":
        try:
            value = int(code)
        except (TypeError, ValueError):
            raise ValueError(f"invalid outcome code: {code!r}")
        for outcome, outcome_code in _OUTCOME_CODES.items():
            if outcome_code == value:
                return outcome
        raise ValueError(f"invalid outcome code: {code!r}")

    @classmethod
    def parse(cls, value: "GameOutcome | int | str") -> "GameOutcome":
        """Accept an enum member, its name/value ("home") or its code ("1")."""
        if isinstance(value, GameOutcome):
            return value
        text = str(value).strip().lower()
        if text.isdigit():
            return cls.from_code(text)
        if text == "draw":
            return cls.TIE
        return cls(text)


_OUTCOME_CODES = {
    GameOutcome.TIE: 0,
    GameOutcome.HOME: 1,
    GameOutcome.AWAY: 2,
}

_OUTCOME_LABELS = {
    GameOutcome.TIE: "Draw",
    GameOutcome.HOME: "Home Win",
    GameOutcome.AWAY: "Away Win",
}


class OperationKind(str, Enum):
    PLACE_BET = "place_bet"
    PURCHASE_TOKEN = "purchase_token"
    REDEEM_BET = "redeem_bet"
    PUBLISH_RESULT = "publish_result"


class SelectionStrategy(str, Enum):
    OPTIMAL = "OPTIMAL"
    GREEDY = "GREEDY"
    FALLBACK = "FALLBACK"


class AssetClass(str, Enum):
    NATIVE = "native"
    BET = "bet"
    UTILITY = "utility"
    REFERRAL = "referral"
    ORACLE = "oracle"


class Network(str, Enum):
    MAINNET = "mainnet"
    PREPROD = "preprod"
    PREVIEW = "preview"
    CUSTOM = "custom"


__all__ = ["GameOutcome", "OperationKind", "SelectionStrategy", "AssetClass", "Network"]
