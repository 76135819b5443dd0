from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import bittensor as bt

from bead.ledger.provider import LedgerProvider
from bead.ledger.types import OracleRecord
from bead.protocol.models import BetScripts, GameRef
from bead.shared.enums import GameOutcome
from bead.shared.result import ErrorCode, Result, failure, success


@dataclass(frozen=True)
class OracleVerdict:
    """Outcome of checking a settled record against the actor's prediction.

    ``eligible=False`` is a normal result: the bet lost and redeems for zero.
    """

    record: OracleRecord
    predicted: GameOutcome
    winner: GameOutcome
    eligible: bool


def verify(
    record: Optional[OracleRecord],
    game: GameRef,
    scripts: BetScripts,
    predicted: GameOutcome,
) -> Result[OracleVerdict]:
    if record is None:
        return failure(
            ErrorCode.GAME_NOT_FOUND,
            f"No oracle record found for game {game.id}",
            {"game_id": game.id, "pot_address": scripts.pot_address},
        )
    if record.game_id != game.id:
        return failure(
            ErrorCode.POLICY_MISMATCH,
            f"Oracle record belongs to game {record.game_id}, not {game.id}",
            {"game_id": game.id, "record_game_id": record.game_id},
        )
    if record.winner is None:
        return failure(
            ErrorCode.ORACLE_NOT_SETTLED,
            f"Game {game.id} has no published result yet",
            {"game_id": game.id},
        )
    if record.game_policy_id != scripts.bet_policy_id:
        return failure(
            ErrorCode.POLICY_MISMATCH,
            "Oracle record policy does not match the bet token policy",
            {
                "game_id": game.id,
                "record_policy_id": record.game_policy_id,
                "bet_policy_id": scripts.bet_policy_id,
            },
        )
    return success(
        OracleVerdict(
            record=record,
            predicted=predicted,
            winner=record.winner,
            eligible=predicted == record.winner,
        )
    )


class OracleVerifier:
    """Reads the oracle record once per run and checks it."""

    def __init__(self, provider: LedgerProvider):
        self.provider = provider

    async def fetch_and_verify(
        self,
        game: GameRef,
        scripts: BetScripts,
        predicted: GameOutcome,
    ) -> Result[OracleVerdict]:
        fetched = await self.provider.get_oracle_record(game.id, scripts.pot_address)
        if not fetched.ok:
            return fetched
        verdict = verify(fetched.data, game, scripts, predicted)
        if verdict.ok:
            bt.logging.debug(
                {
                    "oracle_verified": {
                        "game_id": game.id,
                        "winner": verdict.data.winner.value,
                        "predicted": predicted.value,
                        "eligible": verdict.data.eligible,
                    }
                }
            )
        return verdict


__all__ = ["OracleVerdict", "OracleVerifier", "verify"]
