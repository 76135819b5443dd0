from __future__ import annotations

import pytest

from bead.config import BeadSettings
from bead.ledger.emulator import DEFAULT_START_MS, EmulatedLedger
from bead.protocol.models import BetScripts, GameRef

from tests.helpers import BET_POLICY, GAME_ID, GAME_NAME, HOUR_MS, ORACLE_POLICY, POT


@pytest.fixture
def settings() -> BeadSettings:
    return BeadSettings()


@pytest.fixture
def ledger() -> EmulatedLedger:
    return EmulatedLedger()


@pytest.fixture
def scripts() -> BetScripts:
    return BetScripts(bet_policy_id=BET_POLICY, pot_address=POT, oracle_policy_id=ORACLE_POLICY)


@pytest.fixture
def game() -> GameRef:
    """Game kicking off two days after the emulator's start time."""
    return GameRef(id=GAME_ID, name=GAME_NAME, starts_at=DEFAULT_START_MS + 48 * HOUR_MS)
