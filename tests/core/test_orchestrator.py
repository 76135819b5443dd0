"""Tests for core/orchestrator.py - End-to-end runs against the emulated ledger."""

from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from bead.core import place_bet
from bead.core.orchestrator import IllegalTransition, OrchestrationRun, Stage, TransactionOrchestrator
from bead.ledger.assets import bet_unit
from bead.ledger.emulator import EmulatedLedger
from bead.protocol.models import (
    BetDetails,
    PlaceBetRequest,
    PublishResultRequest,
    PurchaseTokenRequest,
    RedeemBetRequest,
)
from bead.shared.enums import AssetClass, GameOutcome, OperationKind, SelectionStrategy
from bead.shared.logging import setup_events_logger
from bead.shared.result import ErrorCode, failure

from tests.helpers import (
    ACTOR,
    ADA,
    BET_POLICY,
    GAME_ID,
    GAME_NAME,
    OPERATOR,
    OTHER,
    POT,
    REFERRER,
)

FEE = 300_000
HOME_UNIT = bet_unit(BET_POLICY, GameOutcome.HOME, GAME_NAME)
AWAY_UNIT = bet_unit(BET_POLICY, GameOutcome.AWAY, GAME_NAME)


@pytest.fixture
def orchestrator(ledger, settings) -> TransactionOrchestrator:
    return TransactionOrchestrator(ledger, settings)


def _bet(game, scripts, actor=ACTOR, outcome=GameOutcome.HOME, lovelace=20 * ADA, bead=0) -> PlaceBetRequest:
    return PlaceBetRequest(actor=actor, game=game, outcome=outcome, lovelace=lovelace, bead=bead, scripts=scripts)


def _redeem(game, scripts, actor=ACTOR, outcome=GameOutcome.HOME, finalize=False) -> RedeemBetRequest:
    return RedeemBetRequest(actor=actor, game=game, outcome=outcome, scripts=scripts, finalize_oracle=finalize)


async def _publish(orchestrator, ledger, game, scripts, winner, bettors=(ACTOR, OTHER), label="2-1"):
    if ledger.now_ms() < game.starts_at:
        ledger.set_time(game.starts_at)
    if not ledger.utxos_at(OPERATOR):
        ledger.fund(OPERATOR, 10 * ADA)
    request = PublishResultRequest(
        actor=OPERATOR,
        game=game,
        outcome=winner,
        score_label=label,
        scripts=scripts,
        bettor_addresses=list(bettors),
    )
    return await orchestrator.publish_game_result(request)


async def _two_bettors(orchestrator, ledger, settings, game, scripts):
    """ACTOR backs HOME with 20 ADA + 50 BEAD, OTHER backs AWAY with 30 ADA."""
    ledger.fund(ACTOR, 100 * ADA)
    ledger.fund(ACTOR, 5 * ADA, assets={settings.scripts.bead_unit: 100})
    ledger.fund(OTHER, 60 * ADA)
    home = await orchestrator.place_bet(_bet(game, scripts, bead=50))
    away = await orchestrator.place_bet(_bet(game, scripts, actor=OTHER, outcome=GameOutcome.AWAY, lovelace=30 * ADA))
    assert home.ok and away.ok
    return home.data, away.data


class TestPlaceBet:
    """PlaceBet runs."""

    @pytest.mark.asyncio
    async def test_places_bet(self, orchestrator, ledger, game, scripts):
        ledger.fund(ACTOR, 100 * ADA)
        ledger.fund(ACTOR, 50 * ADA)
        result = await orchestrator.place_bet(_bet(game, scripts))

        assert result.ok
        outcome = result.data
        assert outcome.operation == OperationKind.PLACE_BET
        assert outcome.summary == f"Bet 20 ADA on Home Win for game {GAME_ID} ({GAME_NAME})"
        assert isinstance(outcome.details, BetDetails)
        assert outcome.details.bet_tokens == 20 * ADA
        assert [(d.unit, d.asset_class, d.quantity) for d in outcome.token_deltas] == [
            (HOME_UNIT, AssetClass.BET, 20 * ADA)
        ]
        assert outcome.validity.valid_from == ledger.now_ms()
        assert outcome.validity.valid_to == game.starts_at
        assert outcome.selection.strategy == SelectionStrategy.OPTIMAL
        assert outcome.selection.total_input == 50 * ADA

        assert ledger.balance(POT) == 20 * ADA
        assert ledger.balance(ACTOR, HOME_UNIT) == 20 * ADA
        assert ledger.balance(ACTOR) == 150 * ADA - 20 * ADA - FEE
        assert ledger.transactions[0].operation == "place_bet"
        assert ledger.transactions[0].metadata == {"summary": outcome.summary}

    @pytest.mark.asyncio
    async def test_bead_stake_scales_and_burns(self, orchestrator, ledger, settings, game, scripts):
        ledger.fund(ACTOR, 100 * ADA)
        ledger.fund(ACTOR, 5 * ADA, assets={settings.scripts.bead_unit: 100})
        result = await orchestrator.place_bet(_bet(game, scripts, bead=50))

        assert result.ok
        assert result.data.details.bet_tokens == 20 * ADA + 50 * 1_000_000
        assert "+ 50 BEAD" in result.data.summary
        assert ledger.balance(ACTOR, settings.scripts.bead_unit) == 50
        assert ledger.balance(ACTOR, HOME_UNIT) == 70 * ADA

    @pytest.mark.asyncio
    async def test_validation_failure_is_tagged(self, orchestrator, ledger, game, scripts):
        ledger.fund(ACTOR, 100 * ADA)
        result = await orchestrator.place_bet(_bet(game, scripts, lovelace=ADA))

        assert result.code == ErrorCode.INVALID_INPUT
        assert result.context["stage"] == "validating"
        assert result.context["operation"] == "place_bet"
        assert result.context["rule"] == "min_bet"
        assert ledger.transactions == []

    @pytest.mark.asyncio
    async def test_bets_close_at_kickoff(self, orchestrator, ledger, game, scripts):
        ledger.fund(ACTOR, 100 * ADA)
        ledger.set_time(game.starts_at)
        result = await orchestrator.place_bet(_bet(game, scripts))
        assert result.context["rule"] == "game_in_future"

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, orchestrator, ledger, game, scripts):
        ledger.fund(ACTOR, 15 * ADA)
        result = await orchestrator.place_bet(_bet(game, scripts))

        assert result.code == ErrorCode.INSUFFICIENT_FUNDS
        assert result.context["stage"] == "selecting"
        assert ledger.transactions == []

    @pytest.mark.asyncio
    async def test_missing_bead(self, orchestrator, ledger, game, scripts):
        ledger.fund(ACTOR, 100 * ADA)
        result = await orchestrator.place_bet(_bet(game, scripts, bead=10))
        assert result.code == ErrorCode.INSUFFICIENT_FUNDS
        assert result.context["required"] == 10

    @pytest.mark.asyncio
    async def test_module_level_entry_point(self, ledger, settings, game, scripts):
        ledger.fund(ACTOR, 100 * ADA)
        result = await place_bet(_bet(game, scripts), ledger, settings)
        assert result.ok


class TestPurchaseToken:
    """PurchaseToken runs."""

    @pytest.mark.asyncio
    async def test_purchase_with_referral(self, orchestrator, ledger, settings):
        ledger.fund(ACTOR, 1_100 * ADA)
        request = PurchaseTokenRequest(actor=ACTOR, contribution_lovelace=1_000 * ADA, referral_address=REFERRER)
        result = await orchestrator.purchase_token(request)

        assert result.ok
        details = result.data.details
        assert details.bead_minted == 5_250
        assert details.referral_tokens == 25
        assert details.referral_bonus == Decimal("5")
        assert details.distribution.referral == 50 * ADA
        assert result.data.summary == "Purchased 5250 BEAD for 1000 ADA with 5% referral bonus"

        scripts = settings.scripts
        assert ledger.balance(scripts.treasury_address) == 950 * ADA
        assert ledger.balance(REFERRER) == 50 * ADA
        assert ledger.balance(REFERRER, scripts.referral_unit) == 25
        assert ledger.balance(ACTOR, scripts.bead_unit) == 5_250
        assert ledger.balance(ACTOR) == 100 * ADA - FEE

    @pytest.mark.asyncio
    async def test_purchase_without_referral(self, orchestrator, ledger, settings):
        ledger.fund(ACTOR, 300 * ADA)
        result = await orchestrator.purchase_token(PurchaseTokenRequest(actor=ACTOR, contribution_lovelace=200 * ADA))

        assert result.ok
        assert result.data.details.distribution is None
        assert result.data.details.referral_bonus is None
        assert [d.asset_class for d in result.data.token_deltas] == [AssetClass.UTILITY]
        assert ledger.balance(settings.scripts.treasury_address) == 200 * ADA
        assert ledger.balance(ACTOR, settings.scripts.bead_unit) == 1_000

    @pytest.mark.asyncio
    async def test_purchase_validity_uses_ttl(self, orchestrator, ledger, settings):
        ledger.fund(ACTOR, 300 * ADA)
        result = await orchestrator.purchase_token(PurchaseTokenRequest(actor=ACTOR, contribution_lovelace=200 * ADA))
        window = result.data.validity
        assert window.valid_to - window.valid_from == settings.chain.tx_ttl_ms


class TestPublishAndRedeem:
    """Full betting round: bet, publish, redeem."""

    @pytest.mark.asyncio
    async def test_full_round(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)

        published = await _publish(orchestrator, ledger, game, scripts, GameOutcome.HOME)
        assert published.ok
        result_details = published.data.details
        assert result_details.total_pool == 50 * ADA
        assert result_details.total_winnings == 70 * ADA
        assert result_details.bets_by_outcome[GameOutcome.AWAY] == 30 * ADA
        assert result_details.bettors_scanned == 2

        won = await orchestrator.redeem_bet(_redeem(game, scripts))
        assert won.ok
        details = won.data.details
        assert details.eligible is True
        assert details.payout_lovelace == 50 * ADA
        assert details.multiplier == Decimal("0.71428571")
        assert details.pot_selection.strategy == SelectionStrategy.OPTIMAL
        assert ledger.balance(ACTOR, HOME_UNIT) == 0
        assert ledger.balance(ACTOR) == 134_400_000
        assert ledger.balance(ACTOR, settings.scripts.bead_unit) == 50

        lost = await orchestrator.redeem_bet(_redeem(game, scripts, actor=OTHER, outcome=GameOutcome.AWAY))
        assert lost.ok
        assert lost.data.details.eligible is False
        assert lost.data.details.payout_lovelace == 0
        assert lost.data.summary == f"Burned {30 * ADA} losing bet tokens; no payout"
        assert "Bet lost: predicted Away Win, result was Home Win" in lost.data.warnings
        assert ledger.balance(OTHER, AWAY_UNIT) == 0
        assert ledger.balance(OTHER) == 60 * ADA - 30 * ADA - 2 * FEE

        assert ledger.balance(POT) == settings.redemption.oracle_deposit_lovelace

    @pytest.mark.asyncio
    async def test_winner_with_only_bet_tokens_collects(self, orchestrator, ledger, game, scripts):
        """The payout covers the fee when the wallet holds nothing but the bet-token output."""
        ledger.fund(ACTOR, 20 * ADA + ADA + FEE)
        ledger.fund(OTHER, 60 * ADA)
        home = await orchestrator.place_bet(_bet(game, scripts))
        away = await orchestrator.place_bet(_bet(game, scripts, actor=OTHER, outcome=GameOutcome.AWAY, lovelace=30 * ADA))
        assert home.ok and away.ok
        assert ledger.balance(ACTOR) == ADA

        published = await _publish(orchestrator, ledger, game, scripts, GameOutcome.HOME)
        assert published.ok

        won = await orchestrator.redeem_bet(_redeem(game, scripts))
        assert won.ok
        assert won.data.details.payout_lovelace == 50 * ADA
        assert won.data.selection.credit == 50 * ADA
        assert won.data.selection.total_input == ADA
        assert ledger.balance(ACTOR, HOME_UNIT) == 0
        assert ledger.balance(ACTOR) == 50 * ADA + ADA - FEE

    @pytest.mark.asyncio
    async def test_pot_shortfall_fails_while_selecting(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)
        ledger.set_time(game.starts_at)
        ledger.publish_oracle(POT, GAME_ID, GameOutcome.HOME, BET_POLICY, 500 * ADA, 70 * ADA)

        result = await orchestrator.redeem_bet(_redeem(game, scripts))

        assert result.code == ErrorCode.INSUFFICIENT_FUNDS
        assert result.context["stage"] == "selecting"
        assert result.context["source"] == "pot"
        assert result.context["required"] == 500 * ADA
        assert ledger.balance(ACTOR, HOME_UNIT) == 70 * ADA

    @pytest.mark.asyncio
    async def test_finalize_oracle_burns_record(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)
        await _publish(orchestrator, ledger, game, scripts, GameOutcome.HOME)

        result = await orchestrator.redeem_bet(_redeem(game, scripts, finalize=True))

        assert result.ok
        assert result.data.details.oracle_finalized is True
        oracle_deltas = [d for d in result.data.token_deltas if d.asset_class == AssetClass.ORACLE]
        assert [d.quantity for d in oracle_deltas] == [-1]
        record = await ledger.get_oracle_record(GAME_ID, POT)
        assert record.data is None
        assert ledger.balance(POT) == settings.redemption.oracle_deposit_lovelace

    @pytest.mark.asyncio
    async def test_nobody_backed_the_winner(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)
        published = await _publish(orchestrator, ledger, game, scripts, GameOutcome.TIE, label="1-1")
        assert published.ok
        assert published.data.details.total_winnings == 0
        assert "No bets on the winning outcome; the pot carries over to the treasury" in published.data.warnings

        lost = await orchestrator.redeem_bet(_redeem(game, scripts))
        assert lost.ok
        assert lost.data.details.multiplier == Decimal("0")
        assert "No winning bets for this game; the pot carries over to the treasury" in lost.data.warnings
        assert ledger.balance(POT) == 50 * ADA + settings.redemption.oracle_deposit_lovelace

    @pytest.mark.asyncio
    async def test_publish_without_bettors_warns(self, orchestrator, ledger, game, scripts):
        result = await _publish(orchestrator, ledger, game, scripts, GameOutcome.HOME, bettors=())
        assert result.ok
        assert "No bettor addresses supplied; winning token total is zero" in result.data.warnings

    @pytest.mark.asyncio
    async def test_publish_twice_rejected(self, orchestrator, ledger, game, scripts):
        first = await _publish(orchestrator, ledger, game, scripts, GameOutcome.HOME)
        second = await _publish(orchestrator, ledger, game, scripts, GameOutcome.AWAY)

        assert first.ok
        assert second.code == ErrorCode.INVALID_INPUT
        assert second.context["rule"] == "result_not_published"
        assert second.context["stage"] == "selecting"
        assert len(ledger.transactions) == 1

    @pytest.mark.asyncio
    async def test_publish_before_kickoff(self, orchestrator, ledger, game, scripts):
        ledger.fund(OPERATOR, 10 * ADA)
        request = PublishResultRequest(
            actor=OPERATOR, game=game, outcome=GameOutcome.HOME, score_label="2-1", scripts=scripts
        )
        result = await orchestrator.publish_game_result(request)
        assert result.context["rule"] == "game_started"

    @pytest.mark.asyncio
    async def test_redeem_without_record(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)
        ledger.set_time(game.starts_at)

        result = await orchestrator.redeem_bet(_redeem(game, scripts))

        assert result.code == ErrorCode.GAME_NOT_FOUND
        assert result.context["stage"] == "verifying_oracle"
        assert ledger.balance(ACTOR, HOME_UNIT) == 70 * ADA

    @pytest.mark.asyncio
    async def test_redeem_unsettled(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)
        ledger.set_time(game.starts_at)
        ledger.publish_oracle(POT, GAME_ID, None, BET_POLICY, 0, 0)

        result = await orchestrator.redeem_bet(_redeem(game, scripts))
        assert result.code == ErrorCode.ORACLE_NOT_SETTLED

    @pytest.mark.asyncio
    async def test_redeem_policy_mismatch(self, orchestrator, ledger, settings, game, scripts):
        await _two_bettors(orchestrator, ledger, settings, game, scripts)
        ledger.set_time(game.starts_at)
        ledger.publish_oracle(POT, GAME_ID, GameOutcome.HOME, "ff" * 28, 50 * ADA, 70 * ADA)

        result = await orchestrator.redeem_bet(_redeem(game, scripts))
        assert result.code == ErrorCode.POLICY_MISMATCH

    @pytest.mark.asyncio
    async def test_redeem_without_tokens(self, orchestrator, ledger, game, scripts):
        ledger.fund(ACTOR, 10 * ADA)
        result = await orchestrator.redeem_bet(_redeem(game, scripts))
        assert result.code == ErrorCode.INSUFFICIENT_FUNDS
        assert result.context["stage"] == "selecting"


class TestProviderFailures:
    """Errors raised or returned by the ledger provider."""

    @pytest.mark.asyncio
    async def test_submit_raises(self, orchestrator, ledger, game, scripts, monkeypatch):
        ledger.fund(ACTOR, 100 * ADA)
        monkeypatch.setattr(ledger, "submit_transaction", AsyncMock(side_effect=RuntimeError("node down")))

        result = await orchestrator.place_bet(_bet(game, scripts))

        assert result.code == ErrorCode.TRANSACTION_FAILED
        assert result.context["stage"] == "building"
        assert "node down" in result.message

    @pytest.mark.asyncio
    async def test_submit_returns_other_code(self, orchestrator, ledger, game, scripts, monkeypatch):
        ledger.fund(ACTOR, 100 * ADA)
        monkeypatch.setattr(
            ledger,
            "submit_transaction",
            AsyncMock(return_value=failure(ErrorCode.NETWORK_ERROR, "gateway unreachable")),
        )

        result = await orchestrator.place_bet(_bet(game, scripts))

        assert result.code == ErrorCode.TRANSACTION_FAILED
        assert result.context["provider_code"] == "NETWORK_ERROR"

    @pytest.mark.asyncio
    async def test_ledger_rejection(self, orchestrator, ledger, game, scripts, monkeypatch):
        """Ledger-side rejections surface unchanged apart from stage context."""
        ledger.fund(ACTOR, 100 * ADA)
        monkeypatch.setattr(ledger, "now_ms", lambda: game.starts_at - 1)
        monkeypatch.setattr(ledger, "_now_ms", game.starts_at + 1)

        result = await orchestrator.place_bet(_bet(game, scripts))

        assert result.code == ErrorCode.TRANSACTION_FAILED
        assert "validity window" in result.message
        assert result.context["stage"] == "building"

    @pytest.mark.asyncio
    async def test_query_raises(self, orchestrator, ledger, game, scripts, monkeypatch):
        monkeypatch.setattr(ledger, "get_utxos", AsyncMock(side_effect=ConnectionError("refused")))

        result = await orchestrator.place_bet(_bet(game, scripts))

        assert result.code == ErrorCode.NETWORK_ERROR
        assert result.context["stage"] == "selecting"
        assert result.context["address"] == ACTOR

    @pytest.mark.asyncio
    async def test_cancel_does_not_abort_submission(self, settings, game, scripts):
        """Once building starts, cancelling the caller leaves the submission running."""

        class SlowLedger(EmulatedLedger):
            def __init__(self):
                super().__init__()
                self.started = asyncio.Event()
                self.release = asyncio.Event()

            async def submit_transaction(self, tx):
                self.started.set()
                await self.release.wait()
                return await super().submit_transaction(tx)

        ledger = SlowLedger()
        ledger.fund(ACTOR, 100 * ADA)
        task = asyncio.create_task(TransactionOrchestrator(ledger, settings).place_bet(_bet(game, scripts)))
        await ledger.started.wait()
        task.cancel()
        ledger.release.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(ledger.transactions) == 1


class TestOrchestrationRun:
    """Stage machine."""

    def test_forward_only(self):
        run = OrchestrationRun(OperationKind.PLACE_BET, ACTOR, GAME_ID)
        run.advance(Stage.SELECTING)
        with pytest.raises(IllegalTransition):
            run.advance(Stage.VALIDATING)

    def test_no_skipping(self):
        run = OrchestrationRun(OperationKind.PURCHASE_TOKEN, ACTOR)
        with pytest.raises(IllegalTransition):
            run.advance(Stage.BUILDING)

    def test_terminal_stages(self):
        run = OrchestrationRun(OperationKind.REDEEM_BET, ACTOR, GAME_ID)
        tagged = run.fail(failure(ErrorCode.INVALID_INPUT, "bad"))
        assert run.stage == Stage.FAILED
        assert tagged.context == {"stage": "validating", "operation": "redeem_bet"}
        with pytest.raises(IllegalTransition):
            run.advance(Stage.SELECTING)

    def test_warnings_are_deduplicated(self):
        run = OrchestrationRun(OperationKind.PLACE_BET, ACTOR, GAME_ID)
        run.warn("a", "b", "a")
        assert run.warnings == ["a", "b"]


class TestEvents:
    """Event log records."""

    @pytest.mark.asyncio
    async def test_run_is_logged(self, orchestrator, ledger, game, scripts, tmp_path):
        logger = setup_events_logger(str(tmp_path), events_retention_size=1 << 20)
        try:
            ledger.fund(ACTOR, 100 * ADA)
            await orchestrator.place_bet(_bet(game, scripts))
            await orchestrator.place_bet(_bet(game, scripts, lovelace=ADA))
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

        with open(os.path.join(tmp_path, "events.log"), "r") as f:
            lines = f.read().splitlines()
        assert len(lines) == 2
        assert '"stage": "done"' in lines[0]
        assert '"tx_hash"' in lines[0]
        assert '"stage": "failed"' in lines[1]
        assert '"INVALID_INPUT"' in lines[1]
        assert ACTOR not in lines[0]
