"""Transaction orchestration.

Each entry point runs one forward-only pipeline::

    validating -> selecting -> [verifying_oracle] -> accounting -> building -> submitted -> done

with ``failed`` reachable from every non-terminal stage. Failures from the
layers below are forwarded unchanged apart from ``stage`` and ``operation``
context; only provider errors raised while building are reported as
``TRANSACTION_FAILED``. The ledger snapshot for every address involved is
queried once, during ``selecting``, and never re-read within the run.
RedeemBet reads the oracle record in the same stage, since the payout credits
the actor's side of input selection; a record that fails verification is
still reported from ``verifying_oracle``.

Submission is shielded: once ``building`` starts, cancelling the caller does
not cancel the provider call.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

import bittensor as bt

from bead.config import BeadSettings
from bead.ledger.provider import LedgerProvider
from bead.ledger.types import TransactionDescription, Utxo, ValidityWindow, is_oracle_output
from bead.protocol.idempotency import operation_dedupe_key
from bead.protocol.models import (
    BetDetails,
    GameResultDetails,
    OperationDetails,
    OperationOutcome,
    PlaceBetRequest,
    PublishResultRequest,
    PurchaseDetails,
    PurchaseTokenRequest,
    RedeemBetRequest,
    RedemptionDetails,
    SelectionResult,
)
from bead.shared.decimal_utils import lovelace_to_ada
from bead.shared.enums import OperationKind
from bead.shared.logging import emit_event
from bead.shared.result import ErrorCode, Failure, Result, failure, from_exception, success

from .accounting import AccountingPlan, TokenAccountant, compute_redemption, game_stats, quote_purchase
from .oracle import OracleVerifier
from .selection import SelectorParams, UtxoSelector, pick_inputs, selection_warnings
from .validation import validate_request


class Stage(str, Enum):
    VALIDATING = "validating"
    SELECTING = "selecting"
    VERIFYING_ORACLE = "verifying_oracle"
    ACCOUNTING = "accounting"
    BUILDING = "building"
    SUBMITTED = "submitted"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: Dict[Stage, FrozenSet[Stage]] = {
    Stage.VALIDATING: frozenset({Stage.SELECTING, Stage.FAILED}),
    Stage.SELECTING: frozenset({Stage.VERIFYING_ORACLE, Stage.ACCOUNTING, Stage.FAILED}),
    Stage.VERIFYING_ORACLE: frozenset({Stage.ACCOUNTING, Stage.FAILED}),
    Stage.ACCOUNTING: frozenset({Stage.BUILDING, Stage.FAILED}),
    Stage.BUILDING: frozenset({Stage.SUBMITTED, Stage.FAILED}),
    Stage.SUBMITTED: frozenset({Stage.DONE, Stage.FAILED}),
    Stage.DONE: frozenset(),
    Stage.FAILED: frozenset(),
}


class IllegalTransition(RuntimeError):
    """Raised when the pipeline tries to move to a stage it cannot reach."""


class OrchestrationRun:
    """Stage tracker and warning accumulator for one operation."""

    def __init__(self, operation: OperationKind, actor: str, game_id: Optional[int] = None):
        self.operation = operation
        self.actor = actor
        self.game_id = game_id
        self.stage = Stage.VALIDATING
        self.history: List[Stage] = [Stage.VALIDATING]
        self.warnings: List[str] = []

    def advance(self, stage: Stage) -> None:
        if stage not in TRANSITIONS[self.stage]:
            raise IllegalTransition(f"{self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)

    def fail(self, error: Failure) -> Failure:
        failed_at = self.stage
        self.advance(Stage.FAILED)
        return error.with_context(stage=failed_at.value, operation=self.operation.value)

    def warn(self, *messages: str) -> None:
        for message in messages:
            if message not in self.warnings:
                self.warnings.append(message)


def _snapshot_failure(exc: Exception, what: str, **context: Any) -> Failure:
    return from_exception(exc, ErrorCode.NETWORK_ERROR, context, prefix=f"{what} failed")


class TransactionOrchestrator:
    def __init__(self, provider: LedgerProvider, settings: BeadSettings):
        self.provider = provider
        self.settings = settings
        self.accountant = TokenAccountant(settings)
        self.selector = UtxoSelector(SelectorParams.from_settings(settings.selection))
        self.pot_selector = UtxoSelector(
            SelectorParams.from_settings(settings.selection, fee_reserve=settings.redemption.pot_fee_reserve)
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def place_bet(self, request: PlaceBetRequest) -> Result[OperationOutcome]:
        run = OrchestrationRun(OperationKind.PLACE_BET, request.actor, request.game.id)
        now = self.provider.now_ms()

        validated = validate_request(request, self.settings, now)
        if not validated.ok:
            return self._failed(run, validated, now)

        run.advance(Stage.SELECTING)
        utxos = await self._utxos(request.actor)
        if not utxos.ok:
            return self._failed(run, utxos, now)
        target, asset_targets = self.accountant.bet_targets(request)
        selected = self.selector.select(utxos.data, target, asset_targets)
        if not selected.ok:
            return self._failed(run, selected, now)
        run.warn(*selection_warnings(selected.data, self.selector.params))

        run.advance(Stage.ACCOUNTING)
        plan = self.accountant.plan_place_bet(request, pick_inputs(utxos.data, selected.data))
        if not plan.ok:
            return self._failed(run, plan, now)

        quantity = self.accountant.bet_token_quantity(request)
        details = BetDetails(
            game_id=request.game.id,
            outcome=request.outcome,
            bet_unit=plan.data.token_deltas[0].unit,
            bet_tokens=quantity,
            lovelace=request.lovelace,
            bead=request.bead,
            pot_address=request.scripts.pot_address,
        )
        stake = f"{lovelace_to_ada(request.lovelace)} ADA"
        if request.bead:
            stake += f" + {request.bead} BEAD"
        summary = f"Bet {stake} on {request.outcome.label} for game {request.game.id} ({request.game.name})"
        validity = ValidityWindow(valid_from=now, valid_to=request.game.starts_at)
        return await self._build_and_submit(run, now, request.actor, plan.data, selected.data, validity, details, summary)

    async def purchase_token(self, request: PurchaseTokenRequest) -> Result[OperationOutcome]:
        run = OrchestrationRun(OperationKind.PURCHASE_TOKEN, request.actor)
        now = self.provider.now_ms()

        validated = validate_request(request, self.settings, now)
        if not validated.ok:
            return self._failed(run, validated, now)

        run.advance(Stage.SELECTING)
        utxos = await self._utxos(request.actor)
        if not utxos.ok:
            return self._failed(run, utxos, now)
        selected = self.selector.select(utxos.data, self.accountant.purchase_target(request))
        if not selected.ok:
            return self._failed(run, selected, now)
        run.warn(*selection_warnings(selected.data, self.selector.params))

        run.advance(Stage.ACCOUNTING)
        quote = quote_purchase(request, self.settings)
        if not quote.ok:
            return self._failed(run, quote, now)
        plan = self.accountant.plan_purchase(request, quote.data, pick_inputs(utxos.data, selected.data))
        if not plan.ok:
            return self._failed(run, plan, now)

        q = quote.data
        details = PurchaseDetails(
            contribution_lovelace=request.contribution_lovelace,
            tier_min_lovelace=q.tier.min_lovelace,
            bead_per_ada=q.tier.bead_per_ada,
            bead_minted=q.bead_minted,
            referral_tokens=q.referral_tokens,
            referral_address=request.referral_address,
            distribution=q.distribution,
            referral_bonus=q.referral_bonus,
        )
        summary = f"Purchased {q.bead_minted} BEAD for {lovelace_to_ada(request.contribution_lovelace)} ADA"
        if q.distribution is not None:
            summary += f" with {q.referral_bonus.normalize()}% referral bonus"
        validity = ValidityWindow(valid_from=now, valid_to=now + self.settings.chain.tx_ttl_ms)
        return await self._build_and_submit(run, now, request.actor, plan.data, selected.data, validity, details, summary)

    async def redeem_bet(self, request: RedeemBetRequest) -> Result[OperationOutcome]:
        run = OrchestrationRun(OperationKind.REDEEM_BET, request.actor, request.game.id)
        now = self.provider.now_ms()

        validated = validate_request(request, self.settings, now)
        if not validated.ok:
            return self._failed(run, validated, now)

        run.advance(Stage.SELECTING)
        utxos = await self._utxos(request.actor)
        if not utxos.ok:
            return self._failed(run, utxos, now)
        pot_utxos = await self._utxos(request.scripts.pot_address)
        if not pot_utxos.ok:
            return self._failed(run, pot_utxos, now)
        unit, held = self.accountant.held_bet_tokens(request, utxos.data)
        if held <= 0:
            return self._failed(
                run,
                failure(
                    ErrorCode.INSUFFICIENT_FUNDS,
                    f"No {request.outcome.label} bet tokens for game {request.game.id} in this wallet",
                    {"unit": unit, "game_id": request.game.id},
                    ("Check that you bet on this game and outcome", "Verify the wallet holds the bet tokens"),
                ),
                now,
            )
        # The payout funds the fee and the actor's change, so it is sized from
        # the oracle record before any inputs are picked.
        try:
            verdict = await OracleVerifier(self.provider).fetch_and_verify(
                request.game, request.scripts, request.outcome
            )
        except Exception as exc:
            verdict = _snapshot_failure(exc, "Oracle query", game_id=request.game.id)
        calc = compute_redemption(verdict.data, held) if verdict.ok else None

        pot_selection: Optional[SelectionResult] = None
        pot_inputs: List[Utxo] = []
        if calc is not None and calc.ok:
            payout = calc.data.payout
            selected = self.selector.select(utxos.data, 0, {unit: held}, credit=payout)
            if not selected.ok:
                return self._failed(run, selected, now)
            run.warn(*selection_warnings(selected.data, self.selector.params))
            if payout > 0:
                spendable = [u for u in pot_utxos.data if not is_oracle_output(u) and u.native_only]
                picked = self.pot_selector.select(spendable, payout)
                if not picked.ok:
                    return self._failed(run, picked.with_context(source="pot"), now)
                pot_selection = picked.data
                pot_inputs = pick_inputs(spendable, pot_selection)

        run.advance(Stage.VERIFYING_ORACLE)
        if not verdict.ok:
            return self._failed(run, verdict, now)

        run.advance(Stage.ACCOUNTING)
        if not calc.ok:
            return self._failed(run, calc, now)
        record = verdict.data.record
        if not calc.data.eligible:
            run.warn(f"Bet lost: predicted {request.outcome.label}, result was {verdict.data.winner.label}")
            if record.total_winnings == 0:
                run.warn("No winning bets for this game; the pot carries over to the treasury")

        plan = self.accountant.plan_redeem(
            request, calc.data, record, pick_inputs(utxos.data, selected.data), pot_inputs
        )
        if not plan.ok:
            return self._failed(run, plan, now)

        c = calc.data
        details = RedemptionDetails(
            game_id=request.game.id,
            predicted=request.outcome,
            winner=verdict.data.winner,
            eligible=c.eligible,
            tokens_burned=c.tokens_burned,
            payout_lovelace=c.payout,
            multiplier=c.multiplier,
            total_pool=record.total_pool,
            total_winnings=record.total_winnings,
            pot_selection=pot_selection,
            oracle_finalized=request.finalize_oracle,
        )
        if c.eligible:
            summary = (
                f"Redeemed {c.tokens_burned} bet tokens for {lovelace_to_ada(c.payout)} ADA "
                f"(multiplier {c.multiplier.normalize()}x)"
            )
        else:
            summary = f"Burned {c.tokens_burned} losing bet tokens; no payout"
        starts_at = request.game.starts_at
        validity = ValidityWindow(valid_from=starts_at, valid_to=max(now, starts_at) + self.settings.chain.tx_ttl_ms)
        return await self._build_and_submit(run, now, request.actor, plan.data, selected.data, validity, details, summary)

    async def publish_game_result(self, request: PublishResultRequest) -> Result[OperationOutcome]:
        run = OrchestrationRun(OperationKind.PUBLISH_RESULT, request.actor, request.game.id)
        now = self.provider.now_ms()

        validated = validate_request(request, self.settings, now)
        if not validated.ok:
            return self._failed(run, validated, now)

        run.advance(Stage.SELECTING)
        utxos = await self._utxos(request.actor)
        if not utxos.ok:
            return self._failed(run, utxos, now)
        pot_utxos = await self._utxos(request.scripts.pot_address)
        if not pot_utxos.ok:
            return self._failed(run, pot_utxos, now)
        bettors: Dict[str, List[Utxo]] = {}
        for address in dict.fromkeys(request.bettor_addresses):
            snapshot = await self._utxos(address)
            if not snapshot.ok:
                return self._failed(run, snapshot, now)
            bettors[address] = snapshot.data
        existing = await self._oracle_record(request.game.id, request.scripts.pot_address)
        if not existing.ok:
            return self._failed(run, existing, now)
        if existing.data is not None and existing.data.settled:
            return self._failed(
                run,
                failure(
                    ErrorCode.INVALID_INPUT,
                    f"Result for game {request.game.id} has already been published",
                    {"rule": "result_not_published", "field": "game.id", "value": request.game.id,
                     "expected": "game without a settled oracle record"},
                    ("Check the published result before publishing again",),
                ),
                now,
            )
        selected = self.selector.select(utxos.data, self.accountant.publish_target())
        if not selected.ok:
            return self._failed(run, selected, now)
        run.warn(*selection_warnings(selected.data, self.selector.params))

        run.advance(Stage.ACCOUNTING)
        stats = game_stats(pot_utxos.data, bettors, request.scripts.bet_policy_id, request.game.name)
        planned = self.accountant.plan_publish(request, stats, pick_inputs(utxos.data, selected.data))
        if not planned.ok:
            return self._failed(run, planned, now)
        plan, unit = planned.data
        if not bettors:
            run.warn("No bettor addresses supplied; winning token total is zero")
        if stats.winnings_for(request.outcome) == 0:
            run.warn("No bets on the winning outcome; the pot carries over to the treasury")

        details = GameResultDetails(
            game_id=request.game.id,
            winner=request.outcome,
            score_label=request.score_label,
            oracle_unit=unit,
            total_pool=stats.total_pool,
            total_winnings=stats.winnings_for(request.outcome),
            bets_by_outcome=stats.bets_by_outcome,
            bettors_scanned=stats.bettors_scanned,
        )
        summary = (
            f"Published {request.outcome.label} ({request.score_label}) for game {request.game.id}: "
            f"pool {lovelace_to_ada(stats.total_pool)} ADA"
        )
        validity = ValidityWindow(valid_from=now, valid_to=now + self.settings.chain.tx_ttl_ms)
        return await self._build_and_submit(run, now, request.actor, plan, selected.data, validity, details, summary)

    # ------------------------------------------------------------------
    # Stages shared by every operation
    # ------------------------------------------------------------------
    async def _build_and_submit(
        self,
        run: OrchestrationRun,
        now: int,
        signer: str,
        plan: AccountingPlan,
        selection: SelectionResult,
        validity: ValidityWindow,
        details: OperationDetails,
        summary: str,
    ) -> Result[OperationOutcome]:
        run.warn(*plan.warnings)
        run.advance(Stage.BUILDING)
        tx = TransactionDescription(
            operation=run.operation.value,
            signer=signer,
            inputs=list(plan.inputs),
            reference_inputs=list(plan.reference_inputs),
            outputs=list(plan.all_outputs),
            mint=dict(plan.mint),
            fee=plan.fee,
            validity=validity,
            redeemers=dict(plan.redeemers),
            metadata={"summary": summary},
        )
        submitted = await asyncio.shield(self._submit(tx))
        if not submitted.ok:
            return self._failed(run, submitted, now)

        run.advance(Stage.SUBMITTED)
        outcome = OperationOutcome(
            tx_hash=submitted.data,
            operation=run.operation,
            summary=summary,
            token_deltas=list(plan.token_deltas),
            warnings=list(run.warnings),
            validity=validity,
            selection=selection,
            details=details,
        )
        run.advance(Stage.DONE)
        self._record(run, now, tx_hash=outcome.tx_hash)
        return success(outcome)

    async def _submit(self, tx: TransactionDescription) -> Result[str]:
        try:
            result = await self.provider.submit_transaction(tx)
        except Exception as exc:
            return from_exception(exc, ErrorCode.TRANSACTION_FAILED, prefix="Transaction submission failed")
        if result.ok:
            return result
        if result.code == ErrorCode.TRANSACTION_FAILED:
            return result
        return failure(
            ErrorCode.TRANSACTION_FAILED,
            result.message,
            {**result.context, "provider_code": result.code.value},
        )

    async def _utxos(self, address: str) -> Result[List[Utxo]]:
        try:
            return await self.provider.get_utxos(address)
        except Exception as exc:
            return _snapshot_failure(exc, "UTXO query", address=address)

    async def _oracle_record(self, game_id: int, pot_address: str):
        try:
            return await self.provider.get_oracle_record(game_id, pot_address)
        except Exception as exc:
            return _snapshot_failure(exc, "Oracle query", game_id=game_id)

    def _failed(self, run: OrchestrationRun, error: Failure, now: int) -> Failure:
        tagged = run.fail(error)
        self._record(run, now, error=tagged)
        return tagged

    def _record(
        self,
        run: OrchestrationRun,
        now: int,
        tx_hash: Optional[str] = None,
        error: Optional[Failure] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "operation": run.operation.value,
            "stage": run.stage.value,
            "stages": [s.value for s in run.history],
            "key": operation_dedupe_key(
                run.operation.value, run.actor, run.game_id, now, self.settings.logging.dedupe_bucket_ms
            ),
            "warnings": list(run.warnings),
        }
        if tx_hash is not None:
            payload["tx_hash"] = tx_hash
            bt.logging.info({"operation_done": payload})
        if error is not None:
            payload["error"] = error.to_dict()
            bt.logging.warning({"operation_failed": payload})
        emit_event(payload)


async def place_bet(
    request: PlaceBetRequest, provider: LedgerProvider, settings: BeadSettings
) -> Result[OperationOutcome]:
    return await TransactionOrchestrator(provider, settings).place_bet(request)


async def purchase_token(
    request: PurchaseTokenRequest, provider: LedgerProvider, settings: BeadSettings
) -> Result[OperationOutcome]:
    return await TransactionOrchestrator(provider, settings).purchase_token(request)


async def redeem_bet(
    request: RedeemBetRequest, provider: LedgerProvider, settings: BeadSettings
) -> Result[OperationOutcome]:
    return await TransactionOrchestrator(provider, settings).redeem_bet(request)


async def publish_game_result(
    request: PublishResultRequest, provider: LedgerProvider, settings: BeadSettings
) -> Result[OperationOutcome]:
    return await TransactionOrchestrator(provider, settings).publish_game_result(request)


__all__ = [
    "Stage",
    "TRANSITIONS",
    "IllegalTransition",
    "OrchestrationRun",
    "TransactionOrchestrator",
    "place_bet",
    "purchase_token",
    "redeem_bet",
    "publish_game_result",
]
