"""Token accounting.

Turns a validated request plus its selected inputs into an ``AccountingPlan``:
the exact inputs, outputs, mint/burn map and fee of one transaction. Every
plan goes through ``check_plan`` before it leaves this module, so a plan that
reaches the orchestrator balances:

- native: sum of signed lovelace flows (inputs negative, outputs and explicit
  distributions positive) plus the fee is zero;
- tokens: for each unit, inputs + mint == outputs;
- burns never exceed what the consumed inputs hold;
- bet-token mints equal ``lovelace + bead * bead_scale_factor``;
- every output carries at least ``min_output`` lovelace.

Any violation is an ``ACCOUNTING_ERROR``; nothing is absorbed into the fee.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from bead.config import BeadSettings, PurchaseTier
from bead.ledger.assets import add_assets, bet_unit, bet_units_by_outcome, oracle_unit
from bead.ledger.types import (
    NATIVE_UNIT,
    OracleRecord,
    TxOutput,
    Utxo,
    bet_datum,
    is_oracle_output,
    oracle_datum,
)
from bead.protocol.models import (
    AdaDistribution,
    PlaceBetRequest,
    PublishResultRequest,
    PurchaseTokenRequest,
    RedeemBetRequest,
    TokenDelta,
)
from bead.shared.decimal_utils import LOVELACE_PER_ADA, floor_int, floor_mul_div, round_decimal
from bead.shared.enums import AssetClass, GameOutcome
from bead.shared.result import ErrorCode, Result, failure, success

from .oracle import OracleVerdict
from .validation import referral_share


@dataclass(frozen=True)
class AccountingPlan:
    inputs: Tuple[Utxo, ...]
    outputs: Tuple[TxOutput, ...]
    mint: Dict[str, int]
    token_deltas: Tuple[TokenDelta, ...]
    fee: int
    reference_inputs: Tuple[Utxo, ...] = ()
    distributions: Tuple[TxOutput, ...] = ()
    redeemers: Dict[str, Any] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    @property
    def all_outputs(self) -> Tuple[TxOutput, ...]:
        return self.outputs + self.distributions

    def native_flows(self) -> List[int]:
        """Signed lovelace movements: inputs negative, outputs positive."""
        return [-u.lovelace for u in self.inputs] + [o.lovelace for o in self.all_outputs]

    @property
    def native_imbalance(self) -> int:
        return sum(self.native_flows()) + self.fee


def check_plan(
    plan: AccountingPlan,
    min_output: int,
    expected_mint: Optional[Mapping[str, int]] = None,
) -> Result[AccountingPlan]:
    if plan.native_imbalance != 0:
        return failure(
            ErrorCode.ACCOUNTING_ERROR,
            "Native balance does not close: inputs must equal outputs plus fee",
            {"imbalance": plan.native_imbalance, "fee": plan.fee},
        )

    for output in plan.all_outputs:
        if output.lovelace < min_output:
            return failure(
                ErrorCode.ACCOUNTING_ERROR,
                f"Output '{output.label}' holds less than the minimum output value",
                {"label": output.label, "lovelace": output.lovelace, "min_output": min_output},
            )
        negative = [unit for unit, qty in output.assets.items() if qty < 0]
        if negative:
            return failure(
                ErrorCode.ACCOUNTING_ERROR,
                f"Output '{output.label}' carries a negative quantity",
                {"label": output.label, "units": negative},
            )

    units = set(plan.mint)
    for u in plan.inputs:
        units.update(u.token_units())
    for o in plan.all_outputs:
        units.update(unit for unit in o.assets if unit != NATIVE_UNIT)

    for unit in sorted(units):
        held = sum(u.quantity(unit) for u in plan.inputs)
        minted = int(plan.mint.get(unit, 0))
        paid = sum(o.quantity(unit) for o in plan.all_outputs)
        if minted < 0 and -minted > held:
            return failure(
                ErrorCode.ACCOUNTING_ERROR,
                "Burn exceeds the quantity held by the consumed inputs",
                {"unit": unit, "burn": -minted, "held": held},
            )
        if held + minted != paid:
            return failure(
                ErrorCode.ACCOUNTING_ERROR,
                "Token quantities are not conserved",
                {"unit": unit, "inputs": held, "mint": minted, "outputs": paid},
            )

    for unit, qty in (expected_mint or {}).items():
        if plan.mint.get(unit) != qty:
            return failure(
                ErrorCode.ACCOUNTING_ERROR,
                "Minted quantity does not match the stake mapping",
                {"unit": unit, "expected": qty, "actual": plan.mint.get(unit)},
            )
    return success(plan)


def _leftover(
    inputs: Sequence[Utxo],
    mint: Mapping[str, int],
    outputs: Sequence[TxOutput],
    fee: int,
    extra_lovelace: int = 0,
) -> Dict[str, int]:
    spent = [{unit: -qty for unit, qty in o.assets.items()} for o in outputs]
    return add_assets(
        *(u.assets for u in inputs),
        mint,
        *spent,
        {NATIVE_UNIT: extra_lovelace - fee},
    )


def _with_change(
    address: str,
    outputs: List[TxOutput],
    leftover: Dict[str, int],
    fold_into: Optional[int] = None,
    label: str = "change",
) -> List[TxOutput]:
    """Append a change output, or fold token-only leftovers into ``outputs[fold_into]``."""
    tokens = {unit: qty for unit, qty in leftover.items() if unit != NATIVE_UNIT and qty != 0}
    lovelace = leftover.get(NATIVE_UNIT, 0)
    if lovelace == 0 and not tokens:
        return outputs
    if lovelace == 0 and fold_into is not None:
        target = outputs[fold_into]
        outputs[fold_into] = target.model_copy(update={"assets": add_assets(target.assets, tokens)})
        return outputs
    outputs.append(TxOutput(address=address, assets=dict(leftover), label=label))
    return outputs


# ─────────────────────────────────────────────────────────────────────────────
# Purchase tiers
# ─────────────────────────────────────────────────────────────────────────────


def tier_for(contribution: int, tiers: Sequence[PurchaseTier]) -> Optional[PurchaseTier]:
    """Highest tier whose floor the contribution reaches."""
    chosen = None
    for tier in tiers:
        if contribution >= tier.min_lovelace:
            chosen = tier
    return chosen


def bead_for(contribution: int, tier: PurchaseTier) -> int:
    return floor_int(Decimal(contribution) * tier.bead_per_ada / Decimal(LOVELACE_PER_ADA))


@dataclass(frozen=True)
class PurchaseQuote:
    tier: PurchaseTier
    bead_minted: int
    referral_tokens: int
    distribution: Optional[AdaDistribution]
    referral_bonus: Optional[Decimal]
    warnings: Tuple[str, ...] = ()


def quote_purchase(request: PurchaseTokenRequest, settings: BeadSettings) -> Result[PurchaseQuote]:
    contribution = request.contribution_lovelace
    tokenomics = settings.tokenomics
    tier = tier_for(contribution, tokenomics.tiers)
    if tier is None:
        return failure(
            ErrorCode.INVALID_INPUT,
            "Contribution is below the lowest purchase tier",
            {"field": "contribution_lovelace", "value": contribution, "expected": "contribution >= lowest tier"},
        )
    bead_minted = bead_for(contribution, tier)
    if bead_minted <= 0:
        return failure(
            ErrorCode.INVALID_INPUT,
            "Contribution is too small to mint any BEAD",
            {"field": "contribution_lovelace", "value": contribution, "expected": "at least one BEAD"},
        )
    if not request.referral_address:
        return success(
            PurchaseQuote(tier=tier, bead_minted=bead_minted, referral_tokens=0, distribution=None, referral_bonus=None)
        )

    share = referral_share(contribution, settings)
    percentage = round_decimal(Decimal(tokenomics.effective_referral_bps) / Decimal(100))
    warnings: Tuple[str, ...] = ()
    if share < tokenomics.recommended_referral_lovelace:
        warnings = (f"Referral bonus of {share} lovelace is below the recommended minimum",)
    return success(
        PurchaseQuote(
            tier=tier,
            bead_minted=bead_minted,
            referral_tokens=tier.referral_tokens,
            distribution=AdaDistribution(
                treasury=contribution - share,
                referral=share,
                referral_percentage=percentage,
            ),
            referral_bonus=percentage,
            warnings=warnings,
        )
    )


# ─────────────────────────────────────────────────────────────────────────────
# Redemption
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RedemptionCalc:
    eligible: bool
    tokens_burned: int
    payout: int
    multiplier: Decimal


def compute_redemption(verdict: OracleVerdict, held: int) -> Result[RedemptionCalc]:
    """Payout = floor(held * total_pool / total_winnings) for winning tokens.

    Losing tokens redeem for zero. When nobody backed the winner the
    multiplier is zero and the pot stays put for treasury collection.
    """
    record = verdict.record
    if held <= 0:
        return failure(
            ErrorCode.INSUFFICIENT_FUNDS,
            "No bet tokens to redeem for this game and outcome",
            {"game_id": record.game_id, "outcome": verdict.predicted.value},
        )
    if not verdict.eligible:
        return success(RedemptionCalc(eligible=False, tokens_burned=held, payout=0, multiplier=Decimal("0")))
    if record.total_winnings == 0 or held > record.total_winnings:
        return failure(
            ErrorCode.ACCOUNTING_ERROR,
            "Held winning tokens exceed the oracle's total winnings",
            {"held": held, "total_winnings": record.total_winnings, "game_id": record.game_id},
        )
    payout = floor_mul_div(held, record.total_pool, record.total_winnings)
    multiplier = round_decimal(Decimal(record.total_pool) / Decimal(record.total_winnings))
    return success(RedemptionCalc(eligible=True, tokens_burned=held, payout=payout, multiplier=multiplier))


# ─────────────────────────────────────────────────────────────────────────────
# Result publication
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GameStats:
    total_pool: int
    bets_by_outcome: Dict[GameOutcome, int]
    bettors_scanned: int

    def winnings_for(self, winner: GameOutcome) -> int:
        return self.bets_by_outcome.get(winner, 0)


def game_stats(
    pot_utxos: Sequence[Utxo],
    bettor_snapshots: Mapping[str, Sequence[Utxo]],
    bet_policy_id: str,
    game_name: str,
) -> GameStats:
    units = bet_units_by_outcome(bet_policy_id, game_name)
    totals = {outcome: 0 for outcome in GameOutcome}
    for utxos in bettor_snapshots.values():
        for outcome, unit in units.items():
            totals[outcome] += sum(u.quantity(unit) for u in utxos)
    pool = sum(u.lovelace for u in pot_utxos if not is_oracle_output(u))
    return GameStats(total_pool=pool, bets_by_outcome=totals, bettors_scanned=len(bettor_snapshots))


# ─────────────────────────────────────────────────────────────────────────────
# Plans
# ─────────────────────────────────────────────────────────────────────────────


class TokenAccountant:
    def __init__(self, settings: BeadSettings):
        self.settings = settings
        self.min_output = settings.selection.min_output_lovelace
        self.fee = settings.selection.fee_reserve

    # Selection targets -------------------------------------------------------

    def bet_targets(self, request: PlaceBetRequest) -> Tuple[int, Dict[str, int]]:
        assets = {self.settings.scripts.bead_unit: request.bead} if request.bead else {}
        return request.lovelace + self.min_output, assets

    def purchase_target(self, request: PurchaseTokenRequest) -> int:
        return request.contribution_lovelace + self.min_output

    def publish_target(self) -> int:
        return self.settings.redemption.oracle_deposit_lovelace

    def bet_token_quantity(self, request: PlaceBetRequest) -> int:
        return request.lovelace + request.bead * self.settings.tokenomics.bead_scale_factor

    # PlaceBet ----------------------------------------------------------------

    def plan_place_bet(self, request: PlaceBetRequest, inputs: Sequence[Utxo]) -> Result[AccountingPlan]:
        unit = bet_unit(request.scripts.bet_policy_id, request.outcome, request.game.name)
        quantity = self.bet_token_quantity(request)
        bead_unit = self.settings.scripts.bead_unit

        mint: Dict[str, int] = {unit: quantity}
        deltas = [TokenDelta(unit=unit, asset_class=AssetClass.BET, quantity=quantity)]
        if request.bead:
            mint[bead_unit] = -request.bead
            deltas.append(TokenDelta(unit=bead_unit, asset_class=AssetClass.UTILITY, quantity=-request.bead))

        outputs = [
            TxOutput(
                address=request.scripts.pot_address,
                assets={NATIVE_UNIT: request.lovelace},
                datum=bet_datum(request.game.id, request.game.name, request.outcome, request.actor, unit),
                label="pot",
            ),
            TxOutput(
                address=request.actor,
                assets={NATIVE_UNIT: self.min_output, unit: quantity},
                label="bet_tokens",
            ),
        ]
        outputs = _with_change(request.actor, outputs, _leftover(inputs, mint, outputs, self.fee), fold_into=1)

        plan = AccountingPlan(
            inputs=tuple(inputs),
            outputs=tuple(outputs),
            mint=mint,
            token_deltas=tuple(deltas),
            fee=self.fee,
            redeemers={
                "bet_mint": {"action": "bet", "outcome": request.outcome.code, "game": request.game.id},
                **({"bead_burn": {"action": "burn", "quantity": request.bead}} if request.bead else {}),
            },
        )
        return check_plan(plan, self.min_output, expected_mint={unit: quantity})

    # PurchaseToken -----------------------------------------------------------

    def plan_purchase(
        self,
        request: PurchaseTokenRequest,
        quote: PurchaseQuote,
        inputs: Sequence[Utxo],
    ) -> Result[AccountingPlan]:
        scripts = self.settings.scripts
        mint: Dict[str, int] = {scripts.bead_unit: quote.bead_minted}
        deltas = [TokenDelta(unit=scripts.bead_unit, asset_class=AssetClass.UTILITY, quantity=quote.bead_minted)]

        if quote.distribution is not None and request.referral_address:
            referral_assets: Dict[str, int] = {NATIVE_UNIT: quote.distribution.referral}
            if quote.referral_tokens:
                mint[scripts.referral_unit] = quote.referral_tokens
                referral_assets[scripts.referral_unit] = quote.referral_tokens
                deltas.append(
                    TokenDelta(unit=scripts.referral_unit, asset_class=AssetClass.REFERRAL, quantity=quote.referral_tokens)
                )
            distributions = (
                TxOutput(
                    address=scripts.treasury_address,
                    assets={NATIVE_UNIT: quote.distribution.treasury},
                    label="treasury",
                ),
                TxOutput(address=request.referral_address, assets=referral_assets, label="referral"),
            )
        else:
            distributions = (
                TxOutput(
                    address=scripts.treasury_address,
                    assets={NATIVE_UNIT: request.contribution_lovelace},
                    label="treasury",
                ),
            )

        outputs = [
            TxOutput(
                address=request.actor,
                assets={NATIVE_UNIT: self.min_output, scripts.bead_unit: quote.bead_minted},
                label="bead_tokens",
            )
        ]
        leftover = _leftover(inputs, mint, outputs + list(distributions), self.fee)
        outputs = _with_change(request.actor, outputs, leftover, fold_into=0)

        plan = AccountingPlan(
            inputs=tuple(inputs),
            outputs=tuple(outputs),
            mint=mint,
            token_deltas=tuple(deltas),
            fee=self.fee,
            distributions=distributions,
            redeemers={"bead_mint": {"action": "buy_with_referral" if request.referral_address else "buy"}},
            warnings=quote.warnings,
        )
        return check_plan(plan, self.min_output)

    # RedeemBet ---------------------------------------------------------------

    def held_bet_tokens(self, request: RedeemBetRequest, actor_utxos: Sequence[Utxo]) -> Tuple[str, int]:
        unit = bet_unit(request.scripts.bet_policy_id, request.outcome, request.game.name)
        return unit, sum(u.quantity(unit) for u in actor_utxos)

    def plan_redeem(
        self,
        request: RedeemBetRequest,
        calc: RedemptionCalc,
        record: OracleRecord,
        actor_inputs: Sequence[Utxo],
        pot_inputs: Sequence[Utxo],
    ) -> Result[AccountingPlan]:
        unit = bet_unit(request.scripts.bet_policy_id, request.outcome, request.game.name)
        mint: Dict[str, int] = {unit: -calc.tokens_burned}
        deltas = [TokenDelta(unit=unit, asset_class=AssetClass.BET, quantity=-calc.tokens_burned)]
        redeemers: Dict[str, Any] = {
            "bet_burn": {"action": "redeem", "outcome": request.outcome.code, "game": request.game.id},
        }

        inputs = list(actor_inputs) + list(pot_inputs)
        reference_inputs: Tuple[Utxo, ...] = ()
        pot_return = sum(u.lovelace for u in pot_inputs) - calc.payout

        if request.finalize_oracle:
            if record.utxo is None or not record.oracle_unit:
                return failure(
                    ErrorCode.GAME_NOT_FOUND,
                    "Oracle record output is not spendable; cannot finalize",
                    {"game_id": request.game.id},
                )
            oracle_qty = record.utxo.quantity(record.oracle_unit)
            inputs.append(record.utxo)
            mint[record.oracle_unit] = -oracle_qty
            deltas.append(TokenDelta(unit=record.oracle_unit, asset_class=AssetClass.ORACLE, quantity=-oracle_qty))
            redeemers["oracle_burn"] = {"action": "close", "game": request.game.id}
            pot_return += record.utxo.lovelace
        elif record.utxo is not None:
            reference_inputs = (record.utxo,)

        outputs: List[TxOutput] = []
        if pot_inputs:
            redeemers["pot_spend"] = {"action": "payout", "amount": calc.payout}
        if pot_return > 0:
            outputs.append(
                TxOutput(
                    address=request.scripts.pot_address,
                    assets={NATIVE_UNIT: pot_return},
                    datum={"kind": "pot", "game": request.game.id},
                    label="pot_change",
                )
            )
        actor_leftover = _leftover(actor_inputs, {unit: -calc.tokens_burned}, [], self.fee, extra_lovelace=calc.payout)
        outputs = _with_change(request.actor, outputs, actor_leftover, label="payout")

        plan = AccountingPlan(
            inputs=tuple(inputs),
            outputs=tuple(outputs),
            mint=mint,
            token_deltas=tuple(deltas),
            fee=self.fee,
            reference_inputs=reference_inputs,
            redeemers=redeemers,
        )
        return check_plan(plan, self.min_output)

    # PublishGameResult -------------------------------------------------------

    def plan_publish(
        self,
        request: PublishResultRequest,
        stats: GameStats,
        inputs: Sequence[Utxo],
    ) -> Result[Tuple[AccountingPlan, str]]:
        unit = oracle_unit(request.scripts.oracle_policy_id, request.score_label)
        mint = {unit: 1}
        outputs = [
            TxOutput(
                address=request.scripts.pot_address,
                assets={NATIVE_UNIT: self.settings.redemption.oracle_deposit_lovelace, unit: 1},
                datum=oracle_datum(
                    game_id=request.game.id,
                    winner=request.outcome,
                    game_policy_id=request.scripts.bet_policy_id,
                    total_pool=stats.total_pool,
                    total_winnings=stats.winnings_for(request.outcome),
                ),
                label="oracle",
            )
        ]
        outputs = _with_change(request.actor, outputs, _leftover(inputs, mint, outputs, self.fee))
        plan = AccountingPlan(
            inputs=tuple(inputs),
            outputs=tuple(outputs),
            mint=mint,
            token_deltas=(TokenDelta(unit=unit, asset_class=AssetClass.ORACLE, quantity=1),),
            fee=self.fee,
            redeemers={"oracle_mint": {"action": "publish", "winner": request.outcome.code}},
        )
        checked = check_plan(plan, self.min_output, expected_mint={unit: 1})
        if not checked.ok:
            return checked
        return success((checked.data, unit))


__all__ = [
    "AccountingPlan",
    "check_plan",
    "tier_for",
    "bead_for",
    "PurchaseQuote",
    "quote_purchase",
    "RedemptionCalc",
    "compute_redemption",
    "GameStats",
    "game_stats",
    "TokenAccountant",
]
