"""UTXO selection.

Picks the inputs that fund one transaction from a point-in-time snapshot.
Outputs holding requested native tokens are taken first as required inputs;
the lovelace remainder is then covered by the first strategy in
``STRATEGIES`` that finds a pick:

1. OPTIMAL - bounded subset search over the K largest candidates. Takes an
   exact cover (slack <= epsilon) at the smallest cardinality, otherwise the
   tightest subset at the smallest admissible cardinality when it beats the
   largest-first prefix.
2. GREEDY - largest first until covered.
3. FALLBACK - GREEDY with dust outputs admitted.

Every pick leaves change of zero or at least ``min_output``, counting any
credit the transaction receives from inputs selected elsewhere. The selector
never queries the ledger and never mutates the snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from itertools import combinations
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from bead.config import SelectionSettings
from bead.ledger.types import Utxo
from bead.protocol.models import SelectionResult
from bead.shared.decimal_utils import round_decimal, safe_divide
from bead.shared.enums import SelectionStrategy
from bead.shared.result import ErrorCode, Result, failure, success


@dataclass(frozen=True)
class SelectorParams:
    min_output: int = 1_000_000
    dust_threshold: int = 1_000_000
    max_inputs: int = 50
    optimal_candidates: int = 12
    epsilon: int = 0
    fee_reserve: int = 0
    min_efficiency: Decimal = Decimal("0.5")

    @classmethod
    def from_settings(cls, settings: SelectionSettings, fee_reserve: Optional[int] = None) -> "SelectorParams":
        return cls(
            min_output=settings.min_output_lovelace,
            dust_threshold=settings.dust_threshold_lovelace,
            max_inputs=settings.max_inputs,
            optimal_candidates=settings.optimal_candidates,
            epsilon=settings.epsilon,
            fee_reserve=settings.fee_reserve if fee_reserve is None else fee_reserve,
            min_efficiency=settings.min_efficiency,
        )


@dataclass(frozen=True)
class _Pool:
    """Classified snapshot for one selection call."""

    required: Tuple[Utxo, ...]
    candidates: Tuple[Utxo, ...]
    dust: Tuple[Utxo, ...]
    need: int
    params: SelectorParams

    @property
    def required_value(self) -> int:
        return sum(u.lovelace for u in self.required)

    @property
    def free_slots(self) -> int:
        return self.params.max_inputs - len(self.required)

    def change_ok(self, total: int) -> bool:
        change = total - self.need
        return change == 0 or change >= self.params.min_output


@dataclass(frozen=True)
class _Pick:
    chosen: Tuple[Utxo, ...]
    strategy: SelectionStrategy
    dust_used: int = 0


def _by_value(utxos: Sequence[Utxo]) -> List[Utxo]:
    return sorted(utxos, key=lambda u: (-u.lovelace, str(u.ref)))


def _prefix_cover(pool: _Pool, ordered: Sequence[Utxo], limit: int) -> Optional[Tuple[Utxo, ...]]:
    total = pool.required_value
    if total >= pool.need and pool.change_ok(total):
        return ()
    taken: List[Utxo] = []
    for utxo in ordered:
        if len(taken) >= limit:
            return None
        taken.append(utxo)
        total += utxo.lovelace
        if total >= pool.need and pool.change_ok(total):
            return tuple(taken)
    return None


def _slack(pool: _Pool, chosen: Sequence[Utxo]) -> int:
    return pool.required_value + sum(u.lovelace for u in chosen) - pool.need


def select_optimal(pool: _Pool) -> Optional[_Pick]:
    top = pool.candidates[: pool.params.optimal_candidates]
    baseline = _prefix_cover(pool, pool.candidates, pool.free_slots)
    baseline_slack = _slack(pool, baseline) if baseline is not None else None

    first_admissible: Optional[Tuple[Utxo, ...]] = None
    for size in range(0, min(len(top), pool.free_slots) + 1):
        best: Optional[Tuple[Utxo, ...]] = None
        best_slack = 0
        for combo in combinations(top, size):
            total = pool.required_value + sum(u.lovelace for u in combo)
            if total < pool.need or not pool.change_ok(total):
                continue
            slack = total - pool.need
            if best is None or slack < best_slack:
                best, best_slack = combo, slack
        if best is None:
            continue
        if best_slack <= pool.params.epsilon:
            return _Pick(chosen=best, strategy=SelectionStrategy.OPTIMAL)
        if first_admissible is None:
            first_admissible = best

    if first_admissible is None:
        return None
    if baseline_slack is None or _slack(pool, first_admissible) < baseline_slack:
        return _Pick(chosen=first_admissible, strategy=SelectionStrategy.OPTIMAL)
    return None


def select_greedy(pool: _Pool) -> Optional[_Pick]:
    chosen = _prefix_cover(pool, pool.candidates, pool.free_slots)
    if chosen is None:
        return None
    return _Pick(chosen=chosen, strategy=SelectionStrategy.GREEDY)


def select_fallback(pool: _Pool) -> Optional[_Pick]:
    if not pool.dust:
        return None
    chosen = _prefix_cover(pool, _by_value(pool.candidates + pool.dust), pool.free_slots)
    if chosen is None:
        return None
    dust_refs = {u.ref for u in pool.dust}
    return _Pick(
        chosen=chosen,
        strategy=SelectionStrategy.FALLBACK,
        dust_used=sum(1 for u in chosen if u.ref in dust_refs),
    )


Strategy = Callable[[_Pool], Optional[_Pick]]

STRATEGIES: Tuple[Strategy, ...] = (select_optimal, select_greedy, select_fallback)


def selection_efficiency(target: int, total_input: int) -> Decimal:
    if total_input == 0:
        return Decimal("1") if target == 0 else Decimal("0")
    return round_decimal(safe_divide(Decimal(target), Decimal(total_input)))


class UtxoSelector:
    def __init__(self, params: SelectorParams | None = None, strategies: Sequence[Strategy] = STRATEGIES):
        self.params = params or SelectorParams()
        self.strategies = tuple(strategies)

    def select(
        self,
        utxos: Sequence[Utxo],
        target: int,
        asset_targets: Mapping[str, int] | None = None,
        credit: int = 0,
    ) -> Result[SelectionResult]:
        """Select inputs covering ``target`` lovelace plus the fee reserve.

        ``asset_targets`` maps token units to the quantity that must be present
        in the selected inputs. ``credit`` is lovelace the same transaction
        receives from inputs outside this snapshot (a pot payout); it counts
        toward the cover and toward the change left for the actor.
        """
        if target < 0 or credit < 0:
            field, value = ("target", target) if target < 0 else ("credit", credit)
            return failure(
                ErrorCode.INVALID_INPUT,
                f"Selection {field} cannot be negative",
                {"field": field, "value": value, "expected": ">= 0"},
            )
        asset_targets = {unit: qty for unit, qty in (asset_targets or {}).items() if qty > 0}
        need = target + self.params.fee_reserve - credit

        required_result = self._required_inputs(utxos, asset_targets)
        if not required_result.ok:
            return required_result
        required: Tuple[Utxo, ...] = required_result.data

        required_refs = {u.ref for u in required}
        rest = [u for u in utxos if u.ref not in required_refs]
        dust = tuple(_by_value(u for u in rest if u.native_only and u.lovelace < self.params.dust_threshold))
        dust_refs = {u.ref for u in dust}
        candidates = tuple(_by_value(u for u in rest if u.ref not in dust_refs))
        pool = _Pool(required=required, candidates=candidates, dust=dust, need=need, params=self.params)

        if len(required) > self.params.max_inputs:
            return self._too_many(pool, len(required))

        for strategy in self.strategies:
            pick = strategy(pool)
            if pick is not None:
                return success(self._build(pool, pick, target, asset_targets, credit))
        return self._no_pick(pool)

    def _required_inputs(
        self,
        utxos: Sequence[Utxo],
        asset_targets: Mapping[str, int],
    ) -> Result[Tuple[Utxo, ...]]:
        required: List[Utxo] = []
        for unit, wanted in sorted(asset_targets.items()):
            held = sum(u.quantity(unit) for u in required)
            holders = sorted(
                (u for u in utxos if u.quantity(unit) > 0 and u not in required),
                key=lambda u: (-u.quantity(unit), -u.lovelace, str(u.ref)),
            )
            for utxo in holders:
                if held >= wanted:
                    break
                required.append(utxo)
                held += utxo.quantity(unit)
            if held < wanted:
                available = sum(u.quantity(unit) for u in utxos)
                return failure(
                    ErrorCode.INSUFFICIENT_FUNDS,
                    f"Insufficient token balance: need {wanted}, have {available}",
                    {"unit": unit, "required": wanted, "available": available},
                )
        return success(tuple(required))

    def _build(
        self,
        pool: _Pool,
        pick: _Pick,
        target: int,
        asset_targets: Mapping[str, int],
        credit: int,
    ) -> SelectionResult:
        inputs = pool.required + pick.chosen
        total = sum(u.lovelace for u in inputs)
        return SelectionResult(
            target_amount=target,
            selected=[u.ref for u in inputs],
            total_input=total,
            change=total - pool.need,
            fee_reserve=self.params.fee_reserve,
            efficiency=selection_efficiency(target, total),
            strategy=pick.strategy,
            dust_utxos_skipped=len(pool.dust) - pick.dust_used,
            asset_targets=dict(asset_targets),
            credit=credit,
        )

    def _too_many(self, pool: _Pool, needed: int) -> Result[SelectionResult]:
        return failure(
            ErrorCode.TOO_MANY_INPUTS,
            f"Covering the target needs {needed} inputs; the limit is {self.params.max_inputs}",
            {"required_inputs": needed, "max_inputs": self.params.max_inputs, "target": pool.need},
        )

    def _no_pick(self, pool: _Pool) -> Result[SelectionResult]:
        everything = _by_value(pool.candidates + pool.dust)
        available = pool.required_value + sum(u.lovelace for u in everything)
        context: Dict[str, int] = {
            "required": pool.need,
            "available": available,
            "dust_utxos": len(pool.dust),
        }
        if available < pool.need:
            return failure(
                ErrorCode.INSUFFICIENT_FUNDS,
                f"Insufficient funds: need {pool.need} lovelace, have {available}",
                context,
            )
        uncapped = _prefix_cover(pool, everything, len(everything))
        if uncapped is not None and len(pool.required) + len(uncapped) > self.params.max_inputs:
            return self._too_many(pool, len(pool.required) + len(uncapped))
        context["min_output"] = self.params.min_output
        return failure(
            ErrorCode.INSUFFICIENT_FUNDS,
            "Available funds only cover the target with change below the minimum output value",
            context,
        )


def selection_warnings(result: SelectionResult, params: SelectorParams) -> List[str]:
    warnings: List[str] = []
    if result.dust_utxos_skipped:
        warnings.append(f"{result.dust_utxos_skipped} dust UTXO(s) skipped")
    if result.strategy == SelectionStrategy.FALLBACK:
        warnings.append("Dust UTXOs were spent to reach the target")
    if result.target_amount and result.efficiency < params.min_efficiency:
        warnings.append(f"Low selection efficiency: {result.efficiency:.1%} of gathered input is used")
    return warnings


def pick_inputs(utxos: Sequence[Utxo], result: SelectionResult) -> List[Utxo]:
    """Map selected refs back onto the snapshot, preserving selection order."""
    by_ref = {u.ref: u for u in utxos}
    return [by_ref[ref] for ref in result.selected]


__all__ = [
    "SelectorParams",
    "UtxoSelector",
    "STRATEGIES",
    "select_optimal",
    "select_greedy",
    "select_fallback",
    "selection_efficiency",
    "selection_warnings",
    "pick_inputs",
]
