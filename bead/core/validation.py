"""Request validation as a table of named rules.

Every rule reads one field (dotted path) from the request and applies a pure
predicate. ``run_rules`` stops at the first violation and reports it as
``INVALID_INPUT`` with the rule name, field, offending value and the expected
format. Nothing here touches the ledger or mutates the request, so validating
the same request twice gives the same result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from bead.config import BeadSettings
from bead.shared.enums import GameOutcome, OperationKind
from bead.shared.result import ErrorCode, Result, failure, success

ADDRESS_PATTERN = re.compile(r"^(addr|addr_test)1[0-9a-z]+$")
POLICY_ID_PATTERN = re.compile(r"^[0-9a-f]{56}$")


@dataclass(frozen=True)
class ValidationContext:
    settings: BeadSettings
    now_ms: int


Check = Callable[[Any, Any, ValidationContext], bool]


@dataclass(frozen=True)
class Rule:
    name: str
    field: str
    check: Check
    expected: str
    message: str
    suggestions: Tuple[str, ...] = ()
    optional: bool = False


def _resolve(obj: Any, path: str) -> Any:
    value = obj
    for part in path.split("."):
        value = getattr(value, part, None)
        if value is None:
            return None
    return value


def _reportable(value: Any) -> Any:
    if isinstance(value, (int, str, float, bool)) or value is None:
        return value
    return str(value)


def run_rules(rules: Sequence[Rule], request: Any, ctx: ValidationContext) -> Result[Any]:
    for rule in rules:
        value = _resolve(request, rule.field)
        if value is None and rule.optional:
            continue
        try:
            ok = bool(rule.check(value, request, ctx))
        except (TypeError, ValueError, ArithmeticError):
            ok = False
        if not ok:
            return failure(
                ErrorCode.INVALID_INPUT,
                rule.message,
                {
                    "rule": rule.name,
                    "field": rule.field,
                    "value": _reportable(value),
                    "expected": rule.expected,
                },
                rule.suggestions or None,
            )
    return success(request)


# ─────────────────────────────────────────────────────────────────────────────
# Predicates
# ─────────────────────────────────────────────────────────────────────────────


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_address(value: Any, _req: Any, _ctx: ValidationContext) -> bool:
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def _on_network(value: Any, _req: Any, ctx: ValidationContext) -> bool:
    return str(value).startswith(ctx.settings.chain.address_prefix + "1")


def _is_policy_id(value: Any, _req: Any, _ctx: ValidationContext) -> bool:
    return isinstance(value, str) and bool(POLICY_ID_PATTERN.match(value))


def _game_id_in_range(value: Any, _req: Any, ctx: ValidationContext) -> bool:
    return _is_int(value) and 1 <= value <= ctx.settings.limits.max_game_id


def _game_name_ok(value: Any, _req: Any, ctx: ValidationContext) -> bool:
    return isinstance(value, str) and bool(value.strip()) and len(value) <= ctx.settings.limits.max_game_name_length


def _is_outcome(value: Any, _req: Any, _ctx: ValidationContext) -> bool:
    return isinstance(value, GameOutcome)


def _non_negative(value: Any, _req: Any, _ctx: ValidationContext) -> bool:
    return _is_int(value) and value >= 0


def _bet_stake_value(req: Any, ctx: ValidationContext) -> int:
    return req.lovelace + req.bead * ctx.settings.tokenomics.bead_scale_factor


def referral_share(contribution: int, settings: BeadSettings) -> int:
    return (contribution * settings.tokenomics.effective_referral_bps) // 10_000


_ADDRESS_HINT = "bech32 address starting with addr1 or addr_test1"
_AMOUNT_HINT = "non-negative integer in minor units"


def _actor_rules() -> Tuple[Rule, ...]:
    return (
        Rule(
            name="actor_address",
            field="actor",
            check=_is_address,
            expected=_ADDRESS_HINT,
            message="Actor address is not a valid bech32 address",
            suggestions=("Copy the address again from your wallet",),
        ),
        Rule(
            name="actor_network",
            field="actor",
            check=_on_network,
            expected="address on the configured network",
            message="Actor address belongs to a different network",
            suggestions=("Switch your wallet to the configured network",),
        ),
    )


def _game_rules() -> Tuple[Rule, ...]:
    return (
        Rule(
            name="game_id_range",
            field="game.id",
            check=_game_id_in_range,
            expected="integer between 1 and max_game_id",
            message="Game id must be a positive integer within protocol limits",
            suggestions=("Check the game id in the schedule",),
        ),
        Rule(
            name="game_name_length",
            field="game.name",
            check=_game_name_ok,
            expected="non-empty text up to max_game_name_length characters",
            message="Game name is empty or too long",
            suggestions=("Use the short game label from the schedule",),
        ),
        Rule(
            name="outcome_tag",
            field="outcome",
            check=_is_outcome,
            expected="one of tie, home, away",
            message="Outcome must be tie, home or away",
            suggestions=("Pick 0 (draw), 1 (home) or 2 (away)",),
        ),
        Rule(
            name="bet_policy_id",
            field="scripts.bet_policy_id",
            check=_is_policy_id,
            expected="56 lowercase hex characters",
            message="Bet policy id is malformed",
            suggestions=("Re-derive the game scripts from the game parameters",),
        ),
        Rule(
            name="oracle_policy_id",
            field="scripts.oracle_policy_id",
            check=_is_policy_id,
            expected="56 lowercase hex characters",
            message="Oracle policy id is malformed",
            suggestions=("Re-derive the game scripts from the game parameters",),
        ),
        Rule(
            name="pot_address",
            field="scripts.pot_address",
            check=_is_address,
            expected=_ADDRESS_HINT,
            message="Pot address is not a valid bech32 address",
            suggestions=("Re-derive the game scripts from the game parameters",),
        ),
    )


PLACE_BET_RULES: Tuple[Rule, ...] = _actor_rules() + _game_rules() + (
    Rule(
        name="lovelace_amount",
        field="lovelace",
        check=_non_negative,
        expected=_AMOUNT_HINT,
        message="ADA stake must be a non-negative integer amount of lovelace",
        suggestions=("Enter the stake in lovelace (1 ADA = 1,000,000 lovelace)",),
    ),
    Rule(
        name="bead_amount",
        field="bead",
        check=_non_negative,
        expected=_AMOUNT_HINT,
        message="BEAD stake must be a non-negative integer",
        suggestions=("Enter the BEAD stake as a whole number",),
    ),
    Rule(
        name="stake_non_zero",
        field="lovelace",
        check=lambda v, req, ctx: _bet_stake_value(req, ctx) > 0,
        expected="ADA or BEAD stake greater than zero",
        message="Bet stake cannot be zero",
        suggestions=("Add an ADA or BEAD stake to the bet",),
    ),
    Rule(
        name="min_bet",
        field="lovelace",
        check=lambda v, req, ctx: v >= ctx.settings.limits.min_bet_lovelace,
        expected="lovelace >= min_bet_lovelace",
        message="Bet is below the protocol minimum",
        suggestions=("Increase the bet to at least the minimum stake",),
    ),
    Rule(
        name="max_bet",
        field="lovelace",
        check=lambda v, req, ctx: v <= ctx.settings.limits.max_bet_lovelace,
        expected="lovelace <= max_bet_lovelace",
        message="ADA stake exceeds the protocol maximum",
        suggestions=("Reduce the bet amount", "Split the stake across several bets"),
    ),
    Rule(
        name="max_bead",
        field="bead",
        check=lambda v, req, ctx: v <= ctx.settings.limits.max_bet_bead,
        expected="bead <= max_bet_bead",
        message="BEAD stake exceeds the protocol maximum",
        suggestions=("Reduce the BEAD stake",),
    ),
    Rule(
        name="game_in_future",
        field="game.starts_at",
        check=lambda v, req, ctx: _is_int(v) and v > ctx.now_ms,
        expected="POSIX ms strictly after submission time",
        message="Bets are closed: the game has already started",
        suggestions=("Choose a game that has not started yet",),
    ),
    Rule(
        name="game_within_horizon",
        field="game.starts_at",
        check=lambda v, req, ctx: v <= ctx.now_ms + ctx.settings.limits.max_bet_horizon_ms,
        expected="POSIX ms within max_bet_horizon_ms of submission time",
        message="Game start is too far in the future",
        suggestions=("Check the game date", "Bet closer to the game date"),
    ),
)


PURCHASE_TOKEN_RULES: Tuple[Rule, ...] = _actor_rules() + (
    Rule(
        name="contribution_amount",
        field="contribution_lovelace",
        check=lambda v, req, ctx: _is_int(v) and v > 0,
        expected="positive integer in lovelace",
        message="Contribution must be a positive amount of lovelace",
        suggestions=("Enter the contribution in lovelace",),
    ),
    Rule(
        name="contribution_min_tier",
        field="contribution_lovelace",
        check=lambda v, req, ctx: v >= ctx.settings.tokenomics.tiers[0].min_lovelace,
        expected="contribution >= lowest purchase tier",
        message="Contribution is below the lowest purchase tier",
        suggestions=("Increase the contribution to at least the first tier",),
    ),
    Rule(
        name="contribution_max",
        field="contribution_lovelace",
        check=lambda v, req, ctx: v <= ctx.settings.limits.max_contribution_lovelace,
        expected="contribution <= max_contribution_lovelace",
        message="Contribution exceeds the protocol maximum",
        suggestions=("Split the purchase into several transactions",),
    ),
    Rule(
        name="referral_address",
        field="referral_address",
        check=_is_address,
        expected=_ADDRESS_HINT,
        message="Referral address is not a valid bech32 address",
        suggestions=("Check the referral link", "Purchase without a referral"),
        optional=True,
    ),
    Rule(
        name="referral_network",
        field="referral_address",
        check=_on_network,
        expected="address on the configured network",
        message="Referral address belongs to a different network",
        suggestions=("Check the referral link",),
        optional=True,
    ),
    Rule(
        name="referral_not_self",
        field="referral_address",
        check=lambda v, req, ctx: v != req.actor,
        expected="referral address different from actor",
        message="You cannot refer yourself",
        suggestions=("Purchase without a referral",),
        optional=True,
    ),
    Rule(
        name="referral_share_min_output",
        field="referral_address",
        check=lambda v, req, ctx: referral_share(req.contribution_lovelace, ctx.settings)
        >= ctx.settings.selection.min_output_lovelace,
        expected="referral share >= min_output_lovelace",
        message="Referral share would be below the minimum output value",
        suggestions=("Increase the contribution", "Purchase without a referral"),
        optional=True,
    ),
)


REDEEM_BET_RULES: Tuple[Rule, ...] = _actor_rules() + _game_rules()


PUBLISH_RESULT_RULES: Tuple[Rule, ...] = _actor_rules() + _game_rules() + (
    Rule(
        name="game_started",
        field="game.starts_at",
        check=lambda v, req, ctx: _is_int(v) and v <= ctx.now_ms,
        expected="POSIX ms at or before submission time",
        message="Cannot publish a result for a game that has not started",
        suggestions=("Wait until the game has been played",),
    ),
    Rule(
        name="score_label",
        field="score_label",
        check=lambda v, req, ctx: isinstance(v, str)
        and bool(v.strip())
        and len(v) <= ctx.settings.limits.max_score_label_length,
        expected="non-empty text up to max_score_label_length characters",
        message="Score label is empty or too long",
        suggestions=("Use a short score such as 2-1",),
    ),
    Rule(
        name="bettor_addresses",
        field="bettor_addresses",
        check=lambda v, req, ctx: all(_is_address(a, req, ctx) for a in v),
        expected="list of bech32 addresses",
        message="One of the bettor addresses is malformed",
        suggestions=("Remove malformed addresses from the bettor list",),
    ),
)


RULES_BY_OPERATION: Dict[OperationKind, Tuple[Rule, ...]] = {
    OperationKind.PLACE_BET: PLACE_BET_RULES,
    OperationKind.PURCHASE_TOKEN: PURCHASE_TOKEN_RULES,
    OperationKind.REDEEM_BET: REDEEM_BET_RULES,
    OperationKind.PUBLISH_RESULT: PUBLISH_RESULT_RULES,
}


def validate_request(request: Any, settings: BeadSettings, now_ms: int) -> Result[Any]:
    """Validate any operation request against its rule table."""
    kind: Optional[OperationKind] = getattr(request, "kind", None)
    rules = RULES_BY_OPERATION.get(kind) if kind is not None else None
    if rules is None:
        return failure(
            ErrorCode.INVALID_INPUT,
            "Unknown operation request",
            {"rule": "operation_kind", "field": "kind", "value": _reportable(kind), "expected": "known operation"},
        )
    return run_rules(rules, request, ValidationContext(settings=settings, now_ms=now_ms))


__all__ = [
    "ADDRESS_PATTERN",
    "ValidationContext",
    "Rule",
    "run_rules",
    "referral_share",
    "PLACE_BET_RULES",
    "PURCHASE_TOKEN_RULES",
    "REDEEM_BET_RULES",
    "PUBLISH_RESULT_RULES",
    "RULES_BY_OPERATION",
    "validate_request",
]
