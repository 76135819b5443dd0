"""Run one betting round against the in-memory ledger.

Two wallets bet on opposite outcomes, an operator publishes the result and
both wallets redeem. Every outcome is logged, and the final balances are
printed as a table.

Usage:
    python scripts/dev/emulate_round.py
    python scripts/dev/emulate_round.py --winner away --home-bet 50 --away-bet 25
    python scripts/dev/emulate_round.py --config config/bead.yaml --events-dir /tmp/bead-events
"""

import argparse
import asyncio
import os
import sys

import bittensor as bt

# Add project root to path
sys.path.append(os.getcwd())

from bead.config import load_settings, sanitize_dict
from bead.core import TransactionOrchestrator
from bead.ledger.assets import bet_unit
from bead.ledger.emulator import DEFAULT_START_MS, EmulatedLedger
from bead.protocol.models import (
    BetScripts,
    GameRef,
    PlaceBetRequest,
    PublishResultRequest,
    PurchaseTokenRequest,
    RedeemBetRequest,
)
from bead.shared.enums import GameOutcome
from bead.shared.logging import configure_logging, setup_events_logger

ADA = 1_000_000
HOUR_MS = 3_600_000

HOME_WALLET = "addr_test1qzhomebettor0emulated0round0wallet0address"
AWAY_WALLET = "addr_test1qzawaybettor0emulated0round0wallet0address"
OPERATOR = "addr_test1qzoracleoperator0emulated0round0address"
REFERRER = "addr_test1qzreferrer0emulated0round0wallet0address"
POT = "addr_test1wzbetpot0emulated0round0script0address00"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Emulate a full betting round on an in-memory ledger.")
    parser.add_argument("--config", help="Path to a bead.yaml settings file")
    parser.add_argument("--winner", choices=["home", "away", "tie"], default="home")
    parser.add_argument("--home-bet", type=int, default=20, help="HOME stake in ADA")
    parser.add_argument("--away-bet", type=int, default=30, help="AWAY stake in ADA")
    parser.add_argument("--purchase", type=int, default=1000, help="BEAD purchase contribution in ADA (0 to skip)")
    parser.add_argument("--events-dir", help="Write orchestration events to this directory")
    return parser.parse_args()


def _report(step: str, result) -> bool:
    if result.ok:
        outcome = result.data
        bt.logging.info({"emulate_round": {"step": step, "tx_hash": outcome.tx_hash, "summary": outcome.summary}})
        for warning in outcome.warnings:
            bt.logging.warning({"emulate_round": {"step": step, "warning": warning}})
        return True
    bt.logging.error({"emulate_round": {"step": step, "error": result.to_dict()}})
    return False


async def async_main(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    configure_logging(settings.logging.level, settings.logging.trace)
    events_dir = args.events_dir or settings.logging.events_dir
    if events_dir:
        setup_events_logger(events_dir, settings.logging.events_retention_size)
    bt.logging.debug({"emulate_round": {"settings": sanitize_dict(settings)}})

    ledger = EmulatedLedger()
    orchestrator = TransactionOrchestrator(ledger, settings)
    game = GameRef(id=1001, name="RMA-BAR", starts_at=DEFAULT_START_MS + 24 * HOUR_MS)
    scripts = BetScripts(bet_policy_id="a1" * 28, pot_address=POT, oracle_policy_id="0c" * 28)
    winner = GameOutcome.parse(args.winner)

    ledger.fund(HOME_WALLET, (args.home_bet + args.purchase + 50) * ADA)
    ledger.fund(AWAY_WALLET, (args.away_bet + 50) * ADA)
    ledger.fund(OPERATOR, 10 * ADA)

    if args.purchase:
        purchase = PurchaseTokenRequest(
            actor=HOME_WALLET, contribution_lovelace=args.purchase * ADA, referral_address=REFERRER
        )
        if not _report("purchase", await orchestrator.purchase_token(purchase)):
            return 1

    bets = [
        PlaceBetRequest(
            actor=HOME_WALLET, game=game, outcome=GameOutcome.HOME, lovelace=args.home_bet * ADA, scripts=scripts
        ),
        PlaceBetRequest(
            actor=AWAY_WALLET, game=game, outcome=GameOutcome.AWAY, lovelace=args.away_bet * ADA, scripts=scripts
        ),
    ]
    for bet in bets:
        if not _report(f"bet_{bet.outcome.value}", await orchestrator.place_bet(bet)):
            return 1

    ledger.set_time(game.starts_at)
    publish = PublishResultRequest(
        actor=OPERATOR,
        game=game,
        outcome=winner,
        score_label={"home": "2-1", "away": "0-1", "tie": "1-1"}[args.winner],
        scripts=scripts,
        bettor_addresses=[HOME_WALLET, AWAY_WALLET],
    )
    if not _report("publish", await orchestrator.publish_game_result(publish)):
        return 1

    for bet in bets:
        redeem = RedeemBetRequest(actor=bet.actor, game=game, outcome=bet.outcome, scripts=scripts)
        _report(f"redeem_{bet.outcome.value}", await orchestrator.redeem_bet(redeem))

    print(f"{'address':<54} {'ADA':>14} {'BEAD':>8} {'HOME':>12} {'AWAY':>12}")
    home_unit = bet_unit(scripts.bet_policy_id, GameOutcome.HOME, game.name)
    away_unit = bet_unit(scripts.bet_policy_id, GameOutcome.AWAY, game.name)
    for address in (HOME_WALLET, AWAY_WALLET, OPERATOR, REFERRER, POT, settings.scripts.treasury_address):
        print(
            f"{address:<54} {ledger.balance(address) / ADA:>14.6f} "
            f"{ledger.balance(address, settings.scripts.bead_unit):>8} "
            f"{ledger.balance(address, home_unit):>12} {ledger.balance(address, away_unit):>12}"
        )
    return 0


def main():
    args = parse_args()
    sys.exit(asyncio.run(async_main(args)))


if __name__ == "__main__":
    main()
