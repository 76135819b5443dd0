from .orchestrator import (
    TransactionOrchestrator,
    place_bet,
    publish_game_result,
    purchase_token,
    redeem_bet,
)

__all__ = [
    "TransactionOrchestrator",
    "place_bet",
    "publish_game_result",
    "purchase_token",
    "redeem_bet",
]
