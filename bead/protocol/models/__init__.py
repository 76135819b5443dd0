from .common import (
    AdaDistribution,
    BetScripts,
    GameRef,
    SelectionResult,
    TokenDelta,
    UtxoRef,
    ValidityWindow,
)
from .outcomes import (
    BetDetails,
    GameResultDetails,
    OperationDetails,
    OperationOutcome,
    PurchaseDetails,
    RedemptionDetails,
)
from .requests import (
    PlaceBetRequest,
    PublishResultRequest,
    PurchaseTokenRequest,
    RedeemBetRequest,
)

__all__ = [
    "AdaDistribution",
    "BetScripts",
    "GameRef",
    "SelectionResult",
    "TokenDelta",
    "UtxoRef",
    "ValidityWindow",
    "BetDetails",
    "GameResultDetails",
    "OperationDetails",
    "OperationOutcome",
    "PurchaseDetails",
    "RedemptionDetails",
    "PlaceBetRequest",
    "PublishResultRequest",
    "PurchaseTokenRequest",
    "RedeemBetRequest",
]
