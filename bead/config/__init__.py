from .core import (
    BeadSettings,
    ChainSettings,
    LimitSettings,
    LoggingSettings,
    PurchaseTier,
    RedemptionSettings,
    ScriptSettings,
    SelectionSettings,
    TokenomicsSettings,
    load_settings,
    resolve_config_path,
    sanitize_dict,
)

__all__ = [
    "BeadSettings",
    "ChainSettings",
    "LimitSettings",
    "LoggingSettings",
    "PurchaseTier",
    "RedemptionSettings",
    "ScriptSettings",
    "SelectionSettings",
    "TokenomicsSettings",
    "load_settings",
    "resolve_config_path",
    "sanitize_dict",
]
