from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bead.ledger.assets import asset_unit
from bead.shared.enums import Network

CONFIG_ENV_VAR = "BEAD_CONFIG"
DAY_MS = 24 * 60 * 60 * 1000


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ChainSettings(_Section):
    network: Network = Network.PREPROD
    tx_ttl_ms: int = Field(default=20 * 60 * 1000, gt=0)

    @property
    def address_prefix(self) -> str:
        return "addr" if self.network == Network.MAINNET else "addr_test"


class ScriptSettings(_Section):
    """Protocol-wide script parameters. Per-game scripts travel with requests."""

    bead_policy_id: str = "be" * 28
    bead_token_name: str = "BEAD PR"
    referral_token_name: str = "BEADR PR"
    treasury_address: str = "addr_test1qztreasury0000000000000000000000000000000000000000"

    @property
    def bead_unit(self) -> str:
        return asset_unit(self.bead_policy_id, self.bead_token_name)

    @property
    def referral_unit(self) -> str:
        return asset_unit(self.bead_policy_id, self.referral_token_name)


class LimitSettings(_Section):
    max_game_id: int = 999_999
    max_game_name_length: int = 50
    max_score_label_length: int = 20
    min_bet_lovelace: int = 10_000_000
    max_bet_lovelace: int = 10_000_000_000
    max_bet_bead: int = 50_000
    max_bet_horizon_ms: int = 365 * DAY_MS
    max_contribution_lovelace: int = 100_000_000_000


class SelectionSettings(_Section):
    min_output_lovelace: int = 1_000_000
    dust_threshold_lovelace: int = 1_000_000
    max_inputs: int = 50
    optimal_candidates: int = 12
    epsilon: int = 0
    fee_reserve: int = 300_000
    min_efficiency: Decimal = Decimal("0.5")


class PurchaseTier(_Section):
    min_lovelace: int = Field(gt=0)
    bead_per_ada: Decimal = Field(gt=0)
    referral_tokens: int = Field(ge=0)


def _default_tiers() -> List[PurchaseTier]:
    return [
        PurchaseTier(min_lovelace=200_000_000, bead_per_ada=Decimal("5.0"), referral_tokens=5),
        PurchaseTier(min_lovelace=400_000_000, bead_per_ada=Decimal("5.1"), referral_tokens=10),
        PurchaseTier(min_lovelace=600_000_000, bead_per_ada=Decimal("5.15"), referral_tokens=15),
        PurchaseTier(min_lovelace=800_000_000, bead_per_ada=Decimal("5.075"), referral_tokens=20),
        PurchaseTier(min_lovelace=1_000_000_000, bead_per_ada=Decimal("5.25"), referral_tokens=25),
        PurchaseTier(min_lovelace=2_000_000_000, bead_per_ada=Decimal("5.25"), referral_tokens=50),
    ]


class TokenomicsSettings(_Section):
    bead_scale_factor: int = 1_000_000
    tiers: List[PurchaseTier] = Field(default_factory=_default_tiers)
    referral_bps: int = Field(default=500, ge=0)
    max_referral_bps: int = Field(default=500, ge=0, le=10_000)
    recommended_referral_lovelace: int = 5_000_000

    @model_validator(mode="after")
    def _check_tiers(self) -> "TokenomicsSettings":
        if not self.tiers:
            raise ValueError("at least one purchase tier is required")
        floors = [tier.min_lovelace for tier in self.tiers]
        if floors != sorted(floors) or len(set(floors)) != len(floors):
            raise ValueError("purchase tiers must be strictly ascending by min_lovelace")
        return self

    @property
    def effective_referral_bps(self) -> int:
        return min(self.referral_bps, self.max_referral_bps)


class RedemptionSettings(_Section):
    oracle_deposit_lovelace: int = 2_000_000
    pot_fee_reserve: int = 0


class LoggingSettings(_Section):
    level: str = "INFO"
    trace: bool = False
    events_dir: Optional[str] = None
    events_retention_size: int = 2 * 1024 * 1024
    dedupe_bucket_ms: int = 60_000


class BeadSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BEAD_",
        env_nested_delimiter="__",
        frozen=True,
        extra="ignore",
    )

    chain: ChainSettings = Field(default_factory=ChainSettings)
    scripts: ScriptSettings = Field(default_factory=ScriptSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    tokenomics: TokenomicsSettings = Field(default_factory=TokenomicsSettings)
    redemption: RedemptionSettings = Field(default_factory=RedemptionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _candidate_paths(path: str | os.PathLike[str] | None) -> List[Path]:
    if path is not None:
        return [Path(path)]
    candidates: List[Path] = []
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(_project_root() / "config" / "bead.yaml")
    return candidates


def resolve_config_path(path: str | os.PathLike[str] | None = None) -> Optional[Path]:
    """The YAML file ``load_settings`` reads for ``path``, or None when there is none.

    An explicit ``path`` that does not exist is an error; the implicit
    candidates are skipped when missing.
    """
    for candidate in _candidate_paths(path):
        if candidate.exists():
            return candidate.resolve()
        if path is not None:
            raise FileNotFoundError(str(candidate))
    return None


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def load_settings(path: str | os.PathLike[str] | None = None, **overrides: Any) -> BeadSettings:
    """Build frozen settings from YAML, environment and keyword overrides.

    Precedence, highest first: ``overrides``, YAML file, ``BEAD_*`` environment,
    field defaults. The YAML file is chosen by ``resolve_config_path``.
    """
    resolved = resolve_config_path(path)
    data: Dict[str, Any] = _load_yaml(resolved) if resolved is not None else {}
    for key, value in overrides.items():
        data[key] = value
    return BeadSettings(**data)


def sanitize_dict(settings: BeadSettings) -> Dict[str, Any]:
    """Settings as a JSON-friendly dict with addresses shortened for logs."""
    dumped = settings.model_dump(mode="json")
    treasury = dumped.get("scripts", {}).get("treasury_address")
    if isinstance(treasury, str) and len(treasury) > 24:
        dumped["scripts"]["treasury_address"] = f"{treasury[:12]}...{treasury[-6:]}"
    return dumped


__all__ = [
    "CONFIG_ENV_VAR",
    "ChainSettings",
    "ScriptSettings",
    "LimitSettings",
    "SelectionSettings",
    "PurchaseTier",
    "TokenomicsSettings",
    "RedemptionSettings",
    "LoggingSettings",
    "BeadSettings",
    "load_settings",
    "resolve_config_path",
    "sanitize_dict",
]
