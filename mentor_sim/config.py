"""Configuration loading utilities for the mentor simulation."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import Gauge, MentorStats, Tier

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"


@dataclass(frozen=True)
class GrantRequirement:
    min_submissions: int
    min_accepted: int
    min_top_tier: Optional[Tier] = None


@dataclass(frozen=True)
class GrantTierConfig:
    funding: int
    reputation_range: Tuple[int, int]
    requirement: GrantRequirement


@dataclass(frozen=True)
class GrantConfig:
    """Per grant type rules: window, durations, score bands and tiers."""

    key: str
    label: str
    open_quarter: int
    review_offset_quarters: int
    execution_duration_quarters: int
    reject_below: int
    tier_b: int
    tier_a: int
    review_event_chance: float
    execution_event_chance: float
    score_weights: Dict[str, float]
    tiers: Dict[Tier, GrantTierConfig]

    @staticmethod
    def from_dict(key: str, data: Dict[str, Any]) -> "GrantConfig":
        bands = data["score_bands"]
        tiers: Dict[Tier, GrantTierConfig] = {}
        for tier_key, tier_data in data["tiers"].items():
            requirement = dict(tier_data.get("requirement", {}))
            top_tier = requirement.get("min_top_tier")
            low, high = tier_data["reputation"]
            tiers[Tier(tier_key)] = GrantTierConfig(
                funding=int(tier_data["funding"]),
                reputation_range=(int(low), int(high)),
                requirement=GrantRequirement(
                    min_submissions=int(requirement.get("min_submissions", 0)),
                    min_accepted=int(requirement.get("min_accepted", 0)),
                    min_top_tier=Tier(top_tier) if top_tier else None,
                ),
            )
        return GrantConfig(
            key=key,
            label=str(data.get("label", key)),
            open_quarter=int(data["open_quarter"]),
            review_offset_quarters=int(data.get("review_offset_quarters", 2)),
            execution_duration_quarters=int(data.get("execution_duration_quarters", 6)),
            reject_below=int(bands["reject_below"]),
            tier_b=int(bands["tier_b"]),
            tier_a=int(bands["tier_a"]),
            review_event_chance=float(data.get("review_event_chance", 0.75)),
            execution_event_chance=float(data.get("execution_event_chance", 0.6)),
            score_weights={k: float(v) for k, v in data["score_weights"].items()},
            tiers=tiers,
        )


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    initial_stats: MentorStats
    mentorship_influence: Dict[str, Tuple[int, int, int]]
    trait_boost_bands: List[Tuple[int, int]]
    trait_drag_bands: List[Tuple[int, int]]
    research: Dict[str, Any]
    projects: Dict[str, Any]
    papers: Dict[str, Any]
    grant_types: Dict[str, GrantConfig]
    grant_rules: Dict[str, Any]
    quarter_events: Dict[str, Any]
    actions: Dict[str, Any]
    recruitment: Dict[str, Any]
    generator_bounds: Dict[str, Any]

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        stats_cfg = data["initial_stats"]
        initial = MentorStats(
            morale=Gauge(**stats_cfg["morale"]),
            academia=Gauge(**stats_cfg["academia"]),
            admin=Gauge(**stats_cfg["admin"]),
            integrity=Gauge(**stats_cfg["integrity"]),
            funding=int(stats_cfg.get("funding", 0)),
            reputation=int(stats_cfg.get("reputation", 0)),
        )
        mentorship = data["mentorship"]
        influence = {
            name: (int(step), int(low), int(high))
            for name, (step, low, high) in mentorship["influence"].items()
        }
        bands = mentorship["trait_bands"]
        return Settings(
            initial_stats=initial,
            mentorship_influence=influence,
            trait_boost_bands=[(int(a), int(b)) for a, b in bands["boost_min"]],
            trait_drag_bands=[(int(a), int(b)) for a, b in bands["drag_max"]],
            research=dict(data["research"]),
            projects=dict(data["projects"]),
            papers=dict(data["papers"]),
            grant_types={key: GrantConfig.from_dict(key, cfg) for key, cfg in data["grants"].items()},
            grant_rules=dict(data["grant_rules"]),
            quarter_events=dict(data["quarter_events"]),
            actions=dict(data["actions"]),
            recruitment=dict(data["recruitment"]),
            generator_bounds=dict(data.get("generator_bounds", {})),
        )

    def grant_config(self, grant_type: str) -> GrantConfig:
        try:
            return self.grant_types[grant_type]
        except KeyError:
            raise ValueError(f"Unknown grant type {grant_type}") from None


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_PATH
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = [
    "GrantConfig",
    "GrantRequirement",
    "GrantTierConfig",
    "Settings",
    "SettingsLoader",
    "get_settings",
]
