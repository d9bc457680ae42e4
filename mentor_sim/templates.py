"""Local decision templates used for fixed decisions and generator fallbacks."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .models import (
    DecisionEffects,
    DecisionOption,
    OptionMeta,
    RevisionAction,
    StatDelta,
    StudentAction,
    StudentDelta,
    Tier,
    VenueType,
)
from .rng import DeterministicRNG

_DATA_PATH = Path(__file__).parent / "data"


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _render_text(text: Optional[str], context: Mapping[str, Any]) -> Optional[str]:
    if text is None:
        return None
    return str(text).format_map(_SafeFormat(context))


def _resolve_number(value: Any, rng: DeterministicRNG) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, dict) and "roll" in value:
        low, high = value["roll"]
        rolled = rng.roll_in_range(int(low), int(high))
        if "min" in value:
            rolled = max(int(value["min"]), rolled)
        return rolled
    return int(value)


def effects_from_mapping(data: Optional[Mapping[str, Any]], rng: DeterministicRNG) -> Optional[DecisionEffects]:
    if not data:
        return None
    stats_raw = data.get("stats") or {}
    student_raw = data.get("student") or {}
    stats = StatDelta(**{key: _resolve_number(value, rng) for key, value in stats_raw.items()})
    student = StudentDelta(**{key: _resolve_number(value, rng) for key, value in student_raw.items()})
    return DecisionEffects(
        stats=None if stats.is_empty() else stats,
        student=None if student.is_empty() else student,
    )


def meta_from_mapping(data: Optional[Mapping[str, Any]], rng: DeterministicRNG) -> OptionMeta:
    if not data:
        return OptionMeta()
    return OptionMeta(
        score_delta=_resolve_number(data.get("score_delta"), rng),
        luck_delta=_resolve_number(data.get("luck_delta"), rng),
        progress_delta=_resolve_number(data.get("progress_delta"), rng),
        venue_type=VenueType(data["venue_type"]) if data.get("venue_type") else None,
        venue_tier=Tier(data["venue_tier"]) if data.get("venue_tier") else None,
        review_quarters=_resolve_number(data.get("review_quarters"), rng),
        action=RevisionAction(data["action"]) if data.get("action") else None,
        student_action=StudentAction(data["student_action"]) if data.get("student_action") else None,
    )


class DecisionTemplates:
    """Loads ``decision_templates.yaml`` and renders templates into options."""

    def __init__(self, data: Dict[str, Any]) -> None:
        self._data = data

    @classmethod
    def load(cls, data_path: Path | None = None) -> "DecisionTemplates":
        path = (data_path or _DATA_PATH) / "decision_templates.yaml"
        with path.open("r", encoding="utf-8") as fh:
            return cls(yaml.safe_load(fh) or {})

    @property
    def venue(self) -> Dict[str, Any]:
        return self._data["venue"]

    def revision(self, kind: str) -> Dict[str, Any]:
        return self._data["revision"][kind]

    @property
    def student_paper(self) -> Dict[str, Any]:
        return self._data["student_paper"]

    def grant_event_templates(self, stage: str) -> List[Dict[str, Any]]:
        return list(self._data["grant_events"][stage])

    def quarter_event_template(self, category: str) -> Dict[str, Any]:
        templates = self._data["quarter_events"]
        return templates.get(category) or templates["default"]

    def render(
        self,
        template: Mapping[str, Any],
        rng: DeterministicRNG,
        context: Mapping[str, Any],
    ) -> tuple[str, str, List[DecisionOption]]:
        """Return ``(title, prompt, options)`` with text and rolls resolved."""

        options = [
            DecisionOption(
                id=str(item["id"]),
                label=_render_text(item["label"], context),
                outcome=_render_text(item["outcome"], context),
                hint=_render_text(item.get("hint"), context),
                effects=effects_from_mapping(item.get("effects"), rng),
                meta=meta_from_mapping(item.get("meta"), rng),
            )
            for item in template["options"]
        ]
        return (
            _render_text(template["title"], context),
            _render_text(template["prompt"], context),
            options,
        )


_DEFAULT_TEMPLATES: Optional[DecisionTemplates] = None


def get_decision_templates() -> DecisionTemplates:
    global _DEFAULT_TEMPLATES
    if _DEFAULT_TEMPLATES is None:
        _DEFAULT_TEMPLATES = DecisionTemplates.load()
    return _DEFAULT_TEMPLATES


__all__ = [
    "DecisionTemplates",
    "effects_from_mapping",
    "get_decision_templates",
    "meta_from_mapping",
]
