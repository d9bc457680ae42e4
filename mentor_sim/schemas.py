"""Validation of generated decision payloads into clamped domain options."""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import DecisionEffects, DecisionOption, OptionMeta, StatDelta, StudentAction, StudentDelta
from .rng import clamp, round_half_up

logger = logging.getLogger(__name__)

OPTION_IDS = ("A", "B", "C")
MAX_OPTIONS = 3
MIN_OPTIONS = 2

# Generator payloads use camelCase keys.
FIELD_ALIASES = {
    "mentalState": "mental_state",
    "pendingPapers": "pending_papers",
    "totalPapers": "total_papers",
    "scoreDelta": "score_delta",
    "luckDelta": "luck_delta",
    "progressDelta": "progress_delta",
}

Range = Tuple[int, int]


@dataclass(frozen=True)
class EffectBounds:
    """Allowed integer range per field for one kind of generated decision."""

    stats: Dict[str, Range] = field(default_factory=dict)
    student: Dict[str, Range] = field(default_factory=dict)
    meta: Dict[str, Range] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "EffectBounds":
        def ranges(section: str) -> Dict[str, Range]:
            return {name: (int(low), int(high)) for name, (low, high) in (data.get(section) or {}).items()}

        return EffectBounds(stats=ranges("stats"), student=ranges("student"), meta=ranges("meta"))


class GeneratedEffects(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stats: Dict[str, Any] = Field(default_factory=dict)
    student: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("stats", "student", mode="before")
    @classmethod
    def _mapping_or_empty(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}


class GeneratedOption(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: Optional[str] = None
    label: str = Field(min_length=1)
    outcome: str = Field(min_length=1)
    hint: Optional[str] = None
    effects: Optional[GeneratedEffects] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("hint", mode="before")
    @classmethod
    def _hint_text_only(cls, value: Any) -> Optional[str]:
        return value.strip() or None if isinstance(value, str) else None

    @field_validator("effects", mode="before")
    @classmethod
    def _effects_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("meta", mode="before")
    @classmethod
    def _meta_mapping(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}


class GeneratedDecision(BaseModel):
    """A generator reply: a title, a prompt and two or three usable options.

    Options that fail validation are dropped rather than failing the whole
    payload; fewer than two survivors is a validation error.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    options: List[GeneratedOption]

    @field_validator("options", mode="before")
    @classmethod
    def _keep_valid_options(cls, value: Any) -> List[GeneratedOption]:
        if not isinstance(value, list):
            raise ValueError("options must be a list")
        kept: List[GeneratedOption] = []
        for raw in value[:MAX_OPTIONS]:
            try:
                kept.append(GeneratedOption.model_validate(raw))
            except ValidationError as exc:
                logger.debug("Dropping generated option: %s", exc)
        if len(kept) < MIN_OPTIONS:
            raise ValueError(f"expected at least {MIN_OPTIONS} valid options, got {len(kept)}")
        return kept


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the span between the first ``{`` and the last ``}`` of ``text``."""

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object found in generator reply")
    payload = json.loads(text[start : end + 1])
    if not isinstance(payload, dict):
        raise ValueError("Generator reply is not a JSON object")
    return payload


def parse_generated_decision(text: str) -> GeneratedDecision:
    return GeneratedDecision.model_validate(extract_json_object(text))


def _as_int(value: Any, bounds: Range) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return round_half_up(clamp(value, bounds[0], bounds[1]))


def normalize_delta(raw: Optional[Mapping[str, Any]], bounds: Mapping[str, Range]) -> Dict[str, int]:
    """Keep known fields, clamp them to integers in range and drop zeros."""

    result: Dict[str, int] = {}
    for key, value in (raw or {}).items():
        name = FIELD_ALIASES.get(key, key)
        if name not in bounds:
            continue
        amount = _as_int(value, bounds[name])
        if amount:
            result[name] = amount
    return result


def normalize_effects(raw: Optional[GeneratedEffects], bounds: EffectBounds) -> Optional[DecisionEffects]:
    if raw is None:
        return None
    stats = normalize_delta(raw.stats, bounds.stats)
    student = normalize_delta(raw.student, bounds.student)
    if not stats and not student:
        return None
    return DecisionEffects(
        stats=StatDelta(**stats) if stats else None,
        student=StudentDelta(**student) if student else None,
    )


def normalize_meta(raw: Mapping[str, Any], bounds: EffectBounds, *, allow_student_action: bool = False) -> OptionMeta:
    values = normalize_delta(raw, bounds.meta)
    action = raw.get("studentAction", raw.get("student_action"))
    student_action = None
    if allow_student_action and action in (StudentAction.LEAVE.value, StudentAction.STAY.value):
        student_action = StudentAction(action)
    return OptionMeta(student_action=student_action, **values)


def to_decision_options(
    decision: GeneratedDecision, bounds: EffectBounds, *, allow_student_action: bool = False
) -> List[DecisionOption]:
    options: List[DecisionOption] = []
    seen = set()
    for option in decision.options:
        option_id = option.id
        if not option_id or option_id in seen:
            option_id = next(candidate for candidate in OPTION_IDS if candidate not in seen)
        seen.add(option_id)
        options.append(
            DecisionOption(
                id=option_id,
                label=option.label,
                outcome=option.outcome,
                hint=option.hint,
                effects=normalize_effects(option.effects, bounds),
                meta=normalize_meta(option.meta, bounds, allow_student_action=allow_student_action),
            )
        )
    return options


__all__ = [
    "EffectBounds",
    "GeneratedDecision",
    "GeneratedEffects",
    "GeneratedOption",
    "extract_json_object",
    "normalize_delta",
    "normalize_effects",
    "normalize_meta",
    "parse_generated_decision",
    "to_decision_options",
]
