"""Student trait catalog and conflict-free trait resolution."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import yaml

from .rng import DeterministicRNG

logger = logging.getLogger(__name__)

_DATA_PATH = Path(__file__).parent / "data"

MAX_PICK_ATTEMPTS = 24
MAIN = "main"
SUB = "sub"


@dataclass(frozen=True)
class Trait:
    id: str
    label: str
    category: str
    polarity: str
    conflicts: Tuple[str, ...] = ()
    stat_bounds: Dict[str, Tuple[int, int]] = field(default_factory=dict)


class TraitCatalog:
    """Loads traits from YAML and answers category, polarity and conflict queries."""

    def __init__(self, traits: Sequence[Trait]) -> None:
        self._order = [trait.id for trait in traits]
        self._by_id = {trait.id: trait for trait in traits}

    @classmethod
    def load(cls, data_path: Path | None = None) -> "TraitCatalog":
        path = (data_path or _DATA_PATH) / "traits.yaml"
        with path.open("r", encoding="utf-8") as fh:
            entries = yaml.safe_load(fh)["traits"]
        traits = [
            Trait(
                id=entry["id"],
                label=entry.get("label", entry["id"]),
                category=entry["category"],
                polarity=entry.get("polarity", "neutral"),
                conflicts=tuple(entry.get("conflicts") or ()),
                stat_bounds={
                    name: (int(low), int(high))
                    for name, (low, high) in (entry.get("stat_bounds") or {}).items()
                },
            )
            for entry in entries
        ]
        return cls(traits)

    def __contains__(self, trait_id: str) -> bool:
        return trait_id in self._by_id

    def get(self, trait_id: str) -> Optional[Trait]:
        return self._by_id.get(trait_id)

    def ids(self, category: str, polarity: Optional[str] = None) -> List[str]:
        return [
            trait_id
            for trait_id in self._order
            if self._by_id[trait_id].category == category
            and (polarity is None or self._by_id[trait_id].polarity == polarity)
        ]

    def has_conflict(self, left_id: str, right_id: str) -> bool:
        left = self._by_id.get(left_id)
        right = self._by_id.get(right_id)
        if left is None or right is None:
            return False
        return right_id in left.conflicts or left_id in right.conflicts

    def conflicts_with_any(self, trait_id: str, selected: Iterable[str]) -> bool:
        return any(self.has_conflict(other, trait_id) for other in selected)


def _pick_polarity(rng: DeterministicRNG, category: str) -> str:
    roll = rng.random()
    if category == MAIN:
        return "positive" if roll < 0.8 else "negative"
    if roll < 0.6:
        return "positive"
    if roll < 0.8:
        return "negative"
    return "neutral"


def pick_weighted_trait(
    rng: DeterministicRNG,
    catalog: TraitCatalog,
    category: str,
    blocked: Sequence[str] = (),
) -> Optional[str]:
    """Sample one trait of ``category`` that is neither blocked nor in conflict."""

    for _ in range(MAX_PICK_ATTEMPTS):
        polarity = _pick_polarity(rng, category)
        pool = [trait_id for trait_id in catalog.ids(category, polarity) if trait_id not in blocked]
        if not pool:
            continue
        trait_id = pool[int(rng.random() * len(pool))]
        if catalog.conflicts_with_any(trait_id, blocked):
            continue
        return trait_id
    for trait_id in catalog.ids(category):
        if trait_id not in blocked and not catalog.conflicts_with_any(trait_id, blocked):
            return trait_id
    return None


def pick_weighted_traits(
    rng: DeterministicRNG,
    catalog: TraitCatalog,
    category: str,
    count: int,
    blocked: Sequence[str] = (),
) -> List[str]:
    picked: List[str] = []
    for _ in range(MAX_PICK_ATTEMPTS):
        if len(picked) >= count:
            break
        trait_id = pick_weighted_trait(rng, catalog, category, [*blocked, *picked])
        if trait_id is None:
            break
        if trait_id in picked:
            continue
        if catalog.conflicts_with_any(trait_id, blocked) or catalog.conflicts_with_any(trait_id, picked):
            continue
        picked.append(trait_id)
    return picked


def resolve_student_traits(
    rng: DeterministicRNG, catalog: TraitCatalog, traits: Optional[Iterable[str]] = None
) -> List[str]:
    """Repair a trait list into one main trait plus two or three sub traits.

    Valid traits already present are kept in order; empty slots are filled by
    the weighted sampler. The result never holds two conflicting traits and
    is never empty unless the catalog has no main traits at all.
    """

    unique: List[str] = []
    for trait_id in traits or ():
        if trait_id in catalog and trait_id not in unique:
            unique.append(trait_id)
    main_trait = next((t for t in unique if catalog.get(t).category == MAIN), None)
    supplied_subs = [t for t in unique if catalog.get(t).category == SUB]
    desired_subs = 2 if rng.random() < 0.5 else 3

    resolved_main = main_trait or pick_weighted_trait(rng, catalog, MAIN, [])
    chosen: List[str] = [resolved_main] if resolved_main else []
    subs: List[str] = []
    for trait_id in supplied_subs:
        if len(subs) >= desired_subs:
            break
        if catalog.conflicts_with_any(trait_id, chosen + subs):
            continue
        subs.append(trait_id)

    if len(subs) < desired_subs:
        subs.extend(pick_weighted_traits(rng, catalog, SUB, desired_subs - len(subs), chosen + subs))

    picked = chosen + subs
    if picked:
        return picked
    logger.warning("Trait catalog yielded no conflict-free traits; falling back to a single main trait")
    return pick_weighted_traits(rng, catalog, MAIN, 1, [])


_DEFAULT_CATALOG: Optional[TraitCatalog] = None


def get_trait_catalog() -> TraitCatalog:
    global _DEFAULT_CATALOG
    if _DEFAULT_CATALOG is None:
        _DEFAULT_CATALOG = TraitCatalog.load()
    return _DEFAULT_CATALOG


__all__ = [
    "MAX_PICK_ATTEMPTS",
    "Trait",
    "TraitCatalog",
    "get_trait_catalog",
    "pick_weighted_trait",
    "pick_weighted_traits",
    "resolve_student_traits",
]
