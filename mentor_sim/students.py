"""Team member generation and first-year normalisation."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Dict, List

import yaml

from .models import StudentPersona, StudentType
from .rng import DeterministicRNG
from .traits import TraitCatalog, resolve_student_traits

_DATA_PATH = Path(__file__).parent / "data"


class StudentRepository:
    """Handles name banks and deterministic candidate generation."""

    def __init__(self, data_path: Path | None = None) -> None:
        self._path = data_path or _DATA_PATH
        data = self._load_yaml("names.yaml")
        self._namebanks: Dict = data["regions"]
        self._personalities: List[str] = list(data["personalities"])
        self._ranges: Dict = data["ranges"]
        self._project_titles: List[str] = list(data.get("project_titles", []))

    def _load_yaml(self, name: str) -> Dict:
        with (self._path / name).open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)

    def _roll(self, rng: DeterministicRNG, name: str) -> int:
        low, high = self._ranges[name]
        return rng.randint(low, high)

    def generate(self, rng: DeterministicRNG, identifier: str, catalog: TraitCatalog) -> StudentPersona:
        region = rng.choice(list(self._namebanks.keys()))
        given = rng.choice(self._namebanks[region]["given"])
        surname = rng.choice(self._namebanks[region]["surname"])
        return StudentPersona(
            id=identifier,
            name=f"{given} {surname}",
            diligence=self._roll(rng, "diligence"),
            talent=self._roll(rng, "talent"),
            luck=self._roll(rng, "luck"),
            hidden_luck=self._roll(rng, "hidden_luck"),
            stress=self._roll(rng, "stress"),
            mental_state=self._roll(rng, "mental_state"),
            personality=rng.choice(self._personalities),
            traits=resolve_student_traits(rng, catalog),
        )

    def project_title(self, rng: DeterministicRNG) -> str:
        return rng.choice(self._project_titles) if self._project_titles else "Untitled project"


def apply_first_year_rules(
    student: StudentPersona,
    *,
    rng: DeterministicRNG,
    catalog: TraitCatalog,
    current_year: int,
    stress_cap: int = 20,
) -> StudentPersona:
    """Reset a newcomer to a first-year master's student with a clean slate."""

    return replace(
        student,
        student_type=StudentType.MASTER,
        year=1,
        recruited_year=current_year,
        pending_papers=0,
        total_papers=0,
        contribution=0,
        stress=min(student.stress, stress_cap),
        mental_state=100,
        traits=resolve_student_traits(rng, catalog, student.traits),
        mentor_id=None,
        is_being_mentored=False,
        has_whipped_this_quarter=False,
        has_comforted_this_quarter=False,
    )


__all__ = ["StudentRepository", "apply_first_year_rules"]
