"""Peer mentorship pairing, influence and assignment validation."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..deltas import apply_student_delta
from ..models import StudentDelta, StudentPersona
from ..rng import clamp, round_half_up
from ..traits import TraitCatalog

InfluenceRules = Dict[str, Tuple[int, int, int]]
Bands = Sequence[Tuple[int, int]]


def mentor_delta(value: int, *, step: int, low: int, high: int) -> int:
    """Shift toward the mentor's value relative to the neutral midpoint of 50."""

    return int(clamp(round_half_up((value - 50) / step), low, high))


def trait_band_delta(band: Tuple[int, int], *, boost_bands: Bands, drag_bands: Bands) -> int:
    low, high = band
    for threshold, amount in boost_bands:
        if low >= threshold:
            return amount
    for threshold, amount in drag_bands:
        if high <= threshold:
            return amount
    return 0


def build_mentor_pairs(students: Sequence[StudentPersona]) -> Dict[str, str]:
    """Map mentee id to mentor id, first claim per mentor wins in roster order."""

    known = {student.id for student in students}
    used_mentors: Set[str] = set()
    pairs: Dict[str, str] = {}
    for student in students:
        mentor_id = student.mentor_id
        if not mentor_id or mentor_id == student.id or mentor_id not in known:
            continue
        if mentor_id in used_mentors:
            continue
        used_mentors.add(mentor_id)
        pairs[student.id] = mentor_id
    return pairs


def influence_delta(
    mentor: StudentPersona,
    *,
    catalog: TraitCatalog,
    rules: InfluenceRules,
    boost_bands: Bands,
    drag_bands: Bands,
) -> StudentDelta:
    amounts: Dict[str, int] = {}
    for attribute, (step, low, high) in rules.items():
        amounts[attribute] = mentor_delta(getattr(mentor, attribute), step=step, low=low, high=high)
    for trait_id in mentor.traits:
        trait = catalog.get(trait_id)
        if trait is None or trait.category != "sub":
            continue
        for attribute, band in trait.stat_bounds.items():
            if attribute not in amounts:
                continue
            amounts[attribute] += trait_band_delta(band, boost_bands=boost_bands, drag_bands=drag_bands)
    return StudentDelta(**amounts)


def apply_mentorship_influence(
    students: Sequence[StudentPersona],
    *,
    catalog: TraitCatalog,
    rules: InfluenceRules,
    boost_bands: Bands,
    drag_bands: Bands,
) -> List[StudentPersona]:
    """Rebuild pairs and move each mentee toward their mentor's profile."""

    pairs = build_mentor_pairs(students)
    current = {student.id: student for student in students}
    # Pairs resolve in roster order against the running roster.
    for mentee_id, mentor_id in pairs.items():
        delta = influence_delta(
            current[mentor_id],
            catalog=catalog,
            rules=rules,
            boost_bands=boost_bands,
            drag_bands=drag_bands,
        )
        mentored = replace(current[mentee_id], is_being_mentored=True, mentor_id=mentor_id)
        current[mentee_id] = apply_student_delta(mentored, delta)
    return [
        current[student.id]
        if student.id in pairs
        else replace(student, is_being_mentored=False, mentor_id=None)
        for student in students
    ]


def would_create_cycle(
    students: Sequence[StudentPersona], mentee_id: str, mentor_id: str
) -> bool:
    """Walk up the mentor chain from ``mentor_id`` looking for ``mentee_id``."""

    mentor_of = {student.id: student.mentor_id for student in students}
    visited: Set[str] = set()
    current: Optional[str] = mentor_id
    while current and current not in visited:
        if current == mentee_id:
            return True
        visited.add(current)
        current = mentor_of.get(current)
    return False


def assign_mentor(
    students: Sequence[StudentPersona], mentee_id: str, mentor_id: Optional[str]
) -> List[StudentPersona]:
    """Return the roster with ``mentee_id`` mentored by ``mentor_id`` (or unassigned)."""

    by_id = {student.id: student for student in students}
    if mentee_id not in by_id:
        raise ValueError(f"Student {mentee_id} not found")
    if mentor_id is not None:
        if mentor_id == mentee_id:
            raise ValueError("A student cannot mentor themselves")
        if mentor_id not in by_id:
            raise ValueError(f"Mentor {mentor_id} not found")
        if any(s.mentor_id == mentor_id and s.id != mentee_id for s in students):
            raise ValueError(f"{by_id[mentor_id].name} already mentors another student")
        if would_create_cycle(students, mentee_id, mentor_id):
            raise ValueError("Mentorship would create a cycle")
    return [
        replace(student, mentor_id=mentor_id, is_being_mentored=mentor_id is not None)
        if student.id == mentee_id
        else student
        for student in students
    ]


__all__ = [
    "apply_mentorship_influence",
    "assign_mentor",
    "build_mentor_pairs",
    "influence_delta",
    "mentor_delta",
    "trait_band_delta",
    "would_create_cycle",
]
