"""Pure delta application for mentor and student attributes."""
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, Optional

from .models import GAUGE_FIELDS, Gauge, MentorStats, StatDelta, StudentDelta, StudentPersona

STUDENT_BOUNDED_FIELDS = ("diligence", "talent", "luck", "stress", "mental_state", "contribution")
STUDENT_COUNTER_FIELDS = ("pending_papers", "total_papers")


def _clamp_int(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def apply_stat_delta(stats: MentorStats, delta: Optional[StatDelta]) -> MentorStats:
    """Return ``stats`` with every present field of ``delta`` added and clamped.

    Gauges stay inside ``[0, max]``, funding never drops below zero and
    reputation is left unbounded. ``None`` fields leave the stat untouched.
    """

    if delta is None:
        return stats
    changes: Dict[str, object] = {}
    for name in GAUGE_FIELDS:
        amount = getattr(delta, name)
        if amount is None:
            continue
        gauge: Gauge = getattr(stats, name)
        changes[name] = replace(gauge, value=_clamp_int(gauge.value + amount, 0, gauge.max))
    if delta.funding is not None:
        changes["funding"] = max(0, stats.funding + delta.funding)
    if delta.reputation is not None:
        changes["reputation"] = stats.reputation + delta.reputation
    if not changes:
        return stats
    return replace(stats, **changes)


def apply_student_delta(student: StudentPersona, delta: Optional[StudentDelta]) -> StudentPersona:
    """Return a copy of ``student`` with ``delta`` applied inside attribute bounds."""

    if delta is None:
        return student
    changes: Dict[str, int] = {}
    for name in STUDENT_BOUNDED_FIELDS:
        amount = getattr(delta, name)
        if amount is not None:
            changes[name] = _clamp_int(getattr(student, name) + amount, 0, 100)
    for name in STUDENT_COUNTER_FIELDS:
        amount = getattr(delta, name)
        if amount is not None:
            changes[name] = max(0, getattr(student, name) + amount)
    if not changes:
        return student
    return replace(student, **changes)


def merge_stat_deltas(deltas: Iterable[Optional[StatDelta]]) -> StatDelta:
    merged = StatDelta()
    for delta in deltas:
        merged = merged + delta
    return merged


class StudentDeltaLedger:
    """Accumulates per-student deltas so each student is clamped once per pass."""

    def __init__(self) -> None:
        self._deltas: Dict[str, StudentDelta] = {}

    def add(self, student_id: Optional[str], delta: StudentDelta) -> None:
        if not student_id:
            return
        current = self._deltas.get(student_id, StudentDelta())
        self._deltas[student_id] = current + delta

    def get(self, student_id: str) -> Optional[StudentDelta]:
        return self._deltas.get(student_id)

    def apply(self, students: Iterable[StudentPersona]) -> list[StudentPersona]:
        return [apply_student_delta(student, self._deltas.get(student.id)) for student in students]

    def __bool__(self) -> bool:
        return bool(self._deltas)


__all__ = [
    "STUDENT_BOUNDED_FIELDS",
    "StudentDeltaLedger",
    "apply_stat_delta",
    "apply_student_delta",
    "merge_stat_deltas",
]
