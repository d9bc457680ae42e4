"""Roster actions: dismissal, comfort/whip, and research projects."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Tuple

from ..deltas import apply_student_delta
from ..models import ResearchProject, SimulationSession, StudentDelta, StudentPersona
from ..rng import DeterministicRNG

logger = logging.getLogger(__name__)


def dismiss_student(session: SimulationSession, student_id: str) -> StudentPersona:
    """Remove a student from ``session`` in place and scrub every reference to them.

    Grant and project assignments drop the id, papers they led lose their lead,
    and any mentee they had is left unmentored. Nothing else is touched.
    """

    student = session.student(student_id)
    if student is None:
        raise ValueError(f"Student {student_id} not found")

    session.students = [
        replace(s, mentor_id=None, is_being_mentored=False) if s.mentor_id == student_id else s
        for s in session.students
        if s.id != student_id
    ]
    session.projects = [
        replace(p, assigned_student_ids=[sid for sid in p.assigned_student_ids if sid != student_id])
        if student_id in p.assigned_student_ids
        else p
        for p in session.projects
    ]
    session.grants = [
        replace(g, assigned_student_ids=[sid for sid in g.assigned_student_ids if sid != student_id])
        if student_id in g.assigned_student_ids
        else g
        for g in session.grants
    ]
    session.papers = [
        replace(p, lead_student_id=None) if p.lead_student_id == student_id else p for p in session.papers
    ]
    logger.info("Dismissed student %s", student_id)
    return student


def _delta_from(mapping: Dict[str, int]) -> StudentDelta:
    return StudentDelta(**{key: int(value) for key, value in mapping.items()})


def comfort_outcome(rng: DeterministicRNG, student: StudentPersona, rules: Dict) -> bool:
    threshold = rules["threshold"]
    if student.mental_state <= threshold["mental_state_at_most"]:
        return True
    if student.stress >= threshold["stress_at_least"]:
        return True
    return rng.random() < rules["success_chance"]


def whip_outcome(rng: DeterministicRNG, student: StudentPersona, rules: Dict) -> bool:
    threshold = rules["threshold"]
    if student.stress <= threshold["stress_at_most"]:
        return True
    if student.mental_state >= threshold["mental_state_at_least"]:
        return True
    return rng.random() < rules["success_chance"]


def comfort_student(rng: DeterministicRNG, student: StudentPersona, *, rules: Dict) -> Tuple[StudentPersona, bool]:
    """Return the comforted student and whether the talk landed.

    Raises :class:`ValueError` when the student was already comforted this quarter.
    """

    if student.has_comforted_this_quarter:
        raise ValueError(f"{student.name} was already comforted this quarter")
    success = comfort_outcome(rng, student, rules)
    delta = _delta_from(rules["success" if success else "failure"])
    return replace(apply_student_delta(student, delta), has_comforted_this_quarter=True), success


def whip_student(rng: DeterministicRNG, student: StudentPersona, *, rules: Dict) -> Tuple[StudentPersona, bool]:
    if student.has_whipped_this_quarter:
        raise ValueError(f"{student.name} was already pushed this quarter")
    success = whip_outcome(rng, student, rules)
    delta = _delta_from(rules["success" if success else "failure"])
    return replace(apply_student_delta(student, delta), has_whipped_this_quarter=True), success


def assign_to_project(session: SimulationSession, project_id: str, student_id: str) -> ResearchProject:
    project = session.project(project_id)
    if project is None:
        raise ValueError(f"Project {project_id} not found")
    if session.student(student_id) is None:
        raise ValueError(f"Student {student_id} not found")
    if project.completed:
        raise ValueError(f"Project {project.title} is already completed")
    if student_id in project.assigned_student_ids:
        return project
    updated = replace(project, assigned_student_ids=[*project.assigned_student_ids, student_id])
    session.projects = [updated if p.id == project_id else p for p in session.projects]
    return updated


def assign_to_grant(session: SimulationSession, grant_id: str, student_id: str) -> None:
    grant = session.grant(grant_id)
    if grant is None:
        raise ValueError(f"Grant {grant_id} not found")
    if session.student(student_id) is None:
        raise ValueError(f"Student {student_id} not found")
    if grant.status.is_terminal:
        raise ValueError(f"Grant {grant.title} is already {grant.status.value}")
    if student_id in grant.assigned_student_ids:
        return
    updated = replace(grant, assigned_student_ids=[*grant.assigned_student_ids, student_id])
    session.grants = [updated if g.id == grant_id else g for g in session.grants]


__all__ = [
    "assign_to_grant",
    "assign_to_project",
    "comfort_outcome",
    "comfort_student",
    "dismiss_student",
    "whip_outcome",
    "whip_student",
]
