"""Session persistence and load-time repair."""
from __future__ import annotations

import copy
import json
import logging
import sqlite3
from contextlib import closing
from dataclasses import asdict, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    DecisionContext,
    DecisionEffects,
    DecisionEvent,
    DecisionKind,
    DecisionOption,
    Gauge,
    GrantState,
    GrantStatus,
    LogEntry,
    MentorStats,
    OptionMeta,
    PaperStatus,
    ProjectPaper,
    QuarterStamp,
    ResearchProject,
    RevisionAction,
    RevisionKind,
    SimulationSession,
    StatDelta,
    StudentAction,
    StudentDelta,
    StudentPersona,
    StudentType,
    Tier,
    VenueType,
    as_payload,
)

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    mentor_name TEXT NOT NULL,
    year INTEGER NOT NULL,
    quarter INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    data TEXT NOT NULL
);
"""


# Serialisation -----------------------------------------------------------


def session_to_dict(session: SimulationSession) -> Dict[str, Any]:
    """Plain JSON-compatible snapshot of ``session``."""

    return as_payload(asdict(session))


def _known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


def _stamp(data: Optional[Dict[str, Any]]) -> Optional[QuarterStamp]:
    if not data:
        return None
    return QuarterStamp(year=int(data["year"]), quarter=int(data["quarter"]))


def _enum(enum_cls, value):
    return enum_cls(value) if value is not None else None


def _stat_delta(data: Optional[Dict[str, Any]]) -> Optional[StatDelta]:
    return StatDelta(**_known(StatDelta, data)) if data else None


def _student_delta(data: Optional[Dict[str, Any]]) -> Optional[StudentDelta]:
    return StudentDelta(**_known(StudentDelta, data)) if data else None


def _option(data: Dict[str, Any]) -> DecisionOption:
    effects = data.get("effects")
    meta = data.get("meta") or {}
    return DecisionOption(
        id=data["id"],
        label=data["label"],
        outcome=data["outcome"],
        hint=data.get("hint"),
        effects=DecisionEffects(
            stats=_stat_delta(effects.get("stats")), student=_student_delta(effects.get("student"))
        )
        if effects
        else None,
        meta=OptionMeta(
            score_delta=meta.get("score_delta"),
            luck_delta=meta.get("luck_delta"),
            progress_delta=meta.get("progress_delta"),
            venue_type=_enum(VenueType, meta.get("venue_type")),
            venue_tier=_enum(Tier, meta.get("venue_tier")),
            review_quarters=meta.get("review_quarters"),
            action=_enum(RevisionAction, meta.get("action")),
            student_action=_enum(StudentAction, meta.get("student_action")),
        ),
    )


def _decision(data: Dict[str, Any]) -> DecisionEvent:
    context = data.get("context") or {}
    return DecisionEvent(
        id=data["id"],
        kind=DecisionKind(data["kind"]),
        title=data["title"],
        prompt=data["prompt"],
        options=[_option(item) for item in data.get("options", [])],
        created_at=_stamp(data["created_at"]),
        context=DecisionContext(
            student_id=context.get("student_id"),
            paper_id=context.get("paper_id"),
            project_id=context.get("project_id"),
            grant_id=context.get("grant_id"),
            revision_kind=_enum(RevisionKind, context.get("revision_kind")),
            category=context.get("category"),
        ),
    )


def _student(data: Dict[str, Any]) -> StudentPersona:
    values = _known(StudentPersona, data)
    values["student_type"] = StudentType(values.get("student_type", StudentType.MASTER.value))
    values["traits"] = list(values.get("traits") or [])
    return StudentPersona(**values)


def _paper(data: Dict[str, Any]) -> ProjectPaper:
    values = _known(ProjectPaper, data)
    values["status"] = PaperStatus(values.get("status", PaperStatus.AWAITING_VENUE.value))
    values["venue_type"] = _enum(VenueType, values.get("venue_type"))
    values["venue_tier"] = _enum(Tier, values.get("venue_tier"))
    values["last_revision_kind"] = _enum(RevisionKind, values.get("last_revision_kind"))
    values["submitted_at"] = _stamp(values.get("submitted_at"))
    values["decision_due"] = _stamp(values.get("decision_due"))
    return ProjectPaper(**values)


def _grant(data: Dict[str, Any]) -> GrantState:
    values = _known(GrantState, data)
    values["status"] = GrantStatus(values.get("status", GrantStatus.REVIEWING.value))
    values["tier"] = _enum(Tier, values.get("tier"))
    for name in ("applied_at", "review_end", "active_start", "closure_due", "last_event_at"):
        values[name] = _stamp(values.get(name))
    values["assigned_student_ids"] = list(values.get("assigned_student_ids") or [])
    values["paper_ids"] = list(values.get("paper_ids") or [])
    return GrantState(**values)


def _stats(data: Dict[str, Any]) -> MentorStats:
    return MentorStats(
        morale=Gauge(**data["morale"]),
        academia=Gauge(**data["academia"]),
        admin=Gauge(**data["admin"]),
        integrity=Gauge(**data["integrity"]),
        funding=int(data.get("funding", 0)),
        reputation=int(data.get("reputation", 0)),
    )


def session_from_dict(data: Dict[str, Any]) -> SimulationSession:
    return SimulationSession(
        id=data["id"],
        mentor_name=data["mentor_name"],
        calendar=_stamp(data["calendar"]),
        stats=_stats(data["stats"]),
        students=[_student(item) for item in data.get("students", [])],
        projects=[ResearchProject(**_known(ResearchProject, item)) for item in data.get("projects", [])],
        papers=[_paper(item) for item in data.get("papers", [])],
        grants=[_grant(item) for item in data.get("grants", [])],
        backlog=[_decision(item) for item in data.get("backlog", [])],
        log=[
            LogEntry(
                stamp=_stamp(item["stamp"]),
                title=item["title"],
                detail=item.get("detail", ""),
                level=item.get("level", "info"),
            )
            for item in data.get("log", [])
        ],
        serial=int(data.get("serial", 0)),
    )


# Repair ------------------------------------------------------------------


def repair_session(session: SimulationSession) -> Tuple[SimulationSession, List[str]]:
    """Return a repaired copy of ``session`` and a description of each repair."""

    repaired = copy.deepcopy(session)
    repairs: List[str] = []

    taken = {student.id for student in repaired.students}
    seen: set = set()
    fixed_ids = 0
    students: List[StudentPersona] = []
    for student in repaired.students:
        if not student.id or student.id in seen:
            new_id = repaired.next_id("stu")
            while new_id in taken:
                new_id = repaired.next_id("stu")
            taken.add(new_id)
            student = replace(student, id=new_id)
            fixed_ids += 1
        seen.add(student.id)
        students.append(student)
    if fixed_ids:
        students = [replace(s, mentor_id=None, is_being_mentored=False) for s in students]
        repairs.append(f"Reassigned {fixed_ids} duplicate or missing student id(s) and cleared mentorships.")

    stale = 0
    for index, student in enumerate(students):
        if student.mentor_id and (student.mentor_id not in seen or student.mentor_id == student.id):
            students[index] = replace(student, mentor_id=None, is_being_mentored=False)
            stale += 1
    if stale:
        repairs.append(f"Dropped {stale} mentor reference(s) to missing students.")

    negatives = 0
    for index, student in enumerate(students):
        if student.pending_papers < 0 or student.total_papers < 0:
            students[index] = replace(
                student,
                pending_papers=max(0, student.pending_papers),
                total_papers=max(0, student.total_papers),
            )
            negatives += 1
    if negatives:
        repairs.append(f"Normalised negative paper counters for {negatives} student(s).")
    repaired.students = students

    dangling = 0
    projects = []
    for project in repaired.projects:
        kept = [sid for sid in project.assigned_student_ids if sid in seen]
        dangling += len(project.assigned_student_ids) - len(kept)
        projects.append(replace(project, assigned_student_ids=kept))
    grants = []
    for grant in repaired.grants:
        kept = [sid for sid in grant.assigned_student_ids if sid in seen]
        dangling += len(grant.assigned_student_ids) - len(kept)
        grants.append(replace(grant, assigned_student_ids=kept))
    papers = []
    for paper in repaired.papers:
        if paper.lead_student_id and paper.lead_student_id not in seen:
            paper = replace(paper, lead_student_id=None)
            dangling += 1
        papers.append(paper)
    repaired.projects, repaired.grants, repaired.papers = projects, grants, papers
    if dangling:
        repairs.append(f"Cleared {dangling} project, grant or paper reference(s) to missing students.")

    backlog_ids: set = set()
    backlog: List[DecisionEvent] = []
    for decision in repaired.backlog:
        if decision.id in backlog_ids:
            continue
        backlog_ids.add(decision.id)
        backlog.append(decision)
    if len(backlog) != len(repaired.backlog):
        repairs.append(f"Dropped {len(repaired.backlog) - len(backlog)} duplicate pending decision(s).")
        repaired.backlog = backlog

    for detail in repairs:
        logger.warning("Repaired session %s: %s", repaired.id, detail)
        repaired.record("Saved state repaired", detail, level="warning")
    return repaired, repairs


# Storage -----------------------------------------------------------------


class SessionStore:
    """Stores session snapshots as JSON in SQLite."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.executescript(_DB_SCHEMA)
            conn.commit()

    def save(self, session: SimulationSession) -> None:
        data_json = json.dumps(session_to_dict(session))
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                "REPLACE INTO sessions (id, mentor_name, year, quarter, updated_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.mentor_name,
                    session.calendar.year,
                    session.calendar.quarter,
                    datetime.now(timezone.utc).isoformat(),
                    data_json,
                ),
            )
            conn.commit()

    def load(self, session_id: str) -> Optional[SimulationSession]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            row = conn.execute("SELECT data FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if not row:
            return None
        session, _ = repair_session(session_from_dict(json.loads(row[0])))
        return session

    def list_sessions(self) -> List[Tuple[str, str, QuarterStamp]]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(
                "SELECT id, mentor_name, year, quarter FROM sessions ORDER BY updated_at DESC"
            ).fetchall()
        return [(row[0], row[1], QuarterStamp(year=row[2], quarter=row[3])) for row in rows]

    def delete(self, session_id: str) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            conn.commit()


__all__ = [
    "SessionStore",
    "repair_session",
    "session_from_dict",
    "session_to_dict",
]
