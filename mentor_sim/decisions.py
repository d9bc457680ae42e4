"""Pending decision backlog and option resolution."""
from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import Iterable, Iterator, List, Optional

from .deltas import apply_stat_delta, apply_student_delta
from .models import (
    DecisionEvent,
    DecisionKind,
    DecisionOption,
    PaperStatus,
    ProjectPaper,
    QuarterStamp,
    RevisionAction,
    SimulationSession,
    StudentAction,
    StudentDelta,
)
from .rng import clamp
from .services.roster import dismiss_student

logger = logging.getLogger(__name__)

GRANT_PROGRESS_CAP = 250
DEFAULT_REVIEW_QUARTERS = 1


class DecisionQueue:
    """FIFO backlog of pending decisions, unique by id."""

    def __init__(self, decisions: Optional[Iterable[DecisionEvent]] = None) -> None:
        self._items: List[DecisionEvent] = []
        for decision in decisions or ():
            self.enqueue(decision)

    def enqueue(self, decision: DecisionEvent) -> bool:
        if any(item.id == decision.id for item in self._items):
            logger.debug("Skipping duplicate decision %s", decision.id)
            return False
        self._items.append(decision)
        return True

    def extend(self, decisions: Iterable[DecisionEvent]) -> int:
        return sum(1 for decision in decisions if self.enqueue(decision))

    @property
    def active(self) -> Optional[DecisionEvent]:
        return self._items[0] if self._items else None

    def get(self, decision_id: str) -> Optional[DecisionEvent]:
        for item in self._items:
            if item.id == decision_id:
                return item
        return None

    def remove(self, decision_id: str) -> Optional[DecisionEvent]:
        decision = self.get(decision_id)
        if decision is not None:
            self._items = [item for item in self._items if item.id != decision_id]
        return decision

    def to_list(self) -> List[DecisionEvent]:
        return list(self._items)

    def __iter__(self) -> Iterator[DecisionEvent]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)


def _target_student_ids(session: SimulationSession, decision: DecisionEvent) -> List[str]:
    context = decision.context
    if decision.kind in (DecisionKind.STUDENT_PAPER_EVENT, DecisionKind.QUARTER_EVENT):
        return [context.student_id] if context.student_id else []
    if decision.kind in (DecisionKind.PROJECT_VENUE, DecisionKind.PROJECT_REVISION):
        paper = session.paper(context.paper_id)
        return [paper.lead_student_id] if paper and paper.lead_student_id else []
    grant = session.grant(context.grant_id)
    return list(grant.assigned_student_ids) if grant else []


def _apply_to_students(session: SimulationSession, student_ids: Iterable[str], delta: StudentDelta) -> None:
    targets = {sid for sid in student_ids if session.student(sid) is not None}
    if not targets:
        return
    session.students = [
        apply_student_delta(student, delta) if student.id in targets else student for student in session.students
    ]


def _replace_paper(session: SimulationSession, paper: ProjectPaper) -> None:
    session.papers = [paper if item.id == paper.id else item for item in session.papers]


def _submit(paper: ProjectPaper, now: QuarterStamp, review_quarters: Optional[int], **changes) -> ProjectPaper:
    return replace(
        paper,
        status=PaperStatus.UNDER_REVIEW,
        submitted_at=now,
        decision_due=now.add_quarters(review_quarters or DEFAULT_REVIEW_QUARTERS),
        **changes,
    )


def _resolve_venue(session: SimulationSession, decision: DecisionEvent, option: DecisionOption, now: QuarterStamp) -> None:
    paper = session.paper(decision.context.paper_id)
    if paper is None or paper.status is not PaperStatus.AWAITING_VENUE:
        logger.warning("Venue decision %s refers to a paper that is not awaiting a venue", decision.id)
        return
    meta = option.meta
    _replace_paper(
        session,
        _submit(
            paper,
            now,
            meta.review_quarters,
            venue_type=meta.venue_type or paper.venue_type,
            venue_tier=meta.venue_tier or paper.venue_tier,
        ),
    )
    if paper.lead_student_id:
        _apply_to_students(
            session, [paper.lead_student_id], StudentDelta(pending_papers=1, mental_state=-2, stress=3)
        )


def _resolve_revision(
    session: SimulationSession, decision: DecisionEvent, option: DecisionOption, now: QuarterStamp
) -> None:
    paper = session.paper(decision.context.paper_id)
    if paper is None or paper.status is not PaperStatus.AWAITING_REVISION:
        logger.warning("Revision decision %s refers to a paper that is not awaiting revision", decision.id)
        return
    action = option.meta.action or RevisionAction.REVISE
    if action is RevisionAction.WITHDRAW:
        _replace_paper(session, replace(paper, status=PaperStatus.REJECTED, decision_due=None))
        if paper.lead_student_id:
            _apply_to_students(
                session, [paper.lead_student_id], StudentDelta(pending_papers=-1, mental_state=-2, stress=2)
            )
        return
    if action is RevisionAction.DOWNGRADE:
        tier = paper.venue_tier.downgraded() if paper.venue_tier else None
        _replace_paper(session, _submit(paper, now, option.meta.review_quarters, venue_tier=tier))
        return
    _replace_paper(
        session,
        _submit(paper, now, option.meta.review_quarters, revision_round=paper.revision_round + 1),
    )


def _resolve_grant(session: SimulationSession, decision: DecisionEvent, option: DecisionOption) -> None:
    grant = session.grant(decision.context.grant_id)
    if grant is None:
        return
    meta = option.meta
    if decision.kind is DecisionKind.GRANT_REVIEW_EVENT:
        updated = replace(
            grant,
            score_delta=grant.score_delta + (meta.score_delta or 0),
            luck=grant.luck + (meta.luck_delta or 0),
        )
    else:
        progress = clamp(grant.paper_progress + (meta.progress_delta or 0), 0, GRANT_PROGRESS_CAP)
        updated = replace(grant, paper_progress=int(progress))
    session.grants = [updated if g.id == grant.id else g for g in session.grants]


def choose_option(
    session: SimulationSession,
    decision_id: str,
    option_id: str,
    *,
    now: Optional[QuarterStamp] = None,
) -> SimulationSession:
    """Resolve one pending decision and return the updated session.

    The input session is never modified, so a failure part-way leaves the
    caller's state exactly as it was.
    """

    queue = DecisionQueue(session.backlog)
    decision = queue.get(decision_id)
    if decision is None:
        raise ValueError(f"Decision {decision_id} not found")
    option = decision.option(option_id)
    now = now or session.calendar

    updated = copy.deepcopy(session)
    updated.record(decision.title, f"{option.label}: {option.outcome}")

    effects = option.effects
    if effects and effects.stats:
        updated.stats = apply_stat_delta(updated.stats, effects.stats)
    if effects and effects.student:
        _apply_to_students(updated, _target_student_ids(updated, decision), effects.student)

    if decision.kind is DecisionKind.PROJECT_VENUE:
        _resolve_venue(updated, decision, option, now)
    elif decision.kind is DecisionKind.PROJECT_REVISION:
        _resolve_revision(updated, decision, option, now)
    elif decision.kind in (DecisionKind.GRANT_REVIEW_EVENT, DecisionKind.GRANT_EXECUTION_EVENT):
        _resolve_grant(updated, decision, option)
    elif decision.kind is DecisionKind.QUARTER_EVENT and option.meta.student_action is StudentAction.LEAVE:
        student = updated.student(decision.context.student_id)
        if student is not None:
            dismiss_student(updated, student.id)
            updated.record("Student left", f"{student.name} left the team.", level="warning")

    queue.remove(decision_id)
    updated.backlog = queue.to_list()
    logger.debug("Resolved decision %s with option %s", decision_id, option_id)
    return updated


__all__ = ["DecisionQueue", "choose_option"]
