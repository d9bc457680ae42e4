"""High-level career service orchestrating settlement, actions and persistence."""
from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import Settings, get_settings
from .decisions import DecisionQueue, choose_option
from .deltas import apply_stat_delta
from .llm_client import get_llm_client
from .models import (
    DecisionEvent,
    LogEntry,
    ProjectPaper,
    QuarterStamp,
    ResearchProject,
    SimulationSession,
    StatDelta,
    StudentPersona,
    StudentType,
)
from .rng import DeterministicRNG, clamp
from .services import grants as grant_rules
from .services import mentorship, roster
from .services.narrative import NarrativeService
from .services.papers import (
    Notice,
    advance_projects,
    build_venue_decision,
    pick_lead_student_id,
    settle_project_papers,
    settle_research_papers,
)
from .state import SessionStore
from .students import StudentRepository, apply_first_year_rules
from .templates import DecisionTemplates, get_decision_templates
from .traits import TraitCatalog, get_trait_catalog

logger = logging.getLogger(__name__)


class _LocalSettlement:
    """Result of the synchronous part of a quarter settlement."""

    def __init__(
        self,
        session: SimulationSession,
        requests: List[grant_rules.GrantEventRequest],
        paper_student_id: Optional[str],
    ) -> None:
        self.session = session
        self.requests = requests
        self.paper_student_id = paper_student_id


class MentorService:
    """Owns one career session and applies every mutation to it."""

    class SettlementInProgressError(RuntimeError):
        """Raised while a quarter settlement or grant application is still in flight."""

    def __init__(
        self,
        session: SimulationSession,
        settings: Settings | None = None,
        rng: DeterministicRNG | None = None,
        narrative: NarrativeService | None = None,
        *,
        catalog: TraitCatalog | None = None,
        templates: DecisionTemplates | None = None,
        repository: StudentRepository | None = None,
        store: SessionStore | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.rng = rng or DeterministicRNG(seed=42)
        self.catalog = catalog or get_trait_catalog()
        self.templates = templates or get_decision_templates()
        self.repository = repository or StudentRepository()
        self.narrative = narrative or NarrativeService(
            get_llm_client(), self.settings, self.templates, self.rng
        )
        self.store = store
        self._settling = False

    # Construction --------------------------------------------------------

    @classmethod
    def new_career(
        cls,
        mentor_name: str,
        *,
        session_id: str = "career-1",
        team_size: int = 3,
        seed: int = 42,
        settings: Settings | None = None,
        **kwargs,
    ) -> "MentorService":
        """Start a career in year 1 quarter 1 with a freshly generated team."""

        settings = settings or get_settings()
        session = SimulationSession(
            id=session_id,
            mentor_name=mentor_name,
            calendar=QuarterStamp(year=1, quarter=1),
            stats=settings.initial_stats,
        )
        service = cls(session, settings, DeterministicRNG(seed), **kwargs)
        for _ in range(team_size):
            service.session.students.append(service._generate_recruit(service.session))
        service.session.record("Career started", f"{mentor_name} opens the lab with {team_size} student(s).")
        service._persist()
        return service

    @classmethod
    def load(cls, store: SessionStore, session_id: str, **kwargs) -> "MentorService":
        session = store.load(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found")
        return cls(session, store=store, **kwargs)

    # Helpers ---------------------------------------------------------------

    @property
    def is_settling(self) -> bool:
        return self._settling

    @property
    def active_decision(self) -> Optional[DecisionEvent]:
        return DecisionQueue(self.session.backlog).active

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(self.session)

    def _commit(self, session: SimulationSession) -> SimulationSession:
        self.session = session
        self._persist()
        return session

    def _working_copy(self) -> SimulationSession:
        if self._settling:
            raise self.SettlementInProgressError("Quarter settlement is in progress")
        return copy.deepcopy(self.session)

    def _require_student(self, session: SimulationSession, student_id: str) -> StudentPersona:
        student = session.student(student_id)
        if student is None:
            raise ValueError(f"Student {student_id} not found")
        return student

    def _generate_recruit(self, session: SimulationSession) -> StudentPersona:
        candidate = self.repository.generate(self.rng, session.next_id("stu"), self.catalog)
        return apply_first_year_rules(
            candidate,
            rng=self.rng,
            catalog=self.catalog,
            current_year=session.calendar.year,
            stress_cap=self.settings.recruitment["first_year_stress_cap"],
        )

    # Session actions -----------------------------------------------------

    async def apply_grant(self, grant_type: str, title: Optional[str] = None) -> SimulationSession:
        working = self._working_copy()
        grant, request = grant_rules.apply_grant(
            self.rng,
            grants=working.grants,
            stats=working.stats,
            current=working.calendar,
            grant_type=grant_type,
            grant_id=working.next_id("grant"),
            settings=self.settings,
            title=title,
        )
        working.grants.append(grant)
        working.record(
            "Grant application submitted",
            f"\"{grant.title}\" submitted; results expected in {grant.review_end}.",
        )
        self._settling = True
        try:
            decision = await self.narrative.grant_event(request, stats=working.stats, students=working.students)
        finally:
            self._settling = False
        queue = DecisionQueue(working.backlog)
        queue.enqueue(decision)
        working.backlog = queue.to_list()
        return self._commit(working)

    def assign_mentor(self, mentee_id: str, mentor_id: Optional[str]) -> SimulationSession:
        working = self._working_copy()
        working.students = mentorship.assign_mentor(working.students, mentee_id, mentor_id)
        mentee = working.student(mentee_id)
        if mentor_id:
            working.record("Mentorship set", f"{working.student(mentor_id).name} now mentors {mentee.name}.")
        else:
            working.record("Mentorship cleared", f"{mentee.name} no longer has a peer mentor.")
        return self._commit(working)

    def dismiss_student(self, student_id: str) -> SimulationSession:
        working = self._working_copy()
        student = roster.dismiss_student(working, student_id)
        working.record("Student dismissed", f"{student.name} left the team.", level="warning")
        return self._commit(working)

    def recruit_students(self, count: int = 1) -> SimulationSession:
        """Interview ``count`` candidates; only possible in the recruitment quarter."""

        working = self._working_copy()
        rules = self.settings.recruitment
        if working.calendar.quarter != rules["quarter"]:
            raise ValueError(f"Recruitment only opens in quarter {rules['quarter']}")
        if count < 1:
            raise ValueError("Recruit at least one candidate")
        for _ in range(count):
            if self.rng.random() < rules["no_show_chance"]:
                working.record("Candidate no-show", "A candidate accepted another offer and never arrived.")
                continue
            recruit = self._generate_recruit(working)
            working.students.append(recruit)
            main_trait = self.catalog.get(recruit.traits[0]) if recruit.traits else None
            working.record(
                "Student recruited",
                f"{recruit.name} joins the team ({main_trait.label if main_trait else 'no main trait'}).",
            )
        return self._commit(working)

    def comfort_student(self, student_id: str) -> Tuple[SimulationSession, bool]:
        working = self._working_copy()
        rules = self.settings.actions["comfort"]
        student = self._require_student(working, student_id)
        if working.stats.funding < rules["cost"]:
            raise ValueError("Not enough funding to comfort a student")
        updated, success = roster.comfort_student(self.rng, student, rules=rules)
        working.students = [updated if s.id == student_id else s for s in working.students]
        working.stats = apply_stat_delta(working.stats, StatDelta(funding=-rules["cost"]))
        working.record("Student comforted", f"{student.name} {'feels better' if success else 'is still shaken'}.")
        return self._commit(working), success

    def whip_student(self, student_id: str) -> Tuple[SimulationSession, bool]:
        working = self._working_copy()
        rules = self.settings.actions["whip"]
        student = self._require_student(working, student_id)
        updated, success = roster.whip_student(self.rng, student, rules=rules)
        working.students = [updated if s.id == student_id else s for s in working.students]
        working.record("Student pushed", f"{student.name} {'picks up the pace' if success else 'struggles under pressure'}.")
        return self._commit(working), success

    def create_project(self, title: Optional[str] = None, category: str = "general") -> ResearchProject:
        working = self._working_copy()
        project = ResearchProject(
            id=working.next_id("proj"),
            title=title or self.repository.project_title(self.rng),
            category=category,
        )
        working.projects.append(project)
        working.record("Project created", f"\"{project.title}\" was added to the research portfolio.")
        self._commit(working)
        return project

    def assign_to_project(self, project_id: str, student_id: str) -> SimulationSession:
        working = self._working_copy()
        roster.assign_to_project(working, project_id, student_id)
        return self._commit(working)

    def assign_to_grant(self, grant_id: str, student_id: str) -> SimulationSession:
        working = self._working_copy()
        roster.assign_to_grant(working, grant_id, student_id)
        return self._commit(working)

    def choose_option(self, decision_id: str, option_id: str) -> SimulationSession:
        if self._settling:
            raise self.SettlementInProgressError("Quarter settlement is in progress")
        return self._commit(choose_option(self.session, decision_id, option_id))

    # Quarter settlement --------------------------------------------------

    def _settle_locally(self, session: SimulationSession) -> _LocalSettlement:
        working = copy.deepcopy(session)
        settings = self.settings
        old = working.calendar
        new = old.add_quarters(1)
        notices: List[Notice] = []

        students = mentorship.apply_mentorship_influence(
            working.students,
            catalog=self.catalog,
            rules=settings.mentorship_influence,
            boost_bands=settings.trait_boost_bands,
            drag_bands=settings.trait_drag_bands,
        )
        students = [replace(s, has_whipped_this_quarter=False, has_comforted_this_quarter=False) for s in students]

        advance = advance_projects(working.projects, students, settings=settings)
        research = settle_research_papers(self.rng, students, working.stats, advance.projects, settings=settings)
        notices.extend(research.notices)

        paper_result = settle_project_papers(
            self.rng,
            working.papers,
            research.students,
            working.stats,
            current=old,
            decision_stamp=new,
            settings=settings,
            templates=self.templates,
        )
        notices.extend(paper_result.notices)

        grant_result = grant_rules.settle_grants(
            self.rng,
            working.grants,
            paper_result.students,
            paper_result.papers,
            working.stats,
            current=old,
            decision_stamp=new,
            settings=settings,
            templates=self.templates,
            next_id=working.next_id,
        )
        notices.extend(grant_result.notices)

        by_id = {s.id: s for s in paper_result.students}
        project_papers: List[ProjectPaper] = []
        venue_decisions: List[DecisionEvent] = []
        for project in advance.completed:
            lead_id = pick_lead_student_id([by_id[sid] for sid in project.assigned_student_ids if sid in by_id])
            paper = ProjectPaper(
                id=working.next_id("pp"), project_id=project.id, title=project.title, lead_student_id=lead_id
            )
            project_papers.append(paper)
            venue_decisions.append(build_venue_decision(self.rng, paper, new, templates=self.templates))
            notices.append(("Project completed", f"\"{project.title}\" is complete and has a manuscript ready."))

        final_students = paper_result.students
        if old.quarter == 2 and new.quarter == 3:
            max_year = settings.recruitment["max_student_year"]
            final_students = [
                s
                if s.student_type is StudentType.YOUNG_TEACHER
                else replace(s, year=int(clamp(s.year + 1, 1, max_year)))
                for s in final_students
            ]
            notices.append(("New academic year", "Every student moved up one year."))

        combined = paper_result.stat_delta + grant_result.stat_delta
        if advance.completed:
            combined = combined + StatDelta(
                reputation=settings.projects["completion_reputation"] * len(advance.completed)
            )

        working.calendar = new
        working.stats = apply_stat_delta(working.stats, combined)
        working.students = final_students
        working.projects = advance.projects
        working.papers = [*paper_result.papers, *project_papers, *grant_result.papers]
        working.grants = grant_result.grants
        working.log.extend(LogEntry(stamp=old, title=title, detail=detail) for title, detail in notices)

        queue = DecisionQueue(working.backlog)
        queue.extend(venue_decisions)
        queue.extend(paper_result.decisions)
        queue.extend(grant_result.decisions)
        working.backlog = queue.to_list()
        return _LocalSettlement(working, grant_result.requests, research.decision_student_id)

    async def _collect_generated(self, local: _LocalSettlement) -> List[DecisionEvent]:
        """Await every generator task, merging results in the order they resolve."""

        working = local.session
        stamp = working.calendar
        tasks: List[asyncio.Future] = []
        if local.requests:
            tasks.append(
                asyncio.ensure_future(
                    asyncio.gather(
                        *(
                            self.narrative.grant_event(request, stats=working.stats, students=working.students)
                            for request in local.requests
                        )
                    )
                )
            )
        student = working.student(local.paper_student_id)
        if student is not None:
            tasks.append(
                asyncio.ensure_future(
                    self.narrative.student_paper_event(student, stats=working.stats, stamp=stamp)
                )
            )
        tasks.append(
            asyncio.ensure_future(
                self.narrative.quarter_events(stats=working.stats, students=working.students, stamp=stamp)
            )
        )

        generated: List[DecisionEvent] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                generated.extend(result if isinstance(result, (list, tuple)) else [result])
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return generated

    async def end_quarter(self) -> SimulationSession:
        """Settle the current quarter and advance the calendar by one.

        Nothing is committed until every step, including generator calls, has
        finished. A failure leaves the session on the same quarter with a
        failure entry in its log.
        """

        if self._settling:
            raise self.SettlementInProgressError("Quarter settlement is already running")
        self._settling = True
        try:
            local = self._settle_locally(self.session)
            generated = await self._collect_generated(local)
            queue = DecisionQueue(local.session.backlog)
            added = queue.extend(generated)
            local.session.backlog = queue.to_list()
            logger.info(
                "Settled %s for session %s: %s pending decision(s), %s generated",
                local.session.calendar,
                local.session.id,
                len(queue),
                added,
            )
            return self._commit(local.session)
        except Exception:
            logger.exception("Quarter settlement failed for session %s", self.session.id)
            self.session.record(
                "Quarter settlement failed",
                "The quarter could not be settled and was not advanced. Try again.",
                level="error",
            )
            self._persist()
            return self.session
        finally:
            self._settling = False

    def pending(self) -> Iterable[DecisionEvent]:
        return iter(DecisionQueue(self.session.backlog))

    def students(self) -> Sequence[StudentPersona]:
        return list(self.session.students)


__all__ = ["MentorService"]
