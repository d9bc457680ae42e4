"""Paper pipeline: research progress, project papers and their decisions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import Settings
from ..deltas import StudentDeltaLedger
from ..models import (
    DecisionContext,
    DecisionEffects,
    DecisionEvent,
    DecisionKind,
    DecisionOption,
    MentorStats,
    PaperStatus,
    ProjectPaper,
    QuarterStamp,
    ResearchProject,
    RevisionKind,
    StatDelta,
    StudentDelta,
    StudentPersona,
    Tier,
)
from ..rng import DeterministicRNG, clamp, round_half_up
from ..templates import DecisionTemplates

logger = logging.getLogger(__name__)

Notice = Tuple[str, str]


def active_project_counts(projects: Sequence[ResearchProject]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for project in projects:
        if project.completed:
            continue
        for student_id in project.assigned_student_ids:
            counts[student_id] = counts.get(student_id, 0) + 1
    return counts


def pick_lead_student_id(candidates: Sequence[StudentPersona]) -> Optional[str]:
    """Highest diligence plus talent wins; earlier students win ties."""

    best: Optional[StudentPersona] = None
    for student in candidates:
        if best is None or student.diligence + student.talent > best.diligence + best.talent:
            best = student
    return best.id if best else None


def paper_progress_gain(
    rng: DeterministicRNG,
    student: StudentPersona,
    *,
    active_projects: int,
    research: Dict,
) -> int:
    """Quarterly manuscript progress for one student."""

    burst = research["burst"]
    if (
        student.talent >= burst["talent"]
        and student.luck >= burst["luck"]
        and student.mental_state >= burst["mental_state"]
        and student.stress <= burst["stress"]
    ):
        chance = clamp(
            burst["chance_base"] + (student.luck - burst["luck"]) / burst["luck_divisor"],
            burst["chance_base"],
            burst["chance_cap"],
        )
        if rng.random() < chance:
            return int(clamp(80 + rng.roll_in_range(-20, 20), 60, 100))

    core = student.diligence * 0.45 + student.talent * 0.4 + student.luck * 0.15
    base = 20 + (core - 50) * 0.6
    base += min(active_projects, 2) * 2
    if student.is_being_mentored:
        base += 2
    if student.mental_state >= 85:
        base += 1
    if student.stress >= 70:
        base -= 6
    if student.mental_state < 50:
        base -= 6
    jitter = rng.roll_in_range(-4, 4) + rng.roll_in_range(-2, 2)
    return int(clamp(round_half_up(base + jitter), research["progress_floor"], research["progress_ceiling"]))


def paper_decision_chance(stats: MentorStats, research: Dict) -> float:
    cfg = research["decision_chance"]
    return clamp(cfg["base"] + stats.admin.value / cfg["admin_divisor"], cfg["base"], cfg["cap"])


@dataclass
class ResearchSettlement:
    students: List[StudentPersona]
    decision_student_id: Optional[str] = None
    notices: List[Notice] = field(default_factory=list)


def settle_research_papers(
    rng: DeterministicRNG,
    students: Sequence[StudentPersona],
    stats: MentorStats,
    projects: Sequence[ResearchProject],
    *,
    settings: Settings,
) -> ResearchSettlement:
    """Accrue contribution, turn every full 100 into a submission and pick a paper decision."""

    research = settings.research
    cost = research["submission_cost"]
    counts = active_project_counts(projects)
    result = ResearchSettlement(students=[])
    for student in students:
        gain = paper_progress_gain(rng, student, active_projects=counts.get(student.id, 0), research=research)
        total = student.contribution + gain
        submitted, remainder = divmod(total, 100)
        if not submitted:
            result.students.append(replace(student, contribution=remainder))
            continue
        result.notices.append(
            ("Manuscript submitted", f"{student.name} submitted {submitted} manuscript(s) for review.")
        )
        result.students.append(
            replace(
                student,
                contribution=remainder,
                pending_papers=student.pending_papers + submitted,
                mental_state=int(clamp(student.mental_state + cost["mental_state"] * submitted, 0, 100)),
                stress=int(clamp(student.stress + cost["stress"] * submitted, 0, 100)),
            )
        )

    chance = paper_decision_chance(stats, research)
    candidates = [s for s in result.students if s.pending_papers > 0 and rng.random() < chance]
    if candidates:
        cursor = rng.random() * sum(s.pending_papers for s in candidates)
        for student in candidates:
            cursor -= student.pending_papers
            if cursor <= 0:
                result.decision_student_id = student.id
                break
        if result.decision_student_id is None:
            result.decision_student_id = candidates[0].id
    return result


def paper_acceptance_chance(student: StudentPersona, stats: MentorStats) -> float:
    chance = (
        0.05
        + stats.academia.value / 500
        + (student.talent + student.diligence) / 1200
        + (student.mental_state - 50) / 600
        - student.stress / 600
    )
    return clamp(chance, 0.08, 0.55)


def _sample_student_paper_outcome(
    rng: DeterministicRNG, tier: Tier, base_chance: float, *, settings: Settings, outcomes: Dict[str, str]
) -> Tuple[str, DecisionEffects]:
    cfg = settings.papers["student_paper"]
    accept = clamp(base_chance * cfg["tier_multiplier"][tier.value], 0.05, 0.85)
    revise = cfg["revise_chance"][tier.value]
    roll = rng.random()
    if roll < accept:
        return outcomes["accept"], DecisionEffects(
            stats=StatDelta(reputation=2 if tier is Tier.A else 1, morale=2, funding=3000),
            student=StudentDelta(pending_papers=-1, total_papers=1, mental_state=6, stress=-4),
        )
    if roll < accept + revise:
        return outcomes["revise"], DecisionEffects(
            stats=StatDelta(funding=-800, morale=-1),
            student=StudentDelta(mental_state=-2, stress=4, pending_papers=0),
        )
    return outcomes["reject"], DecisionEffects(
        stats=StatDelta(morale=-2),
        student=StudentDelta(pending_papers=-1, mental_state=-4, stress=3),
    )


def _resolves_paper(effects: DecisionEffects) -> bool:
    return bool(effects.student and effects.student.pending_papers)


def build_student_paper_fallback(
    rng: DeterministicRNG,
    student: StudentPersona,
    stats: MentorStats,
    stamp: QuarterStamp,
    *,
    settings: Settings,
    templates: DecisionTemplates,
) -> DecisionEvent:
    """Local three-tier paper decision whose outcomes are sampled up front.

    Option C is resampled until it takes the paper out of the pipeline, and
    falls back to a guaranteed safe landing after the resample limit.
    """

    template = templates.student_paper
    outcomes = template["outcomes"]
    base_chance = paper_acceptance_chance(student, stats)
    sampled = {
        tier: _sample_student_paper_outcome(rng, tier, base_chance, settings=settings, outcomes=outcomes)
        for tier in (Tier.A, Tier.B)
    }
    option_c = _sample_student_paper_outcome(rng, Tier.C, base_chance, settings=settings, outcomes=outcomes)
    attempts = 0
    while not _resolves_paper(option_c[1]) and attempts < settings.papers["student_paper"]["resample_limit"]:
        attempts += 1
        option_c = _sample_student_paper_outcome(rng, Tier.C, base_chance, settings=settings, outcomes=outcomes)
    if not _resolves_paper(option_c[1]):
        option_c = (
            outcomes["safe"],
            DecisionEffects(
                stats=StatDelta(reputation=1, morale=1),
                student=StudentDelta(
                    pending_papers=-1,
                    total_papers=1 if rng.random() < 0.6 else 0,
                    mental_state=3,
                    stress=-2,
                ),
            ),
        )
    sampled[Tier.C] = option_c

    options = []
    for tier, (outcome, effects) in sampled.items():
        labels = template["options"][tier.value]
        options.append(
            DecisionOption(id=tier.value, label=labels["label"], hint=labels.get("hint"), outcome=outcome, effects=effects)
        )
    return DecisionEvent(
        id=f"dec-student-paper-{student.id}-{stamp.year}-{stamp.quarter}-{rng.token()}",
        kind=DecisionKind.STUDENT_PAPER_EVENT,
        title=template["title"],
        prompt=template["prompt"].format(name=student.name),
        options=options,
        created_at=stamp,
        context=DecisionContext(student_id=student.id),
    )


def build_venue_decision(
    rng: DeterministicRNG, paper: ProjectPaper, stamp: QuarterStamp, *, templates: DecisionTemplates
) -> DecisionEvent:
    title, prompt, options = templates.render(templates.venue, rng, {"title": paper.title})
    return DecisionEvent(
        id=f"dec-project-venue-{paper.id}",
        kind=DecisionKind.PROJECT_VENUE,
        title=title,
        prompt=prompt,
        options=options,
        created_at=stamp,
        context=DecisionContext(paper_id=paper.id, project_id=paper.project_id),
    )


def build_revision_decision(
    rng: DeterministicRNG,
    paper: ProjectPaper,
    kind: RevisionKind,
    stamp: QuarterStamp,
    *,
    templates: DecisionTemplates,
) -> DecisionEvent:
    title, prompt, options = templates.render(templates.revision(kind.value), rng, {"title": paper.title})
    return DecisionEvent(
        id=f"dec-project-revision-{paper.id}-{kind.value}",
        kind=DecisionKind.PROJECT_REVISION,
        title=title,
        prompt=prompt,
        options=options,
        created_at=stamp,
        context=DecisionContext(paper_id=paper.id, project_id=paper.project_id, revision_kind=kind),
    )


def review_chances(
    paper: ProjectPaper, lead: Optional[StudentPersona], stats: MentorStats, *, papers_cfg: Dict
) -> Tuple[float, float, float]:
    """Return ``(accept, revision, major)`` chances for a paper due for a verdict.

    When acceptance plus revision exceed the combined cap only the revision
    chance shrinks.
    """

    tier = (paper.venue_tier or Tier.C).value
    lead_boost = (lead.talent + lead.diligence) / 650 if lead else 0.0
    stress_penalty = lead.stress / 650 if lead else 0.0
    accept = clamp(
        papers_cfg["base_acceptance"][tier]
        + stats.academia.value / 260
        + lead_boost
        + paper.revision_round * 0.06
        - stress_penalty,
        0.06,
        0.85,
    )
    revision = clamp(papers_cfg["base_revision"][tier] - paper.revision_round * 0.08, 0.15, 0.75)
    cap = papers_cfg["combined_cap"]
    if accept + revision > cap:
        revision = cap - accept
    major = clamp(papers_cfg["base_major_revision"][tier] - paper.revision_round * 0.18, 0.15, 0.75)
    return accept, revision, major


@dataclass
class PaperSettlement:
    papers: List[ProjectPaper]
    students: List[StudentPersona]
    stat_delta: StatDelta = field(default_factory=StatDelta)
    decisions: List[DecisionEvent] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)


def settle_project_papers(
    rng: DeterministicRNG,
    papers: Sequence[ProjectPaper],
    students: Sequence[StudentPersona],
    stats: MentorStats,
    *,
    current: QuarterStamp,
    decision_stamp: QuarterStamp,
    settings: Settings,
    templates: DecisionTemplates,
) -> PaperSettlement:
    """Reach verdicts on every paper under review whose due quarter has arrived."""

    papers_cfg = settings.papers
    by_id = {student.id: student for student in students}
    ledger = StudentDeltaLedger()
    stat_delta = StatDelta()
    decisions: List[DecisionEvent] = []
    notices: List[Notice] = []
    updated: List[ProjectPaper] = []

    for paper in papers:
        if paper.status is not PaperStatus.UNDER_REVIEW or paper.decision_due is None:
            updated.append(paper)
            continue
        if not current.has_reached(paper.decision_due):
            updated.append(paper)
            continue

        tier = paper.venue_tier or Tier.C
        lead = by_id.get(paper.lead_student_id) if paper.lead_student_id else None
        accept, revision, major = review_chances(paper, lead, stats, papers_cfg=papers_cfg)
        roll = rng.random()

        if roll < accept:
            reward = papers_cfg["rewards"][tier.value]
            stat_delta = stat_delta + StatDelta(
                reputation=reward["reputation"], funding=reward["funding"], morale=2
            )
            ledger.add(paper.lead_student_id, StudentDelta(pending_papers=-1, total_papers=1, mental_state=4, stress=-5))
            notices.append(("Paper accepted", f"\"{paper.title}\" was accepted at a tier {tier.value} venue."))
            updated.append(replace(paper, status=PaperStatus.ACCEPTED, venue_tier=tier, decision_due=None))
            logger.debug("Paper %s accepted (p=%.2f)", paper.id, accept)
            continue

        if roll < accept + revision:
            kind = RevisionKind.MAJOR if rng.random() < major else RevisionKind.MINOR
            ledger.add(paper.lead_student_id, StudentDelta(mental_state=-2, stress=3))
            revised = replace(
                paper,
                status=PaperStatus.AWAITING_REVISION,
                venue_tier=tier,
                last_revision_kind=kind,
                decision_due=None,
            )
            decisions.append(build_revision_decision(rng, revised, kind, decision_stamp, templates=templates))
            notices.append(("Revision requested", f"\"{paper.title}\" received a {kind.value} revision."))
            updated.append(revised)
            continue

        stat_delta = stat_delta + StatDelta(morale=-2)
        ledger.add(paper.lead_student_id, StudentDelta(pending_papers=-1, mental_state=-5, stress=4))
        notices.append(("Paper rejected", f"\"{paper.title}\" was rejected."))
        updated.append(replace(paper, status=PaperStatus.REJECTED, venue_tier=tier, decision_due=None))

    return PaperSettlement(
        papers=updated,
        students=ledger.apply(students),
        stat_delta=stat_delta,
        decisions=decisions,
        notices=notices,
    )


@dataclass
class ProjectAdvance:
    projects: List[ResearchProject]
    completed: List[ResearchProject] = field(default_factory=list)


def advance_projects(
    projects: Sequence[ResearchProject],
    students: Sequence[StudentPersona],
    *,
    settings: Settings,
) -> ProjectAdvance:
    cfg = settings.projects
    by_id = {student.id: student for student in students}
    result = ProjectAdvance(projects=[])
    for project in projects:
        if project.completed:
            result.projects.append(project)
            continue
        members = [by_id[sid] for sid in project.assigned_student_ids if sid in by_id]
        base = cfg["track_base_gain"] if members else 0
        boost = sum(round_half_up(member.diligence / cfg["diligence_divisor"]) for member in members)
        step = base + boost
        advanced = replace(
            project,
            literature=min(100, project.literature + step),
            experiment=min(100, project.experiment + step),
            results=min(100, project.results + step),
        )
        if advanced.literature >= 100 and advanced.experiment >= 100 and advanced.results >= 100:
            advanced = replace(advanced, completed=True)
            result.completed.append(advanced)
        result.projects.append(advanced)
    return result


__all__ = [
    "PaperSettlement",
    "ProjectAdvance",
    "ResearchSettlement",
    "active_project_counts",
    "advance_projects",
    "build_revision_decision",
    "build_student_paper_fallback",
    "build_venue_decision",
    "paper_acceptance_chance",
    "paper_decision_chance",
    "paper_progress_gain",
    "pick_lead_student_id",
    "review_chances",
    "settle_project_papers",
    "settle_research_papers",
]
