"""Grant applications, review resolution, execution progress and closure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config import GrantConfig, Settings
from ..models import (
    DecisionContext,
    DecisionEvent,
    DecisionKind,
    GrantStage,
    GrantState,
    GrantStatus,
    MentorStats,
    PaperStatus,
    ProjectPaper,
    QuarterStamp,
    StatDelta,
    StudentPersona,
    Tier,
)
from ..rng import DeterministicRNG, clamp, round_half_up
from ..templates import DecisionTemplates
from .papers import Notice, build_venue_decision, pick_lead_student_id

logger = logging.getLogger(__name__)

IdFactory = Callable[[str], str]


@dataclass(frozen=True)
class GrantEventRequest:
    """A grant event the narrative generator is asked to phrase."""

    grant: GrantState
    stage: GrantStage
    stamp: QuarterStamp

    @property
    def kind(self) -> DecisionKind:
        if self.stage is GrantStage.EXECUTION:
            return DecisionKind.GRANT_EXECUTION_EVENT
        return DecisionKind.GRANT_REVIEW_EVENT


def compute_base_score(
    rng: DeterministicRNG, stats: MentorStats, config: GrantConfig, *, rules: Dict
) -> int:
    weighted = sum(getattr(stats, name).value * weight for name, weight in config.score_weights.items())
    jitter = round_half_up((rng.random() * 2 - 1) * rules["score_jitter"])
    base = rules["score_floor"] + weighted + stats.reputation * rules["reputation_weight"]
    return round_half_up(clamp(base + jitter, rules["score_floor"], rules["score_ceiling"]))


def apply_grant(
    rng: DeterministicRNG,
    *,
    grants: Sequence[GrantState],
    stats: MentorStats,
    current: QuarterStamp,
    grant_type: str,
    grant_id: str,
    settings: Settings,
    title: Optional[str] = None,
) -> Tuple[GrantState, GrantEventRequest]:
    """Open a new application and return it with its submission-stage event.

    Raises :class:`ValueError` outside the type's open quarter, while another
    application of the type is in flight, or after a same-year application.
    """

    config = settings.grant_config(grant_type)
    if current.quarter != config.open_quarter:
        raise ValueError(f"{config.label} only opens in quarter {config.open_quarter}")
    if any(g.type == grant_type and g.status in (GrantStatus.REVIEWING, GrantStatus.ACTIVE) for g in grants):
        raise ValueError(f"{config.label} already has an application in review or execution")
    if any(g.type == grant_type and g.applied_at.year == current.year for g in grants):
        raise ValueError(f"{config.label} was already applied for in year {current.year}")

    rules = settings.grant_rules
    low, high = rules["initial_luck"]
    grant = GrantState(
        id=grant_id,
        type=grant_type,
        title=title or f"{config.label} application",
        applied_at=current,
        review_end=current.add_quarters(config.review_offset_quarters),
        base_score=compute_base_score(rng, stats, config, rules=rules),
        luck=rng.roll_in_range(low, high),
        last_event_at=current,
    )
    logger.info("Grant %s (%s) submitted with base score %s", grant.id, grant_type, grant.base_score)
    return grant, GrantEventRequest(grant=grant, stage=GrantStage.SUBMISSION, stamp=current)


def resolve_grant_score(grant: GrantState, config: GrantConfig) -> Optional[Tier]:
    """Map the final score onto a funding tier, ``None`` meaning rejection."""

    score = grant.final_score
    if score < config.reject_below:
        return None
    if score >= config.tier_a:
        return Tier.A
    if score >= config.tier_b:
        return Tier.B
    return Tier.C


def grant_progress_gain(
    rng: DeterministicRNG,
    assigned: Sequence[StudentPersona],
    stats: MentorStats,
    tier: Optional[Tier],
    *,
    rules: Dict,
) -> int:
    mentor_boost = round_half_up(stats.academia.value / 30) + round_half_up(stats.admin.value / 60)
    if not assigned:
        return int(clamp(2 + mentor_boost, 2, 8))
    boost = sum(round_half_up(s.diligence / 20) + round_half_up(s.talent / 25) for s in assigned)
    stress_penalty = sum(round_half_up(s.stress / 50) for s in assigned)
    mental_penalty = sum(1 for s in assigned if s.mental_state < 50)
    tier_boost = rules["tier_progress_boost"][tier.value] if tier else 0
    jitter = rng.roll_in_range(-2, 2)
    return int(clamp(12 + boost + tier_boost + mentor_boost + jitter - stress_penalty - mental_penalty, 4, 50))


def grant_event_stage(grant: GrantState) -> GrantStage:
    return GrantStage.EXECUTION if grant.status is GrantStatus.ACTIVE else GrantStage.REVIEW


def build_grant_event_fallback(
    rng: DeterministicRNG,
    request: GrantEventRequest,
    *,
    settings: Settings,
    templates: DecisionTemplates,
) -> DecisionEvent:
    grant = request.grant
    pool = templates.grant_event_templates(request.stage.value)
    template = pool[int(rng.random() * len(pool))]
    context = {"title": grant.title, "grant_label": settings.grant_config(grant.type).label}
    title, prompt, options = templates.render(template, rng, context)
    prefix = "exec" if request.stage is GrantStage.EXECUTION else "review"
    return DecisionEvent(
        id=f"dec-grant-{prefix}-{grant.id}-{request.stamp.year}-{request.stamp.quarter}-{rng.token()}",
        kind=request.kind,
        title=title,
        prompt=prompt,
        options=options,
        created_at=request.stamp,
        context=DecisionContext(grant_id=grant.id),
    )


def evaluate_closure(grant: GrantState, papers: Sequence[ProjectPaper], config: GrantConfig) -> Tuple[bool, int, int]:
    """Return ``(passed, submissions, accepted)`` for a grant at its closure quarter."""

    requirement = config.tiers[grant.tier or Tier.C].requirement
    own = [paper for paper in papers if paper.grant_id == grant.id]
    submissions = sum(1 for paper in own if paper.status is not PaperStatus.AWAITING_VENUE)
    accepted = [paper for paper in own if paper.status is PaperStatus.ACCEPTED]
    quality_ok = True
    if requirement.min_top_tier is not None:
        quality_ok = any(
            paper.venue_tier is not None and paper.venue_tier.rank >= requirement.min_top_tier.rank
            for paper in accepted
        )
    passed = (
        submissions >= requirement.min_submissions
        and len(accepted) >= requirement.min_accepted
        and quality_ok
    )
    return passed, submissions, len(accepted)


@dataclass
class GrantSettlement:
    grants: List[GrantState]
    papers: List[ProjectPaper] = field(default_factory=list)
    stat_delta: StatDelta = field(default_factory=StatDelta)
    decisions: List[DecisionEvent] = field(default_factory=list)
    requests: List[GrantEventRequest] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)


class _GrantSettler:
    def __init__(
        self,
        rng: DeterministicRNG,
        students: Sequence[StudentPersona],
        stats: MentorStats,
        papers: Sequence[ProjectPaper],
        *,
        current: QuarterStamp,
        decision_stamp: QuarterStamp,
        settings: Settings,
        templates: DecisionTemplates,
        next_id: IdFactory,
    ) -> None:
        self.rng = rng
        self.students = list(students)
        self.by_id = {student.id: student for student in students}
        self.stats = stats
        self.papers = papers
        self.current = current
        self.decision_stamp = decision_stamp
        self.settings = settings
        self.rules = settings.grant_rules
        self.templates = templates
        self.next_id = next_id
        self.result = GrantSettlement(grants=[])

    def _add_stats(self, delta: StatDelta) -> None:
        self.result.stat_delta = self.result.stat_delta + delta

    def _lead_for(self, grant: GrantState) -> Optional[str]:
        if grant.assigned_student_ids:
            return pick_lead_student_id([self.by_id[sid] for sid in grant.assigned_student_ids if sid in self.by_id])
        return pick_lead_student_id(self.students)

    def _draft_paper(self, grant: GrantState, lead_id: Optional[str]) -> ProjectPaper:
        paper = ProjectPaper(
            id=self.next_id("pp"),
            project_id=f"grant-{grant.id}",
            title=grant.title,
            lead_student_id=lead_id,
            grant_id=grant.id,
        )
        self.result.papers.append(paper)
        self.result.decisions.append(
            build_venue_decision(self.rng, paper, self.decision_stamp, templates=self.templates)
        )
        self.result.notices.append(
            ("Manuscript ready", f"\"{grant.title}\" produced a manuscript awaiting a venue choice.")
        )
        return paper

    def _request_event(self, grant: GrantState, chance: float) -> GrantState:
        if grant.last_event_at == self.decision_stamp or self.rng.random() >= chance:
            return grant
        grant = replace(grant, last_event_at=self.decision_stamp)
        self.result.requests.append(
            GrantEventRequest(grant=grant, stage=grant_event_stage(grant), stamp=self.decision_stamp)
        )
        return grant

    def settle_reviewing(self, grant: GrantState, config: GrantConfig) -> GrantState:
        low, high = self.rules["luck_walk"]
        grant = replace(grant, luck=grant.luck + self.rng.roll_in_range(low, high))
        if not self.current.has_reached(grant.review_end):
            requested = self._request_event(grant, config.review_event_chance)
            if requested is not grant:
                self.result.notices.append(
                    ("Grant review update", f"\"{grant.title}\" has a development in review that needs a call.")
                )
            return requested

        tier = resolve_grant_score(grant, config)
        if tier is None:
            self.result.notices.append(
                ("Grant rejected", f"\"{grant.title}\" was not funded (score {grant.final_score}).")
            )
            logger.info("Grant %s rejected with score %s", grant.id, grant.final_score)
            return replace(grant, status=GrantStatus.REJECTED)

        tier_cfg = config.tiers[tier]
        reputation = self.rng.roll_in_range(*tier_cfg.reputation_range)
        self._add_stats(StatDelta(funding=tier_cfg.funding, reputation=reputation))
        lead_id = self._lead_for(grant)
        assigned = list(grant.assigned_student_ids) or ([lead_id] if lead_id else [])
        grant = replace(
            grant,
            status=GrantStatus.ACTIVE,
            tier=tier,
            funding_awarded=tier_cfg.funding,
            reputation_awarded=reputation,
            active_start=self.decision_stamp,
            closure_due=self.decision_stamp.add_quarters(config.execution_duration_quarters - 1),
            assigned_student_ids=assigned,
            paper_progress=0,
        )
        paper = self._draft_paper(grant, lead_id)
        self.result.notices.append(
            (
                "Grant funded",
                f"\"{grant.title}\" was funded at tier {tier.value} "
                f"(+{tier_cfg.funding} funding, +{reputation} reputation).",
            )
        )
        logger.info("Grant %s funded at tier %s", grant.id, tier.value)
        return replace(grant, paper_ids=[*grant.paper_ids, paper.id])

    def settle_active(self, grant: GrantState, config: GrantConfig) -> GrantState:
        assigned = [self.by_id[sid] for sid in grant.assigned_student_ids if sid in self.by_id]
        gain = grant_progress_gain(self.rng, assigned, self.stats, grant.tier, rules=self.rules)
        drafted, remainder = divmod(int(clamp(grant.paper_progress + gain, 0, self.rules["progress_cap"])), 100)
        lead_id = self._lead_for(grant)
        grant = replace(grant, paper_progress=remainder)
        if not grant.assigned_student_ids and lead_id:
            grant = replace(grant, assigned_student_ids=[lead_id])
        for _ in range(drafted):
            paper = self._draft_paper(grant, lead_id)
            grant = replace(grant, paper_ids=[*grant.paper_ids, paper.id])

        if grant.closure_due is None:
            return grant
        if not self.current.has_reached(grant.closure_due):
            requested = self._request_event(grant, config.execution_event_chance)
            if requested is not grant:
                self.result.notices.append(
                    ("Grant execution event", f"\"{grant.title}\" has a new opportunity or risk in execution.")
                )
            return requested

        tier = grant.tier or Tier.C
        closure = self.rules["closure_reputation"]
        passed, submissions, accepted = evaluate_closure(grant, self.papers, config)
        if passed:
            self._add_stats(StatDelta(reputation=closure["completed"][tier.value]))
            self.result.notices.append(
                ("Grant completed", f"\"{grant.title}\" closed successfully ({submissions} submitted, {accepted} accepted).")
            )
            logger.info("Grant %s completed", grant.id)
            return replace(grant, status=GrantStatus.COMPLETED)
        self._add_stats(
            StatDelta(reputation=closure["failed"][tier.value], morale=self.rules["failure_morale"])
        )
        self.result.notices.append(
            ("Grant failed", f"\"{grant.title}\" missed its closure requirements ({submissions} submitted, {accepted} accepted).")
        )
        logger.info("Grant %s failed closure", grant.id)
        return replace(grant, status=GrantStatus.FAILED)


def settle_grants(
    rng: DeterministicRNG,
    grants: Sequence[GrantState],
    students: Sequence[StudentPersona],
    papers: Sequence[ProjectPaper],
    stats: MentorStats,
    *,
    current: QuarterStamp,
    decision_stamp: QuarterStamp,
    settings: Settings,
    templates: DecisionTemplates,
    next_id: IdFactory,
) -> GrantSettlement:
    """Advance every reviewing and active grant by one quarter."""

    settler = _GrantSettler(
        rng,
        students,
        stats,
        papers,
        current=current,
        decision_stamp=decision_stamp,
        settings=settings,
        templates=templates,
        next_id=next_id,
    )
    for grant in grants:
        if grant.type not in settings.grant_types:
            logger.warning("Skipping grant %s with unknown type %s", grant.id, grant.type)
            settler.result.grants.append(grant)
            continue
        config = settings.grant_config(grant.type)
        if grant.status is GrantStatus.REVIEWING:
            settler.result.grants.append(settler.settle_reviewing(grant, config))
        elif grant.status is GrantStatus.ACTIVE:
            settler.result.grants.append(settler.settle_active(grant, config))
        else:
            settler.result.grants.append(grant)
    return settler.result


__all__ = [
    "GrantEventRequest",
    "GrantSettlement",
    "apply_grant",
    "build_grant_event_fallback",
    "compute_base_score",
    "evaluate_closure",
    "grant_event_stage",
    "grant_progress_gain",
    "resolve_grant_score",
    "settle_grants",
]
