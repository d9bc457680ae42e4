"""Narrative generation for decisions, with local templates as fallback.

Every public coroutine here always returns usable decisions: generator
failures, mock mode and malformed payloads all fall back to the templates in
``decision_templates.yaml``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import Settings
from ..llm_client import LLMClient, LLMGenerationError, LLMNotEnabledError
from ..models import (
    DecisionContext,
    DecisionEvent,
    DecisionKind,
    DecisionOption,
    GrantStage,
    MentorStats,
    QuarterStamp,
    StudentPersona,
)
from ..rng import DeterministicRNG
from ..schemas import EffectBounds, parse_generated_decision, to_decision_options
from ..templates import DecisionTemplates
from .grants import GrantEventRequest, build_grant_event_fallback
from .papers import build_student_paper_fallback

logger = logging.getLogger(__name__)

RUNAWAY = "runaway"

_CATEGORY_HINTS = {
    "industryOffer": "a student receives an internship or job offer; focus on pressure and scheduling",
    "schoolNotice": "a school notice about procedures, inspections, forms or resource allocation",
    "resource": "instrument time, shared compute, budget usage or data access",
    "conference": "conference submissions, talk invitations, travel or a deadline sprint",
    "collaboration": "a collaboration offer, cross-department project, authorship order or data sharing",
    "policy": "policy, compliance, audits, spot checks or research ethics",
    RUNAWAY: "a student suddenly wants to leave the group (rare); include studentAction leave/stay in meta",
    "general": "lab rhythm, group meetings, submission planning or team communication",
}

_GRANT_STAGE_HINTS = {
    GrantStage.SUBMISSION: "the application was just submitted; materials, endorsements or formalities",
    GrantStage.REVIEW: "the application is under review; reviewer comments, policy swings or quota competition",
    GrantStage.EXECUTION: "the funded project is running; data, breakthroughs or turbulence",
}


def _stats_line(stats: MentorStats) -> str:
    return (
        f"morale {stats.morale.value}, academia {stats.academia.value}, admin {stats.admin.value}, "
        f"integrity {stats.integrity.value}, funding {stats.funding}, reputation {stats.reputation}"
    )


def team_summary(students: Sequence[StudentPersona], cap: int = 10) -> List[Dict[str, Any]]:
    return [
        {
            "id": student.id,
            "name": student.name,
            "stage": f"{student.student_type.value} year {student.year}",
            "traits": list(student.traits),
            "diligence": student.diligence,
            "talent": student.talent,
            "luck": student.luck,
            "pendingPapers": student.pending_papers,
            "totalPapers": student.total_papers,
        }
        for student in list(students)[:cap]
    ]


def _format_team(members: List[Dict[str, Any]]) -> str:
    if not members:
        return "(no team members)"
    return "\n".join(
        f"- {m['name']} ({m['stage']}), traits {', '.join(m['traits']) or 'none'}, "
        f"papers {m['pendingPapers']} pending / {m['totalPapers']} published"
        for m in members
    )


_SCHEMA_HINT = (
    'Return {"title": str, "prompt": str, "options": [{"id": "A", "label": str, "hint": str, '
    '"outcome": str, "effects": {"stats": {...}, "student": {...}}, "meta": {...}}]} '
    "with two or three options. Use small integer deltas."
)


class NarrativeService:
    """Turns settlement requests into decisions through the generator client."""

    def __init__(
        self,
        client: LLMClient,
        settings: Settings,
        templates: DecisionTemplates,
        rng: DeterministicRNG,
    ) -> None:
        self.client = client
        self.settings = settings
        self.templates = templates
        self.rng = rng
        bounds = settings.generator_bounds
        self._grant_bounds = EffectBounds.from_dict(bounds.get("grant", {}))
        self._quarter_bounds = EffectBounds.from_dict(bounds.get("quarter", {}))
        self._paper_bounds = EffectBounds.from_dict(bounds.get("student_paper", {}))
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    def _limiter(self) -> asyncio.Semaphore:
        # One semaphore per event loop.
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(max(1, self.client.config.max_concurrent))
            self._semaphore_loop = loop
        return self._semaphore

    async def _generate(
        self, user_prompt: str, bounds: EffectBounds, *, allow_student_action: bool = False
    ) -> Tuple[str, str, List[DecisionOption]]:
        async with self._limiter():
            text = await self.client.generate_json_text(user_prompt)
        decision = parse_generated_decision(text)
        options = to_decision_options(decision, bounds, allow_student_action=allow_student_action)
        return decision.title, decision.prompt, options

    def _note_fallback(self, what: str, exc: Exception) -> None:
        if isinstance(exc, LLMNotEnabledError):
            logger.debug("Generator disabled; using template for %s", what)
        else:
            logger.warning("Falling back to template for %s: %s", what, exc)

    # Grant events -------------------------------------------------------------

    async def grant_event(
        self,
        request: GrantEventRequest,
        *,
        stats: MentorStats,
        students: Sequence[StudentPersona] = (),
    ) -> DecisionEvent:
        grant = request.grant
        config = self.settings.grant_config(grant.type)
        user_prompt = (
            f"Write a grant event for \"{grant.title}\" ({config.label}) in year {request.stamp.year} "
            f"quarter {request.stamp.quarter}. Situation: {_GRANT_STAGE_HINTS[request.stage]}.\n"
            f"Mentor stats: {_stats_line(stats)}.\nTeam:\n"
            f"{_format_team(team_summary(students, self.settings.quarter_events['team_summary_cap']))}\n"
            f"{_SCHEMA_HINT} Meta may carry "
            + ("progressDelta." if request.stage is GrantStage.EXECUTION else "scoreDelta and luckDelta.")
        )
        try:
            title, prompt, options = await self._generate(user_prompt, self._grant_bounds)
        except (LLMGenerationError, ValueError) as exc:
            self._note_fallback(f"grant {grant.id}", exc)
            return build_grant_event_fallback(self.rng, request, settings=self.settings, templates=self.templates)
        prefix = "exec" if request.stage is GrantStage.EXECUTION else "review"
        return DecisionEvent(
            id=f"dec-grant-{prefix}-{grant.id}-{request.stamp.year}-{request.stamp.quarter}-{self.rng.token()}",
            kind=request.kind,
            title=title,
            prompt=prompt,
            options=options,
            created_at=request.stamp,
            context=DecisionContext(grant_id=grant.id),
        )

    # Student paper events -----------------------------------------------------

    async def student_paper_event(
        self, student: StudentPersona, *, stats: MentorStats, stamp: QuarterStamp
    ) -> DecisionEvent:
        user_prompt = (
            f"{student.name} has {student.pending_papers} manuscript(s) under review and a verdict "
            f"is in for one of them (year {stamp.year} quarter {stamp.quarter}). Offer three venue "
            "strategies: A aims high, B is balanced, C is safe.\n"
            f"Mentor stats: {_stats_line(stats)}.\n"
            f"Student: diligence {student.diligence}, talent {student.talent}, stress {student.stress}, "
            f"mental state {student.mental_state}, traits {', '.join(student.traits) or 'none'}.\n"
            f"{_SCHEMA_HINT} Student effects may move pendingPapers and totalPapers by at most one."
        )
        try:
            title, prompt, options = await self._generate(user_prompt, self._paper_bounds)
        except (LLMGenerationError, ValueError) as exc:
            self._note_fallback(f"student paper {student.id}", exc)
            return build_student_paper_fallback(
                self.rng, student, stats, stamp, settings=self.settings, templates=self.templates
            )
        return DecisionEvent(
            id=f"dec-student-paper-{student.id}-{stamp.year}-{stamp.quarter}-{self.rng.token()}",
            kind=DecisionKind.STUDENT_PAPER_EVENT,
            title=title,
            prompt=prompt,
            options=options,
            created_at=stamp,
            context=DecisionContext(student_id=student.id),
        )

    # Quarterly events ---------------------------------------------------------

    def pick_quarter_categories(
        self, count: int, students: Sequence[StudentPersona]
    ) -> List[Tuple[str, Optional[StudentPersona]]]:
        """Choose ``count`` categories, each with an optional target student.

        ``runaway`` is rare and only chosen when there is someone to leave.
        """

        cfg = self.settings.quarter_events
        categories = list(cfg["categories"])
        picks: List[Tuple[str, Optional[StudentPersona]]] = []
        for _ in range(count):
            target = self.rng.choice(list(students)) if students else None
            if target is not None and self.rng.random() < cfg["runaway_chance"]:
                picks.append((RUNAWAY, target))
                continue
            picks.append((self.rng.choice(categories), target))
        return picks

    def _quarter_fallback(
        self, category: str, target: Optional[StudentPersona], stamp: QuarterStamp, index: int
    ) -> DecisionEvent:
        template = self.templates.quarter_event_template(category)
        context = {"name": target.name if target else "A student"}
        title, prompt, options = self.templates.render(template, self.rng, context)
        return self._quarter_decision(title, prompt, options, category, target, stamp, index)

    def _quarter_decision(
        self,
        title: str,
        prompt: str,
        options: List[DecisionOption],
        category: str,
        target: Optional[StudentPersona],
        stamp: QuarterStamp,
        index: int,
    ) -> DecisionEvent:
        return DecisionEvent(
            id=f"dec-quarter-{stamp.year}-{stamp.quarter}-{index}-{self.rng.token()}",
            kind=DecisionKind.QUARTER_EVENT,
            title=title,
            prompt=prompt,
            options=options,
            created_at=stamp,
            context=DecisionContext(student_id=target.id if target else None, category=category),
        )

    async def _quarter_event(
        self,
        category: str,
        target: Optional[StudentPersona],
        *,
        stats: MentorStats,
        students: Sequence[StudentPersona],
        stamp: QuarterStamp,
        index: int,
    ) -> DecisionEvent:
        members = team_summary(students, self.settings.quarter_events["team_summary_cap"])
        focus = f"The student involved, if any, is {target.name}." if target else ""
        user_prompt = (
            f"Write a school notice or team event for year {stamp.year} quarter {stamp.quarter}. "
            f"Topic: {_CATEGORY_HINTS.get(category, _CATEGORY_HINTS['general'])}. {focus}\n"
            f"Mentor stats: {_stats_line(stats)}.\nTeam ({len(members)} shown):\n{_format_team(members)}\n"
            f"{_SCHEMA_HINT}"
        )
        try:
            title, prompt, options = await self._generate(
                user_prompt, self._quarter_bounds, allow_student_action=category == RUNAWAY
            )
        except (LLMGenerationError, ValueError) as exc:
            self._note_fallback(f"quarter event {category}", exc)
            return self._quarter_fallback(category, target, stamp, index)
        return self._quarter_decision(title, prompt, options, category, target, stamp, index)

    async def quarter_events(
        self,
        *,
        stats: MentorStats,
        students: Sequence[StudentPersona],
        stamp: QuarterStamp,
        count: Optional[int] = None,
    ) -> List[DecisionEvent]:
        count = self.settings.quarter_events["per_quarter"] if count is None else count
        picks = self.pick_quarter_categories(count, students)
        return list(
            await asyncio.gather(
                *(
                    self._quarter_event(
                        category, target, stats=stats, students=students, stamp=stamp, index=index
                    )
                    for index, (category, target) in enumerate(picks)
                )
            )
        )


__all__ = ["NarrativeService", "RUNAWAY", "team_summary"]
