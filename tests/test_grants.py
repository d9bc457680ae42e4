"""Tests for grant applications, review resolution, execution and closure."""
from dataclasses import replace
from itertools import count

import pytest

from mentor_sim.models import (
    DecisionKind,
    GrantStage,
    GrantState,
    GrantStatus,
    PaperStatus,
    ProjectPaper,
    QuarterStamp,
    Tier,
)
from mentor_sim.rng import DeterministicRNG
from mentor_sim.services.grants import (
    GrantEventRequest,
    apply_grant,
    build_grant_event_fallback,
    evaluate_closure,
    resolve_grant_score,
    settle_grants,
)

Y1Q1 = QuarterStamp(1, 1)
Y1Q2 = QuarterStamp(1, 2)
Y1Q3 = QuarterStamp(1, 3)
Y1Q4 = QuarterStamp(1, 4)


def _ids():
    serial = count(1)
    return lambda prefix: f"{prefix}-{next(serial)}"


def _grant(**overrides):
    values = dict(
        id="g1",
        type="natural_science",
        title="Adaptive sensing",
        applied_at=Y1Q1,
        review_end=Y1Q3,
        base_score=70,
    )
    values.update(overrides)
    return GrantState(**values)


def _settle(grants, students, papers, stats, settings, templates, *, current, rng=None):
    return settle_grants(
        rng or DeterministicRNG(5),
        grants,
        students,
        papers,
        stats,
        current=current,
        decision_stamp=current.add_quarters(1),
        settings=settings,
        templates=templates,
        next_id=_ids(),
    )


def _tier_rank(tier):
    return tier.rank if tier else 0


def test_score_of_70_resolves_to_tier_b_at_review_deadline(settings, templates, stats, make_student):
    still = replace(settings, grant_rules={**settings.grant_rules, "luck_walk": [0, 0]})
    student = make_student("s1")

    result = _settle([_grant()], [student], [], stats, still, templates, current=Y1Q3)

    (grant,) = result.grants
    assert grant.status is GrantStatus.ACTIVE
    assert grant.tier is Tier.B
    assert grant.funding_awarded == 200000
    assert 2 <= grant.reputation_awarded <= 4
    assert result.stat_delta.funding == 200000
    assert grant.active_start == Y1Q4
    assert grant.closure_due == QuarterStamp(3, 1)
    assert grant.assigned_student_ids == ["s1"]

    (paper,) = result.papers
    assert paper.grant_id == "g1"
    assert paper.lead_student_id == "s1"
    assert paper.status is PaperStatus.AWAITING_VENUE
    assert grant.paper_ids == [paper.id]
    assert [d.kind for d in result.decisions] == [DecisionKind.PROJECT_VENUE]
    assert result.decisions[0].context.paper_id == paper.id


def test_score_below_threshold_rejects(settings, templates, stats):
    still = replace(settings, grant_rules={**settings.grant_rules, "luck_walk": [0, 0]})

    result = _settle([_grant(base_score=50)], [], [], stats, still, templates, current=Y1Q3)

    assert result.grants[0].status is GrantStatus.REJECTED
    assert result.stat_delta.is_empty()


def test_score_resolution_is_monotonic(settings):
    config = settings.grant_config("natural_science")
    for base in range(30, 96):
        for score_delta in range(-20, 21):
            before = resolve_grant_score(_grant(base_score=base, score_delta=score_delta), config)
            for extra in (1, 5, 20):
                after = resolve_grant_score(_grant(base_score=base, score_delta=score_delta + extra), config)
                assert _tier_rank(after) >= _tier_rank(before)


def test_score_bands(settings):
    config = settings.grant_config("natural_science")

    assert resolve_grant_score(_grant(base_score=54), config) is None
    assert resolve_grant_score(_grant(base_score=55), config) is Tier.C
    assert resolve_grant_score(_grant(base_score=65), config) is Tier.B
    assert resolve_grant_score(_grant(base_score=79, luck=1), config) is Tier.A


def test_apply_grant_opens_a_reviewing_application(settings, stats):
    grant, request = apply_grant(
        DeterministicRNG(3),
        grants=[],
        stats=stats,
        current=Y1Q1,
        grant_type="natural_science",
        grant_id="grant-1",
        settings=settings,
    )

    assert grant.status is GrantStatus.REVIEWING
    assert grant.review_end == Y1Q3
    assert 30 <= grant.base_score <= 95
    assert -6 <= grant.luck <= 6
    assert grant.last_event_at == Y1Q1
    assert request.stage is GrantStage.SUBMISSION
    assert request.kind is DecisionKind.GRANT_REVIEW_EVENT


def test_apply_grant_window_rules(settings, stats):
    kwargs = dict(stats=stats, grant_type="natural_science", grant_id="grant-2", settings=settings)

    with pytest.raises(ValueError):
        apply_grant(DeterministicRNG(1), grants=[], current=Y1Q2, **kwargs)
    with pytest.raises(ValueError):
        apply_grant(DeterministicRNG(1), grants=[_grant()], current=QuarterStamp(2, 1), **kwargs)
    with pytest.raises(ValueError):
        apply_grant(DeterministicRNG(1), grants=[_grant(status=GrantStatus.REJECTED)], current=Y1Q1, **kwargs)

    grant, _ = apply_grant(
        DeterministicRNG(1), grants=[_grant(status=GrantStatus.REJECTED)], current=QuarterStamp(2, 1), **kwargs
    )
    assert grant.applied_at == QuarterStamp(2, 1)


def test_unknown_grant_type_is_rejected(settings, stats):
    with pytest.raises(ValueError):
        apply_grant(
            DeterministicRNG(1),
            grants=[],
            stats=stats,
            current=Y1Q1,
            grant_type="space_program",
            grant_id="grant-3",
            settings=settings,
        )


def _paper(paper_id, status, *, grant_id="g1", tier=None):
    return ProjectPaper(
        id=paper_id, project_id=f"grant-{grant_id}", title=paper_id, status=status, venue_tier=tier, grant_id=grant_id
    )


def test_closure_counts_only_the_grants_own_submissions(settings):
    config = settings.grant_config("natural_science")
    papers = [
        _paper("p1", PaperStatus.ACCEPTED, tier=Tier.C),
        _paper("p2", PaperStatus.UNDER_REVIEW),
        _paper("p3", PaperStatus.ACCEPTED, grant_id="g2", tier=Tier.A),
        _paper("p4", PaperStatus.AWAITING_VENUE),
    ]

    assert evaluate_closure(_grant(tier=Tier.B), papers, config) == (True, 2, 1)
    # Tier A needs an accepted paper at tier B or better.
    passed, _, _ = evaluate_closure(_grant(tier=Tier.A), papers + [_paper("p5", PaperStatus.ACCEPTED, tier=Tier.C)], config)
    assert not passed


def test_active_grant_completes_when_requirements_are_met(settings, templates, stats, make_student):
    grant = _grant(status=GrantStatus.ACTIVE, tier=Tier.B, closure_due=Y1Q2, assigned_student_ids=["s1"])
    papers = [_paper("p1", PaperStatus.ACCEPTED, tier=Tier.B), _paper("p2", PaperStatus.REJECTED)]

    result = _settle([grant], [make_student("s1")], papers, stats, settings, templates, current=Y1Q2)

    assert result.grants[0].status is GrantStatus.COMPLETED
    assert result.stat_delta.reputation == 1


def test_active_grant_fails_without_output(settings, templates, stats, make_student):
    grant = _grant(status=GrantStatus.ACTIVE, tier=Tier.B, closure_due=Y1Q2, assigned_student_ids=["s1"])

    result = _settle([grant], [make_student("s1")], [], stats, settings, templates, current=Y1Q2)

    assert result.grants[0].status is GrantStatus.FAILED
    assert result.stat_delta.reputation == -1
    assert result.stat_delta.morale == -3


def test_execution_progress_drafts_papers(settings, templates, stats, make_student):
    grant = _grant(
        status=GrantStatus.ACTIVE,
        tier=Tier.A,
        paper_progress=95,
        closure_due=QuarterStamp(3, 1),
        assigned_student_ids=["s1"],
    )

    result = _settle([grant], [make_student("s1")], [], stats, settings, templates, current=Y1Q2)

    (updated,) = result.grants
    (paper,) = result.papers
    assert 0 <= updated.paper_progress < 100
    assert updated.paper_ids == [paper.id]
    assert paper.grant_id == "g1"
    assert any(d.kind is DecisionKind.PROJECT_VENUE for d in result.decisions)


def test_grant_without_assignees_gets_a_lead(settings, templates, stats, make_student):
    grant = _grant(status=GrantStatus.ACTIVE, tier=Tier.C, closure_due=QuarterStamp(3, 1))
    students = [make_student("s1", diligence=40), make_student("s2", diligence=90)]

    result = _settle([grant], students, [], stats, settings, templates, current=Y1Q2)

    assert result.grants[0].assigned_student_ids == ["s2"]


def test_one_event_per_grant_per_quarter(settings, templates, stats):
    grant = _grant(last_event_at=Y1Q2)

    for seed in range(20):
        result = _settle([grant], [], [], stats, settings, templates, current=Y1Q1, rng=DeterministicRNG(seed))
        assert result.requests == []


def test_terminal_grants_pass_through(settings, templates, stats):
    grant = _grant(status=GrantStatus.COMPLETED, tier=Tier.B)

    result = _settle([grant], [], [], stats, settings, templates, current=Y1Q4)

    assert result.grants == [grant]
    assert result.requests == []


def test_fallback_grant_event_ids_and_kind(settings, templates):
    grant = _grant(status=GrantStatus.ACTIVE, tier=Tier.B)
    request = GrantEventRequest(grant=grant, stage=GrantStage.EXECUTION, stamp=Y1Q2)

    decision = build_grant_event_fallback(DeterministicRNG(8), request, settings=settings, templates=templates)

    assert decision.id.startswith("dec-grant-exec-g1-1-2-")
    assert decision.kind is DecisionKind.GRANT_EXECUTION_EVENT
    assert decision.context.grant_id == "g1"
    assert 2 <= len(decision.options) <= 3
