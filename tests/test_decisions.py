"""Tests for the decision backlog and option resolution."""
import pytest

from mentor_sim.decisions import DecisionQueue, choose_option
from mentor_sim.models import (
    DecisionContext,
    DecisionEffects,
    DecisionEvent,
    DecisionKind,
    DecisionOption,
    GrantState,
    GrantStatus,
    OptionMeta,
    PaperStatus,
    ProjectPaper,
    QuarterStamp,
    RevisionKind,
    StatDelta,
    StudentAction,
    StudentDelta,
    Tier,
    VenueType,
)
from mentor_sim.rng import DeterministicRNG
from mentor_sim.services.papers import build_revision_decision, build_venue_decision

NOW = QuarterStamp(1, 1)


def _decision(decision_id, kind, options, **context):
    return DecisionEvent(
        id=decision_id,
        kind=kind,
        title=f"Decision {decision_id}",
        prompt="What now?",
        options=options,
        created_at=NOW,
        context=DecisionContext(**context),
    )


def _option(option_id="A", *, stats=None, student=None, **meta):
    return DecisionOption(
        id=option_id,
        label=f"Option {option_id}",
        outcome="Done.",
        effects=DecisionEffects(stats=stats, student=student),
        meta=OptionMeta(**meta),
    )


def _grant(**overrides):
    values = dict(
        id="g1",
        type="natural_science",
        title="Adaptive sensing",
        applied_at=NOW,
        review_end=NOW.add_quarters(2),
    )
    values.update(overrides)
    return GrantState(**values)


def test_queue_is_fifo_and_unique_by_id():
    first = _decision("d1", DecisionKind.QUARTER_EVENT, [_option()])
    second = _decision("d2", DecisionKind.QUARTER_EVENT, [_option()])
    queue = DecisionQueue([first])

    assert queue.extend([first, second, second]) == 1
    assert queue.active is first
    assert [d.id for d in queue] == ["d1", "d2"]
    assert queue.remove("d1") is first
    assert queue.active is second
    assert queue.remove("missing") is None
    assert len(queue) == 1


def test_accepted_paper_option_updates_counters(make_session, make_student):
    student = make_student("s1", pending_papers=2, total_papers=0)
    decision = _decision(
        "d1",
        DecisionKind.STUDENT_PAPER_EVENT,
        [_option("A", student=StudentDelta(pending_papers=-1, total_papers=1))],
        student_id="s1",
    )
    session = make_session([student], backlog=[decision])

    updated = choose_option(session, "d1", "A")

    assert updated.student("s1").pending_papers == 1
    assert updated.student("s1").total_papers == 1
    assert updated.backlog == []
    assert updated.log[-1].title == "Decision d1"
    # The input session is left as it was.
    assert session.student("s1").pending_papers == 2
    assert session.backlog == [decision]


def test_venue_choice_submits_the_paper(make_session, make_student, templates):
    paper = ProjectPaper(id="pp-1", project_id="proj-1", title="Sensors", lead_student_id="s1")
    decision = build_venue_decision(DeterministicRNG(1), paper, NOW, templates=templates)
    session = make_session([make_student("s1", mental_state=80, stress=10)], papers=[paper], backlog=[decision])

    updated = choose_option(session, decision.id, "jour-b")

    submitted = updated.paper("pp-1")
    assert submitted.status is PaperStatus.UNDER_REVIEW
    assert submitted.venue_type is VenueType.JOURNAL
    assert submitted.venue_tier is Tier.B
    assert submitted.submitted_at == NOW
    assert submitted.decision_due == NOW.add_quarters(2)
    lead = updated.student("s1")
    assert (lead.pending_papers, lead.mental_state, lead.stress) == (1, 78, 13)
    assert updated.stats.funding == session.stats.funding - 4500
    assert decision.id == "dec-project-venue-pp-1"


def test_venue_choice_ignores_papers_already_submitted(make_session, templates):
    paper = ProjectPaper(
        id="pp-1", project_id="proj-1", title="Sensors", status=PaperStatus.ACCEPTED, venue_tier=Tier.A
    )
    decision = build_venue_decision(DeterministicRNG(1), paper, NOW, templates=templates)
    session = make_session(papers=[paper], backlog=[decision])

    updated = choose_option(session, decision.id, "safe-c")

    assert updated.paper("pp-1") == paper
    assert updated.backlog == []


def _revision_session(make_session, make_student, templates, kind=RevisionKind.MINOR):
    paper = ProjectPaper(
        id="pp-1",
        project_id="proj-1",
        title="Sensors",
        lead_student_id="s1",
        status=PaperStatus.AWAITING_REVISION,
        venue_tier=Tier.A,
        last_revision_kind=kind,
    )
    decision = build_revision_decision(DeterministicRNG(1), paper, kind, NOW, templates=templates)
    return make_session([make_student("s1", pending_papers=1)], papers=[paper], backlog=[decision]), decision


def test_withdraw_rejects_and_releases_the_pending_paper(make_session, make_student, templates):
    session, decision = _revision_session(make_session, make_student, templates)

    updated = choose_option(session, decision.id, "withdraw")

    assert updated.paper("pp-1").status is PaperStatus.REJECTED
    assert updated.student("s1").pending_papers == 0


def test_downgrade_resubmits_one_tier_lower(make_session, make_student, templates):
    session, decision = _revision_session(make_session, make_student, templates, RevisionKind.MAJOR)

    updated = choose_option(session, decision.id, "downgrade")

    paper = updated.paper("pp-1")
    assert paper.status is PaperStatus.UNDER_REVIEW
    assert paper.venue_tier is Tier.B
    assert paper.decision_due == NOW.add_quarters(1)
    assert updated.student("s1").pending_papers == 1


def test_revise_bumps_the_revision_round(make_session, make_student, templates):
    session, decision = _revision_session(make_session, make_student, templates)

    updated = choose_option(session, decision.id, "revise")

    paper = updated.paper("pp-1")
    assert paper.status is PaperStatus.UNDER_REVIEW
    assert paper.revision_round == 1
    assert paper.venue_tier is Tier.A


def test_grant_review_meta_moves_score_and_luck(make_session, make_student):
    grant = _grant(assigned_student_ids=["s1"])
    decision = _decision(
        "d1",
        DecisionKind.GRANT_REVIEW_EVENT,
        [_option("A", stats=StatDelta(admin=-1), student=StudentDelta(stress=4), score_delta=5, luck_delta=-2)],
        grant_id="g1",
    )
    session = make_session([make_student("s1", stress=20), make_student("s2", stress=20)], grants=[grant], backlog=[decision])

    updated = choose_option(session, "d1", "A")

    assert updated.grant("g1").score_delta == 5
    assert updated.grant("g1").luck == -2
    assert updated.stats.admin.value == session.stats.admin.value - 1
    assert updated.student("s1").stress == 24
    assert updated.student("s2").stress == 20


def test_execution_progress_is_capped(make_session):
    grant = _grant(status=GrantStatus.ACTIVE, tier=Tier.B, paper_progress=40)
    boost = _decision("d1", DecisionKind.GRANT_EXECUTION_EVENT, [_option("A", progress_delta=300)], grant_id="g1")
    drag = _decision("d2", DecisionKind.GRANT_EXECUTION_EVENT, [_option("A", progress_delta=-500)], grant_id="g1")
    session = make_session(grants=[grant], backlog=[boost, drag])

    assert choose_option(session, "d1", "A").grant("g1").paper_progress == 250
    assert choose_option(session, "d2", "A").grant("g1").paper_progress == 0


def test_leave_option_dismisses_the_student(make_session, make_student):
    paper = ProjectPaper(id="pp-1", project_id="proj-1", title="Sensors", lead_student_id="s2")
    decision = _decision(
        "d1",
        DecisionKind.QUARTER_EVENT,
        [_option("A", student_action=StudentAction.STAY), _option("C", student_action=StudentAction.LEAVE)],
        student_id="s2",
        category="runaway",
    )
    session = make_session([make_student("s1"), make_student("s2")], papers=[paper], backlog=[decision])

    updated = choose_option(session, "d1", "C")

    assert [s.id for s in updated.students] == ["s1"]
    assert updated.paper("pp-1").lead_student_id is None
    assert updated.log[-1].title == "Student left"
    assert [s.id for s in choose_option(session, "d1", "A").students] == ["s1", "s2"]


def test_leave_action_only_applies_to_quarter_events(make_session, make_student):
    decision = _decision(
        "d1",
        DecisionKind.STUDENT_PAPER_EVENT,
        [_option("A", student_action=StudentAction.LEAVE), _option("B")],
        student_id="s1",
    )
    session = make_session([make_student("s1")], backlog=[decision])

    updated = choose_option(session, "d1", "A")

    assert [s.id for s in updated.students] == ["s1"]
    assert updated.backlog == []
    assert updated.log[-1].title == "Decision d1"


def test_unknown_decision_or_option_raises(make_session):
    decision = _decision("d1", DecisionKind.QUARTER_EVENT, [_option("A")])
    session = make_session(backlog=[decision])

    with pytest.raises(ValueError):
        choose_option(session, "missing", "A")
    with pytest.raises(ValueError):
        choose_option(session, "d1", "Z")
    assert session.backlog == [decision]
